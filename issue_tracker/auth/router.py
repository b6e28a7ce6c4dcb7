from __future__ import annotations

from urllib.parse import urlparse

from fastapi import APIRouter, Request, Form
from fastapi.responses import RedirectResponse

from issue_tracker.auth.deps import SESSION_COOKIE
from issue_tracker.auth.user import ROLE_LABELS, Role, User
from issue_tracker.core.config import settings
from issue_tracker.core.rbac import home_path
from issue_tracker.core.security import verify_shared_password, sign_session

router = APIRouter()


_NO_RETURN_PATHS = {"/", "/login", "/logout"}


def _safe_next_url(next_url: str | None) -> str:
    """Local path (plus query) to land on after login; "" means the role's home page."""
    parts = urlparse(next_url or "")
    if parts.scheme or parts.netloc or not parts.path or "\\" in parts.path:
        return ""

    path = "/" + parts.path.lstrip("/")
    if path in _NO_RETURN_PATHS:
        return ""
    return f"{path}?{parts.query}" if parts.query else path


def _login_page(request: Request, next_url: str, error: str = "", role: str = "", status_code: int = 200):
    return request.app.state.templates.TemplateResponse(
        request,
        "auth/login.html",
        {"error": error, "next_url": next_url, "roles": ROLE_LABELS, "selected_role": role},
        status_code=status_code,
    )


@router.get("/login")
def login_page(request: Request, next: str = "", redirect_url: str = ""):
    return _login_page(request, _safe_next_url(redirect_url or next))


@router.post("/login")
def login(
    request: Request,
    role: str = Form(""),
    password: str = Form(""),
    next_url: str = Form(""),
):
    target_url = _safe_next_url(next_url)
    try:
        selected = Role(role)
    except ValueError:
        return _login_page(request, target_url, "Please select a role", role, status_code=400)

    if not verify_shared_password(password):
        return _login_page(request, target_url, "Invalid password", role, status_code=400)

    sid = sign_session({"role": selected.value})
    resp = RedirectResponse(target_url or home_path(User(selected)), status_code=303)
    resp.set_cookie(
        SESSION_COOKIE,
        sid,
        httponly=True,
        samesite=settings.COOKIE_SAMESITE,
        secure=settings.COOKIE_SECURE,
        max_age=settings.SESSION_MAX_AGE_SECONDS,
    )
    return resp


@router.post("/logout")
def logout():
    resp = RedirectResponse("/login", status_code=303)
    resp.delete_cookie(SESSION_COOKIE)
    return resp
