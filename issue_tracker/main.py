from __future__ import annotations

import asyncio
import logging
import os
import time
from pathlib import Path
from urllib.parse import quote

from fastapi import Depends, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import RedirectResponse
from fastapi.staticfiles import StaticFiles
from starlette.responses import JSONResponse
from starlette.templating import Jinja2Templates

from issue_tracker.core.config import settings
from issue_tracker.core.logging_config import setup_logging
from issue_tracker.core.id_allocator import AllocationError
from issue_tracker.core.rbac import can_submit_loan_issue, can_submit_standard, can_view_submissions, home_path
from issue_tracker.auth.deps import SESSION_COOKIE, get_current_user, user_from_token
from issue_tracker.auth.user import ROLE_LABELS
from issue_tracker.db.session import SessionLocal
from issue_tracker.utils.storage import StorageError
from issue_tracker.utils.submissions import feed_marker, search_submissions, snapshot_submission

# Registers every table on Base.metadata
import issue_tracker.db.models  # noqa: F401

from issue_tracker.auth.router import router as auth_router
from issue_tracker.modules.forms.router import router as forms_router
from issue_tracker.modules.submissions.router import router as submissions_router


setup_logging()
logger = logging.getLogger("issue_tracker")

BASE_DIR = Path(__file__).resolve().parent

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "same-origin",
    "Permissions-Policy": "geolocation=(), camera=(), microphone=()",
}


def _expects_json(request: Request) -> bool:
    """API paths, fetch() calls and clients that do not accept HTML get JSON errors."""
    if request.url.path.startswith("/api/"):
        return True
    if request.headers.get("x-requested-with", "").lower() == "fetch":
        return True
    accept = request.headers.get("accept", "").lower()
    return bool(accept) and accept != "*/*" and "text/html" not in accept


def _login_url_for(request: Request) -> str:
    target = request.url.path or "/"
    if request.url.query:
        target = f"{target}?{request.url.query}"
    return "/login?redirect_url=" + quote(target, safe="")


templates = Jinja2Templates(directory=str(BASE_DIR / "templates"))
templates.env.globals.update(
    app_name=settings.APP_NAME,
    role_labels=ROLE_LABELS,
    can_submit_standard=can_submit_standard,
    can_submit_loan_issue=can_submit_loan_issue,
    can_view_submissions=can_view_submissions,
)

app = FastAPI(title=settings.APP_NAME)
app.state.templates = templates

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins(),
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
)
app.add_middleware(GZipMiddleware, minimum_size=800)


@app.middleware("http")
async def response_headers(request: Request, call_next):
    start = time.perf_counter()
    resp = await call_next(request)
    resp.headers["X-Process-Time-ms"] = f"{(time.perf_counter() - start) * 1000:.2f}"

    path = request.url.path or ""
    if resp.status_code < 400:
        if path.startswith("/static/"):
            resp.headers.setdefault("Cache-Control", "public, max-age=86400")
        elif path.startswith(settings.UPLOAD_URL_PREFIX + "/"):
            # Stored attachments never change once written under a random name.
            resp.headers.setdefault("Cache-Control", "private, max-age=604800, immutable")

    for name, value in SECURITY_HEADERS.items():
        resp.headers.setdefault(name, value)
    return resp


def _error_response(request: Request, status_code: int, detail: str):
    if _expects_json(request):
        return JSONResponse(status_code=status_code, content={"detail": detail})
    return templates.TemplateResponse(
        request,
        "error.html",
        {"status_code": status_code, "detail": detail, "user": None},
        status_code=status_code,
    )


@app.exception_handler(HTTPException)
async def http_exc_handler(request: Request, exc: HTTPException):
    if exc.status_code != 401:
        return _error_response(request, exc.status_code, str(exc.detail))

    # Missing or expired session: pages bounce to the login form, API callers get JSON.
    login_url = _login_url_for(request)
    if _expects_json(request):
        resp = JSONResponse(status_code=401, content={"detail": "Session expired", "login_url": login_url})
        resp.headers["X-Login-Url"] = login_url
    else:
        resp = RedirectResponse(login_url, status_code=303)
    resp.delete_cookie(SESSION_COOKIE)
    return resp


@app.exception_handler(AllocationError)
async def allocation_exc_handler(request: Request, exc: AllocationError):
    logger.warning("Submission id allocation failed: %s", exc)
    return _error_response(request, 503, "Could not create the submission right now. Please try again.")


@app.exception_handler(StorageError)
async def storage_exc_handler(request: Request, exc: StorageError):
    logger.error("Attachment upload failed: %s", exc)
    return _error_response(request, 502, "Failed to upload attachment. Please try again.")


@app.exception_handler(Exception)
async def unhandled_exc_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return _error_response(request, 500, "Internal Server Error")


app.mount("/static", StaticFiles(directory=str(BASE_DIR / "static")), name="static")

os.makedirs(settings.UPLOAD_DIR, exist_ok=True)
app.mount(settings.UPLOAD_URL_PREFIX, StaticFiles(directory=settings.UPLOAD_DIR), name="uploads")

for _router in (auth_router, forms_router, submissions_router):
    app.include_router(_router)


@app.get("/health", response_class=JSONResponse)
def health():
    return {"status": "ok", "app": settings.APP_NAME, "counter_backend": settings.COUNTER_BACKEND}


@app.get("/")
def home(user=Depends(get_current_user)):
    return RedirectResponse(home_path(user), status_code=303)


def _snapshot_message() -> tuple[tuple[int, str | None], dict]:
    # Fresh session per poll so rows committed since the last poll are visible.
    with SessionLocal() as db:
        marker = feed_marker(db)
        items = [snapshot_submission(s) for s in search_submissions(db)]
    return marker, {"type": "snapshot", "count": marker[0], "items": items}


def _current_marker() -> tuple[int, str | None]:
    with SessionLocal() as db:
        return feed_marker(db)


@app.websocket("/ws/submissions")
async def ws_submissions(websocket: WebSocket):
    """Live submission list: a snapshot on connect, then one per change."""
    await websocket.accept()
    user = user_from_token(websocket.cookies.get(SESSION_COOKIE))
    if user is None or not can_view_submissions(user):
        await websocket.send_json({"type": "error", "reason": "unauthorized"})
        await websocket.close(code=4401)
        return

    last_marker = None
    try:
        while True:
            if _current_marker() != last_marker:
                last_marker, message = _snapshot_message()
                await websocket.send_json(message)
            try:
                # Client messages are ignored; receiving is how a disconnect is noticed.
                await asyncio.wait_for(websocket.receive_text(), timeout=settings.LIVE_POLL_SECONDS)
            except asyncio.TimeoutError:
                continue
    except WebSocketDisconnect:
        logger.debug("Live feed client for %s disconnected", user.role.value)
    except Exception:
        logger.exception("Submissions websocket error")
        await websocket.close(code=1011)
