from __future__ import annotations

from fastapi import APIRouter, Request, Depends
from fastapi.responses import HTMLResponse, JSONResponse
from sqlalchemy.orm import Session

from issue_tracker.auth.deps import get_current_user
from issue_tracker.core.rbac import can_view_submissions, require
from issue_tracker.db.models.submission import FORM_TYPE_LABELS, FormType
from issue_tracker.db.session import get_db
from issue_tracker.utils.attachments import format_file_size
from issue_tracker.utils.submissions import get_submission, search_submissions, snapshot_submission

router = APIRouter(tags=["submissions"])


def _form_type(value: str | None) -> FormType | None:
    """Empty or unknown values mean "all form types"."""
    try:
        return FormType(value) if value else None
    except ValueError:
        return None


@router.get("/submissions", response_class=HTMLResponse)
def page(
    request: Request,
    q: str = "",
    form_type: str = "",
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    """Submission listing, newest first.

    The page opens /ws/submissions and reloads itself when the feed reports a
    change, so the list stays current without manual refresh.
    """
    require(can_view_submissions(user))
    ft = _form_type(form_type)
    subs = search_submissions(db, q=q, form_type=ft)

    return request.app.state.templates.TemplateResponse(
        request,
        "submissions/index.html",
        {
            "subs": subs,
            "user": user,
            "q": q,
            "form_type": ft.value if ft else "",
            "form_types": FORM_TYPE_LABELS,
            "filtered": bool(q.strip() or ft),
        },
    )


@router.get("/submissions/{submission_id}", response_class=HTMLResponse)
def detail(
    request: Request,
    submission_id: str,
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    require(can_view_submissions(user))
    s = get_submission(db, submission_id)
    require(s is not None, "Submission not found", 404)

    return request.app.state.templates.TemplateResponse(
        request,
        "submissions/detail.html",
        {"s": s, "user": user, "format_file_size": format_file_size},
    )


# ---- JSON ----


@router.get("/api/submissions", response_class=JSONResponse)
def api_list(
    q: str = "",
    form_type: str = "",
    db: Session = Depends(get_db),
    user=Depends(get_current_user),
):
    require(can_view_submissions(user))
    subs = search_submissions(db, q=q, form_type=_form_type(form_type))
    return {"count": len(subs), "items": [snapshot_submission(s) for s in subs]}


@router.get("/api/submissions/{submission_id}", response_class=JSONResponse)
def api_detail(submission_id: str, db: Session = Depends(get_db), user=Depends(get_current_user)):
    require(can_view_submissions(user))
    s = get_submission(db, submission_id)
    require(s is not None, "Submission not found", 404)
    return snapshot_submission(s)
