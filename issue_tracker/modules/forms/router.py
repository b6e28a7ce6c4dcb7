from __future__ import annotations

from fastapi import APIRouter, Request, Depends
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from issue_tracker.auth.deps import get_current_user
from issue_tracker.core.config import settings
from issue_tracker.core.decision import (
    ENTITY_OPTIONS,
    ISSUE_TYPE_LABELS,
    REQUESTABLE_ACTIONS,
    SUB_ISSUES,
    IssueReport,
    classify,
)
from issue_tracker.core.id_allocator import IdAllocator, get_allocator
from issue_tracker.core.rbac import can_submit_loan_issue, can_submit_standard, require
from issue_tracker.db.session import get_db
from issue_tracker.utils.attachments import format_file_size
from issue_tracker.utils.storage import FileStorage, get_storage
from issue_tracker.utils.submissions import (
    ACTIONABLE_OPTIONS,
    create_loan_issue_submission,
    create_standard_submission,
    loan_form_from,
    real_uploads,
    standard_form_from,
)

router = APIRouter(tags=["forms"])


def _render(request: Request, template: str, context: dict, status_code: int = 200):
    base = {
        "user": request.state.user,
        "warn_mb": settings.ATTACHMENT_WARN_MB,
        "max_mb": settings.ATTACHMENT_MAX_MB,
        "format_file_size": format_file_size,
    }
    base.update(context)
    return request.app.state.templates.TemplateResponse(request, template, base, status_code=status_code)


def _standard_context(form=None) -> dict:
    return {"form": form, "actionable_options": ACTIONABLE_OPTIONS}


def _loan_context(form=None) -> dict:
    return {
        "form": form,
        "entity_options": ENTITY_OPTIONS,
        "issue_types": ISSUE_TYPE_LABELS,
        "sub_issues": {k.value: list(v) for k, v in SUB_ISSUES.items()},
        "actions": [a.value for a in REQUESTABLE_ACTIONS],
    }


# -----------------------------------------------------------------------------
# Standard form
# -----------------------------------------------------------------------------


@router.get("/submit", response_class=HTMLResponse)
def submit_page(request: Request, user=Depends(get_current_user)):
    require(can_submit_standard(user))
    request.state.user = user
    return _render(request, "forms/submit.html", _standard_context())


@router.post("/submit", response_class=HTMLResponse)
async def submit(
    request: Request,
    db: Session = Depends(get_db),
    allocator: IdAllocator = Depends(get_allocator),
    storage: FileStorage = Depends(get_storage),
    user=Depends(get_current_user),
):
    require(can_submit_standard(user))
    request.state.user = user

    formdata = await request.form()
    form = standard_form_from(dict(formdata))
    uploads = real_uploads(formdata.getlist("attachments"))

    errors = form.errors(len(uploads))
    if errors:
        return _render(request, "forms/submit.html", {**_standard_context(form), "error": "\n".join(errors)}, 400)

    created = await create_standard_submission(db, allocator, storage, user, form, uploads)
    return _render(
        request,
        "forms/success.html",
        {"submission": created.submission, "decision": None, "size_warning": created.size_warning, "again_url": "/submit"},
    )


# -----------------------------------------------------------------------------
# Loan issue form
# -----------------------------------------------------------------------------


@router.get("/loan-issue", response_class=HTMLResponse)
def loan_issue_page(request: Request, user=Depends(get_current_user)):
    require(can_submit_loan_issue(user))
    request.state.user = user
    return _render(request, "forms/loan_issue.html", _loan_context())


@router.post("/loan-issue", response_class=HTMLResponse)
async def loan_issue(
    request: Request,
    db: Session = Depends(get_db),
    allocator: IdAllocator = Depends(get_allocator),
    storage: FileStorage = Depends(get_storage),
    user=Depends(get_current_user),
):
    require(can_submit_loan_issue(user))
    request.state.user = user

    formdata = await request.form()
    form = loan_form_from(dict(formdata))
    uploads = real_uploads(formdata.getlist("attachments"))

    errors = form.errors()
    if errors:
        return _render(request, "forms/loan_issue.html", {**_loan_context(form), "error": "\n".join(errors)}, 400)

    created = await create_loan_issue_submission(db, allocator, storage, user, form, uploads)
    return _render(
        request,
        "forms/success.html",
        {
            "submission": created.submission,
            "decision": created.decision,
            "size_warning": created.size_warning,
            "again_url": "/loan-issue",
        },
    )


class DecisionPreviewIn(BaseModel):
    issue_type: str
    sub_issue: str = ""
    notes: str = ""
    action_requested: str = ""


@router.post("/api/decision", response_class=JSONResponse)
def decision_preview(body: DecisionPreviewIn, user=Depends(get_current_user)):
    """Run the classifier without saving anything."""
    require(can_submit_loan_issue(user))
    report = IssueReport(
        issue_type=body.issue_type,
        sub_issue=body.sub_issue,
        notes=body.notes,
        action_requested=body.action_requested,
    )
    return classify(report).to_dict()
