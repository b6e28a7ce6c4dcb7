"""Submission create flows, search and serialization.

Both forms follow the same sequence:
  validate -> allocate id -> store attachments under <id>/ -> insert row.
A failure after allocation leaves a gap in the sequence; ids are never reused.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Sequence

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, selectinload
from starlette.concurrency import run_in_threadpool

from issue_tracker.auth.user import User
from issue_tracker.core.config import settings
from issue_tracker.core.decision import (
    ENTITY_OPTIONS,
    REQUESTABLE_ACTIONS,
    Decision,
    IssueReport,
    IssueType,
    classify,
)
from issue_tracker.core.id_allocator import IdAllocator
from issue_tracker.core.rbac import require
from issue_tracker.db.models.attachment import SubmissionAttachment
from issue_tracker.db.models.submission import FormType, Submission
from issue_tracker.utils.attachments import MB, check_total_size
from issue_tracker.utils.storage import FileStorage, FileTooLarge, StoredFile

logger = logging.getLogger("issue_tracker.submissions")

ACTIONABLE_OPTIONS = (
    "Follow up required",
    "Data correction needed",
    "Status update needed",
    "Documentation required",
    "Other",
)

OPPORTUNITY_ID_RE = re.compile(r"^IDEP[A-Z0-9]+$", re.IGNORECASE)


def _clean(v: Any) -> str:
    return str(v or "").strip()


@dataclass
class StandardFormData:
    actionable: str = ""
    detailed_actionable: str = ""
    lsq_link: str = ""
    urn: str = ""
    comments: str = ""

    def errors(self, file_count: int) -> list[str]:
        errors: list[str] = []
        if self.actionable not in ACTIONABLE_OPTIONS:
            errors.append("Please select an actionable")
        if not self.detailed_actionable:
            errors.append("Please provide detailed actionable")
        if not self.lsq_link:
            errors.append("Please provide LSQ Link")
        if not self.urn:
            errors.append("Please provide URN")
        if file_count != 1:
            errors.append("Please attach a file")
        return errors


@dataclass
class LoanIssueFormData:
    entity: str = ""
    issue_type: str = ""
    sub_issue: str = ""
    action_requested: str = ""
    opportunity_id: str = ""
    lsq_url: str = ""
    applicant_name: str = ""
    notes: str = ""

    @property
    def kind(self) -> IssueType:
        return IssueType.parse(self.issue_type)

    def normalized(self) -> "LoanIssueFormData":
        """Drop a sub-issue the chosen issue type does not define."""
        if self.issue_type and not self.kind.sub_issues:
            self.sub_issue = ""
        return self

    def errors(self) -> list[str]:
        errors: list[str] = []
        if self.entity not in ENTITY_OPTIONS:
            errors.append("Please select an entity")
        if not self.issue_type:
            errors.append("Please select an issue type")
        elif self.kind.sub_issues and self.sub_issue not in self.kind.sub_issues:
            errors.append("Please select a sub-issue")
        if self.action_requested not in {a.value for a in REQUESTABLE_ACTIONS}:
            errors.append("Please select an action requested")
        if not OPPORTUNITY_ID_RE.match(self.opportunity_id):
            errors.append("Opportunity ID must be in format IDEP followed by letters/numbers")
        if not self.lsq_url:
            errors.append("Please provide LSQ URL")
        if not self.applicant_name:
            errors.append("Please provide Applicant/Co-Applicant Name")
        if self.issue_type and self.kind == IssueType.OTHER and not self.notes:
            errors.append('Notes are required for "Other" issue type')
        return errors

    def to_report(self) -> IssueReport:
        return IssueReport(
            issue_type=self.kind,
            sub_issue=self.sub_issue,
            notes=self.notes,
            action_requested=self.action_requested,
        )


def standard_form_from(data: dict) -> StandardFormData:
    return StandardFormData(**{k: _clean(data.get(k)) for k in StandardFormData.__dataclass_fields__})


def loan_form_from(data: dict) -> LoanIssueFormData:
    return LoanIssueFormData(**{k: _clean(data.get(k)) for k in LoanIssueFormData.__dataclass_fields__}).normalized()


def real_uploads(items: Sequence[Any]) -> list[Any]:
    """Keep form values that are actual uploaded files (skip empty file inputs)."""
    # request.form() yields Starlette UploadFile objects; duck-type instead of isinstance.
    return [u for u in items if getattr(u, "filename", None) and hasattr(u, "read")]


@dataclass
class CreatedSubmission:
    submission: Submission
    decision: Decision | None = None
    size_warning: str = ""


def _precheck_sizes(uploads: Sequence[Any]) -> str:
    check = check_total_size(getattr(u, "size", None) or 0 for u in uploads)
    require(check.valid, check.message, 400)
    return check.message if check.warning else ""


async def _store_all(storage: FileStorage, submission_id: str, uploads: Sequence[Any]) -> list[StoredFile]:
    remaining = int(settings.ATTACHMENT_MAX_MB) * MB
    stored: list[StoredFile] = []
    try:
        for up in uploads:
            sf = await storage.save(submission_id, up, max_bytes=remaining)
            remaining -= sf.file_size
            stored.append(sf)
    except FileTooLarge:
        _discard(storage, stored)
        require(False, f"Total file size exceeds maximum limit of {settings.ATTACHMENT_MAX_MB} MB", 400)
    except Exception:
        _discard(storage, stored)
        raise
    return stored


def _discard(storage: FileStorage, stored: Sequence[StoredFile]) -> None:
    for sf in stored:
        storage.delete(sf.file_id)


def _attachments(stored: Sequence[StoredFile]) -> list[SubmissionAttachment]:
    return [
        SubmissionAttachment(url=sf.url, drive_id=sf.file_id, file_name=sf.file_name, file_size=sf.file_size)
        for sf in stored
    ]


async def _create(
    db: Session,
    allocator: IdAllocator,
    storage: FileStorage,
    uploads: Sequence[Any],
    build: dict,
) -> CreatedSubmission:
    warning = _precheck_sizes(uploads)

    # Raises AllocationError; nothing below runs without an issued id.
    submission_id = await run_in_threadpool(allocator.allocate)

    stored = await _store_all(storage, submission_id, uploads)

    now = datetime.now(timezone.utc)
    s = Submission(id=submission_id, submitted_at=now, created_at=now, **build)
    s.attachments = _attachments(stored)
    try:
        db.add(s)
        db.commit()
    except Exception:
        db.rollback()
        _discard(storage, stored)
        logger.exception("Could not persist submission %s", submission_id)
        raise
    db.refresh(s)

    logger.info(
        "Created %s submission %s with %d attachment(s)",
        s.form_type.value,
        s.id,
        len(stored),
    )
    return CreatedSubmission(submission=s, size_warning=warning)


async def create_standard_submission(
    db: Session,
    allocator: IdAllocator,
    storage: FileStorage,
    user: User,
    form: StandardFormData,
    uploads: Sequence[Any],
) -> CreatedSubmission:
    return await _create(
        db,
        allocator,
        storage,
        uploads,
        dict(
            form_type=FormType.STANDARD,
            actionable=form.actionable,
            detailed_actionable=form.detailed_actionable,
            lsq_link=form.lsq_link,
            urn=form.urn,
            comments=form.comments,
            submitted_by=user.role.value,
        ),
    )


async def create_loan_issue_submission(
    db: Session,
    allocator: IdAllocator,
    storage: FileStorage,
    user: User,
    form: LoanIssueFormData,
    uploads: Sequence[Any],
) -> CreatedSubmission:
    decision = classify(form.to_report())
    created = await _create(
        db,
        allocator,
        storage,
        uploads,
        dict(
            form_type=FormType.LOAN_ISSUE,
            entity=form.entity,
            issue_type=form.kind.value,
            sub_issue=form.sub_issue,
            action_requested=form.action_requested,
            opportunity_id=form.opportunity_id.upper(),
            lsq_url=form.lsq_url,
            # Always the server's current date, never a client-supplied one.
            report_date=datetime.now(timezone.utc).date(),
            applicant_name=form.applicant_name,
            notes=form.notes,
            recommended_action=decision.recommended_action,
            reason=decision.reason,
            next_steps_json=json.dumps(list(decision.next_steps), ensure_ascii=False),
            submitted_by=user.role.value,
        ),
    )
    created.decision = decision
    return created


# ---- Queries ----

# Ids share one prefix and are zero-padded to a minimum width, so a longer id is a
# later one (SUB-10000 after SUB-9999); equal lengths compare as text.
NEWEST_FIRST = (Submission.created_at.desc(), func.length(Submission.id).desc(), Submission.id.desc())


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def search_submissions(
    db: Session,
    q: str = "",
    form_type: FormType | None = None,
    limit: int | None = None,
) -> list[Submission]:
    """Newest first; `q` matches id, actionable, URN, description, issue type, opportunity and name."""
    query = db.query(Submission).options(selectinload(Submission.attachments))
    if form_type is not None:
        query = query.filter(Submission.form_type == form_type)

    term = _clean(q)
    if term:
        # Literal substring match: % and _ typed by the user are not wildcards.
        like = f"%{_escape_like(term)}%"
        clauses = [
            column.ilike(like, escape="\\")
            for column in (
                Submission.id,
                Submission.actionable,
                Submission.urn,
                Submission.detailed_actionable,
                Submission.opportunity_id,
                Submission.applicant_name,
            )
        ]
        issue_keys = [it.value for it in IssueType if term.lower() in it.label.lower()]
        if issue_keys:
            clauses.append(Submission.issue_type.in_(issue_keys))
        query = query.filter(or_(*clauses))

    return (
        query.order_by(*NEWEST_FIRST)
        .limit(limit or settings.LIST_LIMIT)
        .all()
    )


def get_submission(db: Session, submission_id: str) -> Submission | None:
    return db.get(Submission, _clean(submission_id).upper())


def feed_marker(db: Session) -> tuple[int, str | None]:
    """(row count, newest id); changes whenever a submission is added."""
    count = db.query(func.count(Submission.id)).scalar() or 0
    newest = db.query(Submission.id).order_by(*NEWEST_FIRST).limit(1).scalar()
    return int(count), newest


def _iso(v) -> str | None:
    return v.isoformat() if v is not None else None


def snapshot_submission(s: Submission) -> dict:
    data = {
        "id": s.id,
        "form_type": s.form_type.value,
        "submitted_by": s.submitted_by,
        "submitted_at": _iso(s.submitted_at),
        "created_at": _iso(s.created_at),
        "attachments": [
            {"url": a.url, "drive_id": a.drive_id, "file_name": a.file_name, "file_size": a.file_size}
            for a in s.attachments
        ],
    }
    if s.form_type == FormType.LOAN_ISSUE:
        data.update(
            entity=s.entity,
            issue_type=s.issue_type,
            issue_type_label=s.issue_type_label,
            sub_issue=s.sub_issue,
            action_requested=s.action_requested,
            opportunity_id=s.opportunity_id,
            lsq_url=s.lsq_url,
            report_date=_iso(s.report_date),
            applicant_name=s.applicant_name,
            notes=s.notes,
            recommended_action=s.recommended_action,
            reason=s.reason,
            next_steps=s.next_steps,
        )
    else:
        data.update(
            actionable=s.actionable,
            detailed_actionable=s.detailed_actionable,
            lsq_link=s.lsq_link,
            urn=s.urn,
            comments=s.comments,
        )
    return data
