from __future__ import annotations

import enum
import json
from datetime import date, datetime, timezone

from sqlalchemy import Date, DateTime, Enum, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from issue_tracker.core.decision import IssueType
from issue_tracker.db.base import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FormType(str, enum.Enum):
    STANDARD = "standard"
    LOAN_ISSUE = "loan_issue"


FORM_TYPE_LABELS = {
    FormType.STANDARD: "Standard",
    FormType.LOAN_ISSUE: "Loan Issue",
}


class Submission(Base):
    __tablename__ = "submissions"

    # SUB-0001, SUB-0002, ... (allocated before insert, never reused)
    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    form_type: Mapped[FormType] = mapped_column(Enum(FormType), index=True)

    # Standard form
    actionable: Mapped[str] = mapped_column(String(120), default="")
    detailed_actionable: Mapped[str] = mapped_column(Text, default="")
    lsq_link: Mapped[str] = mapped_column(String(500), default="")
    urn: Mapped[str] = mapped_column(String(120), default="", index=True)
    comments: Mapped[str] = mapped_column(Text, default="")

    # Loan issue form
    entity: Mapped[str] = mapped_column(String(40), default="")
    issue_type: Mapped[str] = mapped_column(String(60), default="", index=True)
    sub_issue: Mapped[str] = mapped_column(String(120), default="")
    action_requested: Mapped[str] = mapped_column(String(120), default="")
    opportunity_id: Mapped[str] = mapped_column(String(60), default="", index=True)
    lsq_url: Mapped[str] = mapped_column(String(500), default="")
    report_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    applicant_name: Mapped[str] = mapped_column(String(160), default="")
    notes: Mapped[str] = mapped_column(Text, default="")

    # Classifier output (loan issue form only)
    recommended_action: Mapped[str] = mapped_column(String(120), default="")
    reason: Mapped[str] = mapped_column(Text, default="")
    next_steps_json: Mapped[str] = mapped_column(Text, default="[]")

    submitted_by: Mapped[str] = mapped_column(String(40), index=True)
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)

    attachments = relationship(
        "SubmissionAttachment",
        back_populates="submission",
        order_by="SubmissionAttachment.id",
        cascade="all, delete-orphan",
    )

    @property
    def next_steps(self) -> list[str]:
        try:
            steps = json.loads(self.next_steps_json or "[]")
        except ValueError:
            return []
        return steps if isinstance(steps, list) else []

    @property
    def form_type_label(self) -> str:
        return FORM_TYPE_LABELS.get(self.form_type, str(self.form_type))

    @property
    def issue_type_label(self) -> str:
        if not self.issue_type:
            return ""
        return IssueType.parse(self.issue_type).label
