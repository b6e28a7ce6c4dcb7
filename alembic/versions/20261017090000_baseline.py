"""baseline: counters, submissions, submission_attachments

Revision ID: 20261017090000
Revises:
Create Date: 2026-10-17T09:00:00Z
"""

from alembic import op
import sqlalchemy as sa

revision = "20261017090000"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "counters",
        sa.Column("name", sa.String(length=80), primary_key=True),
        sa.Column("value", sa.Integer(), nullable=False, server_default="0"),
    )

    op.create_table(
        "submissions",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("form_type", sa.Enum("STANDARD", "LOAN_ISSUE", name="formtype"), nullable=False),
        sa.Column("actionable", sa.String(length=120), nullable=False),
        sa.Column("detailed_actionable", sa.Text(), nullable=False),
        sa.Column("lsq_link", sa.String(length=500), nullable=False),
        sa.Column("urn", sa.String(length=120), nullable=False),
        sa.Column("comments", sa.Text(), nullable=False),
        sa.Column("entity", sa.String(length=40), nullable=False),
        sa.Column("issue_type", sa.String(length=60), nullable=False),
        sa.Column("sub_issue", sa.String(length=120), nullable=False),
        sa.Column("action_requested", sa.String(length=120), nullable=False),
        sa.Column("opportunity_id", sa.String(length=60), nullable=False),
        sa.Column("lsq_url", sa.String(length=500), nullable=False),
        sa.Column("report_date", sa.Date(), nullable=True),
        sa.Column("applicant_name", sa.String(length=160), nullable=False),
        sa.Column("notes", sa.Text(), nullable=False),
        sa.Column("recommended_action", sa.String(length=120), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("next_steps_json", sa.Text(), nullable=False),
        sa.Column("submitted_by", sa.String(length=40), nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_submissions_form_type", "submissions", ["form_type"])
    op.create_index("ix_submissions_urn", "submissions", ["urn"])
    op.create_index("ix_submissions_issue_type", "submissions", ["issue_type"])
    op.create_index("ix_submissions_opportunity_id", "submissions", ["opportunity_id"])
    op.create_index("ix_submissions_submitted_by", "submissions", ["submitted_by"])
    op.create_index("ix_submissions_created_at", "submissions", ["created_at"])

    op.create_table(
        "submission_attachments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("submission_id", sa.String(length=32), sa.ForeignKey("submissions.id"), nullable=False),
        sa.Column("url", sa.String(length=500), nullable=False),
        sa.Column("drive_id", sa.String(length=255), nullable=False),
        sa.Column("file_name", sa.String(length=255), nullable=False),
        sa.Column("file_size", sa.BigInteger(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_submission_attachments_submission_id", "submission_attachments", ["submission_id"])
    op.create_index("ix_submission_attachments_created_at", "submission_attachments", ["created_at"])


def downgrade() -> None:
    op.drop_table("submission_attachments")
    op.drop_table("submissions")
    op.drop_table("counters")
