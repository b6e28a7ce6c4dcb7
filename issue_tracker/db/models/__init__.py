# Import all models so SQLAlchemy metadata is fully populated on startup.
from issue_tracker.db.models.counter import Counter
from issue_tracker.db.models.submission import Submission, FormType
from issue_tracker.db.models.attachment import SubmissionAttachment


__all__ = [
    "Counter",
    "Submission",
    "FormType",
    "SubmissionAttachment",
]
