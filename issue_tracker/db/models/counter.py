from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from issue_tracker.db.base import Base


class Counter(Base):
    """Named integer sequence; rows are created on first use and never deleted."""

    __tablename__ = "counters"

    name: Mapped[str] = mapped_column(String(80), primary_key=True)
    value: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
