"""ORM model for remediation attempts, one row per attempt per batch."""

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String, Text

from auditloop.models.base import Base, utcnow
from auditloop.schemas.enums import ATTEMPT_STATUS_VALUES, check_in


class FixAttempt(Base):
    """
    One attempt at fixing one batch. Immutable once completed_at is set.

    Captured fixer and validator output is stored truncated.
    """

    __tablename__ = "fix_attempts"
    __table_args__ = (
        CheckConstraint(check_in("status", ATTEMPT_STATUS_VALUES), name="ck_fix_attempts_status"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    batch_label = Column(Text, nullable=False)
    attempt_number = Column(Integer, nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    status = Column(String(16), nullable=False, default="running")
    check_output = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)
    fixer_output = Column(Text, nullable=True)
