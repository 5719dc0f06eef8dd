"""ORM model for audit scans: one run of one branch (or batch) against one policy label."""

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String, Text

from auditloop.models.base import Base, utcnow
from auditloop.schemas.enums import SCAN_STATUS_VALUES, check_in


class Scan(Base):
    """
    One audit run of a branch against a policy, or a pipe-joined policy set in combined mode.

    Created 'running' at audit start; finalized to completed, failed or skipped.
    """

    __tablename__ = "scans"
    __table_args__ = (
        CheckConstraint(check_in("status", SCAN_STATUS_VALUES), name="ck_scans_status"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    branch_path = Column(Text, nullable=False)
    policy = Column(Text, nullable=False, default="", index=True)
    started_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    status = Column(String(16), nullable=False, default="running")
    file_count = Column(Integer, nullable=True)
    total_loc = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)
    issue_count = Column(Integer, nullable=False, default=0)
