"""ORM model for audit findings and their many-to-many link to files."""

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
)
from sqlalchemy.orm import relationship

from auditloop.models.base import Base, utcnow
from auditloop.schemas.enums import FIX_STATUS_VALUES, SEVERITY_VALUES, check_in

issue_files = Table(
    "issue_files",
    Base.metadata,
    Column("issue_id", Integer, ForeignKey("issues.id"), primary_key=True),
    Column("file_id", Integer, ForeignKey("files.id"), primary_key=True, index=True),
)


class Issue(Base):
    """
    One finding owned by a scan and linked to one or more files.

    fix_status only moves forward: pending -> in_progress -> fixed | failed.
    Pending rows of an older scan of the same branch and policy become 'superseded'.
    """

    __tablename__ = "issues"
    __table_args__ = (
        CheckConstraint(check_in("severity", SEVERITY_VALUES), name="ck_issues_severity"),
        CheckConstraint(check_in("fix_status", FIX_STATUS_VALUES), name="ck_issues_fix_status"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    scan_id = Column(Integer, ForeignKey("scans.id"), nullable=False, index=True)
    description = Column(Text, nullable=False)
    rule = Column(Text, nullable=False, index=True)
    severity = Column(String(16), nullable=False, index=True)
    suggestion = Column(Text, nullable=True)
    policy = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    fix_status = Column(String(16), nullable=False, default="pending", index=True)
    fixed_at = Column(DateTime(timezone=True), nullable=True)
    superseded_by_scan_id = Column(Integer, nullable=True)

    files = relationship("SourceFile", secondary=issue_files, lazy="selectin")
