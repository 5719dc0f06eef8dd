"""ORM model for per-policy audit checkpoints."""

from sqlalchemy import Column, DateTime, Text

from auditloop.models.base import Base, utcnow


class AuditCheckpoint(Base):
    """Commit at which a policy was last fully audited. At most one row per policy."""

    __tablename__ = "audit_checkpoints"

    policy = Column(Text, primary_key=True)
    git_commit = Column(Text, nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
