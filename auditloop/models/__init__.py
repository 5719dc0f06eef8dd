"""SQLAlchemy ORM models."""

from auditloop.models.base import Base
from auditloop.models.checkpoint import AuditCheckpoint
from auditloop.models.fix_attempt import FixAttempt
from auditloop.models.issue import Issue, issue_files
from auditloop.models.scan import Scan
from auditloop.models.source_file import SourceFile

__all__ = [
    "AuditCheckpoint",
    "Base",
    "FixAttempt",
    "Issue",
    "Scan",
    "SourceFile",
    "issue_files",
]
