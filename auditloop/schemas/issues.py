"""Pydantic schema for issues read back from the store."""

from datetime import datetime

from pydantic import BaseModel, Field

from auditloop.schemas.enums import FixStatus, SeverityLevel


class IssueRecord(BaseModel):
    """A persisted issue with its linked file paths."""

    id: int = Field(..., ge=1)
    scan_id: int = Field(..., ge=1)
    description: str
    rule: str
    severity: SeverityLevel
    suggestion: str | None = None
    policy: str = ""
    fix_status: FixStatus
    fixed_at: datetime | None = None
    file_paths: list[str] = Field(default_factory=list)
