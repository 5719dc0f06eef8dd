"""Pydantic schemas for audit workflow results."""

from pydantic import BaseModel, Field

from auditloop.schemas.enums import ScanStatus
from auditloop.schemas.remediation import FixRunReport
from auditloop.schemas.summary import StoreSummary


class ScanOutcome(BaseModel):
    """Final state of one scan (one branch, or one LOC-bounded part of it)."""

    scan_id: int = Field(..., ge=1)
    branch_path: str
    policy: str = Field(..., description="Policy label; combined runs join names with '|'.")
    status: ScanStatus
    file_count: int = Field(default=0, ge=0)
    issue_count: int = Field(default=0, ge=0)
    error: str | None = None


class PipelineReport(BaseModel):
    """What one pipeline invocation audited, fixed and checkpointed."""

    mode: str
    branches_total: int = 0
    scans: list[ScanOutcome] = Field(default_factory=list)
    fix_report: FixRunReport | None = None
    checkpoints_recorded: int = 0
    summary: StoreSummary | None = None

    @property
    def failed_scans(self) -> list[ScanOutcome]:
        return [s for s in self.scans if s.status == "failed"]
