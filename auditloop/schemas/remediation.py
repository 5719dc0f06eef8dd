"""Pydantic schemas for collaborator results and remediation outcomes."""

from typing import Literal

from pydantic import BaseModel, Field

from auditloop.schemas.summary import StoreSummary


class CommandResult(BaseModel):
    """Exit status and captured output of a delegated command."""

    ok: bool
    output: str = ""
    exit_code: int | None = None


class RemediationOutcome(BaseModel):
    """Result of running the retry protocol for one batch."""

    batch_label: str
    status: Literal["fixed", "failed"]
    attempts: int = Field(..., ge=1)
    issue_ids: list[int] = Field(default_factory=list)
    reverted: bool = False
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == "fixed"


class FixRunReport(BaseModel):
    """Totals for one fix cycle over all pending batches."""

    batches_total: int = 0
    batches_fixed: int = 0
    batches_failed: int = 0
    batches_skipped: int = 0
    outcomes: list[RemediationOutcome] = Field(default_factory=list)
    summary: StoreSummary | None = None
