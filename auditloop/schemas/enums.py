"""Closed enumerations shared by the ORM constraints and the pydantic schemas."""

from typing import Literal

SeverityLevel = Literal["high", "medium", "low"]
ScanStatus = Literal["running", "completed", "failed", "skipped"]
# 'superseded' marks pending issues replaced by a newer scan of the same branch and policy.
FixStatus = Literal["pending", "in_progress", "fixed", "failed", "skipped", "superseded"]
AttemptStatus = Literal["running", "success", "check_failed", "failed"]

# Tuples keep a stable order for CHECK constraints and severity sorting.
SEVERITY_VALUES: tuple[str, ...] = ("high", "medium", "low")
SCAN_STATUS_VALUES: tuple[str, ...] = ("running", "completed", "failed", "skipped")
FIX_STATUS_VALUES: tuple[str, ...] = (
    "pending",
    "in_progress",
    "fixed",
    "failed",
    "skipped",
    "superseded",
)
ATTEMPT_STATUS_VALUES: tuple[str, ...] = ("running", "success", "check_failed", "failed")

# Issues the fix cycle still has to act on. in_progress left behind by an
# interrupted run carries no liveness, so it is re-evaluated like pending.
ACTIONABLE_FIX_STATUSES: tuple[str, ...] = ("pending", "in_progress")

# Allowed fix_status moves; anything else is a backward transition.
FIX_STATUS_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"in_progress", "skipped", "superseded"}),
    "in_progress": frozenset({"in_progress", "fixed", "failed", "skipped"}),
    "fixed": frozenset(),
    "failed": frozenset(),
    "skipped": frozenset(),
    "superseded": frozenset(),
}


def check_in(column: str, values: tuple[str, ...]) -> str:
    """Render a SQL CHECK expression restricting column to values."""
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"
