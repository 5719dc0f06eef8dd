"""Pydantic schemas for store summaries and checkpoints."""

from datetime import datetime

from pydantic import BaseModel, Field


class StoreSummary(BaseModel):
    """Counts by status, always reported at the end of a run."""

    scans_by_status: dict[str, int] = Field(default_factory=dict)
    issues_by_fix_status: dict[str, int] = Field(default_factory=dict)
    issues_by_severity: dict[str, int] = Field(default_factory=dict)
    attempts_by_status: dict[str, int] = Field(default_factory=dict)

    def render(self) -> str:
        """Plain-text block for logs and terminal output."""
        lines: list[str] = []
        for title, counts in (
            ("Scans", self.scans_by_status),
            ("Issues by fix status", self.issues_by_fix_status),
            ("Issues by severity", self.issues_by_severity),
            ("Fix attempts", self.attempts_by_status),
        ):
            lines.append(f"{title}:")
            if not counts:
                lines.append("  (none)")
            for key in sorted(counts):
                lines.append(f"  {key}: {counts[key]}")
        return "\n".join(lines)


class CheckpointOut(BaseModel):
    """Last fully audited commit for one policy."""

    policy: str
    git_commit: str
    completed_at: datetime
