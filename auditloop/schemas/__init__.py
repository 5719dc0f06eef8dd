"""Pydantic schemas for branches, findings, batches and store summaries."""

from auditloop.schemas.audit import PipelineReport, ScanOutcome
from auditloop.schemas.batches import FileLoc, FixBatch
from auditloop.schemas.branch import Branch
from auditloop.schemas.findings import Finding, parse_findings
from auditloop.schemas.health import HealthResponse
from auditloop.schemas.issues import IssueRecord
from auditloop.schemas.remediation import CommandResult, FixRunReport, RemediationOutcome
from auditloop.schemas.summary import CheckpointOut, StoreSummary

__all__ = [
    "Branch",
    "CheckpointOut",
    "CommandResult",
    "FileLoc",
    "Finding",
    "FixBatch",
    "FixRunReport",
    "HealthResponse",
    "IssueRecord",
    "PipelineReport",
    "RemediationOutcome",
    "ScanOutcome",
    "StoreSummary",
    "parse_findings",
]
