"""Audit workflow: run the auditor over branches and persist validated findings."""

import json
import logging
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from auditloop.schemas.audit import ScanOutcome
from auditloop.schemas.branch import Branch
from auditloop.schemas.findings import Finding, parse_findings
from auditloop.schemas.remediation import CommandResult
from auditloop.services.batching import collect_file_locs, group_batches
from auditloop.services.partition import list_branch_files
from auditloop.services.store import POLICY_SEPARATOR, StateStore

logger = logging.getLogger(__name__)


class AuditorError(Exception):
    """Raised when the auditor fails or returns output that does not validate."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class Auditor(Protocol):
    def audit(self, files: list[str], policies: list[str]) -> CommandResult: ...


def policy_label(policies: list[str]) -> str:
    """Scan label for one policy, or the '|'-joined names in combined mode."""
    return POLICY_SEPARATOR.join(policies)


def extract_json(output: str) -> str:
    """The JSON document inside auditor output, tolerating code fences and surrounding prose."""
    text = output.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        text = text.rsplit("```", 1)[0]
    text = text.strip()
    if text and text[0] in "{[":
        return text
    starts = [i for i in (text.find("{"), text.find("[")) if i >= 0]
    if not starts:
        raise AuditorError("auditor output contains no JSON document")
    start = min(starts)
    end = max(text.rfind("}"), text.rfind("]"))
    if end <= start:
        raise AuditorError("auditor output contains no complete JSON document")
    return text[start : end + 1]


def validate_findings(output: str, policies: list[str]) -> list[Finding]:
    """Parse auditor output strictly; every finding must name one of policies."""
    try:
        findings = parse_findings(extract_json(output))
    except json.JSONDecodeError as e:
        raise AuditorError(f"auditor output is not valid JSON: {e.msg}") from e
    except ValidationError as e:
        raise AuditorError(f"auditor findings failed validation: {e.error_count()} error(s): {e}") from e
    except ValueError as e:
        raise AuditorError(f"auditor findings rejected: {e!s}") from e
    unknown = sorted({f.policy for f in findings} - set(policies))
    if unknown:
        raise AuditorError(f"findings name policies outside this scan: {', '.join(unknown)}")
    return findings


def audit_branch(
    store: StateStore,
    auditor: Auditor,
    branch: Branch,
    policies: list[str],
    project_root: Path | str,
    extensions: list[str],
    excludes: list[str] | None = None,
    max_loc: int = 3000,
) -> list[ScanOutcome]:
    """
    Audit one branch against policies, recording one scan per LOC-bounded part.

    Parts of one run never supersede each other: only issues from scans
    started before this run's first scan are superseded. When the branch is
    split, each part supersedes only stale issues touching its own files, and
    the rest of the branch's stale issues (files since removed) are
    superseded once every part has completed. An auditor failure finalizes
    that scan as failed and moves on to the next part, so stale issues of its
    files stay pending.
    """
    label = policy_label(policies)
    files = list_branch_files(branch, project_root, extensions, excludes)
    if not files:
        scan_id = store.start_scan(branch.path, label, file_count=0, total_loc=0)
        store.finish_scan(scan_id, "skipped", issue_count=0)
        logger.info("Skipping %s [%s]: no matching files", branch.to_line(), label)
        return [ScanOutcome(scan_id=scan_id, branch_path=branch.path, policy=label, status="skipped")]

    parts = group_batches(collect_file_locs(files, project_root), max_loc)
    split = len(parts) > 1
    if split:
        logger.info("%s exceeds %s LOC; auditing in %d parts", branch.to_line(), max_loc, len(parts))

    outcomes: list[ScanOutcome] = []
    first_scan_id: int | None = None
    for part in parts:
        scan_id = store.start_scan(branch.path, label, file_count=len(part.files), total_loc=part.total_loc)
        if first_scan_id is None:
            first_scan_id = scan_id
        try:
            result = auditor.audit(part.files, policies)
            if not result.ok:
                raise AuditorError(f"auditor exited with code {result.exit_code}: {result.output[-500:]}")
            findings = validate_findings(result.output, policies)
        except AuditorError as e:
            logger.error("Audit failed for %s [%s]: %s", branch.to_line(), label, e.message)
            store.finish_scan(scan_id, "failed", issue_count=0, error_message=e.message[:2000])
            outcomes.append(
                ScanOutcome(
                    scan_id=scan_id,
                    branch_path=branch.path,
                    policy=label,
                    status="failed",
                    file_count=len(part.files),
                    error=e.message,
                )
            )
            continue

        issue_ids = store.record_issues(
            scan_id,
            findings,
            supersede=True,
            supersede_before=first_scan_id,
            supersede_files=part.files if split else None,
        )
        store.finish_scan(scan_id, "completed", issue_count=len(issue_ids))
        logger.info(
            "Audited %s [%s] (%s): %d issues",
            branch.to_line(),
            label,
            part.label,
            len(issue_ids),
        )
        outcomes.append(
            ScanOutcome(
                scan_id=scan_id,
                branch_path=branch.path,
                policy=label,
                status="completed",
                file_count=len(part.files),
                issue_count=len(issue_ids),
            )
        )

    if split and all(o.status == "completed" for o in outcomes):
        store.supersede_pending_issues(outcomes[-1].scan_id, before_scan_id=first_scan_id)
    return outcomes


def audit_branches(
    store: StateStore,
    auditor: Auditor,
    branches: list[Branch],
    policies: list[str],
    project_root: Path | str,
    extensions: list[str],
    excludes: list[str] | None = None,
    max_loc: int = 3000,
) -> list[ScanOutcome]:
    """Audit branches in order against one policy set; each branch is recorded before the next starts."""
    outcomes: list[ScanOutcome] = []
    for position, branch in enumerate(branches, start=1):
        logger.info("[%d/%d] %s [%s]", position, len(branches), branch.to_line(), policy_label(policies))
        outcomes.extend(
            audit_branch(store, auditor, branch, policies, project_root, extensions, excludes, max_loc)
        )
    return outcomes


def record_checkpoints(
    store: StateStore,
    policies: list[str],
    commit: str | None,
    partial: bool = False,
) -> int:
    """
    Advance the checkpoint of every policy to commit after a complete pass.

    Partial (diff-scoped) passes and trees without history record nothing.
    """
    if partial:
        logger.info("Skipping checkpoint recording (partial run)")
        return 0
    if not commit:
        logger.info("No git history; skipping checkpoint recording")
        return 0
    for policy in policies:
        store.set_checkpoint(policy, commit)
        logger.info("Checkpoint: %s -> %s", policy, commit[:8])
    return len(policies)
