"""Full pipeline: partition, select, audit each policy, fix, then checkpoint."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Literal

from auditloop.schemas.audit import PipelineReport
from auditloop.schemas.branch import Branch
from auditloop.services.audit import Auditor, audit_branches, policy_label, record_checkpoints
from auditloop.services.branch_index import BranchIndex
from auditloop.services.partition import generate_partition, read_branch_list, write_branch_list
from auditloop.services.policies import PolicyNotFoundError, discover_policies
from auditloop.services.remediation import RemediationExecutor, final_summary, run_fix_cycle
from auditloop.services.selector import select_incremental, select_since
from auditloop.services.store import StateStore, split_policy_label
from auditloop.services.vcs import GitRepository

if TYPE_CHECKING:
    from auditloop.core.config import Settings

logger = logging.getLogger(__name__)

PipelineMode = Literal["full", "incremental", "diff"]
PIPELINE_MODES = ("full", "incremental", "diff")


def regenerate_branches(settings: Settings) -> list[Branch]:
    """Partition the configured roots and atomically replace the branch list."""
    branches = generate_partition(
        settings.start_dirs,
        settings.extensions,
        settings.MAX_LOC,
        excludes=settings.exclude_paths,
        project_root=settings.project_root,
    )
    write_branch_list(settings.branches_file, branches)
    logger.info("Wrote %d branches to %s", len(branches), settings.branches_file)
    return branches


def _select(
    mode: PipelineMode,
    store: StateStore,
    index: BranchIndex,
    vcs: GitRepository,
    settings: Settings,
    policies: list[str],
    since: str | None,
) -> list[Branch]:
    if mode == "full":
        return list(index.branches)
    if mode == "diff":
        return select_since(since, index, vcs, settings.extensions, settings.exclude_paths)
    return select_incremental(
        store, index, vcs, settings.extensions, settings.exclude_paths, policies=policies
    )


def run_pipeline(
    settings: Settings,
    store: StateStore,
    vcs: GitRepository,
    auditor: Auditor,
    executor: RemediationExecutor | None,
    mode: PipelineMode = "incremental",
    combined: bool = False,
    diff_ref: str | None = None,
) -> PipelineReport:
    """
    Run one pass of the audit-then-fix loop.

    Non-diff modes regenerate the branch list first; diff mode reuses the
    existing list and audits only branches changed since diff_ref (default
    HEAD). HEAD is captured before any work so that checkpoints name the
    commit that was actually audited. Checkpoints are never recorded in diff
    mode, nor for a policy whose scans did not all succeed.
    """
    if mode not in PIPELINE_MODES:
        raise ValueError(f"mode must be one of {list(PIPELINE_MODES)}, got {mode!r}")
    policies = discover_policies(settings.policies_dir)
    if not policies:
        raise PolicyNotFoundError(f"No policies found in {settings.policies_dir} (expected <name>/POLICY.md)")

    if mode == "diff":
        branches = read_branch_list(settings.branches_file)
    else:
        branches = regenerate_branches(settings)
    index = BranchIndex(branches)
    head = vcs.current_commit()
    report = PipelineReport(mode=mode, branches_total=len(branches))
    logger.info("Pipeline mode=%s policies=%s combined=%s", mode, ", ".join(policies), combined)

    try:
        groups = [policies] if combined else [[p] for p in policies]
        for group in groups:
            selected = _select(mode, store, index, vcs, settings, group, diff_ref or head)
            logger.info("Auditing %d of %d branches for %s", len(selected), len(branches), policy_label(group))
            report.scans.extend(
                audit_branches(
                    store,
                    auditor,
                    selected,
                    group,
                    settings.project_root,
                    settings.extensions,
                    settings.exclude_paths,
                    settings.MAX_LOC,
                )
            )

        if executor is not None:
            report.fix_report = run_fix_cycle(store, executor, settings.project_root, settings.MAX_FIX_LOC)

        incomplete = {p for scan in report.failed_scans for p in split_policy_label(scan.policy)}
        if incomplete and mode != "diff":
            logger.warning(
                "Not advancing checkpoints for policies with failed scans: %s",
                ", ".join(sorted(incomplete)),
            )
        report.checkpoints_recorded = record_checkpoints(
            store,
            [p for p in policies if p not in incomplete],
            head,
            partial=mode == "diff",
        )
    finally:
        report.summary = final_summary(store)
    return report
