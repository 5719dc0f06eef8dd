"""Bounded-retry remediation: fix, validate, then commit or retry or revert, per batch."""

import logging
from pathlib import Path
from typing import Protocol

from auditloop.schemas.batches import FixBatch
from auditloop.schemas.issues import IssueRecord
from auditloop.schemas.remediation import CommandResult, FixRunReport, RemediationOutcome
from auditloop.schemas.summary import StoreSummary
from auditloop.services.batching import batch_pending_fixes
from auditloop.services.store import StateStore, StoreBusyError

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_TRUNCATE_CHARS = 4000
TRUNCATION_MARKER = "\n... [truncated]"


class Fixer(Protocol):
    def fix(self, files: list[str], issues: list[IssueRecord], policies: list[str]) -> CommandResult: ...


class Validator(Protocol):
    def validate(self) -> CommandResult: ...


class Formatter(Protocol):
    def format(self) -> CommandResult: ...


class Committer(Protocol):
    def commit(self, batch_label: str, file_count: int, issue_count: int) -> CommandResult: ...


class Reverter(Protocol):
    def revert_all(self) -> None: ...

    def untracked_files(self) -> list[str]: ...

    def remove_files(self, paths: list[str]) -> None: ...


def truncate_for_db(value: str | None, max_chars: int = DEFAULT_TRUNCATE_CHARS) -> str:
    """Bound captured output before storing it; it may echo source code."""
    if not value:
        return ""
    if len(value) <= max_chars:
        return value
    return value[:max_chars] + TRUNCATION_MARKER


class RemediationExecutor:
    """
    Runs the retry protocol for one batch at a time.

    Each attempt moves the batch's issues to in_progress and records a
    running FixAttempt, invokes the fixer, then the validator. A passing
    check is formatted, committed (unless commits are disabled) and the
    issues become fixed. A failing check is retried on the already-edited
    tree until the budget is spent. Then, unless commits are disabled, tracked
    edits are reverted and files created since the first attempt are removed.
    The issues become failed.
    """

    def __init__(
        self,
        store: StateStore,
        fixer: Fixer,
        validator: Validator,
        formatter: Formatter,
        committer: Committer,
        vcs: Reverter,
        max_retries: int = DEFAULT_MAX_RETRIES,
        skip_commits: bool = False,
        truncate_chars: int = DEFAULT_TRUNCATE_CHARS,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.store = store
        self.fixer = fixer
        self.validator = validator
        self.formatter = formatter
        self.committer = committer
        self.vcs = vcs
        self.max_retries = max_retries
        self.skip_commits = skip_commits
        self.truncate_chars = truncate_chars

    def _truncate(self, value: str | None) -> str:
        return truncate_for_db(value, self.truncate_chars)

    def _untracked_snapshot(self) -> frozenset[str]:
        if self.skip_commits:
            return frozenset()
        return frozenset(self.vcs.untracked_files())

    def _revert(self, label: str, untracked_before: frozenset[str]) -> bool:
        if self.skip_commits:
            logger.error("Skipping revert for %s (commits disabled); failed edits remain in the working tree", label)
            return False
        logger.error("Reverting working tree edits for %s", label)
        self.vcs.revert_all()
        created = sorted(set(self.vcs.untracked_files()) - untracked_before)
        if created:
            logger.error("Removing %d files created during %s", len(created), label)
            self.vcs.remove_files(created)
        return True

    def _give_up(
        self,
        label: str,
        issue_ids: list[int],
        attempt: int,
        error: str,
        untracked_before: frozenset[str],
    ) -> RemediationOutcome:
        reverted = self._revert(label, untracked_before)
        self.store.mark_issues(issue_ids, "failed")
        return RemediationOutcome(
            batch_label=label,
            status="failed",
            attempts=attempt,
            issue_ids=issue_ids,
            reverted=reverted,
            error=error,
        )

    def _complete(
        self,
        batch: FixBatch,
        issues: list[IssueRecord],
        attempt_id: int,
        attempt: int,
        untracked_before: frozenset[str],
    ) -> RemediationOutcome:
        label = batch.label
        issue_ids = [i.id for i in issues]

        formatted = self.formatter.format()
        if not formatted.ok:
            error = f"formatter failed: {self._truncate(formatted.output)}"
            logger.error("Formatter failed for %s (exit %s)", label, formatted.exit_code)
            self.store.finish_attempt(attempt_id, "failed", error_message=error)
            return self._give_up(label, issue_ids, attempt, error, untracked_before)

        if self.skip_commits:
            logger.info("Skipping commit for %s (commits disabled)", label)
        else:
            committed = self.committer.commit(label, len(batch.files), len(issues))
            if not committed.ok:
                error = f"commit failed: {self._truncate(committed.output)}"
                logger.error("Commit failed for %s (exit %s)", label, committed.exit_code)
                self.store.finish_attempt(attempt_id, "failed", error_message=error)
                return self._give_up(label, issue_ids, attempt, error, untracked_before)

        self.store.mark_issues(issue_ids, "fixed")
        self.store.finish_attempt(attempt_id, "success")
        logger.info("Fixed %s: %d issues in %d attempt(s)", label, len(issue_ids), attempt)
        return RemediationOutcome(batch_label=label, status="fixed", attempts=attempt, issue_ids=issue_ids)

    def run(self, batch: FixBatch, issues: list[IssueRecord], policies: list[str]) -> RemediationOutcome:
        """Remediate issues in batch.files. issues must be non-empty and actionable."""
        if not issues:
            raise ValueError(f"no issues to remediate for {batch.label}")
        label = batch.label
        issue_ids = [i.id for i in issues]
        logger.info("Fixing %s: %d files, %d issues", label, len(batch.files), len(issues))
        untracked_before = self._untracked_snapshot()

        for attempt in range(1, self.max_retries + 1):
            logger.info("  Attempt %d/%d for %s", attempt, self.max_retries, label)
            self.store.mark_issues(issue_ids, "in_progress")
            attempt_id = self.store.start_attempt(label, attempt)
            try:
                fixed = self.fixer.fix(batch.files, issues, policies)
            except Exception as e:
                # Leave the issues in_progress; the next run re-evaluates them.
                self.store.finish_attempt(attempt_id, "failed", error_message=f"fixer error: {e!s}")
                raise
            if not fixed.ok:
                logger.error("Fixer failed for %s: exit code %s", label, fixed.exit_code)
            self.store.record_fixer_output(attempt_id, self._truncate(fixed.output))

            checked = self.validator.validate()
            if checked.ok:
                logger.info("  Check passed for %s", label)
                return self._complete(batch, issues, attempt_id, attempt, untracked_before)

            logger.warning("Check failed for %s (attempt %d/%d)", label, attempt, self.max_retries)
            logger.debug("Check output:\n%s", checked.output)
            self.store.finish_attempt(attempt_id, "check_failed", check_output=self._truncate(checked.output))

        logger.error("All %d attempts exhausted for %s", self.max_retries, label)
        return self._give_up(
            label, issue_ids, self.max_retries, "check failed after all retries", untracked_before
        )


def run_remediation(
    batch: FixBatch,
    issues: list[IssueRecord],
    policies: list[str],
    store: StateStore,
    fixer: Fixer,
    validator: Validator,
    formatter: Formatter,
    committer: Committer,
    vcs: Reverter,
    max_retries: int = DEFAULT_MAX_RETRIES,
    skip_commits: bool = False,
) -> RemediationOutcome:
    """One-shot form of RemediationExecutor.run."""
    executor = RemediationExecutor(
        store,
        fixer,
        validator,
        formatter,
        committer,
        vcs,
        max_retries=max_retries,
        skip_commits=skip_commits,
    )
    return executor.run(batch, issues, policies)


def final_summary(store: StateStore) -> StoreSummary | None:
    """
    Read and log the store summary at the end of a run, including a failed one.

    Returns None when the store is still busy, so that an earlier exception is
    not replaced by the summary's own failure.
    """
    try:
        summary = store.summary()
    except StoreBusyError as e:
        logger.error("Could not read final summary: %s", e.message)
        return None
    logger.info("Final summary:\n%s", summary.render())
    return summary


def run_fix_cycle(
    store: StateStore,
    executor: RemediationExecutor,
    project_root: Path | str,
    max_loc: int,
    policy: str | None = None,
) -> FixRunReport:
    """
    Remediate every batch of files with actionable issues.

    Attempts left running by an interrupted run are closed first, and
    in_progress issues are picked up again. Issues are re-read per batch, so
    an issue already resolved through an earlier batch is not fixed twice.
    The store summary is logged even when a batch raises.
    """
    report = FixRunReport()
    try:
        store.abandon_running_attempts()
        batches = batch_pending_fixes(store, project_root, max_loc, policy=policy)
        report.batches_total = len(batches)

        for batch in batches:
            issues = store.actionable_issues_for_files(batch.files, policy=policy)
            if not issues:
                logger.info("Skipping %s: no actionable issues left", batch.label)
                report.batches_skipped += 1
                continue
            policies = store.policies_for_issues([i.id for i in issues])
            if not policies and policy:
                policies = [policy]
            outcome = executor.run(batch, issues, policies)
            report.outcomes.append(outcome)
            if outcome.succeeded:
                report.batches_fixed += 1
            else:
                report.batches_failed += 1
    finally:
        logger.info(
            "Fix cycle done: %d fixed, %d failed, %d skipped of %d batches",
            report.batches_fixed,
            report.batches_failed,
            report.batches_skipped,
            report.batches_total,
        )
        report.summary = final_summary(store)
    return report
