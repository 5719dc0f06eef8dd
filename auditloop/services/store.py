"""Durable audit state: scans, issues, checkpoints and fix attempts in SQLite."""

import functools
import logging
import time
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, TypeVar

from sqlalchemy import case, func, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from auditloop.core.database import create_sqlite_engine, init_database, make_session_factory
from auditloop.models import AuditCheckpoint, FixAttempt, Issue, Scan, SourceFile, issue_files
from auditloop.models.base import utcnow
from auditloop.schemas.enums import (
    ACTIONABLE_FIX_STATUSES,
    ATTEMPT_STATUS_VALUES,
    FIX_STATUS_TRANSITIONS,
    FIX_STATUS_VALUES,
    SCAN_STATUS_VALUES,
    SEVERITY_VALUES,
)
from auditloop.schemas.findings import Finding
from auditloop.schemas.issues import IssueRecord
from auditloop.schemas.summary import CheckpointOut, StoreSummary

if TYPE_CHECKING:
    from auditloop.core.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

POLICY_SEPARATOR = "|"
DEFAULT_BUSY_BACKOFF_SEC = 0.2
INTERRUPTED_MESSAGE = "interrupted: attempt never completed"

_SEVERITY_RANK = {severity: rank for rank, severity in enumerate(SEVERITY_VALUES, start=1)}


class StoreBusyError(Exception):
    """Raised when the store stays locked past its busy timeout and bounded retries. Retryable."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidStatusError(ValueError):
    """Raised on a write outside a closed enumeration or an illegal fix_status transition."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


def split_policy_label(label: str) -> list[str]:
    """Policies named by a scan label; combined mode joins them with '|'."""
    return [p for p in (part.strip() for part in label.split(POLICY_SEPARATOR)) if p]


def _is_busy(exc: OperationalError) -> bool:
    message = str(exc.orig if exc.orig is not None else exc).lower()
    return "database is locked" in message or "database is busy" in message


def _retry_on_busy(method: Callable[..., T]) -> Callable[..., T]:
    """Retry a store operation with exponential backoff while SQLite reports it is locked."""

    @functools.wraps(method)
    def wrapper(self: "StateStore", *args, **kwargs) -> T:
        delay = self.busy_backoff_sec
        for attempt in range(self.busy_retries + 1):
            try:
                return method(self, *args, **kwargs)
            except OperationalError as e:
                if not _is_busy(e):
                    raise
                if attempt >= self.busy_retries:
                    raise StoreBusyError(
                        f"Audit store still locked after {attempt + 1} tries ({method.__name__}); re-run later."
                    ) from e
                logger.warning(
                    "Audit store busy during %s (try %d/%d); retrying in %.1fs",
                    method.__name__,
                    attempt + 1,
                    self.busy_retries + 1,
                    delay,
                )
                time.sleep(delay)
                delay *= 2
        raise AssertionError("unreachable")

    return wrapper


def _require(value: str, allowed: Iterable[str], field: str) -> None:
    allowed = tuple(allowed)
    if value not in allowed:
        raise InvalidStatusError(f"{field} must be one of {list(allowed)}, got {value!r}")


def _to_record(issue: Issue) -> IssueRecord:
    return IssueRecord(
        id=issue.id,
        scan_id=issue.scan_id,
        description=issue.description,
        rule=issue.rule,
        severity=issue.severity,
        suggestion=issue.suggestion,
        policy=issue.policy or "",
        fix_status=issue.fix_status,
        fixed_at=issue.fixed_at,
        file_paths=sorted(f.path for f in issue.files),
    )


class StateStore:
    """
    The only writer of audit state.

    Every public operation runs in its own immediate transaction and is
    retried with backoff when the database is locked by another process.
    """

    def __init__(
        self,
        engine: Engine,
        busy_retries: int = 3,
        busy_backoff_sec: float = DEFAULT_BUSY_BACKOFF_SEC,
        lock_timeout_sec: float = 10.0,
    ) -> None:
        self.engine = engine
        self.busy_retries = busy_retries
        self.busy_backoff_sec = busy_backoff_sec
        self.lock_timeout_sec = lock_timeout_sec
        self._session_factory = make_session_factory(engine)

    @classmethod
    def from_url(cls, url: str, busy_timeout_sec: float = 5.0, **kwargs) -> "StateStore":
        return cls(create_sqlite_engine(url, busy_timeout_sec=busy_timeout_sec), **kwargs)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "StateStore":
        return cls.from_url(
            settings.database_url,
            busy_timeout_sec=settings.DB_BUSY_TIMEOUT_SEC,
            busy_retries=settings.DB_BUSY_RETRIES,
            lock_timeout_sec=settings.INIT_LOCK_TIMEOUT_SEC,
        )

    @_retry_on_busy
    def init_schema(self) -> None:
        """Create or migrate the schema. Safe to call any number of times."""
        init_database(self.engine, lock_timeout_sec=self.lock_timeout_sec)

    def session(self) -> Session:
        """A new session for read-only callers such as the status API."""
        return self._session_factory()

    def dispose(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Scans
    # ------------------------------------------------------------------

    @_retry_on_busy
    def start_scan(
        self,
        branch_path: str,
        policy: str,
        file_count: int | None = None,
        total_loc: int | None = None,
    ) -> int:
        """Insert a 'running' scan and return its id."""
        with self._session_factory.begin() as session:
            scan = Scan(
                branch_path=branch_path,
                policy=policy,
                status="running",
                file_count=file_count,
                total_loc=total_loc,
            )
            session.add(scan)
            session.flush()
            return scan.id

    @_retry_on_busy
    def finish_scan(
        self,
        scan_id: int,
        status: str,
        issue_count: int | None = None,
        error_message: str | None = None,
    ) -> None:
        """Finalize a running scan as completed, failed or skipped."""
        _require(status, [s for s in SCAN_STATUS_VALUES if s != "running"], "scan status")
        with self._session_factory.begin() as session:
            scan = session.get(Scan, scan_id)
            if scan is None:
                raise ValueError(f"scan {scan_id} does not exist")
            if scan.status != "running":
                raise InvalidStatusError(f"scan {scan_id} is already {scan.status}")
            scan.status = status
            scan.completed_at = utcnow()
            if issue_count is not None:
                scan.issue_count = issue_count
            if error_message is not None:
                scan.error_message = error_message

    @_retry_on_busy
    def get_scan(self, scan_id: int) -> Scan | None:
        with self._session_factory() as session:
            return session.get(Scan, scan_id)

    # ------------------------------------------------------------------
    # Issues
    # ------------------------------------------------------------------

    def _supersede(
        self,
        session: Session,
        branch_path: str,
        policy_label: str,
        before_scan_id: int,
        superseding_scan_id: int,
        files: list[str] | None = None,
    ) -> int:
        policies = split_policy_label(policy_label)
        prior_scans = select(Scan.id).where(
            Scan.branch_path == branch_path,
            Scan.id < before_scan_id,
        )
        stmt = select(Issue.id).join(Scan, Issue.scan_id == Scan.id).where(
            Issue.fix_status == "pending",
            Issue.scan_id.in_(prior_scans),
            # Issues written before per-issue policies existed fall back to the scan label.
            (Issue.policy.in_(policies)) | ((Issue.policy == "") & (Scan.policy == policy_label)),
        )
        if files is not None:
            touching = (
                select(issue_files.c.issue_id)
                .join(SourceFile, SourceFile.id == issue_files.c.file_id)
                .where(SourceFile.path.in_(files))
            )
            stmt = stmt.where(Issue.id.in_(touching))
        stale_ids = list(session.execute(stmt).scalars())
        if not stale_ids:
            return 0
        session.execute(
            update(Issue)
            .where(Issue.id.in_(stale_ids), Issue.fix_status == "pending")
            .values(fix_status="superseded", superseded_by_scan_id=superseding_scan_id)
            .execution_options(synchronize_session=False)
        )
        logger.info(
            "Superseded %d pending issues from earlier scans of %s [%s]",
            len(stale_ids),
            branch_path,
            policy_label,
        )
        return len(stale_ids)

    @_retry_on_busy
    def supersede_pending_issues(self, scan_id: int, before_scan_id: int | None = None) -> int:
        """
        Mark pending issues from earlier scans of the scan's branch and policies as superseded.

        Only scans with id < before_scan_id (default: scan_id) are touched, so
        issues of the current scan, or of sibling batches started after
        before_scan_id, are never superseded.
        """
        with self._session_factory.begin() as session:
            scan = session.get(Scan, scan_id)
            if scan is None:
                raise ValueError(f"scan {scan_id} does not exist")
            return self._supersede(
                session, scan.branch_path, scan.policy, before_scan_id or scan_id, scan_id
            )

    def _file_rows(self, session: Session, paths: set[str]) -> dict[str, SourceFile]:
        if not paths:
            return {}
        session.execute(
            sqlite_insert(SourceFile)
            .values([{"path": p} for p in sorted(paths)])
            .on_conflict_do_nothing(index_elements=["path"])
        )
        rows = session.execute(select(SourceFile).where(SourceFile.path.in_(paths))).scalars()
        return {row.path: row for row in rows}

    @_retry_on_busy
    def record_issues(
        self,
        scan_id: int,
        findings: list[Finding],
        supersede: bool = True,
        supersede_before: int | None = None,
        supersede_files: list[str] | None = None,
    ) -> list[int]:
        """
        Persist findings for a scan and return the new issue ids.

        Supersession of stale pending issues and the insert happen in one
        transaction, so old and new pending rows never coexist. With
        supersede_files, only stale issues touching one of those files are
        superseded (a scan covering part of a branch).
        """
        with self._session_factory.begin() as session:
            scan = session.get(Scan, scan_id)
            if scan is None:
                raise ValueError(f"scan {scan_id} does not exist")
            allowed_policies = set(split_policy_label(scan.policy))
            for finding in findings:
                _require(finding.severity, SEVERITY_VALUES, "severity")
                if allowed_policies and finding.policy not in allowed_policies:
                    raise InvalidStatusError(
                        f"finding policy {finding.policy!r} is not part of scan policy {scan.policy!r}"
                    )
            if supersede:
                self._supersede(
                    session,
                    scan.branch_path,
                    scan.policy,
                    supersede_before or scan_id,
                    scan_id,
                    files=supersede_files,
                )
            files = self._file_rows(session, {p for f in findings for p in f.files})
            ids: list[int] = []
            for finding in findings:
                issue = Issue(
                    scan_id=scan_id,
                    description=finding.description,
                    rule=finding.rule,
                    severity=finding.severity,
                    suggestion=finding.suggestion,
                    policy=finding.policy,
                    fix_status="pending",
                )
                issue.files = [files[p] for p in finding.files]
                session.add(issue)
                session.flush()
                ids.append(issue.id)
            return ids

    @_retry_on_busy
    def get_issue(self, issue_id: int) -> IssueRecord | None:
        with self._session_factory() as session:
            issue = session.get(Issue, issue_id)
            return _to_record(issue) if issue else None

    @_retry_on_busy
    def list_issues(
        self,
        fix_status: str | None = None,
        severity: str | None = None,
        policy: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[IssueRecord]:
        stmt = select(Issue).order_by(Issue.id)
        if fix_status:
            _require(fix_status, FIX_STATUS_VALUES, "fix_status")
            stmt = stmt.where(Issue.fix_status == fix_status)
        if severity:
            _require(severity, SEVERITY_VALUES, "severity")
            stmt = stmt.where(Issue.severity == severity)
        if policy:
            stmt = stmt.where(Issue.policy == policy)
        with self._session_factory() as session:
            rows = session.execute(stmt.limit(limit).offset(offset)).scalars().all()
            return [_to_record(issue) for issue in rows]

    @staticmethod
    def _actionable(stmt, policy: str | None):
        stmt = stmt.where(Issue.fix_status.in_(ACTIONABLE_FIX_STATUSES))
        if policy:
            stmt = stmt.where(Issue.policy == policy)
        return stmt

    @_retry_on_busy
    def pending_fix_files(self, policy: str | None = None) -> list[str]:
        """Distinct paths referenced by actionable issues, sorted by path."""
        stmt = (
            select(SourceFile.path)
            .join(issue_files, issue_files.c.file_id == SourceFile.id)
            .join(Issue, Issue.id == issue_files.c.issue_id)
            .distinct()
            .order_by(SourceFile.path)
        )
        with self._session_factory() as session:
            return list(session.execute(self._actionable(stmt, policy)).scalars())

    @_retry_on_busy
    def count_actionable_issues(self, policy: str | None = None) -> int:
        stmt = self._actionable(select(func.count(Issue.id)), policy)
        with self._session_factory() as session:
            return session.execute(stmt).scalar_one()

    @_retry_on_busy
    def actionable_issues_for_files(
        self, paths: list[str], policy: str | None = None
    ) -> list[IssueRecord]:
        """Actionable issues touching any of paths, ordered high > medium > low, then id."""
        if not paths:
            return []
        touching = (
            select(issue_files.c.issue_id)
            .join(SourceFile, SourceFile.id == issue_files.c.file_id)
            .where(SourceFile.path.in_(paths))
        )
        stmt = self._actionable(select(Issue).where(Issue.id.in_(touching)), policy).order_by(
            case(_SEVERITY_RANK, value=Issue.severity), Issue.id
        )
        with self._session_factory() as session:
            return [_to_record(issue) for issue in session.execute(stmt).scalars().all()]

    @_retry_on_busy
    def policies_for_issues(self, issue_ids: list[int]) -> list[str]:
        """Distinct, non-empty policies the given issues came from, sorted."""
        if not issue_ids:
            return []
        stmt = (
            select(Issue.policy)
            .where(Issue.id.in_(issue_ids), Issue.policy != "")
            .distinct()
            .order_by(Issue.policy)
        )
        with self._session_factory() as session:
            return list(session.execute(stmt).scalars())

    @_retry_on_busy
    def mark_issues(self, issue_ids: list[int], status: str) -> int:
        """
        Move issues to status, enforcing forward-only transitions.

        Raises InvalidStatusError (and writes nothing) if any issue would move backward.
        """
        _require(status, FIX_STATUS_VALUES, "fix_status")
        if not issue_ids:
            return 0
        allowed_from = [s for s, targets in FIX_STATUS_TRANSITIONS.items() if status in targets]
        with self._session_factory.begin() as session:
            current = session.execute(
                select(Issue.id, Issue.fix_status).where(Issue.id.in_(issue_ids))
            ).all()
            illegal = [f"{row.id}:{row.fix_status}" for row in current if row.fix_status not in allowed_from]
            if illegal:
                raise InvalidStatusError(
                    f"cannot move issues to {status!r}: {', '.join(illegal)}"
                )
            values: dict[str, object] = {"fix_status": status}
            if status == "fixed":
                values["fixed_at"] = utcnow()
            result = session.execute(
                update(Issue)
                .where(Issue.id.in_(issue_ids))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount

    def skip_issues(self, issue_ids: list[int]) -> int:
        """Administrative skip: the issue will not be remediated."""
        return self.mark_issues(issue_ids, "skipped")

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    @_retry_on_busy
    def set_checkpoint(self, policy: str, git_commit: str) -> None:
        """Record that policy was fully audited at git_commit (one row per policy)."""
        if not policy or not git_commit:
            raise ValueError("policy and git_commit must be non-empty")
        now = utcnow()
        stmt = sqlite_insert(AuditCheckpoint).values(
            policy=policy, git_commit=git_commit, completed_at=now
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["policy"],
            set_={"git_commit": git_commit, "completed_at": now},
        )
        with self._session_factory.begin() as session:
            session.execute(stmt)

    @_retry_on_busy
    def get_checkpoints(self) -> list[CheckpointOut]:
        with self._session_factory() as session:
            rows = session.execute(
                select(AuditCheckpoint).order_by(AuditCheckpoint.policy)
            ).scalars()
            return [
                CheckpointOut(policy=r.policy, git_commit=r.git_commit, completed_at=r.completed_at)
                for r in rows
            ]

    def oldest_checkpoint(self, policies: list[str] | None = None) -> str | None:
        """
        Commit of the oldest checkpoint across policies (all recorded ones if None).

        Returns None when a requested policy has never been checkpointed,
        since that policy has not seen any file yet.
        """
        checkpoints = self.get_checkpoints()
        if policies:
            recorded = {c.policy for c in checkpoints}
            missing = sorted(set(policies) - recorded)
            if missing:
                logger.info("No checkpoint for policies: %s", ", ".join(missing))
                return None
            checkpoints = [c for c in checkpoints if c.policy in policies]
        if not checkpoints:
            return None
        return min(checkpoints, key=lambda c: c.completed_at).git_commit

    # ------------------------------------------------------------------
    # Fix attempts
    # ------------------------------------------------------------------

    @_retry_on_busy
    def start_attempt(self, batch_label: str, attempt_number: int) -> int:
        with self._session_factory.begin() as session:
            attempt = FixAttempt(
                batch_label=batch_label,
                attempt_number=attempt_number,
                status="running",
            )
            session.add(attempt)
            session.flush()
            return attempt.id

    @_retry_on_busy
    def record_fixer_output(self, attempt_id: int, output: str) -> None:
        with self._session_factory.begin() as session:
            session.execute(
                update(FixAttempt)
                .where(FixAttempt.id == attempt_id, FixAttempt.completed_at.is_(None))
                .values(fixer_output=output)
            )

    @_retry_on_busy
    def finish_attempt(
        self,
        attempt_id: int,
        status: str,
        check_output: str | None = None,
        error_message: str | None = None,
    ) -> bool:
        """Complete a running attempt. Returns False if it was already completed."""
        _require(status, [s for s in ATTEMPT_STATUS_VALUES if s != "running"], "attempt status")
        values: dict[str, object] = {"status": status, "completed_at": utcnow()}
        if check_output is not None:
            values["check_output"] = check_output
        if error_message is not None:
            values["error_message"] = error_message
        with self._session_factory.begin() as session:
            result = session.execute(
                update(FixAttempt)
                .where(FixAttempt.id == attempt_id, FixAttempt.completed_at.is_(None))
                .values(**values)
            )
            return result.rowcount == 1

    @_retry_on_busy
    def get_attempts(self, batch_label: str | None = None) -> list[FixAttempt]:
        stmt = select(FixAttempt).order_by(FixAttempt.id)
        if batch_label is not None:
            stmt = stmt.where(FixAttempt.batch_label == batch_label)
        with self._session_factory() as session:
            return list(session.execute(stmt).scalars().all())

    @_retry_on_busy
    def abandon_running_attempts(self) -> int:
        """Close attempts left 'running' by an interrupted process as failed."""
        with self._session_factory.begin() as session:
            result = session.execute(
                update(FixAttempt)
                .where(FixAttempt.status == "running", FixAttempt.completed_at.is_(None))
                .values(status="failed", completed_at=utcnow(), error_message=INTERRUPTED_MESSAGE)
            )
        if result.rowcount:
            logger.warning("Closed %d fix attempts left running by an earlier run", result.rowcount)
        return result.rowcount

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    @_retry_on_busy
    def summary(self) -> StoreSummary:
        """Counts of scans, issues and attempts by status."""

        def counts(session: Session, column) -> dict[str, int]:
            rows = session.execute(select(column, func.count()).group_by(column)).all()
            return {str(key): count for key, count in rows}

        with self._session_factory() as session:
            return StoreSummary(
                scans_by_status=counts(session, Scan.status),
                issues_by_fix_status=counts(session, Issue.fix_status),
                issues_by_severity=counts(session, Issue.severity),
                attempts_by_status=counts(session, FixAttempt.status),
            )
