"""Tests for auditloop.services.remediation: retry protocol, revert on exhaustion, fix cycle."""

import shutil
import subprocess
import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock

from auditloop.schemas.batches import FixBatch
from auditloop.schemas.findings import Finding
from auditloop.schemas.remediation import CommandResult
from auditloop.services.remediation import (
    TRUNCATION_MARKER,
    RemediationExecutor,
    run_fix_cycle,
    run_remediation,
    truncate_for_db,
)
from auditloop.services.store import StateStore
from auditloop.services.vcs import GitRepository

OK = CommandResult(ok=True, output="ok", exit_code=0)
FAIL = CommandResult(ok=False, output="type error in src/a.ts", exit_code=1)


class FakeFixer:
    """Records calls; optionally edits files through a callback."""

    def __init__(self, edit=None, output: str = "edited") -> None:
        self.calls: list[tuple[list[str], list[int], list[str]]] = []
        self.edit = edit
        self.output = output

    def fix(self, files, issues, policies) -> CommandResult:
        self.calls.append((list(files), [i.id for i in issues], list(policies)))
        if self.edit:
            self.edit(len(self.calls))
        return CommandResult(ok=True, output=self.output, exit_code=0)


def _results(*results: CommandResult) -> MagicMock:
    mock = MagicMock()
    mock.side_effect = list(results)
    return mock


class RemediationTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.store = StateStore.from_url(f"sqlite:///{self.root / 'audit.db'}", busy_backoff_sec=0)
        self.store.init_schema()
        scan_id = self.store.start_scan("src", "naming")
        self.issue_ids = self.store.record_issues(
            scan_id,
            [
                Finding(
                    description="unclear name",
                    rule="descriptive-names",
                    severity="high",
                    suggestion="rename",
                    policy="naming",
                    files=["src/a.ts"],
                ),
                Finding(
                    description="long function",
                    rule="short-functions",
                    severity="low",
                    suggestion="split",
                    policy="naming",
                    files=["src/a.ts", "src/b.ts"],
                ),
            ],
        )
        self.batch = FixBatch(number=1, total=1, files=["src/a.ts", "src/b.ts"], total_loc=20)
        self.issues = self.store.actionable_issues_for_files(self.batch.files)
        self.validator = MagicMock()
        self.formatter = MagicMock()
        self.formatter.format.return_value = OK
        self.committer = MagicMock()
        self.committer.commit.return_value = OK
        self.vcs = MagicMock()

    def tearDown(self) -> None:
        self.store.dispose()
        self._tmp.cleanup()

    def _executor(self, fixer, max_retries: int = 3, skip_commits: bool = False, **kwargs) -> RemediationExecutor:
        return RemediationExecutor(
            self.store,
            fixer,
            self.validator,
            self.formatter,
            self.committer,
            self.vcs,
            max_retries=max_retries,
            skip_commits=skip_commits,
            **kwargs,
        )

    def _statuses(self) -> list[str]:
        return [self.store.get_issue(i).fix_status for i in self.issue_ids]

    def _attempts(self) -> list[str]:
        return [a.status for a in self.store.get_attempts(self.batch.label)]


class TestTruncateForDb(unittest.TestCase):
    def test_short_output_unchanged(self) -> None:
        self.assertEqual(truncate_for_db("abc", 10), "abc")
        self.assertEqual(truncate_for_db(None), "")

    def test_long_output_bounded(self) -> None:
        value = truncate_for_db("x" * 5000, 4000)
        self.assertEqual(value, "x" * 4000 + TRUNCATION_MARKER)


class TestRemediationExecutor(RemediationTestCase):
    def test_success_on_first_attempt(self) -> None:
        self.validator.validate.return_value = OK
        fixer = FakeFixer()
        outcome = self._executor(fixer).run(self.batch, self.issues, ["naming"])

        self.assertTrue(outcome.succeeded)
        self.assertEqual(outcome.attempts, 1)
        self.assertEqual(self._statuses(), ["fixed", "fixed"])
        self.assertEqual(self._attempts(), ["success"])
        self.formatter.format.assert_called_once()
        self.committer.commit.assert_called_once_with(self.batch.label, 2, 2)
        self.vcs.revert_all.assert_not_called()
        self.assertEqual(fixer.calls[0][2], ["naming"])
        # high severity issue is presented first
        self.assertEqual(fixer.calls[0][1], self.issue_ids)

    def test_retries_on_check_failure_then_succeeds(self) -> None:
        self.validator.validate = _results(FAIL, OK)
        fixer = FakeFixer()
        outcome = self._executor(fixer).run(self.batch, self.issues, ["naming"])

        self.assertTrue(outcome.succeeded)
        self.assertEqual(outcome.attempts, 2)
        self.assertEqual(len(fixer.calls), 2)
        self.assertEqual(fixer.calls[0][0], fixer.calls[1][0])
        self.assertEqual(self._attempts(), ["check_failed", "success"])
        first = self.store.get_attempts(self.batch.label)[0]
        self.assertEqual(first.check_output, FAIL.output)
        self.assertEqual(first.fixer_output, "edited")

    def test_exhaustion_reverts_and_fails_issues(self) -> None:
        self.validator.validate.return_value = FAIL
        outcome = self._executor(FakeFixer(), max_retries=3).run(self.batch, self.issues, ["naming"])

        self.assertFalse(outcome.succeeded)
        self.assertTrue(outcome.reverted)
        self.assertEqual(outcome.attempts, 3)
        self.assertEqual(self._attempts(), ["check_failed"] * 3)
        self.assertEqual(self._statuses(), ["failed", "failed"])
        self.vcs.revert_all.assert_called_once()
        self.committer.commit.assert_not_called()

    def test_exhaustion_removes_files_created_during_attempts(self) -> None:
        self.validator.validate.return_value = FAIL
        self.vcs.untracked_files.side_effect = [["notes.txt"], ["notes.txt", "src/new.ts"]]
        outcome = self._executor(FakeFixer(), max_retries=2).run(self.batch, self.issues, ["naming"])

        self.assertTrue(outcome.reverted)
        self.vcs.revert_all.assert_called_once()
        self.vcs.remove_files.assert_called_once_with(["src/new.ts"])

    def test_exhaustion_without_new_files_removes_nothing(self) -> None:
        self.validator.validate.return_value = FAIL
        self.vcs.untracked_files.return_value = ["notes.txt"]
        self._executor(FakeFixer(), max_retries=1).run(self.batch, self.issues, ["naming"])
        self.vcs.remove_files.assert_not_called()

    def test_skip_commits_neither_commits_nor_reverts(self) -> None:
        self.validator.validate.return_value = FAIL
        outcome = self._executor(FakeFixer(), max_retries=2, skip_commits=True).run(
            self.batch, self.issues, ["naming"]
        )
        self.assertFalse(outcome.reverted)
        self.vcs.revert_all.assert_not_called()
        self.assertEqual(self._statuses(), ["failed", "failed"])
        self.vcs.untracked_files.assert_not_called()
        self.vcs.remove_files.assert_not_called()

    def test_skip_commits_success_does_not_commit(self) -> None:
        self.validator.validate.return_value = OK
        outcome = self._executor(FakeFixer(), skip_commits=True).run(self.batch, self.issues, ["naming"])
        self.assertTrue(outcome.succeeded)
        self.committer.commit.assert_not_called()

    def test_formatter_failure_fails_batch(self) -> None:
        self.validator.validate.return_value = OK
        self.formatter.format.return_value = FAIL
        outcome = self._executor(FakeFixer()).run(self.batch, self.issues, ["naming"])
        self.assertFalse(outcome.succeeded)
        self.assertIn("formatter failed", outcome.error)
        self.assertEqual(self._attempts(), ["failed"])
        self.assertEqual(self._statuses(), ["failed", "failed"])
        self.vcs.revert_all.assert_called_once()

    def test_commit_failure_fails_batch(self) -> None:
        self.validator.validate.return_value = OK
        self.committer.commit.return_value = CommandResult(ok=False, output="hook rejected", exit_code=1)
        outcome = self._executor(FakeFixer()).run(self.batch, self.issues, ["naming"])
        self.assertFalse(outcome.succeeded)
        self.assertIn("hook rejected", outcome.error)

    def test_fixer_output_truncated(self) -> None:
        self.validator.validate.return_value = OK
        self._executor(FakeFixer(output="y" * 500), truncate_chars=100).run(self.batch, self.issues, ["naming"])
        (attempt,) = self.store.get_attempts(self.batch.label)
        self.assertEqual(attempt.fixer_output, "y" * 100 + TRUNCATION_MARKER)

    def test_fixer_exception_leaves_issues_for_reevaluation(self) -> None:
        fixer = MagicMock()
        fixer.fix.side_effect = RuntimeError("agent crashed")
        with self.assertRaises(RuntimeError):
            self._executor(fixer).run(self.batch, self.issues, ["naming"])
        self.assertEqual(self._attempts(), ["failed"])
        self.assertEqual(self._statuses(), ["in_progress", "in_progress"])

    def test_empty_issue_list_rejected(self) -> None:
        with self.assertRaises(ValueError):
            self._executor(FakeFixer()).run(self.batch, [], ["naming"])

    def test_run_remediation_function(self) -> None:
        self.validator.validate.return_value = OK
        outcome = run_remediation(
            self.batch,
            self.issues,
            ["naming"],
            self.store,
            FakeFixer(),
            self.validator,
            self.formatter,
            self.committer,
            self.vcs,
        )
        self.assertTrue(outcome.succeeded)


class TestRunFixCycle(RemediationTestCase):
    def setUp(self) -> None:
        super().setUp()
        (self.root / "src").mkdir()
        for name in ("a.ts", "b.ts"):
            (self.root / "src" / name).write_text("line\n" * 10, encoding="utf-8")

    def test_issue_fixed_in_earlier_batch_skips_later_batch(self) -> None:
        self.validator.validate.return_value = OK
        fixer = FakeFixer()
        report = run_fix_cycle(self.store, self._executor(fixer), self.root, max_loc=10)

        # a.ts and b.ts land in separate batches; both issues touch a.ts.
        self.assertEqual(report.batches_total, 2)
        self.assertEqual(report.batches_fixed, 1)
        self.assertEqual(report.batches_skipped, 1)
        self.assertEqual(len(fixer.calls), 1)
        self.assertEqual(self._statuses(), ["fixed", "fixed"])
        self.assertEqual(report.summary.issues_by_fix_status, {"fixed": 2})

    def test_interrupted_run_is_resumed(self) -> None:
        self.store.mark_issues(self.issue_ids, "in_progress")
        stale = self.store.start_attempt("batch 1/1 (src)", 1)
        self.validator.validate.return_value = OK
        report = run_fix_cycle(self.store, self._executor(FakeFixer()), self.root, max_loc=1000)

        self.assertEqual(report.batches_fixed, 1)
        self.assertEqual(self._statuses(), ["fixed", "fixed"])
        by_id = {a.id: a for a in self.store.get_attempts()}
        self.assertEqual(by_id[stale].status, "failed")

    def test_policy_filter_limits_batches(self) -> None:
        report = run_fix_cycle(self.store, self._executor(FakeFixer()), self.root, 1000, policy="logging")
        self.assertEqual(report.batches_total, 0)
        self.assertEqual(self._statuses(), ["pending", "pending"])

    def test_failed_batch_still_reports_summary(self) -> None:
        self.validator.validate.return_value = FAIL
        report = run_fix_cycle(self.store, self._executor(FakeFixer(), max_retries=1), self.root, 1000)
        self.assertEqual(report.batches_failed, 1)
        self.assertEqual(report.summary.attempts_by_status, {"check_failed": 1})

    def test_summary_logged_when_batch_raises(self) -> None:
        fixer = MagicMock()
        fixer.fix.side_effect = RuntimeError("agent crashed")
        with self.assertLogs("auditloop.services.remediation", level="INFO") as logs:
            with self.assertRaises(RuntimeError):
                run_fix_cycle(self.store, self._executor(fixer), self.root, 1000)
        output = "\n".join(logs.output)
        self.assertIn("Fix cycle done", output)
        self.assertIn("Final summary", output)
        self.assertEqual([a.status for a in self.store.get_attempts()], ["failed"])


@unittest.skipUnless(shutil.which("git"), "git not available")
class TestRevertOnExhaustionWithGit(RemediationTestCase):
    def _git(self, *args: str) -> None:
        subprocess.run(["git", *args], cwd=self.root, check=True, capture_output=True)

    def test_edits_from_all_attempts_are_reverted(self) -> None:
        (self.root / "src").mkdir()
        original = {"a.ts": "const a = 1;\n", "b.ts": "const b = 2;\n"}
        for name, content in original.items():
            (self.root / "src" / name).write_text(content, encoding="utf-8")
        self._git("init", "-q")
        self._git("add", "src")
        self._git("-c", "user.name=Test", "-c", "user.email=test@example.com", "commit", "-q", "-m", "init")
        (self.root / "notes.txt").write_text("scratch\n", encoding="utf-8")

        def edit(attempt: int) -> None:
            for name in original:
                path = self.root / "src" / name
                path.write_text(path.read_text(encoding="utf-8") + f"// attempt {attempt}\n", encoding="utf-8")
            (self.root / "src" / "helper.ts").write_text(f"// helper {attempt}\n", encoding="utf-8")

        self.validator.validate.return_value = FAIL
        repo = GitRepository(self.root, excludes=["audit.db*"])
        executor = RemediationExecutor(
            self.store,
            FakeFixer(edit=edit),
            self.validator,
            self.formatter,
            self.committer,
            repo,
            max_retries=3,
        )
        outcome = executor.run(self.batch, self.issues, ["naming"])

        self.assertTrue(outcome.reverted)
        for name, content in original.items():
            self.assertEqual((self.root / "src" / name).read_text(encoding="utf-8"), content)
        self.assertEqual(self._statuses(), ["failed", "failed"])
        self.assertFalse((self.root / "src" / "helper.ts").exists())
        self.assertTrue((self.root / "notes.txt").exists())
        self.assertEqual(repo.untracked_files(), ["notes.txt"])
        self.assertFalse(repo.is_dirty())


if __name__ == "__main__":
    unittest.main()
