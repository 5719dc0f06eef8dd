"""Tests for auditloop.services.audit: output parsing, per-branch scans, checkpoints."""

import json
import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock

from auditloop.schemas.branch import Branch
from auditloop.schemas.remediation import CommandResult
from auditloop.services.audit import (
    AuditorError,
    audit_branch,
    audit_branches,
    extract_json,
    policy_label,
    record_checkpoints,
    validate_findings,
)
from auditloop.services.store import StateStore


def _finding(path: str, policy: str = "naming", rule: str = "descriptive-names") -> dict:
    return {
        "description": f"unclear names in {path}",
        "rule": rule,
        "severity": "medium",
        "suggestion": "rename",
        "policy": policy,
        "files": [path],
    }


def _output(*findings: dict) -> CommandResult:
    return CommandResult(ok=True, output=json.dumps({"findings": list(findings)}), exit_code=0)


class TestExtractJson(unittest.TestCase):
    def test_plain_document(self) -> None:
        self.assertEqual(extract_json('  {"findings": []}\n'), '{"findings": []}')

    def test_code_fence(self) -> None:
        self.assertEqual(extract_json('```json\n[{"a": 1}]\n```'), '[{"a": 1}]')

    def test_surrounding_prose(self) -> None:
        self.assertEqual(
            extract_json('Here you go:\n{"findings": []}\nLet me know.'),
            '{"findings": []}',
        )

    def test_no_json(self) -> None:
        with self.assertRaises(AuditorError):
            extract_json("no issues found")
        with self.assertRaises(AuditorError):
            extract_json("")


class TestValidateFindings(unittest.TestCase):
    def test_valid_array_and_object(self) -> None:
        payload = json.dumps([_finding("src/a.ts")])
        self.assertEqual(len(validate_findings(payload, ["naming"])), 1)
        self.assertEqual(validate_findings('{"findings": []}', ["naming"]), [])

    def test_invalid_json(self) -> None:
        with self.assertRaises(AuditorError) as ctx:
            validate_findings('{"findings": [}', ["naming"])
        self.assertIn("not valid JSON", ctx.exception.message)

    def test_schema_violation(self) -> None:
        bad = _finding("src/a.ts")
        bad["severity"] = "critical"
        with self.assertRaises(AuditorError) as ctx:
            validate_findings(json.dumps([bad]), ["naming"])
        self.assertIn("failed validation", ctx.exception.message)

    def test_unexpected_top_level_keys(self) -> None:
        with self.assertRaises(AuditorError):
            validate_findings('{"findings": [], "notes": "x"}', ["naming"])

    def test_policy_outside_scan(self) -> None:
        with self.assertRaises(AuditorError) as ctx:
            validate_findings(json.dumps([_finding("src/a.ts", policy="logging")]), ["naming"])
        self.assertIn("logging", ctx.exception.message)


class AuditStoreTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        for name in ("a.ts", "b.ts"):
            path = self.root / "src" / "lib" / name
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text("x\n" * 5, encoding="utf-8")
        (self.root / "src" / "empty").mkdir()
        self.store = StateStore.from_url(f"sqlite:///{self.root / 'audit.db'}", busy_backoff_sec=0)
        self.store.init_schema()
        self.branch = Branch(path="src/lib")
        self.auditor = MagicMock()

    def tearDown(self) -> None:
        self.store.dispose()
        self._tmp.cleanup()

    def _audit(self, policies=None, max_loc: int = 3000, branch: Branch | None = None):
        return audit_branch(
            self.store,
            self.auditor,
            branch or self.branch,
            policies or ["naming"],
            self.root,
            ["ts"],
            max_loc=max_loc,
        )


class TestAuditBranch(AuditStoreTestCase):
    def test_completed_scan_records_issues(self) -> None:
        self.auditor.audit.return_value = _output(_finding("src/lib/a.ts"), _finding("./src/lib/b.ts"))
        (outcome,) = self._audit()

        self.assertEqual(outcome.status, "completed")
        self.assertEqual(outcome.issue_count, 2)
        self.assertEqual(outcome.file_count, 2)
        self.auditor.audit.assert_called_once_with(["src/lib/a.ts", "src/lib/b.ts"], ["naming"])
        scan = self.store.get_scan(outcome.scan_id)
        self.assertEqual(scan.status, "completed")
        self.assertEqual(scan.total_loc, 10)
        self.assertEqual(self.store.pending_fix_files(), ["src/lib/a.ts", "src/lib/b.ts"])

    def test_empty_branch_is_skipped(self) -> None:
        (outcome,) = self._audit(branch=Branch(path="src/empty"))
        self.assertEqual(outcome.status, "skipped")
        self.auditor.audit.assert_not_called()
        self.assertEqual(self.store.get_scan(outcome.scan_id).status, "skipped")

    def test_auditor_failure_marks_scan_failed(self) -> None:
        self.auditor.audit.return_value = CommandResult(ok=False, output="rate limited", exit_code=2)
        (outcome,) = self._audit()
        self.assertEqual(outcome.status, "failed")
        self.assertIn("rate limited", outcome.error)
        scan = self.store.get_scan(outcome.scan_id)
        self.assertEqual(scan.status, "failed")
        self.assertEqual(self.store.count_actionable_issues(), 0)

    def test_invalid_output_persists_nothing(self) -> None:
        self.auditor.audit.return_value = CommandResult(ok=True, output="I found some issues!", exit_code=0)
        (outcome,) = self._audit()
        self.assertEqual(outcome.status, "failed")
        self.assertEqual(self.store.list_issues(), [])

    def test_oversized_branch_audited_in_parts_without_self_supersession(self) -> None:
        self.auditor.audit.side_effect = [
            _output(_finding("src/lib/a.ts")),
            _output(_finding("src/lib/b.ts")),
        ]
        outcomes = self._audit(max_loc=5)
        self.assertEqual([o.status for o in outcomes], ["completed", "completed"])
        self.assertEqual(self.auditor.audit.call_count, 2)
        self.assertEqual(
            [i.fix_status for i in self.store.list_issues()],
            ["pending", "pending"],
        )

    def test_rescan_supersedes_previous_pending_issues(self) -> None:
        self.auditor.audit.return_value = _output(_finding("src/lib/a.ts"))
        self._audit()
        self.auditor.audit.return_value = _output(_finding("src/lib/b.ts"))
        (second,) = self._audit()

        first_issue, second_issue = self.store.list_issues()
        self.assertEqual(first_issue.fix_status, "superseded")
        self.assertEqual(second_issue.fix_status, "pending")
        self.assertEqual(second_issue.scan_id, second.scan_id)

    def test_failed_part_keeps_stale_issues_of_its_files(self) -> None:
        self.auditor.audit.side_effect = [
            _output(_finding("src/lib/a.ts")),
            _output(_finding("src/lib/b.ts")),
        ]
        self._audit(max_loc=5)
        self.auditor.audit.side_effect = [
            _output(),
            CommandResult(ok=False, output="overloaded", exit_code=1),
        ]
        outcomes = self._audit(max_loc=5)

        self.assertEqual([o.status for o in outcomes], ["completed", "failed"])
        a_issue, b_issue = self.store.list_issues()
        self.assertEqual(a_issue.fix_status, "superseded")
        self.assertEqual(b_issue.fix_status, "pending")
        self.assertEqual(self.store.pending_fix_files(), ["src/lib/b.ts"])

    def test_completed_split_run_sweeps_issues_of_removed_files(self) -> None:
        self.auditor.audit.side_effect = [
            _output(_finding("src/lib/a.ts"), _finding("src/lib/gone.ts")),
            _output(_finding("src/lib/b.ts")),
        ]
        self._audit(max_loc=5)
        self.auditor.audit.side_effect = [_output(), _output()]
        self._audit(max_loc=5)

        self.assertEqual(
            [i.fix_status for i in self.store.list_issues()],
            ["superseded", "superseded", "superseded"],
        )

    def test_failed_split_run_keeps_issues_of_removed_files(self) -> None:
        self.auditor.audit.side_effect = [_output(_finding("src/lib/gone.ts")), _output()]
        self._audit(max_loc=5)
        self.auditor.audit.side_effect = [_output(), CommandResult(ok=False, output="boom", exit_code=1)]
        self._audit(max_loc=5)
        self.assertEqual([i.fix_status for i in self.store.list_issues()], ["pending"])

    def test_combined_label(self) -> None:
        self.auditor.audit.return_value = _output(
            _finding("src/lib/a.ts", policy="naming"),
            _finding("src/lib/a.ts", policy="logging", rule="structured-logs"),
        )
        (outcome,) = self._audit(policies=["logging", "naming"])
        self.assertEqual(outcome.policy, "logging|naming")
        self.assertEqual(policy_label(["logging", "naming"]), "logging|naming")
        self.assertEqual(self.store.policies_for_issues([i.id for i in self.store.list_issues()]), ["logging", "naming"])

    def test_audit_branches_continues_after_failure(self) -> None:
        self.auditor.audit.side_effect = [
            CommandResult(ok=False, output="boom", exit_code=1),
            _output(),
        ]
        outcomes = audit_branches(
            self.store,
            self.auditor,
            [Branch(path="src/lib", is_flat=True), Branch(path="src/lib")],
            ["naming"],
            self.root,
            ["ts"],
        )
        self.assertEqual([o.status for o in outcomes], ["failed", "completed"])


class TestRecordCheckpoints(AuditStoreTestCase):
    def test_records_each_policy(self) -> None:
        self.assertEqual(record_checkpoints(self.store, ["logging", "naming"], "abc123"), 2)
        self.assertEqual(self.store.oldest_checkpoint(["naming"]), "abc123")

    def test_partial_or_no_history_records_nothing(self) -> None:
        self.assertEqual(record_checkpoints(self.store, ["naming"], "abc123", partial=True), 0)
        self.assertEqual(record_checkpoints(self.store, ["naming"], None), 0)
        self.assertEqual(self.store.get_checkpoints(), [])


if __name__ == "__main__":
    unittest.main()
