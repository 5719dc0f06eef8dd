"""Policy documents and the prompts built from them for the auditor and fixer."""

import json
import logging
from pathlib import Path

from auditloop.schemas.issues import IssueRecord

logger = logging.getLogger(__name__)

POLICY_FILENAME = "POLICY.md"

# Shape the auditor must answer with; validated strictly by parse_findings.
FINDINGS_FORMAT = {
    "findings": [
        {
            "description": "what is wrong and where",
            "rule": "short rule name from the policy",
            "severity": "high | medium | low",
            "suggestion": "how to fix it",
            "policy": "policy name",
            "files": ["path/relative/to/project/root"],
        }
    ]
}


class PolicyNotFoundError(Exception):
    """Raised when a policy document is missing or no policy could be loaded."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


def policy_path(policies_dir: Path | str, name: str) -> Path:
    return Path(policies_dir) / name / POLICY_FILENAME


def discover_policies(policies_dir: Path | str) -> list[str]:
    """Names of policy directories holding a POLICY.md, sorted."""
    root = Path(policies_dir)
    if not root.is_dir():
        return []
    return sorted(p.parent.name for p in root.glob(f"*/{POLICY_FILENAME}") if p.is_file())


def require_policy(policies_dir: Path | str, name: str) -> None:
    if not policy_path(policies_dir, name).is_file():
        raise PolicyNotFoundError(f"Policy not found: {name} (expected {policy_path(policies_dir, name)})")


def build_system_prompt(policies: list[str], policies_dir: Path | str) -> str:
    """
    Concatenate the policy documents, each under a '--- name ---' header.

    Missing, unreadable or empty documents are skipped with a warning; it is
    an error when none of them could be loaded.
    """
    sections: list[str] = []
    for name in policies:
        path = policy_path(policies_dir, name)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.warning("Policy file not found: %s, skipping", path)
            continue
        except OSError as e:
            logger.warning("Policy file not readable: %s (%s), skipping", path, e)
            continue
        if not text.strip():
            logger.warning("Policy file is empty: %s, skipping", path)
            continue
        sections.append(f"--- {name} ---\n\n{text.rstrip()}\n")
    if not sections:
        raise PolicyNotFoundError(
            f"No valid policy files loaded for: {', '.join(policies) or '(none)'}"
        )
    return "\n".join(sections)


def build_fix_prompt(files: list[str], issues: list[IssueRecord], check_command: str = "") -> str:
    """User prompt asking the fixer to resolve issues in files."""
    lines = ["I need you to fix the following code quality issues in these files:", "", "## Affected Files", ""]
    lines.extend(f"- `{path}`" for path in files)
    lines.extend(["", "## Issues to Address", ""])
    for number, issue in enumerate(issues, start=1):
        lines.append(f"### Issue {number} ({issue.severity}) - rule: {issue.rule}")
        lines.append("**Files:**")
        lines.extend(f"- `{path}`" for path in issue.file_paths)
        lines.append(f"**Problem:** {issue.description}")
        lines.append(f"**Suggestion:** {issue.suggestion or '(none)'}")
        lines.append("")
    lines.extend(
        [
            "## Instructions",
            "",
            "1. Read each affected file",
            "2. Fix the issues listed above",
            "3. Keep all existing functionality; this is a readability and maintainability refactor",
            "4. Organize code so a new team member can quickly understand it",
        ]
    )
    if check_command:
        lines.append(f"5. After all edits, make sure `{check_command}` passes")
    return "\n".join(lines) + "\n"


def build_audit_prompt(files: list[str], policies: list[str]) -> str:
    """User prompt asking the auditor for findings as strict JSON."""
    lines = [
        f"Audit the following files against the {', '.join(policies)} "
        f"{'policy' if len(policies) == 1 else 'policies'} in your instructions.",
        "",
        "## Files",
        "",
    ]
    lines.extend(f"- `{path}`" for path in files)
    lines.extend(
        [
            "",
            "## Output",
            "",
            "Respond with JSON only, no prose, in exactly this shape:",
            "",
            json.dumps(FINDINGS_FORMAT, indent=2),
            "",
            f"`policy` must be one of: {', '.join(policies)}. "
            "`files` must list only paths from the list above. "
            'Return {"findings": []} when nothing violates the policy.',
        ]
    )
    return "\n".join(lines) + "\n"
