"""Subprocess-backed collaborators: auditor, fixer, validator, formatter and committer."""

from __future__ import annotations

import logging
import shlex
import subprocess
from pathlib import Path
from typing import TYPE_CHECKING

from auditloop.schemas.issues import IssueRecord
from auditloop.schemas.remediation import CommandResult
from auditloop.services.policies import build_audit_prompt, build_fix_prompt, build_system_prompt
from auditloop.services.vcs import GitRepository, VcsError

if TYPE_CHECKING:
    from auditloop.core.config import Settings

logger = logging.getLogger(__name__)

# Flag the default agent CLI takes for extra instructions. With no flag, the
# system prompt is sent ahead of the user prompt on stdin.
SYSTEM_PROMPT_FLAG = "--append-system-prompt"


def run_command(
    command: str | list[str],
    cwd: Path | str,
    timeout: float,
    stdin: str | None = None,
) -> CommandResult:
    """Run a command without a shell, capturing stdout and stderr together."""
    args = shlex.split(command) if isinstance(command, str) else list(command)
    if not args:
        return CommandResult(ok=False, output="empty command")
    try:
        result = subprocess.run(
            args,
            cwd=cwd,
            input=stdin,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            timeout=timeout,
            check=False,
        )
    except FileNotFoundError:
        return CommandResult(ok=False, output=f"command not found: {args[0]}")
    except subprocess.TimeoutExpired as e:
        partial = e.output if isinstance(e.output, str) else (e.output or b"").decode("utf-8", "replace")
        return CommandResult(ok=False, output=f"{partial}\ntimed out after {timeout:.0f}s".lstrip())
    return CommandResult(ok=result.returncode == 0, output=result.stdout or "", exit_code=result.returncode)


class _AgentCommand:
    """An agent CLI that reads a user prompt on stdin, with policies as its system prompt."""

    def __init__(
        self,
        command: str,
        policies_dir: Path | str,
        cwd: Path | str,
        timeout: float,
        system_prompt_flag: str | None = SYSTEM_PROMPT_FLAG,
    ) -> None:
        self.command = command
        self.policies_dir = Path(policies_dir)
        self.cwd = cwd
        self.timeout = timeout
        self.system_prompt_flag = system_prompt_flag

    def _invoke(self, policies: list[str], prompt: str) -> CommandResult:
        system_prompt = build_system_prompt(policies, self.policies_dir)
        args = shlex.split(self.command)
        if self.system_prompt_flag:
            args += [self.system_prompt_flag, system_prompt]
        else:
            prompt = f"{system_prompt}\n\n{prompt}"
        return run_command(args, self.cwd, self.timeout, stdin=prompt)


class CommandAuditor(_AgentCommand):
    """Asks the audit agent for findings on a set of files; returns its raw output."""

    def audit(self, files: list[str], policies: list[str]) -> CommandResult:
        return self._invoke(policies, build_audit_prompt(files, policies))


class CommandFixer(_AgentCommand):
    """Asks the fix agent to edit files in place for the given issues."""

    def __init__(self, *args, check_command: str = "", **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.check_command = check_command

    def fix(self, files: list[str], issues: list[IssueRecord], policies: list[str]) -> CommandResult:
        return self._invoke(policies, build_fix_prompt(files, issues, self.check_command))


class CommandValidator:
    def __init__(self, command: str, cwd: Path | str, timeout: float) -> None:
        self.command = command
        self.cwd = cwd
        self.timeout = timeout

    def validate(self) -> CommandResult:
        return run_command(self.command, self.cwd, self.timeout)


class CommandFormatter:
    def __init__(self, command: str, cwd: Path | str, timeout: float) -> None:
        self.command = command
        self.cwd = cwd
        self.timeout = timeout

    def format(self) -> CommandResult:
        return run_command(self.command, self.cwd, self.timeout)


class GitCommitter:
    """Commits every working-tree change for a fixed batch."""

    def __init__(self, repo: GitRepository) -> None:
        self.repo = repo

    @staticmethod
    def commit_message(batch_label: str, file_count: int, issue_count: int) -> str:
        return (
            f"Fix audit issues: {batch_label}\n\n"
            f"Addresses {issue_count} issue{'s' if issue_count != 1 else ''} "
            f"across {file_count} file{'s' if file_count != 1 else ''}."
        )

    def commit(self, batch_label: str, file_count: int, issue_count: int) -> CommandResult:
        try:
            commit = self.repo.commit_all(self.commit_message(batch_label, file_count, issue_count))
        except VcsError as e:
            return CommandResult(ok=False, output=e.message, exit_code=e.returncode)
        return CommandResult(ok=True, output=commit or "nothing to commit", exit_code=0)


def collaborators_from_settings(settings: Settings, repo: GitRepository) -> dict[str, object]:
    """Build the default subprocess collaborators for one project."""
    cwd = settings.project_root
    timeout = settings.COMMAND_TIMEOUT_SEC
    return {
        "auditor": CommandAuditor(settings.AUDIT_COMMAND, settings.policies_dir, cwd, timeout),
        "fixer": CommandFixer(
            settings.FIX_COMMAND,
            settings.policies_dir,
            cwd,
            timeout,
            check_command=settings.CHECK_COMMAND,
        ),
        "validator": CommandValidator(settings.CHECK_COMMAND, cwd, timeout),
        "formatter": CommandFormatter(settings.FORMAT_COMMAND, cwd, timeout),
        "committer": GitCommitter(repo),
    }
