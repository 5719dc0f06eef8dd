"""Git working-tree queries and mutations used by selection and remediation."""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from auditloop.core.config import Settings

logger = logging.getLogger(__name__)

DEFAULT_GIT_TIMEOUT_SECONDS = 60


class VcsError(Exception):
    """Raised when a required git command fails."""

    def __init__(self, message: str, returncode: int | None = None) -> None:
        self.message = message
        self.returncode = returncode
        super().__init__(message)


class GitRepository:
    """
    Thin wrapper over the git CLI for one working tree.

    Paths in excludes (relative to root, git pathspec syntax) hold local
    state such as the audit store. They are never staged, reverted, cleaned
    or reported as changes.
    """

    def __init__(
        self,
        root: Path | str,
        timeout_seconds: float = DEFAULT_GIT_TIMEOUT_SECONDS,
        excludes: Iterable[str] = (),
    ) -> None:
        self.root = Path(root)
        self.timeout_seconds = timeout_seconds
        self.excludes = [e.strip("/") for e in excludes if e.strip("/")]

    @classmethod
    def from_settings(cls, settings: Settings) -> GitRepository:
        return cls(settings.project_root, excludes=settings.vcs_excludes)

    def _pathspec(self) -> list[str]:
        return ["--", ".", *(f":(exclude){path}" for path in self.excludes)]

    def _run(self, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        try:
            result = subprocess.run(
                ["git", *args],
                cwd=self.root,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
                check=False,
            )
        except FileNotFoundError as e:
            raise VcsError("git executable not found") from e
        except subprocess.TimeoutExpired as e:
            raise VcsError(f"git {args[0]} timed out after {self.timeout_seconds}s") from e
        if check and result.returncode != 0:
            stderr = result.stderr.strip() or f"exit code {result.returncode}"
            raise VcsError(f"git {' '.join(args)} failed: {stderr}", result.returncode)
        return result

    def is_repository(self) -> bool:
        result = self._run("rev-parse", "--is-inside-work-tree", check=False)
        return result.returncode == 0 and result.stdout.strip() == "true"

    def current_commit(self) -> str | None:
        """HEAD commit hash, or None when the repository has no commits yet."""
        result = self._run("rev-parse", "--verify", "--quiet", "HEAD", check=False)
        commit = result.stdout.strip()
        return commit if result.returncode == 0 and commit else None

    def is_reachable(self, commit: str) -> bool:
        """True if commit exists and is an ancestor of (or equal to) HEAD."""
        exists = self._run("cat-file", "-e", f"{commit}^{{commit}}", check=False)
        if exists.returncode != 0:
            return False
        return self._run("merge-base", "--is-ancestor", commit, "HEAD", check=False).returncode == 0

    def changed_files_since(self, commit: str) -> list[str]:
        """
        Paths changed between commit and the working tree.

        Covers committed, staged and unstaged changes plus untracked files not
        ignored by .gitignore. Deleted paths are included.
        """
        diff = self._run("diff", "--name-only", commit, *self._pathspec())
        paths = {line.strip() for line in diff.stdout.splitlines() if line.strip()}
        return sorted(paths.union(self.untracked_files()))

    def untracked_files(self) -> list[str]:
        """Untracked files not ignored by .gitignore, sorted."""
        result = self._run("ls-files", "--others", "--exclude-standard", *self._pathspec())
        return sorted({line.strip() for line in result.stdout.splitlines() if line.strip()})

    def is_dirty(self) -> bool:
        """True if tracked files have staged or unstaged edits. Untracked files do not count."""
        for args in (("diff", "--quiet"), ("diff", "--cached", "--quiet")):
            result = self._run(*args, *self._pathspec(), check=False)
            if result.returncode == 1:
                return True
            if result.returncode != 0:
                stderr = result.stderr.strip() or f"exit code {result.returncode}"
                raise VcsError(f"git {' '.join(args)} failed: {stderr}", result.returncode)
        return False

    def revert_all(self) -> None:
        """
        Discard every unstaged edit to tracked files.

        Untracked files are left alone; see remove_files for cleaning up
        files created since a known point.
        """
        self._run("checkout", *self._pathspec())
        logger.info("Reverted working tree edits in %s", self.root)

    def remove_files(self, paths: Iterable[str]) -> None:
        """Delete the given root-relative files; missing ones are ignored."""
        for path in paths:
            (self.root / path).unlink(missing_ok=True)
            logger.info("Removed untracked file %s", path)

    def current_branch(self) -> str | None:
        result = self._run("symbolic-ref", "--short", "-q", "HEAD", check=False)
        return result.stdout.strip() or None

    def ensure_branch(self, name: str) -> None:
        """Switch to branch name, creating it from HEAD if needed. Refuses when tracked files are modified."""
        if self.current_branch() == name:
            return
        if self.is_dirty():
            raise VcsError(
                f"Working tree has uncommitted changes; commit or stash them before switching to {name}"
            )
        exists = self._run("rev-parse", "--verify", "--quiet", f"refs/heads/{name}", check=False)
        if exists.returncode == 0:
            self._run("checkout", name)
            logger.info("Switched to existing branch %s", name)
        else:
            self._run("checkout", "-b", name)
            logger.info("Created branch %s", name)

    def commit_all(self, message: str) -> str | None:
        """Stage everything outside excludes and commit. Returns the new commit, or None if nothing changed."""
        self._run("add", "-A", *self._pathspec())
        if not self._run("diff", "--cached", "--name-only").stdout.strip():
            logger.info("Nothing to commit")
            return None
        self._run("commit", "-m", message)
        return self.current_commit()
