"""Partition source roots into disjoint branches bounded by a line-count threshold."""

import logging
import os
import tempfile
from collections.abc import Iterable
from pathlib import Path

from auditloop.schemas.branch import Branch

logger = logging.getLogger(__name__)


class PartitionError(Exception):
    """Raised when partitioning produces no branches (misconfigured roots or extensions)."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class BranchListError(Exception):
    """Raised when a branch list file is missing or unreadable."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


def matches_extensions(path: str, extensions: Iterable[str]) -> bool:
    """True if path ends with one of the extensions (given without the dot)."""
    return any(path.endswith(f".{ext.lstrip('.')}") for ext in extensions)


def is_excluded_path(path: str, excludes: Iterable[str]) -> bool:
    """True if path equals an excluded prefix or lies underneath one."""
    normalized = path.strip("/")
    for exclude in excludes:
        prefix = exclude.strip("/")
        if prefix and (normalized == prefix or normalized.startswith(prefix + "/")):
            return True
    return False


def count_lines(path: Path) -> int:
    """Count lines the way wc -l does, plus a trailing line without a newline."""
    count = 0
    last = b""
    with open(path, "rb") as handle:
        while chunk := handle.read(1 << 16):
            count += chunk.count(b"\n")
            last = chunk[-1:]
    if last and last != b"\n":
        count += 1
    return count


def relative_path(path: Path, project_root: Path) -> str:
    """Project-relative posix path; '.' for the root itself."""
    return path.relative_to(project_root).as_posix()


class _TreeScanner:
    """Directory queries for one partition run. Caches live only as long as the run."""

    def __init__(self, project_root: Path, extensions: list[str], excludes: list[str]) -> None:
        self.project_root = project_root
        self.extensions = extensions
        self.excludes = excludes
        self._has_files: dict[Path, bool] = {}

    def excluded(self, path: Path) -> bool:
        rel = relative_path(path, self.project_root)
        return rel != "." and is_excluded_path(rel, self.excludes)

    def flat_files(self, directory: Path) -> list[Path]:
        """Matching, non-excluded files directly inside directory, sorted."""
        files = []
        with os.scandir(directory) as entries:
            for entry in entries:
                if not entry.is_file() or not matches_extensions(entry.name, self.extensions):
                    continue
                path = Path(entry.path)
                if not self.excluded(path):
                    files.append(path)
        return sorted(files)

    def subdirectories(self, directory: Path) -> list[Path]:
        """Immediate non-excluded subdirectories (symlinks not followed), sorted."""
        dirs = []
        with os.scandir(directory) as entries:
            for entry in entries:
                if entry.is_dir(follow_symlinks=False):
                    path = Path(entry.path)
                    if not self.excluded(path):
                        dirs.append(path)
        return sorted(dirs)

    def has_matching_files(self, directory: Path) -> bool:
        """True if directory holds a matching file at any depth outside excluded paths."""
        if directory not in self._has_files:
            found = bool(self.flat_files(directory)) or any(
                self.has_matching_files(sub) for sub in self.subdirectories(directory)
            )
            self._has_files[directory] = found
        return self._has_files[directory]


def _partition_dir(
    directory: Path,
    scanner: _TreeScanner,
    max_loc: int,
    branches: list[Branch],
) -> None:
    rel = relative_path(directory, scanner.project_root)
    flat_files = scanner.flat_files(directory)
    flat_loc = sum(count_lines(f) for f in flat_files)
    subdirs = [d for d in scanner.subdirectories(directory) if scanner.has_matching_files(d)]

    if not subdirs:
        if flat_files:
            branches.append(Branch(path=rel, is_flat=False))
            if flat_loc > max_loc:
                logger.info("  %s (%s LOC) - leaf directory, will batch at runtime", rel, flat_loc)
            else:
                logger.info("  %s (%s LOC) - leaf directory", rel, flat_loc)
        return

    # Any immediate file gets a flat branch, even at 0 LOC, so no file is left unclaimed.
    if flat_files:
        branches.append(Branch(path=rel, is_flat=True))
        if flat_loc > max_loc:
            logger.info("  %s (flat: %s LOC) - will batch at runtime", rel, flat_loc)
        else:
            logger.info("  %s (flat: %s LOC) - flat files only", rel, flat_loc)
    logger.debug("  %s - recursing into %d subdirectories", rel, len(subdirs))
    for subdir in subdirs:
        _partition_dir(subdir, scanner, max_loc, branches)


def _nested_in(path: Path, others: list[Path]) -> bool:
    return any(path != other and path.is_relative_to(other) for other in others)


def generate_partition(
    roots: list[str],
    extensions: list[str],
    max_loc: int,
    excludes: list[str] | None = None,
    project_root: Path | str = ".",
) -> list[Branch]:
    """
    Divide roots into an ordered list of disjoint branches.

    A directory without qualifying subdirectories becomes one recursive branch;
    otherwise its immediate files become a flat branch and each qualifying
    subdirectory is partitioned on its own. Oversized branches are kept whole
    and batched later. Raises PartitionError when nothing matches.
    """
    root_dir = Path(project_root).resolve()
    excludes = [e.strip("/") for e in (excludes or []) if e.strip("/")]
    scanner = _TreeScanner(root_dir, list(extensions), excludes)

    resolved = [(root, (root_dir / root).resolve()) for root in roots]
    candidates = [path for _, path in resolved if path.is_dir()]
    branches: list[Branch] = []
    seen: set[Path] = set()

    logger.info("Generating branches (MAX_LOC=%s)", max_loc)
    for root, path in resolved:
        if not path.is_dir():
            logger.info("Skipping: %s (not found)", root)
            continue
        if not path.is_relative_to(root_dir):
            logger.warning("Skipping: %s (outside project root %s)", root, root_dir)
            continue
        if path in seen or _nested_in(path, candidates):
            # A root inside another root would be claimed twice.
            logger.warning("Skipping: %s (already covered by another root)", root)
            continue
        seen.add(path)
        if scanner.excluded(path):
            logger.info("Skipping: %s (excluded)", root)
            continue
        logger.info("Processing: %s", root)
        _partition_dir(path, scanner, max_loc, branches)

    if not branches:
        raise PartitionError(
            "No branches generated: no source files found. "
            f"PROJECT_ROOT={root_dir} START_DIRS={' '.join(roots)} "
            f"FILE_EXTENSIONS={' '.join(extensions)}"
        )
    logger.info("Generated %d branches", len(branches))
    return branches


def list_branch_files(
    branch: Branch,
    project_root: Path | str,
    extensions: list[str],
    excludes: list[str] | None = None,
) -> list[str]:
    """Project-relative paths of the matching files a branch claims, sorted."""
    root_dir = Path(project_root).resolve()
    scanner = _TreeScanner(root_dir, list(extensions), [e.strip("/") for e in excludes or []])
    directory = root_dir / branch.path
    if not directory.is_dir():
        return []
    if branch.is_flat:
        return [relative_path(f, root_dir) for f in scanner.flat_files(directory)]
    files: list[str] = []
    pending = [directory]
    while pending:
        current = pending.pop()
        files.extend(relative_path(f, root_dir) for f in scanner.flat_files(current))
        pending.extend(scanner.subdirectories(current))
    return sorted(files)


def write_branch_list(path: Path | str, branches: list[Branch]) -> None:
    """Write branches one per line, atomically (temp file in the same directory, then rename)."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.writelines(f"{branch.to_line()}\n" for branch in branches)
        os.replace(tmp_name, target)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def read_branch_list(path: Path | str) -> list[Branch]:
    """Read a branch list file; blank lines are ignored."""
    source = Path(path)
    try:
        text = source.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise BranchListError(
            f"{source} not found. Run 'python -m auditloop.generate' first."
        ) from e
    except (OSError, UnicodeDecodeError) as e:
        raise BranchListError(f"Cannot read branch list {source}: {e!s}") from e
    return [Branch.from_line(line) for line in text.splitlines() if line.strip()]
