"""Group files into batches bounded by a total line count."""

import logging
from pathlib import Path

from auditloop.schemas.batches import FileLoc, FixBatch
from auditloop.services.partition import count_lines
from auditloop.services.store import StateStore

logger = logging.getLogger(__name__)


def batch_files_by_loc(files: list[FileLoc], max_loc: int) -> list[tuple[int, str]]:
    """
    Greedy single pass over files in the given order.

    A new batch starts when adding a file would push the running total past
    max_loc and the current batch is non-empty, so a file larger than the cap
    sits alone in its own batch. Returns (batch_number, path) pairs, numbered from 1.
    """
    pairs: list[tuple[int, str]] = []
    batch_number = 1
    batch_loc = 0
    batch_size = 0
    for item in files:
        if batch_size > 0 and batch_loc + item.loc > max_loc:
            batch_number += 1
            batch_loc = 0
            batch_size = 0
        pairs.append((batch_number, item.path))
        batch_loc += item.loc
        batch_size += 1
    return pairs


def group_batches(files: list[FileLoc], max_loc: int) -> list[FixBatch]:
    """batch_files_by_loc, collected into FixBatch values."""
    loc_by_path = {f.path: f.loc for f in files}
    grouped: dict[int, list[str]] = {}
    for number, path in batch_files_by_loc(files, max_loc):
        grouped.setdefault(number, []).append(path)
    total = len(grouped)
    return [
        FixBatch(
            number=number,
            total=total,
            files=paths,
            total_loc=sum(loc_by_path[p] for p in paths),
        )
        for number, paths in sorted(grouped.items())
    ]


def collect_file_locs(paths: list[str], project_root: Path | str) -> list[FileLoc]:
    """Line counts for paths, sorted by path. Missing files count as 0 and are kept."""
    root = Path(project_root)
    result: list[FileLoc] = []
    for path in sorted(set(paths)):
        target = root / path
        try:
            loc = count_lines(target)
        except FileNotFoundError:
            logger.warning("File no longer exists, batching with 0 LOC: %s", path)
            loc = 0
        except IsADirectoryError:
            logger.warning("Path is a directory, batching with 0 LOC: %s", path)
            loc = 0
        result.append(FileLoc(path=path, loc=loc))
    return result


def batch_pending_fixes(
    store: StateStore,
    project_root: Path | str,
    max_loc: int,
    policy: str | None = None,
) -> list[FixBatch]:
    """Batches over every file referenced by actionable issues (optionally of one policy)."""
    paths = store.pending_fix_files(policy=policy)
    if not paths:
        logger.info("No files with pending issues")
        return []
    batches = group_batches(collect_file_locs(paths, project_root), max_loc)
    logger.info(
        "%d files with pending issues in %d batches (max %s LOC per batch)",
        len(paths),
        len(batches),
        max_loc,
    )
    return batches
