"""Reduce a branch list to the branches touched since the last checkpoint."""

import logging
from typing import Protocol

from auditloop.schemas.branch import Branch
from auditloop.services.branch_index import BranchIndex
from auditloop.services.partition import is_excluded_path, matches_extensions
from auditloop.services.store import StateStore

logger = logging.getLogger(__name__)


class ChangeSource(Protocol):
    """The version-control queries incremental selection needs."""

    def is_reachable(self, commit: str) -> bool: ...

    def changed_files_since(self, commit: str) -> list[str]: ...


def changed_branch_paths(
    changed_files: list[str],
    index: BranchIndex,
    extensions: list[str],
    excludes: list[str] | None = None,
) -> set[str]:
    """Owning branch paths of the changed files that are subject to audit."""
    paths: set[str] = set()
    for file_path in changed_files:
        if not matches_extensions(file_path, extensions):
            continue
        if excludes and is_excluded_path(file_path, excludes):
            continue
        owner = index.file_to_branch(file_path)
        if owner:
            paths.add(owner)
    return paths


def select_since(
    since: str | None,
    index: BranchIndex,
    vcs: ChangeSource,
    extensions: list[str],
    excludes: list[str] | None = None,
) -> list[Branch]:
    """
    Branches of index holding files changed since commit `since`.

    Falls back to every branch when `since` is missing or no longer reachable.
    The result keeps the index's order and flat markers.
    """
    branches = list(index.branches)
    if not since:
        logger.info("No checkpoint recorded; selecting all %d branches", len(branches))
        return branches
    if not vcs.is_reachable(since):
        logger.warning(
            "Checkpoint %s is no longer reachable (rebased or reset?); selecting all %d branches",
            since[:12],
            len(branches),
        )
        return branches

    changed = vcs.changed_files_since(since)
    owners = changed_branch_paths(changed, index, extensions, excludes)
    selected = [b for b in branches if b.path in owners]
    logger.info(
        "%d changed files since %s map to %d of %d branches",
        len(changed),
        since[:12],
        len(selected),
        len(branches),
    )
    return selected


def select_incremental(
    store: StateStore,
    index: BranchIndex,
    vcs: ChangeSource,
    extensions: list[str],
    excludes: list[str] | None = None,
    policies: list[str] | None = None,
) -> list[Branch]:
    """Branches changed since the oldest checkpoint of the considered policies."""
    return select_since(store.oldest_checkpoint(policies), index, vcs, extensions, excludes)
