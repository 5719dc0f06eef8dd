"""Map a file path to the branch that owns it, by longest-prefix match."""

from collections.abc import Iterable

from auditloop.schemas.branch import ROOT_BRANCH, Branch


class BranchIndex:
    """
    Read-only index over one branch list.

    Construct once per branch list and pass it to consumers. Lookups are pure:
    the same path always yields the same owner for the lifetime of the index.
    """

    def __init__(self, branches: Iterable[Branch]) -> None:
        self._branches: tuple[Branch, ...] = tuple(branches)

    @property
    def branches(self) -> tuple[Branch, ...]:
        return self._branches

    def __len__(self) -> int:
        return len(self._branches)

    @staticmethod
    def _claims(branch: Branch, file_path: str) -> bool:
        if branch.path == ROOT_BRANCH:
            # A flat root only claims files directly at the root.
            return not (branch.is_flat and "/" in file_path)
        prefix = branch.path + "/"
        if not file_path.startswith(prefix):
            return False
        if branch.is_flat:
            return "/" not in file_path[len(prefix) :]
        return True

    def owner(self, file_path: str) -> Branch | None:
        """Branch that claims file_path, or None if no branch does."""
        path = file_path.strip().replace("\\", "/")
        while path.startswith("./"):
            path = path[2:]
        best: Branch | None = None
        best_len = 0
        for branch in self._branches:
            if not self._claims(branch, path):
                continue
            # Longest path wins; '.' has length 1 so any real prefix beats it.
            if len(branch.path) > best_len:
                best = branch
                best_len = len(branch.path)
        return best

    def file_to_branch(self, file_path: str) -> str:
        """Owning branch path, or '' when the file is not subject to audit."""
        branch = self.owner(file_path)
        return branch.path if branch else ""
