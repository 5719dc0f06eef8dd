"""Pydantic schema for a branch: a named, size-bounded region of the source tree."""

from pydantic import BaseModel, ConfigDict, Field

FLAT_SUFFIX = " (flat)"
ROOT_BRANCH = "."


class Branch(BaseModel):
    """
    A directory claimed as one audit unit.

    Flat branches claim only files directly inside path; recursive branches
    claim the whole subtree. Values are immutable and hashable.
    """

    model_config = ConfigDict(frozen=True)

    path: str = Field(
        ...,
        min_length=1,
        description="Directory path relative to the project root ('.' for the root).",
    )
    is_flat: bool = Field(
        default=False,
        description="True if only files directly inside path are claimed.",
    )

    def to_line(self) -> str:
        """Branch list entry: '<path>' or '<path> (flat)'."""
        return f"{self.path}{FLAT_SUFFIX}" if self.is_flat else self.path

    @classmethod
    def from_line(cls, line: str) -> "Branch":
        """Parse a branch list entry written by to_line."""
        entry = line.strip()
        if entry.endswith(FLAT_SUFFIX):
            return cls(path=entry[: -len(FLAT_SUFFIX)].rstrip(), is_flat=True)
        return cls(path=entry, is_flat=False)
