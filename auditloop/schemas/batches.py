"""Pydantic schemas for LOC-bounded file batches."""

from pydantic import BaseModel, Field


class FileLoc(BaseModel):
    """A file path with its current line count (0 when the file no longer exists)."""

    path: str = Field(..., min_length=1)
    loc: int = Field(..., ge=0)


class FixBatch(BaseModel):
    """A group of files submitted together for one remediation cycle."""

    number: int = Field(..., ge=1, description="1-indexed batch number.")
    total: int = Field(..., ge=1, description="Number of batches in this run.")
    files: list[str] = Field(..., min_length=1)
    total_loc: int = Field(default=0, ge=0)

    @property
    def label(self) -> str:
        """Human-readable label: batch N/T (up to three directories)."""
        dirs: list[str] = []
        for path in self.files:
            directory = path.rsplit("/", 1)[0] if "/" in path else "."
            if directory not in dirs:
                dirs.append(directory)
        return f"batch {self.number}/{self.total} ({', '.join(sorted(dirs)[:3])})"
