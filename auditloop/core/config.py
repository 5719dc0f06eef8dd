"""Application configuration loaded from environment variables."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import make_url

# Allowed URL schemes for DATABASE_URL (module-level so validators can use it).
VALID_DATABASE_URL_PREFIXES = (
    "sqlite://",
    "sqlite+pysqlite://",
)


def split_list(value: str) -> list[str]:
    """Split a space- or comma-separated setting into its non-empty items."""
    return [item for item in value.replace(",", " ").split() if item]


class Settings(BaseSettings):
    """Validated settings from env and optional .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # Audited working tree and the directory holding audit.db, branch lists and policies
    PROJECT_ROOT: str = "."
    AUDIT_DIR: str = ".audit"
    # Optional override; defaults to sqlite:///<AUDIT_DIR>/audit.db
    DATABASE_URL: str | None = None

    FILE_EXTENSIONS: str = "ts tsx"
    START_DIRS: str = "src"
    EXCLUDE_PATHS: str = ""

    # Line caps: branches for auditing, batches for fixing
    MAX_LOC: int = 3000
    MAX_FIX_LOC: int = 2000
    MAX_FIX_RETRIES: int = 3
    OUTPUT_TRUNCATE_CHARS: int = 4000

    # Store contention
    DB_BUSY_TIMEOUT_SEC: float = 5.0
    DB_BUSY_RETRIES: int = 3
    INIT_LOCK_TIMEOUT_SEC: float = 10.0

    # External collaborators (prompts are written to stdin)
    AUDIT_COMMAND: str = "claude --print --no-session-persistence --model haiku"
    FIX_COMMAND: str = (
        "claude --print --no-session-persistence --model sonnet "
        "--permission-mode bypassPermissions"
    )
    CHECK_COMMAND: str = "bun check"
    FORMAT_COMMAND: str = "bun format"
    COMMAND_TIMEOUT_SEC: float = 1800.0

    # When True, fixes are neither committed nor reverted on failure
    SKIP_COMMITS: bool = False
    FIX_BRANCH: str = "fix/audit-improvements"

    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    @field_validator("DATABASE_URL")
    @classmethod
    def validate_database_url(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        if not any(v.strip().startswith(prefix) for prefix in VALID_DATABASE_URL_PREFIXES):
            raise ValueError("DATABASE_URL must be a SQLite URL (e.g. sqlite:///path/to/audit.db)")
        return v.strip()

    @field_validator("FILE_EXTENSIONS")
    @classmethod
    def validate_file_extensions(cls, v: str) -> str:
        extensions = [ext.lstrip(".") for ext in split_list(v)]
        if not extensions or not all(extensions):
            raise ValueError("FILE_EXTENSIONS must list at least one extension (e.g. 'ts tsx')")
        return " ".join(extensions)

    @field_validator("START_DIRS")
    @classmethod
    def validate_start_dirs(cls, v: str) -> str:
        if not split_list(v):
            raise ValueError("START_DIRS must list at least one directory")
        return v.strip()

    @field_validator("MAX_LOC", "MAX_FIX_LOC")
    @classmethod
    def validate_max_loc(cls, v: int) -> int:
        if v < 1 or v > 1_000_000:
            raise ValueError("line caps must be between 1 and 1000000")
        return v

    @field_validator("MAX_FIX_RETRIES")
    @classmethod
    def validate_max_fix_retries(cls, v: int) -> int:
        if v < 1 or v > 10:
            raise ValueError("MAX_FIX_RETRIES must be between 1 and 10")
        return v

    @field_validator("OUTPUT_TRUNCATE_CHARS")
    @classmethod
    def validate_output_truncate_chars(cls, v: int) -> int:
        if v < 100 or v > 100_000:
            raise ValueError("OUTPUT_TRUNCATE_CHARS must be between 100 and 100000")
        return v

    @field_validator("DB_BUSY_TIMEOUT_SEC", "INIT_LOCK_TIMEOUT_SEC")
    @classmethod
    def validate_wait_seconds(cls, v: float) -> float:
        if v <= 0 or v > 300:
            raise ValueError("wait timeouts must be greater than 0 and at most 300")
        return v

    @field_validator("DB_BUSY_RETRIES")
    @classmethod
    def validate_busy_retries(cls, v: int) -> int:
        if v < 0 or v > 10:
            raise ValueError("DB_BUSY_RETRIES must be between 0 and 10")
        return v

    @field_validator("COMMAND_TIMEOUT_SEC")
    @classmethod
    def validate_command_timeout(cls, v: float) -> float:
        if v <= 0 or v > 86400:
            raise ValueError("COMMAND_TIMEOUT_SEC must be greater than 0 and at most 86400")
        return v

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        return v.strip().upper() if isinstance(v, str) else v

    @property
    def project_root(self) -> Path:
        return Path(self.PROJECT_ROOT).expanduser().resolve()

    @property
    def audit_dir(self) -> Path:
        path = Path(self.AUDIT_DIR).expanduser()
        return path if path.is_absolute() else self.project_root / path

    @property
    def database_url(self) -> str:
        return self.DATABASE_URL or f"sqlite:///{self.audit_dir / 'audit.db'}"

    @property
    def branches_file(self) -> Path:
        return self.audit_dir / "branches.txt"

    @property
    def changed_branches_file(self) -> Path:
        return self.audit_dir / "branches-changed.txt"

    @property
    def policies_dir(self) -> Path:
        return self.audit_dir / "policies"

    @property
    def vcs_excludes(self) -> list[str]:
        """
        Store paths inside PROJECT_ROOT that git must never stage or revert.

        The audit directory, plus the database file and its -wal, -shm and
        lock siblings when DATABASE_URL points elsewhere inside the tree.
        """
        root = self.project_root
        excludes: list[str] = []
        audit_dir = self.audit_dir.resolve()
        if audit_dir.is_relative_to(root) and audit_dir != root:
            excludes.append(audit_dir.relative_to(root).as_posix())
        database = make_url(self.database_url).database
        if database and database != ":memory:":
            db_path = Path(database).expanduser().resolve()
            covered = bool(excludes) and db_path.is_relative_to(audit_dir)
            if db_path.is_relative_to(root) and not covered:
                excludes.append(db_path.relative_to(root).as_posix() + "*")
        return excludes

    @property
    def extensions(self) -> list[str]:
        return split_list(self.FILE_EXTENSIONS)

    @property
    def start_dirs(self) -> list[str]:
        return split_list(self.START_DIRS)

    @property
    def exclude_paths(self) -> list[str]:
        return [p.strip("/") for p in split_list(self.EXCLUDE_PATHS)]


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance (safe to call from dependencies)."""
    return Settings()
