"""SQLite engine, session factory and idempotent schema initialization."""

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

try:
    import fcntl
except ImportError:  # pragma: no cover
    fcntl = None

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent.parent / "migrations"
LOCK_POLL_INTERVAL_SEC = 0.1


def _database_path(engine: Engine) -> Path | None:
    """Filesystem path of a SQLite database, or None for in-memory stores."""
    database = engine.url.database
    if not database or database == ":memory:":
        return None
    return Path(database)


def create_sqlite_engine(url: str, busy_timeout_sec: float = 5.0, echo: bool = False) -> Engine:
    """
    Create an engine for the audit store.

    Every connection runs in WAL mode with a busy timeout so concurrent
    writers queue behind the lock instead of failing immediately.
    """
    database = make_url(url).database
    connect_args = {"timeout": busy_timeout_sec, "check_same_thread": False}
    if not database or database == ":memory:":
        engine = create_engine(url, echo=echo, connect_args=connect_args, poolclass=StaticPool)
    else:
        Path(database).expanduser().parent.mkdir(parents=True, exist_ok=True)
        engine = create_engine(url, echo=echo, connect_args=connect_args)

    busy_timeout_ms = int(busy_timeout_sec * 1000)

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection, connection_record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute(f"PRAGMA busy_timeout={busy_timeout_ms}")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()
        # Take transaction control away from pysqlite; see _begin_immediate.
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn) -> None:
        # Reserve the write lock up front so the busy timeout applies, instead of
        # failing on a read-to-write lock upgrade mid-transaction.
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Session factory bound to engine; objects stay readable after commit."""
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def check_db_connected(db: Session) -> bool:
    """Run a trivial query to verify the database is reachable."""
    try:
        db.execute(text("SELECT 1"))
        return True
    except Exception:
        return False


@contextmanager
def init_lock(lock_path: Path | None, timeout_sec: float) -> Iterator[bool]:
    """
    Serialize schema initialization across processes with an advisory file lock.

    Waits up to timeout_sec; yields False and lets the caller proceed unlocked
    when the lock cannot be acquired (guarded schema steps are safe to repeat).
    """
    if lock_path is None or fcntl is None:
        yield False
        return
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with open(lock_path, "a+") as handle:
        acquired = False
        deadline = time.monotonic() + timeout_sec
        while True:
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                acquired = True
                break
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    break
                time.sleep(LOCK_POLL_INTERVAL_SEC)
        if not acquired:
            logger.warning(
                "Could not acquire init lock %s after %.0fs, proceeding anyway",
                lock_path,
                timeout_sec,
            )
        try:
            yield acquired
        finally:
            if acquired:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


def _alembic_config(connection) -> Config:
    config = Config()
    config.set_main_option("script_location", str(MIGRATIONS_DIR))
    config.attributes["connection"] = connection
    return config


def _upgrade_to_head(engine: Engine) -> None:
    with engine.begin() as connection:
        command.upgrade(_alembic_config(connection), "head")


def init_database(engine: Engine, lock_timeout_sec: float = 10.0) -> None:
    """
    Create the schema and apply pending migrations. Idempotent.

    Re-running on an initialized store is a no-op. Migrations run inside one
    immediate transaction; a second initializer that still lost the race to
    an unlocked peer re-checks the schema once.
    """
    db_path = _database_path(engine)
    lock_path = db_path.with_name(db_path.name + ".init.lock") if db_path else None
    with init_lock(lock_path, lock_timeout_sec):
        try:
            _upgrade_to_head(engine)
        except OperationalError as e:
            if "already exists" not in str(e):
                raise
            logger.warning("Concurrent schema initialization detected; re-checking schema")
            _upgrade_to_head(engine)
    logger.debug("Schema initialized: %s", engine.url)
