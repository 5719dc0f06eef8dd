"""Alembic environment: runs on a connection handed in by init_database, else on the configured DATABASE_URL."""

from logging.config import fileConfig

from alembic import context
from sqlalchemy.engine import Connection

from auditloop.core.config import get_settings
from auditloop.core.database import create_sqlite_engine

# Import all models so that Base.metadata contains every table.
from auditloop.models import Base

config = context.config
# Load logging from alembic.ini only when invoked from the alembic CLI and the
# file defines [formatters], [handlers], [loggers] (fileConfig raises KeyError otherwise).
if config.config_file_name is not None and config.attributes.get("connection") is None:
    try:
        fileConfig(config.config_file_name, disable_existing_loggers=False)
    except KeyError:
        pass

target_metadata = Base.metadata


def get_url() -> str:
    """Return the database URL from an explicit option, else application settings."""
    return config.get_main_option("sqlalchemy.url") or get_settings().database_url


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode (generate SQL only)."""
    context.configure(
        url=get_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        render_as_batch=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def _run_on(connection: Connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        render_as_batch=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode (connect to DB and run)."""
    connection = config.attributes.get("connection")
    if connection is not None:
        _run_on(connection)
        return
    connectable = create_sqlite_engine(get_url())
    with connectable.connect() as conn:
        _run_on(conn)
        conn.commit()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
