"""Core configuration and database."""

from auditloop.core.config import get_settings
from auditloop.core.database import create_sqlite_engine, init_database

__all__ = ["get_settings", "create_sqlite_engine", "init_database"]
