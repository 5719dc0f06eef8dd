"""Shared dependencies: the process-wide store and per-request sessions."""

from collections.abc import Generator
from functools import lru_cache

from sqlalchemy.orm import Session

from auditloop.core.config import get_settings
from auditloop.services.store import StateStore


@lru_cache
def get_store() -> StateStore:
    """Store for the configured project, schema initialized on first use."""
    store = StateStore.from_settings(get_settings())
    store.init_schema()
    return store


def get_db() -> Generator[Session, None, None]:
    """Dependency that yields a DB session and closes it when done."""
    db = get_store().session()
    try:
        yield db
    finally:
        db.close()
