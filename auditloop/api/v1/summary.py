"""Summary endpoint: counts of scans, issues and fix attempts by status."""

from typing import Annotated

from fastapi import APIRouter, Depends

from auditloop.api.v1.deps import get_store
from auditloop.schemas.summary import StoreSummary
from auditloop.services.store import StateStore

router = APIRouter()


@router.get("", response_model=StoreSummary)
def get_summary(store: Annotated[StateStore, Depends(get_store)]) -> StoreSummary:
    return store.summary()
