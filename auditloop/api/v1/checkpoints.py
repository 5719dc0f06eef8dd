"""Checkpoints endpoint: last fully audited commit per policy."""

from typing import Annotated

from fastapi import APIRouter, Depends

from auditloop.api.v1.deps import get_store
from auditloop.schemas.summary import CheckpointOut
from auditloop.services.store import StateStore

router = APIRouter()


@router.get("", response_model=list[CheckpointOut])
def list_checkpoints(store: Annotated[StateStore, Depends(get_store)]) -> list[CheckpointOut]:
    return store.get_checkpoints()
