"""Health check endpoint with store connectivity check."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from auditloop.api.v1.deps import get_db
from auditloop.core.config import get_settings
from auditloop.core.database import check_db_connected
from auditloop.schemas.health import HealthResponse

router = APIRouter()


@router.get("", response_model=HealthResponse)
def get_health(db: Session = Depends(get_db)) -> HealthResponse:
    """
    Return service health status and store connectivity.
    Used by monitoring of long-running audit hosts.
    """
    db_status = "connected" if check_db_connected(db) else "disconnected"

    return HealthResponse(
        status="ok",
        project_root=str(get_settings().project_root),
        database=db_status,
    )
