"""Pydantic schemas for health check responses."""

from typing import Literal

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Response body for the health check endpoint."""

    status: Literal["ok"] = Field(default="ok", description="Service status")
    project_root: str = Field(description="Audited working tree")
    database: Literal["connected", "disconnected"] | None = Field(
        default=None,
        description="Store connectivity status when check is performed",
    )
