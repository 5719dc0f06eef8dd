"""API v1 routes."""

from fastapi import APIRouter

from auditloop.api.v1 import checkpoints, health, issues, summary

router = APIRouter()
router.include_router(health.router, prefix="/health", tags=["health"])
router.include_router(summary.router, prefix="/summary", tags=["summary"])
router.include_router(issues.router, prefix="/issues", tags=["issues"])
router.include_router(checkpoints.router, prefix="/checkpoints", tags=["checkpoints"])
