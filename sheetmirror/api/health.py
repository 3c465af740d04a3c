"""Health check endpoint."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from sheetmirror.api.deps import get_engine, get_scheduler
from sheetmirror.services.scheduler import SyncScheduler
from sheetmirror.services.sync_service import SyncEngine

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    version: str
    mappings: int
    cached_checksums: int
    scheduler_running: bool
    tokens_available: int


@router.get("/health", response_model=HealthResponse)
@router.get("/api/health", response_model=HealthResponse)
async def health_check(
    engine: Annotated[SyncEngine, Depends(get_engine)],
    scheduler: Annotated[SyncScheduler, Depends(get_scheduler)],
) -> HealthResponse:
    """Health check endpoint for monitoring and load balancers."""
    return HealthResponse(
        status="healthy",
        version="0.1.0",
        mappings=len(engine.registry),
        cached_checksums=len(engine.store),
        scheduler_running=scheduler.is_running,
        tokens_available=engine.limiter.available,
    )
