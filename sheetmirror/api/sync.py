"""Sync control API: status, scheduler configuration, start/stop and manual trigger."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from sheetmirror.api.deps import get_scheduler, get_settings
from sheetmirror.config import MIN_SYNC_INTERVAL_SECONDS, Settings
from sheetmirror.services.scheduler import SyncScheduler
from sheetmirror.services.sync_service import CycleReport

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["sync"])


# ── Schemas ──────────────────────────────────────────


class SyncStatusResponse(BaseModel):
    """Scheduler counters."""

    is_running: bool
    last_sync: datetime | None = None
    next_sync: datetime | None = None
    total_syncs: int
    errors: int


class SyncConfigResponse(BaseModel):
    """Current scheduler configuration."""

    interval_seconds: float
    auto_start: bool
    message: str | None = None


class SyncConfigUpdate(BaseModel):
    """Request to change scheduler configuration."""

    interval_seconds: float | None = Field(default=None, ge=MIN_SYNC_INTERVAL_SECONDS)
    auto_start: bool | None = None


class SyncControlResponse(BaseModel):
    """Response after starting or stopping the scheduler."""

    message: str
    status: SyncStatusResponse


class CycleSummary(BaseModel):
    """Outcome of a cycle run on demand."""

    skipped: bool
    skip_reason: str | None = None
    queued: int
    applied: int
    read_failures: list[str] = Field(default_factory=list)
    write_failures: list[str] = Field(default_factory=list)


class SyncTriggerResponse(BaseModel):
    """Response after a manual sync."""

    message: str
    last_sync: datetime | None = None
    total_syncs: int
    cycle: CycleSummary


def _status_response(scheduler: SyncScheduler) -> SyncStatusResponse:
    status = scheduler.status
    return SyncStatusResponse(
        is_running=scheduler.is_running,
        last_sync=status.last_sync,
        next_sync=status.next_sync,
        total_syncs=status.total_syncs,
        errors=status.errors,
    )


def _cycle_summary(report: CycleReport) -> CycleSummary:
    return CycleSummary(
        skipped=report.skipped,
        skip_reason=report.skip_reason,
        queued=len(report.queued),
        applied=len(report.applied),
        read_failures=report.read_failures,
        write_failures=report.write_failures,
    )


# ── Endpoints ────────────────────────────────────────


@router.get("/status", response_model=SyncStatusResponse)
async def sync_status(
    scheduler: Annotated[SyncScheduler, Depends(get_scheduler)],
) -> SyncStatusResponse:
    """Return scheduler counters."""
    return _status_response(scheduler)


@router.get("/config", response_model=SyncConfigResponse)
async def get_sync_config(
    scheduler: Annotated[SyncScheduler, Depends(get_scheduler)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> SyncConfigResponse:
    """Return the scheduler interval and auto-start flag."""
    return SyncConfigResponse(
        interval_seconds=scheduler.interval_seconds,
        auto_start=settings.sync_auto_start,
    )


@router.post("/config", response_model=SyncConfigResponse)
async def update_sync_config(
    body: SyncConfigUpdate,
    scheduler: Annotated[SyncScheduler, Depends(get_scheduler)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> SyncConfigResponse:
    """Change the interval (restarting a running ticker) or the auto-start flag."""
    restarted = False
    if body.interval_seconds is not None:
        restarted = await scheduler.set_interval(body.interval_seconds)
        settings.full_sync_interval_seconds = body.interval_seconds
    if body.auto_start is not None:
        settings.sync_auto_start = body.auto_start

    message = (
        "Configuration updated and sync interval restarted"
        if restarted
        else "Configuration updated"
    )
    return SyncConfigResponse(
        interval_seconds=scheduler.interval_seconds,
        auto_start=settings.sync_auto_start,
        message=message,
    )


@router.post("/start", response_model=SyncControlResponse)
async def start_sync(
    scheduler: Annotated[SyncScheduler, Depends(get_scheduler)],
) -> SyncControlResponse:
    """Start the periodic scheduler and run one cycle immediately."""
    if scheduler.is_running:
        raise HTTPException(status_code=400, detail="Sync is already running")
    await scheduler.start(run_immediately=True)
    return SyncControlResponse(
        message="Sync started successfully", status=_status_response(scheduler)
    )


@router.post("/stop", response_model=SyncControlResponse)
async def stop_sync(
    scheduler: Annotated[SyncScheduler, Depends(get_scheduler)],
) -> SyncControlResponse:
    """Stop the periodic scheduler and checkpoint the checksum store."""
    if not scheduler.is_running:
        raise HTTPException(status_code=400, detail="Sync is not running")
    await scheduler.stop()
    return SyncControlResponse(
        message="Sync stopped successfully", status=_status_response(scheduler)
    )


@router.post("/trigger", response_model=SyncTriggerResponse)
async def trigger_sync(
    scheduler: Annotated[SyncScheduler, Depends(get_scheduler)],
) -> SyncTriggerResponse:
    """Run one full cycle now, outside the schedule."""
    try:
        report = await scheduler.run_once()
    except Exception as exc:
        logger.error("Manual sync failed: %s", exc, exc_info=exc)
        raise HTTPException(status_code=500, detail="Manual sync failed") from exc

    message = (
        f"Manual sync skipped: {report.skip_reason}"
        if report.skipped
        else "Manual sync completed successfully"
    )
    return SyncTriggerResponse(
        message=message,
        last_sync=scheduler.status.last_sync,
        total_syncs=scheduler.status.total_syncs,
        cycle=_cycle_summary(report),
    )
