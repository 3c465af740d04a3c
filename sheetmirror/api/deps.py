"""Shared API dependencies: settings and the sync components held in app state."""

from __future__ import annotations

from fastapi import Request

from sheetmirror.config import Settings
from sheetmirror.services.mapping_registry import MappingRegistry
from sheetmirror.services.scheduler import SyncScheduler
from sheetmirror.services.sync_service import SyncEngine


def get_settings(request: Request) -> Settings:
    """Get application settings from app state."""
    settings: Settings = request.app.state.settings
    return settings


def get_engine(request: Request) -> SyncEngine:
    """Get the sync engine from app state."""
    engine: SyncEngine = request.app.state.sync_engine
    return engine


def get_scheduler(request: Request) -> SyncScheduler:
    """Get the sync scheduler from app state."""
    scheduler: SyncScheduler = request.app.state.scheduler
    return scheduler


def get_registry(request: Request) -> MappingRegistry:
    """Get the mapping registry from app state."""
    registry: MappingRegistry = request.app.state.mapping_registry
    return registry
