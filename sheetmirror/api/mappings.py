"""Mapping admin API endpoints."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from sheetmirror.api.deps import get_registry
from sheetmirror.schemas.mapping import (
    MappingCreate,
    MappingDeleteResponse,
    MappingResponse,
    MappingUpdate,
)
from sheetmirror.services.mapping_registry import MappingNotFoundError, MappingRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/mappings", tags=["mappings"])


def _not_found(mapping_id: str) -> HTTPException:
    return HTTPException(status_code=404, detail=f"Mapping {mapping_id} not found")


@router.get("", response_model=list[MappingResponse])
async def list_mappings(
    registry: Annotated[MappingRegistry, Depends(get_registry)],
) -> list[MappingResponse]:
    """List all configured mappings."""
    return [MappingResponse.from_mapping(m) for m in registry.list_mappings()]


@router.get("/{mapping_id}", response_model=MappingResponse)
async def get_mapping(
    mapping_id: str,
    registry: Annotated[MappingRegistry, Depends(get_registry)],
) -> MappingResponse:
    """Get a single mapping."""
    try:
        return MappingResponse.from_mapping(registry.get(mapping_id))
    except MappingNotFoundError:
        raise _not_found(mapping_id) from None


@router.post("", response_model=MappingResponse, status_code=status.HTTP_201_CREATED)
async def create_mapping(
    body: MappingCreate,
    registry: Annotated[MappingRegistry, Depends(get_registry)],
) -> MappingResponse:
    """Register a new mapping. The id is assigned by the server."""
    mapping = registry.create(**body.model_dump())
    return MappingResponse.from_mapping(mapping)


@router.put("/{mapping_id}", response_model=MappingResponse)
async def update_mapping(
    mapping_id: str,
    body: MappingUpdate,
    registry: Annotated[MappingRegistry, Depends(get_registry)],
) -> MappingResponse:
    """Update fields of an existing mapping."""
    changes = body.model_dump(exclude_none=True)
    try:
        mapping = registry.update(mapping_id, **changes)
    except MappingNotFoundError:
        raise _not_found(mapping_id) from None
    return MappingResponse.from_mapping(mapping)


@router.delete("/{mapping_id}", response_model=MappingDeleteResponse)
async def delete_mapping(
    mapping_id: str,
    registry: Annotated[MappingRegistry, Depends(get_registry)],
) -> MappingDeleteResponse:
    """Remove a mapping. Cached fingerprints of its tabs are left in place."""
    try:
        registry.delete(mapping_id)
    except MappingNotFoundError:
        raise _not_found(mapping_id) from None
    return MappingDeleteResponse(id=mapping_id)
