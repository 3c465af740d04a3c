"""Mapping-related schemas."""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from sheetmirror.services.mapping_registry import Mapping

SheetRef = Annotated[str, Field(min_length=1, max_length=200)]
TabRef = Annotated[str, Field(min_length=1, max_length=100)]


class MappingResponse(BaseModel):
    """Mapping detail response."""

    id: str
    source_sheet_id: str
    source_tab: str
    dest_sheet_id: str
    dest_tab: str
    name: str
    description: str = ""

    @classmethod
    def from_mapping(cls, mapping: Mapping) -> MappingResponse:
        return cls(
            id=mapping.id,
            source_sheet_id=mapping.source_sheet_id,
            source_tab=mapping.source_tab,
            dest_sheet_id=mapping.dest_sheet_id,
            dest_tab=mapping.dest_tab,
            name=mapping.name,
            description=mapping.description,
        )


class MappingCreate(BaseModel):
    """Request to create a new mapping."""

    source_sheet_id: SheetRef
    source_tab: TabRef
    dest_sheet_id: SheetRef
    dest_tab: TabRef
    name: Annotated[str, Field(min_length=1, max_length=200)]
    description: str = ""


class MappingUpdate(BaseModel):
    """Request to update a mapping. Omitted fields are left unchanged."""

    source_sheet_id: SheetRef | None = None
    source_tab: TabRef | None = None
    dest_sheet_id: SheetRef | None = None
    dest_tab: TabRef | None = None
    name: Annotated[str, Field(min_length=1, max_length=200)] | None = None
    description: str | None = None


class MappingDeleteResponse(BaseModel):
    """Response after deleting a mapping."""

    id: str
    deleted: bool = True
