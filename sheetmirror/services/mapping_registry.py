"""Registry of source-tab -> destination-tab mappings."""

from __future__ import annotations

import dataclasses
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sheetmirror.filesystem.toml_manager import parse_mappings_config, write_mappings_config

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

logger = logging.getLogger(__name__)

_REQUIRED_FIELDS = ("source_sheet_id", "source_tab", "dest_sheet_id", "dest_tab", "name")
_EDITABLE_FIELDS = frozenset(_REQUIRED_FIELDS) | {"description"}


def range_key(sheet_id: str, tab: str) -> str:
    """Checksum-store key for one tab of one spreadsheet."""
    return f"{sheet_id}:{tab}"


@dataclass(frozen=True)
class Mapping:
    """One directional sync unit: source tab is mirrored into destination tab."""

    id: str
    source_sheet_id: str
    source_tab: str
    dest_sheet_id: str
    dest_tab: str
    name: str
    description: str = ""

    @property
    def source_key(self) -> str:
        return range_key(self.source_sheet_id, self.source_tab)

    @property
    def dest_key(self) -> str:
        return range_key(self.dest_sheet_id, self.dest_tab)


class MappingNotFoundError(LookupError):
    """Raised when a mapping id is not registered."""


def _validate(mapping: Mapping) -> None:
    missing = [name for name in _REQUIRED_FIELDS if not str(getattr(mapping, name)).strip()]
    if missing:
        msg = f"Missing required fields: {', '.join(missing)}"
        raise ValueError(msg)
    if mapping.source_key == mapping.dest_key:
        msg = "Source and destination must be different tabs"
        raise ValueError(msg)


class MappingRegistry:
    """Mutable set of active mappings, optionally persisted to a TOML file.

    The sync engine only ever reads ``snapshot()``, which returns an immutable
    copy so admin edits made during a cycle do not affect it.
    """

    def __init__(self, mappings: Iterable[Mapping] = (), *, path: Path | None = None) -> None:
        self._path = path
        self._mappings: list[Mapping] = []
        for mapping in mappings:
            _validate(mapping)
            self._mappings.append(mapping)

    def __len__(self) -> int:
        return len(self._mappings)

    def snapshot(self) -> tuple[Mapping, ...]:
        return tuple(self._mappings)

    def list_mappings(self) -> list[Mapping]:
        return list(self._mappings)

    def get(self, mapping_id: str) -> Mapping:
        for mapping in self._mappings:
            if mapping.id == mapping_id:
                return mapping
        raise MappingNotFoundError(mapping_id)

    def find_by_source_tab(self, tab: str) -> Mapping | None:
        """Return the first mapping whose source tab is ``tab``.

        Tab names are not unique across spreadsheets; only the first
        registered match is returned.
        """
        for mapping in self._mappings:
            if mapping.source_tab == tab:
                return mapping
        return None

    def _new_id(self) -> str:
        taken = {mapping.id for mapping in self._mappings}
        candidate = int(time.time() * 1000)
        while str(candidate) in taken:
            candidate += 1
        return str(candidate)

    def create(
        self,
        *,
        source_sheet_id: str,
        source_tab: str,
        dest_sheet_id: str,
        dest_tab: str,
        name: str,
        description: str = "",
    ) -> Mapping:
        mapping = Mapping(
            id=self._new_id(),
            source_sheet_id=source_sheet_id,
            source_tab=source_tab,
            dest_sheet_id=dest_sheet_id,
            dest_tab=dest_tab,
            name=name,
            description=description,
        )
        _validate(mapping)
        self._mappings.append(mapping)
        self.save()
        logger.info(
            "Created mapping %s (%s -> %s)", mapping.id, mapping.source_key, mapping.dest_key
        )
        return mapping

    def update(self, mapping_id: str, **changes: Any) -> Mapping:
        """Apply ``changes`` to a mapping. The id cannot be changed."""
        unknown = set(changes) - _EDITABLE_FIELDS
        if unknown:
            msg = f"Unknown mapping fields: {', '.join(sorted(unknown))}"
            raise ValueError(msg)
        current = self.get(mapping_id)
        updated = dataclasses.replace(current, **changes)
        _validate(updated)
        self._mappings[self._mappings.index(current)] = updated
        self.save()
        logger.info("Updated mapping %s", mapping_id)
        return updated

    def delete(self, mapping_id: str) -> None:
        current = self.get(mapping_id)
        self._mappings.remove(current)
        self.save()
        logger.info("Deleted mapping %s", mapping_id)

    def load(self) -> None:
        """Replace the in-memory mappings with the contents of the TOML file."""
        if self._path is None:
            return
        loaded = [Mapping(**entry) for entry in parse_mappings_config(self._path)]
        for mapping in loaded:
            _validate(mapping)
        self._mappings = loaded
        logger.info("Loaded %d mappings from %s", len(loaded), self._path)

    def save(self) -> None:
        if self._path is None:
            return
        write_mappings_config(self._path, [dataclasses.asdict(m) for m in self._mappings])
