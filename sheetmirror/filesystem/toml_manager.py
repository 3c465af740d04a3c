"""TOML reader/writer for mappings.toml."""

from __future__ import annotations

import tomllib
from typing import TYPE_CHECKING, Any

import tomli_w

if TYPE_CHECKING:
    from pathlib import Path

MAPPING_FIELDS = (
    "id",
    "source_sheet_id",
    "source_tab",
    "dest_sheet_id",
    "dest_tab",
    "name",
    "description",
)


def parse_mappings_config(path: Path) -> list[dict[str, str]]:
    """Parse ``[[mappings]]`` tables from ``path``.

    Returns an empty list when the file does not exist. Raises ``ValueError``
    for entries missing an ``id`` and ``tomllib.TOMLDecodeError`` for
    malformed files.
    """
    if not path.exists():
        return []

    data = tomllib.loads(path.read_text(encoding="utf-8"))
    entries: list[dict[str, str]] = []
    for raw in data.get("mappings", []):
        if "id" not in raw:
            msg = f"Mapping entry missing required 'id' field: {raw}"
            raise ValueError(msg)
        entries.append({key: str(raw.get(key, "")) for key in MAPPING_FIELDS})
    return entries


def write_mappings_config(path: Path, mappings: list[dict[str, Any]]) -> None:
    """Write mappings back to ``path`` as an array of tables."""
    rows = [{key: str(entry.get(key, "")) for key in MAPPING_FIELDS} for entry in mappings]
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(tomli_w.dumps({"mappings": rows}).encode("utf-8"))
