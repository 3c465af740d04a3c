"""Persisted fingerprint cache used to detect drift between sync cycles.

The store is an in-memory ``RangeKey -> fingerprint`` dict checkpointed to a
JSON file. Checkpoints happen at process start (``load``), after every full
cycle and at shutdown (``persist``), so a crash can lose at most the most
recent updates. That costs one redundant detection on restart and never
touches spreadsheet data.
"""

from __future__ import annotations

import json
import logging
import os
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)


class ChecksumStore:
    """Map of ``sheet_id:tab`` keys to the last observed fingerprint.

    Thread-safety: safe under asyncio's single-threaded cooperative model.
    ``get``/``set`` have no await points, so no interleaving can occur inside
    a single call.
    """

    def __init__(self, path: Path | None = None) -> None:
        self._path = path
        self._entries: dict[str, str] = {}
        self._loaded = False

    @property
    def loaded(self) -> bool:
        """True once ``load`` has run, even if it found nothing to load."""
        return self._loaded

    @property
    def path(self) -> Path | None:
        return self._path

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> str | None:
        """Return the cached fingerprint for ``key``, or ``None`` if never observed."""
        return self._entries.get(key)

    def set(self, key: str, value: str | None) -> None:
        """Record ``value`` for ``key``. ``None`` clears the entry to force re-detection."""
        if value is None:
            self._entries.pop(key, None)
        else:
            self._entries[key] = value

    def snapshot(self) -> dict[str, str]:
        return dict(self._entries)

    def reset(self) -> None:
        self._entries.clear()

    def load(self) -> None:
        """Load entries from disk. Missing or corrupt files leave the store empty."""
        self._entries = {}
        self._loaded = True
        if self._path is None:
            return
        if not self._path.exists():
            logger.info("No checksum file at %s, starting with empty cache", self._path)
            return
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            logger.error(
                "Failed to load checksum file %s, starting with empty cache: %s", self._path, exc
            )
            return
        if not isinstance(data, dict):
            logger.error(
                "Checksum file %s does not contain an object, starting with empty cache",
                self._path,
            )
            return
        self._entries = {str(k): v for k, v in data.items() if isinstance(v, str)}
        logger.info("Loaded %d checksums from %s", len(self._entries), self._path)

    def persist(self) -> None:
        """Write entries to disk. Failures are logged, never raised."""
        if self._path is None:
            return
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(self._entries, indent=2), encoding="utf-8")
            os.replace(tmp_path, self._path)
        except OSError as exc:
            logger.error("Failed to save checksum file %s: %s", self._path, exc)
            return
        logger.debug("Saved %d checksums to %s", len(self._entries), self._path)
