"""Tests for the persisted checksum store."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from sheetmirror.services.checksum_store import ChecksumStore

if TYPE_CHECKING:
    from pathlib import Path

    import pytest


class TestChecksumStore:
    def test_absent_key_returns_none(self, tmp_path: Path) -> None:
        store = ChecksumStore(tmp_path / "cache.json")
        assert store.get("sheet:tab") is None

    def test_set_and_get(self, tmp_path: Path) -> None:
        store = ChecksumStore(tmp_path / "cache.json")
        store.set("sheet:tab", "abc")
        assert store.get("sheet:tab") == "abc"
        assert len(store) == 1

    def test_set_none_clears_entry(self, tmp_path: Path) -> None:
        store = ChecksumStore(tmp_path / "cache.json")
        store.set("sheet:tab", "abc")
        store.set("sheet:tab", None)
        assert store.get("sheet:tab") is None
        assert "sheet:tab" not in store.snapshot()

    def test_clearing_unknown_key_is_noop(self, tmp_path: Path) -> None:
        store = ChecksumStore(tmp_path / "cache.json")
        store.set("missing", None)
        assert len(store) == 0

    def test_persist_then_load_round_trip(self, tmp_path: Path) -> None:
        path = tmp_path / "cache.json"
        store = ChecksumStore(path)
        store.set("a:1", "x")
        store.set("b:2", "y")
        store.persist()

        reloaded = ChecksumStore(path)
        reloaded.load()
        assert reloaded.snapshot() == {"a:1": "x", "b:2": "y"}

    def test_persist_writes_flat_json_object(self, tmp_path: Path) -> None:
        path = tmp_path / "cache.json"
        store = ChecksumStore(path)
        store.set("a:1", "x")
        store.persist()
        assert json.loads(path.read_text()) == {"a:1": "x"}
        assert not (tmp_path / "cache.json.tmp").exists()

    def test_load_missing_file_starts_empty(self, tmp_path: Path) -> None:
        store = ChecksumStore(tmp_path / "nope.json")
        store.load()
        assert len(store) == 0

    def test_load_corrupt_file_starts_empty(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        path = tmp_path / "cache.json"
        path.write_text("{not json")
        store = ChecksumStore(path)
        store.set("stale", "value")
        with caplog.at_level(logging.ERROR, logger="sheetmirror.services.checksum_store"):
            store.load()
        assert len(store) == 0
        assert "Failed to load checksum file" in caplog.text

    def test_load_non_object_starts_empty(self, tmp_path: Path) -> None:
        path = tmp_path / "cache.json"
        path.write_text("[1, 2, 3]")
        store = ChecksumStore(path)
        store.load()
        assert len(store) == 0

    def test_load_ignores_non_string_values(self, tmp_path: Path) -> None:
        path = tmp_path / "cache.json"
        path.write_text(json.dumps({"a:1": "x", "b:2": None, "c:3": 5}))
        store = ChecksumStore(path)
        store.load()
        assert store.snapshot() == {"a:1": "x"}

    def test_persist_failure_is_logged_not_raised(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("file, not a directory")
        store = ChecksumStore(blocker / "cache.json")
        store.set("a:1", "x")
        with caplog.at_level(logging.ERROR, logger="sheetmirror.services.checksum_store"):
            store.persist()
        assert "Failed to save checksum file" in caplog.text
        assert store.get("a:1") == "x"

    def test_store_without_path_never_touches_disk(self) -> None:
        store = ChecksumStore()
        store.set("a:1", "x")
        store.persist()
        store.load()
        assert len(store) == 0

    def test_reset_clears_everything(self, tmp_path: Path) -> None:
        store = ChecksumStore(tmp_path / "cache.json")
        store.set("a:1", "x")
        store.reset()
        assert len(store) == 0
