"""Property-based tests for fingerprinting and the source-wins decision policy."""

from __future__ import annotations

import asyncio

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from sheetmirror.services.checksum_store import ChecksumStore
from sheetmirror.services.mapping_registry import MappingRegistry
from sheetmirror.services.rate_limit_service import TokenBucket
from sheetmirror.services.sheets_gateway import fingerprint
from sheetmirror.services.sync_service import SyncDirection, SyncEngine, decide_direction
from tests.conftest import FakeGateway, make_mapping, no_sleep

PROPERTY_SETTINGS = settings(
    max_examples=200,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow],
)

# Booleans and floats are left out: ``True == 1`` and ``1.0 == 1`` in Python
# but serialise differently, so list equality would not imply equal digests.
_CELL = st.one_of(st.text(max_size=6), st.integers(min_value=-1000, max_value=1000))
_TABLE = st.lists(st.lists(_CELL, max_size=4), max_size=5)
_FP = st.sampled_from(["f1", "f2", "f3"])
_CACHED = st.one_of(st.none(), _FP)

# An edit replaces the source table, the destination table, both, or neither.
_EDIT = st.tuples(st.one_of(st.none(), _TABLE), st.one_of(st.none(), _TABLE))


class TestFingerprintProperties:
    @PROPERTY_SETTINGS
    @given(table=_TABLE)
    def test_deterministic(self, table: list[list[object]]) -> None:
        copy = [list(row) for row in table]
        assert fingerprint(table) == fingerprint(copy)

    @PROPERTY_SETTINGS
    @given(left=_TABLE, right=_TABLE)
    def test_distinct_tables_distinct_digests(
        self, left: list[list[object]], right: list[list[object]]
    ) -> None:
        if left == right:
            assert fingerprint(left) == fingerprint(right)
        else:
            assert fingerprint(left) != fingerprint(right)


class TestDecideDirection:
    @pytest.mark.parametrize(
        ("source", "dest", "cached_source", "cached_dest", "expected"),
        [
            ("a", "a", None, None, None),
            ("a", "a", "x", "y", None),
            ("a", "b", None, None, SyncDirection.INITIAL),
            ("a2", "b", "a1", "b", SyncDirection.FORWARD),
            ("a2", "b", "a1", None, SyncDirection.FORWARD),
            ("a", "b2", "a", "b1", SyncDirection.FORCED_FORWARD),
            ("a", "b2", None, "b1", SyncDirection.FORCED_FORWARD),
            ("a2", "b2", "a1", "b1", SyncDirection.CONFLICT_RESOLVED),
            ("a", "b", "a", "b", None),
            ("a", "b", "a", None, None),
            ("a", "b", None, "b", None),
        ],
    )
    def test_decision_table(
        self,
        source: str,
        dest: str,
        cached_source: str | None,
        cached_dest: str | None,
        expected: SyncDirection | None,
    ) -> None:
        assert decide_direction(source, dest, cached_source, cached_dest) == expected

    @PROPERTY_SETTINGS
    @given(fp=_FP, cached_source=_CACHED, cached_dest=_CACHED)
    def test_equal_fingerprints_never_push(
        self, fp: str, cached_source: str | None, cached_dest: str | None
    ) -> None:
        assert decide_direction(fp, fp, cached_source, cached_dest) is None

    @PROPERTY_SETTINGS
    @given(source=_FP, dest=_FP, cached_source=_CACHED, cached_dest=_CACHED)
    def test_changed_source_always_pushes(
        self, source: str, dest: str, cached_source: str | None, cached_dest: str | None
    ) -> None:
        direction = decide_direction(source, dest, cached_source, cached_dest)
        if source != dest and cached_source is not None and cached_source != source:
            assert direction in (SyncDirection.FORWARD, SyncDirection.CONFLICT_RESOLVED)


class TestCycleConvergence:
    @PROPERTY_SETTINGS
    @given(initial=st.tuples(_TABLE, _TABLE), edits=st.lists(_EDIT, max_size=6))
    def test_destination_mirrors_source_after_every_cycle(
        self,
        initial: tuple[list[list[object]], list[list[object]]],
        edits: list[tuple[list[list[object]] | None, list[list[object]] | None]],
    ) -> None:
        gateway = FakeGateway()
        engine = SyncEngine(
            gateway,
            ChecksumStore(),
            TokenBucket(capacity=1000, window_seconds=100),
            MappingRegistry([make_mapping()]),
            sleep=no_sleep,
        )
        gateway.put("SheetA", "Tab1", initial[0])
        gateway.put("SheetB", "Tab1", initial[1])

        async def scenario() -> None:
            await engine.run_cycle()
            assert gateway.table("SheetB", "Tab1") == gateway.table("SheetA", "Tab1")
            for source_edit, dest_edit in edits:
                if source_edit is not None:
                    gateway.put("SheetA", "Tab1", source_edit)
                if dest_edit is not None:
                    gateway.put("SheetB", "Tab1", dest_edit)
                await engine.run_cycle()
                assert gateway.table("SheetB", "Tab1") == gateway.table("SheetA", "Tab1")

            # A quiet cycle after convergence writes nothing.
            writes_before = len(gateway.writes)
            report = await engine.run_cycle()
            assert report.queued == []
            assert len(gateway.writes) == writes_before

        asyncio.run(scenario())
