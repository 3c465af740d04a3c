"""Shared test fixtures for SheetMirror."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import pytest
from httpx import ASGITransport, AsyncClient

from sheetmirror.config import Settings
from sheetmirror.exceptions import RemoteSheetError
from sheetmirror.main import create_app, init_sync_state
from sheetmirror.services.checksum_store import ChecksumStore
from sheetmirror.services.mapping_registry import Mapping, MappingRegistry
from sheetmirror.services.rate_limit_service import TokenBucket
from sheetmirror.services.sheets_gateway import a1_range
from sheetmirror.services.sync_service import SyncEngine

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Iterable, Sequence
    from pathlib import Path


class FakeGateway:
    """In-memory stand-in for ``SheetsGateway``.

    ``tabs`` maps ``(sheet_id, tab)`` to a table. Reads return whatever is
    stored for the requested tab; writes at ``'Tab'!A1`` replace the whole
    table, any other range is recorded but not applied. ``read_errors`` and
    ``write_errors`` hold per-sheet queues of exceptions raised before the
    call succeeds.
    """

    def __init__(self, read_range: str = "A:Z") -> None:
        self.read_range = read_range
        self.tabs: dict[tuple[str, str], list[list[Any]]] = {}
        self.reads: list[tuple[str, list[str]]] = []
        self.writes: list[tuple[str, list[tuple[str, list[list[Any]]]]]] = []
        self.read_errors: dict[str, list[Exception]] = {}
        self.write_errors: dict[str, list[Exception]] = {}

    def put(self, sheet_id: str, tab: str, values: list[list[Any]]) -> None:
        self.tabs[(sheet_id, tab)] = [list(row) for row in values]

    def table(self, sheet_id: str, tab: str) -> list[list[Any]]:
        return self.tabs.get((sheet_id, tab), [])

    def _tab_for(self, range_ref: str) -> str:
        quoted = range_ref.rsplit("!", 1)[0]
        return quoted[1:-1].replace("''", "'")

    async def batch_read(self, sheet_id: str, ranges: Iterable[str]) -> dict[str, Any]:
        requested = list(ranges)
        self.reads.append((sheet_id, requested))
        pending = self.read_errors.get(sheet_id)
        if pending:
            raise pending.pop(0)
        return {r: [list(row) for row in self.table(sheet_id, self._tab_for(r))] for r in requested}

    async def batch_write(self, sheet_id: str, updates: Sequence[tuple[str, Any]]) -> None:
        self.writes.append((sheet_id, [(r, v) for r, v in updates]))
        pending = self.write_errors.get(sheet_id)
        if pending:
            raise pending.pop(0)
        for range_ref, values in updates:
            tab = self._tab_for(range_ref)
            if range_ref == a1_range(tab, "A1"):
                self.put(sheet_id, tab, values)


class StallingWriteGateway(FakeGateway):
    """``FakeGateway`` whose writes wait on ``release`` while ``stall`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.stall = False
        self.write_started = asyncio.Event()
        self.release = asyncio.Event()

    async def batch_write(self, sheet_id: str, updates: Sequence[tuple[str, Any]]) -> None:
        if self.stall:
            self.write_started.set()
            await self.release.wait()
        await super().batch_write(sheet_id, updates)


def remote_error(status: int) -> RemoteSheetError:
    return RemoteSheetError(f"HTTP {status}", status)


async def no_sleep(_delay: float) -> None:
    return None


def make_mapping(
    mapping_id: str = "1",
    *,
    source: tuple[str, str] = ("SheetA", "Tab1"),
    dest: tuple[str, str] = ("SheetB", "Tab1"),
    name: str = "A to B",
) -> Mapping:
    return Mapping(
        id=mapping_id,
        source_sheet_id=source[0],
        source_tab=source[1],
        dest_sheet_id=dest[0],
        dest_tab=dest[1],
        name=name,
    )


@asynccontextmanager
async def create_test_client(
    settings: Settings, gateway: FakeGateway
) -> AsyncGenerator[AsyncClient]:
    """Create an HTTP test client with sync state wired to ``gateway``.

    Performs the lifespan's setup manually because ASGITransport does not
    trigger it.
    """
    app = create_app(settings)
    settings.validate_runtime()
    scheduler = init_sync_state(app, settings, gateway)

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    await scheduler.shutdown()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def store(tmp_path: Path) -> ChecksumStore:
    return ChecksumStore(tmp_path / "cache.json")


@pytest.fixture
def limiter() -> TokenBucket:
    return TokenBucket(capacity=80, window_seconds=100)


@pytest.fixture
def registry() -> MappingRegistry:
    return MappingRegistry([make_mapping()])


@pytest.fixture
def engine(
    gateway: FakeGateway,
    store: ChecksumStore,
    limiter: TokenBucket,
    registry: MappingRegistry,
) -> SyncEngine:
    return SyncEngine(gateway, store, limiter, registry, sleep=no_sleep)


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings with temporary paths."""
    return Settings(
        debug=True,
        frontend_dir=tmp_path / "public",
        checksum_file=tmp_path / "cache.json",
        mappings_file=tmp_path / "mappings.toml",
        google_credentials_file=tmp_path / "key.json",
        retry_base_delay_seconds=0,
        retry_max_delay_seconds=0,
    )


@pytest.fixture
async def client(test_settings: Settings, gateway: FakeGateway) -> AsyncGenerator[AsyncClient]:
    """Create test HTTP client."""
    async with create_test_client(test_settings, gateway) as ac:
        yield ac
