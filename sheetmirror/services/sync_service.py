"""Sync engine: change detection, source-wins decision policy, batched writes.

One full cycle:

1. Snapshot the mappings. Nothing to do when there are none.
2. Take one rate-limit token for the read phase, or skip the cycle.
3. Read every source and destination tab with one ``batch_read`` per
   distinct spreadsheet, ranges deduplicated per spreadsheet.
4. Fingerprint both sides of every mapping and compare against the cache.
5. Decide whether to push source -> destination (never the other way) and
   record the freshly observed fingerprints.
6. Take one more token for the write phase, or skip all writes.
7. Write with one ``batch_write`` per destination spreadsheet.

Updates that are decided but not applied (write token denied, write failed,
cycle cancelled mid-write) restore the pre-cycle fingerprints of both tabs so
the next cycle detects the same drift again instead of forgetting it.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import StrEnum
from functools import partial
from typing import TYPE_CHECKING, Any, Protocol

from sheetmirror.services.retry_service import (
    DEFAULT_BASE_DELAY,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_MAX_DELAY,
    with_retry,
)
from sheetmirror.services.sheets_gateway import Table, a1_range, fingerprint

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable, Sequence

    from sheetmirror.services.checksum_store import ChecksumStore
    from sheetmirror.services.mapping_registry import Mapping, MappingRegistry
    from sheetmirror.services.rate_limit_service import TokenBucket

logger = logging.getLogger(__name__)


class SheetGateway(Protocol):
    """The two remote primitives the engine relies on."""

    async def batch_read(self, sheet_id: str, ranges: Iterable[str]) -> dict[str, Table]: ...

    async def batch_write(self, sheet_id: str, updates: Sequence[tuple[str, Table]]) -> None: ...


class SyncDirection(StrEnum):
    """Why a source table is being pushed to its destination."""

    FORWARD = "forward"
    INITIAL = "initial"
    FORCED_FORWARD = "forced-forward"
    CONFLICT_RESOLVED = "conflict-resolved"


class PushOutcome(StrEnum):
    """Result of a webhook-triggered push."""

    APPLIED = "applied"
    NO_MAPPING = "no_mapping"
    RATE_LIMITED = "rate_limited"


@dataclass
class QueuedUpdate:
    """A source table waiting to be written over its destination tab."""

    mapping: Mapping
    range: str
    values: Table
    fingerprint: str
    direction: SyncDirection
    previous_source: str | None = None
    previous_dest: str | None = None


@dataclass
class CycleReport:
    """Outcome of one full cycle."""

    skipped: bool = False
    skip_reason: str | None = None
    queued: list[QueuedUpdate] = field(default_factory=list)
    applied: list[QueuedUpdate] = field(default_factory=list)
    read_failures: list[str] = field(default_factory=list)
    write_failures: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.read_failures and not self.write_failures


def decide_direction(
    source_fp: str,
    dest_fp: str,
    cached_source: str | None,
    cached_dest: str | None,
) -> SyncDirection | None:
    """Return the push direction for one mapping, or None when nothing is pushed.

    Both "changed" flags compare against the fingerprint cached before this
    cycle, never against each other. Source is always authoritative: every
    outcome that pushes, pushes source into destination.
    """
    if source_fp == dest_fp:
        return None
    source_changed = cached_source is not None and cached_source != source_fp
    dest_changed = cached_dest is not None and cached_dest != dest_fp
    if source_changed and dest_changed:
        return SyncDirection.CONFLICT_RESOLVED
    if source_changed:
        return SyncDirection.FORWARD
    if cached_source is None and cached_dest is None:
        return SyncDirection.INITIAL
    if dest_changed:
        return SyncDirection.FORCED_FORWARD
    return None


_DIRECTION_MESSAGES = {
    SyncDirection.FORWARD: "Source changed, syncing to destination",
    SyncDirection.INITIAL: "Initial sync from source to destination",
    SyncDirection.FORCED_FORWARD: (
        "Destination changed independently, forcing sync from source to keep one direction"
    ),
    SyncDirection.CONFLICT_RESOLVED: (
        "Conflict detected: both sides changed, enforcing source to destination"
    ),
}


class SyncEngine:
    """Runs full sync cycles and webhook pushes against shared state.

    The checksum store, token bucket and mapping registry are passed in so
    tests can build isolated instances. At most one full cycle runs at a
    time; a cycle requested while another is in flight is skipped. Pushes
    are serialised among themselves and may overlap a cycle.
    """

    def __init__(
        self,
        gateway: SheetGateway,
        store: ChecksumStore,
        limiter: TokenBucket,
        registry: MappingRegistry,
        *,
        retry_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_base_delay: float = DEFAULT_BASE_DELAY,
        retry_max_delay: float = DEFAULT_MAX_DELAY,
        read_range: str = "A:Z",
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self._gateway = gateway
        self._store = store
        self._limiter = limiter
        self._registry = registry
        self._retry_attempts = retry_attempts
        self._retry_base_delay = retry_base_delay
        self._retry_max_delay = retry_max_delay
        self._read_range = read_range
        self._sleep = sleep
        self._cycle_lock = asyncio.Lock()
        self._push_lock = asyncio.Lock()

    @property
    def store(self) -> ChecksumStore:
        return self._store

    @property
    def limiter(self) -> TokenBucket:
        return self._limiter

    @property
    def registry(self) -> MappingRegistry:
        return self._registry

    @property
    def cycle_running(self) -> bool:
        return self._cycle_lock.locked()

    async def _retry(self, operation: Callable[[], Awaitable[Any]]) -> Any:
        return await with_retry(
            operation,
            max_attempts=self._retry_attempts,
            base_delay=self._retry_base_delay,
            max_delay=self._retry_max_delay,
            sleep=self._sleep,
        )

    def _read_ref(self, tab: str) -> str:
        return a1_range(tab, self._read_range)

    # ── Full cycle ───────────────────────────────────────

    async def run_cycle(self) -> CycleReport:
        """Run one full cycle across all mappings."""
        if self._cycle_lock.locked():
            logger.warning("Sync cycle already running, skipping this request")
            return CycleReport(skipped=True, skip_reason="busy")
        async with self._cycle_lock:
            return await self._run_cycle()

    async def _run_cycle(self) -> CycleReport:
        report = CycleReport()
        mappings = self._registry.snapshot()
        if not mappings:
            logger.warning("No mappings available for sync")
            report.skipped = True
            report.skip_reason = "no_mappings"
            return report

        if not self._limiter.try_consume(1):
            logger.warning("Rate limit: skipping full sync cycle")
            report.skipped = True
            report.skip_reason = "rate_limited"
            return report

        sheet_data = await self._read_all(mappings, report)
        updates_by_sheet = self._plan_updates(mappings, sheet_data, report)

        if not updates_by_sheet:
            logger.debug("Full sync: no changes detected")
            self._store.persist()
            return report

        if not self._limiter.try_consume(1):
            logger.warning(
                "Rate limit: skipping %d queued updates this cycle", len(report.queued)
            )
            for update in report.queued:
                self._rollback(update)
            self._store.persist()
            return report

        chained_keys = {mapping.source_key for mapping in mappings}
        try:
            await self._write_all(updates_by_sheet, report, chained_keys)
        except asyncio.CancelledError:
            unapplied = [u for u in report.queued if not any(u is a for a in report.applied)]
            logger.warning(
                "Sync cycle cancelled, rolling back %d unapplied updates", len(unapplied)
            )
            for update in unapplied:
                self._rollback(update)
            self._store.persist()
            raise
        self._store.persist()
        return report

    def build_read_plan(self, mappings: Iterable[Mapping]) -> dict[str, list[str]]:
        """Group every source and destination range under its spreadsheet, deduplicated."""
        plan: dict[str, list[str]] = {}
        for mapping in mappings:
            for sheet_id, tab in (
                (mapping.source_sheet_id, mapping.source_tab),
                (mapping.dest_sheet_id, mapping.dest_tab),
            ):
                ranges = plan.setdefault(sheet_id, [])
                range_ref = self._read_ref(tab)
                if range_ref not in ranges:
                    ranges.append(range_ref)
        return plan

    async def _read_all(
        self, mappings: Sequence[Mapping], report: CycleReport
    ) -> dict[str, dict[str, Table]]:
        sheet_data: dict[str, dict[str, Table]] = {}
        for sheet_id, ranges in self.build_read_plan(mappings).items():
            try:
                sheet_data[sheet_id] = await self._retry(
                    partial(self._gateway.batch_read, sheet_id, ranges)
                )
            except Exception as exc:
                logger.error("Error reading sheet %s: %s", sheet_id, exc, exc_info=exc)
                report.read_failures.append(sheet_id)
                continue
            logger.debug("Batched read of %d ranges from sheet %s", len(ranges), sheet_id)
        return sheet_data

    def _plan_updates(
        self,
        mappings: Sequence[Mapping],
        sheet_data: dict[str, dict[str, Table]],
        report: CycleReport,
    ) -> dict[str, list[QueuedUpdate]]:
        updates_by_sheet: dict[str, list[QueuedUpdate]] = {}
        cached = self._store.snapshot()
        for mapping in mappings:
            if mapping.source_sheet_id not in sheet_data or mapping.dest_sheet_id not in sheet_data:
                logger.warning(
                    "Skipping mapping %s: a sheet it uses could not be read", mapping.id
                )
                continue
            try:
                update = self._evaluate(mapping, sheet_data, cached)
            except Exception as exc:
                logger.error("Error processing mapping %s: %s", mapping.id, exc, exc_info=exc)
                continue
            if update is not None:
                report.queued.append(update)
                updates_by_sheet.setdefault(mapping.dest_sheet_id, []).append(update)
        return updates_by_sheet

    def _evaluate(
        self,
        mapping: Mapping,
        sheet_data: dict[str, dict[str, Table]],
        cached: dict[str, str],
    ) -> QueuedUpdate | None:
        source_values = sheet_data[mapping.source_sheet_id].get(self._read_ref(mapping.source_tab))
        dest_values = sheet_data[mapping.dest_sheet_id].get(self._read_ref(mapping.dest_tab))
        source_values = source_values or []
        dest_values = dest_values or []

        source_fp = fingerprint(source_values)
        dest_fp = fingerprint(dest_values)
        cached_source = cached.get(mapping.source_key)
        cached_dest = cached.get(mapping.dest_key)

        direction = decide_direction(source_fp, dest_fp, cached_source, cached_dest)

        # Commit what was observed, whether or not a push follows.
        self._store.set(mapping.source_key, source_fp)
        self._store.set(mapping.dest_key, dest_fp)

        if direction is None:
            return None

        message = _DIRECTION_MESSAGES[direction]
        if direction in (SyncDirection.FORCED_FORWARD, SyncDirection.CONFLICT_RESOLVED):
            logger.warning("%s (%s -> %s)", message, mapping.source_key, mapping.dest_key)
        else:
            logger.info("%s (%s -> %s)", message, mapping.source_key, mapping.dest_key)

        return QueuedUpdate(
            mapping=mapping,
            range=a1_range(mapping.dest_tab, "A1"),
            values=source_values,
            fingerprint=source_fp,
            direction=direction,
            previous_source=cached_source,
            previous_dest=cached_dest,
        )

    async def _write_all(
        self,
        updates_by_sheet: dict[str, list[QueuedUpdate]],
        report: CycleReport,
        chained_keys: set[str],
    ) -> None:
        for sheet_id, updates in updates_by_sheet.items():
            payload = [(update.range, update.values) for update in updates]
            try:
                await self._retry(partial(self._gateway.batch_write, sheet_id, payload))
            except Exception as exc:
                logger.error(
                    "Failed to apply %d batched updates to sheet %s: %s",
                    len(updates),
                    sheet_id,
                    exc,
                    exc_info=exc,
                )
                report.write_failures.append(sheet_id)
                for update in updates:
                    self._rollback(update)
                continue

            for update in updates:
                # A destination that feeds another mapping keeps its pre-write
                # fingerprint so the next cycle sees the write as source drift.
                if update.mapping.dest_key not in chained_keys:
                    self._store.set(update.mapping.dest_key, update.fingerprint)
                report.applied.append(update)
                logger.info(
                    "Applied %s update to %s in sheet %s",
                    update.direction,
                    update.range,
                    sheet_id,
                )
            logger.info("Batched write of %d updates to sheet %s", len(updates), sheet_id)

    def _rollback(self, update: QueuedUpdate) -> None:
        self._store.set(update.mapping.source_key, update.previous_source)
        self._store.set(update.mapping.dest_key, update.previous_dest)

    # ── Webhook push ─────────────────────────────────────

    async def apply_push(self, sheet_name: str, range_spec: str, values: Table) -> PushOutcome:
        """Write an edit observed on a source tab straight into its destination.

        The destination fingerprint is cleared afterwards so the next full
        cycle re-reads the tab instead of trusting a partial write.
        """
        async with self._push_lock:
            mapping = self._registry.find_by_source_tab(sheet_name)
            if mapping is None:
                logger.warning("No mapping for source tab %r, ignoring push", sheet_name)
                return PushOutcome.NO_MAPPING

            if not self._limiter.try_consume(1):
                logger.warning("Rate limit: dropping push update for %s!%s", sheet_name, range_spec)
                return PushOutcome.RATE_LIMITED

            dest_range = a1_range(mapping.dest_tab, range_spec)
            await self._retry(
                partial(self._gateway.batch_write, mapping.dest_sheet_id, [(dest_range, values)])
            )
            self._store.set(mapping.dest_key, None)
            logger.info(
                "Applied push update from %s!%s to %s in sheet %s",
                sheet_name,
                range_spec,
                dest_range,
                mapping.dest_sheet_id,
            )
            return PushOutcome.APPLIED
