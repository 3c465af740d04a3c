"""Google Sheets gateway: batched range reads/writes and table fingerprints.

The gateway exposes the two primitives the sync engine needs:

``batch_read``
    One ``values.batchGet`` call for a set of ranges on one spreadsheet.
    Ranges are deduplicated before the call and ranges the service returns
    nothing for resolve to an empty table.

``batch_write``
    One ``values.batchUpdate`` call overwriting every given range with raw
    values. All updates travel in one request; the service may still apply
    them partially, which the next cycle's re-detection corrects.

googleapiclient is synchronous, so every ``execute()`` runs in a worker
thread to keep the event loop free. ``HttpError`` is converted into
``RemoteSheetError`` with the HTTP status preserved for the retry layer.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from typing import TYPE_CHECKING, Any

import google.auth
from google.auth.exceptions import DefaultCredentialsError
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from sheetmirror.exceptions import RemoteSheetError, SheetsConfigurationError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence
    from pathlib import Path

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]

Table = list[list[Any]]


def fingerprint(table: Sequence[Sequence[Any]] | None) -> str:
    """Return a SHA-256 hex digest over the row-major content of ``table``.

    Order-sensitive and deterministic. ``None`` and ``[]`` share one sentinel.
    """
    rows = [list(row) for row in table] if table else []
    payload = json.dumps(rows, separators=(",", ":"), ensure_ascii=False, default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def a1_range(tab: str, range_spec: str) -> str:
    """Build ``'Tab'!A1``-style notation, escaping quotes in the tab title."""
    title = tab.replace("'", "''")
    return f"'{title}'!{range_spec}"


def _dedupe(ranges: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    unique: list[str] = []
    for range_ref in ranges:
        if range_ref in seen:
            continue
        seen.add(range_ref)
        unique.append(range_ref)
    return unique


def _http_status(exc: HttpError) -> int:
    status = getattr(exc, "status_code", None) or getattr(getattr(exc, "resp", None), "status", 0)
    try:
        return int(status)
    except (TypeError, ValueError):
        return 0


def build_sheets_service(credentials_file: Path | None = None) -> Any:
    """Construct a Sheets v4 service.

    Uses the service account key at ``credentials_file`` when it exists and
    parses, otherwise Application Default Credentials.
    """
    credentials = None
    if credentials_file is not None and credentials_file.exists():
        try:
            credentials = service_account.Credentials.from_service_account_file(
                str(credentials_file), scopes=SCOPES
            )
            logger.info("Using service account credentials from %s", credentials_file)
        except (OSError, ValueError) as exc:
            logger.error(
                "Failed to read %s, falling back to default credentials: %s",
                credentials_file,
                exc,
            )
    if credentials is None:
        logger.info("Using Application Default Credentials")
        try:
            credentials, _project = google.auth.default(scopes=SCOPES)
        except DefaultCredentialsError as exc:
            raise SheetsConfigurationError(f"No usable Google credentials: {exc}") from exc
    return build("sheets", "v4", credentials=credentials, cache_discovery=False)


class SheetsGateway:
    """Batched access to spreadsheet values.

    Args:
        service_factory: Zero-argument callable returning a googleapiclient
            Sheets service. It is called once, on first use.
        service: An already-built service; takes precedence over the factory.
    """

    def __init__(
        self,
        service_factory: Callable[[], Any] | None = None,
        *,
        service: Any = None,
    ) -> None:
        if service is None and service_factory is None:
            msg = "Either service or service_factory is required"
            raise ValueError(msg)
        self._service = service
        self._factory = service_factory
        self._build_lock = asyncio.Lock()

    async def _get_service(self) -> Any:
        if self._service is None:
            async with self._build_lock:
                if self._service is None:
                    assert self._factory is not None
                    # Credential discovery may call the metadata server.
                    self._service = await asyncio.to_thread(self._factory)
        return self._service

    async def _execute(self, request: Any, description: str) -> Any:
        try:
            return await asyncio.to_thread(request.execute)
        except HttpError as exc:
            status = _http_status(exc)
            raise RemoteSheetError(f"Sheets {description} failed: {exc}", status) from exc

    async def batch_read(self, sheet_id: str, ranges: Iterable[str]) -> dict[str, Table]:
        """Read ``ranges`` from ``sheet_id`` in one request.

        Returns a dict keyed by the requested range strings.
        """
        unique = _dedupe(ranges)
        if not unique:
            return {}
        service = await self._get_service()
        request = (
            service.spreadsheets()
            .values()
            .batchGet(spreadsheetId=sheet_id, ranges=unique, majorDimension="ROWS")
        )
        response = await self._execute(request, "values.batchGet")
        value_ranges = response.get("valueRanges", []) if isinstance(response, dict) else []

        results: dict[str, Table] = {}
        for index, range_ref in enumerate(unique):
            payload = value_ranges[index] if index < len(value_ranges) else {}
            results[range_ref] = [list(row) for row in payload.get("values", [])]
        logger.debug("Batched read of %d ranges from %s", len(unique), sheet_id)
        return results

    async def batch_write(self, sheet_id: str, updates: Sequence[tuple[str, Table]]) -> None:
        """Overwrite each ``(range, values)`` pair on ``sheet_id`` in one request."""
        if not updates:
            return
        service = await self._get_service()
        body = {
            "valueInputOption": "RAW",
            "data": [{"range": range_ref, "values": values} for range_ref, values in updates],
        }
        request = service.spreadsheets().values().batchUpdate(spreadsheetId=sheet_id, body=body)
        await self._execute(request, "values.batchUpdate")
        logger.debug("Batched write of %d ranges to %s", len(updates), sheet_id)
