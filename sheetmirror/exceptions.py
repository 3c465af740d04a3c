"""Application-level exception types.

Convention:
- ``InternalServerError``: for errors whose details must never reach clients.
  The global handler logs the full message at ERROR and returns a generic
  "Internal server error" (500) to the client.
- ``RemoteSheetError``: the spreadsheet service rejected or failed a request.
  ``status_code`` carries the HTTP status so the retry layer can classify it;
  the global handler answers 502.
- ``SheetsConfigurationError``: the Sheets client could not be built
  (missing library, unreadable credentials).
- ``ValueError``: for *business logic* validation errors that are safe to
  forward to clients (bad mapping fields, intervals out of range).  The global
  ``ValueError`` handler returns ``str(exc)`` as the 422 detail.
"""

from __future__ import annotations


class InternalServerError(Exception):
    """Raised for internal errors whose details must not be exposed to clients."""


class RemoteSheetError(Exception):
    """Raised when a Google Sheets API call fails.

    ``status_code`` is the HTTP status reported by the service, or ``0`` when
    the failure happened before a response was received.
    """

    def __init__(self, message: str, status_code: int = 0) -> None:
        super().__init__(message)
        self.status_code = status_code


class SheetsConfigurationError(InternalServerError):
    """Raised when the Sheets API client cannot be constructed."""
