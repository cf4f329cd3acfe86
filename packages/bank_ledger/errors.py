"""Exception types raised by ``bank_ledger``."""

from __future__ import annotations

from typing import Any


class ImportValidationError(ValueError):
    """Input rejected before any record was processed.

    Raised for empty payloads, unknown target accounts, malformed markup and
    delimited files without a date or amount column. Nothing is persisted when
    this is raised.
    """


class RemoteApiError(RuntimeError):
    """A call to the remote banking API failed.

    ``status_code`` is ``None`` for transport failures (timeouts, DNS, refused
    connections). ``payload`` carries the decoded error body when the server
    sent one.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        payload: Any = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class TokenError(RemoteApiError):
    """Obtaining a new access token from the credential exchange failed."""


__all__ = ["ImportValidationError", "RemoteApiError", "TokenError"]
