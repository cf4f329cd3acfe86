"""Access-token lifecycle for the bank-data API.

The decision of what to do with the stored token is a pure function of the
token and the current time; performing the action (HTTP exchange, persisting
the result) is the client's job.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Protocol

# A token this close to expiry is treated as expired.
EXPIRY_BUFFER = timedelta(minutes=5)


@dataclass(frozen=True, slots=True)
class StoredToken:
    access_token: str
    refresh_token: str | None
    expires_at: datetime


class TokenAction(Enum):
    REUSE = "reuse"
    REFRESH = "refresh"
    CREATE = "create"


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""

    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def decide_token_action(token: StoredToken | None, now: datetime) -> TokenAction:
    """Return what to do with ``token`` at ``now``.

    - no token (or an empty access token): ``CREATE``
    - expiry strictly later than ``now + 5 minutes``: ``REUSE``
    - otherwise ``REFRESH`` when a refresh token is stored, else ``CREATE``
    """

    if token is None or not token.access_token:
        return TokenAction.CREATE
    if as_utc(token.expires_at) > as_utc(now) + EXPIRY_BUFFER:
        return TokenAction.REUSE
    if token.refresh_token:
        return TokenAction.REFRESH
    return TokenAction.CREATE


class TokenStore(Protocol):
    """Persistence for the single API token."""

    def load(self) -> StoredToken | None: ...

    def save(self, token: StoredToken) -> None: ...

    def clear(self) -> None: ...


class MemoryTokenStore:
    """In-process store; the CLI uses the SQL store instead."""

    def __init__(self, token: StoredToken | None = None) -> None:
        self._token = token

    def load(self) -> StoredToken | None:
        return self._token

    def save(self, token: StoredToken) -> None:
        self._token = token

    def clear(self) -> None:
        self._token = None


__all__ = [
    "EXPIRY_BUFFER",
    "MemoryTokenStore",
    "StoredToken",
    "TokenAction",
    "TokenStore",
    "as_utc",
    "decide_token_action",
]
