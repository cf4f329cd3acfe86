"""Pytest configuration for test isolation.

``db.client`` keeps one process-wide engine bound to the first URL it sees.
Each test gets its own SQLite file, so the engine is disposed before and after
every test, and the environment variables the package reads are cleared so a
developer's ``.env`` cannot leak into a run.
"""

from __future__ import annotations

from collections.abc import Iterator

import pytest
from db.client import reset_engine

_ENV_KEYS = (
    "DATABASE_URL",
    "GOCARDLESS_SECRET_ID",
    "GOCARDLESS_SECRET_KEY",
    "GOCARDLESS_API_URL",
    "BANK_LEDGER_LOG_LEVEL",
    "BANK_LEDGER_HTTP_TIMEOUT",
    "BANK_LEDGER_SYNC_DAYS_BACK",
    "BANK_LEDGER_REDIRECT_URL",
)


@pytest.fixture(autouse=True)
def _isolate_engine(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    reset_engine()
    yield
    reset_engine()
