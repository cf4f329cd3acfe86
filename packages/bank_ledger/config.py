"""Runtime settings read from the process environment.

Entrypoints load ``.env`` (``python-dotenv``) before calling
``Settings.from_env()``; library code receives a ``Settings`` instance or
explicit arguments and never reads the environment itself.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

DEFAULT_API_URL = "https://bankaccountdata.gocardless.com"
DEFAULT_REDIRECT_URL = "http://localhost:3000/#settings"
DEFAULT_HTTP_TIMEOUT = 30.0
DEFAULT_SYNC_DAYS_BACK = 90


def _env_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = (env.get(key) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ValueError(f"{key} must be a number, got {raw!r}") from e
    if value <= 0:
        raise ValueError(f"{key} must be positive, got {raw!r}")
    return value


def _env_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = (env.get(key) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from e
    if value < 0:
        raise ValueError(f"{key} must be >= 0, got {raw!r}")
    return value


@dataclass(frozen=True, slots=True)
class Settings:
    database_url: str | None
    secret_id: str | None
    secret_key: str | None
    api_url: str = DEFAULT_API_URL
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    sync_days_back: int = DEFAULT_SYNC_DAYS_BACK
    redirect_url: str = DEFAULT_REDIRECT_URL

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if env is None else env
        return cls(
            database_url=(env.get("DATABASE_URL") or "").strip() or None,
            secret_id=(env.get("GOCARDLESS_SECRET_ID") or "").strip() or None,
            secret_key=(env.get("GOCARDLESS_SECRET_KEY") or "").strip() or None,
            api_url=((env.get("GOCARDLESS_API_URL") or "").strip() or DEFAULT_API_URL).rstrip("/"),
            http_timeout=_env_float(env, "BANK_LEDGER_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT),
            sync_days_back=_env_int(env, "BANK_LEDGER_SYNC_DAYS_BACK", DEFAULT_SYNC_DAYS_BACK),
            redirect_url=(env.get("BANK_LEDGER_REDIRECT_URL") or "").strip()
            or DEFAULT_REDIRECT_URL,
        )

    @property
    def has_remote_credentials(self) -> bool:
        return bool(self.secret_id and self.secret_key)


__all__ = ["Settings"]
