"""Synchronous client for the bank-data (open banking) API.

Every authenticated call first resolves an access token through
:func:`~bank_ledger.remote.tokens.decide_token_action`, so the stored token is
reused, refreshed or replaced before the request goes out. Non-2xx responses
and transport failures surface as :class:`~bank_ledger.errors.RemoteApiError`.

Usage
-----
    with httpx.Client(base_url=settings.api_url, timeout=settings.http_timeout) as http:
        client = BankDataClient(http, secret_id=..., secret_key=..., token_store=store)
        for req in client.list_requisitions():
            ...
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from ..config import DEFAULT_REDIRECT_URL, Settings
from ..errors import RemoteApiError, TokenError
from ..logging_setup import get_logger
from .schemas import AccountDetails, Balance, Institution, Requisition, TokenPair
from .tokens import StoredToken, TokenAction, TokenStore, decide_token_action

logger = get_logger(__name__)

API_PREFIX = "/api/v2"

Clock = Callable[[], datetime]
M = TypeVar("M", bound=BaseModel)


def utcnow() -> datetime:
    return datetime.now(UTC)


def _error_payload(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text or None


def _validate(model: type[M], data: Any, what: str) -> M:
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise RemoteApiError(f"Unexpected {what} payload: {e}", payload=data) from e


class BankDataClient:
    """Thin typed wrapper over the provider's REST endpoints.

    Parameters
    ----------
    http:
        An ``httpx.Client`` whose ``base_url`` points at the API host. Timeouts
        and transports are configured by the caller.
    secret_id, secret_key:
        Credentials exchanged for tokens at ``token/new/``.
    token_store:
        Where the single access/refresh token pair is persisted.
    clock:
        Returns the current aware UTC time; injectable for tests.
    """

    def __init__(
        self,
        http: httpx.Client,
        *,
        secret_id: str | None,
        secret_key: str | None,
        token_store: TokenStore,
        clock: Clock = utcnow,
        redirect_url: str = DEFAULT_REDIRECT_URL,
    ) -> None:
        self._http = http
        self._secret_id = secret_id
        self._secret_key = secret_key
        self._store = token_store
        self._clock = clock
        self._redirect_url = redirect_url

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        token_store: TokenStore,
        transport: httpx.BaseTransport | None = None,
    ) -> BankDataClient:
        http = httpx.Client(
            base_url=settings.api_url,
            timeout=settings.http_timeout,
            transport=transport,
        )
        return cls(
            http,
            secret_id=settings.secret_id,
            secret_key=settings.secret_key,
            token_store=token_store,
            redirect_url=settings.redirect_url,
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> BankDataClient:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Token lifecycle
    # ------------------------------------------------------------------

    def access_token(self) -> str:
        """Return a usable access token, refreshing or recreating it as needed."""

        stored = self._store.load()
        action = decide_token_action(stored, self._clock())
        if stored is not None and action is TokenAction.REUSE:
            logger.debug("Reusing stored access token (expires %s)", stored.expires_at)
            return stored.access_token
        if stored is not None and stored.refresh_token and action is TokenAction.REFRESH:
            try:
                return self._refresh_token(stored.refresh_token)
            except RemoteApiError as e:
                logger.warning("Token refresh failed (%s); requesting a new token", e)
        return self._create_token()

    def _create_token(self) -> str:
        if not (self._secret_id and self._secret_key):
            raise TokenError("Bank API credentials are not configured")
        logger.info("Requesting a new access token")
        try:
            data = self._send(
                "POST",
                "/token/new/",
                json={"secret_id": self._secret_id, "secret_key": self._secret_key},
                auth=False,
            )
            pair = _validate(TokenPair, data, "token")
        except RemoteApiError as e:
            raise TokenError(
                "Failed to create an access token; check the secret id/key",
                status_code=e.status_code,
                payload=e.payload,
            ) from e
        token = StoredToken(
            access_token=pair.access,
            refresh_token=pair.refresh,
            expires_at=self._clock() + timedelta(seconds=pair.access_expires),
        )
        self._store.save(token)
        return token.access_token

    def _refresh_token(self, refresh_token: str) -> str:
        logger.info("Refreshing access token")
        data = self._send("POST", "/token/refresh/", json={"refresh": refresh_token}, auth=False)
        pair = _validate(TokenPair, data, "token refresh")
        # The refresh endpoint issues a new access token only.
        token = StoredToken(
            access_token=pair.access,
            refresh_token=refresh_token,
            expires_at=self._clock() + timedelta(seconds=pair.access_expires),
        )
        self._store.save(token)
        return token.access_token

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _send(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
        auth: bool = True,
    ) -> Any:
        headers = {"Accept": "application/json"}
        if auth:
            headers["Authorization"] = f"Bearer {self.access_token()}"
        url = f"{API_PREFIX}{path}"
        logger.info(">>> %s %s", method, url)
        try:
            resp = self._http.request(method, url, params=params, json=json, headers=headers)
        except httpx.HTTPError as e:
            raise RemoteApiError(f"{method} {url} failed: {e}") from e
        logger.info("<<< %s %s - Status: %d", method, url, resp.status_code)

        if resp.is_error:
            payload = _error_payload(resp)
            logger.error("Bank API error on %s %s: %s", method, url, payload)
            raise RemoteApiError(
                f"{method} {url} returned HTTP {resp.status_code}",
                status_code=resp.status_code,
                payload=payload,
            )
        if resp.status_code == 204 or not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise RemoteApiError(f"{method} {url} returned a non-JSON body") from e

    # ------------------------------------------------------------------
    # Endpoints
    # ------------------------------------------------------------------

    def list_institutions(self, country: str = "BG") -> list[Institution]:
        data = self._send("GET", "/institutions/", params={"country": country.upper()})
        return [_validate(Institution, item, "institution") for item in data or []]

    def create_requisition(
        self,
        institution_id: str,
        redirect: str | None = None,
        reference: str | None = None,
    ) -> Requisition:
        payload = {
            "institution_id": institution_id,
            "redirect": redirect or self._redirect_url,
            "reference": reference or f"ref-{int(self._clock().timestamp() * 1000)}",
        }
        data = self._send("POST", "/requisitions/", json=payload)
        req = _validate(Requisition, data, "requisition")
        logger.info("Created requisition %s for %s (status=%s)", req.id, institution_id, req.status)
        return req

    def get_requisition(self, requisition_id: str) -> Requisition:
        data = self._send("GET", f"/requisitions/{requisition_id}/")
        return _validate(Requisition, data, "requisition")

    def list_requisitions(self) -> list[Requisition]:
        data = self._send("GET", "/requisitions/") or {}
        results = (data.get("results") or []) if isinstance(data, dict) else data
        reqs = [_validate(Requisition, item, "requisition") for item in results]
        logger.info("Found %d requisitions", len(reqs))
        return reqs

    def delete_requisition(self, requisition_id: str) -> None:
        self._send("DELETE", f"/requisitions/{requisition_id}/")
        logger.info("Deleted requisition %s", requisition_id)

    def get_account_details(self, account_id: str) -> AccountDetails:
        data = self._send("GET", f"/accounts/{account_id}/details/") or {}
        return _validate(AccountDetails, data.get("account") or {}, "account details")

    def get_account_balances(self, account_id: str) -> list[Balance]:
        data = self._send("GET", f"/accounts/{account_id}/balances/") or {}
        return [_validate(Balance, item, "balance") for item in data.get("balances") or []]

    def get_account_transactions(
        self,
        account_id: str,
        date_from: date | str | None = None,
        date_to: date | str | None = None,
    ) -> dict[str, Any]:
        """Return the raw ``{"booked": [...], "pending": [...]}`` mapping."""

        params: dict[str, str] = {}
        if date_from:
            params["date_from"] = str(date_from)
        if date_to:
            params["date_to"] = str(date_to)
        data = self._send("GET", f"/accounts/{account_id}/transactions/", params=params or None)
        return (data or {}).get("transactions") or {}


__all__ = ["API_PREFIX", "BankDataClient", "utcnow"]
