"""In-process stand-in for the bank-data API built on ``httpx.MockTransport``.

Routes are keyed by ``(METHOD, path)`` with the ``/api/v2`` prefix removed.
A route is either a ``(status, json_body)`` tuple or a callable taking the
``httpx.Request`` and returning one. Every request is recorded in ``calls``.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import httpx

from bank_ledger.remote import BankDataClient, MemoryTokenStore, StoredToken
from bank_ledger.remote.client import API_PREFIX

Reply = tuple[int, Any]
Route = Reply | Callable[[httpx.Request], Reply]

FIXED_NOW = datetime(2024, 3, 20, 12, 0, tzinfo=UTC)


class BankApiStub:
    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Route] = {}
        self.calls: list[httpx.Request] = []
        self.token_requests = 0
        self.refresh_requests = 0
        self.on("POST", "/token/new/", self._new_token)
        self.on("POST", "/token/refresh/", self._refresh_token)

    def on(self, method: str, path: str, route: Route) -> BankApiStub:
        self.routes[(method.upper(), path)] = route
        return self

    def paths(self, method: str | None = None) -> list[str]:
        return [
            r.url.path.removeprefix(API_PREFIX)
            for r in self.calls
            if method is None or r.method == method
        ]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._handle)

    def client(
        self,
        *,
        token: StoredToken | None = None,
        store: MemoryTokenStore | None = None,
        now: datetime = FIXED_NOW,
        secret_id: str | None = "sid",
        secret_key: str | None = "skey",
    ) -> BankDataClient:
        http = httpx.Client(base_url="https://bank.test", transport=self.transport())
        return BankDataClient(
            http,
            secret_id=secret_id,
            secret_key=secret_key,
            token_store=store if store is not None else MemoryTokenStore(token),
            clock=lambda: now,
        )

    # ---- default token endpoints ------------------------------------------

    def _new_token(self, request: httpx.Request) -> Reply:
        self.token_requests += 1
        return 200, {
            "access": f"access-{self.token_requests}",
            "access_expires": 86400,
            "refresh": f"refresh-{self.token_requests}",
            "refresh_expires": 2592000,
        }

    def _refresh_token(self, request: httpx.Request) -> Reply:
        self.refresh_requests += 1
        return 200, {"access": f"refreshed-{self.refresh_requests}", "access_expires": 86400}

    # ---- dispatch -----------------------------------------------------------

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        key = (request.method, request.url.path.removeprefix(API_PREFIX))
        route = self.routes.get(key)
        if route is None:
            return httpx.Response(404, json={"detail": f"no route for {key}"})
        status, body = route(request) if callable(route) else route
        if body is None:
            return httpx.Response(status)
        return httpx.Response(status, json=body)


def request_json(request: httpx.Request) -> Any:
    return json.loads(request.content or b"null")


def linked_requisition(req_id: str, accounts: list[str], *, status: str = "LN") -> dict[str, Any]:
    return {
        "id": req_id,
        "status": status,
        "institution_id": "TEST_BANK_BG",
        "accounts": accounts,
        "link": f"https://bank.test/link/{req_id}",
    }


def account_details(name: str, *, currency: str | None = "BGN", iban: str = "BG00TEST0000") -> dict[str, Any]:
    account: dict[str, Any] = {"name": name, "iban": iban, "institution": "Test Bank"}
    if currency is not None:
        account["currency"] = currency
    return {"account": account}


def balances(amount: str, currency: str = "BGN") -> dict[str, Any]:
    return {
        "balances": [
            {
                "balanceAmount": {"amount": amount, "currency": currency},
                "balanceType": "interimAvailable",
                "referenceDate": "2024-03-20",
            }
        ]
    }


def booked(*items: dict[str, Any]) -> dict[str, Any]:
    return {"transactions": {"booked": list(items), "pending": []}}


def booked_item(
    amount: str,
    *,
    currency: str = "EUR",
    transaction_id: str | None = None,
    internal_id: str | None = None,
    booking_date: str = "2024-03-10",
    value_date: str | None = None,
    remittance: str | None = "Card purchase",
    creditor: str | None = None,
) -> dict[str, Any]:
    item: dict[str, Any] = {
        "bookingDate": booking_date,
        "transactionAmount": {"amount": amount, "currency": currency},
    }
    if transaction_id is not None:
        item["transactionId"] = transaction_id
    if internal_id is not None:
        item["internalTransactionId"] = internal_id
    if value_date is not None:
        item["valueDate"] = value_date
    if remittance is not None:
        item["remittanceInformationUnstructured"] = remittance
    if creditor is not None:
        item["creditorName"] = creditor
    return item
