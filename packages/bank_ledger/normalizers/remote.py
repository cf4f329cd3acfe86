"""Normalizer for the bank-data API ``accounts/{id}/transactions/`` payload.

Only booked transactions are ingested; pending ones change ids and amounts
until they settle.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from datetime import date
from typing import Any

from pydantic import ValidationError

from ..logging_setup import get_logger
from ..models import DropReason, ParseStats, RawMovement
from ..remote.schemas import BookedTransaction
from .base import StatementNormalizer

logger = get_logger(__name__)


def booked_items(payload: Mapping[str, Any] | Sequence[Any] | None) -> list[Any]:
    """Return the booked items of ``payload`` (a ``{"booked": [...]}`` mapping or a list)."""

    if payload is None:
        return []
    if isinstance(payload, Mapping):
        booked = payload.get("booked")
        return list(booked or [])
    return list(payload)


def _iso_date(value: str | None) -> str | None:
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10]).isoformat()
    except ValueError:
        return None


class RemoteTransactionNormalizer(StatementNormalizer):
    source = "Bank API"

    def parse(self, raw: Mapping[str, Any] | Sequence[Any] | None) -> list[RawMovement]:
        self.stats = stats = ParseStats()
        movements: list[RawMovement] = []
        for idx, item in enumerate(booked_items(raw)):
            stats.rows_seen += 1
            if not isinstance(item, Mapping):
                stats.drop(DropReason.MALFORMED)
                logger.warning("[%s] Item %d is not an object", self.source, idx)
                continue
            try:
                tx = BookedTransaction.model_validate(item)
            except ValidationError as e:
                stats.drop(DropReason.MALFORMED)
                logger.warning("[%s] Item %d failed validation: %s", self.source, idx, e.errors()[:1])
                continue

            tx_date = _iso_date(tx.value_date) or _iso_date(tx.booking_date)
            if tx_date is None:
                stats.drop(DropReason.BAD_DATE)
                logger.warning("[%s] Item %d has no usable date", self.source, idx)
                continue
            if tx.transaction_amount.amount == 0:
                stats.drop(DropReason.ZERO_AMOUNT)
                continue

            movements.append(
                RawMovement(
                    transaction_date=tx_date,
                    booking_date=_iso_date(tx.booking_date),
                    description=tx.remittance_information_unstructured
                    or tx.additional_information
                    or "",
                    amount=tx.transaction_amount.amount,
                    currency=tx.transaction_amount.currency,
                    counterparty_name=tx.creditor_name or "",
                    raw=dict(item),
                    external_id=tx.transaction_id or tx.internal_transaction_id,
                )
            )
            stats.parsed += 1
        return movements

    def movement_id(self, movement: RawMovement, account_id: str) -> str:
        if movement.external_id:
            return movement.external_id
        raw_amount = (movement.raw or {}).get("transactionAmount", {}).get("amount", movement.amount)
        booking = (movement.raw or {}).get("bookingDate") or movement.booking_date
        return f"{account_id}-{booking}-{raw_amount}"

    def raw_source(self, movement: RawMovement) -> str | None:
        return json.dumps(movement.raw, ensure_ascii=False, default=str)


__all__ = ["RemoteTransactionNormalizer", "booked_items"]
