"""Common scaffolding for statement normalizers.

A normalizer turns one source payload into canonical transactions in two
steps: ``parse`` yields :class:`~bank_ledger.models.RawMovement` rows (dropping
what cannot be used and counting it in ``stats``), and ``to_canonical`` assigns
the id, converts the amount and attaches provenance.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import Any, ClassVar

from .. import currency as money
from ..countries import country_from_counterparty
from ..logging_setup import get_logger
from ..models import CanonicalTransaction, DropReason, ParseStats, RawMovement

logger = get_logger(__name__)

_WS_RE = re.compile(r"\s+")


def collapse_whitespace(text: str | None) -> str:
    if not text:
        return ""
    return _WS_RE.sub(" ", text).strip()


class StatementNormalizer(ABC):
    """Base class for one source format.

    Subclasses set ``source`` (used in log lines) and ``default_currency``
    (applied when neither the row nor the caller names a currency).
    """

    source: ClassVar[str]
    default_currency: ClassVar[str] = money.ACCOUNTING_CURRENCY

    def __init__(self) -> None:
        self.stats = ParseStats()

    @abstractmethod
    def parse(self, raw: Any) -> list[RawMovement]:
        """Parse ``raw`` into movements, resetting ``stats``."""

    @abstractmethod
    def movement_id(self, movement: RawMovement, account_id: str) -> str:
        """Return the stable id of ``movement``."""

    @abstractmethod
    def raw_source(self, movement: RawMovement) -> str | None:
        """Return the provenance blob stored with the transaction."""

    def to_canonical(
        self,
        movement: RawMovement,
        account_id: str,
        currency_hint: str | None = None,
    ) -> CanonicalTransaction:
        source_currency = movement.currency or currency_hint or self.default_currency
        converted = money.normalize(movement.amount, source_currency)
        counterparty = movement.counterparty_name or ""
        return CanonicalTransaction(
            id=self.movement_id(movement, account_id),
            account_id=account_id,
            transaction_date=movement.transaction_date,
            booking_date=movement.booking_date or movement.transaction_date,
            amount=converted.amount,
            currency=converted.currency,
            original_amount=converted.original_amount,
            original_currency=converted.original_currency,
            description=movement.description,
            counterparty_name=counterparty,
            country_code=country_from_counterparty(counterparty),
            raw_source=self.raw_source(movement),
        )

    def normalize(
        self,
        raw: Any,
        *,
        account_id: str,
        currency_hint: str | None = None,
    ) -> list[CanonicalTransaction]:
        """``parse`` followed by ``to_canonical`` for every movement."""

        out: list[CanonicalTransaction] = []
        for movement in self.parse(raw):
            try:
                out.append(self.to_canonical(movement, account_id, currency_hint))
            except (ValueError, ArithmeticError) as e:
                self.stats.drop(DropReason.MALFORMED)
                logger.warning("[%s] Skipping movement dated %s: %s", self.source, movement.transaction_date, e)
        logger.info(
            "[%s] Normalized %d of %d rows (dropped: %s)",
            self.source,
            len(out),
            self.stats.rows_seen,
            self.stats.dropped or "none",
        )
        return out


__all__ = ["StatementNormalizer", "collapse_whitespace"]
