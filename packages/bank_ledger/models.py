"""Value types shared across the ingestion pipeline.

Normalizers produce :class:`RawMovement` rows and turn them into
:class:`CanonicalTransaction` records; the batch importer, categorization
engine and sync orchestrator report back through the small result types at
the bottom of this module. ORM rows live in ``db.models.finance``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import StrEnum
from typing import Any, Literal, NamedTuple

# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


class NormalizedAmount(NamedTuple):
    """Result of converting an amount into the accounting currency.

    ``original_amount``/``original_currency`` are ``None`` when the source
    currency already is the accounting currency.
    """

    amount: Decimal
    currency: str
    original_amount: Decimal | None
    original_currency: str | None


@dataclass(frozen=True, slots=True)
class RawMovement:
    """One source row after parsing and before canonicalization.

    ``transaction_date`` and ``booking_date`` are ISO ``YYYY-MM-DD`` strings;
    ``amount`` is signed and still in ``currency``. ``raw`` holds whatever the
    format needs to build a stable id and the provenance blob (cells of a CSV
    row, the formatted amount of a markup movement, a remote JSON item).
    """

    transaction_date: str
    booking_date: str | None
    description: str
    amount: Decimal
    currency: str | None
    counterparty_name: str
    raw: Any = None
    external_id: str | None = None


@dataclass(frozen=True, slots=True)
class CanonicalTransaction:
    """A transaction in the shape the ledger stores.

    ``amount`` is signed (negative = outflow), rounded to 2 decimals and
    expressed in ``currency`` (the accounting currency unless the source
    currency had no known rate). ``category_id`` and ``notes`` are local
    annotations and survive re-imports.
    """

    id: str
    account_id: str
    transaction_date: str
    amount: Decimal
    currency: str
    booking_date: str | None = None
    original_amount: Decimal | None = None
    original_currency: str | None = None
    description: str | None = None
    counterparty_name: str | None = None
    category_id: int | None = None
    notes: str | None = None
    country_code: str | None = None
    raw_source: str | None = None


class DropReason(StrEnum):
    EMPTY_ROW = "empty_row"
    BAD_DATE = "bad_date"
    ZERO_AMOUNT = "zero_amount"
    NOT_COMPLETED = "not_completed"
    MALFORMED = "malformed"


@dataclass(slots=True)
class ParseStats:
    """Counts for the most recent ``parse`` call of a normalizer."""

    rows_seen: int = 0
    parsed: int = 0
    dropped: dict[str, int] = field(default_factory=dict)

    def drop(self, reason: DropReason) -> None:
        self.dropped[reason.value] = self.dropped.get(reason.value, 0) + 1

    @property
    def dropped_total(self) -> int:
        return sum(self.dropped.values())


# ---------------------------------------------------------------------------
# Batch import
# ---------------------------------------------------------------------------


class RecordStatus(StrEnum):
    IMPORTED = "imported"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class RecordOutcome:
    record_id: str
    status: RecordStatus
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class RecordError:
    record_id: str
    message: str


@dataclass(frozen=True, slots=True)
class ImportResult:
    """Per-record outcomes of one batch, in input order."""

    outcomes: tuple[RecordOutcome, ...] = ()

    @property
    def imported(self) -> int:
        return sum(1 for o in self.outcomes if o.status is RecordStatus.IMPORTED)

    @property
    def skipped(self) -> int:
        return sum(1 for o in self.outcomes if o.status is RecordStatus.SKIPPED)

    @property
    def errors(self) -> list[RecordError]:
        return [
            RecordError(record_id=o.record_id, message=o.reason or "")
            for o in self.outcomes
            if o.status is RecordStatus.FAILED
        ]


@dataclass(frozen=True, slots=True)
class StatementImportSummary:
    imported: int
    skipped: int
    categorized: int
    total: int
    errors: tuple[RecordError, ...] = ()
    parse_stats: ParseStats | None = None


# ---------------------------------------------------------------------------
# Queries and categorization
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class TransactionFilter:
    """Filters for :func:`bank_ledger.persistence.get_transactions`.

    ``category_id="uncategorized"`` selects rows without a category and
    ``country="none"`` rows without a country code. ``limit=None`` disables
    pagination.
    """

    account_id: str | None = None
    start_date: str | None = None
    end_date: str | None = None
    category_id: int | Literal["uncategorized"] | None = None
    kind: Literal["income", "expense"] | None = None
    search: str | None = None
    country: str | None = None
    limit: int | None = 50
    offset: int = 0


@dataclass(frozen=True, slots=True)
class ApplyRulesResult:
    total_uncategorized: int
    categorized_count: int


@dataclass(frozen=True, slots=True)
class CategorySuggestion:
    category_id: int
    category_name: str
    confidence: float
    matched_pattern: str


# ---------------------------------------------------------------------------
# Remote sync
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class SkippedRequisition:
    requisition_id: str
    status: str
    institution_id: str | None = None


@dataclass(frozen=True, slots=True)
class AccountSyncError:
    account_id: str
    message: str


@dataclass(frozen=True, slots=True)
class AccountSyncResult:
    synced_accounts: tuple[str, ...] = ()
    errors: tuple[AccountSyncError, ...] = ()
    dead_requisitions: tuple[SkippedRequisition, ...] = ()
    pending_requisitions: tuple[SkippedRequisition, ...] = ()


@dataclass(frozen=True, slots=True)
class AccountTransactionSync:
    account_id: str
    account_name: str
    institution_name: str | None
    count: int
    error: str | None = None


@dataclass(frozen=True, slots=True)
class TransactionSyncSummary:
    results: tuple[AccountTransactionSync, ...] = ()

    @property
    def transactions_synced(self) -> int:
        return sum(r.count for r in self.results)


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Totals:
    """Aggregate over a set of transactions; expenses are reported positive."""

    count: int
    income: Decimal
    expenses: Decimal

    @property
    def net(self) -> Decimal:
        return self.income - self.expenses


@dataclass(frozen=True, slots=True)
class CategoryBreakdownRow:
    # ``category_id`` is None for the uncategorized bucket.
    category_id: int | None
    name: str
    type: str
    color: str | None
    totals: Totals


@dataclass(frozen=True, slots=True)
class CounterpartyReportRow:
    counterparty_name: str
    display_name: str | None
    totals: Totals


@dataclass(frozen=True, slots=True)
class AccountBreakdownRow:
    account_id: str
    account_name: str
    institution_name: str | None
    totals: Totals


@dataclass(frozen=True, slots=True)
class MonthlyReport:
    year: int
    month: int
    start_date: date
    end_date: date
    stats: Totals
    categories: tuple[CategoryBreakdownRow, ...]
    counterparties: tuple[CounterpartyReportRow, ...]
    accounts: tuple[AccountBreakdownRow, ...]


@dataclass(frozen=True, slots=True)
class MonthSummary:
    year: int
    month: int
    totals: Totals


@dataclass(frozen=True, slots=True)
class CountryTotals:
    code: str
    amount_by_year: dict[int, Decimal]
    count_by_year: dict[int, int]
    total: Decimal
    total_count: int


@dataclass(frozen=True, slots=True)
class CountryReport:
    years: tuple[int, ...]
    countries: tuple[CountryTotals, ...]


__all__ = [
    "AccountBreakdownRow",
    "AccountSyncError",
    "AccountSyncResult",
    "AccountTransactionSync",
    "ApplyRulesResult",
    "CanonicalTransaction",
    "CategoryBreakdownRow",
    "CategorySuggestion",
    "CounterpartyReportRow",
    "CountryReport",
    "CountryTotals",
    "DropReason",
    "ImportResult",
    "MonthSummary",
    "MonthlyReport",
    "NormalizedAmount",
    "ParseStats",
    "RawMovement",
    "RecordError",
    "RecordOutcome",
    "RecordStatus",
    "SkippedRequisition",
    "StatementImportSummary",
    "TransactionFilter",
    "Totals",
    "TransactionSyncSummary",
]
