"""Normalizer for delimited (CSV) statement exports.

Column discovery is header-driven: each logical column has an alias list
(Bulgarian and English export headers) matched as a case-insensitive
substring of the header cell. The first alias that hits any header wins.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from ..errors import ImportValidationError
from ..identity import delimited_id
from ..logging_setup import get_logger
from ..models import DropReason, ParseStats, RawMovement
from .base import StatementNormalizer

logger = get_logger(__name__)

COLUMN_ALIASES: dict[str, tuple[str, ...]] = {
    "type": ("вид", "type"),
    "product": ("продукт", "product"),
    "started_date": ("начална дата", "started date", "start date"),
    "completed_date": ("дата на завършване", "completed date", "completion date"),
    "description": ("описание", "description"),
    "amount": ("сума", "amount"),
    "fee": ("такса", "fee"),
    "currency": ("валута", "currency"),
    "state": ("state", "състояние", "status"),
    "balance": ("баланс", "balance"),
}

_COUNTERPARTY_PREFIXES = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        r"^Card payment to ",
        r"^Payment to ",
        r"^Transfer to ",
        r"^Transfer from ",
        r"^From ",
        r"^To ",
        r"^Плащане с карта към ",
        r"^Плащане към ",
        r"^Превод към ",
        r"^Превод от ",
    )
)

_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_DATE_FORMATS = (
    "%Y-%m-%dT%H:%M:%S",
    "%d %b %Y",
    "%d %B %Y",
    "%b %d, %Y",
    "%d.%m.%Y",
    "%d.%m.%Y %H:%M:%S",
    "%Y/%m/%d",
)
_NEWLINE_RE = re.compile(r"\r?\n")
_WS_RE = re.compile(r"\s+")

MIN_CELLS = 3


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------


def split_line(line: str, delimiter: str = ",") -> list[str]:
    """Split one line into trimmed cells.

    Double quotes toggle quoting; inside quotes the delimiter is literal and
    ``""`` is an escaped quote.
    """

    cells: list[str] = []
    current: list[str] = []
    in_quotes = False
    i = 0
    n = len(line)
    while i < n:
        ch = line[i]
        if ch == '"':
            if in_quotes and i + 1 < n and line[i + 1] == '"':
                current.append('"')
                i += 1
            else:
                in_quotes = not in_quotes
        elif ch == delimiter and not in_quotes:
            cells.append("".join(current).strip())
            current = []
        else:
            current.append(ch)
        i += 1
    cells.append("".join(current).strip())
    return cells


def decode_statement(raw: str | bytes) -> str:
    """Text of a CSV export with any UTF-8 byte-order mark removed."""

    if isinstance(raw, str):
        return raw.removeprefix("\ufeff")
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise ImportValidationError(
            f"CSV statement is not valid UTF-8 (byte {e.start}); re-export it as UTF-8"
        ) from e


def tokenize(text: str, delimiter: str = ",") -> list[list[str]]:
    """Split ``text`` into rows of cells, skipping blank lines."""

    return [split_line(line, delimiter) for line in _NEWLINE_RE.split(text) if line.strip()]


# ---------------------------------------------------------------------------
# Column discovery and cell parsing
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ColumnMap:
    type: int | None = None
    product: int | None = None
    started_date: int | None = None
    completed_date: int | None = None
    description: int | None = None
    amount: int | None = None
    fee: int | None = None
    currency: int | None = None
    state: int | None = None
    balance: int | None = None

    @classmethod
    def from_header(cls, header: Sequence[str]) -> ColumnMap:
        lowered = [h.strip().lower() for h in header]
        found: dict[str, int | None] = {}
        for key, aliases in COLUMN_ALIASES.items():
            found[key] = None
            for alias in aliases:
                idx = next((i for i, h in enumerate(lowered) if alias in h), None)
                if idx is not None:
                    found[key] = idx
                    break
        return cls(**found)

    def validate(self) -> None:
        if self.completed_date is None and self.started_date is None:
            raise ImportValidationError("CSV statement has no date column")
        if self.amount is None:
            raise ImportValidationError("CSV statement has no amount column")


def _cell(row: Sequence[str], idx: int | None) -> str:
    if idx is None or idx >= len(row):
        return ""
    return row[idx]


def parse_date(value: str | None) -> str | None:
    """Return ``YYYY-MM-DD`` for the supported export date formats."""

    if not value or not value.strip():
        return None
    text = value.strip()
    head = text.split()[0]
    if _ISO_DATE_RE.match(head):
        try:
            return date.fromisoformat(head).isoformat()
        except ValueError:
            return None
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue
    return None


def parse_amount(value: str) -> Decimal:
    """Parse ``"1 234.56"``, ``"-12,50"`` or ``"1.234.567,89"``.

    After dropping whitespace and turning commas into dots, every dot but the
    last is a thousands separator. Raises ``ValueError`` for garbage.
    """

    normalized = _WS_RE.sub("", value).replace(",", ".")
    parts = normalized.split(".")
    if len(parts) > 2:
        normalized = "".join(parts[:-1]) + "." + parts[-1]
    try:
        d = Decimal(normalized)
    except InvalidOperation as e:
        raise ValueError(f"invalid amount {value!r}") from e
    if not d.is_finite():
        raise ValueError(f"invalid amount {value!r}")
    return d


def is_completed_state(state: str) -> bool:
    s = state.strip().lower()
    return not s or s == "completed" or s.startswith("завършен")


def extract_counterparty(description: str) -> str:
    """Best-effort counterparty: the description minus leading transfer phrases."""

    counterparty = (description or "").strip()
    for pattern in _COUNTERPARTY_PREFIXES:
        counterparty = pattern.sub("", counterparty)
    return counterparty.strip()


# ---------------------------------------------------------------------------
# Normalizer
# ---------------------------------------------------------------------------


class DelimitedStatementNormalizer(StatementNormalizer):
    source = "CSV Import"

    def __init__(self, delimiter: str = ",") -> None:
        super().__init__()
        self.delimiter = delimiter

    def parse(self, raw: str | bytes) -> list[RawMovement]:
        self.stats = stats = ParseStats()
        text = decode_statement(raw)
        rows = tokenize(text, self.delimiter)
        if len(rows) < 2:
            logger.warning("[%s] CSV has no data rows", self.source)
            return []

        columns = ColumnMap.from_header(rows[0])
        logger.debug("[%s] Column mapping: %s", self.source, columns)
        columns.validate()

        movements: list[RawMovement] = []
        for line_no, row in enumerate(rows[1:], start=2):
            stats.rows_seen += 1
            if len(row) < MIN_CELLS or not _cell(row, columns.amount):
                stats.drop(DropReason.EMPTY_ROW)
                continue
            if columns.state is not None and not is_completed_state(_cell(row, columns.state)):
                stats.drop(DropReason.NOT_COMPLETED)
                continue
            try:
                movement = self._parse_row(row, columns, line_no)
            except ValueError as e:
                stats.drop(DropReason.MALFORMED)
                logger.warning("[%s] Skipping line %d: %s", self.source, line_no, e)
                continue
            if movement is not None:
                movements.append(movement)
                stats.parsed += 1

        logger.info(
            "[%s] Parsed %d rows; skipped %s",
            self.source,
            stats.parsed,
            stats.dropped or "none",
        )
        return movements

    def _parse_row(self, row: list[str], columns: ColumnMap, line_no: int) -> RawMovement | None:
        completed = _cell(row, columns.completed_date)
        started = _cell(row, columns.started_date)
        tx_date = parse_date(completed) or parse_date(started)
        if tx_date is None:
            self.stats.drop(DropReason.BAD_DATE)
            logger.warning("[%s] Line %d: invalid date %r", self.source, line_no, completed or started)
            return None
        booking_date = parse_date(started) or tx_date

        amount = parse_amount(_cell(row, columns.amount))
        if amount == 0:
            self.stats.drop(DropReason.ZERO_AMOUNT)
            return None

        description = _cell(row, columns.description).strip()
        currency = _cell(row, columns.currency).strip().upper() or None
        return RawMovement(
            transaction_date=tx_date,
            booking_date=booking_date,
            description=description,
            amount=amount,
            currency=currency,
            counterparty_name=extract_counterparty(description),
            raw=tuple(row),
        )

    def movement_id(self, movement: RawMovement, account_id: str) -> str:
        return delimited_id(movement.raw)

    def raw_source(self, movement: RawMovement) -> str | None:
        return self.delimiter.join(movement.raw)


__all__ = [
    "COLUMN_ALIASES",
    "ColumnMap",
    "DelimitedStatementNormalizer",
    "decode_statement",
    "extract_counterparty",
    "is_completed_state",
    "parse_amount",
    "parse_date",
    "split_line",
    "tokenize",
]
