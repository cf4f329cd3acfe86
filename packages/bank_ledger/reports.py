"""Aggregate statistics over the ledger.

Amounts are in the accounting currency. Income is the sum of positive
amounts and expenses the absolute sum of negative ones.

Most queries take ``types``, a list of category types
(``income``/``expense``/``transfer``). Uncategorized transactions count as
``expense``. Without ``types`` the totals and the category breakdown leave
transfers out. The counterparty, account and country views have no default
type filter.
"""

from __future__ import annotations

import calendar
from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from typing import Any

from db.models.finance import Account, Category, CounterpartyAlias, Transaction
from sqlalchemy import case, extract, func, or_, select
from sqlalchemy.orm import Session

from .categories import CATEGORY_TYPES
from .currency import round_money, to_decimal
from .models import (
    AccountBreakdownRow,
    CategoryBreakdownRow,
    CounterpartyReportRow,
    CountryReport,
    CountryTotals,
    MonthlyReport,
    MonthSummary,
    Totals,
)
from .persistence import account_label

UNCATEGORIZED_NAME = "Uncategorized"
UNCATEGORIZED_TYPE = "uncategorized"
UNCATEGORIZED_COLOR = "#999999"
COUNTRY_REPORT_YEARS = 5

_ZERO = Decimal("0.00")


def _amount(raw: Any) -> Decimal:
    d = to_decimal(raw)
    return round_money(d) if d is not None else _ZERO


def _as_date(raw: str | date | None) -> date | None:
    if raw is None or isinstance(raw, date):
        return raw
    return date.fromisoformat(raw.strip()[:10]) if raw.strip() else None


def _aggregates() -> tuple[Any, Any, Any]:
    count = func.count(Transaction.id)
    income = func.coalesce(func.sum(case((Transaction.amount > 0, Transaction.amount), else_=0)), 0)
    expenses = func.coalesce(func.sum(case((Transaction.amount < 0, -Transaction.amount), else_=0)), 0)
    return count, income, expenses


def _totals(count: Any, income: Any, expenses: Any) -> Totals:
    return Totals(count=int(count or 0), income=_amount(income), expenses=_amount(expenses))


def _checked_types(types: Sequence[str] | None) -> list[str]:
    kinds = [t.strip().lower() for t in types or () if t and t.strip()]
    bad = [t for t in kinds if t not in CATEGORY_TYPES]
    if bad:
        raise ValueError(f"Unknown category type(s): {', '.join(bad)}")
    return kinds


def _period_clauses(start: str | date | None, end: str | date | None) -> list[Any]:
    clauses: list[Any] = []
    if (start_d := _as_date(start)) is not None:
        clauses.append(Transaction.transaction_date >= start_d)
    if (end_d := _as_date(end)) is not None:
        clauses.append(Transaction.transaction_date <= end_d)
    return clauses


def _type_clause(kinds: list[str], *, exclude_transfers_by_default: bool) -> Any | None:
    # Assumes an outer join to ``categories``.
    if kinds:
        clause = Category.type.in_(kinds)
        return or_(clause, Category.type.is_(None)) if "expense" in kinds else clause
    if exclude_transfers_by_default:
        return or_(Category.type.is_(None), Category.type != "transfer")
    return None


def _where(
    start: str | date | None,
    end: str | date | None,
    kinds: list[str],
    category_id: int | None,
    *,
    exclude_transfers_by_default: bool,
) -> list[Any]:
    clauses = _period_clauses(start, end)
    type_clause = _type_clause(kinds, exclude_transfers_by_default=exclude_transfers_by_default)
    if type_clause is not None:
        clauses.append(type_clause)
    if category_id is not None:
        clauses.append(Transaction.category_id == category_id)
    return clauses


# ---------------------------
# Totals
# ---------------------------


def get_transaction_stats(
    session: Session,
    start_date: str | date | None = None,
    end_date: str | date | None = None,
    *,
    types: Sequence[str] | None = None,
    category_id: int | None = None,
) -> Totals:
    """Count, income and expenses in the period (inclusive bounds)."""

    clauses = _where(
        start_date, end_date, _checked_types(types), category_id, exclude_transfers_by_default=True
    )
    row = session.execute(
        select(*_aggregates())
        .select_from(Transaction)
        .outerjoin(Category, Transaction.category_id == Category.id)
        .where(*clauses)
    ).one()
    return _totals(*row)


# ---------------------------
# Breakdowns
# ---------------------------


def get_category_breakdown(
    session: Session,
    start_date: str | date | None = None,
    end_date: str | date | None = None,
    *,
    types: Sequence[str] | None = None,
    category_id: int | None = None,
) -> list[CategoryBreakdownRow]:
    """Totals per category, busiest first.

    Uncategorized rows are added as one extra bucket unless a category is
    requested or ``types`` leaves out ``expense``.
    """

    kinds = _checked_types(types)
    clauses = _period_clauses(start_date, end_date)
    clauses.append(Category.type.in_(kinds) if kinds else Category.type != "transfer")
    if category_id is not None:
        clauses.append(Category.id == category_id)

    stmt = (
        select(Category.id, Category.name, Category.type, Category.color, *_aggregates())
        .select_from(Transaction)
        .join(Category, Transaction.category_id == Category.id)
        .where(*clauses)
        .group_by(Category.id, Category.name, Category.type, Category.color)
    )
    rows = [
        CategoryBreakdownRow(cid, name, type_, color, _totals(count, income, expenses))
        for cid, name, type_, color, count, income, expenses in session.execute(stmt)
    ]

    if category_id is None and (not kinds or "expense" in kinds):
        uncategorized = session.execute(
            select(*_aggregates()).where(
                Transaction.category_id.is_(None), *_period_clauses(start_date, end_date)
            )
        ).one()
        totals = _totals(*uncategorized)
        if totals.count:
            rows.append(
                CategoryBreakdownRow(
                    None, UNCATEGORIZED_NAME, UNCATEGORIZED_TYPE, UNCATEGORIZED_COLOR, totals
                )
            )

    rows.sort(key=lambda r: (-r.totals.count, r.name))
    return rows


def get_counterparty_report(
    session: Session,
    start_date: str | date | None = None,
    end_date: str | date | None = None,
    *,
    types: Sequence[str] | None = None,
    category_id: int | None = None,
) -> list[CounterpartyReportRow]:
    """Totals per counterparty with its alias, busiest first."""

    clauses = _where(
        start_date, end_date, _checked_types(types), category_id, exclude_transfers_by_default=False
    )
    clauses += [Transaction.counterparty_name.is_not(None), Transaction.counterparty_name != ""]
    stmt = (
        select(Transaction.counterparty_name, CounterpartyAlias.display_name, *_aggregates())
        .select_from(Transaction)
        .outerjoin(Category, Transaction.category_id == Category.id)
        .outerjoin(CounterpartyAlias, CounterpartyAlias.original_name == Transaction.counterparty_name)
        .where(*clauses)
        .group_by(Transaction.counterparty_name, CounterpartyAlias.display_name)
        .order_by(func.count(Transaction.id).desc(), Transaction.counterparty_name)
    )
    return [
        CounterpartyReportRow(name, display, _totals(count, income, expenses))
        for name, display, count, income, expenses in session.execute(stmt)
    ]


def get_account_breakdown(
    session: Session,
    start_date: str | date | None = None,
    end_date: str | date | None = None,
    *,
    types: Sequence[str] | None = None,
    category_id: int | None = None,
) -> list[AccountBreakdownRow]:
    clauses = _where(
        start_date, end_date, _checked_types(types), category_id, exclude_transfers_by_default=False
    )
    stmt = (
        select(Account, *_aggregates())
        .select_from(Transaction)
        .join(Account, Transaction.account_id == Account.id)
        .outerjoin(Category, Transaction.category_id == Category.id)
        .where(*clauses)
        .group_by(Account.id)
        .order_by(func.count(Transaction.id).desc(), Account.id)
    )
    return [
        AccountBreakdownRow(
            account.id, account_label(account), account.institution_name, _totals(count, income, expenses)
        )
        for account, count, income, expenses in session.execute(stmt)
    ]


# ---------------------------
# Periodic reports
# ---------------------------


def month_bounds(year: int, month: int) -> tuple[date, date]:
    if not 1 <= month <= 12:
        raise ValueError(f"Month must be 1-12; got {month}")
    return date(year, month, 1), date(year, month, calendar.monthrange(year, month)[1])


def get_monthly_report(
    session: Session,
    year: int,
    month: int,
    *,
    types: Sequence[str] | None = None,
    category_id: int | None = None,
) -> MonthlyReport:
    start, end = month_bounds(year, month)
    kwargs: dict[str, Any] = {"types": types, "category_id": category_id}
    return MonthlyReport(
        year=year,
        month=month,
        start_date=start,
        end_date=end,
        stats=get_transaction_stats(session, start, end, **kwargs),
        categories=tuple(get_category_breakdown(session, start, end, **kwargs)),
        counterparties=tuple(get_counterparty_report(session, start, end, **kwargs)),
        accounts=tuple(get_account_breakdown(session, start, end, **kwargs)),
    )


def get_last_12_months_report(session: Session, *, today: date | None = None) -> list[MonthSummary]:
    """Per-month totals for the current month and the eleven before it, newest first."""

    today = today or date.today()
    out: list[MonthSummary] = []
    year, month = today.year, today.month
    for _ in range(12):
        start, end = month_bounds(year, month)
        out.append(MonthSummary(year, month, get_transaction_stats(session, start, end)))
        year, month = (year, month - 1) if month > 1 else (year - 1, 12)
    return out


def get_country_report(
    session: Session,
    *,
    types: Sequence[str] | None = ("expense",),
    category_id: int | None = None,
    today: date | None = None,
) -> CountryReport:
    """Signed amounts per country and year, largest absolute total first.

    ``years`` lists the current year and the four before it; the per-country
    totals cover every year on record.
    """

    today = today or date.today()
    kinds = _checked_types(types) or ["expense"]
    year_col = extract("year", Transaction.transaction_date)
    clauses: list[Any] = [
        Transaction.country_code.is_not(None),
        Transaction.country_code != "",
        _type_clause(kinds, exclude_transfers_by_default=False),
    ]
    if category_id is not None:
        clauses.append(Transaction.category_id == category_id)

    stmt = (
        select(
            Transaction.country_code,
            year_col,
            func.coalesce(func.sum(Transaction.amount), 0),
            func.count(Transaction.id),
        )
        .select_from(Transaction)
        .outerjoin(Category, Transaction.category_id == Category.id)
        .where(*clauses)
        .group_by(Transaction.country_code, year_col)
    )

    amounts: dict[str, dict[int, Decimal]] = {}
    counts: dict[str, dict[int, int]] = {}
    for code, year, amount, count in session.execute(stmt):
        amounts.setdefault(code, {})[int(year)] = _amount(amount)
        counts.setdefault(code, {})[int(year)] = int(count)

    countries = sorted(
        (
            CountryTotals(
                code,
                amounts[code],
                counts[code],
                sum(amounts[code].values(), _ZERO),
                sum(counts[code].values()),
            )
            for code in amounts
        ),
        key=lambda c: (-abs(c.total), c.code),
    )
    years = tuple(today.year - i for i in range(COUNTRY_REPORT_YEARS))
    return CountryReport(years=years, countries=tuple(countries))


__all__ = [
    "get_account_breakdown",
    "get_category_breakdown",
    "get_counterparty_report",
    "get_country_report",
    "get_last_12_months_report",
    "get_monthly_report",
    "get_transaction_stats",
    "month_bounds",
]
