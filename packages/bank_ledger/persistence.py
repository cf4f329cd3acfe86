"""Persistence operations over the shared ledger database.

Functions here take an explicit SQLAlchemy ``Session``; callers own the
transaction scope (``db.client.session_scope``). Models come from
``db.models.finance``.

Scope:
- Accounts: upsert from the bank API, custom labels, the reserved cash account.
- Transactions: insert-or-merge upsert, filtered listing, local annotations
  (category, notes), manual cash entries.
- Categorization rules: listing in evaluation order, create/update/delete.
- Counterparty aliases: display names for raw counterparty strings.
- The API token singleton (``SqlTokenStore``).
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from db.client import session_scope
from db.models.finance import (
    CASH_ACCOUNT_ID,
    Account,
    CategorizationRule,
    Category,
    CounterpartyAlias,
    SyncToken,
    Transaction,
)
from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from .currency import ACCOUNTING_CURRENCY, round_money, to_decimal
from .identity import MANUAL_PREFIX
from .models import CanonicalTransaction, TransactionFilter
from .remote.tokens import StoredToken, as_utc

CASH_ACCOUNT_NAME = "Cash"


def _to_date(raw: str | date | None) -> date | None:
    if raw is None or isinstance(raw, date):
        return raw
    s = raw.strip()
    if not s:
        return None
    return date.fromisoformat(s[:10])


def _norm_str(v: Any) -> str | None:
    if v is None:
        return None
    s = str(v).strip()
    return s if s else None


def _money(raw: Any) -> Decimal | None:
    d = to_decimal(raw)
    return round_money(d) if d is not None else None


# ---------------------------
# Accounts
# ---------------------------


def upsert_account(
    session: Session,
    *,
    account_id: str,
    display_name: str,
    institution_id: str | None = None,
    institution_name: str | None = None,
    iban: str | None = None,
    currency: str = ACCOUNTING_CURRENCY,
    balance: Decimal | None = None,
    synced_at: datetime | None = None,
) -> Account:
    """Insert or update an account; the user's ``custom_name`` is never touched."""

    row = session.get(Account, account_id)
    if row is None:
        row = Account(id=account_id, display_name=display_name)
        session.add(row)
    row.display_name = display_name
    row.institution_id = institution_id
    row.institution_name = institution_name
    row.iban = iban
    row.currency = currency
    row.balance = _money(balance)
    row.last_synced_at = synced_at
    session.flush()
    return row


def get_account_by_id(session: Session, account_id: str) -> Account | None:
    return session.get(Account, account_id)


def get_all_accounts(session: Session) -> list[Account]:
    return list(session.execute(select(Account).order_by(Account.created_at, Account.id)).scalars())


def update_account_custom_name(session: Session, account_id: str, custom_name: str | None) -> bool:
    row = session.get(Account, account_id)
    if row is None:
        return False
    row.custom_name = _norm_str(custom_name)
    return True


def ensure_cash_account(session: Session) -> Account:
    """Return the reserved cash account, creating it on first use."""

    row = session.get(Account, CASH_ACCOUNT_ID)
    if row is None:
        row = Account(
            id=CASH_ACCOUNT_ID,
            display_name=CASH_ACCOUNT_NAME,
            institution_name=CASH_ACCOUNT_NAME,
            currency=ACCOUNTING_CURRENCY,
            balance=Decimal("0.00"),
        )
        session.add(row)
        session.flush()
    return row


def account_label(account: Account) -> str:
    return account.custom_name or account.display_name


# ---------------------------
# Transactions
# ---------------------------


class UpsertOutcome(Enum):
    INSERTED = "inserted"
    UPDATED = "updated"


def _apply_provider_fields(row: Transaction, tx: CanonicalTransaction) -> None:
    tx_date = _to_date(tx.transaction_date)
    if tx_date is None:
        raise ValueError(f"Transaction {tx.id} has no transaction date")
    row.transaction_date = tx_date
    amount = to_decimal(tx.amount)
    if amount is None:
        raise ValueError(f"Transaction {tx.id} has no numeric amount")
    row.booking_date = _to_date(tx.booking_date)
    row.amount = round_money(amount)
    row.currency = tx.currency
    row.original_amount = _money(tx.original_amount)
    row.original_currency = tx.original_currency
    row.description = tx.description
    row.counterparty_name = tx.counterparty_name
    row.raw_source = tx.raw_source
    row.country_code = tx.country_code


def upsert_transaction(session: Session, tx: CanonicalTransaction) -> UpsertOutcome:
    """Insert ``tx`` or merge it into the stored row with the same id.

    A merge rewrites the provider-supplied fields only; ``category_id`` and
    ``notes`` keep whatever was assigned locally. The session is flushed so
    constraint violations surface here.
    """

    row = session.get(Transaction, tx.id)
    if row is not None:
        _apply_provider_fields(row, tx)
        row.updated_at = func.now()
        session.flush()
        return UpsertOutcome.UPDATED

    row = Transaction(id=tx.id, account_id=tx.account_id)
    _apply_provider_fields(row, tx)
    row.category_id = tx.category_id
    row.notes = tx.notes
    session.add(row)
    session.flush()
    return UpsertOutcome.INSERTED


@dataclass(frozen=True, slots=True)
class TransactionPage:
    items: list[Transaction]
    total: int
    total_amount: Decimal


def _filter_clauses(flt: TransactionFilter) -> list[Any]:
    clauses: list[Any] = []
    if flt.account_id:
        clauses.append(Transaction.account_id == flt.account_id)
    if flt.start_date:
        clauses.append(Transaction.transaction_date >= _to_date(flt.start_date))
    if flt.end_date:
        clauses.append(Transaction.transaction_date <= _to_date(flt.end_date))
    if flt.category_id == "uncategorized":
        clauses.append(Transaction.category_id.is_(None))
    elif flt.category_id is not None:
        clauses.append(Transaction.category_id == flt.category_id)
    if flt.kind == "income":
        clauses.append(Transaction.amount > 0)
    elif flt.kind == "expense":
        clauses.append(Transaction.amount < 0)
    if flt.search:
        needle = f"%{flt.search}%"
        aliased_names = select(CounterpartyAlias.original_name).where(
            CounterpartyAlias.display_name.ilike(needle)
        )
        clauses.append(
            or_(
                Transaction.description.ilike(needle),
                Transaction.counterparty_name.ilike(needle),
                Transaction.counterparty_name.in_(aliased_names),
            )
        )
    if flt.country == "none":
        clauses.append(or_(Transaction.country_code.is_(None), Transaction.country_code == ""))
    elif flt.country:
        clauses.append(Transaction.country_code == flt.country.upper())
    return clauses


def get_transactions(session: Session, flt: TransactionFilter | None = None) -> TransactionPage:
    """Return one page of transactions (newest first) plus totals over the whole filter."""

    flt = flt or TransactionFilter()
    clauses = _filter_clauses(flt)

    total, total_amount = session.execute(
        select(func.count(Transaction.id), func.coalesce(func.sum(Transaction.amount), 0)).where(
            *clauses
        )
    ).one()

    stmt = (
        select(Transaction)
        .where(*clauses)
        .order_by(Transaction.transaction_date.desc(), Transaction.created_at.desc(), Transaction.id)
    )
    if flt.limit is not None:
        stmt = stmt.limit(flt.limit).offset(flt.offset)
    items = list(session.execute(stmt).scalars())
    return TransactionPage(
        items=items,
        total=int(total or 0),
        total_amount=round_money(Decimal(str(total_amount or 0))),
    )


def list_uncategorized_transactions(session: Session) -> list[Transaction]:
    """Every transaction without a category; unbounded."""

    return list(
        session.execute(
            select(Transaction)
            .where(Transaction.category_id.is_(None))
            .order_by(Transaction.transaction_date, Transaction.id)
        ).scalars()
    )


def update_transaction_category(session: Session, transaction_id: str, category_id: int | None) -> bool:
    row = session.get(Transaction, transaction_id)
    if row is None:
        return False
    row.category_id = category_id
    row.updated_at = func.now()
    return True


def update_transaction_notes(session: Session, transaction_id: str, notes: str | None) -> bool:
    row = session.get(Transaction, transaction_id)
    if row is None:
        return False
    row.notes = notes
    row.updated_at = func.now()
    return True


def categorize_by_counterparty(session: Session, counterparty_name: str, category_id: int) -> int:
    """Assign ``category_id`` to every uncategorized row of ``counterparty_name``.

    Returns the number of rows changed.
    """

    result = session.execute(
        update(Transaction)
        .where(
            Transaction.counterparty_name == counterparty_name,
            Transaction.category_id.is_(None),
        )
        .values(category_id=category_id, updated_at=func.now())
        .execution_options(synchronize_session="fetch")
    )
    return int(result.rowcount or 0)


def get_category_by_counterparty(session: Session, counterparty_name: str | None) -> int | None:
    """Category of the most recent categorized transaction with this counterparty."""

    if not counterparty_name:
        return None
    return session.execute(
        select(Transaction.category_id)
        .where(
            Transaction.counterparty_name == counterparty_name,
            Transaction.category_id.is_not(None),
        )
        .order_by(Transaction.transaction_date.desc(), Transaction.created_at.desc())
        .limit(1)
    ).scalar_one_or_none()


def create_manual_transaction(
    session: Session,
    *,
    transaction_date: str | date,
    amount: Decimal | int | float | str,
    description: str | None = None,
    counterparty_name: str | None = None,
    category_id: int | None = None,
    notes: str | None = None,
) -> Transaction:
    """Record a cash movement on the reserved cash account (amount already in EUR)."""

    value = _money(amount)
    if value is None:
        raise ValueError(f"Not a numeric amount: {amount!r}")
    tx_date = _to_date(transaction_date)
    if tx_date is None:
        raise ValueError("transaction_date is required")

    ensure_cash_account(session)
    row = Transaction(
        id=f"{MANUAL_PREFIX}_{uuid.uuid4().hex}",
        account_id=CASH_ACCOUNT_ID,
        transaction_date=tx_date,
        booking_date=tx_date,
        amount=value,
        currency=ACCOUNTING_CURRENCY,
        description=_norm_str(description),
        counterparty_name=_norm_str(counterparty_name),
        category_id=category_id,
        notes=notes,
        raw_source=json.dumps({"type": "manual", "created_at": datetime.now(UTC).isoformat()}),
    )
    session.add(row)
    session.flush()
    return row


# ---------------------------
# Categorization rules
# ---------------------------


def get_all_categorization_rules(session: Session, *, active_only: bool = False) -> list[CategorizationRule]:
    """Rules in evaluation order: priority descending, then creation order."""

    stmt = select(CategorizationRule).order_by(
        CategorizationRule.priority.desc(),
        CategorizationRule.created_at.asc(),
        CategorizationRule.id.asc(),
    )
    if active_only:
        stmt = stmt.where(CategorizationRule.active.is_(True))
    return list(session.execute(stmt).scalars())


def split_pattern(pattern: str) -> list[str]:
    """``"LIDL| billa |"`` -> ``["LIDL", "billa"]``."""

    return [p.strip() for p in pattern.split("|") if p.strip()]


def _require_category(session: Session, category_id: int) -> None:
    if session.get(Category, category_id) is None:
        raise ValueError(f"Category not found: {category_id}")


def create_rule(
    session: Session,
    *,
    pattern: str,
    category_id: int,
    priority: int = 0,
    active: bool = True,
) -> CategorizationRule:
    if not split_pattern(pattern or ""):
        raise ValueError("Rule pattern must contain at least one non-empty alternative")
    _require_category(session, category_id)
    row = CategorizationRule(
        pattern=pattern.strip(), category_id=category_id, priority=priority, active=active
    )
    session.add(row)
    session.flush()
    return row


def update_rule(
    session: Session,
    rule_id: int,
    *,
    pattern: str | None = None,
    category_id: int | None = None,
    priority: int | None = None,
    active: bool | None = None,
) -> CategorizationRule | None:
    row = session.get(CategorizationRule, rule_id)
    if row is None:
        return None
    if pattern is not None:
        if not split_pattern(pattern):
            raise ValueError("Rule pattern must contain at least one non-empty alternative")
        row.pattern = pattern.strip()
    if category_id is not None:
        _require_category(session, category_id)
        row.category_id = category_id
    if priority is not None:
        row.priority = priority
    if active is not None:
        row.active = active
    session.flush()
    return row


def delete_rule(session: Session, rule_id: int) -> bool:
    row = session.get(CategorizationRule, rule_id)
    if row is None:
        return False
    session.delete(row)
    session.flush()
    return True


# ---------------------------
# Counterparty aliases
# ---------------------------


def _required_name(value: str | None, field: str) -> str:
    name = _norm_str(value)
    if name is None:
        raise ValueError(f"{field} must be non-empty")
    return name


def list_counterparty_aliases(session: Session) -> list[CounterpartyAlias]:
    return list(
        session.execute(
            select(CounterpartyAlias).order_by(CounterpartyAlias.display_name, CounterpartyAlias.id)
        ).scalars()
    )


def get_counterparty_alias(session: Session, original_name: str) -> CounterpartyAlias | None:
    return session.execute(
        select(CounterpartyAlias).where(CounterpartyAlias.original_name == original_name)
    ).scalar_one_or_none()


def create_counterparty_alias(session: Session, original_name: str, display_name: str) -> CounterpartyAlias:
    """Map ``original_name`` to ``display_name``, replacing an existing mapping."""

    original = _required_name(original_name, "original_name")
    display = _required_name(display_name, "display_name")
    row = get_counterparty_alias(session, original)
    if row is None:
        row = CounterpartyAlias(original_name=original, display_name=display)
        session.add(row)
    else:
        row.display_name = display
    session.flush()
    return row


def update_counterparty_alias(session: Session, alias_id: int, display_name: str) -> bool:
    row = session.get(CounterpartyAlias, alias_id)
    if row is None:
        return False
    row.display_name = _required_name(display_name, "display_name")
    session.flush()
    return True


def delete_counterparty_alias(session: Session, alias_id: int) -> bool:
    row = session.get(CounterpartyAlias, alias_id)
    if row is None:
        return False
    session.delete(row)
    session.flush()
    return True


def counterparty_display_names(session: Session) -> dict[str, str]:
    """``original_name -> display_name`` for every alias."""

    rows = session.execute(select(CounterpartyAlias.original_name, CounterpartyAlias.display_name))
    return {original: display for original, display in rows}


# ---------------------------
# API token singleton
# ---------------------------

_TOKEN_ROW_ID = 1


class SqlTokenStore:
    """``TokenStore`` backed by the ``sync_tokens`` singleton row.

    Each call runs in its own short transaction so a token obtained mid-sync
    is durable even if the surrounding work later fails.
    """

    def __init__(self, *, database_url: str | None = None) -> None:
        self._database_url = database_url

    def load(self) -> StoredToken | None:
        with session_scope(database_url=self._database_url) as s:
            row = s.get(SyncToken, _TOKEN_ROW_ID)
            if row is None:
                return None
            return StoredToken(
                access_token=row.access_token,
                refresh_token=row.refresh_token,
                expires_at=as_utc(row.expires_at),
            )

    def save(self, token: StoredToken) -> None:
        with session_scope(database_url=self._database_url) as s:
            row = s.get(SyncToken, _TOKEN_ROW_ID)
            if row is None:
                row = SyncToken(id=_TOKEN_ROW_ID)
                s.add(row)
            row.access_token = token.access_token
            row.refresh_token = token.refresh_token
            row.expires_at = as_utc(token.expires_at)
            row.updated_at = func.now()

    def clear(self) -> None:
        with session_scope(database_url=self._database_url) as s:
            row = s.get(SyncToken, _TOKEN_ROW_ID)
            if row is not None:
                s.delete(row)


__all__ = [
    "SqlTokenStore",
    "TransactionPage",
    "UpsertOutcome",
    "account_label",
    "categorize_by_counterparty",
    "counterparty_display_names",
    "create_counterparty_alias",
    "create_manual_transaction",
    "create_rule",
    "delete_counterparty_alias",
    "delete_rule",
    "ensure_cash_account",
    "get_account_by_id",
    "get_all_accounts",
    "get_all_categorization_rules",
    "get_category_by_counterparty",
    "get_counterparty_alias",
    "get_transactions",
    "list_counterparty_aliases",
    "list_uncategorized_transactions",
    "split_pattern",
    "update_account_custom_name",
    "update_counterparty_alias",
    "update_rule",
    "update_transaction_category",
    "update_transaction_notes",
    "upsert_account",
    "upsert_transaction",
]
