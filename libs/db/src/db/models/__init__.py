"""Shared SQLAlchemy models registry for the workspace database.

Currently includes the ledger models used by ``bank_ledger``.
"""

from .finance import (
    CASH_ACCOUNT_ID,
    Account,
    Base,
    CategorizationRule,
    Category,
    CounterpartyAlias,
    SyncToken,
    Transaction,
)

__all__ = [
    "Base",
    "CASH_ACCOUNT_ID",
    "Account",
    "Category",
    "CategorizationRule",
    "CounterpartyAlias",
    "Transaction",
    "SyncToken",
]
