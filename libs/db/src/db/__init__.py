"""db: shared database library (SQLAlchemy).

Public exports
--------------
- ``Base`` and ``metadata`` for schema creation
- ORM models in ``db.models.finance`` (re-exported for convenience)
- Engine/session helpers in ``db.client``
"""

from __future__ import annotations

from .models.finance import (
    CASH_ACCOUNT_ID,
    Account,
    Base,
    CategorizationRule,
    Category,
    CounterpartyAlias,
    SyncToken,
    Transaction,
)

metadata = Base.metadata

__all__ = [
    "Base",
    "metadata",
    "CASH_ACCOUNT_ID",
    "Account",
    "Category",
    "CategorizationRule",
    "CounterpartyAlias",
    "Transaction",
    "SyncToken",
]
