"""Statement file import: validate, normalize, categorize, persist.

Validation happens before any row is touched; a rejected file leaves the
database unchanged. Categorization uses the rules first and then the
counterparty's history, with the rules loaded once per file.
"""

from __future__ import annotations

import dataclasses
from typing import Literal

from db.client import session_scope

from .batch_import import import_batch
from .categorization import RuleMatcher, categorize_with_history
from .errors import ImportValidationError
from .logging_setup import get_logger
from .models import CanonicalTransaction, StatementImportSummary
from .normalizers import (
    DelimitedStatementNormalizer,
    MarkupStatementNormalizer,
    StatementNormalizer,
)
from .persistence import get_account_by_id

logger = get_logger(__name__)

StatementFormat = Literal["xml", "csv"]


def normalizer_for(fmt: str) -> StatementNormalizer:
    key = (fmt or "").strip().lower()
    if key == "xml":
        return MarkupStatementNormalizer()
    if key == "csv":
        return DelimitedStatementNormalizer()
    raise ImportValidationError(f"Unsupported statement format: {fmt!r} (expected xml or csv)")


def import_statement(
    content: str | bytes,
    *,
    fmt: StatementFormat,
    account_id: str,
    currency: str = "BGN",
    database_url: str | None = None,
) -> StatementImportSummary:
    """Import one statement file into ``account_id``.

    ``currency`` is the statement currency for formats whose rows carry none
    (the XML export); CSV rows name their own currency.

    Raises
    ------
    ImportValidationError
        Empty content, unknown format, unknown account, malformed XML or a CSV
        without date/amount columns.
    """

    if content is None or not content.strip():
        raise ImportValidationError("Statement file is empty")
    if not account_id or not account_id.strip():
        raise ImportValidationError("Target account is required")
    normalizer = normalizer_for(fmt)

    with session_scope(database_url=database_url) as session:
        if get_account_by_id(session, account_id) is None:
            raise ImportValidationError(f"Account not found: {account_id}")

    # CSV rows carry their own currency.
    hint = currency if isinstance(normalizer, MarkupStatementNormalizer) else None
    records = normalizer.normalize(content, account_id=account_id, currency_hint=hint)
    logger.info("[%s] %d transactions ready for import into %s", normalizer.source, len(records), account_id)

    categorized: list[CanonicalTransaction] = []
    categorized_count = 0
    with session_scope(database_url=database_url) as session:
        matcher = RuleMatcher.load(session)
        for tx in records:
            category_id = categorize_with_history(
                session, matcher, tx.description, tx.counterparty_name
            )
            if category_id is not None:
                categorized_count += 1
                tx = dataclasses.replace(tx, category_id=category_id)
            categorized.append(tx)

    result = import_batch(categorized, database_url=database_url)
    return StatementImportSummary(
        imported=result.imported,
        skipped=result.skipped,
        categorized=categorized_count,
        total=len(records),
        errors=tuple(result.errors),
        parse_stats=normalizer.stats,
    )


__all__ = ["StatementFormat", "import_statement", "normalizer_for"]
