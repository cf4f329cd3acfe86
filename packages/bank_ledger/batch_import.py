"""Best-effort batch import of canonical transactions.

The whole batch runs in one transaction. Each record is upserted inside its
own SAVEPOINT, so a failing record is rolled back alone and the rest of the
batch still commits. Only a failure of the final commit undoes the batch (and
propagates).

Outcomes per record:
- ``imported``: the id was new and the row was inserted.
- ``skipped``: the id already existed; provider fields were refreshed and the
  local category/notes kept.
- ``failed``: the upsert raised (any exception); the reason is the exception
  text.
"""

from __future__ import annotations

from collections.abc import Iterable

from db.client import session_scope

from .logging_setup import get_logger
from .models import CanonicalTransaction, ImportResult, RecordOutcome, RecordStatus
from .persistence import UpsertOutcome, upsert_transaction

logger = get_logger(__name__)


def import_batch(
    transactions: Iterable[CanonicalTransaction],
    *,
    database_url: str | None = None,
) -> ImportResult:
    outcomes: list[RecordOutcome] = []
    with session_scope(database_url=database_url) as session:
        for tx in transactions:
            try:
                with session.begin_nested():
                    result = upsert_transaction(session, tx)
            except Exception as e:  # noqa: BLE001
                # The savepoint has undone this record only.
                reason = str(getattr(e, "orig", None) or e)
                logger.warning("Failed to import transaction %s: %s", tx.id, reason)
                outcomes.append(RecordOutcome(tx.id, RecordStatus.FAILED, reason))
                continue
            status = (
                RecordStatus.IMPORTED if result is UpsertOutcome.INSERTED else RecordStatus.SKIPPED
            )
            outcomes.append(RecordOutcome(tx.id, status))

    out = ImportResult(outcomes=tuple(outcomes))
    logger.info(
        "Batch import: %d imported, %d skipped, %d failed",
        out.imported,
        out.skipped,
        len(out.errors),
    )
    return out


__all__ = ["import_batch"]
