"""Account and transaction sync from the bank-data API.

Work is sequential. Credential failures (:class:`TokenError`) abort the whole
sync; any other failure is contained to the account it happened on and
reported in the result next to the successes.
"""

from __future__ import annotations

import dataclasses
from datetime import timedelta
from decimal import Decimal

from db.client import session_scope
from db.models.finance import CASH_ACCOUNT_ID
from sqlalchemy.exc import SQLAlchemyError

from . import currency as money
from .categorization import RuleMatcher
from .config import DEFAULT_SYNC_DAYS_BACK
from .errors import RemoteApiError, TokenError
from .logging_setup import get_logger
from .models import (
    AccountSyncError,
    AccountSyncResult,
    AccountTransactionSync,
    SkippedRequisition,
    TransactionSyncSummary,
)
from .normalizers import RemoteTransactionNormalizer
from .persistence import (
    UpsertOutcome,
    account_label,
    get_account_by_id,
    get_all_accounts,
    upsert_account,
    upsert_transaction,
)
from .remote.client import BankDataClient, Clock, utcnow
from .remote.schemas import Requisition

logger = get_logger(__name__)

LINKED = "LN"
DEAD_STATUSES = frozenset({"EX", "RJ"})
# Used when neither the account details nor its balance name a currency.
FALLBACK_ACCOUNT_CURRENCY = "BGN"
UNKNOWN_ACCOUNT_NAME = "Unknown Account"

_RECOVERABLE = (RemoteApiError, SQLAlchemyError, ValueError)


class SyncOrchestrator:
    def __init__(
        self,
        client: BankDataClient,
        *,
        database_url: str | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._client = client
        self._database_url = database_url
        self._clock = clock
        self._normalizer = RemoteTransactionNormalizer()

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def sync_all_accounts(self) -> AccountSyncResult:
        """Refresh every account of every linked requisition.

        Requisitions in other states are reported, not synced: ``EX``/``RJ`` as
        dead (to be deleted by the user), the rest as pending.
        """

        requisitions = self._client.list_requisitions()
        synced: list[str] = []
        errors: list[AccountSyncError] = []
        dead: list[SkippedRequisition] = []
        pending: list[SkippedRequisition] = []

        for req in requisitions:
            if req.status != LINKED or not req.accounts:
                skipped = SkippedRequisition(req.id, req.status, req.institution_id)
                (dead if req.status in DEAD_STATUSES else pending).append(skipped)
                logger.info("Requisition %s not ready: status=%s", req.id, req.status)
                continue
            for account_id in req.accounts:
                try:
                    self._sync_account(req, account_id)
                except TokenError:
                    raise
                except _RECOVERABLE as e:
                    logger.warning("Failed to sync account %s: %s", account_id, e)
                    errors.append(AccountSyncError(account_id, str(e)))
                    continue
                synced.append(account_id)

        logger.info(
            "Account sync complete: %d synced, %d failed, %d dead, %d pending requisitions",
            len(synced),
            len(errors),
            len(dead),
            len(pending),
        )
        return AccountSyncResult(
            synced_accounts=tuple(synced),
            errors=tuple(errors),
            dead_requisitions=tuple(dead),
            pending_requisitions=tuple(pending),
        )

    def _sync_account(self, req: Requisition, account_id: str) -> None:
        details = self._client.get_account_details(account_id)
        balances = self._client.get_account_balances(account_id)

        balance_amount = balances[0].balance_amount if balances else None
        raw_balance = balance_amount.amount if balance_amount is not None else Decimal("0")
        source_currency = (
            details.currency
            or (balance_amount.currency if balance_amount is not None else None)
            or FALLBACK_ACCOUNT_CURRENCY
        )
        converted = money.normalize(raw_balance, source_currency)

        with session_scope(database_url=self._database_url) as session:
            upsert_account(
                session,
                account_id=account_id,
                display_name=details.name or details.iban or UNKNOWN_ACCOUNT_NAME,
                institution_id=req.institution_id,
                institution_name=details.institution or req.institution_id,
                iban=details.iban,
                currency=converted.currency,
                balance=converted.amount,
                synced_at=self._clock(),
            )
        logger.info("Account %s synced (balance %s %s)", account_id, converted.amount, converted.currency)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def sync_account_transactions(self, account_id: str, days_back: int = DEFAULT_SYNC_DAYS_BACK) -> int:
        """Fetch and store booked transactions of the last ``days_back`` days.

        Each record is categorized by the rules (no history fallback) and
        upserted in its own transaction. Returns the number of new rows.
        """

        if account_id == CASH_ACCOUNT_ID:
            raise ValueError("The cash account is not synced from the bank")
        with session_scope(database_url=self._database_url) as session:
            if get_account_by_id(session, account_id) is None:
                raise ValueError(f"Account not found: {account_id}")
            matcher = RuleMatcher.load(session)

        date_from = (self._clock().date() - timedelta(days=days_back)).isoformat()
        payload = self._client.get_account_transactions(account_id, date_from=date_from)
        records = self._normalizer.normalize(payload, account_id=account_id)

        inserted = 0
        for tx in records:
            category_id = matcher.match(tx.description, tx.counterparty_name)
            if category_id is not None:
                tx = dataclasses.replace(tx, category_id=category_id)
            with session_scope(database_url=self._database_url) as session:
                if upsert_transaction(session, tx) is UpsertOutcome.INSERTED:
                    inserted += 1

        logger.info(
            "Account %s: %d booked transactions since %s, %d new",
            account_id,
            len(records),
            date_from,
            inserted,
        )
        return inserted

    def sync_all_transactions(self, days_back: int = DEFAULT_SYNC_DAYS_BACK) -> TransactionSyncSummary:
        """Run :meth:`sync_account_transactions` for every stored bank account."""

        with session_scope(database_url=self._database_url) as session:
            accounts = [
                (a.id, account_label(a), a.institution_name)
                for a in get_all_accounts(session)
                if a.id != CASH_ACCOUNT_ID
            ]

        results: list[AccountTransactionSync] = []
        for account_id, name, institution in accounts:
            try:
                count = self.sync_account_transactions(account_id, days_back)
            except TokenError:
                raise
            except _RECOVERABLE as e:
                logger.warning("Transaction sync failed for %s: %s", account_id, e)
                results.append(AccountTransactionSync(account_id, name, institution, 0, str(e)))
                continue
            results.append(AccountTransactionSync(account_id, name, institution, count))

        summary = TransactionSyncSummary(results=tuple(results))
        logger.info(
            "Transaction sync complete: %d new transactions across %d accounts",
            summary.transactions_synced,
            len(results),
        )
        return summary


__all__ = ["DEAD_STATUSES", "LINKED", "SyncOrchestrator"]
