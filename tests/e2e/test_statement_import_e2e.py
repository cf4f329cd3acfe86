# ruff: noqa: E501
"""Statement files through the whole pipeline against a file-backed SQLite DB.

Covers: default seeding, CSV and XML import with rule and history
categorization, idempotent re-import that keeps local annotations, bank sync
on the same ledger, and the bulk re-categorization pass.
"""

from __future__ import annotations

import textwrap
from decimal import Decimal
from pathlib import Path

import pytest
from db.client import session_scope
from db.models.finance import Category

from bank_ledger import apply_to_all_uncategorized, import_statement
from bank_ledger.categories import seed_default_categories
from bank_ledger.models import TransactionFilter
from bank_ledger.persistence import (
    create_rule,
    get_transactions,
    update_transaction_category,
    update_transaction_notes,
)
from bank_ledger.sync import SyncOrchestrator
from tests.helpers.bank_api_stub import FIXED_NOW, BankApiStub, booked, booked_item
from tests.helpers.db import BANK_ACCOUNT_ID, bootstrap_sqlite_db, fetch_transaction


def _dedent(s: str) -> str:
    return textwrap.dedent(s).lstrip("\n").rstrip()


CSV_EXPORT = _dedent(
    """
    Type,Product,Started Date,Completed Date,Description,Amount,Fee,Currency,State,Balance
    CARD_PAYMENT,Current,2024-03-01 10:00:00,2024-03-02 09:00:00,Card payment to Lidl,-12.50,0.00,EUR,COMPLETED,487.50
    CARD_PAYMENT,Current,2024-03-03 18:30:00,2024-03-04 08:00:00,Card payment to Corner Cafe,-3.20,0.00,EUR,COMPLETED,484.30
    TRANSFER,Current,2024-03-05 12:00:00,2024-03-05 12:00:01,Transfer from ACME Ltd,1500.00,0.00,EUR,COMPLETED,1984.30
    CARD_PAYMENT,Current,2024-03-06 09:00:00,,Card payment to Shell,-40.00,0.00,EUR,PENDING,1984.30
    CARD_PAYMENT,Current,2024-03-07 11:00:00,2024-03-08 07:00:00,"Card payment to DEU AMAZON, EU",-21.60,0.00,USD,COMPLETED,1962.70
    """
)

XML_EXPORT = _dedent(
    """
    <?xml version="1.0" encoding="UTF-8"?>
    <AccountMovements>
      <AccountMovement>
        <ValueDate>10.03.2024</ValueDate>
        <Reason>Плащане ПОС<br/>BILLA 0042</Reason>
        <Amount>39,12</Amount>
        <MovementType>Debit</MovementType>
        <OppositeSideName>BILLA BULGARIA</OppositeSideName>
      </AccountMovement>
      <AccountMovement>
        <ValueDate>11.03.2024</ValueDate>
        <Reason>Coffee</Reason>
        <Amount>6,00</Amount>
        <MovementType>Debit</MovementType>
        <OppositeSideName>Corner Cafe</OppositeSideName>
      </AccountMovement>
    </AccountMovements>
    """
)


@pytest.fixture
def ledger(tmp_path: Path) -> str:
    url = bootstrap_sqlite_db(tmp_path / "ledger.sqlite")
    with session_scope(database_url=url) as s:
        seed_default_categories(s)
    return url


def _category_id(url: str, name: str) -> int:
    with session_scope(database_url=url) as s:
        return s.query(Category).filter(Category.name == name).one().id


def test_csv_then_xml_import_with_categorization_and_reimport(ledger: str):
    food = _category_id(ledger, "Food & Drinks")
    salary = _category_id(ledger, "Salary")

    first = import_statement(CSV_EXPORT, fmt="csv", account_id=BANK_ACCOUNT_ID, database_url=ledger)

    assert (first.total, first.imported, first.skipped, first.errors) == (4, 4, 0, ())
    assert first.categorized == 1  # LIDL via the seeded grocery rule
    assert first.parse_stats.dropped == {"not_completed": 1}

    with session_scope(database_url=ledger) as s:
        page = get_transactions(s, TransactionFilter(account_id=BANK_ACCOUNT_ID, limit=None))
        by_cp = {t.counterparty_name: t for t in page.items}
        assert set(by_cp) == {"Lidl", "Corner Cafe", "ACME Ltd", "DEU AMAZON, EU"}
        assert by_cp["Lidl"].category_id == food
        amazon = by_cp["DEU AMAZON, EU"]
        assert (amazon.amount, amazon.original_amount, amazon.original_currency) == (
            Decimal("-20.00"),
            Decimal("-21.60"),
            "USD",
        )
        assert amazon.country_code == "DEU"
        assert str(amazon.transaction_date) == "2024-03-08"
        cafe_id = by_cp["Corner Cafe"].id
        salary_id = by_cp["ACME Ltd"].id

        update_transaction_category(s, cafe_id, food)
        update_transaction_category(s, salary_id, salary)
        update_transaction_notes(s, salary_id, "March payroll")

    again = import_statement(CSV_EXPORT.encode("utf-8"), fmt="csv", account_id=BANK_ACCOUNT_ID, database_url=ledger)
    assert (again.imported, again.skipped) == (0, 4)
    row = fetch_transaction(ledger, salary_id)
    assert (row.category_id, row.notes) == (salary, "March payroll")

    xml = import_statement(XML_EXPORT, fmt="xml", account_id=BANK_ACCOUNT_ID, currency="BGN", database_url=ledger)
    assert (xml.imported, xml.categorized) == (2, 2)  # BILLA by rule, the cafe by history

    with session_scope(database_url=ledger) as s:
        page = get_transactions(s, TransactionFilter(search="billa", limit=None))
        [billa] = page.items
        assert billa.description == "Плащане ПОС BILLA 0042"
        assert billa.amount == Decimal("-20.00")
        assert billa.category_id == food
        assert get_transactions(s).total == 6


def test_bank_sync_and_bulk_recategorization_share_the_ledger(ledger: str):
    stub = BankApiStub().on(
        "GET",
        f"/accounts/{BANK_ACCOUNT_ID}/transactions/",
        (
            200,
            booked(
                booked_item("-15.00", transaction_id="GC-1", remittance="NETFLIX.COM", creditor="NLD NETFLIX"),
                booked_item("-9.99", transaction_id="GC-2", remittance="Spotify", creditor="SWE SPOTIFY"),
            ),
        ),
    )
    orchestrator = SyncOrchestrator(stub.client(), database_url=ledger, clock=lambda: FIXED_NOW)

    summary = orchestrator.sync_all_transactions(30)
    assert summary.transactions_synced == 2
    assert fetch_transaction(ledger, "GC-1").category_id is None

    entertainment = _category_id(ledger, "Entertainment")
    with session_scope(database_url=ledger) as s:
        create_rule(s, pattern="netflix|spotify", category_id=entertainment, priority=5)

    result = apply_to_all_uncategorized(database_url=ledger)
    assert (result.total_uncategorized, result.categorized_count) == (2, 2)
    assert fetch_transaction(ledger, "GC-2").category_id == entertainment
    assert fetch_transaction(ledger, "GC-1").country_code == "NLD"
