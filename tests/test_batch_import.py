from dataclasses import replace
from decimal import Decimal
from pathlib import Path

import pytest

import bank_ledger.batch_import as batch_import
from bank_ledger.batch_import import import_batch
from bank_ledger.models import RecordStatus
from tests.helpers.db import (
    add_category,
    bootstrap_sqlite_db,
    count_transactions,
    fetch_transaction,
    make_tx,
)


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    return bootstrap_sqlite_db(tmp_path / "ledger.sqlite")


def test_reimport_is_idempotent(db_url: str):
    batch = [make_tx(f"DSK_{i}", amount=f"-{i}.00") for i in range(1, 6)]

    first = import_batch(batch, database_url=db_url)
    second = import_batch(batch, database_url=db_url)

    assert (first.imported, first.skipped, first.errors) == (5, 0, [])
    assert (second.imported, second.skipped, second.errors) == (0, 5, [])
    assert count_transactions(db_url) == 5


def test_failed_record_does_not_abort_the_batch(db_url: str):
    batch = [make_tx(f"T{i}") for i in range(1, 6)]
    batch[2] = make_tx("T3", account_id="no-such-account")

    result = import_batch(batch, database_url=db_url)

    assert result.imported == 4
    assert [e.record_id for e in result.errors] == ["T3"]
    assert "FOREIGN KEY" in result.errors[0].message.upper()
    assert [o.status for o in result.outcomes] == [
        RecordStatus.IMPORTED,
        RecordStatus.IMPORTED,
        RecordStatus.FAILED,
        RecordStatus.IMPORTED,
        RecordStatus.IMPORTED,
    ]
    assert fetch_transaction(db_url, "T3") is None
    assert count_transactions(db_url) == 4


def test_invalid_record_is_reported_not_raised(db_url: str):
    result = import_batch([make_tx("BAD", transaction_date=""), make_tx("OK")], database_url=db_url)
    assert result.imported == 1
    assert [e.record_id for e in result.errors] == ["BAD"]


def test_skipped_records_refresh_provider_fields_only(db_url: str):
    cat = add_category(db_url, "Food")
    import_batch([make_tx("T1", amount="-1.00", category_id=cat, notes="mine")], database_url=db_url)

    result = import_batch([make_tx("T1", amount="-2.00", description="Updated")], database_url=db_url)

    assert result.skipped == 1
    row = fetch_transaction(db_url, "T1")
    assert row.amount == Decimal("-2.00")
    assert row.description == "Updated"
    assert (row.category_id, row.notes) == (cat, "mine")


def test_empty_batch(db_url: str):
    result = import_batch([], database_url=db_url)
    assert (result.imported, result.skipped, result.errors) == (0, 0, [])


def test_record_without_amount_fails_alone(db_url: str):
    batch = [make_tx(f"T{i}") for i in range(1, 6)]
    batch[2] = replace(batch[2], amount=None)

    result = import_batch(batch, database_url=db_url)

    assert result.imported == 4
    assert [e.record_id for e in result.errors] == ["T3"]
    assert "numeric amount" in result.errors[0].message
    assert count_transactions(db_url) == 4


def test_unexpected_exception_is_contained_to_its_record(db_url: str, monkeypatch: pytest.MonkeyPatch):
    real_upsert = batch_import.upsert_transaction

    def flaky_upsert(session, tx):
        if tx.id == "T2":
            raise TypeError("unsupported operand")
        return real_upsert(session, tx)

    monkeypatch.setattr(batch_import, "upsert_transaction", flaky_upsert)

    result = import_batch([make_tx(f"T{i}") for i in range(1, 4)], database_url=db_url)

    assert result.imported == 2
    assert [(e.record_id, e.message) for e in result.errors] == [("T2", "unsupported operand")]
    assert fetch_transaction(db_url, "T1") is not None
    assert fetch_transaction(db_url, "T3") is not None
