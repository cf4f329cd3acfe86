from dataclasses import replace
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from pathlib import Path

import pytest
from db.client import session_scope
from db.models.finance import CASH_ACCOUNT_ID

from bank_ledger.models import TransactionFilter
from bank_ledger.persistence import (
    SqlTokenStore,
    UpsertOutcome,
    account_label,
    categorize_by_counterparty,
    counterparty_display_names,
    create_counterparty_alias,
    create_manual_transaction,
    create_rule,
    delete_counterparty_alias,
    get_all_categorization_rules,
    get_category_by_counterparty,
    get_counterparty_alias,
    get_transactions,
    list_counterparty_aliases,
    update_account_custom_name,
    update_counterparty_alias,
    update_transaction_category,
    update_transaction_notes,
    upsert_account,
    upsert_transaction,
)
from bank_ledger.remote.tokens import StoredToken
from tests.helpers.db import (
    BANK_ACCOUNT_ID,
    add_category,
    bootstrap_sqlite_db,
    fetch_transaction,
    make_tx,
)


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    return bootstrap_sqlite_db(tmp_path / "ledger.sqlite")


def test_upsert_merge_keeps_local_category_and_notes(db_url: str):
    cat = add_category(db_url, "Groceries")
    with session_scope(database_url=db_url) as s:
        assert upsert_transaction(s, make_tx("DSK_1", amount="-10.00")) is UpsertOutcome.INSERTED
    with session_scope(database_url=db_url) as s:
        update_transaction_category(s, "DSK_1", cat)
        update_transaction_notes(s, "DSK_1", "x")

    incoming = replace(make_tx("DSK_1", amount="-12.00", description="Corrected"), category_id=None)
    with session_scope(database_url=db_url) as s:
        assert upsert_transaction(s, incoming) is UpsertOutcome.UPDATED

    row = fetch_transaction(db_url, "DSK_1")
    assert row is not None
    assert row.amount == Decimal("-12.00")
    assert row.description == "Corrected"
    assert row.category_id == cat
    assert row.notes == "x"


def test_insert_carries_category_and_notes(db_url: str):
    cat = add_category(db_url, "Rent")
    with session_scope(database_url=db_url) as s:
        upsert_transaction(s, make_tx("T1", category_id=cat, notes="march"))
    row = fetch_transaction(db_url, "T1")
    assert (row.category_id, row.notes) == (cat, "march")


def test_missing_transaction_date_is_rejected(db_url: str):
    with session_scope(database_url=db_url) as s, pytest.raises(ValueError):
        upsert_transaction(s, make_tx("T1", transaction_date=""))


def test_get_transactions_filters_and_totals(db_url: str):
    cat = add_category(db_url, "Food")
    with session_scope(database_url=db_url) as s:
        upsert_transaction(s, make_tx("A", transaction_date="2024-01-05", amount="-5.00", counterparty_name="LIDL"))
        upsert_transaction(s, make_tx("B", transaction_date="2024-02-05", amount="100.00", counterparty_name="ACME"))
        upsert_transaction(
            s, make_tx("C", transaction_date="2024-03-05", amount="-7.50", counterparty_name="DEU SHOP", category_id=cat)
        )
    with session_scope(database_url=db_url) as s:
        page = get_transactions(s)
        assert [t.id for t in page.items] == ["C", "B", "A"]
        assert page.total == 3
        assert page.total_amount == Decimal("87.50")

        assert [t.id for t in get_transactions(s, TransactionFilter(kind="expense")).items] == ["C", "A"]
        assert [t.id for t in get_transactions(s, TransactionFilter(category_id="uncategorized")).items] == ["B", "A"]
        assert [t.id for t in get_transactions(s, TransactionFilter(category_id=cat)).items] == ["C"]
        assert [t.id for t in get_transactions(s, TransactionFilter(search="lid")).items] == ["A"]
        window = TransactionFilter(start_date="2024-02-01", end_date="2024-02-28")
        assert [t.id for t in get_transactions(s, window).items] == ["B"]

        paged = get_transactions(s, TransactionFilter(limit=1, offset=1))
        assert [t.id for t in paged.items] == ["B"]
        assert paged.total == 3


def test_country_filter(db_url: str):
    with session_scope(database_url=db_url) as s:
        upsert_transaction(s, replace(make_tx("A"), country_code="DEU"))
        upsert_transaction(s, make_tx("B"))
    with session_scope(database_url=db_url) as s:
        assert [t.id for t in get_transactions(s, TransactionFilter(country="deu")).items] == ["A"]
        assert [t.id for t in get_transactions(s, TransactionFilter(country="none")).items] == ["B"]


def test_counterparty_history_and_bulk_assign(db_url: str):
    old = add_category(db_url, "Old")
    new = add_category(db_url, "New")
    with session_scope(database_url=db_url) as s:
        upsert_transaction(s, make_tx("A", transaction_date="2024-01-01", counterparty_name="ACME", category_id=old))
        upsert_transaction(s, make_tx("B", transaction_date="2024-02-01", counterparty_name="ACME", category_id=new))
        upsert_transaction(s, make_tx("C", transaction_date="2024-03-01", counterparty_name="ACME"))
        upsert_transaction(s, make_tx("D", transaction_date="2024-03-01", counterparty_name="OTHER"))

    with session_scope(database_url=db_url) as s:
        assert get_category_by_counterparty(s, "ACME") == new
        assert get_category_by_counterparty(s, "OTHER") is None
        assert get_category_by_counterparty(s, "") is None
        assert categorize_by_counterparty(s, "ACME", old) == 1

    assert fetch_transaction(db_url, "C").category_id == old
    assert fetch_transaction(db_url, "B").category_id == new


def test_manual_transaction_goes_to_cash_account(db_url: str):
    with session_scope(database_url=db_url) as s:
        row = create_manual_transaction(
            s, transaction_date="2024-03-01", amount="-4.5", description=" Coffee ", counterparty_name=""
        )
        tx_id = row.id

    stored = fetch_transaction(db_url, tx_id)
    assert tx_id.startswith("CASH_")
    assert stored.account_id == CASH_ACCOUNT_ID
    assert stored.amount == Decimal("-4.50")
    assert stored.currency == "EUR"
    assert stored.description == "Coffee"
    assert stored.counterparty_name is None


def test_manual_transaction_rejects_bad_amount(db_url: str):
    with session_scope(database_url=db_url) as s, pytest.raises(ValueError):
        create_manual_transaction(s, transaction_date="2024-03-01", amount="lots")


def test_account_upsert_preserves_custom_name(db_url: str):
    with session_scope(database_url=db_url) as s:
        assert update_account_custom_name(s, BANK_ACCOUNT_ID, "  Daily  ")
        assert not update_account_custom_name(s, "missing", "x")
    with session_scope(database_url=db_url) as s:
        row = upsert_account(s, account_id=BANK_ACCOUNT_ID, display_name="Renamed by bank", balance=Decimal("1.005"))
        assert row.custom_name == "Daily"
        assert row.balance == Decimal("1.01")
        assert account_label(row) == "Daily"


def test_rules_are_listed_by_priority_then_creation(db_url: str):
    cat = add_category(db_url, "Any")
    with session_scope(database_url=db_url) as s:
        low = create_rule(s, pattern="A", category_id=cat, priority=1).id
        high = create_rule(s, pattern="B", category_id=cat, priority=10).id
        low2 = create_rule(s, pattern="C", category_id=cat, priority=1).id
        off = create_rule(s, pattern="D", category_id=cat, priority=5, active=False).id
    with session_scope(database_url=db_url) as s:
        assert [r.id for r in get_all_categorization_rules(s)] == [high, off, low, low2]
        assert [r.id for r in get_all_categorization_rules(s, active_only=True)] == [high, low, low2]


def test_create_rule_validates_pattern_and_category(db_url: str):
    cat = add_category(db_url, "Any")
    with session_scope(database_url=db_url) as s:
        with pytest.raises(ValueError):
            create_rule(s, pattern=" | ", category_id=cat)
        with pytest.raises(ValueError):
            create_rule(s, pattern="LIDL", category_id=cat + 100)


def test_sql_token_store_roundtrip(db_url: str):
    store = SqlTokenStore(database_url=db_url)
    assert store.load() is None

    expires = datetime(2024, 3, 20, 12, 0, tzinfo=UTC)
    store.save(StoredToken("a1", "r1", expires))
    store.save(StoredToken("a2", "r1", expires + timedelta(hours=1)))

    loaded = store.load()
    assert loaded == StoredToken("a2", "r1", expires + timedelta(hours=1))
    store.clear()
    assert store.load() is None


# ---- counterparty aliases -----------------------------------------------------


def test_alias_create_replaces_existing_mapping(db_url: str):
    with session_scope(database_url=db_url) as s:
        first = create_counterparty_alias(s, " KAUFLAND BG 0123 ", "Kaufland")
        again = create_counterparty_alias(s, "KAUFLAND BG 0123", "Kaufland Sofia")
        assert again.id == first.id
        create_counterparty_alias(s, "AMZN MKTP", "Amazon")

    with session_scope(database_url=db_url) as s:
        assert [a.display_name for a in list_counterparty_aliases(s)] == ["Amazon", "Kaufland Sofia"]
        assert get_counterparty_alias(s, "KAUFLAND BG 0123").display_name == "Kaufland Sofia"
        assert get_counterparty_alias(s, "unknown") is None
        assert counterparty_display_names(s) == {
            "KAUFLAND BG 0123": "Kaufland Sofia",
            "AMZN MKTP": "Amazon",
        }


def test_alias_update_and_delete(db_url: str):
    with session_scope(database_url=db_url) as s:
        alias_id = create_counterparty_alias(s, "AMZN MKTP", "Amazon").id

    with session_scope(database_url=db_url) as s:
        assert update_counterparty_alias(s, alias_id, "Amazon EU")
        assert not update_counterparty_alias(s, 9999, "x")
        with pytest.raises(ValueError, match="display_name"):
            update_counterparty_alias(s, alias_id, "  ")

    with session_scope(database_url=db_url) as s:
        assert get_counterparty_alias(s, "AMZN MKTP").display_name == "Amazon EU"
        assert delete_counterparty_alias(s, alias_id)
        assert not delete_counterparty_alias(s, alias_id)
        assert list_counterparty_aliases(s) == []


def test_alias_requires_both_names(db_url: str):
    with session_scope(database_url=db_url) as s:
        with pytest.raises(ValueError, match="original_name"):
            create_counterparty_alias(s, "", "Shop")
        with pytest.raises(ValueError, match="display_name"):
            create_counterparty_alias(s, "SHOP", None)


def test_search_matches_alias_display_name(db_url: str):
    with session_scope(database_url=db_url) as s:
        upsert_transaction(s, make_tx("T1", counterparty_name="AMZN MKTP DE", description="Order"))
        upsert_transaction(s, make_tx("T2", counterparty_name="LIDL", description="Groceries"))
        create_counterparty_alias(s, "AMZN MKTP DE", "Amazon")

    with session_scope(database_url=db_url) as s:
        page = get_transactions(s, TransactionFilter(search="amazon"))
        assert [t.id for t in page.items] == ["T1"]
