from pathlib import Path

import pytest
from db.client import session_scope
from db.models.finance import CategorizationRule, Category

from bank_ledger.categories import (
    DEFAULT_CATEGORIES,
    DEFAULT_RULES,
    create_category,
    delete_category,
    list_categories,
    normalize_name,
    seed_default_categories,
    update_category,
    validate_name,
)
from bank_ledger.persistence import create_rule, upsert_transaction
from tests.helpers.db import bootstrap_sqlite_db, fetch_transaction, make_tx


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    return bootstrap_sqlite_db(tmp_path / "ledger.sqlite")


def test_name_helpers():
    assert normalize_name("  Food   &  Drinks ") == "Food & Drinks"
    assert not validate_name("   ").ok
    assert not validate_name("x" * 65).ok
    assert validate_name("Rent").ok


def test_create_rejects_duplicates_case_insensitively(db_url: str):
    with session_scope(database_url=db_url) as s:
        created = create_category(s, name=" Groceries ", type="Expense")
        assert created["name"] == "Groceries"
        assert created["type"] == "expense"
        with pytest.raises(ValueError, match="already exists"):
            create_category(s, name="groceries", type="expense")


def test_create_rejects_unknown_type(db_url: str):
    with session_scope(database_url=db_url) as s, pytest.raises(ValueError):
        create_category(s, name="Misc", type="other")


def test_parent_must_exist_and_be_a_root(db_url: str):
    with session_scope(database_url=db_url) as s:
        root = create_category(s, name="Home", type="expense")
        child = create_category(s, name="Rent", type="expense", parent_id=root["id"])
        assert child["parent_id"] == root["id"]
        with pytest.raises(ValueError, match="top-level"):
            create_category(s, name="Deposit", type="expense", parent_id=child["id"])
        with pytest.raises(ValueError, match="not found"):
            create_category(s, name="Ghost", type="expense", parent_id=9999)


def test_update_parent_rules(db_url: str):
    with session_scope(database_url=db_url) as s:
        a = create_category(s, name="A", type="expense")
        b = create_category(s, name="B", type="expense")
        c = create_category(s, name="C", type="expense", parent_id=a["id"])

        with pytest.raises(ValueError, match="own parent"):
            update_category(s, b["id"], parent_id=b["id"])
        with pytest.raises(ValueError, match="children"):
            update_category(s, a["id"], parent_id=b["id"])

        moved = update_category(s, c["id"], parent_id=b["id"])
        assert moved is not None and moved["parent_id"] == b["id"]
        detached = update_category(s, c["id"], parent_id=None)
        assert detached is not None and detached["parent_id"] is None
        renamed = update_category(s, c["id"], name="C2", color="#000")
        assert renamed is not None and (renamed["name"], renamed["color"]) == ("C2", "#000")
        assert update_category(s, 9999, name="x") is None


def test_delete_detaches_transactions_rules_and_children(db_url: str):
    with session_scope(database_url=db_url) as s:
        root = create_category(s, name="Shopping", type="expense")
        child = create_category(s, name="Clothes", type="expense", parent_id=root["id"])
        create_rule(s, pattern="ZARA", category_id=root["id"], priority=5)
        keep_rule = create_rule(s, pattern="H&M", category_id=child["id"]).id
        upsert_transaction(s, make_tx("T1", category_id=root["id"]))

    with session_scope(database_url=db_url) as s:
        assert delete_category(s, root["id"]) is True
        assert delete_category(s, root["id"]) is False

    assert fetch_transaction(db_url, "T1").category_id is None
    with session_scope(database_url=db_url) as s:
        assert s.get(Category, root["id"]) is None
        assert s.get(Category, child["id"]).parent_id is None
        assert [r.id for r in s.query(CategorizationRule).all()] == [keep_rule]


def test_list_categories_orders_and_filters(db_url: str):
    with session_scope(database_url=db_url) as s:
        create_category(s, name="Salary", type="income")
        create_category(s, name="Rent", type="expense")
        create_category(s, name="Food", type="expense")
        assert [c["name"] for c in list_categories(s)] == ["Food", "Rent", "Salary"]
        assert [c["name"] for c in list_categories(s, type="income")] == ["Salary"]


def test_seed_defaults_once(db_url: str):
    with session_scope(database_url=db_url) as s:
        assert seed_default_categories(s) == len(DEFAULT_CATEGORIES)
    with session_scope(database_url=db_url) as s:
        assert seed_default_categories(s) == 0
        assert s.query(Category).count() == len(DEFAULT_CATEGORIES)
        assert s.query(CategorizationRule).count() == len(DEFAULT_RULES)
