"""Category domain helpers and service operations.

Categories form a two-level tree: a root may have children, a child may not.
Names are unique across the whole table (case-insensitive). All functions take
a ``Session``; callers own the transaction scope.

Exports
-------
- ``create_category``/``update_category``/``delete_category``/``list_categories``
- ``seed_default_categories``: initial categories and rules for an empty ledger
- ``normalize_name``/``validate_name``: shared name checks
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final, TypedDict

from db.models.finance import CategorizationRule, Category, Transaction
from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from .logging_setup import get_logger

logger = get_logger(__name__)

CATEGORY_TYPES: Final = ("income", "expense", "transfer")

# ---------------------------
# Name normalization/validation
# ---------------------------


def normalize_name(name: str) -> str:
    """Trim and collapse internal whitespace; case is preserved."""

    return " ".join(name.strip().split())


@dataclass(frozen=True, slots=True)
class NameValidation:
    ok: bool
    reason: str | None = None


def validate_name(name: str, *, max_len: int = 64) -> NameValidation:
    n = normalize_name(name)
    if not n:
        return NameValidation(False, "Name cannot be empty")
    if len(n) > max_len:
        return NameValidation(False, f"Name must be at most {max_len} characters")
    return NameValidation(True, None)


def _validate_type(type_: str) -> str:
    t = (type_ or "").strip().lower()
    if t not in CATEGORY_TYPES:
        raise ValueError(f"Category type must be one of {', '.join(CATEGORY_TYPES)}; got {type_!r}")
    return t


# ---------------------------
# Service result shape
# ---------------------------


class CategoryDict(TypedDict):
    id: int
    name: str
    type: str
    color: str | None
    icon: str | None
    parent_id: int | None


def _row_to_dict(row: Category) -> CategoryDict:
    return {
        "id": row.id,
        "name": row.name,
        "type": row.type,
        "color": row.color,
        "icon": row.icon,
        "parent_id": row.parent_id,
    }


def _find_by_name(session: Session, name: str) -> Category | None:
    return (
        session.execute(select(Category).where(func.lower(Category.name) == name.lower()))
        .scalars()
        .first()
    )


def _has_children(session: Session, category_id: int) -> bool:
    return (
        session.execute(select(Category.id).where(Category.parent_id == category_id).limit(1)).first()
        is not None
    )


def _check_parent(session: Session, parent_id: int, *, child_id: int | None = None) -> None:
    if child_id is not None and parent_id == child_id:
        raise ValueError("A category cannot be its own parent")
    parent = session.get(Category, parent_id)
    if parent is None:
        raise ValueError(f"Parent category not found: {parent_id}")
    if parent.parent_id is not None:
        raise ValueError("Parent must be a top-level category (cannot be a child)")
    if child_id is not None and _has_children(session, child_id):
        raise ValueError("A category with children cannot become a child")


def _checked_name(name: str) -> str:
    n = normalize_name(name)
    v = validate_name(n)
    if not v.ok:
        raise ValueError(f"Invalid category name: {v.reason}")
    return n


# ---------------------------
# Operations
# ---------------------------


def create_category(
    session: Session,
    *,
    name: str,
    type: str,
    color: str | None = None,
    icon: str | None = None,
    parent_id: int | None = None,
) -> CategoryDict:
    """Create a category.

    Raises
    ------
    ValueError
        Invalid name or type, duplicate name (case-insensitive) or a parent
        that is missing or not a root.
    """

    n = _checked_name(name)
    t = _validate_type(type)
    if _find_by_name(session, n) is not None:
        raise ValueError(f"Category '{n}' already exists")
    if parent_id is not None:
        _check_parent(session, parent_id)

    row = Category(name=n, type=t, color=color, icon=icon, parent_id=parent_id)
    session.add(row)
    session.flush()
    return _row_to_dict(row)


_UNSET: Final = object()


def update_category(
    session: Session,
    category_id: int,
    *,
    name: str | None = None,
    type: str | None = None,
    color: str | None = None,
    icon: str | None = None,
    parent_id: int | None | object = _UNSET,
) -> CategoryDict | None:
    """Update the given fields; ``parent_id=None`` detaches a child to the root level.

    Returns ``None`` when the category does not exist.
    """

    row = session.get(Category, category_id)
    if row is None:
        return None
    if name is not None:
        n = _checked_name(name)
        existing = _find_by_name(session, n)
        if existing is not None and existing.id != row.id:
            raise ValueError(f"Category '{n}' already exists")
        row.name = n
    if type is not None:
        row.type = _validate_type(type)
    if color is not None:
        row.color = color
    if icon is not None:
        row.icon = icon
    if parent_id is None:
        row.parent_id = None
    elif isinstance(parent_id, int):
        _check_parent(session, parent_id, child_id=row.id)
        row.parent_id = parent_id
    session.flush()
    return _row_to_dict(row)


def delete_category(session: Session, category_id: int) -> bool:
    """Delete a category and detach everything that points at it.

    Transactions in the category become uncategorized, its rules are deleted
    and its children become root categories.
    """

    row = session.get(Category, category_id)
    if row is None:
        return False
    cleared = session.execute(
        update(Transaction)
        .where(Transaction.category_id == category_id)
        .values(category_id=None, updated_at=func.now())
        .execution_options(synchronize_session=False)
    ).rowcount
    rules = session.execute(
        delete(CategorizationRule)
        .where(CategorizationRule.category_id == category_id)
        .execution_options(synchronize_session=False)
    ).rowcount
    session.execute(
        update(Category)
        .where(Category.parent_id == category_id)
        .values(parent_id=None)
        .execution_options(synchronize_session=False)
    )
    session.delete(row)
    session.flush()
    # Bulk statements bypassed the identity map.
    session.expire_all()
    logger.info(
        "Deleted category %s (%d transactions uncategorized, %d rules removed)",
        category_id,
        cleared or 0,
        rules or 0,
    )
    return True


def list_categories(session: Session, *, type: str | None = None) -> list[CategoryDict]:
    stmt = select(Category).order_by(Category.type, Category.name)
    if type is not None:
        stmt = stmt.where(Category.type == _validate_type(type))
    return [_row_to_dict(r) for r in session.execute(stmt).scalars()]


# ---------------------------
# Defaults
# ---------------------------

DEFAULT_CATEGORIES: Final[tuple[tuple[str, str, str, str], ...]] = (
    # (name, type, color, icon)
    ("Food & Drinks", "expense", "#FF6384", "utensils"),
    ("Transport", "expense", "#36A2EB", "car"),
    ("Utilities", "expense", "#FFCE56", "home"),
    ("Health", "expense", "#4BC0C0", "heartbeat"),
    ("Entertainment", "expense", "#9966FF", "film"),
    ("Clothing", "expense", "#FF9F40", "tshirt"),
    ("Education", "expense", "#FF6384", "graduation-cap"),
    ("Household", "expense", "#36A2EB", "couch"),
    ("Telecommunications", "expense", "#FFCE56", "mobile"),
    ("Insurance", "expense", "#4BC0C0", "shield-alt"),
    ("Other Expenses", "expense", "#C9CBCF", "ellipsis-h"),
    ("Salary", "income", "#4CAF50", "money-bill-wave"),
    ("Freelance", "income", "#8BC34A", "laptop"),
    ("Investments", "income", "#CDDC39", "chart-line"),
    ("Gifts", "income", "#FFEB3B", "gift"),
    ("Other Income", "income", "#FFC107", "plus-circle"),
    ("Between Accounts", "transfer", "#9E9E9E", "exchange-alt"),
    ("Savings", "transfer", "#607D8B", "piggy-bank"),
)

DEFAULT_RULES: Final[tuple[tuple[str, str, int], ...]] = (
    # (pattern, category name, priority)
    ("KAUFLAND|LIDL|BILLA|FANTASTICO", "Food & Drinks", 10),
    ("ЧЕЗ|CEZ|ТОПЛОФИКАЦИЯ|SOFIYSKA VODA", "Utilities", 10),
    ("БОЛНИЦА|АПТЕКА|PHARMACY", "Health", 10),
    ("VIVACOM|YETTEL|A1|TELENOR", "Telecommunications", 10),
    ("OMV|PETROL|LUKOIL|SHELL", "Transport", 10),
    ("H&M|ZARA|RESERVED", "Clothing", 10),
)


def seed_default_categories(session: Session) -> int:
    """Insert the default categories and rules when no category exists yet.

    Returns the number of categories inserted (0 when the table was not empty).
    """

    if session.execute(select(Category.id).limit(1)).first() is not None:
        return 0

    by_name: dict[str, Category] = {}
    for name, type_, color, icon in DEFAULT_CATEGORIES:
        row = Category(name=name, type=type_, color=color, icon=icon)
        session.add(row)
        by_name[name] = row
    session.flush()

    for pattern, category_name, priority in DEFAULT_RULES:
        session.add(
            CategorizationRule(
                pattern=pattern, category_id=by_name[category_name].id, priority=priority
            )
        )
    session.flush()
    logger.info("Seeded %d categories and %d rules", len(by_name), len(DEFAULT_RULES))
    return len(by_name)


__all__ = [
    "CATEGORY_TYPES",
    "CategoryDict",
    "DEFAULT_CATEGORIES",
    "DEFAULT_RULES",
    "NameValidation",
    "create_category",
    "delete_category",
    "list_categories",
    "normalize_name",
    "seed_default_categories",
    "update_category",
    "validate_name",
]
