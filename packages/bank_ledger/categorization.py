"""Rule-based categorization.

A rule is a ``|``-separated list of literal alternatives plus a category and a
priority. The text searched is ``description + " " + counterparty`` in upper
case; every alternative is upper-cased as well, so matching is
case-insensitive. Rules are tried in priority order (highest first, ties by
creation order) and the first alternative that is a substring wins.

When no rule matches, callers may fall back to the category most recently
assigned to the same counterparty (``categorize_with_history``).
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from db.client import session_scope
from db.models.finance import CategorizationRule, Category
from sqlalchemy.orm import Session

from .logging_setup import get_logger
from .models import ApplyRulesResult, CategorySuggestion
from .persistence import (
    get_all_categorization_rules,
    get_category_by_counterparty,
    list_uncategorized_transactions,
    split_pattern,
)

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class Rule:
    patterns: tuple[str, ...]
    category_id: int
    priority: int = 0
    rule_id: int | None = None

    @classmethod
    def from_row(cls, row: CategorizationRule) -> Rule:
        return cls(
            patterns=tuple(p.upper() for p in split_pattern(row.pattern)),
            category_id=row.category_id,
            priority=row.priority,
            rule_id=row.id,
        )

    def first_match(self, haystack: str) -> str | None:
        for p in self.patterns:
            if p in haystack:
                return p
        return None


def search_text(description: str | None, counterparty_name: str | None) -> str:
    return f"{description or ''} {counterparty_name or ''}".upper()


class RuleMatcher:
    """An ordered, immutable view of the active rules.

    ``rules`` must already be in evaluation order (as returned by
    ``get_all_categorization_rules``); inactive rows are dropped here.
    """

    def __init__(self, rules: Iterable[Rule]) -> None:
        self._rules = tuple(rules)

    @classmethod
    def from_rows(cls, rows: Iterable[CategorizationRule]) -> RuleMatcher:
        return cls(Rule.from_row(r) for r in rows if r.active)

    @classmethod
    def load(cls, session: Session) -> RuleMatcher:
        return cls.from_rows(get_all_categorization_rules(session, active_only=True))

    def __len__(self) -> int:
        return len(self._rules)

    def match(self, description: str | None, counterparty_name: str | None) -> int | None:
        haystack = search_text(description, counterparty_name)
        for rule in self._rules:
            if rule.first_match(haystack) is not None:
                return rule.category_id
        return None

    def matches(self, description: str | None, counterparty_name: str | None) -> list[tuple[Rule, str]]:
        """Every matching rule with the alternative that hit, in evaluation order."""

        haystack = search_text(description, counterparty_name)
        out: list[tuple[Rule, str]] = []
        for rule in self._rules:
            hit = rule.first_match(haystack)
            if hit is not None:
                out.append((rule, hit))
        return out


def categorize(session: Session, description: str | None, counterparty_name: str | None) -> int | None:
    """Category id of the first matching active rule, or ``None``."""

    return RuleMatcher.load(session).match(description, counterparty_name)


def categorize_with_history(
    session: Session,
    matcher: RuleMatcher,
    description: str | None,
    counterparty_name: str | None,
) -> int | None:
    """Rules first, then the counterparty's most recent category."""

    category_id = matcher.match(description, counterparty_name)
    if category_id is not None:
        return category_id
    return get_category_by_counterparty(session, counterparty_name)


def apply_to_all_uncategorized(*, database_url: str | None = None) -> ApplyRulesResult:
    """Categorize every uncategorized transaction that rules or history can place.

    Rows are processed one at a time so a category assigned earlier in the run
    is visible to the history lookup of later rows.
    """

    categorized = 0
    with session_scope(database_url=database_url) as session:
        matcher = RuleMatcher.load(session)
        pending = list_uncategorized_transactions(session)
        logger.info("Applying %d rules to %d uncategorized transactions", len(matcher), len(pending))
        for tx in pending:
            category_id = categorize_with_history(
                session, matcher, tx.description, tx.counterparty_name
            )
            if category_id is None:
                continue
            tx.category_id = category_id
            session.flush()
            categorized += 1

    logger.info("Categorized %d of %d transactions", categorized, len(pending))
    return ApplyRulesResult(total_uncategorized=len(pending), categorized_count=categorized)


def suggest_categories(
    session: Session,
    description: str | None,
    counterparty_name: str | None,
) -> list[CategorySuggestion]:
    """Every matching active rule as a suggestion, most confident first.

    Confidence is ``priority / 10`` capped to ``[0, 1]``.
    """

    matcher = RuleMatcher.load(session)
    suggestions: list[CategorySuggestion] = []
    seen: set[int] = set()
    for rule, hit in matcher.matches(description, counterparty_name):
        if rule.category_id in seen:
            continue
        seen.add(rule.category_id)
        category = session.get(Category, rule.category_id)
        suggestions.append(
            CategorySuggestion(
                category_id=rule.category_id,
                category_name=category.name if category is not None else "",
                confidence=max(0.0, min(1.0, rule.priority / 10)),
                matched_pattern=hit,
            )
        )
    suggestions.sort(key=lambda s: s.confidence, reverse=True)
    return suggestions


__all__ = [
    "Rule",
    "RuleMatcher",
    "apply_to_all_uncategorized",
    "categorize",
    "categorize_with_history",
    "search_text",
    "suggest_categories",
]
