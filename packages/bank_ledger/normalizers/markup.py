"""Normalizer for the bank's XML movement export.

Expected shape::

    <AccountMovements>
      <AccountMovement>
        <ValueDate>15.03.2024</ValueDate>
        <Reason>Card purchase<br/>SHOP</Reason>
        <Amount>28,98</Amount>
        <MovementType>Debit</MovementType>
        <OppositeSideName>SHOP LTD</OppositeSideName>
      </AccountMovement>
      ...
    </AccountMovements>

The root may also be a single ``AccountMovement``. Amounts carry no currency;
the caller's hint (``BGN`` by default) applies to the whole file.
"""

from __future__ import annotations

import json
import re
import xml.etree.ElementTree as ET
from datetime import date
from decimal import Decimal, InvalidOperation

from ..errors import ImportValidationError
from ..identity import markup_id
from ..logging_setup import get_logger
from ..models import DropReason, ParseStats, RawMovement
from .base import StatementNormalizer, collapse_whitespace

logger = get_logger(__name__)

CONTAINER_TAG = "AccountMovements"
MOVEMENT_TAG = "AccountMovement"

_WS_RE = re.compile(r"\s+")


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _child_text(el: ET.Element, name: str) -> str:
    for child in el:
        if _local(child.tag) == name:
            return (child.text or "").strip()
    return ""


def _child(el: ET.Element, name: str) -> ET.Element | None:
    for child in el:
        if _local(child.tag) == name:
            return child
    return None


def _flatten(el: ET.Element) -> list[str]:
    parts = [el.text or ""]
    for child in el:
        if _local(child.tag).lower() == "br":
            parts.append(" ")
        else:
            parts.extend(_flatten(child))
        parts.append(child.tail or "")
    return parts


def reason_text(el: ET.Element) -> str:
    """Plain text of a ``Reason`` element.

    ``<br>`` children become spaces and other child elements keep only their
    text. Entities were decoded by the parser, so escaped brackets such as
    ``&lt;ATM&gt;`` stay in the text.
    """

    return collapse_whitespace("".join(_flatten(el)))


def convert_date(value: str) -> str | None:
    """``DD.MM.YYYY`` to ISO, or ``None`` when not a real calendar date."""

    parts = value.strip().split(".")
    if len(parts) != 3:
        return None
    try:
        day, month, year = (int(p) for p in parts)
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def parse_amount(value: str) -> Decimal | None:
    """Parse a decimal-comma amount such as ``"1 234,56"``."""

    normalized = _WS_RE.sub("", value).replace(",", ".")
    if not normalized:
        return None
    try:
        d = Decimal(normalized)
    except InvalidOperation:
        return None
    return d if d.is_finite() else None


def movement_elements(root: ET.Element) -> list[ET.Element]:
    """Return the movement elements of ``root`` as a list, whatever the nesting."""

    name = _local(root.tag)
    if name == MOVEMENT_TAG:
        return [root]
    if name == CONTAINER_TAG:
        return [c for c in root if _local(c.tag) == MOVEMENT_TAG]
    return [el for el in root.iter() if _local(el.tag) == MOVEMENT_TAG]


class MarkupStatementNormalizer(StatementNormalizer):
    source = "XML Import"
    default_currency = "BGN"

    def parse(self, raw: str | bytes) -> list[RawMovement]:
        self.stats = stats = ParseStats()
        try:
            root = ET.fromstring(raw)
        except ET.ParseError as e:
            raise ImportValidationError(f"Malformed XML statement: {e}") from e

        elements = movement_elements(root)
        logger.info("[%s] Found %d movements", self.source, len(elements))

        movements: list[RawMovement] = []
        for idx, el in enumerate(elements, start=1):
            stats.rows_seen += 1
            movement = self._parse_movement(el, idx)
            if movement is not None:
                movements.append(movement)
                stats.parsed += 1
        return movements

    def _parse_movement(self, el: ET.Element, idx: int) -> RawMovement | None:
        value_date = _child_text(el, "ValueDate")
        tx_date = convert_date(value_date)
        if tx_date is None:
            self.stats.drop(DropReason.BAD_DATE)
            logger.warning("[%s] Movement %d: invalid date %r", self.source, idx, value_date)
            return None

        amount_text = _child_text(el, "Amount")
        magnitude = parse_amount(amount_text)
        if magnitude is None:
            self.stats.drop(DropReason.MALFORMED)
            logger.warning("[%s] Movement %d: unparseable amount %r", self.source, idx, amount_text)
            return None
        if magnitude == 0:
            self.stats.drop(DropReason.ZERO_AMOUNT)
            return None

        is_debit = _child_text(el, "MovementType").casefold() == "debit"
        amount = -abs(magnitude) if is_debit else abs(magnitude)

        reason_el = _child(el, "Reason")
        description = reason_text(reason_el) if reason_el is not None else ""
        counterparty = _child_text(el, "OppositeSideName")

        fields = {_local(c.tag): "".join(_flatten(c)).strip() for c in el}
        return RawMovement(
            transaction_date=tx_date,
            booking_date=tx_date,
            description=description,
            amount=amount,
            currency=None,
            counterparty_name=counterparty,
            raw=fields,
        )

    def movement_id(self, movement: RawMovement, account_id: str) -> str:
        # Hashes the pre-conversion amount so the id does not depend on rates.
        return markup_id(
            movement.transaction_date,
            movement.description,
            f"{movement.amount:.2f}",
            movement.counterparty_name,
        )

    def raw_source(self, movement: RawMovement) -> str | None:
        return json.dumps(movement.raw, ensure_ascii=False, sort_keys=True)


__all__ = [
    "MarkupStatementNormalizer",
    "convert_date",
    "movement_elements",
    "parse_amount",
    "reason_text",
]
