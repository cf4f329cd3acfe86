"""Deterministic ids for statement rows that carry no provider id.

Re-importing the same file must produce the same ids so the upsert path can
recognise rows it has already stored.
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterable

MARKUP_PREFIX = "DSK"
DELIMITED_PREFIX = "REV"
MANUAL_PREFIX = "CASH"

_HASH_CHARS = 16


def generate_id(prefix: str, *fields: object) -> str:
    """Return ``"{PREFIX}_{HASH}"`` for the ``|``-joined string form of ``fields``.

    ``HASH`` is the first 16 hex digits of the MD5 digest, uppercased. ``None``
    fields hash as the empty string.
    """

    joined = "|".join("" if f is None else str(f) for f in fields)
    digest = hashlib.md5(joined.encode("utf-8")).hexdigest()
    return f"{prefix.upper()}_{digest[:_HASH_CHARS].upper()}"


def markup_id(date: str, description: str, amount: str, counterparty: str) -> str:
    return generate_id(MARKUP_PREFIX, date, description, amount, counterparty)


def delimited_id(cells: Iterable[str]) -> str:
    return generate_id(DELIMITED_PREFIX, *cells)


__all__ = [
    "DELIMITED_PREFIX",
    "MANUAL_PREFIX",
    "MARKUP_PREFIX",
    "delimited_id",
    "generate_id",
    "markup_id",
]
