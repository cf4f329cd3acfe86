"""Statement normalizers, one per source format."""

from .base import StatementNormalizer
from .delimited import DelimitedStatementNormalizer
from .markup import MarkupStatementNormalizer
from .remote import RemoteTransactionNormalizer

__all__ = [
    "DelimitedStatementNormalizer",
    "MarkupStatementNormalizer",
    "RemoteTransactionNormalizer",
    "StatementNormalizer",
]
