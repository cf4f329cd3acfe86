"""Bank-data API access: typed payloads, token lifecycle and the HTTP client."""

from .client import BankDataClient
from .tokens import (
    MemoryTokenStore,
    StoredToken,
    TokenAction,
    TokenStore,
    decide_token_action,
)

__all__ = [
    "BankDataClient",
    "MemoryTokenStore",
    "StoredToken",
    "TokenAction",
    "TokenStore",
    "decide_token_action",
]
