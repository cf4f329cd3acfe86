"""Public interface for the ``bank_ledger`` package.

Re-exports the entry points of the ingestion pipeline and its result types.
There is no runtime logic here, only symbol re-exports.
"""

from .batch_import import import_batch
from .categorization import (
    RuleMatcher,
    apply_to_all_uncategorized,
    categorize,
    categorize_with_history,
    suggest_categories,
)
from .currency import normalize as normalize_currency
from .errors import ImportValidationError, RemoteApiError, TokenError
from .identity import generate_id
from .ingest import import_statement
from .models import (
    CanonicalTransaction,
    ImportResult,
    NormalizedAmount,
    ParseStats,
    RawMovement,
    RecordOutcome,
    RecordStatus,
    StatementImportSummary,
)
from .sync import SyncOrchestrator

__all__ = [
    # Pipeline
    "apply_to_all_uncategorized",
    "categorize",
    "categorize_with_history",
    "generate_id",
    "import_batch",
    "import_statement",
    "normalize_currency",
    "suggest_categories",
    "RuleMatcher",
    "SyncOrchestrator",
    # Errors
    "ImportValidationError",
    "RemoteApiError",
    "TokenError",
    # Models
    "CanonicalTransaction",
    "ImportResult",
    "NormalizedAmount",
    "ParseStats",
    "RawMovement",
    "RecordOutcome",
    "RecordStatus",
    "StatementImportSummary",
]
