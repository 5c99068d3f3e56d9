"""
Pydantic models for bank notification sync data structures.
"""

from bank_sync.models.document import Document, QuarantineRecord
from bank_sync.models.summary import DryRunResult, IngestSummary, SyncSummary
from bank_sync.models.transaction import (
    Direction,
    StoredTransaction,
    SyncStatus,
    Transaction,
    fingerprint,
)

__all__ = [
    "Direction",
    "Document",
    "DryRunResult",
    "IngestSummary",
    "QuarantineRecord",
    "StoredTransaction",
    "SyncStatus",
    "SyncSummary",
    "Transaction",
    "fingerprint",
]
