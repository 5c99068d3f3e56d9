"""
Run summaries reported at the end of ingestion and reconciliation.
"""

from typing import Dict, Optional

from pydantic import BaseModel, Field

from bank_sync.models.transaction import Transaction


class IngestSummary(BaseModel):
    """Counts for one ingestion pass over the mailbox."""

    found: int = 0
    processed: int = 0
    new: int = 0
    quarantined: int = 0
    skipped: int = 0
    errors: int = 0


class SyncSummary(BaseModel):
    """Counts for one reconciliation pass against the ledger."""

    attempted: int = 0
    synced: int = 0
    failed: int = 0
    errors_by_kind: Dict[str, int] = Field(default_factory=dict)

    def add_failure(self, kind: str) -> None:
        """Count one failed row under its error kind."""
        self.failed += 1
        self.errors_by_kind[kind] = self.errors_by_kind.get(kind, 0) + 1

    def merge(self, other: "SyncSummary") -> "SyncSummary":
        """Combine two summaries into a new one."""
        merged = SyncSummary(
            attempted=self.attempted + other.attempted,
            synced=self.synced + other.synced,
            failed=self.failed + other.failed,
            errors_by_kind=dict(self.errors_by_kind),
        )
        for kind, count in other.errors_by_kind.items():
            merged.errors_by_kind[kind] = merged.errors_by_kind.get(kind, 0) + count
        return merged


class DryRunResult(BaseModel):
    """What ingestion would do with one document, without storing anything."""

    status: str  # MATCH, FAIL or SKIP
    document_id: str
    subject: str = ""
    sender: str = ""
    parser: Optional[str] = None
    transaction: Optional[Transaction] = None
    preview: str = ""

    def describe(self) -> str:
        """One line report, e.g. "[MATCH] QIK: 2026-01-05 - UBER - DOP 450.00"."""
        if self.status == "MATCH" and self.transaction is not None:
            t = self.transaction
            return f"[MATCH] {self.parser}: {t.date} - {t.payee} - {t.currency} {t.amount}"
        if self.status == "FAIL":
            return f"[FAIL] {self.parser} could not parse: {self.subject}"
        return f"[SKIP] No parser for: {self.subject} (From: {self.sender})"
