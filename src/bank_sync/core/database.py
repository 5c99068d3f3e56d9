"""
SQLite persistence for parsed transactions.

Tables:
- processed_documents: one marker per notification already handled
- transactions: parsed transactions plus ledger reconciliation columns
- quarantine: notifications no parser matched or no parser could parse

Every public method runs in its own committed transaction, so an
interrupted run always leaves the store in a resumable state.
"""

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from bank_sync.core.exceptions import StoreError
from bank_sync.models.document import QuarantineRecord
from bank_sync.models.transaction import StoredTransaction, SyncStatus, Transaction

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path("data") / "bank_transactions.db"

SCHEMA = """
CREATE TABLE IF NOT EXISTS processed_documents (
    document_id TEXT PRIMARY KEY,
    processed_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS transactions (
    id TEXT PRIMARY KEY,
    seq INTEGER NOT NULL,
    issuer TEXT NOT NULL,
    account TEXT,
    date TEXT NOT NULL,
    payee TEXT NOT NULL,
    memo TEXT,
    amount TEXT NOT NULL,
    currency TEXT NOT NULL,
    direction TEXT NOT NULL CHECK (direction IN ('inflow', 'outflow')),
    source_document_id TEXT NOT NULL,
    source_thread_id TEXT NOT NULL,
    created_at TEXT NOT NULL,
    ledger_transaction_id TEXT,
    synced_at TEXT,
    last_error TEXT,
    last_error_kind TEXT,
    retry_count INTEGER NOT NULL DEFAULT 0,
    last_retry_at TEXT
);

CREATE TABLE IF NOT EXISTS quarantine (
    document_id TEXT PRIMARY KEY,
    reason TEXT,
    subject TEXT,
    date TEXT,
    attempts INTEGER NOT NULL DEFAULT 1,
    last_attempt TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_transactions_order ON transactions(date, seq);
CREATE INDEX IF NOT EXISTS idx_transactions_synced ON transactions(synced_at);
CREATE INDEX IF NOT EXISTS idx_transactions_ledger_id ON transactions(ledger_transaction_id);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class TransactionStore:
    """
    Durable store for transactions, dedup markers and quarantined documents.

    Primary-key uniqueness on transactions.id is the only deduplication
    guard: inserting an already known fingerprint is a successful no-op.
    """

    def __init__(self, db_path: Optional[Path] = None):
        """
        Open (and create if needed) the store.

        Args:
            db_path: Path to the SQLite file.
                    If None, uses data/bank_transactions.db under the cwd.
        """
        self.db_path = Path(db_path) if db_path is not None else DEFAULT_DB_PATH
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreError(f"Cannot create store directory for {self.db_path}: {e}") from e
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for one committed unit of work."""
        try:
            conn = self._get_connection()
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open store at {self.db_path}: {e}") from e
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StoreError(f"Store operation failed: {e}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self._transaction() as conn:
            conn.executescript(SCHEMA)

    # Processed documents

    def is_processed(self, document_id: str) -> bool:
        """Check whether a document was already handled in a prior run."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT 1 FROM processed_documents WHERE document_id = ?",
                (document_id,),
            ).fetchone()
        return row is not None

    def mark_processed(self, document_id: str) -> None:
        """Record a document as handled. Marking twice keeps the first timestamp."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO processed_documents (document_id, processed_at)
                VALUES (?, ?)
                ON CONFLICT(document_id) DO NOTHING
                """,
                (document_id, _now()),
            )

    def last_processed_at(self) -> Optional[datetime]:
        """Timestamp of the most recently processed document, if any."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT MAX(processed_at) AS last_sync FROM processed_documents"
            ).fetchone()
        if row is None or row["last_sync"] is None:
            return None
        return datetime.fromisoformat(row["last_sync"])

    # Transactions

    def insert_if_absent(self, transaction: Transaction) -> bool:
        """
        Insert a transaction unless its fingerprint is already stored.

        Returns:
            True if a new row was written, False for a known fingerprint
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO transactions (
                    id, seq, issuer, account, date, payee, memo, amount,
                    currency, direction, source_document_id, source_thread_id,
                    created_at
                )
                VALUES (
                    :id, (SELECT COALESCE(MAX(seq), 0) + 1 FROM transactions),
                    :issuer, :account, :date, :payee, :memo, :amount,
                    :currency, :direction, :source_document_id, :source_thread_id,
                    :created_at
                )
                ON CONFLICT(id) DO NOTHING
                """,
                {
                    "id": transaction.id,
                    "issuer": transaction.issuer,
                    "account": transaction.account,
                    "date": transaction.date.isoformat(),
                    "payee": transaction.payee,
                    "memo": transaction.memo,
                    "amount": f"{transaction.amount:.2f}",
                    "currency": transaction.currency,
                    "direction": transaction.direction.value,
                    "source_document_id": transaction.source_document_id,
                    "source_thread_id": transaction.source_thread_id,
                    "created_at": _now(),
                },
            )
            inserted = cursor.rowcount > 0

        if not inserted:
            logger.debug("Transaction %s already stored", transaction.id)
        return inserted

    def get_transaction(self, transaction_id: str) -> Optional[StoredTransaction]:
        """Fetch a single stored transaction by fingerprint."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM transactions WHERE id = ?", (transaction_id,)
            ).fetchone()
        return _row_to_transaction(row) if row is not None else None

    def select_pending(self, min_date: Optional[date] = None) -> List[StoredTransaction]:
        """
        Transactions never submitted and never failed.

        Ordered by transaction date, then insertion order, so older
        transactions reach the ledger first.
        """
        return self._select(
            "synced_at IS NULL AND last_error IS NULL AND ledger_transaction_id IS NULL",
            min_date,
        )

    def select_retryable(self, min_date: Optional[date] = None) -> List[StoredTransaction]:
        """Pending and failed transactions, in the same order as select_pending."""
        return self._select("ledger_transaction_id IS NULL", min_date)

    def _select(self, where: str, min_date: Optional[date]) -> List[StoredTransaction]:
        params: List[Any] = []
        if min_date is not None:
            where = f"({where}) AND date >= ?"
            params.append(min_date.isoformat())

        with self._transaction() as conn:
            rows = conn.execute(
                f"SELECT * FROM transactions WHERE {where} ORDER BY date ASC, seq ASC",
                params,
            ).fetchall()
        return [_row_to_transaction(row) for row in rows]

    def get_transactions(
        self,
        status: Optional[SyncStatus] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        account: Optional[str] = None,
        issuer: Optional[str] = None,
        limit: int = 100,
    ) -> List[StoredTransaction]:
        """
        Query stored transactions with optional filters.

        Args:
            status: Only rows in this reconciliation state
            start_date: Filter by date >= this (YYYY-MM-DD)
            end_date: Filter by date <= this (YYYY-MM-DD)
            account: Filter by instrument last 4 digits
            issuer: Filter by issuer tag (case-insensitive)
            limit: Maximum number of rows

        Returns:
            Matching transactions, most recent first
        """
        clauses: List[str] = []
        params: List[Any] = []

        if status == SyncStatus.SYNCED:
            clauses.append("ledger_transaction_id IS NOT NULL")
        elif status == SyncStatus.FAILED:
            clauses.append("ledger_transaction_id IS NULL AND last_error IS NOT NULL")
        elif status == SyncStatus.PENDING:
            clauses.append(
                "ledger_transaction_id IS NULL AND last_error IS NULL AND synced_at IS NULL"
            )
        if start_date:
            clauses.append("date >= ?")
            params.append(start_date)
        if end_date:
            clauses.append("date <= ?")
            params.append(end_date)
        if account:
            clauses.append("account = ?")
            params.append(account)
        if issuer:
            clauses.append("UPPER(issuer) = ?")
            params.append(issuer.upper())

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)

        with self._transaction() as conn:
            rows = conn.execute(
                f"SELECT * FROM transactions {where} ORDER BY date DESC, seq DESC LIMIT ?",
                params,
            ).fetchall()
        return [_row_to_transaction(row) for row in rows]

    def status_counts(self) -> Dict[str, int]:
        """Number of transactions per reconciliation state."""
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT
                    SUM(CASE WHEN ledger_transaction_id IS NOT NULL THEN 1 ELSE 0 END)
                        AS synced,
                    SUM(CASE WHEN ledger_transaction_id IS NULL
                             AND last_error IS NOT NULL THEN 1 ELSE 0 END) AS failed,
                    SUM(CASE WHEN ledger_transaction_id IS NULL AND last_error IS NULL
                             AND synced_at IS NULL THEN 1 ELSE 0 END) AS pending
                FROM transactions
                """
            ).fetchone()
        return {
            SyncStatus.PENDING.value: row["pending"] or 0,
            SyncStatus.FAILED.value: row["failed"] or 0,
            SyncStatus.SYNCED.value: row["synced"] or 0,
        }

    def error_counts(self) -> Dict[str, int]:
        """Number of failed transactions per error kind."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT last_error_kind AS kind, COUNT(*) AS n
                FROM transactions
                WHERE ledger_transaction_id IS NULL AND last_error IS NOT NULL
                GROUP BY last_error_kind
                """
            ).fetchall()
        return {row["kind"] or "UNKNOWN_ERROR": row["n"] for row in rows}

    # Reconciliation status

    def record_synced(self, transaction_id: str, ledger_transaction_id: str) -> bool:
        """Mark a transaction as accepted by the ledger and clear any error."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE transactions
                SET ledger_transaction_id = ?,
                    synced_at = ?,
                    last_error = NULL,
                    last_error_kind = NULL,
                    retry_count = 0
                WHERE id = ?
                """,
                (ledger_transaction_id, _now(), transaction_id),
            )
            return cursor.rowcount > 0

    def record_error(self, transaction_id: str, message: str, error_kind: str) -> bool:
        """Attach a classified failure to a transaction and bump its retry count."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE transactions
                SET last_error = ?,
                    last_error_kind = ?,
                    retry_count = retry_count + 1,
                    last_retry_at = ?
                WHERE id = ?
                """,
                (message, error_kind, _now(), transaction_id),
            )
            return cursor.rowcount > 0

    # Quarantine

    def quarantine(
        self,
        document_id: str,
        reason: str,
        subject: Optional[str] = None,
        date: Optional[str] = None,
    ) -> int:
        """
        Record a document that could not be parsed.

        Returns:
            The attempt count after this call
        """
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO quarantine (document_id, reason, subject, date, attempts, last_attempt)
                VALUES (?, ?, ?, ?, 1, ?)
                ON CONFLICT(document_id) DO UPDATE SET
                    reason = excluded.reason,
                    subject = excluded.subject,
                    date = excluded.date,
                    attempts = quarantine.attempts + 1,
                    last_attempt = excluded.last_attempt
                """,
                (document_id, reason, subject, date, _now()),
            )
            row = conn.execute(
                "SELECT attempts FROM quarantine WHERE document_id = ?", (document_id,)
            ).fetchone()
        return row["attempts"]

    def get_quarantine(self, limit: int = 100) -> List[QuarantineRecord]:
        """Quarantined documents, most recent attempt first."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM quarantine ORDER BY last_attempt DESC LIMIT ?", (limit,)
            ).fetchall()
        return [QuarantineRecord(**dict(row)) for row in rows]


def _row_to_transaction(row: sqlite3.Row) -> StoredTransaction:
    data = dict(row)
    data.pop("seq", None)
    data["memo"] = data.get("memo") or ""
    return StoredTransaction.model_validate(data)
