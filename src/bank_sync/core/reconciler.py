"""
Reconciliation of stored transactions against the external ledger.

Rows are grouped by ledger account and submitted in one batch per
account. When a batch fails with a transient error, each row of that
batch is retried on its own so one bad row cannot hold back the rest.
"""

import logging
import time
from datetime import date
from typing import Callable, Dict, Iterable, List, Mapping, Optional

from bank_sync.core.database import TransactionStore
from bank_sync.core.errors import (
    ClassifiedError,
    ErrorKind,
    RetryPolicy,
    classify_error,
    format_error,
    retry_with_backoff,
)
from bank_sync.ledger.base import LedgerClient
from bank_sync.models.summary import SyncSummary
from bank_sync.models.transaction import StoredTransaction

logger = logging.getLogger(__name__)


class Reconciler:
    """
    Pushes unsynced transactions to the ledger and records the outcome.

    Every row handed to reconcile() ends up either synced (ledger id
    stored, errors cleared) or failed (classified error stored, retry
    count incremented).
    """

    def __init__(
        self,
        store: TransactionStore,
        ledger: LedgerClient,
        account_mappings: Mapping[str, str],
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            store: Transaction store to read from and write outcomes to
            ledger: Ledger client
            account_mappings: Bank account (last 4) -> ledger account id
            policy: Backoff settings for every ledger call
            sleep: Sleep function used between retries
        """
        self.store = store
        self.ledger = ledger
        self.account_mappings = dict(account_mappings)
        self.policy = policy or RetryPolicy()
        self.sleep = sleep

    def sync(self, min_date: Optional[date] = None) -> SyncSummary:
        """Submit transactions that were never attempted."""
        return self.reconcile(self.store.select_pending(min_date))

    def retry(self, min_date: Optional[date] = None) -> SyncSummary:
        """Submit every transaction not yet synced, failed ones included."""
        return self.reconcile(self.store.select_retryable(min_date))

    def reconcile(self, transactions: Iterable[StoredTransaction]) -> SyncSummary:
        """
        Submit transactions and write back one outcome per row.

        Args:
            transactions: Rows in submission order

        Returns:
            Counts of synced and failed rows, with failures by error kind
        """
        summary = SyncSummary()
        groups: Dict[str, List[StoredTransaction]] = {}

        for transaction in transactions:
            if transaction.ledger_transaction_id is not None:
                logger.debug("Transaction %s already synced, skipping", transaction.id)
                continue

            summary.attempted += 1
            account_id = self.account_mappings.get(transaction.account or "")
            if not account_id:
                self._fail(
                    transaction,
                    ClassifiedError(
                        ErrorKind.CONFIGURATION_ERROR,
                        f"No ledger account mapping for bank account {transaction.account}",
                        context={"transaction_id": transaction.id, "issuer": transaction.issuer},
                    ),
                    summary,
                )
                continue
            groups.setdefault(account_id, []).append(transaction)

        for account_id, rows in groups.items():
            self._submit_group(account_id, rows, summary)

        logger.info(
            "Sync finished: %d attempted, %d synced, %d failed %s",
            summary.attempted,
            summary.synced,
            summary.failed,
            summary.errors_by_kind or "",
        )
        return summary

    def _submit_group(
        self, account_id: str, rows: List[StoredTransaction], summary: SyncSummary
    ) -> None:
        def on_retry(error: ClassifiedError, attempt: int) -> None:
            logger.warning(
                "Retrying batch of %d for account %s (attempt %d): %s",
                len(rows),
                account_id,
                attempt,
                error.message,
            )

        try:
            ledger_ids = retry_with_backoff(
                lambda: self.ledger.submit_batch(account_id, rows),
                policy=self.policy,
                on_retry=on_retry,
                sleep=self.sleep,
            )
        except Exception as e:
            error = classify_error(e).with_context(
                {"account_id": account_id, "transaction_count": len(rows)}
            )
            logger.error("Batch for account %s failed: %s", account_id, format_error(error))

            if error.retryable and len(rows) > 1:
                logger.info("Falling back to individual submission for %d rows", len(rows))
                for row in rows:
                    self._submit_single(account_id, row, summary)
            else:
                for row in rows:
                    self._fail(row, error, summary)
            return

        for index, row in enumerate(rows):
            ledger_id = ledger_ids[index] if index < len(ledger_ids) else None
            if ledger_id:
                self._succeed(row, ledger_id, summary)
            else:
                self._fail(
                    row,
                    ClassifiedError(
                        ErrorKind.UNKNOWN_ERROR,
                        "ledger returned no id",
                        context={"account_id": account_id},
                    ),
                    summary,
                )

    def _submit_single(
        self, account_id: str, row: StoredTransaction, summary: SyncSummary
    ) -> None:
        def on_retry(error: ClassifiedError, attempt: int) -> None:
            logger.warning(
                "Retrying %s (%s) attempt %d: %s", row.id, row.payee, attempt, error.message
            )

        try:
            ledger_id = retry_with_backoff(
                lambda: self.ledger.submit_one(account_id, row),
                policy=self.policy,
                on_retry=on_retry,
                sleep=self.sleep,
            )
        except Exception as e:
            self._fail(
                row,
                classify_error(e).with_context(
                    {
                        "transaction_id": row.id,
                        "payee": row.payee,
                        "amount": str(row.amount),
                        "account": row.account,
                    }
                ),
                summary,
            )
            return

        self._succeed(row, ledger_id, summary)

    def _succeed(self, row: StoredTransaction, ledger_id: str, summary: SyncSummary) -> None:
        self.store.record_synced(row.id, ledger_id)
        summary.synced += 1
        logger.debug("Synced %s as %s", row.id, ledger_id)

    def _fail(self, row: StoredTransaction, error: ClassifiedError, summary: SyncSummary) -> None:
        self.store.record_error(row.id, format_error(error), error.kind.value)
        summary.add_failure(error.kind.value)
        logger.warning("Transaction %s (%s) failed: %s", row.id, row.payee, format_error(error))
