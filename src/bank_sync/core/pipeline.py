"""
Ingestion pipeline: mailbox -> parser -> rules -> store.

A Pipeline owns its parser registry, rules engine and store; there is no
module level state, so tests and the CLI each build their own.
"""

import logging
from datetime import date
from pathlib import Path
from typing import List, Mapping, Optional

from bank_sync.core.config import AppConfig, NormalizationRule
from bank_sync.core.database import TransactionStore
from bank_sync.core.errors import RetryPolicy, classify_error, format_error
from bank_sync.core.exceptions import StoreError
from bank_sync.core.reconciler import Reconciler
from bank_sync.core.rules import RulesEngine
from bank_sync.ledger.base import LedgerClient
from bank_sync.mailbox.base import Mailbox
from bank_sync.models.document import Document
from bank_sync.models.summary import DryRunResult, IngestSummary, SyncSummary
from bank_sync.parsers.registry import ParserRegistry, default_registry
from bank_sync.utils.date_utils import DEFAULT_LOOKBACK_DAYS, lookback_days, lookback_start

logger = logging.getLogger(__name__)

NO_PARSER = "No parser matched"
PARSER_RETURNED_NULL = "Parser returned null"
PREVIEW_LENGTH = 500


class Pipeline:
    """Turns mailbox documents into stored transactions and syncs them."""

    def __init__(
        self,
        registry: ParserRegistry,
        rules: RulesEngine,
        store: TransactionStore,
    ):
        self.registry = registry
        self.rules = rules
        self.store = store

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        rules: Optional[List[NormalizationRule]] = None,
        db_path: Optional[Path] = None,
    ) -> "Pipeline":
        """Build the default pipeline for a loaded configuration."""
        return cls(
            registry=default_registry(config.instruments),
            rules=RulesEngine(rules or []),
            store=TransactionStore(db_path),
        )

    def build_query(self, days: Optional[int] = None) -> str:
        """
        Mailbox query for a lookback window.

        Without an explicit days value, the window is 180 days when the
        store has never processed a document and 30 days afterwards.
        """
        first_run = self.store.last_processed_at() is None
        days = lookback_days(days, first_run=first_run)
        if first_run and days:
            logger.info("First run detected, scanning the last %d days", days)
        return self.registry.build_query(lookback_start(days))

    def ingest(
        self,
        mailbox: Mailbox,
        days: Optional[int] = None,
        min_date: Optional[date] = None,
    ) -> IngestSummary:
        """
        Fetch, parse and store every matching document not yet processed.

        Args:
            mailbox: Source of documents
            days: Lookback window; defaults depend on prior runs
            min_date: Transactions dated before this are skipped (their
                documents are still marked processed)

        Returns:
            Counts for the run
        """
        query = self.build_query(days)
        logger.info("Searching mailbox with query: %s", query)

        refs = mailbox.list_matching(query)
        summary = IngestSummary(found=len(refs))
        logger.info("Found %d documents", len(refs))

        for ref in refs:
            if self.store.is_processed(ref):
                continue
            document = mailbox.fetch(ref)
            if document is None:
                continue
            self.process_document(document, summary, min_date)

        logger.info(
            "Ingestion complete: %d processed, %d new, %d quarantined, %d skipped, %d errors",
            summary.processed,
            summary.new,
            summary.quarantined,
            summary.skipped,
            summary.errors,
        )
        return summary

    def process_document(
        self,
        document: Document,
        summary: Optional[IngestSummary] = None,
        min_date: Optional[date] = None,
    ) -> IngestSummary:
        """
        Route one document through parsing, normalization and storage.

        Unparseable documents are quarantined and left unprocessed, so a
        later run tries them again and bumps the attempt counter.
        """
        summary = summary if summary is not None else IngestSummary()

        parser = self.registry.find_parser(document)
        if parser is None:
            self._quarantine(document, NO_PARSER, summary)
            return summary

        transaction = parser.extract(document)
        if transaction is None:
            self._quarantine(document, PARSER_RETURNED_NULL, summary)
            return summary

        if min_date is not None and transaction.date < min_date:
            logger.debug("Skipping %s dated %s before %s", transaction.id, transaction.date, min_date)
            self.store.mark_processed(document.id)
            summary.skipped += 1
            return summary

        normalized = self.rules.apply(transaction)
        try:
            if self.store.insert_if_absent(normalized):
                summary.new += 1
            self.store.mark_processed(document.id)
            summary.processed += 1
        except StoreError as e:
            error = classify_error(
                e,
                {
                    "transaction_id": normalized.id,
                    "payee": normalized.payee,
                    "amount": str(normalized.amount),
                },
            )
            logger.error("Error saving transaction %s: %s", normalized.id, format_error(error))
            summary.errors += 1
        return summary

    def _quarantine(self, document: Document, reason: str, summary: IngestSummary) -> None:
        attempts = self.store.quarantine(
            document.id,
            reason,
            subject=document.subject,
            date=document.received_at.isoformat(),
        )
        logger.warning(
            "Quarantined %s (%s, attempt %d): %s", document.id, reason, attempts, document.subject
        )
        summary.quarantined += 1

    def dry_run(self, mailbox: Mailbox, days: int = DEFAULT_LOOKBACK_DAYS) -> List[DryRunResult]:
        """
        Report what ingestion would do, without touching the store.

        Every document in the window is examined, processed or not.
        """
        query = self.registry.build_query(lookback_start(days))
        logger.info("[Dry Run] Searching mailbox with query: %s", query)

        results = []
        for ref in mailbox.list_matching(query):
            document = mailbox.fetch(ref)
            if document is None:
                continue
            results.append(self.diagnose(document))
        return results

    def diagnose(self, document: Document) -> DryRunResult:
        """Classify one document as MATCH, FAIL or SKIP."""
        base = {
            "document_id": document.id,
            "subject": document.subject,
            "sender": document.sender,
        }

        parser = self.registry.find_parser(document)
        if parser is None:
            return DryRunResult(status="SKIP", **base)

        transaction = parser.extract(document)
        if transaction is None:
            preview = (document.plain_body or document.html_body)[:PREVIEW_LENGTH]
            return DryRunResult(status="FAIL", parser=parser.name, preview=preview, **base)

        return DryRunResult(
            status="MATCH",
            parser=parser.name,
            transaction=self.rules.apply(transaction),
            **base,
        )

    def reconciler(
        self,
        ledger: LedgerClient,
        account_mappings: Mapping[str, str],
        policy: Optional[RetryPolicy] = None,
    ) -> Reconciler:
        """Reconciler over this pipeline's store."""
        return Reconciler(self.store, ledger, account_mappings, policy=policy)

    def sync(
        self,
        ledger: LedgerClient,
        account_mappings: Mapping[str, str],
        min_date: Optional[date] = None,
    ) -> SyncSummary:
        """Submit pending transactions to the ledger."""
        return self.reconciler(ledger, account_mappings).sync(min_date)

    def retry(self, ledger: LedgerClient, account_mappings: Mapping[str, str]) -> SyncSummary:
        """Resubmit pending and failed transactions."""
        return self.reconciler(ledger, account_mappings).retry()
