"""
Integration tests for TransactionStore on a real SQLite file.
"""

import sqlite3
from datetime import date

import pytest

from bank_sync.core.database import TransactionStore
from bank_sync.core.exceptions import StoreError
from bank_sync.models.transaction import SyncStatus


@pytest.mark.integration
def test_store_creates_parent_directory(tmp_path):
    """Test that the store creates its directory and schema."""
    db_path = tmp_path / "nested" / "data" / "bank.db"
    TransactionStore(db_path)

    assert db_path.exists()
    conn = sqlite3.connect(str(db_path))
    tables = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
    conn.close()
    assert {"processed_documents", "transactions", "quarantine"} <= tables


@pytest.mark.integration
def test_reopen_keeps_data(tmp_path, transaction_factory):
    """Test that a second store over the same file sees earlier writes."""
    db_path = tmp_path / "bank.db"
    TransactionStore(db_path).insert_if_absent(transaction_factory())

    assert len(TransactionStore(db_path).select_pending()) == 1


@pytest.mark.integration
def test_insert_is_idempotent(store, transaction_factory):
    """Test that the same fingerprint is stored once."""
    txn = transaction_factory()

    assert store.insert_if_absent(txn) is True
    assert store.insert_if_absent(txn) is False
    assert store.status_counts()["pending"] == 1


@pytest.mark.integration
def test_round_trip_fields(store, transaction_factory):
    """Test that stored rows read back with the same values."""
    txn = transaction_factory(amount="1234.56", memo="QIK Credit Card ending in 5550")
    store.insert_if_absent(txn)

    stored = store.get_transaction(txn.id)
    assert stored.payee == txn.payee
    assert str(stored.amount) == "1234.56"
    assert stored.date == txn.date
    assert stored.direction == txn.direction
    assert stored.memo == txn.memo
    assert stored.created_at is not None
    assert stored.status == SyncStatus.PENDING


@pytest.mark.integration
def test_get_missing_transaction(store):
    assert store.get_transaction("nope") is None


@pytest.mark.integration
def test_processed_markers(store):
    """Test processed markers and the last processed timestamp."""
    assert store.last_processed_at() is None
    assert not store.is_processed("doc-1")

    store.mark_processed("doc-1")
    store.mark_processed("doc-1")

    assert store.is_processed("doc-1")
    assert store.last_processed_at() is not None


@pytest.mark.integration
def test_pending_ordered_by_date_then_insertion(store, transaction_factory):
    """Test that older transactions come first and ties keep insertion order."""
    later = transaction_factory(payee="LATER", tx_date=date(2026, 1, 20))
    first_same_day = transaction_factory(payee="B FIRST", tx_date=date(2026, 1, 10))
    second_same_day = transaction_factory(payee="A SECOND", tx_date=date(2026, 1, 10))
    for txn in (later, first_same_day, second_same_day):
        store.insert_if_absent(txn)

    payees = [t.payee for t in store.select_pending()]
    assert payees == ["B FIRST", "A SECOND", "LATER"]


@pytest.mark.integration
def test_pending_min_date(store, transaction_factory):
    store.insert_if_absent(transaction_factory(payee="OLD", tx_date=date(2025, 12, 1)))
    store.insert_if_absent(transaction_factory(payee="NEW", tx_date=date(2026, 1, 5)))

    assert [t.payee for t in store.select_pending(date(2026, 1, 1))] == ["NEW"]


@pytest.mark.integration
def test_record_error_then_synced(store, transaction_factory):
    """Test the failed -> synced transition clears the error columns."""
    txn = transaction_factory()
    store.insert_if_absent(txn)

    assert store.record_error(txn.id, "[SERVER_ERROR] boom", "SERVER_ERROR")
    assert store.record_error(txn.id, "[SERVER_ERROR] boom", "SERVER_ERROR")

    failed = store.get_transaction(txn.id)
    assert failed.status == SyncStatus.FAILED
    assert failed.retry_count == 2
    assert failed.synced_at is None
    assert failed.last_retry_at is not None
    assert store.select_pending() == []
    assert [t.id for t in store.select_retryable()] == [txn.id]

    assert store.record_synced(txn.id, "ynab-1")

    synced = store.get_transaction(txn.id)
    assert synced.status == SyncStatus.SYNCED
    assert synced.ledger_transaction_id == "ynab-1"
    assert synced.last_error is None
    assert synced.last_error_kind is None
    assert synced.retry_count == 0
    assert synced.synced_at is not None
    assert store.select_retryable() == []


@pytest.mark.integration
def test_record_unknown_id(store):
    assert store.record_synced("missing", "ynab-1") is False
    assert store.record_error("missing", "x", "UNKNOWN_ERROR") is False


@pytest.mark.integration
def test_status_and_error_counts(store, transaction_factory):
    a = transaction_factory(payee="A")
    b = transaction_factory(payee="B")
    c = transaction_factory(payee="C")
    d = transaction_factory(payee="D")
    for txn in (a, b, c, d):
        store.insert_if_absent(txn)
    store.record_synced(a.id, "ynab-a")
    store.record_error(b.id, "bad", "VALIDATION_ERROR")
    store.record_error(c.id, "bad", "VALIDATION_ERROR")

    assert store.status_counts() == {"pending": 1, "failed": 2, "synced": 1}
    assert store.error_counts() == {"VALIDATION_ERROR": 2}


@pytest.mark.integration
def test_get_transactions_filters(store, transaction_factory):
    store.insert_if_absent(transaction_factory(payee="A", issuer="QIK", account="5550"))
    store.insert_if_absent(
        transaction_factory(payee="B", issuer="BHD", account="1610", tx_date=date(2026, 1, 20))
    )
    synced = transaction_factory(payee="C", issuer="BHD", account="1610", tx_date=date(2026, 1, 25))
    store.insert_if_absent(synced)
    store.record_synced(synced.id, "ynab-c")

    assert [t.payee for t in store.get_transactions()] == ["C", "B", "A"]
    assert [t.payee for t in store.get_transactions(issuer="bhd")] == ["C", "B"]
    assert [t.payee for t in store.get_transactions(account="5550")] == ["A"]
    assert [t.payee for t in store.get_transactions(status=SyncStatus.PENDING)] == ["B", "A"]
    assert [t.payee for t in store.get_transactions(start_date="2026-01-15", end_date="2026-01-21")] == ["B"]
    assert len(store.get_transactions(limit=1)) == 1


@pytest.mark.integration
def test_quarantine_counts_attempts(store):
    """Test that quarantining the same document again bumps its attempts."""
    assert store.quarantine("doc-1", "No parser matched", subject="Hola") == 1
    assert store.quarantine("doc-1", "Parser returned null", subject="Hola") == 2

    records = store.get_quarantine()
    assert len(records) == 1
    assert records[0].attempts == 2
    assert records[0].reason == "Parser returned null"
    assert records[0].last_attempt is not None


@pytest.mark.integration
def test_unwritable_location(tmp_path):
    """Test that a store path under a regular file raises StoreError."""
    blocker = tmp_path / "file"
    blocker.write_text("x")
    with pytest.raises(StoreError):
        TransactionStore(blocker / "bank.db")
