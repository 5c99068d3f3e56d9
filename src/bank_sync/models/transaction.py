"""
Transaction model for parsed bank notifications.
"""

import hashlib
from datetime import date as Date
from datetime import datetime
from decimal import ROUND_DOWN, Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, computed_field, field_validator

MAX_PAYEE_LENGTH = 200
CENTS = Decimal("0.01")


class Direction(str, Enum):
    """Which way money moved for the affected instrument."""

    INFLOW = "inflow"
    OUTFLOW = "outflow"


class SyncStatus(str, Enum):
    """Reconciliation state of a stored transaction."""

    PENDING = "pending"
    FAILED = "failed"
    SYNCED = "synced"


def to_cents(value: Any) -> Decimal:
    """Truncate a numeric value to two decimal places."""
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_DOWN)


def fingerprint(
    issuer: str,
    account: Optional[str],
    date: Date,
    amount: Decimal,
    payee: str,
    direction: Direction,
) -> str:
    """
    Compute the deduplication id for a transaction.

    Args:
        issuer: Issuer tag (e.g. "BHD")
        account: Last 4 digits of the affected instrument, if known
        date: Transaction date
        amount: Absolute amount
        payee: Payee as extracted, before normalization
        direction: Inflow or outflow

    Returns:
        MD5 hex digest of the colon-joined tuple
    """
    direction_value = Direction(direction).value
    key = (
        f"{issuer}:{account or ''}:{date.isoformat()}:"
        f"{to_cents(amount):.2f}:{payee}:{direction_value}"
    )
    return hashlib.md5(key.encode("utf-8")).hexdigest()


class Transaction(BaseModel):
    """
    A canonical money movement extracted from one notification.

    The financial fields are immutable once created; only the
    reconciliation columns on StoredTransaction change afterwards.
    """

    model_config = {"frozen": True, "populate_by_name": True}

    # Identity
    id: str
    issuer: str
    account: Optional[str] = None

    # Financial fields
    date: Date
    payee: str
    memo: str = ""
    amount: Decimal
    currency: str = Field(default="DOP", pattern=r"^[A-Z]{3}$")
    direction: Direction = Direction.OUTFLOW

    # Provenance
    source_document_id: str
    source_thread_id: str = ""

    @classmethod
    def create(
        cls,
        *,
        issuer: str,
        account: Optional[str],
        date: Date,
        payee: str,
        amount: Decimal,
        direction: Direction,
        source_document_id: str,
        source_thread_id: str = "",
        memo: str = "",
        currency: str = "DOP",
    ) -> "Transaction":
        """Build a transaction whose id is derived from its own fields."""
        payee = payee.strip()[:MAX_PAYEE_LENGTH]
        amount = to_cents(amount)
        return cls(
            id=fingerprint(issuer, account, date, amount, payee, direction),
            issuer=issuer,
            account=account,
            date=date,
            payee=payee,
            memo=memo,
            amount=amount,
            currency=currency,
            direction=direction,
            source_document_id=source_document_id,
            source_thread_id=source_thread_id,
        )

    @field_validator("payee")
    @classmethod
    def truncate_payee(cls, v: str) -> str:
        """Keep payee within the ledger's length limit."""
        return v[:MAX_PAYEE_LENGTH]

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: Decimal) -> Decimal:
        """Amounts are absolute values with cent precision."""
        if v < 0:
            raise ValueError(f"Amount {v} must be non-negative")
        return to_cents(v)

    @property
    def signed_amount(self) -> Decimal:
        """Amount with outflows negated."""
        return -self.amount if self.direction == Direction.OUTFLOW else self.amount


class StoredTransaction(Transaction):
    """A transaction row together with its reconciliation columns."""

    created_at: Optional[datetime] = None
    ledger_transaction_id: Optional[str] = None
    synced_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_error_kind: Optional[str] = None
    retry_count: int = Field(default=0, ge=0)
    last_retry_at: Optional[datetime] = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def status(self) -> SyncStatus:
        """Derive the reconciliation state from the status columns."""
        if self.ledger_transaction_id is not None:
            return SyncStatus.SYNCED
        if self.last_error is not None:
            return SyncStatus.FAILED
        return SyncStatus.PENDING
