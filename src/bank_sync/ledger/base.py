"""
Ledger client protocol and amount conversion.
"""

from decimal import Decimal
from typing import List, Optional, Protocol, Sequence, Union

from bank_sync.models.transaction import CENTS, Direction, Transaction

MILLIUNITS_PER_UNIT = 1000


class LedgerClient(Protocol):
    """
    Anything the reconciler can submit transactions to.

    Both calls raise on failure; the reconciler classifies whatever is
    raised.
    """

    def submit_batch(
        self, account_id: str, records: Sequence[Transaction]
    ) -> List[Optional[str]]:
        """Create records in one call; ids are positional, None if absent."""
        ...

    def submit_one(self, account_id: str, record: Transaction) -> str:
        """Create a single record and return its ledger id."""
        ...


def to_milliunits(amount: Decimal, direction: Union[Direction, str]) -> int:
    """
    Convert an absolute amount to signed milliunits.

    Example: 1234.56 outflow -> -1234560
    """
    milliunits = round(Decimal(amount) * MILLIUNITS_PER_UNIT)
    return -milliunits if Direction(direction) == Direction.OUTFLOW else milliunits


def from_milliunits(milliunits: int) -> Decimal:
    """Signed milliunits back to a signed 2-decimal amount."""
    return (Decimal(milliunits) / MILLIUNITS_PER_UNIT).quantize(CENTS)
