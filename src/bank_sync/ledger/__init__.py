"""
External ledger clients.
"""

from bank_sync.ledger.base import LedgerClient, from_milliunits, to_milliunits
from bank_sync.ledger.ynab import YnabClient

__all__ = ["LedgerClient", "YnabClient", "from_milliunits", "to_milliunits"]
