"""
MCP tool definitions for inspecting the local transaction store.

All tools are read-only; syncing happens through the command line.
"""

from typing import Any, Dict, List, Optional

from bank_sync.core.database import TransactionStore
from bank_sync.models.transaction import SyncStatus
from bank_sync.utils.date_utils import parse_iso_date


class BankSyncTools:
    """Collection of MCP tools for querying synced bank transactions."""

    def __init__(self, store: TransactionStore):
        """
        Initialize tools with a store.

        Args:
            store: TransactionStore instance
        """
        self.store = store

    def get_transactions(
        self,
        status: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        account: Optional[str] = None,
        issuer: Optional[str] = None,
        limit: int = 100,
    ) -> Dict[str, Any]:
        """
        Get stored transactions with optional filters.

        Args:
            status: pending, failed or synced
            start_date: Filter by date >= this (YYYY-MM-DD)
            end_date: Filter by date <= this (YYYY-MM-DD)
            account: Filter by card/account last 4 digits
            issuer: Filter by issuer (BHD, QIK, CARIBE)
            limit: Maximum number of transactions to return (default: 100)

        Returns:
            Dict with transaction count and list of transactions

        Raises:
            ValueError: If status or a date is not valid
        """
        if status is not None:
            try:
                sync_status = SyncStatus(status.lower())
            except ValueError:
                raise ValueError(
                    f"Unknown status: {status} (expected pending, failed or synced)"
                ) from None
        else:
            sync_status = None

        # Validate dates up front so the store only sees YYYY-MM-DD
        parse_iso_date(start_date)
        parse_iso_date(end_date)

        transactions = self.store.get_transactions(
            status=sync_status,
            start_date=start_date,
            end_date=end_date,
            account=account,
            issuer=issuer,
            limit=limit,
        )

        return {
            "count": len(transactions),
            "transactions": [txn.model_dump(mode="json") for txn in transactions],
        }

    def get_sync_status(self) -> Dict[str, Any]:
        """
        Summarize reconciliation state of the whole store.

        Returns:
            Dict with counts per status, failures per error kind and the
            last time a document was processed
        """
        last_processed = self.store.last_processed_at()
        counts = self.store.status_counts()
        return {
            "total": sum(counts.values()),
            "by_status": counts,
            "errors_by_kind": self.store.error_counts(),
            "last_processed_at": last_processed.isoformat() if last_processed else None,
        }

    def get_quarantine(self, limit: int = 50) -> Dict[str, Any]:
        """
        List documents that could not be parsed.

        Args:
            limit: Maximum results (default: 50)

        Returns:
            Dict with count and quarantined documents, most recent first
        """
        records = self.store.get_quarantine(limit=limit)
        return {
            "count": len(records),
            "documents": [record.model_dump(mode="json") for record in records],
        }


def create_tool_schemas() -> List[Dict[str, Any]]:
    """
    Create MCP tool schemas for all tools.

    Returns:
        List of tool schema definitions
    """
    return [
        {
            "name": "get_transactions",
            "description": (
                "Get transactions parsed from bank notifications. Filter by "
                "sync status, date range, card/account and issuer."
            ),
            "inputSchema": {
                "type": "object",
                "properties": {
                    "status": {
                        "type": "string",
                        "enum": [s.value for s in SyncStatus],
                        "description": "Reconciliation state",
                    },
                    "start_date": {
                        "type": "string",
                        "description": "Start date (YYYY-MM-DD)",
                        "pattern": r"^\d{4}-\d{2}-\d{2}$",
                    },
                    "end_date": {
                        "type": "string",
                        "description": "End date (YYYY-MM-DD)",
                        "pattern": r"^\d{4}-\d{2}-\d{2}$",
                    },
                    "account": {
                        "type": "string",
                        "description": "Last 4 digits of the card or account",
                    },
                    "issuer": {
                        "type": "string",
                        "description": "Issuer tag: BHD, QIK or CARIBE",
                    },
                    "limit": {
                        "type": "integer",
                        "description": "Maximum number of results (default: 100)",
                        "default": 100,
                    },
                },
            },
        },
        {
            "name": "get_sync_status",
            "description": (
                "Counts of pending, failed and synced transactions, with "
                "failures broken down by error kind."
            ),
            "inputSchema": {"type": "object", "properties": {}},
        },
        {
            "name": "get_quarantine",
            "description": (
                "Notifications that could not be turned into a transaction: "
                "no parser matched them, or the matching parser returned nothing."
            ),
            "inputSchema": {
                "type": "object",
                "properties": {
                    "limit": {
                        "type": "integer",
                        "description": "Maximum number of results (default: 50)",
                        "default": 50,
                    },
                },
            },
        },
    ]
