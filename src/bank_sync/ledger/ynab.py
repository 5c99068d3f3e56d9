"""
YNAB REST client.

Only the calls the sync needs: create transactions (single and batch),
list budgets and list accounts of the configured budget.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

import requests

from bank_sync.core.config import LedgerSettings
from bank_sync.ledger.base import to_milliunits
from bank_sync.models.transaction import Transaction

logger = logging.getLogger(__name__)

YNAB_BASE_URL = "https://api.ynab.com/v1"
REQUEST_TIMEOUT = 30


class YnabClient:
    """Submits transactions to one YNAB budget."""

    def __init__(
        self,
        settings: LedgerSettings,
        session: Optional[requests.Session] = None,
        base_url: str = YNAB_BASE_URL,
    ):
        self.budget_id = settings.budget_id
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {settings.access_token}",
                "Content-Type": "application/json",
            }
        )

    def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        response = self.session.request(
            method, f"{self.base_url}{path}", timeout=REQUEST_TIMEOUT, **kwargs
        )
        if not response.ok:
            logger.debug("YNAB %s %s returned %s: %s", method, path, response.status_code, response.text)
        response.raise_for_status()
        return response.json().get("data", {})

    @staticmethod
    def to_payload(account_id: str, record: Transaction) -> Dict[str, Any]:
        """YNAB SaveTransaction body for one record."""
        return {
            "account_id": account_id,
            "date": record.date.isoformat(),
            "amount": to_milliunits(record.amount, record.direction),
            "payee_name": record.payee,
            "memo": record.memo or None,
            "cleared": "cleared",
            "approved": True,
        }

    def submit_batch(
        self, account_id: str, records: Sequence[Transaction]
    ) -> List[Optional[str]]:
        """
        Create several transactions in one request.

        Returns:
            Ledger ids aligned with records; None where YNAB returned no
            transaction for that position
        """
        if not records:
            return []

        data = self._request(
            "POST",
            f"/budgets/{self.budget_id}/transactions",
            json={"transactions": [self.to_payload(account_id, r) for r in records]},
        )

        duplicates = data.get("duplicate_import_ids") or []
        if duplicates:
            logger.info("YNAB skipped %d duplicate transactions", len(duplicates))

        created = data.get("transactions") or []
        ids: List[Optional[str]] = []
        for index in range(len(records)):
            ynab_tx = created[index] if index < len(created) else None
            ids.append(ynab_tx.get("id") if ynab_tx else None)
        return ids

    def submit_one(self, account_id: str, record: Transaction) -> str:
        """
        Create one transaction.

        Raises:
            requests.HTTPError: If YNAB rejects the request
            ValueError: If the response carries no transaction id
        """
        data = self._request(
            "POST",
            f"/budgets/{self.budget_id}/transactions",
            json={"transaction": self.to_payload(account_id, record)},
        )
        ledger_id = (data.get("transaction") or {}).get("id")
        if not ledger_id:
            raise ValueError(f"YNAB returned no transaction id for {record.id}")
        return ledger_id

    def get_budgets(self) -> List[Dict[str, Any]]:
        """All budgets visible to the access token."""
        return self._request("GET", "/budgets").get("budgets", [])

    def get_accounts(self) -> List[Dict[str, Any]]:
        """Accounts of the configured budget, closed ones included."""
        return self._request("GET", f"/budgets/{self.budget_id}/accounts").get("accounts", [])
