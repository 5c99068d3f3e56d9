"""
Unit tests for milliunit conversion and the YNAB client.
"""

import json
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
import requests

from bank_sync.core.config import LedgerSettings
from bank_sync.ledger.base import from_milliunits, to_milliunits
from bank_sync.ledger.ynab import YnabClient
from bank_sync.models.transaction import Direction


def make_response(status: int, payload: dict) -> requests.Response:
    response = requests.Response()
    response.status_code = status
    response._content = json.dumps(payload).encode()
    response.url = "https://api.ynab.com/v1/test"
    return response


@pytest.fixture
def session():
    session = MagicMock(spec=requests.Session)
    session.headers = {}
    return session


@pytest.fixture
def client(session):
    return YnabClient(LedgerSettings(access_token="tok", budget_id="budget-1"), session=session)


class TestMilliunits:
    """Tests for amount conversion."""

    def test_round_trip(self) -> None:
        milliunits = to_milliunits(Decimal("1234.56"), Direction.INFLOW)
        assert milliunits == 1234560
        assert from_milliunits(milliunits) == Decimal("1234.56")

    def test_outflow_negative(self) -> None:
        assert to_milliunits(Decimal("29.99"), Direction.OUTFLOW) == -29990
        assert from_milliunits(-29990) == Decimal("-29.99")

    def test_accepts_direction_string(self) -> None:
        assert to_milliunits(Decimal("1.00"), "inflow") == 1000

    def test_zero(self) -> None:
        assert to_milliunits(Decimal("0"), Direction.OUTFLOW) == 0


class TestYnabClient:
    """Tests for YnabClient with a mocked requests session."""

    def test_auth_header(self, client, session) -> None:
        assert session.headers["Authorization"] == "Bearer tok"

    def test_payload(self, transaction_factory) -> None:
        txn = transaction_factory(memo="QIK Credit Card ending in 5550")
        payload = YnabClient.to_payload("acct-1", txn)
        assert payload == {
            "account_id": "acct-1",
            "date": "2026-01-10",
            "amount": -450000,
            "payee_name": "UBER EATS",
            "memo": "QIK Credit Card ending in 5550",
            "cleared": "cleared",
            "approved": True,
        }

    def test_submit_one(self, client, session, transaction_factory) -> None:
        session.request.return_value = make_response(201, {"data": {"transaction": {"id": "y-1"}}})

        assert client.submit_one("acct-1", transaction_factory()) == "y-1"

        method, url = session.request.call_args.args
        assert method == "POST"
        assert url == "https://api.ynab.com/v1/budgets/budget-1/transactions"
        assert session.request.call_args.kwargs["json"]["transaction"]["account_id"] == "acct-1"

    def test_submit_one_without_id(self, client, session, transaction_factory) -> None:
        session.request.return_value = make_response(201, {"data": {}})
        with pytest.raises(ValueError):
            client.submit_one("acct-1", transaction_factory())

    def test_submit_batch_positional_ids(self, client, session, transaction_factory) -> None:
        records = [transaction_factory(payee="A"), transaction_factory(payee="B"), transaction_factory(payee="C")]
        session.request.return_value = make_response(
            201, {"data": {"transactions": [{"id": "y-1"}, {"id": "y-2"}]}}
        )

        assert client.submit_batch("acct-1", records) == ["y-1", "y-2", None]
        sent = session.request.call_args.kwargs["json"]["transactions"]
        assert [t["payee_name"] for t in sent] == ["A", "B", "C"]

    def test_submit_batch_empty(self, client, session) -> None:
        assert client.submit_batch("acct-1", []) == []
        session.request.assert_not_called()

    def test_http_error_raised(self, client, session, transaction_factory) -> None:
        session.request.return_value = make_response(
            400, {"error": {"id": "400", "detail": "invalid date"}}
        )
        with pytest.raises(requests.HTTPError):
            client.submit_one("acct-1", transaction_factory())

    def test_get_budgets(self, client, session) -> None:
        session.request.return_value = make_response(
            200, {"data": {"budgets": [{"id": "b1", "name": "Home"}]}}
        )
        assert client.get_budgets() == [{"id": "b1", "name": "Home"}]

    def test_get_accounts(self, client, session) -> None:
        session.request.return_value = make_response(
            200, {"data": {"accounts": [{"id": "a1", "name": "Visa", "balance": 1000}]}}
        )
        assert client.get_accounts()[0]["name"] == "Visa"
        assert session.request.call_args.args[1].endswith("/budgets/budget-1/accounts")
