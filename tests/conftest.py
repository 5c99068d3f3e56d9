"""
Pytest configuration and fixtures for bank-sync tests.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from email.message import EmailMessage
from email.utils import format_datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

import pytest

from bank_sync.core.database import TransactionStore
from bank_sync.models.document import Document
from bank_sync.models.transaction import Direction, Transaction

MY_INSTRUMENTS = {"0014", "1610", "5550", "4321", "1234"}

BHD_NOTIFICATION_HTML = """
<html><head><style>td { padding: 2px; }</style></head><body>
<p>Estimado cliente, le notificamos la siguiente transacción realizada con su
tarjeta Visa Clasica # 1234</p>
<table>
  <tr><td>Fecha</td><td>Moneda</td><td>Monto</td><td>Comercio</td><td>Estado</td><td>Tipo</td></tr>
  <tr><td>15/01/2026 01:04 p. m.</td><td>RD</td><td>1,234.567</td>
      <td>SUPERMERCADO NACIONAL</td><td>Aprobada</td><td>Compra</td></tr>
</table>
</body></html>
"""

BHD_TRANSFER_OUT_HTML = """
<html><body>
<p>Beneficiario: JUAN PEREZ</p>
<p>Número de confirmación: 123456</p>
<p>Producto origen: Cuenta de Ahorro ****0014</p>
<p>Producto destino: Cuenta Corriente ****9999</p>
<p>Monto: RD$ 5,000.00</p>
<p>Fecha y hora de la transacción: 15/01/2026 - 01:04 pm</p>
</body></html>
"""

BHD_TRANSFER_IN_HTML = """
<html><body>
<p>Producto origen: Cuenta de Ahorro ****9999</p>
<p>Producto destino: Tarjeta de Crédito ****1610</p>
<p>Monto: RD$ 12,000.00</p>
<p>Fecha y hora de la transacción: 20/01/2026 - 9:30 am</p>
</body></html>
"""

QIK_HTML = """
<html><body>
<p>Hola, usaste tu Tarjeta 53****5550</p>
<p>Monto: RD$ 450.00</p>
<p>Localidad: UBER EATS</p>
<p>Fecha y hora: 12-30-2025 08:49 AM</p>
</body></html>
"""

CARIBE_HTML = """
<html><body>
<p>Su Tarjeta de Crédito terminada en 4321 ha realizado una transacción</p>
<p>Comercio: FARMACIA CAROL</p>
<p>Monto: 2,500.75</p>
<p>Moneda: RD$</p>
<p>Fecha: 07/11/2025</p>
<p>Hora: 10:15</p>
</body></html>
"""

RECEIVED_AT = datetime(2026, 1, 15, 17, 5, tzinfo=timezone.utc)


def make_document(
    doc_id: str = "msg-1",
    sender: str = "Alertas@bhd.com.do",
    subject: str = "BHD Notificación de Transacciones",
    html_body: str = "",
    plain_body: str = "",
    received_at: datetime = RECEIVED_AT,
) -> Document:
    """Build a Document with sensible defaults."""
    return Document(
        id=doc_id,
        thread_id=f"thread-{doc_id}",
        sender=sender,
        subject=subject,
        received_at=received_at,
        plain_body=plain_body,
        html_body=html_body,
    )


def make_transaction(
    payee: str = "UBER EATS",
    amount: str = "450.00",
    tx_date: date = date(2026, 1, 10),
    account: Optional[str] = "5550",
    issuer: str = "QIK",
    direction: Direction = Direction.OUTFLOW,
    doc_id: str = "msg-1",
    memo: str = "",
) -> Transaction:
    """Build a Transaction through the same constructor the parsers use."""
    return Transaction.create(
        issuer=issuer,
        account=account,
        date=tx_date,
        payee=payee,
        amount=Decimal(amount),
        direction=direction,
        source_document_id=doc_id,
        memo=memo,
    )


@pytest.fixture
def store(tmp_path: Path) -> TransactionStore:
    """Empty store in a temporary directory."""
    return TransactionStore(tmp_path / "bank_transactions.db")


@pytest.fixture
def no_sleep() -> Callable[[float], None]:
    """Sleep replacement that records requested delays."""
    delays: List[float] = []

    def sleep(seconds: float) -> None:
        delays.append(seconds)

    sleep.delays = delays  # type: ignore[attr-defined]
    return sleep


class FakeLedger:
    """
    In-memory ledger client.

    batch_errors / single_errors are consumed one per call; an entry of
    None means the call succeeds.
    """

    def __init__(
        self,
        batch_errors: Sequence[Optional[Exception]] = (),
        single_errors: Optional[Dict[str, Exception]] = None,
        missing_ids: Sequence[int] = (),
    ):
        self.batch_errors = list(batch_errors)
        self.single_errors = dict(single_errors or {})
        self.missing_ids = set(missing_ids)
        self.batch_calls: List[List[str]] = []
        self.single_calls: List[str] = []
        self.accounts_used: List[str] = []

    def submit_batch(self, account_id: str, records: Sequence[Transaction]) -> List[Optional[str]]:
        self.batch_calls.append([r.id for r in records])
        self.accounts_used.append(account_id)
        if self.batch_errors:
            error = self.batch_errors.pop(0)
            if error is not None:
                raise error
        return [
            None if index in self.missing_ids else f"ynab-{r.id[:8]}"
            for index, r in enumerate(records)
        ]

    def submit_one(self, account_id: str, record: Transaction) -> str:
        self.single_calls.append(record.id)
        if record.payee in self.single_errors:
            raise self.single_errors[record.payee]
        return f"ynab-{record.id[:8]}"


@pytest.fixture
def fake_ledger_factory() -> Callable[..., FakeLedger]:
    return FakeLedger


@pytest.fixture
def document_factory() -> Callable[..., Document]:
    return make_document


@pytest.fixture
def transaction_factory() -> Callable[..., Transaction]:
    return make_transaction


@pytest.fixture
def bhd_notification() -> Document:
    return make_document("bhd-1", html_body=BHD_NOTIFICATION_HTML)


@pytest.fixture
def bhd_transfer_out() -> Document:
    return make_document(
        "bhd-2", subject="Transferencias a terceros", html_body=BHD_TRANSFER_OUT_HTML
    )


@pytest.fixture
def bhd_transfer_in() -> Document:
    return make_document(
        "bhd-3", subject="Transacciones entre mis productos", html_body=BHD_TRANSFER_IN_HTML
    )


@pytest.fixture
def qik_document() -> Document:
    return make_document(
        "qik-1",
        sender="Qik <notificaciones@qik.do>",
        subject="Usaste tu tarjeta de crédito Qik",
        html_body=QIK_HTML,
    )


@pytest.fixture
def caribe_document() -> Document:
    return make_document(
        "caribe-1",
        sender="Banco Caribe <NOTIFICACIONES@bancocaribe.com.do>",
        subject="Notificación Caribe - Consumo",
        html_body=CARIBE_HTML,
    )


def write_eml(
    directory: Path,
    stem: str,
    sender: str,
    subject: str,
    html: Optional[str] = None,
    plain: Optional[str] = None,
    sent: datetime = RECEIVED_AT,
) -> Path:
    """Write one notification as <stem>.eml, the way a mail export would."""
    message = EmailMessage()
    message["From"] = sender
    message["To"] = "me@example.com"
    message["Subject"] = subject
    message["Date"] = format_datetime(sent)
    message["Message-ID"] = f"<{stem}@mail.example>"
    if plain is not None:
        message.set_content(plain)
    if html is not None:
        if plain is None:
            message.set_content(html, subtype="html")
        else:
            message.add_alternative(html, subtype="html")

    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{stem}.eml"
    path.write_bytes(bytes(message))
    return path


@pytest.fixture
def mailbox_dir(tmp_path: Path) -> Path:
    return tmp_path / "mailbox"


@pytest.fixture
def eml_factory(mailbox_dir: Path) -> Callable[..., Path]:
    """Writes .eml files into mailbox_dir."""

    def factory(stem: str, sender: str, subject: str, **kwargs) -> Path:
        return write_eml(mailbox_dir, stem, sender, subject, **kwargs)

    return factory


@pytest.fixture
def sample_mailbox(eml_factory, mailbox_dir: Path) -> Path:
    """
    One notification per issuer plus two that cannot be turned into
    transactions: an unknown BHD subject and a QIK mail without a card.
    """
    eml_factory("bhd-1", "BHD <Alertas@bhd.com.do>", "BHD Notificación de Transacciones", html=BHD_NOTIFICATION_HTML)
    eml_factory("bhd-2", "Alertas@bhd.com.do", "Transferencias a terceros", html=BHD_TRANSFER_OUT_HTML)
    eml_factory("bhd-9", "Alertas@bhd.com.do", "Estado de cuenta disponible", plain="Su estado de cuenta")
    eml_factory("qik-1", "Qik <notificaciones@qik.do>", "Usaste tu tarjeta de crédito Qik", html=QIK_HTML)
    eml_factory("qik-2", "notificaciones@qik.do", "Usaste tu tarjeta de crédito Qik", html="<p>Monto: RD$ 10.00</p>")
    eml_factory("caribe-1", "NOTIFICACIONES@bancocaribe.com.do", "Notificación Caribe - Consumo", html=CARIBE_HTML)
    eml_factory("news-1", "news@shop.example", "Ofertas", plain="50% off")
    return mailbox_dir


@pytest.fixture
def my_instruments() -> set:
    return set(MY_INSTRUMENTS)
