"""
Parser for Banco BHD notification emails.

BHD sends two kinds of alerts from the same address:
- card notifications with a table row per transaction
- transfer confirmations with labelled "Producto origen/destino" fields
"""

import logging
import re
from typing import Iterable, List, Optional

from bank_sync.models.document import Document
from bank_sync.models.transaction import Direction, Transaction
from bank_sync.parsers.base import (
    BaseParser,
    direction_for,
    document_text,
    first_group,
    first_match,
    normalize_currency,
    parse_amount,
    parse_date,
    resolve_transfer,
    sender_matches,
    table_rows,
)

logger = logging.getLogger(__name__)

SENDER = "Alertas@bhd.com.do"

NOTIFICATION_SUBJECTS = ("BHD Notificación de Transacciones", "Pago de Servicios")
TRANSFER_SUBJECTS = ("Transacciones entre mis productos", "Transferencias a terceros")

ROW_DATE = re.compile(r"^\d{2}/\d{2}/\d{4}\s+\d{1,2}:\d{2}\s+[ap]\.?\s?m\.?$", re.IGNORECASE)
DATETIME_FORMATS = ("%d/%m/%Y %I:%M %p", "%d/%m/%Y %H:%M")

CARD = re.compile(r"(Visa\s+.*?)\s*#\s?(\d{4})", re.IGNORECASE)

DESTINATION = [r"Producto destino:.{0,60}?(\d{4})(?!\d)"]
ORIGIN = [r"Producto origen:.{0,60}?(\d{4})(?!\d)"]
TRANSFER_AMOUNT = [
    r"Monto:\s*(RD|US|DO)?\$?\s?([\d,]+\.\d{2})",
    r"Monto:\s*(RD|US|DO)?\$?\s?([\d,]+)",
]
TRANSFER_DATE = [
    r"Fecha y hora de la transacci[oó]n:\s*(\d{2}/\d{2}/\d{4})\s*-\s*(\d{1,2}:\d{2}\s*[ap]m)",
    r"Fecha y hora de la transacci[oó]n:\s*(\S+)",
]
BENEFICIARY = [
    r"Beneficiario:\s*(.*?)(?=\s*(?:N[uú]mero de confirmaci[oó]n|Producto|Monto|Fecha)|$)",
]


def _normalize_meridiem(value: str) -> str:
    """'01:04 p. m.' -> '01:04 PM' so strptime's %p accepts it."""
    return re.sub(
        r"\s*([ap])\.?\s?m\.?\s*$",
        lambda m: f" {m.group(1).upper()}M",
        value.strip(),
        flags=re.IGNORECASE,
    )


class BHDParser(BaseParser):
    """Banco BHD card notifications and transfer confirmations."""

    name = "BHD"

    def __init__(self, my_instruments: Iterable[str] = ()):
        """
        Args:
            my_instruments: Last 4 digits of the accounts and cards I own;
                used to decide the direction of transfers.
        """
        self.my_instruments = set(my_instruments)

    def search_terms(self) -> List[str]:
        return [f"from:{SENDER}"]

    def can_parse(self, document: Document) -> bool:
        return sender_matches(document.sender, SENDER) and any(
            subject in document.subject
            for subject in NOTIFICATION_SUBJECTS + TRANSFER_SUBJECTS
        )

    def parse(self, document: Document) -> Optional[Transaction]:
        if not document.html_body:
            logger.warning("BHD: document %s has no HTML body", document.id)
            return None

        if "Transacciones entre mis productos" in document.subject or (
            "Transferencias" in document.subject
        ):
            return self._parse_transfer(document)
        return self._parse_notification(document)

    def _parse_transfer(self, document: Document) -> Optional[Transaction]:
        text = document_text(document)

        amount_match = first_match(TRANSFER_AMOUNT, text)
        if amount_match is None:
            logger.warning("BHD: no amount in transfer %s", document.id)
            return None
        amount = parse_amount(amount_match.group(2))
        if amount is None:
            return None
        currency = normalize_currency(amount_match.group(1))

        date_match = first_match(TRANSFER_DATE, text)
        if date_match is None:
            tx_date = document.received_at.date()
        else:
            raw = " ".join(g for g in date_match.groups() if g)
            tx_date = parse_date(_normalize_meridiem(raw), DATETIME_FORMATS + ("%d/%m/%Y",))
            if tx_date is None:
                logger.warning("BHD: unreadable transfer date %r in %s", raw, document.id)
                return None

        destination = first_group(first_match(DESTINATION, text))
        origin = first_group(first_match(ORIGIN, text))
        resolved = resolve_transfer(origin, destination, self.my_instruments)
        if resolved is None:
            logger.warning(
                "BHD: transfer %s involves none of my instruments (origin=%s, destination=%s)",
                document.id,
                origin,
                destination,
            )
            return None
        account, direction = resolved

        payee = first_group(first_match(BENEFICIARY, text)) or "Transfer"

        if direction == Direction.OUTFLOW:
            memo = "Transferencia a terceros"
        else:
            memo = "Transferencia entre productos"

        return Transaction.create(
            issuer=self.name,
            account=account,
            date=tx_date,
            payee=payee,
            memo=memo,
            amount=amount,
            currency=currency,
            direction=direction,
            source_document_id=document.id,
            source_thread_id=document.thread_id,
        )

    def _parse_notification(self, document: Document) -> Optional[Transaction]:
        row = None
        for cells in table_rows(document.html_body):
            if len(cells) >= 4 and ROW_DATE.match(cells[0]):
                row = cells
                break

        if row is None:
            logger.warning("BHD: no transaction row in %s", document.id)
            return None

        date_raw, currency_raw, amount_raw, payee_raw = row[:4]
        status_raw = row[4] if len(row) > 4 else None
        type_raw = row[5] if len(row) > 5 else None

        amount = parse_amount(amount_raw)
        payee = payee_raw.strip()
        if amount is None or not payee:
            logger.warning("BHD: incomplete transaction row in %s", document.id)
            return None

        tx_date = parse_date(_normalize_meridiem(date_raw), DATETIME_FORMATS)
        if tx_date is None:
            logger.warning("BHD: unreadable date %r in %s", date_raw, document.id)
            return None

        card = CARD.search(document_text(document))
        account_name = card.group(1).strip() if card else None
        account = card.group(2) if card else None

        if status_raw:
            logger.debug("BHD: row status %s for %s", status_raw, document.id)

        return Transaction.create(
            issuer=self.name,
            account=account,
            date=tx_date,
            payee=payee,
            memo=f"{account_name} {account}" if account_name and account else "BHD Transaction",
            amount=amount,
            currency=normalize_currency(currency_raw),
            direction=direction_for(payee, type_raw),
            source_document_id=document.id,
            source_thread_id=document.thread_id,
        )
