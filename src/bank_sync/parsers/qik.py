"""
Parser for Qik credit card purchase notifications.
"""

import logging
from datetime import date
from typing import List, Optional

from bank_sync.models.document import Document
from bank_sync.models.transaction import Transaction
from bank_sync.parsers.base import (
    BaseParser,
    direction_for,
    document_text,
    first_group,
    first_match,
    normalize_currency,
    parse_amount,
    sender_matches,
)

logger = logging.getLogger(__name__)

SENDER = "notificaciones@qik.do"
SUBJECT = "Usaste tu tarjeta de crédito Qik"

CARD = [
    r"Tarjeta\s+\d+\*+(\d{4})",
    r"termina\s+en\s+\d+\*+(\d{4})",
]
AMOUNT = [r"(RD|US)\$\s*([\d,]+(?:\.\d+)?)"]

_LABELS = r"Fecha y hora|Fecha|Monto|Tarjeta|Autorizaci[oó]n|Estado"
PAYEE = [
    rf"Localidad:\s*(.+?)(?=\s+(?:{_LABELS})\b|$)",
    r"\ben\s+([A-Z][A-Z\s]+(?:APP|STORE|MARKET|SUPER|GAS|RESTAURANT|CAFE|HOTEL|MALL"
    r"|CENTER|PLAZA|SHOP|TIENDA|FARMACIA|BANCO|BANK))\b",
    r"Se hizo una transacci[oó]n.*?en\s+([A-Z][A-Z\s]+?)\s+con",
    r"transacci[oó]n.*?en\s+([A-Z][A-Z\s]+?)\s+con",
]
DEFAULT_PAYEE = "QIK Transaction"

# Qik writes dates month first: 12-30-2025 08:49 AM
DATE = [
    r"Fecha y hora[:\s]+(\d{1,2})-(\d{1,2})-(\d{4})\s+(\d{1,2}):(\d{2})\s*(AM|PM)",
    r"(\d{1,2})-(\d{1,2})-(\d{4})\s+(\d{1,2}):(\d{2})\s*(AM|PM)",
]
# Label followed by a date in any format
LABELLED_DATE = [r"Fecha y hora[:\s]+(\S+)"]


class QIKParser(BaseParser):
    """Qik credit card "Usaste tu tarjeta" alerts."""

    name = "QIK"

    def search_terms(self) -> List[str]:
        return [f"from:{SENDER}"]

    def can_parse(self, document: Document) -> bool:
        return sender_matches(document.sender, SENDER) and SUBJECT in document.subject

    def parse(self, document: Document) -> Optional[Transaction]:
        text = document_text(document)
        if not text:
            return None

        account = first_group(first_match(CARD, text))
        if not account:
            logger.warning("QIK: could not extract card ending from %s", document.id)
            return None

        amount_match = first_match(AMOUNT, text)
        amount = parse_amount(amount_match.group(2)) if amount_match else None
        if amount is None:
            logger.warning("QIK: could not extract amount from %s", document.id)
            return None

        payee = first_group(first_match(PAYEE, text)) or DEFAULT_PAYEE

        date_match = first_match(DATE, text)
        if date_match is None:
            labelled = first_group(first_match(LABELLED_DATE, text))
            if labelled:
                logger.warning("QIK: unrecognised date %s in %s", labelled, document.id)
                return None
            tx_date = document.received_at.date()
        else:
            month, day, year = (int(g) for g in date_match.groups()[:3])
            try:
                tx_date = date(year, month, day)
            except ValueError:
                logger.warning("QIK: invalid date %s in %s", date_match.group(0), document.id)
                return None

        return Transaction.create(
            issuer=self.name,
            account=account,
            date=tx_date,
            payee=payee,
            memo=f"QIK Credit Card ending in {account}",
            amount=amount,
            currency=normalize_currency(amount_match.group(1)),
            direction=direction_for(payee),
            source_document_id=document.id,
            source_thread_id=document.thread_id,
        )
