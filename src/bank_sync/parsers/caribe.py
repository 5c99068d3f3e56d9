"""
Parser for Banco Caribe card notifications.
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

SENDER = "NOTIFICACIONES@bancocaribe.com.do"
SUBJECTS = ("Notificación Caribe", "Tarjeta de Crédito Caribe", "transacción")

CARD = [
    r"terminada\s+(?:en\s+)?(\d{4})",
    r"Tarjeta.*?(\d{4})",
]
AMOUNT = [r"Monto:\s*(?:RD|US)?\$?\s*([\d,]+(?:\.\d+)?)"]
CURRENCY = [r"Moneda:\s*(RD\$?|US\$?|[A-Z]{3})"]

_STOP = r"(?=\s+(?:Monto|Moneda|Fecha|Hora|Tarjeta)\b|$)"
PAYEE = [
    rf"Comercio:\s*(.+?){_STOP}",
    rf"transacci[oó]n\s+en:\s*(.+?){_STOP}",
    rf"transacci[oó]n\s+en\s+([A-Z][A-Z\s]+?){_STOP}",
]
DEFAULT_PAYEE = "CARIBE Transaction"

# Caribe writes dates day first: 07/11/2025
DATE = [r"Fecha:\s*(\d{1,2})/(\d{1,2})/(\d{4})"]
LABELLED_DATE = [r"Fecha:\s*(\S+)"]


class CaribeParser(BaseParser):
    """Banco Caribe credit and debit card alerts."""

    name = "CARIBE"

    def search_terms(self) -> List[str]:
        return [f"from:{SENDER}"]

    def can_parse(self, document: Document) -> bool:
        return sender_matches(document.sender, SENDER) and any(
            subject in document.subject for subject in SUBJECTS
        )

    def parse(self, document: Document) -> Optional[Transaction]:
        text = document_text(document)
        if not text:
            return None

        account = first_group(first_match(CARD, text))
        if not account:
            logger.warning("CARIBE: could not extract card ending from %s", document.id)
            return None

        amount = parse_amount(first_group(first_match(AMOUNT, text)))
        if amount is None:
            logger.warning("CARIBE: could not extract amount from %s", document.id)
            return None

        payee = first_group(first_match(PAYEE, text)) or DEFAULT_PAYEE

        date_match = first_match(DATE, text)
        if date_match is None:
            labelled = first_group(first_match(LABELLED_DATE, text))
            if labelled:
                logger.warning("CARIBE: unrecognised date %s in %s", labelled, document.id)
                return None
            tx_date = document.received_at.date()
        else:
            day, month, year = (int(g) for g in date_match.groups())
            try:
                tx_date = date(year, month, day)
            except ValueError:
                logger.warning("CARIBE: invalid date %s in %s", date_match.group(0), document.id)
                return None

        return Transaction.create(
            issuer=self.name,
            account=account,
            date=tx_date,
            payee=payee,
            memo=f"CARIBE Credit Card ending in {account}",
            amount=amount,
            currency=normalize_currency(first_group(first_match(CURRENCY, text, flags=0))),
            direction=direction_for(payee),
            source_document_id=document.id,
            source_thread_id=document.thread_id,
        )
