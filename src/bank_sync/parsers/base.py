"""
Base class and shared helpers for issuer parsers.

Each issuer parser recognises its own notification emails and turns them
into a Transaction. Parsers never raise on malformed input: they return
None, and the caller quarantines the document.
"""

import logging
import re
from abc import ABC, abstractmethod
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Iterable, List, Optional, Pattern, Sequence, Tuple, Union

from bs4 import BeautifulSoup

from bank_sync.models.document import Document
from bank_sync.models.transaction import Direction, Transaction, to_cents

logger = logging.getLogger(__name__)

PatternLike = Union[str, Pattern[str]]

CREDIT_KEYWORDS = re.compile(
    r"REVERSO|DEVOLUCI[OÓ]N|CR[EÉ]DITO|ABONO|PAGO\s+RECIBIDO", re.IGNORECASE
)

CURRENCY_ALIASES = {
    "RD": "DOP",
    "RD$": "DOP",
    "DO": "DOP",
    "DOP": "DOP",
    "US": "USD",
    "US$": "USD",
    "USD": "USD",
}

_AMOUNT_TOKEN = re.compile(r"\d[\d,]*(?:\.\d+)?")


class BaseParser(ABC):
    """
    Abstract base class for issuer notification parsers.

    Subclasses declare which emails they handle (search_terms, can_parse)
    and how to extract a transaction from them (parse).
    """

    name: str = ""

    @abstractmethod
    def search_terms(self) -> List[str]:
        """Mailbox query fragments, e.g. 'from:alerts@bank.example'."""
        raise NotImplementedError

    @abstractmethod
    def can_parse(self, document: Document) -> bool:
        """True if the document comes from this issuer with a known subject."""
        raise NotImplementedError

    @abstractmethod
    def parse(self, document: Document) -> Optional[Transaction]:
        """Extract a transaction, or None when the template is not understood."""
        raise NotImplementedError

    def extract(self, document: Document) -> Optional[Transaction]:
        """
        Run parse() and turn unexpected exceptions into None.

        This is the entry point the pipeline uses so that a single broken
        template can never abort a run.
        """
        try:
            return self.parse(document)
        except Exception as e:
            logger.warning(
                "%s: unexpected error parsing document %s: %s",
                self.name,
                document.id,
                e,
                exc_info=True,
            )
            return None

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


def html_to_text(html: str) -> str:
    """Render HTML to plain text with cells and blocks separated by spaces."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "head"]):
        tag.decompose()
    return soup.get_text(" ")


def clean_text(text: str) -> str:
    """Collapse all whitespace runs into single spaces."""
    return re.sub(r"\s+", " ", text).strip()


def document_text(document: Document) -> str:
    """Whitespace-normalized text of a document, preferring the HTML body."""
    if document.html_body:
        return clean_text(html_to_text(document.html_body))
    return clean_text(document.plain_body)


def table_rows(html: str) -> List[List[str]]:
    """Text of the direct cells of every table row, in document order."""
    soup = BeautifulSoup(html, "html.parser")
    rows = []
    for tr in soup.find_all("tr"):
        cells = tr.find_all("td", recursive=False)
        rows.append([clean_text(cell.get_text(" ")) for cell in cells])
    return rows


def first_match(
    patterns: Sequence[PatternLike], text: str, flags: int = re.IGNORECASE
) -> Optional[re.Match]:
    """Try patterns in order and return the first match."""
    for pattern in patterns:
        if isinstance(pattern, str):
            match = re.search(pattern, text, flags)
        else:
            match = pattern.search(text)
        if match:
            return match
    return None


def first_group(match: Optional[re.Match]) -> Optional[str]:
    """First non-empty capture group of a match."""
    if match is None:
        return None
    for group in match.groups():
        if group:
            return group.strip()
    return None


def parse_amount(raw: Optional[str]) -> Optional[Decimal]:
    """
    Parse an amount like "RD$ 1,234.567" into Decimal("1234.56").

    Thousands separators and currency symbols are dropped and extra
    decimals are truncated, never rounded.

    Returns:
        The amount, or None if no number is present
    """
    if not raw:
        return None
    match = _AMOUNT_TOKEN.search(raw)
    if match is None:
        return None
    try:
        return to_cents(Decimal(match.group(0).replace(",", "")))
    except InvalidOperation:
        return None


def normalize_currency(raw: Optional[str], default: str = "DOP") -> str:
    """Map bank currency labels (RD, RD$, US$...) to ISO codes."""
    if not raw:
        return default
    key = raw.strip().upper()
    if key in CURRENCY_ALIASES:
        return CURRENCY_ALIASES[key]
    if re.fullmatch(r"[A-Z]{3}", key):
        return key
    return default


def parse_date(raw: str, formats: Iterable[str]) -> Optional[date]:
    """Parse raw with the first strptime format that accepts it."""
    value = clean_text(raw)
    for fmt in formats:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    return None


def direction_for(*texts: Optional[str]) -> Direction:
    """Outflow unless one of the texts carries a reversal or credit keyword."""
    for text in texts:
        if text and CREDIT_KEYWORDS.search(text):
            return Direction.INFLOW
    return Direction.OUTFLOW


def resolve_transfer(
    origin: Optional[str],
    destination: Optional[str],
    my_instruments: Iterable[str],
) -> Optional[Tuple[str, Direction]]:
    """
    Decide which of my instruments a transfer affects.

    - destination mine, origin not mine or unknown: inflow to destination
    - origin mine, destination not mine: outflow from origin
    - both mine: inflow to destination only (one leg; the ledger pairs
      it as a transfer)
    - neither mine: None

    Returns:
        (account, direction) or None
    """
    mine = set(my_instruments)
    destination_mine = destination is not None and destination in mine
    origin_mine = origin is not None and origin in mine

    if destination_mine:
        return destination, Direction.INFLOW
    if origin_mine:
        return origin, Direction.OUTFLOW
    return None


def sender_matches(sender: str, address: str) -> bool:
    """Case-insensitive check that the From header contains address."""
    return address.lower() in sender.lower()
