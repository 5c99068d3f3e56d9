"""
Parser dispatch: first registered parser that accepts a document wins.
"""

from datetime import date
from typing import Iterable, List, Optional

from bank_sync.models.document import Document
from bank_sync.parsers.base import BaseParser
from bank_sync.parsers.bhd import BHDParser
from bank_sync.parsers.caribe import CaribeParser
from bank_sync.parsers.qik import QIKParser


class ParserRegistry:
    """Ordered collection of issuer parsers."""

    def __init__(self, parsers: Iterable[BaseParser] = ()):
        self._parsers: List[BaseParser] = list(parsers)

    def register(self, parser: BaseParser) -> None:
        """Append a parser; it is consulted after all earlier ones."""
        self._parsers.append(parser)

    def find_parser(self, document: Document) -> Optional[BaseParser]:
        """Return the first parser whose can_parse accepts the document."""
        return next((p for p in self._parsers if p.can_parse(document)), None)

    @property
    def parsers(self) -> List[BaseParser]:
        return list(self._parsers)

    def search_terms(self) -> List[str]:
        """Search terms of all parsers, in registration order."""
        return [term for parser in self._parsers for term in parser.search_terms()]

    def build_query(self, after: date) -> str:
        """
        Mailbox query covering every registered issuer.

        Example: after:2026/01/01 (from:a@bank.do OR from:b@bank.do)
        """
        terms = self.search_terms()
        combined = f"({' OR '.join(terms)})" if terms else ""
        return f"after:{after.strftime('%Y/%m/%d')} {combined}".strip()

    def __len__(self) -> int:
        return len(self._parsers)


def default_registry(my_instruments: Iterable[str] = ()) -> ParserRegistry:
    """
    Registry with every supported issuer, in dispatch order.

    Args:
        my_instruments: Instruments I own, needed for transfer direction
    """
    return ParserRegistry(
        [
            BHDParser(my_instruments=my_instruments),
            QIKParser(),
            CaribeParser(),
        ]
    )
