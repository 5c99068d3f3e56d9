"""
Mailbox protocol.
"""

from typing import List, Optional, Protocol

from bank_sync.models.document import Document


class Mailbox(Protocol):
    """Source of notification documents."""

    def list_matching(self, query: str) -> List[str]:
        """References of the documents a query selects."""
        ...

    def fetch(self, ref: str) -> Optional[Document]:
        """Load one document; None if it cannot be retrieved."""
        ...
