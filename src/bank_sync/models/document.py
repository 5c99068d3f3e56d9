"""
Models for fetched notification documents and their quarantine records.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class Document(BaseModel):
    """
    A single notification email as handed over by the mailbox.

    Only the fields the parsers look at are kept.
    """

    model_config = {"frozen": True, "populate_by_name": True}

    id: str
    thread_id: str = ""
    sender: str
    subject: str
    received_at: datetime
    plain_body: str = ""
    html_body: str = ""
    snippet: str = ""


class QuarantineRecord(BaseModel):
    """A document no parser matched, or whose parser returned nothing."""

    document_id: str
    reason: Optional[str] = None
    subject: Optional[str] = None
    date: Optional[str] = None
    attempts: int = 1
    last_attempt: Optional[datetime] = None
