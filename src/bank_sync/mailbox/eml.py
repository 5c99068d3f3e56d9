"""
Mailbox backed by a directory of .eml files.

Each file is one notification; its stem is the document id. Only the
`after:YYYY/MM/DD` and `from:address` terms of a query are honoured.
"""

import logging
import re
from datetime import date, datetime, timezone
from email import policy
from email.message import EmailMessage
from email.parser import BytesHeaderParser, BytesParser
from email.utils import parsedate_to_datetime
from pathlib import Path
from typing import List, Optional, Tuple

from bank_sync.core.exceptions import ParserError
from bank_sync.models.document import Document

logger = logging.getLogger(__name__)

AFTER_TERM = re.compile(r"\bafter:(\d{4})/(\d{1,2})/(\d{1,2})")
FROM_TERM = re.compile(r"\bfrom:(\S+?)\)?(?=\s|$)")
SNIPPET_LENGTH = 200


def parse_query(query: str) -> Tuple[Optional[date], List[str]]:
    """
    Split a mailbox query into its after: date and from: addresses.

    Raises:
        ParserError: If the after: term is not a valid date
    """
    after = None
    match = AFTER_TERM.search(query)
    if match:
        try:
            after = date(*(int(g) for g in match.groups()))
        except ValueError as e:
            raise ParserError(f"Invalid after: date in query {query!r}") from e
    senders = [s.lower() for s in FROM_TERM.findall(query)]
    return after, senders


def _received_at(message: EmailMessage, path: Path) -> datetime:
    raw = message.get("Date")
    received = None
    if raw:
        try:
            received = parsedate_to_datetime(str(raw))
        except (TypeError, ValueError):
            logger.debug("Unparseable Date header %r in %s", raw, path.name)
    if received is None:
        received = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
    if received.tzinfo is None:
        received = received.replace(tzinfo=timezone.utc)
    return received


def _body(message: EmailMessage, subtype: str) -> str:
    part = message.get_body(preferencelist=(subtype,))
    if part is None or part.get_content_subtype() != subtype:
        return ""
    try:
        return part.get_content()
    except (LookupError, UnicodeError) as e:
        logger.warning("Undecodable %s part (%s), falling back to utf-8", subtype, e)
        payload = part.get_payload(decode=True) or b""
        return payload.decode("utf-8", errors="replace")


class EmlDirectoryMailbox:
    """Reads notifications from *.eml files in one directory."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def _paths(self) -> List[Path]:
        if not self.directory.is_dir():
            logger.warning("Mailbox directory %s does not exist", self.directory)
            return []
        return sorted(self.directory.glob("*.eml"))

    def list_matching(self, query: str) -> List[str]:
        """Document ids of the messages the query selects, oldest file name first."""
        after, senders = parse_query(query)

        refs = []
        for path in self._paths():
            with open(path, "rb") as f:
                headers = BytesHeaderParser(policy=policy.default).parse(f)
            if after is not None and _received_at(headers, path).date() < after:
                continue
            sender = str(headers.get("From", "")).lower()
            if senders and not any(s in sender for s in senders):
                continue
            refs.append(path.stem)

        logger.debug("Query %r matched %d of the mailbox files", query, len(refs))
        return refs

    def fetch(self, ref: str) -> Optional[Document]:
        """Load one message as a Document, or None if it no longer exists."""
        path = self.directory / f"{ref}.eml"
        if not path.is_file():
            logger.warning("Mailbox file %s not found", path)
            return None

        with open(path, "rb") as f:
            message = BytesParser(policy=policy.default).parse(f)

        plain_body = _body(message, "plain")
        html_body = _body(message, "html")
        message_id = str(message.get("Message-ID", "")).strip("<> ")

        return Document(
            id=ref,
            thread_id=message_id,
            sender=str(message.get("From", "")),
            subject=str(message.get("Subject", "")),
            received_at=_received_at(message, path),
            plain_body=plain_body,
            html_body=html_body,
            snippet=" ".join(plain_body.split())[:SNIPPET_LENGTH],
        )
