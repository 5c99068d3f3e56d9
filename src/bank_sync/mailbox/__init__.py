"""
Notification sources.
"""

from bank_sync.mailbox.base import Mailbox
from bank_sync.mailbox.eml import EmlDirectoryMailbox, parse_query

__all__ = ["EmlDirectoryMailbox", "Mailbox", "parse_query"]
