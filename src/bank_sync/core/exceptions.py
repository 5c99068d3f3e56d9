"""
Custom exceptions for bank notification sync.
"""


class BankSyncError(Exception):
    """Base exception for bank sync errors."""
    pass


class ConfigurationError(BankSyncError):
    """Raised when credentials, budget or account mappings are missing."""
    pass


class StoreError(BankSyncError):
    """Raised when the local transaction store cannot be opened or written."""
    pass


class ParserError(BankSyncError):
    """Raised by parser helpers on malformed fields; never escapes a parser."""
    pass
