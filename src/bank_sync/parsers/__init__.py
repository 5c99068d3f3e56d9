"""
Issuer parsers for bank notification emails.
"""

from bank_sync.parsers.base import BaseParser, resolve_transfer
from bank_sync.parsers.bhd import BHDParser
from bank_sync.parsers.caribe import CaribeParser
from bank_sync.parsers.qik import QIKParser
from bank_sync.parsers.registry import ParserRegistry, default_registry

__all__ = [
    "BaseParser",
    "BHDParser",
    "CaribeParser",
    "ParserRegistry",
    "QIKParser",
    "default_registry",
    "resolve_transfer",
]
