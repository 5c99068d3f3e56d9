"""
Core functionality for bank notification sync.
"""

from bank_sync.core.exceptions import (
    BankSyncError,
    ConfigurationError,
    ParserError,
    StoreError,
)
from bank_sync.core.config import AppConfig, load_config, load_rules
from bank_sync.core.database import TransactionStore
from bank_sync.core.errors import ClassifiedError, ErrorKind, classify_error
from bank_sync.core.rules import RulesEngine
from bank_sync.core.reconciler import Reconciler
from bank_sync.core.pipeline import Pipeline

__all__ = [
    "AppConfig",
    "BankSyncError",
    "ClassifiedError",
    "ConfigurationError",
    "ErrorKind",
    "ParserError",
    "Pipeline",
    "Reconciler",
    "RulesEngine",
    "StoreError",
    "TransactionStore",
    "classify_error",
    "load_config",
    "load_rules",
]
