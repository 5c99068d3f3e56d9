"""
Configuration loading for accounts, ledger credentials and payee rules.

Settings live in two JSON files inside the config directory:

- accounts.json: ledger credentials and bank account -> ledger account
  mappings. When absent, YNAB_ACCESS_TOKEN, YNAB_BUDGET_ID and
  YNAB_ACCOUNT_MAPPINGS are read from the environment (and .env).
- rules.json: ordered merchant normalization rules.
"""

import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from bank_sync.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

ACCOUNTS_FILE = "accounts.json"
RULES_FILE = "rules.json"
ENV_FILE = ".env"


class LedgerSettings(BaseModel):
    """Credentials for the YNAB API."""

    model_config = {"populate_by_name": True}

    access_token: str = Field(alias="accessToken", min_length=1)
    budget_id: str = Field(alias="budgetId", min_length=1)


class AccountMapping(BaseModel):
    """Maps one bank instrument (last 4 digits) to a ledger account."""

    model_config = {"populate_by_name": True}

    ynab_account_id: str = Field(alias="ynabAccountId", min_length=1)
    ynab_account_name: Optional[str] = Field(default=None, alias="ynabAccountName")
    description: Optional[str] = None


class AppConfig(BaseModel):
    """Everything the pipeline reads from accounts.json."""

    model_config = {"populate_by_name": True, "extra": "ignore"}

    ynab: Optional[LedgerSettings] = None
    account_mappings: Dict[str, AccountMapping] = Field(
        default_factory=dict, alias="accountMappings"
    )
    my_instruments: List[str] = Field(default_factory=list, alias="myInstruments")

    @field_validator("account_mappings", mode="before")
    @classmethod
    def accept_plain_ids(cls, v: Any) -> Any:
        """Accept the short form {"1610": "<ledger account id>"}."""
        if isinstance(v, dict):
            return {
                str(key): {"ynabAccountId": value} if isinstance(value, str) else value
                for key, value in v.items()
            }
        return v

    @property
    def ledger_accounts(self) -> Dict[str, str]:
        """Bank account -> ledger account id."""
        return {key: m.ynab_account_id for key, m in self.account_mappings.items()}

    @property
    def instruments(self) -> Set[str]:
        """Instruments considered mine for transfer disambiguation."""
        return set(self.account_mappings) | set(self.my_instruments)

    def require_ledger(self) -> LedgerSettings:
        """
        Return ledger credentials, failing if they are not configured.

        Raises:
            ConfigurationError: If credentials or account mappings are missing
        """
        if self.ynab is None:
            raise ConfigurationError(
                f"YNAB credentials are required: add 'ynab' to {ACCOUNTS_FILE} "
                "or set YNAB_ACCESS_TOKEN and YNAB_BUDGET_ID"
            )
        if not self.account_mappings:
            raise ConfigurationError(f"accountMappings is required in {ACCOUNTS_FILE}")
        return self.ynab


class NormalizationRule(BaseModel):
    """One payee rewrite rule."""

    match: str
    payee: Optional[str] = None
    memo: Optional[str] = None

    @field_validator("match")
    @classmethod
    def validate_pattern(cls, v: str) -> str:
        """Reject rules whose pattern does not compile."""
        try:
            re.compile(v, re.IGNORECASE)
        except re.error as e:
            raise ValueError(f"Invalid rule pattern {v!r}: {e}") from e
        return v


class RulesConfig(BaseModel):
    """Contents of rules.json."""

    merchant_normalization: List[NormalizationRule] = Field(default_factory=list)


def _read_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"{path} is not valid JSON: {e}") from e


def _config_from_env() -> Optional[AppConfig]:
    access_token = os.getenv("YNAB_ACCESS_TOKEN")
    budget_id = os.getenv("YNAB_BUDGET_ID")
    mappings = os.getenv("YNAB_ACCOUNT_MAPPINGS")

    if not (access_token and budget_id and mappings):
        return None

    try:
        parsed = json.loads(mappings)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Failed to parse YNAB_ACCOUNT_MAPPINGS: {e}") from e
    if not isinstance(parsed, dict):
        raise ConfigurationError("YNAB_ACCOUNT_MAPPINGS must be a JSON object")

    return AppConfig(
        ynab=LedgerSettings(access_token=access_token, budget_id=budget_id),
        account_mappings=parsed,
    )


def load_config(config_dir: Optional[Path] = None) -> AppConfig:
    """
    Load account configuration.

    Priority: accounts.json in config_dir, then environment variables.
    A missing configuration is not an error here; ingestion still works
    and reconciliation fails later through require_ledger().

    Args:
        config_dir: Directory holding accounts.json (default: cwd)

    Returns:
        Parsed AppConfig

    Raises:
        ConfigurationError: If a config source exists but is invalid
    """
    config_dir = config_dir or Path.cwd()
    load_dotenv(config_dir / ENV_FILE)

    path = config_dir / ACCOUNTS_FILE
    try:
        if path.exists():
            logger.debug("Loading account configuration from %s", path)
            return AppConfig.model_validate(_read_json(path))

        env_config = _config_from_env()
    except ValidationError as e:
        raise ConfigurationError(f"Invalid account configuration: {e}") from e

    if env_config is not None:
        logger.debug("Loaded account configuration from environment")
        return env_config

    logger.warning("No account configuration found in %s or environment", config_dir)
    return AppConfig()


def load_rules(config_dir: Optional[Path] = None) -> List[NormalizationRule]:
    """
    Load merchant normalization rules from rules.json.

    Returns:
        Ordered rules; empty when the file does not exist

    Raises:
        ConfigurationError: If the file is malformed or a pattern is invalid
    """
    path = (config_dir or Path.cwd()) / RULES_FILE
    if not path.exists():
        return []

    try:
        rules = RulesConfig.model_validate(_read_json(path))
    except ValidationError as e:
        raise ConfigurationError(f"Invalid rules in {path}: {e}") from e

    logger.debug("Loaded %d normalization rules", len(rules.merchant_normalization))
    return rules.merchant_normalization


ACCOUNTS_TEMPLATE: Dict[str, Any] = {
    "ynab": {
        "accessToken": "YOUR_YNAB_PERSONAL_ACCESS_TOKEN",
        "budgetId": "YOUR_BUDGET_ID_OR_USE_default",
    },
    "accountMappings": {
        "1610": {
            "ynabAccountId": "YNAB_ACCOUNT_ID_FOR_1610",
            "ynabAccountName": "Visa Credit Card",
            "description": "Credit card ending in 1610",
        },
        "0014": {
            "ynabAccountId": "YNAB_ACCOUNT_ID_FOR_0014",
            "ynabAccountName": "Savings",
            "description": "Savings account ending in 0014",
        },
    },
    "myInstruments": [],
}

ENV_TEMPLATE = """\
YNAB_ACCESS_TOKEN=YOUR_YNAB_PERSONAL_ACCESS_TOKEN
YNAB_BUDGET_ID=YOUR_BUDGET_ID_OR_USE_default
YNAB_ACCOUNT_MAPPINGS={"1610": "YNAB_ACCOUNT_ID_FOR_1610", "0014": "YNAB_ACCOUNT_ID_FOR_0014"}
"""


def _write_template(path: Path, content: str) -> Path:
    if path.exists():
        raise ConfigurationError(f"{path} already exists; remove it first to regenerate")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    logger.info("Created template config at %s", path)
    return path


def write_accounts_template(config_dir: Optional[Path] = None) -> Path:
    """
    Write a template accounts.json to fill in by hand.

    Raises:
        ConfigurationError: If accounts.json already exists
    """
    path = (config_dir or Path.cwd()) / ACCOUNTS_FILE
    return _write_template(path, json.dumps(ACCOUNTS_TEMPLATE, indent=2) + "\n")


def write_env_template(config_dir: Optional[Path] = None) -> Path:
    """Write a template .env with the YNAB_* variables."""
    path = (config_dir or Path.cwd()) / ENV_FILE
    return _write_template(path, ENV_TEMPLATE)
