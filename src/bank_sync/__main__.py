"""
CLI entry point for bank notification sync.
"""

import argparse
import asyncio
import logging
import sys
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import List, Optional

from bank_sync.core.config import (
    AppConfig,
    LedgerSettings,
    load_config,
    load_rules,
    write_accounts_template,
    write_env_template,
)
from bank_sync.core.errors import classify_error, format_error
from bank_sync.core.exceptions import BankSyncError, ConfigurationError
from bank_sync.core.pipeline import Pipeline
from bank_sync.ledger.ynab import YnabClient
from bank_sync.mailbox.eml import EmlDirectoryMailbox
from bank_sync.models.summary import IngestSummary, SyncSummary
from bank_sync.models.transaction import Direction, Transaction
from bank_sync.server import run_server
from bank_sync.utils.date_utils import DEFAULT_LOOKBACK_DAYS, parse_iso_date

logger = logging.getLogger("bank_sync")

DEFAULT_MAILBOX_DIR = Path("mailbox")
RULE = "-" * 60


def _iso_date(value: str):
    try:
        return parse_iso_date(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from None


def _amount(value: str) -> Decimal:
    try:
        amount = Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"invalid amount: {value}") from None
    if not amount.is_finite() or amount <= 0:
        raise argparse.ArgumentTypeError(f"amount must be positive: {value}")
    return amount


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bank-sync",
        description="Bank notification sync - parse bank emails and push them to YNAB",
    )
    parser.add_argument(
        "--db-path",
        type=Path,
        help="Path to SQLite store (default: data/bank_transactions.db)",
    )
    parser.add_argument(
        "--config-dir",
        type=Path,
        default=None,
        help="Directory with accounts.json, rules.json and .env (default: cwd)",
    )
    parser.add_argument(
        "--mailbox-dir",
        type=Path,
        default=DEFAULT_MAILBOX_DIR,
        help="Directory of .eml notification files (default: ./mailbox)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    sync = commands.add_parser("sync", help="Ingest new notifications and sync them")
    sync.add_argument("--days", type=int, help="Lookback window in days")
    sync.add_argument(
        "--min-date",
        type=_iso_date,
        help="Ignore transactions before this date (YYYY-MM-DD)",
    )

    commands.add_parser("retry", help="Resubmit pending and failed transactions")

    dry_run = commands.add_parser("dry-run", help="Show what sync would parse")
    dry_run.add_argument(
        "--days", type=int, default=DEFAULT_LOOKBACK_DAYS, help="Lookback window in days"
    )

    commands.add_parser("list-budgets", help="List YNAB budgets")
    commands.add_parser("list-accounts", help="List accounts of the configured budget")
    commands.add_parser("setup-accounts", help="Write a template accounts.json")
    commands.add_parser("setup-ynab", help="Write a template .env with YNAB_* variables")

    test_txn = commands.add_parser("test-transaction", help="Create one test transaction in YNAB")
    test_txn.add_argument("--account", "-a", default="0014", help="Bank account (last 4 digits)")
    test_txn.add_argument("--amount", "-m", type=_amount, default=Decimal("300"), help="Amount")
    test_txn.add_argument(
        "--direction",
        "-d",
        choices=[d.value for d in Direction],
        default=Direction.INFLOW.value,
        help="inflow or outflow",
    )
    test_txn.add_argument("--payee", "-p", default="Test Transaction", help="Payee name")
    commands.add_parser("serve", help="Run the MCP inspection server on stdio")

    return parser


def _print_ingest(summary: IngestSummary) -> None:
    print(f"Found: {summary.found}")
    print(f"Processed: {summary.processed}")
    print(f"New transactions: {summary.new}")
    print(f"Quarantined: {summary.quarantined}")
    if summary.skipped:
        print(f"Skipped (before min date): {summary.skipped}")
    if summary.errors:
        print(f"Errors: {summary.errors}")


def _print_sync(summary: SyncSummary, label: str = "Sync") -> None:
    print(f"{label} complete:")
    print(f"  Synced: {summary.synced}")
    print(f"  Failed: {summary.failed}")
    if summary.errors_by_kind:
        print("  Error breakdown:")
        for kind, count in sorted(summary.errors_by_kind.items()):
            print(f"    {kind}: {count}")


def _ledger_settings(config: AppConfig) -> LedgerSettings:
    if config.ynab is None:
        raise ConfigurationError(
            "YNAB credentials are required: add 'ynab' to accounts.json "
            "or set YNAB_ACCESS_TOKEN and YNAB_BUDGET_ID"
        )
    return config.ynab


def cmd_sync(args: argparse.Namespace, config: AppConfig) -> int:
    pipeline = Pipeline.from_config(config, load_rules(args.config_dir), args.db_path)
    summary = pipeline.ingest(
        EmlDirectoryMailbox(args.mailbox_dir), days=args.days, min_date=args.min_date
    )
    _print_ingest(summary)

    try:
        settings = config.require_ledger()
    except ConfigurationError as e:
        logger.error("Skipping ledger sync: %s", e)
        return 1

    sync_summary = pipeline.sync(YnabClient(settings), config.ledger_accounts, args.min_date)
    if sync_summary.attempted:
        _print_sync(sync_summary)
    else:
        print("No new transactions to sync.")
    return 0


def cmd_retry(args: argparse.Namespace, config: AppConfig) -> int:
    settings = config.require_ledger()
    pipeline = Pipeline.from_config(config, db_path=args.db_path)
    summary = pipeline.retry(YnabClient(settings), config.ledger_accounts)
    if not summary.attempted:
        print("No failed transactions to retry.")
        return 0
    _print_sync(summary, label="Retry")
    return 0


def cmd_dry_run(args: argparse.Namespace, config: AppConfig) -> int:
    pipeline = Pipeline.from_config(config, load_rules(args.config_dir), args.db_path)
    results = pipeline.dry_run(EmlDirectoryMailbox(args.mailbox_dir), days=args.days)
    print(f"Found {len(results)} documents.")
    for result in results:
        print(result.describe())
        if result.status == "FAIL" and args.verbose:
            print("--- Body preview ---")
            print(result.preview or "[EMPTY]")
            print(RULE)
    return 0


def cmd_list_budgets(args: argparse.Namespace, config: AppConfig) -> int:
    budgets = YnabClient(_ledger_settings(config)).get_budgets()
    print("Available YNAB budgets:")
    print(RULE)
    for budget in budgets:
        print(f"ID: {budget.get('id')}")
        print(f"Name: {budget.get('name')}")
        print(f"Last modified: {budget.get('last_modified_on') or 'N/A'}")
        print(RULE)
    return 0


def cmd_list_accounts(args: argparse.Namespace, config: AppConfig) -> int:
    settings = _ledger_settings(config)
    accounts = YnabClient(settings).get_accounts()
    print(f'Available YNAB accounts in budget "{settings.budget_id}":')
    print(RULE)
    for account in accounts:
        balance = (account.get("balance") or 0) / 1000
        print(f"ID: {account.get('id')}")
        print(f"Name: {account.get('name')}")
        print(f"Type: {account.get('type')}")
        print(f"Balance: {balance:.2f}")
        print(RULE)
    return 0


def cmd_setup_accounts(args: argparse.Namespace, config: AppConfig) -> int:
    path = write_accounts_template(args.config_dir)
    print(f"Created template config at {path}")
    print("Fill in your YNAB credentials and account IDs.")
    print('Run "bank-sync list-accounts" to find your YNAB account IDs.')
    return 0


def cmd_setup_ynab(args: argparse.Namespace, config: AppConfig) -> int:
    path = write_env_template(args.config_dir)
    print(f"Created template config at {path}")
    print("Fill in your YNAB credentials and account IDs.")
    print("accounts.json takes priority over these variables (see setup-accounts).")
    return 0


def cmd_test_transaction(args: argparse.Namespace, config: AppConfig) -> int:
    settings = _ledger_settings(config)
    account_id = config.ledger_accounts.get(args.account)
    if not account_id:
        print(f"No YNAB account mapping found for bank account: {args.account}")
        print("Available account mappings:")
        for account, mapped in sorted(config.ledger_accounts.items()):
            print(f"  {account} -> {mapped}")
        return 1

    direction = Direction(args.direction)
    transaction = Transaction.create(
        issuer="TEST",
        account=args.account,
        date=date.today(),
        payee=args.payee,
        amount=args.amount,
        direction=direction,
        source_document_id="test",
        memo=f"Manual test transaction - {args.amount} DOP {direction.value}",
    )

    print("Creating test transaction:")
    print(f"  Account: {args.account} ({account_id})")
    print(f"  Amount: {transaction.amount} {transaction.currency}")
    print(f"  Direction: {direction.value}")
    print(f"  Payee: {transaction.payee}")
    print(f"  Date: {transaction.date.isoformat()}")

    try:
        ledger_id = YnabClient(settings).submit_one(account_id, transaction)
    except Exception as e:
        error = classify_error(
            e, {"account": args.account, "amount": str(args.amount), "payee": args.payee}
        )
        print(f"Failed to create test transaction: {format_error(error)}")
        return 1

    print(f"Created test transaction in YNAB: {ledger_id}")
    return 0


COMMANDS = {
    "sync": cmd_sync,
    "retry": cmd_retry,
    "dry-run": cmd_dry_run,
    "list-budgets": cmd_list_budgets,
    "list-accounts": cmd_list_accounts,
    "setup-accounts": cmd_setup_accounts,
    "setup-ynab": cmd_setup_ynab,
    "test-transaction": cmd_test_transaction,
}


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the CLI."""
    args = build_parser().parse_args(argv)

    # Configure logging
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,  # MCP uses stdout for protocol, so log to stderr
    )

    if args.command == "serve":
        try:
            asyncio.run(run_server(db_path=args.db_path))
        except KeyboardInterrupt:
            logging.info("Server stopped by user")
            sys.exit(0)
        except Exception as e:
            logging.exception(f"Server error: {e}")
            sys.exit(1)
        return

    try:
        config = load_config(args.config_dir)
        code = COMMANDS[args.command](args, config)
    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        sys.exit(130)
    except BankSyncError as e:
        logger.error(format_error(classify_error(e)))
        sys.exit(1)
    except Exception as e:
        logger.exception(f"{args.command} failed: {format_error(classify_error(e))}")
        sys.exit(1)

    sys.exit(code)


if __name__ == "__main__":
    main()
