"""
CLI main entry point.
"""

import argparse
import json
import logging
import mimetypes
import sys
from datetime import timedelta
from pathlib import Path

import yaml

from ..config import Config, ConfigValidationError, create_default_config, load_config
from ..engines.registry import describe_engines
from ..importers.tabular import NoValidRecordsError
from ..services.receipt_intake import ReceiptIntakeService
from ..state_store import StateStore

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # boto3 is chatty at DEBUG
    for noisy in ("botocore", "boto3", "urllib3", "PIL"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="receipt-ledger",
        description="Extract receipts into ledger transactions and import exported history",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # extract command
    extract_parser = subparsers.add_parser(
        "extract", help="Extract a receipt and print the result (nothing is saved)"
    )
    extract_parser.add_argument("file", type=Path, help="Receipt image or PDF")
    extract_parser.add_argument(
        "--engine",
        type=str,
        default=None,
        help="Engine hint: textract or tesseract (default: configured engine)",
    )

    # upload command
    upload_parser = subparsers.add_parser(
        "upload", help="Extract a receipt and file it as an expense"
    )
    upload_parser.add_argument("file", type=Path, help="Receipt image or PDF")
    upload_parser.add_argument("--owner", type=str, required=True, help="Owner id")
    upload_parser.add_argument("--engine", type=str, default=None, help="Engine hint")
    upload_parser.add_argument(
        "--category",
        type=str,
        default=None,
        help="Category name (default: the owner's default expense category)",
    )

    # import command
    import_parser = subparsers.add_parser(
        "import", help="Import exported transaction history (CSV/TSV/space aligned)"
    )
    import_parser.add_argument("file", type=Path, help="History file")
    import_parser.add_argument("--owner", type=str, required=True, help="Owner id")

    # engines command
    subparsers.add_parser("engines", help="List extraction engines")

    # seed-categories command
    subparsers.add_parser("seed-categories", help="Install shared default categories")

    # cleanup command
    cleanup_parser = subparsers.add_parser("cleanup", help="Purge stale temp uploads")
    cleanup_parser.add_argument(
        "--max-age-hours",
        type=int,
        default=None,
        help="Age limit in hours (default: storage.temp_ttl_hours)",
    )

    # status command
    subparsers.add_parser("status", help="Show store statistics")

    # init-config command
    subparsers.add_parser("init-config", help="Write a default config file")

    return parser


def guess_mime_type(path: Path) -> str:
    mime_type, _ = mimetypes.guess_type(path.name)
    return mime_type or "application/octet-stream"


def _print_json(data: dict) -> None:
    print(json.dumps(data, indent=2, default=str))


def cmd_extract(config: Config, file: Path, engine: str | None) -> int:
    """Extract a receipt without persisting anything."""
    if not file.is_file():
        print(f"❌ File not found: {file}")
        return 1

    service = ReceiptIntakeService.from_config(config)
    outcome = service.extract_only(file.read_bytes(), guess_mime_type(file), engine)

    if not outcome.ok:
        print(f"❌ Extraction failed: {outcome.error}")
        return 1

    receipt = outcome.receipt
    _print_json(receipt.to_dict())
    if receipt.needs_review:
        print(f"\n⚠️  Needs review: {receipt.review_reason}")
    return 0


def cmd_upload(
    config: Config, file: Path, owner: str, engine: str | None, category: str | None
) -> int:
    """Extract and file one receipt."""
    if not file.is_file():
        print(f"❌ File not found: {file}")
        return 1

    service = ReceiptIntakeService.from_config(config)
    result = service.upload_and_auto_file(
        file.read_bytes(),
        guess_mime_type(file),
        owner_id=owner,
        original_name=file.name,
        engine_hint=engine,
        category_name=category,
    )

    if result.transaction is None:
        print(f"❌ {result.error}")
        if result.receipt is not None:
            print("\nExtracted data (enter the transaction manually):")
            _print_json(result.receipt.to_dict())
        return 1

    tx = result.transaction
    print(f"✓ Transaction {tx.id} created: {tx.amount} on {tx.date} - {tx.description}")
    if result.needs_manual_review:
        print(f"⚠️  Needs review: {result.receipt.review_reason}")
    return 0


def cmd_import(config: Config, file: Path, owner: str) -> int:
    """Import exported history."""
    if not file.is_file():
        print(f"❌ File not found: {file}")
        return 1

    service = ReceiptIntakeService.from_config(config)
    text = file.read_text(encoding="utf-8", errors="replace")

    try:
        summary = service.import_tabular(text, owner)
    except NoValidRecordsError as e:
        print(f"❌ {e}")
        for error in e.errors:
            print(f"   line {error.line_number}: {error.message}")
        return 1

    print(f"✓ Imported {summary.imported_count} transactions")
    if summary.errors:
        print(f"⚠️  {summary.error_count} lines skipped:")
        for error in summary.errors:
            print(f"   line {error.line_number} ({error.stage}): {error.message}")
    return 0


def cmd_engines(config: Config) -> int:
    """List extraction engines."""
    print("\n🔎 Extraction Engines")
    print("=" * 40)
    for info in describe_engines(config):
        flags = []
        if info.is_default:
            flags.append("default")
        if info.offline:
            flags.append("offline")
        if not info.configured:
            flags.append("not configured")
        suffix = f" [{', '.join(flags)}]" if flags else ""
        print(f"  {info.engine_id.value:<10} {info.name}{suffix}")
        print(f"             {info.description} (accuracy {info.accuracy})")
        if info.fallback is not None:
            print(f"             falls back to {info.fallback.value}")
    print()
    return 0


def cmd_seed_categories(config: Config) -> int:
    store = StateStore(config.state_db_path)
    added = store.seed_shared_categories()
    print(f"✓ {added} shared categories added")
    return 0


def cmd_cleanup(config: Config, max_age_hours: int | None) -> int:
    """Purge temp uploads older than the TTL."""
    hours = max_age_hours if max_age_hours is not None else config.storage.temp_ttl_hours
    service = ReceiptIntakeService.from_config(config)
    removed = service.purge_temp_uploads(timedelta(hours=hours))
    print(f"✓ Removed {removed} temp uploads older than {hours}h")
    return 0


def cmd_status(config: Config) -> int:
    """Show store statistics."""
    store = StateStore(config.state_db_path)
    stats = store.get_stats()

    print("\n📊 Ledger Status")
    print("=" * 40)
    print(f"  Categories:               {stats['categories_total']}")
    print(f"  Shared categories:        {stats['categories_shared']}")
    print(f"  Transactions:             {stats['transactions_total']}")
    print(f"  Imported:                 {stats['transactions_imported']}")
    print(f"  With receipt:             {stats['transactions_with_receipt']}")
    print(f"  Receipts needing review:  {stats['receipts_needing_review']}")
    for tx_type, count in sorted(stats["by_type"].items()):
        print(f"  {tx_type + ':':<26}{count}")
    print()

    return 0


def cmd_init_config(config_path: Path) -> int:
    if config_path.exists():
        print(f"❌ Config file already exists: {config_path}")
        return 1
    create_default_config(config_path)
    print(f"✓ Wrote {config_path}")
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    if parsed.command == "init-config":
        return cmd_init_config(parsed.config)

    # Load config
    try:
        config = load_config(parsed.config)
        problems = config.validate()
        if problems:
            raise ConfigValidationError("; ".join(problems))
    except (OSError, ValueError, yaml.YAMLError, ConfigValidationError) as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    # Route to command
    if parsed.command == "extract":
        return cmd_extract(config, parsed.file, parsed.engine)
    elif parsed.command == "upload":
        return cmd_upload(config, parsed.file, parsed.owner, parsed.engine, parsed.category)
    elif parsed.command == "import":
        return cmd_import(config, parsed.file, parsed.owner)
    elif parsed.command == "engines":
        return cmd_engines(config)
    elif parsed.command == "seed-categories":
        return cmd_seed_categories(config)
    elif parsed.command == "cleanup":
        return cmd_cleanup(config, parsed.max_age_hours)
    elif parsed.command == "status":
        return cmd_status(config)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
