"""
CLI main entry point.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from ..config import Config, ConfigValidationError, create_default_config, load_config
from ..matching.engine import ReconcilerError, ReconciliationEngine
from ..state_store import StateStore
from ..state_store.loader import RecordLoadError, load_file

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _suggestion_dict(suggestion) -> dict[str, Any]:
    return {
        "id": suggestion.id,
        "teamId": suggestion.team_id,
        "documentId": suggestion.document_id,
        "transactionId": suggestion.transaction_id,
        "confidenceScore": suggestion.confidence_score,
        "matchType": suggestion.match_type.value,
        "status": suggestion.status.value,
        "createdAt": suggestion.created_at,
        "updatedAt": suggestion.updated_at,
    }


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="inbox-reconciler",
        description="Match inbox documents (receipts, invoices) with bank transactions",
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

    init_parser = subparsers.add_parser("init-config", help="Write a default config file")
    init_parser.add_argument(
        "--force", action="store_true", help="Overwrite an existing config file"
    )

    load_parser = subparsers.add_parser(
        "load", help="Load teams, documents and transactions from a YAML file"
    )
    load_parser.add_argument("file", type=Path, help="YAML file with records")

    def add_team(p: argparse.ArgumentParser) -> None:
        p.add_argument("--team", required=True, help="Team ID")

    match_doc_parser = subparsers.add_parser(
        "match-document", help="Find the best transaction for a document"
    )
    add_team(match_doc_parser)
    match_doc_parser.add_argument("--document-id", required=True, help="Inbox document ID")
    match_doc_parser.add_argument(
        "--include-matched",
        action="store_true",
        help="Consider transactions that already have an attachment",
    )

    match_txn_parser = subparsers.add_parser(
        "match-transaction", help="Find the best document for a transaction"
    )
    add_team(match_txn_parser)
    match_txn_parser.add_argument("--transaction-id", required=True, help="Transaction ID")
    match_txn_parser.add_argument(
        "--include-matched",
        action="store_true",
        help="Consider documents that are already linked",
    )

    suggest_parser = subparsers.add_parser(
        "suggest", help="Match and persist the best match as a suggestion"
    )
    add_team(suggest_parser)
    source = suggest_parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--document-id", help="Inbox document ID")
    source.add_argument("--transaction-id", help="Transaction ID")

    calibration_parser = subparsers.add_parser(
        "calibration", help="Show a team's calibrated thresholds"
    )
    add_team(calibration_parser)

    for name, help_text in (
        ("confirm", "Confirm a pending suggestion and link the document"),
        ("decline", "Decline a pending suggestion"),
        ("unmatch", "Undo a confirmed suggestion"),
    ):
        action_parser = subparsers.add_parser(name, help=help_text)
        add_team(action_parser)
        action_parser.add_argument("--suggestion-id", type=int, required=True)
        action_parser.add_argument("--user", help="User performing the action")

    expire_parser = subparsers.add_parser("expire", help="Expire stale pending suggestions")
    add_team(expire_parser)
    expire_parser.add_argument(
        "--days",
        type=int,
        help="Expire suggestions older than this many days (default: from config)",
    )

    reconcile_parser = subparsers.add_parser(
        "reconcile", help="Suggest matches for every unlinked document of a team"
    )
    add_team(reconcile_parser)
    reconcile_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Match only; do not persist suggestions or links",
    )
    reconcile_parser.add_argument(
        "--limit", type=int, help="Process at most this many documents"
    )

    status_parser = subparsers.add_parser("status", help="Show reconciliation statistics")
    add_team(status_parser)

    return parser


def cmd_init_config(config_path: Path, force: bool = False) -> int:
    """Write the default config file."""
    if config_path.exists() and not force:
        print(f"❌ Config already exists: {config_path} (use --force to overwrite)")
        return 1
    create_default_config(config_path)
    print(f"✓ Wrote default config to {config_path}")
    return 0


def cmd_load(config: Config, path: Path) -> int:
    """Load records from a YAML file into the state store."""
    store = StateStore(config.state_db_path)
    try:
        counts = load_file(store, path)
    except (OSError, RecordLoadError, ValueError) as e:
        print(f"❌ Failed to load {path}: {e}")
        return 1
    _print_json(counts)
    return 0


def cmd_match_document(
    engine: ReconciliationEngine, team_id: str, document_id: str, include_matched: bool
) -> int:
    result = engine.find_best_transaction_match(
        team_id, document_id, include_already_matched=include_matched or None
    )
    _print_json(result.to_dict() if result else None)
    return 0


def cmd_match_transaction(
    engine: ReconciliationEngine, team_id: str, transaction_id: str, include_matched: bool
) -> int:
    result = engine.find_best_document_match(
        team_id, transaction_id, include_already_matched=include_matched or None
    )
    _print_json(result.to_dict() if result else None)
    return 0


def cmd_suggest(
    engine: ReconciliationEngine,
    team_id: str,
    document_id: str | None,
    transaction_id: str | None,
) -> int:
    if document_id:
        suggestion = engine.suggest_for_document(team_id, document_id)
    else:
        suggestion = engine.suggest_for_transaction(team_id, transaction_id)  # type: ignore[arg-type]
    _print_json(_suggestion_dict(suggestion) if suggestion else None)
    return 0


def cmd_transition(
    engine: ReconciliationEngine,
    action: str,
    team_id: str,
    suggestion_id: int,
    user_id: str | None,
) -> int:
    """Confirm, decline or unmatch a suggestion."""
    handlers = {
        "confirm": engine.confirm_suggestion,
        "decline": engine.decline_suggestion,
        "unmatch": engine.unmatch_suggestion,
    }
    try:
        suggestion = handlers[action](suggestion_id, team_id, user_id)
    except ReconcilerError as e:
        print(f"❌ {e}")
        return 1
    _print_json(_suggestion_dict(suggestion))
    return 0


def cmd_reconcile(config: Config, team_id: str, dry_run: bool, limit: int | None) -> int:
    """Run batch reconciliation for a team."""
    from ..services.reconciliation import ReconciliationService

    store = StateStore(config.state_db_path)
    service = ReconciliationService(store, config)

    if dry_run:
        print("  ℹ️  DRY RUN mode - no changes will be made")

    result = service.run(team_id, dry_run=dry_run, limit=limit)

    print()
    print("📊 Reconciliation Results")
    print("=" * 40)
    print(f"  Status:              {result.state.value}")
    print(f"  Documents processed: {result.documents_processed}")
    print(f"  Documents skipped:   {result.documents_skipped}")
    print(f"  Suggestions:         {result.suggestions_created}")
    print(f"  Auto-matched:        {result.auto_matched}")
    print(f"  No match:            {result.no_match}")
    print(f"  Dismissed:           {result.dismissed}")
    print(f"  Duration:            {result.duration_ms}ms")
    print()

    if result.errors:
        print("⚠️  Errors encountered:")
        for error in result.errors:
            print(f"   - {error}")

    if result.success:
        print("✓ Reconciliation completed successfully")
        return 0
    print("❌ Reconciliation failed")
    return 1


def cmd_status(config: Config, team_id: str) -> int:
    """Show reconciliation statistics for a team."""
    store = StateStore(config.state_db_path)
    stats = store.get_stats(team_id)

    print(f"\n📊 Reconciliation Status ({team_id})")
    print("=" * 40)
    print(f"  Documents total:        {stats['documents_total']}")
    print(f"  Documents unlinked:     {stats['documents_unlinked']}")
    print(f"  Transactions total:     {stats['transactions_total']}")
    for status, count in stats["suggestions"].items():
        print(f"  Suggestions {status + ':':<11} {count}")
    print()

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
        return cmd_init_config(parsed.config, parsed.force)

    # Load config
    try:
        config = load_config(parsed.config)
        errors = config.validate()
        if errors:
            raise ConfigValidationError("; ".join(errors))
    except Exception as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    # Route to command
    if parsed.command == "load":
        return cmd_load(config, parsed.file)
    elif parsed.command == "reconcile":
        return cmd_reconcile(config, parsed.team, parsed.dry_run, parsed.limit)
    elif parsed.command == "status":
        return cmd_status(config, parsed.team)

    engine = ReconciliationEngine(StateStore(config.state_db_path), config)

    if parsed.command == "match-document":
        return cmd_match_document(engine, parsed.team, parsed.document_id, parsed.include_matched)
    elif parsed.command == "match-transaction":
        return cmd_match_transaction(
            engine, parsed.team, parsed.transaction_id, parsed.include_matched
        )
    elif parsed.command == "suggest":
        return cmd_suggest(engine, parsed.team, parsed.document_id, parsed.transaction_id)
    elif parsed.command == "calibration":
        _print_json(engine.get_team_calibration(parsed.team).to_dict())
        return 0
    elif parsed.command in ("confirm", "decline", "unmatch"):
        return cmd_transition(
            engine, parsed.command, parsed.team, parsed.suggestion_id, parsed.user
        )
    elif parsed.command == "expire":
        count = engine.expire_stale_suggestions(parsed.team, parsed.days)
        _print_json({"expired": count})
        return 0
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
