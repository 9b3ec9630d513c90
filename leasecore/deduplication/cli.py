"""Command-line interface for the listing duplicate detector."""

import argparse
import json
import sys
from datetime import datetime
from typing import List, Optional

from rich import box
from rich.console import Console
from rich.table import Table

from ..config import ConfigManager
from ..errors import DeduplicationError, ErrorHandler
from ..logging_config import setup_logging
from .models import BatchFilter, DuplicateGroup
from .service import DeduplicationService
from .sources import JsonHashStore, JsonRecordSource

console = Console()


def _confidence_style(confidence: float) -> str:
    if confidence >= 0.85:
        return "green"
    if confidence >= 0.70:
        return "yellow"
    return "red"


def _batch_filter(args, default_limit: int) -> BatchFilter:
    return BatchFilter(
        created_since=datetime.fromisoformat(args.since) if args.since else None,
        owner_id=args.owner,
        status=args.status,
        limit=args.limit or default_limit,
    )


def build_service(args) -> DeduplicationService:
    manager = ConfigManager(config_path=args.config)
    config = manager.load()
    if args.db:
        config.storage.db_path = args.db

    setup_logging(
        format=config.logging.format,
        level="DEBUG" if args.verbose else config.logging.level,
        log_file=config.logging.file,
    )

    records = getattr(args, "records", None)
    hashes = getattr(args, "hashes", None)
    return DeduplicationService(
        record_source=JsonRecordSource(records) if records else None,
        hash_store=JsonHashStore(hashes) if hashes else None,
        config=config,
    )


def run_scan(args) -> int:
    service = build_service(args)
    summary = service.scan(
        batch_filter=_batch_filter(args, service.config.scan.batch_limit),
        threshold=args.threshold,
        cross_owner_only=False if args.include_same_owner else None,
    )

    if args.json:
        console.print_json(summary.model_dump_json())
        return 0

    table = Table(title="Scan Summary", box=box.ROUNDED)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    for key, value in summary.model_dump(exclude={"top_matches"}).items():
        table.add_row(key.replace("_", " ").title(), str(value))
    console.print(table)

    if summary.top_matches:
        matches = Table(title="Top Matches", box=box.SIMPLE)
        matches.add_column("Record A", style="cyan")
        matches.add_column("Record B", style="cyan")
        matches.add_column("Confidence", justify="right")
        matches.add_column("Reasons", style="dim")
        for match in summary.top_matches:
            style = _confidence_style(match.confidence)
            matches.add_row(
                match.left_id,
                match.right_id,
                f"[{style}]{match.confidence:.1%}[/{style}]",
                ", ".join(match.reasons),
            )
        console.print(matches)
    return 0


def _groups_table(groups: List[DuplicateGroup]) -> Table:
    table = Table(title=f"Duplicate Groups ({len(groups)})", box=box.ROUNDED)
    table.add_column("Group", style="cyan", no_wrap=True)
    table.add_column("Status")
    table.add_column("Confidence", justify="right")
    table.add_column("Members")
    table.add_column("Merge Target")
    for group in groups:
        style = _confidence_style(group.confidence)
        table.add_row(
            group.id,
            group.status,
            f"[{style}]{group.confidence:.1%}[/{style}]",
            ", ".join(group.member_ids),
            group.merge_target_id or "-",
        )
    return table


def list_groups(args) -> int:
    service = build_service(args)
    groups = service.list_groups(args.status)
    if args.json:
        console.print_json(json.dumps([g.model_dump(mode="json") for g in groups]))
    else:
        console.print(_groups_table(groups))
    return 0


def resolve_group(args) -> int:
    service = build_service(args)
    records = None
    if args.records:
        records = service.record_source.fetch_records(BatchFilter(limit=sys.maxsize))
    entry = service.resolve(args.group_id, args.target, args.actor, notes=args.notes, records=records)
    console.print(f"[green]Resolved[/green] group {entry.group_id}, kept {args.target}")
    return 0


def dismiss_group(args) -> int:
    service = build_service(args)
    entry = service.dismiss(args.group_id, args.actor, notes=args.notes)
    console.print(f"[yellow]Dismissed[/yellow] group {entry.group_id}")
    return 0


def show_audit(args) -> int:
    service = build_service(args)
    entries = service.get_audit_history(args.group, limit=args.limit)
    if args.json:
        console.print_json(json.dumps([e.model_dump(mode="json") for e in entries]))
        return 0

    table = Table(title="Audit Trail", box=box.ROUNDED)
    table.add_column("When", style="dim")
    table.add_column("Group", style="cyan")
    table.add_column("Action")
    table.add_column("Actor")
    table.add_column("Affected")
    for entry in entries:
        table.add_row(
            entry.created_at.isoformat(timespec="seconds"),
            entry.group_id,
            entry.action,
            entry.actor_id,
            ", ".join(entry.affected_properties),
        )
    console.print(table)
    return 0


def exact_duplicates(args) -> int:
    service = build_service(args)
    groups = service.find_exact_duplicates(_batch_filter(args, service.config.scan.batch_limit))
    if args.json:
        console.print_json(json.dumps(groups))
        return 0
    if not groups:
        console.print("No exact duplicates found")
        return 0
    table = Table(title="Exact Duplicates", box=box.SIMPLE)
    table.add_column("#", justify="right")
    table.add_column("Record ids")
    for index, ids in enumerate(groups, 1):
        table.add_row(str(index), ", ".join(ids))
    console.print(table)
    return 0


def generate_config(args) -> int:
    manager = ConfigManager()
    if args.output:
        manager.save_template(args.output)
        console.print(f"Configuration template saved to: {args.output}")
    else:
        console.print_json(json.dumps(ConfigManager.DEFAULT_CONFIG))
    return 0


def _add_batch_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--records", required=True, help="JSON file of property records")
    parser.add_argument("--owner", help="Only records of this owner")
    parser.add_argument("--status", help="Only records with this listing status")
    parser.add_argument("--since", help="Only records created at or after this ISO timestamp")
    parser.add_argument("--limit", type=int, help="Maximum number of records to load")
    parser.add_argument("--json", action="store_true", help="Print JSON instead of tables")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="leasecore-dedupe",
        description="Find and review duplicate rental listings",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Scan a listing export and open review groups
  leasecore-dedupe scan --records listings.json --hashes hashes.json

  # Review pending groups
  leasecore-dedupe groups --status pending
  leasecore-dedupe resolve <group-id> --target prop-1 --actor admin-7
  leasecore-dedupe dismiss <group-id> --actor admin-7 --notes "different floors"
""",
    )
    parser.add_argument("-c", "--config", help="Path to configuration file")
    parser.add_argument("--db", help="Group store database path")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    scan_parser = subparsers.add_parser("scan", help="Scan records and create duplicate groups")
    _add_batch_arguments(scan_parser)
    scan_parser.add_argument("--hashes", help="JSON file of perceptual hash rows")
    scan_parser.add_argument("--threshold", type=float, help="Minimum match confidence")
    scan_parser.add_argument(
        "--include-same-owner", action="store_true", help="Also compare listings of the same owner"
    )
    scan_parser.set_defaults(handler=run_scan)

    groups_parser = subparsers.add_parser("groups", help="List duplicate groups")
    groups_parser.add_argument("--status", choices=["pending", "resolved", "dismissed"])
    groups_parser.add_argument("--json", action="store_true", help="Print JSON instead of a table")
    groups_parser.set_defaults(handler=list_groups)

    resolve_parser = subparsers.add_parser("resolve", help="Resolve a group, keeping one record")
    resolve_parser.add_argument("group_id")
    resolve_parser.add_argument("--target", required=True, help="Record id to keep")
    resolve_parser.add_argument("--actor", required=True, help="Reviewer id")
    resolve_parser.add_argument("--notes", help="Review notes")
    resolve_parser.add_argument("--records", help="Records file, enables merged-record tracking")
    resolve_parser.set_defaults(handler=resolve_group)

    dismiss_parser = subparsers.add_parser("dismiss", help="Dismiss a group as a false positive")
    dismiss_parser.add_argument("group_id")
    dismiss_parser.add_argument("--actor", required=True, help="Reviewer id")
    dismiss_parser.add_argument("--notes", help="Review notes")
    dismiss_parser.set_defaults(handler=dismiss_group)

    audit_parser = subparsers.add_parser("audit", help="Show the review audit trail")
    audit_parser.add_argument("--group", help="Only entries for this group")
    audit_parser.add_argument("--limit", type=int, default=100)
    audit_parser.add_argument("--json", action="store_true", help="Print JSON instead of a table")
    audit_parser.set_defaults(handler=show_audit)

    exact_parser = subparsers.add_parser(
        "exact-duplicates", help="Report records with identical title, street and city"
    )
    _add_batch_arguments(exact_parser)
    exact_parser.set_defaults(handler=exact_duplicates)

    config_parser = subparsers.add_parser("generate-config", help="Generate configuration template")
    config_parser.add_argument("-o", "--output", help="Save to file (default: print to stdout)")
    config_parser.set_defaults(handler=generate_config)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        return args.handler(args)
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        return 1
    except DeduplicationError as e:
        console.print(f"[red]Error:[/red] {ErrorHandler().create_user_friendly_message(e)}")
        return 1
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
