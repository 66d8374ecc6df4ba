"""CLI entry point for the job source aggregator."""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime
from typing import Any

import httpx

from aggregator.core.config import Settings
from aggregator.core.db import init_db, sweep_cache_rows
from aggregator.core.errors import MalformedQueryError
from aggregator.core.schemas import AggregationResponse, RecordKind, parse_query
from aggregator.pipeline.ingest import ingest_records
from aggregator.pipeline.orchestrator import Orchestrator, export_response_json
from aggregator.platforms.registry import build_orchestrator
from aggregator.platforms.web.adapter import DEFAULT_HEADERS


def _common_options() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        default="config/settings.yaml",
        help="Path to settings YAML file (default: config/settings.yaml)",
    )
    common.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )
    return common


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    common = _common_options()
    parser = argparse.ArgumentParser(
        description="Job source aggregator - tiered search across cache, store, scrapers and AI",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    query_options = argparse.ArgumentParser(add_help=False)
    query_options.add_argument(
        "--dry-run",
        action="store_true",
        help="Show the tier plan without contacting any source",
    )
    query_options.add_argument(
        "--export",
        choices=["json"],
        help="Export results to format (json)",
    )

    # --- jobs ---
    jobs_parser = subparsers.add_parser(
        "jobs", parents=[common, query_options], help="Aggregate job postings",
    )
    jobs_parser.add_argument("keywords", nargs="+", help="Search keywords")
    jobs_parser.add_argument("--location", help="Location, e.g. 'Toronto, ON'")
    jobs_parser.add_argument(
        "--work-type",
        default="any",
        choices=["remote", "hybrid", "onsite", "any"],
    )
    jobs_parser.add_argument("--max-results", type=int, help="Maximum records returned")
    jobs_parser.add_argument("--min-acceptable", type=int, help="Stop once this many records are found")

    # --- contacts ---
    contacts_parser = subparsers.add_parser(
        "contacts", parents=[common, query_options], help="Discover contacts at a company",
    )
    contacts_parser.add_argument("--company", required=True, help="Company name")
    contacts_parser.add_argument("--website", help="Company website URL")
    contacts_parser.add_argument("--linkedin-url", help="Company LinkedIn page URL")
    contacts_parser.add_argument("--title-hint", help="Preferred role, e.g. 'recruiter'")
    contacts_parser.add_argument("--max-results", type=int)
    contacts_parser.add_argument("--min-acceptable", type=int)

    # --- ingest ---
    ingest_parser = subparsers.add_parser(
        "ingest", parents=[common], help="Load a JSON file of records into the structured store",
    )
    ingest_parser.add_argument("--file", required=True, help="JSON array of record objects")
    ingest_parser.add_argument("--kind", choices=["jobs", "contacts"], default="jobs")

    # --- cache-sweep ---
    subparsers.add_parser(
        "cache-sweep", parents=[common], help="Delete expired entries from the durable cache",
    )

    return parser.parse_args(argv)


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def build_request(args: argparse.Namespace, settings: Settings) -> tuple[RecordKind, dict[str, Any]]:
    """Turn CLI arguments into raw query fields."""
    if args.command == "jobs":
        kind = RecordKind.JOB
        data: dict[str, Any] = {
            "keywords": args.keywords,
            "location": args.location,
            "work_type": args.work_type,
            "max_results": args.max_results or settings.orchestrator.max_results,
            "min_acceptable": args.min_acceptable or settings.orchestrator.min_acceptable,
        }
    else:
        kind = RecordKind.CONTACT
        data = {
            "company_name": args.company,
            "company_website": args.website,
            "linkedin_company_url": args.linkedin_url,
            "target_title_hint": args.title_hint,
        }
        if args.max_results:
            data["max_results"] = args.max_results
        if args.min_acceptable:
            data["min_acceptable"] = args.min_acceptable
    return kind, data


def dry_run(orchestrator: Orchestrator, kind: RecordKind, data: dict[str, Any]) -> None:
    """Print the tier plan without contacting any source."""
    query = parse_query(kind, data)
    print(f"[DRY RUN] {kind.value} query, fingerprint {query.fingerprint()[:16]}")
    print(f"[DRY RUN] Need {query.min_acceptable} records, return at most {query.max_results}")
    for tier, sources in orchestrator.describe(kind).items():
        listed = ", ".join(sources) if sources else "(none configured)"
        print(f"  {tier}: {listed}")
    print(f"[DRY RUN] Cache TTL: {orchestrator.ttl_for(kind)}s")


def print_summary(response: AggregationResponse) -> None:
    print(
        f"\n{len(response.records)} records from {response.source.value}"
        f"{' (cached)' if response.cached else ''}, {response.rejected_count} rejected"
    )
    for outcome in response.outcomes:
        detail = f" - {outcome.error}" if outcome.error else ""
        print(f"  {outcome.source_id} [{outcome.tier.value}]: {outcome.status.value}, "
              f"{outcome.count} records, {outcome.duration_ms}ms{detail}")
    for r in response.records:
        rec = r.record
        label = f"{rec.title} @ {rec.company}" if rec.kind == "job" else f"{rec.name} ({rec.title})"
        print(f"  [{r.confidence:5.1f}] {label}")


async def run_query(
    settings: Settings,
    kind: RecordKind,
    data: dict[str, Any],
    export_format: str | None,
) -> None:
    """Run one aggregation with real sources."""
    conn = init_db(settings.database.path)
    try:
        async with httpx.AsyncClient(headers=DEFAULT_HEADERS) as client:
            orchestrator = build_orchestrator(settings, conn, client)
            response = await orchestrator.aggregate_request(kind, data)
    finally:
        conn.close()

    print_summary(response)
    if export_format == "json":
        print(f"\n{export_response_json(response)}")


def cmd_ingest(args: argparse.Namespace, settings: Settings) -> None:
    """Handle ingest subcommand."""
    with open(args.file) as f:
        items = json.load(f)
    if not isinstance(items, list):
        msg = f"{args.file} must contain a JSON array"
        raise ValueError(msg)
    kind = RecordKind.JOB if args.kind == "jobs" else RecordKind.CONTACT
    conn = init_db(settings.database.path)
    try:
        stored, rejected = ingest_records(conn, kind, items)
    finally:
        conn.close()
    print(f"Stored {stored} {args.kind}, rejected {rejected}.")


def cmd_cache_sweep(settings: Settings) -> None:
    """Handle cache-sweep subcommand."""
    conn = init_db(settings.database.path)
    try:
        removed = sweep_cache_rows(conn, datetime.now())
    finally:
        conn.close()
    print(f"Removed {removed} expired cache entries.")


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    setup_logging(args.verbose)

    try:
        settings = Settings.from_yaml(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    if args.command == "ingest":
        try:
            cmd_ingest(args, settings)
        except (FileNotFoundError, ValueError) as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
    elif args.command == "cache-sweep":
        cmd_cache_sweep(settings)
    else:
        kind, data = build_request(args, settings)
        try:
            if args.dry_run:
                conn = init_db(settings.database.path)
                try:
                    dry_run(build_orchestrator(settings, conn), kind, data)
                finally:
                    conn.close()
            else:
                asyncio.run(run_query(settings, kind, data, args.export))
        except MalformedQueryError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)


if __name__ == "__main__":
    main()
