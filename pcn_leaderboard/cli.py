"""Command line interface for the PCN leaderboard pipeline."""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from . import config
from .geo import make_bbox
from .ingest import run_file_ingestion, run_ingestion
from .leaderboard import (
    LeaderboardQuery,
    fetch_officer_leaderboard,
    fetch_street_leaderboard,
    officer_leaderboard_frame,
    officer_leaderboard_payload,
    street_leaderboard_payload,
    write_frame,
)
from .storage import TicketDatabase
from .timeutils import parse_timestamp

logger = logging.getLogger(__name__)

COMMANDS = ["ingest", "ingest-file", "officers", "streets", "tickets"]


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Parking officer activity leaderboard pipeline")
    parser.add_argument("command", choices=COMMANDS, help="Pipeline stage to execute")
    parser.add_argument("--db", dest="db_path", default=str(config.DEFAULT_DATABASE_PATH), help="SQLite database path")
    parser.add_argument("--url", dest="url", default=None, help="Source endpoint (defaults to $PCN_SOURCE_URL)")
    parser.add_argument("--app-token", dest="app_token", default=None, help="Source API app token (optional)")
    parser.add_argument("--source", dest="source", default=config.DEFAULT_SOURCE_ID, help="Source identifier used for watermarks")
    parser.add_argument("--input", dest="input_path", default=None, help="JSON or NDJSON file for ingest-file")
    parser.add_argument("--page-size", dest="page_size", type=int, default=config.DEFAULT_PAGE_SIZE, help="Number of records per API page")
    parser.add_argument("--dry-run", dest="dry_run", action="store_true", help="Fetch data without writing to the database")
    parser.add_argument("--snapshot", dest="snapshot_path", default=None, help="Optional path to write newline-delimited JSON snapshot")
    parser.add_argument("--sleep", dest="sleep_seconds", type=float, default=config.DEFAULT_SLEEP_SECONDS, help="Sleep duration between API requests")
    parser.add_argument("--borough", dest="borough", default=None, help="Borough filter (or default borough when ingesting)")
    parser.add_argument("--since", dest="since", default=None, help="Inclusive lower bound on issue time (ISO 8601)")
    parser.add_argument("--until", dest="until", default=None, help="Inclusive upper bound on issue time (ISO 8601)")
    parser.add_argument(
        "--bbox",
        dest="bbox",
        nargs=4,
        type=float,
        default=None,
        metavar=("WEST", "SOUTH", "EAST", "NORTH"),
        help="Bounding box for the tickets command",
    )
    parser.add_argument("--limit", dest="limit", type=int, default=config.DEFAULT_TICKET_LIMIT, help="Maximum tickets returned by the tickets command")
    parser.add_argument("--output", dest="output_path", default=None, help="Write results to .json, .csv or .parquet instead of stdout")
    parser.add_argument("--verbose", dest="verbose", action="store_true", help="Enable verbose logging")
    return parser.parse_args(argv)


def _build_query(args: argparse.Namespace) -> LeaderboardQuery:
    return LeaderboardQuery(
        borough=args.borough,
        since=parse_timestamp(args.since) if args.since else None,
        until=parse_timestamp(args.until) if args.until else None,
    )


def _emit(payload: dict, output_path: Optional[str]) -> None:
    text = json.dumps(payload, indent=2)
    if output_path:
        Path(output_path).write_text(text + "\n", encoding="utf-8")
    else:
        print(text)


def _run(args: argparse.Namespace) -> int:
    if args.command == "ingest":
        run_ingestion(
            url=args.url,
            db_path=args.db_path,
            source=args.source,
            borough=args.borough or config.DEFAULT_BOROUGH,
            app_token=args.app_token,
            page_size=args.page_size,
            dry_run=args.dry_run,
            snapshot_path=args.snapshot_path,
            sleep_seconds=args.sleep_seconds,
        )
        return 0

    if args.command == "ingest-file":
        if not args.input_path:
            raise ValueError("ingest-file requires --input")
        run_file_ingestion(
            args.input_path,
            db_path=args.db_path,
            source=args.source,
            borough=args.borough or config.DEFAULT_BOROUGH,
            dry_run=args.dry_run,
        )
        return 0

    db = TicketDatabase(args.db_path)
    db.initialize()

    if args.command == "officers":
        query = _build_query(args)
        rows = fetch_officer_leaderboard(db, query, secret=config.get_leaderboard_secret())
        if args.output_path and Path(args.output_path).suffix in {".csv", ".parquet"}:
            write_frame(officer_leaderboard_frame(rows), args.output_path)
        else:
            _emit(officer_leaderboard_payload(rows, query), args.output_path)
        return 0

    if args.command == "streets":
        query = _build_query(args)
        frame = fetch_street_leaderboard(db, query)
        if args.output_path and Path(args.output_path).suffix in {".csv", ".parquet"}:
            write_frame(frame, args.output_path)
        else:
            _emit(street_leaderboard_payload(frame, query), args.output_path)
        return 0

    if args.command == "tickets":
        if not args.bbox:
            raise ValueError("tickets requires --bbox")
        if not 1 <= args.limit <= config.MAX_TICKET_LIMIT:
            raise ValueError(f"--limit must be between 1 and {config.MAX_TICKET_LIMIT}")
        query = _build_query(args)
        tickets = db.fetch_tickets(make_bbox(*args.bbox), since=query.since, until=query.until, limit=args.limit)
        _emit({"data": tickets, "meta": {"count": len(tickets), **query.as_meta()}}, args.output_path)
        return 0

    raise ValueError(f"Unsupported command: {args.command}")


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    _configure_logging(args.verbose)

    try:
        return _run(args)
    except (ValueError, OSError) as exc:
        logger.error("%s", exc)
        return 2


if __name__ == "__main__":
    sys.exit(main())
