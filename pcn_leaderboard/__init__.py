"""Parking officer activity leaderboard pipeline."""

from .cli import main as cli_main
from .geo import Bbox, Coordinate, centroid, haversine_distance_meters, make_bbox, parse_bbox
from .ingest import IngestionStats, PcnIngestor, run_file_ingestion, run_ingestion
from .leaderboard import LeaderboardQuery, fetch_officer_leaderboard, fetch_street_leaderboard
from .sequences import (
    DecoratedOfficerSequence,
    OfficerSequence,
    TicketPoint,
    build_sequences,
    decorate_sequences,
    rank_officer_sequences,
    sequence_hash,
)

__all__ = [
    "cli_main",
    "Bbox",
    "Coordinate",
    "centroid",
    "haversine_distance_meters",
    "make_bbox",
    "parse_bbox",
    "IngestionStats",
    "PcnIngestor",
    "run_file_ingestion",
    "run_ingestion",
    "LeaderboardQuery",
    "fetch_officer_leaderboard",
    "fetch_street_leaderboard",
    "DecoratedOfficerSequence",
    "OfficerSequence",
    "TicketPoint",
    "build_sequences",
    "decorate_sequences",
    "rank_officer_sequences",
    "sequence_hash",
]
