"""Officer and street leaderboards built from stored tickets."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pandas as pd

from .sequences import DecoratedOfficerSequence, build_sequences, decorate_sequences
from .storage import TicketDatabase
from .timeutils import isoformat_utc

logger = logging.getLogger(__name__)

OFFICER_COLUMNS = [
    "rank",
    "label",
    "borough",
    "day",
    "tickets",
    "est_min_p",
    "est_max_p",
    "first_seen",
    "last_seen",
    "centroid_lat",
    "centroid_lon",
]

STREET_COLUMNS = ["rank", "street", "borough", "tickets", "est_min_p", "est_max_p"]


@dataclass(frozen=True)
class LeaderboardQuery:
    """Optional borough and time window filters shared by both leaderboards."""

    borough: Optional[str] = None
    since: Optional[datetime] = None
    until: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.borough is not None and not self.borough.strip():
            raise ValueError("`borough` must not be empty")
        if self.since and self.until and self.since > self.until:
            raise ValueError("`since` must be earlier than `until`")

    def as_meta(self) -> Dict[str, Optional[str]]:
        return {
            "borough": self.borough,
            "since": isoformat_utc(self.since) if self.since else None,
            "until": isoformat_utc(self.until) if self.until else None,
        }


def fetch_officer_leaderboard(
    db: TicketDatabase, query: LeaderboardQuery, *, secret: str
) -> List[DecoratedOfficerSequence]:
    points = db.fetch_ticket_points(borough=query.borough, since=query.since, until=query.until)
    sequences = build_sequences(points)
    logger.info("Built %s officer sequences from %s tickets", len(sequences), len(points))
    if not sequences:
        logger.warning("No geolocated tickets match %s", query.as_meta())
    return decorate_sequences(sequences, secret)


def officer_leaderboard_payload(
    rows: Sequence[DecoratedOfficerSequence], query: LeaderboardQuery
) -> Dict[str, object]:
    """Shape ranked sequences for presentation.

    Only rank, label, borough, centroid, ticket count, activity window and
    estimated penalty sums leave this function; fingerprints and raw points
    stay internal.
    """

    data = [
        {
            "rank": row.rank,
            "label": row.label,
            "borough": row.borough,
            "centroid": {"lat": row.centroid.lat, "lon": row.centroid.lon},
            "tickets": row.tickets,
            "activity": {
                "firstSeen": isoformat_utc(row.first_seen),
                "lastSeen": isoformat_utc(row.last_seen),
            },
            "estimatedPenaltyPence": {"min": row.est_min_p, "max": row.est_max_p},
        }
        for row in rows
    ]
    return {"data": data, "meta": {"count": len(data), **query.as_meta()}}


def officer_leaderboard_frame(rows: Sequence[DecoratedOfficerSequence]) -> pd.DataFrame:
    records = [
        {
            "rank": row.rank,
            "label": row.label,
            "borough": row.borough,
            "day": row.day,
            "tickets": row.tickets,
            "est_min_p": row.est_min_p,
            "est_max_p": row.est_max_p,
            "first_seen": isoformat_utc(row.first_seen),
            "last_seen": isoformat_utc(row.last_seen),
            "centroid_lat": row.centroid.lat,
            "centroid_lon": row.centroid.lon,
        }
        for row in rows
    ]
    return pd.DataFrame.from_records(records, columns=OFFICER_COLUMNS)


def fetch_street_leaderboard(db: TicketDatabase, query: LeaderboardQuery) -> pd.DataFrame:
    df = db.read_tickets_frame(borough=query.borough, since=query.since, until=query.until)
    df = df[df["street"].notna() & (df["street"].astype(str).str.strip() != "")].copy()
    if df.empty:
        logger.warning("No tickets with a street match %s", query.as_meta())
        return pd.DataFrame(columns=STREET_COLUMNS)

    for column in ("est_min_p", "est_max_p"):
        df[column] = pd.to_numeric(df[column], errors="coerce").fillna(0).astype(int)

    grouped = (
        df.groupby(["street", "borough"])
        .agg(
            tickets=("id", "count"),
            est_min_p=("est_min_p", "sum"),
            est_max_p=("est_max_p", "sum"),
        )
        .reset_index()
        .sort_values(by=["tickets", "est_max_p", "street"], ascending=[False, False, True], kind="mergesort")
        .reset_index(drop=True)
    )
    grouped.insert(0, "rank", range(1, len(grouped) + 1))
    return grouped[STREET_COLUMNS]


def street_leaderboard_payload(frame: pd.DataFrame, query: LeaderboardQuery) -> Dict[str, object]:
    data = [
        {
            "rank": int(row.rank),
            "street": row.street,
            "borough": row.borough,
            "tickets": int(row.tickets),
            "estimatedPenaltyPence": {"min": int(row.est_min_p), "max": int(row.est_max_p)},
        }
        for row in frame.itertuples(index=False)
    ]
    return {"data": data, "meta": {"count": len(data), **query.as_meta()}}


def write_frame(frame: pd.DataFrame, output_path: Path | str) -> Path:
    """Write ``frame`` as parquet when the suffix is ``.parquet``, otherwise as CSV."""

    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix == ".parquet":
        frame.to_parquet(path, index=False)
    else:
        frame.to_csv(path, index=False)
    logger.info("Wrote leaderboard to %s (%s rows)", path, len(frame))
    return path


__all__ = [
    "LeaderboardQuery",
    "fetch_officer_leaderboard",
    "fetch_street_leaderboard",
    "officer_leaderboard_frame",
    "officer_leaderboard_payload",
    "street_leaderboard_payload",
    "write_frame",
]
