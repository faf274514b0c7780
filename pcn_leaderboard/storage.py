"""Persistence utilities for penalty charge notice data."""
from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import closing
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Mapping, Optional

import pandas as pd

from . import config
from .geo import Bbox, Coordinate
from .sequences import TicketPoint
from .timeutils import isoformat_utc, parse_timestamp

logger = logging.getLogger(__name__)


CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS pcn_tickets (
    id TEXT PRIMARY KEY,
    source TEXT NOT NULL,
    borough TEXT NOT NULL,
    issued_at TEXT NOT NULL,
    code TEXT,
    description TEXT,
    level TEXT,
    band TEXT,
    est_min_p INTEGER,
    est_max_p INTEGER,
    street TEXT,
    accuracy TEXT,
    latitude REAL,
    longitude REAL,
    raw_payload TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_pcn_tickets_borough_issued ON pcn_tickets (borough, issued_at);
CREATE TABLE IF NOT EXISTS ingest_watermarks (
    source TEXT PRIMARY KEY,
    last_issued TEXT,
    last_seen_at TEXT NOT NULL
);
"""

TICKET_FIELDS: tuple[str, ...] = (
    "id",
    "source",
    "borough",
    "issued_at",
    "code",
    "description",
    "level",
    "band",
    "est_min_p",
    "est_max_p",
    "street",
    "accuracy",
    "latitude",
    "longitude",
)


def _filters(
    borough: Optional[str],
    since: Optional[datetime],
    until: Optional[datetime],
) -> tuple[List[str], List[object]]:
    clauses: List[str] = []
    params: List[object] = []
    if borough:
        clauses.append("borough = ?")
        params.append(borough)
    if since:
        clauses.append("issued_at >= ?")
        params.append(isoformat_utc(since))
    if until:
        clauses.append("issued_at <= ?")
        params.append(isoformat_utc(until))
    return clauses, params


class TicketDatabase:
    """A thin wrapper around SQLite operations for ticket persistence."""

    def __init__(self, path: Path | str = config.DEFAULT_DATABASE_PATH) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.path))
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        conn.row_factory = sqlite3.Row
        return conn

    def initialize(self) -> None:
        with closing(self.connect()) as conn:
            conn.executescript(CREATE_TABLES_SQL)
            conn.commit()

    def insert_tickets(self, records: Iterable[Mapping[str, object]]) -> int:
        """Insert normalized ticket records, ignoring ids that already exist.

        Returns:
            Number of rows actually inserted.
        """

        to_insert: List[List[object]] = []
        for record in records:
            row: List[object] = [record.get(field) for field in TICKET_FIELDS]
            row.append(json.dumps(record.get("raw_payload", record), default=str))
            to_insert.append(row)
        if not to_insert:
            return 0

        placeholders = ", ".join(["?"] * (len(TICKET_FIELDS) + 1))
        sql = (
            f"INSERT OR IGNORE INTO pcn_tickets ({', '.join(TICKET_FIELDS)}, raw_payload) "
            f"VALUES ({placeholders})"
        )
        with closing(self.connect()) as conn:
            before = conn.total_changes
            conn.executemany(sql, to_insert)
            conn.commit()
            inserted = conn.total_changes - before
        logger.debug("Inserted %s of %s records", inserted, len(to_insert))
        return inserted

    def get_watermark(self, source: str) -> Optional[datetime]:
        with closing(self.connect()) as conn:
            row = conn.execute(
                "SELECT last_issued FROM ingest_watermarks WHERE source = ?", (source,)
            ).fetchone()
        if row is None or row["last_issued"] is None:
            return None
        return parse_timestamp(row["last_issued"])

    def set_watermark(self, source: str, last_issued: Optional[datetime], *, seen_at: datetime) -> None:
        """Record that ``source`` was polled at ``seen_at``.

        ``last_issued`` of ``None`` only touches ``last_seen_at``.
        """

        with closing(self.connect()) as conn:
            if last_issued is None:
                conn.execute(
                    "INSERT INTO ingest_watermarks (source, last_seen_at) VALUES (?, ?) "
                    "ON CONFLICT(source) DO UPDATE SET last_seen_at = excluded.last_seen_at",
                    (source, isoformat_utc(seen_at)),
                )
            else:
                conn.execute(
                    "INSERT INTO ingest_watermarks (source, last_issued, last_seen_at) VALUES (?, ?, ?) "
                    "ON CONFLICT(source) DO UPDATE SET last_issued = excluded.last_issued, "
                    "last_seen_at = excluded.last_seen_at",
                    (source, isoformat_utc(last_issued), isoformat_utc(seen_at)),
                )
            conn.commit()

    def fetch_ticket_points(
        self,
        *,
        borough: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[TicketPoint]:
        """Return geolocated tickets ordered by borough, UTC day and issue time."""

        clauses, params = _filters(borough, since, until)
        clauses.insert(0, "latitude IS NOT NULL AND longitude IS NOT NULL")
        query = (
            "SELECT id, borough, issued_at, est_min_p, est_max_p, latitude, longitude "
            f"FROM pcn_tickets WHERE {' AND '.join(clauses)} "
            "ORDER BY borough, substr(issued_at, 1, 10), issued_at"
        )
        with closing(self.connect()) as conn:
            rows = conn.execute(query, params).fetchall()

        return [
            TicketPoint(
                id=row["id"],
                borough=row["borough"],
                issued_at=parse_timestamp(row["issued_at"]),
                est_min_p=row["est_min_p"],
                est_max_p=row["est_max_p"],
                coordinate=Coordinate(lat=row["latitude"], lon=row["longitude"]),
            )
            for row in rows
        ]

    def fetch_tickets(
        self,
        bbox: Bbox,
        *,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: int = config.DEFAULT_TICKET_LIMIT,
    ) -> List[dict]:
        """Return tickets inside ``bbox``, newest first."""

        clauses, params = _filters(None, since, until)
        clauses[:0] = ["longitude BETWEEN ? AND ?", "latitude BETWEEN ? AND ?"]
        params[:0] = [bbox.west, bbox.east, bbox.south, bbox.north]
        query = (
            f"SELECT {', '.join(TICKET_FIELDS)} FROM pcn_tickets "
            f"WHERE {' AND '.join(clauses)} ORDER BY issued_at DESC LIMIT ?"
        )
        params.append(limit)
        with closing(self.connect()) as conn:
            return [dict(row) for row in conn.execute(query, params)]

    def read_tickets_frame(
        self,
        *,
        borough: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> pd.DataFrame:
        clauses, params = _filters(borough, since, until)
        query = f"SELECT {', '.join(TICKET_FIELDS)} FROM pcn_tickets"
        if clauses:
            query += f" WHERE {' AND '.join(clauses)}"
        with closing(self.connect()) as conn:
            return pd.read_sql_query(query, conn, params=params)


__all__ = ["TicketDatabase", "TICKET_FIELDS"]
