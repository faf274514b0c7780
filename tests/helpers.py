from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Optional

from pcn_leaderboard.geo import Coordinate
from pcn_leaderboard.sequences import TicketPoint

BASE_COORDINATE = Coordinate(lat=51.5, lon=-0.12)


def add_meters(coordinate: Coordinate, meters_east: float, meters_north: float) -> Coordinate:
    # rough flat-earth offset, good enough for fixtures
    meters_per_degree_lat = 111_111.0
    meters_per_degree_lon = math.cos(math.radians(coordinate.lat)) * meters_per_degree_lat
    return Coordinate(
        lat=coordinate.lat + meters_north / meters_per_degree_lat,
        lon=coordinate.lon + meters_east / meters_per_degree_lon,
    )


def utc(text: str) -> datetime:
    return datetime.fromisoformat(text).replace(tzinfo=timezone.utc)


def make_point(
    *,
    id: str = "t",
    borough: str = "Camden",
    issued_at: Optional[datetime] = None,
    est_min_p: Optional[int] = 3000,
    est_max_p: Optional[int] = 6000,
    coordinate: Coordinate = BASE_COORDINATE,
) -> TicketPoint:
    return TicketPoint(
        id=id,
        borough=borough,
        issued_at=issued_at or utc("2024-01-01T09:00:00"),
        est_min_p=est_min_p,
        est_max_p=est_max_p,
        coordinate=coordinate,
    )
