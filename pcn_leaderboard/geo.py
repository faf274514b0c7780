"""Geospatial utilities: distances, centroids and bounding boxes."""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

from . import config

EARTH_RADIUS_M: float = 6_371_000.0


@dataclass(frozen=True)
class Coordinate:
    """A WGS84 position in decimal degrees."""

    lat: float
    lon: float


def haversine_distance_meters(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance in meters between two coordinates."""

    phi1 = math.radians(a.lat)
    phi2 = math.radians(b.lat)
    d_phi = math.radians(b.lat - a.lat)
    d_lambda = math.radians(b.lon - a.lon)

    sin_lat = math.sin(d_phi / 2.0)
    sin_lon = math.sin(d_lambda / 2.0)
    value = sin_lat * sin_lat + math.cos(phi1) * math.cos(phi2) * sin_lon * sin_lon
    c = 2.0 * math.atan2(math.sqrt(value), math.sqrt(1.0 - value))
    return EARTH_RADIUS_M * c


def centroid(points: Sequence[Coordinate]) -> Coordinate:
    """Unweighted mean of the given coordinates.

    An empty sequence yields ``Coordinate(0.0, 0.0)``.
    """

    if not points:
        return Coordinate(lat=0.0, lon=0.0)

    lat_sum = 0.0
    lon_sum = 0.0
    for point in points:
        lat_sum += point.lat
        lon_sum += point.lon
    return Coordinate(lat=lat_sum / len(points), lon=lon_sum / len(points))


@dataclass(frozen=True)
class Bbox:
    west: float
    south: float
    east: float
    north: float

    @property
    def area(self) -> float:
        return abs(self.east - self.west) * abs(self.north - self.south)


def make_bbox(
    west: float,
    south: float,
    east: float,
    north: float,
    *,
    max_area: float = config.MAX_BBOX_AREA_DEG2,
) -> Bbox:
    """Build a :class:`Bbox` after checking it is finite, ordered and small enough.

    Raises:
        ValueError: If the box is non-finite, inverted or covers too large an area.
    """

    if not all(math.isfinite(value) for value in (west, south, east, north)):
        raise ValueError("bbox coordinates must be finite numbers")
    if west > east or south > north:
        raise ValueError("bbox coordinates are invalid: west must be <= east and south <= north")

    bbox = Bbox(west=west, south=south, east=east, north=north)
    if bbox.area > max_area:
        raise ValueError("bbox area exceeds the allowed limit. Please zoom in further.")
    return bbox


def parse_bbox(raw: str, *, max_area: float = config.MAX_BBOX_AREA_DEG2) -> Bbox:
    """Parse a ``west,south,east,north`` string into a validated :class:`Bbox`."""

    parts = [part.strip() for part in raw.split(",")]
    if len(parts) != 4:
        raise ValueError("bbox must contain four comma-separated numbers")
    try:
        west, south, east, north = (float(part) for part in parts)
    except ValueError as exc:
        raise ValueError("bbox must contain four comma-separated numbers") from exc
    return make_bbox(west, south, east, north, max_area=max_area)


__all__ = [
    "Bbox",
    "Coordinate",
    "EARTH_RADIUS_M",
    "centroid",
    "haversine_distance_meters",
    "make_bbox",
    "parse_bbox",
]
