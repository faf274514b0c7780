"""Officer sequence construction and ranking.

Tickets are grouped into inferred patrol runs with a single forward pass:
consecutive points stay in the same run while they share a borough and UTC
day and are within the time and distance thresholds of the previous ticket.
Runs are then fingerprinted with a secret-keyed SHA-256 digest and ranked.

The fingerprint only exists to give a stable, non-identifying tie-break and
display order. Its secret makes it harder to reverse a label back to a real
date and time; it has no bearing on ranking correctness and is not a
credential.
"""
from __future__ import annotations

import hashlib
from dataclasses import dataclass, fields
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence, Tuple

from . import config
from .geo import Coordinate, centroid, haversine_distance_meters
from .timeutils import isoformat_utc, to_utc, utc_day


@dataclass(frozen=True)
class TicketPoint:
    """A single geolocated ticket as consumed by the sequence engine."""

    id: str
    borough: str
    issued_at: datetime
    est_min_p: Optional[int]
    est_max_p: Optional[int]
    coordinate: Coordinate


@dataclass
class OfficerSequence:
    """A contiguous run of tickets attributed to one (unknown) officer."""

    borough: str
    day: str
    points: List[Coordinate]
    tickets: int
    est_min_p: int
    est_max_p: int
    first_seen: datetime
    last_seen: datetime

    @classmethod
    def start(cls, point: TicketPoint, day: str) -> "OfficerSequence":
        return cls(
            borough=point.borough,
            day=day,
            points=[point.coordinate],
            tickets=1,
            est_min_p=point.est_min_p or 0,
            est_max_p=point.est_max_p or 0,
            first_seen=point.issued_at,
            last_seen=point.issued_at,
        )

    def extend(self, point: TicketPoint) -> None:
        self.points.append(point.coordinate)
        self.tickets += 1
        self.est_min_p += point.est_min_p or 0
        self.est_max_p += point.est_max_p or 0
        self.last_seen = point.issued_at


@dataclass(frozen=True)
class DecoratedOfficerSequence:
    """A ranked, read-only snapshot of an :class:`OfficerSequence`."""

    borough: str
    day: str
    points: Tuple[Coordinate, ...]
    tickets: int
    est_min_p: int
    est_max_p: int
    first_seen: datetime
    last_seen: datetime
    centroid: Coordinate
    hash: str
    rank: int
    label: str


def _continues(
    sequence: OfficerSequence,
    point: TicketPoint,
    day: str,
    *,
    distance_threshold_m: float,
    time_threshold: timedelta,
) -> bool:
    if sequence.borough != point.borough or sequence.day != day:
        return False
    if to_utc(point.issued_at) - to_utc(sequence.last_seen) > time_threshold:
        return False
    return haversine_distance_meters(sequence.points[-1], point.coordinate) <= distance_threshold_m


def build_sequences(
    points: Iterable[TicketPoint],
    *,
    distance_threshold_m: float = config.DISTANCE_THRESHOLD_M,
    time_threshold: timedelta = config.TIME_THRESHOLD,
) -> List[OfficerSequence]:
    """Partition tickets into officer sequences.

    Args:
        points: Tickets sorted by borough, UTC day and issue time. The order is
            trusted, not checked; unsorted input yields wrong splits.
        distance_threshold_m: Largest gap in meters from the previous ticket
            that still continues a sequence.
        time_threshold: Largest gap from the previous ticket's issue time that
            still continues a sequence.

    Returns:
        Sequences in the order their first ticket appeared.
    """

    sequences: List[OfficerSequence] = []
    current: Optional[OfficerSequence] = None

    for point in points:
        day = utc_day(point.issued_at)
        if current is not None and _continues(
            current,
            point,
            day,
            distance_threshold_m=distance_threshold_m,
            time_threshold=time_threshold,
        ):
            current.extend(point)
            continue

        current = OfficerSequence.start(point, day)
        sequences.append(current)

    return sequences


def sequence_hash(sequence: OfficerSequence, secret: str) -> str:
    """Secret-keyed SHA-256 fingerprint of a sequence, as lowercase hex."""

    components = [
        secret,
        sequence.borough.lower(),
        sequence.day,
        isoformat_utc(sequence.first_seen),
        isoformat_utc(sequence.last_seen),
        str(sequence.tickets),
    ]
    return hashlib.sha256("|".join(components).encode("utf-8")).hexdigest()


def decorate_sequences(
    sequences: Sequence[OfficerSequence], secret: str
) -> List[DecoratedOfficerSequence]:
    """Rank sequences and attach centroid, fingerprint, rank and label.

    Ordering is by ticket count descending, then summed maximum estimate
    descending, then fingerprint ascending, which makes it a total order for a
    given secret.
    """

    keyed = [(sequence, sequence_hash(sequence, secret)) for sequence in sequences]
    keyed.sort(key=lambda item: (-item[0].tickets, -item[0].est_max_p, item[1]))

    decorated: List[DecoratedOfficerSequence] = []
    for index, (sequence, digest) in enumerate(keyed):
        rank = index + 1
        values = {field.name: getattr(sequence, field.name) for field in fields(OfficerSequence)}
        values["points"] = tuple(sequence.points)
        decorated.append(
            DecoratedOfficerSequence(
                **values,
                centroid=centroid(sequence.points),
                hash=digest,
                rank=rank,
                label=f"{config.OFFICER_LABEL_PREFIX} {rank}",
            )
        )
    return decorated


def rank_officer_sequences(points: Iterable[TicketPoint], secret: str) -> List[DecoratedOfficerSequence]:
    return decorate_sequences(build_sequences(points), secret)


__all__ = [
    "DecoratedOfficerSequence",
    "OfficerSequence",
    "TicketPoint",
    "build_sequences",
    "decorate_sequences",
    "rank_officer_sequences",
    "sequence_hash",
]
