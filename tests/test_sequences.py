"""Tests for officer sequence construction, fingerprinting and ranking."""
import math
from dataclasses import FrozenInstanceError, replace
from datetime import datetime, timedelta, timezone

import pytest

from pcn_leaderboard import config
from pcn_leaderboard.geo import Coordinate, haversine_distance_meters
from pcn_leaderboard.sequences import (
    OfficerSequence,
    build_sequences,
    decorate_sequences,
    rank_officer_sequences,
    sequence_hash,
)

from .helpers import BASE_COORDINATE, add_meters, make_point, utc

KNOWN_DIGEST = "b6842b1d7a28f75bb989704bb13ee7909274764b3a07343b13ae898fe2c9b71f"


def make_sequence(**overrides) -> OfficerSequence:
    values = dict(
        borough="Camden",
        day="2024-01-01",
        points=[BASE_COORDINATE],
        tickets=2,
        est_min_p=2000,
        est_max_p=4000,
        first_seen=utc("2024-01-01T09:00:00"),
        last_seen=utc("2024-01-01T09:05:00"),
    )
    values.update(overrides)
    return OfficerSequence(**values)


class TestBuildSequences:
    def test_groups_contiguous_tickets(self):
        points = [
            make_point(id="a"),
            make_point(id="b", issued_at=utc("2024-01-01T09:05:00")),
            make_point(
                id="c",
                issued_at=utc("2024-01-01T09:06:00"),
                coordinate=add_meters(BASE_COORDINATE, config.DISTANCE_THRESHOLD_M - 1, 0),
            ),
        ]

        sequences = build_sequences(points)

        assert len(sequences) == 1
        sequence = sequences[0]
        assert sequence.borough == "Camden"
        assert sequence.day == "2024-01-01"
        assert sequence.tickets == 3
        assert sequence.est_min_p == 9000
        assert sequence.est_max_p == 18000
        assert sequence.first_seen == points[0].issued_at
        assert sequence.last_seen == points[2].issued_at
        assert sequence.points == [p.coordinate for p in points]

    def test_empty_input(self):
        assert build_sequences([]) == []

    def test_borough_change_starts_new_sequence(self):
        points = [
            make_point(borough="Camden"),
            make_point(borough="Hackney", issued_at=utc("2024-01-01T09:01:00")),
        ]

        sequences = build_sequences(points)

        assert [s.borough for s in sequences] == ["Camden", "Hackney"]

    def test_borough_match_is_case_sensitive(self):
        points = [make_point(borough="Camden"), make_point(borough="camden")]
        assert len(build_sequences(points)) == 2

    def test_time_gap_over_twelve_minutes_splits(self):
        points = [make_point(), make_point(issued_at=utc("2024-01-01T09:13:01"))]
        assert len(build_sequences(points)) == 2

    def test_time_gap_of_exactly_twelve_minutes_continues(self):
        points = [make_point(), make_point(issued_at=utc("2024-01-01T09:12:00"))]
        assert len(build_sequences(points)) == 1

    def test_time_gap_one_millisecond_over_splits(self):
        late = utc("2024-01-01T09:12:00") + timedelta(milliseconds=1)
        points = [make_point(), make_point(issued_at=late)]
        assert len(build_sequences(points)) == 2

    def test_time_gap_measured_from_last_ticket(self):
        points = [
            make_point(issued_at=utc("2024-01-01T09:00:00")),
            make_point(issued_at=utc("2024-01-01T09:10:00")),
            make_point(issued_at=utc("2024-01-01T09:20:00")),
        ]
        assert len(build_sequences(points)) == 1

    def test_midnight_splits_even_when_close_in_time(self):
        points = [
            make_point(issued_at=utc("2024-01-01T23:58:00")),
            make_point(issued_at=utc("2024-01-02T00:01:00")),
        ]

        sequences = build_sequences(points)

        assert [s.day for s in sequences] == ["2024-01-01", "2024-01-02"]

    def test_day_uses_utc_calendar(self):
        bst = timezone(timedelta(hours=1))
        point = make_point(issued_at=datetime(2024, 6, 2, 0, 30, tzinfo=bst))
        assert build_sequences([point])[0].day == "2024-06-01"

    def test_naive_timestamps_are_treated_as_utc(self):
        points = [
            make_point(issued_at=datetime(2024, 1, 1, 9, 0)),
            make_point(issued_at=datetime(2024, 1, 1, 9, 5)),
        ]
        sequences = build_sequences(points)
        assert len(sequences) == 1
        assert sequences[0].day == "2024-01-01"

    def test_distance_over_threshold_splits(self):
        far = add_meters(BASE_COORDINATE, config.DISTANCE_THRESHOLD_M + 50, 0)
        points = [make_point(), make_point(coordinate=far, issued_at=utc("2024-01-01T09:02:00"))]
        assert len(build_sequences(points)) == 2

    def test_distance_boundary_is_inclusive(self):
        moved = add_meters(BASE_COORDINATE, 150, 0)
        distance = haversine_distance_meters(BASE_COORDINATE, moved)
        points = [make_point(), make_point(coordinate=moved, issued_at=utc("2024-01-01T09:01:00"))]

        assert len(build_sequences(points, distance_threshold_m=distance)) == 1
        assert len(build_sequences(points, distance_threshold_m=math.nextafter(distance, 0.0))) == 2

    def test_distance_measured_from_last_point_not_first(self):
        points = [
            make_point(issued_at=utc("2024-01-01T09:00:00"), coordinate=BASE_COORDINATE),
            make_point(issued_at=utc("2024-01-01T09:01:00"), coordinate=add_meters(BASE_COORDINATE, 100, 0)),
            make_point(issued_at=utc("2024-01-01T09:02:00"), coordinate=add_meters(BASE_COORDINATE, 200, 0)),
            make_point(issued_at=utc("2024-01-01T09:03:00"), coordinate=add_meters(BASE_COORDINATE, 300, 0)),
        ]
        assert len(build_sequences(points)) == 1

    def test_missing_estimates_count_as_zero(self):
        points = [
            make_point(est_min_p=None, est_max_p=None),
            make_point(est_min_p=1000, est_max_p=None, issued_at=utc("2024-01-01T09:01:00")),
        ]

        sequence = build_sequences(points)[0]

        assert sequence.est_min_p == 1000
        assert sequence.est_max_p == 0

    def test_partition_preserves_every_point_in_order(self):
        points = []
        moment = utc("2024-01-01T08:00:00")
        for index in range(30):
            moment += timedelta(minutes=(5, 14, 3)[index % 3])
            offset = (0, 40, 400, 10)[index % 4] * index
            points.append(
                make_point(
                    id=f"t{index}",
                    borough="Camden" if index < 20 else "Islington",
                    issued_at=moment,
                    coordinate=add_meters(BASE_COORDINATE, offset, 0),
                )
            )

        sequences = build_sequences(points)

        assert sum(s.tickets for s in sequences) == len(points)
        assert [c for s in sequences for c in s.points] == [p.coordinate for p in points]
        assert all(s.tickets == len(s.points) for s in sequences)

    def test_calls_are_independent(self):
        points = [make_point(), make_point(issued_at=utc("2024-01-01T09:05:00"))]
        first = build_sequences(points)
        first[0].points.append(Coordinate(0.0, 0.0))

        assert build_sequences(points)[0].points == [BASE_COORDINATE, BASE_COORDINATE]


class TestSequenceHash:
    def test_known_digest(self):
        assert sequence_hash(make_sequence(), "secret") == KNOWN_DIGEST

    def test_deterministic_and_keyed(self):
        sequence = build_sequences([make_point(), make_point(issued_at=utc("2024-01-01T09:05:00"))])[0]

        assert sequence_hash(sequence, "secret") == sequence_hash(sequence, "secret")
        assert sequence_hash(sequence, "secret") != sequence_hash(sequence, "another")

    def test_borough_is_lowercased(self):
        assert sequence_hash(make_sequence(borough="CAMDEN"), "secret") == KNOWN_DIGEST

    def test_timezone_representation_does_not_matter(self):
        bst = timezone(timedelta(hours=1))
        sequence = make_sequence(
            first_seen=datetime(2024, 1, 1, 10, 0, tzinfo=bst),
            last_seen=datetime(2024, 1, 1, 10, 5, tzinfo=bst),
        )
        assert sequence_hash(sequence, "secret") == KNOWN_DIGEST

    @pytest.mark.parametrize(
        "changes",
        [
            {"borough": "Hackney"},
            {"day": "2024-01-02"},
            {"first_seen": utc("2024-01-01T09:00:01")},
            {"last_seen": utc("2024-01-01T09:05:00.001000")},
            {"tickets": 3},
        ],
    )
    def test_each_field_changes_digest(self, changes):
        assert sequence_hash(replace(make_sequence(), **changes), "secret") != KNOWN_DIGEST

    def test_points_and_estimates_do_not_affect_digest(self):
        sequence = make_sequence(points=[Coordinate(1.0, 1.0)], est_min_p=1, est_max_p=2)
        assert sequence_hash(sequence, "secret") == KNOWN_DIGEST

    def test_digest_is_lowercase_hex(self):
        digest = sequence_hash(make_sequence(), "secret")
        assert len(digest) == 64
        assert digest == digest.lower()
        int(digest, 16)


class TestDecorateSequences:
    def test_sorts_by_tickets_then_estimated_fines(self):
        sequences = [
            make_sequence(tickets=2, est_min_p=2000, est_max_p=4000, last_seen=utc("2024-01-01T09:10:00")),
            make_sequence(tickets=2, est_min_p=2500, est_max_p=4500, last_seen=utc("2024-01-01T09:05:00")),
            make_sequence(tickets=3, est_min_p=3000, est_max_p=5000, last_seen=utc("2024-01-01T09:15:00")),
        ]

        decorated = decorate_sequences(sequences, "secret")

        assert [s.rank for s in decorated] == [1, 2, 3]
        assert [s.tickets for s in decorated] == [3, 2, 2]
        assert [s.est_max_p for s in decorated] == [5000, 4500, 4000]
        assert [s.label for s in decorated] == [
            "Parking Officer 1",
            "Parking Officer 2",
            "Parking Officer 3",
        ]

    def test_hash_breaks_remaining_ties(self):
        sequences = [
            make_sequence(last_seen=utc(f"2024-01-01T09:0{minute}:00")) for minute in range(1, 8)
        ]

        decorated = decorate_sequences(sequences, "secret")

        hashes = [s.hash for s in decorated]
        assert hashes == sorted(hashes)
        assert len(set(hashes)) == len(hashes)

    def test_ranks_are_a_permutation(self):
        sequences = [make_sequence(tickets=t, est_max_p=e) for t, e in [(1, 0), (5, 10), (5, 10), (2, 99), (1, 1)]]
        sequences[2] = replace(sequences[2], day="2024-01-02")

        decorated = decorate_sequences(sequences, "secret")

        assert sorted(s.rank for s in decorated) == list(range(1, len(sequences) + 1))
        keys = [(-s.tickets, -s.est_max_p, s.hash) for s in decorated]
        assert keys == sorted(keys)

    def test_attaches_centroid_and_hash(self):
        sequence = make_sequence(points=[Coordinate(51.0, -0.1), Coordinate(52.0, -0.3)])

        decorated = decorate_sequences([sequence], "secret")[0]

        assert decorated.centroid.lat == pytest.approx(51.5)
        assert decorated.centroid.lon == pytest.approx(-0.2)
        assert decorated.hash == sequence_hash(sequence, "secret")

    def test_output_is_read_only_snapshot(self):
        sequence = make_sequence()
        decorated = decorate_sequences([sequence], "secret")[0]

        assert decorated.points == (BASE_COORDINATE,)
        assert not hasattr(decorated, "extend")
        with pytest.raises(FrozenInstanceError):
            decorated.rank = 99

        sequence.extend(make_point(issued_at=utc("2024-01-01T09:05:00")))
        assert decorated.points == (BASE_COORDINATE,)
        assert decorated.tickets == 2

    def test_repeated_calls_are_identical(self):
        sequences = [make_sequence(tickets=t) for t in (1, 2, 2, 3)]
        assert decorate_sequences(sequences, "secret") == decorate_sequences(sequences, "secret")

    def test_empty(self):
        assert decorate_sequences([], "secret") == []


def test_rank_officer_sequences_composes_build_and_decorate():
    points = [
        make_point(issued_at=utc("2024-01-01T09:00:00")),
        make_point(issued_at=utc("2024-01-01T09:05:00")),
        make_point(borough="Hackney", issued_at=utc("2024-01-01T10:00:00")),
    ]

    ranked = rank_officer_sequences(points, "secret")

    assert [(s.rank, s.borough, s.tickets) for s in ranked] == [(1, "Camden", 2), (2, "Hackney", 1)]
