from __future__ import annotations

import pytest

from pcn_leaderboard.storage import TicketDatabase


@pytest.fixture
def db(tmp_path) -> TicketDatabase:
    database = TicketDatabase(tmp_path / "tickets.db")
    database.initialize()
    return database


@pytest.fixture
def raw_records() -> list[dict]:
    return [
        {
            "id": "camden-2024-0001",
            "issuedAt": "2024-02-01T08:12:00Z",
            "code": "01",
            "desc": "Parked in a restricted street during prescribed hours",
            "level": "higher",
            "band": "A",
            "estMinP": 6000,
            "estMaxP": 13000,
            "street": "Camden High St",
            "accuracy": "kerbside",
            "lat": 51.54123,
            "lon": -0.14012,
        },
        {
            "id": "camden-2024-0002",
            "issuedAt": "2024-02-01T08:15:00Z",
            "code": "12",
            "desc": "Parked in a residents or shared use parking place without clearly displaying a valid permit",
            "level": "higher",
            "street": "Camden High St",
            "accuracy": "approximate",
            "lat": 51.54130,
            "lon": -0.14020,
        },
        {
            "id": "camden-2024-0003",
            "issuedAt": "2024-02-01T09:45:00Z",
            "code": "05",
            "desc": "Parked after the expiry of paid for time",
            "level": "lower",
            "band": "B",
            "street": "Eversholt St",
            "accuracy": "kerbside",
            "lat": 51.53421,
            "lon": -0.13452,
        },
    ]
