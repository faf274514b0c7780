"""Configuration constants for the PCN leaderboard pipeline."""
from __future__ import annotations

import os
from datetime import timedelta
from pathlib import Path
from typing import Optional

# Default path for the SQLite database that stores ingested tickets
DEFAULT_DATABASE_PATH: Path = Path("data/pcn_tickets.db")

# Default batch size for paginated source APIs
DEFAULT_PAGE_SIZE: int = 5000

# Timeout (seconds) for HTTP requests to the source endpoint
HTTP_TIMEOUT: int = 60

# Default sleep duration between API requests (seconds)
DEFAULT_SLEEP_SECONDS: float = 0.25

DEFAULT_SOURCE_ID: str = "camden-open-data"
DEFAULT_BOROUGH: str = "Camden"

# Two consecutive tickets further apart than either threshold start a new sequence.
# Equality on both counts as continuous.
DISTANCE_THRESHOLD_M: float = 150.0
TIME_THRESHOLD: timedelta = timedelta(minutes=12)

OFFICER_LABEL_PREFIX: str = "Parking Officer"

# Bounding-box area limit (square degrees) for ticket map queries
MAX_BBOX_AREA_DEG2: float = 50.0

DEFAULT_TICKET_LIMIT: int = 500
MAX_TICKET_LIMIT: int = 5000

# Estimated penalty range (pence) by contravention level, used when a source
# record does not carry its own estimate.
PENALTY_ESTIMATES_P: dict[str, tuple[int, int]] = {
    "higher": (6000, 13000),
    "lower": (4000, 8000),
}

ACCURACY_VALUES = {"kerbside", "approximate", "unknown"}

DEFAULT_LEADERBOARD_SECRET: str = "local-daily-secret"
MIN_SECRET_LENGTH: int = 16


def get_source_url() -> Optional[str]:
    return os.environ.get("PCN_SOURCE_URL") or None


def get_app_token() -> Optional[str]:
    return os.environ.get("PCN_APP_TOKEN") or None


def get_mapbox_token() -> Optional[str]:
    return os.environ.get("MAPBOX_API_KEY") or None


def get_leaderboard_secret() -> str:
    """Return the secret that keys officer sequence fingerprints.

    Raises:
        ValueError: If ``LEADERBOARD_DAILY_SECRET`` is set but too short.
    """

    secret = os.environ.get("LEADERBOARD_DAILY_SECRET", DEFAULT_LEADERBOARD_SECRET)
    if len(secret) < MIN_SECRET_LENGTH:
        raise ValueError(
            f"LEADERBOARD_DAILY_SECRET must be at least {MIN_SECRET_LENGTH} characters long"
        )
    return secret
