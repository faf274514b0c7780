"""Module entry point: python -m pcn_leaderboard ..."""

from __future__ import annotations

from pcn_leaderboard.cli import main


if __name__ == "__main__":
    raise SystemExit(main())
