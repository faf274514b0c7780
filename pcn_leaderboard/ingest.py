"""Utilities to ingest penalty charge notice data from open data endpoints."""
from __future__ import annotations

import json
import logging
import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Mapping, Optional

import requests

from . import config
from .storage import TicketDatabase
from .timeutils import isoformat_utc, parse_timestamp

logger = logging.getLogger(__name__)


class InvalidRecordError(ValueError):
    """A source record is missing a field the pipeline cannot do without."""


@dataclass
class IngestionStats:
    """Capture summary statistics for an ingestion run."""

    records_fetched: int = 0
    records_inserted: int = 0
    records_skipped: int = 0
    records_invalid: int = 0
    pages_fetched: int = 0
    latest_issued: Optional[datetime] = None
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_dict(self) -> Dict[str, object]:
        return {
            "records_fetched": self.records_fetched,
            "records_inserted": self.records_inserted,
            "records_skipped": self.records_skipped,
            "records_invalid": self.records_invalid,
            "pages_fetched": self.pages_fetched,
            "latest_issued": isoformat_utc(self.latest_issued) if self.latest_issued else None,
            "duration_seconds": int((datetime.now(timezone.utc) - self.start_time).total_seconds()),
        }


def _first(raw: Mapping[str, object], *keys: str) -> object:
    for key in keys:
        value = raw.get(key)
        if value not in (None, ""):
            return value
    return None


def _optional_int(value: object) -> Optional[int]:
    if value is None:
        return None
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        raise InvalidRecordError(f"penalty estimate {value!r} is not a finite number")
    return int(number)


def normalize_record(raw: Mapping[str, object], *, source: str, borough: str) -> dict:
    """Map a raw source record onto the ``pcn_tickets`` columns.

    Raises:
        InvalidRecordError: If the id, issue time or coordinates are missing or unparsable.
    """

    ticket_id = _first(raw, "id", "pcn", "pcn_number")
    issued_raw = _first(raw, "issuedAt", "issued_at")
    if ticket_id is None or issued_raw is None:
        raise InvalidRecordError("record is missing an id or issue time")

    try:
        issued_at = parse_timestamp(str(issued_raw))
        latitude = float(_first(raw, "lat", "latitude"))  # type: ignore[arg-type]
        longitude = float(_first(raw, "lon", "longitude"))  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise InvalidRecordError(f"record {ticket_id!r} has an invalid timestamp or coordinates") from exc
    if not (math.isfinite(latitude) and math.isfinite(longitude)):
        raise InvalidRecordError(f"record {ticket_id!r} has non-finite coordinates")

    level = _first(raw, "level")
    level = str(level).lower() if level is not None else None
    est_min_p = _optional_int(_first(raw, "estMinP", "est_min_p"))
    est_max_p = _optional_int(_first(raw, "estMaxP", "est_max_p"))
    if level in config.PENALTY_ESTIMATES_P:
        default_min, default_max = config.PENALTY_ESTIMATES_P[level]
        est_min_p = default_min if est_min_p is None else est_min_p
        est_max_p = default_max if est_max_p is None else est_max_p

    accuracy = _first(raw, "accuracy")
    accuracy = str(accuracy).lower() if accuracy is not None else "unknown"
    if accuracy not in config.ACCURACY_VALUES:
        accuracy = "unknown"

    return {
        "id": str(ticket_id),
        "source": source,
        "borough": str(_first(raw, "borough") or borough),
        "issued_at": isoformat_utc(issued_at),
        "code": _first(raw, "code", "contravention_code"),
        "description": _first(raw, "desc", "description", "contravention"),
        "level": level,
        "band": _first(raw, "band"),
        "est_min_p": est_min_p,
        "est_max_p": est_max_p,
        "street": _first(raw, "street", "street_name"),
        "accuracy": accuracy,
        "latitude": latitude,
        "longitude": longitude,
        "raw_payload": dict(raw),
    }


def load_records_file(path: Path | str) -> List[dict]:
    """Read records from a JSON array file or a newline-delimited JSON file."""

    text = Path(path).read_text(encoding="utf-8")
    stripped = text.lstrip()
    if stripped.startswith("["):
        data = json.loads(stripped)
    else:
        data = [json.loads(line) for line in text.splitlines() if line.strip()]
    if not isinstance(data, list) or not all(isinstance(item, dict) for item in data):
        raise ValueError(f"Expected a list of JSON objects in {path}")
    return data


class PcnIngestor:
    """Fetches penalty charge notices and writes new ones to the local database."""

    def __init__(
        self,
        db: TicketDatabase,
        *,
        source: str = config.DEFAULT_SOURCE_ID,
        borough: str = config.DEFAULT_BOROUGH,
        app_token: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.db = db
        self.source = source
        self.borough = borough
        self.session = session or requests.Session()
        self.app_token = app_token

    def _build_headers(self) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        if self.app_token:
            headers["X-App-Token"] = self.app_token
        return headers

    def fetch_page(
        self,
        url: str,
        *,
        limit: int,
        offset: int,
        issued_after: Optional[datetime] = None,
    ) -> List[dict]:
        params: Dict[str, str] = {
            "$limit": str(limit),
            "$offset": str(offset),
            "$order": "issued_at",
        }
        if issued_after:
            params["$where"] = f"issued_at > '{isoformat_utc(issued_after)}'"

        response = self.session.get(
            url,
            headers=self._build_headers(),
            params=params,
            timeout=config.HTTP_TIMEOUT,
        )
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, list):
            raise ValueError("Unexpected payload from source API")
        return data

    def fetch_all(
        self,
        url: str,
        *,
        page_size: int = config.DEFAULT_PAGE_SIZE,
        issued_after: Optional[datetime] = None,
        sleep_seconds: float = config.DEFAULT_SLEEP_SECONDS,
    ) -> Iterator[List[dict]]:
        offset = 0
        while True:
            page = self.fetch_page(url, limit=page_size, offset=offset, issued_after=issued_after)
            if not page:
                break
            yield page
            offset += page_size
            if sleep_seconds:
                time.sleep(sleep_seconds)

    def _prepare(
        self, page: Iterable[Mapping[str, object]], watermark: Optional[datetime], stats: IngestionStats
    ) -> List[dict]:
        batch: List[dict] = []
        for raw in page:
            try:
                record = normalize_record(raw, source=self.source, borough=self.borough)
            except InvalidRecordError as exc:
                stats.records_invalid += 1
                logger.warning("Skipping invalid record: %s", exc)
                continue

            issued_at = parse_timestamp(record["issued_at"])
            if watermark is not None and issued_at <= watermark:
                stats.records_skipped += 1
                continue
            if stats.latest_issued is None or issued_at > stats.latest_issued:
                stats.latest_issued = issued_at
            batch.append(record)
        return batch

    def ingest_pages(
        self,
        pages: Iterable[List[dict]],
        *,
        dry_run: bool = False,
        snapshot_path: Optional[str] = None,
    ) -> IngestionStats:
        """Normalize, filter and store pages of raw records.

        Records issued at or before the source watermark are skipped. Unless
        ``dry_run`` is set, the watermark then advances to the newest ticket seen.
        """

        stats = IngestionStats()
        watermark = self.db.get_watermark(self.source)
        snapshot_handle = open(snapshot_path, "w", encoding="utf-8") if snapshot_path else None
        try:
            for page in pages:
                stats.pages_fetched += 1
                stats.records_fetched += len(page)
                logger.info("Fetched %s records (page %s)", len(page), stats.pages_fetched)

                if snapshot_handle:
                    for record in page:
                        snapshot_handle.write(json.dumps(record))
                        snapshot_handle.write("\n")

                batch = self._prepare(page, watermark, stats)
                if dry_run or not batch:
                    continue
                stats.records_inserted += self.db.insert_tickets(batch)
        finally:
            if snapshot_handle:
                snapshot_handle.close()

        if not dry_run:
            self.db.set_watermark(self.source, stats.latest_issued, seen_at=datetime.now(timezone.utc))

        logger.info("Ingestion completed for %s: %s", self.source, stats.as_dict())
        return stats

    def ingest(
        self,
        url: str,
        *,
        page_size: int = config.DEFAULT_PAGE_SIZE,
        dry_run: bool = False,
        snapshot_path: Optional[str] = None,
        sleep_seconds: float = config.DEFAULT_SLEEP_SECONDS,
    ) -> IngestionStats:
        issued_after = self.db.get_watermark(self.source)
        pages = self.fetch_all(
            url,
            page_size=page_size,
            issued_after=issued_after,
            sleep_seconds=sleep_seconds,
        )
        return self.ingest_pages(pages, dry_run=dry_run, snapshot_path=snapshot_path)


def run_ingestion(
    *,
    url: Optional[str] = None,
    db_path: Optional[str] = None,
    source: str = config.DEFAULT_SOURCE_ID,
    borough: str = config.DEFAULT_BOROUGH,
    app_token: Optional[str] = None,
    page_size: int = config.DEFAULT_PAGE_SIZE,
    dry_run: bool = False,
    snapshot_path: Optional[str] = None,
    sleep_seconds: float = config.DEFAULT_SLEEP_SECONDS,
) -> IngestionStats:
    url = url or config.get_source_url()
    if not url:
        raise ValueError("No source URL given. Pass --url or set PCN_SOURCE_URL.")
    db = TicketDatabase(db_path or config.DEFAULT_DATABASE_PATH)
    db.initialize()
    ingestor = PcnIngestor(
        db, source=source, borough=borough, app_token=app_token or config.get_app_token()
    )
    return ingestor.ingest(
        url,
        page_size=page_size,
        dry_run=dry_run,
        snapshot_path=snapshot_path,
        sleep_seconds=sleep_seconds,
    )


def run_file_ingestion(
    path: Path | str,
    *,
    db_path: Optional[str] = None,
    source: str = config.DEFAULT_SOURCE_ID,
    borough: str = config.DEFAULT_BOROUGH,
    dry_run: bool = False,
) -> IngestionStats:
    db = TicketDatabase(db_path or config.DEFAULT_DATABASE_PATH)
    db.initialize()
    ingestor = PcnIngestor(db, source=source, borough=borough)
    return ingestor.ingest_pages([load_records_file(path)], dry_run=dry_run)


__all__ = [
    "IngestionStats",
    "InvalidRecordError",
    "PcnIngestor",
    "load_records_file",
    "normalize_record",
    "run_file_ingestion",
    "run_ingestion",
]
