"""
fuelinst/client.py

Fetch the current FUELINST batch from the configured data source.

Responsibilities
----------------
- Perform HTTP GET requests with a bounded timeout, a custom User-Agent,
  and simple exponential backoff retries for transient failures.
- Read local files directly when the data source is a path.
- Parse either the BMR CSV format (HDR/.../FTR) or the Elexon JSON stream
  format (one object per fuel per time slot) into FUELINST rows.

Environment Variables
---------------------
FUELINST_HTTP_TIMEOUT
    Per-request timeout in seconds. Defaults to 30.

Notes
-----
- Every failure to obtain a usable batch surfaces as `FeedError`; the
  orchestrator then falls back to the cached summary.
- JSON stream records look like
  {"startTime": "2024-02-12T17:45:00Z", "settlementDate": "2024-02-12",
   "settlementPeriod": 36, "fuelType": "BIOMASS", "generation": 2249}.
"""

from __future__ import annotations

import json
import logging
import os
import time
from collections.abc import Iterable
from datetime import timezone
from pathlib import Path

import requests
from dateutil import parser as dtp

from .errors import FeedError, RowError
from .rows import FUELINST_TYPE, Row, format_timestamp, fuel_columns, parse_bmr_csv

logger = logging.getLogger(__name__)

HTTP_TIMEOUT = int(os.getenv("FUELINST_HTTP_TIMEOUT", "30"))  # seconds
USER_AGENT = "fuelinst/0.1 (+https://github.com/)"
MAX_RETRIES = 4  # total attempts including the first try


def fetch_text(url: str) -> str:
    """Return the body at `url`, retrying transient HTTP failures.

    Args:
        url: An http(s) URL, or a local filesystem path.

    Returns:
        str: The decoded response body.

    Raises:
        requests.RequestException: If all retry attempts fail (the last
            exception is re-raised).
        OSError: If a local file cannot be read.
    """
    if not url.startswith(("http://", "https://")):
        return Path(url.removeprefix("file://")).read_text(encoding="utf-8")

    headers = {"User-Agent": USER_AGENT}
    for attempt in range(MAX_RETRIES):
        try:
            r = requests.get(url, headers=headers, timeout=HTTP_TIMEOUT)
            r.raise_for_status()
            return r.text
        except requests.RequestException as e:
            if attempt == MAX_RETRIES - 1:
                raise
            logger.warning("Fetch of %s failed (%s); retrying", url, e)
            # Exponential backoff: 1, 2, 4... seconds between retries.
            time.sleep(2**attempt)

    raise RuntimeError("Unreachable")


def rows_from_stream(records: Iterable[dict], template: str) -> list[Row]:
    """Rebuild CSV-style FUELINST rows from JSON stream records.

    Records sharing a `startTime` form one row; the row follows `template`,
    with fuels absent from the stream left empty. Times without an offset
    are taken as UTC.

    Args:
        records: Decoded JSON objects, one per fuel per time slot.
        template: Positional column template for the output rows.

    Returns:
        list[Row]: Rows ordered by time.

    Raises:
        FeedError: If a record lacks a required field.
    """
    names = template.split(",")
    fuels = set(fuel_columns(template))
    slots: dict[int, dict] = {}
    for rec in records:
        try:
            start = dtp.isoparse(rec["startTime"])
            if start.tzinfo is None:
                start = start.replace(tzinfo=timezone.utc)
            ts = int(start.timestamp() * 1000)
            slot = slots.setdefault(ts, {
                "date": str(rec.get("settlementDate", "")).replace("-", ""),
                "settlementperiod": str(rec["settlementPeriod"]),
                "fuels": {},
            })
            fuel = rec["fuelType"]
            if fuel in fuels:
                slot["fuels"][fuel] = str(int(rec["generation"]))
        except (KeyError, TypeError, ValueError) as e:
            raise FeedError(f"bad stream record {rec!r}: {e}") from e

    rows = []
    for ts in sorted(slots):
        slot = slots[ts]
        values = {
            "type": FUELINST_TYPE,
            "date": slot["date"] or format_timestamp(ts)[:8],
            "settlementperiod": slot["settlementperiod"],
            "timestamp": format_timestamp(ts),
            **slot["fuels"],
        }
        rows.append(tuple(values.get(name, "") for name in names))
    return rows


def parse_body(text: str, template: str, header_check: str | None = None) -> list[Row]:
    """Parse a feed body in either supported format."""
    body = text.lstrip()
    if not body.startswith(("[", "{")):
        return parse_bmr_csv(text, header_check=header_check)
    try:
        data = json.loads(body)
    except json.JSONDecodeError as e:
        raise FeedError(f"bad JSON body: {e}") from e
    if isinstance(data, dict):
        data = data.get("data", [])
    return rows_from_stream(data, template)


def fetch_batch(url: str, template: str, header_check: str | None = None) -> list[Row]:
    """Fetch and parse the current FUELINST batch.

    Raises:
        FeedError: If the source cannot be fetched or parsed.
    """
    try:
        text = fetch_text(url)
    except (requests.RequestException, OSError) as e:
        raise FeedError(f"could not fetch {url}: {e}") from e
    try:
        rows = parse_body(text, template, header_check=header_check)
    except RowError as e:
        raise FeedError(str(e)) from e
    logger.info("Fetched %d FUELINST rows from %s", len(rows), url)
    return rows
