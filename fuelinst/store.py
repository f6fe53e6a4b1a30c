"""
fuelinst/store.py

Result cache and 7-day long-term record store.

Responsibilities
----------------
- Persist the last non-stale `CurrentSummary` (gzipped JSON) and serve it as
  a fallback when a fresh batch is unavailable.
- Keep a flat, time-ordered list of FUELINST rows covering up to 7 days:
  merged with each accepted batch (deduplicated by timestamp, newer record
  wins) and trimmed to the retention window.
- Write every file atomically (temp file in the same directory, then
  `os.replace`), so readers never see a partial file.

Conventions
-----------
- For a base path `B` the cache lives at `B.cache` and the long store at
  `B.longstore.csv`.
- The long store uses the same BMR CSV envelope as the live feed.
- Store contents are returned as tuples and replaced wholesale, never
  mutated in place.
"""

from __future__ import annotations

import gzip
import logging
import os
import tempfile
import zlib
from collections.abc import Iterable, Sequence
from pathlib import Path

from pydantic import ValidationError

from .errors import FeedError, RowError
from .rows import TIMESTAMP_INDEX, Row, format_bmr_csv, parse_bmr_csv, row_timestamp
from .summary import CurrentSummary, default_summary

logger = logging.getLogger(__name__)

CACHE_SUFFIX = ".cache"
LONG_STORE_SUFFIX = ".longstore.csv"

HOURS_PER_WEEK = 7 * 24


def cache_path(base: str | os.PathLike) -> Path:
    return Path(f"{base}{CACHE_SUFFIX}")


def long_store_path(base: str | os.PathLike) -> Path:
    return Path(f"{base}{LONG_STORE_SUFFIX}")


def atomic_write_bytes(path: str | os.PathLike, data: bytes) -> None:
    """Replace `path` with `data` atomically.

    The temporary file is created in the target directory so the final
    `os.replace` never crosses filesystems. Files are left world-readable.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.chmod(tmp, 0o644)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


def save_cache(summary: CurrentSummary, path: str | os.PathLike, now_ms: int) -> bool:
    """Cache `summary` unless it is already stale.

    Returns:
        bool: True if the cache file was written.
    """
    if summary.is_stale(now_ms):
        logger.info("Not caching stale summary (use-by %d < now %d)", summary.use_by_ms, now_ms)
        return False
    atomic_write_bytes(path, gzip.compress(summary.model_dump_json().encode("utf-8")))
    return True


def load_cache(path: str | os.PathLike) -> CurrentSummary | None:
    """Load a cached summary, or None if absent or unreadable."""
    path = Path(path)
    if not path.exists():
        return None
    try:
        raw = gzip.decompress(path.read_bytes())
        return CurrentSummary.model_validate_json(raw)
    except (OSError, EOFError, zlib.error, ValidationError) as e:
        logger.warning("Ignoring unreadable cache %s: %s", path, e)
        return None


def fallback_summary(path: str | os.PathLike | None, now_ms: int) -> CurrentSummary:
    """Cached summary if one exists and is still fresh, else the default summary."""
    cached = load_cache(path) if path is not None else None
    if cached is not None and not cached.is_stale(now_ms):
        logger.warning("Using cached summary from %d", cached.timestamp_ms)
        return cached
    logger.warning("No usable cached summary; using default")
    return default_summary()


def load_long_store(path: str | os.PathLike) -> tuple[Row, ...]:
    """Load the long-term store; empty if the file does not exist.

    Raises:
        FeedError: If the file exists but is not valid BMR CSV.
    """
    path = Path(path)
    if not path.exists():
        return ()
    return tuple(parse_bmr_csv(path.read_text(encoding="utf-8")))


def save_long_store(rows: Iterable[Row], path: str | os.PathLike) -> None:
    atomic_write_bytes(path, format_bmr_csv(rows).encode("utf-8"))


def merge_records(existing: Sequence[Row], new: Sequence[Row]) -> tuple[Row, ...]:
    """Merge two record lists, deduplicating by timestamp.

    Where both contain a timestamp the record from `new` replaces the
    existing one.

    Returns:
        tuple[Row, ...]: Records ordered by timestamp.
    """
    by_ts = {row[TIMESTAMP_INDEX]: row for row in existing}
    for row in new:
        by_ts[row[TIMESTAMP_INDEX]] = row
    return tuple(by_ts[ts] for ts in sorted(by_ts))


def trim_records(
    rows: Sequence[Row],
    max_hours_span: int = HOURS_PER_WEEK,
    max_records: int | None = None,
) -> tuple[Row, ...]:
    """Drop the oldest records outside the retention window.

    Keeps records strictly less than `max_hours_span` hours older than the
    newest, then (if `max_records` is set) at most the newest `max_records`.
    Records whose timestamp cannot be parsed are dropped with a warning.
    """
    timed = []
    for row in rows:
        try:
            timed.append((row_timestamp(row), row))
        except RowError as e:
            logger.warning("Dropping unreadable store record: %s", e)
    if not timed:
        return ()
    newest = max(ts for ts, _ in timed)
    oldest_allowed = newest - max_hours_span * 3600 * 1000 + 1
    kept = [row for ts, row in timed if ts >= oldest_allowed]
    if max_records is not None:
        kept = kept[-max_records:] if max_records > 0 else []
    return tuple(kept)


def reconcile(
    store: Sequence[Row],
    batch: Sequence[Row],
    path: str | os.PathLike | None = None,
    max_hours_span: int = HOURS_PER_WEEK,
) -> tuple[Row, ...]:
    """Merge an accepted batch into the store, trim it and persist it.

    Returns:
        tuple[Row, ...]: The new store contents.
    """
    updated = trim_records(merge_records(store, batch), max_hours_span)
    if path is not None:
        save_long_store(updated, path)
        logger.info("Long-term store now holds %d records", len(updated))
    return updated


def try_load_long_store(path: str | os.PathLike | None) -> tuple[Row, ...]:
    """`load_long_store`, treating a missing or corrupt store as empty."""
    if path is None:
        return ()
    try:
        return load_long_store(path)
    except (OSError, FeedError) as e:
        logger.error("Could not load long store %s: %s", path, e)
        return ()
