"""
fuelinst/run.py

Per-cycle orchestrator for the intensity pipeline.

Responsibilities
----------------
- Load the long-term store and fetch the live batch concurrently.
- Validate (and repair) the batch, then reconcile the store with it.
- Compute the 24h summary (falling back to the cache or a default) and the
  7-day summary, bucket tables and fuel correlations concurrently.
- Run the publish units: flag files first, then the intensity log and any
  injected publishers, then the status post once every publisher succeeded.
- Expose a CLI for scheduled runs (e.g. from cron).

Conventions
-----------
- Every unit runs as an independent task. A unit's exception is logged and
  returned as a failed `TaskResult`; it never cancels sibling units.
- One overall deadline bounds the whole cycle. Units still running when it
  expires are reported as timed out and abandoned.
- Only immutable values (rows as tuples, `CurrentSummary`) cross unit
  boundaries.
"""

from __future__ import annotations

import argparse
import logging
import time
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import Executor, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import partial
from typing import Any, Generic, TypeVar

from .buckets import bucket_intensities, bucket_table
from .client import fetch_batch
from .config import Settings, load_settings
from .errors import BatchRejected, ConfigError
from .publish import (
    POST_CACHE_SUFFIX,
    append_intensity_log,
    post_if_changed,
    status_message,
    write_flag_files,
)
from .rows import Row
from .stats import fuel_correlations
from .store import (
    cache_path,
    fallback_summary,
    load_long_store,
    long_store_path,
    reconcile,
    save_cache,
    save_long_store,
)
from .summary import (
    CurrentSummary,
    PublishedStatus,
    accepted_samples,
    intensity_values,
    publication_status,
    summarise,
)
from .validate import validate_and_repair

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_DEADLINE_S = 120.0
MAX_WORKERS = 8

Publisher = Callable[[CurrentSummary, PublishedStatus], object]


@dataclass(frozen=True)
class TaskResult(Generic[T]):
    """Outcome of one orchestration unit: a value or the error it raised."""

    name: str
    value: T | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _join(
    pool: Executor,
    units: Mapping[str, Callable[[], Any]],
    deadline_at: float,
) -> dict[str, TaskResult]:
    """Submit `units` to `pool` and collect results until `deadline_at`."""
    futures = {pool.submit(fn): name for name, fn in units.items()}
    _, not_done = wait(futures, timeout=max(0.0, deadline_at - time.monotonic()))
    results = {}
    for fut, name in futures.items():
        if fut in not_done:
            fut.cancel()
            logger.error("Unit %s did not finish before the deadline", name)
            results[name] = TaskResult(name, error=TimeoutError(f"{name} timed out"))
        elif fut.exception() is not None:
            err = fut.exception()
            logger.error("Unit %s failed: %s", name, err, exc_info=err)
            results[name] = TaskResult(name, error=err)
        else:
            results[name] = TaskResult(name, value=fut.result())
    return results


def run_units(
    units: Mapping[str, Callable[[], Any]],
    deadline_s: float = DEFAULT_DEADLINE_S,
    max_workers: int = MAX_WORKERS,
) -> dict[str, TaskResult]:
    """Run independent units concurrently under one deadline.

    Args:
        units: Unit name to zero-argument callable.
        deadline_s: Seconds to wait for all units.
        max_workers: Size of the worker pool.

    Returns:
        dict[str, TaskResult]: One result per unit, keyed by name.
    """
    pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="fuelinst")
    try:
        return _join(pool, units, time.monotonic() + deadline_s)
    finally:
        pool.shutdown(wait=False, cancel_futures=True)


@dataclass
class CycleReport:
    """Everything one cycle produced, for logging and for callers/tests."""

    now_ms: int
    summary_24h: CurrentSummary
    published: PublishedStatus
    batch_rows: int = 0
    store_rows: int = 0
    summary_7d: CurrentSummary | None = None
    tables_7d: dict = field(default_factory=dict)
    correlations_7d: tuple | None = None
    posted: bool = False
    results: dict[str, TaskResult] = field(default_factory=dict)


def _historical_tables(store: Sequence[Row], settings: Settings, year: int) -> dict:
    samples = accepted_samples(store, settings.row_template)
    values = intensity_values(samples, settings.intensities(year))
    return {alg.name: bucket_table(snap) for alg, snap in bucket_intensities(values).items()}


def _historical_correlations(store: Sequence[Row], settings: Settings, year: int) -> tuple:
    samples = accepted_samples(store, settings.row_template)
    return fuel_correlations(samples, settings.intensities(year))


def run_cycle(
    settings: Settings,
    now_ms: int | None = None,
    publishers: Mapping[str, Publisher] | None = None,
    poster: Callable[[str], object] | None = None,
    deadline_s: float = DEFAULT_DEADLINE_S,
    fetch: Callable[[str, str], Sequence[Row]] = fetch_batch,
) -> CycleReport:
    """Run one fetch/aggregate/publish cycle.

    Args:
        settings: Validated static configuration.
        now_ms: Wall-clock time to use (defaults to now).
        publishers: Page/file publishers, called with the 24h summary and
            the published status after the flag files are written.
        poster: Status post sink; only called after every publisher
            succeeded and the message passes the change/interval checks.
        deadline_s: Overall deadline for the cycle.
        fetch: Batch source, called as `fetch(url, template)`.

    Returns:
        CycleReport: The summaries, published status and per-unit results.
    """
    now_ms = int(time.time() * 1000) if now_ms is None else now_ms
    now = datetime.fromtimestamp(now_ms / 1000, tz=timezone.utc)
    deadline_at = time.monotonic() + deadline_s
    base = settings.output_base
    store_file = long_store_path(base) if base else None
    cache_file = cache_path(base) if base else None
    publishers = publishers or {}
    results: dict[str, TaskResult] = {}

    pool = ThreadPoolExecutor(max_workers=MAX_WORKERS, thread_name_prefix="fuelinst")
    try:
        stage = _join(pool, {
            "long_store": lambda: load_long_store(store_file) if store_file else (),
            "fetch": lambda: tuple(fetch(settings.data_url, settings.row_template)),
        }, deadline_at)
        results.update(stage)
        store = stage["long_store"].value if stage["long_store"].ok else ()

        batch = None
        if stage["fetch"].ok:
            try:
                batch = tuple(validate_and_repair(stage["fetch"].value, now_ms, store))
            except BatchRejected as e:
                logger.error("Invalid FUELINST data rejected: %s", e)

        if batch:
            store = reconcile(store, batch)
            if store_file:
                try:
                    save_long_store(store, store_file)
                except OSError as e:
                    logger.error("Could not save long store %s: %s", store_file, e)

        stage = _join(pool, {
            "summary_24h": lambda: summarise(batch, settings, now_ms) if batch else None,
            "summary_7d": lambda: summarise(store, settings, now_ms) if store else None,
            "tables_7d": lambda: _historical_tables(store, settings, now.year),
            "correlations_7d": lambda: _historical_correlations(store, settings, now.year),
        }, deadline_at)
        results.update(stage)

        summary = stage["summary_24h"].value
        if summary is None:
            summary = fallback_summary(cache_file, now_ms)
        elif cache_file:
            try:
                save_cache(summary, cache_file, now_ms)
            except OSError as e:
                logger.error("Could not save cache %s: %s", cache_file, e)
        published = publication_status(summary, now_ms)
        logger.info("Status %s (uncapped %s), retail intensity %d gCO2/kWh, stale=%s",
                    published.status, published.status_uncapped,
                    published.retail_intensity, published.stale)

        # Flags go first: published pages link to them.
        if base:
            results.update(_join(pool, {
                "flags": lambda: write_flag_files(
                    base, published.status, published.status_uncapped,
                    summary.current_storage_drawdown_mw),
            }, deadline_at))

        units = {name: partial(fn, summary, published) for name, fn in publishers.items()}
        if settings.log_dir and not published.stale and summary.timestamp_ms:
            units["intensity_log"] = lambda: append_intensity_log(
                settings.log_dir, summary.timestamp_ms, published.retail_intensity,
                settings.intensities(now.year), now=now)
        stage = _join(pool, units, deadline_at)
        results.update(stage)

        posted = False
        if poster is not None:
            if not all(stage[name].ok for name in publishers):
                logger.warning("Not posting status: a publisher failed")
            elif not base or published.status_uncapped is None:
                logger.warning("Not posting status: no state file or no status")
            else:
                message = status_message(
                    published.stale, published.status_uncapped, published.retail_intensity,
                    settings.status_messages, settings.prediction_messages)
                post = _join(pool, {
                    "post": lambda: post_if_changed(
                        poster, f"{base}{POST_CACHE_SUFFIX}", message,
                        settings.post_min_gap_mins, now=now),
                }, deadline_at)
                results.update(post)
                posted = bool(post["post"].value)
    finally:
        pool.shutdown(wait=False, cancel_futures=True)

    return CycleReport(
        now_ms=now_ms,
        summary_24h=summary,
        published=published,
        batch_rows=len(batch or ()),
        store_rows=len(store),
        summary_7d=results["summary_7d"].value,
        tables_7d=results["tables_7d"].value or {},
        correlations_7d=results["correlations_7d"].value,
        posted=posted,
        results=results,
    )


def main(argv=None):
    """CLI entry point for one pipeline cycle.

    Args:
        argv: Optional list of CLI arguments (useful for testing).

    Returns:
        int: Exit code (0 on success, 2 on invalid configuration).
    """
    parser = argparse.ArgumentParser(description="Compute and publish GB grid carbon intensity")
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    parser.add_argument("--deadline", type=float, default=DEFAULT_DEADLINE_S,
                        help="Overall deadline for the cycle, in seconds")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = load_settings()
    except ConfigError as e:
        logger.error("Invalid configuration: %s", e)
        return 2

    report = run_cycle(settings, deadline_s=args.deadline)
    p = report.published
    print(f"Done. Status: {p.status.value if p.status else 'unknown'}, "
          f"intensity: {p.retail_intensity} gCO2/kWh, stale: {p.stale}")
    return 0


if __name__ == "__main__":
    # Convert the `main()` return value into a process exit status.
    raise SystemExit(main())
