"""
fuelinst/buckets.py

Time bucketing of timestamped intensity values, plus per-bucket statistics.

Responsibilities
----------------
- `BucketAlg`: the fixed set of bucketing strategies (hour-of-day, month,
  week/weekend, ...), each a pure timestamp -> key function with a title,
  a capped/uncapped flag and an optional sub-bucket strategy.
- `BucketerBuilder`: thread-safe accumulator that groups values by bucket and
  sub-bucket; `finish()` freezes it into a `BucketSnapshot`.
- `bucket_table`: per-bucket count/min/mean/max/variability as a DataFrame.

Conventions
-----------
- All keys are computed in UTC and sort lexically in time order within a
  strategy (zero-padded numbers).
- Capped strategies have a bounded number of distinct keys; uncapped ones
  (unique day, unique hour) grow with the data.
- A builder has no read methods and a snapshot has no mutators.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType

import pandas as pd

from .stats import variability, variability_of


@dataclass(frozen=True)
class TimestampedValue:
    """Non-negative integer value (e.g. gCO2/kWh) at a point in time."""

    timestamp_ms: int
    value: int

    def __post_init__(self):
        if self.timestamp_ms == 0:
            raise ValueError("timestamp must be non-zero")
        if self.value < 0:
            raise ValueError(f"value must be non-negative, got {self.value}")


class BucketAlg(Enum):
    """Named bucketing strategies.

    Each member carries its display title and whether its key space is
    capped.
    """

    UNIQUE_DAY = ("Day", False)
    UNIQUE_HOUR = ("Hour", False)
    SINGLETON = ("ALL", True)
    WEEKEND = ("Week/Weekend", True)
    HOUR_OF_DAY = ("Hour-of-Day (GMT)", True)
    MONTH = ("Month", True)
    YEAR = ("Year", True)

    def __init__(self, title: str, capped: bool):
        self.title = title
        self.capped = capped

    @property
    def sub_bucket_alg(self) -> BucketAlg | None:
        return _SUB_BUCKET_ALGS.get(self)

    def bucket(self, timestamp_ms: int) -> str:
        """Bucket key for a UTC epoch-millisecond timestamp."""
        dt = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
        if self is BucketAlg.SINGLETON:
            return "ALL"
        if self is BucketAlg.UNIQUE_DAY:
            return f"{dt.year:04d}-{dt.timetuple().tm_yday:03d}"
        if self is BucketAlg.UNIQUE_HOUR:
            return f"{dt.year:04d}-{dt.timetuple().tm_yday:03d}-{dt.hour:02d}"
        if self is BucketAlg.WEEKEND:
            return "Weekend" if dt.weekday() >= 5 else "Week"
        if self is BucketAlg.HOUR_OF_DAY:
            return f"{dt.hour:02d}"
        if self is BucketAlg.MONTH:
            return f"{dt.month:02d}"
        return f"{dt.year:04d}"


_SUB_BUCKET_ALGS = {
    BucketAlg.SINGLETON: BucketAlg.UNIQUE_DAY,
    BucketAlg.WEEKEND: BucketAlg.UNIQUE_DAY,
    BucketAlg.MONTH: BucketAlg.UNIQUE_DAY,
    BucketAlg.YEAR: BucketAlg.UNIQUE_DAY,
}

# Axes used for the historical analysis tables, in display order.
DEFAULT_ALGS = (
    BucketAlg.SINGLETON,
    BucketAlg.WEEKEND,
    BucketAlg.HOUR_OF_DAY,
    BucketAlg.MONTH,
    BucketAlg.YEAR,
)


@dataclass(frozen=True)
class BucketSnapshot:
    """Immutable, key-sorted view of bucketed values."""

    alg: BucketAlg
    _data: Mapping[str, tuple[TimestampedValue, ...]]
    _sub: Mapping[str, Mapping[str, tuple[TimestampedValue, ...]]]

    def data_by_bucket(self) -> Mapping[str, tuple[TimestampedValue, ...]]:
        return self._data

    def sub_buckets_by_bucket(self) -> Mapping[str, Mapping[str, tuple[TimestampedValue, ...]]]:
        """Sub-bucket key -> values, per primary bucket (empty if no sub-bucket alg)."""
        return self._sub


class BucketerBuilder:
    """Accumulates values into the buckets of one `BucketAlg`.

    `add` may be called from several threads. Once `finish` has been called
    further `add` calls raise `RuntimeError`.
    """

    def __init__(self, alg: BucketAlg):
        self.alg = alg
        self._lock = threading.Lock()
        self._finished = False
        self._data: dict[str, list[TimestampedValue]] = defaultdict(list)
        self._sub: dict[str, dict[str, list[TimestampedValue]]] = defaultdict(lambda: defaultdict(list))

    def add(self, item: TimestampedValue) -> None:
        with self._lock:
            if self._finished:
                raise RuntimeError(f"{self.alg.name} bucketer is finished")
            key = self.alg.bucket(item.timestamp_ms)
            self._data[key].append(item)
            sub_alg = self.alg.sub_bucket_alg
            if sub_alg is not None:
                self._sub[key][sub_alg.bucket(item.timestamp_ms)].append(item)

    def add_all(self, items: Iterable[TimestampedValue]) -> None:
        for item in items:
            self.add(item)

    def finish(self) -> BucketSnapshot:
        with self._lock:
            self._finished = True
            data = {key: tuple(self._data[key]) for key in sorted(self._data)}
            sub = {
                key: MappingProxyType({k: tuple(v[k]) for k in sorted(v)})
                for key, v in sorted(self._sub.items())
            }
        return BucketSnapshot(self.alg, MappingProxyType(data), MappingProxyType(sub))


def dedupe_by_timestamp(values: Iterable[TimestampedValue]) -> list[TimestampedValue]:
    """Sort by time, keeping the later-supplied value for duplicate timestamps."""
    by_ts = {}
    for v in values:
        by_ts[v.timestamp_ms] = v
    return [by_ts[ts] for ts in sorted(by_ts)]


def bucket_intensities(
    values: Iterable[TimestampedValue],
    algs: Iterable[BucketAlg] = DEFAULT_ALGS,
) -> dict[BucketAlg, BucketSnapshot]:
    """Bucket deduplicated values under each strategy in `algs`."""
    values = dedupe_by_timestamp(values)
    snapshots = {}
    for alg in algs:
        builder = BucketerBuilder(alg)
        builder.add_all(values)
        snapshots[alg] = builder.finish()
    return snapshots


def _round_mean(values: list[int]) -> int:
    return int(sum(values) / len(values) + 0.5)


def bucket_table(snapshot: BucketSnapshot) -> pd.DataFrame:
    """Per-bucket statistics for one snapshot.

    Columns are `count`, `max`, `mean` (rounded), `min` and `variability` (%).
    When the strategy has a sub-bucket strategy two more columns are added:
    `mean_sub_variability`, the mean variability within each sub-bucket, and
    `mean_saving`, the mean of (max - min) within each sub-bucket, i.e. the
    intensity saving available by shifting load within e.g. a day.

    Returns:
        pd.DataFrame: Indexed by bucket key, in key order.
    """
    has_sub = snapshot.alg.sub_bucket_alg is not None
    columns = ["count", "max", "mean", "min", "variability"]
    if has_sub:
        columns += ["mean_sub_variability", "mean_saving"]

    records = []
    subs = snapshot.sub_buckets_by_bucket()
    for key, items in snapshot.data_by_bucket().items():
        values = [item.value for item in items]
        record = {
            "bucket": key,
            "count": len(values),
            "max": max(values),
            "mean": _round_mean(values),
            "min": min(values),
            "variability": variability(min(values), max(values)),
        }
        if has_sub:
            sub_lists = [[item.value for item in sub] for sub in subs.get(key, {}).values()]
            record["mean_sub_variability"] = sum(variability_of(s) for s in sub_lists) // len(sub_lists)
            record["mean_saving"] = sum(max(0, max(s) - min(s)) for s in sub_lists) // len(sub_lists)
        records.append(record)

    if not records:
        return pd.DataFrame(columns=columns).rename_axis("bucket")
    return pd.DataFrame.from_records(records, index="bucket")[columns]
