"""Tests for time bucketing and per-bucket statistics."""

from __future__ import annotations

import threading
from datetime import datetime, timezone

import pytest

from fuelinst import buckets
from fuelinst.buckets import BucketAlg, BucketerBuilder, TimestampedValue


def _ms(*args):
    return int(datetime(*args, tzinfo=timezone.utc).timestamp() * 1000)


SATURDAY_AFTERNOON = _ms(2024, 1, 6, 13, 0)


@pytest.mark.parametrize(
    "alg,key",
    [
        (BucketAlg.UNIQUE_DAY, "2024-006"),
        (BucketAlg.UNIQUE_HOUR, "2024-006-13"),
        (BucketAlg.SINGLETON, "ALL"),
        (BucketAlg.WEEKEND, "Weekend"),
        (BucketAlg.HOUR_OF_DAY, "13"),
        (BucketAlg.MONTH, "01"),
        (BucketAlg.YEAR, "2024"),
    ],
)
def test_bucket_keys(alg, key):
    """Each strategy maps a timestamp to its zero-padded UTC key."""

    assert alg.bucket(SATURDAY_AFTERNOON) == key


def test_weekday_key():
    """Monday falls in the Week bucket."""

    assert BucketAlg.WEEKEND.bucket(_ms(2024, 1, 8, 9, 0)) == "Week"


def test_titles_and_caps():
    """Unique strategies are uncapped; the rest have bounded key spaces."""

    assert BucketAlg.UNIQUE_DAY.title == "Day"
    assert BucketAlg.HOUR_OF_DAY.title == "Hour-of-Day (GMT)"
    assert not BucketAlg.UNIQUE_HOUR.capped
    assert BucketAlg.MONTH.capped
    assert BucketAlg.SINGLETON.sub_bucket_alg is BucketAlg.UNIQUE_DAY
    assert BucketAlg.HOUR_OF_DAY.sub_bucket_alg is None


def test_timestamped_value_rejects_bad_input():
    """Zero timestamps and negative values are rejected."""

    with pytest.raises(ValueError):
        TimestampedValue(0, 5)
    with pytest.raises(ValueError):
        TimestampedValue(1, -5)


def test_builder_groups_and_sorts():
    """Snapshots are key-sorted with sub-buckets per primary bucket."""

    builder = BucketerBuilder(BucketAlg.MONTH)
    feb = TimestampedValue(_ms(2024, 2, 1, 0, 0), 10)
    jan_a = TimestampedValue(_ms(2024, 1, 1, 0, 0), 20)
    jan_b = TimestampedValue(_ms(2024, 1, 2, 0, 0), 30)
    builder.add_all([feb, jan_a, jan_b])

    snap = builder.finish()

    assert list(snap.data_by_bucket()) == ["01", "02"]
    assert snap.data_by_bucket()["01"] == (jan_a, jan_b)
    assert dict(snap.sub_buckets_by_bucket()["01"]) == {"2024-001": (jan_a,), "2024-002": (jan_b,)}


def test_builder_without_sub_alg_has_no_sub_buckets():
    """Hour-of-day has no sub-bucket strategy."""

    builder = BucketerBuilder(BucketAlg.HOUR_OF_DAY)
    builder.add(TimestampedValue(SATURDAY_AFTERNOON, 1))

    assert dict(builder.finish().sub_buckets_by_bucket()) == {}


def test_builder_rejects_add_after_finish():
    """A finished builder is closed for writes."""

    builder = BucketerBuilder(BucketAlg.YEAR)
    builder.finish()

    with pytest.raises(RuntimeError):
        builder.add(TimestampedValue(SATURDAY_AFTERNOON, 1))


def test_snapshot_is_read_only():
    """Snapshot mappings cannot be modified."""

    builder = BucketerBuilder(BucketAlg.SINGLETON)
    builder.add(TimestampedValue(SATURDAY_AFTERNOON, 1))
    snap = builder.finish()

    with pytest.raises(TypeError):
        snap.data_by_bucket()["ALL"] = ()


def test_builder_is_thread_safe():
    """Concurrent adds lose no values."""

    builder = BucketerBuilder(BucketAlg.HOUR_OF_DAY)
    base = _ms(2024, 1, 1, 0, 0)

    def worker(offset):
        for i in range(250):
            builder.add(TimestampedValue(base + (offset * 250 + i) * 60_000, i))

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    snap = builder.finish()
    assert sum(len(v) for v in snap.data_by_bucket().values()) == 1000


def test_bucket_intensities_dedupes():
    """Duplicate timestamps keep the later value."""

    ts = SATURDAY_AFTERNOON
    snaps = buckets.bucket_intensities(
        [TimestampedValue(ts, 1), TimestampedValue(ts, 2)], algs=[BucketAlg.SINGLETON]
    )

    assert snaps[BucketAlg.SINGLETON].data_by_bucket()["ALL"] == (TimestampedValue(ts, 2),)


def test_bucket_table_with_sub_buckets():
    """Table statistics include within-day variability and saving."""

    values = [
        TimestampedValue(_ms(2024, 1, 1, 1, 0), 100),
        TimestampedValue(_ms(2024, 1, 1, 13, 0), 300),
        TimestampedValue(_ms(2024, 1, 2, 1, 0), 200),
    ]
    snap = buckets.bucket_intensities(values, algs=[BucketAlg.SINGLETON])[BucketAlg.SINGLETON]

    table = buckets.bucket_table(snap)

    row = table.loc["ALL"]
    assert row["count"] == 3
    assert row["max"] == 300
    assert row["min"] == 100
    assert row["mean"] == 200
    assert row["variability"] == 67
    assert row["mean_sub_variability"] == 33
    assert row["mean_saving"] == 100


def test_bucket_table_rounds_mean_half_up():
    """Means are rounded half-up to an integer."""

    values = [TimestampedValue(_ms(2024, 1, 1, 1, 0), 1), TimestampedValue(_ms(2024, 1, 1, 2, 0), 2)]
    snap = buckets.bucket_intensities(values, algs=[BucketAlg.HOUR_OF_DAY])[BucketAlg.HOUR_OF_DAY]

    table = buckets.bucket_table(snap)

    assert list(table.index) == ["01", "02"]
    assert "mean_saving" not in table.columns

    both = buckets.bucket_intensities(values, algs=[BucketAlg.YEAR])[BucketAlg.YEAR]
    assert buckets.bucket_table(both).loc["2024", "mean"] == 2


def test_bucket_table_empty():
    """An empty snapshot gives an empty table with the expected columns."""

    snap = BucketerBuilder(BucketAlg.WEEKEND).finish()

    table = buckets.bucket_table(snap)

    assert table.empty
    assert "mean_saving" in table.columns


def _spread_values():
    base = _ms(2024, 1, 1, 0, 0)
    return [TimestampedValue(base + i * 5 * 3600 * 1000, i % 7) for i in range(60)]


def test_singleton_has_one_bucket_with_everything():
    """The singleton strategy collects every value under one key."""

    values = _spread_values()
    builder = BucketerBuilder(BucketAlg.SINGLETON)
    builder.add_all(values)

    data = builder.finish().data_by_bucket()

    assert list(data) == ["ALL"]
    assert len(data["ALL"]) == len(values)


@pytest.mark.parametrize(
    "alg", [alg for alg in BucketAlg if alg.sub_bucket_alg is not None]
)
def test_sub_buckets_partition_primary_bucket(alg):
    """Sub-bucket lists together hold exactly the primary bucket's values."""

    builder = BucketerBuilder(alg)
    builder.add_all(_spread_values())
    snap = builder.finish()

    for key, items in snap.data_by_bucket().items():
        subs = snap.sub_buckets_by_bucket()[key]
        merged = [item for sub in subs.values() for item in sub]
        assert sorted(merged, key=lambda v: v.timestamp_ms) == sorted(items, key=lambda v: v.timestamp_ms)
