"""
fuelinst/validate.py

Validation, repair and typing for freshly fetched FUELINST batches.

Responsibilities
----------------
- Reject structurally broken batches as a whole (`check_batch`).
- Patch records the live feed silently dropped, using the long-term store
  (`repair_batch`).
- Convert accepted rows into typed `GenerationSample` models.

Conventions
-----------
- Validation is all-or-nothing per batch: a batch either passes (possibly
  after repair) or `BatchRejected` is raised.
- Timestamps must be strictly increasing. Out-of-order input is rejected, not
  re-sorted.
- Individually malformed fuel values only surface later, when a row is turned
  into a `GenerationSample`; the aggregator skips such rows.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from pydantic import BaseModel, ConfigDict, field_validator

from .errors import BatchRejected, RowError
from .rows import (
    FUELINST_TYPE,
    TIMESTAMP_INDEX,
    TIMESTAMP_LEN,
    TYPE_INDEX,
    Row,
    extract_named_fields,
    is_fuel_name,
    parse_timestamp,
    row_timestamp,
)

logger = logging.getLogger(__name__)

HOURS_PER_DAY = 24
MIN_ROW_FIELDS = 5

# The live feed covers a day; allow an hour of slack at either end.
DEFAULT_MAX_HOURS_SPAN = HOURS_PER_DAY + 1
# Five-minute samples over the span, with generous headroom.
DEFAULT_MAX_ROWS = DEFAULT_MAX_HOURS_SPAN * 12 * 2
FUTURE_SKEW_MS = 5 * 60 * 1000


class GenerationSample(BaseModel):
    """One timestamped generation-by-fuel snapshot.

    Attributes:
        timestamp_ms: Sample time as UTC epoch milliseconds.
        generation: Fuel code to MW. Values may be negative (e.g. exporting
            interconnectors); consumers decide how to treat them.
    """

    model_config = ConfigDict(frozen=True)

    timestamp_ms: int
    generation: dict[str, int]

    @field_validator("timestamp_ms", mode="before")
    @classmethod
    def parse_ts(cls, v):
        """Accept the feed's `YYYYMMDDHHMMSS` strings as well as integers."""
        if isinstance(v, str):
            return parse_timestamp(v)
        return v


def sample_from_row(template: str, row: Sequence[str]) -> GenerationSample:
    """Build a `GenerationSample` from a raw row using a column template.

    Args:
        template: Comma-separated positional column names.
        row: Raw field values.

    Returns:
        GenerationSample: The typed sample.

    Raises:
        RowError: If the timestamp is missing or invalid, or a fuel value is
            not an integer.
    """
    fields = extract_named_fields(template, row)
    raw_ts = fields.get("timestamp")
    if raw_ts is None:
        raise RowError(f"row has no timestamp: {list(row)!r}")
    generation = {}
    for name, value in fields.items():
        if not is_fuel_name(name):
            continue
        try:
            generation[name] = int(value)
        except ValueError as e:
            raise RowError(f"bad MW value for {name}: {value!r}") from e
    return GenerationSample(timestamp_ms=parse_timestamp(raw_ts), generation=generation)


def check_batch(
    rows: Sequence[Sequence[str]],
    now_ms: int,
    max_hours_span: int = DEFAULT_MAX_HOURS_SPAN,
    future_skew_ms: int = FUTURE_SKEW_MS,
    max_rows: int = DEFAULT_MAX_ROWS,
) -> None:
    """Check a whole batch for structural sanity.

    Args:
        rows: Parsed FUELINST rows (no HDR/FTR rows).
        now_ms: Current wall-clock time, UTC epoch milliseconds.
        max_hours_span: Largest allowed span between first and last record.
        future_skew_ms: How far past `now_ms` the newest record may be.
        max_rows: Upper bound on the number of rows.

    Raises:
        BatchRejected: On any defect; the message names the first one found.
    """
    if not rows:
        raise BatchRejected("empty batch")
    if len(rows) > max_rows:
        raise BatchRejected(f"too many rows: {len(rows)} > {max_rows}")

    last_raw = ""
    for i, row in enumerate(rows):
        if len(row) < MIN_ROW_FIELDS:
            raise BatchRejected(f"row {i} has {len(row)} fields")
        if row[TYPE_INDEX] != FUELINST_TYPE:
            raise BatchRejected(f"row {i} has type {row[TYPE_INDEX]!r}")
        ts_raw = row[TIMESTAMP_INDEX]
        if len(ts_raw) != TIMESTAMP_LEN:
            raise BatchRejected(f"row {i} has bad timestamp {ts_raw!r}")
        try:
            ts_ms = parse_timestamp(ts_raw)
        except RowError as e:
            raise BatchRejected(f"row {i}: {e}") from e
        if i == 0:
            first_ms = ts_ms
        # Fixed-width digits, so lexical order is time order.
        if ts_raw <= last_raw:
            raise BatchRejected(f"row {i} out of order: {ts_raw} after {last_raw}")
        last_raw, last_ms = ts_raw, ts_ms

    if last_ms > now_ms + future_skew_ms:
        raise BatchRejected(f"newest record {last_raw} is in the future")
    if last_ms - first_ms > max_hours_span * 3600 * 1000:
        raise BatchRejected(f"batch spans more than {max_hours_span} hours")


def repair_batch(rows: Sequence[Row], store: Sequence[Row] | None) -> list[Row]:
    """Splice long-term-store records missing from `rows` into the batch.

    The live feed sometimes drops records, most often its newest few when the
    upstream service is busy. Any store record at or after the batch's first
    timestamp whose timestamp is absent from the batch is spliced in.

    Args:
        rows: A batch that has passed `check_batch`.
        store: Long-term store records, ordered by timestamp.

    Returns:
        list[Row]: A new timestamp-ordered batch.
    """
    if not rows or not store:
        return list(rows)
    first_raw = rows[0][TIMESTAMP_INDEX]
    present = {row[TIMESTAMP_INDEX] for row in rows}
    missing = []
    for row in store:
        try:
            row_timestamp(row)
        except RowError as e:
            logger.warning("Not splicing unreadable store record: %s", e)
            continue
        if row[TIMESTAMP_INDEX] >= first_raw and row[TIMESTAMP_INDEX] not in present:
            missing.append(row)
    if not missing:
        return list(rows)
    logger.info("Spliced %d record(s) from the long-term store into the batch", len(missing))
    return sorted([*rows, *missing], key=lambda row: row[TIMESTAMP_INDEX])


def validate_and_repair(
    rows: Sequence[Row],
    now_ms: int,
    store: Sequence[Row] | None = None,
    max_hours_span: int = DEFAULT_MAX_HOURS_SPAN,
) -> list[Row]:
    """Check, repair from `store`, and re-check a fetched batch.

    Returns:
        list[Row]: The accepted (possibly repaired) batch.

    Raises:
        BatchRejected: If the batch is unusable before or after repair.
    """
    check_batch(rows, now_ms, max_hours_span=max_hours_span)
    repaired = repair_batch(rows, store)
    if len(repaired) != len(rows):
        check_batch(repaired, now_ms, max_hours_span=max_hours_span)
    return repaired
