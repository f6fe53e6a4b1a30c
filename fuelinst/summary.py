"""
fuelinst/summary.py

Summary aggregation of a FUELINST batch into an immutable `CurrentSummary`.

Responsibilities
----------------
- Define the traffic-light status type and the 24-slot hour-of-day histogram.
- Define `CurrentSummary`, the value object handed to every publisher and
  stored in the cache.
- `compute_current_summary`: weighted intensity per row, hour-of-day
  histograms, min/mean/max, quartile thresholds, recent trend and per-fuel
  correlation with intensity.
- `publication_status`: the status to publish, which degrades conservatively
  when the summary is stale.

Conventions
-----------
- Intensities are integer gCO2/kWh, generation is integer MW, timestamps are
  UTC epoch milliseconds.
- Rows are assumed to be in increasing time order (the validator enforces
  it); the last accepted row is "current".
- `status is None` means there were too few samples to classify; the
  thresholds are then meaningless and `select_colour` returns None.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Annotated

from pydantic import AfterValidator, BaseModel, ConfigDict, PlainSerializer, field_validator, model_validator

from .buckets import TimestampedValue
from .errors import BatchRejected, RowError
from .intensity import MIN_FUEL_TYPES_IN_MIX, compute_weighted_intensity
from .rows import FUELINST_TYPE, Row, extract_named_fields
from .stats import pearson_correlation
from .validate import GenerationSample, sample_from_row

logger = logging.getLogger(__name__)

HOURS_PER_DAY = 24

# Minimum accepted samples before a status is classified.
MIN_SAMPLES_FOR_STATUS = 4

DEFAULT_MAX_AGE_MS = 3600 * 1000


class TrafficLight(str, Enum):
    """Grid status, from worst to best."""

    RED = "RED"
    YELLOW = "YELLOW"
    GREEN = "GREEN"

    def better_than(self, other: TrafficLight | None) -> bool:
        """True if this status is strictly better than `other` (None is worst)."""
        if other is None:
            return True
        return _ORDER.index(self) > _ORDER.index(other)


_ORDER = (TrafficLight.RED, TrafficLight.YELLOW, TrafficLight.GREEN)


def _freeze(v: Mapping) -> Mapping:
    return MappingProxyType(dict(v))


FrozenIntMap = Annotated[dict[str, int], AfterValidator(_freeze), PlainSerializer(dict, return_type=dict)]
FrozenFloatMap = Annotated[dict[str, float], AfterValidator(_freeze), PlainSerializer(dict, return_type=dict)]


class SummaryByHour(BaseModel):
    """Exactly 24 optional values indexed by UTC hour-of-day.

    An absent (None) slot means no samples fell in that hour.
    """

    model_config = ConfigDict(frozen=True)

    slots: tuple[int | None, ...] = (None,) * HOURS_PER_DAY

    @field_validator("slots")
    @classmethod
    def check_len(cls, v):
        if len(v) != HOURS_PER_DAY:
            raise ValueError(f"expected {HOURS_PER_DAY} slots, got {len(v)}")
        return v

    def get(self, hour: int) -> int | None:
        return self.slots[hour]

    def get0(self, hour: int) -> int:
        """Slot value, with absent slots read as 0."""
        v = self.slots[hour]
        return 0 if v is None else v

    def max0(self) -> int:
        return max((v for v in self.slots if v is not None), default=0)

    def is_complete(self) -> bool:
        return all(v is not None for v in self.slots)


class CurrentSummary(BaseModel):
    """Immutable summary of one aggregation run.

    Attributes:
        status: Current traffic-light status, or None if too few samples.
        recent_change: Trend of the last two samples: RED worsening, GREEN
            improving, YELLOW steady; None with fewer than two samples.
        timestamp_ms: Time of the current (newest accepted) sample.
        use_by_ms: Time after which this summary is stale.
        current_mw: Total generation of the current sample.
        current_intensity: Weighted intensity of the current sample.
        current_gen_by_fuel: Read-only fuel to MW map for the current sample.
        current_storage_drawdown_mw: Storage generation in the current sample.
        hist_*: Statistics over all accepted samples in the window.
        lower_threshold / upper_threshold: GREEN / RED boundaries.
        ave_*_by_hour: Hour-of-day means over the window.
        total_grid_losses: Transmission plus distribution loss fraction.
        correlation_by_fuel: Correlation of each fuel's MW with intensity.
    """

    model_config = ConfigDict(frozen=True, validate_default=True)

    status: TrafficLight | None = None
    recent_change: TrafficLight | None = None
    timestamp_ms: int = 0
    use_by_ms: int = 0
    current_mw: int = 0
    current_intensity: int = 0
    current_gen_by_fuel: FrozenIntMap = {}
    current_storage_drawdown_mw: int = 0
    hist_min_intensity: int = 0
    hist_min_timestamp_ms: int = 0
    hist_ave_intensity: int = 0
    hist_max_intensity: int = 0
    hist_max_timestamp_ms: int = 0
    hist_window_ms: int = 0
    hist_samples: int = 0
    lower_threshold: int = 0
    upper_threshold: int = 0
    ave_intensity_by_hour: SummaryByHour = SummaryByHour()
    ave_generation_by_hour: SummaryByHour = SummaryByHour()
    ave_zero_carbon_by_hour: SummaryByHour = SummaryByHour()
    ave_storage_drawdown_by_hour: SummaryByHour = SummaryByHour()
    total_grid_losses: float = 0.0
    correlation_by_fuel: FrozenFloatMap = {}

    @model_validator(mode="after")
    def check_thresholds(self) -> CurrentSummary:
        if self.lower_threshold > self.upper_threshold:
            raise ValueError(
                f"lower threshold {self.lower_threshold} above upper {self.upper_threshold}"
            )
        return self

    @property
    def insufficient(self) -> bool:
        """True when too few samples were available to classify status."""
        return self.status is None

    def select_colour(self, intensity: int | None) -> TrafficLight | None:
        """Classify an intensity against this summary's thresholds."""
        if intensity is None or self.insufficient:
            return None
        if intensity > self.upper_threshold:
            return TrafficLight.RED
        if intensity < self.lower_threshold:
            return TrafficLight.GREEN
        return TrafficLight.YELLOW

    def is_stale(self, now_ms: int) -> bool:
        return self.use_by_ms < now_ms

    def retail_intensity(self, stale: bool) -> int:
        """Intensity as seen by a domestic consumer, including grid losses."""
        base = self.hist_ave_intensity if stale else self.current_intensity
        return math.floor(base * (1 + self.total_grid_losses) + 0.5)


def default_summary() -> CurrentSummary:
    """Placeholder used when neither fresh data nor a usable cache exists."""
    return CurrentSummary()


def gmt_hour_of_day(ts_ms: int) -> int:
    """UTC hour of a timestamp, or -1 for the zero (unset) timestamp."""
    if ts_ms == 0:
        return -1
    return datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc).hour


def _hourly_means(totals: list[int], counts: list[int]) -> SummaryByHour:
    return SummaryByHour(slots=tuple(
        None if n == 0 else total // n for total, n in zip(totals, counts)
    ))


def compute_current_summary(
    rows: Iterable[Row],
    template: str,
    intensities: Mapping[str, float],
    storage_types: Iterable[str] = (),
    total_grid_losses: float = 0.0,
    max_age_ms: int = DEFAULT_MAX_AGE_MS,
    min_fuel_types: int = MIN_FUEL_TYPES_IN_MIX,
) -> CurrentSummary:
    """Aggregate a validated, time-ordered batch into a `CurrentSummary`.

    Args:
        rows: FUELINST rows, oldest first. Trailing `FTR` rows are ignored.
        template: Positional column template for the rows.
        intensities: Fuel code to gCO2/kWh.
        storage_types: Fuel codes whose output counts as storage drawdown.
        total_grid_losses: Transmission plus distribution loss fraction.
        max_age_ms: How long after the newest sample the summary stays fresh.
        min_fuel_types: Minimum fuel diversity for a row to be classified.

    Returns:
        CurrentSummary: The summary; a default summary if no row was usable.

    Raises:
        BatchRejected: If a row is not a FUELINST row.
    """
    storage_types = frozenset(storage_types)

    samples: list[int] = []
    current = None
    first_ts = last_ts = 0
    min_intensity = max_intensity = 0
    min_ts = max_ts = 0
    total_intensity = 0
    usable_fuels: set[str] = set()
    corr_rows: list[tuple[dict[str, int], int]] = []

    counts = [0] * HOURS_PER_DAY
    intensity_by_hour = [0] * HOURS_PER_DAY
    generation_by_hour = [0] * HOURS_PER_DAY
    zero_carbon_by_hour = [0] * HOURS_PER_DAY
    storage_by_hour = [0] * HOURS_PER_DAY

    for row in rows:
        row_type = extract_named_fields(template, row).get("type", "")
        if row_type.startswith("FTR"):
            continue
        if row_type != FUELINST_TYPE:
            raise BatchRejected(f"expected FUELINST data but got {row_type!r}")
        try:
            sample = sample_from_row(template, row)
        except RowError as e:
            logger.warning("Skipping malformed row: %s", e)
            continue

        generation = {fuel: mw for fuel, mw in sample.generation.items() if mw >= 0}
        total_mw = sum(generation.values())
        storage_mw = sum(mw for fuel, mw in generation.items() if fuel in storage_types)
        zero_carbon_mw = 0
        for fuel, mw in generation.items():
            if fuel in intensities:
                usable_fuels.add(fuel)
                if intensities[fuel] <= 0:
                    zero_carbon_mw += mw

        weighted = math.floor(compute_weighted_intensity(intensities, generation, min_fuel_types) + 0.5)
        if weighted < 0:
            logger.warning("Skipping record with too few fuel types at %d", sample.timestamp_ms)
            continue

        ts = sample.timestamp_ms
        hour = gmt_hour_of_day(ts)
        if hour < 0:
            logger.warning("Skipping record with unset timestamp")
            continue
        samples.append(weighted)
        if generation:
            corr_rows.append((generation, weighted))
        current = (ts, total_mw, weighted, generation, storage_mw)
        total_intensity += weighted
        if not first_ts:
            first_ts = ts
        last_ts = ts

        counts[hour] += 1
        intensity_by_hour[hour] += weighted
        generation_by_hour[hour] += total_mw
        zero_carbon_by_hour[hour] += zero_carbon_mw
        storage_by_hour[hour] += storage_mw

        if len(samples) == 1 or weighted < min_intensity:
            min_intensity, min_ts = weighted, ts
        if len(samples) == 1 or weighted > max_intensity:
            max_intensity, max_ts = weighted, ts

    if current is None:
        logger.warning("No usable records in batch")
        return default_summary()

    n = len(samples)
    recent_change = None
    if n > 1:
        prev, last = samples[-2], samples[-1]
        if prev < last:
            recent_change = TrafficLight.RED
        elif prev > last:
            recent_change = TrafficLight.GREEN
        else:
            recent_change = TrafficLight.YELLOW

    ave_intensity = total_intensity // max(n, 1)
    current_ts, current_mw, current_intensity, current_gen, current_storage = current

    status = None
    lower = upper = 0
    if n >= MIN_SAMPLES_FOR_STATUS:
        ordered = sorted(samples)
        upper = ordered[n - 1 - n // 4]
        lower = min(ordered[n // 4], ave_intensity)
        if current_intensity > upper:
            status = TrafficLight.RED
        elif current_intensity < lower:
            status = TrafficLight.GREEN
        else:
            status = TrafficLight.YELLOW
    else:
        logger.warning("Too few samples to classify status: %d", n)

    correlations = {}
    for fuel in sorted(usable_fuels):
        xs = [gen[fuel] for gen, _ in corr_rows if fuel in gen]
        ys = [weighted for gen, weighted in corr_rows if fuel in gen]
        if len(xs) > 1:
            r = pearson_correlation(xs, ys)
            if math.isfinite(r):
                correlations[fuel] = r

    return CurrentSummary(
        status=status,
        recent_change=recent_change,
        timestamp_ms=current_ts,
        use_by_ms=current_ts + max_age_ms,
        current_mw=current_mw,
        current_intensity=current_intensity,
        current_gen_by_fuel=current_gen,
        current_storage_drawdown_mw=current_storage,
        hist_min_intensity=min_intensity,
        hist_min_timestamp_ms=min_ts,
        hist_ave_intensity=ave_intensity,
        hist_max_intensity=max_intensity,
        hist_max_timestamp_ms=max_ts,
        hist_window_ms=last_ts - first_ts,
        hist_samples=n,
        lower_threshold=lower,
        upper_threshold=upper,
        ave_intensity_by_hour=_hourly_means(intensity_by_hour, counts),
        ave_generation_by_hour=_hourly_means(generation_by_hour, counts),
        ave_zero_carbon_by_hour=_hourly_means(zero_carbon_by_hour, counts),
        ave_storage_drawdown_by_hour=_hourly_means(storage_by_hour, counts),
        total_grid_losses=total_grid_losses,
        correlation_by_fuel=correlations,
    )


def summarise(rows: Sequence[Row], settings, now_ms: int) -> CurrentSummary:
    """`compute_current_summary` driven by `Settings`, using this year's intensities."""
    year = datetime.fromtimestamp(now_ms / 1000, tz=timezone.utc).year
    return compute_current_summary(
        rows,
        template=settings.row_template,
        intensities=settings.intensities(year),
        storage_types=settings.storage_types,
        total_grid_losses=settings.total_grid_losses,
        max_age_ms=settings.max_intensity_age_s * 1000,
    )


@dataclass(frozen=True)
class PublishedStatus:
    """Status values derived from a summary at publication time.

    `status` is what to show; it never reports GREEN from stale data.
    `status_uncapped` is the best estimate (live, or historical when stale).
    """

    stale: bool
    hour: int
    status: TrafficLight | None
    status_uncapped: TrafficLight | None
    status_historical: TrafficLight | None
    retail_intensity: int


def publication_status(
    summary: CurrentSummary,
    now_ms: int,
    never_green_when_stale: bool = True,
) -> PublishedStatus:
    """Choose the status to publish for `summary` at time `now_ms`.

    When the summary is stale the status is predicted from the hour-of-day
    mean for the current hour; if `never_green_when_stale` is set a predicted
    GREEN is reported as YELLOW.
    """
    stale = summary.is_stale(now_ms)
    hour = gmt_hour_of_day(now_ms)
    historical = summary.select_colour(summary.ave_intensity_by_hour.get(hour))
    capped = TrafficLight.YELLOW if historical is TrafficLight.GREEN else historical
    if stale:
        status = capped if never_green_when_stale else historical
        uncapped = historical
    else:
        status = uncapped = summary.status
    return PublishedStatus(
        stale=stale,
        hour=hour,
        status=status,
        status_uncapped=uncapped,
        status_historical=historical,
        retail_intensity=summary.retail_intensity(stale),
    )


def accepted_samples(rows: Iterable[Row], template: str) -> list[GenerationSample]:
    """Typed samples for the FUELINST rows of a batch, skipping malformed rows."""
    samples = []
    for row in rows:
        if extract_named_fields(template, row).get("type") != FUELINST_TYPE:
            continue
        try:
            samples.append(sample_from_row(template, row))
        except RowError as e:
            logger.warning("Skipping malformed row: %s", e)
    return samples


def intensity_values(
    samples: Iterable[GenerationSample],
    intensities: Mapping[str, float],
    min_fuel_types: int = MIN_FUEL_TYPES_IN_MIX,
) -> list[TimestampedValue]:
    """Rounded weighted intensity of each sample with a classifiable mix."""
    values = []
    for sample in samples:
        generation = {fuel: mw for fuel, mw in sample.generation.items() if mw >= 0}
        weighted = math.floor(compute_weighted_intensity(intensities, generation, min_fuel_types) + 0.5)
        if weighted >= 0 and sample.timestamp_ms != 0:
            values.append(TimestampedValue(sample.timestamp_ms, weighted))
    return values
