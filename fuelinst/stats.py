"""
fuelinst/stats.py

Statistics helpers: Pearson correlation, variability and per-fuel
correlation analysis.

Responsibilities
----------------
- `pearson_correlation`: single-pass, numerically stable correlation.
- `aligned_pairs`: align two timestamp-keyed series before correlating.
- `variability` / `variability_of`: relative spread as an integer percentage.
- `fuel_correlations`: fuel-vs-demand, fuel-vs-intensity and
  demand-vs-intensity correlations over a set of samples.

Notes
-----
- A degenerate input (one pair, or a zero-variance series) yields NaN from
  `pearson_correlation`; callers that publish correlations drop non-finite
  values.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping, Sequence

from .intensity import MIN_FUEL_TYPES_IN_MIX, compute_weighted_intensity
from .validate import GenerationSample

logger = logging.getLogger(__name__)


def pearson_correlation(xs: Sequence[float], ys: Sequence[float]) -> float:
    """Pearson correlation coefficient of two equal-length series.

    Uses running means and co-moments updated one pair at a time, which
    avoids the cancellation of the naive sum-of-products formula when values
    carry a large common offset.

    Args:
        xs: First series.
        ys: Second series, aligned with `xs`.

    Returns:
        float: The coefficient in [-1, 1], or NaN if either series has zero
        variance (including the single-pair case).

    Raises:
        ValueError: If the series are empty or of different lengths.
    """
    n = len(xs)
    if n == 0:
        raise ValueError("cannot correlate empty series")
    if n != len(ys):
        raise ValueError(f"series lengths differ: {n} != {len(ys)}")

    sum_sq_x = sum_sq_y = sum_coproduct = 0.0
    mean_x = float(xs[0])
    mean_y = float(ys[0])
    for i in range(2, n + 1):
        sweep = (i - 1.0) / i
        delta_x = xs[i - 1] - mean_x
        delta_y = ys[i - 1] - mean_y
        sum_sq_x += delta_x * delta_x * sweep
        sum_sq_y += delta_y * delta_y * sweep
        sum_coproduct += delta_x * delta_y * sweep
        mean_x += delta_x / i
        mean_y += delta_y / i

    pop_sd_x = math.sqrt(sum_sq_x / n)
    pop_sd_y = math.sqrt(sum_sq_y / n)
    if pop_sd_x == 0 or pop_sd_y == 0:
        return math.nan
    return (sum_coproduct / n) / (pop_sd_x * pop_sd_y)


def aligned_pairs(
    a_by_ts: Mapping[int, float | None],
    b_by_ts: Mapping[int, float | None],
) -> tuple[list[float], list[float]]:
    """Values present on both sides, in timestamp order."""
    xs: list[float] = []
    ys: list[float] = []
    for ts in sorted(a_by_ts.keys() & b_by_ts.keys()):
        a, b = a_by_ts[ts], b_by_ts[ts]
        if a is None or b is None:
            continue
        xs.append(a)
        ys.append(b)
    return xs, ys


def variability(min_value: int, max_value: int) -> int:
    """Spread of a range as a percentage of its maximum, in [0, 100].

    Raises:
        ValueError: If either bound is negative.
    """
    if min_value < 0 or max_value < 0:
        raise ValueError("variability bounds must be non-negative")
    if max_value == 0:
        return 0
    return 100 - (100 * min_value) // max_value


def variability_of(values: Iterable[int]) -> int:
    values = list(values)
    if not values:
        raise ValueError("no values")
    return variability(min(values), max(values))


def _finite_correlation(xs: list[float], ys: list[float]) -> float | None:
    if len(xs) < 2:
        return None
    r = pearson_correlation(xs, ys)
    return r if math.isfinite(r) else None


def fuel_correlations(
    samples: Iterable[GenerationSample],
    intensities: Mapping[str, float],
    min_fuel_types: int = MIN_FUEL_TYPES_IN_MIX,
) -> tuple[dict[str, float], dict[str, float], float | None]:
    """Correlate each fuel's output against demand and grid intensity.

    Demand is the sum of positive generation in a sample. Samples whose mix
    is too thin to classify are skipped, as are non-positive fuel values.

    Returns:
        tuple: (fuel -> correlation with demand, fuel -> correlation with
        intensity, demand-vs-intensity correlation). Entries that would be
        non-finite are omitted; the last element is None in that case.
    """
    demand_by_ts: dict[int, float] = {}
    intensity_by_ts: dict[int, float] = {}
    fuel_by_ts: dict[str, dict[int, float]] = {}

    for sample in samples:
        usable = {fuel: mw for fuel, mw in sample.generation.items() if mw >= 0}
        weighted = compute_weighted_intensity(intensities, usable, min_fuel_types)
        if weighted < 0:
            logger.debug("Skipping thin fuel mix at %d", sample.timestamp_ms)
            continue
        positive = {fuel: mw for fuel, mw in usable.items() if mw > 0}
        ts = sample.timestamp_ms
        demand_by_ts[ts] = sum(positive.values())
        intensity_by_ts[ts] = weighted
        for fuel, mw in positive.items():
            fuel_by_ts.setdefault(fuel, {})[ts] = mw

    by_demand = {}
    by_intensity = {}
    for fuel, series in fuel_by_ts.items():
        r = _finite_correlation(*aligned_pairs(series, demand_by_ts))
        if r is not None:
            by_demand[fuel] = r
        r = _finite_correlation(*aligned_pairs(series, intensity_by_ts))
        if r is not None:
            by_intensity[fuel] = r
    return by_demand, by_intensity, _finite_correlation(*aligned_pairs(demand_by_ts, intensity_by_ts))
