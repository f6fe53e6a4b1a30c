"""Tests for correlation and variability helpers."""

from __future__ import annotations

import math

import pytest

from fuelinst import stats
from fuelinst.validate import GenerationSample


def test_perfect_positive_and_negative():
    """Linear relationships give +/-1."""

    xs = [1, 2, 3, 4, 5]

    assert stats.pearson_correlation(xs, [2 * x + 1 for x in xs]) == pytest.approx(1.0)
    assert stats.pearson_correlation(xs, [-3 * x for x in xs]) == pytest.approx(-1.0)


def test_known_value():
    """A small hand-checked example."""

    xs = [1, 2, 3, 4]
    ys = [1, 3, 2, 4]

    assert stats.pearson_correlation(xs, ys) == pytest.approx(0.8)


def test_large_common_offset_is_stable():
    """Adding a large constant to both series does not change the result."""

    xs = [1, 2, 3, 4]
    ys = [1, 3, 2, 4]
    big = 1e9

    r = stats.pearson_correlation([x + big for x in xs], [y + big for y in ys])

    assert r == pytest.approx(0.8, abs=1e-6)


def test_symmetric_and_bounded():
    """Swapping series gives the same result, within [-1, 1]."""

    xs = [3, 1, 4, 1, 5, 9, 2, 6]
    ys = [2, 7, 1, 8, 2, 8, 1, 8]

    r = stats.pearson_correlation(xs, ys)

    assert r == pytest.approx(stats.pearson_correlation(ys, xs))
    assert -1.0 <= r <= 1.0


def test_self_correlation_is_one():
    """A series correlates perfectly with itself."""

    xs = [3, 1, 4, 1, 5, 9, 2, 6]

    assert stats.pearson_correlation(xs, xs) == pytest.approx(1.0)


def test_degenerate_inputs_are_nan():
    """One pair or a constant series has no defined correlation."""

    assert math.isnan(stats.pearson_correlation([1], [2]))
    assert math.isnan(stats.pearson_correlation([1, 1, 1], [1, 2, 3]))


def test_invalid_inputs_raise():
    """Empty or mismatched series are errors."""

    with pytest.raises(ValueError):
        stats.pearson_correlation([], [])
    with pytest.raises(ValueError):
        stats.pearson_correlation([1, 2], [1])


def test_aligned_pairs_uses_common_timestamps():
    """Only timestamps present with values on both sides are paired."""

    xs, ys = stats.aligned_pairs({3: 30, 1: 10, 2: 20, 5: None}, {1: 1, 2: 2, 4: 4, 5: 5})

    assert xs == [10, 20]
    assert ys == [1, 2]


@pytest.mark.parametrize(
    "lo,hi,expected",
    [(0, 0, 0), (50, 100, 50), (100, 100, 0), (0, 100, 100), (1, 3, 67)],
)
def test_variability(lo, hi, expected):
    """Variability is the integer percentage spread relative to the maximum."""

    assert stats.variability(lo, hi) == expected


def test_variability_rejects_negative():
    """Negative bounds are a caller error."""

    with pytest.raises(ValueError):
        stats.variability(-1, 5)
    with pytest.raises(ValueError):
        stats.variability_of([])


def test_fuel_correlations(intensities):
    """Fuels are correlated with intensity; constant demand is left out."""

    samples = [
        GenerationSample(timestamp_ms=1_000 * i, generation={"A": a, "B": 100 - a})
        for i, a in enumerate([10, 20, 30], start=1)
    ]

    by_demand, by_intensity, demand_vs_intensity = stats.fuel_correlations(samples, intensities)

    assert by_demand == {}
    assert by_intensity["A"] == pytest.approx(-1.0)
    assert by_intensity["B"] == pytest.approx(1.0)
    assert demand_vs_intensity is None


def test_fuel_correlations_skips_thin_mix(intensities):
    """Samples with too few fuels are ignored entirely."""

    samples = [
        GenerationSample(timestamp_ms=1_000, generation={"A": 10, "B": 0}),
        GenerationSample(timestamp_ms=2_000, generation={"A": 10, "B": 90}),
    ]

    by_demand, by_intensity, demand_vs_intensity = stats.fuel_correlations(samples, intensities)

    assert by_demand == {} and by_intensity == {}
    assert demand_vs_intensity is None
