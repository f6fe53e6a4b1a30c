"""Pytest configuration shared across the test suite."""

from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Ensure the project root is on sys.path so ``import fuelinst`` works when running
# the test suite without installing the package.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Two-fuel template used by most tests: A is zero-carbon, B is 1000 gCO2/kWh.
TEMPLATE = "type,date,settlementperiod,timestamp,A,B"
INTENSITIES = {"A": 0.0, "B": 1000.0}
START = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def template():
    return TEMPLATE


@pytest.fixture
def intensities():
    return dict(INTENSITIES)


@pytest.fixture
def start():
    return START


@pytest.fixture
def make_row():
    """Factory for FUELINST rows under `TEMPLATE`."""

    def _make(ts: datetime, a: int, b: int, row_type: str = "FUELINST"):
        return (row_type, ts.strftime("%Y%m%d"), "1", ts.strftime("%Y%m%d%H%M%S"), str(a), str(b))

    return _make


@pytest.fixture
def day_rows(make_row):
    """24 hourly rows over 2024-01-01 alternating A/B between 60/40 and 40/60 MW.

    Weighted intensities alternate 400, 600, ... ending on 600.
    """
    rows = []
    for i in range(24):
        a = 60 if i % 2 == 0 else 40
        rows.append(make_row(START + timedelta(hours=i), a, 100 - a))
    return rows
