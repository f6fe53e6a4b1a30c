"""
fuelinst/errors.py

Exception types shared across the pipeline.

Conventions
-----------
- `ConfigError` is fatal: the cycle aborts before any fetch.
- `RowError` marks a single malformed row; callers skip the row and continue.
- `FeedError` and `BatchRejected` mean no usable batch this cycle; callers fall
  back to the cached snapshot or the default summary.
"""

from __future__ import annotations


class FuelinstError(Exception):
    """Base class for all pipeline errors."""


class ConfigError(FuelinstError, ValueError):
    """Missing or invalid static configuration."""


class RowError(FuelinstError):
    """A single row could not be parsed."""


class FeedError(FuelinstError):
    """The live feed could not be fetched or parsed."""


class BatchRejected(FuelinstError):
    """A fetched batch has an unrepairable structural anomaly."""
