"""GB grid carbon-intensity pipeline built on Elexon FUELINST data."""

from . import buckets, client, config, errors, intensity, publish, rows, run, stats, store, summary, validate

__all__ = [
    "buckets",
    "client",
    "config",
    "errors",
    "intensity",
    "publish",
    "rows",
    "run",
    "stats",
    "store",
    "summary",
    "validate",
]
