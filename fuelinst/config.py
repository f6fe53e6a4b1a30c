"""
fuelinst/config.py

Static configuration for the intensity pipeline.

Responsibilities
----------------
- Load `.env` for local development and read settings from the environment.
- Validate the configuration into a frozen `Settings` model.
- Resolve per-fuel carbon intensities for a given year from year-qualified
  configuration keys.

Environment Variables
---------------------
FUELINST_DATA_URL
    Source of the current FUELINST data (http(s) URL or local path). Required.
FUELINST_ROW_TEMPLATE
    Comma-separated positional column names for FUELINST rows. `type` must be
    column 0 and `timestamp` column 3, as in the BMR layout.
FUELINST_INTENSITIES
    Comma-separated `KEY=gCO2/kWh` pairs. Required. KEY is `FUEL`,
    `FUEL.YYYY`, `FUEL.YYYY/YYYY`, `FUEL.YYYY/` or `FUEL./YYYY`.
FUELINST_FUEL_NAMES
    Optional `FUEL=Description` pairs.
FUELINST_STORAGE_TYPES
    Comma-separated fuel codes treated as storage drawdown. Defaults to "PS".
FUELINST_MAX_AGE_S
    Seconds after the newest sample for which a summary is usable.
FUELINST_LOSS_DISTRIBUTION, FUELINST_LOSS_TRANSMISSION
    Grid loss fractions in [0, 1].
FUELINST_OUTPUT_BASE
    Base path for the cache, long store, flag and post-state files.
FUELINST_LOG_DIR
    Directory for the daily retail intensity logs.
FUELINST_POST_MIN_GAP_MINS
    Minimum minutes between status posts (0 disables the check).
FUELINST_MESSAGE_<STATUS>, FUELINST_PREDICTION_<STATUS>
    Optional status post templates for live and stale data; `{intensity}` is
    replaced with the retail intensity.

Conventions
-----------
- Intensities are configured directly in gCO2/kWh.
- A year-specific intensity entry overrides the unqualified default for that
  fuel; years must lie in [2000, 3000).
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from .errors import ConfigError
from .rows import TIMESTAMP_INDEX, TYPE_INDEX

load_dotenv()

DEFAULT_ROW_TEMPLATE = (
    "type,date,settlementperiod,timestamp,"
    "CCGT,OIL,COAL,NUCLEAR,WIND,PS,NPSHYD,OCGT,OTHER,"
    "INTFR,INTIRL,INTNED,INTEW,BIOMASS,INTNEM,INTELEC,INTIFA2,INTNSL"
)
DEFAULT_MAX_AGE_S = 3600
DEFAULT_LOSS_DISTRIBUTION = 0.07
DEFAULT_LOSS_TRANSMISSION = 0.02

STATUS_NAMES = ("RED", "YELLOW", "GREEN")

MIN_YEAR = 2000
MAX_YEAR = 3000  # exclusive

_INTENSITY_KEY_RE = re.compile(r"^(?P<fuel>[A-Z][A-Z0-9]*)(?:\.(?P<years>.*))?$")
_YEAR_RE = re.compile(r"^[0-9]{4}$")


def _parse_year(raw: str, key: str) -> int | None:
    if raw == "":
        return None
    if not _YEAR_RE.match(raw):
        raise ConfigError(f"bad year {raw!r} in intensity key {key!r}")
    year = int(raw)
    if not MIN_YEAR <= year < MAX_YEAR:
        raise ConfigError(f"year {year} out of range in intensity key {key!r}")
    return year


def parse_intensity_key(key: str) -> tuple[str, int | None, int | None]:
    """Split an intensity key into (fuel, first_year, last_year).

    Both years are None for an unqualified default entry. An open-ended range
    (`FUEL.2020/` or `FUEL./2020`) leaves one side None.

    Raises:
        ConfigError: If the key is malformed or a year is out of range.
    """
    m = _INTENSITY_KEY_RE.match(key.strip())
    if not m:
        raise ConfigError(f"bad intensity key {key!r}")
    fuel, years = m.group("fuel"), m.group("years")
    if years is None:
        return fuel, None, None
    if "/" in years:
        lo_raw, _, hi_raw = years.partition("/")
        lo, hi = _parse_year(lo_raw, key), _parse_year(hi_raw, key)
        if lo is None and hi is None:
            raise ConfigError(f"empty year range in intensity key {key!r}")
        if lo is not None and hi is not None and lo > hi:
            raise ConfigError(f"inverted year range in intensity key {key!r}")
        return fuel, lo, hi
    year = _parse_year(years, key)
    if year is None:
        raise ConfigError(f"missing year in intensity key {key!r}")
    return fuel, year, year


def resolve_intensities(entries: Mapping[str, float], year: int) -> dict[str, float]:
    """Resolve per-fuel intensities (gCO2/kWh) in force during `year`.

    Args:
        entries: Raw configuration mapping of intensity key to value.
        year: Calendar year (UTC) the intensities should apply to.

    Returns:
        dict[str, float]: Fuel code to intensity. Fuels with only
        year-specific entries that do not cover `year` are omitted.

    Raises:
        ConfigError: On malformed keys, negative values, or two different
            year-specific values that both cover `year` for the same fuel.
    """
    defaults: dict[str, float] = {}
    specific: dict[str, float] = {}
    for key, value in entries.items():
        fuel, lo, hi = parse_intensity_key(key)
        if value < 0:
            raise ConfigError(f"negative intensity for {key!r}")
        if lo is None and hi is None:
            defaults[fuel] = float(value)
            continue
        if (lo is None or lo <= year) and (hi is None or year <= hi):
            if fuel in specific and specific[fuel] != value:
                raise ConfigError(f"overlapping intensities for {fuel} in {year}")
            specific[fuel] = float(value)
    resolved = dict(defaults)
    resolved.update(specific)
    return resolved


class Settings(BaseModel):
    """Validated static configuration for one pipeline run."""

    model_config = ConfigDict(frozen=True)

    data_url: str
    row_template: str = DEFAULT_ROW_TEMPLATE
    intensity_entries: dict[str, float]
    fuel_names: dict[str, str] = {}
    storage_types: frozenset[str] = frozenset({"PS"})
    max_intensity_age_s: int = DEFAULT_MAX_AGE_S
    loss_distribution: float = DEFAULT_LOSS_DISTRIBUTION
    loss_transmission: float = DEFAULT_LOSS_TRANSMISSION
    output_base: str | None = None
    log_dir: str | None = None
    post_min_gap_mins: int = 0
    status_messages: dict[str, str] = {}
    prediction_messages: dict[str, str] = {}

    @field_validator("data_url")
    @classmethod
    def check_url(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("data URL must not be empty")
        return v

    @field_validator("row_template")
    @classmethod
    def check_template(cls, v: str) -> str:
        names = v.split(",")
        for index, required in ((TYPE_INDEX, "type"), (TIMESTAMP_INDEX, "timestamp")):
            if len(names) <= index or names[index] != required:
                raise ValueError(f"row template must have {required!r} in column {index}")
        return v

    @field_validator("intensity_entries")
    @classmethod
    def check_intensities(cls, v: dict[str, float]) -> dict[str, float]:
        if not v:
            raise ValueError("no fuel intensities configured")
        for key, value in v.items():
            parse_intensity_key(key)
            if value < 0:
                raise ValueError(f"negative intensity for {key!r}")
        return v

    @field_validator("loss_distribution", "loss_transmission")
    @classmethod
    def check_loss(cls, v: float) -> float:
        if not 0 <= v <= 1:
            raise ValueError("loss fraction must be in [0, 1]")
        return v

    @field_validator("max_intensity_age_s")
    @classmethod
    def check_max_age(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("max intensity age must be positive")
        return v

    @field_validator("post_min_gap_mins")
    @classmethod
    def check_gap(cls, v: int) -> int:
        if v < 0:
            raise ValueError("post gap must be non-negative")
        return v

    @property
    def total_grid_losses(self) -> float:
        return self.loss_distribution + self.loss_transmission

    @property
    def categories(self) -> dict[str, str]:
        """Fuel code to category name for categorised fuels."""
        return {fuel: "storage" for fuel in self.storage_types}

    def intensities(self, year: int) -> dict[str, float]:
        return resolve_intensities(self.intensity_entries, year)


def _split_pairs(raw: str, name: str) -> dict[str, str]:
    """Parse "K1=V1,K2=V2" into a dict, ignoring blank items."""
    out = {}
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise ConfigError(f"{name}: expected KEY=VALUE, got {item!r}")
        out[key.strip()] = value.strip()
    return out


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from e


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    """Build validated `Settings` from environment variables.

    Args:
        env: Optional mapping to read instead of `os.environ` (useful for
            testing).

    Returns:
        Settings: The validated configuration.

    Raises:
        ConfigError: If a required value is missing or any value is invalid.
    """
    env = os.environ if env is None else env

    data_url = env.get("FUELINST_DATA_URL")
    if not data_url:
        raise ConfigError("FUELINST_DATA_URL is not set")
    raw_intensities = env.get("FUELINST_INTENSITIES")
    if not raw_intensities:
        raise ConfigError("FUELINST_INTENSITIES is not set")

    intensity_entries = {}
    for key, value in _split_pairs(raw_intensities, "FUELINST_INTENSITIES").items():
        try:
            intensity_entries[key] = float(value)
        except ValueError as e:
            raise ConfigError(f"intensity for {key!r} is not a number: {value!r}") from e

    storage_raw = env.get("FUELINST_STORAGE_TYPES", "PS")
    storage_types = frozenset(s.strip() for s in storage_raw.split(",") if s.strip())

    status_messages = {}
    prediction_messages = {}
    for status in STATUS_NAMES:
        if env.get(f"FUELINST_MESSAGE_{status}"):
            status_messages[status] = env[f"FUELINST_MESSAGE_{status}"]
        if env.get(f"FUELINST_PREDICTION_{status}"):
            prediction_messages[status] = env[f"FUELINST_PREDICTION_{status}"]

    try:
        return Settings(
            data_url=data_url,
            row_template=env.get("FUELINST_ROW_TEMPLATE") or DEFAULT_ROW_TEMPLATE,
            intensity_entries=intensity_entries,
            fuel_names=_split_pairs(env.get("FUELINST_FUEL_NAMES", ""), "FUELINST_FUEL_NAMES"),
            storage_types=storage_types,
            max_intensity_age_s=_int(env, "FUELINST_MAX_AGE_S", DEFAULT_MAX_AGE_S),
            loss_distribution=_float(env, "FUELINST_LOSS_DISTRIBUTION", DEFAULT_LOSS_DISTRIBUTION),
            loss_transmission=_float(env, "FUELINST_LOSS_TRANSMISSION", DEFAULT_LOSS_TRANSMISSION),
            output_base=env.get("FUELINST_OUTPUT_BASE") or None,
            log_dir=env.get("FUELINST_LOG_DIR") or None,
            post_min_gap_mins=_int(env, "FUELINST_POST_MIN_GAP_MINS", 0),
            status_messages=status_messages,
            prediction_messages=prediction_messages,
        )
    except ValidationError as e:
        raise ConfigError(str(e)) from e
