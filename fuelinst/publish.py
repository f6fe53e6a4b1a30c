"""
fuelinst/publish.py

Publish units that consume a computed summary.

Responsibilities
----------------
- Maintain flag files that remote machines poll to decide whether to defer
  electricity use.
- Append the retail intensity to a per-day log.
- Build the short status message and post it only when it changed and the
  minimum interval since the last post has passed.

Conventions
-----------
- For a base path `B` the flag files are `B.flag`, `B.predicted.flag`,
  `B.supergreen.flag` and `B.red.flag`; the last posted message is kept in
  `B.postcache`.
- A flag file is present to signal "grid is not good now"; an unknown status
  always sets the flags.
- Log files are named `YYYYMMDD.log` (UTC) and hold lines of the form
  `2019-11-17T16:02Z 352`.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from pathlib import Path

from .store import atomic_write_bytes
from .summary import TrafficLight

logger = logging.getLogger(__name__)

FLAG_SUFFIX = ".flag"
PREDICTED_FLAG_SUFFIX = ".predicted.flag"
SUPERGREEN_FLAG_SUFFIX = ".supergreen.flag"
RED_FLAG_SUFFIX = ".red.flag"
POST_CACHE_SUFFIX = ".postcache"

MAX_MESSAGE_CHARS = 140

LOG_HEADER_LINE_1 = "# Retail GB electricity carbon intensity."
LOG_HEADER_LINE_2 = "# Time gCO2e/kWh"
LOG_HEADER_LINE_3_PREFIX = "# Intensities gCO2/kWh:"


def set_flag_file(path: str | os.PathLike, present: bool) -> None:
    """Create or remove a flag file, logging any change."""
    path = Path(path)
    if present:
        if not path.exists():
            path.touch(mode=0o644)
            logger.info("Flag file created: %s", path)
    elif path.exists():
        path.unlink()
        logger.info("Flag file deleted: %s", path)


def write_flag_files(
    base: str | os.PathLike,
    status: TrafficLight | None,
    status_uncapped: TrafficLight | None,
    storage_drawdown_mw: int,
) -> dict[str, bool]:
    """Set or clear all flag files for the published status.

    Args:
        base: Base path for the flag files.
        status: Published status (never GREEN from stale data).
        status_uncapped: Best estimate, live or predicted from history.
        storage_drawdown_mw: Current storage generation; any drawdown keeps
            the "supergreen" flag set.

    Returns:
        dict[str, bool]: Suffix to whether that flag is now present.
    """
    basic = status is not TrafficLight.GREEN
    states = {
        FLAG_SUFFIX: basic,
        PREDICTED_FLAG_SUFFIX: status_uncapped is not TrafficLight.GREEN,
        SUPERGREEN_FLAG_SUFFIX: basic or storage_drawdown_mw > 0,
        RED_FLAG_SUFFIX: status_uncapped is TrafficLight.RED,
    }
    for suffix, present in states.items():
        set_flag_file(f"{base}{suffix}", present)
    return states


def append_intensity_log(
    log_dir: str | os.PathLike,
    timestamp_ms: int,
    retail_intensity: int,
    intensities: Mapping[str, float],
    now: datetime | None = None,
) -> Path | None:
    """Append one retail intensity record to today's log.

    Only today's (UTC) log is written; a record for any other day is
    dropped with a warning. A new file starts with header lines that include
    the intensities in force.

    Args:
        log_dir: Directory holding the daily logs.
        timestamp_ms: Time of the sample, UTC epoch milliseconds.
        retail_intensity: Intensity to record, gCO2/kWh.
        intensities: Per-fuel intensities, written to the header.
        now: Current time (defaults to the wall clock).

    Returns:
        Path | None: The log file written, or None if the record was dropped.

    Raises:
        ValueError: If the timestamp is not positive or the intensity is
            negative.
    """
    if timestamp_ms <= 0:
        raise ValueError("timestamp must be positive")
    if retail_intensity < 0:
        raise ValueError("retail intensity must be non-negative")

    now = now or datetime.now(timezone.utc)
    ts = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    day = ts.strftime("%Y%m%d")
    stamp = ts.strftime("%Y-%m-%dT%H:%MZ")
    if day != now.astimezone(timezone.utc).strftime("%Y%m%d"):
        logger.warning("Will not write intensity log for %s (%s) at %s", day, stamp, now)
        return None

    log_file = Path(log_dir) / f"{day}.log"
    is_new = not log_file.exists()
    with open(log_file, "a", encoding="utf-8") as f:
        if is_new:
            f.write(LOG_HEADER_LINE_1 + "\n")
            f.write(LOG_HEADER_LINE_2 + "\n")
            fuels = " ".join(f"{fuel}={round(intensities[fuel])}" for fuel in sorted(intensities))
            f.write(f"{LOG_HEADER_LINE_3_PREFIX} {fuels}\n")
        f.write(f"{stamp} {retail_intensity}\n")
    return log_file


def status_message(
    stale: bool,
    status_uncapped: TrafficLight,
    retail_intensity: int,
    status_templates: Mapping[str, str] | None = None,
    prediction_templates: Mapping[str, str] | None = None,
) -> str:
    """Short status message for posting.

    Templates are keyed by status name; `{intensity}` is replaced by the
    retail intensity. Prediction templates are used for stale data.

    Raises:
        ValueError: If the message exceeds `MAX_MESSAGE_CHARS`.
    """
    templates = (prediction_templates if stale else status_templates) or {}
    template = templates.get(status_uncapped.value)
    if template:
        message = template.format(intensity=retail_intensity).strip()
    else:
        message = f"Grid status {status_uncapped.value}"
    if len(message) > MAX_MESSAGE_CHARS:
        raise ValueError(f"message too long ({len(message)} > {MAX_MESSAGE_CHARS} chars)")
    return message


def post_if_changed(
    poster: Callable[[str], object],
    state_path: str | os.PathLike,
    message: str,
    min_gap_mins: int = 0,
    now: datetime | None = None,
) -> bool:
    """Post `message` unless it repeats the last post or comes too soon.

    The last posted message is stored in `state_path`; its modification time
    marks when it was posted. The state is only updated after `poster`
    returns, so a failed post is retried next cycle.

    Returns:
        bool: True if `poster` was called.
    """
    state_path = Path(state_path)
    if state_path.exists():
        if state_path.read_text(encoding="utf-8") == message:
            logger.info("Status unchanged; not posting: %s", message)
            return False
        if min_gap_mins > 0:
            now = now or datetime.now(timezone.utc)
            last = datetime.fromtimestamp(state_path.stat().st_mtime, tz=timezone.utc)
            if (now - last).total_seconds() < min_gap_mins * 60:
                logger.info("Previous post too recent; skipping: %s", message)
                return False

    poster(message)
    atomic_write_bytes(state_path, message.encode("utf-8"))
    return True
