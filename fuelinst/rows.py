"""
fuelinst/rows.py

Row-level parsing for FUELINST data.

Responsibilities
----------------
- Map a positional column template onto a raw row (`extract_named_fields`).
- Identify fuel columns in a template.
- Convert the CSV timestamp format (`YYYYMMDDHHMMSS`, UTC) to and from epoch
  milliseconds.
- Read and write the BMR CSV envelope: a leading `HDR` row, data rows, and a
  trailing `FTR,<count>` row.

Conventions
-----------
- Rows are tuples of strings exactly as they appear in the feed.
- In FUELINST rows the type is field 0 and the timestamp is field 3.
- Fuel codes start with an uppercase letter followed by uppercase letters or
  digits; reserved column names are never fuels.
"""

from __future__ import annotations

import csv
import io
import re
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime, timezone
from types import MappingProxyType

from .errors import FeedError, RowError

Row = tuple[str, ...]

FUELINST_TYPE = "FUELINST"
TYPE_INDEX = 0
TIMESTAMP_INDEX = 3
TIMESTAMP_LEN = 14
TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"

RESERVED_COLUMNS = frozenset({"type", "date", "settlementperiod", "timestamp"})
FUEL_NAME_RE = re.compile(r"^[A-Z][A-Z0-9]*$")


def extract_named_fields(template: str, row: Sequence[str]) -> Mapping[str, str]:
    """Map template column names onto the values of `row`.

    Positions beyond the shorter of template and row are ignored, as are
    positions with an empty name or an empty value.

    Args:
        template: Comma-separated column names, e.g. "type,date,,CCGT".
        row: Raw field values.

    Returns:
        Mapping[str, str]: Read-only name to value mapping.
    """
    names = template.split(",")
    fields = {}
    for name, value in zip(names, row):
        if not name or not value:
            continue
        fields[name] = value
    return MappingProxyType(fields)


def is_fuel_name(name: str) -> bool:
    return name not in RESERVED_COLUMNS and bool(FUEL_NAME_RE.match(name))


def fuel_columns(template: str) -> list[str]:
    """Fuel column names in template order."""
    return [name for name in template.split(",") if is_fuel_name(name)]


def parse_timestamp(raw: str) -> int:
    """Parse a `YYYYMMDDHHMMSS` UTC timestamp into epoch milliseconds.

    Raises:
        RowError: If `raw` is not a valid timestamp.
    """
    if len(raw) != TIMESTAMP_LEN or not raw.isdigit():
        raise RowError(f"bad timestamp {raw!r}")
    try:
        dt = datetime.strptime(raw, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError as e:
        raise RowError(f"bad timestamp {raw!r}") from e
    return int(dt.timestamp()) * 1000


def format_timestamp(ts_ms: int) -> str:
    """Inverse of `parse_timestamp` (sub-second precision is dropped)."""
    return datetime.fromtimestamp(ts_ms // 1000, tz=timezone.utc).strftime(TIMESTAMP_FORMAT)


def row_timestamp(row: Sequence[str]) -> int:
    """Epoch milliseconds of a FUELINST row."""
    if len(row) <= TIMESTAMP_INDEX:
        raise RowError(f"row too short for a timestamp: {list(row)!r}")
    return parse_timestamp(row[TIMESTAMP_INDEX])


def parse_bmr_csv(text: str, header_check: str | None = None) -> list[Row]:
    """Parse a BMR-style CSV body, dropping the HDR and FTR rows.

    Reading stops at the first `FTR` row, whose second field must equal the
    number of data rows read.

    Args:
        text: Full CSV body.
        header_check: If given, the HDR row's second field must equal it.

    Returns:
        list[Row]: Data rows in file order.

    Raises:
        FeedError: On a missing HDR/FTR row, header mismatch, row count
            mismatch, or an empty row or type field.
    """
    reader = csv.reader(io.StringIO(text))
    header = next(reader, None)
    if not header or header[0] != "HDR":
        raise FeedError("missing HDR row")
    if header_check is not None and (len(header) < 2 or header[1] != header_check):
        raise FeedError(f"unexpected header {header!r}, wanted {header_check!r}")

    rows: list[Row] = []
    for fields in reader:
        if not fields or not fields[0]:
            raise FeedError(f"empty row or type after {len(rows)} rows")
        if fields[0] == "FTR":
            try:
                expected = int(fields[1])
            except (IndexError, ValueError) as e:
                raise FeedError(f"bad FTR row {fields!r}") from e
            if expected != len(rows):
                raise FeedError(f"FTR count {expected} does not match {len(rows)} rows")
            return rows
        rows.append(tuple(fields))
    raise FeedError("missing FTR row")


def format_bmr_csv(rows: Iterable[Sequence[str]]) -> str:
    """Render FUELINST rows in the BMR CSV envelope.

    Raises:
        ValueError: If a row has fewer than 4 fields or is not a FUELINST row.
    """
    out = io.StringIO()
    out.write("HDR\n")
    n = 0
    for row in rows:
        if len(row) <= TIMESTAMP_INDEX or row[TYPE_INDEX] != FUELINST_TYPE:
            raise ValueError(f"not a FUELINST row: {list(row)!r}")
        out.write(",".join(row))
        out.write("\n")
        n += 1
    out.write(f"FTR,{n}\n")
    return out.getvalue()
