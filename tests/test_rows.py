"""Tests for row extraction and the BMR CSV codec."""

from __future__ import annotations

import pytest

from fuelinst import rows
from fuelinst.errors import FeedError, RowError


def test_extract_named_fields_skips_blanks():
    """Empty names and empty values are both dropped."""

    fields = rows.extract_named_fields(
        "type,ONE,TWO,THREE,,STUFF",
        ["SOMETYPENAME", "1", "two", "verymany", "other", "stuff", ""],
    )

    assert dict(fields) == {
        "type": "SOMETYPENAME",
        "ONE": "1",
        "TWO": "two",
        "THREE": "verymany",
        "STUFF": "stuff",
    }


def test_extract_named_fields_short_row_and_read_only():
    """Only positions present in both are mapped; the result is read-only."""

    fields = rows.extract_named_fields("type,A,B,C", ["FUELINST", "", "3"])

    assert dict(fields) == {"type": "FUELINST", "B": "3"}
    with pytest.raises(TypeError):
        fields["A"] = "1"


def test_fuel_columns_excludes_reserved_names():
    """Reserved and non-code names are not fuels; single letters are."""

    template = "type,date,settlementperiod,timestamp,CCGT,A,INTIFA2,lower,2X"

    assert rows.fuel_columns(template) == ["CCGT", "A", "INTIFA2"]


def test_timestamp_conversion():
    """The compact UTC timestamp maps to epoch milliseconds and back."""

    ts = rows.parse_timestamp("20221104095000")

    assert ts == 1667555400000
    assert rows.format_timestamp(ts) == "20221104095000"


@pytest.mark.parametrize("raw", ["2022110409500", "2022110409500x", "20221304095000"])
def test_bad_timestamp_raises(raw):
    """Wrong length, non-digits and impossible dates are rejected."""

    with pytest.raises(RowError):
        rows.parse_timestamp(raw)


def test_parse_bmr_csv():
    """HDR and FTR rows are consumed and data rows kept intact."""

    parsed = rows.parse_bmr_csv("HDR,type\r\nTEST,1,2,,42\r\nFTR,1\r\n", header_check="type")

    assert parsed == [("TEST", "1", "2", "", "42")]


def test_parse_bmr_csv_stops_at_footer():
    """Anything after the FTR row is ignored."""

    parsed = rows.parse_bmr_csv("HDR\nFUELINST,a,b,c,d\nFTR,1\ntrailing,junk\n")

    assert len(parsed) == 1


@pytest.mark.parametrize(
    "text",
    [
        "FUELINST,1,2,3,4\nFTR,1\n",  # no HDR
        "HDR\nFUELINST,1,2,3,4\n",  # no FTR
        "HDR\nFUELINST,1,2,3,4\nFTR,2\n",  # count mismatch
        "HDR\nFUELINST,1,2,3,4\n\nFTR,1\n",  # blank row
        "HDR\n,1,2,3\nFTR,1\n",  # empty type
        "HDR\nFTR,x\n",  # unparseable count
    ],
)
def test_parse_bmr_csv_rejects_bad_envelopes(text):
    """Envelope defects raise FeedError."""

    with pytest.raises(FeedError):
        rows.parse_bmr_csv(text)


def test_parse_bmr_csv_header_check_mismatch():
    """A mismatched header heading is rejected."""

    with pytest.raises(FeedError):
        rows.parse_bmr_csv("HDR,other\nFTR,0\n", header_check="type")


def test_format_bmr_csv():
    """Rows are framed with HDR and a counting FTR row."""

    text = rows.format_bmr_csv([("FUELINST", "20240101", "1", "20240101000000", "5")])

    assert text == "HDR\nFUELINST,20240101,1,20240101000000,5\nFTR,1\n"
    assert rows.parse_bmr_csv(text) == [("FUELINST", "20240101", "1", "20240101000000", "5")]


def test_format_bmr_csv_rejects_other_rows():
    """Only FUELINST rows with a timestamp field can be written."""

    with pytest.raises(ValueError):
        rows.format_bmr_csv([("OTHER", "1", "2", "3")])
    with pytest.raises(ValueError):
        rows.format_bmr_csv([("FUELINST", "1", "2")])
