"""Unit tests for the FUELINST feed client."""

from __future__ import annotations

import json
import time

import pytest
import requests

from fuelinst import client
from fuelinst.errors import FeedError

TEMPLATE = "type,date,settlementperiod,timestamp,CCGT,WIND,COAL"

CSV_BODY = (
    "HDR,FUELINST\n"
    "FUELINST,20240212,36,20240212174500,9000,4000,0\n"
    "FUELINST,20240212,36,20240212175000,9100,3900,0\n"
    "FTR,2\n"
)


class DummyResponse:
    def __init__(self, text):
        self.text = text

    def raise_for_status(self):
        return None


def test_fetch_text_success(monkeypatch):
    """`fetch_text` should send the User-Agent and the configured timeout."""

    def fake_get(url, headers, timeout):
        assert url == "https://example.org/fuelinst"
        assert headers["User-Agent"] == client.USER_AGENT
        assert timeout == client.HTTP_TIMEOUT
        return DummyResponse("body")

    monkeypatch.setattr(client.requests, "get", fake_get)

    assert client.fetch_text("https://example.org/fuelinst") == "body"


def test_fetch_text_retries(monkeypatch):
    """Transient `RequestException`s should be retried before succeeding."""

    attempts = 0

    def fake_get(url, headers, timeout):
        nonlocal attempts
        attempts += 1
        if attempts < 2:
            raise requests.RequestException("boom")
        return DummyResponse("ok")

    monkeypatch.setattr(client.requests, "get", fake_get)
    monkeypatch.setattr(client.time, "sleep", lambda _: None)

    result = client.fetch_text("https://example.org/fuelinst")

    assert attempts == 2
    assert result == "ok"


def test_fetch_text_raises_after_max_retries(monkeypatch):
    """When all retry attempts fail the final exception should bubble up."""

    attempts = 0

    def fake_get(url, headers, timeout):
        nonlocal attempts
        attempts += 1
        raise requests.RequestException("nope")

    monkeypatch.setattr(client.requests, "get", fake_get)
    monkeypatch.setattr(client.time, "sleep", lambda _: None)

    with pytest.raises(requests.RequestException):
        client.fetch_text("https://example.org/fuelinst")

    assert attempts == client.MAX_RETRIES


def test_fetch_text_reads_local_files(tmp_path):
    """Paths and file:// URLs are read from disk."""

    path = tmp_path / "feed.csv"
    path.write_text(CSV_BODY, encoding="utf-8")

    assert client.fetch_text(str(path)) == CSV_BODY
    assert client.fetch_text(f"file://{path}") == CSV_BODY


def test_fetch_batch_csv(tmp_path):
    """A BMR CSV body parses into FUELINST rows."""

    path = tmp_path / "feed.csv"
    path.write_text(CSV_BODY, encoding="utf-8")

    rows = client.fetch_batch(str(path), TEMPLATE, header_check="FUELINST")

    assert rows == [
        ("FUELINST", "20240212", "36", "20240212174500", "9000", "4000", "0"),
        ("FUELINST", "20240212", "36", "20240212175000", "9100", "3900", "0"),
    ]


def test_rows_from_stream_groups_by_start_time():
    """Stream records for one slot become one row in template order."""

    records = [
        {"startTime": "2024-02-12T17:50:00Z", "settlementDate": "2024-02-12",
         "settlementPeriod": 36, "fuelType": "CCGT", "generation": 9100},
        {"startTime": "2024-02-12T17:45:00Z", "settlementDate": "2024-02-12",
         "settlementPeriod": 36, "fuelType": "WIND", "generation": 4000},
        {"startTime": "2024-02-12T17:45:00Z", "settlementDate": "2024-02-12",
         "settlementPeriod": 36, "fuelType": "CCGT", "generation": 9000},
        {"startTime": "2024-02-12T17:45:00Z", "settlementDate": "2024-02-12",
         "settlementPeriod": 36, "fuelType": "UNKNOWN", "generation": 5},
    ]

    rows = client.rows_from_stream(records, TEMPLATE)

    assert rows == [
        ("FUELINST", "20240212", "36", "20240212174500", "9000", "4000", ""),
        ("FUELINST", "20240212", "36", "20240212175000", "9100", "", ""),
    ]


def test_rows_from_stream_bad_record():
    """Records missing required fields are a feed error."""

    with pytest.raises(FeedError):
        client.rows_from_stream([{"fuelType": "CCGT"}], TEMPLATE)


def test_parse_body_json_envelope():
    """A `{"data": [...]}` envelope is unwrapped."""

    body = json.dumps({"data": [
        {"startTime": "2024-02-12T17:45:00Z", "settlementPeriod": 36,
         "fuelType": "COAL", "generation": 12},
    ]})

    rows = client.parse_body(body, TEMPLATE)

    assert rows == [("FUELINST", "20240212", "36", "20240212174500", "", "", "12")]


def test_fetch_batch_wraps_errors(monkeypatch, tmp_path):
    """Fetch and parse failures both surface as FeedError."""

    def fake_get(url, headers, timeout):
        raise requests.RequestException("down")

    monkeypatch.setattr(client.requests, "get", fake_get)
    monkeypatch.setattr(client.time, "sleep", lambda _: None)

    with pytest.raises(FeedError):
        client.fetch_batch("https://example.org/fuelinst", TEMPLATE)

    path = tmp_path / "broken.csv"
    path.write_text("not,a,feed\n", encoding="utf-8")
    with pytest.raises(FeedError):
        client.fetch_batch(str(path), TEMPLATE)
    with pytest.raises(FeedError):
        client.fetch_batch(str(tmp_path / "missing.csv"), TEMPLATE)


@pytest.mark.skipif(not hasattr(time, "tzset"), reason="needs time.tzset")
def test_rows_from_stream_naive_time_is_utc(monkeypatch):
    """A `startTime` without an offset is read as UTC, whatever the host zone."""

    records = [{"startTime": "2024-02-12T17:45:00", "settlementPeriod": 36,
                "fuelType": "WIND", "generation": 4000}]
    monkeypatch.setenv("TZ", "America/New_York")
    time.tzset()
    try:
        rows = client.rows_from_stream(records, TEMPLATE)
    finally:
        monkeypatch.undo()
        time.tzset()

    assert rows == [("FUELINST", "20240212", "36", "20240212174500", "", "4000", "")]
