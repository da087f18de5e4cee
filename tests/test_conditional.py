import time
from datetime import datetime, timezone

import pytest

from upload_server.conditional import (
    INVALID_RANGE,
    NO_OVERLAP,
    ByteRange,
    if_range_allows,
    not_modified_since,
    parse_http_date,
    parse_range,
)
from upload_server.errors import RangeNotSatisfiableError
from upload_server.services.storage import FileStat

MILLENNIUM = datetime(2000, 1, 1, tzinfo=timezone.utc).timestamp()


@pytest.fixture
def stat():
    return FileStat(size=11, mtime=MILLENNIUM, is_dir=False)


@pytest.fixture
def eastern_local_time(monkeypatch):
    """Run with a local timezone far from UTC."""
    monkeypatch.setenv("TZ", "America/New_York")
    time.tzset()
    yield
    monkeypatch.undo()
    time.tzset()


@pytest.mark.parametrize("header,expected", [
    ("bytes=0-4", ByteRange(0, 5)),
    ("bytes=6-", ByteRange(6, 5)),
    ("bytes=-5", ByteRange(6, 5)),
    ("bytes=-100", ByteRange(0, 11)),
    ("bytes=3-3", ByteRange(3, 1)),
    ("bytes=4-100", ByteRange(4, 7)),
    ("bytes= 0 - 4 ", ByteRange(0, 5)),
    (None, None),
    ("", None),
    ("bytes=0-1,4-5", None),
])
def test_parse_range(header, expected):
    assert parse_range(header, 11) == expected


@pytest.mark.parametrize("header,message", [
    ("bytes=11-", NO_OVERLAP),
    ("bytes=20-30", NO_OVERLAP),
    ("bytes=-0", NO_OVERLAP),
    ("bytes=5-2", INVALID_RANGE),
    ("bytes=a-b", INVALID_RANGE),
    ("bytes=-", INVALID_RANGE),
    ("bytes=", INVALID_RANGE),
    ("items=0-4", INVALID_RANGE),
])
def test_parse_range_not_satisfiable(header, message):
    with pytest.raises(RangeNotSatisfiableError) as exc_info:
        parse_range(header, 11)
    assert exc_info.value.status_code == 416
    assert exc_info.value.message == message
    assert exc_info.value.headers == {"Content-Range": "bytes */11"}


def test_empty_file_has_no_ranges():
    with pytest.raises(RangeNotSatisfiableError):
        parse_range("bytes=0-", 0)


def test_content_range():
    assert ByteRange(0, 5).content_range(11) == "bytes 0-4/11"
    assert ByteRange(6, 5).content_range(11) == "bytes 6-10/11"


@pytest.mark.parametrize("value", [None, "", "not a date"])
def test_parse_http_date_rejects(value):
    assert parse_http_date(value) is None


def test_parse_http_date_without_zone_is_utc(eastern_local_time):
    parsed = parse_http_date("Sat, 01 Jan 2000 00:00:00 -0000")
    assert parsed.timestamp() == MILLENNIUM


def test_not_modified_since(stat):
    assert not_modified_since("Sat, 01 Jan 2000 00:00:00 GMT", stat)
    assert not_modified_since("Sun, 02 Jan 2000 00:00:00 GMT", stat)
    assert not not_modified_since("Fri, 31 Dec 1999 23:59:59 GMT", stat)
    assert not not_modified_since(None, stat)
    assert not not_modified_since("garbage", stat)


def test_not_modified_since_without_zone(stat, eastern_local_time):
    assert not_modified_since("Sat, 01 Jan 2000 00:00:00 -0000", stat)
    assert not not_modified_since("Fri, 31 Dec 1999 23:59:59 -0000", stat)


def test_if_range_allows(stat):
    assert if_range_allows(None, stat)
    assert if_range_allows("Sat, 01 Jan 2000 00:00:00 GMT", stat)
    assert not if_range_allows("Sun, 02 Jan 2000 00:00:00 GMT", stat)
    assert not if_range_allows('"some-etag"', stat)
    assert not if_range_allows('W/"weak"', stat)
    assert not if_range_allows("garbage", stat)
