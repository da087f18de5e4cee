"""Conditional and partial GET: If-Modified-Since, If-Range and single byte ranges."""
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional

from upload_server.errors import RangeNotSatisfiableError
from upload_server.services.storage import FileStat

RANGE_UNIT_PREFIX = "bytes="
INVALID_RANGE = "invalid range"
NO_OVERLAP = "invalid range: failed to overlap"

RANGE_SPEC = re.compile(r"([0-9]*)\s*-\s*([0-9]*)")


@dataclass(frozen=True)
class ByteRange:
    start: int
    length: int

    def content_range(self, size: int) -> str:
        return f"bytes {self.start}-{self.start + self.length - 1}/{size}"


def parse_http_date(value: Optional[str]) -> Optional[datetime]:
    """Parse an HTTP date header. Dates without a zone are taken as UTC."""
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def not_modified_since(header: Optional[str], stat: FileStat) -> bool:
    since = parse_http_date(header)
    if since is None:
        return False
    return int(stat.mtime) <= since.timestamp()


def if_range_allows(header: Optional[str], stat: FileStat) -> bool:
    """Whether a Range header may be honoured given the If-Range header.

    Files carry no entity tag, so an If-Range holding one never matches. A
    date matches only when it equals the modification time to the second.
    """
    if not header:
        return True
    if header.startswith(('"', 'W/')):
        return False
    since = parse_http_date(header)
    if since is None:
        return False
    return int(stat.mtime) == int(since.timestamp())


def range_error(message: str, size: int) -> RangeNotSatisfiableError:
    return RangeNotSatisfiableError(message, headers={"Content-Range": f"bytes */{size}"})


def parse_range(header: Optional[str], size: int) -> Optional[ByteRange]:
    """Parse a Range header against a file of ``size`` bytes.

    Returns None when the whole file should be sent: no header, or a request
    for several ranges, which is answered with the full content.

    Raises:
        RangeNotSatisfiableError: The header is malformed or starts past the end
    """
    if not header:
        return None
    if not header.startswith(RANGE_UNIT_PREFIX):
        raise range_error(INVALID_RANGE, size)

    specs = [spec.strip() for spec in header[len(RANGE_UNIT_PREFIX):].split(",")]
    specs = [spec for spec in specs if spec]
    if not specs:
        raise range_error(INVALID_RANGE, size)
    if len(specs) > 1:
        return None

    match = RANGE_SPEC.fullmatch(specs[0])
    if match is None:
        raise range_error(INVALID_RANGE, size)
    start_text, end_text = match.groups()
    if not (start_text or end_text):
        raise range_error(INVALID_RANGE, size)

    if not start_text:
        # Suffix range: the last N bytes
        suffix = int(end_text)
        if suffix == 0 or size == 0:
            raise range_error(NO_OVERLAP, size)
        suffix = min(suffix, size)
        return ByteRange(size - suffix, suffix)

    start = int(start_text)
    if start >= size:
        raise range_error(NO_OVERLAP, size)
    if not end_text:
        return ByteRange(start, size - start)
    end = int(end_text)
    if end < start:
        raise range_error(INVALID_RANGE, size)
    end = min(end, size - 1)
    return ByteRange(start, end - start + 1)
