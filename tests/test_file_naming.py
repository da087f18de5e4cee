import hashlib
import io
import uuid

import pytest

from upload_server.services.file_naming import (
    resolve_naming_strategy,
    sha256_strategy,
    uuid_strategy,
)


class BytesSource:
    def __init__(self, data: bytes):
        self._buffer = io.BytesIO(data)

    async def read(self, size: int = -1) -> bytes:
        return self._buffer.read(size)

    async def seek(self, offset: int) -> None:
        self._buffer.seek(offset)


@pytest.mark.asyncio
async def test_uuid_strategy():
    first = await uuid_strategy(BytesSource(b"same"))
    second = await uuid_strategy(BytesSource(b"same"))
    assert str(uuid.UUID(first)) == first
    assert first != second


@pytest.mark.asyncio
@pytest.mark.parametrize("content", [b"", b"hello, world", b"x" * 200_000])
async def test_sha256_strategy(content):
    assert await sha256_strategy(BytesSource(content)) == hashlib.sha256(content).hexdigest()


@pytest.mark.parametrize("name,expected", [
    ("", uuid_strategy),
    ("uuid", uuid_strategy),
    ("sha256", sha256_strategy),
    ("SHA256", sha256_strategy),
])
def test_resolve_naming_strategy(name, expected):
    assert resolve_naming_strategy(name) is expected


def test_resolve_unknown_strategy():
    with pytest.raises(ValueError):
        resolve_naming_strategy("md5")
