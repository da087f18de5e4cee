"""Filename generators used when an upload carries no filename."""
import hashlib
import uuid
from typing import Awaitable, Callable, Dict, Protocol

CHUNK_SIZE = 64 * 1024


class UploadSource(Protocol):
    """The part of an uploaded file the server reads from (starlette's UploadFile fits)."""

    async def read(self, size: int = -1) -> bytes: ...

    async def seek(self, offset: int) -> None: ...


NamingStrategy = Callable[[UploadSource], Awaitable[str]]


async def uuid_strategy(source: UploadSource) -> str:
    return str(uuid.uuid4())


async def sha256_strategy(source: UploadSource) -> str:
    """Name the file after the SHA-256 of its content. Consumes the source."""
    digest = hashlib.sha256()
    while chunk := await source.read(CHUNK_SIZE):
        digest.update(chunk)
    return digest.hexdigest()


STRATEGIES: Dict[str, NamingStrategy] = {
    "uuid": uuid_strategy,
    "sha256": sha256_strategy,
}

DEFAULT_STRATEGY = "uuid"


def resolve_naming_strategy(name: str) -> NamingStrategy:
    if not name:
        return STRATEGIES[DEFAULT_STRATEGY]
    try:
        return STRATEGIES[name.lower()]
    except KeyError:
        raise ValueError(f"unknown file naming strategy: {name}") from None
