"""Rooted file tree access used by the request handlers.

Paths are slash separated and always resolved beneath the storage root:
leading slashes are ignored and ``..`` segments cannot climb above the root.

Writes are staged. ``create()`` returns a writer whose content only replaces
the destination when ``commit()`` is called; closing an uncommitted writer
discards what was written.

Reads go through the handle ``open()`` returns. Its stat and content come
from the same open file, so a concurrent overwrite of the path never mixes
the size of one version with the bytes of another.
"""
import logging
import os
import posixpath
import stat as stat_module
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Dict, Optional, Protocol, Tuple

import aiofiles
import aiofiles.os

from upload_server.logger_config import LOGGER_NAME

CHUNK_SIZE = 8192  # 8KB chunks


def clean_path(path: str) -> str:
    """Normalize a request path into a root-relative posix path ("" is the root)."""
    normalized = posixpath.normpath("/" + path.replace("\\", "/"))
    return normalized.lstrip("/")


@dataclass(frozen=True)
class FileStat:
    size: int
    mtime: float
    is_dir: bool


def file_stat(st: os.stat_result) -> FileStat:
    return FileStat(
        size=st.st_size,
        mtime=st.st_mtime,
        is_dir=stat_module.S_ISDIR(st.st_mode),
    )


class FileWriter(Protocol):
    async def write(self, data: bytes) -> None: ...

    async def commit(self) -> None: ...

    async def close(self) -> None: ...


class FileReader(Protocol):
    async def stat(self) -> FileStat: ...

    async def peek(self, size: int) -> bytes: ...

    def chunks(self, start: int, length: int) -> AsyncIterator[bytes]: ...

    async def close(self) -> None: ...


class Storage(Protocol):
    async def initialize(self) -> None: ...

    async def exists(self, path: str) -> bool: ...

    async def stat(self, path: str) -> FileStat: ...

    async def open(self, path: str) -> FileReader: ...

    async def create(self, path: str) -> FileWriter: ...

    async def mkdir_all(self, path: str) -> None: ...


class LocalFileWriter:
    def __init__(self, handle, temp_path: Path, dest_path: Path):
        self._handle = handle
        self._temp_path = temp_path
        self._dest_path = dest_path
        self._closed = False

    async def write(self, data: bytes) -> None:
        await self._handle.write(data)

    async def commit(self) -> None:
        await self._handle.close()
        self._closed = True
        try:
            await aiofiles.os.replace(str(self._temp_path), str(self._dest_path))
        except OSError:
            await self._discard()
            raise

    async def close(self) -> None:
        if self._closed:
            return
        await self._handle.close()
        self._closed = True
        await self._discard()

    async def _discard(self) -> None:
        if await aiofiles.os.path.exists(self._temp_path):
            await aiofiles.os.unlink(self._temp_path)


class LocalFileReader:
    """An open file. Replacing the path afterwards does not change what it reads."""

    def __init__(self, handle):
        self._handle = handle
        self._closed = False

    async def stat(self) -> FileStat:
        return file_stat(os.fstat(self._handle.fileno()))

    async def peek(self, size: int) -> bytes:
        await self._handle.seek(0)
        return await self._handle.read(size)

    async def chunks(self, start: int, length: int) -> AsyncIterator[bytes]:
        """Yield ``length`` bytes from ``start``, then close the file."""
        try:
            await self._handle.seek(start)
            remaining = length
            while remaining > 0:
                chunk = await self._handle.read(min(CHUNK_SIZE, remaining))
                if not chunk:
                    break
                remaining -= len(chunk)
                yield chunk
        finally:
            await self.close()

    async def close(self) -> None:
        if not self._closed:
            self._closed = True
            await self._handle.close()


class LocalStorage:
    """Storage backed by a directory on the local filesystem."""

    def __init__(self, root, logger: Optional[logging.Logger] = None):
        self.root = Path(root).resolve()
        self.logger = logger or logging.getLogger(LOGGER_NAME)

    async def initialize(self):
        """Create the document root if it doesn't exist."""
        await aiofiles.os.makedirs(self.root, exist_ok=True)
        self.logger.debug(f"Document root created/verified: {self.root}")

    def real_path(self, path: str) -> Path:
        relative = clean_path(path)
        return self.root / relative if relative else self.root

    async def exists(self, path: str) -> bool:
        return await aiofiles.os.path.exists(self.real_path(path))

    async def stat(self, path: str) -> FileStat:
        return file_stat(await aiofiles.os.stat(self.real_path(path)))

    async def open(self, path: str) -> LocalFileReader:
        handle = await aiofiles.open(self.real_path(path), 'rb')
        return LocalFileReader(handle)

    async def create(self, path: str) -> LocalFileWriter:
        dest_path = self.real_path(path)
        if dest_path == self.root or await aiofiles.os.path.isdir(dest_path):
            raise IsADirectoryError(f"{path} is a directory")
        temp_path = dest_path.with_name(f".{dest_path.name}.{uuid.uuid4().hex}.tmp")
        handle = await aiofiles.open(temp_path, 'wb')
        return LocalFileWriter(handle, temp_path, dest_path)

    async def mkdir_all(self, path: str) -> None:
        await aiofiles.os.makedirs(self.real_path(path), exist_ok=True)


class MemoryFileWriter:
    def __init__(self, storage: "MemoryStorage", path: str):
        self._storage = storage
        self._path = path
        self._chunks = []
        self._closed = False

    async def write(self, data: bytes) -> None:
        if self._closed:
            raise ValueError("write to closed file")
        self._chunks.append(bytes(data))

    async def commit(self) -> None:
        self._closed = True
        self._storage.put(self._path, b"".join(self._chunks))

    async def close(self) -> None:
        self._closed = True
        self._chunks = []


class MemoryFileReader:
    """Reads the content a file had when it was opened."""

    def __init__(self, data: bytes, mtime: float):
        self._data = data
        self._mtime = mtime

    async def stat(self) -> FileStat:
        return FileStat(size=len(self._data), mtime=self._mtime, is_dir=False)

    async def peek(self, size: int) -> bytes:
        return self._data[:size]

    async def chunks(self, start: int, length: int) -> AsyncIterator[bytes]:
        end = min(start + length, len(self._data))
        for offset in range(start, end, CHUNK_SIZE):
            yield self._data[offset:min(offset + CHUNK_SIZE, end)]

    async def close(self) -> None:
        pass


class MemoryStorage:
    """Dict backed storage, mostly for tests."""

    def __init__(self):
        self._files: Dict[str, Tuple[bytes, float]] = {}
        self._dirs = {""}

    async def initialize(self) -> None:
        pass

    def put(self, path: str, data: bytes) -> None:
        relative = clean_path(path)
        if relative in self._dirs:
            raise IsADirectoryError(f"{path} is a directory")
        parent = posixpath.dirname(relative)
        if parent not in self._dirs:
            raise FileNotFoundError(f"{parent} does not exist")
        self._files[relative] = (data, time.time())

    def write_file(self, path: str, data: bytes) -> None:
        """Create a file and any missing parent directories synchronously."""
        relative = clean_path(path)
        self._make_dirs(posixpath.dirname(relative))
        self.put(relative, data)

    def read_file(self, path: str) -> bytes:
        try:
            return self._files[clean_path(path)][0]
        except KeyError:
            raise FileNotFoundError(path) from None

    def _make_dirs(self, relative: str) -> None:
        current = ""
        for part in relative.split("/") if relative else []:
            current = posixpath.join(current, part)
            if current in self._files:
                raise NotADirectoryError(f"{current} is not a directory")
            self._dirs.add(current)

    async def exists(self, path: str) -> bool:
        relative = clean_path(path)
        return relative in self._files or relative in self._dirs

    async def stat(self, path: str) -> FileStat:
        relative = clean_path(path)
        if relative in self._dirs:
            return FileStat(size=0, mtime=0.0, is_dir=True)
        try:
            data, mtime = self._files[relative]
        except KeyError:
            raise FileNotFoundError(path) from None
        return FileStat(size=len(data), mtime=mtime, is_dir=False)

    async def open(self, path: str) -> MemoryFileReader:
        relative = clean_path(path)
        if relative in self._dirs:
            raise IsADirectoryError(f"{path} is a directory")
        try:
            data, mtime = self._files[relative]
        except KeyError:
            raise FileNotFoundError(path) from None
        return MemoryFileReader(data, mtime)

    async def create(self, path: str) -> MemoryFileWriter:
        relative = clean_path(path)
        if relative in self._dirs:
            raise IsADirectoryError(f"{path} is a directory")
        parent = posixpath.dirname(relative)
        if parent not in self._dirs:
            raise FileNotFoundError(f"{parent} does not exist")
        return MemoryFileWriter(self, relative)

    async def mkdir_all(self, path: str) -> None:
        self._make_dirs(clean_path(path))
