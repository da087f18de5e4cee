import asyncio
import logging
import posixpath
import weakref
from typing import Optional

from upload_server.errors import ConflictError, InternalError, TooLargeError, ValidationError
from upload_server.services.file_naming import NamingStrategy, UploadSource
from upload_server.services.storage import FileWriter, Storage, clean_path

CHUNK_SIZE = 64 * 1024

FILE_TOO_LARGE = "file size limit exceeded"
FILE_EXISTS = "the file already exists"
PUT_NEEDS_NAME = "PUT is accepted on /files/:name"

TRUTHY_VALUES = ("yes", "true", "1")


def parse_boolish_value(value: Optional[str]) -> bool:
    return (value or "").lower() in TRUTHY_VALUES


def public_path(relative: str) -> str:
    """Render a root-relative storage path as the URL path it is served from."""
    return "/files/" + relative.replace("\\", "/").lstrip("/")


async def copy_limited(source: UploadSource, writer: FileWriter, max_size: int) -> int:
    """Copy ``source`` into ``writer``, failing once more than ``max_size`` bytes were read."""
    written = 0
    while chunk := await source.read(CHUNK_SIZE):
        written += len(chunk)
        if written > max_size:
            raise TooLargeError(FILE_TOO_LARGE)
        await writer.write(chunk)
    return written


class PathLocks:
    """One asyncio.Lock per destination path, dropped once nobody holds a reference."""

    def __init__(self):
        self._locks = weakref.WeakValueDictionary()

    def get(self, path: str) -> asyncio.Lock:
        lock = self._locks.get(path)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[path] = lock
        return lock


class UploadService:
    def __init__(self, storage: Storage, max_size: int, naming_strategy: NamingStrategy,
                 logger: logging.Logger):
        self.storage = storage
        self.max_size = max_size
        self.naming_strategy = naming_strategy
        self.logger = logger
        self.locks = PathLocks()

    async def process_upload(self, source: UploadSource, filename: Optional[str] = None,
                             explicit_path: Optional[str] = None,
                             overwrite: bool = False) -> str:
        """Store an uploaded file and return the URL path it can be fetched from.

        Args:
            source: The uploaded content
            filename: Name sent by the client, used when there is no explicit path
            explicit_path: Destination given in the URL (PUT)
            overwrite: Whether an existing file may be replaced

        Raises:
            ValidationError: explicit_path does not name a file
            ConflictError: The destination exists and overwrite is False
            TooLargeError: The content is larger than max_size
            InternalError: Naming or storage failed
        """
        if explicit_path is not None:
            relative = clean_path(explicit_path)
            if not relative:
                raise ValidationError(PUT_NEEDS_NAME)
        else:
            # Only the base name of a client supplied filename is kept
            relative = clean_path(posixpath.basename((filename or "").replace("\\", "/")))
            if not relative:
                relative = await self._generate_name(source)

        if overwrite:
            self.logger.debug(f"Overwrite allowed for {relative}")

        async with self.locks.get(relative):
            await self._check_destination(relative, overwrite)
            await self._ensure_parent(relative)
            written = await self._write(source, relative)

        self.logger.info(f"Uploaded to {relative} ({written} bytes)")
        return public_path(relative)

    async def _generate_name(self, source: UploadSource) -> str:
        try:
            name = await self.naming_strategy(source)
            # The strategy may have consumed the content
            await source.seek(0)
        except OSError as e:
            self.logger.error(f"Cannot generate filename: {e}")
            raise InternalError("cannot generate filename") from e
        return name

    async def _check_destination(self, relative: str, overwrite: bool):
        try:
            exists = await self.storage.exists(relative)
        except OSError as e:
            self.logger.error(f"Failed to check the existence of the file (path={relative}): {e}")
            raise InternalError("cannot check the existence of the file") from e
        if exists and not overwrite:
            raise ConflictError(FILE_EXISTS)

    async def _ensure_parent(self, relative: str):
        parent = posixpath.dirname(relative)
        try:
            await self.storage.mkdir_all(parent)
        except OSError as e:
            self.logger.error(f"Failed to create directories (path={parent}): {e}")
            raise InternalError("cannot create directories") from e

    async def _write(self, source: UploadSource, relative: str) -> int:
        try:
            writer = await self.storage.create(relative)
        except OSError as e:
            self.logger.error(f"Failed to open the destination file (path={relative}): {e}")
            raise InternalError("cannot open file") from e

        try:
            written = await copy_limited(source, writer, self.max_size)
            await writer.commit()
        except TooLargeError:
            self.logger.info(f"Upload to {relative} rejected: larger than {self.max_size} bytes")
            raise
        except OSError as e:
            self.logger.error(f"Failed to write the uploaded content (path={relative}): {e}")
            raise InternalError("failed to write the content") from e
        finally:
            await writer.close()
        return written
