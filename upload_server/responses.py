"""JSON envelope and the mapping from handler outcomes to HTTP responses.

Handlers return ``Success`` or raise an ``UploadServerError``; the
``envelope`` decorator turns either into exactly one response. Bodies are
either ``{"ok": true, "path": ...}``, ``{"ok": false, "error": ...}``, raw
file bytes, or nothing. HEAD responses never carry a body.
"""
import functools
from dataclasses import dataclass, field
from email.utils import formatdate
from typing import AsyncIterator, Dict, Optional, Tuple, Union

from fastapi import Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import BaseModel

from upload_server.conditional import ByteRange
from upload_server.errors import InternalError, UploadServerError
from upload_server.services.storage import FileStat


class UploadResult(BaseModel):
    ok: bool = True
    path: str


class ErrorResult(BaseModel):
    ok: bool = False
    error: str


@dataclass(frozen=True)
class FileContent:
    """A stored file to send back, whole or one byte range of it.

    ``chunks`` is None when only headers are wanted.
    """
    name: str
    stat: FileStat
    content_type: str
    byte_range: Optional[ByteRange] = None
    chunks: Optional[AsyncIterator[bytes]] = None

    def span(self) -> Tuple[int, int]:
        """Offset and length of the bytes to send."""
        if self.byte_range is None:
            return 0, self.stat.size
        return self.byte_range.start, self.byte_range.length

    def headers(self) -> Dict[str, str]:
        _, length = self.span()
        headers = {
            "content-type": self.content_type,
            "content-length": str(length),
            "last-modified": formatdate(self.stat.mtime, usegmt=True),
            "accept-ranges": "bytes",
        }
        if self.byte_range is not None:
            headers["content-range"] = self.byte_range.content_range(self.stat.size)
        return headers


@dataclass(frozen=True)
class Success:
    status_code: int
    payload: Union[UploadResult, FileContent, None] = None
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Failure:
    status_code: int
    error: UploadServerError
    headers: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_error(cls, error: UploadServerError) -> "Failure":
        return cls(error.status_code, error, dict(error.headers))


Outcome = Union[Success, Failure]


def render(outcome: Outcome, method: str) -> Response:
    head_only = method == "HEAD"

    if isinstance(outcome, Failure):
        if head_only:
            return Response(status_code=outcome.status_code, headers=outcome.headers)
        body = ErrorResult(error=outcome.error.message)
        return JSONResponse(body.model_dump(), status_code=outcome.status_code,
                            headers=outcome.headers)

    if isinstance(outcome, Success):
        payload = outcome.payload
        if isinstance(payload, UploadResult):
            if head_only:
                return Response(status_code=outcome.status_code, headers=outcome.headers)
            return JSONResponse(payload.model_dump(), status_code=outcome.status_code,
                                headers=outcome.headers)
        if isinstance(payload, FileContent):
            headers = {**payload.headers(), **outcome.headers}
            if head_only or payload.chunks is None:
                return Response(status_code=outcome.status_code, headers=headers)
            return StreamingResponse(payload.chunks, status_code=outcome.status_code,
                                     headers=headers)
        return Response(status_code=outcome.status_code, headers=outcome.headers)

    raise TypeError(f"unexpected outcome: {outcome!r}")


def envelope(handler):
    """Run a request handler and render whatever it produced, errors included."""

    @functools.wraps(handler)
    async def wrapper(request: Request):
        logger = request.app.state.logger
        try:
            outcome = await handler(request)
        except UploadServerError as e:
            outcome = Failure.from_error(e)
        except Exception:
            logger.exception(f"Unhandled error on {request.method} {request.url.path}")
            outcome = Failure.from_error(InternalError("internal server error"))
        return render(outcome, request.method)

    return wrapper
