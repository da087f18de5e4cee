"""Typed errors raised by the request handlers and services."""
from typing import Dict, Optional


class UploadServerError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None,
                 headers: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.headers = headers or {}


class ValidationError(UploadServerError):
    """Method not usable on the requested path."""
    status_code = 405


class NotFoundError(UploadServerError):
    status_code = 404


class ConflictError(UploadServerError):
    status_code = 409


class TooLargeError(UploadServerError):
    status_code = 413


class RangeNotSatisfiableError(UploadServerError):
    status_code = 416


class UnauthorizedError(UploadServerError):
    status_code = 401


class InternalError(UploadServerError):
    """Storage or encoding failure. The message is shown to clients, so keep it generic."""
    status_code = 500
