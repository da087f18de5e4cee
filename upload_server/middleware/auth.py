"""
Bearer token authentication.

Policy:
- GET, HEAD: read-only or read-write token
- POST, PUT: read-write token
- OPTIONS: always allowed

Requests that no route serves are passed through untouched so the router
can answer them with 404/405.
"""
import logging
from typing import Iterable, Optional
from urllib.parse import parse_qsl, urlencode

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp, Scope

from upload_server.errors import UnauthorizedError
from upload_server.responses import Failure, render
from upload_server.routes.files import is_routed

READ_ONLY = "read-only"
READ_WRITE = "read-write"

REQUIRED_CAPABILITY = {
    "GET": READ_ONLY,
    "HEAD": READ_ONLY,
    "POST": READ_WRITE,
    "PUT": READ_WRITE,
}

TOKEN_QUERY_KEY = "token"
BEARER_PREFIX = "Bearer "


def extract_token(request: Request) -> str:
    """The Authorization header wins over the ``token`` query parameter."""
    authorization = request.headers.get("authorization")
    if authorization:
        if authorization.startswith(BEARER_PREFIX):
            return authorization[len(BEARER_PREFIX):]
        return authorization
    return request.query_params.get(TOKEN_QUERY_KEY, "")


def strip_credentials(scope: Scope) -> None:
    """Remove the token from the headers and query string seen by the next app."""
    scope["headers"] = [
        (key, value) for key, value in scope["headers"]
        if key.lower() != b"authorization"
    ]
    query = parse_qsl(scope.get("query_string", b"").decode("latin-1"), keep_blank_values=True)
    kept = [(key, value) for key, value in query if key != TOKEN_QUERY_KEY]
    scope["query_string"] = urlencode(kept).encode("latin-1")


class TokenClassifier:
    def __init__(self, read_only_tokens: Iterable[str], read_write_tokens: Iterable[str]):
        self.read_only_tokens = frozenset(read_only_tokens)
        self.read_write_tokens = frozenset(read_write_tokens)

    def classify(self, token: str) -> Optional[str]:
        # A token listed in both sets counts as read-write
        if token in self.read_write_tokens:
            return READ_WRITE
        if token in self.read_only_tokens:
            return READ_ONLY
        return None

    def allows(self, token: str, method: str) -> bool:
        capability = self.classify(token)
        if capability is None:
            return False
        required = REQUIRED_CAPABILITY.get(method, READ_WRITE)
        return capability == READ_WRITE or required == READ_ONLY


class AuthenticationMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app: ASGIApp,
        read_only_tokens: Iterable[str] = (),
        read_write_tokens: Iterable[str] = (),
        logger: Optional[logging.Logger] = None,
    ):
        super().__init__(app)
        self.classifier = TokenClassifier(read_only_tokens, read_write_tokens)
        self.logger = logger or logging.getLogger(__name__)

    async def dispatch(self, request: Request, call_next):
        if request.method == "OPTIONS" or not is_routed(request.method, request.url.path):
            return await call_next(request)

        token = extract_token(request)
        if not token:
            self.logger.info(f"No token on {request.method} {request.url.path}")
            return self.unauthorized(request)
        if not self.classifier.allows(token, request.method):
            self.logger.info(f"Invalid token on {request.method} {request.url.path}")
            return self.unauthorized(request)

        self.logger.debug("Successfully authenticated")
        strip_credentials(request.scope)
        return await call_next(request)

    @staticmethod
    def unauthorized(request: Request):
        error = UnauthorizedError("unauthorized", headers={"WWW-Authenticate": "Bearer"})
        return render(Failure.from_error(error), request.method)
