import logging
import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp


class CORSHeaderMiddleware(BaseHTTPMiddleware):
    """Allow any origin on every response, errors and OPTIONS included."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["Access-Control-Allow-Origin"] = "*"
        return response


class AccessLogMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, logger: logging.Logger):
        super().__init__(app)
        self.logger = logger

    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start) * 1000

        client = request.client.host if request.client else "-"
        http_version = request.scope.get("http_version", "1.1")
        referer = request.headers.get("referer", "")
        user_agent = request.headers.get("user-agent", "")
        self.logger.info(
            f'{client} - - "{request.method} {request.url.path} HTTP/{http_version}" '
            f'{response.status_code} {elapsed_ms:.1f}ms "{referer}" "{user_agent}"'
        )
        return response
