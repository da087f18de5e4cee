import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional, Sequence

import uvicorn
from fastapi import FastAPI
from starlette.exceptions import HTTPException as StarletteHTTPException

from upload_server.config import ServerConfig, ensure_tokens, load_config
from upload_server.logger_config import setup_logger
from upload_server.middleware.auth import AuthenticationMiddleware
from upload_server.middleware.http import AccessLogMiddleware, CORSHeaderMiddleware
from upload_server.routes.files import handle_routing_error, router
from upload_server.services.file_naming import resolve_naming_strategy
from upload_server.services.storage import LocalStorage, Storage
from upload_server.services.upload_service import UploadService


def create_app(
    config: ServerConfig,
    storage: Optional[Storage] = None,
    logger: Optional[logging.Logger] = None,
) -> FastAPI:
    """Build the ASGI app.

    Args:
        config: Server configuration, read-only for the app's lifetime
        storage: Storage to serve from. Defaults to the document root on disk
        logger: Logger used by every component. Defaults to setup_logger()
    """
    logger = logger or setup_logger(config.log_file)
    storage = storage if storage is not None else LocalStorage(config.document_root, logger)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await storage.initialize()
        logger.info(f"Serving files from {config.document_root}")
        yield
        logger.info("Server stopped")

    # No docs routes: any path outside /upload and /files must answer 404
    app = FastAPI(
        title="Simple Upload Server",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        redirect_slashes=False,
    )
    app.state.config = config
    app.state.logger = logger
    app.state.storage = storage
    app.state.upload_service = UploadService(
        storage,
        max_size=config.max_upload_size,
        naming_strategy=resolve_naming_strategy(config.file_naming_strategy),
        logger=logger,
    )

    app.include_router(router)
    app.add_exception_handler(StarletteHTTPException, handle_routing_error)

    # Added innermost first: CORS wraps the access log, which wraps auth
    if config.enable_auth:
        app.add_middleware(
            AuthenticationMiddleware,
            read_only_tokens=config.read_only_tokens,
            read_write_tokens=config.read_write_tokens,
            logger=logger,
        )
    app.add_middleware(AccessLogMiddleware, logger=logger)
    if config.enable_cors:
        app.add_middleware(CORSHeaderMiddleware)

    return app


def run(config: ServerConfig, logger: logging.Logger):
    """Serve until interrupted, then wait up to shutdown_timeout for in-flight requests."""
    app = create_app(config, logger=logger)
    host, port = config.listen_address()
    logger.info(f"Start listening on {host}:{port}")
    server = uvicorn.Server(uvicorn.Config(
        app,
        host=host,
        port=port,
        timeout_graceful_shutdown=config.shutdown_timeout / 1000,
        log_level="info",
    ))
    server.run()


def cli(argv: Optional[Sequence[str]] = None):
    logger = setup_logger()
    try:
        config = load_config(sys.argv[1:] if argv is None else argv, logger)
    except (OSError, ValueError) as e:
        logger.error(f"Failed to load config: {e}")
        sys.exit(1)

    if config.log_file:
        logger = setup_logger(config.log_file)
    config = ensure_tokens(config, logger)
    logger.info(
        f"Configured: {config.model_dump(exclude={'read_only_tokens', 'read_write_tokens'})}"
    )
    run(config, logger)


if __name__ == "__main__":
    cli()
