from dataclasses import replace
from email.utils import formatdate
from typing import Optional

from fastapi import APIRouter, Request
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException

from upload_server.conditional import if_range_allows, not_modified_since, parse_range
from upload_server.errors import (
    InternalError,
    NotFoundError,
    UploadServerError,
    ValidationError,
)
from upload_server.responses import (
    Failure,
    FileContent,
    Success,
    UploadResult,
    envelope,
    render,
)
from upload_server.services.content_type import (
    SNIFF_LENGTH,
    guess_content_type,
    sniff_content_type,
)
from upload_server.services.storage import FileReader
from upload_server.services.upload_service import PUT_NEEDS_NAME, parse_boolish_value

UPLOAD_ENDPOINT = "/upload"
FILES_ENDPOINT = "/files"

ALLOWED_METHODS = {
    UPLOAD_ENDPOINT: ("POST",),
    FILES_ENDPOINT: ("GET", "HEAD", "PUT"),
}

FORM_FILE_KEY = "file"
OVERWRITE_QUERY_KEY = "overwrite"
FILE_NOT_FOUND = "file not found"

router = APIRouter()


def match_endpoint(path: str) -> Optional[str]:
    """Return the endpoint a URL path belongs to, or None when no route serves it."""
    if path == UPLOAD_ENDPOINT:
        return UPLOAD_ENDPOINT
    if path == FILES_ENDPOINT or path.startswith(FILES_ENDPOINT + "/"):
        return FILES_ENDPOINT
    return None


def is_routed(method: str, path: str) -> bool:
    endpoint = match_endpoint(path)
    return endpoint is not None and method in ALLOWED_METHODS[endpoint]


async def handle_routing_error(request: Request, exc: StarletteHTTPException):
    """Answer requests the router could not dispatch with the JSON error envelope."""
    if exc.status_code == 405:
        endpoint = match_endpoint(request.url.path) or request.url.path
        allowed = ", ".join(ALLOWED_METHODS.get(endpoint, ()))
        error = ValidationError(f"{request.method} is not allowed on {endpoint}",
                                headers={"Allow": allowed})
    elif exc.status_code == 404:
        error = NotFoundError(FILE_NOT_FOUND)
    else:
        error = UploadServerError(str(exc.detail), exc.status_code)
    return render(Failure.from_error(error), request.method)


async def receive_upload(request: Request, explicit_path: Optional[str] = None) -> Success:
    logger = request.app.state.logger
    upload_service = request.app.state.upload_service
    overwrite = parse_boolish_value(request.query_params.get(OVERWRITE_QUERY_KEY))

    try:
        form = await request.form()
    except StarletteHTTPException as e:
        logger.error(f"Failed to parse the upload form: {e.detail}")
        raise InternalError("cannot obtain the uploaded content") from e

    try:
        upload = form.get(FORM_FILE_KEY)
        if not isinstance(upload, UploadFile):
            logger.error(f"No file in form field '{FORM_FILE_KEY}'")
            raise InternalError("cannot obtain the uploaded content")
        dest_path = await upload_service.process_upload(
            upload,
            filename=upload.filename,
            explicit_path=explicit_path,
            overwrite=overwrite,
        )
    finally:
        await form.close()

    return Success(201, UploadResult(path=dest_path))


@router.post(UPLOAD_ENDPOINT)
@envelope
async def upload_file(request: Request):
    """Store the uploaded file under its own name or a generated one."""
    logger = request.app.state.logger
    logger.info("Receiving upload request")
    return await receive_upload(request)


@router.put(FILES_ENDPOINT)
@router.put(FILES_ENDPOINT + "/{path:path}")
@envelope
async def put_file(request: Request):
    """Store the uploaded file at the path given in the URL."""
    logger = request.app.state.logger
    path = request.path_params.get("path", "")
    logger.info(f"Receiving put request for path: {path}")
    if not path:
        logger.info(f"URL not matched: {request.url.path}")
        raise ValidationError(PUT_NEEDS_NAME)
    return await receive_upload(request, explicit_path=path)


async def prepare_download(request: Request, path: str, reader: FileReader) -> Success:
    """Work out status and headers for an opened file, without reading its body."""
    logger = request.app.state.logger
    try:
        stat = await reader.stat()
    except OSError as e:
        logger.error(f"Failed to stat {path}: {e}")
        raise InternalError("stat failed") from e

    if stat.is_dir:
        logger.info(f"{path} is a directory")
        raise NotFoundError(f"{path} is a directory")

    if not_modified_since(request.headers.get("if-modified-since"), stat):
        return Success(304, headers={"last-modified": formatdate(stat.mtime, usegmt=True)})

    content_type = guess_content_type(path)
    if content_type is None:
        try:
            content_type = sniff_content_type(await reader.peek(SNIFF_LENGTH))
        except OSError as e:
            logger.error(f"Failed to read {path}: {e}")
            raise InternalError("failed to read file") from e

    byte_range = None
    if if_range_allows(request.headers.get("if-range"), stat):
        byte_range = parse_range(request.headers.get("range"), stat.size)

    content = FileContent(path, stat, content_type, byte_range)
    return Success(206 if byte_range else 200, content)


@router.api_route(FILES_ENDPOINT, methods=["GET", "HEAD"])
@router.api_route(FILES_ENDPOINT + "/{path:path}", methods=["GET", "HEAD"])
@envelope
async def get_file(request: Request):
    """Send a stored file back. HEAD gets the same headers without the body."""
    logger = request.app.state.logger
    storage = request.app.state.storage
    path = request.path_params.get("path", "")
    if not path:
        raise NotFoundError(FILE_NOT_FOUND)
    logger.info(f"Receiving download request for path: {path}")

    try:
        reader = await storage.open(path)
    except IsADirectoryError:
        logger.info(f"{path} is a directory")
        raise NotFoundError(f"{path} is a directory")
    except (FileNotFoundError, NotADirectoryError):
        raise NotFoundError(FILE_NOT_FOUND)
    except OSError as e:
        logger.error(f"Failed to open {path}: {e}")
        raise InternalError("failed to open file") from e

    try:
        outcome = await prepare_download(request, path, reader)
    except BaseException:
        await reader.close()
        raise

    content = outcome.payload
    if request.method == "HEAD" or not isinstance(content, FileContent):
        await reader.close()
        return outcome
    # The body closes the file once it has been sent
    start, length = content.span()
    return replace(outcome, payload=replace(content, chunks=reader.chunks(start, length)))


@router.options(UPLOAD_ENDPOINT)
@router.options(FILES_ENDPOINT)
@router.options(FILES_ENDPOINT + "/{path:path}")
@envelope
async def options(request: Request):
    """Announce the methods of an endpoint. Always answered, whether the target exists or not."""
    endpoint = match_endpoint(request.url.path)
    allowed = ", ".join(ALLOWED_METHODS[endpoint])
    return Success(204, headers={"Access-Control-Allow-Methods": allowed})
