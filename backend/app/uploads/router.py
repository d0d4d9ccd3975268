"""Upload router — image ingestion and retrieval endpoints.

Endpoints:
    POST /upload/              — Store a data-URI image
    GET  /uploads/{filename}   — Serve a stored image
"""
import logging
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.responses import FileResponse, PlainTextResponse, Response

from .errors import InvalidInput, UploadError
from .schemas import UploadRequest, media_type_for
from .service import get_upload_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["uploads"])

# Client input errors are answered with 404 for compatibility with
# existing clients.
CLIENT_ERROR_STATUS = 404

UPLOAD_PATH = "/upload/"


def _service_unavailable() -> PlainTextResponse:
    logger.warning("[upload] Upload service not configured — returning 503")
    return PlainTextResponse("Upload service not configured", status_code=503)


async def upload_body_error_handler(request: Request, exc: RequestValidationError) -> Response:
    """Answer unparseable /upload/ bodies like a missing data-URI.

    Malformed JSON, a non-object body or a non-string ``datauri`` all get
    the same 404 reply as any other invalid data-URI.  Other routes keep
    FastAPI's default 422.
    """
    if request.url.path == UPLOAD_PATH:
        logger.info("[upload] Rejected unparseable body: %s", [e.get("type") for e in exc.errors()])
        return PlainTextResponse(InvalidInput.message, status_code=CLIENT_ERROR_STATUS)
    return await request_validation_exception_handler(request, exc)


@router.post(UPLOAD_PATH, response_class=PlainTextResponse)
async def upload_image(request: Optional[UploadRequest] = None) -> Response:
    """Store a base64 data-URI image.

    Supported media types: image/png, image/jpeg, image/webp (max 15MB
    decoded).  The image is re-compressed before it is written.

    Returns:
        200 ``Image uploaded successfully to <filename>.``
        404 with a plain-text reason for invalid input.
    """
    service = get_upload_service()
    if service is None:
        return _service_unavailable()

    try:
        result = await service.ingest(request.datauri if request else None)
    except UploadError as e:
        logger.info("[upload] Rejected: %s", e.message)
        return PlainTextResponse(e.message, status_code=CLIENT_ERROR_STATUS)

    return PlainTextResponse(f"Image uploaded successfully to {result.filename}.")


@router.get("/uploads/{filename}")
async def get_upload(filename: str) -> Response:
    """Serve a stored image by name.

    Raises:
        404 if the name is not a stored-image name or the file is gone.
    """
    service = get_upload_service()
    if service is None:
        return _service_unavailable()

    file_path = service.get_file_path(filename)
    if file_path is None:
        return PlainTextResponse("File not found", status_code=404)

    return FileResponse(path=file_path, media_type=media_type_for(filename))
