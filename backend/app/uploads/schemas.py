"""Schemas and constants for image uploads.

This module defines the data models of the upload pipeline:
- UploadRequest: JSON body of POST /upload/
- DecodedContent: media type and raw bytes parsed from a data-URI
- UploadResult: what the upload service hands back to the router

Stored images are named ``<16 hex chars>.<ext>`` where ext comes from
EXTENSIONS.
"""
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


# Decoded size limit: 15MB
MAX_UPLOAD_BYTES = 15 * 1024 * 1024

ALLOWED_MIME_TYPES = ["image/png", "image/jpeg", "image/webp"]

# MIME type -> file extension of stored images
EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpeg",
    "image/webp": "webp",
}

# Pillow format name -> MIME type
PIL_FORMATS = {
    "PNG": "image/png",
    "JPEG": "image/jpeg",
    "WEBP": "image/webp",
}

STORED_NAME_PATTERN = re.compile(r"^[0-9a-f]{16}\.(png|jpeg|webp)$")


class UploadRequest(BaseModel):
    """Body of POST /upload/.

    ``datauri`` is optional here so a missing value is reported as an
    invalid data-URI rather than a validation error.
    """
    datauri: Optional[str] = Field(None, description="data:<media-type>;base64,<payload>")


@dataclass(frozen=True)
class DecodedContent:
    media_type: str
    data: bytes

    @property
    def size_bytes(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class UploadResult:
    filename: str
    media_type: str
    size_bytes: int
    uploaded_at: datetime
    transcoded: bool


def extension_for(media_type: str) -> str:
    """Return the stored-file extension for an allowed MIME type.

    Raises:
        KeyError: If the MIME type has no known extension.
    """
    return EXTENSIONS[media_type.lower()]


def media_type_for(filename: str) -> str:
    """Return the MIME type for a stored filename, by extension."""
    ext = filename.rsplit(".", 1)[-1].lower()
    for media_type, known in EXTENSIONS.items():
        if known == ext:
            return media_type
    return "application/octet-stream"
