"""Lossy re-compression of uploaded images with Pillow.

The real format is detected from the bytes, never taken from the declared
media type.  PNG is re-encoded with maximum compression effort; JPEG and
WEBP are re-encoded at a low quality target.  Anything Pillow cannot read
or write comes back untouched as ``Unchanged`` so a bad image never blocks
an upload.
"""
import io
import logging
from dataclasses import dataclass
from typing import Optional, Union

from PIL import Image

from .schemas import PIL_FORMATS

logger = logging.getLogger(__name__)

DEFAULT_PNG_COMPRESS_LEVEL = 9
DEFAULT_LOSSY_QUALITY = 20


@dataclass(frozen=True)
class Transcoded:
    data: bytes
    media_type: str


@dataclass(frozen=True)
class Unchanged:
    data: bytes
    reason: str


TranscodeResult = Union[Transcoded, Unchanged]


def _encode_options(fmt: str, png_compress_level: int, lossy_quality: int) -> dict:
    if fmt == "PNG":
        return {"compress_level": png_compress_level}
    return {"quality": lossy_quality}


def _detect_format(data: bytes) -> Optional[str]:
    with Image.open(io.BytesIO(data)) as img:
        return img.format


def transcode(
    data: bytes,
    png_compress_level: int = DEFAULT_PNG_COMPRESS_LEVEL,
    lossy_quality: int = DEFAULT_LOSSY_QUALITY,
) -> TranscodeResult:
    """Re-encode image bytes in their own format at reduced quality.

    Args:
        data: Raw image bytes.
        png_compress_level: zlib level for PNG output (0-9).
        lossy_quality: Quality target for JPEG/WEBP output (1-100).

    Returns:
        Transcoded with the new bytes and detected media type, or
        Unchanged carrying the original bytes and why they were kept.
    """
    try:
        fmt = _detect_format(data)
    except Exception as exc:  # Pillow raises a wide range of errors on bad input
        logger.debug("Format detection failed, keeping original bytes: %s", exc)
        return Unchanged(data=data, reason=f"unreadable image: {exc}")

    if fmt not in PIL_FORMATS:
        logger.debug("Format %s is not re-encoded, keeping original bytes", fmt)
        return Unchanged(data=data, reason=f"unsupported format: {fmt}")

    try:
        with Image.open(io.BytesIO(data)) as img:
            out = io.BytesIO()
            img.save(out, format=fmt, **_encode_options(fmt, png_compress_level, lossy_quality))
    except Exception as exc:
        logger.debug("Re-encoding %s failed, keeping original bytes: %s", fmt, exc)
        return Unchanged(data=data, reason=f"encode failed: {exc}")

    encoded = out.getvalue()
    logger.debug("Transcoded %s: %d -> %d bytes", fmt, len(data), len(encoded))
    return Transcoded(data=encoded, media_type=PIL_FORMATS[fmt])
