"""Data-URI parsing and upload validation.

``parse_data_uri`` turns ``data:<media-type>;<params>,<payload>`` into a
DecodedContent.  ``validate_content`` enforces the size limit and the
media type allow-list.  Both are pure functions.
"""
import base64
import binascii
import logging
import re
from typing import Iterable, Optional
from urllib.parse import unquote_to_bytes

from .errors import InvalidInput, PayloadTooLarge, UnsupportedMediaType
from .schemas import ALLOWED_MIME_TYPES, MAX_UPLOAD_BYTES, DecodedContent

logger = logging.getLogger(__name__)

DATA_URI_RE = re.compile(
    r"^data:(?P<media_type>[\w/+]+);(?P<params>(?:charset=[\w-]+|base64)[^,]*),(?P<payload>.*)$",
    re.IGNORECASE | re.DOTALL,
)


def _format_size(size: int) -> str:
    if size >= 1024 * 1024 and size % (1024 * 1024) == 0:
        return f"{size // (1024 * 1024)}MB"
    if size >= 1024 and size % 1024 == 0:
        return f"{size // 1024}KB"
    return f"{size} bytes"


def parse_data_uri(value: Optional[str]) -> DecodedContent:
    """Parse a data-URI into its media type and decoded bytes.

    Args:
        value: Candidate data-URI string.

    Returns:
        DecodedContent with a lowercased media type.

    Raises:
        InvalidInput: If the value is missing, not a data-URI, or its
            payload cannot be decoded with the declared encoding.
    """
    if not value or not isinstance(value, str):
        raise InvalidInput()

    match = DATA_URI_RE.match(value)
    if match is None:
        raise InvalidInput()

    media_type = match.group("media_type").lower()
    params = [p.strip().lower() for p in match.group("params").split(";")]
    payload = match.group("payload")

    if "base64" in params:
        try:
            encoded = "".join(payload.split())
            encoded += "=" * (-len(encoded) % 4)
            data = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as exc:
            logger.debug("Rejected data-URI with bad base64 payload: %s", exc)
            raise InvalidInput() from exc
    else:
        data = unquote_to_bytes(payload)

    return DecodedContent(media_type=media_type, data=data)


def validate_content(
    content: DecodedContent,
    max_bytes: int = MAX_UPLOAD_BYTES,
    allowed_mime_types: Iterable[str] = ALLOWED_MIME_TYPES,
) -> DecodedContent:
    """Check the decoded size and media type of an upload.

    Raises:
        PayloadTooLarge: If the payload exceeds ``max_bytes``.
        UnsupportedMediaType: If the media type is not allowed.
    """
    if content.size_bytes > max_bytes:
        raise PayloadTooLarge(f"File is larger than {_format_size(max_bytes)}!")
    if content.media_type not in allowed_mime_types:
        raise UnsupportedMediaType()
    return content
