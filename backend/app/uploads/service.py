"""UploadService — the ingestion pipeline behind POST /upload/.

decode -> validate -> transcode -> name -> write -> record.

A module-level singleton is initialised in ``app/main.py`` from config.
"""
import asyncio
import logging
from pathlib import Path
from typing import List, Optional, Union

from .decoder import parse_data_uri, validate_content
from .metadata_store import MetadataStore
from .naming import generate_filename
from .schemas import (
    ALLOWED_MIME_TYPES,
    MAX_UPLOAD_BYTES,
    STORED_NAME_PATTERN,
    UploadResult,
    extension_for,
)
from .transcoder import (
    DEFAULT_LOSSY_QUALITY,
    DEFAULT_PNG_COMPRESS_LEVEL,
    Transcoded,
    transcode,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_service: Optional["UploadService"] = None


def get_upload_service() -> Optional["UploadService"]:
    """Return the global UploadService, or None if not yet initialised."""
    return _service


def set_upload_service(service: Optional["UploadService"]) -> None:
    """Set (or replace) the global UploadService instance."""
    global _service
    _service = service


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class UploadService:
    """Stores data-URI uploads as re-compressed images.

    Args:
        upload_dir: Directory holding stored images.
        store: Metadata store recording upload dates.
        max_bytes: Largest accepted decoded payload.
        allowed_mime_types: Declared media types accepted.
        png_compress_level: Compression effort for PNG output.
        lossy_quality: Quality target for JPEG/WEBP output.
    """

    def __init__(
        self,
        upload_dir: Union[str, Path],
        store: MetadataStore,
        max_bytes: int = MAX_UPLOAD_BYTES,
        allowed_mime_types: Optional[List[str]] = None,
        png_compress_level: int = DEFAULT_PNG_COMPRESS_LEVEL,
        lossy_quality: int = DEFAULT_LOSSY_QUALITY,
    ) -> None:
        self._upload_dir = Path(upload_dir)
        self._store = store
        self._max_bytes = max_bytes
        self._allowed = list(allowed_mime_types or ALLOWED_MIME_TYPES)
        self._png_compress_level = png_compress_level
        self._lossy_quality = lossy_quality
        self._upload_dir.mkdir(parents=True, exist_ok=True)

    @property
    def upload_dir(self) -> Path:
        return self._upload_dir

    @property
    def store(self) -> MetadataStore:
        return self._store

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------

    async def ingest(self, datauri: Optional[str]) -> UploadResult:
        """Decode, re-compress, store and record one upload.

        Raises:
            InvalidInput: Malformed or missing data-URI.
            PayloadTooLarge: Decoded payload over the size limit.
            UnsupportedMediaType: Declared media type not allowed.
            MetadataStoreError: Upload-date document unreadable.
            OSError: The image could not be written.
        """
        content = validate_content(
            parse_data_uri(datauri),
            max_bytes=self._max_bytes,
            allowed_mime_types=self._allowed,
        )

        result = await asyncio.to_thread(
            transcode,
            content.data,
            self._png_compress_level,
            self._lossy_quality,
        )
        if isinstance(result, Transcoded):
            media_type = result.media_type
        else:
            media_type = content.media_type
            logger.info("Storing original bytes (%s)", result.reason)

        filename = self._write(result.data, extension_for(media_type))
        try:
            uploaded_at = await self._store.upsert(filename)
        except BaseException:
            # An image without a record would never be swept
            (self._upload_dir / filename).unlink(missing_ok=True)
            raise

        logger.info(
            "Stored upload %s (%s, %d -> %d bytes)",
            filename,
            media_type,
            content.size_bytes,
            len(result.data),
        )
        return UploadResult(
            filename=filename,
            media_type=media_type,
            size_bytes=len(result.data),
            uploaded_at=uploaded_at,
            transcoded=isinstance(result, Transcoded),
        )

    def get_file_path(self, filename: str) -> Optional[Path]:
        """Path of a stored image, or None if the name is invalid or absent."""
        if not STORED_NAME_PATTERN.match(filename):
            return None
        file_path = self._upload_dir / filename
        if not file_path.is_file():
            return None
        return file_path

    # -----------------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------------

    def _write(self, data: bytes, extension: str) -> str:
        """Write *data* under a fresh name; retry if the name is claimed first."""
        while True:
            filename = generate_filename(self._upload_dir, extension)
            try:
                with open(self._upload_dir / filename, "xb") as fh:
                    fh.write(data)
            except FileExistsError:
                logger.debug("Name %s claimed concurrently, regenerating", filename)
                continue
            return filename
