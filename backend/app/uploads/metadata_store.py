"""JSON document of upload dates.

The store keeps one document mapping stored filename -> upload timestamp::

    {
      "0123456789abcdef.png": "2024-05-01T12:00:00.000Z"
    }

Every mutation is a full read-modify-write of the document.

Concurrency:
    Mutations (upsert, delete, edit) are serialized by an asyncio.Lock, so
    concurrent uploads and the retention sweep cannot lose each other's
    updates inside one process.  Separate processes sharing the same
    document are not coordinated.

Durability:
    ``save`` writes a temporary sibling file and atomically replaces the
    document, so a crash mid-write leaves the previous version intact.
"""
import asyncio
import json
import logging
import os
import tempfile
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Dict, Optional, Union

from .errors import MetadataStoreError

logger = logging.getLogger(__name__)


def format_timestamp(value: datetime) -> str:
    """Serialize as ISO-8601 UTC with millisecond precision and a Z suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class MetadataStore:
    """Upload-date records persisted as one JSON document."""

    def __init__(self, path: Union[str, Path]) -> None:
        self._path = Path(path)
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    # ------------------------------------------------------------------
    # Whole-document access
    # ------------------------------------------------------------------

    def ensure(self) -> None:
        """Create an empty document (and its directory) if missing."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        if not self._path.exists():
            self.save({})
            logger.info("Created metadata document: %s", self._path)

    def load(self) -> Dict[str, datetime]:
        """Read the whole document.

        Returns:
            Mapping of filename -> aware UTC datetime. Empty if the
            document does not exist yet.

        Raises:
            MetadataStoreError: If the document cannot be read or parsed.
        """
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            raise MetadataStoreError(f"Cannot read {self._path}: {exc}") from exc

        try:
            document = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise MetadataStoreError(f"Malformed metadata document {self._path}: {exc}") from exc

        if not isinstance(document, dict):
            raise MetadataStoreError(f"Metadata document {self._path} is not an object")

        records: Dict[str, datetime] = {}
        for filename, stamp in document.items():
            try:
                records[filename] = parse_timestamp(str(stamp))
            except ValueError as exc:
                raise MetadataStoreError(
                    f"Invalid timestamp for {filename!r} in {self._path}: {stamp!r}"
                ) from exc
        return records

    def save(self, records: Dict[str, datetime]) -> None:
        """Replace the whole document with *records*."""
        document = {name: format_timestamp(stamp) for name, stamp in records.items()}
        payload = json.dumps(document, indent=2, sort_keys=True)

        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self._path.name}.", suffix=".tmp", dir=self._path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    # ------------------------------------------------------------------
    # Serialized mutations
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def edit(self) -> AsyncIterator[Dict[str, datetime]]:
        """Load the document under the lock, yield it, save on clean exit.

        If the body raises, nothing is written.
        """
        async with self._lock:
            records = self.load()
            yield records
            self.save(records)

    async def upsert(self, filename: str, uploaded_at: Optional[datetime] = None) -> datetime:
        """Record *filename* as uploaded at *uploaded_at* (default: now)."""
        stamp = uploaded_at or datetime.now(timezone.utc)
        async with self.edit() as records:
            records[filename] = stamp
        logger.debug("Recorded upload %s at %s", filename, format_timestamp(stamp))
        return stamp

    async def delete(self, filename: str) -> bool:
        """Drop the record for *filename*. Returns False if it was absent."""
        async with self.edit() as records:
            found = records.pop(filename, None) is not None
        return found

    async def scan(self) -> Dict[str, datetime]:
        """Snapshot of all records."""
        async with self._lock:
            return self.load()
