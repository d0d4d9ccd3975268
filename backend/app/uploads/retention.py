"""Age-based deletion of stored images.

A background task wakes up every ``interval`` seconds, deletes every
stored image whose upload record is older than ``max_age`` and prunes the
records.  The document is saved once, after the whole pass.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional, Union

from .metadata_store import MetadataStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE = timedelta(days=30)
DEFAULT_INTERVAL_SECONDS = 60 * 60


class RetentionSweeper:
    """Deletes uploads past the retention window on a fixed period."""

    def __init__(
        self,
        store: MetadataStore,
        upload_dir: Union[str, Path],
        max_age: timedelta = DEFAULT_MAX_AGE,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
    ) -> None:
        self._store = store
        self._upload_dir = Path(upload_dir)
        self._max_age = max_age
        self._interval = interval_seconds
        self._task: Optional[asyncio.Task] = None  # type: ignore[type-arg]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the background sweep task."""
        self._task = asyncio.create_task(self._sweep_loop())
        logger.info(
            "Retention sweeper started (max_age=%s, interval=%ss)",
            self._max_age,
            self._interval,
        )

    async def stop(self) -> None:
        """Cancel the background sweep task."""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Retention sweeper stopped.")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            await self.run_once()

    async def run_once(self, now: Optional[datetime] = None) -> List[str]:
        """Run one pass; errors are logged and end this pass only."""
        try:
            return await self.sweep_once(now)
        except Exception as exc:
            logger.error("File cleanup error: %s", exc, exc_info=True)
            return []

    async def sweep_once(self, now: Optional[datetime] = None) -> List[str]:
        """Delete expired images and prune their records.

        A file that is already gone only loses its record.  Any other
        deletion failure aborts the pass before the document is saved, so
        records of files deleted earlier in the same pass survive until
        the next pass.

        Returns:
            Names of the records removed.
        """
        now = now or datetime.now(timezone.utc)
        removed: List[str] = []

        async with self._store.edit() as records:
            for filename, uploaded_at in list(records.items()):
                if now - uploaded_at <= self._max_age:
                    continue
                try:
                    (self._upload_dir / filename).unlink()
                    logger.info("File deleted: %s", filename)
                except FileNotFoundError:
                    logger.warning("File already gone, dropping record: %s", filename)
                del records[filename]
                removed.append(filename)

        logger.info("File cleanup completed. %d file(s) removed.", len(removed))
        return removed
