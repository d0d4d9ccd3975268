"""Tests for the retention sweeper."""
import asyncio
import logging
from datetime import datetime, timedelta, timezone

import pytest

from app.uploads.retention import RetentionSweeper


NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _stored(upload_dir, name: str) -> str:
    (upload_dir / name).write_bytes(b"image")
    return name


@pytest.fixture
def sweeper(store, upload_dir):
    return RetentionSweeper(store=store, upload_dir=upload_dir, max_age=timedelta(days=30))


class TestSweepOnce:
    @pytest.mark.asyncio
    async def test_old_entry_deleted_recent_entry_kept(self, store, upload_dir, sweeper):
        old = _stored(upload_dir, "00000000000000aa.png")
        recent = _stored(upload_dir, "00000000000000bb.png")
        store.save({old: NOW - timedelta(days=31), recent: NOW - timedelta(days=29)})

        removed = await sweeper.sweep_once(now=NOW)

        assert removed == [old]
        assert not (upload_dir / old).exists()
        assert (upload_dir / recent).exists()
        assert set(store.load()) == {recent}

    @pytest.mark.asyncio
    async def test_exactly_max_age_is_kept(self, store, upload_dir, sweeper):
        name = _stored(upload_dir, "00000000000000aa.png")
        store.save({name: NOW - timedelta(days=30)})

        assert await sweeper.sweep_once(now=NOW) == []
        assert (upload_dir / name).exists()

    @pytest.mark.asyncio
    async def test_empty_store(self, store, sweeper):
        assert await sweeper.sweep_once(now=NOW) == []
        assert store.load() == {}

    @pytest.mark.asyncio
    async def test_deletion_is_logged(self, store, upload_dir, sweeper, caplog):
        name = _stored(upload_dir, "00000000000000aa.png")
        store.save({name: NOW - timedelta(days=31)})

        with caplog.at_level(logging.INFO, logger="app.uploads.retention"):
            await sweeper.sweep_once(now=NOW)

        assert f"File deleted: {name}" in caplog.text
        assert "File cleanup completed." in caplog.text

    @pytest.mark.asyncio
    async def test_missing_file_only_loses_record(self, store, upload_dir, sweeper):
        store.save({"00000000000000aa.png": NOW - timedelta(days=31)})

        removed = await sweeper.sweep_once(now=NOW)

        assert removed == ["00000000000000aa.png"]
        assert store.load() == {}

    @pytest.mark.asyncio
    async def test_files_without_records_are_untouched(self, store, upload_dir, sweeper):
        stray = _stored(upload_dir, "00000000000000ff.png")
        await sweeper.sweep_once(now=NOW)
        assert (upload_dir / stray).exists()

    @pytest.mark.asyncio
    async def test_delete_failure_aborts_pass_without_saving(self, store, upload_dir, sweeper):
        first = _stored(upload_dir, "00000000000000aa.png")
        # A directory cannot be unlinked like a file
        (upload_dir / "00000000000000bb.png").mkdir()
        records = {
            first: NOW - timedelta(days=31),
            "00000000000000bb.png": NOW - timedelta(days=31),
        }
        store.save(records)

        with pytest.raises(OSError):
            await sweeper.sweep_once(now=NOW)

        # The first file is gone but its record survives until the next pass
        assert not (upload_dir / first).exists()
        assert store.load() == records


class TestRunOnce:
    @pytest.mark.asyncio
    async def test_errors_are_logged_not_raised(self, store, upload_dir, sweeper, caplog):
        (upload_dir / "00000000000000bb.png").mkdir()
        store.save({"00000000000000bb.png": NOW - timedelta(days=31)})

        with caplog.at_level(logging.ERROR, logger="app.uploads.retention"):
            removed = await sweeper.run_once(now=NOW)

        assert removed == []
        assert "File cleanup error" in caplog.text

    @pytest.mark.asyncio
    async def test_corrupt_document_is_logged(self, store, sweeper, caplog):
        store.path.write_text("{broken")

        with caplog.at_level(logging.ERROR, logger="app.uploads.retention"):
            assert await sweeper.run_once(now=NOW) == []

        assert "File cleanup error" in caplog.text
        assert store.path.read_text() == "{broken"

    @pytest.mark.asyncio
    async def test_next_pass_recovers(self, store, upload_dir, sweeper):
        first = _stored(upload_dir, "00000000000000aa.png")
        blocker = upload_dir / "00000000000000bb.png"
        blocker.mkdir()
        store.save({
            first: NOW - timedelta(days=31),
            blocker.name: NOW - timedelta(days=31),
        })

        assert await sweeper.run_once(now=NOW) == []
        blocker.rmdir()

        removed = await sweeper.run_once(now=NOW)

        assert sorted(removed) == [first, blocker.name]
        assert store.load() == {}


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_background_task_sweeps_on_interval(self, store, upload_dir):
        name = _stored(upload_dir, "00000000000000aa.png")
        store.save({name: datetime.now(timezone.utc) - timedelta(days=31)})
        sweeper = RetentionSweeper(store, upload_dir, interval_seconds=0.01)

        await sweeper.start()
        assert sweeper.running
        for _ in range(100):
            if not (upload_dir / name).exists():
                break
            await asyncio.sleep(0.01)
        await sweeper.stop()

        assert not sweeper.running
        assert not (upload_dir / name).exists()
        assert store.load() == {}

    @pytest.mark.asyncio
    async def test_stop_without_start(self, store, upload_dir):
        sweeper = RetentionSweeper(store, upload_dir)
        await sweeper.stop()
        assert not sweeper.running
