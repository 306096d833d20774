"""Unit tests for lock record persistence."""

import json
import logging

import pytest

from rwlockfile.models import Job, LockRecord
from rwlockfile.record_store import (
    load_record,
    load_record_async,
    save_record,
    save_record_async,
)


class TestLoadRecord:
    """Test loading records, including fail-open handling."""

    def test_missing_file_is_empty_record(self, lock_file):
        record = load_record(lock_file)

        assert record.is_empty

    def test_loads_written_record(self, lock_file, write_record):
        write_record(lock_file, writer=Job(id="w", pid=10, reason="build"))

        record = load_record(lock_file)

        assert record.writer is not None
        assert record.writer.id == "w"
        assert record.writer.reason == "build"
        assert record.readers == []

    def test_invalid_json_is_logged_and_treated_as_empty(self, lock_file, caplog):
        lock_file.write_text("{not json")

        with caplog.at_level(logging.WARNING, logger="rwlockfile.record_store"):
            record = load_record(lock_file)

        assert record.is_empty
        assert "Ignoring unreadable lock record" in caplog.text

    def test_wrong_shape_is_treated_as_empty(self, lock_file):
        lock_file.write_text(json.dumps({"readers": "nope"}))

        assert load_record(lock_file).is_empty

    def test_directory_in_place_of_record_is_treated_as_empty(self, lock_file):
        lock_file.mkdir()

        assert load_record(lock_file).is_empty


class TestSaveRecord:
    """Test persisting records."""

    def test_empty_record_deletes_file(self, lock_file, write_record):
        write_record(lock_file, readers=[Job(id="r", pid=1)])
        assert lock_file.exists()

        save_record(lock_file, LockRecord())

        assert not lock_file.exists()

    def test_empty_record_when_file_absent(self, lock_file):
        save_record(lock_file, LockRecord())

        assert not lock_file.exists()

    def test_writes_record_keys(self, lock_file):
        save_record(lock_file, LockRecord(readers=[Job(id="r", pid=5)]))

        data = json.loads(lock_file.read_text())
        assert set(data) == {"formatVersion", "readers"}
        assert data["readers"][0]["id"] == "r"
        assert data["readers"][0]["ownerProcessId"] == 5
        assert data["readers"][0]["createdAt"].endswith("Z")

    def test_creates_parent_directories(self, tmp_path):
        lock_file = tmp_path / "a" / "b" / "resource.lock"

        save_record(lock_file, LockRecord(readers=[Job(id="r", pid=5)]))

        assert lock_file.exists()

    def test_no_temporary_files_left_behind(self, lock_file):
        save_record(lock_file, LockRecord(readers=[Job(id="r", pid=5)]))

        assert [p.name for p in lock_file.parent.iterdir()] == [lock_file.name]

    def test_save_of_loaded_record_leaves_file_unchanged(self, lock_file):
        save_record(
            lock_file,
            LockRecord(writer=Job(id="w", pid=3, reason="x"), readers=[Job(id="r", pid=5)]),
        )
        before = lock_file.read_bytes()

        save_record(lock_file, load_record(lock_file))

        assert lock_file.read_bytes() == before


class TestAsyncStore:
    """Test the asyncio wrappers."""

    @pytest.mark.asyncio
    async def test_async_round_trip(self, lock_file):
        await save_record_async(lock_file, LockRecord(readers=[Job(id="r", pid=5)]))

        record = await load_record_async(lock_file)

        assert [job.id for job in record.readers] == ["r"]

    @pytest.mark.asyncio
    async def test_async_empty_save_deletes(self, lock_file, write_record):
        write_record(lock_file, readers=[Job(id="r", pid=5)])

        await save_record_async(lock_file, LockRecord())

        assert not lock_file.exists()
