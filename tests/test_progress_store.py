# tests/test_progress_store.py

import os

import msgspec
import pytest

from migrator.core.errors import LockHeldError, ProgressCorruptError, ProgressPersistenceError
from migrator.progress import ProgressStore
from migrator.types import Entry, PROGRESS_SCHEMA_VERSION

from conftest import OWNER_A, OWNER_B


def test_load_creates_and_persists_fresh_record(progress_path):
    store = ProgressStore(progress_path, "wearables")

    record = store.load()

    assert progress_path.is_file()
    assert record.job == "wearables"
    assert record.version == PROGRESS_SCHEMA_VERSION
    assert record.processed == {}
    assert record.start_time > 0


def test_saved_record_reloads(progress_path):
    store = ProgressStore(progress_path, "wearables")
    record = store.load()
    record.add_applied(Entry(owner=OWNER_A, asset_id="1", quantity=3))
    record.add_permanent_failure(Entry(owner=OWNER_B, asset_id="2", quantity=1))
    store.save(record)

    reloaded = ProgressStore(progress_path, "wearables").load()

    assert reloaded.applied(OWNER_A, "1") == 3
    assert reloaded.failed_quantity(OWNER_B, "2") == 1
    assert reloaded.last_update_time >= record.start_time


def test_saved_file_is_readable_json(progress_path):
    store = ProgressStore(progress_path, "wearables")
    store.load()

    raw = msgspec.json.decode(progress_path.read_bytes())

    assert raw["version"] == PROGRESS_SCHEMA_VERSION
    assert raw["job"] == "wearables"


def test_failed_save_keeps_previous_file(progress_path, monkeypatch):
    store = ProgressStore(progress_path, "wearables")
    record = store.load()
    record.add_applied(Entry(owner=OWNER_A, asset_id="1", quantity=1))
    store.save(record)
    before = progress_path.read_bytes()

    def broken_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(os, "replace", broken_replace)
    record.add_applied(Entry(owner=OWNER_A, asset_id="2", quantity=1))

    with pytest.raises(ProgressPersistenceError, match="disk full"):
        store.save(record)

    assert progress_path.read_bytes() == before
    assert not progress_path.with_name(progress_path.name + ".tmp").exists()


def test_read_does_not_create(progress_path):
    store = ProgressStore(progress_path, "wearables")

    assert store.read() is None
    assert not progress_path.exists()


def test_corrupt_file_is_rejected(progress_path):
    progress_path.parent.mkdir(parents=True)
    progress_path.write_text("{not json")

    with pytest.raises(ProgressCorruptError):
        ProgressStore(progress_path, "wearables").load()


def test_second_store_cannot_take_the_lock(progress_path):
    first = ProgressStore(progress_path, "wearables")
    second = ProgressStore(progress_path, "wearables")

    first.acquire()
    try:
        with pytest.raises(LockHeldError):
            second.acquire()
    finally:
        first.release()

    second.acquire()
    second.release()


def test_applied_quantity_never_exceeds_cap():
    from migrator.types import ProgressRecord

    record = ProgressRecord(job="j", start_time=1, last_update_time=1)
    entry = Entry(owner=OWNER_A, asset_id="1", quantity=4)

    assert record.add_applied(entry, cap=5) == 4
    assert record.add_applied(entry, cap=5) == 1
    assert record.add_applied(entry, cap=5) == 0
    assert record.applied(OWNER_A, "1") == 5
