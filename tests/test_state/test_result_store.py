"""Tests for the local result store."""
import json
import os
from datetime import datetime, timezone

import pytest

from netinjection.deploy.errors import RecordCorrupted, StoreLocked
from netinjection.deploy.models import ProvisioningRecord
from netinjection.state.store import ResultStore


@pytest.fixture
def record():
    return ProvisioningRecord(
        resource_group_name="rg-pp-vnet",
        base_resource_ids={"primaryNetwork": "/subscriptions/s/vnet-a", "secondaryNetwork": "/subscriptions/s/vnet-b"},
        dependent_resource_name="ep-pp-vnet-1234",
        created_at=datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc),
    )


def test_load_absent(store):
    assert store.load() is None


def test_save_and_load(store, record):
    store.save(record)

    assert store.load() == record
    assert not store.path.with_name(store.path.name + ".tmp").exists()


def test_file_uses_camel_case_keys(store, record):
    store.save(record)

    data = json.loads(store.path.read_text())
    assert data["resourceGroupName"] == "rg-pp-vnet"
    assert data["dependentResourceName"] == "ep-pp-vnet-1234"
    assert data["baseResourceIds"]["secondaryNetwork"] == "/subscriptions/s/vnet-b"
    assert data["createdAt"].startswith("2024-05-01T12:30:00")


def test_absent_dependent_round_trips(store, record):
    store.save(record.with_dependent(None))

    loaded = store.load()
    assert loaded.dependent_resource_name is None
    assert json.loads(store.path.read_text())["dependentResourceName"] is None


def test_empty_dependent_name_is_absent():
    record = ProvisioningRecord("rg", {}, "")

    assert record.dependent_resource_name is None


def test_save_replaces_previous(store, record):
    store.save(record)
    store.save(record.with_dependent("ep-pp-vnet-9999"))

    assert store.load().dependent_resource_name == "ep-pp-vnet-9999"


def test_corrupt_file(store):
    store.path.write_text("{\"resourceGroupName\": ")

    with pytest.raises(RecordCorrupted):
        store.load()


def test_missing_field(store):
    store.path.write_text(json.dumps({"resourceGroupName": "rg"}))

    with pytest.raises(RecordCorrupted):
        store.load()


def test_clear(store, record):
    store.save(record)
    store.clear()
    store.clear()

    assert store.load() is None


def test_save_creates_parent_directory(tmp_path, record):
    store = ResultStore(tmp_path / "state" / "record.json")

    store.save(record)

    assert store.load() == record


class TestLock:
    def test_lock_released_after_block(self, store):
        with store.lock():
            assert store.lock_path.exists()
            assert store.lock_path.read_text() == str(os.getpid())
        assert not store.lock_path.exists()

    def test_lock_released_on_error(self, store):
        with pytest.raises(RuntimeError):
            with store.lock():
                raise RuntimeError("boom")
        assert not store.lock_path.exists()

    def test_live_owner_blocks(self, store):
        store.lock_path.write_text(str(os.getpid()))

        with pytest.raises(StoreLocked):
            with store.lock():
                pass
        assert store.lock_path.exists()

    def test_stale_lock_is_taken_over(self, store, monkeypatch):
        store.lock_path.write_text("999999")
        monkeypatch.setattr("netinjection.state.store._pid_alive", lambda pid: False)

        with store.lock():
            assert store.lock_path.read_text() == str(os.getpid())
        assert not store.lock_path.exists()

    def test_lock_without_owner_is_respected(self, store):
        store.lock_path.write_text("")

        with pytest.raises(StoreLocked, match="names no owner"):
            with store.lock():
                pass
        assert store.lock_path.exists()

    def test_unreadable_lock_is_respected(self, store):
        store.lock_path.write_text("not a pid")

        with pytest.raises(StoreLocked):
            with store.lock():
                pass
        assert store.lock_path.read_text() == "not a pid"

    def test_lock_file_appears_with_pid(self, store, monkeypatch):
        """The lock file is linked into place already holding the owner pid."""
        seen = []
        real_link = os.link

        def recording_link(src, dst):
            with open(src) as f:
                seen.append(f.read())
            real_link(src, dst)

        monkeypatch.setattr("netinjection.state.store.os.link", recording_link)

        with store.lock():
            assert seen == [str(os.getpid())]
        assert list(store.lock_path.parent.glob("*.lock.*")) == []
