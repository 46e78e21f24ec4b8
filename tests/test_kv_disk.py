"""Tests for the Disk KV store."""

import shutil
import tempfile

import diskcache
import pytest

from statevc.kv.disk import Disk


@pytest.fixture
def disk_store():
    tmpdir = tempfile.mkdtemp()
    store = Disk(tmpdir)
    yield store, tmpdir
    store.close()
    shutil.rmtree(tmpdir, ignore_errors=True)


class TestDiskBasic:
    def test_set_get(self, disk_store):
        store, _ = disk_store
        store.set("k", b"v")
        assert store.get("k") == b"v"

    def test_get_missing(self, disk_store):
        store, _ = disk_store
        assert store.get("nope") is None

    def test_set_many_items(self, disk_store):
        store, _ = disk_store
        store.set_many(a=b"1", b=b"2")
        assert dict(store.items()) == {"a": b"1", "b": b"2"}
        assert sorted(store.keys()) == ["a", "b"]

    def test_type_error_on_non_bytes(self, disk_store):
        store, _ = disk_store
        with pytest.raises(TypeError, match="Expected bytes"):
            store.set("k", "not bytes")  # type: ignore

    def test_replace_all(self, disk_store):
        store, _ = disk_store
        store.set_many(a=b"1", b=b"2")
        store.replace_all({"c": b"3"})
        assert dict(store.items()) == {"c": b"3"}


    def test_replace_all_keeps_old_content_on_failure(self, disk_store, monkeypatch):
        store, _ = disk_store
        store.set_many(a=b"1", b=b"2")
        original = diskcache.Cache.set
        written = []

        def failing_set(cache, key, value, *args, **kwargs):
            written.append(key)
            if len(written) > 1:
                raise OSError("disk full")
            return original(cache, key, value, *args, **kwargs)

        monkeypatch.setattr(diskcache.Cache, "set", failing_set)
        with pytest.raises(OSError, match="disk full"):
            store.replace_all({"c": b"3", "d": b"4"})
        monkeypatch.undo()
        assert dict(store.items()) == {"a": b"1", "b": b"2"}

    def test_replace_all_rejects_non_bytes_untouched(self, disk_store):
        store, _ = disk_store
        store.set("a", b"1")
        with pytest.raises(TypeError):
            store.replace_all({"b": "text"})  # type: ignore
        assert dict(store.items()) == {"a": b"1"}


class TestDiskPersistence:
    def test_survives_reload(self, disk_store):
        store, tmpdir = disk_store
        store.set("k", b"persistent")
        store.close()
        store2 = Disk(tmpdir)
        try:
            assert store2.get("k") == b"persistent"
        finally:
            store2.close()


class TestDiskRemoveAndCAS:
    def test_remove_missing_is_noop(self, disk_store):
        store, _ = disk_store
        store.remove("nope")
        store.remove_many("a", "b")
        assert len(store) == 0

    def test_cas(self, disk_store):
        store, _ = disk_store
        assert store.cas("k", b"v1", expected=None)
        assert not store.cas("k", b"v2", expected=b"wrong")
        assert store.cas("k", b"v2", expected=b"v1")
        assert store.get("k") == b"v2"
