"""Tests for the statevc.storage() and statevc.repository() factories."""

import pytest

from statevc import DiskDB, Hash256, KVRepository, MemoryDB, repository, storage


class TestStorageFactory:
    def test_default_is_memory(self):
        assert isinstance(storage(), MemoryDB)

    def test_disk(self, tmp_path):
        db = storage("disk", path=str(tmp_path / "db"))
        assert isinstance(db, DiskDB)
        db.insert_or_update(Hash256.hash("k"), b"v")
        assert db.get(Hash256.hash("k")) == b"v"
        db.close()

    def test_disk_requires_path(self):
        with pytest.raises(ValueError, match="path is required"):
            storage("disk")

    def test_memory_rejects_path(self):
        with pytest.raises(ValueError, match="only valid"):
            storage("memory", path="/tmp/x")

    def test_invalid_storage(self):
        with pytest.raises(ValueError, match="Unknown storage"):
            storage("redis")  # type: ignore


class TestRepositoryFactory:
    def test_memory(self):
        repo = repository(tree={"a": b"1"})
        assert isinstance(repo, KVRepository)
        assert repo.read_file("a") == b"1"

    def test_disk_create_then_open(self, tmp_path):
        path = str(tmp_path / "repo")
        with repository("disk", path=path, create=True, tree={"a": b"1"}) as repo:
            head = repo.get_head()
        with repository("disk", path=path) as repo:
            assert repo.get_head() == head

    def test_disk_requires_path(self):
        with pytest.raises(ValueError, match="path is required"):
            repository("disk")

    def test_memory_rejects_create(self):
        with pytest.raises(ValueError, match="only valid"):
            repository(create=True)

    def test_open_rejects_tree(self, tmp_path):
        with pytest.raises(ValueError, match="only valid when creating"):
            repository("disk", path=str(tmp_path), tree={"a": b"1"})

    def test_invalid_storage(self):
        with pytest.raises(ValueError, match="Unknown storage"):
            repository("redis")  # type: ignore
