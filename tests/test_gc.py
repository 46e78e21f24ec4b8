"""Tests for repository garbage collection."""

from statevc import GCResult, KVRepository
from statevc.objects import BLOB, blob_hash


def commit_file(repo, path, content):
    repo.write_file(path, content)
    return repo.create_commit(f"write {path}")


class TestGarbageCollection:
    def test_nothing_to_collect(self):
        repo = KVRepository.in_memory({"a": b"1"})
        commit_file(repo, "b", b"2")
        assert repo.run_garbage_collection() == GCResult(0, 0)

    def test_drops_deleted_branch_history(self):
        repo = KVRepository.in_memory({"a": b"1"})
        genesis = repo.get_head()
        repo.create_branch("tmp", genesis)
        repo.checkout("tmp")
        t1 = commit_file(repo, "tmp1", b"only on tmp")
        t2 = commit_file(repo, "tmp2", b"also only on tmp")
        repo.checkout("main")
        repo.delete_branch("tmp")

        result = repo.run_garbage_collection()

        assert result.commits_removed == 2
        assert result.blobs_removed == 2
        assert not repo.objects.has_commit(t1)
        assert not repo.objects.has_commit(t2)
        assert BLOB % blob_hash(b"only on tmp") not in repo.store

    def test_keeps_reachable_history(self):
        repo = KVRepository.in_memory({"a": b"1"})
        genesis = repo.get_head()
        c1 = commit_file(repo, "b", b"2")
        c2 = commit_file(repo, "c", b"3")
        before = repo.show_commit(c2)
        repo.run_garbage_collection()
        assert repo.list_ancestors(c2) == [c1, genesis]
        assert repo.show_commit(c2) == before

    def test_keeps_tags_and_detached_head(self):
        repo = KVRepository.in_memory({"a": b"1"})
        genesis = repo.get_head()
        repo.checkout_detach(genesis)
        detached = commit_file(repo, "d", b"detached")
        repo.checkout_detach(genesis)
        tagged = commit_file(repo, "t", b"tagged")
        repo.create_tag("keep", tagged)
        repo.checkout_detach(detached)

        repo.run_garbage_collection()

        assert repo.objects.has_commit(detached)
        assert repo.objects.has_commit(tagged)

    def test_shared_blobs_survive(self):
        repo = KVRepository.in_memory({"a": b"shared"})
        genesis = repo.get_head()
        repo.create_branch("tmp", genesis)
        repo.checkout("tmp")
        commit_file(repo, "copy", b"shared")
        repo.checkout("main")
        repo.delete_branch("tmp")

        result = repo.run_garbage_collection()

        assert result == GCResult(commits_removed=1, blobs_removed=0)
        assert repo.read_file("a") == b"shared"
