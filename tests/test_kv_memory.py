"""Tests for the Memory KV store."""

import threading

import pytest

from statevc.kv.memory import Memory


class TestMemoryBasic:
    def test_set_get(self):
        m = Memory()
        m.set("k", b"v")
        assert m.get("k") == b"v"

    def test_get_missing(self):
        m = Memory()
        assert m.get("nope") is None

    def test_contains(self):
        m = Memory()
        m.set("k", b"v")
        assert "k" in m
        assert "nope" not in m

    def test_set_many_get_many(self):
        m = Memory()
        m.set_many(a=b"1", b=b"2", c=b"3")
        result = m.get_many("a", "c", "missing")
        assert result == {"a": b"1", "c": b"3"}

    def test_type_error_on_non_bytes(self):
        m = Memory()
        with pytest.raises(TypeError, match="Expected bytes"):
            m.set("k", "not bytes")  # type: ignore

    def test_remove_many_ignores_missing(self):
        m = Memory()
        m.set_many(a=b"1", b=b"2", c=b"3")
        m.remove_many("a", "c", "missing")
        assert dict(m.items()) == {"b": b"2"}


class TestMemoryCopy:
    def test_copy_is_independent(self):
        m = Memory()
        m.set("k", b"v")
        clone = m.copy()
        clone.set("k", b"changed")
        clone.set("extra", b"x")
        assert m.get("k") == b"v"
        assert "extra" not in m

    def test_replace_all(self):
        m = Memory()
        m.set_many(a=b"1", b=b"2")
        m.replace_all({"c": b"3"})
        assert dict(m.items()) == {"c": b"3"}

    def test_replace_all_empty(self):
        m = Memory()
        m.set("a", b"1")
        m.replace_all({})
        assert len(m) == 0


class TestMemoryCAS:
    def test_cas_create(self):
        m = Memory()
        assert m.cas("k", b"val", expected=None)
        assert not m.cas("k", b"other", expected=None)
        assert m.get("k") == b"val"

    def test_cas_swap(self):
        m = Memory()
        m.set("k", b"old")
        assert not m.cas("k", b"new", expected=b"wrong")
        assert m.cas("k", b"new", expected=b"old")
        assert m.get("k") == b"new"

    def test_cas_thread_safety(self):
        m = Memory()
        m.set("counter", b"0")
        wins = []

        def try_cas(thread_id):
            if m.cas("counter", f"thread-{thread_id}".encode(), expected=b"0"):
                wins.append(thread_id)

        threads = [threading.Thread(target=try_cas, args=(i,)) for i in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(wins) == 1
