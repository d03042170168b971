"""Tests for the result store."""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from compressor.store import ResultNotFound, ResultStore


class TestTake:

    def test_take_is_at_most_once(self, store):
        store.publish([("a.webp", b"payload")])

        assert store.take("a.webp") == b"payload"
        with pytest.raises(ResultNotFound):
            store.take("a.webp")

    def test_take_unknown_name(self, store):
        with pytest.raises(ResultNotFound):
            store.take("never.webp")

    def test_not_found_is_a_key_error(self):
        assert issubclass(ResultNotFound, KeyError)

    def test_concurrent_takes_of_distinct_names(self, store):
        entries = [(f"img{i}.png", f"data{i}".encode()) for i in range(200)]
        store.publish(entries)

        with ThreadPoolExecutor(max_workers=16) as pool:
            taken = list(pool.map(store.take, [name for name, _ in entries]))

        assert taken == [payload for _, payload in entries]
        assert len(store) == 0

    def test_concurrent_takes_of_same_name_serve_once(self, store):
        store.publish([("one.png", b"x")])

        def attempt(_):
            try:
                return store.take("one.png")
            except ResultNotFound:
                return None

        with ThreadPoolExecutor(max_workers=8) as pool:
            outcomes = list(pool.map(attempt, range(32)))

        assert outcomes.count(b"x") == 1


class TestPublishAndSnapshot:

    def test_last_write_wins(self, store):
        store.publish([("photo.webp", b"first"), ("photo.webp", b"second")])

        assert len(store) == 1
        assert store.take("photo.webp") == b"second"

    def test_snapshot_keeps_insertion_order(self, store):
        store.publish([("b.png", b"2"), ("a.png", b"1"), ("c.png", b"3")])

        assert [name for name, _ in store.snapshot()] == ["b.png", "a.png", "c.png"]

    def test_snapshot_does_not_evict(self, store):
        store.publish([("a.png", b"1")])

        first = store.snapshot()
        second = store.snapshot()

        assert first == second == [("a.png", b"1")]
        assert "a.png" in store

    def test_readers_never_see_partial_batches(self, store):
        batch = [(f"{i}.webp", b"x") for i in range(500)]
        stop = threading.Event()
        seen = set()

        def read():
            while not stop.is_set():
                seen.add(len(store.snapshot()))
                seen.add(len(store))

        readers = [threading.Thread(target=read) for _ in range(4)]
        for t in readers:
            t.start()
        try:
            for _ in range(300):
                store.publish(batch)
                store.clear()
        finally:
            stop.set()
            for t in readers:
                t.join()

        assert seen <= {0, len(batch)}

    def test_names(self, store):
        store.publish([("a.png", b"1"), ("b.png", b"2")])
        assert store.names() == ["a.png", "b.png"]


class TestClear:

    def test_clear_drops_everything(self, store):
        store.publish([("a.png", b"1"), ("b.png", b"2")])

        store.clear()

        assert len(store) == 0
        assert store.snapshot() == []
        with pytest.raises(ResultNotFound):
            store.take("a.png")

    def test_stores_are_isolated(self):
        first, second = ResultStore(), ResultStore()
        first.publish([("a.png", b"1")])

        assert "a.png" not in second
