"""
tests/test_state.py

KeyValueStore, Deduplicator, Stats and the StateKeeper that serializes
every mutation of the last two.
"""

from __future__ import annotations

import asyncio
import random

import pytest

from catalog_crawler.errors import PersistenceError
from catalog_crawler.models import Item
from catalog_crawler.state.dedup import Deduplicator
from catalog_crawler.state.keeper import StateKeeper
from catalog_crawler.state.stats import Stats
from catalog_crawler.state.store import KeyValueStore

from conftest import ListSink


def items(*ids: str):
    return [Item(item_id=i) for i in ids]


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


# ---------------------------------------------------------------------------
# KeyValueStore
# ---------------------------------------------------------------------------


class TestKeyValueStore:
    def test_missing_key_returns_default(self, store) -> None:
        assert store.get_value("processedIds", []) == []

    def test_value_survives_new_instance(self, store, storage_dir) -> None:
        store.set_value("stats", {"products": 3})
        assert KeyValueStore(storage_dir).get_value("stats") == {"products": 3}

    def test_corrupt_file(self, store, storage_dir) -> None:
        store.set_value("stats", {})
        (store.directory / "stats.json").write_text("{not json", encoding="utf-8")
        with pytest.raises(PersistenceError):
            store.get_value("stats")

    def test_unwritable_directory(self, tmp_path) -> None:
        blocker = tmp_path / "file"
        blocker.write_text("x")
        with pytest.raises(PersistenceError):
            KeyValueStore(blocker / "kv").set_value("stats", {})

    def test_rejects_path_like_keys(self, store) -> None:
        with pytest.raises(ValueError):
            store.set_value("../escape", 1)


# ---------------------------------------------------------------------------
# Deduplicator
# ---------------------------------------------------------------------------


class TestDeduplicator:
    def test_split_counts_known_and_repeated_ids(self) -> None:
        dedup = Deduplicator()
        dedup.add("A")

        fresh, duplicates = dedup.split(items("A", "B", "B", "C"))

        assert [i.item_id for i in fresh] == ["B", "C"]
        assert duplicates == 2
        # split alone does not register anything
        assert not dedup.has("B")

    def test_load_and_persist(self, store) -> None:
        store.set_value("processedIds", ["A", "B"])
        dedup = Deduplicator(store).load()
        assert dedup.has("A") and "B" in dedup

        dedup.add_many(["C", "A"])
        assert dedup.persist()
        assert store.get_value("processedIds") == ["A", "B", "C"]

    def test_persist_skips_clean_state(self, store) -> None:
        dedup = Deduplicator(store).load()
        assert not dedup.persist()
        assert dedup.persist(force=True)
        assert store.get_value("processedIds") == []

    def test_rejects_non_array(self, store) -> None:
        store.set_value("processedIds", {"A": True})
        with pytest.raises(PersistenceError):
            Deduplicator(store).load()


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------


class TestStats:
    def test_default_counters(self) -> None:
        assert Stats().as_dict() == {"categories": 0, "products": 0, "duplicates": 0}

    def test_inc_and_add(self) -> None:
        stats = Stats()
        stats.inc("categories")
        stats.add("products", 5)
        assert stats["categories"] == 1
        assert stats.get("products") == 5

    def test_counters_never_decrease(self) -> None:
        with pytest.raises(ValueError):
            Stats().add("products", -1)

    def test_save_respects_interval(self, store) -> None:
        clock = FakeClock()
        stats = Stats(store, persist_interval=60, clock=clock)
        stats.inc("products")

        assert not stats.save()
        clock.now = 61
        assert stats.save()
        assert store.get_value("stats")["products"] == 1

    def test_forced_save(self, store) -> None:
        stats = Stats(store, persist_interval=60, clock=FakeClock())
        assert stats.save(force=True)
        assert store.get_value("stats") is not None

    def test_load_resumes_counters(self, store) -> None:
        store.set_value("stats", {"products": 7, "duplicates": 2, "categories": 1})
        stats = Stats(store).load()
        stats.inc("products")
        assert stats.as_dict() == {"categories": 1, "products": 8, "duplicates": 2}


# ---------------------------------------------------------------------------
# StateKeeper
# ---------------------------------------------------------------------------


class TestStateKeeper:
    def test_batch_outcome_and_counters(self, store) -> None:
        sink = ListSink()
        dedup = Deduplicator(store).load()
        stats = Stats(store, persist_interval=3600)

        async def scenario():
            async with StateKeeper(dedup, stats, sink) as keeper:
                first = await keeper.record(items("A", "B"))
                second = await keeper.record(items("B", "C", "C"))
                await keeper.bump({"categories": 2})
                return first, second

        first, second = asyncio.run(scenario())

        assert (first.emitted, first.duplicates) == (2, 0)
        assert (second.emitted, second.duplicates) == (1, 2)
        assert sink.ids == ["A", "B", "C"]
        assert stats.as_dict() == {"categories": 2, "products": 3, "duplicates": 2}
        assert store.get_value("processedIds") == ["A", "B", "C"]

    def test_concurrent_batches_lose_nothing(self, store) -> None:
        rng = random.Random(7)
        batches = [items(*(str(rng.randrange(40)) for _ in range(10))) for _ in range(50)]
        sink = ListSink()
        dedup = Deduplicator(store)
        stats = Stats(store, persist_interval=3600)

        async def scenario():
            async with StateKeeper(dedup, stats, sink) as keeper:
                await asyncio.gather(*(keeper.record(b) for b in batches))

        asyncio.run(scenario())

        unique = {i.item_id for b in batches for i in b}
        assert stats["products"] + stats["duplicates"] == sum(len(b) for b in batches)
        assert stats["products"] == len(unique) == len(dedup)
        assert sorted(sink.ids) == sorted(unique)

    def test_failed_push_does_not_register_ids(self, store) -> None:
        class FlakySink(ListSink):
            fail = True

            def push(self, batch):
                if self.fail:
                    self.fail = False
                    raise OSError("sink unavailable")
                super().push(batch)

        sink = FlakySink()
        dedup = Deduplicator(store)

        async def scenario():
            async with StateKeeper(dedup, Stats(store, persist_interval=3600), sink) as keeper:
                with pytest.raises(OSError):
                    await keeper.record(items("A"))
                return await keeper.record(items("A"))

        outcome = asyncio.run(scenario())

        assert outcome.emitted == 1
        assert sink.ids == ["A"]

    def test_periodic_checkpoint(self, store) -> None:
        dedup = Deduplicator(store)
        stats = Stats(store, persist_interval=0.01)

        async def scenario():
            async with StateKeeper(dedup, stats, ListSink()) as keeper:
                await keeper.record(items("A"))
                await asyncio.sleep(0.05)
                return store.get_value("processedIds")

        assert asyncio.run(scenario()) == ["A"]

    def test_final_flush_failure_raises(self, storage_dir) -> None:
        class BrokenStore(KeyValueStore):
            def set_value(self, key, value):
                raise PersistenceError("read-only")

        store = BrokenStore(storage_dir)

        async def scenario():
            async with StateKeeper(Deduplicator(store), Stats(store, persist_interval=3600), ListSink()) as keeper:
                await keeper.record(items("A"))

        with pytest.raises(PersistenceError):
            asyncio.run(scenario())
