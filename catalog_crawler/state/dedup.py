from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Sequence, Set, Tuple

from ..errors import PersistenceError
from ..models import Item
from .store import KeyValueStore

logger = logging.getLogger(__name__)

PROCESSED_IDS_KEY = "processedIds"


class Deduplicator:
    """
    Append-only set of item ids that were already emitted, in this run or any earlier one.
    Not safe for concurrent use on its own; the StateKeeper is its only writer.
    """

    def __init__(self, store: KeyValueStore | None = None, key: str = PROCESSED_IDS_KEY) -> None:
        self.store = store
        self.key = key
        # dict keeps insertion order so the persisted array is stable between checkpoints
        self._ids: Dict[str, None] = {}
        self._dirty = False

    def load(self) -> "Deduplicator":
        if self.store is None:
            return self
        stored = self.store.get_value(self.key, [])
        if not isinstance(stored, list):
            raise PersistenceError(f"{self.key!r} must be a JSON array, got {type(stored).__name__}")
        self._ids = dict.fromkeys(str(x) for x in stored)
        logger.info("Loaded %d processed ids", len(self._ids))
        return self

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._ids

    def has(self, item_id: str) -> bool:
        return item_id in self._ids

    def add(self, item_id: str) -> None:
        if item_id not in self._ids:
            self._ids[item_id] = None
            self._dirty = True

    def add_many(self, item_ids: Iterable[str]) -> None:
        for item_id in item_ids:
            self.add(item_id)

    def split(self, items: Sequence[Item]) -> Tuple[List[Item], int]:
        """
        Partition a batch into items never seen before and a duplicate count.
        Repeats inside the batch count as duplicates too. Does not mutate the set.
        """
        fresh: List[Item] = []
        batch_ids: Set[str] = set()
        duplicates = 0
        for item in items:
            if item.item_id in self._ids or item.item_id in batch_ids:
                duplicates += 1
                continue
            batch_ids.add(item.item_id)
            fresh.append(item)
        return fresh, duplicates

    def persist(self, force: bool = False) -> bool:
        """Write the set to the store. Returns True if anything was written."""
        if self.store is None or not (self._dirty or force):
            return False
        self.store.set_value(self.key, list(self._ids))
        self._dirty = False
        return True
