from __future__ import annotations

import logging
import time
from typing import Callable, Dict, Mapping, Optional

from ..errors import PersistenceError
from .store import KeyValueStore

logger = logging.getLogger(__name__)

STATS_KEY = "stats"
DEFAULT_COUNTERS = ("categories", "products", "duplicates")


class Stats:
    """
    Named, monotonically non-decreasing counters that survive restarts.

    ``save(force=False)`` only writes once ``persist_interval`` seconds have
    passed since the last write; ``save(force=True)`` always writes.
    """

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        *,
        counters: Mapping[str, int] | None = None,
        persist_interval: float = 60.0,
        key: str = STATS_KEY,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.key = key
        self.persist_interval = persist_interval
        self._clock = clock
        self._values: Dict[str, int] = {name: 0 for name in DEFAULT_COUNTERS}
        if counters:
            self._values.update({k: int(v) for k, v in counters.items()})
        self._last_saved = clock()

    def load(self) -> "Stats":
        if self.store is None:
            return self
        stored = self.store.get_value(self.key, {})
        if not isinstance(stored, dict):
            raise PersistenceError(f"{self.key!r} must be a JSON object, got {type(stored).__name__}")
        for name, value in stored.items():
            self._values[name] = int(value)
        logger.info("Resuming with stats %s", self._values)
        return self

    def inc(self, name: str) -> None:
        self.add(name, 1)

    def add(self, name: str, n: int) -> None:
        if n < 0:
            raise ValueError(f"Counter {name!r} cannot decrease (got {n})")
        self._values[name] = self._values.get(name, 0) + n

    def get(self, name: str) -> int:
        return self._values.get(name, 0)

    def __getitem__(self, name: str) -> int:
        return self.get(name)

    def as_dict(self) -> Dict[str, int]:
        return dict(self._values)

    def due(self) -> bool:
        return self._clock() - self._last_saved >= self.persist_interval

    def defer(self) -> None:
        """Restart the persist timer without writing (after a failed checkpoint)."""
        self._last_saved = self._clock()

    def save(self, force: bool = False) -> bool:
        """Persist counters if due (or forced). Returns True if a write happened."""
        if not force and not self.due():
            return False
        logger.info("Stats: %s", self._values)
        if self.store is not None:
            self.store.set_value(self.key, self.as_dict())
        self._last_saved = self._clock()
        return True
