from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence, Tuple

from ..errors import PersistenceError
from ..export.base import Sink
from ..models import Item
from .dedup import Deduplicator
from .stats import Stats

logger = logging.getLogger(__name__)

_ITEMS = "items"
_COUNTERS = "counters"
_STOP = "stop"


@dataclass(frozen=True)
class BatchOutcome:
    emitted: int
    duplicates: int


class StateKeeper:
    """
    Sole owner of the processed-id set and the counters.

    Workers never touch either directly: they send messages through an
    asyncio.Queue and await the reply, so dedup-check, sink push and id
    registration for one batch happen as one uninterrupted step. The owner
    task also runs periodic checkpoints. Use as ``async with``: leaving the
    block drains the inbox and force-flushes both structures, raising
    PersistenceError if that final write fails.
    """

    def __init__(self, dedup: Deduplicator, stats: Stats, sink: Sink) -> None:
        self.dedup = dedup
        self.stats = stats
        self.sink = sink
        self._inbox: "asyncio.Queue[Tuple[str, Any, asyncio.Future[Any]]]" = asyncio.Queue()
        self._task: Optional[asyncio.Task[None]] = None

    # ---- Context management ----------------------------------------------

    async def __aenter__(self) -> "StateKeeper":
        self._task = asyncio.create_task(self._run(), name="state-keeper")
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await self._stop()
        finally:
            self.flush()

    # ---- Messages ---------------------------------------------------------

    async def record(self, items: Sequence[Item]) -> BatchOutcome:
        """Deduplicate, count and emit one extraction batch."""
        return await self._send(_ITEMS, list(items))

    async def bump(self, counters: Mapping[str, int]) -> None:
        if counters:
            await self._send(_COUNTERS, dict(counters))

    async def _send(self, kind: str, payload: Any) -> Any:
        if self._task is None or self._task.done():
            raise RuntimeError("StateKeeper is not running")
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        await self._inbox.put((kind, payload, future))
        return await future

    async def _stop(self) -> None:
        if self._task is None:
            return
        if not self._task.done():
            await self._send(_STOP, None)
        await self._task
        self._task = None

    # ---- Owner loop -------------------------------------------------------

    async def _run(self) -> None:
        timeout = self.stats.persist_interval if self.stats.persist_interval > 0 else None
        while True:
            try:
                kind, payload, future = await asyncio.wait_for(self._inbox.get(), timeout=timeout)
            except asyncio.TimeoutError:
                self._checkpoint()
                continue

            if kind == _STOP:
                future.set_result(None)
                return
            # The sender may have been cancelled meanwhile; the batch is still applied.
            try:
                result = self._handle(kind, payload)
            except Exception as exc:
                if not future.cancelled():
                    future.set_exception(exc)
            else:
                if not future.cancelled():
                    future.set_result(result)
            self._checkpoint()

    def _handle(self, kind: str, payload: Any) -> Any:
        if kind == _ITEMS:
            return self._apply_batch(payload)
        if kind == _COUNTERS:
            for name, n in payload.items():
                self.stats.add(name, n)
            return None
        raise ValueError(f"Unknown state message: {kind!r}")

    def _apply_batch(self, items: Sequence[Item]) -> BatchOutcome:
        fresh, duplicates = self.dedup.split(items)
        if fresh:
            self.sink.push(fresh)
        # Ids are registered only after the sink accepted the batch: a failed
        # push may re-emit later but never loses a new item.
        self.dedup.add_many(item.item_id for item in fresh)
        self.stats.add("products", len(fresh))
        self.stats.add("duplicates", duplicates)
        return BatchOutcome(emitted=len(fresh), duplicates=duplicates)

    def _checkpoint(self) -> None:
        if not self.stats.due():
            return
        try:
            # ids first: losing the stats write only undercounts, losing the ids write re-emits
            self.dedup.persist()
            self.stats.save(force=True)
        except PersistenceError as exc:
            logger.error("Checkpoint failed, retrying next interval and at shutdown: %s", exc)
            self.stats.defer()

    def flush(self) -> None:
        """Unconditional synchronous flush; PersistenceError propagates."""
        self.dedup.persist(force=True)
        self.stats.save(force=True)
        if hasattr(self.sink, "close"):
            self.sink.close()
