from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Optional, Set, Tuple

from ..models import Label, Request

logger = logging.getLogger(__name__)


class Frontier:
    """
    FIFO queue of pending requests for one run.

    Adding a request whose (normalized url, label) was already added in this
    run is a no-op. Every dequeued request must be acknowledged with
    task_done() so join() can tell when the crawl has run dry.
    """

    def __init__(self) -> None:
        self._queue: "asyncio.Queue[Request]" = asyncio.Queue()
        self._seen: Set[Tuple[str, Label]] = set()

    def add(self, request: Request) -> bool:
        key = request.key
        if key in self._seen:
            logger.debug("Already enqueued [%s] %s", request.label.value, request.url)
            return False
        self._seen.add(key)
        self._queue.put_nowait(request)
        return True

    def add_many(self, requests: Iterable[Request]) -> int:
        """Add each request in order; returns how many were new."""
        return sum(1 for r in requests if self.add(r))

    def next(self) -> Optional[Request]:
        """Next request in FIFO order, or None when the queue is empty."""
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    async def get(self) -> Request:
        return await self._queue.get()

    def task_done(self) -> None:
        self._queue.task_done()

    async def join(self) -> None:
        """Wait until every added request was dequeued and acknowledged."""
        await self._queue.join()

    def empty(self) -> bool:
        return self._queue.empty()

    def __len__(self) -> int:
        return self._queue.qsize()
