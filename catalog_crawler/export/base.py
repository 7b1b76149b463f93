from __future__ import annotations

from typing import Protocol, Sequence

from ..models import Item


class Sink(Protocol):
    """
    Append-only destination for emitted items. Order of pushes is not significant.
    """

    def push(self, items: Sequence[Item]) -> None:
        ...
