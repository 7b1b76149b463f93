from __future__ import annotations

import json
from pathlib import Path
from typing import IO, Optional, Sequence

from ..models import Item


class JSONLinesSink:
    """Appends one JSON object per item; safe to reopen across runs."""

    def __init__(self, path: str) -> None:
        self.path = Path(path)
        self._fh: Optional[IO[str]] = None

    def push(self, items: Sequence[Item]) -> None:
        if self._fh is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = open(self.path, "a", encoding="utf-8")
        for item in items:
            self._fh.write(json.dumps(item.to_dict(), ensure_ascii=False))
            self._fh.write("\n")
        self._fh.flush()

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None
