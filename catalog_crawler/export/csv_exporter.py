from __future__ import annotations

import csv
from pathlib import Path
from typing import IO, Any, Optional, Sequence

from ..models import Item


class CSVSink:
    """
    Writes per-item rows with a fixed column set. The header is written only
    when the file is new, so later runs keep appending to the same table.
    """

    _headers = [
        "itemId",
        "itemName",
        "itemUrl",
        "slug",
        "img",
        "currentPrice",
        "originalPrice",
        "currency",
        "discounted",
        "useUnitPrice",
        "currentUnitPrice",
        "originalUnitPrice",
        "unit",
        "category",
        "inStock",
    ]

    def __init__(self, path: str) -> None:
        self.path = Path(path)
        self._fh: Optional[IO[str]] = None
        self._writer: Any = None

    def _open(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        is_new = not self.path.exists() or self.path.stat().st_size == 0
        self._fh = open(self.path, "a", encoding="utf-8", newline="")
        self._writer = csv.DictWriter(self._fh, fieldnames=self._headers, extrasaction="ignore")
        if is_new:
            self._writer.writeheader()

    def push(self, items: Sequence[Item]) -> None:
        if self._fh is None:
            self._open()
        for item in items:
            self._writer.writerow({k: ("" if v is None else v) for k, v in item.to_dict().items()})
        self._fh.flush()

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None
            self._writer = None
