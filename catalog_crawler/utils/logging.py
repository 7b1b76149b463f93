from __future__ import annotations

import logging
import os

_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}

# aiohttp is chatty at DEBUG; crawl-level debugging rarely needs it.
_NOISY_LOGGERS = ("aiohttp.access", "aiohttp.client", "asyncio")


def resolve_level(level: str | int | None) -> int:
    if level is None:
        level = os.getenv("CRAWLER_LOG_LEVEL", "INFO")
    if isinstance(level, str):
        return _LEVELS.get(level.upper(), logging.INFO)
    return level


def setup_logging(level: str | int | None = None, *, debug: bool = False) -> None:
    """
    Configure crawler logging: one stream handler, pipe-separated records.
    ``debug`` wins over ``level`` and matches the crawler's --debug flag.
    """
    resolved = logging.DEBUG if debug else resolve_level(level)

    logging.basicConfig(
        level=resolved,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )
    # basicConfig is a no-op once handlers exist; a later call still sets the level.
    logging.getLogger().setLevel(resolved)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(resolved, logging.INFO))
