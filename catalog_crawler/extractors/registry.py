from __future__ import annotations

import logging
from importlib import metadata
from typing import Dict, List, Optional, Type

from ..errors import ConfigurationError
from ..utils.loader import load_symbol
from .base import BaseExtractor
from .billa import BillaExtractor
from .kaufland import KauflandExtractor

logger = logging.getLogger(__name__)


class ExtractorRegistry:
    """
    Registry for available site extractors (by class, so each run builds its own instance).
    Supports built-ins, config-defined dotted classes, and entry-point plugins.
    """

    def __init__(self) -> None:
        self._extractors: Dict[str, Type[BaseExtractor]] = {}
        for cls in (BillaExtractor, KauflandExtractor):
            self.register(cls)

    # ---- Introspection / Management ----

    def register(self, extractor_cls: Type[BaseExtractor]) -> None:
        name = getattr(extractor_cls, "name", "")
        if not name:
            raise ConfigurationError(f"Extractor {extractor_cls!r} has no name")
        self._extractors[name] = extractor_cls

    def register_dotted(self, dotted: str) -> Type[BaseExtractor]:
        extractor_cls = load_symbol(dotted)
        self.register(extractor_cls)
        return extractor_cls

    @property
    def names(self) -> List[str]:
        return sorted(self._extractors)

    def get(self, name: str) -> Type[BaseExtractor]:
        try:
            return self._extractors[name]
        except KeyError:
            if ":" in name or "." in name:
                return self.register_dotted(name)
            raise ConfigurationError(f"Unknown site {name!r}; known: {', '.join(self.names)}") from None

    def match(self, url: str) -> Optional[Type[BaseExtractor]]:
        for extractor_cls in self._extractors.values():
            if extractor_cls.matches(url):
                return extractor_cls
        return None

    # ---- Discovery ----

    def discover_entry_points(self, group: str = "catalog_crawler.extractors") -> int:
        """
        Register third-party extractors installed as entry points.
        Returns count of newly registered extractors; broken plugins are logged and skipped.
        """
        added = 0
        for ep in metadata.entry_points(group=group):
            try:
                self.register(ep.load())
            except Exception as exc:
                logger.warning("Failed to load extractor plugin %s: %r", ep.name, exc)
                continue
            added += 1
        return added
