from __future__ import annotations

import importlib
from typing import Any

from ..errors import ConfigurationError


def load_symbol(dotted: str) -> Any:
    """
    Resolve "package.module:Name" (or "package.module.Name") to the object it names.
    Import failures are reported as configuration errors.
    """
    if ":" in dotted:
        module_name, _, symbol_name = dotted.partition(":")
    elif "." in dotted:
        module_name, _, symbol_name = dotted.rpartition(".")
    else:
        raise ConfigurationError(f"Not a dotted path: {dotted!r}")

    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise ConfigurationError(f"Cannot import {module_name!r} for {dotted!r}: {exc}") from exc
    try:
        return getattr(module, symbol_name)
    except AttributeError:
        raise ConfigurationError(f"{module_name!r} has no attribute {symbol_name!r}") from None
