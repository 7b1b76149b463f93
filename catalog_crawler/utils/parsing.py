from __future__ import annotations

import json
import re
from typing import Any, Iterable, Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from bs4 import BeautifulSoup

_PRICE_JUNK = re.compile(r"[^\d,.\-]")


def normalize_url(url: str) -> str:
    """
    Normalize URL by removing fragments, lowercasing scheme/host and sorting query params.
    """
    parts = list(urlparse(url))
    parts[0] = parts[0].lower()
    parts[1] = parts[1].lower()
    parts[4] = urlencode(sorted(parse_qsl(parts[4], keep_blank_values=True)))
    parts[5] = ""  # strip fragment
    return urlunparse(parts)


def set_query_param(url: str, name: str, value: Any) -> str:
    parts = list(urlparse(url))
    query = [(k, v) for k, v in parse_qsl(parts[4], keep_blank_values=True) if k != name]
    query.append((name, str(value)))
    parts[4] = urlencode(query)
    return urlunparse(parts)


def parse_html(body: bytes | str) -> BeautifulSoup:
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    return BeautifulSoup(body, "html.parser")


def parse_json(body: bytes | str) -> Any:
    if isinstance(body, bytes):
        body = body.decode("utf-8")
    return json.loads(body)


def text_or_none(node) -> Optional[str]:
    if not node:
        return None
    text = node.get_text(strip=True)
    return text or None


def clean_price(text: Optional[str]) -> Optional[float]:
    """
    Parse a human-formatted price such as ``"1 299,90 Kč"`` into a float.
    """
    if not text:
        return None
    value = _PRICE_JUNK.sub("", text)
    if "," in value and "." in value:
        value = value.replace(".", "").replace(",", ".")
    else:
        value = value.replace(",", ".")
    value = value.rstrip(".")
    try:
        return float(value)
    except ValueError:
        return None


def parse_count(text: Optional[str]) -> Optional[int]:
    """Parse an integer counter that may contain whitespace thousand separators."""
    if not text:
        return None
    digits = re.sub(r"\s+", "", text)
    match = re.match(r"\d+", digits)
    return int(match.group(0)) if match else None


def iter_jsonld_items(data: Any) -> Iterable[Any]:
    if isinstance(data, list):
        for item in data:
            yield from iter_jsonld_items(item)
    elif isinstance(data, dict):
        if "@graph" in data:
            yield from iter_jsonld_items(data["@graph"])
        else:
            yield data
