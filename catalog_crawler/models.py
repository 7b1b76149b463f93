from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from .errors import UnknownLabelError
from .utils.parsing import normalize_url


class Label(str, enum.Enum):
    """Closed set of request kinds; each site maps a subset of these to handlers."""

    START = "START"
    CATEGORY = "CATEGORY"
    PAGE = "PAGE"

    @classmethod
    def parse(cls, value: "str | Label") -> "Label":
        if isinstance(value, Label):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            raise UnknownLabelError(value) from None


@dataclass(frozen=True)
class UserData:
    page: Optional[int] = None
    page_size: Optional[int] = None
    category_path: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.page is not None:
            data["page"] = self.page
        if self.page_size is not None:
            data["pageSize"] = self.page_size
        if self.category_path:
            data["categoryPath"] = list(self.category_path)
        return data


@dataclass(frozen=True)
class Request:
    url: str
    label: Label
    # read-only mapping, excluded from the hash
    headers: Mapping[str, str] = field(default_factory=dict, hash=False)
    user_data: UserData = field(default_factory=UserData)

    def __post_init__(self) -> None:
        object.__setattr__(self, "label", Label.parse(self.label))
        object.__setattr__(self, "headers", MappingProxyType(dict(self.headers)))
        if isinstance(self.user_data, dict):
            object.__setattr__(self, "user_data", UserData(**self.user_data))

    @property
    def key(self) -> Tuple[str, Label]:
        """Identity used by the frontier to suppress repeats within a run."""
        return normalize_url(self.url), self.label

    def follow(self, url: str, **user_data: Any) -> "Request":
        """Copy of this request pointed at ``url`` with updated user data."""
        return replace(self, url=url, user_data=replace(self.user_data, **user_data))

    @classmethod
    def from_start(cls, entry: "str | Mapping[str, Any]", default_label: Label = Label.START) -> "Request":
        if isinstance(entry, str):
            return cls(url=entry, label=default_label)
        return cls(
            url=entry["url"],
            label=Label.parse(entry.get("label", default_label)),
            headers=entry.get("headers") or {},
        )


@dataclass
class Item:
    """A single product record as handed to the sink."""

    item_id: str
    name: Optional[str] = None
    url: Optional[str] = None
    slug: Optional[str] = None
    img: Optional[str] = None
    current_price: Optional[float] = None
    original_price: Optional[float] = None
    currency: Optional[str] = None
    discounted: bool = False
    use_unit_price: bool = False
    current_unit_price: Optional[float] = None
    original_unit_price: Optional[float] = None
    unit: Optional[str] = None
    category: Optional[str] = None
    in_stock: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "itemId": self.item_id,
            "itemName": self.name,
            "itemUrl": self.url,
            "slug": self.slug,
            "img": self.img,
            "currentPrice": self.current_price,
            "originalPrice": self.original_price,
            "currency": self.currency,
            "discounted": self.discounted,
            "useUnitPrice": self.use_unit_price,
            "currentUnitPrice": self.current_unit_price,
            "originalUnitPrice": self.original_unit_price,
            "unit": self.unit,
            "category": self.category,
            "inStock": self.in_stock,
        }
        # Drop unset keys for a cleaner export.
        return {k: v for k, v in data.items() if v is not None}
