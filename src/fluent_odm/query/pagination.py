"""Paginated query results."""

import math
from dataclasses import dataclass, field
from typing import Any, Generic, Optional, TypeVar

from fluent_odm.naming import NamingStrategy, DEFAULT_NAMING_STRATEGY

T = TypeVar("T")


@dataclass
class PaginatedResult(Generic[T]):
    """
    One page of results plus navigation metadata.

    Example:
        >>> page = await User.query().order_by("name").paginate(2, 10)
        >>> page.total, page.last_page, page.has_next_page
        (25, 3, True)
    """

    data: list[T]
    total: int
    per_page: int
    current_page: int
    base_url: str = ""
    naming_strategy: NamingStrategy = field(default=DEFAULT_NAMING_STRATEGY, repr=False)

    first_page: int = 1

    @property
    def last_page(self) -> int:
        return max(1, math.ceil(self.total / self.per_page)) if self.per_page else 1

    @property
    def has_next_page(self) -> bool:
        return self.current_page < self.last_page

    @property
    def has_previous_page(self) -> bool:
        return self.current_page > 1

    @property
    def has_more_pages(self) -> bool:
        return self.has_next_page

    @property
    def is_empty(self) -> bool:
        return not self.data

    def page_url(self, page: int) -> str:
        return f"{self.base_url}?page={page}"

    @property
    def first_page_url(self) -> str:
        return self.page_url(self.first_page)

    @property
    def last_page_url(self) -> str:
        return self.page_url(self.last_page)

    @property
    def next_page_url(self) -> Optional[str]:
        return self.page_url(self.current_page + 1) if self.has_next_page else None

    @property
    def previous_page_url(self) -> Optional[str]:
        return self.page_url(self.current_page - 1) if self.has_previous_page else None

    def meta(self) -> dict[str, Any]:
        """Metadata keyed by the naming strategy's pagination keys."""
        keys = self.naming_strategy.pagination_meta_keys()
        values = {
            "total": self.total,
            "per_page": self.per_page,
            "current_page": self.current_page,
            "last_page": self.last_page,
            "first_page": self.first_page,
            "first_page_url": self.first_page_url,
            "last_page_url": self.last_page_url,
            "next_page_url": self.next_page_url,
            "previous_page_url": self.previous_page_url,
        }
        return {keys[name]: value for name, value in values.items()}

    def to_json(self) -> dict[str, Any]:
        data = [item.to_json() if hasattr(item, "to_json") else item for item in self.data]
        return {"meta": self.meta(), "data": data}

    def __iter__(self):
        return iter(self.data)

    def __len__(self) -> int:
        return len(self.data)
