"""
In-memory query engine for embedded document lists.

Embedded documents already live inside their parent, so filtering,
ordering and paging happen synchronously over the loaded items.
"""

import math
import re
from typing import Any, Callable, Optional, Sequence, Union

from fluent_odm.query.conditions import like_to_regex, normalize_operator
from fluent_odm.query.utilities import normalize_direction

_MISSING: Any = object()

Predicate = Callable[[Any], bool]


def read_path(item: Any, path: str) -> Any:
    """Read a dotted attribute path from an object or dict; missing parts give None."""
    value = item
    for part in path.split("."):
        if value is None:
            return None
        if isinstance(value, dict):
            value = value.get(part)
        else:
            value = getattr(value, part, None)
    return value


def _compare(operator: str, actual: Any, expected: Any) -> bool:
    if operator == "eq":
        return bool(actual == expected)
    if operator == "ne":
        return bool(actual != expected)
    if operator == "in":
        return actual in list(expected)
    if operator == "nin":
        return actual not in list(expected)
    if operator == "exists":
        return (actual is not None) == bool(expected)
    if operator in ("like", "ilike"):
        if actual is None:
            return False
        flags = re.IGNORECASE if operator == "ilike" else 0
        return re.match(like_to_regex(str(expected)), str(actual), flags | re.DOTALL) is not None
    if actual is None:
        return False
    try:
        if operator == "gt":
            return bool(actual > expected)
        if operator == "gte":
            return bool(actual >= expected)
        if operator == "lt":
            return bool(actual < expected)
        if operator == "lte":
            return bool(actual <= expected)
        if operator == "between":
            low, high = expected
            return bool(low <= actual <= high)
    except TypeError:
        return False
    raise ValueError(f"Unsupported query operator: {operator!r}")


class EmbeddedQueryBuilder:
    """
    Synchronous query over a list of embedded documents.

    Results are the original item objects, so they can be passed back to
    the owning proxy (for example to remove them).

    Example:
        >>> user.embedded("addresses").query().where("city", "Paris").order_by("street").get()
    """

    def __init__(self, items: Sequence[Any]):
        self._items = list(items)
        self._groups: list[list[Predicate]] = []
        self._sort: list[tuple[str, int]] = []
        self._limit: Optional[int] = None
        self._skip = 0
        self._fields: Optional[list[str]] = None

    def _add(self, predicate: Predicate, boolean: str = "and") -> "EmbeddedQueryBuilder":
        if not self._groups or boolean == "or":
            self._groups.append([predicate])
        else:
            self._groups[-1].append(predicate)
        return self

    def _condition(self, field: str, operator: Any, value: Any, negated: bool = False) -> Predicate:
        if value is _MISSING:
            op, value = "eq", operator
        else:
            op = normalize_operator(operator)

        def predicate(item: Any) -> bool:
            result = _compare(op, read_path(item, field), value)
            return not result if negated else result

        return predicate

    def where(self, field: str, operator: Any, value: Any = _MISSING) -> "EmbeddedQueryBuilder":
        """
        Add an AND condition; ``where(field, value)`` means equality.

        Example:
            >>> query.where("zip", "75001")
            >>> query.where("floor", ">=", 2)
        """
        return self._add(self._condition(field, operator, value))

    def and_where(self, field: str, operator: Any, value: Any = _MISSING) -> "EmbeddedQueryBuilder":
        return self._add(self._condition(field, operator, value))

    def or_where(self, field: str, operator: Any, value: Any = _MISSING) -> "EmbeddedQueryBuilder":
        return self._add(self._condition(field, operator, value), "or")

    def where_not(self, field: str, operator: Any, value: Any = _MISSING) -> "EmbeddedQueryBuilder":
        return self._add(self._condition(field, operator, value, negated=True))

    def where_in(self, field: str, values: Any) -> "EmbeddedQueryBuilder":
        return self._add(self._condition(field, "in", list(values)))

    def where_not_in(self, field: str, values: Any) -> "EmbeddedQueryBuilder":
        return self._add(self._condition(field, "nin", list(values)))

    def where_null(self, field: str) -> "EmbeddedQueryBuilder":
        return self._add(lambda item: read_path(item, field) is None)

    def where_not_null(self, field: str) -> "EmbeddedQueryBuilder":
        return self._add(lambda item: read_path(item, field) is not None)

    def where_between(self, field: str, bounds: tuple[Any, Any]) -> "EmbeddedQueryBuilder":
        return self._add(self._condition(field, "between", tuple(bounds)))

    def where_not_between(self, field: str, bounds: tuple[Any, Any]) -> "EmbeddedQueryBuilder":
        return self._add(self._condition(field, "between", tuple(bounds), negated=True))

    def where_like(self, field: str, pattern: str) -> "EmbeddedQueryBuilder":
        return self._add(self._condition(field, "like", pattern))

    def where_ilike(self, field: str, pattern: str) -> "EmbeddedQueryBuilder":
        return self._add(self._condition(field, "ilike", pattern))

    def search(self, text: str, fields: Sequence[str]) -> "EmbeddedQueryBuilder":
        """
        Case-insensitive substring match over any of the given fields.

        Example:
            >>> query.search("main", ["street", "city"])
        """
        needle = text.lower()

        def predicate(item: Any) -> bool:
            for field in fields:
                value = read_path(item, field)
                if value is not None and needle in str(value).lower():
                    return True
            return False

        return self._add(predicate)

    def order_by(self, field: str, direction: Union[str, int] = "asc") -> "EmbeddedQueryBuilder":
        self._sort = [(name, order) for name, order in self._sort if name != field]
        self._sort.append((field, normalize_direction(direction)))
        return self

    def limit(self, count: int) -> "EmbeddedQueryBuilder":
        self._limit = count
        return self

    def skip(self, count: int) -> "EmbeddedQueryBuilder":
        self._skip = count
        return self

    def offset(self, count: int) -> "EmbeddedQueryBuilder":
        return self.skip(count)

    def for_page(self, page: int, per_page: int) -> "EmbeddedQueryBuilder":
        page = max(page, 1)
        self._skip = (page - 1) * per_page
        self._limit = per_page
        return self

    def select(self, *fields: str) -> "EmbeddedQueryBuilder":
        """Make get() return dicts holding only these fields."""
        self._fields = list(fields)
        return self

    def _matches(self, item: Any) -> bool:
        if not self._groups:
            return True
        return any(all(predicate(item) for predicate in group) for group in self._groups)

    def _filtered(self) -> list[Any]:
        results = [item for item in self._items if self._matches(item)]
        # Stable sorts applied from the last key to the first
        for field, direction in reversed(self._sort):
            present = [item for item in results if read_path(item, field) is not None]
            missing = [item for item in results if read_path(item, field) is None]
            present.sort(key=lambda item: read_path(item, field), reverse=direction < 0)
            results = present + missing if direction > 0 else missing + present
        return results

    def _shape(self, items: list[Any]) -> list[Any]:
        if self._fields is None:
            return items
        return [{field: read_path(item, field) for field in self._fields} for item in items]

    def get(self) -> list[Any]:
        """Matching items after ordering, skip and limit."""
        results = self._filtered()[self._skip:]
        if self._limit is not None:
            results = results[:self._limit]
        return self._shape(results)

    def first(self) -> Optional[Any]:
        results = self._filtered()[self._skip:self._skip + 1]
        shaped = self._shape(results)
        return shaped[0] if shaped else None

    def count(self) -> int:
        return len(self._filtered())

    def exists(self) -> bool:
        return any(self._matches(item) for item in self._items)

    def paginate(self, page: int = 1, per_page: int = 10) -> dict[str, Any]:
        """
        One page of matches plus metadata.

        Example:
            >>> query.paginate(2, 5)["meta"]
            {'current_page': 2, 'per_page': 5, 'total': 12, 'total_pages': 3, 'has_next_page': True, 'has_prev_page': True}
        """
        page = max(page, 1)
        matches = self._filtered()
        total = len(matches)
        total_pages = max(1, math.ceil(total / per_page)) if per_page > 0 else 1
        start = (page - 1) * per_page
        return {
            "data": self._shape(matches[start:start + per_page]),
            "meta": {
                "current_page": page,
                "per_page": per_page,
                "total": total,
                "total_pages": total_pages,
                "has_next_page": page < total_pages,
                "has_prev_page": page > 1,
            },
        }

    def distinct(self, field: str) -> list[Any]:
        """Distinct values of a field among the matches, in first-seen order."""
        seen: list[Any] = []
        for item in self._filtered():
            value = read_path(item, field)
            if value not in seen:
                seen.append(value)
        return seen

    def group_by(self, field: str) -> dict[Any, list[Any]]:
        """Matches grouped by a field value, groups in first-seen order."""
        groups: dict[Any, list[Any]] = {}
        for item in self._filtered():
            groups.setdefault(read_path(item, field), []).append(item)
        return groups
