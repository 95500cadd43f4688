"""
Query shaping: sort, limit/skip, projection, distinct, group-by, having.

Independent of any model or store; the builder translates field names
before handing them over.
"""

import copy
from typing import Any, Optional, Union

from fluent_odm.query.conditions import Condition, compile_conditions


def normalize_direction(direction: Union[str, int]) -> int:
    """
    Map a sort direction to 1 (ascending) or -1 (descending).

    Raises:
        ValueError: If the direction is not recognised
    """
    if direction in (1, -1):
        return int(direction)
    value = str(direction).lower()
    if value in ("asc", "ascending"):
        return 1
    if value in ("desc", "descending"):
        return -1
    raise ValueError(f"Invalid sort direction: {direction!r}")


def group_output_name(field: str) -> str:
    """Output column name of a group-by field (dots are not allowed in output names)."""
    return field.replace(".", "_")


class QueryUtilities:
    """Accumulates the non-filter parts of a query plan."""

    def __init__(self) -> None:
        self.sort: list[tuple[str, int]] = []
        self.limit: Optional[int] = None
        self.skip: Optional[int] = None
        self.projection: Optional[dict[str, int]] = None
        self.distinct_field: Optional[str] = None
        self.group_by: list[str] = []
        self.having: list[Condition] = []

    def order_by(self, field: str, direction: Union[str, int] = "asc") -> None:
        value = normalize_direction(direction)
        self.sort = [(name, order) for name, order in self.sort if name != field]
        self.sort.append((field, value))

    def set_limit(self, count: int) -> None:
        if count < 0:
            raise ValueError("limit must not be negative")
        self.limit = count

    def set_skip(self, count: int) -> None:
        if count < 0:
            raise ValueError("skip must not be negative")
        self.skip = count

    def for_page(self, page: int, per_page: int) -> None:
        """Set skip and limit for a 1-indexed page."""
        if per_page < 1:
            raise ValueError("per_page must be at least 1")
        page = max(page, 1)
        self.skip = (page - 1) * per_page
        self.limit = per_page

    def select(self, fields: Union[list[str], dict[str, int]]) -> None:
        """A list is an inclusion projection; a dict is used as given."""
        if isinstance(fields, dict):
            self.projection = dict(fields)
        else:
            self.projection = {field: 1 for field in fields}

    def set_distinct(self, field: str) -> None:
        self.distinct_field = field

    def set_group_by(self, fields: list[str]) -> None:
        self.group_by = list(fields)

    def add_having(self, condition: Condition) -> None:
        self.having.append(condition)

    @property
    def is_aggregate(self) -> bool:
        return self.distinct_field is not None or bool(self.group_by)

    def find_options(self) -> dict[str, Any]:
        """Keyword arguments for a collection ``find`` call."""
        return {
            "projection": self.projection,
            "sort": list(self.sort) or None,
            "skip": self.skip or 0,
            "limit": self.limit or 0,
        }

    def build_pipeline(self, filter: dict[str, Any]) -> list[dict[str, Any]]:
        """
        Aggregation pipeline for distinct or group-by queries.

        Distinct rows look like ``{field: value}``; group rows carry the
        group-by fields plus ``count``.
        """
        pipeline: list[dict[str, Any]] = []
        if filter:
            pipeline.append({"$match": filter})

        if self.distinct_field is not None:
            output = group_output_name(self.distinct_field)
            pipeline.append({"$group": {"_id": f"${self.distinct_field}"}})
            pipeline.append({"$project": {"_id": 0, output: "$_id"}})
        else:
            pipeline.append({
                "$group": {
                    "_id": {group_output_name(field): f"${field}" for field in self.group_by},
                    "count": {"$sum": 1},
                }
            })
            projection: dict[str, Any] = {"_id": 0, "count": 1}
            for field in self.group_by:
                name = group_output_name(field)
                projection[name] = f"$_id.{name}"
            pipeline.append({"$project": projection})

        if self.having:
            pipeline.append({"$match": compile_conditions(self.having)})
        if self.sort:
            pipeline.append({"$sort": dict(self.sort)})
        if self.skip:
            pipeline.append({"$skip": self.skip})
        if self.limit:
            pipeline.append({"$limit": self.limit})
        return pipeline

    def snapshot(self) -> dict[str, Any]:
        return {
            "sort": list(self.sort),
            "limit": self.limit,
            "skip": self.skip,
            "projection": copy.deepcopy(self.projection),
            "distinct": self.distinct_field,
            "group_by": list(self.group_by),
            "having": [condition.compile() for condition in self.having],
        }

    def clone(self) -> "QueryUtilities":
        return copy.deepcopy(self)
