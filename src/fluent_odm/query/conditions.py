"""
Filter conditions and their compilation to store filters.

A query keeps an ordered list of conditions. Compilation groups them left
to right: ``or_where`` starts a new group, every other condition joins the
current group, groups are conjunctions and the groups are OR-ed together.
"""

import re
from dataclasses import dataclass
from typing import Any


# Operator spellings accepted by where() and friends, mapped to canonical names
OPERATOR_ALIASES = {
    "=": "eq",
    "==": "eq",
    "eq": "eq",
    "!=": "ne",
    "<>": "ne",
    "ne": "ne",
    ">": "gt",
    "gt": "gt",
    ">=": "gte",
    "gte": "gte",
    "<": "lt",
    "lt": "lt",
    "<=": "lte",
    "lte": "lte",
    "in": "in",
    "not in": "nin",
    "nin": "nin",
    "like": "like",
    "ilike": "ilike",
    "exists": "exists",
    "between": "between",
}

# Canonical operators with a direct store equivalent
STORE_OPERATORS = {
    "eq": "$eq",
    "ne": "$ne",
    "gt": "$gt",
    "gte": "$gte",
    "lt": "$lt",
    "lte": "$lte",
    "in": "$in",
    "nin": "$nin",
    "exists": "$exists",
}


def normalize_operator(operator: str) -> str:
    """
    Map an operator spelling to its canonical name.

    Raises:
        ValueError: If the operator is not supported

    Example:
        >>> normalize_operator(">=")
        'gte'
    """
    try:
        return OPERATOR_ALIASES[str(operator).strip().lower()]
    except KeyError:
        raise ValueError(f"Unsupported query operator: {operator!r}")


def parse_field_lookup(field_lookup: str) -> tuple[str, str]:
    """
    Parse a keyword lookup into field name and operator.

    Example:
        >>> parse_field_lookup("age__gte")
        ('age', 'gte')
        >>> parse_field_lookup("name")
        ('name', 'eq')
    """
    if "__" in field_lookup:
        field, operator = field_lookup.rsplit("__", 1)
        if operator in OPERATOR_ALIASES:
            return field, operator
    return field_lookup, "eq"


def like_to_regex(pattern: str) -> str:
    """
    Translate a LIKE pattern to an anchored regular expression.

    ``%`` matches any run of characters and ``_`` any single character;
    everything else is literal.

    Example:
        >>> like_to_regex("Jo%n_")
        '^Jo.*n.$'
    """
    parts = []
    for char in pattern:
        if char == "%":
            parts.append(".*")
        elif char == "_":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return "^" + "".join(parts) + "$"


@dataclass
class Condition:
    """One filter condition: ``field operator value``."""

    field: str
    operator: str
    value: Any
    boolean: str = "and"
    negated: bool = False

    def expression(self) -> Any:
        """Store expression for the value side of the condition."""
        operator = self.operator
        if operator == "eq":
            return self.value
        if operator in ("like", "ilike"):
            expression = {"$regex": like_to_regex(str(self.value))}
            if operator == "ilike":
                expression["$options"] = "i"
            return expression
        if operator == "between":
            low, high = self.value
            return {"$gte": low, "$lte": high}
        if operator in ("in", "nin"):
            return {STORE_OPERATORS[operator]: list(self.value)}
        return {STORE_OPERATORS[operator]: self.value}

    def compile(self) -> dict[str, Any]:
        """
        Compile to a single-field store filter.

        Example:
            >>> Condition("age", "gte", 18).compile()
            {'age': {'$gte': 18}}
            >>> Condition("status", "eq", "banned", negated=True).compile()
            {'status': {'$ne': 'banned'}}
        """
        expression = self.expression()
        if not self.negated:
            return {self.field: expression}
        if self.operator == "eq":
            return {self.field: {"$ne": self.value}}
        if self.operator == "exists":
            return {self.field: {"$exists": not self.value}}
        if self.operator == "in":
            return {self.field: {"$nin": list(self.value)}}
        if self.operator == "nin":
            return {self.field: {"$in": list(self.value)}}
        return {self.field: {"$not": expression}}


def _compile_group(group: list[Condition]) -> dict[str, Any]:
    parts = [condition.compile() for condition in group]
    merged: dict[str, Any] = {}
    for part in parts:
        (field, expression), = part.items()
        if field in merged:
            return {"$and": parts}
        merged[field] = expression
    return merged


def compile_conditions(conditions: list[Condition]) -> dict[str, Any]:
    """
    Compile an ordered condition list to one store filter.

    Example:
        >>> compile_conditions([
        ...     Condition("age", "gte", 18),
        ...     Condition("role", "eq", "admin", boolean="or"),
        ... ])
        {'$or': [{'age': {'$gte': 18}}, {'role': 'admin'}]}
    """
    groups: list[list[Condition]] = []
    for condition in conditions:
        if not groups or condition.boolean == "or":
            groups.append([condition])
        else:
            groups[-1].append(condition)

    compiled = [_compile_group(group) for group in groups]
    if not compiled:
        return {}
    if len(compiled) == 1:
        return compiled[0]
    return {"$or": compiled}
