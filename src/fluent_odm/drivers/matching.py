"""
Document query-language evaluation.

Evaluates filters, updates, sorts, projections and aggregation pipelines
against plain dict documents. Used by the in-memory store.
"""

import copy
import re
from datetime import datetime
from typing import Any, Iterable, Optional


_MISSING = object()


def get_path(document: Any, path: str) -> list[Any]:
    """
    Collect the values reachable through a dotted path.

    Lists along the path fan out, so ``addresses.city`` yields the city of
    every address. Returns an empty list when nothing is reachable.
    """
    current = [document]
    for part in path.split("."):
        found = []
        for value in current:
            if isinstance(value, dict):
                if part in value:
                    found.append(value[part])
            elif isinstance(value, list):
                if part.isdigit():
                    index = int(part)
                    if index < len(value):
                        found.append(value[index])
                else:
                    for item in value:
                        if isinstance(item, dict) and part in item:
                            found.append(item[part])
        current = found
    return current


def _candidates(values: list[Any]) -> list[Any]:
    """Values plus the elements of any array values."""
    expanded = list(values)
    for value in values:
        if isinstance(value, list):
            expanded.extend(value)
    return expanded


def _type_rank(value: Any) -> int:
    if value is None:
        return 0
    if isinstance(value, bool):
        return 5
    if isinstance(value, (int, float)):
        return 1
    if isinstance(value, str):
        return 2
    if isinstance(value, dict):
        return 3
    if isinstance(value, list):
        return 4
    if isinstance(value, datetime):
        return 6
    return 7


def _compare(left: Any, right: Any, op: str) -> bool:
    if left is None or right is None:
        return False
    if _type_rank(left) != _type_rank(right):
        return False
    try:
        if op == "$gt":
            return left > right
        if op == "$gte":
            return left >= right
        if op == "$lt":
            return left < right
        return left <= right
    except TypeError:
        return False


def _regex(pattern: Any, options: str = "") -> re.Pattern:
    if isinstance(pattern, re.Pattern):
        return pattern
    flags = 0
    if "i" in options:
        flags |= re.IGNORECASE
    if "m" in options:
        flags |= re.MULTILINE
    if "s" in options:
        flags |= re.DOTALL
    return re.compile(pattern, flags)


def _equals(values: list[Any], expected: Any) -> bool:
    if expected is None:
        return not values or any(value is None for value in _candidates(values))
    if isinstance(expected, re.Pattern):
        return any(isinstance(value, str) and expected.search(value) for value in _candidates(values))
    return any(value == expected for value in _candidates(values))


def _match_operators(values: list[Any], operators: dict[str, Any]) -> bool:
    for op, expected in operators.items():
        if op == "$eq":
            if not _equals(values, expected):
                return False
        elif op == "$ne":
            if _equals(values, expected):
                return False
        elif op in ("$gt", "$gte", "$lt", "$lte"):
            if not any(_compare(value, expected, op) for value in _candidates(values)):
                return False
        elif op == "$in":
            if not any(_equals(values, item) for item in expected):
                return False
        elif op == "$nin":
            if any(_equals(values, item) for item in expected):
                return False
        elif op == "$exists":
            if bool(values) != bool(expected):
                return False
        elif op == "$regex":
            pattern = _regex(expected, operators.get("$options", ""))
            if not any(isinstance(value, str) and pattern.search(value) for value in _candidates(values)):
                return False
        elif op == "$options":
            continue
        elif op == "$not":
            if isinstance(expected, dict):
                if _match_operators(values, expected):
                    return False
            elif _equals(values, expected):
                return False
        elif op == "$size":
            if not any(isinstance(value, list) and len(value) == expected for value in values):
                return False
        elif op == "$all":
            if not all(_equals(values, item) for item in expected):
                return False
        elif op == "$elemMatch":
            if not any(
                isinstance(item, dict) and matches(item, expected)
                for value in values if isinstance(value, list)
                for item in value
            ):
                return False
        else:
            raise ValueError(f"Unsupported query operator: {op}")
    return True


def _is_operator_dict(value: Any) -> bool:
    return isinstance(value, dict) and bool(value) and all(key.startswith("$") for key in value)


def matches(document: dict[str, Any], filter: Optional[dict[str, Any]]) -> bool:
    """
    Check whether a document satisfies a filter.

    Example:
        >>> matches({"age": 30}, {"age": {"$gte": 18}})
        True
    """
    if not filter:
        return True

    for key, condition in filter.items():
        if key == "$and":
            if not all(matches(document, sub) for sub in condition):
                return False
        elif key == "$or":
            if not any(matches(document, sub) for sub in condition):
                return False
        elif key == "$nor":
            if any(matches(document, sub) for sub in condition):
                return False
        elif key.startswith("$"):
            raise ValueError(f"Unsupported top-level operator: {key}")
        else:
            values = get_path(document, key)
            if _is_operator_dict(condition):
                if not _match_operators(values, condition):
                    return False
            elif not _equals(values, condition):
                return False
    return True


def _set_path(document: dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    target: Any = document
    for part in parts[:-1]:
        if isinstance(target, list) and part.isdigit():
            target = target[int(part)]
            continue
        if part not in target or not isinstance(target[part], (dict, list)):
            target[part] = {}
        target = target[part]
    last = parts[-1]
    if isinstance(target, list) and last.isdigit():
        target[int(last)] = value
    else:
        target[last] = value


def _unset_path(document: dict[str, Any], path: str) -> None:
    parts = path.split(".")
    target: Any = document
    for part in parts[:-1]:
        if not isinstance(target, dict) or part not in target:
            return
        target = target[part]
    if isinstance(target, dict):
        target.pop(parts[-1], None)


def apply_update(document: dict[str, Any], update: dict[str, Any]) -> bool:
    """
    Apply an update document in place.

    Returns:
        True if the document changed
    """
    before = copy.deepcopy(document)
    for op, fields in update.items():
        if op == "$set":
            for path, value in fields.items():
                _set_path(document, path, copy.deepcopy(value))
        elif op == "$unset":
            for path in fields:
                _unset_path(document, path)
        elif op == "$inc":
            for path, amount in fields.items():
                current = get_path(document, path)
                _set_path(document, path, (current[0] if current else 0) + amount)
        elif op == "$push":
            for path, value in fields.items():
                current = get_path(document, path)
                items = list(current[0]) if current and isinstance(current[0], list) else []
                if isinstance(value, dict) and "$each" in value:
                    items.extend(copy.deepcopy(value["$each"]))
                else:
                    items.append(copy.deepcopy(value))
                _set_path(document, path, items)
        elif op == "$pull":
            for path, value in fields.items():
                current = get_path(document, path)
                if current and isinstance(current[0], list):
                    if _is_operator_dict(value) or (isinstance(value, dict) and value):
                        kept = [item for item in current[0] if not _pull_matches(item, value)]
                    else:
                        kept = [item for item in current[0] if item != value]
                    _set_path(document, path, kept)
        else:
            raise ValueError(f"Unsupported update operator: {op}")
    return document != before


def _pull_matches(item: Any, condition: dict[str, Any]) -> bool:
    if _is_operator_dict(condition):
        return _match_operators([item], condition)
    return isinstance(item, dict) and matches(item, condition)


def sort_key(value: Any) -> tuple:
    """Ordering key: missing/None first, then by type rank, then by value."""
    if value is _MISSING or value is None:
        return (0, 0)
    return (_type_rank(value), value)


def sort_documents(documents: list[dict[str, Any]], sort: Optional[Iterable[tuple[str, int]]]) -> list[dict[str, Any]]:
    """Sort documents by (field, direction) pairs; direction is 1 or -1."""
    result = list(documents)
    for field, direction in reversed(list(sort or [])):
        def key(doc: dict[str, Any], field: str = field) -> tuple:
            values = get_path(doc, field)
            return sort_key(values[0] if values else _MISSING)

        result.sort(key=key, reverse=direction < 0)
    return result


def project(document: dict[str, Any], projection: Optional[dict[str, Any]]) -> dict[str, Any]:
    """Apply an inclusion or exclusion projection to a document."""
    if not projection:
        return copy.deepcopy(document)

    fields = {key: value for key, value in projection.items() if key != "_id"}
    inclusive = any(bool(value) for value in fields.values())
    if inclusive:
        result: dict[str, Any] = {}
        if projection.get("_id", 1) and "_id" in document:
            result["_id"] = copy.deepcopy(document["_id"])
        for path, flag in fields.items():
            if not flag:
                continue
            values = get_path(document, path)
            if values:
                _set_path(result, path, copy.deepcopy(values[0]))
        return result

    result = copy.deepcopy(document)
    for path in fields:
        _unset_path(result, path)
    if projection.get("_id", 1) == 0:
        result.pop("_id", None)
    return result


def _evaluate(expression: Any, document: dict[str, Any]) -> Any:
    if isinstance(expression, str) and expression.startswith("$"):
        values = get_path(document, expression[1:])
        return values[0] if values else None
    if isinstance(expression, dict):
        return {key: _evaluate(value, document) for key, value in expression.items()}
    return expression


def _accumulate(op: str, argument: Any, group: list[dict[str, Any]]) -> Any:
    values = [_evaluate(argument, doc) for doc in group]
    if op == "$sum":
        return sum(value for value in values if isinstance(value, (int, float)) and not isinstance(value, bool))
    if op == "$avg":
        numbers = [value for value in values if isinstance(value, (int, float)) and not isinstance(value, bool)]
        return sum(numbers) / len(numbers) if numbers else None
    if op == "$min":
        present = [value for value in values if value is not None]
        return min(present, key=sort_key) if present else None
    if op == "$max":
        present = [value for value in values if value is not None]
        return max(present, key=sort_key) if present else None
    if op == "$first":
        return values[0] if values else None
    if op == "$last":
        return values[-1] if values else None
    if op == "$push":
        return values
    if op == "$addToSet":
        unique: list[Any] = []
        for value in values:
            if value not in unique:
                unique.append(value)
        return unique
    raise ValueError(f"Unsupported accumulator: {op}")


def _group(documents: list[dict[str, Any]], stage: dict[str, Any]) -> list[dict[str, Any]]:
    groups: list[tuple[Any, list[dict[str, Any]]]] = []
    for doc in documents:
        key = _evaluate(stage.get("_id"), doc)
        for existing_key, members in groups:
            if existing_key == key:
                members.append(doc)
                break
        else:
            groups.append((key, [doc]))

    rows = []
    for key, members in groups:
        row: dict[str, Any] = {"_id": key}
        for name, accumulator in stage.items():
            if name == "_id":
                continue
            (op, argument), = accumulator.items()
            row[name] = _accumulate(op, argument, members)
        rows.append(row)
    return rows


def run_pipeline(documents: list[dict[str, Any]], pipeline: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """
    Run an aggregation pipeline over documents.

    Supports ``$match``, ``$group``, ``$sort``, ``$skip``, ``$limit`` and
    ``$project``.
    """
    rows = [copy.deepcopy(doc) for doc in documents]
    for stage in pipeline:
        (name, argument), = stage.items()
        if name == "$match":
            rows = [row for row in rows if matches(row, argument)]
        elif name == "$group":
            rows = _group(rows, argument)
        elif name == "$sort":
            rows = sort_documents(rows, list(argument.items()))
        elif name == "$skip":
            rows = rows[argument:]
        elif name == "$limit":
            rows = rows[:argument]
        elif name == "$project":
            computed = {key: value for key, value in argument.items() if not isinstance(value, (int, bool))}
            plain = {key: value for key, value in argument.items() if isinstance(value, (int, bool))}
            projected = []
            for row in rows:
                result = project(row, plain) if plain else copy.deepcopy(row)
                for key, expression in computed.items():
                    result[key] = _evaluate(expression, row)
                projected.append(result)
            rows = projected
        else:
            raise ValueError(f"Unsupported pipeline stage: {name}")
    return rows
