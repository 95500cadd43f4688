"""
Eager loading of relationships for a batch of model instances.

Each relationship is loaded with exactly one query for the whole batch,
regardless of how many instances it holds.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from fluent_odm.models.base import Model
    from fluent_odm.transaction import TransactionClient

logger = logging.getLogger(__name__)


@dataclass
class LoadRequest:
    """
    What to load for one relationship.

    Attributes:
        callback: Constrains the related query
        nested: ``(path, callback)`` pairs loaded on the related results
    """

    callback: Optional[Callable[[Any], Any]] = None
    nested: list[tuple[str, Optional[Callable[[Any], Any]]]] = field(default_factory=list)

    def snapshot(self) -> dict[str, Any]:
        return {
            "callback": self.callback,
            "nested": sorted(self.nested, key=lambda pair: pair[0]),
        }

    def clone(self) -> "LoadRequest":
        return LoadRequest(callback=self.callback, nested=list(self.nested))


async def load_relation(
    model_class: type["Model"],
    name: str,
    request: LoadRequest,
    instances: list["Model"],
    transaction: Optional["TransactionClient"] = None,
) -> None:
    """
    Load one relationship onto every instance with a single query.

    Collects the distinct local key values, fetches every related document
    whose foreign key is among them, and hands each instance its matches.
    Instances without a local key value get None (or an empty list).

    Args:
        model_class: Model declaring the relationship
        name: Relationship attribute name
        request: Callback and nested loads for the related query
        instances: Instances to populate
        transaction: Optional transaction the related query runs in
    """
    descriptor = getattr(model_class, name)
    related_model = descriptor.related_model(model_class)
    local_key, foreign_key = descriptor.keys(model_class)

    keys: list[Any] = []
    seen: set[str] = set()
    for instance in instances:
        value = getattr(instance, local_key, None)
        if value is None or str(value) in seen:
            continue
        seen.add(str(value))
        keys.append(value)

    query = related_model.query(transaction).where_in(foreign_key, keys)
    if request.callback is not None:
        request.callback(query)
    for path, callback in request.nested:
        query.load(path, callback)

    results = await query.all()
    logger.debug(
        f"Loaded {len(results)} {related_model.__name__} for {model_class.__name__}.{name} "
        f"across {len(instances)} instances"
    )

    grouped: dict[str, list[Any]] = {}
    for result in results:
        grouped.setdefault(str(getattr(result, foreign_key, None)), []).append(result)

    for instance in instances:
        value = getattr(instance, local_key, None)
        matches = grouped.get(str(value), []) if value is not None else []
        proxy = getattr(instance, name)
        if descriptor.relation == "has_many":
            proxy.set_loaded(list(matches))
        else:
            proxy.set_loaded(matches[0] if matches else None)
