"""
Model query builder.

Provides a fluent interface for building document-store queries against
a model's collection, executing them, and hydrating model instances with
their requested relationships.
"""

import copy
import logging
from typing import Any, AsyncIterator, Callable, Optional, Union, TYPE_CHECKING

from fluent_odm.exceptions import DatabaseOperationError, ModelNotFoundError, OdmError, RelationshipError
from fluent_odm.models.base import to_storage
from fluent_odm.models.hooks import execute_hooks
from fluent_odm.models.metadata import get_metadata, ModelMetadata
from fluent_odm.query.conditions import Condition, compile_conditions, normalize_operator, parse_field_lookup
from fluent_odm.query.pagination import PaginatedResult
from fluent_odm.query.utilities import QueryUtilities, group_output_name
from fluent_odm.relationships.loader import LoadRequest, load_relation

if TYPE_CHECKING:
    from fluent_odm.drivers.base import DocumentCollection
    from fluent_odm.models.base import Model
    from fluent_odm.query.embedded import EmbeddedQueryBuilder
    from fluent_odm.transaction import TransactionClient

logger = logging.getLogger(__name__)

_MISSING: Any = object()


class ModelQueryBuilder:
    """
    Fluent query over one model's collection.

    Every chain method mutates the builder and returns it. Use
    :meth:`clone` to branch two queries off a shared prefix.

    Example:
        >>> users = await (
        ...     User.query()
        ...     .where("age", ">=", 18)
        ...     .or_where("role", "admin")
        ...     .order_by("created_at", "desc")
        ...     .load("profile")
        ...     .limit(10)
        ...     .all()
        ... )
    """

    def __init__(
        self,
        model_class: type["Model"],
        transaction: Optional["TransactionClient"] = None,
        collection: Optional["DocumentCollection"] = None,
    ):
        """
        Initialize query builder.

        Args:
            model_class: The model class being queried
            transaction: Optional transaction every operation runs in
            collection: Explicit collection handle; resolved from the model if omitted
        """
        self.model_class = model_class
        self.transaction = transaction
        self._collection = collection
        self._conditions: list[Condition] = []
        self._utilities = QueryUtilities()
        self._load_plan: dict[str, LoadRequest] = {}
        self._embed_plan: dict[str, Optional[Callable[["EmbeddedQueryBuilder"], Any]]] = {}

    @property
    def metadata(self) -> ModelMetadata:
        return get_metadata(self.model_class)

    @property
    def collection(self) -> "DocumentCollection":
        if self._collection is None:
            self._collection = self.model_class.get_collection(self.transaction)
        return self._collection

    def _column(self, field: str) -> str:
        return self.metadata.translate_path(field)

    # Filters

    def _add(
        self,
        field: Optional[str],
        operator: Any,
        value: Any,
        boolean: str,
        negated: bool,
        lookups: dict[str, Any],
    ) -> "ModelQueryBuilder":
        if field is None:
            if not lookups:
                raise ValueError("where() needs a field or keyword lookups")
            for index, (lookup, lookup_value) in enumerate(lookups.items()):
                name, op = parse_field_lookup(lookup)
                self._conditions.append(Condition(
                    field=self._column(name),
                    operator=normalize_operator(op),
                    value=to_storage(lookup_value),
                    boolean=boolean if index == 0 else "and",
                    negated=negated,
                ))
            return self

        if operator is _MISSING:
            raise ValueError(f"where() on '{field}' needs a value")
        if value is _MISSING:
            op, value = "eq", operator
        else:
            op = normalize_operator(operator)
        self._conditions.append(Condition(self._column(field), op, to_storage(value), boolean=boolean, negated=negated))
        return self

    def where(self, field: Optional[str] = None, operator: Any = _MISSING, value: Any = _MISSING, **lookups: Any) -> "ModelQueryBuilder":
        """
        Add an AND condition.

        Accepts ``where(field, value)`` for equality, ``where(field, operator,
        value)`` with an operator such as ``>=``, ``!=``, ``in`` or ``like``,
        or keyword lookups ``where(age__gte=18)``.

        Args:
            field: Attribute name or dotted path
            operator: Operator, or the value for the equality form
            value: Value for the operator form
            **lookups: ``field__operator=value`` conditions

        Returns:
            Self for method chaining

        Example:
            >>> User.query().where("name", "Alice")
            >>> User.query().where("age", ">=", 18)
            >>> User.query().where(age__gte=18, status="active")
        """
        return self._add(field, operator, value, "and", False, lookups)

    def and_where(self, field: Optional[str] = None, operator: Any = _MISSING, value: Any = _MISSING, **lookups: Any) -> "ModelQueryBuilder":
        return self._add(field, operator, value, "and", False, lookups)

    def or_where(self, field: Optional[str] = None, operator: Any = _MISSING, value: Any = _MISSING, **lookups: Any) -> "ModelQueryBuilder":
        """
        Add an OR condition.

        Conditions before it and the conditions from it onward are grouped
        separately: ``a AND b OR c AND d`` means ``(a AND b) OR (c AND d)``.

        Example:
            >>> User.query().where("role", "admin").or_where("role", "moderator")
        """
        return self._add(field, operator, value, "or", False, lookups)

    def where_not(self, field: Optional[str] = None, operator: Any = _MISSING, value: Any = _MISSING, **lookups: Any) -> "ModelQueryBuilder":
        """
        Add a negated AND condition.

        Example:
            >>> User.query().where_not("status", "banned")
        """
        return self._add(field, operator, value, "and", True, lookups)

    def and_where_not(self, field: Optional[str] = None, operator: Any = _MISSING, value: Any = _MISSING, **lookups: Any) -> "ModelQueryBuilder":
        return self._add(field, operator, value, "and", True, lookups)

    def or_where_not(self, field: Optional[str] = None, operator: Any = _MISSING, value: Any = _MISSING, **lookups: Any) -> "ModelQueryBuilder":
        return self._add(field, operator, value, "or", True, lookups)

    def where_like(self, field: str, pattern: str) -> "ModelQueryBuilder":
        """Case-sensitive LIKE match; ``%`` is any run of characters, ``_`` any character."""
        return self._add(field, "like", pattern, "and", False, {})

    def where_ilike(self, field: str, pattern: str) -> "ModelQueryBuilder":
        """Case-insensitive LIKE match."""
        return self._add(field, "ilike", pattern, "and", False, {})

    def where_null(self, field: str) -> "ModelQueryBuilder":
        return self._add(field, "eq", None, "and", False, {})

    def or_where_null(self, field: str) -> "ModelQueryBuilder":
        return self._add(field, "eq", None, "or", False, {})

    def where_not_null(self, field: str) -> "ModelQueryBuilder":
        return self._add(field, "ne", None, "and", False, {})

    def or_where_not_null(self, field: str) -> "ModelQueryBuilder":
        return self._add(field, "ne", None, "or", False, {})

    def where_exists(self, field: str) -> "ModelQueryBuilder":
        return self._add(field, "exists", True, "and", False, {})

    def or_where_exists(self, field: str) -> "ModelQueryBuilder":
        return self._add(field, "exists", True, "or", False, {})

    def where_not_exists(self, field: str) -> "ModelQueryBuilder":
        return self._add(field, "exists", False, "and", False, {})

    def or_where_not_exists(self, field: str) -> "ModelQueryBuilder":
        return self._add(field, "exists", False, "or", False, {})

    def where_in(self, field: str, values: Any) -> "ModelQueryBuilder":
        """
        Match documents whose field is one of values.

        Example:
            >>> User.query().where_in("status", ["active", "pending"])
        """
        return self._add(field, "in", list(values), "and", False, {})

    def or_where_in(self, field: str, values: Any) -> "ModelQueryBuilder":
        return self._add(field, "in", list(values), "or", False, {})

    def where_not_in(self, field: str, values: Any) -> "ModelQueryBuilder":
        return self._add(field, "nin", list(values), "and", False, {})

    def or_where_not_in(self, field: str, values: Any) -> "ModelQueryBuilder":
        return self._add(field, "nin", list(values), "or", False, {})

    def where_between(self, field: str, bounds: tuple[Any, Any]) -> "ModelQueryBuilder":
        """Inclusive range match."""
        low, high = bounds
        return self._add(field, "between", (low, high), "and", False, {})

    def or_where_between(self, field: str, bounds: tuple[Any, Any]) -> "ModelQueryBuilder":
        low, high = bounds
        return self._add(field, "between", (low, high), "or", False, {})

    def where_not_between(self, field: str, bounds: tuple[Any, Any]) -> "ModelQueryBuilder":
        low, high = bounds
        return self._add(field, "between", (low, high), "and", True, {})

    def or_where_not_between(self, field: str, bounds: tuple[Any, Any]) -> "ModelQueryBuilder":
        low, high = bounds
        return self._add(field, "between", (low, high), "or", True, {})

    # Shaping

    def order_by(self, field: str, direction: Union[str, int] = "asc") -> "ModelQueryBuilder":
        """
        Order results by a field.

        A leading ``-`` on the field name means descending.

        Example:
            >>> query.order_by("created_at", "desc")
            >>> query.order_by("-created_at")
        """
        if field.startswith("-"):
            field, direction = field[1:], "desc"
        self._utilities.order_by(self._column(field), direction)
        return self

    def limit(self, count: int) -> "ModelQueryBuilder":
        self._utilities.set_limit(count)
        return self

    def skip(self, count: int) -> "ModelQueryBuilder":
        self._utilities.set_skip(count)
        return self

    def offset(self, count: int) -> "ModelQueryBuilder":
        """Alias of :meth:`skip`."""
        return self.skip(count)

    def for_page(self, page: int, per_page: int) -> "ModelQueryBuilder":
        """
        Restrict to one 1-indexed page.

        Example:
            >>> query.for_page(2, 10)  # skip 10, limit 10
        """
        self._utilities.for_page(page, per_page)
        return self

    def select(self, *fields: Union[str, list[str], dict[str, int]]) -> "ModelQueryBuilder":
        """
        Fetch only some fields.

        Example:
            >>> query.select("name", "email")
            >>> query.select({"password": 0})
        """
        if len(fields) == 1 and isinstance(fields[0], dict):
            self._utilities.select({self._column(name): flag for name, flag in fields[0].items()})
            return self
        names: list[str] = []
        for item in fields:
            names.extend([item] if isinstance(item, str) else list(item))
        self._utilities.select([self._column(name) for name in names])
        return self

    def distinct(self, field: str) -> "ModelQueryBuilder":
        """Return distinct values of a field as ``{field: value}`` rows."""
        self._utilities.set_distinct(self._column(field))
        return self

    def group_by(self, *fields: str) -> "ModelQueryBuilder":
        """Group matching documents; rows carry the group fields and ``count``."""
        self._utilities.set_group_by([self._column(field) for field in fields])
        return self

    def having(self, field: str, operator: Any = _MISSING, value: Any = _MISSING) -> "ModelQueryBuilder":
        """
        Filter grouped rows.

        Example:
            >>> await User.query().group_by("city").having("count", ">", 1).all()
        """
        if operator is _MISSING:
            raise ValueError(f"having() on '{field}' needs a value")
        if value is _MISSING:
            op, value = "eq", operator
        else:
            op = normalize_operator(operator)
        name = field if field == "count" else group_output_name(self._column(field))
        self._utilities.add_having(Condition(name, op, value))
        return self

    # Relationships and embedded documents

    def load(self, name: str, callback: Optional[Callable[["ModelQueryBuilder"], Any]] = None) -> "ModelQueryBuilder":
        """
        Eager-load a relationship on every result.

        Each loaded relationship costs one extra query for the whole result
        set. Dotted names load nested relationships.

        Args:
            name: Relationship name, or ``relation.nested`` path
            callback: Receives the related query to constrain it

        Raises:
            RelationshipError: If the name is not a relationship of the model

        Example:
            >>> await User.query().load("posts", lambda q: q.where("published", True)).all()
            >>> await User.query().load("posts.comments").all()
        """
        head, _, rest = name.partition(".")
        column = self.metadata.columns.get(head)
        if column is None or not column.is_reference:
            hint = " (use embed() for embedded fields)" if column is not None and column.is_embedded else ""
            raise RelationshipError(f"'{head}' is not a relationship of {self.model_class.__name__}{hint}")

        request = self._load_plan.setdefault(head, LoadRequest())
        if rest:
            request.nested.append((rest, callback))
        else:
            request.callback = callback
        return self

    def embed(self, name: str, callback: Optional[Callable[["EmbeddedQueryBuilder"], Any]] = None) -> "ModelQueryBuilder":
        """
        Constrain an embedded list in memory after fetching.

        The stored list is left intact; the constrained items are exposed
        through ``instance.embedded(name).filtered``.

        Raises:
            RelationshipError: If the name is not an embedded field

        Example:
            >>> users = await User.query().embed("addresses", lambda q: q.where("city", "Paris")).all()
            >>> users[0].embedded("addresses").filtered
        """
        column = self.metadata.columns.get(name)
        if column is None or not column.is_embedded:
            raise RelationshipError(f"'{name}' is not an embedded field of {self.model_class.__name__}")
        self._embed_plan[name] = callback
        return self

    # Plan inspection

    def to_filter(self) -> dict[str, Any]:
        """Compiled store filter."""
        return compile_conditions(self._conditions)

    def snapshot(self) -> dict[str, Any]:
        """Comparable description of the whole query plan."""
        return {
            "filter": self.to_filter(),
            **self._utilities.snapshot(),
            "load": {name: request.snapshot() for name, request in sorted(self._load_plan.items())},
            "embed": sorted(self._embed_plan),
        }

    def clone(self) -> "ModelQueryBuilder":
        """
        Copy the builder so the copy can diverge.

        Example:
            >>> base = User.query().where("active", True)
            >>> admins = base.clone().where("role", "admin")
        """
        twin = ModelQueryBuilder(self.model_class, transaction=self.transaction, collection=self._collection)
        twin._conditions = copy.deepcopy(self._conditions)
        twin._utilities = self._utilities.clone()
        twin._load_plan = {name: request.clone() for name, request in self._load_plan.items()}
        twin._embed_plan = dict(self._embed_plan)
        return twin

    # Execution

    async def _execute(self, operation: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return await func(*args, **kwargs)
        except OdmError:
            raise
        except Exception as exc:
            raise DatabaseOperationError(operation, self.model_class.__name__, exc) from exc

    async def _fetch_documents(self) -> list[dict[str, Any]]:
        filter = self.to_filter()
        logger.debug(f"find {self.model_class.__name__} {filter}")
        return await self._execute("find", self.collection.find, filter, **self._utilities.find_options())

    def _hydrate(self, document: dict[str, Any]) -> "Model":
        instance = self.model_class.from_document(document)
        if self.transaction is not None:
            instance.use_transaction(self.transaction)
        return instance

    async def _materialize(self, instances: list["Model"]) -> None:
        for name, request in self._load_plan.items():
            await load_relation(self.model_class, name, request, instances, self.transaction)

        if self._embed_plan:
            from fluent_odm.query.embedded import EmbeddedQueryBuilder

            for name, callback in self._embed_plan.items():
                for instance in instances:
                    items = instance.__dict__.get(name)
                    if not isinstance(items, list):
                        continue
                    embedded_query = EmbeddedQueryBuilder(items)
                    if callback is not None:
                        callback(embedded_query)
                    instance._embedded_views[name] = embedded_query.get()

    async def _aggregate(self) -> list[dict[str, Any]]:
        pipeline = self._utilities.build_pipeline(self.to_filter())
        logger.debug(f"aggregate {self.model_class.__name__} {pipeline}")
        return await self._execute("aggregate", self.collection.aggregate, pipeline)

    async def first(self) -> Optional[Any]:
        """
        Return the first match, or None.

        Runs before_find and before_fetch hooks on a copy of the query
        first, and after_find on the result.
        """
        query = self.clone()
        if not await execute_hooks(self.model_class, "before_find", query):
            return None
        if not await execute_hooks(self.model_class, "before_fetch", query):
            return None

        if query._utilities.is_aggregate:
            query._utilities.set_limit(1)
            rows = await query._aggregate()
            return rows[0] if rows else None

        query._utilities.set_limit(1)
        documents = await query._fetch_documents()
        if not documents:
            return None
        instance = query._hydrate(documents[0])
        await query._materialize([instance])
        await execute_hooks(self.model_class, "after_find", instance)
        return instance

    async def first_or_fail(self) -> Any:
        """
        Return the first match.

        Raises:
            ModelNotFoundError: If nothing matched
        """
        instance = await self.first()
        if instance is None:
            raise ModelNotFoundError(self.model_class.__name__)
        return instance

    async def last(self) -> Optional[Any]:
        """Return the last match under the current ordering (primary key if unordered)."""
        query = self.clone()
        if query._utilities.sort:
            query._utilities.sort = [(field, -direction) for field, direction in query._utilities.sort]
        else:
            query._utilities.order_by(self.metadata.primary_column(), "desc")
        return await query.first()

    async def all(self) -> list[Any]:
        """
        Return every match.

        Distinct and group-by queries return raw rows instead of models.

        Example:
            >>> users = await User.query().where("active", True).all()
        """
        query = self.clone()
        if not await execute_hooks(self.model_class, "before_fetch", query):
            return []
        if query._utilities.is_aggregate:
            return await query._aggregate()

        documents = await query._fetch_documents()
        instances = [query._hydrate(document) for document in documents]
        await query._materialize(instances)
        await execute_hooks(self.model_class, "after_fetch", instances)
        return instances

    async def fetch(self) -> list[Any]:
        """Alias of :meth:`all`."""
        return await self.all()

    async def __aiter__(self) -> AsyncIterator[Any]:
        for instance in await self.all():
            yield instance

    async def paginate(self, page: int = 1, per_page: int = 20, base_url: str = "") -> PaginatedResult:
        """
        Fetch one page plus the total count.

        Example:
            >>> page = await User.query().order_by("name").paginate(2, 10)
            >>> page.meta()["last_page"]
            3
        """
        query = self.clone()
        page = max(page, 1)
        strategy = self.metadata.strategy
        if not await execute_hooks(self.model_class, "before_fetch", query):
            return PaginatedResult([], 0, per_page, page, base_url=base_url, naming_strategy=strategy)

        total = await query._execute("count", query.collection.count_documents, query.to_filter())
        query._utilities.for_page(page, per_page)
        documents = await query._fetch_documents()
        instances = [query._hydrate(document) for document in documents]
        await query._materialize(instances)
        await execute_hooks(self.model_class, "after_fetch", instances)
        return PaginatedResult(
            data=instances,
            total=total,
            per_page=per_page,
            current_page=page,
            base_url=base_url,
            naming_strategy=strategy,
        )

    async def count(self) -> int:
        """Number of matching documents (or rows, for aggregate queries)."""
        if self._utilities.is_aggregate:
            return len(await self._aggregate())
        return await self._execute("count", self.collection.count_documents, self.to_filter())

    async def exists(self) -> bool:
        document = await self._execute("find", self.collection.find_one, self.to_filter(), {"_id": 1})
        return document is not None

    async def ids(self) -> list[Any]:
        """Primary key values of every match."""
        column = self.metadata.primary_column()
        documents = await self._execute(
            "find",
            self.collection.find,
            self.to_filter(),
            projection={column: 1},
            sort=list(self._utilities.sort) or None,
            skip=self._utilities.skip or 0,
            limit=self._utilities.limit or 0,
        )
        return [document.get(column) for document in documents]

    async def update(self, data: Optional[dict[str, Any]] = None, **values: Any) -> int:
        """
        Update every match without loading it.

        Automatic update-timestamp columns are stamped unless given.

        Returns:
            Number of modified documents

        Example:
            >>> await User.query().where("status", "pending").update(status="active")
        """
        from fluent_odm.models.persistence import utc_now

        changes = {**(data or {}), **values}
        document = {self._column(name): to_storage(value) for name, value in changes.items()}
        for column in self.metadata.stored_columns():
            if column.auto_update and column.name not in changes:
                document[self.metadata.column_name(column.name)] = utc_now()

        result = await self._execute("update", self.collection.update_many, self.to_filter(), {"$set": document})
        return result.modified_count

    async def delete(self) -> int:
        """
        Delete every match without loading it.

        Returns:
            Number of deleted documents
        """
        return await self._execute("delete", self.collection.delete_many, self.to_filter())
