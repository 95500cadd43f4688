"""
Relationship declarations between models.

A relationship is declared as a class attribute with :func:`has_one`,
:func:`has_many` or :func:`belongs_to`. Reading it on an instance returns a
proxy that holds the loaded related data and offers related-model
operations.

Example:
    >>> class User(Model, database=db):
    ...     name: str
    ...     profile = has_one(lambda: Profile)
    ...     posts = has_many(lambda: Post)
    ...
    >>> class Post(Model, database=db):
    ...     title: str
    ...     user_id: Optional[str] = None
    ...     author = belongs_to(lambda: User, local_key="user_id")
"""

import logging
from typing import Any, Callable, Iterator, Optional, Union, TYPE_CHECKING

from fluent_odm.exceptions import RelationshipError
from fluent_odm.models.fields import ColumnDescriptor
from fluent_odm.models.metadata import get_metadata

if TYPE_CHECKING:
    from fluent_odm.models.base import Model
    from fluent_odm.query.builder import ModelQueryBuilder

logger = logging.getLogger(__name__)

ModelReference = Union[type, str, Callable[[], type]]


class RelationDescriptor:
    """
    Base class for relationship declarations.

    Keys are attribute names. ``local_key`` lives on the declaring model and
    ``foreign_key`` on the related model; unset keys are derived from the
    naming strategy when first used.
    """

    relation = ""

    def __init__(
        self,
        model: ModelReference,
        foreign_key: Optional[str] = None,
        local_key: Optional[str] = None,
    ):
        self.model = model
        self.foreign_key = foreign_key
        self.local_key = local_key
        self.name = ""
        self.owner: Optional[type] = None

    def __set_name__(self, owner: type, name: str) -> None:
        self.owner = owner
        self.name = name

    def __get__(self, instance: Any, owner: Optional[type] = None) -> Any:
        if instance is None:
            return self
        proxies = instance._relations
        proxy = proxies.get(self.name)
        if proxy is None:
            proxy = self.make_proxy(instance)
            proxies[self.name] = proxy
        return proxy

    def make_proxy(self, instance: Any) -> "RelationProxy":
        raise NotImplementedError

    def column_descriptor(self) -> ColumnDescriptor:
        return ColumnDescriptor(
            name=self.name,
            is_reference=True,
            is_array=self.relation == "has_many",
            model=self.model if not isinstance(self.model, str) else None,
            relation=self.relation,
            local_key=self.local_key,
            foreign_key=self.foreign_key,
        )

    def related_model(self, owner: type) -> type["Model"]:
        """
        Resolve the related model class.

        Raises:
            RelationshipError: If the reference cannot be resolved
        """
        reference = self.model
        if isinstance(reference, str):
            database = getattr(owner, "model_database", None)
            if database is None:
                raise RelationshipError(
                    f"Cannot resolve '{reference}' for {owner.__name__}.{self.name}: model has no database"
                )
            return database.registry.get(reference)
        if isinstance(reference, type):
            return reference
        try:
            resolved = reference()
        except NameError as exc:
            raise RelationshipError(f"Cannot resolve related model for {owner.__name__}.{self.name}: {exc}") from exc
        if not isinstance(resolved, type):
            raise RelationshipError(f"Related model for {owner.__name__}.{self.name} is not a class: {resolved!r}")
        return resolved

    def keys(self, owner: type) -> tuple[str, str]:
        """Return ``(local_key, foreign_key)`` attribute names."""
        related = self.related_model(owner)
        strategy = get_metadata(owner).strategy
        if self.relation == "belongs_to":
            local_key = self.local_key or strategy.relation_foreign_key(self.relation, owner, related)
            foreign_key = self.foreign_key or strategy.relation_local_key(self.relation, owner, related)
        else:
            local_key = self.local_key or strategy.relation_local_key(self.relation, owner, related)
            foreign_key = self.foreign_key or strategy.relation_foreign_key(self.relation, owner, related)
        return local_key, foreign_key

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


class HasOne(RelationDescriptor):
    relation = "has_one"

    def make_proxy(self, instance: Any) -> "HasOneProxy":
        return HasOneProxy(instance, self)


class HasMany(RelationDescriptor):
    relation = "has_many"

    def make_proxy(self, instance: Any) -> "HasManyProxy":
        return HasManyProxy(instance, self)


class BelongsTo(RelationDescriptor):
    relation = "belongs_to"

    def make_proxy(self, instance: Any) -> "BelongsToProxy":
        return BelongsToProxy(instance, self)


def has_one(model: ModelReference, foreign_key: Optional[str] = None, local_key: Optional[str] = None) -> HasOne:
    """
    Declare that one related document points back at this model.

    Args:
        model: Related class, zero-argument resolver, or registered class name
        foreign_key: Attribute on the related model (default ``<owner>_id``)
        local_key: Attribute on this model (default its primary key)
    """
    return HasOne(model, foreign_key=foreign_key, local_key=local_key)


def has_many(model: ModelReference, foreign_key: Optional[str] = None, local_key: Optional[str] = None) -> HasMany:
    """
    Declare that many related documents point back at this model.

    Example:
        >>> posts = has_many(lambda: Post, foreign_key="author_id")
    """
    return HasMany(model, foreign_key=foreign_key, local_key=local_key)


def belongs_to(model: ModelReference, foreign_key: Optional[str] = None, local_key: Optional[str] = None) -> BelongsTo:
    """
    Declare that this model points at a related document.

    Args:
        model: Related class, zero-argument resolver, or registered class name
        foreign_key: Attribute on the related model (default its primary key)
        local_key: Attribute on this model (default ``<related>_id``)
    """
    return BelongsTo(model, foreign_key=foreign_key, local_key=local_key)


class RelationProxy:
    """Per-instance state of one relationship."""

    def __init__(self, owner: "Model", descriptor: RelationDescriptor):
        self._owner = owner
        self._descriptor = descriptor
        self._loaded = False
        self._value: Any = None

    @property
    def related_model(self) -> type["Model"]:
        return self._descriptor.related_model(type(self._owner))

    @property
    def local_key(self) -> str:
        return self._descriptor.keys(type(self._owner))[0]

    @property
    def foreign_key(self) -> str:
        return self._descriptor.keys(type(self._owner))[1]

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    @property
    def related(self) -> Any:
        """The loaded related data (None or [] before loading)."""
        return self._value

    def _local_value(self) -> Any:
        return getattr(self._owner, self.local_key, None)

    def query(self) -> "ModelQueryBuilder":
        """Query for the related documents of this owner."""
        query = self.related_model.query(self._owner.transaction)
        return query.where(self.foreign_key, self._local_value())

    def set_loaded(self, value: Any) -> None:
        self._value = value
        self._loaded = True

    def _require_owner_key(self) -> Any:
        value = self._local_value()
        if value is None:
            raise RelationshipError(
                f"{type(self._owner).__name__}.{self.local_key} is not set; save the owner first"
            )
        return value


class _SingleRelationProxy(RelationProxy):
    """Proxy forwarding attribute reads to the loaded related instance."""

    async def load(self) -> Optional["Model"]:
        if self._local_value() is None:
            self.set_loaded(None)
            return None
        self.set_loaded(await self.query().first())
        return self._value

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        related = self.__dict__.get("_value")
        if related is None:
            return None
        return getattr(related, name)

    def __bool__(self) -> bool:
        return self._value is not None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._descriptor.name}={self._value!r}>"


class HasOneProxy(_SingleRelationProxy):
    """
    One related document.

    Example:
        >>> await user.profile.load()
        >>> user.profile.bio
        'Hello'
    """

    async def create(self, data: Optional[dict[str, Any]] = None, **values: Any) -> "Model":
        """Create the related document pointing at this owner."""
        attributes = {**(data or {}), **values, self.foreign_key: self._require_owner_key()}
        instance = await self.related_model.create(attributes, client=self._owner.transaction)
        self.set_loaded(instance)
        return instance

    async def save(self, instance: "Model") -> "Model":
        """Point an existing instance at this owner and save it."""
        setattr(instance, self.foreign_key, self._require_owner_key())
        if self._owner.transaction is not None and instance.transaction is None:
            instance.use_transaction(self._owner.transaction)
        await instance.save()
        self.set_loaded(instance)
        return instance


class BelongsToProxy(_SingleRelationProxy):
    """
    The document this owner points at.

    Example:
        >>> await post.author.associate(user)
        >>> post.user_id == user.id
        True
    """

    async def associate(self, instance: "Model") -> "Model":
        """Point the owner at instance and save the owner."""
        value = getattr(instance, self.foreign_key, None)
        if value is None:
            raise RelationshipError(
                f"{type(instance).__name__}.{self.foreign_key} is not set; save it before associating"
            )
        setattr(self._owner, self.local_key, value)
        await self._owner.save()
        self.set_loaded(instance)
        return self._owner

    async def dissociate(self) -> "Model":
        """Clear the owner's key and save the owner."""
        setattr(self._owner, self.local_key, None)
        await self._owner.save()
        self.set_loaded(None)
        return self._owner


class HasManyProxy(RelationProxy):
    """
    Many related documents.

    Iterating, indexing and ``len`` work on the loaded list.

    Example:
        >>> await user.posts.load()
        >>> [post.title for post in user.posts]
    """

    def __init__(self, owner: "Model", descriptor: RelationDescriptor):
        super().__init__(owner, descriptor)
        self._value = []

    async def load(self) -> list["Model"]:
        if self._local_value() is None:
            self.set_loaded([])
            return []
        self.set_loaded(await self.query().all())
        return self._value

    def _remember(self, instance: "Model") -> None:
        if self._loaded and not any(item is instance for item in self._value):
            self._value.append(instance)

    async def create(self, data: Optional[dict[str, Any]] = None, **values: Any) -> "Model":
        """Create one related document pointing at this owner."""
        attributes = {**(data or {}), **values, self.foreign_key: self._require_owner_key()}
        instance = await self.related_model.create(attributes, client=self._owner.transaction)
        self._remember(instance)
        return instance

    async def create_many(self, rows: list[dict[str, Any]]) -> list["Model"]:
        return [await self.create(row) for row in rows]

    async def save(self, instance: "Model") -> "Model":
        """Point an existing instance at this owner and save it."""
        setattr(instance, self.foreign_key, self._require_owner_key())
        if self._owner.transaction is not None and instance.transaction is None:
            instance.use_transaction(self._owner.transaction)
        await instance.save()
        self._remember(instance)
        return instance

    async def save_many(self, instances: list["Model"]) -> list["Model"]:
        return [await self.save(instance) for instance in instances]

    def __iter__(self) -> Iterator["Model"]:
        return iter(self._value)

    def __len__(self) -> int:
        return len(self._value)

    def __getitem__(self, index: Any) -> Any:
        return self._value[index]

    def __bool__(self) -> bool:
        return bool(self._value)

    def __repr__(self) -> str:
        return f"<HasManyProxy {self._descriptor.name} ({len(self._value)} loaded)>"
