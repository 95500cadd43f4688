"""
Embedded documents.

An EmbeddedModel lives inside a parent document's field, either alone or
as an element of a list. It has no identity of its own: saving, deleting
or refreshing it mutates the parent's field and then saves or reloads the
parent.
"""

import logging
from typing import Any, Callable, Optional, Union, TYPE_CHECKING

from fluent_odm.exceptions import RelationshipError
from fluent_odm.models.base import BaseDocument
from fluent_odm.models.hooks import execute_hooks
from fluent_odm.models.metadata import get_metadata

if TYPE_CHECKING:
    from fluent_odm.query.embedded import EmbeddedQueryBuilder

logger = logging.getLogger(__name__)


class _Owner:
    """Link from an embedded document to the document holding it."""

    __slots__ = ("parent", "field")

    def __init__(self, parent: BaseDocument, field: str):
        self.parent = parent
        self.field = field


class EmbeddedModel(BaseDocument):
    """
    Base class for documents stored inside another document.

    Declare a field with the embedded class for a single sub-document, or
    with ``list[...]`` of it for an array of sub-documents.

    Example:
        >>> class Address(EmbeddedModel):
        ...     street: str
        ...     city: str
        ...
        >>> class User(Model, database=db):
        ...     name: str
        ...     addresses: list[Address] = []
        ...
        >>> user = await User.find(user_id)
        >>> user.addresses[0].city = "Paris"
        >>> await user.addresses[0].save()  # saves the user
    """

    _owner: Optional[_Owner] = None

    def __setattr__(self, name: str, value: Any) -> None:
        super().__setattr__(name, value)
        if name in type(self).model_fields and self._owner is not None:
            self._owner.parent.mark_dirty(self._owner.field)

    def _attach(self, parent: BaseDocument, field: str) -> None:
        self._owner = _Owner(parent, field)

    def _detach(self) -> None:
        self._owner = None

    @property
    def parent(self) -> Optional[BaseDocument]:
        """Document holding this one, if attached."""
        return self._owner.parent if self._owner is not None else None

    @property
    def parent_field(self) -> Optional[str]:
        return self._owner.field if self._owner is not None else None

    def _require_owner(self) -> _Owner:
        if self._owner is None:
            raise RelationshipError(f"{type(self).__name__} is not attached to a parent document")
        return self._owner

    def _siblings(self) -> Optional[list["EmbeddedModel"]]:
        owner = self._require_owner()
        value = owner.parent.__dict__.get(owner.field)
        return value if isinstance(value, list) else None

    def position(self) -> Optional[int]:
        """
        Index of this document in the parent's list, found by identity.

        Returns None for single embedded documents or detached elements.
        """
        siblings = self._siblings()
        if siblings is None:
            return None
        for index, item in enumerate(siblings):
            if item is self:
                return index
        return None

    def fill(self, data: Optional[dict[str, Any]] = None, **values: Any) -> "EmbeddedModel":
        """Merge values into this document and mark the parent field dirty."""
        for name, value in {**(data or {}), **values}.items():
            self.set_attribute(name, value)
        if self._owner is not None:
            self._owner.parent.mark_dirty(self._owner.field)
        return self

    async def save(self) -> "EmbeddedModel":
        """
        Save through the parent.

        Runs this model's before_save and after_save hooks around the
        parent's save. The parent field is rewritten as a whole.
        """
        owner = self._require_owner()
        if not await execute_hooks(type(self), "before_save", self):
            return self
        owner.parent.mark_dirty(owner.field)
        await owner.parent.save()
        await execute_hooks(type(self), "after_save", self)
        return self

    async def delete(self) -> bool:
        """
        Remove this document from the parent and save the parent.

        List elements are removed by identity, so equal-looking siblings
        are never touched. A single embedded field is set to None.
        """
        owner = self._require_owner()
        if not await execute_hooks(type(self), "before_delete", self):
            return False

        siblings = self._siblings()
        if siblings is not None:
            index = self.position()
            if index is None:
                raise RelationshipError(f"{type(self).__name__} is no longer in {owner.field}")
            remaining = siblings[:index] + siblings[index + 1:]
            owner.parent.set_attribute(owner.field, remaining)
        else:
            owner.parent.set_attribute(owner.field, None)
        owner.parent.mark_dirty(owner.field)
        await owner.parent.save()

        self._detach()
        await execute_hooks(type(self), "after_delete", self)
        return True

    async def refresh(self) -> "EmbeddedModel":
        """
        Reload the parent, then copy this document's stored values back in.

        List elements are matched by their current position.
        """
        owner = self._require_owner()
        parent = owner.parent
        index = self.position()
        await parent.refresh()

        value = parent.__dict__.get(owner.field)
        if isinstance(value, list):
            if index is None or index >= len(value):
                raise RelationshipError(f"{type(self).__name__} no longer exists in {owner.field}")
            fresh = value[index]
        else:
            fresh = value
        if fresh is None:
            raise RelationshipError(f"{type(self).__name__} no longer exists in {owner.field}")

        for name in type(self).model_fields:
            if name in fresh.__dict__:
                self.__dict__[name] = fresh.__dict__[name]
        self.sync_original()
        if isinstance(value, list):
            value[index] = self
        else:
            parent.__dict__[owner.field] = self
        self._attach(parent, owner.field)
        parent.sync_original()
        return self


class EmbeddedSingleProxy:
    """
    CRUD helper for a single embedded document field.

    Example:
        >>> await user.embedded("profile").create(first_name="John", last_name="Doe")
        >>> user.embedded("profile").get().first_name
        'John'
    """

    def __init__(self, parent: BaseDocument, field: str, model_class: type[EmbeddedModel]):
        self.parent = parent
        self.field = field
        self.model_class = model_class

    def get(self) -> Optional[EmbeddedModel]:
        return self.parent.__dict__.get(self.field)

    def set(self, value: Union[EmbeddedModel, dict[str, Any], None]) -> Optional[EmbeddedModel]:
        """Replace the embedded document without saving."""
        if isinstance(value, dict):
            value = self.model_class(**value)
        self.parent.set_attribute(self.field, value)
        self.parent.mark_dirty(self.field)
        return self.get()

    async def create(self, **values: Any) -> EmbeddedModel:
        """Set a new embedded document and save the parent."""
        document = self.set(self.model_class(**values))
        await self.parent.save()
        return document

    async def update(self, **values: Any) -> Optional[EmbeddedModel]:
        """Merge values into the embedded document and save the parent."""
        current = self.get()
        if current is None:
            return await self.create(**values)
        current.fill(values)
        await self.parent.save()
        return current

    async def clear(self) -> None:
        """Remove the embedded document and save the parent."""
        self.set(None)
        await self.parent.save()


class EmbeddedManyProxy:
    """
    CRUD and query helper for a list of embedded documents.

    Example:
        >>> addresses = user.embedded("addresses")
        >>> await addresses.create(street="1 Main St", city="Paris")
        >>> paris = addresses.query().where("city", "Paris").get()
    """

    def __init__(self, parent: BaseDocument, field: str, model_class: type[EmbeddedModel]):
        self.parent = parent
        self.field = field
        self.model_class = model_class

    def items(self) -> list[EmbeddedModel]:
        value = self.parent.__dict__.get(self.field)
        return value if isinstance(value, list) else []

    @property
    def filtered(self) -> list[EmbeddedModel]:
        """Result of a query-level ``embed()`` constraint, or every item if none ran."""
        views = getattr(self.parent, "_embedded_views", None) or {}
        return views.get(self.field, self.items())

    def __len__(self) -> int:
        return len(self.items())

    def __iter__(self):
        return iter(self.items())

    def __getitem__(self, index: int) -> EmbeddedModel:
        return self.items()[index]

    def add(self, *documents: Union[EmbeddedModel, dict[str, Any]]) -> list[EmbeddedModel]:
        """Append documents without saving."""
        added = [doc if isinstance(doc, EmbeddedModel) else self.model_class(**doc) for doc in documents]
        self.parent.set_attribute(self.field, self.items() + added)
        self.parent.mark_dirty(self.field)
        return added

    async def create(self, **values: Any) -> EmbeddedModel:
        """Append one document and save the parent."""
        document, = self.add(self.model_class(**values))
        await self.parent.save()
        return document

    async def create_many(self, rows: list[dict[str, Any]]) -> list[EmbeddedModel]:
        """Append several documents and save the parent once."""
        documents = self.add(*rows)
        await self.parent.save()
        return documents

    async def remove(self, document: EmbeddedModel) -> bool:
        """Remove one document by identity and save the parent."""
        items = self.items()
        remaining = [item for item in items if item is not document]
        if len(remaining) == len(items):
            return False
        self.parent.set_attribute(self.field, remaining)
        self.parent.mark_dirty(self.field)
        document._detach()
        await self.parent.save()
        return True

    async def remove_where(self, callback: Optional[Callable[["EmbeddedQueryBuilder"], Any]] = None, **filters: Any) -> int:
        """
        Remove every document matching a query and save the parent.

        Returns:
            Number of documents removed
        """
        query = self.query()
        for name, value in filters.items():
            query.where(name, value)
        if callback is not None:
            callback(query)
        doomed = query.get()
        if not doomed:
            return 0
        remaining = [item for item in self.items() if not any(item is gone for gone in doomed)]
        self.parent.set_attribute(self.field, remaining)
        self.parent.mark_dirty(self.field)
        await self.parent.save()
        return len(doomed)

    def query(self) -> "EmbeddedQueryBuilder":
        """In-memory query over the current items."""
        from fluent_odm.query.embedded import EmbeddedQueryBuilder

        return EmbeddedQueryBuilder(self.items())


EmbeddedProxy = Union[EmbeddedSingleProxy, EmbeddedManyProxy]


def embedded_proxy(parent: BaseDocument, name: str) -> EmbeddedProxy:
    """
    Build the proxy for an embedded field of a document.

    Raises:
        RelationshipError: If the attribute is not an embedded field
    """
    column = get_metadata(type(parent)).columns.get(name)
    if column is None or not column.is_embedded:
        raise RelationshipError(f"'{name}' is not an embedded field of {type(parent).__name__}")
    model_class = column.resolve_model()
    if column.is_array:
        return EmbeddedManyProxy(parent, name, model_class)
    return EmbeddedSingleProxy(parent, name, model_class)
