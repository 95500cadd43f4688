"""
Base model classes for fluent-odm.

Provides an ActiveRecord-style document model on top of Pydantic:
attribute tracking, document and JSON serialization, persistence and
class-level finders.
"""

import copy
import enum
import logging
from datetime import date
from typing import Any, ClassVar, Optional, TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, PrivateAttr

from fluent_odm.exceptions import (
    ConfigurationError,
    DatabaseOperationError,
    ModelNotFoundError,
    OdmError,
    ValidationError,
)
from fluent_odm.models.fields import Field
from fluent_odm.models.metadata import get_metadata
from fluent_odm.naming import NamingStrategy, resolve_strategy
from fluent_odm.relationships.descriptors import RelationDescriptor

if TYPE_CHECKING:
    from fluent_odm.database import DatabaseManager
    from fluent_odm.drivers.base import DocumentCollection
    from fluent_odm.models.embedded import EmbeddedProxy
    from fluent_odm.query.builder import ModelQueryBuilder
    from fluent_odm.transaction import TransactionClient

logger = logging.getLogger(__name__)

_MISSING: Any = object()

_JSON_NATIVE = (str, int, float, bool, type(None))


def to_storage(value: Any) -> Any:
    """Convert an attribute value to its stored-document form."""
    if isinstance(value, BaseDocument):
        return value.to_document()
    if isinstance(value, (list, tuple, set)):
        return [to_storage(item) for item in value]
    if isinstance(value, dict):
        return {key: to_storage(item) for key, item in value.items()}
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, BaseModel):
        return value.model_dump()
    return value


def to_json_value(value: Any) -> Any:
    """Convert an attribute value to a JSON-compatible value."""
    if isinstance(value, BaseDocument):
        return value.to_json()
    if isinstance(value, (list, tuple, set)):
        return [to_json_value(item) for item in value]
    if isinstance(value, dict):
        return {str(key): to_json_value(item) for key, item in value.items()}
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, enum.Enum):
        return to_json_value(value.value)
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, _JSON_NATIVE):
        return value
    return str(value)


def _deep_merge(current: dict[str, Any], update: dict[str, Any]) -> dict[str, Any]:
    merged = dict(current)
    for key, value in update.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class BaseDocument(BaseModel):
    """
    Shared behavior of top-level and embedded models.

    Tracks which attributes changed since the last load or save, and
    converts between attribute values, stored documents and JSON.
    """

    model_config = ConfigDict(
        validate_assignment=True,  # Validate on attribute assignment
        arbitrary_types_allowed=True,  # Allow driver types such as ObjectId
        from_attributes=True,
        ignored_types=(RelationDescriptor,),  # Relationship declarations are not fields
    )

    model_database: ClassVar[Optional["DatabaseManager"]] = None
    model_connection: ClassVar[Optional[str]] = None
    model_collection: ClassVar[Optional[str]] = None
    model_naming_strategy: ClassVar[Optional[NamingStrategy]] = None

    # Stored form of each attribute as of the last load or save
    _original: dict[str, Any] = PrivateAttr(default_factory=dict)
    _forced_dirty: set[str] = PrivateAttr(default_factory=set)
    # Results of query-level embed() constraints, by field
    _embedded_views: dict[str, list[Any]] = PrivateAttr(default_factory=dict)
    _is_persisted: bool = False
    _is_local: bool = True

    def __init_subclass__(
        cls,
        collection: Optional[str] = None,
        database: Optional["DatabaseManager"] = None,
        connection: Optional[str] = None,
        naming_strategy: Any = None,
        **kwargs: Any,
    ):
        """
        Apply class keywords.

        Args:
            collection: Collection name, overriding the naming strategy
            database: DatabaseManager to register the model with
            connection: Named connection the model uses
            naming_strategy: Strategy instance or name for this model
            **kwargs: Additional arguments passed to parent
        """
        super().__init_subclass__(**kwargs)

        if collection is not None:
            cls.model_collection = collection
        if connection is not None:
            cls.model_connection = connection
        if naming_strategy is not None:
            cls.model_naming_strategy = resolve_strategy(naming_strategy)
        if database is not None:
            database.register(cls)

    def __init__(self, **data: Any):
        super().__init__(**data)
        self._bind_embedded()

    def __setattr__(self, name: str, value: Any) -> None:
        super().__setattr__(name, value)
        if name in type(self).model_fields:
            self._attribute_changed(name)

    def _attribute_changed(self, name: str) -> None:
        column = get_metadata(type(self)).columns.get(name)
        if column is not None and column.is_embedded:
            self._bind_embedded(name)

    def _bind_embedded(self, name: Optional[str] = None) -> None:
        """Attach embedded values to this document so their saves reach it."""
        for column in get_metadata(type(self)).embedded_columns():
            if name is not None and column.name != name:
                continue
            value = self.__dict__.get(column.name)
            for item in (value if isinstance(value, list) else [value]):
                if item is not None and hasattr(item, "_attach"):
                    item._attach(self, column.name)

    # Persistence state

    @property
    def is_persisted(self) -> bool:
        """Whether this instance corresponds to a stored document."""
        return self._is_persisted

    @property
    def is_local(self) -> bool:
        """Whether this instance only exists in memory."""
        return self._is_local

    @property
    def original(self) -> dict[str, Any]:
        """Stored form of the attributes as of the last load or save."""
        return copy.deepcopy(self._original)

    # Attributes

    def get_attribute(self, name: str) -> Any:
        """Return an attribute value, or None if it was never set."""
        return self.__dict__.get(name)

    def set_attribute(self, name: str, value: Any) -> None:
        """
        Set an attribute, validating the value.

        Raises:
            ValidationError: If the model has no such attribute
        """
        if name not in type(self).model_fields:
            raise ValidationError(f"{type(self).__name__} has no attribute '{name}'")
        setattr(self, name, value)

    def fill(self, data: Optional[dict[str, Any]] = None, **values: Any) -> "BaseDocument":
        """
        Assign attributes wholesale.

        Primary-key, computed, relationship and automatic-timestamp columns
        are skipped.

        Returns:
            Self for method chaining

        Example:
            >>> user.fill(name="Alice", email="alice@example.com")
        """
        metadata = get_metadata(type(self))
        for name, value in {**(data or {}), **values}.items():
            column = metadata.columns.get(name)
            if column is None:
                raise ValidationError(f"{type(self).__name__} has no attribute '{name}'")
            if column.is_settable:
                setattr(self, name, value)
        return self

    def merge(self, data: Optional[dict[str, Any]] = None, **values: Any) -> "BaseDocument":
        """
        Merge attributes, deep-merging dicts and embedded documents.

        Merging a partial embedded update keeps the embedded document's
        other fields.

        Example:
            >>> user.merge(profile={"bio": "Engineer"})  # first/last name untouched
        """
        metadata = get_metadata(type(self))
        for name, value in {**(data or {}), **values}.items():
            column = metadata.columns.get(name)
            if column is None:
                raise ValidationError(f"{type(self).__name__} has no attribute '{name}'")
            if not column.is_settable:
                continue
            current = self.__dict__.get(name)
            if column.is_embedded and not column.is_array and isinstance(value, dict) and current is not None:
                current.merge(value)
                self.mark_dirty(name)
            elif isinstance(current, dict) and isinstance(value, dict):
                setattr(self, name, _deep_merge(current, value))
            else:
                setattr(self, name, value)
        return self

    # Dirty tracking

    def get_dirty_attributes(self) -> dict[str, Any]:
        """
        Return changed attributes keyed by stored column name.

        An attribute is dirty when its stored form differs from the stored
        form captured at the last load or save. Computed and relationship
        columns are never dirty.

        Example:
            >>> user = await User.find(user_id)
            >>> user.first_name = "Jane"
            >>> user.get_dirty_attributes()
            {'first_name': 'Jane'}
        """
        metadata = get_metadata(type(self))
        dirty: dict[str, Any] = {}
        for column in metadata.stored_columns():
            current = self.__dict__.get(column.name, _MISSING)
            if current is _MISSING:
                continue
            original = self._original.get(column.name, _MISSING)
            if original is _MISSING and current is None:
                continue
            stored = to_storage(current)
            if column.name in self._forced_dirty or stored != original:
                dirty[metadata.column_name(column.name)] = stored
        return dirty

    def is_dirty(self, name: Optional[str] = None) -> bool:
        """Whether any attribute, or the named attribute, is dirty."""
        dirty = self.get_dirty_attributes()
        if name is None:
            return bool(dirty)
        return get_metadata(type(self)).column_name(name) in dirty

    def mark_dirty(self, name: str) -> None:
        """Force an attribute into the next update, even if it compares equal."""
        self._forced_dirty.add(name)

    def sync_original(self) -> None:
        """Capture the current attributes as the clean state."""
        self._original = {
            column.name: copy.deepcopy(to_storage(self.__dict__[column.name]))
            for column in get_metadata(type(self)).stored_columns()
            if column.name in self.__dict__
        }
        self._forced_dirty = set()

    # Serialization

    def to_document(self) -> dict[str, Any]:
        """
        Convert to a stored document.

        Attributes are written under their column names and embedded
        documents are converted recursively. None is written as null;
        attributes that were never set are left out, as is an empty ``_id``
        so the store can generate one.
        """
        metadata = get_metadata(type(self))
        document: dict[str, Any] = {}
        for column in metadata.stored_columns():
            value = self.__dict__.get(column.name, _MISSING)
            key = metadata.column_name(column.name)
            if value is _MISSING or (value is None and key == "_id"):
                continue
            document[key] = to_storage(value)
        return document

    def to_json(self) -> dict[str, Any]:
        """
        Convert to a JSON-compatible dict.

        Uses serialized names, includes computed properties and loaded
        relationships, formats dates as ISO-8601, and leaves out columns
        declared with ``serialize_as=None``.
        """
        metadata = get_metadata(type(self))
        result: dict[str, Any] = {}
        for column in metadata.columns.values():
            if column.omits_from_json:
                continue
            if column.is_reference:
                proxy = self._loaded_relation(column.name)
                if proxy is None:
                    continue
                value = proxy.related
            elif column.is_computed:
                value = getattr(self, column.name)
            else:
                value = self.__dict__.get(column.name)
            result[metadata.serialized_name(column.name)] = to_json_value(value)
        return result

    def _loaded_relation(self, name: str) -> Any:
        return None

    def hydrate_from_document(self, document: dict[str, Any]) -> "BaseDocument":
        """
        Populate from a stored document and mark the instance persisted.

        Column names are translated back to attribute names; date strings
        are parsed by field validation; computed and relationship columns
        are never read.
        """
        metadata = get_metadata(type(self))
        for column in metadata.stored_columns():
            key = metadata.column_name(column.name)
            if key not in document:
                continue
            value = document[key]
            if column.is_embedded and value is not None:
                embedded_class = column.resolve_model()
                if column.is_array:
                    value = [
                        item if isinstance(item, embedded_class) else embedded_class.from_document(item)
                        for item in value
                    ]
                elif not isinstance(value, embedded_class):
                    value = embedded_class.from_document(value)
            setattr(self, column.name, value)

        self.sync_original()
        self._is_persisted = True
        self._is_local = False
        return self

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "BaseDocument":
        """Build an instance from a stored document without requiring every field."""
        instance = cls.model_construct()
        return instance.hydrate_from_document(document)

    def embedded(self, name: str) -> "EmbeddedProxy":
        """
        Return the CRUD proxy of an embedded field.

        Raises:
            RelationshipError: If the attribute is not an embedded field
        """
        from fluent_odm.models.embedded import embedded_proxy

        return embedded_proxy(self, name)


class Model(BaseDocument):
    """
    Base class for documents stored in their own collection.

    Example:
        >>> db = DatabaseManager(define_config(...))
        >>>
        >>> class User(Model, database=db):
        ...     name: str
        ...     email: str
        ...     profile = has_one(lambda: Profile)
        ...
        >>> user = await User.create(name="Alice", email="alice@example.com")
        >>> user = await User.query().where("email", "alice@example.com").load("profile").first()
    """

    id: Optional[Any] = Field(None, primary_key=True, db_column="_id")

    _transaction: Optional[Any] = None
    _relations: dict[str, Any] = PrivateAttr(default_factory=dict)

    # Configuration

    @classmethod
    def get_database(cls) -> "DatabaseManager":
        """
        Return the DatabaseManager this model is bound to.

        Raises:
            ConfigurationError: If the model was never registered
        """
        if cls.model_database is None:
            raise ConfigurationError(
                f"{cls.__name__} is not bound to a database; "
                f"declare it with database=... or call DatabaseManager.register()"
            )
        return cls.model_database

    @classmethod
    def collection_name(cls) -> str:
        return get_metadata(cls).collection_name

    @classmethod
    def get_collection(cls, client: Optional["TransactionClient"] = None) -> "DocumentCollection":
        """Collection handle, bound to the transaction's session when one is given."""
        if client is not None:
            return client.collection(cls.collection_name(), connection=cls.model_connection)
        return cls.get_database().collection(cls.collection_name(), connection=cls.model_connection)

    @property
    def primary_key_value(self) -> Any:
        return self.__dict__.get(get_metadata(type(self)).primary_key)

    @property
    def transaction(self) -> Optional["TransactionClient"]:
        return self._transaction

    def use_transaction(self, client: "TransactionClient") -> "Model":
        """
        Attach a transaction; later saves and deletes run inside it.

        Returns:
            Self for method chaining
        """
        self._transaction = client
        return self

    def _loaded_relation(self, name: str) -> Any:
        proxy = self._relations.get(name)
        if proxy is not None and proxy.is_loaded:
            return proxy
        return None

    # Persistence

    async def save(self) -> "Model":
        """
        Insert or update this document.

        Returns:
            Self (unchanged if a before-hook aborted the save)

        Raises:
            HookExecutionError: If a hook raised
            DatabaseOperationError: If the store rejected the write
        """
        from fluent_odm.models.persistence import PersistenceManager

        return await PersistenceManager(self).save()

    async def delete(self) -> bool:
        """
        Delete this document.

        Returns:
            True if deleted; False if never persisted, a hook aborted or no
            stored document matched
        """
        from fluent_odm.models.persistence import PersistenceManager

        return await PersistenceManager(self).delete()

    async def refresh(self) -> "Model":
        """
        Reload attributes from the store.

        Raises:
            ValidationError: If the instance was never saved
            ModelNotFoundError: If the document no longer exists
        """
        metadata = get_metadata(type(self))
        identifier = self.primary_key_value
        if not self.is_persisted or identifier is None:
            raise ValidationError(f"Cannot refresh an unsaved {type(self).__name__}")

        collection = type(self).get_collection(self._transaction)
        try:
            document = await collection.find_one({metadata.primary_column(): identifier})
        except OdmError:
            raise
        except Exception as exc:
            raise DatabaseOperationError("refresh", type(self).__name__, exc) from exc

        if document is None:
            raise ModelNotFoundError(type(self).__name__, identifier)
        self.hydrate_from_document(document)
        self._bind_embedded()
        return self

    # Class-level finders

    @classmethod
    def query(cls, client: Optional["TransactionClient"] = None) -> "ModelQueryBuilder":
        """
        Start a query on this model.

        Args:
            client: Optional transaction to run the query in

        Example:
            >>> adults = await User.query().where("age", ">=", 18).order_by("name").all()
        """
        from fluent_odm.query.builder import ModelQueryBuilder

        return ModelQueryBuilder(cls, transaction=client)

    @classmethod
    async def find(cls, identifier: Any, client: Optional["TransactionClient"] = None) -> Optional["Model"]:
        """Find by primary key, returning None if absent."""
        return await cls.query(client).where(get_metadata(cls).primary_key, identifier).first()

    @classmethod
    async def find_or_fail(cls, identifier: Any, client: Optional["TransactionClient"] = None) -> "Model":
        """
        Find by primary key.

        Raises:
            ModelNotFoundError: If absent
        """
        instance = await cls.find(identifier, client=client)
        if instance is None:
            raise ModelNotFoundError(cls.__name__, identifier)
        return instance

    @classmethod
    async def find_by(cls, field: str, value: Any, client: Optional["TransactionClient"] = None) -> Optional["Model"]:
        """Find the first document whose field equals value."""
        return await cls.query(client).where(field, value).first()

    @classmethod
    async def find_by_or_fail(cls, field: str, value: Any, client: Optional["TransactionClient"] = None) -> "Model":
        instance = await cls.find_by(field, value, client=client)
        if instance is None:
            raise ModelNotFoundError(cls.__name__, value)
        return instance

    @classmethod
    async def first(cls, client: Optional["TransactionClient"] = None) -> Optional["Model"]:
        return await cls.query(client).first()

    @classmethod
    async def first_or_fail(cls, client: Optional["TransactionClient"] = None) -> "Model":
        return await cls.query(client).first_or_fail()

    @classmethod
    async def all(cls, client: Optional["TransactionClient"] = None) -> list["Model"]:
        return await cls.query(client).all()

    @classmethod
    async def create(
        cls,
        data: Optional[dict[str, Any]] = None,
        client: Optional["TransactionClient"] = None,
        **values: Any,
    ) -> "Model":
        """
        Construct and save a new document.

        Example:
            >>> user = await User.create(name="Alice", email="alice@example.com")
            >>> user.is_persisted
            True
        """
        instance = cls(**{**(data or {}), **values})
        if client is not None:
            instance.use_transaction(client)
        await instance.save()
        return instance

    @classmethod
    async def create_many(
        cls,
        rows: list[dict[str, Any]],
        client: Optional["TransactionClient"] = None,
    ) -> list["Model"]:
        """Create one document per row, in order."""
        return [await cls.create(row, client=client) for row in rows]

    @classmethod
    async def first_or_create(
        cls,
        search: dict[str, Any],
        values: Optional[dict[str, Any]] = None,
        client: Optional["TransactionClient"] = None,
    ) -> "Model":
        """Return the first match for search, creating it with search + values if absent."""
        query = cls.query(client)
        for field, value in search.items():
            query.where(field, value)
        instance = await query.first()
        if instance is not None:
            return instance
        return await cls.create({**search, **(values or {})}, client=client)

    @classmethod
    async def update_or_create(
        cls,
        search: dict[str, Any],
        values: dict[str, Any],
        client: Optional["TransactionClient"] = None,
    ) -> "Model":
        """
        Update the first match for search with values, or create it.

        Example:
            >>> user = await User.update_or_create({"email": "a@x.com"}, {"name": "Alice"})
        """
        query = cls.query(client)
        for field, value in search.items():
            query.where(field, value)
        instance = await query.first()
        if instance is None:
            return await cls.create({**search, **values}, client=client)
        instance.merge(values)
        await instance.save()
        return instance
