"""
Per-class model metadata and the model registry.

Metadata is built once per model class, the first time it is requested,
from the class's pydantic fields, computed fields, relationship
declarations and hook-marked functions.
"""

import datetime
import logging
import typing
from dataclasses import dataclass, field
from typing import Any, Optional, TYPE_CHECKING

from fluent_odm.exceptions import ConfigurationError, RelationshipError
from fluent_odm.models.fields import ColumnDescriptor, get_field_orm_metadata
from fluent_odm.naming import NamingStrategy, DEFAULT_NAMING_STRATEGY

if TYPE_CHECKING:
    from fluent_odm.models.base import BaseDocument

logger = logging.getLogger(__name__)


@dataclass
class ModelMetadata:
    """
    Mapping information for one model class.

    Attributes:
        model: The model class
        columns: Column descriptors by attribute name, in declaration order
        primary_key: Attribute name of the primary key (None for embedded models)
        hooks: Hook function names by event, in registration order
    """

    model: type
    columns: dict[str, ColumnDescriptor] = field(default_factory=dict)
    primary_key: Optional[str] = None
    hooks: dict[str, list[str]] = field(default_factory=dict)

    def add_hook(self, event: str, name: str) -> None:
        """Register a hook; registering the same name twice is a no-op."""
        handlers = self.hooks.setdefault(event, [])
        if name not in handlers:
            handlers.append(name)

    @property
    def strategy(self) -> NamingStrategy:
        own = getattr(self.model, "model_naming_strategy", None)
        if own is not None:
            return own
        database = getattr(self.model, "model_database", None)
        if database is not None:
            return database.naming_strategy
        return DEFAULT_NAMING_STRATEGY

    @property
    def collection_name(self) -> str:
        return getattr(self.model, "model_collection", None) or self.strategy.table_name(self.model)

    def column(self, name: str) -> Optional[ColumnDescriptor]:
        return self.columns.get(name)

    def stored_columns(self) -> list[ColumnDescriptor]:
        return [column for column in self.columns.values() if column.is_stored]

    def embedded_columns(self) -> list[ColumnDescriptor]:
        return [column for column in self.columns.values() if column.is_embedded]

    def relations(self) -> list[ColumnDescriptor]:
        return [column for column in self.columns.values() if column.is_reference]

    def column_name(self, attribute: str) -> str:
        """Stored field name of an attribute."""
        column = self.columns.get(attribute)
        if column is not None and column.db_column:
            return column.db_column
        return self.strategy.column_name(self.model, attribute)

    def serialized_name(self, attribute: str) -> str:
        """JSON field name of an attribute."""
        column = self.columns.get(attribute)
        if column is not None and isinstance(column.serialize_as, str):
            return column.serialize_as
        return self.strategy.serialized_name(self.model, attribute)

    def primary_column(self) -> str:
        """Stored field name of the primary key."""
        if self.primary_key is None:
            raise ConfigurationError(f"{self.model.__name__} has no primary key")
        return self.column_name(self.primary_key)

    def translate_path(self, path: str) -> str:
        """
        Translate an attribute path to a stored field path.

        The first segment is translated if it names a stored attribute;
        segments after an embedded attribute are translated through the
        embedded model's metadata. Unknown names pass through unchanged.

        Example:
            >>> get_metadata(User).translate_path("id")
            '_id'
            >>> get_metadata(User).translate_path("profile.first_name")
            'profile.firstName'
        """
        head, _, rest = path.partition(".")
        column = self.columns.get(head)
        if column is None or not column.is_stored:
            return path
        translated = self.column_name(head)
        if not rest:
            return translated
        if column.is_embedded:
            embedded = column.resolve_model()
            return f"{translated}.{get_metadata(embedded).translate_path(rest)}"
        return f"{translated}.{rest}"


def _unwrap_annotation(annotation: Any) -> tuple[Any, bool]:
    """Strip Optional and list wrappers, returning (inner type, is_list)."""
    origin = typing.get_origin(annotation)
    if origin is typing.Union:
        args = [arg for arg in typing.get_args(annotation) if arg is not type(None)]
        if len(args) == 1:
            return _unwrap_annotation(args[0])
        return annotation, False
    if origin in (list, tuple, set):
        args = typing.get_args(annotation)
        inner = args[0] if args else Any
        inner, _ = _unwrap_annotation(inner)
        return inner, True
    # X | None on Python 3.10+
    if type(annotation).__name__ == "UnionType":
        args = [arg for arg in typing.get_args(annotation) if arg is not type(None)]
        if len(args) == 1:
            return _unwrap_annotation(args[0])
    return annotation, False


def build_metadata(model_class: type["BaseDocument"]) -> ModelMetadata:
    """
    Build metadata for a model class from its declarations.

    Raises:
        ConfigurationError: If more than one primary key is declared
    """
    from fluent_odm.models.embedded import EmbeddedModel
    from fluent_odm.relationships.descriptors import RelationDescriptor

    metadata = ModelMetadata(model=model_class)
    primary_keys: list[str] = []

    for name, field_info in model_class.model_fields.items():
        orm = get_field_orm_metadata(field_info)
        inner, is_list = _unwrap_annotation(field_info.annotation)
        is_embedded = isinstance(inner, type) and issubclass(inner, EmbeddedModel)
        column = ColumnDescriptor(
            name=name,
            db_column=orm.get("db_column"),
            is_primary=bool(orm.get("primary_key")),
            is_embedded=is_embedded,
            is_array=is_list,
            is_date=isinstance(inner, type) and issubclass(inner, (datetime.date, datetime.datetime)),
            embedded_type=("many" if is_list else "single") if is_embedded else None,
            model=inner if is_embedded else None,
            auto_create=bool(orm.get("auto_now_add")),
            auto_update=bool(orm.get("auto_now")),
        )
        if orm.get("serialize_as_set"):
            column.serialize_as = orm.get("serialize_as")
        if column.is_primary:
            primary_keys.append(name)
        metadata.columns[name] = column

    for name in model_class.model_computed_fields:
        metadata.columns[name] = ColumnDescriptor(name=name, is_computed=True)

    for base in reversed(model_class.__mro__):
        for attr_name, attr in vars(base).items():
            if isinstance(attr, RelationDescriptor):
                metadata.columns[attr_name] = attr.column_descriptor()

    # An explicitly declared key replaces the inherited ``id`` key.
    if len(primary_keys) > 1 and "id" in primary_keys:
        primary_keys.remove("id")
        metadata.columns["id"].is_primary = False
    if len(primary_keys) > 1:
        raise ConfigurationError(
            f"{model_class.__name__} declares more than one primary key: {', '.join(primary_keys)}"
        )
    metadata.primary_key = primary_keys[0] if primary_keys else None

    for base in reversed(model_class.__mro__):
        for attr_name, attr in vars(base).items():
            events = getattr(attr, '_hook_events', None)
            if events and callable(attr):
                for event in events:
                    metadata.add_hook(event, attr_name)

    logger.debug(f"Built metadata for {model_class.__name__} with {len(metadata.columns)} columns")
    return metadata


def get_metadata(model_class: type) -> ModelMetadata:
    """
    Return the metadata of a model class, building it on first use.

    Example:
        >>> meta = get_metadata(User)
        >>> meta.primary_key
        'id'
        >>> meta.column_name("id")
        '_id'
    """
    metadata = model_class.__dict__.get("__odm_metadata__")
    if metadata is None:
        metadata = build_metadata(model_class)
        setattr(model_class, "__odm_metadata__", metadata)
    return metadata


class ModelRegistry:
    """
    Registry of model classes by name.

    Resolves string references in relationship declarations. Each
    DatabaseManager owns one registry.
    """

    def __init__(self) -> None:
        self._models: dict[str, type] = {}

    def register(self, model_class: type) -> None:
        existing = self._models.get(model_class.__name__)
        if existing is not None and existing is not model_class:
            logger.warning(f"Replacing registered model {model_class.__name__}")
        self._models[model_class.__name__] = model_class

    def get(self, name: str) -> type:
        """
        Look up a model class by name.

        Raises:
            RelationshipError: If no model with that name is registered
        """
        try:
            return self._models[name]
        except KeyError:
            raise RelationshipError(f"Model '{name}' is not registered")

    def __contains__(self, name: str) -> bool:
        return name in self._models

    def models(self) -> list[type]:
        return list(self._models.values())

    def clear(self) -> None:
        self._models.clear()
