"""
Field definitions for fluent-odm.

Extends Pydantic's field system with document-mapping metadata: primary
keys, automatic timestamps, stored column names and JSON names.
"""

from dataclasses import dataclass
from typing import Any, Optional
from pydantic import Field as PydanticField
from pydantic.fields import FieldInfo
from pydantic_core import PydanticUndefined


_UNSET: Any = object()
ORM_KEY = "orm"


def Field(
    default: Any = PydanticUndefined,
    *,
    primary_key: bool = False,
    auto_now: bool = False,
    auto_now_add: bool = False,
    db_column: Optional[str] = None,
    serialize_as: Any = _UNSET,
    **pydantic_options: Any,
) -> FieldInfo:
    """
    Declare a model attribute with document-mapping options.

    Every keyword not listed below (``default_factory``, ``ge``,
    ``max_length``, ``description`` and so on) goes to
    :func:`pydantic.Field` untouched, so validation behaves exactly as it
    does on a plain Pydantic model.

    Args:
        default: Value used when the attribute is not supplied
        primary_key: Marks the identifier attribute
        auto_now: Stamp the current time on every save
        auto_now_add: Stamp the current time when the document is created
        db_column: Stored field name, bypassing the naming strategy
        serialize_as: JSON field name, bypassing the naming strategy;
            ``None`` leaves the field out of JSON output

    Example:
        >>> class Account(Model):
        ...     email: str = Field(max_length=255, db_column="mail")
        ...     secret: str = Field(serialize_as=None)
        ...     opened_at: Optional[datetime] = Field(None, auto_now_add=True)
        ...     touched_at: Optional[datetime] = Field(None, auto_now=True)
    """
    schema_extra = dict(pydantic_options.pop("json_schema_extra", None) or {})
    schema_extra[ORM_KEY] = {
        "primary_key": primary_key,
        "auto_now": auto_now,
        "auto_now_add": auto_now_add,
        "db_column": db_column,
        "serialize_as": None if serialize_as is _UNSET else serialize_as,
        "serialize_as_set": serialize_as is not _UNSET,
    }
    return PydanticField(  # type: ignore[no-any-return, call-overload, misc]
        default,
        json_schema_extra=schema_extra,
        **pydantic_options,
    )


def get_field_orm_metadata(field_info: FieldInfo) -> dict[str, Any]:
    """
    Mapping options recorded by :func:`Field`, or ``{}`` for plain fields.

    Example:
        >>> get_field_orm_metadata(Field(primary_key=True))["primary_key"]
        True
    """
    extra = field_info.json_schema_extra
    if isinstance(extra, dict):
        options = extra.get(ORM_KEY)
        if isinstance(options, dict):
            return options
    return {}


@dataclass
class ColumnDescriptor:
    """
    Mapping information for one model attribute.

    Built once per model class from the pydantic field, computed field or
    relationship declaration behind the attribute.
    """

    name: str
    db_column: Optional[str] = None
    is_primary: bool = False
    is_embedded: bool = False
    is_reference: bool = False
    is_computed: bool = False
    is_array: bool = False
    is_date: bool = False
    embedded_type: Optional[str] = None  # "single" | "many"
    model: Optional[Any] = None  # class or zero-argument resolver
    relation: Optional[str] = None  # "has_one" | "has_many" | "belongs_to"
    local_key: Optional[str] = None
    foreign_key: Optional[str] = None
    auto_create: bool = False
    auto_update: bool = False
    serialize_as: Any = _UNSET

    @property
    def is_stored(self) -> bool:
        """Whether the attribute is written to and read from documents."""
        return not (self.is_computed or self.is_reference)

    @property
    def is_settable(self) -> bool:
        """Whether ``fill`` may assign the attribute."""
        return self.is_stored and not (self.is_primary or self.auto_create or self.auto_update)

    @property
    def omits_from_json(self) -> bool:
        return self.serialize_as is None

    def resolve_model(self) -> Any:
        """Return the related or embedded model class, calling the resolver if needed."""
        model = self.model
        if model is None or isinstance(model, type):
            return model
        return model()
