"""Relationships between models and their eager loading."""

from fluent_odm.relationships.descriptors import (
    BelongsTo,
    BelongsToProxy,
    HasMany,
    HasManyProxy,
    HasOne,
    HasOneProxy,
    RelationDescriptor,
    RelationProxy,
    belongs_to,
    has_many,
    has_one,
)
from fluent_odm.relationships.loader import LoadRequest, load_relation

__all__ = [
    "BelongsTo",
    "BelongsToProxy",
    "HasMany",
    "HasManyProxy",
    "HasOne",
    "HasOneProxy",
    "LoadRequest",
    "RelationDescriptor",
    "RelationProxy",
    "belongs_to",
    "has_many",
    "has_one",
    "load_relation",
]
