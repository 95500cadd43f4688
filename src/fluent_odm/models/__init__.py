"""Model definitions for fluent-odm."""

from fluent_odm.models.base import BaseDocument, Model
from fluent_odm.models.embedded import EmbeddedManyProxy, EmbeddedModel, EmbeddedSingleProxy
from fluent_odm.models.fields import ColumnDescriptor, Field
from fluent_odm.models.hooks import (
    after_create,
    after_delete,
    after_fetch,
    after_find,
    after_save,
    after_update,
    before_create,
    before_delete,
    before_fetch,
    before_find,
    before_save,
    before_update,
)
from fluent_odm.models.metadata import ModelMetadata, ModelRegistry, get_metadata

__all__ = [
    "BaseDocument",
    "Model",
    "EmbeddedModel",
    "EmbeddedSingleProxy",
    "EmbeddedManyProxy",
    "ColumnDescriptor",
    "Field",
    "ModelMetadata",
    "ModelRegistry",
    "get_metadata",
    "before_save",
    "after_save",
    "before_create",
    "after_create",
    "before_update",
    "after_update",
    "before_delete",
    "after_delete",
    "before_find",
    "after_find",
    "before_fetch",
    "after_fetch",
]
