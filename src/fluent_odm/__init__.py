"""
fluent-odm - ActiveRecord-style async object-document mapper for Python.

Pydantic models mapped onto document-store collections, with a fluent
query builder, relationships with batched eager loading, embedded
documents and transactions.
"""

from fluent_odm.config import ConnectionConfig, OdmConfig, define_config
from fluent_odm.database import DatabaseManager
from fluent_odm.exceptions import (
    ConfigurationError,
    DatabaseOperationError,
    HookExecutionError,
    ModelNotFoundError,
    OdmError,
    RelationshipError,
    StoreConnectionError,
    ValidationError,
)
from fluent_odm.models import (
    EmbeddedModel,
    Field,
    Model,
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
from fluent_odm.naming import (
    CamelCaseNamingStrategy,
    NamingStrategy,
    SnakeCaseNamingStrategy,
    VerbatimNamingStrategy,
)
from fluent_odm.query import EmbeddedQueryBuilder, ModelQueryBuilder, PaginatedResult
from fluent_odm.relationships import belongs_to, has_many, has_one
from fluent_odm.transaction import TransactionClient

__version__ = "0.1.0"

__all__ = [
    "Model",
    "EmbeddedModel",
    "Field",
    "DatabaseManager",
    "TransactionClient",
    "define_config",
    "OdmConfig",
    "ConnectionConfig",
    "ModelQueryBuilder",
    "EmbeddedQueryBuilder",
    "PaginatedResult",
    "has_one",
    "has_many",
    "belongs_to",
    "NamingStrategy",
    "SnakeCaseNamingStrategy",
    "CamelCaseNamingStrategy",
    "VerbatimNamingStrategy",
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
    "OdmError",
    "ConfigurationError",
    "StoreConnectionError",
    "ModelNotFoundError",
    "DatabaseOperationError",
    "HookExecutionError",
    "ValidationError",
    "RelationshipError",
]
