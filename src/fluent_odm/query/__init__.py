"""Query building for fluent-odm."""

from fluent_odm.query.builder import ModelQueryBuilder
from fluent_odm.query.conditions import Condition, compile_conditions
from fluent_odm.query.embedded import EmbeddedQueryBuilder
from fluent_odm.query.pagination import PaginatedResult

__all__ = [
    "ModelQueryBuilder",
    "EmbeddedQueryBuilder",
    "PaginatedResult",
    "Condition",
    "compile_conditions",
]
