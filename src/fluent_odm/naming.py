"""
Naming strategies.

A naming strategy maps Python attribute names to stored-document field
names and serialized (JSON) names, derives collection names from model
class names, and names relationship keys and pagination metadata.
"""

import re
from abc import ABC, abstractmethod
from typing import Any, TYPE_CHECKING

if TYPE_CHECKING:
    from fluent_odm.models.base import BaseDocument


_ACRONYM_BOUNDARY = re.compile(r"([A-Z]+)([A-Z][a-z])")
_WORD_BOUNDARY = re.compile(r"([a-z\d])([A-Z])")


def snake_case(value: str) -> str:
    """
    Convert a camelCase or PascalCase name to snake_case.

    Runs of capitals are kept together, so ``HTTPServer`` becomes
    ``http_server`` and ``userID`` becomes ``user_id``.
    """
    if not value:
        return value
    result = _ACRONYM_BOUNDARY.sub(r"\1_\2", value)
    result = _WORD_BOUNDARY.sub(r"\1_\2", result)
    return result.replace("-", "_").lower().lstrip("_") or value


def camel_case(value: str) -> str:
    """Convert a snake_case name to camelCase. Leading underscores are kept."""
    stripped = value.lstrip("_")
    prefix = value[: len(value) - len(stripped)]
    parts = [part for part in stripped.split("_") if part]
    if not parts:
        return value
    return prefix + parts[0] + "".join(part[:1].upper() + part[1:] for part in parts[1:])


def pluralize(word: str) -> str:
    """
    Pluralize with a suffix rule.

    ``y`` becomes ``ies``; ``s``, ``sh``, ``ch``, ``x`` and ``z`` take ``es``;
    everything else takes ``s``.
    """
    if not word:
        return word
    if word.endswith("y"):
        return word[:-1] + "ies"
    if word.endswith(("s", "sh", "ch", "x", "z")):
        return word + "es"
    return word + "s"


def singularize(word: str) -> str:
    """Inverse of :func:`pluralize` for the common cases."""
    if word.endswith("ies") and len(word) > 3:
        return word[:-3] + "y"
    if word.endswith(("sses", "shes", "ches", "xes", "zes")):
        return word[:-2]
    if word.endswith(("ss", "us", "is")):
        return word
    if word.endswith("s") and len(word) > 1:
        return word[:-1]
    return word


class NamingStrategy(ABC):
    """
    Abstract naming strategy.

    Subclasses decide how attribute names appear in stored documents and
    JSON output, and how collection names are derived.
    """

    @abstractmethod
    def column_name(self, model: type["BaseDocument"], attribute: str) -> str:
        """Stored-document field name for an attribute."""
        pass

    @abstractmethod
    def serialized_name(self, model: type["BaseDocument"], attribute: str) -> str:
        """JSON field name for an attribute."""
        pass

    @abstractmethod
    def table_name(self, model: type["BaseDocument"]) -> str:
        """Collection name for a model class."""
        pass

    def relation_foreign_key(
        self,
        relation: str,
        owner: type["BaseDocument"],
        related: type["BaseDocument"],
    ) -> str:
        """
        Default foreign-key attribute for a relationship.

        For ``belongs_to`` the key lives on the owner and is named after the
        related model; otherwise it lives on the related model and is named
        after the owner.

        Args:
            relation: One of ``has_one``, ``has_many``, ``belongs_to``
            owner: Model declaring the relationship
            related: Model on the other side

        Returns:
            Attribute name, e.g. ``user_id``
        """
        source = related if relation == "belongs_to" else owner
        return f"{snake_case(source.__name__)}_id"

    def relation_local_key(
        self,
        relation: str,
        owner: type["BaseDocument"],
        related: type["BaseDocument"],
    ) -> str:
        """Default local-key attribute: the primary key of the owning side."""
        from fluent_odm.models.metadata import get_metadata

        source = related if relation == "belongs_to" else owner
        return get_metadata(source).primary_key or "id"

    def pagination_meta_keys(self) -> dict[str, str]:
        """Key names used in paginated result metadata."""
        return {
            "total": "total",
            "per_page": "per_page",
            "current_page": "current_page",
            "last_page": "last_page",
            "first_page": "first_page",
            "first_page_url": "first_page_url",
            "last_page_url": "last_page_url",
            "next_page_url": "next_page_url",
            "previous_page_url": "previous_page_url",
        }


class SnakeCaseNamingStrategy(NamingStrategy):
    """
    Default strategy.

    Attributes are stored and serialized in snake_case; the collection
    name is the singular snake_case form of the class name.

    Example:
        >>> strategy = SnakeCaseNamingStrategy()
        >>> strategy.column_name(User, "firstName")
        'first_name'
        >>> strategy.table_name(UserProfile)
        'user_profile'
    """

    def column_name(self, model: type["BaseDocument"], attribute: str) -> str:
        return snake_case(attribute)

    def serialized_name(self, model: type["BaseDocument"], attribute: str) -> str:
        return snake_case(attribute)

    def table_name(self, model: type["BaseDocument"]) -> str:
        return singularize(snake_case(model.__name__))


class CamelCaseNamingStrategy(NamingStrategy):
    """
    Stores and serializes attributes in camelCase with plural collections.

    Suited to databases shared with JavaScript services.

    Example:
        >>> strategy = CamelCaseNamingStrategy()
        >>> strategy.column_name(User, "first_name")
        'firstName'
        >>> strategy.table_name(User)
        'users'
    """

    def column_name(self, model: type["BaseDocument"], attribute: str) -> str:
        return camel_case(attribute)

    def serialized_name(self, model: type["BaseDocument"], attribute: str) -> str:
        return camel_case(attribute)

    def table_name(self, model: type["BaseDocument"]) -> str:
        return pluralize(snake_case(model.__name__))

    def pagination_meta_keys(self) -> dict[str, str]:
        return {key: camel_case(key) for key in super().pagination_meta_keys()}


class VerbatimNamingStrategy(NamingStrategy):
    """Keeps attribute names as declared; collections are pluralized."""

    def column_name(self, model: type["BaseDocument"], attribute: str) -> str:
        return attribute

    def serialized_name(self, model: type["BaseDocument"], attribute: str) -> str:
        return attribute

    def table_name(self, model: type["BaseDocument"]) -> str:
        return pluralize(snake_case(model.__name__))


DEFAULT_NAMING_STRATEGY: NamingStrategy = SnakeCaseNamingStrategy()


def resolve_strategy(value: Any) -> NamingStrategy:
    """Accept a strategy instance, class, or one of ``snake``/``camel``/``verbatim``."""
    if value is None:
        return DEFAULT_NAMING_STRATEGY
    if isinstance(value, NamingStrategy):
        return value
    if isinstance(value, type) and issubclass(value, NamingStrategy):
        return value()
    named = {
        "snake": SnakeCaseNamingStrategy,
        "camel": CamelCaseNamingStrategy,
        "verbatim": VerbatimNamingStrategy,
    }
    if isinstance(value, str) and value in named:
        return named[value]()
    raise ValueError(f"Unknown naming strategy: {value!r}")
