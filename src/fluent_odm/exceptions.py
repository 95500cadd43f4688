"""
Exceptions for fluent-odm.

Every error raised by the ODM derives from OdmError so callers can catch
the whole family at one boundary.
"""

from typing import Any, Optional


class OdmError(Exception):
    """Base exception for all ODM errors."""
    pass


class ConfigurationError(OdmError):
    """Raised when a connection definition is missing or malformed."""
    pass


class StoreConnectionError(OdmError):
    """Raised when a store client cannot be established or is used before connecting."""
    pass


class ValidationError(OdmError):
    """Raised when the ODM is used with values it cannot accept."""
    pass


class RelationshipError(OdmError):
    """Raised when a relationship or embedded field is ill-formed or misused."""
    pass


class ModelNotFoundError(OdmError):
    """
    Raised by the ``..._or_fail`` finders when nothing matched.

    Args:
        model: Name of the model that was queried
        identifier: Lookup key, if the lookup had one
    """

    def __init__(self, model: str, identifier: Optional[Any] = None):
        self.model = model
        self.identifier = identifier
        if identifier is None:
            message = f"{model} not found"
        else:
            message = f'{model} with identifier "{identifier}" not found'
        super().__init__(message)


class DatabaseOperationError(OdmError):
    """
    Raised when a store operation fails.

    Wraps the underlying driver error with the operation and model that
    were being executed.
    """

    def __init__(self, operation: str, model: str, original: Optional[BaseException] = None):
        self.operation = operation
        self.model = model
        self.original = original
        message = f"Database operation '{operation}' failed for {model}"
        if original is not None:
            message += f": {original}"
        super().__init__(message)


class HookExecutionError(OdmError):
    """Raised when a lifecycle hook raises."""

    def __init__(self, hook: str, model: str, original: BaseException):
        self.hook = hook
        self.model = model
        self.original = original
        super().__init__(f"Hook '{hook}' failed for {model}: {original}")
