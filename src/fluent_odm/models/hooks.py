"""
Lifecycle hook decorators.

Hooks are plain functions in a model class body marked with one of the
decorators below. They are collected into the model's metadata when the
metadata is first built, in base-class-first, definition order.

A hook receives a single argument: the model instance for save, create,
update, delete and find events; the query builder for ``before_find`` and
``before_fetch``; the list of results for ``after_fetch``. Hooks may be
coroutine functions. A ``before_*`` hook returning ``False`` aborts the
operation.
"""

import inspect
import logging
from typing import Any, Callable, TypeVar

from fluent_odm.exceptions import HookExecutionError, ModelNotFoundError

logger = logging.getLogger(__name__)

F = TypeVar('F', bound=Callable[..., Any])

HOOK_EVENTS = (
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
)


def _mark(func: F, event: str) -> F:
    events = getattr(func, '_hook_events', ())
    if event not in events:
        setattr(func, '_hook_events', events + (event,))  # type: ignore[attr-defined]
    return func


def before_save(func: F) -> F:
    """
    Decorator to mark a method as a before_save hook.

    Called before every insert or update. Return False to abort the save.

    Example:
        >>> class User(Model):
        ...     email: str
        ...
        ...     @before_save
        ...     def normalize_email(self):
        ...         self.email = self.email.lower()
    """
    return _mark(func, "before_save")


def after_save(func: F) -> F:
    """Decorator to mark a method as an after_save hook."""
    return _mark(func, "after_save")


def before_create(func: F) -> F:
    """Decorator to mark a method as a before_create hook (new documents only)."""
    return _mark(func, "before_create")


def after_create(func: F) -> F:
    """Decorator to mark a method as an after_create hook."""
    return _mark(func, "after_create")


def before_update(func: F) -> F:
    """Decorator to mark a method as a before_update hook (persisted documents only)."""
    return _mark(func, "before_update")


def after_update(func: F) -> F:
    """Decorator to mark a method as an after_update hook."""
    return _mark(func, "after_update")


def before_delete(func: F) -> F:
    """
    Decorator to mark a method as a before_delete hook.

    Example:
        >>> class Post(Model):
        ...     locked: bool = False
        ...
        ...     @before_delete
        ...     def prevent_locked(self):
        ...         return not self.locked
    """
    return _mark(func, "before_delete")


def after_delete(func: F) -> F:
    """Decorator to mark a method as an after_delete hook."""
    return _mark(func, "after_delete")


def before_find(func: F) -> F:
    """
    Decorator to mark a function as a before_find hook.

    Receives the query builder before ``first()`` runs, so it can add
    constraints.

    Example:
        >>> class Post(Model):
        ...     published: bool = True
        ...
        ...     @before_find
        ...     def only_published(query):
        ...         query.where("published", True)
    """
    return _mark(func, "before_find")


def after_find(func: F) -> F:
    """Decorator to mark a method as an after_find hook, run on the found instance."""
    return _mark(func, "after_find")


def before_fetch(func: F) -> F:
    """Decorator to mark a function as a before_fetch hook; receives the query builder."""
    return _mark(func, "before_fetch")


def after_fetch(func: F) -> F:
    """Decorator to mark a function as an after_fetch hook; receives the result list."""
    return _mark(func, "after_fetch")


async def execute_hooks(model_class: type, event: str, argument: Any) -> bool:
    """
    Run every hook registered for an event, in registration order.

    Args:
        model_class: Model class whose hooks run
        event: Hook event name
        argument: Value handed to each hook

    Returns:
        False if a ``before_*`` hook aborted, True otherwise

    Raises:
        HookExecutionError: If a hook raised
    """
    from fluent_odm.models.metadata import get_metadata

    for name in get_metadata(model_class).hooks.get(event, []):
        handler = getattr(model_class, name)
        logger.debug(f"Running {event} hook {model_class.__name__}.{name}")
        try:
            result = handler(argument)
            if inspect.isawaitable(result):
                result = await result
        except (HookExecutionError, ModelNotFoundError):
            raise
        except Exception as exc:
            raise HookExecutionError(event, model_class.__name__, exc) from exc

        if result is False and event.startswith("before_"):
            logger.warning(f"{event} hook {model_class.__name__}.{name} aborted the operation")
            return False
    return True
