"""
Save and delete orchestration.

Runs lifecycle hooks, stamps automatic timestamps, chooses between insert
and update, and moves the instance into its new persistence state only
after the store accepted the write.
"""

import logging
from datetime import datetime, timezone
from typing import Any, TYPE_CHECKING

from fluent_odm.exceptions import DatabaseOperationError, OdmError, ValidationError
from fluent_odm.models.hooks import execute_hooks
from fluent_odm.models.metadata import get_metadata

if TYPE_CHECKING:
    from fluent_odm.models.base import Model

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PersistenceManager:
    """
    Save/delete lifecycle for one model instance.

    Save order: before_save, before_create or before_update, timestamps,
    insert or update, state sync, after_save, after_create or after_update.
    """

    def __init__(self, model: "Model"):
        self.model = model
        self.model_class = type(model)
        self.metadata = get_metadata(self.model_class)

    @property
    def model_name(self) -> str:
        return self.model_class.__name__

    def _collection(self) -> Any:
        return self.model_class.get_collection(self.model.transaction)

    async def save(self) -> "Model":
        model = self.model
        is_new = not model.is_persisted

        if not await execute_hooks(self.model_class, "before_save", model):
            return model
        if not await execute_hooks(self.model_class, "before_create" if is_new else "before_update", model):
            return model

        previous = self._apply_timestamps(is_new)
        operation = "insert" if is_new else "update"
        try:
            if is_new:
                await self._insert()
            else:
                await self._update()
        except OdmError:
            self._restore(previous)
            raise
        except Exception as exc:
            self._restore(previous)
            raise DatabaseOperationError(operation, self.model_name, exc) from exc

        model.sync_original()
        model._is_persisted = True
        model._is_local = False

        await execute_hooks(self.model_class, "after_save", model)
        await execute_hooks(self.model_class, "after_create" if is_new else "after_update", model)
        return model

    def _apply_timestamps(self, is_new: bool) -> dict[str, Any]:
        """Stamp automatic timestamp columns, returning the values they replaced."""
        model = self.model
        columns = [
            column for column in self.metadata.stored_columns()
            if column.auto_create or column.auto_update
        ]
        if not columns:
            return {}
        # An update with nothing else to write stays a no-op.
        if not is_new and not model.get_dirty_attributes():
            return {}

        now = utc_now()
        previous: dict[str, Any] = {}
        for column in columns:
            stamp = column.auto_update or (is_new and model.get_attribute(column.name) is None)
            if stamp:
                previous[column.name] = model.__dict__.get(column.name)
                setattr(model, column.name, now)
        return previous

    def _restore(self, previous: dict[str, Any]) -> None:
        for name, value in previous.items():
            self.model.__dict__[name] = value

    async def _insert(self) -> None:
        model = self.model
        document = model.to_document()
        inserted_id = await self._collection().insert_one(document)
        logger.debug(f"Inserted {self.model_name} {inserted_id}")

        for column in self.metadata.stored_columns():
            if self.metadata.column_name(column.name) == "_id" and model.get_attribute(column.name) is None:
                setattr(model, column.name, inserted_id)

    async def _update(self) -> None:
        model = self.model
        dirty = model.get_dirty_attributes()
        if not dirty:
            logger.debug(f"Nothing to update on {self.model_name}")
            return

        identifier = model.primary_key_value
        if identifier is None:
            raise ValidationError(f"Cannot update {self.model_name} without a primary key value")
        await self._collection().update_one({self.metadata.primary_column(): identifier}, {"$set": dirty})
        logger.debug(f"Updated {self.model_name} {identifier}: {sorted(dirty)}")

    async def delete(self) -> bool:
        model = self.model
        if not model.is_persisted:
            return False

        if not await execute_hooks(self.model_class, "before_delete", model):
            return False

        identifier = model.primary_key_value
        try:
            deleted = await self._collection().delete_one({self.metadata.primary_column(): identifier})
        except OdmError:
            raise
        except Exception as exc:
            raise DatabaseOperationError("delete", self.model_name, exc) from exc
        if not deleted:
            logger.warning(f"No stored {self.model_name} {identifier} to delete")
            return False
        logger.debug(f"Deleted {self.model_name} {identifier}")

        model._is_persisted = False
        model._is_local = True

        await execute_hooks(self.model_class, "after_delete", model)
        return True
