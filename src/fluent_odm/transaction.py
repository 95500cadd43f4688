"""
Transaction client.

Wraps a store session so collections, queries and model writes obtained
through it all run inside the same transaction.
"""

import logging
from typing import Any, Optional, TYPE_CHECKING

from fluent_odm.drivers.base import DocumentCollection, StoreSession, UpdateResult
from fluent_odm.exceptions import ConfigurationError, ValidationError

if TYPE_CHECKING:
    from fluent_odm.database import DatabaseManager
    from fluent_odm.models.base import Model
    from fluent_odm.query.builder import ModelQueryBuilder

logger = logging.getLogger(__name__)


class SessionBoundCollection(DocumentCollection):
    """Collection handle that passes one session to every operation."""

    def __init__(self, collection: DocumentCollection, session: StoreSession):
        self.collection = collection
        self.session = session
        self.name = collection.name

    async def insert_one(self, document: dict[str, Any], session: Optional[StoreSession] = None) -> Any:
        return await self.collection.insert_one(document, session=self.session)

    async def insert_many(self, documents: list[dict[str, Any]], session: Optional[StoreSession] = None) -> list[Any]:
        return await self.collection.insert_many(documents, session=self.session)

    async def find_one(
        self,
        filter: dict[str, Any],
        projection: Optional[dict[str, Any]] = None,
        session: Optional[StoreSession] = None,
    ) -> Optional[dict[str, Any]]:
        return await self.collection.find_one(filter, projection, session=self.session)

    async def find(
        self,
        filter: dict[str, Any],
        projection: Optional[dict[str, Any]] = None,
        sort: Optional[list[tuple[str, int]]] = None,
        skip: int = 0,
        limit: int = 0,
        session: Optional[StoreSession] = None,
    ) -> list[dict[str, Any]]:
        return await self.collection.find(
            filter, projection=projection, sort=sort, skip=skip, limit=limit, session=self.session
        )

    async def count_documents(self, filter: dict[str, Any], session: Optional[StoreSession] = None) -> int:
        return await self.collection.count_documents(filter, session=self.session)

    async def update_one(
        self,
        filter: dict[str, Any],
        update: dict[str, Any],
        session: Optional[StoreSession] = None,
    ) -> UpdateResult:
        return await self.collection.update_one(filter, update, session=self.session)

    async def update_many(
        self,
        filter: dict[str, Any],
        update: dict[str, Any],
        session: Optional[StoreSession] = None,
    ) -> UpdateResult:
        return await self.collection.update_many(filter, update, session=self.session)

    async def delete_one(self, filter: dict[str, Any], session: Optional[StoreSession] = None) -> int:
        return await self.collection.delete_one(filter, session=self.session)

    async def delete_many(self, filter: dict[str, Any], session: Optional[StoreSession] = None) -> int:
        return await self.collection.delete_many(filter, session=self.session)

    async def distinct(
        self,
        field: str,
        filter: Optional[dict[str, Any]] = None,
        session: Optional[StoreSession] = None,
    ) -> list[Any]:
        return await self.collection.distinct(field, filter, session=self.session)

    async def aggregate(
        self,
        pipeline: list[dict[str, Any]],
        session: Optional[StoreSession] = None,
    ) -> list[dict[str, Any]]:
        return await self.collection.aggregate(pipeline, session=self.session)


class TransactionClient:
    """
    Handle on one store transaction.

    Obtained from :meth:`DatabaseManager.transaction`. In manual mode the
    caller commits or rolls back; both end the session. Used as an async
    context manager it commits on success and rolls back on error.

    Example:
        >>> async with await db.transaction() as trx:
        ...     user = await User.create(name="Alice", client=trx)
        ...     await user.posts.create(title="Hello")
    """

    def __init__(self, manager: "DatabaseManager", session: StoreSession, connection: str):
        self.manager = manager
        self.session = session
        self.connection = connection
        self._completed = False

    @property
    def is_completed(self) -> bool:
        return self._completed

    def _ensure_open(self) -> None:
        if self._completed:
            raise ValidationError("Transaction has already been committed or rolled back")

    def collection(self, name: str, connection: Optional[str] = None) -> SessionBoundCollection:
        """
        Collection handle bound to this transaction's session.

        Raises:
            ConfigurationError: If a different connection is requested
        """
        if connection is not None and connection != self.connection:
            raise ConfigurationError(
                f"Transaction on connection '{self.connection}' cannot access connection '{connection}'"
            )
        return SessionBoundCollection(self.manager.collection(name, connection=self.connection), self.session)

    def query(self, model_class: type["Model"]) -> "ModelQueryBuilder":
        """Query a model inside this transaction."""
        return model_class.query(self)

    async def commit(self) -> None:
        """Commit the transaction and end the session."""
        self._ensure_open()
        try:
            await self.session.commit_transaction()
        finally:
            self._completed = True
            await self.session.end_session()
        logger.debug(f"Committed transaction on {self.connection}")

    async def rollback(self) -> None:
        """Roll back the transaction and end the session."""
        self._ensure_open()
        try:
            if self.session.in_transaction:
                await self.session.abort_transaction()
        finally:
            self._completed = True
            await self.session.end_session()
        logger.warning(f"Rolled back transaction on {self.connection}")

    def _mark_completed(self) -> None:
        self._completed = True

    async def __aenter__(self) -> "TransactionClient":
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        if self._completed:
            return
        if exc_type is None:
            await self.commit()
        else:
            await self.rollback()
