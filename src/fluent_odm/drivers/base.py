"""
Document-store driver interface.

Defines the abstract client, collection and session primitives the ODM
consumes. The ODM never talks to a database library directly; it goes
through one of these implementations.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional


@dataclass
class UpdateResult:
    """Outcome of an update operation."""
    matched_count: int
    modified_count: int


class StoreSession(ABC):
    """
    Abstract store session.

    A session owns at most one open transaction at a time.
    """

    @property
    @abstractmethod
    def in_transaction(self) -> bool:
        """Whether a transaction is currently open on this session."""
        pass

    @abstractmethod
    async def start_transaction(self, **options: Any) -> None:
        """Open a transaction."""
        pass

    @abstractmethod
    async def commit_transaction(self) -> None:
        """Commit the open transaction."""
        pass

    @abstractmethod
    async def abort_transaction(self) -> None:
        """Roll back the open transaction."""
        pass

    @abstractmethod
    async def end_session(self) -> None:
        """Release the session; an open transaction is aborted."""
        pass

    @abstractmethod
    async def with_transaction(
        self,
        callback: Callable[["StoreSession"], Awaitable[Any]],
        **options: Any,
    ) -> Any:
        """
        Run callback inside a transaction.

        Commits when the callback returns, aborts when it raises, and
        retries the whole callback on transient transaction errors.

        Args:
            callback: Coroutine function receiving this session
            **options: Transaction options passed to start_transaction

        Returns:
            Whatever the callback returned
        """
        pass


class DocumentCollection(ABC):
    """
    Abstract collection handle.

    Filters, updates, sorts and projections use the document-store query
    language (``{"age": {"$gte": 18}}``, ``{"$set": {...}}``, ...). Every
    operation accepts an optional session.
    """

    name: str

    @abstractmethod
    async def insert_one(self, document: dict[str, Any], session: Optional[StoreSession] = None) -> Any:
        """
        Insert a document.

        Returns:
            The inserted document's ``_id`` (assigned by the store if absent)
        """
        pass

    @abstractmethod
    async def insert_many(self, documents: list[dict[str, Any]], session: Optional[StoreSession] = None) -> list[Any]:
        """Insert several documents, returning their ids in order."""
        pass

    @abstractmethod
    async def find_one(
        self,
        filter: dict[str, Any],
        projection: Optional[dict[str, Any]] = None,
        session: Optional[StoreSession] = None,
    ) -> Optional[dict[str, Any]]:
        """Return the first matching document, or None."""
        pass

    @abstractmethod
    async def find(
        self,
        filter: dict[str, Any],
        projection: Optional[dict[str, Any]] = None,
        sort: Optional[list[tuple[str, int]]] = None,
        skip: int = 0,
        limit: int = 0,
        session: Optional[StoreSession] = None,
    ) -> list[dict[str, Any]]:
        """Return every matching document. A limit of 0 means no limit."""
        pass

    @abstractmethod
    async def count_documents(self, filter: dict[str, Any], session: Optional[StoreSession] = None) -> int:
        """Count matching documents."""
        pass

    @abstractmethod
    async def update_one(
        self,
        filter: dict[str, Any],
        update: dict[str, Any],
        session: Optional[StoreSession] = None,
    ) -> UpdateResult:
        """Apply an update to the first matching document."""
        pass

    @abstractmethod
    async def update_many(
        self,
        filter: dict[str, Any],
        update: dict[str, Any],
        session: Optional[StoreSession] = None,
    ) -> UpdateResult:
        """Apply an update to every matching document."""
        pass

    @abstractmethod
    async def delete_one(self, filter: dict[str, Any], session: Optional[StoreSession] = None) -> int:
        """Delete the first matching document, returning the deleted count."""
        pass

    @abstractmethod
    async def delete_many(self, filter: dict[str, Any], session: Optional[StoreSession] = None) -> int:
        """Delete every matching document, returning the deleted count."""
        pass

    @abstractmethod
    async def distinct(
        self,
        field: str,
        filter: Optional[dict[str, Any]] = None,
        session: Optional[StoreSession] = None,
    ) -> list[Any]:
        """Distinct values of a field among matching documents."""
        pass

    @abstractmethod
    async def aggregate(
        self,
        pipeline: list[dict[str, Any]],
        session: Optional[StoreSession] = None,
    ) -> list[dict[str, Any]]:
        """Run an aggregation pipeline and return every output row."""
        pass


class DocumentStore(ABC):
    """
    Abstract document-store client.

    One client exists per named connection. Clients are safe to share
    between concurrent queries.
    """

    database_name: str

    @abstractmethod
    async def connect(self) -> None:
        """Establish the connection."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close the connection."""
        pass

    @abstractmethod
    def collection(self, name: str) -> DocumentCollection:
        """Return a handle on a collection of the configured database."""
        pass

    @abstractmethod
    async def start_session(self) -> StoreSession:
        """Start a new session."""
        pass
