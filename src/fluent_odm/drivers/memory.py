"""
In-memory document store.

An async, in-process implementation of the driver interface. Documents
are deep-copied on the way in and out, so callers never share state with
the store. Used for tests and local development.
"""

import copy
import itertools
import logging
import time
from typing import Any, Awaitable, Callable, Optional

import anyio.lowlevel

from fluent_odm.drivers.base import DocumentCollection, DocumentStore, StoreSession, UpdateResult
from fluent_odm.drivers.matching import apply_update, matches, project, run_pipeline, sort_documents, get_path

logger = logging.getLogger(__name__)


class DuplicateKeyError(Exception):
    """Raised when inserting a document whose _id already exists."""
    pass


class TransientTransactionError(Exception):
    """Raised inside a transaction to signal that it may be retried."""
    pass


class TransactionStateError(Exception):
    """Raised when a transaction primitive is used in the wrong state."""
    pass


_id_counter = itertools.count(1)


def generate_id() -> str:
    """Generate a 24-character hex identifier, ordered by creation."""
    return f"{int(time.time()) & 0xFFFFFFFF:08x}{next(_id_counter):016x}"


class MemorySession(StoreSession):
    """
    Session over a MemoryStore.

    A transaction works on a private copy of the store's data. Commit
    publishes the collections it touched; abort discards the copy.
    """

    def __init__(self, store: "MemoryStore"):
        self.store = store
        self._working: Optional[dict[str, list[dict[str, Any]]]] = None
        self._touched: set[str] = set()
        self._ended = False

    @property
    def in_transaction(self) -> bool:
        return self._working is not None

    def documents(self, collection: str) -> list[dict[str, Any]]:
        """Document list visible to this session for a collection."""
        if self._working is None:
            return self.store.documents(collection)
        return self._working.setdefault(collection, [])

    def touch(self, collection: str) -> None:
        if self._working is not None:
            self._touched.add(collection)

    async def start_transaction(self, **options: Any) -> None:
        if self._ended:
            raise TransactionStateError("Cannot start a transaction on an ended session")
        if self._working is not None:
            raise TransactionStateError("Transaction already in progress")
        self._working = copy.deepcopy(self.store._data)
        self._touched = set()
        await anyio.lowlevel.checkpoint()

    async def commit_transaction(self) -> None:
        if self._working is None:
            raise TransactionStateError("No transaction started")
        for name in self._touched:
            self.store._data[name] = self._working.get(name, [])
        logger.debug(f"Committed transaction touching {sorted(self._touched)}")
        self._working = None
        self._touched = set()
        await anyio.lowlevel.checkpoint()

    async def abort_transaction(self) -> None:
        if self._working is None:
            raise TransactionStateError("No transaction started")
        self._working = None
        self._touched = set()
        await anyio.lowlevel.checkpoint()

    async def end_session(self) -> None:
        if self._working is not None:
            await self.abort_transaction()
        self._ended = True

    async def with_transaction(
        self,
        callback: Callable[[StoreSession], Awaitable[Any]],
        **options: Any,
    ) -> Any:
        max_attempts = options.pop("max_attempts", 3)
        attempt = 0
        while True:
            attempt += 1
            await self.start_transaction(**options)
            try:
                result = await callback(self)
            except TransientTransactionError:
                await self.abort_transaction()
                if attempt >= max_attempts:
                    raise
                logger.debug(f"Retrying transaction after transient error (attempt {attempt})")
                continue
            except BaseException:
                if self.in_transaction:
                    await self.abort_transaction()
                raise
            if self.in_transaction:
                await self.commit_transaction()
            return result


class MemoryCollection(DocumentCollection):
    """Collection handle over a MemoryStore."""

    def __init__(self, store: "MemoryStore", name: str):
        self.store = store
        self.name = name

    def _documents(self, session: Optional[StoreSession]) -> list[dict[str, Any]]:
        if isinstance(session, MemorySession):
            return session.documents(self.name)
        return self.store.documents(self.name)

    def _touch(self, session: Optional[StoreSession]) -> None:
        if isinstance(session, MemorySession):
            session.touch(self.name)

    async def insert_one(self, document: dict[str, Any], session: Optional[StoreSession] = None) -> Any:
        await anyio.lowlevel.checkpoint()
        documents = self._documents(session)
        stored = copy.deepcopy(document)
        if stored.get("_id") is None:
            stored["_id"] = generate_id()
        if any(existing.get("_id") == stored["_id"] for existing in documents):
            raise DuplicateKeyError(f"Duplicate key {stored['_id']!r} in collection {self.name}")
        documents.append(stored)
        self._touch(session)
        logger.debug(f"Inserted {stored['_id']} into {self.name}")
        return stored["_id"]

    async def insert_many(self, documents: list[dict[str, Any]], session: Optional[StoreSession] = None) -> list[Any]:
        return [await self.insert_one(document, session=session) for document in documents]

    async def find_one(
        self,
        filter: dict[str, Any],
        projection: Optional[dict[str, Any]] = None,
        session: Optional[StoreSession] = None,
    ) -> Optional[dict[str, Any]]:
        results = await self.find(filter, projection=projection, limit=1, session=session)
        return results[0] if results else None

    async def find(
        self,
        filter: dict[str, Any],
        projection: Optional[dict[str, Any]] = None,
        sort: Optional[list[tuple[str, int]]] = None,
        skip: int = 0,
        limit: int = 0,
        session: Optional[StoreSession] = None,
    ) -> list[dict[str, Any]]:
        await anyio.lowlevel.checkpoint()
        found = [doc for doc in self._documents(session) if matches(doc, filter)]
        if sort:
            found = sort_documents(found, sort)
        if skip:
            found = found[skip:]
        if limit:
            found = found[:limit]
        return [project(doc, projection) for doc in found]

    async def count_documents(self, filter: dict[str, Any], session: Optional[StoreSession] = None) -> int:
        await anyio.lowlevel.checkpoint()
        return sum(1 for doc in self._documents(session) if matches(doc, filter))

    async def _update(self, filter: dict[str, Any], update: dict[str, Any], session: Optional[StoreSession], many: bool) -> UpdateResult:
        await anyio.lowlevel.checkpoint()
        matched = modified = 0
        for doc in self._documents(session):
            if not matches(doc, filter):
                continue
            matched += 1
            if apply_update(doc, update):
                modified += 1
            if not many:
                break
        if modified:
            self._touch(session)
        return UpdateResult(matched_count=matched, modified_count=modified)

    async def update_one(self, filter: dict[str, Any], update: dict[str, Any], session: Optional[StoreSession] = None) -> UpdateResult:
        return await self._update(filter, update, session, many=False)

    async def update_many(self, filter: dict[str, Any], update: dict[str, Any], session: Optional[StoreSession] = None) -> UpdateResult:
        return await self._update(filter, update, session, many=True)

    async def _delete(self, filter: dict[str, Any], session: Optional[StoreSession], many: bool) -> int:
        await anyio.lowlevel.checkpoint()
        documents = self._documents(session)
        deleted = 0
        for doc in list(documents):
            if matches(doc, filter):
                documents.remove(doc)
                deleted += 1
                if not many:
                    break
        if deleted:
            self._touch(session)
        return deleted

    async def delete_one(self, filter: dict[str, Any], session: Optional[StoreSession] = None) -> int:
        return await self._delete(filter, session, many=False)

    async def delete_many(self, filter: dict[str, Any], session: Optional[StoreSession] = None) -> int:
        return await self._delete(filter, session, many=True)

    async def distinct(
        self,
        field: str,
        filter: Optional[dict[str, Any]] = None,
        session: Optional[StoreSession] = None,
    ) -> list[Any]:
        await anyio.lowlevel.checkpoint()
        values: list[Any] = []
        for doc in self._documents(session):
            if not matches(doc, filter):
                continue
            for value in get_path(doc, field):
                for item in (value if isinstance(value, list) else [value]):
                    if item not in values:
                        values.append(copy.deepcopy(item))
        return values

    async def aggregate(self, pipeline: list[dict[str, Any]], session: Optional[StoreSession] = None) -> list[dict[str, Any]]:
        await anyio.lowlevel.checkpoint()
        return run_pipeline(self._documents(session), pipeline)


class MemoryStore(DocumentStore):
    """
    In-process document store.

    Example:
        >>> store = MemoryStore(database="app")
        >>> await store.connect()
        >>> users = store.collection("user")
        >>> await users.insert_one({"name": "Alice"})
    """

    def __init__(self, database: str = "test", **options: Any):
        self.database_name = database
        self.options = options
        self._data: dict[str, list[dict[str, Any]]] = {}
        self._connected = False

    @classmethod
    def from_settings(cls, database: str, url: Optional[str] = None, **options: Any) -> "MemoryStore":
        return cls(database=database, **options)

    @property
    def is_connected(self) -> bool:
        return self._connected

    def documents(self, collection: str) -> list[dict[str, Any]]:
        """Committed document list of a collection (created on demand)."""
        return self._data.setdefault(collection, [])

    def clear(self, collection: Optional[str] = None) -> None:
        """
        Clear storage.

        Args:
            collection: Optional collection to clear. If None, clears all.
        """
        if collection:
            self._data.pop(collection, None)
        else:
            self._data.clear()

    async def connect(self) -> None:
        await anyio.lowlevel.checkpoint()
        self._connected = True

    async def close(self) -> None:
        await anyio.lowlevel.checkpoint()
        self._connected = False

    def collection(self, name: str) -> MemoryCollection:
        return MemoryCollection(self, name)

    async def start_session(self) -> MemorySession:
        await anyio.lowlevel.checkpoint()
        return MemorySession(self)
