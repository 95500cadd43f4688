"""
MongoDB driver.

Adapts pymongo's asyncio client to the driver interface. pymongo is an
optional dependency: install it with ``pip install fluent-odm[mongo]``.
"""

import inspect
import logging
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional

from fluent_odm.drivers.base import DocumentCollection, DocumentStore, StoreSession, UpdateResult

logger = logging.getLogger(__name__)


def _require_pymongo() -> Any:
    try:
        import pymongo
    except ImportError:
        raise ImportError(
            "The mongodb driver requires pymongo. "
            "Install it with: pip install fluent-odm[mongo]"
        )
    return pymongo


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def coerce_object_ids(filter: Any) -> Any:
    """
    Convert 24-hex string ids under ``_id`` into ``ObjectId`` values.

    Walks nested ``$and``/``$or`` lists and operator dicts such as
    ``{"_id": {"$in": [...]}}``.
    """
    from bson import ObjectId

    def convert(value: Any) -> Any:
        if isinstance(value, str) and ObjectId.is_valid(value):
            return ObjectId(value)
        if isinstance(value, list):
            return [convert(item) for item in value]
        if isinstance(value, dict):
            return {key: convert(item) if key.startswith("$") else item for key, item in value.items()}
        return value

    if isinstance(filter, list):
        return [coerce_object_ids(item) for item in filter]
    if not isinstance(filter, dict):
        return filter

    result = {}
    for key, value in filter.items():
        if key == "_id":
            result[key] = convert(value)
        elif key in ("$and", "$or", "$nor"):
            result[key] = [coerce_object_ids(item) for item in value]
        else:
            result[key] = value
    return result


def to_bson(value: Any) -> Any:
    """
    Convert values BSON cannot encode: ``Decimal`` becomes ``Decimal128``
    and a plain ``date`` becomes a midnight ``datetime``.

    Example:
        >>> to_bson({"price": Decimal("1.50"), "day": date(2024, 5, 1)})
        {'price': Decimal128('1.50'), 'day': datetime.datetime(2024, 5, 1, 0, 0)}
    """
    from bson import Decimal128

    if isinstance(value, Decimal):
        return Decimal128(value)
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    if isinstance(value, dict):
        return {key: to_bson(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_bson(item) for item in value]
    return value


def from_bson(value: Any) -> Any:
    """Convert ``Decimal128`` values read from MongoDB back to ``Decimal``."""
    from bson import Decimal128

    if isinstance(value, Decimal128):
        return value.to_decimal()
    if isinstance(value, dict):
        return {key: from_bson(item) for key, item in value.items()}
    if isinstance(value, list):
        return [from_bson(item) for item in value]
    return value


def _filter(filter: Any) -> Any:
    return to_bson(coerce_object_ids(filter))


class MongoSession(StoreSession):
    """Wrapper around a pymongo client session."""

    def __init__(self, session: Any):
        self.session = session

    @property
    def in_transaction(self) -> bool:
        return bool(self.session.in_transaction)

    async def start_transaction(self, **options: Any) -> None:
        await _maybe_await(self.session.start_transaction(**options))

    async def commit_transaction(self) -> None:
        await _maybe_await(self.session.commit_transaction())

    async def abort_transaction(self) -> None:
        await _maybe_await(self.session.abort_transaction())

    async def end_session(self) -> None:
        await _maybe_await(self.session.end_session())

    async def with_transaction(
        self,
        callback: Callable[[StoreSession], Awaitable[Any]],
        **options: Any,
    ) -> Any:
        async def run(_: Any) -> Any:
            return await callback(self)

        return await _maybe_await(self.session.with_transaction(run, **options))


def _raw(session: Optional[StoreSession]) -> Any:
    return session.session if isinstance(session, MongoSession) else None


class MongoCollection(DocumentCollection):
    """Collection handle backed by a pymongo async collection."""

    def __init__(self, collection: Any):
        self.collection = collection
        self.name = collection.name

    async def insert_one(self, document: dict[str, Any], session: Optional[StoreSession] = None) -> Any:
        result = await self.collection.insert_one(to_bson(document), session=_raw(session))
        return result.inserted_id

    async def insert_many(self, documents: list[dict[str, Any]], session: Optional[StoreSession] = None) -> list[Any]:
        result = await self.collection.insert_many([to_bson(document) for document in documents], session=_raw(session))
        return list(result.inserted_ids)

    async def find_one(
        self,
        filter: dict[str, Any],
        projection: Optional[dict[str, Any]] = None,
        session: Optional[StoreSession] = None,
    ) -> Optional[dict[str, Any]]:
        document = await self.collection.find_one(_filter(filter), projection, session=_raw(session))
        return from_bson(document)

    async def find(
        self,
        filter: dict[str, Any],
        projection: Optional[dict[str, Any]] = None,
        sort: Optional[list[tuple[str, int]]] = None,
        skip: int = 0,
        limit: int = 0,
        session: Optional[StoreSession] = None,
    ) -> list[dict[str, Any]]:
        cursor = self.collection.find(
            _filter(filter),
            projection,
            sort=sort or None,
            skip=skip,
            limit=limit,
            session=_raw(session),
        )
        return from_bson(await cursor.to_list())

    async def count_documents(self, filter: dict[str, Any], session: Optional[StoreSession] = None) -> int:
        return await self.collection.count_documents(_filter(filter), session=_raw(session))

    async def update_one(self, filter: dict[str, Any], update: dict[str, Any], session: Optional[StoreSession] = None) -> UpdateResult:
        result = await self.collection.update_one(_filter(filter), to_bson(update), session=_raw(session))
        return UpdateResult(matched_count=result.matched_count, modified_count=result.modified_count)

    async def update_many(self, filter: dict[str, Any], update: dict[str, Any], session: Optional[StoreSession] = None) -> UpdateResult:
        result = await self.collection.update_many(_filter(filter), to_bson(update), session=_raw(session))
        return UpdateResult(matched_count=result.matched_count, modified_count=result.modified_count)

    async def delete_one(self, filter: dict[str, Any], session: Optional[StoreSession] = None) -> int:
        result = await self.collection.delete_one(_filter(filter), session=_raw(session))
        return result.deleted_count

    async def delete_many(self, filter: dict[str, Any], session: Optional[StoreSession] = None) -> int:
        result = await self.collection.delete_many(_filter(filter), session=_raw(session))
        return result.deleted_count

    async def distinct(
        self,
        field: str,
        filter: Optional[dict[str, Any]] = None,
        session: Optional[StoreSession] = None,
    ) -> list[Any]:
        values = await self.collection.distinct(field, _filter(filter or {}), session=_raw(session))
        return from_bson(values)

    async def aggregate(self, pipeline: list[dict[str, Any]], session: Optional[StoreSession] = None) -> list[dict[str, Any]]:
        stages = [
            {"$match": _filter(stage["$match"])} if "$match" in stage else stage
            for stage in pipeline
        ]
        cursor = await _maybe_await(self.collection.aggregate(stages, session=_raw(session)))
        return from_bson(await cursor.to_list())


class MongoStore(DocumentStore):
    """
    MongoDB client for one named connection.

    Args:
        url: Connection string
        database: Database name
        **options: Keyword options passed to ``AsyncMongoClient``
            (``maxPoolSize``, ``serverSelectionTimeoutMS``, ...)
    """

    def __init__(self, url: str, database: str, **options: Any):
        self.url = url
        self.database_name = database
        self.options = options
        self._client: Optional[Any] = None

    @classmethod
    def from_settings(cls, database: str, url: Optional[str] = None, **options: Any) -> "MongoStore":
        return cls(url=url or "mongodb://localhost:27017", database=database, **options)

    @property
    def client(self) -> Any:
        if self._client is None:
            pymongo = _require_pymongo()
            self._client = pymongo.AsyncMongoClient(self.url, **self.options)
        return self._client

    async def connect(self) -> None:
        await self.client.admin.command("ping")
        logger.debug(f"Pinged MongoDB database {self.database_name}")

    async def close(self) -> None:
        if self._client is not None:
            await _maybe_await(self._client.close())
            self._client = None

    def collection(self, name: str) -> MongoCollection:
        return MongoCollection(self.client[self.database_name][name])

    async def start_session(self) -> MongoSession:
        session = await _maybe_await(self.client.start_session())
        return MongoSession(session)
