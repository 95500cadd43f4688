"""Document-store drivers for fluent-odm."""

from fluent_odm.drivers.base import DocumentCollection, DocumentStore, StoreSession, UpdateResult
from fluent_odm.drivers.memory import (
    DuplicateKeyError,
    MemoryCollection,
    MemorySession,
    MemoryStore,
    TransientTransactionError,
)

DRIVERS = ("memory", "mongodb")


def get_driver(name: str) -> type[DocumentStore]:
    """
    Resolve a driver class by name.

    The mongodb driver is imported lazily so pymongo stays optional.
    """
    if name == "memory":
        return MemoryStore
    if name == "mongodb":
        from fluent_odm.drivers.mongo import MongoStore
        return MongoStore
    raise ValueError(f"Unknown driver: {name!r}. Available drivers: {', '.join(DRIVERS)}")


__all__ = [
    "DocumentCollection",
    "DocumentStore",
    "StoreSession",
    "UpdateResult",
    "DuplicateKeyError",
    "MemoryCollection",
    "MemorySession",
    "MemoryStore",
    "TransientTransactionError",
    "get_driver",
]
