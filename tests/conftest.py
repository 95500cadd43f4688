"""
Pytest configuration for fluent-odm tests.

Test modules that touch the store declare a module-level ``db`` manager on
the memory driver and use the ``database`` fixture, which connects it with
a fresh store before each test and closes it afterwards.
"""

from typing import Any

import pytest

from fluent_odm import DatabaseManager, define_config
from fluent_odm.drivers import MemoryCollection


def make_database(**config: Any) -> DatabaseManager:
    """DatabaseManager with one memory connection named ``primary``."""
    settings: dict[str, Any] = {
        "connection": "primary",
        "connections": {"primary": {"driver": "memory"}},
    }
    settings.update(config)
    return DatabaseManager(define_config(settings))


@pytest.fixture
def anyio_backend():
    """Run async tests on asyncio only."""
    return "asyncio"


@pytest.fixture
async def database(request):
    """Connect the test module's ``db`` for one test."""
    manager = request.module.db
    await manager.connect()
    yield manager
    await manager.close()


@pytest.fixture
def find_calls(monkeypatch):
    """
    Record every memory-store ``find`` call as ``(collection, filter)``.

    Lets tests assert how many store round-trips an operation made.
    """
    calls: list[tuple[str, dict[str, Any]]] = []
    original = MemoryCollection.find

    async def counting_find(self, filter, *args, **kwargs):
        calls.append((self.name, filter))
        return await original(self, filter, *args, **kwargs)

    monkeypatch.setattr(MemoryCollection, "find", counting_find)
    return calls
