"""
Tests for the database manager.
"""

import pytest

from conftest import make_database
from fluent_odm import (
    ConfigurationError,
    DatabaseManager,
    Model,
    StoreConnectionError,
    define_config,
)
from fluent_odm.drivers import MemoryStore

pytestmark = pytest.mark.anyio


def two_connections() -> DatabaseManager:
    return make_database(connections={
        "primary": {"driver": "memory"},
        "reporting": {"driver": "memory", "connection": {"database": "analytics"}},
    })


class TestConnections:
    """Test opening and closing connections."""

    async def test_connect_and_close(self):
        db = two_connections()
        assert not db.is_connected

        await db.connect()
        assert db.is_connected
        assert isinstance(db.connection(), MemoryStore)
        assert db.connection("reporting").database_name == "analytics"
        assert db.connection().database_name == "test"

        await db.close()
        assert not db.is_connected

    async def test_use_before_connect(self):
        """Store access before connect() fails clearly."""
        db = make_database()
        with pytest.raises(StoreConnectionError):
            db.connection()
        with pytest.raises(StoreConnectionError):
            db.collection("user")

    async def test_unknown_connection(self):
        db = make_database()
        await db.connect()
        try:
            with pytest.raises(StoreConnectionError):
                db.connection("missing")
            with pytest.raises(ConfigurationError):
                db.get_connection_config("missing")
        finally:
            await db.close()

    async def test_connect_failure(self, monkeypatch):
        """Driver failures surface as StoreConnectionError."""
        async def refuse(self):
            raise OSError("connection refused")

        monkeypatch.setattr(MemoryStore, "connect", refuse)
        db = make_database()

        with pytest.raises(StoreConnectionError, match="primary"):
            await db.connect()
        assert not db.is_connected

    async def test_connect_is_idempotent(self):
        db = make_database()
        await db.connect()
        store = db.connection()
        await db.connect()
        assert db.connection() is store
        await db.close()

    async def test_connection_names(self):
        db = two_connections()
        assert db.default_connection == "primary"
        assert db.get_connection_names() == ["primary", "reporting"]
        assert db.has_connection("reporting")
        assert not db.has_connection("archive")

    async def test_accepts_mapping(self):
        db = DatabaseManager({"connection": "main", "connections": {"main": {"driver": "memory"}}})
        assert db.default_connection == "main"

    async def test_invalid_config(self):
        with pytest.raises(ConfigurationError):
            DatabaseManager({"connection": "main", "connections": {}})


class TestModels:
    """Test binding models to a manager."""

    async def test_register(self):
        db = make_database()

        class Invoice(Model):
            number: str

        db.register(Invoice)

        assert Invoice.get_database() is db
        assert db.registry.get("Invoice") is Invoice
        assert "Invoice" in db.registry

    async def test_unbound_model(self):
        class Orphan(Model):
            name: str

        with pytest.raises(ConfigurationError):
            Orphan.get_database()

    async def test_named_connection(self):
        """Models declared on a connection read and write there."""
        db = two_connections()

        class Event(Model, database=db, connection="reporting"):
            kind: str

        await db.connect()
        try:
            await Event.create(kind="signup")
            assert db.connection("reporting").documents("event")[0]["kind"] == "signup"
            assert db.connection().documents("event") == []
            assert await db.query(Event).count() == 1
        finally:
            await db.close()

    async def test_manager_naming_strategy(self):
        """Models use the manager's naming strategy unless they set their own."""
        db = DatabaseManager(define_config(
            connection="primary",
            connections={"primary": {"driver": "memory"}},
            naming_strategy="camel",
        ))

        class LineItem(Model, database=db):
            unit_price: int

        await db.connect()
        try:
            await LineItem.create(unit_price=3)
            assert db.connection().documents("line_items")[0]["unitPrice"] == 3
        finally:
            await db.close()
