"""
Database manager.

Owns the store clients of every configured connection, the model
registry used to resolve relationship references, and the entry point
for transactions.
"""

import logging
from typing import Any, Awaitable, Callable, Optional, Union, TYPE_CHECKING

import anyio

from fluent_odm.config import ConnectionConfig, OdmConfig, define_config
from fluent_odm.drivers import get_driver
from fluent_odm.drivers.base import DocumentCollection, DocumentStore, StoreSession
from fluent_odm.exceptions import StoreConnectionError
from fluent_odm.models.metadata import ModelRegistry
from fluent_odm.naming import NamingStrategy
from fluent_odm.transaction import TransactionClient

if TYPE_CHECKING:
    from fluent_odm.models.base import Model
    from fluent_odm.query.builder import ModelQueryBuilder

logger = logging.getLogger(__name__)


class DatabaseManager:
    """
    Entry point for stores, models and transactions.

    Models bind to a manager with the ``database=`` class keyword or
    :meth:`register`; there is no global default.

    Example:
        >>> db = DatabaseManager(define_config(
        ...     connection="primary",
        ...     connections={"primary": {"driver": "memory"}},
        ... ))
        >>> await db.connect()
        >>>
        >>> class User(Model, database=db):
        ...     name: str
        ...
        >>> await User.create(name="Alice")
        >>> await db.close()
    """

    def __init__(self, config: Union[OdmConfig, dict[str, Any]]):
        """
        Initialize the manager.

        Args:
            config: Validated configuration or a mapping for define_config

        Raises:
            ConfigurationError: If the configuration is malformed
        """
        self.config = config if isinstance(config, OdmConfig) else define_config(config)
        self.registry = ModelRegistry()
        self._clients: dict[str, DocumentStore] = {}

    @property
    def naming_strategy(self) -> NamingStrategy:
        return self.config.strategy

    @property
    def default_connection(self) -> str:
        return self.config.connection

    @property
    def is_connected(self) -> bool:
        return bool(self._clients)

    def register(self, *models: type["Model"]) -> None:
        """Bind model classes to this manager and make them resolvable by name."""
        for model in models:
            model.model_database = self
            self.registry.register(model)

    # Connections

    def get_connection_config(self, name: Optional[str] = None) -> ConnectionConfig:
        """
        Definition of a named connection (the default if name is None).

        Raises:
            ConfigurationError: If no connection has that name
        """
        return self.config.get_connection_config(name)

    def has_connection(self, name: str) -> bool:
        return name in self.config.connections

    def get_connection_names(self) -> list[str]:
        return list(self.config.connections)

    async def _open(self, name: str) -> None:
        definition = self.get_connection_config(name)
        settings = definition.connection
        driver = get_driver(definition.driver)
        client = driver.from_settings(  # type: ignore[attr-defined]
            settings.database_name(),
            url=settings.build_url(),
            **definition.options.to_driver_options(),
        )
        try:
            await client.connect()
        except Exception as exc:
            raise StoreConnectionError(f"Failed to connect '{name}': {exc}") from exc
        self._clients[name] = client
        logger.info(f"Connected '{name}' ({definition.driver}, database {client.database_name})")

    async def connect(self) -> None:
        """
        Open every configured connection concurrently.

        Raises:
            StoreConnectionError: If a connection cannot be established
        """
        pending = [name for name in self.config.connections if name not in self._clients]
        try:
            async with anyio.create_task_group() as tg:
                for name in pending:
                    tg.start_soon(self._open, name)
        except BaseException as exc:
            # anyio wraps failures in an exception group
            errors = getattr(exc, "exceptions", None)
            if errors:
                raise errors[0] from exc
            raise

    async def close(self) -> None:
        """Close every open connection."""
        clients, self._clients = self._clients, {}
        for name, client in clients.items():
            await client.close()
            logger.info(f"Closed connection '{name}'")

    def connection(self, name: Optional[str] = None) -> DocumentStore:
        """
        Store client of a named connection (the default if name is None).

        Raises:
            StoreConnectionError: If the connection is not open
        """
        name = name or self.default_connection
        try:
            return self._clients[name]
        except KeyError:
            raise StoreConnectionError(f"Connection '{name}' is not connected; call connect() first")

    def collection(self, name: str, connection: Optional[str] = None) -> DocumentCollection:
        return self.connection(connection).collection(name)

    def query(self, model_class: type["Model"]) -> "ModelQueryBuilder":
        return model_class.query()

    # Transactions

    async def transaction(
        self,
        callback: Optional[Callable[[TransactionClient], Awaitable[Any]]] = None,
        connection: Optional[str] = None,
        **options: Any,
    ) -> Any:
        """
        Run work in a transaction.

        With a callback the transaction is managed: the callback receives a
        TransactionClient, transient failures retry the whole callback, any
        other error rolls back, and the callback's result is returned.
        Without one, a started TransactionClient is returned and the caller
        must commit or roll back.

        Args:
            callback: Coroutine function receiving the TransactionClient
            connection: Named connection (the default if None)
            **options: Passed to the session's transaction primitives

        Example:
            >>> async def transfer(trx):
            ...     await Account.query(trx).where("id", a).update(balance=0)
            ...     await Account.query(trx).where("id", b).update(balance=100)
            >>> await db.transaction(transfer)
            >>>
            >>> trx = await db.transaction()
            >>> try:
            ...     await User.create(name="Alice", client=trx)
            ...     await trx.commit()
            ... except Exception:
            ...     await trx.rollback()
            ...     raise
        """
        name = connection or self.default_connection
        session = await self.connection(name).start_session()
        client = TransactionClient(self, session, name)

        if callback is None:
            try:
                await session.start_transaction(**options)
            except BaseException:
                await session.end_session()
                raise
            logger.debug(f"Started transaction on '{name}'")
            return client

        async def run(_: StoreSession) -> Any:
            return await callback(client)

        try:
            return await session.with_transaction(run, **options)
        except BaseException:
            logger.warning(f"Transaction on '{name}' rolled back")
            raise
        finally:
            client._mark_completed()
            await session.end_session()
