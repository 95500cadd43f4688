"""
Connection configuration.

Configuration is validated with pydantic. ``define_config`` is the entry
point applications use to describe their named connections.
"""

from typing import Any, Literal, Optional
from urllib.parse import quote_plus, urlparse

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, model_validator

from fluent_odm.exceptions import ConfigurationError
from fluent_odm.naming import NamingStrategy, resolve_strategy


DEFAULT_DATABASE = "test"

_DRIVER_OPTION_NAMES = {
    "max_pool_size": "maxPoolSize",
    "min_pool_size": "minPoolSize",
    "max_idle_time_ms": "maxIdleTimeMS",
    "server_selection_timeout_ms": "serverSelectionTimeoutMS",
    "socket_timeout_ms": "socketTimeoutMS",
    "connect_timeout_ms": "connectTimeoutMS",
}


class ConnectionOptions(BaseModel):
    """Pool and timeout settings passed through to the driver."""

    model_config = ConfigDict(extra="forbid")

    max_pool_size: Optional[int] = Field(None, ge=1)
    min_pool_size: Optional[int] = Field(None, ge=0)
    max_idle_time_ms: Optional[int] = Field(None, ge=0)
    server_selection_timeout_ms: Optional[int] = Field(None, ge=0)
    socket_timeout_ms: Optional[int] = Field(None, ge=0)
    connect_timeout_ms: Optional[int] = Field(None, ge=0)

    def to_driver_options(self) -> dict[str, Any]:
        """Options keyed by the driver's keyword names, unset values dropped."""
        return {
            _DRIVER_OPTION_NAMES[name]: value
            for name, value in self.model_dump().items()
            if value is not None
        }


class ConnectionSettings(BaseModel):
    """Where to connect: either a URL or discrete host/port/database fields."""

    url: Optional[str] = None
    host: Optional[str] = None
    port: int = 27017
    database: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None

    def build_url(self) -> Optional[str]:
        """Connection URL, assembled from the discrete fields when no URL is set."""
        if self.url:
            return self.url
        if not self.host:
            return None
        auth = ""
        if self.username:
            auth = quote_plus(self.username)
            if self.password:
                auth += ":" + quote_plus(self.password)
            auth += "@"
        return f"mongodb://{auth}{self.host}:{self.port}/{self.database_name()}"

    def database_name(self) -> str:
        """Database name from the explicit field, else the URL path, else ``test``."""
        if self.database:
            return self.database
        if self.url:
            path = urlparse(self.url).path.lstrip("/")
            if path:
                return path.split("/")[0]
        return DEFAULT_DATABASE


class ConnectionConfig(BaseModel):
    """One named connection."""

    driver: Literal["mongodb", "memory"] = "mongodb"
    connection: ConnectionSettings = Field(default_factory=ConnectionSettings)
    options: ConnectionOptions = Field(default_factory=ConnectionOptions)

    @model_validator(mode="after")
    def check_target(self) -> "ConnectionConfig":
        if self.driver == "mongodb" and not (self.connection.url or self.connection.host):
            raise ValueError("a mongodb connection needs either 'url' or 'host'")
        return self


class OdmConfig(BaseModel):
    """
    Validated ODM configuration.

    Attributes:
        connection: Name of the default connection
        connections: Connection definitions by name
        naming_strategy: Strategy used by models that do not set their own
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    connection: str
    connections: dict[str, ConnectionConfig]
    naming_strategy: Optional[Any] = None

    @model_validator(mode="after")
    def check_default_connection(self) -> "OdmConfig":
        if not self.connections:
            raise ValueError("at least one connection must be defined")
        if self.connection not in self.connections:
            raise ValueError(f"default connection '{self.connection}' is not defined")
        self.naming_strategy = resolve_strategy(self.naming_strategy)
        return self

    @property
    def strategy(self) -> NamingStrategy:
        return self.naming_strategy

    def get_connection_config(self, name: Optional[str] = None) -> ConnectionConfig:
        """
        Look up a connection definition.

        Raises:
            ConfigurationError: If no connection has that name
        """
        name = name or self.connection
        try:
            return self.connections[name]
        except KeyError:
            raise ConfigurationError(f"Connection '{name}' is not configured")


def define_config(config: Optional[dict[str, Any]] = None, **kwargs: Any) -> OdmConfig:
    """
    Build and validate an ODM configuration.

    Args:
        config: Configuration mapping
        **kwargs: Configuration keys, merged over ``config``

    Returns:
        Validated OdmConfig

    Raises:
        ConfigurationError: If the configuration is malformed

    Example:
        >>> config = define_config(
        ...     connection="primary",
        ...     connections={
        ...         "primary": {
        ...             "connection": {"url": "mongodb://localhost:27017/app"},
        ...             "options": {"max_pool_size": 10},
        ...         },
        ...     },
        ... )
    """
    data = {**(config or {}), **kwargs}
    try:
        return OdmConfig.model_validate(data)
    except (PydanticValidationError, ValueError) as exc:
        raise ConfigurationError(f"Invalid ODM configuration: {exc}") from exc
