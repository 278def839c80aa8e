"""Connection descriptor and option records for queues, exchanges and consumers."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from urllib.parse import parse_qs, unquote, urlsplit

from pydantic import BaseModel, ConfigDict, Field

_SCHEME_PORTS = {"amqp": 5672, "amqps": 5671}


class ConnectionConfig(BaseModel):
    """Where and how to reach the broker.

    Build it directly, or from a connection URI with :meth:`from_url`.
    """

    model_config = ConfigDict(frozen=True)

    host: str = "localhost"
    port: int = Field(default=5672, gt=0, lt=65536)
    vhost: str = "/"
    login: str = "guest"
    password: str = Field(default="guest", repr=False)
    ssl: bool = False
    heartbeat: int | None = Field(default=None, ge=0)
    timeout: float | None = Field(default=None, gt=0)
    client_properties: dict[str, Any] = Field(default_factory=dict)
    publisher_confirms: bool = True

    @classmethod
    def from_url(cls, url: str) -> ConnectionConfig:
        """Parse ``amqp[s]://login:password@host:port/vhost?heartbeat=N``.

        The path segment is the vhost (``/myvhost`` -> ``myvhost``); an empty
        path selects the default vhost ``/``.
        """
        parts = urlsplit(url)
        scheme = parts.scheme.lower()
        if scheme not in _SCHEME_PORTS:
            raise ValueError(f"Unsupported AMQP URI scheme: {parts.scheme!r}")

        try:
            port = parts.port
        except ValueError as e:
            raise ValueError(f"Invalid port in AMQP URI: {url!r}") from e

        fields: dict[str, Any] = {
            "ssl": scheme == "amqps",
            "port": port or _SCHEME_PORTS[scheme],
        }
        if parts.hostname:
            fields["host"] = unquote(parts.hostname)
        if parts.username is not None:
            fields["login"] = unquote(parts.username)
        if parts.password is not None:
            fields["password"] = unquote(parts.password)

        path = parts.path[1:] if parts.path.startswith("/") else parts.path
        fields["vhost"] = unquote(path) if path else "/"

        query = parse_qs(parts.query)
        if "heartbeat" in query:
            fields["heartbeat"] = int(query["heartbeat"][-1])
        for key in ("timeout", "connection_timeout"):
            if key in query:
                fields["timeout"] = float(query[key][-1])

        return cls(**fields)

    @classmethod
    def coerce(
        cls, config: ConnectionConfig | str | Mapping[str, Any] | None
    ) -> ConnectionConfig:
        """Accept a config, a URI string, a field mapping or None."""
        if config is None:
            return cls()
        if isinstance(config, ConnectionConfig):
            return config
        if isinstance(config, str):
            return cls.from_url(config)
        return cls.model_validate(dict(config))

    def connect_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for :func:`aio_pika.connect`."""
        kwargs: dict[str, Any] = {
            "host": self.host,
            "port": self.port,
            "login": self.login,
            "password": self.password,
            "virtualhost": self.vhost,
            "ssl": self.ssl,
        }
        if self.timeout is not None:
            kwargs["timeout"] = self.timeout
        if self.heartbeat is not None:
            kwargs["heartbeat"] = self.heartbeat
        if self.client_properties:
            kwargs["client_properties"] = dict(self.client_properties)
        return kwargs


class QueueOptions(BaseModel):
    """Flags for ``queue.declare``. Queues are durable unless told otherwise."""

    model_config = ConfigDict(frozen=True)

    passive: bool = False
    durable: bool = True
    exclusive: bool = False
    auto_delete: bool = False
    arguments: dict[str, Any] | None = None


class ExchangeOptions(BaseModel):
    """Flags for ``exchange.declare``."""

    model_config = ConfigDict(frozen=True)

    passive: bool = False
    durable: bool = False
    auto_delete: bool = False
    internal: bool = False
    arguments: dict[str, Any] | None = None


class DeleteOptions(BaseModel):
    """Guards for ``queue.delete``."""

    model_config = ConfigDict(frozen=True)

    if_unused: bool = False
    if_empty: bool = False


class ConsumeOptions(BaseModel):
    """Flags for ``basic.consume``.

    ``no_local`` and ``no_wait`` are part of the protocol but aio-pika does
    not send them; RabbitMQ ignores ``no_local`` anyway.
    """

    model_config = ConfigDict(frozen=True)

    no_local: bool = False
    no_ack: bool = False
    exclusive: bool = False
    no_wait: bool = False
    arguments: dict[str, Any] | None = None
