"""RabbitMQClient — lazily opened, shared channel with a single in-flight connect."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from enum import Enum
from typing import TYPE_CHECKING, Any

import aio_pika
from aio_pika import DeliveryMode

from .config import ConnectionConfig
from .consumer import ConsumerStream
from .resources import Exchange, Queue

if TYPE_CHECKING:
    from types import TracebackType

    from aio_pika.abc import AbstractChannel, AbstractConnection

    from .config import ConsumeOptions
    from .message import Message

logger = logging.getLogger(__name__)


class ChannelState(str, Enum):
    """Lifecycle of the cached channel."""

    EMPTY = "EMPTY"
    PENDING = "PENDING"
    READY = "READY"
    CLOSED = "CLOSED"


async def _close_quietly(connection: AbstractConnection) -> None:
    """Close *connection*, logging rather than raising on failure."""
    try:
        await connection.close()
    except Exception:
        logger.debug("Ignoring error while closing connection", exc_info=True)


class RabbitMQClient:
    """Owns one connection and one channel shared by every caller.

    The first ``get_channel()`` starts a single connect task; callers that
    arrive while it is in flight await the same task and receive the same
    channel (or the same error). A failed attempt leaves the cache empty so
    the next call starts over. ``close()`` tears down the channel and the
    connection; the next ``get_channel()`` reconnects.
    """

    def __init__(
        self,
        config: ConnectionConfig | str | Mapping[str, Any] | None = None,
        **connect_kwargs: Any,
    ) -> None:
        """Configure the broker address and optional aio_pika connect kwargs."""
        self._config = ConnectionConfig.coerce(config)
        self._connect_kwargs = connect_kwargs
        self._connection: AbstractConnection | None = None
        self._channel: AbstractChannel | None = None
        self._pending: asyncio.Task[AbstractChannel] | None = None
        self._closed = False

    @property
    def config(self) -> ConnectionConfig:
        return self._config

    @property
    def state(self) -> ChannelState:
        if self._channel is not None:
            if self._is_stale():
                return ChannelState.CLOSED
            return ChannelState.READY
        if self._pending is not None:
            return ChannelState.PENDING
        if self._closed:
            return ChannelState.CLOSED
        return ChannelState.EMPTY

    async def get_channel(self) -> AbstractChannel:
        """Return the shared channel, connecting on first use.

        A cached channel or connection that the broker has closed is dropped
        and a fresh attempt is started.
        """
        if self._channel is not None:
            if not self._is_stale():
                return self._channel
            await self._drop_stale()
            # Another caller may have reconnected while the old one closed.
            return await self.get_channel()
        if self._pending is None:
            self._closed = False
            self._pending = asyncio.ensure_future(self._open())
            self._pending.add_done_callback(self._on_open_done)
        # Shielded so a cancelled caller does not cancel the shared attempt.
        return await asyncio.shield(self._pending)

    async def _open(self) -> AbstractChannel:
        logger.debug(
            "Connecting to amqp://%s:%s/%s",
            self._config.host,
            self._config.port,
            self._config.vhost,
        )
        connection = await aio_pika.connect(
            **{**self._config.connect_kwargs(), **self._connect_kwargs}
        )
        try:
            channel = await connection.channel(
                publisher_confirms=self._config.publisher_confirms
            )
        except BaseException:
            await _close_quietly(connection)
            raise
        self._connection = connection
        return channel

    def _on_open_done(self, task: asyncio.Task[AbstractChannel]) -> None:
        if task is not self._pending:
            return
        self._pending = None
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.debug("Connection attempt failed: %s", exc)
            return
        self._channel = task.result()
        logger.debug("Channel %s ready", self._channel)

    def _is_stale(self) -> bool:
        channel, connection = self._channel, self._connection
        if channel is not None and channel.is_closed:
            return True
        return connection is not None and connection.is_closed

    async def _drop_stale(self) -> None:
        connection = self._connection
        self._channel = None
        self._connection = None
        logger.warning("Cached channel was closed by the broker; reconnecting")
        if connection is not None and not connection.is_closed:
            await _close_quietly(connection)

    async def close(self) -> None:
        """Close the cached channel and its connection. No-op unless ready."""
        channel, connection = self._channel, self._connection
        if channel is None:
            return
        self._channel = None
        self._connection = None
        self._closed = True
        try:
            await channel.close()
        finally:
            if connection is not None:
                await connection.close()
        logger.debug("Channel closed")

    async def bind(self, *resources: Queue | Exchange) -> list[Queue | Exchange]:
        """Return copies of *resources* bound to the shared channel."""
        channel = await self.get_channel()
        return [resource.with_channel(channel) for resource in resources]

    async def queue(self, name: str) -> Queue:
        return Queue(name, await self.get_channel())

    async def exchange(self, name: str = "amq.direct") -> Exchange:
        return Exchange(name, await self.get_channel())

    def consume(
        self,
        queue_name: str,
        *,
        prefetch_count: int | None = None,
        prefetch_size: int | None = None,
        consumer_tag: str | None = None,
        options: ConsumeOptions | None = None,
    ) -> ConsumerStream:
        """Stream deliveries from *queue_name* on the shared channel.

        A prefetch count or size, when given, is applied to the channel
        before the consumer is registered.
        """

        async def resolve() -> AbstractChannel:
            channel = await self.get_channel()
            if prefetch_count is not None or prefetch_size is not None:
                await channel.set_qos(
                    prefetch_count=prefetch_count or 0,
                    prefetch_size=prefetch_size or 0,
                )
            return channel

        return ConsumerStream(
            resolve, queue_name, consumer_tag=consumer_tag, options=options
        )

    async def produce(
        self,
        body: bytes,
        routing_key: str,
        exchange: str = "",
        headers: dict[str, Any] | None = None,
        delivery_mode: DeliveryMode = DeliveryMode.PERSISTENT,
    ) -> Any:
        """Publish one message on the shared channel."""
        target = Exchange(exchange, await self.get_channel())
        return await target.publish(body, routing_key, headers, delivery_mode)

    async def get(self, queue_name: str, no_ack: bool = False) -> Message | None:
        return await Queue(queue_name, await self.get_channel()).get(no_ack=no_ack)

    async def health_check(self) -> bool:
        """Return True if the cached channel and its connection are open."""
        if self._channel is None or self._connection is None:
            return False
        return not (self._channel.is_closed or self._connection.is_closed)

    async def __aenter__(self) -> RabbitMQClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()
