"""Queue and Exchange declarators bound to a channel."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import aio_pika
from aio_pika import DeliveryMode, ExchangeType

from .config import ConsumeOptions, DeleteOptions, ExchangeOptions, QueueOptions
from .consumer import ConsumerStream
from .exceptions import ChannelNotBoundError
from .message import Message

if TYPE_CHECKING:
    from aio_pika.abc import AbstractChannel, AbstractExchange, AbstractQueue

DEFAULT_EXCHANGE = "amq.direct"


@dataclass(frozen=True)
class Queue:
    """A named queue on a channel.

    Immutable: rebinding to another channel returns a new ``Queue``.
    """

    name: str
    channel: AbstractChannel | None = dataclasses.field(
        default=None, repr=False, compare=False
    )

    def with_channel(self, channel: AbstractChannel) -> Queue:
        return dataclasses.replace(self, channel=channel)

    def _require_channel(self) -> AbstractChannel:
        if self.channel is None:
            raise ChannelNotBoundError(f"Queue {self.name!r}")
        return self.channel

    async def _queue(self) -> AbstractQueue:
        return await self._require_channel().get_queue(self.name, ensure=False)

    async def declare(self, options: QueueOptions | None = None) -> AbstractQueue:
        """Declare the queue; durable by default."""
        opts = options or QueueOptions()
        return await self._require_channel().declare_queue(
            self.name,
            passive=opts.passive,
            durable=opts.durable,
            exclusive=opts.exclusive,
            auto_delete=opts.auto_delete,
            arguments=opts.arguments,
        )

    async def bind(self, routing_key: str, exchange: str = DEFAULT_EXCHANGE) -> Any:
        queue = await self._queue()
        return await queue.bind(exchange, routing_key=routing_key)

    async def unbind(self, routing_key: str, exchange: str = DEFAULT_EXCHANGE) -> Any:
        queue = await self._queue()
        return await queue.unbind(exchange, routing_key=routing_key)

    async def purge(self) -> Any:
        queue = await self._queue()
        return await queue.purge()

    async def delete(self, options: DeleteOptions | None = None) -> Any:
        opts = options or DeleteOptions()
        queue = await self._queue()
        return await queue.delete(if_unused=opts.if_unused, if_empty=opts.if_empty)

    async def set_qos(
        self, prefetch_count: int | None = None, prefetch_size: int | None = None
    ) -> Any:
        """Apply QoS to the whole channel, not just this queue."""
        return await self._require_channel().set_qos(
            prefetch_count=prefetch_count or 0,
            prefetch_size=prefetch_size or 0,
        )

    def consume(
        self,
        consumer_tag: str | None = None,
        options: ConsumeOptions | None = None,
    ) -> ConsumerStream:
        channel = self._require_channel()

        async def resolve() -> AbstractChannel:
            return channel

        return ConsumerStream(
            resolve, self.name, consumer_tag=consumer_tag, options=options
        )

    async def get(self, no_ack: bool = False) -> Message | None:
        """Pop one message, or return None if the queue is empty."""
        channel = self._require_channel()
        queue = await channel.get_queue(self.name, ensure=False)
        raw = await queue.get(no_ack=no_ack, fail=False)
        if raw is None:
            return None
        return Message(channel, raw)


@dataclass(frozen=True)
class Exchange:
    """A named exchange on a channel. The empty name is the default exchange."""

    name: str = DEFAULT_EXCHANGE
    channel: AbstractChannel | None = dataclasses.field(
        default=None, repr=False, compare=False
    )

    def with_channel(self, channel: AbstractChannel) -> Exchange:
        return dataclasses.replace(self, channel=channel)

    def _require_channel(self) -> AbstractChannel:
        if self.channel is None:
            raise ChannelNotBoundError(f"Exchange {self.name!r}")
        return self.channel

    async def _exchange(self) -> AbstractExchange:
        channel = self._require_channel()
        if not self.name:
            return channel.default_exchange
        return await channel.get_exchange(self.name, ensure=False)

    async def declare(
        self,
        kind: ExchangeType | str = ExchangeType.DIRECT,
        options: ExchangeOptions | None = None,
    ) -> AbstractExchange:
        opts = options or ExchangeOptions()
        return await self._require_channel().declare_exchange(
            self.name,
            kind,
            passive=opts.passive,
            durable=opts.durable,
            auto_delete=opts.auto_delete,
            internal=opts.internal,
            arguments=opts.arguments,
        )

    async def publish(
        self,
        body: bytes,
        routing_key: str,
        headers: dict[str, Any] | None = None,
        delivery_mode: DeliveryMode = DeliveryMode.PERSISTENT,
    ) -> Any:
        """Publish ``body``; persisted to disk by the broker unless
        ``DeliveryMode.NOT_PERSISTENT`` is passed."""
        exchange = await self._exchange()
        return await exchange.publish(
            aio_pika.Message(
                body=body,
                headers=dict(headers or {}),
                delivery_mode=delivery_mode,
            ),
            routing_key=routing_key,
        )

    async def delete(self, if_unused: bool = False) -> Any:
        exchange = await self._exchange()
        return await exchange.delete(if_unused=if_unused)
