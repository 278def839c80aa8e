"""ConsumerStream — bridges aio-pika's push delivery callback into ``async for``."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from .config import ConsumeOptions
from .exceptions import ChannelClosedError
from .message import Message

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from types import TracebackType

    from aio_pika.abc import AbstractChannel, AbstractIncomingMessage, AbstractQueue

logger = logging.getLogger(__name__)

_END = object()


class ConsumerStream:
    """Cancellable, unbounded async iterator of :class:`Message` for one queue.

    Registration with the broker happens on first iteration (or ``start()`` /
    ``async with``). A failure to obtain the channel or to register the
    consumer is raised from that first step and nothing is ever yielded.

    Deliveries are yielded in the order the broker pushes them. If the
    channel closes while streaming, messages already received are still
    yielded, then :class:`ChannelClosedError` is raised.

    ``aclose()`` stops forwarding and cancels this stream's consumer at the
    broker; other consumers on the same channel keep running. Unless the
    stream consumes with ``no_ack``, deliveries it received but never yielded
    are nacked back onto the queue.
    """

    def __init__(
        self,
        resolve_channel: Callable[[], Awaitable[AbstractChannel]],
        queue_name: str,
        *,
        consumer_tag: str | None = None,
        options: ConsumeOptions | None = None,
    ) -> None:
        self._resolve_channel = resolve_channel
        self._queue_name = queue_name
        self._requested_tag = consumer_tag
        self._options = options or ConsumeOptions()

        self._buffer: asyncio.Queue[Any] = asyncio.Queue()
        self._channel: AbstractChannel | None = None
        self._queue: AbstractQueue | None = None
        self._consumer_tag: str | None = None
        self._started = False
        self._closed = False
        self._start_lock = asyncio.Lock()

    @property
    def queue_name(self) -> str:
        return self._queue_name

    @property
    def consumer_tag(self) -> str | None:
        """Broker consumer tag, known once the stream has started."""
        return self._consumer_tag

    @property
    def closed(self) -> bool:
        return self._closed

    async def start(self) -> ConsumerStream:
        """Register the consumer. Idempotent."""
        async with self._start_lock:
            if self._closed:
                raise ChannelClosedError(
                    f"Consumer stream for queue {self._queue_name!r} is closed"
                )
            if self._started:
                return self
            try:
                await self._register()
            except BaseException:
                self._closed = True
                raise
            self._started = True
        return self

    async def _register(self) -> None:
        options = self._options
        if options.no_local or options.no_wait:
            logger.warning(
                "no_local/no_wait are not sent by aio-pika; ignored for queue %r",
                self._queue_name,
            )

        channel = await self._resolve_channel()
        queue = await channel.get_queue(self._queue_name, ensure=False)
        self._channel = channel
        self._queue = queue

        channel.close_callbacks.add(self._on_channel_close)
        try:
            self._consumer_tag = await queue.consume(
                self._on_message,
                no_ack=options.no_ack,
                exclusive=options.exclusive,
                arguments=options.arguments,
                consumer_tag=self._requested_tag,
            )
        except BaseException:
            channel.close_callbacks.discard(self._on_channel_close)
            raise
        logger.debug(
            "Consumer %s registered on queue %r", self._consumer_tag, self._queue_name
        )

    async def _on_message(self, raw: AbstractIncomingMessage) -> None:
        channel = self._channel
        if channel is None:
            return
        if self._closed:
            # Arrived before the broker processed basic.cancel.
            if self._needs_requeue(channel):
                await raw.nack(requeue=True)
            return
        self._buffer.put_nowait(Message(channel, raw))

    def _needs_requeue(self, channel: AbstractChannel) -> bool:
        return not self._options.no_ack and not channel.is_closed

    def _on_channel_close(self, *args: Any) -> None:
        if self._closed:
            return
        exc = next((a for a in args if isinstance(a, BaseException)), None)
        error = ChannelClosedError(
            f"Channel closed while consuming queue {self._queue_name!r}"
        )
        error.__cause__ = exc
        self._buffer.put_nowait(error)

    def __aiter__(self) -> ConsumerStream:
        return self

    async def __anext__(self) -> Message:
        if not self._started and not self._closed:
            await self.start()
        if self._closed:
            raise StopAsyncIteration

        item = await self._buffer.get()
        if item is _END:
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            await self._shutdown(cancel=False)
            raise item
        return item

    async def aclose(self) -> None:
        """Stop forwarding deliveries and cancel the broker consumer."""
        await self._shutdown(cancel=True)

    async def _shutdown(self, *, cancel: bool) -> None:
        if self._closed:
            return
        self._closed = True
        unyielded = self._drain()
        self._buffer.put_nowait(_END)

        channel, queue, tag = self._channel, self._queue, self._consumer_tag
        if channel is None or queue is None:
            return
        channel.close_callbacks.discard(self._on_channel_close)
        if cancel and tag is not None and not channel.is_closed:
            await queue.cancel(tag)
            logger.debug("Consumer %s cancelled on queue %r", tag, self._queue_name)

        if unyielded and self._needs_requeue(channel):
            for message in unyielded:
                await message.nack(requeue=True)
            logger.debug(
                "Requeued %d unyielded deliveries from queue %r",
                len(unyielded),
                self._queue_name,
            )

    def _drain(self) -> list[Message]:
        drained: list[Message] = []
        while not self._buffer.empty():
            item = self._buffer.get_nowait()
            if isinstance(item, Message):
                drained.append(item)
        return drained

    async def __aenter__(self) -> ConsumerStream:
        return await self.start()

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()
