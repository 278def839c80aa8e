"""Message — one broker delivery plus its acknowledgement and retry operations."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

import aio_pika

from .exceptions import InvalidHeaderError, RepublishError

if TYPE_CHECKING:
    from aio_pika.abc import AbstractChannel, AbstractExchange, AbstractIncomingMessage

logger = logging.getLogger(__name__)

HEADER_TRIED = "tried"
HEADER_LABELS = "labels"
HEADER_DELAY = "x-delay"

DEFAULT_DELAY_EXCHANGE = "direct.delayed"

_SCALAR_TYPES = (str, bytes, int, float, bool)


def _decode_labels(raw: Any) -> dict[str, Any]:
    """Decode the JSON ``labels`` header; anything malformed yields no labels."""
    if raw is None:
        return {}
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = bytes(raw).decode("utf-8")
        except UnicodeDecodeError:
            return {}
    if not isinstance(raw, str):
        return {}
    try:
        labels = json.loads(raw)
    except ValueError:
        return {}
    return labels if isinstance(labels, dict) else {}


def _next_tried(raw: Any) -> int:
    if isinstance(raw, bool):
        return 1
    try:
        return int(raw) + 1
    except (TypeError, ValueError):
        return 1


async def _exchange_for(channel: AbstractChannel, name: str) -> AbstractExchange:
    if not name:
        return channel.default_exchange
    return await channel.get_exchange(name, ensure=False)


class Message:
    """Envelope around an aio-pika incoming message.

    Every construction counts as a delivery attempt: the ``tried`` header is
    incremented by one, whether or not the message is ever retried. The
    ``labels`` header carries a JSON object of structured labels.

    Exactly one disposition (``ack``, ``nack``, ``reject``, ``retry_later``
    or ``reject_to_bottom``) may be issued per envelope; issuing a second
    one on the same delivery is a caller error.
    """

    def __init__(self, channel: AbstractChannel, raw: AbstractIncomingMessage) -> None:
        self._channel = channel
        self._raw = raw

        self.consumer_tag: str | None = raw.consumer_tag
        self.delivery_tag: int | None = raw.delivery_tag
        self.redelivered: bool = bool(raw.redelivered)
        self.exchange: str = raw.exchange or ""
        self.routing_key: str = raw.routing_key or ""
        self.body: bytes = raw.body

        headers: dict[str, Any] = dict(raw.headers or {})
        self._had_labels = HEADER_LABELS in headers
        self._labels = _decode_labels(headers.pop(HEADER_LABELS, None))
        headers[HEADER_TRIED] = _next_tried(headers.get(HEADER_TRIED))
        self._headers = headers

    def __repr__(self) -> str:
        return (
            f"<Message delivery_tag={self.delivery_tag!r} "
            f"routing_key={self.routing_key!r} tried={self.tried}>"
        )

    @property
    def channel(self) -> AbstractChannel:
        return self._channel

    @property
    def raw(self) -> AbstractIncomingMessage:
        return self._raw

    @property
    def tried(self) -> int:
        return int(self._headers[HEADER_TRIED])

    @property
    def labels(self) -> dict[str, Any]:
        return dict(self._labels)

    @property
    def headers(self) -> dict[str, Any]:
        """Current headers, with labels JSON-encoded under ``labels``."""
        headers = dict(self._headers)
        if self._labels or self._had_labels:
            headers[HEADER_LABELS] = json.dumps(self._labels)
        return headers

    def header(self, name: str, default: Any = None) -> Any:
        if name == HEADER_LABELS:
            return self.headers.get(name, default)
        return self._headers.get(name, default)

    def add_header(self, name: str, value: Any) -> Message:
        """Set a scalar header that will travel with any republish."""
        if not isinstance(value, _SCALAR_TYPES):
            raise InvalidHeaderError(
                f"Header must be a scalar value, {type(value).__name__} given"
            )
        if name == HEADER_LABELS:
            self._had_labels = True
            self._labels = _decode_labels(value)
        else:
            self._headers[name] = value
        return self

    def label(self, name: str, default: Any = None) -> Any:
        return self._labels.get(name, default)

    def set_label(self, name: str, value: Any) -> Message:
        self._labels[name] = value
        return self

    async def ack(self) -> None:
        """Confirm processing; the broker drops the message for good."""
        await self._raw.ack()

    async def nack(self, requeue: bool = True) -> None:
        """Refuse the message. With ``requeue`` it goes back to the head of the
        queue and is delivered next; without, it is dropped or dead-lettered."""
        await self._raw.nack(requeue=requeue)

    async def reject(self, requeue: bool = True) -> None:
        await self._raw.reject(requeue=requeue)

    async def retry_later(
        self, delay: int, exchange: str = DEFAULT_DELAY_EXCHANGE
    ) -> None:
        """Reject, then republish to a delayed-message exchange.

        ``delay`` is written as-is into the ``x-delay`` header; the broker's
        delayed exchange holds the copy before routing it with the original
        routing key. Nothing is timed locally.
        """
        headers = {**self.headers, HEADER_DELAY: delay}
        await self.reject(requeue=False)
        await self._republish(exchange, headers)

    async def reject_to_bottom(self) -> None:
        """Reject, then republish to the original exchange and routing key,
        placing the message at the tail of its queue."""
        headers = self.headers
        await self.reject(requeue=False)
        await self._republish(self.exchange, headers)

    async def _republish(self, exchange_name: str, headers: dict[str, Any]) -> None:
        message = aio_pika.Message(
            body=self.body,
            headers=headers,
            content_type=self._raw.content_type,
            content_encoding=self._raw.content_encoding,
            delivery_mode=self._raw.delivery_mode,
        )
        try:
            exchange = await _exchange_for(self._channel, exchange_name)
            await exchange.publish(message, routing_key=self.routing_key)
        except Exception as e:
            logger.warning(
                "Delivery %s was rejected but republishing to %r failed: %s",
                self.delivery_tag,
                exchange_name,
                e,
            )
            raise RepublishError(
                f"Rejected delivery {self.delivery_tag} could not be "
                f"republished to exchange {exchange_name!r}: {e}",
                delivery_tag=self.delivery_tag,
                exchange=exchange_name,
                routing_key=self.routing_key,
                body=self.body,
                headers=headers,
            ) from e
