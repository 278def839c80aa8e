"""RabbitMQ client for CQRS/DDD: shared channel, consumer streams, message retries."""

from __future__ import annotations

from aio_pika import DeliveryMode, ExchangeType

from .client import ChannelState, RabbitMQClient
from .config import (
    ConnectionConfig,
    ConsumeOptions,
    DeleteOptions,
    ExchangeOptions,
    QueueOptions,
)
from .consumer import ConsumerStream
from .exceptions import (
    ChannelClosedError,
    ChannelNotBoundError,
    InvalidHeaderError,
    RabbitMQConnectionError,
    RabbitMQError,
    RepublishError,
)
from .message import HEADER_DELAY, HEADER_LABELS, HEADER_TRIED, Message
from .resources import Exchange, Queue
from .retry import RetryPolicy, retry_or_dead_letter

__all__ = [
    "HEADER_DELAY",
    "HEADER_LABELS",
    "HEADER_TRIED",
    "ChannelClosedError",
    "ChannelNotBoundError",
    "ChannelState",
    "ConnectionConfig",
    "ConsumeOptions",
    "ConsumerStream",
    "DeleteOptions",
    "DeliveryMode",
    "Exchange",
    "ExchangeOptions",
    "ExchangeType",
    "InvalidHeaderError",
    "Message",
    "Queue",
    "QueueOptions",
    "RabbitMQClient",
    "RabbitMQConnectionError",
    "RabbitMQError",
    "RepublishError",
    "RetryPolicy",
    "retry_or_dead_letter",
]
