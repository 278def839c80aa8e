"""RabbitMQ-specific exceptions for cqrs-ddd-rabbitmq."""

from __future__ import annotations


class RabbitMQError(Exception):
    """Root exception for errors raised by this package itself.

    Errors reported by the broker (via aio-pika) are not wrapped and reach
    the caller unchanged.
    """


class RabbitMQConnectionError(RabbitMQError):
    """Raised when an operation needs a channel that is missing or gone."""


class ChannelNotBoundError(RabbitMQConnectionError):
    """Raised when a queue or exchange declarator is used without a channel."""

    def __init__(self, resource: str) -> None:
        self.resource = resource
        super().__init__(
            f"{resource} is not bound to a channel; use RabbitMQClient.bind() "
            "or with_channel() first"
        )


class ChannelClosedError(RabbitMQConnectionError):
    """Raised on a consumer stream whose channel closed while streaming."""


class InvalidHeaderError(RabbitMQError, TypeError):
    """Raised when a non-scalar value is set as a message header."""


class RepublishError(RabbitMQError):
    """Raised when a message was rejected but could not be republished.

    The reject is not rolled back: the broker has already dropped (or
    dead-lettered) the delivery, so the message is lost unless the caller
    recovers it from ``body`` and ``headers``.
    """

    def __init__(
        self,
        message: str,
        *,
        delivery_tag: int | None = None,
        exchange: str = "",
        routing_key: str = "",
        body: bytes = b"",
        headers: dict[str, object] | None = None,
    ) -> None:
        self.delivery_tag = delivery_tag
        self.exchange = exchange
        self.routing_key = routing_key
        self.body = body
        self.headers = dict(headers or {})
        super().__init__(message)
