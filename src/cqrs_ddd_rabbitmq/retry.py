"""RetryPolicy — cap and space out redeliveries using the ``tried`` counter."""

from __future__ import annotations

import logging
import random
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .message import DEFAULT_DELAY_EXCHANGE

if TYPE_CHECKING:
    from .message import Message

logger = logging.getLogger(__name__)


class RetryPolicy(BaseModel):
    """How many times a delivery may be tried and how long to wait in between.

    ``tried`` is the envelope's delivery count, so the first delivery is 1.
    The wait after delivery *n* doubles from ``base_delay`` and stops growing
    at ``max_delay``. With ``jitter`` each wait is scaled by a random factor
    between 0.5 and 1.5 so that failed batches do not come back in lockstep.
    """

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=5, ge=1)
    base_delay: float = Field(default=1.0, ge=0)
    max_delay: float = Field(default=60.0, ge=0)
    jitter: bool = True

    @model_validator(mode="after")
    def check_delay_bounds(self) -> RetryPolicy:
        if self.base_delay > self.max_delay:
            raise ValueError("base_delay must be <= max_delay")
        return self

    def should_retry(self, tried: int) -> bool:
        return 0 < tried < self.max_attempts

    def delay_for_attempt(self, tried: int) -> float:
        """Seconds to wait before redelivering a message tried *tried* times."""
        if tried <= 0:
            return 0.0
        backoff = min(self.base_delay * 2 ** (tried - 1), self.max_delay)
        if not self.jitter:
            return float(backoff)
        return backoff * random.uniform(0.5, 1.5)  # noqa: S311

    def delay_header(self, tried: int) -> int:
        """Delay for *tried* in milliseconds, the unit ``x-delay`` is read in."""
        return round(self.delay_for_attempt(tried) * 1000)


async def retry_or_dead_letter(
    message: Message,
    policy: RetryPolicy,
    exchange: str = DEFAULT_DELAY_EXCHANGE,
) -> bool:
    """Schedule a delayed redelivery, or give up once the policy is exhausted.

    Returns True if the message was republished through *exchange*; False if
    it was rejected without requeue, leaving it to the queue's dead-letter
    exchange if one is configured.
    """
    tried = message.tried
    if policy.should_retry(tried):
        await message.retry_later(policy.delay_header(tried), exchange)
        return True
    logger.debug(
        "Delivery %s exhausted %d attempts; rejecting", message.delivery_tag, tried
    )
    await message.reject(requeue=False)
    return False
