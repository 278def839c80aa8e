"""Tests for RetryPolicy and retry_or_dead_letter."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from conftest import make_raw_message
from pydantic import ValidationError

from cqrs_ddd_rabbitmq.message import HEADER_DELAY, HEADER_TRIED, Message
from cqrs_ddd_rabbitmq.retry import RetryPolicy, retry_or_dead_letter


def test_should_retry() -> None:
    policy = RetryPolicy(max_attempts=3)
    assert policy.should_retry(1) is True
    assert policy.should_retry(2) is True
    assert policy.should_retry(3) is False
    assert policy.should_retry(0) is False


def test_delay_for_attempt_exponential() -> None:
    policy = RetryPolicy(base_delay=1.0, max_delay=100.0, jitter=False)
    assert policy.delay_for_attempt(1) == 1.0
    assert policy.delay_for_attempt(2) == 2.0
    assert policy.delay_for_attempt(3) == 4.0
    assert policy.delay_for_attempt(10) == 100.0  # capped


def test_delay_with_jitter_in_range() -> None:
    policy = RetryPolicy(base_delay=2.0, max_delay=10.0, jitter=True)
    for _ in range(20):
        d = policy.delay_for_attempt(2)
        # tried 2 -> base_delay * 2^1 = 4.0; jitter 0.5..1.5 -> 2.0..6.0
        assert 2.0 <= d <= 6.0


def test_delay_header_in_milliseconds() -> None:
    policy = RetryPolicy(base_delay=1.5, max_delay=60.0, jitter=False)
    assert policy.delay_header(1) == 1500
    assert policy.delay_header(2) == 3000
    assert policy.delay_header(0) == 0


def test_invalid_max_attempts_raises() -> None:
    with pytest.raises(ValueError, match=r"max_attempts"):
        RetryPolicy(max_attempts=0)


def test_invalid_delays_raise() -> None:
    with pytest.raises(ValueError, match="base_delay"):
        RetryPolicy(base_delay=-0.1, max_delay=1.0)
    with pytest.raises(ValueError, match="max_delay"):
        RetryPolicy(base_delay=1.0, max_delay=-1.0)
    with pytest.raises(ValueError, match="base_delay must be <= max_delay"):
        RetryPolicy(base_delay=10.0, max_delay=1.0)


@pytest.mark.asyncio
async def test_retry_or_dead_letter_schedules_retry(channel: MagicMock) -> None:
    policy = RetryPolicy(max_attempts=3, base_delay=2.0, jitter=False)
    raw = make_raw_message(headers={HEADER_TRIED: 1})
    message = Message(channel, raw)

    assert await retry_or_dead_letter(message, policy) is True

    raw.reject.assert_awaited_once_with(requeue=False)
    channel.get_exchange.assert_awaited_once_with("direct.delayed", ensure=False)
    published = channel.exchange.publish.call_args.args[0]
    # second delivery -> 2.0 * 2^1 seconds
    assert published.headers[HEADER_DELAY] == 4000
    assert published.headers[HEADER_TRIED] == 2


@pytest.mark.asyncio
async def test_retry_or_dead_letter_gives_up(channel: MagicMock) -> None:
    policy = RetryPolicy(max_attempts=3, jitter=False)
    raw = make_raw_message(headers={HEADER_TRIED: 2})
    message = Message(channel, raw)

    assert await retry_or_dead_letter(message, policy, exchange="other") is False

    raw.reject.assert_awaited_once_with(requeue=False)
    channel.get_exchange.assert_not_awaited()
    channel.exchange.publish.assert_not_awaited()


def test_policy_is_immutable() -> None:
    policy = RetryPolicy(max_attempts=2)
    with pytest.raises(ValidationError):
        policy.max_attempts = 10  # type: ignore[misc]


def test_jitter_scales_capped_delay() -> None:
    policy = RetryPolicy(base_delay=1.0, max_delay=5.0, jitter=True)
    for _ in range(20):
        assert 2.5 <= policy.delay_for_attempt(8) <= 7.5
