"""Tests for retry, locking and logging helpers."""

from __future__ import annotations

import asyncio

import pytest

from outreach_engine.core.exceptions import MailboxError, TransientIOError, ValidationError
from outreach_engine.core.locks import KeyedLock
from outreach_engine.core.log_setup import get_logger, setup_logging
from outreach_engine.core.retry import RetryConfig, RetryExhausted, retry_async

FAST = RetryConfig(max_attempts=3, base_delay=0.01, max_delay=0.01, jitter=0.0)


class TestRetryAsync:
    """retry_async behaviour."""

    @pytest.mark.asyncio
    async def test_retries_transient_then_succeeds(self):
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise MailboxError("temporarily down")
            return "ok"

        assert await retry_async(flaky, config=FAST) == "ok"
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_exhausted(self):

        async def down():
            raise MailboxError("down")

        with pytest.raises(RetryExhausted) as exc_info:
            await retry_async(down, config=FAST)
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_error, MailboxError)
        assert isinstance(exc_info.value, TransientIOError)

    @pytest.mark.asyncio
    async def test_non_retryable_raised_immediately(self):
        calls = []

        async def invalid():
            calls.append(1)
            raise ValidationError("bad input")

        with pytest.raises(ValidationError):
            await retry_async(invalid, config=FAST)
        assert len(calls) == 1

    def test_delay_capped(self):
        config = RetryConfig(base_delay=1.0, max_delay=5.0, jitter=0.0)
        assert config.calculate_delay(1) == 1.0
        assert config.calculate_delay(3) == 4.0
        assert config.calculate_delay(10) == 5.0


class TestKeyedLock:
    """Per-key mutual exclusion."""

    @pytest.mark.asyncio
    async def test_same_key_serialized(self):
        locks = KeyedLock()
        order = []

        async def worker(name):
            async with locks.hold("c1"):
                order.append(f"{name}-start")
                await asyncio.sleep(0.01)
                order.append(f"{name}-end")

        await asyncio.gather(worker("a"), worker("b"))
        assert order in (
            ["a-start", "a-end", "b-start", "b-end"],
            ["b-start", "b-end", "a-start", "a-end"],
        )

    @pytest.mark.asyncio
    async def test_different_keys_parallel(self):
        locks = KeyedLock()
        inside = asyncio.Event()

        async def first():
            async with locks.hold("c1"):
                await asyncio.wait_for(inside.wait(), timeout=1)

        async def second():
            async with locks.hold("c2"):
                inside.set()

        await asyncio.gather(first(), second())

    @pytest.mark.asyncio
    async def test_idle_locks_dropped(self):
        locks = KeyedLock()
        async with locks.hold("c1"):
            assert locks.locked("c1")
        assert len(locks) == 0
        assert not locks.locked("c1")

    @pytest.mark.asyncio
    async def test_acquire_timeout(self):
        locks = KeyedLock(acquire_timeout=0.01)
        async with locks.hold("c1"):
            with pytest.raises(TransientIOError):
                async with locks.hold("c1"):
                    pass
        assert len(locks) == 0


class TestLogging:
    """Logger setup."""

    def test_configured_logger_accepts_context(self, capsys):
        setup_logging(level="INFO", json_output=True)
        log = get_logger("outreach_engine.test")

        log.info("Transition applied", client_id="c1", event_name="reply_detected")
        log.debug("Filtered out")

        out = capsys.readouterr().out
        assert '"event": "Transition applied"' in out
        assert '"event_name": "reply_detected"' in out
        assert "Filtered out" not in out
