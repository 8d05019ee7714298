"""Unit tests for caller-side retry."""

import pytest

from tarot_oracle.exceptions import AdmissionDenied, QueueTimeout
from tarot_oracle.retry import with_transient_retry


@pytest.mark.asyncio
async def test_retries_queue_timeout_until_success():
    calls = 0

    @with_transient_retry("test", max_retries=3, min_wait=0, max_wait=0)
    async def flaky():
        nonlocal calls
        calls += 1
        if calls < 3:
            raise QueueTimeout(1)
        return "ok"

    assert await flaky() == "ok"
    assert calls == 3


@pytest.mark.asyncio
async def test_reraises_after_last_attempt():
    calls = 0

    @with_transient_retry("test", max_retries=2, min_wait=0, max_wait=0)
    async def always_slow():
        nonlocal calls
        calls += 1
        raise ConnectionError("gone")

    with pytest.raises(ConnectionError):
        await always_slow()
    assert calls == 2


@pytest.mark.asyncio
async def test_does_not_retry_admission_denial():
    calls = 0

    @with_transient_retry("test", max_retries=3, min_wait=0, max_wait=0)
    async def limited():
        nonlocal calls
        calls += 1
        raise AdmissionDenied("oracle", 10, 60, 30)

    with pytest.raises(AdmissionDenied):
        await limited()
    assert calls == 1
