import random

import pytest
import requests

from podcast_gen.core.tools.errors import CollaboratorError, ErrorKind
from podcast_gen.core.tools.retry import RetryPolicy, call_with_retries, retry


class Flaky:
    def __init__(self, failures, result="ok"):
        self.failures = list(failures)
        self.result = result
        self.calls = 0

    def __call__(self, *args, **kwargs):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.result


def test_transient_failures_are_retried():
    func = Flaky([requests.Timeout(), requests.ConnectionError()])
    delays = []

    result = call_with_retries(
        func, layer="Music search", policy=RetryPolicy(attempts=3, initial_delay=1.0, jitter=0.0), sleep=delays.append
    )

    assert result == "ok"
    assert func.calls == 3
    assert delays == [1.0, 2.0]


def test_non_retryable_failure_is_raised_at_once():
    func = Flaky([ValueError("bad request")])

    with pytest.raises(CollaboratorError) as excinfo:
        call_with_retries(func, layer="Stock photo search", policy=RetryPolicy(attempts=5), sleep=lambda _: None)

    assert func.calls == 1
    assert excinfo.value.kind == ErrorKind.FATAL
    assert excinfo.value.layer == "Stock photo search"


def test_exhausted_attempts_raise_with_layer():
    response = requests.Response()
    response.status_code = 429
    func = Flaky([requests.HTTPError(response=response)] * 4)

    with pytest.raises(CollaboratorError) as excinfo:
        call_with_retries(func, layer="Sound effect search", policy=RetryPolicy(attempts=3), sleep=lambda _: None)

    assert func.calls == 3
    assert excinfo.value.kind == ErrorKind.RATE_LIMITED
    assert str(excinfo.value).startswith("Sound effect search failed")


def test_delay_is_capped_and_jittered():
    policy = RetryPolicy(initial_delay=5.0, max_delay=60.0, backoff_base=2.0, jitter=0.4)
    rng = random.Random(7)

    for attempt in range(8):
        base = min(60.0, 5.0 * 2**attempt)
        delay = policy.delay(attempt, rng)
        assert base * 0.6 <= delay <= base * 1.4


def test_retry_decorator_on_async_function():
    import asyncio

    calls = []

    @retry("Image generation", policy=RetryPolicy(attempts=2, initial_delay=0.0, jitter=0.0))
    async def generate(prompt):
        calls.append(prompt)
        if len(calls) == 1:
            raise requests.ConnectionError("connection reset")
        return prompt.upper()

    assert asyncio.run(generate("tea")) == "TEA"
    assert calls == ["tea", "tea"]
