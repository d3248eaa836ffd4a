import asyncio
import functools
import inspect
import random
import time
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger
from pydantic import BaseModel, Field

from podcast_gen.core.configs.config import settings
from podcast_gen.core.tools.errors import as_collaborator_error

T = TypeVar("T")


class RetryPolicy(BaseModel):
    """Exponential backoff with jitter for retryable upstream failures.

    Attributes:
        attempts: Total number of attempts, including the first one
        initial_delay: Delay before the first retry, in seconds
        max_delay: Upper bound of any single delay
        backoff_base: Multiplier applied per retry
        jitter: Relative jitter, a delay d becomes d * (1 ± jitter)
    """

    attempts: int = Field(default=3, ge=1)
    initial_delay: float = Field(default=5.0, ge=0)
    max_delay: float = Field(default=60.0, ge=0)
    backoff_base: float = Field(default=2.0, ge=1)
    jitter: float = Field(default=0.4, ge=0, le=1)

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            attempts=settings.retry_attempts,
            initial_delay=settings.retry_initial_delay,
            max_delay=settings.retry_max_delay,
            backoff_base=settings.retry_backoff_base,
            jitter=settings.retry_jitter,
        )

    def delay(self, attempt: int, rng: random.Random | None = None) -> float:
        """Delay to wait after the failed ``attempt`` (0-based)."""
        base = min(self.max_delay, self.initial_delay * (self.backoff_base**attempt))
        spread = (rng or random).uniform(-self.jitter, self.jitter)
        return max(0.0, base * (1 + spread))


def call_with_retries(
    func: Callable[..., T],
    *args: Any,
    layer: str,
    policy: RetryPolicy | None = None,
    sleep: Callable[[float], None] = time.sleep,
    **kwargs: Any,
) -> T:
    """Call ``func`` and retry it on retryable failures.

    Args:
        func: The callable to invoke
        layer: Collaborator name used in logs and in the raised error
        policy: Retry policy, defaults to the configured one
        sleep: Sleep function, replaceable in tests

    Returns:
        The value returned by ``func``

    Raises:
        CollaboratorError: When the failure is not retryable or attempts are exhausted
    """
    policy = policy or RetryPolicy.from_settings()
    for attempt in range(policy.attempts - 1):
        try:
            return func(*args, **kwargs)
        except Exception as e:
            error = as_collaborator_error(e, layer)
            if not error.retryable:
                logger.error(f"{layer} failed with a non-retryable error: {e}")
                raise error from e
            wait_time = policy.delay(attempt)
            logger.warning(
                f"{layer} attempt {attempt + 1}/{policy.attempts} failed ({error.kind.value}): {e}. "
                f"Retrying in {wait_time:.1f}s..."
            )
            sleep(wait_time)

    try:
        return func(*args, **kwargs)
    except Exception as e:
        logger.error(f"{layer} failed after {policy.attempts}/{policy.attempts} attempts: {e}")
        raise as_collaborator_error(e, layer) from e


async def async_call_with_retries(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    layer: str,
    policy: RetryPolicy | None = None,
    **kwargs: Any,
) -> T:
    """Async counterpart of ``call_with_retries``."""
    policy = policy or RetryPolicy.from_settings()
    for attempt in range(policy.attempts - 1):
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            error = as_collaborator_error(e, layer)
            if not error.retryable:
                logger.error(f"{layer} failed with a non-retryable error: {e}")
                raise error from e
            wait_time = policy.delay(attempt)
            logger.warning(
                f"{layer} attempt {attempt + 1}/{policy.attempts} failed ({error.kind.value}): {e}. "
                f"Retrying in {wait_time:.1f}s..."
            )
            await asyncio.sleep(wait_time)

    try:
        return await func(*args, **kwargs)
    except Exception as e:
        logger.error(f"{layer} failed after {policy.attempts}/{policy.attempts} attempts: {e}")
        raise as_collaborator_error(e, layer) from e


def retry(layer: str, policy: RetryPolicy | None = None) -> Callable:
    """Retry decorator for sync and async functions.

    Example:
        >>> @retry("Music search")
        ... def search(keywords):
        ...     ...
    """

    def decorator(func: Callable) -> Callable:
        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def wrapper(*args, **kwargs):
                return await async_call_with_retries(func, *args, layer=layer, policy=policy, **kwargs)

            return wrapper

        @functools.wraps(func)
        def wrapper_sync(*args, **kwargs):
            return call_with_retries(func, *args, layer=layer, policy=policy, **kwargs)

        return wrapper_sync

    return decorator
