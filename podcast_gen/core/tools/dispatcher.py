"""Bounded, paced dispatch of calls to external services."""

import asyncio
import inspect
import threading
import time
from typing import Any, Awaitable, Callable, List, Sequence, Tuple

from loguru import logger

from podcast_gen.core.configs.config import settings


class RateLimitedDispatcher:
    """Run calls to an external service with bounded concurrency and a minimum
    interval between request starts.

    One dispatcher is created per service (or per group of services sharing a quota)
    and passed to every component that talks to it. Sync callers use ``call``; async
    callers use ``submit``, which accepts both plain and coroutine functions. Both paths
    share the same slots and clock, so the bounds hold across them.

    Args:
        max_concurrency: Maximum number of calls in flight
        min_interval: Minimum number of seconds between two call starts
        name: Name used in logs

    Example:
        >>> dispatcher = RateLimitedDispatcher(max_concurrency=2, min_interval=0.5, name="freesound")
        >>> response = dispatcher.call(requests.get, url, timeout=30)
        >>> results = asyncio.run(dispatcher.gather([(fetch, (url,)) for url in urls]))
    """

    def __init__(self, max_concurrency: int = 1, min_interval: float = 0.0, name: str = "default") -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if min_interval < 0:
            raise ValueError("min_interval must not be negative")
        self.name = name
        self.max_concurrency = max_concurrency
        self.min_interval = min_interval
        self._slots = threading.BoundedSemaphore(max_concurrency)
        self._clock = threading.Lock()
        self._last_start: float | None = None
        self.dispatched = 0

    @classmethod
    def from_settings(cls, name: str = "default") -> "RateLimitedDispatcher":
        return cls(
            max_concurrency=settings.max_concurrent_requests,
            min_interval=settings.min_request_interval,
            name=name,
        )

    def _acquire(self) -> None:
        self._slots.acquire()
        # Starts are serialized by the clock so that the interval holds between any two calls.
        with self._clock:
            if self._last_start is not None:
                wait = self.min_interval - (time.monotonic() - self._last_start)
                if wait > 0:
                    logger.debug(f"[{self.name}] pacing request, waiting {wait:.2f}s")
                    time.sleep(wait)
            self._last_start = time.monotonic()
            self.dispatched += 1

    def _release(self) -> None:
        self._slots.release()

    def _release_acquired(self, acquiring: "asyncio.Future[None]") -> None:
        if not acquiring.cancelled() and acquiring.exception() is None:
            logger.debug(f"[{self.name}] caller cancelled while waiting, slot released")
            self._release()

    def call(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run a blocking call once a slot is free and the interval has elapsed."""
        self._acquire()
        try:
            return func(*args, **kwargs)
        finally:
            self._release()

    async def submit(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run ``func`` from async code. Blocking functions run in a worker thread."""
        if inspect.iscoroutinefunction(func):
            acquiring = asyncio.ensure_future(asyncio.to_thread(self._acquire))
            try:
                await asyncio.shield(acquiring)
            except asyncio.CancelledError:
                # The worker thread cannot be interrupted; hand its slot back once it gets one.
                acquiring.add_done_callback(self._release_acquired)
                raise
            try:
                return await func(*args, **kwargs)
            finally:
                self._release()
        return await asyncio.to_thread(self.call, func, *args, **kwargs)

    async def gather(
        self, calls: Sequence[Tuple[Callable[..., Any], Tuple[Any, ...]]]
    ) -> List[Any]:
        """Submit every ``(func, args)`` pair and wait for all of them.

        Exceptions are returned in place of results, so one failed call does not
        cancel its siblings.
        """
        tasks: List[Awaitable[Any]] = [self.submit(func, *args) for func, args in calls]
        return await asyncio.gather(*tasks, return_exceptions=True)
