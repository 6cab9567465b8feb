"""
Rate-limited dispatcher: bounded concurrency plus a minimum delay per call.

Every remote operation (list, delete, stat) goes through `submit`. At most
`max_concurrent` operations run at once; queued submissions start in FIFO
order, and each one sleeps `min_delay_ms` after getting its slot before
calling the transport. The dispatcher schedules only; it never retries.
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, TypeVar

from shared.logging import get_logger

if TYPE_CHECKING:
    from shared.config import AppConfig

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_MAX_CONCURRENT = 5
DEFAULT_MIN_DELAY_MS = 100


@dataclass(frozen=True)
class DispatcherConfig:
    max_concurrent: int = DEFAULT_MAX_CONCURRENT
    min_delay_ms: int = DEFAULT_MIN_DELAY_MS

    def __post_init__(self) -> None:
        if self.max_concurrent < 1:
            raise ValueError(f"max_concurrent must be >= 1, got {self.max_concurrent}")
        if self.min_delay_ms < 0:
            raise ValueError(f"min_delay_ms must be >= 0, got {self.min_delay_ms}")

    @classmethod
    def from_config(cls, config: AppConfig) -> "DispatcherConfig":
        return cls(
            max_concurrent=config.rate_limit_concurrent,
            min_delay_ms=config.rate_limit_delay_ms,
        )


class RateLimitedDispatcher:
    """Thread-pool backed scheduler for remote calls."""

    def __init__(
        self,
        config: DispatcherConfig | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config or DispatcherConfig()
        self._sleep = sleep
        self._pool = ThreadPoolExecutor(
            max_workers=self.config.max_concurrent,
            thread_name_prefix="dispatch",
        )
        self._local = threading.local()
        self._lock = threading.Lock()
        self._in_flight = 0
        self._peak_in_flight = 0

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def peak_in_flight(self) -> int:
        return self._peak_in_flight

    def submit(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> Future[T]:
        """
        Schedule fn(*args, **kwargs); the returned Future carries its result or error.

        Called from inside a dispatched operation, fn runs inline in the
        slot the caller already waited for, so nested calls cannot exhaust
        the pool.
        """
        if getattr(self._local, "active", False):
            future: Future[T] = Future()
            try:
                future.set_result(fn(*args, **kwargs))
            except Exception as e:
                future.set_exception(e)
            return future
        return self._pool.submit(self._run, fn, args, kwargs)

    def call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Submit and wait; errors propagate to the caller."""
        return self.submit(fn, *args, **kwargs).result()

    def shutdown(self, wait: bool = True, *, cancel_pending: bool = False) -> None:
        self._pool.shutdown(wait=wait, cancel_futures=cancel_pending)

    def __enter__(self) -> "RateLimitedDispatcher":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    def _run(self, fn: Callable[..., T], args: tuple, kwargs: dict) -> T:
        self._local.active = True
        try:
            self._sleep(self.config.min_delay_ms / 1000.0)
            with self._lock:
                self._in_flight += 1
                self._peak_in_flight = max(self._peak_in_flight, self._in_flight)
            try:
                return fn(*args, **kwargs)
            finally:
                with self._lock:
                    self._in_flight -= 1
        finally:
            self._local.active = False
