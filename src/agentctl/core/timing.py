"""Clocks, deadlines and bounded waits.

Every wait in the deployment engine goes through a :class:`Clock` so that
polling loops and stabilization delays can be cancelled and so tests can
substitute a clock that does not actually sleep.
"""

import concurrent.futures
import signal
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Protocol, TypeVar

from agentctl.core.exceptions import Cancelled

T = TypeVar("T")


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class Clock(Protocol):
    """Monotonic time source with an interruptible sleep."""

    def monotonic(self) -> float: ...

    def sleep(self, seconds: float) -> None: ...


class SystemClock:
    """Wall clock backed by ``time.monotonic`` and a cancellable event."""

    def __init__(self) -> None:
        self._cancelled = threading.Event()

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        """Sleep for ``seconds`` unless cancelled first.

        Raises:
            Cancelled: If :meth:`cancel` was called before or during the wait
        """
        if seconds <= 0:
            return
        if self._cancelled.wait(seconds):
            raise Cancelled("Wait cancelled")

    def cancel(self) -> None:
        """Interrupt all current and future sleeps."""
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()


class Deadline:
    """A point in time after which an operation must give up.

    A deadline created with ``seconds=None`` never expires.
    """

    def __init__(self, clock: Clock, seconds: float | None):
        self._clock = clock
        self.seconds = seconds
        self._expires_at = None if seconds is None else clock.monotonic() + seconds

    @property
    def unbounded(self) -> bool:
        return self._expires_at is None

    def remaining(self) -> float | None:
        """Seconds left, ``0.0`` once expired, ``None`` if unbounded."""
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock.monotonic())

    def expired(self) -> bool:
        return self._expires_at is not None and self._clock.monotonic() >= self._expires_at

    def cap(self, seconds: float) -> float:
        """Clamp a timeout so it never outlives this deadline."""
        remaining = self.remaining()
        if remaining is None:
            return seconds
        return min(seconds, remaining)

    def sleep(self, seconds: float) -> None:
        """Sleep ``seconds``, cut short at the deadline."""
        self._clock.sleep(self.cap(seconds))


def call_with_timeout(func: Callable[[], T], timeout: float) -> T:
    """Run ``func`` on a worker thread and wait at most ``timeout`` seconds.

    The worker is abandoned, not killed, when the timeout elapses.

    Raises:
        concurrent.futures.TimeoutError: If ``func`` does not return in time
    """
    executor = concurrent.futures.ThreadPoolExecutor(max_workers=1)
    try:
        future = executor.submit(func)
        return future.result(timeout=timeout)
    finally:
        executor.shutdown(wait=False, cancel_futures=True)


@contextmanager
def cancel_on_interrupt(clock: Clock) -> Iterator[None]:
    """Turn the first Ctrl-C into a cancellation of ``clock``.

    Waits then raise :class:`Cancelled` and the caller can finish cleanly. A
    second Ctrl-C interrupts as usual. Clocks without ``cancel`` and calls
    off the main thread are left alone.
    """
    cancel = getattr(clock, "cancel", None)
    if cancel is None or threading.current_thread() is not threading.main_thread():
        yield
        return

    previous = signal.getsignal(signal.SIGINT)
    if previous is None:
        previous = signal.default_int_handler

    def handle_interrupt(signum, frame):
        cancel()
        signal.signal(signal.SIGINT, previous)

    signal.signal(signal.SIGINT, handle_interrupt)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)
