"""
Rate limiting components for the crpt SDK.

This module provides the fixed-window rate gate that governs how many
document-creation calls may be initiated per time window:

- RateGate: Bounded permit counter with blocking acquire, non-blocking release
  and a background thread that opens a fresh quota at every window boundary.
- Permit: One-shot handle for a single acquired permit.
- CancellationToken: Cooperative cancellation for callers blocked in acquire().

Example:
    >>> from crpt._rate_limit import RateGate, TimeUnit
    >>> gate = RateGate(request_limit=10, time_window=TimeUnit.SECONDS.seconds)
    >>> gate.acquire()
    >>> try:
    ...     send_request()
    ... finally:
    ...     gate.release()
    >>> gate.close()
"""

import enum
import logging
import threading
import time
from collections.abc import Callable
from typing import Self

logger = logging.getLogger(__name__)


# =============================================================================
# Time Units
# =============================================================================


class TimeUnit(enum.Enum):
    """
    Length of a rate limit window.

    A window is exactly one unit long, so `TimeUnit.MINUTES` means
    "at most N requests per minute".

    Example:
        >>> TimeUnit.MINUTES.seconds
        60.0
    """

    MILLISECONDS = 0.001
    SECONDS = 1.0
    MINUTES = 60.0
    HOURS = 3600.0
    DAYS = 86400.0

    @property
    def seconds(self) -> float:
        """Returns the window length in seconds."""
        return float(self.value)


# =============================================================================
# Exceptions
# =============================================================================


class ClientSideRateLimitError(Exception):
    """
    Base exception for client-side rate limiting errors.

    This is the base class for all errors raised by the RateGate itself,
    as opposed to failures of the gated HTTP call.

    Example:
        >>> try:
        ...     gate.acquire()
        ... except ClientSideRateLimitError as e:
        ...     print(f"Client-side rate limit: {e}")
    """

    pass


class TokenAcquisitionTimeoutError(ClientSideRateLimitError):
    """
    Raised when the gate exceeds max_wait_time waiting for a permit.

    No permit is consumed when this error is raised.

    Attributes:
        waited: Time in seconds the thread waited before giving up.
        max_wait_time: The configured maximum wait time.
    """

    def __init__(self, waited: float, max_wait_time: float):
        self.waited = waited
        self.max_wait_time = max_wait_time
        super().__init__(
            f"Rate limit timeout: waited {waited:.2f}s, max_wait_time={max_wait_time:.2f}s"
        )


class AcquisitionCancelledError(ClientSideRateLimitError):
    """
    Raised when a caller is cancelled before a permit was acquired.

    No permit is consumed when this error is raised.

    Attributes:
        waited: Time in seconds the thread waited before being cancelled.
    """

    def __init__(self, waited: float):
        self.waited = waited
        super().__init__(f"Permit acquisition cancelled after {waited:.2f}s")


class RateGateClosedError(ClientSideRateLimitError):
    """Raised when acquiring from a gate that is (or becomes) closed."""

    def __init__(self) -> None:
        super().__init__("Rate gate is closed")


class UnbalancedReleaseError(ClientSideRateLimitError, ValueError):
    """
    Raised when release() is called without an outstanding acquire().

    Mirrors `threading.BoundedSemaphore`, which raises ValueError when
    released too many times.
    """

    def __init__(self) -> None:
        super().__init__("Rate gate released without a matching acquire()")


# =============================================================================
# Cancellation
# =============================================================================


class CancellationToken:
    """
    Thread-safe token for cancelling a caller blocked in `RateGate.acquire()`.

    Cancelling the token wakes the blocked caller immediately, which then
    raises AcquisitionCancelledError without consuming a permit.

    Example:
        >>> token = CancellationToken()
        >>> # In the caller thread
        >>> gate.acquire(cancel_token=token)
        >>> # From another thread
        >>> token.cancel()
    """

    def __init__(self) -> None:
        self._is_cancelled = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: list[Callable[[], None]] = []

    def cancel(self) -> None:
        """Signal cancellation and wake every registered waiter."""
        with self._lock:
            if self._is_cancelled.is_set():
                return
            self._is_cancelled.set()
            callbacks = list(self._callbacks)

        # Callbacks take the gate's lock, so they run outside ours
        for callback in callbacks:
            callback()

    def is_cancelled(self) -> bool:
        """Returns True if cancellation has been requested."""
        return self._is_cancelled.is_set()

    def add_callback(self, callback: Callable[[], None]) -> None:
        """
        Register a wake-up callback invoked on cancellation.

        If the token is already cancelled the callback runs immediately.
        """
        with self._lock:
            if not self._is_cancelled.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def remove_callback(self, callback: Callable[[], None]) -> None:
        """Unregister a previously added callback (no-op if absent)."""
        with self._lock:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass


# =============================================================================
# Rate Gate
# =============================================================================


class RateGate:
    """
    Fixed-window rate gate: at most `request_limit` acquisitions per window.

    The gate owns a permit count bounded by `request_limit`. Callers consume
    a permit with `acquire()` (blocking while none is available) and return
    it with `release()` once the gated call has completed. A background
    thread fires every `time_window` seconds and resets the available
    permits to `request_limit`, whether or not earlier permits were released.
    This caps *initiations* per window, not concurrent in-flight calls, and
    it means a leaked permit heals itself at the next window boundary.

    All state is guarded by a single condition variable, so `acquire()`,
    `release()` and `replenish()` may be called from any thread.

    Example:
        >>> gate = RateGate(request_limit=3, time_window=1.0)
        >>> with gate.permit() as permit:
        ...     send_request()
        >>> gate.close()

    Args:
        request_limit: Maximum number of acquisitions per window.
        time_window: Window length in seconds.
        max_wait_time: Maximum seconds to wait for a permit. If None (default),
            waits indefinitely.
        autostart: Whether to start the replenishment thread immediately.
            Disable it to drive window boundaries with `replenish()`.
    """

    def __init__(
        self,
        request_limit: int,
        time_window: float,
        max_wait_time: float | None = None,
        autostart: bool = True,
    ):
        """
        Initialize the gate with a full quota and start the replenishment thread.

        Raises:
            AssertionError: If any parameter is invalid.
        """
        assert request_limit is not None, "request_limit cannot be None."
        assert request_limit > 0, "request_limit must be greater than 0."
        assert time_window is not None, "time_window cannot be None."
        assert time_window > 0, "time_window must be greater than 0."
        assert max_wait_time is None or max_wait_time > 0, "max_wait_time must be > 0 or None."

        self.request_limit = request_limit
        self.time_window = float(time_window)
        self.max_wait_time = max_wait_time

        self._available = request_limit
        self._in_flight = 0
        self._closed = False
        self._condition = threading.Condition(threading.Lock())

        self._stop = threading.Event()
        self._replenisher: threading.Thread | None = None
        if autostart:
            self.start()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def available_permits(self) -> int:
        """Number of permits that can be acquired right now."""
        with self._condition:
            return self._available

    @property
    def in_flight(self) -> int:
        """Number of acquisitions not yet released."""
        with self._condition:
            return self._in_flight

    @property
    def closed(self) -> bool:
        """Returns True once `close()` has been called."""
        with self._condition:
            return self._closed

    # ------------------------------------------------------------------
    # Acquire / release
    # ------------------------------------------------------------------

    def acquire(self, cancel_token: CancellationToken | None = None) -> None:
        """
        Block until a permit is available, then consume it.

        Args:
            cancel_token: Optional token; cancelling it wakes this caller,
                which then gives up without consuming a permit.

        Raises:
            AcquisitionCancelledError: If the token was cancelled first.
            TokenAcquisitionTimeoutError: If waiting exceeds max_wait_time.
            RateGateClosedError: If the gate is closed.
        """
        start_time = time.monotonic()
        if cancel_token is not None:
            cancel_token.add_callback(self._wake_all)

        try:
            with self._condition:
                while True:
                    if self._closed:
                        self._hand_off()
                        raise RateGateClosedError()

                    if cancel_token is not None and cancel_token.is_cancelled():
                        self._hand_off()
                        raise AcquisitionCancelledError(waited=time.monotonic() - start_time)

                    if self._available > 0:
                        self._available -= 1
                        self._in_flight += 1
                        return

                    remaining = None
                    if self.max_wait_time is not None:
                        total_waited = time.monotonic() - start_time
                        remaining = self.max_wait_time - total_waited
                        if remaining <= 0:
                            self._hand_off()
                            raise TokenAcquisitionTimeoutError(
                                waited=total_waited,
                                max_wait_time=self.max_wait_time,
                            )

                    self._condition.wait(timeout=remaining)
        finally:
            if cancel_token is not None:
                cancel_token.remove_callback(self._wake_all)

    def release(self) -> None:
        """
        Return a consumed permit and wake at most one waiter.

        Never blocks on anything but the gate's own short critical section,
        so it is safe to call from asynchronous completion handlers.

        Raises:
            UnbalancedReleaseError: If there is no outstanding acquisition.
        """
        with self._condition:
            if self._in_flight == 0:
                raise UnbalancedReleaseError()

            self._in_flight -= 1
            if self._available >= self.request_limit:
                # The window reset already restored this permit
                logger.debug(
                    f"{'Rate-Gate'[:26]:<26} | CRPT | "
                    f"Release after window reset, permits saturated at {self.request_limit}."
                )
                return

            self._available += 1
            self._condition.notify()

    def permit(self, cancel_token: CancellationToken | None = None) -> "Permit":
        """
        Acquire a permit and wrap it in a one-shot `Permit` handle.

        Args:
            cancel_token: Optional cancellation token, see `acquire()`.

        Returns:
            A Permit whose `release()` returns the permit at most once.
        """
        self.acquire(cancel_token=cancel_token)
        return Permit(self)

    # ------------------------------------------------------------------
    # Replenishment
    # ------------------------------------------------------------------

    def replenish(self) -> None:
        """
        Open a fresh window: reset the available permits to `request_limit`.

        In-flight (unreleased) acquisitions are disregarded.
        """
        with self._condition:
            if self._closed:
                return
            self._available = self.request_limit
            self._condition.notify_all()

    def start(self) -> None:
        """Start the replenishment thread (no-op if already running)."""
        with self._condition:
            if self._closed:
                raise RateGateClosedError()
            if self._replenisher is not None:
                return
            self._replenisher = threading.Thread(
                target=self._replenish_loop,
                daemon=True,
                name=f"rate-gate-replenisher-{id(self):x}",
            )
        self._replenisher.start()
        logger.debug(
            f"{'Rate-Gate'[:26]:<26} | CRPT | "
            f"Replenisher started (request_limit={self.request_limit}, time_window={self.time_window}s)."
        )

    def _replenish_loop(self) -> None:
        """Fire `replenish()` every time_window seconds at a fixed rate until stopped."""
        next_tick = time.monotonic() + self.time_window
        while not self._stop.wait(timeout=max(0.0, next_tick - time.monotonic())):
            self.replenish()
            next_tick += self.time_window
            now = time.monotonic()
            if next_tick <= now:
                # Fell behind (e.g. process suspended): skip missed windows
                next_tick = now + self.time_window

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """
        Stop the replenishment thread and fail any blocked callers.

        Outstanding permits may still be released after closing. Idempotent.
        """
        with self._condition:
            if self._closed:
                return
            self._closed = True
            self._condition.notify_all()

        self._stop.set()
        replenisher = self._replenisher
        if replenisher is not None and replenisher is not threading.current_thread():
            replenisher.join(timeout=5)
        logger.debug(f"{'Rate-Gate'[:26]:<26} | CRPT | Rate gate closed.")

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return (
            f"RateGate(request_limit={self.request_limit}, time_window={self.time_window}, "
            f"available={self._available}, in_flight={self._in_flight})"
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _wake_all(self) -> None:
        with self._condition:
            self._condition.notify_all()

    def _hand_off(self) -> None:
        """
        Pass a pending wake-up on to another waiter.

        Must be called with the condition held by a waiter that is leaving
        without consuming a permit, so a single release() is never lost.
        """
        if self._available > 0:
            self._condition.notify()


class Permit:
    """
    One acquired permit: the pairing of one `acquire()` with one `release()`.

    `release()` may be called any number of times from any thread; only the
    first call returns the permit to the gate.

    Example:
        >>> permit = gate.permit()
        >>> future.add_done_callback(lambda _: permit.release())
    """

    def __init__(self, gate: RateGate):
        assert gate is not None, "Rate gate is required."
        self._gate = gate
        self._released = False
        self._lock = threading.Lock()

    @property
    def released(self) -> bool:
        """Returns True once the permit has been returned to the gate."""
        with self._lock:
            return self._released

    def release(self) -> bool:
        """
        Return the permit to the gate if not already returned.

        Returns:
            True if this call released the permit, False if it was a repeat.
        """
        with self._lock:
            if self._released:
                return False
            self._released = True
        self._gate.release()
        return True

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()
