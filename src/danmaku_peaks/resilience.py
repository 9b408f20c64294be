#!/usr/bin/env python3
"""Retry and circuit-breaker wrappers for Danmaku Peaks.

Both wrappers take any zero-argument callable, so the same instances can
guard file listing, file reads, or a whole parse-and-analyze step.
"""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from .errors import OperationCancelled, RetryExhausted, TemporarilyUnavailable
from .logging_utils import log, warn
from .models import CircuitState, RetryPolicy

T = TypeVar("T")


# ============================================================
# Attempt Reporting
# ============================================================

@dataclass(frozen=True)
class AttemptEvent:
    """Outcome of one retry attempt.

    Attributes:
        context: Caller-supplied label for the operation
        attempt: 1-based attempt number
        max_attempts: Attempts allowed by the policy
        outcome: "success", "retry", "failed" or "cancelled"
        delay: Seconds waited before the next attempt (retry only)
        error: Failure raised by this attempt, if any
    """
    context: str
    attempt: int
    max_attempts: int
    outcome: str
    delay: float = 0.0
    error: Optional[BaseException] = None


def log_attempt(event: AttemptEvent, *, quiet: bool = False) -> None:
    """Default attempt reporter: warnings for failures, a log line on recovery."""
    label = event.context or "operation"
    if event.outcome == "success":
        if event.attempt > 1:
            log(f"   {label}: succeeded on attempt {event.attempt}/{event.max_attempts}", quiet=quiet)
    elif event.outcome == "retry":
        warn(
            f"{label}: attempt {event.attempt}/{event.max_attempts} failed, "
            f"retrying in {event.delay:.1f}s: {event.error}",
            quiet=quiet,
        )
    elif event.outcome == "failed":
        warn(f"{label}: failed after {event.attempt} attempt(s): {event.error}", quiet=quiet)
    else:
        warn(f"{label}: cancelled after attempt {event.attempt}", quiet=quiet)


# ============================================================
# Retry Executor
# ============================================================

class RetryExecutor:
    """Runs an operation up to ``policy.max_attempts`` times with backoff.

    Waits happen only between attempts. A set ``cancel_event`` aborts the
    remaining attempts with OperationCancelled.
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        reporter: Optional[Callable[[AttemptEvent], None]] = log_attempt,
        *,
        sleep: Optional[Callable[[float], None]] = None,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.policy = policy if policy is not None else RetryPolicy()
        self.reporter = reporter
        self._sleep = sleep
        self._cancel_event = cancel_event

    def _report(self, event: AttemptEvent) -> None:
        if self.reporter is not None:
            self.reporter(event)

    def _cancelled(self) -> bool:
        return self._cancel_event is not None and self._cancel_event.is_set()

    def _wait(self, delay: float) -> bool:
        """Wait `delay` seconds; return False if cancelled meanwhile.

        An injected ``sleep`` always does the waiting, with the cancel event
        checked once it returns; otherwise the event's own wait is used.
        """
        if self._sleep is not None:
            self._sleep(delay)
            return not self._cancelled()
        if self._cancel_event is not None:
            return not self._cancel_event.wait(delay)
        time.sleep(delay)
        return True

    def execute(self, operation: Callable[[], T], context: str = "") -> T:
        """Call `operation` until it succeeds or the attempts run out.

        Args:
            operation: Zero-argument callable to run
            context: Label used in attempt reports and errors

        Returns:
            The first successful result

        Raises:
            RetryExhausted: If every attempt failed (chained to the last failure)
            OperationCancelled: If cancelled between attempts
        """
        policy = self.policy
        delay = min(policy.base_delay, policy.max_delay)
        last_error: Optional[Exception] = None

        for attempt in range(1, policy.max_attempts + 1):
            if self._cancelled():
                self._report(AttemptEvent(context, attempt - 1, policy.max_attempts, "cancelled", error=last_error))
                raise OperationCancelled(f"{context or 'operation'} cancelled before attempt {attempt}")
            try:
                result = operation()
            except Exception as e:
                last_error = e
                if attempt >= policy.max_attempts:
                    self._report(AttemptEvent(context, attempt, policy.max_attempts, "failed", error=e))
                    break
                self._report(AttemptEvent(context, attempt, policy.max_attempts, "retry", delay=delay, error=e))
                if not self._wait(delay):
                    self._report(AttemptEvent(context, attempt, policy.max_attempts, "cancelled", error=e))
                    raise OperationCancelled(f"{context or 'operation'} cancelled after attempt {attempt}") from e
                delay = min(delay * policy.backoff_multiplier, policy.max_delay)
                continue
            self._report(AttemptEvent(context, attempt, policy.max_attempts, "success"))
            return result

        assert last_error is not None
        raise RetryExhausted(
            f"{context or 'operation'} failed after {policy.max_attempts} attempt(s): {last_error}",
            attempts=policy.max_attempts,
            last_error=last_error,
        ) from last_error


# ============================================================
# Circuit Breaker
# ============================================================

DEFAULT_FAILURE_THRESHOLD = 5
DEFAULT_RESET_TIMEOUT = 60.0


class CircuitBreaker:
    """Three-state circuit breaker (closed, open, half-open).

    State is only changed from inside ``execute`` under an internal lock;
    the wrapped operation itself runs outside the lock.
    """

    def __init__(
        self,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        reset_timeout: float = DEFAULT_RESET_TIMEOUT,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1.")
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._last_failure_instant: Optional[float] = None

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state

    @property
    def consecutive_failures(self) -> int:
        with self._lock:
            return self._consecutive_failures

    @property
    def last_failure_instant(self) -> Optional[float]:
        with self._lock:
            return self._last_failure_instant

    def _admit(self) -> None:
        with self._lock:
            if self._state is not CircuitState.OPEN:
                return
            last = self._last_failure_instant
            if last is not None and self._clock() - last > self.reset_timeout:
                self._state = CircuitState.HALF_OPEN
                return
        raise TemporarilyUnavailable("Service temporarily unavailable (circuit open); retry later.")

    def _on_success(self) -> None:
        with self._lock:
            self._consecutive_failures = 0
            self._state = CircuitState.CLOSED

    def _on_failure(self) -> None:
        with self._lock:
            self._consecutive_failures += 1
            self._last_failure_instant = self._clock()
            if self._consecutive_failures >= self.failure_threshold:
                self._state = CircuitState.OPEN

    def execute(self, operation: Callable[[], T]) -> T:
        """Run `operation` unless the circuit is open.

        Raises:
            TemporarilyUnavailable: If open and the reset timeout has not elapsed
            Exception: Whatever the operation raised (after being counted)
        """
        self._admit()
        try:
            result = operation()
        except Exception:
            self._on_failure()
            raise
        self._on_success()
        return result
