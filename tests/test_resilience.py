"""Tests for the resilience module."""
import threading
import pytest
from unittest.mock import MagicMock
from danmaku_peaks.errors import OperationCancelled, RetryExhausted, TemporarilyUnavailable
from danmaku_peaks.models import CircuitState, RetryPolicy
from danmaku_peaks.resilience import AttemptEvent, CircuitBreaker, RetryExecutor, log_attempt


class Flaky:
    """Callable that fails a fixed number of times before succeeding."""

    def __init__(self, failures, result="ok", exc=IOError):
        self.failures = failures
        self.result = result
        self.exc = exc
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc(f"failure {self.calls}")
        return self.result


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def executor(policy=None, **kwargs):
    delays = []
    events = []
    ex = RetryExecutor(policy, events.append, sleep=delays.append, **kwargs)
    return ex, delays, events


class TestRetryExecutor:
    """Tests for RetryExecutor class."""

    def test_first_attempt_success(self):
        """Test that a healthy call never waits."""
        ex, delays, events = executor()

        assert ex.execute(lambda: 42) == 42
        assert delays == []
        assert [e.outcome for e in events] == ["success"]

    def test_recovers_after_failures(self):
        """Test that N-1 failures cause N-1 bounded waits, then the result."""
        policy = RetryPolicy(max_attempts=4, base_delay=1.0, max_delay=10.0, backoff_multiplier=2.0)
        ex, delays, events = executor(policy)
        op = Flaky(3)

        assert ex.execute(op, context="read a.xml") == "ok"
        assert op.calls == 4
        assert delays == [1.0, 2.0, 4.0]
        assert all(d <= policy.max_delay for d in delays)
        assert [e.outcome for e in events] == ["retry", "retry", "retry", "success"]
        assert events[-1].attempt == 4
        assert events[0].context == "read a.xml"

    def test_delays_capped(self):
        """Test that backoff never exceeds max_delay."""
        policy = RetryPolicy(max_attempts=4, base_delay=3.0, max_delay=5.0, backoff_multiplier=10.0)
        ex, delays, _ = executor(policy)

        ex.execute(Flaky(3))
        assert delays == [3.0, 5.0, 5.0]

    def test_base_delay_above_max(self):
        """Test that even the first wait respects max_delay."""
        policy = RetryPolicy(max_attempts=2, base_delay=30.0, max_delay=2.0)
        ex, delays, _ = executor(policy)

        ex.execute(Flaky(1))
        assert delays == [2.0]

    def test_exhausted(self):
        """Test that the last failure is carried by RetryExhausted."""
        ex, delays, events = executor(RetryPolicy(max_attempts=3))
        op = Flaky(10)

        with pytest.raises(RetryExhausted) as exc_info:
            ex.execute(op)

        assert op.calls == 3
        assert len(delays) == 2
        assert exc_info.value.attempts == 3
        assert str(exc_info.value.last_error) == "failure 3"
        assert exc_info.value.__cause__ is exc_info.value.last_error
        assert [e.outcome for e in events] == ["retry", "retry", "failed"]

    def test_single_attempt_policy(self):
        """Test that one attempt means no waiting at all."""
        ex, delays, _ = executor(RetryPolicy(max_attempts=1))

        with pytest.raises(RetryExhausted):
            ex.execute(Flaky(1))
        assert delays == []

    def test_cancelled_before_first_attempt(self):
        """Test that a set cancel event stops the operation from running."""
        event = threading.Event()
        event.set()
        ex = RetryExecutor(reporter=None, cancel_event=event)
        op = MagicMock()

        with pytest.raises(OperationCancelled):
            ex.execute(op)
        op.assert_not_called()

    def test_cancelled_during_wait(self):
        """Test that cancelling while waiting aborts the remaining attempts."""
        event = threading.Event()
        ex, _, events = executor(RetryPolicy(max_attempts=5, base_delay=60.0, max_delay=60.0), cancel_event=event)
        calls = []

        def op():
            calls.append(1)
            event.set()
            raise IOError("offline")

        with pytest.raises(OperationCancelled):
            ex.execute(op)

        assert len(calls) == 1
        assert events[-1].outcome == "cancelled"

    def test_sleep_used_with_cancel_event(self):
        """Test that an injected sleep still waits when a cancel event is given."""
        ex, delays, _ = executor(cancel_event=threading.Event())

        assert ex.execute(Flaky(2)) == "ok"
        assert delays == [1.0, 2.0]

    def test_cancelled_by_sleep(self):
        """Test that an event set during the injected sleep stops the retries."""
        event = threading.Event()
        ex = RetryExecutor(reporter=None, sleep=lambda delay: event.set(), cancel_event=event)
        op = Flaky(3)

        with pytest.raises(OperationCancelled):
            ex.execute(op)
        assert op.calls == 1

    def test_base_exceptions_not_retried(self):
        """Test that KeyboardInterrupt propagates immediately."""
        ex, delays, _ = executor()
        op = Flaky(1, exc=KeyboardInterrupt)

        with pytest.raises(KeyboardInterrupt):
            ex.execute(op)
        assert op.calls == 1
        assert delays == []

    def test_default_policy(self):
        ex = RetryExecutor()
        assert ex.policy == RetryPolicy()


class TestLogAttempt:
    """Tests for log_attempt function."""

    def test_retry_warns(self, capsys):
        log_attempt(AttemptEvent("read x", 1, 3, "retry", delay=2.0, error=IOError("boom")))
        err = capsys.readouterr().err
        assert "WARNING: read x: attempt 1/3 failed, retrying in 2.0s: boom" in err

    def test_first_success_silent(self, capsys):
        """Test that a first-try success prints nothing."""
        log_attempt(AttemptEvent("read x", 1, 3, "success"))
        captured = capsys.readouterr()
        assert captured.out == "" and captured.err == ""

    def test_recovery_logged(self, capsys):
        log_attempt(AttemptEvent("read x", 2, 3, "success"))
        assert "succeeded on attempt 2/3" in capsys.readouterr().out

    def test_quiet(self, capsys):
        log_attempt(AttemptEvent("read x", 3, 3, "failed", error=IOError("boom")), quiet=True)
        assert capsys.readouterr().err == ""


class TestCircuitBreaker:
    """Tests for CircuitBreaker class."""

    def _trip(self, breaker, times):
        for _ in range(times):
            with pytest.raises(IOError):
                breaker.execute(Flaky(1))

    def test_initial_state(self):
        breaker = CircuitBreaker()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.consecutive_failures == 0
        assert breaker.last_failure_instant is None

    def test_opens_at_threshold(self):
        """Test closed to open after the configured number of failures."""
        clock = FakeClock()
        breaker = CircuitBreaker(failure_threshold=3, reset_timeout=60.0, clock=clock)

        self._trip(breaker, 2)
        assert breaker.state == CircuitState.CLOSED
        self._trip(breaker, 1)

        assert breaker.state == CircuitState.OPEN
        assert breaker.consecutive_failures == 3
        assert breaker.last_failure_instant == 1000.0

    def test_success_resets_count(self):
        breaker = CircuitBreaker(failure_threshold=3)
        self._trip(breaker, 2)

        assert breaker.execute(lambda: "ok") == "ok"
        assert breaker.consecutive_failures == 0
        assert breaker.state == CircuitState.CLOSED

    def test_open_rejects_without_calling(self):
        """Test that an open circuit never invokes the operation."""
        clock = FakeClock()
        breaker = CircuitBreaker(failure_threshold=1, reset_timeout=60.0, clock=clock)
        self._trip(breaker, 1)
        op = MagicMock(return_value="ok")

        clock.now += 30.0
        with pytest.raises(TemporarilyUnavailable):
            breaker.execute(op)
        op.assert_not_called()

    def test_reset_timeout_must_be_exceeded(self):
        """Test that exactly reset_timeout seconds is still open."""
        clock = FakeClock()
        breaker = CircuitBreaker(failure_threshold=1, reset_timeout=60.0, clock=clock)
        self._trip(breaker, 1)

        clock.now += 60.0
        with pytest.raises(TemporarilyUnavailable):
            breaker.execute(lambda: "ok")

    def test_half_open_success_closes(self):
        """Test that the trial call after the timeout runs once and closes the circuit."""
        clock = FakeClock()
        breaker = CircuitBreaker(failure_threshold=2, reset_timeout=60.0, clock=clock)
        self._trip(breaker, 2)
        op = MagicMock(return_value="ok")

        clock.now += 61.0
        assert breaker.execute(op) == "ok"

        op.assert_called_once()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.consecutive_failures == 0

    def test_half_open_failure_reopens(self):
        """Test that a failed trial call opens the circuit again."""
        clock = FakeClock()
        breaker = CircuitBreaker(failure_threshold=1, reset_timeout=60.0, clock=clock)
        self._trip(breaker, 1)

        clock.now += 61.0
        self._trip(breaker, 1)

        assert breaker.state == CircuitState.OPEN
        assert breaker.last_failure_instant == 1061.0
        with pytest.raises(TemporarilyUnavailable):
            breaker.execute(lambda: "ok")

    def test_exception_propagates_unchanged(self):
        breaker = CircuitBreaker()
        with pytest.raises(ValueError, match="failure 1"):
            breaker.execute(Flaky(1, exc=ValueError))

    def test_invalid_threshold(self):
        with pytest.raises(ValueError):
            CircuitBreaker(failure_threshold=0)

    def test_concurrent_failures_counted(self):
        """Test that failures from many threads are all counted."""
        breaker = CircuitBreaker(failure_threshold=1000)

        def worker():
            for _ in range(50):
                try:
                    breaker.execute(Flaky(1))
                except IOError:
                    pass

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert breaker.consecutive_failures == 400
        assert breaker.state == CircuitState.CLOSED


class TestRetryAroundBreaker:
    """Tests for retry and breaker composed together."""

    def test_open_breaker_exhausts_retries(self):
        """Test that rejections count as failed attempts."""
        clock = FakeClock()
        breaker = CircuitBreaker(failure_threshold=1, reset_timeout=60.0, clock=clock)
        ex, delays, _ = executor(RetryPolicy(max_attempts=3))
        op = Flaky(10)

        with pytest.raises(RetryExhausted) as exc_info:
            ex.execute(lambda: breaker.execute(op))

        assert op.calls == 1
        assert isinstance(exc_info.value.last_error, TemporarilyUnavailable)
