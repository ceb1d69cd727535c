"""Tests for the retry policy."""

import threading

import pytest

from errors import (
    MalformedResponse,
    NetworkError,
    ProviderExhausted,
    RateLimited,
    RunCancelled,
    ServerError,
    Timeout,
    Unauthorized,
)
from retry import RetryPolicy, is_retryable, run_with_retry


class Flaky:
    """Raises the scripted errors in order, then returns 'ok'."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


def _run(policy, operation):
    delays = []
    result = run_with_retry(policy, operation, sleep_fn=delays.append, random_fn=lambda: 0.0)
    return result, delays


class TestClassification:
    """Tests for is_retryable."""

    def test_transient_errors_are_retryable(self):
        for exc in (RateLimited("x"), Timeout("x"), ServerError("x"), NetworkError("x")):
            assert is_retryable(exc)

    def test_terminal_errors_are_not_retryable(self):
        assert not is_retryable(Unauthorized("x"))
        assert not is_retryable(MalformedResponse("x"))
        assert not is_retryable(ValueError("x"))


class TestRunWithRetry:
    """Tests for run_with_retry."""

    def test_returns_first_success(self):
        result, delays = _run(RetryPolicy(max_retries=3), Flaky())
        assert result == "ok"
        assert delays == []

    def test_retries_transient_errors_with_backoff(self):
        operation = Flaky(ServerError("boom"), Timeout("slow"))
        result, delays = _run(RetryPolicy(max_retries=3, base_delay=1.0), operation)

        assert result == "ok"
        assert operation.calls == 3
        assert delays == [1.0, 2.0]

    def test_exhaustion_after_max_attempts(self):
        operation = Flaky(*[NetworkError("down") for _ in range(5)])

        with pytest.raises(ProviderExhausted) as excinfo:
            _run(RetryPolicy(max_retries=3), operation)

        assert operation.calls == 3
        assert excinfo.value.attempts == 3
        assert isinstance(excinfo.value.last_error, NetworkError)

    def test_unauthorized_is_not_retried(self):
        operation = Flaky(Unauthorized("bad key"))

        with pytest.raises(Unauthorized):
            _run(RetryPolicy(max_retries=5), operation)

        assert operation.calls == 1

    def test_malformed_response_is_not_retried(self):
        operation = Flaky(MalformedResponse("400"))

        with pytest.raises(MalformedResponse):
            _run(RetryPolicy(max_retries=5), operation)

        assert operation.calls == 1

    def test_zero_retries_still_makes_one_attempt(self):
        operation = Flaky(ServerError("boom"))

        with pytest.raises(ProviderExhausted):
            _run(RetryPolicy(max_retries=0), operation)

        assert operation.calls == 1

    def test_retry_after_raises_the_delay(self):
        operation = Flaky(RateLimited("slow down", retry_after=7))
        _, delays = _run(RetryPolicy(max_retries=2, base_delay=1.0, max_delay=30.0), operation)
        assert delays == [7]

    def test_retry_after_is_capped(self):
        operation = Flaky(RateLimited("slow down", retry_after=600))
        _, delays = _run(RetryPolicy(max_retries=2, base_delay=1.0, max_delay=30.0), operation)
        assert delays == [30.0]

    def test_other_exceptions_propagate(self):
        operation = Flaky(KeyError("bug"))

        with pytest.raises(KeyError):
            _run(RetryPolicy(max_retries=3), operation)

        assert operation.calls == 1


class TestCancellation:
    """Tests for run_with_retry with a cancel event."""

    def test_preset_event_makes_no_call(self):
        cancelled = threading.Event()
        cancelled.set()
        operation = Flaky()

        with pytest.raises(RunCancelled):
            run_with_retry(RetryPolicy(max_retries=3), operation, cancelled=cancelled)

        assert operation.calls == 0

    def test_cancel_during_a_call_stops_retries(self):
        cancelled = threading.Event()
        calls = []

        def operation():
            calls.append(1)
            cancelled.set()
            raise Timeout("slow")

        delays = []
        with pytest.raises(RunCancelled):
            run_with_retry(
                RetryPolicy(max_retries=10),
                operation,
                sleep_fn=delays.append,
                cancelled=cancelled,
            )

        assert len(calls) == 1
        assert delays == []

    def test_backoff_wait_ends_when_cancelled(self):
        cancelled = threading.Event()
        operation = Flaky(ServerError("busy"), ServerError("busy"))
        timer = threading.Timer(0.05, cancelled.set)
        timer.start()

        try:
            with pytest.raises(RunCancelled):
                run_with_retry(
                    RetryPolicy(max_retries=3, base_delay=30.0, max_delay=30.0, jitter=0.0),
                    operation,
                    cancelled=cancelled,
                )
        finally:
            timer.cancel()

        assert operation.calls == 1


class TestComputeDelay:
    """Tests for RetryPolicy.compute_delay."""

    def test_exponential_and_capped(self):
        policy = RetryPolicy(base_delay=1.0, max_delay=5.0, jitter=0.0)
        assert [policy.compute_delay(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_jitter_adds_a_fraction(self):
        policy = RetryPolicy(base_delay=2.0, max_delay=100.0, jitter=0.5)
        assert policy.compute_delay(1, random_fn=lambda: 1.0) == 3.0
        assert policy.compute_delay(1, random_fn=lambda: 0.0) == 2.0
