# -*- encoding: utf-8 -*-
"""
Tests for the retry module: attempt bounds and backoff schedule.
"""

import pytest

from superbridge_relayer.errors import PayoutFailed, RetryExhausted
from superbridge_relayer.retry import exponential_delay, retry_with_backoff


class _Flaky:
    def __init__(self, failures, result="ok", error=ConnectionError):
        self.failures = failures
        self.result = result
        self.error = error
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error(f"failure {self.calls}")
        return self.result


class TestExponentialDelay:

    def test_powers_of_two(self):
        assert [exponential_delay(n) for n in (1, 2, 3)] == [2, 4, 8]


class TestRetryWithBackoff:

    def test_first_success_does_not_sleep(self):
        sleeps = []
        fn = _Flaky(0)
        assert retry_with_backoff(fn, sleep=sleeps.append) == "ok"
        assert fn.calls == 1
        assert sleeps == []

    def test_recovers_on_third_attempt(self):
        sleeps = []
        fn = _Flaky(2)
        assert retry_with_backoff(fn, attempts=3, sleep=sleeps.append) == "ok"
        assert fn.calls == 3
        assert sleeps == [2, 4]

    def test_three_failures_exhaust_without_trailing_sleep(self):
        sleeps = []
        fn = _Flaky(10)
        with pytest.raises(RetryExhausted) as excinfo:
            retry_with_backoff(fn, attempts=3, sleep=sleeps.append, description="payout")
        assert fn.calls == 3
        assert sleeps == [2, 4]
        assert excinfo.value.attempts == 3
        assert isinstance(excinfo.value.last_error, ConnectionError)
        assert excinfo.value.__cause__ is excinfo.value.last_error

    def test_custom_exhaustion_type(self):
        with pytest.raises(PayoutFailed):
            retry_with_backoff(_Flaky(5), sleep=lambda s: None, exhausted=PayoutFailed)

    def test_non_retryable_error_propagates_immediately(self):
        sleeps = []
        fn = _Flaky(5, error=KeyError)
        with pytest.raises(KeyError):
            retry_with_backoff(fn, retry_on=(ConnectionError,), sleep=sleeps.append)
        assert fn.calls == 1
        assert sleeps == []

    def test_custom_delay_function(self):
        sleeps = []
        with pytest.raises(RetryExhausted):
            retry_with_backoff(_Flaky(5), attempts=4, delay=lambda n: n * 10,
                               sleep=sleeps.append)
        assert sleeps == [10, 20, 30]

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            retry_with_backoff(_Flaky(0), attempts=0)
