"""
Tests for reliability — retry policy with exponential backoff.
"""

import pytest

from bendctl.core.errors import IntegrityError, NetworkError, StoreLocked
from bendctl.core.reliability.retry import RetryPolicy, call_with_retry


class _Flaky:
    """Fails with ``error`` for the first ``failures`` calls."""

    def __init__(self, failures: int, error: Exception) -> None:
        self.failures = failures
        self.error = error
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


class TestRetryPolicy:
    def test_exponential_growth(self):
        policy = RetryPolicy(base_delay=1.0, max_delay=100.0, jitter=0.0)
        assert [policy.delay_for(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 8.0]

    def test_capped(self):
        policy = RetryPolicy(base_delay=1.0, max_delay=5.0, jitter=0.0)
        assert policy.delay_for(10) == 5.0

    def test_jitter_bounded(self):
        policy = RetryPolicy(base_delay=2.0, max_delay=100.0, jitter=0.5)
        for _ in range(50):
            assert 2.0 <= policy.delay_for(1) <= 3.0


class TestCallWithRetry:
    def test_success_first_try(self):
        fn = _Flaky(0, NetworkError("x"))
        assert call_with_retry(fn, RetryPolicy(), sleep=lambda s: None) == "ok"
        assert fn.calls == 1

    def test_transient_then_success(self):
        delays: list[float] = []
        fn = _Flaky(2, NetworkError("reset"))
        policy = RetryPolicy(max_attempts=3, base_delay=1.0, jitter=0.0)
        assert call_with_retry(fn, policy, sleep=delays.append) == "ok"
        assert fn.calls == 3
        assert delays == [1.0, 2.0]

    def test_exhausted(self):
        fn = _Flaky(10, NetworkError("down"))
        with pytest.raises(NetworkError, match="down"):
            call_with_retry(fn, RetryPolicy(max_attempts=3), sleep=lambda s: None)
        assert fn.calls == 3

    def test_non_retryable_fails_immediately(self):
        fn = _Flaky(10, NetworkError("404", status=404, retryable=False))
        with pytest.raises(NetworkError):
            call_with_retry(fn, RetryPolicy(max_attempts=5), sleep=lambda s: None)
        assert fn.calls == 1

    def test_integrity_error_not_retried(self):
        fn = _Flaky(10, IntegrityError("bad sum"))
        with pytest.raises(IntegrityError):
            call_with_retry(fn, RetryPolicy(max_attempts=5), sleep=lambda s: None)
        assert fn.calls == 1

    def test_store_locked_is_retryable(self):
        fn = _Flaky(1, StoreLocked("busy"))
        assert call_with_retry(fn, RetryPolicy(max_attempts=2), sleep=lambda s: None) == "ok"

    def test_other_exceptions_propagate(self):
        def boom() -> None:
            raise ValueError("not ours")

        with pytest.raises(ValueError):
            call_with_retry(boom, RetryPolicy(), sleep=lambda s: None)
