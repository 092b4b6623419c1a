"""
Property-based tests for the Retry Manager module.

Uses Hypothesis to verify exponential backoff and the classification of
transient and permanent failures.
"""

import asyncio

import httpx
from hypothesis import given, settings
from hypothesis import strategies as st

from rde_importer.config import RetryConfig
from rde_importer.exceptions import ApiError
from rde_importer.retry_manager import RetryManager, RetryResult


@st.composite
def retry_config_strategy(draw) -> RetryConfig:
    """Generate valid RetryConfig objects with tiny delays."""
    return RetryConfig(
        max_retries=draw(st.integers(min_value=0, max_value=4)),
        base_delay_seconds=draw(st.floats(min_value=0.0001, max_value=0.001)),
        max_delay_seconds=draw(st.floats(min_value=0.001, max_value=0.005)),
    )


transient_errors = st.one_of(
    st.sampled_from([408, 429, 500, 502, 503, 504]).map(
        lambda code: ApiError(code="transient_status", message=str(code), status_code=code)
    ),
    st.just(httpx.ConnectError("connection refused")),
    st.just(httpx.ReadTimeout("read timed out")),
)

permanent_errors = st.sampled_from([400, 401, 403, 404, 409, 422]).map(
    lambda code: ApiError(code="unexpected_status", message=str(code), status_code=code)
)


class TestExponentialBackoff:
    """Delays grow exponentially and are capped."""

    @given(config=retry_config_strategy(), attempts=st.integers(min_value=0, max_value=12))
    @settings(max_examples=100)
    def test_delay_formula(self, config: RetryConfig, attempts: int) -> None:
        """
        *For any* configuration and attempt n, the delay SHALL be
        min(base * 2^n, max) and never decrease with n.
        """
        manager = RetryManager(config)
        previous = 0.0
        for attempt in range(attempts):
            delay = manager._calculate_delay(attempt)
            expected = min(config.base_delay_seconds * (2 ** attempt), config.max_delay_seconds)
            assert abs(delay - expected) < 1e-9
            assert delay >= previous
            previous = delay


class TestRetryBehavior:
    """Transient failures are retried; permanent ones are not."""

    @given(config=retry_config_strategy(), error=transient_errors)
    @settings(max_examples=50, deadline=None)
    def test_transient_failures_exhaust_retries(self, config: RetryConfig, error: Exception) -> None:
        """
        *For any* operation that always fails transiently, the manager SHALL
        make max_retries + 1 attempts and report the last error.
        """
        manager = RetryManager(config)
        calls = 0

        async def operation():
            nonlocal calls
            calls += 1
            raise error

        result: RetryResult = asyncio.run(manager.execute_with_retry(operation))

        assert not result.success
        assert result.result is None
        assert result.attempts == calls == config.max_retries + 1
        assert result.last_error is error

    @given(config=retry_config_strategy(), error=permanent_errors)
    @settings(max_examples=50, deadline=None)
    def test_permanent_failures_are_not_retried(self, config: RetryConfig, error: ApiError) -> None:
        """*For any* non-retryable status, the manager SHALL stop after one attempt."""
        manager = RetryManager(config)
        calls = 0

        async def operation():
            nonlocal calls
            calls += 1
            raise error

        result = asyncio.run(manager.execute_with_retry(operation))
        assert not result.success
        assert result.attempts == calls == 1

    @given(config=retry_config_strategy(), failures=st.integers(min_value=0, max_value=4))
    @settings(max_examples=50, deadline=None)
    def test_success_after_transient_failures(self, config: RetryConfig, failures: int) -> None:
        """
        *For any* operation that succeeds after k transient failures with
        k <= max_retries, the manager SHALL return its result after k + 1 attempts.
        """
        manager = RetryManager(config)
        calls = 0

        async def operation():
            nonlocal calls
            calls += 1
            if calls <= failures:
                raise httpx.ConnectError("flaky")
            return "ok"

        result = asyncio.run(manager.execute_with_retry(operation))
        if failures <= config.max_retries:
            assert result.success
            assert result.result == "ok"
            assert result.attempts == failures + 1
        else:
            assert not result.success
            assert result.attempts == config.max_retries + 1

    def test_custom_predicate(self) -> None:
        manager = RetryManager(RetryConfig(max_retries=2, base_delay_seconds=0.0001))
        error = ApiError(code="unexpected_status", message="404", status_code=404)

        async def operation():
            raise error

        result = asyncio.run(manager.execute_with_retry(operation, is_retryable=lambda e: True))
        assert result.attempts == 3

    def test_status_classification(self) -> None:
        manager = RetryManager(RetryConfig(retryable_status_codes=[503]))
        assert manager.is_retryable_status(503)
        assert not manager.is_retryable_status(500)
        assert not manager.is_retryable_status(None)
        assert manager.is_retryable(httpx.ConnectTimeout("slow"))
        assert not manager.is_retryable(ApiError(code="x", message="y"))
