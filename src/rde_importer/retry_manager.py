"""
Retry Manager for calls against the target registry API.

Transient failures (network errors, timeouts and the configured retryable
HTTP status codes) are retried with exponential backoff. Any other error
is returned to the caller on the first attempt.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

import httpx

from .config import RetryConfig
from .exceptions import ApiError

T = TypeVar("T")


@dataclass
class RetryResult(Generic[T]):
    """Result of a retry operation."""

    success: bool
    result: Optional[T]
    attempts: int
    last_error: Optional[Exception]


class RetryManager:
    """Manages retry logic with exponential backoff."""

    def __init__(self, config: RetryConfig) -> None:
        """
        Initialize the retry manager.

        Args:
            config: Retry configuration with max_retries, delays, and retryable status codes
        """
        self._config = config

    def _calculate_delay(self, attempt: int) -> float:
        """
        Calculate wait time with exponential backoff.

        delay(n) = base_delay * 2^n, capped at max_delay.

        Args:
            attempt: The current attempt number (0-indexed)

        Returns:
            The delay in seconds before the next retry
        """
        delay = self._config.base_delay_seconds * (2 ** attempt)
        return min(delay, self._config.max_delay_seconds)

    def is_retryable_status(self, status_code: Optional[int]) -> bool:
        return status_code is not None and status_code in self._config.retryable_status_codes

    def is_retryable(self, error: Exception) -> bool:
        """
        Check if an exception indicates a transient failure.

        Args:
            error: The exception raised by the operation

        Returns:
            True for transport errors and API errors with a retryable status
        """
        if isinstance(error, httpx.TransportError):
            return True
        if isinstance(error, ApiError):
            return self.is_retryable_status(error.status_code)
        return False

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        is_retryable: Optional[Callable[[Exception], bool]] = None,
    ) -> RetryResult[T]:
        """
        Execute an operation with retry logic and exponential backoff.

        Args:
            operation: The async operation to execute
            is_retryable: Optional function to determine if an exception is retryable.
                         Defaults to `RetryManager.is_retryable`.

        Returns:
            RetryResult containing success status, result, attempts, and last error
        """
        check = is_retryable or self.is_retryable
        last_error: Optional[Exception] = None
        attempts = 0

        # Total attempts = 1 initial + max_retries
        max_attempts = self._config.max_retries + 1

        while attempts < max_attempts:
            try:
                result = await operation()
                return RetryResult(
                    success=True,
                    result=result,
                    attempts=attempts + 1,
                    last_error=None,
                )
            except (ApiError, httpx.HTTPError) as e:
                last_error = e
                attempts += 1

                if not check(e) or attempts >= max_attempts:
                    break

                await asyncio.sleep(self._calculate_delay(attempts - 1))

        return RetryResult(
            success=False,
            result=None,
            attempts=attempts,
            last_error=last_error,
        )
