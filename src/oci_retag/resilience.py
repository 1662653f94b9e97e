"""Retry policy for registry operations.

Wraps registry calls with bounded exponential backoff. Only transient
failures are retried: exceptions such as RegistryUnavailableError, and
returned values the caller marks as transient (a ``TransientFailure`` fetch
outcome). Everything else returns or propagates after a single attempt.

Guarantees:
    - At most ``max_attempts`` calls are made.
    - Delays between attempts never decrease, jitter included.
    - The last exception is re-raised unchanged; the last result is
      returned unchanged.
    - When a cancellation event is set, no further attempt starts and
      OperationCancelledError is raised.

Example:
    >>> policy = RetryPolicy(RetryConfig(max_attempts=3))
    >>>
    >>> @policy.wrap
    ... def fetch_manifest():
    ...     return transport.get_manifest(ref)
"""

from __future__ import annotations

import functools
import random
import threading
import time
from collections.abc import Callable
from typing import Any, ParamSpec, TypeVar

import structlog

from oci_retag.config import RetryConfig
from oci_retag.errors import OperationCancelledError, RegistryUnavailableError

logger = structlog.get_logger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


class RetryPolicy:
    """Retry policy with exponential backoff and jitter.

    Retry Timeline (default config):
    - Attempt 1: Immediate
    - Attempt 2: ~0.5s delay (with jitter)
    - Attempt 3: ~1s delay
    - Attempt 4: ~2s delay

    Attributes:
        config: RetryConfig with max_attempts, delays, and jitter settings.
        attempts_made: Number of calls made by the most recent invocation.
    """

    def __init__(
        self,
        config: RetryConfig | None = None,
        retryable_exceptions: tuple[type[Exception], ...] | None = None,
        *,
        retry_on_result: Callable[[Any], bool] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        """Initialize RetryPolicy.

        Args:
            config: Retry configuration. Uses defaults if None.
            retryable_exceptions: Exception types to retry on.
                Defaults to (RegistryUnavailableError, ConnectionError, TimeoutError).
            retry_on_result: Predicate marking a returned value as a transient
                failure that should be retried.
            cancel_event: When set, stops further attempts and interrupts waits.
        """
        self._config = config or RetryConfig()
        self._retryable_exceptions = retryable_exceptions or (
            RegistryUnavailableError,
            ConnectionError,
            TimeoutError,
        )
        self._retry_on_result = retry_on_result
        self._cancel_event = cancel_event
        self.attempts_made = 0

    @property
    def config(self) -> RetryConfig:
        """Return the retry configuration."""
        return self._config

    def with_result_predicate(self, retry_on_result: Callable[[Any], bool]) -> RetryPolicy:
        """Return a copy of this policy that also retries on matching results."""
        return RetryPolicy(
            self._config,
            self._retryable_exceptions,
            retry_on_result=retry_on_result,
            cancel_event=self._cancel_event,
        )

    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay before next retry attempt.

        Uses exponential backoff: delay = initial * (multiplier ^ attempt),
        capped at max_delay. Optionally adds jitter (±25%).

        Args:
            attempt: Current attempt number (0-indexed).

        Returns:
            Delay in seconds.
        """
        base_delay_ms = min(
            self._config.initial_delay_ms * (self._config.backoff_multiplier**attempt),
            self._config.max_delay_ms,
        )

        if self._config.jitter:
            jitter_range = base_delay_ms * 0.25
            base_delay_ms += random.uniform(-jitter_range, jitter_range)

        return max(base_delay_ms, 0.0) / 1000.0

    def should_retry(self, exception: Exception) -> bool:
        """Check if exception is retryable.

        Args:
            exception: The exception that was raised.

        Returns:
            True if the exception is in the retryable list.
        """
        return isinstance(exception, self._retryable_exceptions)

    def _check_cancelled(self, operation: str) -> None:
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise OperationCancelledError(operation)

    def _wait(self, delay: float, operation: str) -> None:
        if self._cancel_event is None:
            time.sleep(delay)
            return
        if self._cancel_event.wait(delay):
            raise OperationCancelledError(operation)

    def wrap(self, func: Callable[P, T]) -> Callable[P, T]:
        """Decorator to wrap a function with retry logic.

        Args:
            func: Function to wrap.

        Returns:
            Wrapped function that retries on transient failures.
        """
        operation = getattr(func, "__name__", "registry_call")

        @functools.wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            max_attempts = self._config.max_attempts
            previous_delay = 0.0
            self.attempts_made = 0

            for attempt in range(max_attempts):
                self._check_cancelled(operation)
                self.attempts_made = attempt + 1
                remaining = max_attempts - attempt - 1

                try:
                    result = func(*args, **kwargs)
                except Exception as e:
                    if not self.should_retry(e):
                        raise
                    if remaining == 0:
                        logger.warning(
                            "retry_exhausted",
                            operation=operation,
                            attempts=max_attempts,
                            error=str(e),
                        )
                        raise
                    error = str(e)
                else:
                    if self._retry_on_result is None or not self._retry_on_result(result):
                        return result
                    if remaining == 0:
                        logger.warning(
                            "retry_exhausted",
                            operation=operation,
                            attempts=max_attempts,
                            error=str(result),
                        )
                        return result
                    error = str(result)

                delay = max(previous_delay, self.calculate_delay(attempt))
                previous_delay = delay
                logger.debug(
                    "retry_attempt",
                    operation=operation,
                    attempt=attempt + 1,
                    max_attempts=max_attempts,
                    delay_seconds=delay,
                    error=error,
                )
                self._wait(delay, operation)

            # max_attempts >= 1, so the loop always returns or raises
            raise RuntimeError("Retry exhausted without result")  # pragma: no cover

        return wrapper

    def call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Call ``func`` under this policy.

        Example:
            >>> digest = policy.call(transport.put_manifest, dest_ref, manifest)
        """
        return self.wrap(func)(*args, **kwargs)


__all__ = ["RetryPolicy"]
