"""
Retry logic with exponential backoff for handling transient store failures.

Provides a decorator for retrying idempotent store reads that fail on a
locked database or a dropped connection, and a circuit breaker that
refuses calls to a store that keeps failing instead of piling up
timeouts.
"""

import time
import functools
import threading
from typing import Callable, Type, Tuple, Optional
from datetime import datetime


class RetryError(Exception):
    """Raised when all retry attempts are exhausted."""
    pass


class CircuitOpenError(Exception):
    """Raised when a call is refused because the circuit is open."""
    pass


def exponential_backoff(
    max_retries: int = 2,
    base_delay: float = 0.2,
    max_delay: float = 5.0,
    exponential_base: float = 2.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    retry_if: Optional[Callable[[Exception], bool]] = None,
    on_retry: Optional[Callable] = None,
):
    """
    Decorator for retrying functions with exponential backoff.

    Only wrap idempotent calls: a retried insert may land twice.

    Args:
        max_retries: Maximum number of retry attempts (0 = no retries)
        base_delay: Initial delay in seconds
        max_delay: Maximum delay between retries in seconds
        exponential_base: Base for exponential calculation (delay *= base)
        exceptions: Tuple of exceptions to catch and retry
        retry_if: Optional predicate; a caught exception for which it
            returns False is re-raised immediately
        on_retry: Optional callback function(attempt, exception, delay)

    Example:
        @exponential_backoff(exceptions=(OperationalError,), retry_if=is_transient_error)
        def load_worker(session, worker_id):
            return session.get(Worker, worker_id)
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            delay = base_delay

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if retry_if is not None and not retry_if(e):
                        raise

                    if attempt == max_retries:
                        raise RetryError(
                            f"Failed after {max_retries + 1} attempts: {str(e)}"
                        ) from e

                    current_delay = min(delay, max_delay)
                    if on_retry:
                        on_retry(attempt + 1, e, current_delay)
                    time.sleep(current_delay)
                    delay *= exponential_base

        return wrapper
    return decorator


class CircuitBreaker:
    """
    Circuit breaker guarding calls to the relational store.

    States:
    - CLOSED: Normal operation, calls pass through
    - OPEN: Too many consecutive failures, calls are refused
    - HALF_OPEN: Recovery timeout elapsed, the next call is a trial call

    One breaker is shared by every request thread using the same store, so
    state changes are made under a lock. The guarded call itself runs
    outside it.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 30,
        expected_exception: Tuple[Type[Exception], ...] = (Exception,),
    ):
        """
        Initialize circuit breaker.

        Args:
            failure_threshold: Consecutive failures before opening the circuit
            recovery_timeout: Seconds to wait before letting a trial call through
            expected_exception: Exception types that count as failures
        """
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception

        self.failure_count = 0
        self.last_failure_time: Optional[datetime] = None
        self.state = self.CLOSED
        self._lock = threading.Lock()

    def call(self, func: Callable, *args, **kwargs):
        """
        Execute function with circuit breaker protection.

        Raises:
            CircuitOpenError: If circuit is OPEN
            Original exception: If function fails in CLOSED/HALF_OPEN state
        """
        with self._lock:
            if self.state == self.OPEN:
                remaining = self.seconds_until_reset()
                if remaining > 0:
                    raise CircuitOpenError(
                        f"Circuit breaker is OPEN. Store unavailable. "
                        f"Retry after {remaining:.0f}s"
                    )
                self.state = self.HALF_OPEN

        try:
            result = func(*args, **kwargs)
        except self.expected_exception:
            self._on_failure()
            raise
        self._on_success()
        return result

    def seconds_until_reset(self) -> float:
        """Seconds left before an open circuit lets a trial call through."""
        if self.last_failure_time is None:
            return 0
        elapsed = (datetime.now() - self.last_failure_time).total_seconds()
        return max(0, self.recovery_timeout - elapsed)

    def _on_success(self):
        with self._lock:
            self.failure_count = 0
            self.state = self.CLOSED

    def _on_failure(self):
        with self._lock:
            self.failure_count += 1
            self.last_failure_time = datetime.now()

            # A failed trial call reopens immediately.
            if self.state == self.HALF_OPEN or self.failure_count >= self.failure_threshold:
                self.state = self.OPEN

    def reset(self):
        """Manually reset the circuit breaker."""
        with self._lock:
            self.failure_count = 0
            self.last_failure_time = None
            self.state = self.CLOSED


def is_transient_error(exception: Exception) -> bool:
    """
    Determine if a store exception is likely transient and worth retrying.

    Args:
        exception: Exception to check

    Returns:
        True if error is likely transient (lock, timeout, connection)
    """
    error_str = str(exception).lower()

    transient_keywords = [
        'database is locked',
        'database table is locked',
        'timeout',
        'timed out',
        'connection',
        'disk i/o error',
        'server closed the connection',
        'could not connect',
    ]

    return any(keyword in error_str for keyword in transient_keywords)
