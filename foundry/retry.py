"""Retry and backoff utilities.

Provides:
- RetryPolicy: configuration for delays, jitter and attempts
- BackoffTimer: deadline-bounded exponential sleeper shared by all polling loops
- execute_with_retry: run a callable, retrying transient failures
- poll_until: repeatedly evaluate a check until it yields a result

Sleep and clock functions are injectable so deadline behavior can be tested
without real waiting.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Tuple, Type, TypeVar

from foundry.exceptions import (
    PollingTimeoutError,
    PollingTransportError,
    RetryExhaustedError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
Predicate = Callable[[BaseException], bool]
SleepFn = Callable[[float], None]
ClockFn = Callable[[], float]


@dataclass
class RetryPolicy:
    """Configuration for retry behavior with exponential backoff."""

    max_attempts: int = 5
    base_delay: float = 0.5
    max_delay: float = 8.0
    backoff_multiplier: float = 2.0
    jitter: float = 0.2  # fraction of delay as jitter (0.0-1.0)
    retry_on_exceptions: Tuple[Type[BaseException], ...] = field(
        default_factory=lambda: (
            PollingTransportError,
            TimeoutError,
            ConnectionError,
        )
    )
    retry_if: Optional[Predicate] = None  # custom predicate

    def should_retry(self, exc: BaseException) -> bool:
        if self.retry_if is not None:
            try:
                return bool(self.retry_if(exc))
            except Exception:
                return False
        return isinstance(exc, self.retry_on_exceptions)

    def compute_delay(self, attempt: int) -> float:
        delay = min(
            self.max_delay, self.base_delay * (self.backoff_multiplier ** (attempt - 1))
        )
        if self.jitter > 0:
            span = delay * self.jitter
            delay = max(0.0, random.uniform(delay - span, delay + span))
        return delay


class BackoffTimer:
    """Deadline-bounded exponential backoff.

    Each call to :meth:`wait` sleeps for the next delay of the policy. Once
    the deadline has passed, ``wait`` raises :class:`PollingTimeoutError`
    instead of sleeping. :meth:`reset` restarts both the delay sequence and
    the deadline, which is how callers signal that progress was made.
    """

    def __init__(
        self,
        policy: RetryPolicy,
        timeout: Optional[float],
        operation: str,
        sleep: SleepFn = time.sleep,
        clock: ClockFn = time.monotonic,
    ) -> None:
        self.policy = policy
        self.timeout = timeout
        self.operation = operation
        self._sleep = sleep
        self._clock = clock
        self.attempt = 0
        self.started_at = clock()

    @property
    def deadline(self) -> Optional[float]:
        if self.timeout is None:
            return None
        return self.started_at + self.timeout

    def expired(self) -> bool:
        deadline = self.deadline
        return deadline is not None and self._clock() >= deadline

    def reset(self) -> None:
        self.attempt = 0
        self.started_at = self._clock()

    def wait(self) -> float:
        if self.expired():
            raise PollingTimeoutError(
                f"Timed out waiting for {self.operation}",
                operation=self.operation,
                timeout_seconds=self.timeout,
            )
        self.attempt += 1
        delay = self.policy.compute_delay(self.attempt)
        deadline = self.deadline
        if deadline is not None:
            delay = max(0.0, min(delay, deadline - self._clock()))
        logger.debug(f"Waiting {delay:.2f}s for {self.operation} (attempt {self.attempt})")
        self._sleep(delay)
        return delay


def execute_with_retry(
    func: Callable[..., T],
    *args: Any,
    policy: Optional[RetryPolicy] = None,
    operation_name: Optional[str] = None,
    sleep: SleepFn = time.sleep,
    **kwargs: Any,
) -> T:
    """Execute a function, retrying retryable failures with backoff.

    - Non-retryable exceptions propagate unchanged
    - Retryable ones are retried up to ``max_attempts`` times, then
      escalated to RetryExhaustedError
    """
    policy = policy or RetryPolicy()
    name = operation_name or getattr(func, "__name__", "operation")
    attempts = 0

    while True:
        attempts += 1
        try:
            return func(*args, **kwargs)
        except Exception as exc:
            if not policy.should_retry(exc):
                raise
            if attempts >= policy.max_attempts:
                raise RetryExhaustedError(
                    f"Operation failed after {attempts} attempt(s): {name}",
                    attempts=attempts,
                    operation=name,
                    last_error=exc,
                ) from exc
            delay = policy.compute_delay(attempts)
            logger.warning(f"{name} failed (attempt {attempts}/{policy.max_attempts}): {exc}; retrying in {delay:.2f}s")
            sleep(delay)


def poll_until(
    check: Callable[[], Optional[T]],
    policy: RetryPolicy,
    timeout: Optional[float],
    operation_name: str,
    sleep: SleepFn = time.sleep,
    clock: ClockFn = time.monotonic,
) -> T:
    """Call ``check`` until it returns something other than ``None``.

    Retryable exceptions raised by ``check`` count as "not yet" until the
    deadline; if the deadline passes while the last attempt failed, the
    failure is escalated to RetryExhaustedError, otherwise
    PollingTimeoutError is raised.
    """
    timer = BackoffTimer(policy, timeout, operation_name, sleep=sleep, clock=clock)
    last_error: Optional[Exception] = None
    attempts = 0

    while True:
        attempts += 1
        try:
            result = check()
            last_error = None
        except Exception as exc:
            if not policy.should_retry(exc):
                raise
            logger.warning(f"Transient failure while polling {operation_name}: {exc}")
            last_error = exc
            result = None
        if result is not None:
            return result
        try:
            timer.wait()
        except PollingTimeoutError:
            if last_error is not None:
                raise RetryExhaustedError(
                    f"Polling failed until the deadline: {operation_name}",
                    attempts=attempts,
                    operation=operation_name,
                    last_error=last_error,
                ) from last_error
            raise
