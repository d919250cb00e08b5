"""Bounded retry and fixed-interval polling on top of tenacity.

Every delete/attach/detach call site and every status wait goes through these
helpers so that retry counts, delays and timeouts are expressed in one place.
Sleeps and the polling deadline go through a :class:`Clock` so tests can run
the loops instantly.
"""
from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception,
    retry_if_result,
    stop_after_attempt,
    wait_fixed,
)

T = TypeVar("T")


@dataclass(slots=True)
class Clock:
    """Source of monotonic time and blocking sleeps."""

    sleep: Callable[[float], None] = field(default=time.sleep)
    now: Callable[[], float] = field(default=time.monotonic)


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """Fixed retry budget: *attempts* calls separated by *delay* seconds."""

    attempts: int = 10
    delay: float = 3.0


class RetryExhaustedError(RuntimeError):
    """Raised when every attempt failed with a retryable error."""

    def __init__(self, last_error: BaseException, attempts: int) -> None:
        """Remember the final error and the number of attempts made."""
        super().__init__(f"Gave up after {attempts} attempts: {last_error}")
        self.last_error = last_error
        self.attempts = attempts


def retry_call(
    func: Callable[[], T],
    *,
    should_retry: Callable[[Exception], bool],
    policy: RetryPolicy,
    clock: Clock | None = None,
    on_retry: Callable[[int, Exception], None] | None = None,
) -> T:
    """Call *func* until it succeeds or the retry budget is spent.

    Only exceptions accepted by *should_retry* are retried; anything else
    propagates immediately. When the last attempt still fails with a retryable
    error, :class:`RetryExhaustedError` is raised from it.
    """
    effective_clock = clock or Clock()
    attempts = max(1, policy.attempts)

    def _before_sleep(state: RetryCallState) -> None:
        if on_retry is None or state.outcome is None:
            return
        error = state.outcome.exception()
        if isinstance(error, Exception):
            on_retry(state.attempt_number, error)

    retrying = Retrying(
        retry=retry_if_exception(lambda exc: isinstance(exc, Exception) and should_retry(exc)),
        stop=stop_after_attempt(attempts),
        wait=wait_fixed(policy.delay),
        sleep=effective_clock.sleep,
        before_sleep=_before_sleep,
    )
    try:
        return retrying(func)
    except RetryError as exc:
        last_error = exc.last_attempt.exception()
        assert last_error is not None
        raise RetryExhaustedError(last_error, attempts) from last_error


def poll_until(
    condition: Callable[[], bool],
    *,
    timeout: float,
    interval: float,
    clock: Clock | None = None,
) -> bool:
    """Evaluate *condition* every *interval* seconds until it holds.

    Returns ``True`` once the condition is met and ``False`` when *timeout*
    seconds elapse first. Exceptions raised by *condition* propagate.
    """
    effective_clock = clock or Clock()
    deadline = effective_clock.now() + timeout

    retrying = Retrying(
        retry=retry_if_result(lambda satisfied: not satisfied),
        stop=lambda _state: effective_clock.now() >= deadline,
        wait=wait_fixed(interval),
        sleep=effective_clock.sleep,
        retry_error_callback=lambda _state: False,
    )
    return bool(retrying(condition))


__all__ = ["Clock", "RetryExhaustedError", "RetryPolicy", "poll_until", "retry_call"]
