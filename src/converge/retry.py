"""Retry policies for mutating calls and read-after-write lookups."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Any, TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    before_sleep_log,
    retry_if_exception,
    retry_if_exception_type,
    wait_exponential,
    wait_fixed,
)

from converge.config import Settings
from converge.errors import ClientError, ErrorKind, ResourceGoneError, WaitCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_retryable(exc: BaseException) -> bool:
    """Conflict, throttling and transient failures are worth another attempt."""
    return isinstance(exc, ClientError) and exc.retryable


class RetryPolicy:
    """Retries shared by every lifecycle operation.

    Conflicts (a concurrent operation on the same resource) get a small,
    capped number of attempts. Throttling and transient errors are retried
    until ``mutation_retry_timeout`` has elapsed. No wait runs past that
    budget, and a set cancel event aborts the next wait with
    WaitCancelledError.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        cancel_event: threading.Event | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] | None = None,
    ):
        self._settings = settings or Settings()
        self._cancel = cancel_event or threading.Event()
        self._clock = clock
        self._sleep = sleep

    def mutation(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Call a mutating ``fn`` under the conflict/throttle policy."""
        settings = self._settings
        budget = settings.mutation_retry_timeout
        started = self._clock()
        backoff = wait_exponential(multiplier=1, min=1, max=settings.max_poll_interval)

        def stop(retry_state: RetryCallState) -> bool:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            if isinstance(exc, ClientError) and exc.kind == ErrorKind.CONFLICT:
                if retry_state.attempt_number >= settings.max_conflict_attempts:
                    return True
            return self._clock() - started >= budget

        retrying = Retrying(
            retry=retry_if_exception(is_retryable),
            stop=stop,
            wait=self._capped(backoff, started, budget),
            sleep=self._pause,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        return retrying(fn, *args, **kwargs)

    def read_after_write(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Retry ``fn`` while it raises ResourceGoneError.

        A write can be invisible to reads for a short while; the retry is
        bounded by ``propagation_timeout`` and ``not_found_checks``.
        """
        settings = self._settings
        budget = settings.propagation_timeout
        started = self._clock()

        def stop(retry_state: RetryCallState) -> bool:
            if retry_state.attempt_number > settings.not_found_checks:
                return True
            return self._clock() - started >= budget

        retrying = Retrying(
            retry=retry_if_exception_type(ResourceGoneError),
            stop=stop,
            wait=self._capped(wait_fixed(settings.poll_interval), started, budget),
            sleep=self._pause,
            reraise=True,
        )
        return retrying(fn, *args, **kwargs)

    def _capped(
        self, wait: Callable[[RetryCallState], float], started: float, budget: float
    ) -> Callable[[RetryCallState], float]:
        def capped(retry_state: RetryCallState) -> float:
            remaining = budget - (self._clock() - started)
            return max(0.0, min(wait(retry_state), remaining))

        return capped

    def _pause(self, seconds: float) -> None:
        if self._cancel.is_set():
            raise WaitCancelledError("retry cancelled")
        if self._sleep is not None:
            self._sleep(seconds)
        elif self._cancel.wait(seconds):
            raise WaitCancelledError("retry cancelled")
