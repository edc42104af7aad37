"""Generic bounded polling for asynchronous provider operations."""

import logging
import threading
import time
from collections.abc import Callable, Iterable
from typing import Any

from converge.config import Settings
from converge.errors import (
    ClientError,
    ErrorKind,
    UnexpectedStatusError,
    WaitCancelledError,
    WaitNotFoundError,
    WaitTimeoutError,
)
from converge.models import PendingOperation, StatusTag

logger = logging.getLogger(__name__)

Probe = Callable[[], tuple[Any, str]]


class StatusWaiter:
    """Polls a status probe until a target status, a failure status, or timeout.

    A probe returns ``(payload, status)``. Three ways to stop unsuccessfully
    are kept apart: a retryable probe error is only counted and retried, a
    status in the failure set raises UnexpectedStatusError at once, and
    running out of time raises WaitTimeoutError with the last status seen.

    ``sleep`` and ``clock`` are injectable; by default sleeping waits on the
    cancel event so a shutdown interrupts it.
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

    def await_operation(self, operation: PendingOperation, probe: Probe) -> Any:
        """Wait for a PendingOperation to resolve."""
        return self.wait(
            probe,
            operation.target,
            operation.failure,
            pending=operation.pending or None,
            timeout=operation.timeout,
            identifier=operation.identifier,
        )

    def wait(
        self,
        probe: Probe,
        target: Iterable[str],
        failure: Iterable[str],
        *,
        pending: Iterable[str] | None = None,
        timeout: float | None = None,
        identifier: str | None = None,
    ) -> Any:
        """Poll ``probe`` and return the payload of the terminal target observation."""
        target = frozenset(target)
        failure = frozenset(failure)
        pending = frozenset(pending) if pending else None
        settings = self._settings
        if timeout is None or settings.timeout_override:
            timeout = settings.timeout

        deadline = self._clock() + timeout
        last_status = None
        last_error: Exception | None = None
        not_found = 0
        targets_seen = 0
        attempt = 0

        if settings.delay > 0:
            self._pause(min(settings.delay, timeout), identifier, last_status)

        while True:
            self._check_cancelled(identifier, last_status)

            try:
                payload, status = probe()
            except ClientError as err:
                if err.kind == ErrorKind.NOT_FOUND:
                    payload, status = None, StatusTag.NOT_FOUND
                elif err.retryable:
                    last_error = err
                    logger.debug("Retryable probe error for %s: %s", identifier, err)
                    status = None
                else:
                    raise

            if status is not None:
                if status in target:
                    targets_seen += 1
                    if targets_seen >= settings.continuous_target_occurrence:
                        logger.debug("%s reached %s", identifier, status)
                        return payload
                else:
                    targets_seen = 0
                    if status in failure:
                        raise UnexpectedStatusError(
                            status, identifier=identifier, reason=_status_reason(payload)
                        )
                    if status == StatusTag.NOT_FOUND:
                        not_found += 1
                        if not_found > settings.not_found_checks:
                            raise WaitNotFoundError(
                                not_found, identifier=identifier, last_status=last_status
                            )
                    elif pending is not None and status not in pending:
                        raise UnexpectedStatusError(
                            status, identifier=identifier, reason=_status_reason(payload)
                        )
                    else:
                        not_found = 0
                last_status = status

            remaining = deadline - self._clock()
            if remaining <= 0:
                raise WaitTimeoutError(
                    timeout,
                    identifier=identifier,
                    last_status=last_status,
                    last_error=last_error,
                )

            interval = settings.interval(attempt)
            attempt += 1
            logger.debug(
                "Waiting %.1fs for %s (status %s, want %s)",
                min(interval, remaining),
                identifier,
                last_status,
                sorted(target),
            )
            self._pause(min(interval, remaining), identifier, last_status)

    def _pause(self, seconds: float, identifier, last_status) -> None:
        if self._sleep is not None:
            self._sleep(seconds)
        elif self._cancel.wait(seconds):
            raise WaitCancelledError(
                f"wait for {identifier or 'resource'} cancelled",
                identifier=identifier,
                last_status=last_status,
            )

    def _check_cancelled(self, identifier, last_status) -> None:
        if self._cancel.is_set():
            raise WaitCancelledError(
                f"wait for {identifier or 'resource'} cancelled",
                identifier=identifier,
                last_status=last_status,
            )


def _status_reason(payload: Any) -> str | None:
    return getattr(payload, "status_reason", None)
