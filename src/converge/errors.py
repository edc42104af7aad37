"""Error taxonomy for remote calls, waits and lifecycle steps."""

from enum import StrEnum


class ErrorKind(StrEnum):
    """Classification of a failed remote call."""

    THROTTLED = "throttled"
    NOT_FOUND = "not-found"
    CONFLICT = "conflict"
    INVALID_INPUT = "invalid-input"
    TRANSIENT = "transient"
    FATAL = "fatal"


RETRYABLE_KINDS = frozenset({ErrorKind.THROTTLED, ErrorKind.TRANSIENT, ErrorKind.CONFLICT})


class ConvergeError(Exception):
    """Base class for all converge errors."""

    retryable = False


class ConfigurationError(ConvergeError):
    """Raised when settings fail validation."""


class ClientError(ConvergeError):
    """A classified failure returned by the remote control plane."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        code: str | None = None,
        service: str | None = None,
        operation: str | None = None,
    ):
        self.kind = kind
        self.message = message
        self.code = code
        self.service = service
        self.operation = operation
        where = f"{service}.{operation}" if service and operation else operation or "request"
        super().__init__(f"{where} failed ({kind}{', ' + code if code else ''}): {message}")

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS


class AmbiguousLookupError(ConvergeError):
    """A list-then-filter lookup matched more than one resource."""

    def __init__(self, operation: str, count: int):
        self.operation = operation
        self.count = count
        super().__init__(
            f"{operation} returned {count} matching resources; use more specific criteria"
        )


class ResourceGoneError(ConvergeError):
    """A resource could not be read back after a successful mutation."""

    def __init__(self, identifier: str, action: str):
        self.identifier = identifier
        self.action = action
        super().__init__(f"{identifier} not found after {action}")


class WaitError(ConvergeError):
    """Base class for status poller failures."""

    def __init__(self, message: str, *, identifier: str | None = None, last_status=None):
        self.identifier = identifier
        self.last_status = last_status
        super().__init__(message)


class WaitTimeoutError(WaitError):
    """The awaited status was not reached before the deadline."""

    retryable = True

    def __init__(
        self,
        timeout: float,
        *,
        identifier: str | None = None,
        last_status=None,
        last_error: Exception | None = None,
    ):
        self.timeout = timeout
        self.last_error = last_error
        message = f"timeout after {timeout:g}s waiting for {identifier or 'resource'}"
        message += f" (last status: {last_status or 'none observed'})"
        if last_error is not None:
            message += f" (last error: {last_error})"
        super().__init__(message, identifier=identifier, last_status=last_status)


class UnexpectedStatusError(WaitError):
    """The probe authoritatively reported a failure or unknown status."""

    def __init__(self, status, *, identifier: str | None = None, reason: str | None = None):
        self.reason = reason
        message = f"{identifier or 'resource'} reached unexpected status {status}"
        if reason:
            message += f": {reason}"
        super().__init__(message, identifier=identifier, last_status=status)


class WaitNotFoundError(WaitError):
    """The resource stayed invisible for too many consecutive probes."""

    def __init__(self, checks: int, *, identifier: str | None = None, last_status=None):
        self.checks = checks
        super().__init__(
            f"{identifier or 'resource'} not found after {checks} checks",
            identifier=identifier,
            last_status=last_status,
        )


class WaitCancelledError(WaitError):
    """The wait was interrupted by a cancellation signal."""

    retryable = True


class StepFailedError(ConvergeError):
    """One call in a multi-call lifecycle operation failed.

    ``identifier`` is set whenever the resource already exists, so callers
    can persist it even though the operation did not complete.
    """

    def __init__(self, step: str, identifier: str | None, cause: Exception):
        self.step = step
        self.identifier = identifier
        self.cause = cause
        target = f" for {identifier}" if identifier else ""
        super().__init__(f"{step} failed{target}: {cause}")

    @property
    def kind(self) -> ErrorKind | None:
        return getattr(self.cause, "kind", None)

    @property
    def retryable(self) -> bool:
        return getattr(self.cause, "retryable", False)
