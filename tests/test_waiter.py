"""Tests for the status poller."""

import threading

import pytest

from converge.config import Backoff, Settings
from converge.errors import (
    ClientError,
    ErrorKind,
    UnexpectedStatusError,
    WaitCancelledError,
    WaitNotFoundError,
    WaitTimeoutError,
)
from converge.models import Action, PendingOperation, RemoteState, StatusTag
from converge.waiter import StatusWaiter
from tests.fakes import FakeClock, client_error

READY = {StatusTag.AVAILABLE}
FAILED = {StatusTag.FAILED}


def scripted(*steps):
    """Probe yielding ``(payload, status)`` pairs, or raising exceptions, in order.

    The last step repeats once the script runs out.
    """
    steps = list(steps)
    calls = []

    def probe():
        step = steps[min(len(calls), len(steps) - 1)]
        calls.append(step)
        if isinstance(step, Exception):
            raise step
        return step

    probe.calls = calls
    return probe


def state(status, reason=None):
    return RemoteState("t1", {}, status, reason)


def test_returns_payload_after_two_sleeps(waiter, clock):
    ready = state(StatusTag.AVAILABLE)
    probe = scripted(
        (state(StatusTag.CREATING), StatusTag.CREATING),
        (state(StatusTag.CREATING), StatusTag.CREATING),
        (ready, StatusTag.AVAILABLE),
    )

    result = waiter.wait(probe, READY, FAILED)

    assert result is ready
    assert clock.sleeps == [1.0, 1.0]


def test_times_out_with_last_status(waiter, clock):
    probe = scripted((state(StatusTag.CREATING), StatusTag.CREATING))

    with pytest.raises(WaitTimeoutError) as exc_info:
        waiter.wait(probe, READY, FAILED, timeout=5, identifier="t1")

    err = exc_info.value
    assert clock.now == pytest.approx(5.0)
    assert err.last_status == StatusTag.CREATING
    assert "CREATING" in str(err)
    assert err.retryable


def test_not_found_target_returns_without_sleeping(waiter, clock):
    probe = scripted((None, StatusTag.NOT_FOUND))

    result = waiter.wait(probe, {StatusTag.NOT_FOUND}, FAILED)

    assert result is None
    assert clock.sleeps == []


def test_not_found_error_counts_as_not_found_status(waiter, clock):
    probe = scripted(client_error(ErrorKind.NOT_FOUND, "describe_widget"))

    assert waiter.wait(probe, {StatusTag.NOT_FOUND}, FAILED) is None
    assert clock.sleeps == []


def test_failure_status_raises_immediately(waiter, clock):
    probe = scripted(
        (state(StatusTag.CREATING), StatusTag.CREATING),
        (state(StatusTag.FAILED, "KMS key disabled"), StatusTag.FAILED),
    )

    with pytest.raises(UnexpectedStatusError) as exc_info:
        waiter.wait(probe, READY, FAILED, identifier="t1")

    err = exc_info.value
    assert err.last_status == StatusTag.FAILED
    assert err.reason == "KMS key disabled"
    assert "KMS key disabled" in str(err)
    assert clock.sleeps == [1.0]


def test_retryable_probe_errors_are_retried(waiter, clock):
    ready = state(StatusTag.AVAILABLE)
    probe = scripted(
        client_error(ErrorKind.THROTTLED, "describe_widget"),
        client_error(ErrorKind.TRANSIENT, "describe_widget"),
        (ready, StatusTag.AVAILABLE),
    )

    assert waiter.wait(probe, READY, FAILED) is ready
    assert len(probe.calls) == 3


def test_persistent_transient_errors_time_out_with_last_error(waiter):
    probe = scripted(client_error(ErrorKind.TRANSIENT, "describe_widget"))

    with pytest.raises(WaitTimeoutError) as exc_info:
        waiter.wait(probe, READY, FAILED, timeout=3)

    assert exc_info.value.last_status is None
    assert isinstance(exc_info.value.last_error, ClientError)


def test_non_retryable_probe_error_propagates(waiter, clock):
    probe = scripted(client_error(ErrorKind.FATAL, "describe_widget"))

    with pytest.raises(ClientError) as exc_info:
        waiter.wait(probe, READY, FAILED)

    assert exc_info.value.kind == ErrorKind.FATAL
    assert clock.sleeps == []


def test_not_found_limit(waiter, clock):
    probe = scripted((None, StatusTag.NOT_FOUND))

    with pytest.raises(WaitNotFoundError) as exc_info:
        waiter.wait(probe, READY, FAILED, identifier="t1")

    assert exc_info.value.checks == 4
    assert len(probe.calls) == 4


def test_not_found_count_resets_when_visible(waiter):
    ready = state(StatusTag.AVAILABLE)
    creating = (state(StatusTag.CREATING), StatusTag.CREATING)
    missing = (None, StatusTag.NOT_FOUND)
    probe = scripted(missing, missing, missing, creating, missing, missing, (ready, "AVAILABLE"))

    assert waiter.wait(probe, READY, FAILED) is ready


def test_status_outside_pending_set_raises(waiter):
    probe = scripted((state(StatusTag.UPDATING), StatusTag.UPDATING))

    with pytest.raises(UnexpectedStatusError) as exc_info:
        waiter.wait(probe, READY, FAILED, pending={StatusTag.CREATING})

    assert exc_info.value.last_status == StatusTag.UPDATING


def test_continuous_target_occurrence(clock):
    settings = Settings(
        poll_interval=1,
        max_poll_interval=1,
        backoff=Backoff.CONSTANT,
        continuous_target_occurrence=2,
    )
    waiter = StatusWaiter(settings, clock=clock, sleep=clock.sleep)
    ready = (state(StatusTag.AVAILABLE), StatusTag.AVAILABLE)
    probe = scripted(ready, (state(StatusTag.UPDATING), StatusTag.UPDATING), ready, ready)

    waiter.wait(probe, READY, FAILED)

    assert len(probe.calls) == 4
    assert clock.sleeps == [1, 1, 1]


def test_initial_delay(clock):
    settings = Settings(poll_interval=1, max_poll_interval=1, delay=2)
    waiter = StatusWaiter(settings, clock=clock, sleep=clock.sleep)

    waiter.wait(scripted((None, StatusTag.AVAILABLE)), READY, FAILED)

    assert clock.sleeps == [2]


def test_linear_backoff_never_sleeps_past_deadline(clock):
    settings = Settings(poll_interval=1, max_poll_interval=10, backoff=Backoff.LINEAR)
    waiter = StatusWaiter(settings, clock=clock, sleep=clock.sleep)
    probe = scripted((None, StatusTag.CREATING))

    with pytest.raises(WaitTimeoutError):
        waiter.wait(probe, READY, FAILED, timeout=5)

    assert clock.sleeps == [1, 2, 2]


def test_timeout_override_beats_operation_timeout(clock):
    settings = Settings(poll_interval=1, max_poll_interval=1, timeout=3, timeout_override=True)
    waiter = StatusWaiter(settings, clock=clock, sleep=clock.sleep)
    operation = PendingOperation(
        "t1", Action.CREATE, frozenset(READY), frozenset(FAILED), timeout=600
    )

    with pytest.raises(WaitTimeoutError) as exc_info:
        waiter.await_operation(operation, scripted((None, StatusTag.CREATING)))

    assert exc_info.value.timeout == 3
    assert clock.now == pytest.approx(3.0)


def test_await_operation_uses_operation_sets(waiter):
    operation = PendingOperation(
        "t1",
        Action.DELETE,
        frozenset({StatusTag.NOT_FOUND}),
        frozenset(FAILED),
        pending=frozenset({StatusTag.DELETING}),
        timeout=30,
    )
    probe = scripted((state(StatusTag.DELETING), StatusTag.DELETING), (None, StatusTag.NOT_FOUND))

    assert waiter.await_operation(operation, probe) is None


def test_cancelled_before_first_probe(settings):
    cancel = threading.Event()
    cancel.set()
    waiter = StatusWaiter(settings, cancel_event=cancel, clock=FakeClock())
    probe = scripted((None, StatusTag.CREATING))

    with pytest.raises(WaitCancelledError):
        waiter.wait(probe, READY, FAILED)

    assert probe.calls == []


def test_cancel_interrupts_sleep(settings):
    cancel = threading.Event()
    waiter = StatusWaiter(settings, cancel_event=cancel)

    def probe():
        cancel.set()
        return state(StatusTag.CREATING), StatusTag.CREATING

    with pytest.raises(WaitCancelledError) as exc_info:
        waiter.wait(probe, READY, FAILED, identifier="t1")

    assert exc_info.value.last_status == StatusTag.CREATING
    assert exc_info.value.retryable
