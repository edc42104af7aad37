"""Tests for the concurrent runner."""

import threading

import pytest

from converge.config import Settings
from converge.errors import ErrorKind, StepFailedError, WaitCancelledError
from converge.models import Action, Outcome, Plan
from converge.runner import Runner, Target
from tests.fakes import Widget, client_error

WIDGET = Widget()


@pytest.fixture
def runner_settings():
    return Settings(poll_interval=0, max_poll_interval=0, max_concurrent=1)


def test_empty_targets(service, runner_settings):
    run = Runner(service, runner_settings).apply([])
    assert run.results == {}
    assert run.failed == []


def test_plan(service, runner_settings):
    service.add("w1", "alpha", size=1)
    service.add("w2", "beta", size=1)
    targets = [
        Target("new", WIDGET, {"name": "gamma"}),
        Target("same", WIDGET, {"name": "alpha", "size": 1}, "w1"),
        Target("orphan", WIDGET, None, "w2"),
    ]

    run = Runner(service, runner_settings).plan(targets)

    assert run.results["new"] == Plan(Action.CREATE, None)
    assert run.results["same"].action == Action.NOOP
    assert run.results["orphan"] == Plan(Action.DELETE, "w2")
    assert service.widgets.keys() == {"w1", "w2"}


def test_apply_creates_updates_and_deletes(service, runner_settings):
    service.add("w1", "alpha", size=1)
    service.add("w2", "beta", size=1)
    targets = [
        Target("new", WIDGET, {"name": "gamma"}),
        Target("changed", WIDGET, {"name": "alpha", "size": 4}, "w1"),
        Target("orphan", WIDGET, None, "w2"),
    ]

    run = Runner(service, runner_settings).apply(targets)

    assert run.failed == []
    assert run.results["new"].action == Action.CREATE
    assert run.results["changed"].action == Action.UPDATE
    assert run.results["orphan"].outcome == Outcome.GONE
    assert set(service.widgets) == {"w1", "widget-1"}
    assert service.widgets["w1"]["Size"] == 4


def test_apply_reports_replacement_without_allow_replace(service, runner_settings):
    service.add("w1", "alpha")

    run = Runner(service, runner_settings).apply([Target("w", WIDGET, {"name": "beta"}, "w1")])

    assert run.results["w"].outcome == Outcome.REPLACEMENT_REQUIRED
    assert "w1" in service.widgets


def test_apply_replaces_when_allowed(service, runner_settings):
    service.add("w1", "alpha")
    targets = [Target("w", WIDGET, {"name": "beta"}, "w1")]

    run = Runner(service, runner_settings).apply(targets, allow_replace=True)

    result = run.results["w"]
    assert result.action == Action.REPLACE
    assert result.identifier == "widget-1"
    assert "w1" not in service.widgets


def test_failure_is_isolated(service):
    service.add("w1", "alpha", size=1)
    service.failures["create_widget"] = [client_error(ErrorKind.INVALID_INPUT, "create_widget")]
    targets = [
        Target("broken", WIDGET, {"name": "gamma"}),
        Target("fine", WIDGET, {"name": "alpha", "size": 2}, "w1"),
    ]

    run = Runner(service, Settings(poll_interval=0, max_poll_interval=0)).apply(targets)

    assert run.failed == ["broken"]
    assert run.results["fine"].ok


def test_refresh_and_destroy_skip_targets_without_identifier(service, runner_settings):
    service.add("w1", "alpha")
    targets = [Target("known", WIDGET, None, "w1"), Target("unknown", WIDGET, None)]
    runner = Runner(service, runner_settings)

    refreshed = runner.refresh(targets)
    assert list(refreshed.results) == ["known"]
    assert refreshed.results["known"].action == Action.READ

    destroyed = runner.destroy(targets)
    assert list(destroyed.results) == ["known"]
    assert service.widgets == {}


def test_cancelled_run_returns_partial_create(service, runner_settings):
    cancel = threading.Event()
    runner = Runner(service, runner_settings, cancel_event=cancel)
    runner.cancel()

    run = runner.apply([Target("w", WIDGET, {"name": "alpha"})])

    result = run.results["w"]
    assert result.outcome == Outcome.PARTIAL
    assert result.identifier == "widget-1"
    assert isinstance(result.error, WaitCancelledError)
    assert cancel.is_set()


def test_cancel_interrupts_throttled_update(service, runner_settings):
    service.add("w1", "alpha", size=1)
    service.failures["update_widget"] = [client_error(ErrorKind.THROTTLED, "update_widget")]
    runner = Runner(service, runner_settings)
    runner.cancel()

    run = runner.apply([Target("w", WIDGET, {"name": "alpha", "size": 2}, "w1")])

    result = run.results["w"]
    assert result.outcome == Outcome.PARTIAL
    assert result.identifier == "w1"
    assert isinstance(result.error, StepFailedError)
    assert isinstance(result.error.cause, WaitCancelledError)
    assert service.operations.count("update_widget") == 1
    assert service.widgets["w1"]["Size"] == 1
