"""Shared test fixtures."""

import pytest

from converge.config import Backoff, Settings
from converge.orchestrator import Orchestrator
from converge.retry import RetryPolicy
from converge.waiter import StatusWaiter
from tests.fakes import FakeClock, FakeWidgetService, Widget


@pytest.fixture
def aws_credentials(monkeypatch):
    """Set dummy AWS credentials for moto."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings(
        poll_interval=1.0,
        max_poll_interval=1.0,
        backoff=Backoff.CONSTANT,
        timeout=60,
        not_found_checks=3,
        max_conflict_attempts=3,
        mutation_retry_timeout=5,
        propagation_timeout=5,
    )


@pytest.fixture
def waiter(settings, clock):
    return StatusWaiter(settings, clock=clock, sleep=clock.sleep)


@pytest.fixture
def retry(settings):
    return RetryPolicy(settings, sleep=lambda seconds: None)


@pytest.fixture
def service():
    return FakeWidgetService()


@pytest.fixture
def orchestrator(service, settings, waiter, retry):
    return Orchestrator(service, Widget(), settings, waiter=waiter, retry=retry)
