"""Settings for polling, retries and concurrency, loaded from the environment."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum

from converge.errors import ConfigurationError

DEFAULT_POLL_INTERVAL_SECONDS = 5.0
DEFAULT_MAX_POLL_INTERVAL_SECONDS = 30.0
DEFAULT_TIMEOUT_SECONDS = 20 * 60
DEFAULT_NOT_FOUND_CHECKS = 20
DEFAULT_MAX_CONFLICT_ATTEMPTS = 5
DEFAULT_MUTATION_RETRY_TIMEOUT_SECONDS = 2 * 60
DEFAULT_PROPAGATION_TIMEOUT_SECONDS = 2 * 60
DEFAULT_MAX_CONCURRENT = 5
MAX_CONCURRENT_LIMIT = 50

ENV_PREFIX = "CONVERGE_"


class Backoff(StrEnum):
    """How the poll interval grows between probes."""

    CONSTANT = "constant"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


@dataclass(frozen=True)
class Settings:
    """Poller, retry and worker-pool configuration.

    ``timeout`` is the fallback wait timeout; resource types carry their own
    per-action timeouts which take precedence unless ``timeout_override`` is set.
    """

    poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS
    max_poll_interval: float = DEFAULT_MAX_POLL_INTERVAL_SECONDS
    backoff: Backoff = Backoff.LINEAR
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    timeout_override: bool = False
    delay: float = 0.0
    not_found_checks: int = DEFAULT_NOT_FOUND_CHECKS
    continuous_target_occurrence: int = 1
    max_conflict_attempts: int = DEFAULT_MAX_CONFLICT_ATTEMPTS
    mutation_retry_timeout: float = DEFAULT_MUTATION_RETRY_TIMEOUT_SECONDS
    propagation_timeout: float = DEFAULT_PROPAGATION_TIMEOUT_SECONDS
    max_concurrent: int = DEFAULT_MAX_CONCURRENT
    region: str | None = None

    def __post_init__(self) -> None:
        if self.poll_interval < 0:
            raise ConfigurationError("CONVERGE_POLL_INTERVAL must be >= 0")
        if self.max_poll_interval < self.poll_interval:
            raise ConfigurationError(
                "CONVERGE_MAX_POLL_INTERVAL must be >= CONVERGE_POLL_INTERVAL"
            )
        if self.timeout <= 0:
            raise ConfigurationError("CONVERGE_TIMEOUT must be > 0")
        if self.delay < 0:
            raise ConfigurationError("CONVERGE_DELAY must be >= 0")
        if self.not_found_checks < 0:
            raise ConfigurationError("CONVERGE_NOT_FOUND_CHECKS must be >= 0")
        if self.continuous_target_occurrence < 1:
            raise ConfigurationError("CONVERGE_CONTINUOUS_TARGET_OCCURRENCE must be >= 1")
        if self.max_conflict_attempts < 1:
            raise ConfigurationError("CONVERGE_MAX_CONFLICT_ATTEMPTS must be >= 1")
        if self.mutation_retry_timeout < 0 or self.propagation_timeout < 0:
            raise ConfigurationError("Retry timeouts must be >= 0")
        if not 1 <= self.max_concurrent <= MAX_CONCURRENT_LIMIT:
            raise ConfigurationError(
                f"CONVERGE_MAX_CONCURRENT must be between 1 and {MAX_CONCURRENT_LIMIT}"
            )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """Build settings from ``CONVERGE_*`` environment variables."""
        env = os.environ if environ is None else environ
        kwargs: dict = {}

        floats = {
            "POLL_INTERVAL": "poll_interval",
            "MAX_POLL_INTERVAL": "max_poll_interval",
            "TIMEOUT": "timeout",
            "DELAY": "delay",
            "MUTATION_RETRY_TIMEOUT": "mutation_retry_timeout",
            "PROPAGATION_TIMEOUT": "propagation_timeout",
        }
        ints = {
            "NOT_FOUND_CHECKS": "not_found_checks",
            "CONTINUOUS_TARGET_OCCURRENCE": "continuous_target_occurrence",
            "MAX_CONFLICT_ATTEMPTS": "max_conflict_attempts",
            "MAX_CONCURRENT": "max_concurrent",
        }
        for suffix, name in floats.items():
            raw = env.get(ENV_PREFIX + suffix)
            if raw:
                kwargs[name] = _parse(raw, float, ENV_PREFIX + suffix)
        for suffix, name in ints.items():
            raw = env.get(ENV_PREFIX + suffix)
            if raw:
                kwargs[name] = _parse(raw, int, ENV_PREFIX + suffix)

        backoff = env.get(ENV_PREFIX + "BACKOFF")
        if backoff:
            try:
                kwargs["backoff"] = Backoff(backoff.lower())
            except ValueError:
                raise ConfigurationError(
                    f"CONVERGE_BACKOFF must be one of {[b.value for b in Backoff]}, got {backoff!r}"
                ) from None

        if "timeout" in kwargs:
            kwargs["timeout_override"] = True

        region = env.get(ENV_PREFIX + "REGION") or env.get("AWS_REGION")
        if region:
            kwargs["region"] = region

        return cls(**kwargs)

    def interval(self, attempt: int) -> float:
        """Sleep before the probe following ``attempt`` (0-based)."""
        if self.backoff == Backoff.CONSTANT:
            delay = self.poll_interval
        elif self.backoff == Backoff.EXPONENTIAL:
            delay = self.poll_interval * (2**attempt)
        else:
            delay = self.poll_interval * (attempt + 1)
        return min(delay, self.max_poll_interval)


def _parse(raw: str, kind: type, name: str):
    try:
        return kind(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a {kind.__name__}, got {raw!r}") from None
