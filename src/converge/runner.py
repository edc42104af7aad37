"""Reconciles independent resources concurrently."""

import logging
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any

from converge.aws.client import AwsClient
from converge.config import Settings
from converge.models import Action, DesiredState, Outcome, Plan, RunResult
from converge.orchestrator import Orchestrator
from converge.resources.base import ResourceType
from converge.retry import RetryPolicy
from converge.waiter import StatusWaiter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Target:
    """One resource to reconcile."""

    address: str
    resource_type: ResourceType
    desired: DesiredState | None = None
    identifier: str | None = None


class Runner:
    """Runs one orchestrator per resource on a bounded worker pool.

    Resources are treated as independent; ordering between them is the
    caller's concern. The AwsClient is the only object shared by workers.
    """

    def __init__(
        self,
        client: AwsClient,
        settings: Settings | None = None,
        *,
        cancel_event: threading.Event | None = None,
    ):
        self._client = client
        self._settings = settings or Settings()
        self._cancel = cancel_event or threading.Event()

    def cancel(self) -> None:
        """Interrupt in-flight waits at their next poll boundary."""
        self._cancel.set()

    def plan(self, targets: list[Target]) -> RunResult:
        """Targets without desired state are planned for deletion."""

        def work(orch: Orchestrator, target: Target):
            if target.desired is None:
                return Plan(Action.DELETE, target.identifier)
            return orch.plan(target.desired, target.identifier)

        return self._run(targets, work)

    def refresh(self, targets: list[Target]) -> RunResult:
        return self._run(
            [t for t in targets if t.identifier], lambda orch, t: orch.read(t.identifier)
        )

    def destroy(self, targets: list[Target]) -> RunResult:
        return self._run(
            [t for t in targets if t.identifier], lambda orch, t: orch.delete(t.identifier)
        )

    def apply(self, targets: list[Target], *, allow_replace: bool = False) -> RunResult:
        """Create, update or (for targets without desired state) delete.

        Replacement is only carried out when ``allow_replace`` is set;
        otherwise the REPLACEMENT_REQUIRED result is returned as is.
        """

        def work(orch: Orchestrator, target: Target):
            if target.desired is None:
                return orch.delete(target.identifier)
            result = orch.apply(target.desired, target.identifier)
            if allow_replace and result.outcome == Outcome.REPLACEMENT_REQUIRED:
                logger.info("Replacing %s", target.address)
                return orch.replace(result.identifier, target.desired)
            return result

        return self._run(targets, work)

    def _orchestrator(self, target: Target) -> Orchestrator:
        waiter = StatusWaiter(self._settings, cancel_event=self._cancel)
        retry = RetryPolicy(self._settings, cancel_event=self._cancel)
        return Orchestrator(
            self._client, target.resource_type, self._settings, waiter=waiter, retry=retry
        )

    def _run(
        self, targets: list[Target], work: Callable[[Orchestrator, Target], Any]
    ) -> RunResult:
        if not targets:
            return RunResult(results={}, failed=[])

        results: dict[str, Any] = {}
        failed: list[str] = []

        with ThreadPoolExecutor(max_workers=self._settings.max_concurrent) as executor:
            futures = {
                executor.submit(work, self._orchestrator(target), target): target
                for target in targets
            }
            try:
                for future in as_completed(futures):
                    target = futures[future]
                    try:
                        results[target.address] = future.result()
                    except Exception:
                        logger.exception("Failed to reconcile %s", target.address)
                        failed.append(target.address)
            except KeyboardInterrupt:
                self.cancel()
                raise

        return RunResult(results=results, failed=sorted(failed))
