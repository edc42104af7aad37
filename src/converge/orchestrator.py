"""Drives one resource through create, update and delete to a stable state."""

import dataclasses
import logging
from typing import Any

from converge.aws.client import AwsClient
from converge.config import Settings
from converge.errors import (
    ClientError,
    ErrorKind,
    ResourceGoneError,
    StepFailedError,
    WaitCancelledError,
    WaitError,
)
from converge.models import (
    NOT_FOUND,
    Action,
    ApplyResult,
    DesiredState,
    Outcome,
    PendingOperation,
    Plan,
    RemoteState,
)
from converge.reconciler import compute_drift, fold_state
from converge.resources.base import ResourceType, Step
from converge.retry import RetryPolicy
from converge.waiter import StatusWaiter

logger = logging.getLogger(__name__)

# Failures after a mutation has landed are reported on the result, not raised.
POST_MUTATION_ERRORS = (WaitError, ClientError, ResourceGoneError)


class Orchestrator:
    """Reconciles a single resource of one resource type.

    Failures before anything changed remotely raise. Once a mutation has
    landed, failures are returned on the ApplyResult along with the
    identifier, so the caller can persist what exists.
    """

    def __init__(
        self,
        client: AwsClient,
        resource_type: ResourceType,
        settings: Settings | None = None,
        *,
        waiter: StatusWaiter | None = None,
        retry: RetryPolicy | None = None,
    ):
        self._client = client
        self._type = resource_type
        self._settings = settings or Settings()
        self._waiter = waiter or StatusWaiter(self._settings)
        self._retry = retry or RetryPolicy(self._settings)

    def read(self, identifier: str) -> ApplyResult:
        """Refresh local state from the provider."""
        state = self._type.find(self._client, identifier)
        if state is NOT_FOUND:
            logger.warning(
                "%s %s no longer exists; dropping it from state", self._type.name, identifier
            )
            return ApplyResult(Action.READ, Outcome.GONE, identifier)
        return self._result(Action.READ, state)

    def plan(self, desired: DesiredState, identifier: str | None = None) -> Plan:
        """Work out what ``apply`` would do without changing anything."""
        if identifier is None:
            return Plan(Action.CREATE, None)

        state = self._type.find(self._client, identifier)
        if state is NOT_FOUND:
            return Plan(Action.CREATE, None)

        drift = compute_drift(desired, state.attributes, self._type.attributes)
        if drift.is_empty:
            return Plan(Action.NOOP, identifier, drift)
        if drift.requires_replacement:
            return Plan(Action.REPLACE, identifier, drift)
        return Plan(Action.UPDATE, identifier, drift)

    def apply(self, desired: DesiredState, identifier: str | None = None) -> ApplyResult:
        """Create when there is no live resource, otherwise update in place."""
        if identifier is None:
            return self.create(desired)

        result = self.update(identifier, desired)
        if result.outcome == Outcome.GONE:
            logger.warning("Recreating %s %s", self._type.name, identifier)
            return self.create(desired)
        return result

    def create(self, desired: DesiredState) -> ApplyResult:
        step = self._type.build_create_request(desired)
        try:
            response = self._call(step)
        except ClientError as err:
            raise StepFailedError(step.name, None, err) from err

        identifier = self._type.identifier_from_response(response)
        logger.info("Created %s %s", self._type.name, identifier)
        return self._finish_create(identifier, desired, response)

    def update(self, identifier: str, desired: DesiredState) -> ApplyResult:
        remote = self._type.find(self._client, identifier)
        if remote is NOT_FOUND:
            logger.warning("%s %s not found; it must be recreated", self._type.name, identifier)
            return ApplyResult(Action.UPDATE, Outcome.GONE, identifier)

        drift = compute_drift(desired, remote.attributes, self._type.attributes)
        if drift.is_empty:
            return self._result(Action.NOOP, remote, drift)

        if drift.requires_replacement:
            logger.info(
                "%s %s requires replacement: %s",
                self._type.name,
                identifier,
                ", ".join(sorted(drift.immutable)),
            )
            return ApplyResult(
                Action.UPDATE,
                Outcome.REPLACEMENT_REQUIRED,
                identifier,
                fold_state(remote),
                remote.status,
                drift,
            )

        steps = self._type.update_steps(identifier, drift, desired, remote)
        failed = self._run_steps(identifier, steps)
        if failed is not None:
            return self._partial(Action.UPDATE, identifier, failed, drift)

        try:
            self._await(self._type.pending_update(identifier))
            state = self._read_after_write(identifier, Action.UPDATE)
        except POST_MUTATION_ERRORS as err:
            return self._partial(Action.UPDATE, identifier, err, drift)

        logger.info(
            "Updated %s %s: %s", self._type.name, identifier, ", ".join(sorted(drift.mutable))
        )
        return self._result(Action.UPDATE, state, drift)

    def delete(self, identifier: str) -> ApplyResult:
        """Delete the resource. Deleting something already gone succeeds."""
        step = self._type.build_delete_request(identifier)
        try:
            self._call(step)
        except ClientError as err:
            if err.kind != ErrorKind.NOT_FOUND:
                raise StepFailedError(step.name, identifier, err) from err
            logger.info("%s %s already deleted", self._type.name, identifier)
            return ApplyResult(Action.DELETE, Outcome.GONE, identifier)

        try:
            self._await(self._type.pending_delete(identifier))
        except POST_MUTATION_ERRORS as err:
            return self._partial(Action.DELETE, identifier, err)

        logger.info("Deleted %s %s", self._type.name, identifier)
        return ApplyResult(Action.DELETE, Outcome.GONE, identifier)

    def replace(self, identifier: str, desired: DesiredState) -> ApplyResult:
        """Destroy then create, for changes to immutable attributes."""
        deleted = self.delete(identifier)
        if not deleted.ok:
            return dataclasses.replace(deleted, action=Action.REPLACE)
        created = self.create(desired)
        return dataclasses.replace(created, action=Action.REPLACE)

    def _finish_create(
        self, identifier: str, desired: DesiredState, response: dict[str, Any]
    ) -> ApplyResult:
        steps = self._type.post_create_steps(identifier, desired, response)
        before_ready = [s for s in steps if not s.requires_ready]
        after_ready = [s for s in steps if s.requires_ready]

        failed = self._run_steps(identifier, before_ready)
        if failed is not None:
            return self._partial(Action.CREATE, identifier, failed)

        try:
            self._await(self._type.pending_create(identifier))
            if after_ready:
                failed = self._run_steps(identifier, after_ready)
                if failed is not None:
                    return self._partial(Action.CREATE, identifier, failed)
                self._await(self._type.pending_update(identifier))
            state = self._read_after_write(identifier, Action.CREATE)
        except POST_MUTATION_ERRORS as err:
            return self._partial(Action.CREATE, identifier, err)

        return self._result(Action.CREATE, state)

    def _run_steps(self, identifier: str, steps: list[Step]) -> Exception | None:
        """Run steps in order, stopping at the first failure without rollback."""
        for step in steps:
            try:
                self._call(step)
            except (ClientError, WaitCancelledError) as err:
                logger.warning("%s failed for %s: %s", step.name, identifier, err)
                return StepFailedError(step.name, identifier, err)
            if step.settle is None:
                continue
            try:
                self._waiter.await_operation(step.settle, step.probe(self._client))
            except POST_MUTATION_ERRORS as err:
                logger.warning("%s did not settle for %s: %s", step.name, identifier, err)
                return err
        return None

    def _call(self, step: Step) -> dict[str, Any]:
        return self._retry.mutation(
            self._client.invoke, step.service, step.operation, step.payload
        )

    def _await(self, operation: PendingOperation) -> Any:
        probe = self._type.status_probe(self._client, operation.identifier)
        return self._waiter.await_operation(operation, probe)

    def _read_after_write(self, identifier: str, action: Action) -> RemoteState:
        def read() -> RemoteState:
            state = self._type.find(self._client, identifier)
            if state is NOT_FOUND:
                raise ResourceGoneError(identifier, action.value)
            return state

        return self._retry.read_after_write(read)

    def _partial(
        self, action: Action, identifier: str, error: Exception, drift=None
    ) -> ApplyResult:
        return ApplyResult(
            action,
            Outcome.PARTIAL,
            identifier,
            {"id": identifier},
            getattr(error, "last_status", None),
            drift,
            error,
        )

    def _result(self, action: Action, state: RemoteState, drift=None) -> ApplyResult:
        return ApplyResult(
            action,
            Outcome.SUCCEEDED,
            state.identifier,
            fold_state(state),
            state.status,
            drift,
        )
