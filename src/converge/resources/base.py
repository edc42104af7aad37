"""Interface implemented once per resource type."""

from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from converge.aws.client import AwsClient
from converge.finder import Probe, status_probe
from converge.models import (
    Action,
    AttributeSpec,
    DesiredState,
    DriftRecord,
    NotFoundType,
    PendingOperation,
    RemoteState,
    StatusTag,
)


@dataclass(frozen=True)
class Step:
    """One control-plane call in a lifecycle operation.

    ``requires_ready`` post-create steps run only after the resource has
    reached its ready status. A step that starts its own asynchronous change
    carries ``settle`` and a ``probe`` factory; the orchestrator waits on
    that probe after the call instead of on the resource status.
    """

    name: str
    service: str
    operation: str
    payload: dict[str, Any] = field(default_factory=dict)
    requires_ready: bool = False
    settle: PendingOperation | None = None
    probe: Callable[[AwsClient], Probe] | None = None


@dataclass(frozen=True)
class Timeouts:
    """Per-action wait timeouts in seconds."""

    create: float = 10 * 60
    update: float = 10 * 60
    delete: float = 10 * 60


class ResourceType(ABC):
    """CRUD mapping between desired attributes and one provider resource.

    The orchestrator is generic over this interface. Subclasses map desired
    attributes to requests, provider descriptions back to attributes, and
    provider status strings to StatusTag values.
    """

    name: str
    service: str
    attributes: Mapping[str, AttributeSpec] = {}
    timeouts = Timeouts()

    create_pending = frozenset({StatusTag.CREATING})
    update_pending = frozenset({StatusTag.UPDATING})
    delete_pending = frozenset({StatusTag.DELETING, StatusTag.AVAILABLE})
    ready = frozenset({StatusTag.AVAILABLE})
    failed = frozenset({StatusTag.FAILED})

    @property
    def immutable_attributes(self) -> frozenset[str]:
        return frozenset(name for name, spec in self.attributes.items() if spec.immutable)

    @abstractmethod
    def build_create_request(self, desired: DesiredState) -> Step:
        """The primary create call."""

    @abstractmethod
    def identifier_from_response(self, response: dict[str, Any]) -> str:
        """Extract the newly assigned identifier from the create response."""

    def post_create_steps(
        self, identifier: str, desired: DesiredState, response: dict[str, Any]
    ) -> list[Step]:
        """Auxiliary calls to run after the resource exists."""
        return []

    @abstractmethod
    def find(self, client: AwsClient, identifier: str) -> RemoteState | NotFoundType:
        """Fetch canonical state, or NOT_FOUND."""

    @abstractmethod
    def map_remote_to_local(self, identifier: str, description: dict[str, Any]) -> RemoteState:
        """Translate a provider description into a RemoteState."""

    def status_probe(self, client: AwsClient, identifier: str) -> Probe:
        return status_probe(lambda: self.find(client, identifier))

    @abstractmethod
    def update_steps(
        self,
        identifier: str,
        drift: DriftRecord,
        desired: DesiredState,
        remote: RemoteState,
    ) -> list[Step]:
        """Calls covering the mutable drifted attributes, grouped per API call."""

    @abstractmethod
    def build_delete_request(self, identifier: str) -> Step:
        """The delete call."""

    def pending_create(self, identifier: str) -> PendingOperation:
        return PendingOperation(
            identifier=identifier,
            action=Action.CREATE,
            target=self.ready,
            failure=self.failed,
            pending=self.create_pending,
            timeout=self.timeouts.create,
        )

    def pending_update(self, identifier: str) -> PendingOperation:
        return PendingOperation(
            identifier=identifier,
            action=Action.UPDATE,
            target=self.ready,
            failure=self.failed,
            pending=self.update_pending,
            timeout=self.timeouts.update,
        )

    def pending_delete(self, identifier: str) -> PendingOperation:
        return PendingOperation(
            identifier=identifier,
            action=Action.DELETE,
            target=frozenset({StatusTag.NOT_FOUND}),
            failure=self.failed,
            pending=self.delete_pending,
            timeout=self.timeouts.delete,
        )


def tag_list(tags: Mapping[str, str] | None) -> list[dict[str, str]]:
    """AWS ``[{"Key": k, "Value": v}]`` form of a tag mapping."""
    return [{"Key": key, "Value": value} for key, value in sorted((tags or {}).items())]


def tag_map(tags: list[dict[str, str]] | None) -> dict[str, str]:
    return {t["Key"]: t["Value"] for t in tags or []}


def tag_changes(
    desired: Mapping[str, str] | None, current: Mapping[str, str] | None
) -> tuple[dict[str, str], list[str]]:
    """Tags to set and tag keys to remove to turn ``current`` into ``desired``."""
    desired = desired or {}
    current = current or {}
    to_set = {k: v for k, v in desired.items() if current.get(k) != v}
    to_remove = sorted(k for k in current if k not in desired)
    return to_set, to_remove
