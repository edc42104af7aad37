"""Core data models for resource reconciliation."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

ResourceIdentifier = str
DesiredState = Mapping[str, Any]


class StatusTag(StrEnum):
    """Provisioning phase of a remote resource."""

    CREATING = "CREATING"
    AVAILABLE = "AVAILABLE"
    UPDATING = "UPDATING"
    DELETING = "DELETING"
    FAILED = "FAILED"
    NOT_FOUND = "NOT_FOUND"


class Action(StrEnum):
    """Lifecycle action taken (or planned) for a resource."""

    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    REPLACE = "replace"
    NOOP = "no-op"


class Outcome(StrEnum):
    """How a lifecycle action ended."""

    SUCCEEDED = "succeeded"
    PARTIAL = "partial"
    REPLACEMENT_REQUIRED = "replacement-required"
    GONE = "gone"


class NotFoundType:
    """Type of the NOT_FOUND sentinel returned by finders."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NOT_FOUND"


NOT_FOUND = NotFoundType()


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


@dataclass(frozen=True)
class AttributeSpec:
    """Comparison metadata for one resource attribute.

    ``default`` is the value the provider assigns when the attribute is not
    configured. ``computed`` attributes are always provider-assigned.
    """

    immutable: bool = False
    ordered: bool = False
    computed: bool = False
    default: Any = UNSET


@dataclass(frozen=True)
class RemoteState:
    """Authoritative snapshot of a resource as reported by the provider."""

    identifier: ResourceIdentifier
    attributes: dict[str, Any]
    status: str
    status_reason: str | None = None


@dataclass(frozen=True)
class PendingOperation:
    """An in-flight provider action awaiting a terminal status."""

    identifier: ResourceIdentifier
    action: Action
    target: frozenset[str]
    failure: frozenset[str]
    pending: frozenset[str] = frozenset()
    timeout: float | None = None

    def __post_init__(self) -> None:
        if not self.target:
            raise ValueError("PendingOperation requires at least one target status")
        if not self.failure:
            raise ValueError("PendingOperation requires at least one failure status")
        overlap = self.target & self.failure
        if overlap:
            raise ValueError(f"Target and failure statuses overlap: {sorted(overlap)}")


@dataclass(frozen=True)
class DriftRecord:
    """Difference between desired and observed attributes."""

    only_desired: frozenset[str] = frozenset()
    only_remote: frozenset[str] = frozenset()
    changed: frozenset[str] = frozenset()
    immutable: frozenset[str] = frozenset()

    @property
    def drifted(self) -> frozenset[str]:
        return self.only_desired | self.only_remote | self.changed

    @property
    def mutable(self) -> frozenset[str]:
        return self.drifted - self.immutable

    @property
    def is_empty(self) -> bool:
        return not self.drifted

    @property
    def requires_replacement(self) -> bool:
        return bool(self.immutable)


@dataclass(frozen=True)
class Plan:
    """The action ``apply`` would take for one resource."""

    action: Action
    identifier: ResourceIdentifier | None
    drift: DriftRecord | None = None

    @property
    def has_changes(self) -> bool:
        return self.action != Action.NOOP


@dataclass(frozen=True)
class ApplyResult:
    """Local state emitted after a lifecycle action, ready for persistence.

    ``identifier`` is kept even when ``error`` is set, so a partially
    applied create is never orphaned.
    """

    action: Action
    outcome: Outcome
    identifier: ResourceIdentifier | None
    attributes: dict[str, Any] = field(default_factory=dict)
    status: str | None = None
    drift: DriftRecord | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class RunResult:
    """Results of reconciling many independent resources."""

    results: dict[str, ApplyResult | Plan]
    failed: list[str]
