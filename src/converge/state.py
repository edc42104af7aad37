"""JSON files for desired-state input and persisted local state."""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from converge.models import ApplyResult, Outcome

logger = logging.getLogger(__name__)

STATE_VERSION = 1


@dataclass(frozen=True)
class DesiredResource:
    """One entry of the desired-state document."""

    address: str
    type: str
    attributes: dict[str, Any]


@dataclass
class StateEntry:
    """What was last applied for one address."""

    type: str
    identifier: str
    attributes: dict[str, Any] = field(default_factory=dict)


def load_desired(path: Path) -> dict[str, DesiredResource]:
    """Read ``{"resources": {address: {"type": ..., "attributes": {...}}}}``."""
    doc = json.loads(Path(path).read_text(encoding="utf-8"))
    resources = doc.get("resources") if isinstance(doc, dict) else None
    if not isinstance(resources, dict):
        raise ValueError(f"{path}: expected a top-level 'resources' mapping")

    desired = {}
    for address, entry in resources.items():
        if not isinstance(entry, dict) or "type" not in entry:
            raise ValueError(f"{path}: resource {address!r} must have a 'type'")
        desired[address] = DesiredResource(
            address=address,
            type=entry["type"],
            attributes=dict(entry.get("attributes", {})),
        )
    return desired


class StateStore:
    """Local state keyed by resource address, stored as a JSON file."""

    def __init__(self, path: Path):
        self._path = Path(path)
        self._entries: dict[str, StateEntry] = {}
        if self._path.exists():
            self._load()

    def _load(self) -> None:
        doc = json.loads(self._path.read_text(encoding="utf-8"))
        version = doc.get("version")
        if version != STATE_VERSION:
            raise ValueError(f"{self._path}: unsupported state version {version!r}")
        for address, entry in doc.get("resources", {}).items():
            self._entries[address] = StateEntry(
                type=entry["type"],
                identifier=entry["id"],
                attributes=entry.get("attributes", {}),
            )

    @property
    def entries(self) -> dict[str, StateEntry]:
        return dict(self._entries)

    def get(self, address: str) -> StateEntry | None:
        return self._entries.get(address)

    def identifier(self, address: str) -> str | None:
        entry = self._entries.get(address)
        return entry.identifier if entry else None

    def record(self, address: str, resource_type: str, result: ApplyResult) -> None:
        """Fold an ApplyResult into state.

        A partial result keeps the identifier and the previously known
        attributes, so a resource that exists is never forgotten.
        """
        if result.outcome == Outcome.GONE:
            if self._entries.pop(address, None) is not None:
                logger.info("Removed %s from state", address)
            return
        if result.identifier is None:
            return

        if result.outcome == Outcome.PARTIAL:
            previous = self._entries.get(address)
            attributes = dict(previous.attributes) if previous else {}
            attributes.update(result.attributes)
        else:
            attributes = dict(result.attributes)
        self._entries[address] = StateEntry(resource_type, result.identifier, attributes)

    def save(self) -> None:
        doc = {
            "version": STATE_VERSION,
            "resources": {
                address: {"type": e.type, "id": e.identifier, "attributes": e.attributes}
                for address, e in sorted(self._entries.items())
            },
        }
        self._path.write_text(json.dumps(doc, indent=2, default=str) + "\n", encoding="utf-8")
