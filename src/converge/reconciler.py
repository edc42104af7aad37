"""Drift classification between desired and observed resource attributes."""

import json
from collections.abc import Mapping
from typing import Any

from converge.models import UNSET, AttributeSpec, DesiredState, DriftRecord, RemoteState

_DEFAULT_SPEC = AttributeSpec()


def compute_drift(
    desired: DesiredState,
    remote: Mapping[str, Any],
    attributes: Mapping[str, AttributeSpec] | None = None,
) -> DriftRecord:
    """Compare desired against remote attributes, one attribute at a time.

    Collections compare as sets unless the attribute is ``ordered``. An
    attribute missing from ``desired`` is not drift when the provider
    computes it or when the remote value equals its known default. A value
    of ``None`` counts as absent.
    """
    attributes = attributes or {}
    only_desired: set[str] = set()
    only_remote: set[str] = set()
    changed: set[str] = set()

    for name in set(desired) | set(remote):
        spec = attributes.get(name, _DEFAULT_SPEC)
        want = desired.get(name)
        have = remote.get(name)

        if want is None and have is None:
            continue
        if want is None:
            if spec.computed:
                continue
            if spec.default is not UNSET and values_equal(spec.default, have, spec.ordered):
                continue
            only_remote.add(name)
        elif have is None:
            only_desired.add(name)
        elif not values_equal(want, have, spec.ordered):
            changed.add(name)

    drifted = only_desired | only_remote | changed
    immutable = {name for name in drifted if attributes.get(name, _DEFAULT_SPEC).immutable}

    return DriftRecord(
        only_desired=frozenset(only_desired),
        only_remote=frozenset(only_remote),
        changed=frozenset(changed),
        immutable=frozenset(immutable),
    )


def values_equal(a: Any, b: Any, ordered: bool = False) -> bool:
    """Equality with order-insensitive collections at the top level."""
    if _is_collection(a) and _is_collection(b):
        left = [_canonical(item) for item in a]
        right = [_canonical(item) for item in b]
        if ordered:
            return left == right
        return set(left) == set(right)
    return _canonical(a) == _canonical(b)


def fold_state(remote: RemoteState) -> dict[str, Any]:
    """Local attribute mapping persisted for a remote snapshot."""
    attributes = dict(remote.attributes)
    attributes["id"] = remote.identifier
    return attributes


def _is_collection(value: Any) -> bool:
    return isinstance(value, list | tuple | set | frozenset)


def _canonical(value: Any) -> str:
    # Nested sets are sorted so mappings containing them compare stably.
    return json.dumps(value, sort_keys=True, default=_sorted_set)


def _sorted_set(value: Any) -> Any:
    if isinstance(value, set | frozenset):
        return sorted(value, key=_canonical)
    raise TypeError(f"Cannot compare value of type {type(value).__name__}")
