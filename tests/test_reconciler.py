"""Tests for drift classification."""

from converge.models import AttributeSpec, RemoteState, StatusTag
from converge.reconciler import compute_drift, fold_state, values_equal

ATTRIBUTES = {
    "name": AttributeSpec(immutable=True),
    "subnets": AttributeSpec(),
    "rules": AttributeSpec(ordered=True),
    "billing_mode": AttributeSpec(default="PROVISIONED"),
    "arn": AttributeSpec(computed=True),
}


def test_identical_mappings_have_no_drift():
    state = {"name": "t1", "subnets": ["a", "b"], "tags": {"env": "prod"}}
    drift = compute_drift(state, dict(state), ATTRIBUTES)
    assert drift.is_empty


def test_unordered_collections_compare_as_sets():
    drift = compute_drift({"subnets": ["a", "b"]}, {"subnets": ["b", "a"]}, ATTRIBUTES)
    assert drift.is_empty


def test_ordered_collections_compare_in_order():
    drift = compute_drift({"rules": ["allow", "deny"]}, {"rules": ["deny", "allow"]}, ATTRIBUTES)
    assert drift.changed == {"rules"}


def test_unordered_collections_of_mappings():
    desired = {"subnets": [{"id": "a", "az": "1a"}, {"id": "b", "az": "1b"}]}
    remote = {"subnets": [{"az": "1b", "id": "b"}, {"az": "1a", "id": "a"}]}
    assert compute_drift(desired, remote, ATTRIBUTES).is_empty


def test_provider_default_is_not_drift():
    drift = compute_drift({"name": "t1"}, {"name": "t1", "billing_mode": "PROVISIONED"}, ATTRIBUTES)
    assert drift.is_empty


def test_non_default_remote_value_is_drift():
    drift = compute_drift(
        {"name": "t1"}, {"name": "t1", "billing_mode": "PAY_PER_REQUEST"}, ATTRIBUTES
    )
    assert drift.only_remote == {"billing_mode"}


def test_computed_attribute_is_not_drift():
    drift = compute_drift({"name": "t1"}, {"name": "t1", "arn": "arn:aws:x"}, ATTRIBUTES)
    assert drift.is_empty


def test_only_desired():
    drift = compute_drift({"name": "t1", "subnets": ["a"]}, {"name": "t1"}, ATTRIBUTES)
    assert drift.only_desired == {"subnets"}
    assert drift.mutable == {"subnets"}


def test_none_counts_as_absent():
    drift = compute_drift({"name": "t1", "subnets": None}, {"name": "t1"}, ATTRIBUTES)
    assert drift.is_empty


def test_immutable_change_requires_replacement():
    drift = compute_drift(
        {"name": "t2", "subnets": ["a"]}, {"name": "t1", "subnets": []}, ATTRIBUTES
    )
    assert drift.immutable == {"name"}
    assert drift.requires_replacement
    assert drift.mutable == {"subnets"}


def test_unknown_attributes_use_plain_comparison():
    drift = compute_drift({"extra": 1}, {"extra": 2})
    assert drift.changed == {"extra"}
    assert not drift.requires_replacement


def test_values_equal_scalars_and_mappings():
    assert values_equal({"a": 1, "b": 2}, {"b": 2, "a": 1})
    assert not values_equal(1, 2)
    assert values_equal({"a", "b"}, ["b", "a"])


def test_fold_state_adds_id():
    state = RemoteState("t1", {"name": "t1"}, StatusTag.AVAILABLE)
    assert fold_state(state) == {"name": "t1", "id": "t1"}
