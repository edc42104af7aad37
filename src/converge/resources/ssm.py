"""SSM patch baseline resource type and lookup."""

from typing import Any

from converge.aws.client import AwsClient
from converge.finder import find_by_get, find_by_list
from converge.models import (
    NOT_FOUND,
    UNSET,
    AttributeSpec,
    DesiredState,
    DriftRecord,
    NotFoundType,
    RemoteState,
    StatusTag,
)
from converge.resources.base import (
    ResourceType,
    Step,
    Timeouts,
    tag_changes,
    tag_list,
    tag_map,
)

# Local attribute name -> UpdatePatchBaseline/CreatePatchBaseline field.
SCALAR_FIELDS = {
    "name": "Name",
    "description": "Description",
    "approved_patches": "ApprovedPatches",
    "rejected_patches": "RejectedPatches",
    "approved_patches_compliance_level": "ApprovedPatchesComplianceLevel",
    "rejected_patches_action": "RejectedPatchesAction",
    "approved_patches_enable_non_security": "ApprovedPatchesEnableNonSecurity",
}


class PatchBaseline(ResourceType):
    """``aws_ssm_patch_baseline``, identified by baseline id.

    The SSM API is synchronous, so a baseline is AVAILABLE as soon as it
    can be read.
    """

    name = "aws_ssm_patch_baseline"
    service = "ssm"
    timeouts = Timeouts(create=60, update=60, delete=60)
    attributes = {
        "name": AttributeSpec(),
        "operating_system": AttributeSpec(immutable=True, default="WINDOWS"),
        "description": AttributeSpec(),
        "approved_patches": AttributeSpec(default=[]),
        "rejected_patches": AttributeSpec(default=[]),
        "approved_patches_compliance_level": AttributeSpec(default="UNSPECIFIED"),
        "rejected_patches_action": AttributeSpec(default="ALLOW_AS_DEPENDENCY"),
        "approved_patches_enable_non_security": AttributeSpec(default=False),
        "global_filter": AttributeSpec(default=[]),
        "approval_rule": AttributeSpec(default=[]),
        "tags": AttributeSpec(default={}),
        "default_baseline": AttributeSpec(computed=True),
    }

    def build_create_request(self, desired: DesiredState) -> Step:
        payload = self._fields(desired, SCALAR_FIELDS)
        payload["OperatingSystem"] = desired.get("operating_system") or "WINDOWS"
        if desired.get("global_filter"):
            payload["GlobalFilters"] = expand_filter_group(desired["global_filter"])
        if desired.get("approval_rule"):
            payload["ApprovalRules"] = expand_rule_group(desired["approval_rule"])
        if desired.get("tags"):
            payload["Tags"] = tag_list(desired["tags"])
        return Step("create_patch_baseline", self.service, "create_patch_baseline", payload)

    def identifier_from_response(self, response: dict[str, Any]) -> str:
        return response["BaselineId"]

    def find(self, client: AwsClient, identifier: str) -> RemoteState | NotFoundType:
        baseline = find_by_get(
            client,
            self.service,
            "get_patch_baseline",
            {"BaselineId": identifier},
            lambda r: r if r.get("BaselineId") else None,
        )
        if baseline is NOT_FOUND:
            return NOT_FOUND

        tags = client.invoke(
            self.service,
            "list_tags_for_resource",
            {"ResourceType": "PatchBaseline", "ResourceId": identifier},
        )
        return self.map_remote_to_local(
            identifier, {"Baseline": baseline, "Tags": tags.get("TagList", [])}
        )

    def map_remote_to_local(self, identifier: str, description: dict[str, Any]) -> RemoteState:
        baseline = description["Baseline"]
        attributes = {
            "name": baseline.get("Name"),
            "description": baseline.get("Description"),
            "operating_system": baseline.get("OperatingSystem"),
            "approved_patches": list(baseline.get("ApprovedPatches", [])),
            "rejected_patches": list(baseline.get("RejectedPatches", [])),
            "approved_patches_compliance_level": baseline.get("ApprovedPatchesComplianceLevel"),
            "rejected_patches_action": baseline.get("RejectedPatchesAction"),
            "approved_patches_enable_non_security": baseline.get(
                "ApprovedPatchesEnableNonSecurity", False
            ),
            "global_filter": flatten_filter_group(baseline.get("GlobalFilters")),
            "approval_rule": flatten_rule_group(baseline.get("ApprovalRules")),
            "tags": tag_map(description.get("Tags")),
        }
        if "DefaultBaseline" in description:
            attributes["default_baseline"] = description["DefaultBaseline"]
        return RemoteState(identifier, attributes, StatusTag.AVAILABLE)

    def update_steps(
        self,
        identifier: str,
        drift: DriftRecord,
        desired: DesiredState,
        remote: RemoteState,
    ) -> list[Step]:
        mutable = drift.mutable
        steps = []

        fields = {k: v for k, v in SCALAR_FIELDS.items() if k in mutable}
        if fields or mutable & {"global_filter", "approval_rule"}:
            payload = {"BaselineId": identifier, **self._fields(desired, fields, clear=True)}
            if "global_filter" in mutable:
                payload["GlobalFilters"] = expand_filter_group(desired.get("global_filter") or [])
            if "approval_rule" in mutable:
                payload["ApprovalRules"] = expand_rule_group(desired.get("approval_rule") or [])
            steps.append(
                Step("update_patch_baseline", self.service, "update_patch_baseline", payload)
            )

        if "tags" in mutable:
            resource = {"ResourceType": "PatchBaseline", "ResourceId": identifier}
            to_set, to_remove = tag_changes(desired.get("tags"), remote.attributes.get("tags"))
            if to_remove:
                steps.append(
                    Step(
                        "remove_tags_from_resource",
                        self.service,
                        "remove_tags_from_resource",
                        {**resource, "TagKeys": to_remove},
                    )
                )
            if to_set:
                steps.append(
                    Step(
                        "add_tags_to_resource",
                        self.service,
                        "add_tags_to_resource",
                        {**resource, "Tags": tag_list(to_set)},
                    )
                )
        return steps

    def build_delete_request(self, identifier: str) -> Step:
        return Step(
            "delete_patch_baseline",
            self.service,
            "delete_patch_baseline",
            {"BaselineId": identifier},
        )

    def lookup(
        self,
        client: AwsClient,
        owner: str,
        name_prefix: str | None = None,
        operating_system: str | None = None,
        default_baseline: bool | None = None,
    ) -> RemoteState | NotFoundType:
        """Find exactly one baseline by owner and optional filters.

        Raises AmbiguousLookupError when the criteria match several baselines.
        """
        filters = [{"Key": "OWNER", "Values": [owner]}]
        if name_prefix:
            filters.append({"Key": "NAME_PREFIX", "Values": [name_prefix]})

        def matches(identity: dict[str, Any]) -> bool:
            if operating_system and identity.get("OperatingSystem") != operating_system:
                return False
            if default_baseline is not None and identity.get("DefaultBaseline") != default_baseline:
                return False
            return True

        identity = find_by_list(
            client,
            self.service,
            "describe_patch_baselines",
            {"Filters": filters},
            "BaselineIdentities",
            matches,
        )
        if identity is NOT_FOUND:
            return NOT_FOUND

        state = self.find(client, identity["BaselineId"])
        if state is NOT_FOUND:
            return NOT_FOUND
        return RemoteState(
            state.identifier,
            {**state.attributes, "default_baseline": identity.get("DefaultBaseline", False)},
            state.status,
        )

    @staticmethod
    def _fields(
        desired: DesiredState, fields: dict[str, str], clear: bool = False
    ) -> dict[str, Any]:
        payload = {}
        for attr, field_name in fields.items():
            value = desired.get(attr)
            if value is None:
                if not clear:
                    continue
                default = PatchBaseline.attributes[attr].default
                value = "" if default is UNSET else default
            payload[field_name] = value
        return payload


def expand_filter_group(filters: list[dict[str, Any]]) -> dict[str, Any]:
    return {"PatchFilters": [{"Key": f["key"], "Values": list(f["values"])} for f in filters]}


def flatten_filter_group(group: dict[str, Any] | None) -> list[dict[str, Any]]:
    if not group:
        return []
    return [{"key": f["Key"], "values": list(f["Values"])} for f in group.get("PatchFilters", [])]


def expand_rule_group(rules: list[dict[str, Any]]) -> dict[str, Any]:
    patch_rules = []
    for rule in rules:
        patch_rule: dict[str, Any] = {
            "PatchFilterGroup": expand_filter_group(rule.get("patch_filter", [])),
            "ComplianceLevel": rule.get("compliance_level", "UNSPECIFIED"),
            "EnableNonSecurity": rule.get("enable_non_security", False),
        }
        if rule.get("approve_until_date"):
            patch_rule["ApproveUntilDate"] = rule["approve_until_date"]
        else:
            patch_rule["ApproveAfterDays"] = rule.get("approve_after_days", 0)
        patch_rules.append(patch_rule)
    return {"PatchRules": patch_rules}


def flatten_rule_group(group: dict[str, Any] | None) -> list[dict[str, Any]]:
    if not group:
        return []
    rules = []
    for rule in group.get("PatchRules", []):
        flat = {
            "patch_filter": flatten_filter_group(rule.get("PatchFilterGroup")),
            "compliance_level": rule.get("ComplianceLevel", "UNSPECIFIED"),
            "enable_non_security": rule.get("EnableNonSecurity", False),
        }
        if rule.get("ApproveUntilDate"):
            flat["approve_until_date"] = rule["ApproveUntilDate"]
        else:
            flat["approve_after_days"] = rule.get("ApproveAfterDays", 0)
        rules.append(flat)
    return rules
