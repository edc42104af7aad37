"""DynamoDB table resource type."""

import logging
from collections.abc import Callable
from typing import Any

from converge.aws.client import AwsClient
from converge.errors import ClientError, ErrorKind
from converge.finder import Probe, find_by_get
from converge.models import (
    NOT_FOUND,
    Action,
    AttributeSpec,
    DesiredState,
    DriftRecord,
    NotFoundType,
    PendingOperation,
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

logger = logging.getLogger(__name__)

TABLE_STATUS = {
    "CREATING": StatusTag.CREATING,
    "UPDATING": StatusTag.UPDATING,
    "DELETING": StatusTag.DELETING,
    "ACTIVE": StatusTag.AVAILABLE,
    "ARCHIVING": StatusTag.UPDATING,
    "INACCESSIBLE_ENCRYPTION_CREDENTIALS": StatusTag.FAILED,
    "ARCHIVED": StatusTag.FAILED,
}

DEFAULT_CAPACITY = 1

TABLE_FIELDS = frozenset(
    {"billing_mode", "read_capacity", "write_capacity", "stream_enabled", "stream_view_type"}
)


class DynamoDBTable(ResourceType):
    """``aws_dynamodb_table``, identified by table name.

    Tags, point-in-time recovery and TTL are separate API calls made after
    ``create_table``; PITR and TTL need the table to be ACTIVE first.
    """

    name = "aws_dynamodb_table"
    service = "dynamodb"
    timeouts = Timeouts(create=10 * 60, update=60 * 60, delete=10 * 60)
    attributes = {
        "name": AttributeSpec(immutable=True),
        "hash_key": AttributeSpec(immutable=True),
        "range_key": AttributeSpec(immutable=True),
        "attribute": AttributeSpec(immutable=True),
        "billing_mode": AttributeSpec(default="PROVISIONED"),
        "read_capacity": AttributeSpec(default=DEFAULT_CAPACITY),
        "write_capacity": AttributeSpec(default=DEFAULT_CAPACITY),
        "stream_enabled": AttributeSpec(default=False),
        "stream_view_type": AttributeSpec(),
        "point_in_time_recovery": AttributeSpec(default=False),
        "ttl_attribute": AttributeSpec(),
        "tags": AttributeSpec(default={}),
        "arn": AttributeSpec(computed=True),
    }

    def build_create_request(self, desired: DesiredState) -> Step:
        key_schema = [{"AttributeName": desired["hash_key"], "KeyType": "HASH"}]
        if desired.get("range_key"):
            key_schema.append({"AttributeName": desired["range_key"], "KeyType": "RANGE"})

        payload: dict[str, Any] = {
            "TableName": desired["name"],
            "KeySchema": key_schema,
            "AttributeDefinitions": [
                {"AttributeName": a["name"], "AttributeType": a["type"]}
                for a in desired.get("attribute", [])
            ],
            "BillingMode": desired.get("billing_mode") or "PROVISIONED",
        }
        if payload["BillingMode"] == "PROVISIONED":
            payload["ProvisionedThroughput"] = _throughput(desired)
        if desired.get("stream_enabled"):
            payload["StreamSpecification"] = {
                "StreamEnabled": True,
                "StreamViewType": desired.get("stream_view_type") or "NEW_AND_OLD_IMAGES",
            }
        return Step("create_table", self.service, "create_table", payload)

    def identifier_from_response(self, response: dict[str, Any]) -> str:
        return response["TableDescription"]["TableName"]

    def post_create_steps(
        self, identifier: str, desired: DesiredState, response: dict[str, Any]
    ) -> list[Step]:
        steps = []
        if desired.get("tags"):
            arn = response["TableDescription"]["TableArn"]
            steps.append(
                Step(
                    "tag_resource",
                    self.service,
                    "tag_resource",
                    {"ResourceArn": arn, "Tags": tag_list(desired["tags"])},
                )
            )
        if desired.get("point_in_time_recovery"):
            steps.append(_pitr_step(identifier, True))
        if desired.get("ttl_attribute"):
            steps.append(_ttl_step(identifier, desired["ttl_attribute"], True))
        return steps

    def find(self, client: AwsClient, identifier: str) -> RemoteState | NotFoundType:
        table = find_by_get(
            client,
            self.service,
            "describe_table",
            {"TableName": identifier},
            lambda r: r.get("Table"),
        )
        if table is NOT_FOUND:
            return NOT_FOUND

        description: dict[str, Any] = {"Table": table}
        try:
            table_name = {"TableName": identifier}
            description.update(
                client.invoke(self.service, "describe_continuous_backups", table_name)
            )
            description.update(client.invoke(self.service, "describe_time_to_live", table_name))
            if table.get("TableArn"):
                tags = client.invoke(
                    self.service, "list_tags_of_resource", {"ResourceArn": table["TableArn"]}
                )
                description["Tags"] = tags.get("Tags", [])
        except ClientError as err:
            # The table can disappear between describe_table and the follow-up reads.
            if err.kind == ErrorKind.NOT_FOUND:
                return NOT_FOUND
            raise

        return self.map_remote_to_local(identifier, description)

    def map_remote_to_local(self, identifier: str, description: dict[str, Any]) -> RemoteState:
        table = description["Table"]
        keys = {k["KeyType"]: k["AttributeName"] for k in table.get("KeySchema", [])}
        billing = table.get("BillingModeSummary", {}).get("BillingMode", "PROVISIONED")
        throughput = table.get("ProvisionedThroughput", {})
        stream = table.get("StreamSpecification", {})
        pitr = (
            description.get("ContinuousBackupsDescription", {})
            .get("PointInTimeRecoveryDescription", {})
            .get("PointInTimeRecoveryStatus")
        )
        ttl = description.get("TimeToLiveDescription", {})
        ttl_enabled = ttl.get("TimeToLiveStatus") in ("ENABLED", "ENABLING")

        attributes = {
            "name": table["TableName"],
            "arn": table.get("TableArn"),
            "hash_key": keys.get("HASH"),
            "range_key": keys.get("RANGE"),
            "attribute": [
                {"name": a["AttributeName"], "type": a["AttributeType"]}
                for a in table.get("AttributeDefinitions", [])
            ],
            "billing_mode": billing,
            "read_capacity": (
                throughput.get("ReadCapacityUnits") if billing == "PROVISIONED" else None
            ),
            "write_capacity": (
                throughput.get("WriteCapacityUnits") if billing == "PROVISIONED" else None
            ),
            "stream_enabled": stream.get("StreamEnabled", False),
            "stream_view_type": (
                stream.get("StreamViewType") if stream.get("StreamEnabled") else None
            ),
            "point_in_time_recovery": pitr == "ENABLED",
            "ttl_attribute": ttl.get("AttributeName") if ttl_enabled else None,
            "tags": tag_map(description.get("Tags")),
        }

        raw_status = table.get("TableStatus", "")
        status = TABLE_STATUS.get(raw_status, raw_status)
        reason = None
        if status == StatusTag.FAILED:
            reason = f"table status {raw_status}"
        return RemoteState(identifier, attributes, status, reason)

    def update_steps(
        self,
        identifier: str,
        drift: DriftRecord,
        desired: DesiredState,
        remote: RemoteState,
    ) -> list[Step]:
        mutable = drift.mutable
        steps = []

        if mutable & TABLE_FIELDS:
            payload: dict[str, Any] = {"TableName": identifier}
            billing = desired.get("billing_mode") or "PROVISIONED"
            if mutable & {"billing_mode", "read_capacity", "write_capacity"}:
                payload["BillingMode"] = billing
                if billing == "PROVISIONED":
                    payload["ProvisionedThroughput"] = _throughput(desired)
            if mutable & {"stream_enabled", "stream_view_type"}:
                enabled = bool(desired.get("stream_enabled"))
                payload["StreamSpecification"] = {"StreamEnabled": enabled}
                if enabled:
                    payload["StreamSpecification"]["StreamViewType"] = (
                        desired.get("stream_view_type") or "NEW_AND_OLD_IMAGES"
                    )
            steps.append(Step("update_table", self.service, "update_table", payload))

        if "tags" in mutable:
            arn = remote.attributes["arn"]
            to_set, to_remove = tag_changes(desired.get("tags"), remote.attributes.get("tags"))
            if to_remove:
                steps.append(
                    Step(
                        "untag_resource",
                        self.service,
                        "untag_resource",
                        {"ResourceArn": arn, "TagKeys": to_remove},
                    )
                )
            if to_set:
                steps.append(
                    Step(
                        "tag_resource",
                        self.service,
                        "tag_resource",
                        {"ResourceArn": arn, "Tags": tag_list(to_set)},
                    )
                )

        if "point_in_time_recovery" in mutable:
            steps.append(_pitr_step(identifier, bool(desired.get("point_in_time_recovery"))))

        if "ttl_attribute" in mutable:
            previous = remote.attributes.get("ttl_attribute")
            if previous:
                steps.append(_ttl_step(identifier, previous, False))
            if desired.get("ttl_attribute"):
                steps.append(_ttl_step(identifier, desired["ttl_attribute"], True))

        return steps

    def build_delete_request(self, identifier: str) -> Step:
        return Step("delete_table", self.service, "delete_table", {"TableName": identifier})


def _throughput(desired: DesiredState) -> dict[str, int]:
    return {
        "ReadCapacityUnits": int(desired.get("read_capacity") or DEFAULT_CAPACITY),
        "WriteCapacityUnits": int(desired.get("write_capacity") or DEFAULT_CAPACITY),
    }


def _toggle_settled(table_name: str, enabled: bool) -> PendingOperation:
    """PITR and TTL go through ENABLING/DISABLING before reaching the new state."""
    target, previous = ("ENABLED", "DISABLED") if enabled else ("DISABLED", "ENABLED")
    return PendingOperation(
        identifier=table_name,
        action=Action.UPDATE,
        target=frozenset({target}),
        failure=frozenset({StatusTag.FAILED}),
        pending=frozenset({"ENABLING", "DISABLING", previous}),
        timeout=DynamoDBTable.timeouts.update,
    )


def _sub_status_probe(
    table_name: str, operation: str, *path: str
) -> Callable[[AwsClient], Probe]:
    def factory(client: AwsClient) -> Probe:
        def probe() -> tuple[Any, str]:
            response = client.invoke("dynamodb", operation, {"TableName": table_name})
            value: Any = response
            for key in path:
                value = value.get(key, {})
            return response, value or StatusTag.NOT_FOUND

        return probe

    return factory


def _pitr_step(table_name: str, enabled: bool) -> Step:
    return Step(
        "update_continuous_backups",
        "dynamodb",
        "update_continuous_backups",
        {
            "TableName": table_name,
            "PointInTimeRecoverySpecification": {"PointInTimeRecoveryEnabled": enabled},
        },
        requires_ready=True,
        settle=_toggle_settled(table_name, enabled),
        probe=_sub_status_probe(
            table_name,
            "describe_continuous_backups",
            "ContinuousBackupsDescription",
            "PointInTimeRecoveryDescription",
            "PointInTimeRecoveryStatus",
        ),
    )


def _ttl_step(table_name: str, attribute_name: str, enabled: bool) -> Step:
    return Step(
        "update_time_to_live",
        "dynamodb",
        "update_time_to_live",
        {
            "TableName": table_name,
            "TimeToLiveSpecification": {"AttributeName": attribute_name, "Enabled": enabled},
        },
        requires_ready=True,
        settle=_toggle_settled(table_name, enabled),
        probe=_sub_status_probe(
            table_name, "describe_time_to_live", "TimeToLiveDescription", "TimeToLiveStatus"
        ),
    )
