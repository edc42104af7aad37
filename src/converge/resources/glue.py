"""Glue Schema Registry schema resource type."""

from typing import Any

from converge.aws.client import AwsClient
from converge.errors import ClientError, ErrorKind
from converge.finder import find_by_get
from converge.models import (
    NOT_FOUND,
    AttributeSpec,
    DesiredState,
    DriftRecord,
    NotFoundType,
    RemoteState,
    StatusTag,
)
from converge.resources.base import ResourceType, Step, Timeouts, tag_changes

SCHEMA_STATUS = {
    "PENDING": StatusTag.CREATING,
    "AVAILABLE": StatusTag.AVAILABLE,
    "DELETING": StatusTag.DELETING,
}

DEFAULT_REGISTRY = "default-registry"


class GlueSchema(ResourceType):
    """``aws_glue_schema``, identified by schema ARN."""

    name = "aws_glue_schema"
    service = "glue"
    timeouts = Timeouts(create=2 * 60, update=2 * 60, delete=2 * 60)
    attributes = {
        "schema_name": AttributeSpec(immutable=True),
        "registry_name": AttributeSpec(immutable=True, default=DEFAULT_REGISTRY),
        "data_format": AttributeSpec(immutable=True),
        "compatibility": AttributeSpec(),
        "schema_definition": AttributeSpec(),
        "description": AttributeSpec(default=""),
        "tags": AttributeSpec(default={}),
        "arn": AttributeSpec(computed=True),
        "registry_arn": AttributeSpec(computed=True),
        "latest_schema_version": AttributeSpec(computed=True),
        "next_schema_version": AttributeSpec(computed=True),
        "schema_checkpoint": AttributeSpec(computed=True),
    }

    def build_create_request(self, desired: DesiredState) -> Step:
        payload: dict[str, Any] = {
            "SchemaName": desired["schema_name"],
            "DataFormat": desired["data_format"],
            "Compatibility": desired["compatibility"],
            "SchemaDefinition": desired["schema_definition"],
        }
        if desired.get("registry_name"):
            payload["RegistryId"] = {"RegistryName": desired["registry_name"]}
        if desired.get("description"):
            payload["Description"] = desired["description"]
        if desired.get("tags"):
            payload["Tags"] = dict(desired["tags"])
        return Step("create_schema", self.service, "create_schema", payload)

    def identifier_from_response(self, response: dict[str, Any]) -> str:
        return response["SchemaArn"]

    def find(self, client: AwsClient, identifier: str) -> RemoteState | NotFoundType:
        schema_id = {"SchemaId": {"SchemaArn": identifier}}
        schema = find_by_get(
            client,
            self.service,
            "get_schema",
            schema_id,
            lambda r: r if r.get("SchemaArn") else None,
        )
        if schema is NOT_FOUND:
            return NOT_FOUND

        description = {"Schema": schema}
        if schema.get("SchemaStatus") != "DELETING":
            version = find_by_get(
                client,
                self.service,
                "get_schema_version",
                {**schema_id, "SchemaVersionNumber": {"LatestVersion": True}},
                lambda r: r,
            )
            if version is not NOT_FOUND:
                description["Version"] = version
            try:
                tags = client.invoke(self.service, "get_tags", {"ResourceArn": identifier})
            except ClientError as err:
                # Deleted between get_schema and get_tags.
                if err.kind == ErrorKind.NOT_FOUND:
                    return NOT_FOUND
                raise
            description["Tags"] = tags.get("Tags", {})
        return self.map_remote_to_local(identifier, description)

    def map_remote_to_local(self, identifier: str, description: dict[str, Any]) -> RemoteState:
        schema = description["Schema"]
        version = description.get("Version", {})
        attributes = {
            "arn": schema["SchemaArn"],
            "schema_name": schema.get("SchemaName"),
            "registry_name": schema.get("RegistryName"),
            "registry_arn": schema.get("RegistryArn"),
            "data_format": schema.get("DataFormat"),
            "compatibility": schema.get("Compatibility"),
            "description": schema.get("Description", ""),
            "schema_definition": version.get("SchemaDefinition"),
            "latest_schema_version": schema.get("LatestSchemaVersion"),
            "next_schema_version": schema.get("NextSchemaVersion"),
            "schema_checkpoint": schema.get("SchemaCheckpoint"),
            "tags": dict(description.get("Tags", {})),
        }
        raw_status = schema.get("SchemaStatus", "")
        return RemoteState(identifier, attributes, SCHEMA_STATUS.get(raw_status, raw_status))

    def update_steps(
        self,
        identifier: str,
        drift: DriftRecord,
        desired: DesiredState,
        remote: RemoteState,
    ) -> list[Step]:
        mutable = drift.mutable
        schema_id = {"SchemaId": {"SchemaArn": identifier}}
        steps = []

        if mutable & {"compatibility", "description"}:
            payload: dict[str, Any] = dict(schema_id)
            if "compatibility" in mutable:
                payload["Compatibility"] = desired["compatibility"]
                payload["SchemaVersionNumber"] = {"LatestVersion": True}
            if "description" in mutable:
                payload["Description"] = desired.get("description") or ""
            steps.append(Step("update_schema", self.service, "update_schema", payload))

        if "schema_definition" in mutable:
            steps.append(
                Step(
                    "register_schema_version",
                    self.service,
                    "register_schema_version",
                    {**schema_id, "SchemaDefinition": desired["schema_definition"]},
                )
            )

        if "tags" in mutable:
            to_set, to_remove = tag_changes(desired.get("tags"), remote.attributes.get("tags"))
            if to_remove:
                steps.append(
                    Step(
                        "untag_resource",
                        self.service,
                        "untag_resource",
                        {"ResourceArn": identifier, "TagsToRemove": to_remove},
                    )
                )
            if to_set:
                steps.append(
                    Step(
                        "tag_resource",
                        self.service,
                        "tag_resource",
                        {"ResourceArn": identifier, "TagsToAdd": to_set},
                    )
                )
        return steps

    def build_delete_request(self, identifier: str) -> Step:
        return Step(
            "delete_schema", self.service, "delete_schema", {"SchemaId": {"SchemaArn": identifier}}
        )
