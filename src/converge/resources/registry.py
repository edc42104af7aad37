"""Lookup of resource type implementations by name."""

from converge.resources.base import ResourceType
from converge.resources.dynamodb import DynamoDBTable
from converge.resources.glue import GlueSchema
from converge.resources.ssm import PatchBaseline

RESOURCE_TYPES: dict[str, ResourceType] = {
    rt.name: rt for rt in (DynamoDBTable(), GlueSchema(), PatchBaseline())
}


def get_resource_type(name: str) -> ResourceType:
    try:
        return RESOURCE_TYPES[name]
    except KeyError:
        raise KeyError(
            f"Unknown resource type {name!r}; expected one of {sorted(RESOURCE_TYPES)}"
        ) from None
