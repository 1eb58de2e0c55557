"""Canonical string identifiers for kubernetes resources.

A resource id has the form `<apiVersion>.<kind>.<namespace>.<name>`, e.g.
`apps/v1.Deployment.default.web`. Cluster scoped resources have an empty
namespace field: `v1.Namespace..monitoring`.

The `.` character appears both inside group names of the apiVersion and as
the field separator, so decoding looks for the `/` of the apiVersion first
and only then for the `.` that ends it.
"""

from dataclasses import dataclass

__all__ = [
    "ResourceId",
    "encode_id",
    "decode_id",
]


@dataclass(frozen=True, order=True)
class ResourceId:
    """The decoded components of a resource id."""

    api_version: str = ""
    kind: str = ""
    namespace: str = ""
    name: str = ""

    def __bool__(self) -> bool:
        """Return false for the empty id produced by a failed decode."""
        return any((self.api_version, self.kind, self.namespace, self.name))

    def encode(self) -> str:
        """Return the string form of this id."""
        return encode_id(self.api_version, self.kind, self.namespace, self.name)

    def __str__(self) -> str:
        return self.encode()


EMPTY_ID = ResourceId()


def encode_id(api_version: str, kind: str, namespace: str, name: str) -> str:
    """Build the resource id string from its components."""
    return f"{api_version}.{kind}.{namespace}.{name}"


def decode_id(resource_id: str) -> ResourceId:
    """Split a resource id into its components.

    Returns the empty `ResourceId` if the id is not well formed.
    """
    slash_index = resource_id.find("/")
    if slash_index > 0:
        api_end = resource_id.find(".", slash_index)
    else:
        api_end = resource_id.find(".")
    if api_end < 0:
        return EMPTY_ID

    components = resource_id[api_end + 1 :].split(".", 2)
    if len(components) != 3:
        return EMPTY_ID

    return ResourceId(
        api_version=resource_id[:api_end],
        kind=components[0],
        namespace=components[1],
        name=components[2],
    )
