"""Discovery of the API resources served by a cluster.

Deleting an object with kubectl requires the plural resource name of its kind,
e.g. `deployments` for `Deployment`. Two interchangeable strategies look this
up:

- `TableDiscovery` parses the table printed by `kubectl api-resources`.
- `ApiListDiscovery` reads the `APIResourceList` documents served by the
  cluster API through `kubectl get --raw`.

Both fetch once and cache the result for the lifetime of the object.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
import json
import logging
from typing import Any

from .command import Command, CommandRunner
from .exceptions import InputException, KubectlException

__all__ = [
    "ApiResource",
    "ApiResourceDiscovery",
    "TableDiscovery",
    "ApiListDiscovery",
    "parse_resources_table",
]

_LOGGER = logging.getLogger(__name__)

_NUM_COLUMNS = 5


@dataclass(frozen=True)
class ApiResource:
    """A resource type served by the cluster API."""

    name: str
    """The plural resource name, e.g. `configmaps`."""

    short_names: tuple[str, ...] = field(default_factory=tuple)
    api_version: str = ""
    namespaced: bool = False
    kind: str = ""


def _column_starts(header: str) -> list[int]:
    """Return the positions where a column name starts in the header row."""
    starts = []
    prev = " "
    for i, char in enumerate(header):
        if prev == " " and char != " ":
            starts.append(i)
        prev = char
    return starts


def _parse_row(row: str, column_starts: list[int]) -> list[str]:
    elements = []
    for i, start in enumerate(column_starts):
        end = column_starts[i + 1] if i < len(column_starts) - 1 else len(row)
        if end > len(row):
            break
        elements.append(row[start:end].rstrip(" "))
    return elements


def parse_resources_table(raw_resources: str) -> list[ApiResource]:
    """Parse the output of `kubectl api-resources`.

    Column boundaries are taken from where each header name starts, since
    values are padded with spaces and may be empty.
    """
    rows = raw_resources.strip().split("\n")
    column_starts = _column_starts(rows[0])
    if len(column_starts) != _NUM_COLUMNS:
        raise InputException(
            f"Unexpected number of columns; expected {_NUM_COLUMNS}, "
            f"got {len(column_starts)}"
        )

    resources = []
    for row in rows[1:]:
        row = row.strip(" ")
        if not row:
            continue
        elements = _parse_row(row, column_starts)
        if len(elements) < _NUM_COLUMNS:
            raise InputException(
                f"Unexpected number of columns in row {row}; expected "
                f"{_NUM_COLUMNS}, got {len(elements)}"
            )
        resources.append(
            ApiResource(
                name=elements[0],
                short_names=tuple(elements[1].split(",")) if elements[1] else (),
                api_version=elements[2],
                namespaced=elements[3] == "true",
                kind=elements[4],
            )
        )
    return resources


class ApiResourceDiscovery(ABC):
    """Looks up the API resources of a cluster."""

    def __init__(self, runner: CommandRunner, kubectl_args: list[str]) -> None:
        """Initialize ApiResourceDiscovery.

        The `kubectl_args` are the leading arguments for every kubectl call,
        e.g. `["kubectl", "--kubeconfig", path]`.
        """
        self._runner = runner
        self._kubectl_args = kubectl_args
        self._resources: list[ApiResource] | None = None

    @abstractmethod
    async def _fetch(self) -> list[ApiResource]:
        """Fetch the resources from the cluster."""

    async def _kubectl(self, args: list[str]) -> str:
        command = Command(self._kubectl_args + args, exc=KubectlException)
        result = await self._runner.run(command)
        return result.check().decode("utf-8")

    async def resources(self) -> list[ApiResource]:
        """Return the API resources, fetching them on first use."""
        if self._resources is None:
            self._resources = await self._fetch()
            _LOGGER.debug("Discovered %d api resources", len(self._resources))
        return self._resources

    async def plural_names(self) -> dict[str, str]:
        """Return a mapping of kind to plural resource name.

        When several API groups serve the same kind, the first one listed wins.
        """
        names: dict[str, str] = {}
        for resource in await self.resources():
            names.setdefault(resource.kind, resource.name)
        return names


class TableDiscovery(ApiResourceDiscovery):
    """Discovery using the `kubectl api-resources` table output."""

    async def _fetch(self) -> list[ApiResource]:
        return parse_resources_table(await self._kubectl(["api-resources"]))


def _parse_resource_list(doc: dict[str, Any]) -> list[ApiResource]:
    """Parse an APIResourceList document, skipping subresources."""
    group_version = doc.get("groupVersion", "")
    resources = []
    for item in doc.get("resources") or []:
        name = item.get("name", "")
        if not name or "/" in name:
            continue
        resources.append(
            ApiResource(
                name=name,
                short_names=tuple(item.get("shortNames") or ()),
                api_version=group_version,
                namespaced=bool(item.get("namespaced")),
                kind=item.get("kind", ""),
            )
        )
    return resources


class ApiListDiscovery(ApiResourceDiscovery):
    """Discovery using the resource lists served by the cluster API."""

    async def _get_raw(self, path: str) -> dict[str, Any]:
        content = await self._kubectl(["get", "--raw", path])
        try:
            doc = json.loads(content)
        except json.JSONDecodeError as err:
            raise InputException(
                f"Unable to parse api response for {path}: {err}"
            ) from err
        if not isinstance(doc, dict):
            raise InputException(f"Unexpected api response for {path}: {doc!r}")
        return doc

    async def _fetch(self) -> list[ApiResource]:
        resources = _parse_resource_list(await self._get_raw("/api/v1"))
        groups = await self._get_raw("/apis")
        for group in groups.get("groups") or []:
            preferred = group.get("preferredVersion") or {}
            if not (group_version := preferred.get("groupVersion")):
                continue
            resources.extend(
                _parse_resource_list(await self._get_raw(f"/apis/{group_version}"))
            )
        return resources
