"""Classification of the objects touched by a `kubectl apply`.

A structured apply runs kubectl twice with `-o json`: first as a dry-run,
whose objects are the "old" snapshot, then for real, whose objects are the
"new" snapshot. Objects only in the new snapshot were created; objects in both
were updated (possibly to the same version).
"""

from dataclasses import dataclass
import json
import logging

from .exceptions import InputException
from .manifest import KubeObject

__all__ = [
    "ApplyResult",
    "kube_json_to_objects",
    "objects_to_results",
]

_LOGGER = logging.getLogger(__name__)


@dataclass
class ApplyResult:
    """The outcome of applying a single object."""

    kind: str
    name: str
    namespace: str
    old_version: str
    new_version: str
    created: bool
    created_timestamp: str = ""

    @property
    def is_created(self) -> bool:
        """Return true if the object did not exist before the apply."""
        return self.created

    @property
    def is_updated(self) -> bool:
        """Return true if an existing object moved to a new version."""
        return not self.created and self.old_version != self.new_version

    @property
    def operation(self) -> str:
        """Short symbol for the result used in summaries."""
        if self.is_created:
            return "+"
        if self.is_updated:
            return "~"
        return ""


def kube_json_to_objects(content: bytes | str) -> list[KubeObject]:
    """Parse the objects from `kubectl apply -o json` output.

    The output is either a single object or a `List` of objects. Anything
    kubectl prints before or after the JSON payload, such as warnings, is
    ignored.
    """
    if isinstance(content, bytes):
        content = content.decode("utf-8", errors="replace")
    if (start := content.find("{")) < 0:
        return []
    try:
        doc, _ = json.JSONDecoder().raw_decode(content, start)
    except json.JSONDecodeError as err:
        raise InputException(f"Unable to parse kubectl apply output: {err}") from err
    if not isinstance(doc, dict):
        raise InputException(f"Unexpected kubectl apply output: {doc!r}")

    if doc.get("kind") == "List" and "items" in doc:
        items = doc.get("items") or []
    else:
        items = [doc]
    return [KubeObject.parse_doc(item) for item in items if isinstance(item, dict)]


def _sort_key(result: ApplyResult) -> tuple[str, str, str]:
    return (result.namespace, result.kind, result.name)


def objects_to_results(
    old_objects: list[KubeObject], new_objects: list[KubeObject]
) -> list[ApplyResult]:
    """Compare the dry-run and applied objects.

    Objects only present in the old snapshot are not reported. Results are
    ordered by namespace, kind and then name.
    """
    old_by_id = {obj.resource_id: obj for obj in old_objects}
    results = []
    for new_obj in new_objects:
        old_obj = old_by_id.get(new_obj.resource_id)
        results.append(
            ApplyResult(
                kind=new_obj.kind,
                name=new_obj.name,
                namespace=new_obj.namespace,
                old_version=(
                    (old_obj.metadata.resource_version or "") if old_obj else ""
                ),
                new_version=new_obj.metadata.resource_version or "",
                created=old_obj is None,
                created_timestamp=new_obj.metadata.creation_timestamp or "",
            )
        )
    _LOGGER.debug(
        "Classified %d applied objects (%d created)",
        len(results),
        sum(1 for result in results if result.created),
    )
    return sorted(results, key=_sort_key)
