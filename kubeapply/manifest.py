"""Reading kubernetes manifest files from local disk.

Manifest files may contain multiple YAML documents. Each document is parsed
just enough to find its identity (apiVersion, kind, namespace and name), while
the original text is kept verbatim for applying later:

```python
from kubeapply import manifest

manifests = await manifest.read_manifests([Path("expanded/prod")])
for m in manifests:
    print(f"Found {m.kind} {m.namespace}/{m.name} in {m.source_path}")
```
"""

from collections.abc import Iterator, Iterable
from dataclasses import dataclass, field
import hashlib
import logging
import os
from pathlib import Path
import re
from typing import Any

import aiofiles
import yaml
from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig

from .exceptions import ManifestReadException
from .resource_id import encode_id

__all__ = [
    "KubeObject",
    "Manifest",
    "ObjectMetadata",
    "ManifestDocuments",
    "parse_manifest",
    "read_manifests",
]

_LOGGER = logging.getLogger(__name__)

MANIFEST_SUFFIXES = (".yaml", ".yml")

# Kinds that are applied without per-instance metadata.
KINDS_WITHOUT_METADATA = frozenset(
    [
        "ConfigMapList",
        "RoleBindingList",
        "RoleList",
    ]
)

# A "---" line, optionally followed by a comment
_SEPARATOR = re.compile(r"(?:^|\s*\n)---(?:[ \t]+#[^\n]*|[ \t]*)\r?(?=\n|$)")


class ManifestDocuments(Iterable[str]):
    """The raw YAML documents contained in a multi-document string.

    Iterating splits the text on `---` separator lines and yields each
    non-empty document with surrounding whitespace removed. Documents that
    only contain comments are skipped. The object may be iterated any number
    of times.
    """

    def __init__(self, content: str) -> None:
        """Initialize ManifestDocuments."""
        self._content = content

    def __iter__(self) -> Iterator[str]:
        for segment in _SEPARATOR.split(self._content.strip()):
            segment = segment.strip()
            if _is_empty(segment):
                continue
            yield segment


def _is_empty(content: str) -> bool:
    """Return true if the document has no lines besides blanks and comments."""
    for line in content.split("\n"):
        line = line.strip()
        if line and not line.startswith("#"):
            return False
    return True


@dataclass
class Manifest(DataClassDictMixin):
    """A single resource document read from a manifest file."""

    source_path: str
    """The file the document was read from."""

    api_version: str
    """The apiVersion of the object."""

    kind: str
    """The kind of the object, may be empty."""

    namespace: str
    """The namespace of the object, empty for cluster scoped objects."""

    name: str
    """The name of the object."""

    raw_content: str
    """The exact text of the document."""

    annotations: dict[str, str] = field(default_factory=dict)
    """Annotations from the object metadata."""

    @property
    def content_hash(self) -> str:
        """A digest of the document text used for change detection."""
        return hashlib.md5(self.raw_content.encode("utf-8")).hexdigest()

    @property
    def resource_id(self) -> str:
        """The canonical id of the resource."""
        return encode_id(self.api_version, self.kind, self.namespace, self.name)

    def __str__(self) -> str:
        return self.resource_id


def _optional_str(value: Any) -> str | None:
    return None if value is None else str(value)


def _str_field(value: Any) -> str:
    return "" if value is None else str(value)


def parse_manifest(content: str, source_path: str) -> Manifest | None:
    """Parse the identity of a single YAML document.

    Returns None, after logging a warning, when the document is not valid YAML
    or has no usable metadata.
    """
    try:
        doc = yaml.safe_load(content)
    except yaml.YAMLError as err:
        _LOGGER.warning(
            "Could not parse manifest in %s; skipping: %s", source_path, err
        )
        return None
    if not isinstance(doc, dict):
        _LOGGER.warning(
            "Manifest in %s is not a mapping; skipping: %s", source_path, content
        )
        return None

    kind = _str_field(doc.get("kind"))
    metadata = doc.get("metadata")
    if not isinstance(metadata, dict) or not metadata.get("name"):
        if kind not in KINDS_WITHOUT_METADATA:
            _LOGGER.warning(
                "Could not read metadata from manifest %s in file %s",
                content,
                source_path,
            )
            return None
        metadata = {}

    annotations = metadata.get("annotations")
    return Manifest(
        source_path=source_path,
        api_version=_str_field(doc.get("apiVersion")),
        kind=kind,
        namespace=_str_field(metadata.get("namespace")),
        name=_str_field(metadata.get("name")),
        raw_content=content,
        annotations=(
            {str(k): _str_field(v) for k, v in annotations.items()}
            if isinstance(annotations, dict)
            else {}
        ),
    )


def _raise_walk_error(err: OSError) -> None:
    raise err


def _manifest_files(root: Path) -> list[Path]:
    """Return the manifest files below the root in a stable order."""
    if root.is_file():
        return [root]
    if not root.is_dir():
        raise ManifestReadException(str(root), "No such file or directory")
    files: list[Path] = []
    try:
        for dirpath, dirnames, filenames in os.walk(root, onerror=_raise_walk_error):
            dirnames.sort()
            files.extend(
                Path(dirpath) / filename
                for filename in sorted(filenames)
                if filename.endswith(MANIFEST_SUFFIXES)
            )
    except OSError as err:
        raise ManifestReadException(str(root), str(err)) from err
    return files


async def read_manifests(paths: Iterable[Path | str]) -> list[Manifest]:
    """Read all manifests in the files and directories, recursively.

    The returned list follows the file layout on disk; use
    `kubeapply.ordering.sort_manifests` to get the apply order.
    """
    results: list[Manifest] = []
    for root in paths:
        for path in _manifest_files(Path(root)):
            try:
                async with aiofiles.open(str(path)) as manifest_file:
                    content = await manifest_file.read()
            except (OSError, UnicodeDecodeError) as err:
                raise ManifestReadException(str(path), str(err)) from err

            for document in ManifestDocuments(content):
                if (manifest := parse_manifest(document, str(path))) is not None:
                    results.append(manifest)
    _LOGGER.debug("Read %d manifests", len(results))
    return results


@dataclass
class ObjectMetadata(DataClassDictMixin):
    """The metadata fields of a live object that kubeapply reports on."""

    name: str = ""
    namespace: str | None = None
    resource_version: str | None = field(
        metadata=field_options(alias="resourceVersion"), default=None
    )
    creation_timestamp: str | None = field(
        metadata=field_options(alias="creationTimestamp"), default=None
    )
    uid: str | None = None

    class Config(BaseConfig):
        omit_none = True
        serialize_by_alias = True


@dataclass
class KubeObject(DataClassDictMixin):
    """The header of a kubernetes object returned by the cluster."""

    api_version: str = field(metadata=field_options(alias="apiVersion"))
    kind: str
    metadata: ObjectMetadata

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "KubeObject":
        """Parse the object header from a raw kubernetes object."""
        metadata = doc.get("metadata")
        if not isinstance(metadata, dict):
            metadata = {}
        return cls(
            api_version=_str_field(doc.get("apiVersion")),
            kind=_str_field(doc.get("kind")),
            metadata=ObjectMetadata(
                name=_str_field(metadata.get("name")),
                namespace=_optional_str(metadata.get("namespace")),
                resource_version=_optional_str(metadata.get("resourceVersion")),
                creation_timestamp=_optional_str(metadata.get("creationTimestamp")),
                uid=_optional_str(metadata.get("uid")),
            ),
        )

    @property
    def namespace(self) -> str:
        """The namespace of the object, empty for cluster scoped objects."""
        return self.metadata.namespace or ""

    @property
    def name(self) -> str:
        """The name of the object."""
        return self.metadata.name

    @property
    def resource_id(self) -> str:
        """The canonical id of the object."""
        return encode_id(self.api_version, self.kind, self.namespace, self.name)

    class Config(BaseConfig):
        serialize_by_alias = True
