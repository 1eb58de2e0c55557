"""Write ordered manifests to disk for `kubectl apply -R -f <dir>`.

kubectl applies the files of a directory in lexicographic filename order, so
each file is prefixed with its zero padded position in the apply order.
"""

from collections.abc import Sequence
import logging
from pathlib import Path

import aiofiles
from slugify import slugify

from .exceptions import InputException
from .manifest import Manifest

__all__ = [
    "MAX_MANIFESTS",
    "manifest_filename",
    "materialize",
]

_LOGGER = logging.getLogger(__name__)

_INDEX_WIDTH = 6
MAX_MANIFESTS = 10**_INDEX_WIDTH


def _token(value: str) -> str:
    return slugify(value, lowercase=False, separator="-", max_length=60)


def manifest_filename(index: int, manifest: Manifest) -> str:
    """Return the materialized filename of the manifest at the position."""
    return (
        f"{index:0{_INDEX_WIDTH}d}_{_token(manifest.name)}_"
        f"{_token(manifest.namespace)}_{_token(manifest.kind)}.yaml"
    )


async def materialize(manifests: Sequence[Manifest], directory: Path) -> list[Path]:
    """Write the manifests into the directory, preserving their order.

    Returns the written paths in order.
    """
    if len(manifests) > MAX_MANIFESTS:
        raise InputException(
            f"Too many manifests to apply: {len(manifests)} (max {MAX_MANIFESTS})"
        )
    paths = []
    for index, manifest in enumerate(manifests):
        path = directory / manifest_filename(index, manifest)
        async with aiofiles.open(str(path), mode="w") as manifest_file:
            await manifest_file.write(manifest.raw_content)
        paths.append(path)
    _LOGGER.debug("Wrote %d manifests to %s", len(paths), directory)
    return paths
