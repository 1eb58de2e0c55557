"""Module for computing structured resource diffs.

`kubectl diff` delegates the actual diffing to the program named by the
`KUBECTL_EXTERNAL_DIFF` environment variable, calling it with an "old" and a
"new" path. The `kubeapply-diff` tool uses `diff_paths` to produce one
`DiffResult` per changed object and prints them as a JSON envelope:

```json
{"results": [{"object": {...}, "name": "...", "rawDiff": "...",
              "numAdded": 1, "numRemoved": 0, "operation": "update"}]}
```

The parent process reads the envelope back with `parse_results`.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
import difflib
import enum
import json
import logging
from pathlib import Path
from typing import Any

import yaml
from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig
from mashumaro.exceptions import InvalidFieldValue, MissingField

from .exceptions import DiffException, InputException
from .manifest import KubeObject

__all__ = [
    "DiffConfig",
    "DiffResult",
    "DiffResults",
    "Operation",
    "clip_diff",
    "clip_line",
    "diff_contents",
    "diff_paths",
    "parse_results",
    "sort_diff_results",
]

_LOGGER = logging.getLogger(__name__)

ENV_CONTEXT_LINES = "KUBEAPPLY_DIFF_CONTEXT_LINES"
ENV_MAX_LINE_LENGTH = "KUBEAPPLY_DIFF_MAX_LINE_LENGTH"
ENV_MAX_SIZE = "KUBEAPPLY_DIFF_MAX_SIZE"


class Operation(str, enum.Enum):
    """Whether a diff represents a creation, deletion, or update."""

    CREATE = "create"
    DELETE = "delete"
    UPDATE = "update"


@dataclass(frozen=True)
class DiffConfig:
    """Limits applied when generating diffs."""

    context_lines: int = 3
    """Number of context lines to show around changes."""

    max_line_length: int = 256
    """Lines longer than this are clipped (0=unlimited)."""

    max_size: int = 3000
    """Total maximum size of each diff after clipping lines (0=unlimited)."""

    @classmethod
    def from_env(cls, environ: Mapping[str, str]) -> "DiffConfig":
        """Read the configuration from environment variables."""
        values: dict[str, int] = {}
        for key, env_var in (
            ("context_lines", ENV_CONTEXT_LINES),
            ("max_line_length", ENV_MAX_LINE_LENGTH),
            ("max_size", ENV_MAX_SIZE),
        ):
            if not (raw := environ.get(env_var)):
                continue
            try:
                values[key] = int(raw)
            except ValueError as err:
                raise InputException(
                    f"Invalid value for {env_var}, expected an integer: {raw!r}"
                ) from err
            if values[key] < 0:
                raise InputException(f"Invalid value for {env_var}: {raw!r}")
        return cls(**values)

    def to_env(self) -> dict[str, str]:
        """Return environment variables for passing the configuration along."""
        return {
            ENV_CONTEXT_LINES: str(self.context_lines),
            ENV_MAX_LINE_LENGTH: str(self.max_line_length),
            ENV_MAX_SIZE: str(self.max_size),
        }


def clip_line(line: str, max_length: int) -> str:
    """Clip a single line to the max length."""
    if max_length and len(line) > max_length:
        return f"{line[:max_length]} ... ({len(line) - max_length} chars omitted)"
    return line


def clip_diff(text: str, max_size: int) -> str:
    """Clip the diff text to the max size, noting how much was dropped."""
    if max_size and len(text) > max_size:
        return f"{text[:max_size]}\n... ({len(text) - max_size} chars omitted)"
    return text


@dataclass
class DiffResult(DataClassDictMixin):
    """The result of diffing a single object."""

    object: KubeObject | None
    """Header of the object that changed, if it could be parsed."""

    name: str
    """Name of the diffed file."""

    raw_diff: str = field(metadata=field_options(alias="rawDiff"))
    """The unified diff text, clipped to the configured size."""

    num_added: int = field(metadata=field_options(alias="numAdded"))
    num_removed: int = field(metadata=field_options(alias="numRemoved"))

    operation: Operation

    def clipped_raw_diff(self, max_length: int) -> str:
        """Return the raw diff clipped for display."""
        return clip_diff(self.raw_diff, max_length)

    @property
    def num_changed_lines(self) -> int:
        """The rough number of lines changed."""
        return max(self.num_added, self.num_removed)

    class Config(BaseConfig):
        serialize_by_alias = True


@dataclass
class DiffResults(DataClassDictMixin):
    """All results from a single diff run."""

    results: list[DiffResult] = field(default_factory=list)

    class Config(BaseConfig):
        serialize_by_alias = True


def _parse_object(content: str) -> KubeObject | None:
    """Parse the object header of the diffed content, if possible."""
    try:
        doc = yaml.safe_load(content)
    except yaml.YAMLError as err:
        _LOGGER.debug("Unable to parse diffed object: %s", err)
        return None
    if not isinstance(doc, dict):
        return None
    return KubeObject.parse_doc(doc)


def diff_contents(
    old: str, new: str, name: str, config: DiffConfig
) -> DiffResult | None:
    """Diff the old and new contents of a single object.

    Returns None when there is no difference.
    """
    if old == new:
        return None
    if not old.strip():
        operation = Operation.CREATE
    elif not new.strip():
        operation = Operation.DELETE
    else:
        operation = Operation.UPDATE

    lines = list(
        difflib.unified_diff(
            old.splitlines(),
            new.splitlines(),
            fromfile=name,
            tofile=name,
            n=config.context_lines,
            lineterm="",
        )
    )
    num_added = 0
    num_removed = 0
    # The first two lines are the ---/+++ file headers
    for line in lines[2:]:
        if line.startswith("+"):
            num_added += 1
        elif line.startswith("-"):
            num_removed += 1

    raw_diff = "\n".join(clip_line(line, config.max_line_length) for line in lines)
    return DiffResult(
        object=_parse_object(old if operation == Operation.DELETE else new),
        name=name,
        raw_diff=clip_diff(raw_diff, config.max_size),
        num_added=num_added,
        num_removed=num_removed,
        operation=operation,
    )


def _read(path: Path) -> str:
    """Read the file, treating a missing file as empty."""
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return ""
    except UnicodeDecodeError as err:
        raise InputException(f"Unable to read {path} as text: {err}") from err


def _relative_files(root: Path) -> set[Path]:
    if not root.is_dir():
        return set()
    return {path.relative_to(root) for path in root.rglob("*") if path.is_file()}


def diff_paths(old: Path, new: Path, config: DiffConfig) -> list[DiffResult]:
    """Diff two files, or every pair of same-named files in two directories."""
    if old.is_dir() or new.is_dir():
        names = sorted(_relative_files(old) | _relative_files(new))
        _LOGGER.debug("Diffing %d files in %s and %s", len(names), old, new)
        pairs = [(old / name, new / name, str(name)) for name in names]
    else:
        pairs = [(old, new, new.name if new.exists() else old.name)]

    results = []
    for old_path, new_path, name in pairs:
        if result := diff_contents(_read(old_path), _read(new_path), name, config):
            results.append(result)
    return results


def _results_from_value(value: Any) -> list[DiffResult]:
    if not isinstance(value, dict):
        raise DiffException(f"Unexpected structured diff value: {value!r}")
    try:
        if "results" in value:
            return DiffResults.from_dict(value).results
        return [DiffResult.from_dict(value)]
    except (InvalidFieldValue, MissingField) as err:
        raise DiffException(f"Invalid structured diff result: {err}") from err


def parse_results(output: bytes | str) -> list[DiffResult]:
    """Parse the structured diff results out of the kubectl diff output.

    kubectl may print warnings before the JSON payload, so everything before
    the first `{` is discarded. The payload may hold several JSON values, each
    either an envelope or a single result.
    """
    if isinstance(output, bytes):
        output = output.decode("utf-8", errors="replace")
    text = output
    decoder = json.JSONDecoder()
    results: list[DiffResult] = []
    pos = text.find("{")
    while pos >= 0:
        try:
            value, end = decoder.raw_decode(text, pos)
        except json.JSONDecodeError as err:
            raise DiffException(
                f"Unable to parse structured diff output: {err}"
            ) from err
        results.extend(_results_from_value(value))
        pos = text.find("{", end)
    return results


def _sort_key(result: DiffResult) -> tuple[str, str, str]:
    if result.object is None:
        return ("", "", result.name)
    return (result.object.namespace, result.object.kind, result.name)


def sort_diff_results(results: list[DiffResult]) -> list[DiffResult]:
    """Return results ordered by namespace, kind and then name."""
    return sorted(results, key=_sort_key)
