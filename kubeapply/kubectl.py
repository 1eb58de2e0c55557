"""Library for applying, diffing and deleting manifests with kubectl.

The `Kubectl` client orders manifests before applying them, so that e.g.
namespaces and CRDs exist before the objects that depend on them:

```python
from kubeapply.kubectl import Kubectl, KubectlConfig

client = Kubectl(KubectlConfig(kubeconfig="/path/to/kubeconfig"))
results = await client.apply_structured(["expanded/prod"])
for result in results:
    print(f"{result.kind} {result.name} created={result.created}")
```

Every invocation works in its own temporary directory, which is removed when
the invocation ends unless `keep_configs` is set for debugging.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
import logging
from pathlib import Path

import aiofiles

from .apply_result import ApplyResult, kube_json_to_objects, objects_to_results
from .command import Command, CommandRunner, SubprocessRunner
from .discovery import ApiListDiscovery, ApiResourceDiscovery, TableDiscovery
from .exceptions import InputException, KubectlException
from .format import apply_results_table, diff_results_table
from .manifest import KubeObject, Manifest, read_manifests
from .materialize import materialize
from .ordering import DEFAULT_KIND_PRIORITY, KindPriority, sort_manifests
from .resource_diff import DiffConfig, DiffResult, parse_results, sort_diff_results
from .resource_id import decode_id
from .workspace import TemporaryWorkspace

__all__ = [
    "Kubectl",
    "KubectlConfig",
]

_LOGGER = logging.getLogger(__name__)

KUBECTL_BIN = "kubectl"
STRUCTURED_DIFF_BIN = "kubeapply-diff"
EXTERNAL_DIFF_ENV = "KUBECTL_EXTERNAL_DIFF"

# kubectl diff exits with 1 when differences were found
_DIFF_RETCODES = [1]

RAW_DIFF_SCRIPT = """#!/bin/sh
# Called by kubectl diff with the directories of live and merged objects.
exec diff -u -N -r "$1" "$2"
"""

_DISCOVERY: dict[str, type[ApiResourceDiscovery]] = {
    "table": TableDiscovery,
    "api": ApiListDiscovery,
}


@dataclass
class KubectlConfig:
    """Configuration for running kubectl against a single cluster."""

    kubeconfig: str
    """Path to the kubeconfig for the cluster."""

    server_side: bool = False
    """Use server-side apply and diff."""

    debug: bool = False
    """Run kubectl with verbose logging."""

    keep_configs: bool = False
    """Keep the temporary manifest directories, useful when an apply fails."""

    extra_env: dict[str, str] = field(default_factory=dict)
    """Extra environment variables for every kubectl call."""

    kubectl_bin: str = KUBECTL_BIN
    structured_diff_bin: str = STRUCTURED_DIFF_BIN

    diff_config: DiffConfig = field(default_factory=DiffConfig)
    """Limits passed to the structured diff tool."""

    discovery: str = "table"
    """How kinds are resolved to resource names for deletes: `table` or `api`."""


def _parse_applied(output: bytes, step: str) -> list[KubeObject]:
    """Parse the objects of an apply, keeping the output on failure."""
    try:
        return kube_json_to_objects(output)
    except InputException as err:
        raise KubectlException(
            f"Error reading {step} output: {err}", output=output
        ) from err


class Kubectl:
    """A kubectl wrapper that applies resources in dependency order."""

    def __init__(
        self,
        config: KubectlConfig,
        runner: CommandRunner | None = None,
        discovery: ApiResourceDiscovery | None = None,
        priority: KindPriority = DEFAULT_KIND_PRIORITY,
    ) -> None:
        """Initialize Kubectl."""
        if not config.kubeconfig:
            raise InputException("Must provide a kubeconfig")
        self._config = config
        self._runner = runner or SubprocessRunner()
        self._priority = priority
        if discovery is None:
            if (discovery_cls := _DISCOVERY.get(config.discovery)) is None:
                raise InputException(
                    f"Unknown discovery strategy '{config.discovery}', "
                    f"expected one of {sorted(_DISCOVERY)}"
                )
            discovery = discovery_cls(
                self._runner,
                [config.kubectl_bin, "--kubeconfig", config.kubeconfig],
            )
        self._discovery = discovery

    async def _run(
        self,
        args: list[str],
        env: dict[str, str] | None = None,
        retcodes: list[int] | None = None,
    ) -> bytes:
        """Run kubectl with the arguments and return the combined output."""
        command = Command(
            [self._config.kubectl_bin, *args],
            exc=KubectlException,
            retcodes=retcodes,
            env={**(env or {}), **self._config.extra_env},
        )
        _LOGGER.debug("Running kubectl with args %s", args)
        result = await self._runner.run(command)
        return result.check()

    def _common_args(self) -> list[str]:
        args = []
        if self._config.server_side:
            args.append("--server-side=true")
        if self._config.debug:
            args.extend(["-v", "8"])
        return args

    async def apply_manifests(
        self,
        manifests: Sequence[Manifest],
        output_format: str = "",
        dry_run: bool = False,
    ) -> bytes:
        """Apply the manifests in kind order and return the kubectl output."""
        ordered = sort_manifests(manifests, self._priority)
        with TemporaryWorkspace(
            prefix="kubeapply_manifests_", keep=self._config.keep_configs
        ) as manifest_dir:
            await materialize(ordered, manifest_dir)
            args = [
                "apply",
                "--kubeconfig",
                self._config.kubeconfig,
                "-R",
                "-f",
                str(manifest_dir),
                *self._common_args(),
            ]
            if output_format:
                args.extend(["-o", output_format])
            if dry_run:
                args.append("--dry-run=server")
            return await self._run(args)

    async def apply(
        self,
        paths: Sequence[Path | str],
        output_format: str = "",
        dry_run: bool = False,
    ) -> bytes:
        """Apply all of the manifests in the paths."""
        manifests = await read_manifests(paths)
        return await self.apply_manifests(manifests, output_format, dry_run)

    async def apply_structured(self, paths: Sequence[Path | str]) -> list[ApplyResult]:
        """Apply the manifests and report which objects were created or updated.

        A dry-run apply captures the objects before the change. If either apply
        fails the error holds the kubectl output.
        """
        manifests = await read_manifests(paths)
        try:
            old_output = await self.apply_manifests(manifests, "json", dry_run=True)
        except KubectlException as err:
            raise KubectlException(
                f"Error running apply dry-run: {err}",
                output=err.output,
                returncode=err.returncode,
            ) from err
        old_objects = _parse_applied(old_output, "apply dry-run")

        try:
            new_output = await self.apply_manifests(manifests, "json")
        except KubectlException as err:
            raise KubectlException(
                f"Error running apply: {err}",
                output=err.output,
                returncode=err.returncode,
            ) from err
        new_objects = _parse_applied(new_output, "apply")

        results = objects_to_results(old_objects, new_objects)
        if results:
            _LOGGER.info("Apply summary:\n%s", apply_results_table(results))
        return results

    def _diff_args(self, paths: Sequence[Path | str]) -> list[str]:
        args = ["--kubeconfig", self._config.kubeconfig, "diff", "-R"]
        for path in paths:
            args.extend(["-f", str(path)])
        return args + self._common_args()

    async def _diff(self, paths: Sequence[Path | str], env: dict[str, str]) -> bytes:
        try:
            return await self._run(
                self._diff_args(paths), env=env, retcodes=_DIFF_RETCODES
            )
        except KubectlException as err:
            raise KubectlException(
                f"Error running diff: {err}",
                output=err.output,
                returncode=err.returncode,
            ) from err

    async def diff(self, paths: Sequence[Path | str]) -> bytes:
        """Diff the manifests in the paths against the cluster as raw text."""
        with TemporaryWorkspace(
            prefix="kubeapply_diff_", keep=self._config.keep_configs
        ) as diff_dir:
            script = diff_dir / "raw-diff.sh"
            async with aiofiles.open(str(script), mode="w") as script_file:
                await script_file.write(RAW_DIFF_SCRIPT)
            script.chmod(0o755)
            return await self._diff(paths, {EXTERNAL_DIFF_ENV: str(script)})

    async def diff_structured(self, paths: Sequence[Path | str]) -> list[DiffResult]:
        """Diff the manifests in the paths against the cluster, per object."""
        env = {
            EXTERNAL_DIFF_ENV: self._config.structured_diff_bin,
            **self._config.diff_config.to_env(),
        }
        output = await self._diff(paths, env)
        results = sort_diff_results(parse_results(output))
        if results:
            _LOGGER.info("Diffs summary:\n%s", diff_results_table(results))
        else:
            _LOGGER.info("No diffs found")
        return results

    async def delete(self, ids: Sequence[str]) -> bytes:
        """Delete the resources with the given resource ids.

        Ids that cannot be decoded and kinds unknown to the cluster are skipped.
        The first failed delete stops the batch; deletes that already happened
        are not undone.
        """
        to_delete = []
        for resource_id in ids:
            if not (components := decode_id(resource_id)).name:
                _LOGGER.warning("Could not parse id %s; skipping delete", resource_id)
                continue
            to_delete.append(components)
        if not to_delete:
            return b""

        resource_names = await self._discovery.plural_names()
        outputs: list[bytes] = []
        for components in to_delete:
            if not (resource_name := resource_names.get(components.kind)):
                _LOGGER.warning(
                    "Could not find resource name for kind %s; skipping delete",
                    components.kind,
                )
                continue
            args = [
                "--kubeconfig",
                self._config.kubeconfig,
                "--ignore-not-found=true",
                "--wait=false",
                "delete",
                resource_name,
                components.name,
            ]
            if components.namespace:
                args.extend(["-n", components.namespace])
            try:
                output = await self._run(args)
            except KubectlException as err:
                raise KubectlException(
                    f"Error deleting {components}: {err}",
                    output=b"\n".join([*outputs, err.output.strip()]),
                    returncode=err.returncode,
                ) from err
            outputs.append(output.strip())
        return b"\n".join(outputs)
