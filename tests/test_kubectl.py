"""Tests for the kubectl client."""

import json
import logging
import os
from pathlib import Path

import pytest

from kubeapply.command import Command, CommandResult
from kubeapply.exceptions import InputException, KubectlException
from kubeapply.kubectl import Kubectl, KubectlConfig
from kubeapply.manifest import KubeObject, ObjectMetadata
from kubeapply.resource_diff import DiffConfig, DiffResult, DiffResults, Operation

from conftest import FakeRunner

KUBECONFIG = "/tmp/kubeconfig"

MANIFESTS = """
apiVersion: apps/v1
kind: Deployment
metadata:
  name: web
  namespace: default
spec:
  replicas: 1
---
apiVersion: v1
kind: Namespace
metadata:
  name: default
---
apiVersion: v1
kind: ConfigMap
metadata:
  name: settings
  namespace: default
data:
  key: value
"""

API_RESOURCES = """NAME          SHORTNAMES   APIVERSION   NAMESPACED   KIND
configmaps    cm           v1           true         ConfigMap
namespaces    ns           v1           false        Namespace
deployments   deploy       apps/v1      true         Deployment
"""


@pytest.fixture(name="manifest_dir")
def manifest_dir_fixture(tmp_path: Path) -> Path:
    """Fixture for a directory of manifests."""
    path = tmp_path / "manifests"
    path.mkdir()
    (path / "app.yaml").write_text(MANIFESTS)
    return path


@pytest.fixture(name="config")
def config_fixture() -> KubectlConfig:
    """Fixture for the kubectl configuration."""
    return KubectlConfig(kubeconfig=KUBECONFIG)


@pytest.fixture(name="kubectl")
def kubectl_fixture(config: KubectlConfig, runner: FakeRunner) -> Kubectl:
    """Fixture for a kubectl client that runs no real commands."""
    return Kubectl(config, runner=runner)


def test_missing_kubeconfig() -> None:
    """Test a kubeconfig is required."""
    with pytest.raises(InputException, match="Must provide a kubeconfig"):
        Kubectl(KubectlConfig(kubeconfig=""))


def test_unknown_discovery() -> None:
    """Test an invalid discovery strategy."""
    with pytest.raises(InputException, match="Unknown discovery strategy 'magic'"):
        Kubectl(KubectlConfig(kubeconfig=KUBECONFIG, discovery="magic"))


async def test_apply(
    kubectl: Kubectl, runner: FakeRunner, manifest_dir: Path
) -> None:
    """Test manifests are written in kind order and applied as a directory."""
    applied: dict[str, str] = {}

    def handler(command: Command) -> CommandResult:
        apply_dir = Path(command.cmd[command.cmd.index("-f") + 1])
        for path in sorted(apply_dir.iterdir()):
            applied[path.name] = path.read_text()
        return CommandResult(command, 0, b"namespace/default created\n")

    runner.add_handler(handler)
    output = await kubectl.apply([manifest_dir])
    assert output == b"namespace/default created\n"

    assert list(applied) == [
        "000000_default__Namespace.yaml",
        "000001_settings_default_ConfigMap.yaml",
        "000002_web_default_Deployment.yaml",
    ]
    assert applied["000000_default__Namespace.yaml"] == (
        "apiVersion: v1\nkind: Namespace\nmetadata:\n  name: default"
    )

    (command,) = runner.commands
    apply_dir = command.cmd[6]
    assert command.cmd == [
        "kubectl",
        "apply",
        "--kubeconfig",
        KUBECONFIG,
        "-R",
        "-f",
        apply_dir,
    ]
    assert not Path(apply_dir).exists()


async def test_apply_options(runner: FakeRunner, manifest_dir: Path) -> None:
    """Test the flags for server side apply, debugging and dry runs."""
    kubectl = Kubectl(
        KubectlConfig(
            kubeconfig=KUBECONFIG,
            server_side=True,
            debug=True,
            extra_env={"KUBECACHEDIR": "/tmp/cache"},
        ),
        runner=runner,
    )
    await kubectl.apply([manifest_dir], output_format="json", dry_run=True)
    (command,) = runner.commands
    assert command.cmd[7:] == [
        "--server-side=true",
        "-v",
        "8",
        "-o",
        "json",
        "--dry-run=server",
    ]
    assert command.env == {"KUBECACHEDIR": "/tmp/cache"}
    assert command.exc is KubectlException


async def test_apply_keep_configs(runner: FakeRunner, manifest_dir: Path) -> None:
    """Test the applied manifests can be kept for debugging."""
    kubectl = Kubectl(
        KubectlConfig(kubeconfig=KUBECONFIG, keep_configs=True), runner=runner
    )
    await kubectl.apply([manifest_dir])
    apply_dir = Path(runner.commands[0].cmd[6])
    try:
        assert len(list(apply_dir.iterdir())) == 3
    finally:
        for path in apply_dir.iterdir():
            path.unlink()
        apply_dir.rmdir()


async def test_apply_failure(
    kubectl: Kubectl, runner: FakeRunner, manifest_dir: Path
) -> None:
    """Test a failed apply reports the kubectl output."""
    runner.add(b"error: unable to recognize\n", returncode=1)
    with pytest.raises(KubectlException, match="unable to recognize") as exc_info:
        await kubectl.apply([manifest_dir])
    assert exc_info.value.output == b"error: unable to recognize\n"
    assert exc_info.value.returncode == 1
    assert not Path(runner.commands[0].cmd[6]).exists()


def _applied(*items: tuple[str, str, str, str]) -> bytes:
    return json.dumps(
        {
            "apiVersion": "v1",
            "kind": "List",
            "items": [
                {
                    "apiVersion": "v1",
                    "kind": kind,
                    "metadata": {
                        "name": name,
                        "namespace": namespace,
                        "resourceVersion": version,
                    },
                }
                for kind, namespace, name, version in items
            ],
        }
    ).encode()


async def test_apply_structured(
    kubectl: Kubectl,
    runner: FakeRunner,
    manifest_dir: Path,
    caplog: pytest.LogCaptureFixture,
) -> None:
    """Test a dry run followed by an apply classifies each object."""
    runner.add(
        _applied(
            ("ConfigMap", "default", "settings", "10"),
            ("Service", "default", "web", "20"),
        )
    )
    runner.add(
        _applied(
            ("ConfigMap", "default", "settings", "11"),
            ("Service", "default", "web", "20"),
            ("Secret", "default", "token", "30"),
        )
    )
    with caplog.at_level(logging.INFO):
        results = await kubectl.apply_structured([manifest_dir])

    assert [(r.kind, r.operation) for r in results] == [
        ("ConfigMap", "~"),
        ("Secret", "+"),
        ("Service", ""),
    ]
    assert "Apply summary" in caplog.text

    dry_run, apply = runner.args
    assert dry_run[7:] == ["-o", "json", "--dry-run=server"]
    assert apply[7:] == ["-o", "json"]


async def test_apply_structured_dry_run_failure(
    kubectl: Kubectl, runner: FakeRunner, manifest_dir: Path
) -> None:
    """Test a failed dry run stops before applying."""
    runner.add(b"error: admission webhook denied the request\n", returncode=1)
    with pytest.raises(KubectlException, match="Error running apply dry-run"):
        await kubectl.apply_structured([manifest_dir])
    assert len(runner.commands) == 1


async def test_apply_structured_failure(
    kubectl: Kubectl, runner: FakeRunner, manifest_dir: Path
) -> None:
    """Test a failed apply after a successful dry run."""
    runner.add(_applied(("ConfigMap", "default", "settings", "10")))
    runner.add(b"error: timed out waiting\n", returncode=1)
    with pytest.raises(KubectlException, match="Error running apply:") as exc_info:
        await kubectl.apply_structured([manifest_dir])
    assert exc_info.value.output == b"error: timed out waiting\n"


async def test_apply_structured_unreadable_output(
    kubectl: Kubectl, runner: FakeRunner, manifest_dir: Path
) -> None:
    """Test output that cannot be parsed after an apply is kept on the error."""
    runner.add(_applied(("ConfigMap", "default", "settings", "10")))
    runner.add(b'configmap/settings configured\n{"kind": "List", "items": [')
    with pytest.raises(
        KubectlException, match="Error reading apply output"
    ) as exc_info:
        await kubectl.apply_structured([manifest_dir])
    assert exc_info.value.output == (
        b'configmap/settings configured\n{"kind": "List", "items": ['
    )


async def test_apply_structured_trailing_warning(
    kubectl: Kubectl, runner: FakeRunner, manifest_dir: Path
) -> None:
    """Test warnings printed after the applied objects."""
    warning = b"\nWarning: resource configmaps/settings is missing an annotation\n"
    runner.add(_applied(("ConfigMap", "default", "settings", "10")) + warning)
    runner.add(_applied(("ConfigMap", "default", "settings", "11")) + warning)
    results = await kubectl.apply_structured([manifest_dir])
    assert [(r.name, r.old_version, r.new_version) for r in results] == [
        ("settings", "10", "11")
    ]


async def test_diff(kubectl: Kubectl, runner: FakeRunner, manifest_dir: Path) -> None:
    """Test a raw diff uses the plain diff script."""
    scripts: list[str] = []

    def handler(command: Command) -> CommandResult:
        assert command.env is not None
        script = command.env["KUBECTL_EXTERNAL_DIFF"]
        assert os.access(script, os.X_OK)
        scripts.append(Path(script).read_text())
        return CommandResult(command, 1, b"-  replicas: 1\n+  replicas: 3\n")

    runner.add_handler(handler)
    output = await kubectl.diff([manifest_dir])
    assert output == b"-  replicas: 1\n+  replicas: 3\n"
    assert 'diff -u -N -r "$1" "$2"' in scripts[0]

    (command,) = runner.commands
    assert command.cmd == [
        "kubectl",
        "--kubeconfig",
        KUBECONFIG,
        "diff",
        "-R",
        "-f",
        str(manifest_dir),
    ]
    assert command.retcodes == [1]
    assert not Path(command.env["KUBECTL_EXTERNAL_DIFF"]).exists()


async def test_diff_failure(
    kubectl: Kubectl, runner: FakeRunner, manifest_dir: Path
) -> None:
    """Test a diff that failed rather than found differences."""
    runner.add(b"error: the server could not find the requested resource\n", 2)
    with pytest.raises(KubectlException, match="Error running diff"):
        await kubectl.diff([manifest_dir])


async def test_diff_structured(
    runner: FakeRunner, manifest_dir: Path, caplog: pytest.LogCaptureFixture
) -> None:
    """Test a structured diff reads the results of the external differ."""
    kubectl = Kubectl(
        KubectlConfig(
            kubeconfig=KUBECONFIG,
            structured_diff_bin="/usr/local/bin/kubeapply-diff",
            diff_config=DiffConfig(context_lines=1),
        ),
        runner=runner,
    )
    results = [
        DiffResult(
            object=KubeObject(
                api_version="v1",
                kind=kind,
                metadata=ObjectMetadata(name=name, namespace="default"),
            ),
            name=f"v1.{kind}.default.{name}",
            raw_diff="-a\n+b",
            num_added=1,
            num_removed=1,
            operation=Operation.UPDATE,
        )
        for kind, name in (("Service", "web"), ("ConfigMap", "settings"))
    ]
    runner.add(
        json.dumps(DiffResults(results=results).to_dict()).encode(), returncode=1
    )
    with caplog.at_level(logging.INFO):
        diffs = await kubectl.diff_structured([manifest_dir])
    assert [diff.name for diff in diffs] == [
        "v1.ConfigMap.default.settings",
        "v1.Service.default.web",
    ]
    assert "Diffs summary" in caplog.text

    (command,) = runner.commands
    assert command.env == {
        "KUBECTL_EXTERNAL_DIFF": "/usr/local/bin/kubeapply-diff",
        "KUBEAPPLY_DIFF_CONTEXT_LINES": "1",
        "KUBEAPPLY_DIFF_MAX_LINE_LENGTH": "256",
        "KUBEAPPLY_DIFF_MAX_SIZE": "3000",
    }


async def test_diff_structured_no_changes(
    kubectl: Kubectl,
    runner: FakeRunner,
    manifest_dir: Path,
    caplog: pytest.LogCaptureFixture,
) -> None:
    """Test a structured diff without any differences."""
    with caplog.at_level(logging.INFO):
        assert await kubectl.diff_structured([manifest_dir]) == []
    assert "No diffs found" in caplog.text


async def test_delete(kubectl: Kubectl, runner: FakeRunner) -> None:
    """Test deleting resources by id."""
    runner.add(API_RESOURCES)
    runner.add(b'deployment.apps "web" deleted\n')
    runner.add(b'namespace "monitoring" deleted\n')
    output = await kubectl.delete(
        [
            "apps/v1.Deployment.default.web",
            "not-an-id",
            "example.com/v1.Widget.default.gadget",
            "v1.Namespace..monitoring",
        ]
    )
    assert output == b'deployment.apps "web" deleted\nnamespace "monitoring" deleted'
    delete_args = ["--kubeconfig", KUBECONFIG, "--ignore-not-found=true"]
    assert runner.args == [
        ["kubectl", "--kubeconfig", KUBECONFIG, "api-resources"],
        [
            "kubectl",
            *delete_args,
            "--wait=false",
            "delete",
            "deployments",
            "web",
            "-n",
            "default",
        ],
        ["kubectl", *delete_args, "--wait=false", "delete", "namespaces", "monitoring"],
    ]


async def test_delete_failure(kubectl: Kubectl, runner: FakeRunner) -> None:
    """Test the first failed delete stops the batch."""
    runner.add(API_RESOURCES)
    runner.add(b'configmap "settings" deleted\n')
    runner.add(b"error: forbidden\n", returncode=1)
    with pytest.raises(
        KubectlException, match="Error deleting v1.Namespace..monitoring"
    ) as exc_info:
        await kubectl.delete(
            [
                "v1.ConfigMap.default.settings",
                "v1.Namespace..monitoring",
                "apps/v1.Deployment.default.web",
            ]
        )
    assert exc_info.value.output == b'configmap "settings" deleted\nerror: forbidden'
    assert len(runner.commands) == 3


async def test_delete_nothing(kubectl: Kubectl, runner: FakeRunner) -> None:
    """Test ids that cannot be decoded do not reach the cluster."""
    assert await kubectl.delete(["not-an-id", ""]) == b""
    assert await kubectl.delete([]) == b""
    assert runner.commands == []


async def test_delete_api_discovery(runner: FakeRunner) -> None:
    """Test deleting with resource names from the api resource lists."""
    kubectl = Kubectl(
        KubectlConfig(kubeconfig=KUBECONFIG, discovery="api"), runner=runner
    )
    runner.add(
        json.dumps(
            {
                "groupVersion": "v1",
                "resources": [
                    {"name": "namespaces", "namespaced": False, "kind": "Namespace"}
                ],
            }
        )
    )
    runner.add(json.dumps({"groups": []}))
    await kubectl.delete(["v1.Namespace..monitoring"])
    assert runner.args[-1][-3:] == ["delete", "namespaces", "monitoring"]
