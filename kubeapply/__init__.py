"""
kubeapply applies a directory of kubernetes manifests to a cluster in a safe,
deterministic order, computes size-bounded per-object diffs against the live
cluster state and reports which objects an apply created or updated.

The main entry point is `kubeapply.kubectl.Kubectl`, which drives `kubectl`
through a `kubeapply.command.CommandRunner`.
"""

__all__ = [
    "apply_result",
    "command",
    "discovery",
    "exceptions",
    "format",
    "kubectl",
    "manifest",
    "materialize",
    "ordering",
    "resource_diff",
    "resource_id",
    "workspace",
]
