"""Ordering of manifests for applying to a cluster.

Resources are applied by kind so that dependencies exist before the objects
that use them, e.g. a Namespace before the Deployments inside of it. The kind
order is adapted from the helm kind sorter.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from .manifest import Manifest

__all__ = [
    "KindPriority",
    "DEFAULT_KIND_PRIORITY",
    "sort_manifests",
]


@dataclass(frozen=True)
class KindPriority:
    """An immutable table of kinds in the order they are installed."""

    kinds: tuple[str, ...]
    _index: Mapping[str, int] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        index: dict[str, int] = {}
        for position, kind in enumerate(self.kinds):
            index.setdefault(kind, position)
        object.__setattr__(self, "_index", MappingProxyType(index))

    def rank(self, kind: str) -> int:
        """Return the install position of the kind.

        Unknown and empty kinds all share the position after the last known kind.
        """
        if not kind:
            return len(self.kinds)
        return self._index.get(kind, len(self.kinds))

    def sort_key(self, manifest: Manifest) -> tuple[int, str, str]:
        """Return the key used to order the manifest."""
        return (self.rank(manifest.kind), manifest.namespace, manifest.name)


DEFAULT_KIND_PRIORITY = KindPriority(
    (
        "Namespace",
        "NetworkPolicy",
        "ResourceQuota",
        "LimitRange",
        "PodSecurityPolicy",
        "PodDisruptionBudget",
        "Secret",
        "ConfigMap",
        "ConfigMapList",
        "StorageClass",
        "PersistentVolume",
        "PersistentVolumeClaim",
        "ServiceAccount",
        "CustomResourceDefinition",
        "ClusterRole",
        "ClusterRoleList",
        "ClusterRoleBinding",
        "ClusterRoleBindingList",
        "Role",
        "RoleList",
        "RoleBinding",
        "RoleBindingList",
        "Service",
        "DaemonSet",
        "Pod",
        "ReplicationController",
        "ReplicaSet",
        "Deployment",
        "HorizontalPodAutoscaler",
        "StatefulSet",
        "Job",
        "CronJob",
        "Ingress",
        "APIService",
    )
)


def sort_manifests(
    manifests: Iterable[Manifest],
    priority: KindPriority = DEFAULT_KIND_PRIORITY,
) -> list[Manifest]:
    """Return the manifests in apply order.

    Manifests are ordered by kind priority, then namespace, then name. The
    sort is stable so identical keys keep their input order.
    """
    return sorted(manifests, key=priority.sort_key)
