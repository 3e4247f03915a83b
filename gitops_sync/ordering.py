"""Dependency ordering for applying Kubernetes objects.

Objects are applied in tiers so that anything an object refers to exists
before it: namespaces, then definitions (CRDs and cluster wide classes), then
RBAC, then configuration, then workloads and finally everything else
(ingresses, autoscalers and custom resources). Prunes run in reverse order.
"""

from enum import IntEnum

from .manifest import ResourceIdentity

__all__ = [
    "Tier",
    "tier",
    "sort_key",
]


class Tier(IntEnum):
    """Apply phase for a kind of object."""

    NAMESPACE = 0
    DEFINITION = 1
    RBAC = 2
    CONFIG = 3
    WORKLOAD = 4
    ANCILLARY = 5


_KIND_ORDER: dict[str, tuple[Tier, int]] = {}


def _register(tier_: Tier, *kinds: str) -> None:
    for rank, kind in enumerate(kinds):
        _KIND_ORDER[kind] = (tier_, rank)


_register(Tier.NAMESPACE, "Namespace")
_register(
    Tier.DEFINITION,
    "CustomResourceDefinition",
    "PriorityClass",
    "StorageClass",
    "IngressClass",
    "RuntimeClass",
)
_register(
    Tier.RBAC,
    "ServiceAccount",
    "ClusterRole",
    "Role",
    "ClusterRoleBinding",
    "RoleBinding",
)
_register(
    Tier.CONFIG,
    "ResourceQuota",
    "LimitRange",
    "NetworkPolicy",
    "Secret",
    "ConfigMap",
    "PersistentVolume",
    "PersistentVolumeClaim",
)
_register(
    Tier.WORKLOAD,
    "Service",
    "DaemonSet",
    "Pod",
    "ReplicaSet",
    "Deployment",
    "StatefulSet",
    "Job",
    "CronJob",
)
_register(
    Tier.ANCILLARY,
    "Ingress",
    "HorizontalPodAutoscaler",
    "PodDisruptionBudget",
    "APIService",
    "MutatingWebhookConfiguration",
    "ValidatingWebhookConfiguration",
)

# Custom resources and unknown kinds sort after every known kind
_UNKNOWN = (Tier.ANCILLARY, len(_KIND_ORDER))


def tier(kind: str) -> Tier:
    """Return the apply tier for the kind."""
    return _KIND_ORDER.get(kind, _UNKNOWN)[0]


def sort_key(identity: ResourceIdentity) -> tuple[int, int]:
    """Sort key for applying objects in dependency order.

    Python's sort is stable so objects of the same kind keep their relative
    order from the source.
    """
    return _KIND_ORDER.get(identity.kind, _UNKNOWN)
