"""Abstract interface for talking to a cluster control plane."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from gitops_sync.manifest import KindInfo, ResourceIdentity

__all__ = [
    "ClusterClient",
    "ObjectPage",
    "DEFAULT_KINDS",
    "DEFAULT_PAGE_SIZE",
]

DEFAULT_PAGE_SIZE = 250

# Kinds listed when looking for objects tracked by an Application
DEFAULT_KINDS = [
    KindInfo("v1", "Namespace", namespaced=False),
    KindInfo("apiextensions.k8s.io/v1", "CustomResourceDefinition", namespaced=False),
    KindInfo("v1", "ServiceAccount"),
    KindInfo("rbac.authorization.k8s.io/v1", "ClusterRole", namespaced=False),
    KindInfo("rbac.authorization.k8s.io/v1", "ClusterRoleBinding", namespaced=False),
    KindInfo("rbac.authorization.k8s.io/v1", "Role"),
    KindInfo("rbac.authorization.k8s.io/v1", "RoleBinding"),
    KindInfo("v1", "ConfigMap"),
    KindInfo("v1", "Secret"),
    KindInfo("v1", "PersistentVolumeClaim"),
    KindInfo("v1", "Service"),
    KindInfo("apps/v1", "Deployment"),
    KindInfo("apps/v1", "StatefulSet"),
    KindInfo("apps/v1", "DaemonSet"),
    KindInfo("batch/v1", "Job"),
    KindInfo("batch/v1", "CronJob"),
    KindInfo("networking.k8s.io/v1", "Ingress"),
    KindInfo("networking.k8s.io/v1", "NetworkPolicy"),
    KindInfo("autoscaling/v2", "HorizontalPodAutoscaler"),
    KindInfo("policy/v1", "PodDisruptionBudget"),
]


@dataclass
class ObjectPage:
    """One page of a list call."""

    items: list[dict[str, Any]] = field(default_factory=list)

    continue_token: str | None = None
    """Token to request the next page, None when this is the last page."""


class ClusterClient(ABC):
    """Capabilities needed to read and mutate objects on one cluster.

    A client is always passed explicitly to the code that uses it; nothing
    relies on an ambient current context. Implementations raise
    `ClusterUnreachable`, `PermissionDenied`, `ApplyRejected` or
    `ObjectNotFoundError` from `gitops_sync.exceptions`.
    """

    server: str
    """URL of the control plane this client talks to."""

    @abstractmethod
    async def list_kinds(self) -> list[KindInfo]:
        """Return the kinds of objects that may be listed."""

    @abstractmethod
    async def list_namespaces(self) -> list[str]:
        """Return the names of all namespaces."""

    @abstractmethod
    async def list_page(
        self,
        kind: KindInfo,
        namespace: str | None,
        selector: dict[str, str],
        continue_token: str | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> ObjectPage:
        """List one page of objects of a kind matching all selector labels.

        A namespace of None lists across all namespaces.
        """

    @abstractmethod
    async def get(self, identity: ResourceIdentity) -> dict[str, Any] | None:
        """Return the live object or None if it does not exist."""

    @abstractmethod
    async def apply(self, doc: dict[str, Any]) -> dict[str, Any]:
        """Create the object or merge the fields of doc into the live object.

        This has server-side apply semantics: applying the same document twice
        leaves the object unchanged.
        """

    @abstractmethod
    async def delete(self, identity: ResourceIdentity) -> None:
        """Delete the object, raising ObjectNotFoundError if it is missing."""

    async def close(self) -> None:
        """Release any resources held by the client."""
