"""The cluster module.

This module provides the capability set used to read and mutate objects on a
destination cluster, plus a reader that collects the live objects tracked by
an Application.

- `ClusterClient` is the abstract interface passed explicitly to callers.
- `InMemoryCluster` keeps objects in memory, for tests and dry runs.
- `KubectlClient` issues kubectl commands against a real control plane.
"""

from .client import ClusterClient, ObjectPage, DEFAULT_KINDS
from .in_memory import InMemoryCluster
from .kubectl import KubectlClient
from .reader import ClusterStateReader

__all__ = [
    "ClusterClient",
    "ObjectPage",
    "DEFAULT_KINDS",
    "InMemoryCluster",
    "KubectlClient",
    "ClusterStateReader",
]
