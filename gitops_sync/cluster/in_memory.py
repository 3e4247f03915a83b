"""Module for an in memory cluster.

The in memory cluster behaves like a control plane for the operations the
reconciler needs. It assigns server side metadata, merges applied documents
into existing objects and pages list results. Failures and latency can be
injected for testing error handling.
"""

import asyncio
import copy
from collections.abc import Callable
from datetime import datetime, timezone
import itertools
import logging
from typing import Any

from gitops_sync.exceptions import (
    ApplyRejected,
    GitOpsException,
    ObjectNotFoundError,
)
from gitops_sync.manifest import (
    DEFAULT_SERVER,
    KindInfo,
    ManagedObject,
    ResourceIdentity,
    NAMESPACE_KIND,
)
from gitops_sync.resource_diff import merge_patch

from .client import ClusterClient, ObjectPage, DEFAULT_KINDS, DEFAULT_PAGE_SIZE

_LOGGER = logging.getLogger(__name__)

__all__ = ["InMemoryCluster"]

_SERVER_FIELDS = ("uid", "resourceVersion", "generation", "creationTimestamp")


def _matches(labels: dict[str, str], selector: dict[str, str]) -> bool:
    return all(labels.get(k) == v for k, v in selector.items())


class InMemoryCluster(ClusterClient):
    """In-memory implementation of the ClusterClient interface."""

    def __init__(
        self,
        server: str = DEFAULT_SERVER,
        kinds: list[KindInfo] | None = None,
        strict_namespaces: bool = False,
    ) -> None:
        """Initialize the InMemoryCluster.

        Args:
            server: URL reported as the control plane address.
            kinds: Kinds reported by `list_kinds`, the defaults if not set.
                Kinds of applied objects are added automatically.
            strict_namespaces: Reject namespaced objects whose Namespace
                object does not exist yet.
        """
        self.server = server
        self._kinds: dict[str, KindInfo] = {
            k.key: k for k in (kinds if kinds is not None else DEFAULT_KINDS)
        }
        self._strict_namespaces = strict_namespaces
        self._objects: dict[ResourceIdentity, dict[str, Any]] = {}
        self._failures: dict[str | ResourceIdentity, GitOpsException] = {}
        self._uid = itertools.count(1)
        self._version = itertools.count(1)
        self.delay: float = 0
        """Seconds to sleep before every call, to simulate a slow network."""
        self.calls: list[tuple[str, ResourceIdentity]] = []
        """Mutations in the order they were performed."""
        self.on_call: Callable[[str, ResourceIdentity], None] | None = None

    def inject_failure(
        self, target: str | ResourceIdentity, exc: GitOpsException
    ) -> None:
        """Fail calls for a kind key, an identity or `*` for every call."""
        self._failures[target] = exc

    def clear_failure(self, target: str | ResourceIdentity) -> None:
        self._failures.pop(target, None)

    def _check_failure(self, *targets: str | ResourceIdentity) -> None:
        for target in ("*",) + targets:
            if (exc := self._failures.get(target)) is not None:
                raise exc

    async def _call(self, *targets: str | ResourceIdentity) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        else:
            await asyncio.sleep(0)
        self._check_failure(*targets)

    def _record(self, action: str, identity: ResourceIdentity) -> None:
        self.calls.append((action, identity))
        if self.on_call:
            self.on_call(action, identity)

    async def list_kinds(self) -> list[KindInfo]:
        await self._call()
        return list(self._kinds.values())

    async def list_namespaces(self) -> list[str]:
        await self._call("Namespace")
        names = {
            identity.name
            for identity in self._objects
            if identity.kind == NAMESPACE_KIND
        }
        names.update(
            identity.namespace for identity in self._objects if identity.namespace
        )
        return sorted(names)

    async def list_page(
        self,
        kind: KindInfo,
        namespace: str | None,
        selector: dict[str, str],
        continue_token: str | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> ObjectPage:
        await self._call(kind.key)
        matches = [
            doc
            for identity, doc in sorted(self._objects.items(), key=lambda x: str(x[0]))
            if identity.kind == kind.kind
            and identity.group == kind.group
            and (namespace is None or identity.namespace == namespace)
            and _matches(doc["metadata"].get("labels") or {}, selector)
        ]
        start = int(continue_token) if continue_token else 0
        end = start + limit
        return ObjectPage(
            items=[copy.deepcopy(doc) for doc in matches[start:end]],
            continue_token=str(end) if end < len(matches) else None,
        )

    async def get(self, identity: ResourceIdentity) -> dict[str, Any] | None:
        await self._call(identity.kind_key, identity)
        if (doc := self._objects.get(identity)) is None:
            return None
        return copy.deepcopy(doc)

    async def apply(self, doc: dict[str, Any]) -> dict[str, Any]:
        obj = ManagedObject.parse_doc(doc)
        identity = obj.identity
        await self._call(identity.kind_key, identity)
        if (
            self._strict_namespaces
            and identity.namespace
            and not self._has_namespace(identity.namespace)
        ):
            raise ApplyRejected(
                f"{identity}: namespaces \"{identity.namespace}\" not found"
            )
        self._kinds.setdefault(
            identity.kind_key,
            KindInfo(obj.api_version, identity.kind, identity.namespace is not None),
        )
        applied = {k: v for k, v in obj.doc.items() if k != "status"}
        applied["metadata"] = {
            k: v for k, v in applied["metadata"].items() if k not in _SERVER_FIELDS
        }
        if (live := self._objects.get(identity)) is None:
            result = self._store(applied, created=True)
            self._record("create", identity)
            return copy.deepcopy(result)
        merged = merge_patch(live, applied)
        if merged != live:
            merged["metadata"] = {
                **merged["metadata"],
                "resourceVersion": str(next(self._version)),
                "generation": live["metadata"].get("generation", 1) + 1,
            }
            self._objects[identity] = merged
            self._record("update", identity)
        return copy.deepcopy(self._objects[identity])

    def _has_namespace(self, name: str) -> bool:
        return ResourceIdentity("", NAMESPACE_KIND, None, name) in self._objects

    def _store(self, doc: dict[str, Any], created: bool = False) -> dict[str, Any]:
        obj = ManagedObject.parse_doc(doc)
        stored = copy.deepcopy(obj.doc)
        metadata = stored["metadata"]
        metadata["resourceVersion"] = str(next(self._version))
        if created:
            metadata["uid"] = f"uid-{next(self._uid)}"
            metadata["generation"] = 1
            metadata["creationTimestamp"] = datetime.now(timezone.utc).strftime(
                "%Y-%m-%dT%H:%M:%SZ"
            )
        self._objects[obj.identity] = stored
        return stored

    async def delete(self, identity: ResourceIdentity) -> None:
        await self._call(identity.kind_key, identity)
        if identity not in self._objects:
            raise ObjectNotFoundError(f"{identity} not found")
        del self._objects[identity]
        self._record("delete", identity)

    def put(self, doc: dict[str, Any]) -> ManagedObject:
        """Write an object as an external actor would, bypassing failures."""
        obj = ManagedObject.parse_doc(doc)
        existing = self._objects.get(obj.identity)
        stored = self._store(doc, created=existing is None)
        if existing is not None:
            for key in ("uid", "creationTimestamp", "generation"):
                if key in existing["metadata"]:
                    stored["metadata"][key] = existing["metadata"][key]
        self._kinds.setdefault(
            obj.identity.kind_key,
            KindInfo(obj.api_version, obj.kind, obj.identity.namespace is not None),
        )
        return ManagedObject.parse_doc(stored)

    def remove(self, identity: ResourceIdentity) -> None:
        """Delete an object as an external actor would."""
        self._objects.pop(identity, None)

    def objects(self) -> list[ManagedObject]:
        """Return a snapshot of every object in the cluster."""
        return [ManagedObject.parse_doc(doc) for doc in self._objects.values()]

    def lookup(self, identity: ResourceIdentity) -> dict[str, Any] | None:
        """Return the stored document without going through failure injection."""
        return self._objects.get(identity)
