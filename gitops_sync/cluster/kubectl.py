"""Cluster client that issues kubectl commands.

Every command carries the server, context and kubeconfig of the client so
that two clients for different clusters can be used side by side without
touching the user's current kubectl context.

```python
from gitops_sync.cluster import KubectlClient

client = KubectlClient("https://10.0.0.1:6443", context="prod")
for name in await client.list_namespaces():
    print(name)
```
"""

from collections.abc import Callable
import json
import logging
import re
from typing import Any

from gitops_sync.command import Command
from gitops_sync.exceptions import (
    ApplyRejected,
    ClusterUnreachable,
    CommandException,
    GitOpsException,
    ObjectNotFoundError,
    PermissionDenied,
)
from gitops_sync.manifest import DEFAULT_SERVER, KindInfo, ResourceIdentity, kind_key

from .client import ClusterClient, ObjectPage, DEFAULT_KINDS, DEFAULT_PAGE_SIZE

_LOGGER = logging.getLogger(__name__)

__all__ = ["KubectlClient"]

KUBECTL_BIN = "kubectl"
FIELD_MANAGER = "gitops-sync"
DEFAULT_TIMEOUT = 30.0

_UNREACHABLE_MARKERS = (
    "Unable to connect to the server",
    "connection refused",
    "no such host",
    "i/o timeout",
    "TLS handshake timeout",
)
_FORBIDDEN_MARKERS = ("Forbidden", "Unauthorized", "forbidden")
_NOT_FOUND_MARKERS = ("NotFound", "not found")
_RBAC_DENIED = re.compile(r'User "[^"]*" cannot \w+ resource')


def _classify(
    err: CommandException, default: type[GitOpsException] = ClusterUnreachable
) -> GitOpsException:
    """Map a failed kubectl command onto the error taxonomy."""
    message = str(err)
    if any(marker in message for marker in _UNREACHABLE_MARKERS):
        return ClusterUnreachable(message)
    if any(marker in message for marker in _FORBIDDEN_MARKERS):
        return PermissionDenied(message)
    if any(marker in message for marker in _NOT_FOUND_MARKERS):
        return ObjectNotFoundError(message)
    return default(message)


def _classify_apply(err: CommandException) -> GitOpsException:
    """Map a failed apply onto the error taxonomy.

    Failures other than connection and authorization errors reject only the
    applied object, e.g. a missing namespace or a denied admission check.
    """
    message = str(err)
    if any(marker in message for marker in _UNREACHABLE_MARKERS):
        return ClusterUnreachable(message)
    if "Unauthorized" in message or _RBAC_DENIED.search(message):
        return PermissionDenied(message)
    return ApplyRejected(message)


def _parse_api_resources(out: str) -> list[KindInfo]:
    """Parse the output of `kubectl api-resources --no-headers`."""
    kinds = []
    for line in out.splitlines():
        # NAME [SHORTNAMES] APIVERSION NAMESPACED KIND
        fields = line.split()
        if len(fields) < 4:
            continue
        api_version, namespaced, kind = fields[-3:]
        kinds.append(KindInfo(api_version, kind, namespaced == "true"))
    return kinds


def _resource_arg(api_version: str, kind: str) -> str:
    """Return a fully qualified resource argument e.g. `Deployment.v1.apps`."""
    if "/" not in api_version:
        return kind
    group, version = api_version.split("/", 1)
    return f"{kind}.{version}.{group}"


class KubectlClient(ClusterClient):
    """ClusterClient implementation backed by the kubectl binary.

    Unless a fixed list of kinds is given, the kinds served by the cluster
    are discovered with `kubectl api-resources` each time they are listed.
    Kinds of applied objects are remembered either way.
    """

    def __init__(
        self,
        server: str,
        context: str | None = None,
        kubeconfig: str | None = None,
        kinds: list[KindInfo] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.server = server
        self._context = context
        self._kubeconfig = kubeconfig
        self._discover = kinds is None
        self._kinds: dict[str, KindInfo] = {
            k.key: k for k in (DEFAULT_KINDS if kinds is None else kinds)
        }
        self._applied: set[str] = set()
        self._timeout = timeout

    def _base_args(self) -> list[str]:
        args = [KUBECTL_BIN]
        # The default server means the cluster of the current context
        if self.server != DEFAULT_SERVER:
            args.extend(["--server", self.server])
        if self._context:
            args.extend(["--context", self._context])
        if self._kubeconfig:
            args.extend(["--kubeconfig", self._kubeconfig])
        return args

    async def _run(
        self,
        args: list[str],
        stdin: bytes | None = None,
        classify: Callable[[CommandException], GitOpsException] = _classify,
    ) -> bytes:
        cmd = Command(self._base_args() + args, timeout=self._timeout)
        try:
            return await cmd.run(stdin)
        except CommandException as err:
            raise classify(err) from err

    def _learn(self, doc: dict[str, Any]) -> None:
        """Remember the kind of an applied object so it is listed."""
        info = KindInfo(
            doc["apiVersion"],
            doc["kind"],
            namespaced=bool(doc.get("metadata", {}).get("namespace")),
        )
        if info.key not in self._kinds:
            _LOGGER.debug("Listing new kind %s on %s", info.key, self.server)
            self._kinds[info.key] = info
            self._applied.add(info.key)

    async def list_kinds(self) -> list[KindInfo]:
        if not self._discover:
            return list(self._kinds.values())
        out = await self._run(["api-resources", "--verbs=list,patch", "--no-headers"])
        kinds = {k.key: k for k in _parse_api_resources(out.decode("utf-8"))}
        for key in self._applied:
            kinds.setdefault(key, self._kinds[key])
        self._kinds.update(kinds)
        return list(kinds.values())

    async def list_namespaces(self) -> list[str]:
        out = await self._run(["get", "namespaces", "-o", "json"])
        return [item["metadata"]["name"] for item in json.loads(out)["items"]]

    async def list_page(
        self,
        kind: KindInfo,
        namespace: str | None,
        selector: dict[str, str],
        continue_token: str | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> ObjectPage:
        # kubectl follows continue tokens itself, fetching `limit` per request
        args = ["get", _resource_arg(kind.api_version, kind.kind), "-o", "json"]
        args.append(f"--chunk-size={limit}")
        if kind.namespaced:
            args.extend(["-n", namespace] if namespace else ["--all-namespaces"])
        if selector:
            args.extend(["-l", ",".join(f"{k}={v}" for k, v in selector.items())])
        out = await self._run(args)
        items = json.loads(out).get("items") or []
        for item in items:
            item.setdefault("apiVersion", kind.api_version)
            item.setdefault("kind", kind.kind)
        return ObjectPage(items=items)

    def _identity_args(self, identity: ResourceIdentity) -> list[str]:
        if info := self._kinds.get(kind_key(identity.group, identity.kind)):
            resource = _resource_arg(info.api_version, identity.kind)
        else:
            resource = identity.kind_key
        args = [resource, identity.name]
        if identity.namespace:
            args.extend(["-n", identity.namespace])
        return args

    async def get(self, identity: ResourceIdentity) -> dict[str, Any] | None:
        try:
            out = await self._run(["get", *self._identity_args(identity), "-o", "json"])
        except ObjectNotFoundError:
            return None
        return json.loads(out)  # type: ignore[no-any-return]

    async def apply(self, doc: dict[str, Any]) -> dict[str, Any]:
        out = await self._run(
            [
                "apply",
                "--server-side",
                "--force-conflicts",
                f"--field-manager={FIELD_MANAGER}",
                "-o",
                "json",
                "-f",
                "-",
            ],
            stdin=json.dumps(doc).encode("utf-8"),
            classify=_classify_apply,
        )
        self._learn(doc)
        return json.loads(out)  # type: ignore[no-any-return]

    async def delete(self, identity: ResourceIdentity) -> None:
        await self._run(["delete", *self._identity_args(identity), "--wait=false"])
