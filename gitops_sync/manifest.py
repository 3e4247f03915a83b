"""Representation of desired and live Kubernetes objects and Applications.

An Application ties a directory of manifests in a git repository to a
namespace on a destination cluster. The objects resolved from the repository
form a `DesiredManifestSet` and the objects read back from the cluster form a
`LiveObjectSet`. Both are keyed by `ResourceIdentity`.

Applications may be serialized to a YAML file, either in the compact form
written by `write_applications` or as Argo CD style `Application` documents.
"""

import copy
from dataclasses import dataclass, field
from enum import StrEnum
import logging
from pathlib import Path
from typing import Any, cast, Iterator

import aiofiles
from mashumaro.codecs.yaml import yaml_decode, yaml_encode
from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig

from .exceptions import ConflictingIdentity, InputException

__all__ = [
    "read_applications",
    "write_applications",
    "Application",
    "ApplicationSource",
    "ApplicationDestination",
    "SyncPolicy",
    "Automated",
    "ResourceIdentity",
    "ManagedObject",
    "DesiredManifestSet",
    "LiveObjectSet",
]

_LOGGER = logging.getLogger(__name__)


TRACKING_LABEL = "app.kubernetes.io/instance"
DEFAULT_SERVER = "https://kubernetes.default.svc"
DEFAULT_REVISION = "HEAD"
NAMESPACE_KIND = "Namespace"
CRD_KIND = "CustomResourceDefinition"
LIST_KIND = "List"

# Kinds that are never namespaced. Anything else read from a manifest is
# assumed to be namespaced and receives the destination namespace.
CLUSTER_SCOPED_KINDS = {
    NAMESPACE_KIND,
    CRD_KIND,
    "ClusterRole",
    "ClusterRoleBinding",
    "PriorityClass",
    "StorageClass",
    "PersistentVolume",
    "IngressClass",
    "RuntimeClass",
    "APIService",
    "MutatingWebhookConfiguration",
    "ValidatingWebhookConfiguration",
    "Node",
}

# Metadata fields written by the API server. These are never part of the
# desired state and are ignored when comparing objects.
SERVER_METADATA_FIELDS = (
    "uid",
    "resourceVersion",
    "generation",
    "creationTimestamp",
    "managedFields",
    "selfLink",
)


def api_group(api_version: str) -> str:
    """Return the API group of an apiVersion, empty for the core group."""
    if "/" not in api_version:
        return ""
    return api_version.split("/", 1)[0]


def kind_key(group: str, kind: str) -> str:
    """Return a kubectl style resource key e.g. `Deployment.apps`."""
    if group:
        return f"{kind}.{group}"
    return kind


@dataclass
class BaseManifest(DataClassDictMixin):
    """Base class for all serializable objects."""

    @classmethod
    def parse_yaml(cls, content: str) -> "BaseManifest":
        """Parse a serialized manifest."""
        return yaml_decode(content, cls)

    def yaml(self) -> str:
        """Return a YAML string representation."""
        return yaml_encode(self, self.__class__)  # type: ignore[return-value]

    class Config(BaseConfig):
        omit_none = True
        serialize_by_alias = True
        allow_deserialization_not_by_alias = True


@dataclass(frozen=True)
class ResourceIdentity:
    """Identifier for a kubernetes object: group, kind, namespace and name."""

    group: str
    kind: str
    namespace: str | None
    name: str

    @property
    def namespaced_name(self) -> str:
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name

    @property
    def kind_key(self) -> str:
        """Key used to report per-kind read errors."""
        return kind_key(self.group, self.kind)

    def __str__(self) -> str:
        """Return the kind and namespaced name concatenated as an id."""
        return f"{self.kind_key}/{self.namespaced_name}"


@dataclass(frozen=True)
class KindInfo:
    """A type of object that can be listed from a cluster."""

    api_version: str
    kind: str
    namespaced: bool = True

    @property
    def group(self) -> str:
        return api_group(self.api_version)

    @property
    def key(self) -> str:
        return kind_key(self.group, self.kind)


@dataclass(frozen=True)
class ManagedObject:
    """A single Kubernetes object document along with its identity."""

    identity: ResourceIdentity
    api_version: str
    doc: dict[str, Any] = field(hash=False)

    @property
    def kind(self) -> str:
        return self.identity.kind

    @property
    def labels(self) -> dict[str, str]:
        return cast(dict[str, str], self.doc.get("metadata", {}).get("labels") or {})

    @property
    def tracked_by(self) -> str | None:
        """Name of the Application that owns this object, if any."""
        return self.labels.get(TRACKING_LABEL)

    @classmethod
    def parse_doc(
        cls, doc: dict[str, Any], default_namespace: str | None = None
    ) -> "ManagedObject":
        """Parse a raw kubernetes object, filling in the namespace if needed."""
        if not isinstance(doc, dict):
            raise InputException(f"Invalid object is not a mapping: {doc}")
        if not (api_version := doc.get("apiVersion")):
            raise InputException(f"Invalid object missing apiVersion: {doc}")
        if not (kind := doc.get("kind")):
            raise InputException(f"Invalid object missing kind: {doc}")
        if not (metadata := doc.get("metadata")):
            raise InputException(f"Invalid object missing metadata: {doc}")
        if not isinstance(metadata, dict):
            raise InputException(f"Invalid object metadata is not a mapping: {doc}")
        if not (name := metadata.get("name")):
            raise InputException(f"Invalid object missing metadata.name: {doc}")
        doc = copy.deepcopy(doc)
        metadata = doc["metadata"]
        namespace: str | None
        if kind in CLUSTER_SCOPED_KINDS:
            metadata.pop("namespace", None)
            namespace = None
        else:
            namespace = metadata.get("namespace") or default_namespace
            if namespace:
                metadata["namespace"] = namespace
        return cls(
            identity=ResourceIdentity(
                group=api_group(api_version),
                kind=kind,
                namespace=namespace,
                name=name,
            ),
            api_version=api_version,
            doc=doc,
        )

    def with_tracking(self, app_name: str) -> "ManagedObject":
        """Return a copy of the object carrying the tracking label for the app."""
        doc = copy.deepcopy(self.doc)
        labels = doc["metadata"].setdefault("labels", {})
        labels[TRACKING_LABEL] = app_name
        return ManagedObject(self.identity, self.api_version, doc)


@dataclass(frozen=True)
class DesiredManifestSet:
    """Ordered set of objects resolved from a source, path and revision."""

    revision: str
    """Commit hash the objects were read from."""

    objects: tuple[ManagedObject, ...] = ()

    def __post_init__(self) -> None:
        seen: set[ResourceIdentity] = set()
        for obj in self.objects:
            if obj.identity in seen:
                raise ConflictingIdentity(str(obj.identity))
            seen.add(obj.identity)

    def __iter__(self) -> Iterator[ManagedObject]:
        return iter(self.objects)

    def __len__(self) -> int:
        return len(self.objects)

    def get(self, identity: ResourceIdentity) -> ManagedObject | None:
        for obj in self.objects:
            if obj.identity == identity:
                return obj
        return None


@dataclass
class LiveObjectSet:
    """Objects read from a cluster, plus the kinds that could not be read."""

    objects: dict[ResourceIdentity, ManagedObject] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)
    """Map of kind key to the error seen while listing that kind."""

    def add(self, obj: ManagedObject) -> None:
        self.objects[obj.identity] = obj

    def get(self, identity: ResourceIdentity) -> ManagedObject | None:
        return self.objects.get(identity)

    def readable(self, identity: ResourceIdentity) -> bool:
        """Return False if the kind of the identity failed to list."""
        return identity.kind_key not in self.errors

    def tracked(self, app_name: str) -> list[ManagedObject]:
        """Return the objects owned by the specified Application."""
        return [obj for obj in self.objects.values() if obj.tracked_by == app_name]

    def __len__(self) -> int:
        return len(self.objects)


class SyncMode(StrEnum):
    """How an Application is synchronized."""

    MANUAL = "manual"
    AUTOMATED = "automated"


@dataclass
class ApplicationSource(BaseManifest):
    """Pointer to a directory of manifests in a git repository."""

    repo_url: str = field(metadata=field_options(alias="repoURL"))
    """URL of the git repository, or a local path."""

    path: str = "."
    """Directory within the repository holding the manifests."""

    target_revision: str = field(
        metadata=field_options(alias="targetRevision"), default=DEFAULT_REVISION
    )
    """Branch, tag or commit. Branches track their latest commit."""


@dataclass
class ApplicationDestination(BaseManifest):
    """Cluster and namespace the Application is deployed to."""

    namespace: str
    """Default namespace for namespaced objects without one."""

    server: str = DEFAULT_SERVER
    """URL of the cluster control plane."""


@dataclass
class Automated(BaseManifest):
    """Settings for automated sync."""

    prune: bool = False
    """Delete tracked objects that are no longer in the source."""

    self_heal: bool = field(metadata=field_options(alias="selfHeal"), default=False)
    """Re-sync when the live state drifts without a new revision."""


@dataclass
class SyncPolicy(BaseManifest):
    """Sync policy for an Application, manual unless automated is set."""

    automated: Automated | None = None

    prune_on_delete: bool = field(
        metadata=field_options(alias="pruneOnDelete"), default=False
    )
    """Delete tracked objects when the Application itself is deleted."""

    @property
    def mode(self) -> SyncMode:
        if self.automated is not None:
            return SyncMode.AUTOMATED
        return SyncMode.MANUAL

    @property
    def prune(self) -> bool:
        return self.automated is not None and self.automated.prune

    @property
    def self_heal(self) -> bool:
        return self.automated is not None and self.automated.self_heal


@dataclass
class Application(BaseManifest):
    """A unit of synchronization between a source and a destination."""

    name: str
    """Unique name, also used as the tracking label value."""

    source: ApplicationSource

    destination: ApplicationDestination

    sync_policy: SyncPolicy = field(
        metadata=field_options(alias="syncPolicy"), default_factory=SyncPolicy
    )

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "Application":
        """Parse an Application from a compact or Argo CD style document."""
        if doc.get("kind") == "Application" and "spec" in doc:
            if not (metadata := doc.get("metadata")):
                raise InputException(f"Invalid Application missing metadata: {doc}")
            if not (name := metadata.get("name")):
                raise InputException(
                    f"Invalid Application missing metadata.name: {doc}"
                )
            doc = {"name": name, **doc["spec"]}
        for key in ("name", "source", "destination"):
            if not doc.get(key):
                raise InputException(f"Invalid Application missing {key}: {doc}")
        try:
            return cls.from_dict(doc)
        except (ValueError, TypeError, LookupError) as err:
            raise InputException(f"Invalid Application {doc}: {err}") from err


@dataclass
class ApplicationList(BaseManifest):
    """Holds the set of registered Applications."""

    applications: list[Application] = field(default_factory=list)


async def read_applications(path: Path) -> list[Application]:
    """Return the Applications in a serialized application file."""
    async with aiofiles.open(str(path)) as app_file:
        content = await app_file.read()
    if not content.strip():
        return []
    try:
        return cast(ApplicationList, ApplicationList.parse_yaml(content)).applications
    except (ValueError, TypeError, LookupError) as err:
        raise InputException(f"Invalid application file {path}: {err}") from err


async def write_applications(path: Path, applications: list[Application]) -> None:
    """Write the specified Applications to disk."""
    content = ApplicationList(applications=applications).yaml()
    async with aiofiles.open(str(path), mode="w") as app_file:
        await app_file.write(content)
