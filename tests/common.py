"""Helpers for building manifests, Applications and git repositories."""

import pathlib
from typing import Any

import git
import yaml

from gitops_sync.manifest import (
    Application,
    ApplicationDestination,
    ApplicationSource,
    Automated,
    DesiredManifestSet,
    LiveObjectSet,
    ManagedObject,
    SyncPolicy,
)

APP_NAME = "vote"
NAMESPACE = "voting"

_AUTHOR = git.Actor("Test Author", "author@example.com")


def deployment(
    name: str = "vote", image: str = "vote:v1", namespace: str | None = NAMESPACE
) -> dict[str, Any]:
    """Return a Deployment document."""
    metadata: dict[str, Any] = {"name": name}
    if namespace:
        metadata["namespace"] = namespace
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": metadata,
        "spec": {
            "replicas": 1,
            "template": {
                "spec": {"containers": [{"name": name, "image": image}]},
            },
        },
    }


def config_map(
    name: str = "cfg", data: dict[str, str] | None = None, namespace: str = NAMESPACE
) -> dict[str, Any]:
    """Return a ConfigMap document."""
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": name, "namespace": namespace},
        "data": data if data is not None else {"key": "value"},
    }


def namespace_doc(name: str = NAMESPACE) -> dict[str, Any]:
    return {"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": name}}


def desired_set(*docs: dict[str, Any], revision: str = "rev1") -> DesiredManifestSet:
    """Build a DesiredManifestSet from raw documents."""
    return DesiredManifestSet(
        revision=revision,
        objects=tuple(ManagedObject.parse_doc(doc, NAMESPACE) for doc in docs),
    )


def tracked(doc: dict[str, Any], app_name: str = APP_NAME) -> dict[str, Any]:
    """Return the document carrying the tracking label of the app."""
    return ManagedObject.parse_doc(doc).with_tracking(app_name).doc


def live_set(*docs: dict[str, Any]) -> LiveObjectSet:
    """Build a LiveObjectSet from raw documents."""
    result = LiveObjectSet()
    for doc in docs:
        result.add(ManagedObject.parse_doc(doc))
    return result


def make_app(
    repo_url: str,
    name: str = APP_NAME,
    path: str = ".",
    revision: str = "main",
    automated: bool = True,
    prune: bool = False,
    self_heal: bool = False,
    prune_on_delete: bool = False,
) -> Application:
    """Return an Application for the repository."""
    return Application(
        name=name,
        source=ApplicationSource(
            repo_url=repo_url, path=path, target_revision=revision
        ),
        destination=ApplicationDestination(namespace=NAMESPACE),
        sync_policy=SyncPolicy(
            automated=(
                Automated(prune=prune, self_heal=self_heal) if automated else None
            ),
            prune_on_delete=prune_on_delete,
        ),
    )


def write_manifests(
    path: pathlib.Path, files: dict[str, list[dict[str, Any]]]
) -> None:
    """Write each list of documents as a multi-document yaml file."""
    for name, docs in files.items():
        file_path = path / name
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(yaml.dump_all(docs, explicit_start=True))


class GitRepoFixture:
    """A local git repository that manifests are committed to."""

    def __init__(self, path: pathlib.Path) -> None:
        self.path = path
        self.repo = git.Repo.init(str(path), initial_branch="main")

    @property
    def url(self) -> str:
        return str(self.path)

    def commit(
        self,
        files: dict[str, list[dict[str, Any]]],
        message: str = "Update manifests",
        remove: list[str] | None = None,
    ) -> str:
        """Write and commit the files, returning the new commit sha."""
        write_manifests(self.path, files)
        for name in remove or ():
            (self.path / name).unlink()
            self.repo.index.remove([name])
        if files:
            self.repo.index.add(list(files))
        commit = self.repo.index.commit(message, author=_AUTHOR, committer=_AUTHOR)
        return commit.hexsha
