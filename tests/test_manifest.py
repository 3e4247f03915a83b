"""Tests for manifest library."""

from pathlib import Path

import pytest
import yaml

from gitops_sync.exceptions import ConflictingIdentity, InputException
from gitops_sync.manifest import (
    TRACKING_LABEL,
    Application,
    DesiredManifestSet,
    LiveObjectSet,
    ManagedObject,
    ResourceIdentity,
    SyncMode,
    read_applications,
    write_applications,
)

from .common import NAMESPACE, config_map, deployment, make_app, namespace_doc


def test_parse_doc_identity() -> None:
    """Test the identity of a parsed object."""
    obj = ManagedObject.parse_doc(deployment())
    assert obj.identity == ResourceIdentity("apps", "Deployment", NAMESPACE, "vote")
    assert obj.api_version == "apps/v1"
    assert str(obj.identity) == "Deployment.apps/voting/vote"
    assert obj.identity.kind_key == "Deployment.apps"


def test_parse_doc_core_group() -> None:
    """Test objects in the core group have an empty group."""
    obj = ManagedObject.parse_doc(config_map())
    assert obj.identity.group == ""
    assert str(obj.identity) == "ConfigMap/voting/cfg"


def test_parse_doc_default_namespace() -> None:
    """Test namespaced objects without a namespace get the default."""
    obj = ManagedObject.parse_doc(deployment(namespace=None), "other")
    assert obj.identity.namespace == "other"
    assert obj.doc["metadata"]["namespace"] == "other"

    # An explicit namespace is kept
    obj = ManagedObject.parse_doc(deployment(), "other")
    assert obj.identity.namespace == NAMESPACE


def test_parse_doc_cluster_scoped() -> None:
    """Test cluster scoped kinds never receive a namespace."""
    doc = namespace_doc()
    doc["metadata"]["namespace"] = "ignored"
    obj = ManagedObject.parse_doc(doc, "other")
    assert obj.identity.namespace is None
    assert "namespace" not in obj.doc["metadata"]
    assert str(obj.identity) == "Namespace/voting"


def test_parse_doc_does_not_modify_input() -> None:
    """Test parsing copies the document."""
    doc = deployment(namespace=None)
    ManagedObject.parse_doc(doc, "other")
    assert "namespace" not in doc["metadata"]


@pytest.mark.parametrize(
    ("doc", "match"),
    [
        ({"kind": "ConfigMap", "metadata": {"name": "a"}}, "apiVersion"),
        ({"apiVersion": "v1", "metadata": {"name": "a"}}, "kind"),
        ({"apiVersion": "v1", "kind": "ConfigMap"}, "metadata"),
        ({"apiVersion": "v1", "kind": "ConfigMap", "metadata": {}}, "metadata"),
        (
            {"apiVersion": "v1", "kind": "ConfigMap", "metadata": "cfg"},
            "metadata is not a mapping",
        ),
    ],
)
def test_parse_doc_invalid(doc: dict, match: str) -> None:
    """Test invalid objects are rejected."""
    with pytest.raises(InputException, match=match):
        ManagedObject.parse_doc(doc)


def test_with_tracking() -> None:
    """Test adding the tracking label returns a new object."""
    obj = ManagedObject.parse_doc(deployment())
    assert obj.tracked_by is None

    result = obj.with_tracking("vote")
    assert result.tracked_by == "vote"
    assert result.labels == {TRACKING_LABEL: "vote"}
    assert result.identity == obj.identity
    assert obj.tracked_by is None


def test_desired_set_rejects_duplicates() -> None:
    """Test two objects with one identity can't be in a desired set."""
    obj = ManagedObject.parse_doc(config_map())
    other = ManagedObject.parse_doc(config_map(data={"key": "other"}))
    with pytest.raises(ConflictingIdentity, match="ConfigMap/voting/cfg"):
        DesiredManifestSet(revision="abc", objects=(obj, other))


def test_desired_set_lookup() -> None:
    """Test looking up objects in a desired set."""
    objects = (
        ManagedObject.parse_doc(namespace_doc()),
        ManagedObject.parse_doc(config_map()),
    )
    desired = DesiredManifestSet(revision="abc", objects=objects)
    assert len(desired) == 2
    assert list(desired) == list(objects)
    assert desired.get(objects[1].identity) == objects[1]
    assert desired.get(ResourceIdentity("", "ConfigMap", NAMESPACE, "missing")) is None


def test_live_set() -> None:
    """Test the tracked objects and readable kinds of a live set."""
    live = LiveObjectSet()
    mine = ManagedObject.parse_doc(config_map("mine")).with_tracking("vote")
    theirs = ManagedObject.parse_doc(config_map("theirs")).with_tracking("result")
    untracked = ManagedObject.parse_doc(config_map("untracked"))
    for obj in (mine, theirs, untracked):
        live.add(obj)
    live.errors["Deployment.apps"] = "forbidden"

    assert len(live) == 3
    assert live.tracked("vote") == [mine]
    assert live.readable(mine.identity)
    assert not live.readable(ManagedObject.parse_doc(deployment()).identity)


def test_application_policy() -> None:
    """Test the sync policy helpers of an Application."""
    app = make_app("https://example.com/repo.git", prune=True, self_heal=True)
    assert app.sync_policy.mode == SyncMode.AUTOMATED
    assert app.sync_policy.prune
    assert app.sync_policy.self_heal

    app = make_app("https://example.com/repo.git", automated=False, prune=True)
    assert app.sync_policy.mode == SyncMode.MANUAL
    assert not app.sync_policy.prune
    assert not app.sync_policy.self_heal


def test_parse_argo_application() -> None:
    """Test parsing an Argo CD style Application document."""
    doc = yaml.safe_load(
        """\
apiVersion: argoproj.io/v1alpha1
kind: Application
metadata:
  name: vote
spec:
  source:
    repoURL: https://example.com/voting-app.git
    path: k8s-specifications
    targetRevision: main
  destination:
    server: https://kubernetes.default.svc
    namespace: voting
  syncPolicy:
    automated:
      prune: true
      selfHeal: true
"""
    )
    app = Application.parse_doc(doc)
    assert app.name == "vote"
    assert app.source.repo_url == "https://example.com/voting-app.git"
    assert app.source.path == "k8s-specifications"
    assert app.source.target_revision == "main"
    assert app.destination.namespace == "voting"
    assert app.sync_policy.prune
    assert app.sync_policy.self_heal


def test_parse_compact_application_defaults() -> None:
    """Test the defaults of a compact Application document."""
    app = Application.parse_doc(
        {
            "name": "vote",
            "source": {"repoURL": "https://example.com/repo.git"},
            "destination": {"namespace": "voting"},
        }
    )
    assert app.source.path == "."
    assert app.source.target_revision == "HEAD"
    assert app.destination.server == "https://kubernetes.default.svc"
    assert app.sync_policy.mode == SyncMode.MANUAL
    assert not app.sync_policy.prune_on_delete


def test_parse_application_invalid() -> None:
    """Test an Application missing a destination is rejected."""
    with pytest.raises(InputException, match="destination"):
        Application.parse_doc(
            {"name": "vote", "source": {"repoURL": "https://example.com/repo.git"}}
        )


async def test_read_write_applications(tmp_path: Path) -> None:
    """Test Applications are written using the serialized field names."""
    apps = [
        make_app("https://example.com/repo.git", prune=True, self_heal=True),
        make_app("https://example.com/repo.git", name="result", automated=False),
    ]
    path = tmp_path / "applications.yaml"
    await write_applications(path, apps)

    content = yaml.safe_load(path.read_text())
    assert content["applications"][0]["source"]["repoURL"] == (
        "https://example.com/repo.git"
    )
    assert content["applications"][0]["syncPolicy"]["automated"]["selfHeal"]

    assert await read_applications(path) == apps


async def test_read_applications_empty(tmp_path: Path) -> None:
    """Test an empty application file has no Applications."""
    path = tmp_path / "applications.yaml"
    path.write_text("")
    assert await read_applications(path) == []


async def test_read_applications_invalid(tmp_path: Path) -> None:
    """Test an invalid application file raises an InputException."""
    path = tmp_path / "applications.yaml"
    path.write_text("applications:\n- name: vote\n")
    with pytest.raises(InputException, match="Invalid application file"):
        await read_applications(path)
