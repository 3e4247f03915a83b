"""Tests for the ordering module."""

from gitops_sync.manifest import ResourceIdentity
from gitops_sync.ordering import Tier, sort_key, tier


def _identity(group: str, kind: str, name: str = "a") -> ResourceIdentity:
    return ResourceIdentity(group, kind, "ns", name)


def test_tiers() -> None:
    """Test the tier of common kinds."""
    assert tier("Namespace") == Tier.NAMESPACE
    assert tier("CustomResourceDefinition") == Tier.DEFINITION
    assert tier("ServiceAccount") == Tier.RBAC
    assert tier("ClusterRoleBinding") == Tier.RBAC
    assert tier("ConfigMap") == Tier.CONFIG
    assert tier("Secret") == Tier.CONFIG
    assert tier("Deployment") == Tier.WORKLOAD
    assert tier("Ingress") == Tier.ANCILLARY
    assert tier("Certificate") == Tier.ANCILLARY


def test_sort_dependency_order() -> None:
    """Test objects sort so their dependencies are applied first."""
    identities = [
        _identity("example.com", "Widget"),
        _identity("networking.k8s.io", "Ingress"),
        _identity("apps", "Deployment"),
        _identity("", "Service"),
        _identity("", "ConfigMap"),
        _identity("rbac.authorization.k8s.io", "RoleBinding"),
        _identity("rbac.authorization.k8s.io", "Role"),
        _identity("", "ServiceAccount"),
        _identity("apiextensions.k8s.io", "CustomResourceDefinition"),
        _identity("", "Namespace"),
    ]
    result = sorted(identities, key=sort_key)
    assert [i.kind for i in result] == [
        "Namespace",
        "CustomResourceDefinition",
        "ServiceAccount",
        "Role",
        "RoleBinding",
        "ConfigMap",
        "Service",
        "Deployment",
        "Ingress",
        "Widget",
    ]


def test_sort_is_stable() -> None:
    """Test objects of one kind keep their relative order."""
    identities = [
        _identity("apps", "Deployment", "b"),
        _identity("", "ConfigMap", "z"),
        _identity("apps", "Deployment", "a"),
        _identity("", "ConfigMap", "y"),
    ]
    result = sorted(identities, key=sort_key)
    assert [i.name for i in result] == ["z", "y", "b", "a"]
