"""Tests for the kubectl cluster client."""

import json
import pathlib

import pytest

from gitops_sync.cluster import KubectlClient
from gitops_sync.cluster import kubectl
from gitops_sync.exceptions import (
    ApplyRejected,
    ClusterUnreachable,
    CommandException,
    ObjectNotFoundError,
    PermissionDenied,
)
from gitops_sync.manifest import DEFAULT_SERVER, KindInfo, ManagedObject

from ..common import NAMESPACE, deployment


@pytest.fixture(name="fake_kubectl")
def fake_kubectl_fixture(
    tmp_path: pathlib.Path, monkeypatch: pytest.MonkeyPatch
) -> pathlib.Path:
    """Replace kubectl with a script that records its arguments."""
    script = tmp_path / "kubectl"
    monkeypatch.setattr(kubectl, "KUBECTL_BIN", str(script))
    return script


def _write_script(script: pathlib.Path, body: str) -> None:
    script.write_text(f'#!/bin/sh\necho "$@" > "{script}.args"\n{body}\n')
    script.chmod(0o755)


def _args(script: pathlib.Path) -> str:
    return pathlib.Path(f"{script}.args").read_text().strip()


@pytest.mark.parametrize(
    ("message", "default", "expected"),
    [
        (
            "Unable to connect to the server: dial tcp: i/o timeout",
            ClusterUnreachable,
            ClusterUnreachable,
        ),
        (
            'Error from server (Forbidden): deployments.apps is forbidden',
            ClusterUnreachable,
            PermissionDenied,
        ),
        (
            'Error from server (NotFound): deployments.apps "vote" not found',
            ClusterUnreachable,
            ObjectNotFoundError,
        ),
        (
            "The Deployment \"vote\" is invalid: spec.replicas: Invalid value",
            ApplyRejected,
            ApplyRejected,
        ),
    ],
)
def test_classify(message: str, default: type, expected: type) -> None:
    """Test kubectl errors are mapped onto the error taxonomy."""
    result = kubectl._classify(CommandException(message), default)
    assert type(result) is expected
    assert str(result) == message


def test_resource_arg() -> None:
    """Test resources are fully qualified by version and group."""
    assert kubectl._resource_arg("v1", "ConfigMap") == "ConfigMap"
    assert kubectl._resource_arg("apps/v1", "Deployment") == "Deployment.v1.apps"


async def test_list_namespaces(fake_kubectl: pathlib.Path) -> None:
    """Test the client passes its cluster flags to every call."""
    items = {"items": [{"metadata": {"name": "default"}}]}
    _write_script(fake_kubectl, f"echo '{json.dumps(items)}'")
    client = KubectlClient(
        "https://10.0.0.1:6443", context="prod", kubeconfig="/tmp/config"
    )
    assert await client.list_namespaces() == ["default"]
    assert _args(fake_kubectl) == (
        "--server https://10.0.0.1:6443 --context prod --kubeconfig /tmp/config "
        "get namespaces -o json"
    )


async def test_list_page(fake_kubectl: pathlib.Path) -> None:
    """Test listing fills in the kind of each item."""
    items = {"items": [{"metadata": {"name": "vote", "namespace": NAMESPACE}}]}
    _write_script(fake_kubectl, f"echo '{json.dumps(items)}'")
    client = KubectlClient(DEFAULT_SERVER)
    page = await client.list_page(
        KindInfo("apps/v1", "Deployment"), None, {"app": "vote"}, limit=10
    )
    assert page.items[0]["kind"] == "Deployment"
    assert page.items[0]["apiVersion"] == "apps/v1"
    assert page.continue_token is None
    assert _args(fake_kubectl) == (
        "get Deployment.v1.apps -o json --chunk-size=10 --all-namespaces -l app=vote"
    )


async def test_get_missing(fake_kubectl: pathlib.Path) -> None:
    """Test a missing object is returned as None."""
    _write_script(
        fake_kubectl,
        'echo \'Error from server (NotFound): deployments.apps "vote" not found\' >&2'
        "\nexit 1",
    )
    client = KubectlClient(DEFAULT_SERVER)
    identity = ManagedObject.parse_doc(deployment()).identity
    assert await client.get(identity) is None
    assert _args(fake_kubectl) == f"get Deployment.v1.apps vote -n {NAMESPACE} -o json"


APPLY_ERRORS = [
    ("spec.replicas: Invalid value", ApplyRejected),
    ('Error from server (NotFound): namespaces "voting" not found', ApplyRejected),
    (
        'Error from server (Forbidden): pods "vote" is forbidden: '
        'violates PodSecurity "restricted:latest"',
        ApplyRejected,
    ),
    (
        'Error from server (Forbidden): deployments.apps "vote" is forbidden: '
        'User "system:serviceaccount:gitops:sync" cannot patch resource '
        '"deployments" in API group "apps"',
        PermissionDenied,
    ),
    ("error: You must be logged in to the server (Unauthorized)", PermissionDenied),
    ("Unable to connect to the server: dial tcp: i/o timeout", ClusterUnreachable),
]


@pytest.mark.parametrize(("message", "expected"), APPLY_ERRORS)
async def test_apply_failure(
    fake_kubectl: pathlib.Path, message: str, expected: type
) -> None:
    """Test only connection and authorization failures are not a rejection."""
    _write_script(fake_kubectl, f"cat <<'EOF' >&2\n{message}\nEOF\nexit 1")
    client = KubectlClient(DEFAULT_SERVER)
    with pytest.raises(expected) as exc:
        await client.apply(deployment())
    assert type(exc.value) is expected
    assert "--server-side" in _args(fake_kubectl)


API_RESOURCES = """\
namespaces       ns          v1                     false  Namespace
configmaps       cm          v1                     true   ConfigMap
deployments      deploy      apps/v1                true   Deployment
priorityclasses  pc          scheduling.k8s.io/v1   false  PriorityClass
certificates     cert,certs  cert-manager.io/v1     true   Certificate
"""


def test_parse_api_resources() -> None:
    """Test kinds are read from columns whether or not there are short names."""
    kinds = kubectl._parse_api_resources(
        API_RESOURCES + "widgets  example.com/v1alpha1  true  Widget\n\n"
    )
    assert [(k.api_version, k.kind, k.namespaced) for k in kinds] == [
        ("v1", "Namespace", False),
        ("v1", "ConfigMap", True),
        ("apps/v1", "Deployment", True),
        ("scheduling.k8s.io/v1", "PriorityClass", False),
        ("cert-manager.io/v1", "Certificate", True),
        ("example.com/v1alpha1", "Widget", True),
    ]


async def test_list_kinds_discovered(fake_kubectl: pathlib.Path) -> None:
    """Test the kinds served by the cluster are discovered."""
    _write_script(fake_kubectl, f"cat <<'EOF'\n{API_RESOURCES}EOF")
    client = KubectlClient(DEFAULT_SERVER)
    kinds = await client.list_kinds()
    assert [k.key for k in kinds] == [
        "Namespace",
        "ConfigMap",
        "Deployment.apps",
        "PriorityClass.scheduling.k8s.io",
        "Certificate.cert-manager.io",
    ]
    assert _args(fake_kubectl) == "api-resources --verbs=list,patch --no-headers"


async def test_applied_kind_is_listed(fake_kubectl: pathlib.Path) -> None:
    """Test a custom resource applied before its kind is served is listed."""
    certificate = {
        "apiVersion": "cert-manager.io/v1",
        "kind": "Certificate",
        "metadata": {"name": "web", "namespace": NAMESPACE},
        "spec": {"secretName": "web-tls"},
    }
    served = "\n".join(API_RESOURCES.splitlines()[:3]) + "\n"
    _write_script(
        fake_kubectl,
        f"""case "$1" in
api-resources)
cat <<'EOF'
{served}EOF
;;
*)
echo '{json.dumps(certificate)}'
;;
esac""",
    )
    client = KubectlClient(DEFAULT_SERVER)
    assert "Certificate.cert-manager.io" not in [
        k.key for k in await client.list_kinds()
    ]

    await client.apply(certificate)
    kinds = {k.key: k for k in await client.list_kinds()}
    assert kinds["Certificate.cert-manager.io"] == KindInfo(
        "cert-manager.io/v1", "Certificate", namespaced=True
    )

    identity = ManagedObject.parse_doc(certificate).identity
    assert await client.get(identity) == certificate
    assert _args(fake_kubectl) == (
        f"get Certificate.v1.cert-manager.io web -n {NAMESPACE} -o json"
    )


async def test_fixed_kinds(fake_kubectl: pathlib.Path) -> None:
    """Test a client given its kinds does not discover them."""
    _write_script(fake_kubectl, "exit 1")
    kinds = [KindInfo("v1", "ConfigMap")]
    client = KubectlClient(DEFAULT_SERVER, kinds=kinds)
    assert await client.list_kinds() == kinds
    assert not pathlib.Path(f"{fake_kubectl}.args").exists()


async def test_missing_kubectl(
    tmp_path: pathlib.Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Test a missing kubectl binary is reported as an unreachable cluster."""
    monkeypatch.setattr(kubectl, "KUBECTL_BIN", str(tmp_path / "missing"))
    client = KubectlClient(DEFAULT_SERVER)
    with pytest.raises(ClusterUnreachable, match="could not be started"):
        await client.list_namespaces()


async def test_forbidden(fake_kubectl: pathlib.Path) -> None:
    """Test a forbidden delete is a PermissionDenied."""
    _write_script(
        fake_kubectl, "echo 'Error from server (Forbidden): forbidden' >&2\nexit 1"
    )
    client = KubectlClient(DEFAULT_SERVER)
    identity = ManagedObject.parse_doc(deployment()).identity
    with pytest.raises(PermissionDenied):
        await client.delete(identity)
