"""Tests for the Kubernetes-backed cluster client using mocked API objects."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

from kubernetes.client.rest import ApiException
import pytest
from urllib3.exceptions import MaxRetryError

from kubepromote.cluster.client import (
    APP_LABEL,
    RELEASE_LABEL,
    KubernetesClusterClient,
    WorkloadSpec,
)
from kubepromote.cluster.namespaces import NamespaceProvisioner
from kubepromote.contracts.errors import ClusterError, ProvisioningError

SPEC = WorkloadSpec(
    name="hello",
    namespace="staging",
    image="gcr.io/acme/hello:5",
    port=8080,
    labels={RELEASE_LABEL: "hello-5-master"},
    image_pull_secret="regcred",
)


def _client() -> tuple[KubernetesClusterClient, MagicMock, MagicMock]:
    core, apps = MagicMock(), MagicMock()
    return KubernetesClusterClient(core_api=core, apps_api=apps), core, apps


def _service(ingress: list[SimpleNamespace], port: int = 8080) -> SimpleNamespace:
    return SimpleNamespace(
        status=SimpleNamespace(load_balancer=SimpleNamespace(ingress=ingress)),
        spec=SimpleNamespace(ports=[SimpleNamespace(port=port)]),
    )


def test_namespace_lookup() -> None:
    client, core, _ = _client()

    assert client.namespace_exists("staging") is True
    core.read_namespace.side_effect = ApiException(status=404, reason="Not Found")
    assert client.namespace_exists("staging") is False


def test_namespace_lookup_forbidden() -> None:
    client, core, _ = _client()
    core.read_namespace.side_effect = ApiException(status=403, reason="Forbidden")

    with pytest.raises(ClusterError) as excinfo:
        client.namespace_exists("production")

    assert excinfo.value.status == 403


def test_create_namespace_conflict_keeps_status() -> None:
    client, core, _ = _client()
    core.create_namespace.side_effect = ApiException(status=409, reason="Conflict")

    with pytest.raises(ClusterError) as excinfo:
        client.create_namespace("staging")

    assert excinfo.value.status == 409


def test_apply_deployment_creates_when_missing() -> None:
    client, _, apps = _client()
    apps.read_namespaced_deployment.side_effect = ApiException(status=404, reason="Not Found")

    assert client.apply_deployment(SPEC) == "created"

    body = apps.create_namespaced_deployment.call_args.kwargs["body"]
    container = body.spec.template.spec.containers[0]
    assert container.image == "gcr.io/acme/hello:5"
    assert container.env[0].name == "PORT"
    assert container.env[0].value == "8080"
    assert body.spec.selector.match_labels == {APP_LABEL: "hello"}
    assert body.metadata.labels[RELEASE_LABEL] == "hello-5-master"
    assert body.spec.template.spec.image_pull_secrets[0].name == "regcred"


def test_apply_deployment_patches_existing() -> None:
    client, _, apps = _client()

    assert client.apply_deployment(SPEC) == "updated"
    apps.patch_namespaced_deployment.assert_called_once()
    apps.create_namespaced_deployment.assert_not_called()


def test_ensure_service_is_load_balancer() -> None:
    client, core, _ = _client()
    core.read_namespaced_service.side_effect = ApiException(status=404, reason="Not Found")

    assert client.ensure_service(SPEC) == "created"

    body = core.create_namespaced_service.call_args.kwargs["body"]
    assert body.spec.type == "LoadBalancer"
    assert body.spec.ports[0].port == 8080
    assert body.spec.selector == {APP_LABEL: "hello"}


def test_service_endpoint_from_ingress() -> None:
    client, core, _ = _client()
    core.read_namespaced_service.return_value = _service(
        [SimpleNamespace(ip=None, hostname="lb.example.com")]
    )

    assert client.service_endpoint("hello", "staging") == "lb.example.com:8080"


def test_service_endpoint_pending() -> None:
    client, core, _ = _client()
    core.read_namespaced_service.return_value = _service([])

    assert client.service_endpoint("hello", "staging") is None


def test_describe_lists_pods_and_services() -> None:
    client, core, _ = _client()
    core.list_namespaced_pod.return_value = SimpleNamespace(
        items=[
            SimpleNamespace(
                metadata=SimpleNamespace(name="hello-abc"), status=SimpleNamespace(phase="Running")
            )
        ]
    )
    core.list_namespaced_service.return_value = SimpleNamespace(
        items=[
            SimpleNamespace(
                metadata=SimpleNamespace(name="hello"), spec=SimpleNamespace(type="LoadBalancer")
            )
        ]
    )

    assert client.describe("staging") == {
        "pods": ["hello-abc Running"],
        "services": ["hello LoadBalancer"],
    }


def test_unreachable_api_server_fails_provisioning() -> None:
    client, core, _ = _client()
    core.read_namespace.side_effect = MaxRetryError(None, "/api/v1/namespaces/staging", "refused")

    with pytest.raises(ProvisioningError) as excinfo:
        NamespaceProvisioner(client).ensure("staging", environment="staging")

    assert excinfo.value.environment == "staging"
    assert "MaxRetryError" in excinfo.value.reason
    core.create_namespace.assert_not_called()


def test_unreachable_api_server_during_apply() -> None:
    client, _, apps = _client()
    apps.read_namespaced_deployment.side_effect = MaxRetryError(None, "/apis/apps/v1", "refused")

    with pytest.raises(ClusterError) as excinfo:
        client.apply_deployment(SPEC)

    assert excinfo.value.status is None
    apps.create_namespaced_deployment.assert_not_called()


def test_connection_refused_while_polling_endpoint() -> None:
    client, core, _ = _client()
    core.read_namespaced_service.side_effect = ConnectionRefusedError("connection refused")

    with pytest.raises(ClusterError, match="Reading service hello failed"):
        client.service_endpoint("hello", "staging")
