"""Typed access to the cluster control plane.

``ClusterClient`` is the port the provisioner and deployer talk to;
``KubernetesClusterClient`` implements it with the official ``kubernetes``
client so no command line is ever assembled from branch names or tags.
API failures are translated into ``ClusterError`` carrying the HTTP status;
an unreachable API server becomes a ``ClusterError`` without one.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
import logging
from typing import Any, Protocol

from kubernetes import client
from kubernetes import config as k8s_config
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError as TransportError

from kubepromote.contracts.errors import ClusterError

logger = logging.getLogger(__name__)

APP_LABEL = "app"
RELEASE_LABEL = "kubepromote/release-id"
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"


@dataclass(frozen=True, slots=True)
class WorkloadSpec:
    """Desired Deployment + Service for one application in one namespace."""

    name: str
    namespace: str
    image: str
    port: int
    labels: dict[str, str] = field(default_factory=dict)
    image_pull_secret: str | None = None

    @property
    def selector(self) -> dict[str, str]:
        return {APP_LABEL: self.name}


class ClusterClient(Protocol):
    """Operations the promotion pipeline needs from the control plane."""

    def namespace_exists(self, name: str) -> bool: ...

    def create_namespace(self, name: str, labels: dict[str, str] | None = None) -> None: ...

    def apply_deployment(self, spec: WorkloadSpec) -> str:
        """Create or patch the Deployment; return ``created`` or ``updated``."""
        ...

    def ensure_service(self, spec: WorkloadSpec) -> str:
        """Create or patch the LoadBalancer Service; return ``created`` or ``updated``."""
        ...

    def service_endpoint(self, name: str, namespace: str) -> str | None:
        """Return ``host:port`` once the load balancer has an address, else None."""
        ...

    def describe(self, namespace: str) -> dict[str, list[str]]: ...


@contextmanager
def _translate(action: str) -> Iterator[None]:
    try:
        yield
    except ApiException as exc:
        raise ClusterError(
            f"{action} failed: {exc.status} {exc.reason}", status=exc.status
        ) from exc
    except (TransportError, OSError) as exc:
        raise ClusterError(f"{action} failed: {type(exc).__name__}: {exc}") from exc


def _exists(action: str, read: Callable[[], Any]) -> bool:
    """Run a read; a 404 means absent, any other failure raises ``ClusterError``."""
    try:
        with _translate(action):
            read()
    except ClusterError as exc:
        if exc.status == 404:
            return False
        raise
    return True


class KubernetesClusterClient:
    """``ClusterClient`` backed by the Kubernetes API."""

    def __init__(
        self,
        kubeconfig: str | None = None,
        context: str | None = None,
        *,
        core_api: Any | None = None,
        apps_api: Any | None = None,
    ) -> None:
        self._kubeconfig = kubeconfig
        self._context = context
        self._core = core_api
        self._apps = apps_api

    def connect(self) -> None:
        """Load credentials: explicit kubeconfig, then in-cluster, then the default kubeconfig."""
        if self._core is not None and self._apps is not None:
            return
        try:
            if self._kubeconfig:
                k8s_config.load_kube_config(config_file=self._kubeconfig, context=self._context)
                logger.info(
                    "cluster.config.loaded",
                    extra={"extra": {"kubeconfig": self._kubeconfig, "context": self._context}},
                )
            else:
                try:
                    k8s_config.load_incluster_config()
                    logger.info("cluster.config.loaded", extra={"extra": {"source": "in-cluster"}})
                except k8s_config.ConfigException:
                    k8s_config.load_kube_config(context=self._context)
                    logger.info(
                        "cluster.config.loaded",
                        extra={"extra": {"source": "kubeconfig", "context": self._context}},
                    )
        except (k8s_config.ConfigException, OSError) as exc:
            raise ClusterError(f"Unable to load cluster credentials: {exc}") from exc
        self._core = client.CoreV1Api()
        self._apps = client.AppsV1Api()

    @property
    def core(self) -> Any:
        if self._core is None:
            self.connect()
        return self._core

    @property
    def apps(self) -> Any:
        if self._apps is None:
            self.connect()
        return self._apps

    # Namespaces

    def namespace_exists(self, name: str) -> bool:
        return _exists(f"Reading namespace {name}", lambda: self.core.read_namespace(name=name))

    def create_namespace(self, name: str, labels: dict[str, str] | None = None) -> None:
        body = client.V1Namespace(metadata=client.V1ObjectMeta(name=name, labels=labels))
        with _translate(f"Creating namespace {name}"):
            self.core.create_namespace(body=body)

    # Workloads

    def apply_deployment(self, spec: WorkloadSpec) -> str:
        body = self._deployment_body(spec)
        exists = _exists(
            f"Reading deployment {spec.name}",
            lambda: self.apps.read_namespaced_deployment(name=spec.name, namespace=spec.namespace),
        )
        if not exists:
            with _translate(f"Creating deployment {spec.name}"):
                self.apps.create_namespaced_deployment(namespace=spec.namespace, body=body)
            return "created"
        with _translate(f"Patching deployment {spec.name}"):
            self.apps.patch_namespaced_deployment(
                name=spec.name, namespace=spec.namespace, body=body
            )
        return "updated"

    def ensure_service(self, spec: WorkloadSpec) -> str:
        body = self._service_body(spec)
        exists = _exists(
            f"Reading service {spec.name}",
            lambda: self.core.read_namespaced_service(name=spec.name, namespace=spec.namespace),
        )
        if not exists:
            with _translate(f"Creating service {spec.name}"):
                self.core.create_namespaced_service(namespace=spec.namespace, body=body)
            return "created"
        with _translate(f"Patching service {spec.name}"):
            self.core.patch_namespaced_service(name=spec.name, namespace=spec.namespace, body=body)
        return "updated"

    def service_endpoint(self, name: str, namespace: str) -> str | None:
        with _translate(f"Reading service {name}"):
            service = self.core.read_namespaced_service(name=name, namespace=namespace)
        load_balancer = service.status.load_balancer if service.status else None
        ingress = (load_balancer.ingress if load_balancer else None) or []
        if not ingress:
            return None
        host = ingress[0].ip or ingress[0].hostname
        if not host:
            return None
        port = service.spec.ports[0].port
        return f"{host}:{port}"

    def describe(self, namespace: str) -> dict[str, list[str]]:
        with _translate(f"Listing pods in {namespace}"):
            pods = self.core.list_namespaced_pod(namespace=namespace)
        with _translate(f"Listing services in {namespace}"):
            services = self.core.list_namespaced_service(namespace=namespace)
        return {
            "pods": [f"{pod.metadata.name} {pod.status.phase}" for pod in pods.items],
            "services": [f"{svc.metadata.name} {svc.spec.type}" for svc in services.items],
        }

    # Manifests

    @staticmethod
    def _deployment_body(spec: WorkloadSpec) -> Any:
        labels = {**spec.labels, **spec.selector}
        container = client.V1Container(
            name=spec.name,
            image=spec.image,
            image_pull_policy="Always",
            ports=[client.V1ContainerPort(container_port=spec.port)],
            env=[client.V1EnvVar(name="PORT", value=str(spec.port))],
        )
        pull_secrets = (
            [client.V1LocalObjectReference(name=spec.image_pull_secret)]
            if spec.image_pull_secret
            else None
        )
        return client.V1Deployment(
            metadata=client.V1ObjectMeta(name=spec.name, namespace=spec.namespace, labels=labels),
            spec=client.V1DeploymentSpec(
                replicas=1,
                selector=client.V1LabelSelector(match_labels=spec.selector),
                template=client.V1PodTemplateSpec(
                    metadata=client.V1ObjectMeta(labels=labels),
                    spec=client.V1PodSpec(containers=[container], image_pull_secrets=pull_secrets),
                ),
            ),
        )

    @staticmethod
    def _service_body(spec: WorkloadSpec) -> Any:
        return client.V1Service(
            metadata=client.V1ObjectMeta(
                name=spec.name, namespace=spec.namespace, labels={**spec.labels, **spec.selector}
            ),
            spec=client.V1ServiceSpec(
                type="LoadBalancer",
                selector=spec.selector,
                ports=[client.V1ServicePort(port=spec.port, target_port=spec.port, protocol="TCP")],
            ),
        )
