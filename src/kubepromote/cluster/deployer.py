"""Deploy a release artifact into an environment and wait for its endpoint."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
import logging
import time
from typing import Protocol

from kubepromote.cluster.client import RELEASE_LABEL, ClusterClient, WorkloadSpec
from kubepromote.cluster.helm import HelmClient
from kubepromote.contracts.errors import ClusterError
from kubepromote.contracts.models import DeploymentRecord, Environment, ReleaseArtifact
from kubepromote.observability.metrics import DEPLOY_DURATION
from kubepromote.observability.telemetry import stage_span

logger = logging.getLogger(__name__)


class Workload(Protocol):
    """Strategy that creates or updates the application's Deployment and Service."""

    def apply(self, artifact: ReleaseArtifact, environment: Environment) -> None: ...


@dataclass(slots=True)
class ManifestWorkload:
    """Upserts a Deployment and a LoadBalancer Service through the cluster API."""

    cluster: ClusterClient
    name: str
    port: int
    image_pull_secret: str | None = None

    def spec_for(self, artifact: ReleaseArtifact, environment: Environment) -> WorkloadSpec:
        return WorkloadSpec(
            name=self.name,
            namespace=environment.namespace,
            image=artifact.image_reference,
            port=self.port,
            labels={RELEASE_LABEL: artifact.release_id},
            image_pull_secret=self.image_pull_secret,
        )

    def apply(self, artifact: ReleaseArtifact, environment: Environment) -> None:
        spec = self.spec_for(artifact, environment)
        deployment = self.cluster.apply_deployment(spec)
        service = self.cluster.ensure_service(spec)
        logger.info(
            "workload.applied",
            extra={
                "extra": {
                    "namespace": spec.namespace,
                    "deployment": deployment,
                    "service": service,
                    "image": spec.image,
                }
            },
        )


@dataclass(frozen=True, slots=True)
class ChartRepository:
    name: str
    url: str
    username: str | None = None
    password: str | None = None


@dataclass(slots=True)
class HelmWorkload:
    """Installs the application chart; the chart owns the Deployment and Service.

    The chart repository, when given, is registered once before the first install.
    """

    helm: HelmClient
    chart: str
    release: str
    port: int
    repository: ChartRepository | None = None
    image_pull_secret: str | None = None
    chart_version: str | None = None
    _repository_added: bool = field(default=False, init=False)

    def apply(self, artifact: ReleaseArtifact, environment: Environment) -> None:
        if self.repository is not None and not self._repository_added:
            self.helm.add_repo(
                self.repository.name,
                self.repository.url,
                username=self.repository.username,
                password=self.repository.password,
            )
            self._repository_added = True
        values = {
            "image.repository": artifact.repository,
            "image.tag": artifact.tag,
            "service.type": "LoadBalancer",
            "service.port": str(self.port),
            "releaseId": artifact.release_id,
        }
        if self.image_pull_secret:
            values["imagePullSecrets[0].name"] = self.image_pull_secret
        self.helm.upgrade_install(
            self.release, self.chart, environment.namespace, values, version=self.chart_version
        )


@dataclass(slots=True)
class Deployer:
    """Applies a workload, then polls its service until an endpoint is assigned.

    Load balancers provision asynchronously, so the endpoint is polled every
    ``poll_interval`` seconds until ``timeout`` elapses.
    """

    cluster: ClusterClient
    workload: Workload
    service_name: str
    timeout: float = 60.0
    poll_interval: float = 5.0
    clock: Callable[[], float] = field(default=time.monotonic)
    sleep: Callable[[float], None] = field(default=time.sleep)

    def deploy(self, artifact: ReleaseArtifact, environment: Environment) -> DeploymentRecord:
        record = DeploymentRecord(environment=environment, artifact=artifact)
        with stage_span(
            "kubepromote.deployer",
            "deploy",
            environment=environment.name,
            image=artifact.image_reference,
        ) as span:
            with DEPLOY_DURATION.labels(environment=environment.name).time():
                try:
                    self.workload.apply(artifact, environment)
                    endpoint = self._wait_for_endpoint(environment.namespace)
                except ClusterError as exc:
                    logger.error(
                        "deploy.failed",
                        extra={"extra": {"environment": environment.name, "reason": str(exc)}},
                    )
                    return record.failed(str(exc))
            if endpoint is None:
                reason = (
                    f"Service {self.service_name} in {environment.namespace} had no "
                    f"endpoint after {self.timeout:.0f}s"
                )
                logger.error(
                    "deploy.timeout",
                    extra={"extra": {"environment": environment.name, "reason": reason}},
                )
                return record.failed(reason, timed_out=True)
            span.set_attribute("endpoint", endpoint)
        ready = record.ready(endpoint)
        logger.info(
            "deploy.ready",
            extra={
                "extra": {
                    "environment": environment.name,
                    "endpoint": endpoint,
                    "release_id": artifact.release_id,
                }
            },
        )
        self._log_inventory(environment.namespace)
        return ready

    def _wait_for_endpoint(self, namespace: str) -> str | None:
        deadline = self.clock() + self.timeout
        while True:
            endpoint = self.cluster.service_endpoint(self.service_name, namespace)
            if endpoint:
                return endpoint
            remaining = deadline - self.clock()
            if remaining <= 0:
                return None
            logger.info(
                "deploy.waiting_for_endpoint",
                extra={"extra": {"namespace": namespace, "remaining_s": round(remaining, 1)}},
            )
            self.sleep(min(self.poll_interval, remaining))

    def _log_inventory(self, namespace: str) -> None:
        try:
            inventory = self.cluster.describe(namespace)
        except ClusterError as exc:
            logger.warning(
                "deploy.inventory_unavailable",
                extra={"extra": {"namespace": namespace, "reason": str(exc)}},
            )
            return
        logger.info("deploy.inventory", extra={"extra": {"namespace": namespace, **inventory}})
