from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
import os
from pathlib import Path
import sys
from typing import Any

import httpx
import pytest

# Ensure src/ is on sys.path when tests run without an editable install
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT / "src") not in sys.path:
    sys.path.insert(0, str(ROOT / "src"))

os.environ.setdefault("KUBEPROMOTE_DISABLE_TRACING", "1")

from kubepromote.cluster.client import WorkloadSpec  # noqa: E402
from kubepromote.cluster.deployer import Deployer, ManifestWorkload  # noqa: E402
from kubepromote.cluster.namespaces import NamespaceProvisioner  # noqa: E402
from kubepromote.contracts.errors import ClusterError  # noqa: E402
from kubepromote.contracts.models import Environment, VerificationCriteria  # noqa: E402
from kubepromote.contracts.types import GatePolicy  # noqa: E402
from kubepromote.gatekeeper.approval import Approver  # noqa: E402
from kubepromote.gatekeeper.gate import Gatekeeper  # noqa: E402
from kubepromote.orchestrator.controller import PromotionController  # noqa: E402
from kubepromote.orchestrator.event_bus import InMemoryEventBus  # noqa: E402
from kubepromote.registry.environments import EnvironmentRegistry  # noqa: E402
from kubepromote.verification.health import HealthVerifier, ProbeSettings  # noqa: E402


class FakeClock:
    """Monotonic clock that only moves when told to (or when slept on)."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@dataclass
class FakeClusterClient:
    """In-memory stand-in for the cluster API."""

    namespaces: set[str] = field(default_factory=set)
    deployments: dict[tuple[str, str], WorkloadSpec] = field(default_factory=dict)
    services: dict[tuple[str, str], WorkloadSpec] = field(default_factory=dict)
    # namespace -> "host:port"; absent namespaces get "<namespace>.example:<port>"
    endpoints: dict[str, str | None] = field(default_factory=dict)
    failures: dict[str, ClusterError] = field(default_factory=dict)
    calls: list[tuple[str, str]] = field(default_factory=list)

    def _maybe_fail(self, operation: str) -> None:
        if operation in self.failures:
            raise self.failures[operation]

    def namespace_exists(self, name: str) -> bool:
        self.calls.append(("namespace_exists", name))
        self._maybe_fail("namespace_exists")
        return name in self.namespaces

    def create_namespace(self, name: str, labels: dict[str, str] | None = None) -> None:
        self.calls.append(("create_namespace", name))
        self._maybe_fail("create_namespace")
        self.namespaces.add(name)

    def apply_deployment(self, spec: WorkloadSpec) -> str:
        self.calls.append(("apply_deployment", spec.namespace))
        self._maybe_fail("apply_deployment")
        key = (spec.namespace, spec.name)
        result = "updated" if key in self.deployments else "created"
        self.deployments[key] = spec
        return result

    def ensure_service(self, spec: WorkloadSpec) -> str:
        self.calls.append(("ensure_service", spec.namespace))
        self._maybe_fail("ensure_service")
        key = (spec.namespace, spec.name)
        result = "updated" if key in self.services else "created"
        self.services[key] = spec
        return result

    def service_endpoint(self, name: str, namespace: str) -> str | None:
        self.calls.append(("service_endpoint", namespace))
        self._maybe_fail("service_endpoint")
        spec = self.services.get((namespace, name))
        if spec is None:
            return None
        if namespace in self.endpoints:
            return self.endpoints[namespace]
        return f"{namespace}.example:{spec.port}"

    def describe(self, namespace: str) -> dict[str, list[str]]:
        self._maybe_fail("describe")
        return {
            "pods": [f"{name}-pod Running" for ns, name in self.deployments if ns == namespace],
            "services": [f"{name} LoadBalancer" for ns, name in self.services if ns == namespace],
        }

    def deployed_namespaces(self) -> list[str]:
        return [namespace for namespace, _ in self.deployments]


Handler = Callable[[httpx.Request], httpx.Response]


def healthy(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, text="Hello World!")


def respond_by_host(overrides: dict[str, Handler]) -> Handler:
    """Route probes by host name (the namespace in FakeClusterClient endpoints)."""

    def handler(request: httpx.Request) -> httpx.Response:
        namespace = request.url.host.split(".", 1)[0]
        return overrides.get(namespace, healthy)(request)

    return handler


async def no_sleep(seconds: float) -> None:
    return None


def make_verifier(handler: Handler = healthy, **settings: Any) -> HealthVerifier:
    return HealthVerifier(
        ProbeSettings(**settings),
        transport=httpx.MockTransport(handler),
        sleep=no_sleep,
    )


DEFAULT_ENVIRONMENTS = (
    Environment(name="development", namespace="development"),
    Environment(name="staging", namespace="staging"),
    Environment(
        name="production",
        namespace="production",
        gate_policy=GatePolicy.MANUAL_APPROVAL,
        branches=("master",),
        criteria=VerificationCriteria(max_total_time=2.0),
    ),
)


@pytest.fixture
def registry() -> EnvironmentRegistry:
    return EnvironmentRegistry(DEFAULT_ENVIRONMENTS)


@pytest.fixture
def cluster() -> FakeClusterClient:
    return FakeClusterClient()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def bus() -> InMemoryEventBus:
    return InMemoryEventBus()


@pytest.fixture
def make_controller(
    registry: EnvironmentRegistry,
    cluster: FakeClusterClient,
    clock: FakeClock,
    bus: InMemoryEventBus,
) -> Callable[..., PromotionController]:
    """Factory for controllers wired to the fake cluster and a mocked HTTP transport."""

    def factory(
        *,
        handler: Handler = healthy,
        approver: Approver | None = None,
        deploy_timeout: float = 60.0,
        **kwargs: Any,
    ) -> PromotionController:
        deployer = Deployer(
            cluster=cluster,
            workload=ManifestWorkload(cluster=cluster, name="hello-world-aspnetcore", port=8080),
            service_name="hello-world-aspnetcore",
            timeout=deploy_timeout,
            poll_interval=5.0,
            clock=clock,
            sleep=clock.sleep,
        )
        return PromotionController(
            registry=kwargs.pop("registry", registry),
            provisioner=NamespaceProvisioner(cluster),
            deployer=deployer,
            verifier=make_verifier(handler),
            gatekeeper=Gatekeeper(approver),
            bus=bus,
            clock=clock,
            **kwargs,
        )

    return factory
