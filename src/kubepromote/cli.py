"""Command line entrypoint: build, verify and promote one release."""

from __future__ import annotations

from argparse import ArgumentParser, Namespace
from collections.abc import Sequence
import logging
from pathlib import Path
import sys

from nats.errors import Error as NatsError

from kubepromote.build.images import ImageBuilder, RegistryCredentials
from kubepromote.build.local import LocalVerifier
from kubepromote.cluster.client import KubernetesClusterClient
from kubepromote.cluster.deployer import (
    ChartRepository,
    Deployer,
    HelmWorkload,
    ManifestWorkload,
    Workload,
)
from kubepromote.cluster.helm import HelmClient
from kubepromote.cluster.namespaces import NamespaceProvisioner
from kubepromote.config.settings import PromotionSettings, load_settings
from kubepromote.contracts.errors import RegistryError
from kubepromote.contracts.models import PromotionRequest
from kubepromote.gatekeeper.approval import Approver, ConsoleApprover, DeferredApprover
from kubepromote.gatekeeper.gate import Gatekeeper
from kubepromote.observability.logging import configure_logging
from kubepromote.observability.metrics import start_metrics_server
from kubepromote.observability.telemetry import setup_tracing
from kubepromote.orchestrator.controller import PromotionController
from kubepromote.orchestrator.event_bus import EventBus, InMemoryEventBus
from kubepromote.orchestrator.nats_bus import NATSEventBus
from kubepromote.orchestrator.state import PromotionRun
from kubepromote.registry.environments import EnvironmentRegistry
from kubepromote.verification.health import HealthVerifier

logger = logging.getLogger(__name__)

EXIT_DONE = 0
EXIT_ABORTED = 1
EXIT_USAGE = 2
EXIT_SUSPENDED = 3


def build_parser() -> ArgumentParser:
    parser = ArgumentParser(
        prog="kubepromote",
        description="Build an image and promote it through development, staging and production.",
    )
    parser.add_argument("--branch", help="Source branch (KUBEPROMOTE_BRANCH).")
    parser.add_argument("--tag", help="Image tag (KUBEPROMOTE_IMAGE_TAG).")
    parser.add_argument("--registry", help="Registry host/path (KUBEPROMOTE_REGISTRY).")
    parser.add_argument("--image-name", help="Image and service name (KUBEPROMOTE_IMAGE_NAME).")
    parser.add_argument(
        "--deploy-to-prod",
        action="store_true",
        default=None,
        help="Approve manually gated environments without asking.",
    )
    parser.add_argument(
        "--skip-build",
        action="store_true",
        help="Promote an image that is already in the registry.",
    )
    parser.add_argument(
        "--skip-local-verify",
        action="store_true",
        help="Push without smoke-testing the image in a local container.",
    )
    parser.add_argument("--context", type=Path, help="Docker build context (default: .).")
    parser.add_argument("--environments", type=Path, help="Environment registry YAML file.")
    parser.add_argument(
        "--non-interactive",
        action="store_true",
        help="Do not prompt at manual gates; exit with code 3 instead.",
    )
    parser.add_argument("--metrics-port", type=int, help="Serve /metrics on this port.")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging.")
    return parser


def apply_overrides(settings: PromotionSettings, args: Namespace) -> PromotionSettings:
    if args.branch:
        settings.branch = args.branch
    if args.tag:
        settings.tag = args.tag
    if args.registry is not None:
        settings.registry = args.registry
    if args.image_name:
        settings.image_name = args.image_name
    if args.deploy_to_prod:
        settings.deploy_to_prod = True
    if args.context:
        settings.docker_context = args.context
    if args.environments:
        settings.environments_file = args.environments
    return settings


def build_bus(settings: PromotionSettings) -> EventBus:
    if settings.bus == "nats":
        return NATSEventBus(settings.nats_url)
    return InMemoryEventBus()


def build_workload(settings: PromotionSettings, cluster: KubernetesClusterClient) -> Workload:
    chart = settings.chart_reference
    if chart is None:
        return ManifestWorkload(
            cluster=cluster,
            name=settings.resolved_service_name,
            port=settings.app_port,
            image_pull_secret=settings.image_pull_secret,
        )
    repository = None
    if settings.chart_repo_name and settings.chart_repo_url:
        repository = ChartRepository(
            name=settings.chart_repo_name,
            url=settings.chart_repo_url,
            username=settings.chart_repo_username,
            password=settings.chart_repo_password,
        )
    return HelmWorkload(
        helm=HelmClient(kubeconfig=settings.kubeconfig, kube_context=settings.kube_context),
        chart=chart,
        release=settings.resolved_service_name,
        port=settings.app_port,
        repository=repository,
        image_pull_secret=settings.image_pull_secret,
        chart_version=settings.chart_version,
    )


def build_controller(
    settings: PromotionSettings,
    *,
    approver: Approver,
    bus: EventBus,
    skip_build: bool = False,
    skip_local_verify: bool = False,
) -> PromotionController:
    registry = EnvironmentRegistry.load(settings.environments_file)
    cluster = KubernetesClusterClient(settings.kubeconfig, settings.kube_context)
    verifier = HealthVerifier()
    builder = None
    local_verifier = None
    if not skip_build:
        credentials = None
        if settings.registry_username and settings.registry_password:
            credentials = RegistryCredentials(
                settings.registry_username, settings.registry_password
            )
        builder = ImageBuilder(credentials=credentials)
        if not skip_local_verify:
            local_verifier = LocalVerifier(verifier, settings.app_port)
    return PromotionController(
        registry=registry,
        provisioner=NamespaceProvisioner(cluster),
        deployer=Deployer(
            cluster=cluster,
            workload=build_workload(settings, cluster),
            service_name=settings.resolved_service_name,
            timeout=settings.deploy_timeout,
            poll_interval=settings.deploy_poll_interval,
        ),
        verifier=verifier,
        gatekeeper=Gatekeeper(approver),
        bus=bus,
        builder=builder,
        local_verifier=local_verifier,
        build_context=settings.docker_context,
        pipeline_timeout=settings.pipeline_timeout,
    )


def report(run: PromotionRun) -> int:
    """Print the outcome of ``run`` and return the process exit code."""
    if run.done:
        promoted = ", ".join(run.promoted) or "none"
        print(f"Release {run.artifact.release_id} promoted to: {promoted}")
        for name in run.skipped:
            print(f"Skipped {name}: branch {run.artifact.branch!r} is not a release branch")
        return EXIT_DONE
    if run.suspended:
        print(
            f"Release {run.artifact.release_id} is waiting for approval to enter "
            f"{run.pending_environment}",
            file=sys.stderr,
        )
        return EXIT_SUSPENDED
    reason = run.error.describe() if run.error else f"stopped in state {run.state}"
    print(f"Promotion of {run.artifact.release_id} aborted: {reason}", file=sys.stderr)
    return EXIT_ABORTED


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.INFO)

    try:
        settings = apply_overrides(load_settings(), args)
    except ValueError as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return EXIT_USAGE
    if not settings.branch or not settings.tag:
        print("Both --branch and --tag are required", file=sys.stderr)
        return EXIT_USAGE

    setup_tracing("kubepromote")
    if args.metrics_port:
        start_metrics_server(port=args.metrics_port)

    approver: Approver = DeferredApprover() if args.non_interactive else ConsoleApprover()
    try:
        bus = build_bus(settings)
    except (NatsError, OSError, TimeoutError) as exc:
        print(f"Event bus unavailable: {exc}", file=sys.stderr)
        return EXIT_USAGE
    try:
        controller = build_controller(
            settings,
            approver=approver,
            bus=bus,
            skip_build=args.skip_build,
            skip_local_verify=args.skip_local_verify,
        )
    except (RegistryError, OSError) as exc:
        bus.close()
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return EXIT_USAGE

    request = PromotionRequest(
        image_name=settings.image_name,
        tag=settings.tag,
        branch=settings.branch,
        registry=settings.registry,
        deploy_to_prod=settings.deploy_to_prod,
        skip_build=args.skip_build,
    )
    try:
        result = controller.start(request)
    finally:
        bus.close()
    logger.debug("promotion.state", extra={"extra": {"state": result.state}})
    return report(result)


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
