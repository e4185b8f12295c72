"""Promotion controller: the pipeline state machine.

A run moves strictly forward: build and local verification, then for each
registered environment a gate followed by provision, deploy and verify. Any
promotion error aborts the run; a manual gate without a decision suspends it
until ``resume`` is called with an operator decision.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
import logging
from pathlib import Path
import time
from typing import Any

from pydantic import BaseModel

from kubepromote.build.images import ImageBuilder
from kubepromote.build.local import LOCAL_ENVIRONMENT, LocalVerifier
from kubepromote.cluster.deployer import Deployer
from kubepromote.cluster.namespaces import NamespaceProvisioner
from kubepromote.contracts.errors import (
    DeploymentError,
    DeployTimeoutError,
    GateRejected,
    PromotionError,
    PromotionTimeoutError,
    VerificationFailure,
)
from kubepromote.contracts.events import (
    DEPLOY_COMPLETED,
    DEPLOY_STARTED,
    ENVIRONMENT_SKIPPED,
    GATE_DECISION_MADE,
    IMAGE_BUILT,
    PROMOTION_ABORTED,
    PROMOTION_COMPLETED,
    PROMOTION_STARTED,
    PROMOTION_SUSPENDED,
    VERIFICATION_COMPLETED,
    DeployCompleted,
    DeployStarted,
    EnvironmentSkipped,
    GateDecisionMade,
    ImageBuilt,
    PromotionAborted,
    PromotionCompleted,
    PromotionStarted,
    PromotionSuspended,
    VerificationCompleted,
)
from kubepromote.contracts.models import (
    Environment,
    PromotionDecision,
    PromotionRequest,
    VerificationResult,
)
from kubepromote.contracts.types import DeploymentStatus, Stage
from kubepromote.gatekeeper.gate import Gatekeeper
from kubepromote.observability.metrics import PROMOTIONS
from kubepromote.observability.telemetry import stage_span
from kubepromote.orchestrator.event_bus import Event, EventBus
from kubepromote.orchestrator.state import PromotionRun
from kubepromote.orchestrator.state_machine import promotion_machine
from kubepromote.registry.environments import EnvironmentRegistry
from kubepromote.verification.health import HealthVerifier

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PromotionController:
    """Drives one release through the registered environments."""

    registry: EnvironmentRegistry
    provisioner: NamespaceProvisioner
    deployer: Deployer
    verifier: HealthVerifier
    gatekeeper: Gatekeeper
    bus: EventBus
    builder: ImageBuilder | None = None
    local_verifier: LocalVerifier | None = None
    build_context: Path = Path(".")
    pipeline_timeout: float = 3600.0
    clock: Callable[[], float] = field(default=time.monotonic)

    def start(self, request: PromotionRequest) -> PromotionRun:
        artifact = request.artifact()
        run = PromotionRun(
            request=request,
            artifact=artifact,
            machine=promotion_machine(self.registry.names),
            started_at=self.clock(),
        )
        logger.info(
            "promotion.started",
            extra={
                "extra": {
                    "run_id": str(run.run_id),
                    "release_id": artifact.release_id,
                    "image": artifact.image_reference,
                    "branch": request.branch,
                    "deploy_to_prod": request.deploy_to_prod,
                }
            },
        )
        self._publish(
            run,
            PROMOTION_STARTED,
            PromotionStarted(artifact=artifact, deploy_to_prod=request.deploy_to_prod),
        )
        with stage_span(
            "kubepromote.controller", "promotion", release_id=artifact.release_id
        ) as span:
            try:
                self._build(run)
                self._advance(run, 0)
            except PromotionError as exc:
                self._abort(run, exc)
            span.set_attribute("state", run.state)
        return run

    def resume(self, run: PromotionRun, decision: PromotionDecision) -> PromotionRun:
        """Continue a run suspended at a gate with an operator decision."""
        if not run.suspended or run.pending_environment is None:
            raise RuntimeError(f"Run {run.run_id} is not waiting at a gate (state {run.state})")
        environment = self.registry.get(run.pending_environment)
        if decision.environment != environment.name:
            raise ValueError(
                f"Decision for {decision.environment!r} given at gate {environment.name!r}"
            )
        run.pending_environment = None
        Gatekeeper.record(decision)
        try:
            self._apply_decision(run, decision)
            self._promote(run, environment)
            self._advance(run, self.registry.index_of(environment.name) + 1)
        except PromotionError as exc:
            self._abort(run, exc)
        return run

    def _build(self, run: PromotionRun) -> None:
        if run.request.skip_build or self.builder is None:
            logger.info("build.skipped", extra={"extra": {"run_id": str(run.run_id)}})
            return
        self._check_deadline(run, Stage.BUILD)
        self.builder.build(run.artifact, self.build_context)
        self.builder.push(run.artifact)
        self._publish(
            run, IMAGE_BUILT, ImageBuilt(image_reference=run.artifact.image_reference, pushed=True)
        )
        if self.local_verifier is None:
            return
        run.machine.trigger("verify_local")
        self._check_deadline(run, Stage.LOCAL_VERIFY, LOCAL_ENVIRONMENT)
        criteria = self.registry.environments[0].criteria
        try:
            results = self.local_verifier.verify(run.artifact, criteria)
        except VerificationFailure as exc:
            self._verified(run, LOCAL_ENVIRONMENT, exc.results)
            raise
        self._verified(run, LOCAL_ENVIRONMENT, results)

    def _verified(
        self, run: PromotionRun, environment: str, results: list[VerificationResult]
    ) -> bool:
        run.verifications[environment] = results
        passed = all(result.passed for result in results)
        self._publish(
            run,
            VERIFICATION_COMPLETED,
            VerificationCompleted(environment=environment, results=results, passed=passed),
        )
        return passed

    def _advance(self, run: PromotionRun, start: int) -> None:
        for environment in self.registry.environments[start:]:
            if not environment.accepts_branch(run.request.branch):
                self._skip(run, environment)
                break
            run.machine.trigger(f"open_gate:{environment.name}")
            self._check_deadline(run, Stage.GATE, environment.name)
            with stage_span("kubepromote.controller", "gate", environment=environment.name):
                decision = self.gatekeeper.evaluate(environment, run.request, run.artifact)
            if decision is None:
                run.pending_environment = environment.name
                PROMOTIONS.labels(outcome="suspended").inc()
                logger.info(
                    "promotion.suspended",
                    extra={
                        "extra": {"run_id": str(run.run_id), "environment": environment.name}
                    },
                )
                self._publish(
                    run, PROMOTION_SUSPENDED, PromotionSuspended(environment=environment.name)
                )
                return
            self._apply_decision(run, decision)
            self._promote(run, environment)
        run.machine.trigger("finish")
        PROMOTIONS.labels(outcome="done").inc()
        logger.info(
            "promotion.completed",
            extra={
                "extra": {
                    "run_id": str(run.run_id),
                    "promoted": run.promoted,
                    "skipped": run.skipped,
                }
            },
        )
        self._publish(
            run,
            PROMOTION_COMPLETED,
            PromotionCompleted(run_id=run.run_id, promoted=run.promoted, skipped=run.skipped),
        )

    def _skip(self, run: PromotionRun, environment: Environment) -> None:
        reason = (
            f"branch {run.request.branch!r} may not be promoted to {environment.name} "
            f"(allowed: {', '.join(environment.branches or ())})"
        )
        run.skipped.append(environment.name)
        logger.info(
            "promotion.skipped",
            extra={"extra": {"environment": environment.name, "reason": reason}},
        )
        self._publish(
            run,
            ENVIRONMENT_SKIPPED,
            EnvironmentSkipped(
                environment=environment.name, branch=run.request.branch, reason=reason
            ),
        )

    def _apply_decision(self, run: PromotionRun, decision: PromotionDecision) -> None:
        run.decisions.append(decision)
        self._publish(run, GATE_DECISION_MADE, GateDecisionMade(decision=decision))
        if not decision.approved:
            raise GateRejected(decision.environment, decision.reason)

    def _promote(self, run: PromotionRun, environment: Environment) -> None:
        run.machine.trigger(f"promote:{environment.name}")
        self._check_deadline(run, Stage.PROVISION, environment.name)
        self.provisioner.ensure(environment.namespace, environment=environment.name)

        self._check_deadline(run, Stage.DEPLOY, environment.name)
        self._publish(
            run,
            DEPLOY_STARTED,
            DeployStarted(
                environment=environment.name,
                namespace=environment.namespace,
                image_reference=run.artifact.image_reference,
            ),
        )
        record = self.deployer.deploy(run.artifact, environment)
        run.records.append(record)
        self._publish(run, DEPLOY_COMPLETED, DeployCompleted(record=record))
        if record.status is DeploymentStatus.FAILED:
            if record.timed_out:
                raise DeployTimeoutError(record)
            raise DeploymentError(record)
        if record.service_endpoint is None:
            raise DeploymentError(record.model_copy(update={"reason": "no service endpoint"}))

        self._check_deadline(run, Stage.VERIFY, environment.name)
        results = self.verifier.verify(record.service_endpoint, environment.criteria)
        if not self._verified(run, environment.name, results):
            raise VerificationFailure(environment.name, results)
        run.promoted.append(environment.name)

    def _abort(self, run: PromotionRun, exc: PromotionError) -> None:
        run.error = exc
        run.pending_environment = None
        if not run.machine.is_terminal:
            run.machine.trigger("abort")
        PROMOTIONS.labels(outcome="aborted").inc()
        fields = {
            "run_id": str(run.run_id),
            "stage": exc.stage.value,
            "environment": exc.environment,
            "reason": exc.message,
        }
        if isinstance(exc, GateRejected):
            logger.warning("promotion.rejected", extra={"extra": fields})
        else:
            logger.error("promotion.aborted", extra={"extra": fields})
        self._publish(
            run,
            PROMOTION_ABORTED,
            PromotionAborted(
                run_id=run.run_id,
                stage=exc.stage.value,
                environment=exc.environment,
                reason=exc.message,
            ),
        )

    def _check_deadline(
        self, run: PromotionRun, stage: Stage, environment: str | None = None
    ) -> None:
        if self.clock() - run.started_at > self.pipeline_timeout:
            raise PromotionTimeoutError(stage, self.pipeline_timeout, environment=environment)

    def _publish(self, run: PromotionRun, event_type: str, payload: BaseModel) -> None:
        data: dict[str, Any] = payload.model_dump(mode="json")
        self.bus.publish(Event(event_type=event_type, run_id=run.run_id, payload=data))
