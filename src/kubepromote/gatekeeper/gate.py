"""Gate decisions for entering an environment."""

from __future__ import annotations

import logging

from kubepromote.contracts.errors import GateRejected
from kubepromote.contracts.models import (
    Environment,
    PromotionDecision,
    PromotionRequest,
    ReleaseArtifact,
)
from kubepromote.contracts.types import ApprovedBy, GatePolicy
from kubepromote.gatekeeper.approval import Approver, DeferredApprover
from kubepromote.observability.metrics import GATE_DECISIONS

logger = logging.getLogger(__name__)

OVERRIDE_REASON = "deploy-to-prod override"


class Gatekeeper:
    """Applies an environment's gate policy.

    Automatic gates always approve. Manually gated environments approve
    automatically when the run was started with ``deploy_to_prod``; otherwise
    the approver is asked, and a ``None`` answer leaves the gate pending.
    """

    def __init__(self, approver: Approver | None = None) -> None:
        self._approver = approver or DeferredApprover()

    def evaluate(
        self,
        environment: Environment,
        request: PromotionRequest,
        artifact: ReleaseArtifact,
    ) -> PromotionDecision | None:
        if environment.gate_policy is GatePolicy.AUTOMATIC:
            decision = PromotionDecision(
                environment=environment.name, approved=True, approved_by=ApprovedBy.AUTOMATIC
            )
        elif request.deploy_to_prod:
            decision = PromotionDecision(
                environment=environment.name,
                approved=True,
                approved_by=ApprovedBy.AUTOMATIC,
                reason=OVERRIDE_REASON,
            )
        else:
            decision = self._approver.request(environment, artifact)
            if decision is None:
                logger.info(
                    "gate.pending",
                    extra={"extra": {"environment": environment.name}},
                )
                return None
            if decision.environment != environment.name:
                raise GateRejected(
                    environment.name,
                    f"approver answered for {decision.environment!r} instead",
                )
        self.record(decision)
        return decision

    @staticmethod
    def record(decision: PromotionDecision) -> None:
        GATE_DECISIONS.labels(
            environment=decision.environment,
            approved_by=decision.approved_by.value,
            approved=str(decision.approved).lower(),
        ).inc()
        logger.info(
            "gate.decision",
            extra={
                "extra": {
                    "environment": decision.environment,
                    "approved": decision.approved,
                    "approved_by": decision.approved_by.value,
                    "reason": decision.reason,
                }
            },
        )
