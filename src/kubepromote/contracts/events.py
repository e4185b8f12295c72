"""Event contracts published during a promotion run."""

from __future__ import annotations

from uuid import UUID

from pydantic import BaseModel

from kubepromote.contracts.models import (
    DeploymentRecord,
    PromotionDecision,
    ReleaseArtifact,
    VerificationResult,
)

PROMOTION_STARTED = "promotion.started"
IMAGE_BUILT = "image.built"
GATE_DECISION_MADE = "gate.decision.made"
ENVIRONMENT_SKIPPED = "environment.skipped"
DEPLOY_STARTED = "deploy.started"
DEPLOY_COMPLETED = "deploy.completed"
VERIFICATION_COMPLETED = "verification.completed"
PROMOTION_SUSPENDED = "promotion.suspended"
PROMOTION_COMPLETED = "promotion.completed"
PROMOTION_ABORTED = "promotion.aborted"


class PromotionStarted(BaseModel):
    artifact: ReleaseArtifact
    deploy_to_prod: bool


class ImageBuilt(BaseModel):
    image_reference: str
    pushed: bool


class GateDecisionMade(BaseModel):
    decision: PromotionDecision


class EnvironmentSkipped(BaseModel):
    environment: str
    branch: str
    reason: str


class DeployStarted(BaseModel):
    environment: str
    namespace: str
    image_reference: str


class DeployCompleted(BaseModel):
    record: DeploymentRecord


class VerificationCompleted(BaseModel):
    environment: str
    results: list[VerificationResult]
    passed: bool


class PromotionSuspended(BaseModel):
    environment: str


class PromotionCompleted(BaseModel):
    run_id: UUID
    promoted: list[str]
    skipped: list[str]


class PromotionAborted(BaseModel):
    run_id: UUID
    stage: str
    environment: str | None
    reason: str
