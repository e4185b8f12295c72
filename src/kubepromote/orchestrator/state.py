"""State tracked for one promotion run."""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID, uuid4

from kubepromote.contracts.errors import PromotionError
from kubepromote.contracts.models import (
    DeploymentRecord,
    PromotionDecision,
    PromotionRequest,
    ReleaseArtifact,
    VerificationResult,
)
from kubepromote.contracts.types import DeploymentStatus
from kubepromote.orchestrator.state_machine import ABORTED, DONE, SimpleStateMachine


@dataclass(slots=True)
class PromotionRun:
    """Mutable state for a promotion run; records it holds are immutable."""

    request: PromotionRequest
    artifact: ReleaseArtifact
    machine: SimpleStateMachine
    started_at: float
    run_id: UUID = field(default_factory=uuid4)
    records: list[DeploymentRecord] = field(default_factory=list)
    verifications: dict[str, list[VerificationResult]] = field(default_factory=dict)
    decisions: list[PromotionDecision] = field(default_factory=list)
    promoted: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    pending_environment: str | None = None
    error: PromotionError | None = None

    @property
    def state(self) -> str:
        return self.machine.state

    @property
    def done(self) -> bool:
        return self.state == DONE

    @property
    def aborted(self) -> bool:
        return self.state == ABORTED

    @property
    def suspended(self) -> bool:
        return self.pending_environment is not None and not self.machine.is_terminal

    def record_for(self, environment: str) -> DeploymentRecord | None:
        """Latest deployment record for ``environment``."""
        for record in reversed(self.records):
            if record.environment.name == environment:
                return record
        return None

    def deployed_environments(self) -> list[str]:
        return [
            record.environment.name
            for record in self.records
            if record.status is DeploymentStatus.READY
        ]
