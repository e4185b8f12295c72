"""Error types raised while promoting a release.

Every promotion error carries the stage and (where there is one) the
environment it happened in, so the CLI can report where a run stopped.
"""

from __future__ import annotations

from collections.abc import Sequence

from kubepromote.contracts.models import DeploymentRecord, VerificationResult
from kubepromote.contracts.types import Stage


class ClusterError(Exception):
    """A call against the cluster control plane or chart tooling failed."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class RegistryError(ValueError):
    """The environment registry file is invalid."""


class PromotionError(Exception):
    """Base class for errors that abort a promotion run."""

    def __init__(self, message: str, *, stage: Stage, environment: str | None = None) -> None:
        self.message = message
        self.stage = stage
        self.environment = environment
        super().__init__(message)

    def describe(self) -> str:
        where = f"{self.environment}/{self.stage.value}" if self.environment else self.stage.value
        return f"[{where}] {self.message}"


class BuildError(PromotionError):
    """Image build or push failed."""

    def __init__(self, reason: str) -> None:
        super().__init__(f"Image build failed: {reason}", stage=Stage.BUILD)
        self.reason = reason


class ProvisioningError(PromotionError):
    """Namespace check or creation failed."""

    def __init__(self, namespace: str, reason: str, *, environment: str | None = None) -> None:
        super().__init__(
            f"Could not provision namespace '{namespace}': {reason}",
            stage=Stage.PROVISION,
            environment=environment,
        )
        self.namespace = namespace
        self.reason = reason


class DeploymentError(PromotionError):
    """The cluster rejected the deployment or service exposure."""

    def __init__(self, record: DeploymentRecord) -> None:
        super().__init__(
            f"Deployment of {record.artifact.image_reference} failed: {record.reason}",
            stage=Stage.DEPLOY,
            environment=record.environment.name,
        )
        self.record = record


class DeployTimeoutError(DeploymentError):
    """The service endpoint was not resolvable before the deadline."""


class VerificationFailure(PromotionError):
    """One or more health metrics did not meet their criteria."""

    def __init__(
        self,
        environment: str,
        results: Sequence[VerificationResult],
        *,
        stage: Stage = Stage.VERIFY,
    ) -> None:
        self.results = list(results)
        self.failed = [result for result in self.results if not result.passed]
        details = ", ".join(
            f"{result.metric.name}={result.observed_value}"
            + (f" ({result.error})" if result.error else "")
            for result in self.failed
        )
        super().__init__(
            f"Health verification failed: {details}", stage=stage, environment=environment
        )


class GateRejected(PromotionError):
    """An operator declined promotion into an environment."""

    def __init__(self, environment: str, reason: str | None = None) -> None:
        message = f"Promotion to '{environment}' was rejected"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, stage=Stage.GATE, environment=environment)


class PromotionTimeoutError(PromotionError):
    """The pipeline-wide time budget elapsed."""

    def __init__(self, stage: Stage, timeout: float, *, environment: str | None = None) -> None:
        super().__init__(
            f"Pipeline exceeded its {timeout:.0f}s time budget",
            stage=stage,
            environment=environment,
        )
