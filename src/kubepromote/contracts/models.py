"""Domain models for environment promotion."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, model_validator

from kubepromote.contracts.types import ApprovedBy, DeploymentStatus, GatePolicy, Metric


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def sanitize_release_id(value: str) -> str:
    """Replace characters that branch names may carry but resource names may not."""
    return value.replace("/", "-").replace("*", "-")


class VerificationCriteria(BaseModel):
    """Pass/fail thresholds for the health probes of one environment."""

    model_config = ConfigDict(frozen=True)

    path: str = "/"
    status_code: int = 200
    max_total_time: float = Field(default=5.0, gt=0)
    min_size_download: int = Field(default=1, ge=0)
    max_size_download: int | None = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _check_size_bounds(self) -> VerificationCriteria:
        if self.max_size_download is not None and self.max_size_download < self.min_size_download:
            raise ValueError("max_size_download must be >= min_size_download")
        if not self.path.startswith("/"):
            raise ValueError("path must start with '/'")
        return self


class Environment(BaseModel):
    """A deployment target."""

    model_config = ConfigDict(frozen=True)

    name: str
    namespace: str
    gate_policy: GatePolicy = GatePolicy.AUTOMATIC
    branches: tuple[str, ...] | None = None
    criteria: VerificationCriteria = Field(default_factory=VerificationCriteria)

    def accepts_branch(self, branch: str) -> bool:
        return self.branches is None or branch in self.branches


class ReleaseArtifact(BaseModel):
    """The image being promoted and its stable release identity."""

    model_config = ConfigDict(frozen=True)

    image_name: str
    tag: str
    branch: str
    registry: str = ""
    image_reference: str
    release_id: str

    @classmethod
    def create(cls, image_name: str, tag: str, branch: str, registry: str = "") -> ReleaseArtifact:
        repository = f"{registry.rstrip('/')}/{image_name}" if registry else image_name
        return cls(
            image_name=image_name,
            tag=tag,
            branch=branch,
            registry=registry,
            image_reference=f"{repository}:{tag}",
            release_id=sanitize_release_id(f"{image_name}-{tag}-{branch}"),
        )

    @property
    def repository(self) -> str:
        return self.image_reference.rsplit(":", 1)[0]


class DeploymentRecord(BaseModel):
    """Result of one deploy attempt into one environment."""

    model_config = ConfigDict(frozen=True)

    environment: Environment
    artifact: ReleaseArtifact
    status: DeploymentStatus = DeploymentStatus.PENDING
    service_endpoint: str | None = None
    started_at: datetime = Field(default_factory=_utcnow)
    ready_since: datetime | None = None
    reason: str | None = None
    timed_out: bool = False

    def ready(self, endpoint: str) -> DeploymentRecord:
        if self.status is not DeploymentStatus.PENDING:
            raise ValueError(f"Deployment record is already {self.status.value}")
        return self.model_copy(
            update={
                "status": DeploymentStatus.READY,
                "service_endpoint": endpoint,
                "ready_since": _utcnow(),
            }
        )

    def failed(self, reason: str, *, timed_out: bool = False) -> DeploymentRecord:
        if self.status is not DeploymentStatus.PENDING:
            raise ValueError(f"Deployment record is already {self.status.value}")
        return self.model_copy(
            update={"status": DeploymentStatus.FAILED, "reason": reason, "timed_out": timed_out}
        )


class VerificationResult(BaseModel):
    """Outcome of one metric probe."""

    model_config = ConfigDict(frozen=True)

    metric: Metric
    observed_value: float | None
    passed: bool
    attempts: int = 1
    error: str | None = None


class PromotionDecision(BaseModel):
    """Gate outcome for entering an environment."""

    model_config = ConfigDict(frozen=True)

    environment: str
    approved: bool
    approved_by: ApprovedBy
    reason: str | None = None
    decided_at: datetime = Field(default_factory=_utcnow)


class PromotionRequest(BaseModel):
    """Inputs of one pipeline invocation."""

    image_name: str
    tag: str
    branch: str
    registry: str = ""
    deploy_to_prod: bool = False
    skip_build: bool = False

    def artifact(self) -> ReleaseArtifact:
        return ReleaseArtifact.create(self.image_name, self.tag, self.branch, self.registry)
