"""Smoke-test a freshly built image in a local container."""

from __future__ import annotations

import logging
from typing import Any

from docker.errors import APIError, ImageNotFound

from kubepromote.build.images import docker_client
from kubepromote.contracts.errors import PromotionError, VerificationFailure
from kubepromote.contracts.models import ReleaseArtifact, VerificationCriteria, VerificationResult
from kubepromote.contracts.types import Stage
from kubepromote.verification.health import HealthVerifier

logger = logging.getLogger(__name__)

LOCAL_ENVIRONMENT = "local"


class LocalVerifier:
    """Runs the image with its port published on the host and probes it."""

    def __init__(
        self,
        verifier: HealthVerifier,
        port: int,
        *,
        client: Any | None = None,
        host: str = "127.0.0.1",
    ) -> None:
        self.verifier = verifier
        self.port = port
        self.host = host
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = docker_client()
        return self._client

    def verify(
        self, artifact: ReleaseArtifact, criteria: VerificationCriteria
    ) -> list[VerificationResult]:
        port_key = f"{self.port}/tcp"
        try:
            container = self.client.containers.run(
                artifact.image_reference,
                detach=True,
                environment={"PORT": str(self.port)},
                ports={port_key: None},
                labels={"kubepromote/release-id": artifact.release_id},
            )
        except (APIError, ImageNotFound) as exc:
            raise PromotionError(
                f"Could not start local container: {exc}",
                stage=Stage.LOCAL_VERIFY,
                environment=LOCAL_ENVIRONMENT,
            ) from exc
        try:
            container.reload()
            bindings = (container.ports or {}).get(port_key) or []
            if not bindings:
                raise PromotionError(
                    f"Container did not publish port {self.port}",
                    stage=Stage.LOCAL_VERIFY,
                    environment=LOCAL_ENVIRONMENT,
                )
            endpoint = f"{self.host}:{bindings[0]['HostPort']}"
            logger.info(
                "local.container.started",
                extra={"extra": {"container": container.id, "endpoint": endpoint}},
            )
            results = self.verifier.verify(endpoint, criteria)
        finally:
            try:
                container.remove(force=True)
            except APIError as exc:
                logger.warning(
                    "local.container.remove_failed",
                    extra={"extra": {"container": container.id, "reason": str(exc)}},
                )
        if not all(result.passed for result in results):
            raise VerificationFailure(LOCAL_ENVIRONMENT, results, stage=Stage.LOCAL_VERIFY)
        return results
