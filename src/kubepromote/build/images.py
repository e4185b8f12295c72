"""Build and push the application image with the Docker SDK."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
from typing import Any

import docker
from docker.errors import APIError, BuildError as DockerBuildError, DockerException

from kubepromote.contracts.errors import BuildError
from kubepromote.contracts.models import ReleaseArtifact
from kubepromote.observability.telemetry import stage_span

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RegistryCredentials:
    username: str
    password: str

    def auth_config(self) -> dict[str, str]:
        return {"username": self.username, "password": self.password}


def docker_client() -> Any:
    """Connect to the Docker engine configured in the environment."""
    try:
        return docker.from_env()
    except DockerException as exc:
        raise BuildError(f"Docker engine unavailable: {exc}") from exc


class ImageBuilder:
    """Builds the image from a Dockerfile context and pushes it to the registry."""

    def __init__(self, client: Any | None = None, credentials: RegistryCredentials | None = None):
        self._client = client
        self.credentials = credentials

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = docker_client()
        return self._client

    def build(self, artifact: ReleaseArtifact, context: Path) -> None:
        if not (context / "Dockerfile").is_file():
            raise BuildError(f"No Dockerfile in {context}")
        with stage_span("kubepromote.build", "image.build", image=artifact.image_reference):
            try:
                _, logs = self.client.images.build(
                    path=str(context),
                    tag=artifact.image_reference,
                    rm=True,
                    labels={"kubepromote/release-id": artifact.release_id},
                )
            except (DockerBuildError, APIError) as exc:
                raise BuildError(str(exc)) from exc
            for chunk in logs:
                line = chunk.get("stream", "").strip() if isinstance(chunk, dict) else ""
                if line:
                    logger.debug("image.build.output", extra={"extra": {"line": line}})
        logger.info("image.built", extra={"extra": {"image": artifact.image_reference}})

    def push(self, artifact: ReleaseArtifact) -> None:
        auth = self.credentials.auth_config() if self.credentials else None
        with stage_span("kubepromote.build", "image.push", image=artifact.image_reference):
            try:
                stream = self.client.images.push(
                    artifact.repository,
                    tag=artifact.tag,
                    stream=True,
                    decode=True,
                    auth_config=auth,
                )
                for line in stream:
                    if "error" in line:
                        raise BuildError(f"push rejected: {line['error']}")
            except APIError as exc:
                raise BuildError(f"push failed: {exc}") from exc
        logger.info("image.pushed", extra={"extra": {"image": artifact.image_reference}})
