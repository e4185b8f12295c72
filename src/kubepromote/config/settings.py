"""Centralized settings for a promotion run."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
import os
from pathlib import Path

from kubepromote.config.adapter import (
    ConfigAdapter,
    ConfigSource,
    DotEnvConfigSource,
    EnvConfigSource,
    SecretsManagerConfigSource,
)

PREFIX = "KUBEPROMOTE_"


@lru_cache
def _config_adapter() -> ConfigAdapter:
    sources: list[ConfigSource] = [EnvConfigSource()]
    dotenv_path = Path(os.getenv("DOTENV_PATH", ".env"))
    sources.append(DotEnvConfigSource(path=dotenv_path))
    secret_id = os.getenv("AWS_SECRETSMANAGER_CONFIG_ID")
    if secret_id:
        sources.append(
            SecretsManagerConfigSource(
                secret_id=secret_id,
                region_name=os.getenv("AWS_REGION"),
                profile_name=os.getenv("AWS_PROFILE"),
            )
        )
    return ConfigAdapter(tuple(sources))


@dataclass(slots=True)
class PromotionSettings:
    image_name: str = "hello-world-aspnetcore"
    tag: str | None = None
    branch: str | None = None
    registry: str = ""
    registry_username: str | None = None
    registry_password: str | None = None
    chart_repo_name: str | None = None
    chart_repo_url: str | None = None
    chart_repo_username: str | None = None
    chart_repo_password: str | None = None
    chart_name: str | None = None
    chart_version: str | None = None
    image_pull_secret: str | None = None
    deploy_to_prod: bool = False
    app_port: int = 8080
    service_name: str | None = None
    pipeline_timeout: float = 3600.0
    deploy_timeout: float = 60.0
    deploy_poll_interval: float = 5.0
    kubeconfig: str | None = None
    kube_context: str | None = None
    environments_file: Path | None = None
    docker_context: Path = Path(".")
    bus: str = "memory"
    nats_url: str = "nats://localhost:4222"

    @property
    def resolved_service_name(self) -> str:
        return self.service_name or self.image_name

    @property
    def chart_reference(self) -> str | None:
        """Chart to install (``repo/chart``), or None to deploy plain manifests."""
        if not self.chart_name:
            return None
        if self.chart_repo_name and "/" not in self.chart_name:
            return f"{self.chart_repo_name}/{self.chart_name}"
        return self.chart_name


def load_settings(adapter: ConfigAdapter | None = None) -> PromotionSettings:
    config = adapter or _config_adapter()
    defaults = PromotionSettings()
    environments_file = config.get(PREFIX + "ENVIRONMENTS_FILE")
    return PromotionSettings(
        image_name=config.get(PREFIX + "IMAGE_NAME", defaults.image_name) or defaults.image_name,
        tag=config.get(PREFIX + "IMAGE_TAG"),
        branch=config.get(PREFIX + "BRANCH"),
        registry=config.get(PREFIX + "REGISTRY", "") or "",
        registry_username=config.get(PREFIX + "REGISTRY_USERNAME"),
        registry_password=config.get(PREFIX + "REGISTRY_PASSWORD"),
        chart_repo_name=config.get(PREFIX + "CHART_REPO_NAME"),
        chart_repo_url=config.get(PREFIX + "CHART_REPO_URL"),
        chart_repo_username=config.get(PREFIX + "CHART_REPO_USERNAME"),
        chart_repo_password=config.get(PREFIX + "CHART_REPO_PASSWORD"),
        chart_name=config.get(PREFIX + "CHART_NAME"),
        chart_version=config.get(PREFIX + "CHART_VERSION"),
        image_pull_secret=config.get(PREFIX + "IMAGE_PULL_SECRET"),
        deploy_to_prod=config.get_bool(PREFIX + "DEPLOY_TO_PROD", defaults.deploy_to_prod),
        app_port=config.get_int(PREFIX + "APP_PORT", defaults.app_port),
        service_name=config.get(PREFIX + "SERVICE_NAME"),
        pipeline_timeout=config.get_float(
            PREFIX + "PIPELINE_TIMEOUT_SECONDS", defaults.pipeline_timeout
        ),
        deploy_timeout=config.get_float(
            PREFIX + "DEPLOY_TIMEOUT_SECONDS", defaults.deploy_timeout
        ),
        deploy_poll_interval=config.get_float(
            PREFIX + "DEPLOY_POLL_SECONDS", defaults.deploy_poll_interval
        ),
        kubeconfig=config.get(PREFIX + "KUBECONFIG"),
        kube_context=config.get(PREFIX + "KUBE_CONTEXT"),
        environments_file=Path(environments_file) if environments_file else None,
        docker_context=Path(config.get(PREFIX + "DOCKER_CONTEXT", ".") or "."),
        bus=config.get(PREFIX + "BUS", defaults.bus) or defaults.bus,
        nats_url=config.get(PREFIX + "NATS_URL", defaults.nats_url) or defaults.nats_url,
    )
