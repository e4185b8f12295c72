"""Tests for helm command construction and chart workloads."""

from __future__ import annotations

import subprocess
from typing import Any

import pytest

from kubepromote.cluster.deployer import ChartRepository, HelmWorkload
from kubepromote.cluster.helm import HelmClient
from kubepromote.contracts.errors import ClusterError
from kubepromote.contracts.models import Environment, ReleaseArtifact


class RecordingRunner:
    def __init__(self, returncode: int = 0, stderr: str = "") -> None:
        self.returncode = returncode
        self.stderr = stderr
        self.commands: list[list[str]] = []
        self.inputs: list[str | None] = []

    def __call__(self, command: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
        self.commands.append(command)
        self.inputs.append(kwargs.get("input"))
        return subprocess.CompletedProcess(command, self.returncode, "", self.stderr)


def test_upgrade_install_passes_values_as_arguments() -> None:
    runner = RecordingRunner()
    helm = HelmClient(kube_context="prod-cluster", runner=runner)

    helm.upgrade_install(
        "hello",
        "acme/hello",
        "staging",
        {"image.tag": "feature-x; rm -rf /", "image.repository": "gcr.io/acme/hello"},
        version="1.0.0",
    )

    assert runner.commands == [
        [
            "helm",
            "upgrade",
            "--install",
            "hello",
            "acme/hello",
            "--namespace",
            "staging",
            "--version",
            "1.0.0",
            "--set-string",
            "image.repository=gcr.io/acme/hello",
            "--set-string",
            "image.tag=feature-x; rm -rf /",
            "--kube-context",
            "prod-cluster",
        ]
    ]


def test_repo_password_goes_through_stdin() -> None:
    runner = RecordingRunner()
    helm = HelmClient(runner=runner)

    helm.add_repo("acme", "https://charts.acme.test", username="ci", password="s3cret")

    add, update = runner.commands
    assert "s3cret" not in add
    assert add[-1] == "--password-stdin"
    assert runner.inputs[0] == "s3cret"
    assert update == ["helm", "repo", "update", "acme"]


def test_failed_command_raises_cluster_error() -> None:
    helm = HelmClient(runner=RecordingRunner(returncode=1, stderr="release: not found\n"))

    with pytest.raises(ClusterError, match="release: not found"):
        helm.upgrade_install("hello", "acme/hello", "dev", {})


def test_missing_binary_raises_cluster_error() -> None:
    def runner(command: list[str], **kwargs: Any) -> subprocess.CompletedProcess[str]:
        raise FileNotFoundError(command[0])

    with pytest.raises(ClusterError, match="not found"):
        HelmClient(binary="helm3", runner=runner).upgrade_install("r", "c", "ns", {})


def test_helm_workload_adds_repository_once() -> None:
    runner = RecordingRunner()
    workload = HelmWorkload(
        helm=HelmClient(runner=runner),
        chart="acme/hello",
        release="hello",
        port=8080,
        repository=ChartRepository("acme", "https://charts.acme.test"),
        image_pull_secret="regcred",
    )
    artifact = ReleaseArtifact.create("hello", "12", "master", registry="gcr.io/acme")

    workload.apply(artifact, Environment(name="development", namespace="development"))
    workload.apply(artifact, Environment(name="staging", namespace="staging"))

    verbs = [command[1:3] for command in runner.commands]
    assert verbs == [
        ["repo", "add"],
        ["repo", "update"],
        ["upgrade", "--install"],
        ["upgrade", "--install"],
    ]
    install = runner.commands[2]
    assert "image.repository=gcr.io/acme/hello" in install
    assert "image.tag=12" in install
    assert "service.type=LoadBalancer" in install
    assert "releaseId=hello-12-master" in install
    assert "imagePullSecrets[0].name=regcred" in install
    assert install[install.index("--namespace") + 1] == "development"
