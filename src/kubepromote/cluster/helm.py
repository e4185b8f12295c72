"""Helm chart installs for clusters that deploy from a chart repository."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
import logging
import subprocess

from kubepromote.contracts.errors import ClusterError

logger = logging.getLogger(__name__)

Runner = Callable[..., subprocess.CompletedProcess[str]]


@dataclass(slots=True)
class HelmClient:
    """Runs the helm binary with argument lists (never through a shell)."""

    binary: str = "helm"
    kubeconfig: str | None = None
    kube_context: str | None = None
    runner: Runner = field(default=subprocess.run)

    def _run(self, args: Sequence[str], *, stdin: str | None = None) -> str:
        command = [self.binary, *args]
        if self.kubeconfig:
            command += ["--kubeconfig", self.kubeconfig]
        if self.kube_context:
            command += ["--kube-context", self.kube_context]
        try:
            result = self.runner(
                command, input=stdin, capture_output=True, text=True, check=False
            )
        except FileNotFoundError as exc:
            raise ClusterError(f"helm binary not found: {self.binary}") from exc
        if result.returncode != 0:
            raise ClusterError(
                f"helm {args[0]} failed ({result.returncode}): {result.stderr.strip()}"
            )
        return result.stdout

    def add_repo(
        self,
        name: str,
        url: str,
        *,
        username: str | None = None,
        password: str | None = None,
    ) -> None:
        args = ["repo", "add", name, url, "--force-update"]
        if username:
            args += ["--username", username]
        if password:
            args.append("--password-stdin")
        self._run(args, stdin=password)
        self._run(["repo", "update", name])
        logger.info("helm.repo.added", extra={"extra": {"repo": name, "url": url}})

    def upgrade_install(
        self,
        release: str,
        chart: str,
        namespace: str,
        values: dict[str, str],
        *,
        version: str | None = None,
    ) -> None:
        args = ["upgrade", "--install", release, chart, "--namespace", namespace]
        if version:
            args += ["--version", version]
        for key, value in sorted(values.items()):
            args += ["--set-string", f"{key}={value}"]
        self._run(args)
        logger.info(
            "helm.release.applied",
            extra={"extra": {"release": release, "chart": chart, "namespace": namespace}},
        )
