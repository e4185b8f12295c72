"""Idempotent namespace provisioning."""

from __future__ import annotations

from dataclasses import dataclass
import logging

from kubepromote.cluster.client import MANAGED_BY_LABEL, ClusterClient
from kubepromote.contracts.errors import ClusterError, ProvisioningError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class NamespaceProvisioner:
    """Makes sure a namespace exists before anything is deployed into it."""

    cluster: ClusterClient

    def ensure(self, namespace: str, *, environment: str | None = None) -> None:
        try:
            if self.cluster.namespace_exists(namespace):
                logger.info("namespace.exists", extra={"extra": {"namespace": namespace}})
                return
            self.cluster.create_namespace(namespace, labels={MANAGED_BY_LABEL: "kubepromote"})
        except ClusterError as exc:
            # Lost a race with another creator; the namespace is there.
            if exc.status == 409:
                logger.info("namespace.exists", extra={"extra": {"namespace": namespace}})
                return
            raise ProvisioningError(namespace, str(exc), environment=environment) from exc
        logger.info("namespace.created", extra={"extra": {"namespace": namespace}})
