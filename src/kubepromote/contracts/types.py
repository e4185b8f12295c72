"""Shared enums for kubepromote contracts."""

from __future__ import annotations

from enum import Enum


class GatePolicy(str, Enum):
    """How entry into an environment is approved."""

    AUTOMATIC = "automatic"
    MANUAL_APPROVAL = "manual_approval"


class DeploymentStatus(str, Enum):
    """Lifecycle of a single deploy attempt."""

    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"


class Metric(str, Enum):
    """Health probe metrics, named after the curl write-out variables they replace."""

    STATUS_CODE = "http_code"
    TOTAL_TIME = "time_total"
    SIZE_DOWNLOAD = "size_download"


class ApprovedBy(str, Enum):
    """Who resolved a gate."""

    AUTOMATIC = "automatic"
    OPERATOR = "operator"


class Stage(str, Enum):
    """Pipeline stage in which an error was raised."""

    BUILD = "build"
    LOCAL_VERIFY = "local_verify"
    GATE = "gate"
    PROVISION = "provision"
    DEPLOY = "deploy"
    VERIFY = "verify"
