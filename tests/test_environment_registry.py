"""Tests for the ordered environment registry."""

from __future__ import annotations

from pathlib import Path

import pytest

from kubepromote.contracts.errors import RegistryError
from kubepromote.contracts.types import GatePolicy
from kubepromote.registry.environments import EnvironmentRegistry


def test_default_registry_order_and_policies() -> None:
    registry = EnvironmentRegistry.load()

    assert registry.names == ["development", "staging", "production"]
    assert registry.get("development").gate_policy is GatePolicy.AUTOMATIC
    assert registry.get("staging").gate_policy is GatePolicy.AUTOMATIC
    production = registry.get("production")
    assert production.gate_policy is GatePolicy.MANUAL_APPROVAL
    assert production.branches == ("master",)
    assert production.namespace == "production"


def test_default_criteria_are_merged_per_environment() -> None:
    registry = EnvironmentRegistry.load()

    assert registry.get("staging").criteria.max_total_time == 5.0
    assert registry.get("production").criteria.max_total_time == 2.0
    assert registry.get("production").criteria.status_code == 200


def test_after_walks_forward_only() -> None:
    registry = EnvironmentRegistry.load()

    assert registry.after("development").name == "staging"  # type: ignore[union-attr]
    assert registry.after("production") is None
    assert registry.index_of("staging") == 1
    assert len(registry) == 3


def test_unknown_environment_raises() -> None:
    with pytest.raises(KeyError):
        EnvironmentRegistry.load().get("qa")


def test_duplicate_names_rejected() -> None:
    data = {
        "environments": [
            {"name": "dev", "namespace": "dev"},
            {"name": "dev", "namespace": "dev2"},
        ]
    }
    with pytest.raises(RegistryError, match="Duplicate"):
        EnvironmentRegistry.from_dict(data)


def test_empty_registry_rejected() -> None:
    with pytest.raises(RegistryError):
        EnvironmentRegistry.from_dict({})


def test_invalid_gate_policy_rejected() -> None:
    data = {"environments": [{"name": "dev", "namespace": "dev", "gate_policy": "sometimes"}]}
    with pytest.raises(RegistryError, match="dev"):
        EnvironmentRegistry.from_dict(data)


def test_load_custom_file(tmp_path: Path) -> None:
    path = tmp_path / "envs.yaml"
    path.write_text(
        "environments:\n"
        "  - name: qa\n"
        "    namespace: qa-ns\n"
        "  - name: live\n"
        "    namespace: live\n"
        "    gate_policy: manual_approval\n"
        "    branches: [main]\n",
        encoding="utf-8",
    )

    registry = EnvironmentRegistry.load(path)

    assert registry.names == ["qa", "live"]
    assert registry.get("qa").namespace == "qa-ns"
    assert not registry.get("live").accepts_branch("master")
