"""Ordered registry of promotion targets."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import ValidationError
import yaml  # type: ignore[import-untyped]

from kubepromote.contracts.errors import RegistryError
from kubepromote.contracts.models import Environment

DEFAULT_REGISTRY_PATH = Path(__file__).with_name("environments.yaml")


@dataclass(frozen=True, slots=True)
class EnvironmentRegistry:
    """Environments in promotion order."""

    environments: tuple[Environment, ...]

    def __post_init__(self) -> None:
        if not self.environments:
            raise RegistryError("At least one environment must be configured")
        names = [env.name for env in self.environments]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise RegistryError(f"Duplicate environment names: {duplicates}")

    @classmethod
    def load(cls, path: Path | None = None) -> EnvironmentRegistry:
        source = path or DEFAULT_REGISTRY_PATH
        data = yaml.safe_load(source.read_text(encoding="utf-8")) or {}
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EnvironmentRegistry:
        default_criteria = (data.get("defaults") or {}).get("criteria") or {}
        entries = data.get("environments") or []
        environments = []
        for entry in entries:
            criteria = {**default_criteria, **(entry.get("criteria") or {})}
            try:
                environments.append(Environment.model_validate({**entry, "criteria": criteria}))
            except ValidationError as exc:
                raise RegistryError(
                    f"Invalid environment {entry.get('name', '?')!r}: {exc}"
                ) from exc
        return cls(tuple(environments))

    def __iter__(self) -> Iterator[Environment]:
        return iter(self.environments)

    def __len__(self) -> int:
        return len(self.environments)

    @property
    def names(self) -> list[str]:
        return [env.name for env in self.environments]

    def get(self, name: str) -> Environment:
        for env in self.environments:
            if env.name == name:
                return env
        raise KeyError(f"Unknown environment: {name}")

    def index_of(self, name: str) -> int:
        return self.names.index(self.get(name).name)

    def after(self, name: str) -> Environment | None:
        """Return the environment promoted to after ``name``, if any."""
        index = self.index_of(name) + 1
        return self.environments[index] if index < len(self.environments) else None
