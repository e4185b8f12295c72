"""Configuration sources: environment, .env files and AWS Secrets Manager."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
import json
import os
from pathlib import Path
from typing import Any, Protocol

try:
    import boto3
except ImportError:  # pragma: no cover - optional dependency for local usage
    boto3 = None

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


class ConfigSource(Protocol):
    """Anything that can look up a configuration key."""

    def get(self, key: str) -> str | None: ...


@dataclass(slots=True)
class EnvConfigSource:
    """Reads values directly from environment variables."""

    prefix: str | None = None

    def get(self, key: str) -> str | None:
        return os.getenv(f"{self.prefix}{key}" if self.prefix else key)


@dataclass(slots=True)
class DotEnvConfigSource:
    """Reads KEY=VALUE lines (optionally prefixed with ``export``) from a .env file."""

    path: Path = Path(".env")
    encoding: str = "utf-8"
    _values: dict[str, str] | None = field(default=None, init=False)

    def _parse(self) -> dict[str, str]:
        try:
            text = self.path.read_text(encoding=self.encoding)
        except FileNotFoundError:
            return {}
        values: dict[str, str] = {}
        for raw_line in text.splitlines():
            line = raw_line.strip()
            line = line.removeprefix("export ").strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            value = value.strip()
            if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
                value = value[1:-1]
            values[key.strip()] = value
        return values

    def get(self, key: str) -> str | None:
        if self._values is None:
            self._values = self._parse()
        return self._values.get(key)


@dataclass(slots=True)
class SecretsManagerConfigSource:
    """Registry and chart credentials stored as one JSON secret in AWS Secrets Manager."""

    secret_id: str
    region_name: str | None = None
    profile_name: str | None = None
    _values: dict[str, str] | None = field(default=None, init=False)

    def _fetch(self) -> dict[str, str]:
        if boto3 is None:
            raise RuntimeError("boto3 is required for SecretsManagerConfigSource")
        session = boto3.session.Session(profile_name=self.profile_name)
        resp: dict[str, Any] = session.client(
            "secretsmanager", region_name=self.region_name
        ).get_secret_value(SecretId=self.secret_id)
        secret_string = resp.get("SecretString")
        if not secret_string and resp.get("SecretBinary"):
            secret_string = base64.b64decode(resp["SecretBinary"]).decode("utf-8")
        if not secret_string:
            return {}
        try:
            parsed = json.loads(secret_string)
        except json.JSONDecodeError as exc:
            raise RuntimeError(f"Secret {self.secret_id!r} is not a JSON object") from exc
        if not isinstance(parsed, dict):
            raise RuntimeError(f"Secret {self.secret_id!r} is not a JSON object")
        return {key: str(value) for key, value in parsed.items()}

    def get(self, key: str) -> str | None:
        if self._values is None:
            self._values = self._fetch()
        return self._values.get(key)


@dataclass(slots=True)
class ConfigAdapter:
    """Composite over multiple sources; the first source that knows a key wins."""

    sources: tuple[ConfigSource, ...]

    def get(self, key: str, default: str | None = None) -> str | None:
        for source in self.sources:
            value = source.get(key)
            if value is not None:
                return value
        return default

    def get_bool(self, key: str, default: bool = False) -> bool:
        raw = self.get(key)
        if raw is None:
            return default
        lowered = raw.strip().lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
        raise ValueError(f"{key} must be a boolean, got {raw!r}")

    def get_float(self, key: str, default: float) -> float:
        raw = self.get(key)
        if raw is None or not raw.strip():
            return default
        try:
            return float(raw)
        except ValueError as exc:
            raise ValueError(f"{key} must be a number, got {raw!r}") from exc

    def get_int(self, key: str, default: int) -> int:
        raw = self.get(key)
        if raw is None or not raw.strip():
            return default
        try:
            return int(raw)
        except ValueError as exc:
            raise ValueError(f"{key} must be an integer, got {raw!r}") from exc
