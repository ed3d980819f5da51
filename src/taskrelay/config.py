"""Configuration loading for taskrelay."""

from __future__ import annotations

import json
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import jsonschema

from taskrelay.application.fan_out import TimeoutPolicy
from taskrelay.application.retry_budget import RetryBudget
from taskrelay.domain.exceptions import ConfigurationError
from taskrelay.schemas import validate_config

DEFAULT_STORE_DIR = ".taskrelay"


@dataclass(frozen=True)
class EngineConfig:
    """Settings for one engine instance.

    Values come from a JSON file; CLI options override them.
    """

    per_step_cap: int = 3
    global_cap: int = 5
    fan_out_timeout: float | None = None
    timeout_policy: TimeoutPolicy = TimeoutPolicy.REMEDIATE
    max_protocols: int = 3
    store_dir: str = DEFAULT_STORE_DIR
    registry_path: str | None = None
    lock_timeout: float = 5.0
    workers: dict[str, list[str]] = field(default_factory=dict)  # role -> argv

    @property
    def budget(self) -> RetryBudget:
        return RetryBudget(per_step_cap=self.per_step_cap, global_cap=self.global_cap)

    def with_overrides(self, **overrides: Any) -> EngineConfig:
        """Copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def config_from_dict(data: dict[str, Any]) -> EngineConfig:
    """
    Build an EngineConfig from parsed JSON.

    Raises:
        ConfigurationError: If the data does not match the config schema
    """
    try:
        validate_config(data)
    except jsonschema.ValidationError as e:
        location = "/".join(str(p) for p in e.absolute_path) or "(root)"
        raise ConfigurationError(f"Invalid config at {location}: {e.message}") from e

    known = {f.name for f in fields(EngineConfig)}
    values = {k: v for k, v in data.items() if k in known}
    if "timeout_policy" in values:
        values["timeout_policy"] = TimeoutPolicy(values["timeout_policy"])
    if "workers" in values:
        values["workers"] = {role: list(argv) for role, argv in values["workers"].items()}
    return EngineConfig(**values)


def load_config(path: Path | str | None) -> EngineConfig:
    """
    Load engine configuration from a JSON file.

    Args:
        path: Path to the config file (None for defaults)

    Returns:
        EngineConfig

    Raises:
        ConfigurationError: If file is missing or invalid
    """
    if path is None:
        return EngineConfig()
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")

    try:
        with open(path) as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid JSON in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Expected dict in {path}, got {type(data).__name__}")
    return config_from_dict(data)
