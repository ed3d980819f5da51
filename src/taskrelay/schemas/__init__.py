"""taskrelay JSON Schema definitions and validation utilities.

Schemas:
    - task_record.schema.json: Persisted task record format
    - registry.schema.json: Protocol registry index
    - config.schema.json: Engine configuration file

Usage:
    from taskrelay.schemas import validate_registry

    with open("index.json") as f:
        data = json.load(f)
    validate_registry(data)  # Raises jsonschema.ValidationError if invalid
"""

from __future__ import annotations

import json
from functools import cache
from importlib.resources import files
from typing import Any

import jsonschema


@cache
def _load_schema(name: str) -> dict[str, Any]:
    """Load a JSON schema from the schemas package.

    Args:
        name: Schema filename (e.g., 'registry.schema.json')

    Returns:
        Parsed JSON schema as a dictionary
    """
    schema_text = files("taskrelay.schemas").joinpath(name).read_text()
    result: dict[str, Any] = json.loads(schema_text)
    return result


def get_task_record_schema() -> dict[str, Any]:
    return _load_schema("task_record.schema.json")


def get_registry_schema() -> dict[str, Any]:
    return _load_schema("registry.schema.json")


def get_config_schema() -> dict[str, Any]:
    return _load_schema("config.schema.json")


def validate_task_record(data: dict[str, Any]) -> None:
    """Validate a serialized task record.

    Raises:
        jsonschema.ValidationError: If validation fails
    """
    jsonschema.validate(data, get_task_record_schema())


def validate_registry(data: dict[str, Any]) -> None:
    """Validate a protocol registry index.

    Raises:
        jsonschema.ValidationError: If validation fails
    """
    jsonschema.validate(data, get_registry_schema())


def validate_config(data: dict[str, Any]) -> None:
    """Validate an engine configuration file.

    Raises:
        jsonschema.ValidationError: If validation fails
    """
    jsonschema.validate(data, get_config_schema())


__all__ = [
    "get_task_record_schema",
    "get_registry_schema",
    "get_config_schema",
    "validate_task_record",
    "validate_registry",
    "validate_config",
]
