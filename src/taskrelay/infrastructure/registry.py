"""
Protocol registry loading.

Reads the JSON registry index, validates it against the bundled schema and
builds an immutable ProtocolRegistry. The default index ships with the
package as ``taskrelay/protocols/index.json``; a project can point at its own
index through the ``registry_path`` setting.
"""

import json
import logging
from importlib.resources import files
from pathlib import Path
from typing import Any

import jsonschema

from taskrelay.domain.exceptions import ConfigurationError
from taskrelay.domain.models import RegistryEntry
from taskrelay.domain.selection import ProtocolRegistry, predicate_from_dict
from taskrelay.schemas import validate_registry

logger = logging.getLogger(__name__)


def _read_index(path: str | Path | None) -> tuple[str, dict[str, Any]]:
    if path is None:
        source = "taskrelay.protocols/index.json"
        text = files("taskrelay.protocols").joinpath("index.json").read_text()
    else:
        source = str(path)
        try:
            text = Path(path).read_text()
        except OSError as e:
            raise ConfigurationError(f"Cannot read registry index {path}: {e}") from e
    try:
        data: dict[str, Any] = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Registry index {source} is not JSON: {e}") from e
    return source, data


def registry_from_dict(data: dict[str, Any]) -> ProtocolRegistry:
    """
    Build a registry from the parsed index.

    Raises:
        ConfigurationError: If the index fails schema validation or has
            duplicate entry names
    """
    try:
        validate_registry(data)
    except jsonschema.ValidationError as e:
        location = "/".join(str(p) for p in e.absolute_path) or "(root)"
        raise ConfigurationError(
            f"Invalid registry index at {location}: {e.message}"
        ) from e
    return ProtocolRegistry(
        RegistryEntry(
            name=item["name"],
            owning_role=item["owning_role"],
            applicability_description=item["applicability"],
            content_ref=item["content_ref"],
            predicate=predicate_from_dict(item["predicate"]),
            tags=tuple(item.get("tags", ())),
        )
        for item in data["entries"]
    )


def load_registry(path: str | Path | None = None) -> ProtocolRegistry:
    """
    Load the protocol registry once at process start.

    Args:
        path: Index file to load (defaults to the bundled index)

    Returns:
        Immutable ProtocolRegistry

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid
    """
    source, data = _read_index(path)
    registry = registry_from_dict(data)
    logger.debug("Loaded %d protocol entries from %s", len(registry), source)
    return registry
