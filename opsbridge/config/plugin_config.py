"""
Static plugin configuration loading.

The plugin list is a JSON array, normally mounted from a ConfigMap:

    [
        {"name": "agentic-tools", "url": "http://agentic-tools:8080"},
        {"name": "helm-tools", "image": "ghcr.io/acme/helm-tools:1.2", "port": 8080}
    ]

Entries with an image reference are handed to an optional resolver supplied
by the deployment layer. The core itself never interprets image references.
"""

import json
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import ValidationError

from opsbridge.core.exceptions import ConfigurationError
from opsbridge.core.protocol.models import PluginIdentity
from opsbridge.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)

AddressResolver = Callable[[PluginIdentity], Optional[str]]


def parse_plugin_config(
    entries: Any,
    source: str = "plugin config",
    resolver: Optional[AddressResolver] = None
) -> List[PluginIdentity]:
    """Validate raw plugin entries into identities.

    Args:
        entries: Decoded JSON value, expected to be a list of objects
        source: Name of the config source, used in error messages
        resolver: Optional callable returning an address for unresolved entries

    Returns:
        List[PluginIdentity]: Validated identities, in configuration order

    Raises:
        ConfigurationError: If the value is not a list or an entry is invalid
    """
    if not isinstance(entries, list):
        raise ConfigurationError(
            source, f"must be an array, got {type(entries).__name__}"
        )

    identities: List[PluginIdentity] = []
    seen = set()
    for index, raw in enumerate(entries):
        if not isinstance(raw, dict):
            raise ConfigurationError(source, f"plugin at index {index} must be an object")

        data: Dict[str, Any] = dict(raw)
        data.setdefault("name", f"plugin-{index}")
        try:
            identity = PluginIdentity.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(
                source, f"plugin at index {index} ({data['name']}) is invalid: {e}"
            ) from e

        if identity.name in seen:
            raise ConfigurationError(source, f"duplicate plugin name '{identity.name}'")
        seen.add(identity.name)

        if not identity.is_resolved and resolver is not None:
            address = resolver(identity)
            if address:
                identity = identity.model_copy(update={"url": address.rstrip("/")})

        identities.append(identity)

    return identities


def load_plugin_identities(
    path: Union[str, Path],
    resolver: Optional[AddressResolver] = None
) -> List[PluginIdentity]:
    """Load plugin identities from a JSON file.

    A missing file means no plugins are configured (plugins only run
    in-cluster), so an empty list is returned.

    Raises:
        ConfigurationError: If the file cannot be read or parsed
    """
    path = Path(path)
    if not path.exists():
        logger.info("No plugin config found", path=str(path))
        return []

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(str(path), f"failed to read plugin config: {e}") from e

    try:
        entries = json.loads(content)
    except json.JSONDecodeError as e:
        raise ConfigurationError(str(path), f"invalid JSON: {e}") from e

    identities = parse_plugin_config(entries, source=str(path), resolver=resolver)
    logger.info(
        "Loaded plugin config",
        path=str(path),
        plugins=[i.name for i in identities],
        unresolved=[i.name for i in identities if not i.is_resolved]
    )
    return identities
