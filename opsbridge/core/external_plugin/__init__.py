"""External plugin communication components."""

from .endpoint_client import PluginEndpointClient

__all__ = ["PluginEndpointClient"]
