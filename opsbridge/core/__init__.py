"""Core components of the plugin invocation runtime."""

from opsbridge.core.external_plugin.endpoint_client import PluginEndpointClient
from opsbridge.core.plugin_system.plugin_manager import PluginManager
from opsbridge.core.plugin_system.registry import RegistryEntry, ToolRegistry
from opsbridge.core.plugin_system.session import SessionThreader, carry_forward
from opsbridge.core.protocol.models import (
    DescribeResponse,
    InvocationError,
    InvocationRequest,
    InvocationResult,
    PluginIdentity,
    ToolDefinition,
)

# Import exceptions
from opsbridge.core.exceptions import (
    OpsBridgeException,
    PluginException,
    PluginDiscoveryError,
    RegistrationConflictError,
    ToolNotFoundError,
    PluginNotFoundError,
    SessionMismatchError,
    PluginCommunicationError,
    PluginTransportError,
    PluginTimeoutError,
    PluginCancelledError,
    PluginProtocolError,
    ConfigurationError,
    ToolValidationError,
)

__all__ = [
    # Plugin system
    "PluginEndpointClient",
    "PluginManager",
    "RegistryEntry",
    "ToolRegistry",
    "SessionThreader",
    "carry_forward",
    # Protocol
    "DescribeResponse",
    "InvocationError",
    "InvocationRequest",
    "InvocationResult",
    "PluginIdentity",
    "ToolDefinition",
    # Exceptions
    "OpsBridgeException",
    "PluginException",
    "PluginDiscoveryError",
    "RegistrationConflictError",
    "ToolNotFoundError",
    "PluginNotFoundError",
    "SessionMismatchError",
    "PluginCommunicationError",
    "PluginTransportError",
    "PluginTimeoutError",
    "PluginCancelledError",
    "PluginProtocolError",
    "ConfigurationError",
    "ToolValidationError",
]
