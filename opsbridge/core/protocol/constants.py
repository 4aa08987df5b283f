"""
Invocation protocol constants and configuration values.

All protocol-specific constants are centralized here so the client, the
manager and the plugin-side server kit agree on paths, defaults and codes.
"""

from enum import Enum
from typing import Final


# Plugin HTTP endpoints
EXECUTE_ENDPOINT: Final[str] = "/execute"
READY_ENDPOINT: Final[str] = "/ready"
HEALTH_ENDPOINT: Final[str] = "/health"

# Static plugin configuration (mounted from a ConfigMap in-cluster)
PLUGINS_CONFIG_PATH: Final[str] = "/etc/opsbridge/plugins.json"

# Default Timeouts (in seconds)
DEFAULT_DESCRIBE_TIMEOUT: Final[float] = 5.0  # gates startup, must be fast
DEFAULT_INVOKE_TIMEOUT: Final[float] = 120.0  # tool execution may be slow
DEFAULT_READY_TIMEOUT: Final[float] = 2.0
DEFAULT_STARTUP_DEADLINE: Final[float] = 60.0
DEFAULT_READINESS_POLL_INTERVAL: Final[float] = 1.0
DEFAULT_REDISCOVERY_INTERVAL: Final[float] = 30.0

# Retry Configuration
DEFAULT_MAX_RETRIES: Final[int] = 3
DEFAULT_BACKOFF_BASE: Final[float] = 0.5
DEFAULT_BACKOFF_MAX: Final[float] = 8.0

# HTTP Status Codes
READY_STATUS_CODES: Final[frozenset] = frozenset({200, 204})
RETRYABLE_STATUS_CODES: Final[frozenset] = frozenset({502, 503, 504})

# Header Values
CONTENT_TYPE_JSON: Final[str] = "application/json"

# Tool definitions
DEFAULT_TOOL_TYPE: Final[str] = "agentic"
ANONYMOUS_SESSION_ID: Final[str] = "anonymous"


class Hook(str, Enum):
    """Protocol operations every plugin implements."""
    DESCRIBE = "describe"
    INVOKE = "invoke"


class ErrorCode(str, Enum):
    """Error codes generated by the core rather than reported by a plugin."""
    UNKNOWN_TOOL = "UNKNOWN_TOOL"
    PLUGIN_NOT_AVAILABLE = "PLUGIN_NOT_AVAILABLE"
    INVALID_ARGUMENTS = "INVALID_ARGUMENTS"
    TRANSPORT_ERROR = "TRANSPORT_ERROR"
    TIMEOUT = "TIMEOUT"
    CANCELLED = "CANCELLED"
    PROTOCOL_ERROR = "PROTOCOL_ERROR"


class PluginErrorCode(str, Enum):
    """Error codes reported by plugins built with the server kit."""
    UNKNOWN_TOOL = "UNKNOWN_TOOL"
    INVALID_ARGUMENTS = "INVALID_ARGUMENTS"
    TOOL_EXECUTION_FAILED = "TOOL_EXECUTION_FAILED"
