"""Invocation protocol: wire models and constants shared with plugins."""

from .constants import (
    EXECUTE_ENDPOINT,
    READY_ENDPOINT,
    DEFAULT_DESCRIBE_TIMEOUT,
    DEFAULT_INVOKE_TIMEOUT,
    DEFAULT_MAX_RETRIES,
    ErrorCode,
    Hook,
    PluginErrorCode,
)
from .models import (
    DescribeResponse,
    ExecuteRequest,
    InvocationError,
    InvocationRequest,
    InvocationResult,
    InvokePayload,
    PluginIdentity,
    ToolDefinition,
)

__all__ = [
    "EXECUTE_ENDPOINT",
    "READY_ENDPOINT",
    "DEFAULT_DESCRIBE_TIMEOUT",
    "DEFAULT_INVOKE_TIMEOUT",
    "DEFAULT_MAX_RETRIES",
    "ErrorCode",
    "Hook",
    "PluginErrorCode",
    "DescribeResponse",
    "ExecuteRequest",
    "InvocationError",
    "InvocationRequest",
    "InvocationResult",
    "InvokePayload",
    "PluginIdentity",
    "ToolDefinition",
]
