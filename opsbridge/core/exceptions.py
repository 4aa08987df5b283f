"""
Custom exceptions for the plugin invocation runtime.

This module defines a hierarchical exception structure that provides:
- Clear error categorization for different failure modes
- Detailed error context with the 'details' field
- Cause tracking for debugging nested failures
- Proper HTTP status code mapping in the API layer

Transport-level failures (PluginCommunicationError subclasses) are kept
separate from plugin-reported application errors, which never raise and
are returned as InvocationResult values instead.
"""

from typing import Any, Dict, List, Optional


class OpsBridgeException(Exception):
    """Base exception for all opsbridge errors.

    Attributes:
        message: Human-readable error message
        details: Additional context about the error
        cause: Original exception that caused this error
    """

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def __str__(self) -> str:
        if self.cause:
            return f"{self.message} (caused by: {self.cause})"
        return self.message


# Plugin-related exceptions
class PluginException(OpsBridgeException):
    """Base exception for plugin-related errors."""
    pass


class PluginDiscoveryError(PluginException):
    """Raised when required plugins could not be discovered at startup."""

    def __init__(self, failed_plugins: List[Dict[str, str]]):
        names = ", ".join(p["name"] for p in failed_plugins)
        super().__init__(
            f"Required plugins failed to discover: {names}",
            details={"failed_plugins": failed_plugins}
        )
        self.failed_plugins = failed_plugins


class RegistrationConflictError(PluginException):
    """Raised when a plugin declares tool names already owned by another plugin."""

    def __init__(self, plugin_name: str, conflicts: Dict[str, str]):
        super().__init__(
            f"Plugin '{plugin_name}' declares tools owned by other plugins: "
            f"{', '.join(sorted(conflicts))}",
            details={"plugin_name": plugin_name, "conflicts": conflicts}
        )
        self.plugin_name = plugin_name
        self.conflicts = conflicts


class ToolNotFoundError(PluginException):
    """Raised when a tool name is not present in the registry."""

    def __init__(self, tool_name: str):
        super().__init__(
            f"Tool '{tool_name}' not found in any plugin",
            details={"tool_name": tool_name}
        )
        self.tool_name = tool_name


class PluginNotFoundError(PluginException):
    """Raised when a requested plugin is not configured."""

    def __init__(self, plugin_name: str):
        super().__init__(
            f"Plugin '{plugin_name}' not found",
            details={"plugin_name": plugin_name}
        )


class SessionMismatchError(PluginException):
    """Raised when state is threaded between requests of different sessions."""

    def __init__(self, expected: str, actual: str):
        super().__init__(
            f"Cannot carry state from session '{expected}' into session '{actual}'",
            details={"expected": expected, "actual": actual}
        )


# Communication exceptions
class PluginCommunicationError(OpsBridgeException):
    """Base exception for failures talking to a plugin endpoint."""

    def __init__(
        self,
        plugin_name: str,
        url: Optional[str],
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None
    ):
        merged = {"plugin_name": plugin_name, "url": url}
        merged.update(details or {})
        super().__init__(message, details=merged, cause=cause)
        self.plugin_name = plugin_name
        self.url = url


class PluginTransportError(PluginCommunicationError):
    """Raised when a plugin cannot be reached (refused, DNS, HTTP failure)."""

    def __init__(
        self,
        plugin_name: str,
        url: Optional[str],
        reason: str,
        attempts: int = 1,
        status: Optional[int] = None,
        cause: Optional[Exception] = None
    ):
        super().__init__(
            plugin_name,
            url,
            f"Failed to communicate with plugin '{plugin_name}': {reason}",
            details={"reason": reason, "attempts": attempts, "status": status},
            cause=cause
        )
        self.attempts = attempts
        self.status = status


class PluginTimeoutError(PluginCommunicationError):
    """Raised when a plugin request exceeds its deadline."""

    def __init__(self, plugin_name: str, url: Optional[str], hook: str, timeout: float):
        super().__init__(
            plugin_name,
            url,
            f"Plugin '{plugin_name}' {hook} timed out after {timeout} seconds",
            details={"hook": hook, "timeout": timeout}
        )
        self.timeout = timeout


class PluginCancelledError(PluginCommunicationError):
    """Raised when the caller cancels an in-flight plugin request."""

    def __init__(self, plugin_name: str, url: Optional[str], hook: str):
        super().__init__(
            plugin_name,
            url,
            f"Plugin '{plugin_name}' {hook} was cancelled by the caller",
            details={"hook": hook}
        )


class PluginProtocolError(PluginCommunicationError):
    """Raised when a plugin response does not follow the invocation protocol."""

    def __init__(
        self,
        plugin_name: str,
        url: Optional[str],
        reason: str,
        response_data: Optional[Any] = None
    ):
        super().__init__(
            plugin_name,
            url,
            f"Protocol error from plugin '{plugin_name}': {reason}",
            details={"reason": reason, "response_data": response_data}
        )


# Configuration exceptions
class ConfigurationError(OpsBridgeException):
    """Raised when configuration is invalid or missing."""

    def __init__(self, config_key: str, reason: str):
        super().__init__(
            f"Configuration error for '{config_key}': {reason}",
            details={"config_key": config_key, "reason": reason}
        )


# Validation exceptions
class ToolValidationError(OpsBridgeException):
    """Raised by plugin tool handlers when arguments are missing or invalid."""

    def __init__(self, tool_name: str, param: str, reason: str = "required parameter missing"):
        super().__init__(
            f"{tool_name} requires parameter: {param}",
            details={"tool": tool_name, "param": param, "reason": reason}
        )
        self.tool_name = tool_name
        self.param = param
