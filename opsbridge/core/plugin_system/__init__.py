"""Plugin system components."""

from .models import HealthReport, PluginHealth, PluginState
from .plugin_manager import PluginManager, ToolExecutor
from .registry import RegistryEntry, ToolRegistry
from .session import SessionThreader, carry_forward, new_session_id

__all__ = [
    "HealthReport",
    "PluginHealth",
    "PluginState",
    "PluginManager",
    "ToolExecutor",
    "RegistryEntry",
    "ToolRegistry",
    "SessionThreader",
    "carry_forward",
    "new_session_id",
]
