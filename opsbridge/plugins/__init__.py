"""
Plugin-side server kit and demo plugins.
"""

from .server import PluginServer, PluginTool, ToolOutput, optional_param, require_param

__all__ = ["PluginServer", "PluginTool", "ToolOutput", "optional_param", "require_param"]
