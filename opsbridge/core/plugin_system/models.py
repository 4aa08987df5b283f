"""Plugin lifecycle and health models."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class PluginState(str, Enum):
    """Discovery state of a configured plugin."""
    PENDING = "pending"
    READY = "ready"
    UNREACHABLE = "unreachable"


class PluginHealth(BaseModel):
    """Operator-facing health of one plugin."""

    name: str
    state: PluginState
    url: Optional[str] = None
    version: Optional[str] = None
    required: bool = False
    tool_count: int = 0
    tools: List[str] = Field(default_factory=list)
    last_error: Optional[str] = None
    attempts: int = 0
    discovered_at: Optional[datetime] = None
    last_checked_at: Optional[datetime] = None


class HealthReport(BaseModel):
    """Aggregate health of the plugin subsystem."""

    status: str = Field(..., description="ok when every plugin is ready, degraded otherwise")
    plugin_count: int
    ready_count: int
    unreachable: List[str] = Field(default_factory=list)
    pending: List[str] = Field(default_factory=list)
    tool_count: int
    plugins: List[PluginHealth] = Field(default_factory=list)
    background_discovery_active: bool = False
