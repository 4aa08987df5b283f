"""
Main FastAPI application entry point.

Exposes the plugin subsystem's health signals and tool catalogue to an
operator-facing status surface, plus a direct invoke endpoint. Plugin
discovery runs in the application lifespan.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from fastapi import Depends, FastAPI, Request
from pydantic import BaseModel, Field

from opsbridge.api.exception_handlers import register_exception_handlers
from opsbridge.config.plugin_config import load_plugin_identities
from opsbridge.config.settings import Settings, settings
from opsbridge.core.plugin_system.models import HealthReport, PluginHealth, PluginState
from opsbridge.core.plugin_system.plugin_manager import PluginManager
from opsbridge.utils.logging import configure_logging, get_structured_logger

configure_logging(settings.log_level, settings.log_format)
logger = get_structured_logger(__name__)


class InvokeToolRequest(BaseModel):
    """Body of a direct tool invocation."""

    arguments: Dict[str, Any] = Field(default_factory=dict)
    state: Dict[str, Any] = Field(default_factory=dict)
    session_id: Optional[str] = Field(None, alias="sessionId")
    timeout: Optional[float] = Field(None, gt=0)

    model_config = {"populate_by_name": True}


def get_plugin_manager(request: Request) -> PluginManager:
    """Dependency returning the manager owned by the running app."""
    return request.app.state.plugin_manager


def create_app(
    manager: Optional[PluginManager] = None,
    app_settings: Optional[Settings] = None
) -> FastAPI:
    """Create the status API.

    Args:
        manager: Pre-built plugin manager; built from settings when omitted
        app_settings: Settings to use instead of the global instance

    Returns:
        FastAPI: Configured application
    """
    app_settings = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        plugin_manager = manager or PluginManager.from_settings(
            load_plugin_identities(app_settings.plugin_config_path), app_settings
        )
        app.state.plugin_manager = plugin_manager
        await plugin_manager.start()
        if app_settings.plugin_background_discovery:
            plugin_manager.start_background_discovery()
        try:
            yield
        finally:
            await plugin_manager.shutdown()

    app = FastAPI(
        title="opsbridge",
        description="Plugin invocation runtime for the Kubernetes operations assistant",
        version="1.0.0",
        docs_url="/docs" if app_settings.debug_mode else None,
        redoc_url=None,
        lifespan=lifespan,
    )
    register_exception_handlers(app)

    @app.get("/", include_in_schema=False)
    async def root() -> Dict[str, str]:
        return {"message": "opsbridge plugin runtime"}

    @app.get("/health", response_model=HealthReport)
    async def health(plugin_manager: PluginManager = Depends(get_plugin_manager)) -> HealthReport:
        return plugin_manager.get_health()

    @app.get("/plugins", response_model=List[PluginHealth])
    async def list_plugins(
        plugin_manager: PluginManager = Depends(get_plugin_manager)
    ) -> List[PluginHealth]:
        return plugin_manager.get_health().plugins

    @app.get("/plugins/{plugin_name}", response_model=PluginHealth)
    async def get_plugin(
        plugin_name: str,
        plugin_manager: PluginManager = Depends(get_plugin_manager)
    ) -> PluginHealth:
        return plugin_manager.get_plugin_health(plugin_name)

    @app.post("/plugins/{plugin_name}/rediscover", response_model=PluginHealth)
    async def rediscover_plugin(
        plugin_name: str,
        plugin_manager: PluginManager = Depends(get_plugin_manager)
    ) -> PluginHealth:
        state = await plugin_manager.rediscover(plugin_name)
        if state == PluginState.UNREACHABLE:
            logger.warning("Manual rediscovery failed", plugin=plugin_name)
        return plugin_manager.get_plugin_health(plugin_name)

    @app.get("/tools")
    async def list_tools(
        plugin_manager: PluginManager = Depends(get_plugin_manager)
    ) -> List[Dict[str, Any]]:
        return [tool.to_wire() for tool in plugin_manager.list_tools()]

    @app.post("/tools/{tool_name}/invoke")
    async def invoke_tool(
        tool_name: str,
        body: InvokeToolRequest,
        plugin_manager: PluginManager = Depends(get_plugin_manager)
    ) -> Dict[str, Any]:
        result = await plugin_manager.invoke(
            tool_name,
            body.arguments,
            state=body.state,
            session_id=body.session_id,
            timeout=body.timeout,
        )
        return result.to_wire()

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    logger.info("Starting opsbridge API", host=settings.api_host, port=settings.api_port)
    uvicorn.run(
        "opsbridge.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug_mode
    )
