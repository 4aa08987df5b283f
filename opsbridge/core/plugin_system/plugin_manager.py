"""Plugin Manager for plugin discovery, health and tool dispatch.

This module owns the set of configured plugins and drives their lifecycle:

    Pending -> Ready        readiness check and describe succeeded, tools registered
    Pending -> Unreachable  never became ready, or describe/registration failed
    Unreachable -> Pending  next scheduled re-discovery attempt

It exposes two dispatch surfaces sharing one code path: an executor adapter
for a multi-step AI planning loop, and a direct ``invoke`` for deterministic
call sites.
"""

import asyncio
import inspect
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Type, Union

from pydantic import ValidationError

from ..exceptions import (
    ConfigurationError,
    PluginCancelledError,
    PluginCommunicationError,
    PluginDiscoveryError,
    PluginNotFoundError,
    PluginProtocolError,
    PluginTimeoutError,
    PluginTransportError,
    RegistrationConflictError,
)
from ..external_plugin.endpoint_client import PluginEndpointClient
from ..protocol.constants import (
    DEFAULT_READINESS_POLL_INTERVAL,
    DEFAULT_REDISCOVERY_INTERVAL,
    DEFAULT_STARTUP_DEADLINE,
    ErrorCode,
)
from ..protocol.models import (
    InvocationRequest,
    InvocationResult,
    PluginIdentity,
    ToolDefinition,
)
from .models import HealthReport, PluginHealth, PluginState
from .registry import ToolRegistry
from .session import SessionThreader, new_session_id
from opsbridge.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)

ToolExecutor = Callable[
    [str, Optional[Dict[str, Any]], Optional[Dict[str, Any]]],
    Awaitable[InvocationResult]
]
DiscoveryCallback = Callable[[str], Any]

_FAILURE_CODES: Dict[Type[PluginCommunicationError], ErrorCode] = {
    PluginTimeoutError: ErrorCode.TIMEOUT,
    PluginCancelledError: ErrorCode.CANCELLED,
    PluginProtocolError: ErrorCode.PROTOCOL_ERROR,
    PluginTransportError: ErrorCode.TRANSPORT_ERROR,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _PluginRecord:
    """Mutable lifecycle bookkeeping for one configured plugin."""

    identity: PluginIdentity
    state: PluginState = PluginState.PENDING
    version: Optional[str] = None
    last_error: Optional[str] = None
    attempts: int = 0
    discovered_at: Optional[datetime] = None
    last_checked_at: Optional[datetime] = None


class PluginManager:
    """Manages discovery of remote plugins and routes tool calls to them."""

    def __init__(
        self,
        identities: Iterable[PluginIdentity],
        registry: Optional[ToolRegistry] = None,
        client: Optional[PluginEndpointClient] = None,
        startup_deadline: float = DEFAULT_STARTUP_DEADLINE,
        readiness_poll_interval: float = DEFAULT_READINESS_POLL_INTERVAL,
        rediscovery_interval: float = DEFAULT_REDISCOVERY_INTERVAL
    ) -> None:
        """Initialize the Plugin Manager.

        Args:
            identities: Statically configured plugins
            registry: Tool registry to populate (a new one if omitted)
            client: Endpoint client used for every plugin call
            startup_deadline: Seconds each plugin gets to report ready
            readiness_poll_interval: Seconds between readiness checks
            rediscovery_interval: Seconds between background recovery attempts

        Raises:
            ConfigurationError: If two identities share a name
        """
        self._plugins: Dict[str, _PluginRecord] = {}
        for identity in identities:
            if identity.name in self._plugins:
                raise ConfigurationError(
                    "plugins", f"duplicate plugin name '{identity.name}'"
                )
            self._plugins[identity.name] = _PluginRecord(identity=identity)

        self.registry = registry if registry is not None else ToolRegistry()
        self.client = client if client is not None else PluginEndpointClient()
        self.startup_deadline = startup_deadline
        self.readiness_poll_interval = readiness_poll_interval
        self.rediscovery_interval = rediscovery_interval

        self._discovery_locks: Dict[str, asyncio.Lock] = {
            name: asyncio.Lock() for name in self._plugins
        }
        self._background_task: Optional[asyncio.Task] = None
        self._background_enabled = False
        self._on_plugin_discovered: Optional[DiscoveryCallback] = None

    @classmethod
    def from_settings(cls, identities: Iterable[PluginIdentity], settings: Any) -> "PluginManager":
        """Build a manager and its endpoint client from application settings."""
        client = PluginEndpointClient(
            describe_timeout=settings.plugin_describe_timeout,
            invoke_timeout=settings.plugin_invoke_timeout,
            max_retries=settings.plugin_max_retries,
            backoff_base=settings.plugin_backoff_base,
            backoff_max=settings.plugin_backoff_max,
        )
        return cls(
            identities,
            client=client,
            startup_deadline=settings.plugin_startup_deadline,
            readiness_poll_interval=settings.plugin_readiness_poll_interval,
            rediscovery_interval=settings.plugin_rediscovery_interval,
        )

    # Discovery

    async def start(self) -> HealthReport:
        """Discover every configured plugin concurrently.

        One unreachable plugin never blocks the others: it is marked
        Unreachable and startup continues.

        Returns:
            HealthReport: Health after discovery

        Raises:
            PluginDiscoveryError: If a plugin marked ``required`` is unreachable
        """
        if not self._plugins:
            logger.debug("No plugins configured for discovery")
            return self.get_health()

        logger.info(
            "Starting plugin discovery",
            plugin_count=len(self._plugins),
            plugins=list(self._plugins)
        )
        await asyncio.gather(*(self._discover(name) for name in self._plugins))

        failed = self._names_in_state(PluginState.UNREACHABLE)
        if failed:
            logger.warning("Some plugins failed to discover", failed=failed)

        required_failed = [
            {"name": r.identity.name, "error": r.last_error or "unknown error"}
            for r in self._plugins.values()
            if r.identity.required and r.state == PluginState.UNREACHABLE
        ]
        if required_failed:
            raise PluginDiscoveryError(required_failed)

        logger.info(
            "Plugin discovery complete",
            discovered=len(self._names_in_state(PluginState.READY)),
            total_tools=len(self.registry)
        )
        return self.get_health()

    async def rediscover(self, plugin_name: str) -> PluginState:
        """Re-run discovery for one plugin, e.g. after it restarted.

        Raises:
            PluginNotFoundError: If the plugin is not configured
        """
        if plugin_name not in self._plugins:
            raise PluginNotFoundError(plugin_name)
        await self._discover(plugin_name)
        return self._plugins[plugin_name].state

    async def _discover(self, plugin_name: str) -> bool:
        record = self._plugins[plugin_name]
        identity = record.identity

        async with self._discovery_locks[plugin_name]:
            # a Ready plugin keeps serving its current tools while re-described
            if record.state != PluginState.READY:
                record.state = PluginState.PENDING
            record.attempts += 1
            record.last_checked_at = _utcnow()
            try:
                await self._wait_until_ready(identity)
                response = await self.client.describe(identity)
                tool_names = self.registry.register(identity, response.tools)
            except (PluginCommunicationError, RegistrationConflictError) as e:
                self._mark_unreachable(record, e)
                return False
            except Exception as e:
                logger.error(
                    "Unexpected error during plugin discovery",
                    plugin=plugin_name,
                    error=str(e),
                    exc_info=True
                )
                self._mark_unreachable(record, e)
                return False

            record.state = PluginState.READY
            record.version = response.version
            record.last_error = None
            record.discovered_at = _utcnow()
            logger.info(
                "Plugin discovered",
                name=plugin_name,
                version=response.version,
                tools=tool_names,
                attempts=record.attempts
            )

        await self._notify_discovered(plugin_name)
        return True

    async def _wait_until_ready(self, identity: PluginIdentity) -> None:
        if not identity.is_resolved:
            raise PluginTransportError(
                identity.name,
                None,
                "plugin address has not been resolved by the deployment layer"
            )

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.startup_deadline
        while True:
            if await self.client.check_ready(identity):
                return
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise PluginTransportError(
                    identity.name,
                    identity.url,
                    f"plugin did not become ready within {self.startup_deadline} seconds"
                )
            await asyncio.sleep(min(self.readiness_poll_interval, remaining))

    def _mark_unreachable(self, record: _PluginRecord, error: Exception) -> None:
        name = record.identity.name
        record.state = PluginState.UNREACHABLE
        record.last_error = str(error)
        self.registry.unregister(name)

        log = logger.error if record.identity.required else logger.warning
        log(
            "Plugin unreachable",
            plugin=name,
            url=record.identity.url,
            attempts=record.attempts,
            error=str(error)
        )

        if self._background_enabled and not self.is_background_discovery_active:
            self._schedule_background_discovery()

    async def _notify_discovered(self, plugin_name: str) -> None:
        if self._on_plugin_discovered is None:
            return
        try:
            outcome = self._on_plugin_discovered(plugin_name)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.error(
                "Plugin discovered callback failed",
                plugin=plugin_name,
                error=str(e),
                exc_info=True
            )

    def set_on_plugin_discovered(self, callback: Optional[DiscoveryCallback]) -> None:
        """Register a callback run after each successful (re)discovery.

        The callback receives the plugin name and may be sync or async, e.g.
        to refresh the tool list offered to a planning loop.
        """
        self._on_plugin_discovered = callback

    # Background re-discovery

    @property
    def is_background_discovery_active(self) -> bool:
        return self._background_task is not None and not self._background_task.done()

    def start_background_discovery(self, interval: Optional[float] = None) -> None:
        """Periodically retry unreachable plugins until all are ready.

        Once started, a plugin that later becomes unreachable restarts the
        loop automatically.
        """
        if interval is not None:
            self.rediscovery_interval = interval
        self._background_enabled = True

        if self.is_background_discovery_active:
            return
        if not self._names_in_state(PluginState.UNREACHABLE):
            logger.debug("No unreachable plugins for background discovery")
            return
        self._schedule_background_discovery()

    def _schedule_background_discovery(self) -> None:
        self._background_task = asyncio.create_task(self._background_loop())
        logger.info(
            "Background plugin discovery started",
            interval_seconds=self.rediscovery_interval,
            unreachable=self._names_in_state(PluginState.UNREACHABLE)
        )

    async def _background_loop(self) -> None:
        while True:
            await asyncio.sleep(self.rediscovery_interval)
            names = self._names_in_state(PluginState.UNREACHABLE)
            if not names:
                logger.info("All plugins discovered, background discovery finished")
                return
            logger.debug("Retrying unreachable plugins", plugins=names)
            await asyncio.gather(*(self._discover(name) for name in names))

    async def stop_background_discovery(self) -> None:
        """Stop background re-discovery. Safe to call when not started."""
        self._background_enabled = False
        task, self._background_task = self._background_task, None
        if task is None or task.done():
            return
        task.cancel()
        await asyncio.wait({task})
        logger.info("Background plugin discovery stopped")

    # Dispatch

    async def invoke(
        self,
        tool_name: str,
        arguments: Optional[Dict[str, Any]] = None,
        state: Optional[Dict[str, Any]] = None,
        session_id: Optional[str] = None,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> InvocationResult:
        """Invoke a tool directly, for deterministic call sites.

        Args:
            tool_name: Registered tool name
            arguments: Tool arguments, passed through untouched
            state: State returned by the previous call of this session
            session_id: Caller-supplied session identifier (generated if omitted)
            timeout: Optional deadline override in seconds
            cancel_event: Optional event that aborts the call when set

        Returns:
            InvocationResult: Plugin result, or a core-generated failure
        """
        request = self._build_request(tool_name, arguments, state, session_id)
        if isinstance(request, InvocationResult):
            return request
        return await self.invoke_request(request, timeout=timeout, cancel_event=cancel_event)

    def _is_registered(self, tool_name: Any) -> bool:
        return isinstance(tool_name, str) and tool_name in self.registry

    def _build_request(
        self,
        tool_name: Any,
        arguments: Any,
        state: Any,
        session_id: Optional[str]
    ) -> Union[InvocationRequest, InvocationResult]:
        """Validate a proposed call, returning a failure result when it is malformed."""
        session_id = session_id or new_session_id()
        try:
            return InvocationRequest(
                session_id=session_id,
                tool=tool_name,
                arguments=arguments or {},
                state=state or {},
            )
        except ValidationError as e:
            code = (
                ErrorCode.INVALID_ARGUMENTS
                if self._is_registered(tool_name)
                else ErrorCode.UNKNOWN_TOOL
            )
            logger.debug(
                "Rejected malformed tool call",
                tool=repr(tool_name),
                session_id=session_id,
                code=code.value
            )
            return InvocationResult.failure(
                code,
                f"Invalid call to tool {tool_name!r}: {e.errors()[0]['msg']}",
                state=state if isinstance(state, dict) else None,
                session_id=session_id,
                details={"tool": repr(tool_name)},
            )

    async def invoke_request(
        self,
        request: InvocationRequest,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> InvocationResult:
        """Resolve the owning plugin of a request and dispatch it."""
        entry = self.registry.get(request.tool)
        if entry is None:
            logger.debug("Unknown tool requested", tool=request.tool, session_id=request.session_id)
            return InvocationResult.failure(
                ErrorCode.UNKNOWN_TOOL,
                f"Tool '{request.tool}' not found in any plugin",
                state=request.state,
                session_id=request.session_id,
                details={"tool": request.tool},
            )
        return await self._dispatch(entry.owner, request, timeout, cancel_event)

    async def invoke_on_plugin(
        self,
        plugin_name: str,
        tool_name: str,
        arguments: Optional[Dict[str, Any]] = None,
        state: Optional[Dict[str, Any]] = None,
        session_id: Optional[str] = None,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> InvocationResult:
        """Invoke a tool on a named plugin, failing if that plugin does not own it."""
        request = self._build_request(tool_name, arguments, state, session_id)
        if isinstance(request, InvocationResult):
            return request
        if plugin_name not in self._plugins:
            return InvocationResult.failure(
                ErrorCode.PLUGIN_NOT_AVAILABLE,
                f"Plugin '{plugin_name}' is not configured",
                state=request.state,
                session_id=request.session_id,
                details={"plugin": plugin_name},
            )
        entry = self.registry.get(tool_name)
        if entry is None or entry.owner_name != plugin_name:
            return InvocationResult.failure(
                ErrorCode.UNKNOWN_TOOL,
                f"Tool '{tool_name}' not found in plugin '{plugin_name}'",
                state=request.state,
                session_id=request.session_id,
                details={"tool": tool_name, "plugin": plugin_name},
            )
        return await self._dispatch(entry.owner, request, timeout, cancel_event)

    async def _dispatch(
        self,
        identity: PluginIdentity,
        request: InvocationRequest,
        timeout: Optional[float],
        cancel_event: Optional[asyncio.Event]
    ) -> InvocationResult:
        record = self._plugins.get(identity.name)
        if record is None or record.state != PluginState.READY:
            return InvocationResult.failure(
                ErrorCode.PLUGIN_NOT_AVAILABLE,
                f"Plugin '{identity.name}' is not available",
                state=request.state,
                session_id=request.session_id,
                details={"plugin": identity.name},
            )

        logger.debug(
            "Routing tool to plugin",
            tool=request.tool,
            plugin=identity.name,
            session_id=request.session_id
        )
        try:
            result = await self.client.invoke(
                identity, request, timeout=timeout, cancel_event=cancel_event
            )
        except PluginCommunicationError as e:
            code = _FAILURE_CODES.get(type(e), ErrorCode.TRANSPORT_ERROR)
            record.last_error = str(e)
            logger.warning(
                "Plugin invocation failed",
                tool=request.tool,
                plugin=identity.name,
                session_id=request.session_id,
                code=code.value,
                error=str(e)
            )
            return InvocationResult.failure(
                code,
                str(e),
                state=request.state,
                session_id=request.session_id,
                details=e.details,
            )

        if not result.success:
            logger.info(
                "Plugin reported tool failure",
                tool=request.tool,
                plugin=identity.name,
                session_id=request.session_id,
                code=result.error.code
            )
        return result

    def create_tool_executor(
        self,
        session_id: Optional[str] = None,
        fallback: Optional[ToolExecutor] = None
    ) -> ToolExecutor:
        """Create the executor function handed to an AI planning loop.

        The returned coroutine function takes ``(tool_name, arguments,
        session_state)`` and returns an InvocationResult. Every call made
        through one executor shares a session identifier. Tools no plugin
        provides go to ``fallback`` when given.
        """
        executor_session = session_id or new_session_id()

        async def execute(
            tool_name: str,
            arguments: Optional[Dict[str, Any]] = None,
            session_state: Optional[Dict[str, Any]] = None
        ) -> InvocationResult:
            if fallback is not None and not self._is_registered(tool_name):
                return await fallback(tool_name, arguments, session_state)
            return await self.invoke(
                tool_name,
                arguments,
                state=session_state,
                session_id=executor_session,
            )

        return execute

    def create_session(
        self,
        session_id: Optional[str] = None,
        initial_state: Optional[Dict[str, Any]] = None
    ) -> SessionThreader:
        """Start a caller-held session that threads state between calls."""
        return SessionThreader(self.invoke_request, session_id, initial_state)

    # Health and introspection

    @property
    def plugin_names(self) -> List[str]:
        return list(self._plugins)

    def _names_in_state(self, state: PluginState) -> List[str]:
        return [name for name, r in self._plugins.items() if r.state == state]

    def get_plugin_state(self, plugin_name: str) -> PluginState:
        """Get the lifecycle state of a plugin.

        Raises:
            PluginNotFoundError: If the plugin is not configured
        """
        record = self._plugins.get(plugin_name)
        if record is None:
            raise PluginNotFoundError(plugin_name)
        return record.state

    def get_plugin_health(self, plugin_name: str) -> PluginHealth:
        record = self._plugins.get(plugin_name)
        if record is None:
            raise PluginNotFoundError(plugin_name)
        tools = [t.name for t in self.registry.tools_for(plugin_name)]
        return PluginHealth(
            name=plugin_name,
            state=record.state,
            url=record.identity.url,
            version=record.version,
            required=record.identity.required,
            tool_count=len(tools),
            tools=tools,
            last_error=record.last_error,
            attempts=record.attempts,
            discovered_at=record.discovered_at,
            last_checked_at=record.last_checked_at,
        )

    def get_health(self) -> HealthReport:
        """Aggregate health signal for an operator-facing status surface."""
        plugins = [self.get_plugin_health(name) for name in self._plugins]
        unreachable = self._names_in_state(PluginState.UNREACHABLE)
        pending = self._names_in_state(PluginState.PENDING)
        ready = self._names_in_state(PluginState.READY)
        return HealthReport(
            status="ok" if len(ready) == len(plugins) else "degraded",
            plugin_count=len(plugins),
            ready_count=len(ready),
            unreachable=unreachable,
            pending=pending,
            tool_count=len(self.registry),
            plugins=plugins,
            background_discovery_active=self.is_background_discovery_active,
        )

    def list_tools(self) -> List[ToolDefinition]:
        """All tools currently available to a planning loop."""
        return self.registry.list_all()

    def get_stats(self) -> Dict[str, Any]:
        ready = [self._plugins[name] for name in self._names_in_state(PluginState.READY)]
        return {
            "plugin_count": len(ready),
            "tool_count": len(self.registry),
            "plugins": [
                {
                    "name": r.identity.name,
                    "version": r.version,
                    "tool_count": len(self.registry.tools_for(r.identity.name)),
                }
                for r in ready
            ],
            "pending_discovery": self._names_in_state(PluginState.UNREACHABLE),
            "background_discovery_active": self.is_background_discovery_active,
        }

    async def shutdown(self) -> None:
        """Stop background discovery and release the HTTP session.

        Safe to call multiple times.
        """
        await self.stop_background_discovery()
        await self.client.close()
        logger.info("Plugin manager shutdown complete")
