"""Plugin-side server kit.

Lets a plugin written in Python implement the invocation protocol without
hand-writing the HTTP layer:

    server = PluginServer("echo-tools", "1.0.0")

    @server.tool("echo", "Echo a message", {"type": "object", "properties": {...}})
    async def echo(args, state):
        return {"echoed": require_param(args, "message", "echo")}

    app = server.create_app()   # serve with uvicorn

Endpoints:
    GET  /health   liveness
    GET  /ready    readiness, polled by the manager during discovery
    POST /execute  hook dispatcher (describe, invoke)
"""

import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar, Union

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from opsbridge.core.exceptions import ToolValidationError
from opsbridge.core.protocol.constants import (
    ANONYMOUS_SESSION_ID,
    EXECUTE_ENDPOINT,
    HEALTH_ENDPOINT,
    READY_ENDPOINT,
    Hook,
    PluginErrorCode,
)
from opsbridge.core.protocol.models import (
    DescribeResponse,
    ExecuteRequest,
    InvocationResult,
    InvokePayload,
    ToolDefinition,
)
from opsbridge.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)

T = TypeVar("T")

ToolHandler = Callable[[Dict[str, Any], Dict[str, Any]], Union[Any, Awaitable[Any]]]
ReadinessCheck = Callable[[], Union[bool, Awaitable[bool]]]


@dataclass
class ToolOutput:
    """Handler return value that also replaces the session state."""

    result: Any
    state: Optional[Dict[str, Any]] = None


@dataclass
class PluginTool:
    """A tool definition paired with the handler that implements it."""

    definition: ToolDefinition
    handler: ToolHandler


def require_param(args: Dict[str, Any], param: str, tool_name: str) -> Any:
    """Get a required argument.

    Raises:
        ToolValidationError: If the argument is missing or empty
    """
    value = args.get(param)
    if value is None or value == "":
        raise ToolValidationError(tool_name, param)
    return value


def optional_param(args: Dict[str, Any], param: str, default: T) -> T:
    """Get an optional argument with a default value."""
    value = args.get(param)
    return default if value is None else value


class PluginServer:
    """Hosts a set of tools behind the describe/invoke protocol."""

    def __init__(
        self,
        name: str,
        version: str,
        readiness_check: Optional[ReadinessCheck] = None
    ) -> None:
        """Initialize the plugin server.

        Args:
            name: Plugin name reported by describe
            version: Plugin version reported by describe
            readiness_check: Optional callable deciding whether /ready succeeds
        """
        self.name = name
        self.version = version
        self.readiness_check = readiness_check
        self.tools: Dict[str, PluginTool] = {}

    def add_tool(
        self,
        name: str,
        description: str,
        handler: ToolHandler,
        input_schema: Optional[Dict[str, Any]] = None
    ) -> ToolDefinition:
        """Register a tool.

        Raises:
            ValueError: If a tool with the same name already exists
        """
        if name in self.tools:
            raise ValueError(f"Tool '{name}' is already registered on plugin '{self.name}'")
        definition = ToolDefinition(
            name=name,
            description=description,
            input_schema=input_schema or {"type": "object", "properties": {}},
        )
        self.tools[name] = PluginTool(definition=definition, handler=handler)
        return definition

    def tool(
        self,
        name: str,
        description: str,
        input_schema: Optional[Dict[str, Any]] = None
    ) -> Callable[[ToolHandler], ToolHandler]:
        """Decorator form of :meth:`add_tool`."""
        def decorator(handler: ToolHandler) -> ToolHandler:
            self.add_tool(name, description, handler, input_schema)
            return handler
        return decorator

    def describe(self) -> DescribeResponse:
        return DescribeResponse(
            name=self.name,
            version=self.version,
            tools=[t.definition for t in self.tools.values()],
        )

    async def invoke(self, session_id: str, payload: InvokePayload) -> InvocationResult:
        """Run one tool and wrap its outcome in an InvocationResult.

        Handler exceptions never escape; they become error results carrying
        the incoming state so the caller's session can continue.
        """
        plugin_tool = self.tools.get(payload.tool)
        if plugin_tool is None:
            return InvocationResult.failure(
                PluginErrorCode.UNKNOWN_TOOL,
                f"Tool '{payload.tool}' is not implemented",
                state=payload.state,
                session_id=session_id,
                details={"availableTools": list(self.tools)},
            )

        try:
            outcome = plugin_tool.handler(payload.args, payload.state)
            if inspect.isawaitable(outcome):
                outcome = await outcome
        except ToolValidationError as e:
            return InvocationResult.failure(
                PluginErrorCode.INVALID_ARGUMENTS,
                e.message,
                state=payload.state,
                session_id=session_id,
                details=e.details,
            )
        except Exception as e:
            logger.error(
                "Tool execution failed",
                plugin=self.name,
                tool=payload.tool,
                session_id=session_id,
                error=str(e),
                exc_info=True
            )
            return InvocationResult.failure(
                PluginErrorCode.TOOL_EXECUTION_FAILED,
                str(e),
                state=payload.state,
                session_id=session_id,
                details={"tool": payload.tool, "args": payload.args},
            )

        if isinstance(outcome, ToolOutput):
            state = payload.state if outcome.state is None else outcome.state
            result = outcome.result
        else:
            state, result = payload.state, outcome

        return InvocationResult(session_id=session_id, success=True, result=result, state=state)

    async def is_ready(self) -> bool:
        if self.readiness_check is None:
            return True
        ready = self.readiness_check()
        if inspect.isawaitable(ready):
            ready = await ready
        return bool(ready)

    def create_app(self) -> FastAPI:
        """Build the FastAPI application serving this plugin."""
        app = FastAPI(title=self.name, version=self.version, docs_url=None, redoc_url=None)

        @app.get(HEALTH_ENDPOINT)
        async def health() -> Dict[str, str]:
            return {"status": "ok"}

        @app.get(READY_ENDPOINT)
        async def ready() -> JSONResponse:
            if await self.is_ready():
                return JSONResponse({"status": "ready"})
            return JSONResponse(
                {"status": "not ready"},
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE
            )

        @app.post(EXECUTE_ENDPOINT)
        async def execute(request: Request) -> JSONResponse:
            try:
                body = await request.json()
            except ValueError:
                return _error(status.HTTP_400_BAD_REQUEST, "Invalid JSON body")
            if not isinstance(body, dict) or not body.get("hook"):
                return _error(status.HTTP_400_BAD_REQUEST, "Missing required field: hook")

            try:
                envelope = ExecuteRequest.model_validate(body)
            except ValidationError as e:
                return _error(status.HTTP_400_BAD_REQUEST, f"Invalid request: {e.errors()[0]['msg']}")

            if envelope.hook == Hook.DESCRIBE:
                return JSONResponse(self.describe().model_dump(by_alias=True))

            result = await self.invoke(envelope.session_id or ANONYMOUS_SESSION_ID, envelope.payload)
            return JSONResponse(result.to_wire())

        logger.info("Plugin app created", plugin=self.name, tools=list(self.tools))
        return app


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)
