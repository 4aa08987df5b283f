"""Shared fixtures: in-process fake plugins served over real HTTP."""

import asyncio
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer, unused_port

from opsbridge.core.external_plugin.endpoint_client import PluginEndpointClient
from opsbridge.core.protocol.models import PluginIdentity

FakeHandler = Callable[[Dict[str, Any], Dict[str, Any]], Tuple[Any, Dict[str, Any]]]


def counter_tool(args: Dict[str, Any], state: Dict[str, Any]) -> Tuple[Any, Dict[str, Any]]:
    """Increment a counter kept in the session state."""
    value = state.get("counter", 0) + args.get("step", 1)
    return {"counter": value}, {**state, "counter": value}


def echo_tool(args: Dict[str, Any], state: Dict[str, Any]) -> Tuple[Any, Dict[str, Any]]:
    return {"echo": args.get("message")}, state


class FakePlugin:
    """Minimal plugin speaking the invocation protocol, for tests."""

    def __init__(
        self,
        name: str,
        tools: Optional[Dict[str, FakeHandler]] = None,
        version: str = "1.0.0",
    ):
        self.name = name
        self.version = version
        self.tools = tools if tools is not None else {"echo": echo_tool}
        self.ready = True
        self.invoke_delay = 0.0
        self.describe_delay = 0.0
        self.fail_statuses: List[int] = []
        self.raw_body: Optional[str] = None
        self.raw_bytes: Optional[bytes] = None
        self.omit_state = False
        self.requests: List[Dict[str, Any]] = []

    @property
    def invoke_requests(self) -> List[Dict[str, Any]]:
        return [r for r in self.requests if r.get("hook") == "invoke"]

    @property
    def describe_requests(self) -> List[Dict[str, Any]]:
        return [r for r in self.requests if r.get("hook") == "describe"]

    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/ready", self._ready)
        app.router.add_post("/execute", self._execute)
        return app

    async def _ready(self, request: web.Request) -> web.Response:
        return web.json_response({"ready": self.ready}, status=200 if self.ready else 503)

    async def _execute(self, request: web.Request) -> web.Response:
        body = await request.json()
        self.requests.append(body)

        if self.fail_statuses:
            return web.json_response({"error": "unavailable"}, status=self.fail_statuses.pop(0))
        if self.raw_body is not None:
            return web.Response(text=self.raw_body, content_type="application/json")
        if self.raw_bytes is not None:
            return web.Response(body=self.raw_bytes, content_type="application/json")

        if body["hook"] == "describe":
            if self.describe_delay:
                await asyncio.sleep(self.describe_delay)
            return web.json_response({
                "name": self.name,
                "version": self.version,
                "tools": [
                    {
                        "name": tool_name,
                        "description": f"{tool_name} tool",
                        "inputSchema": {"type": "object", "properties": {}},
                    }
                    for tool_name in self.tools
                ],
            })

        if self.invoke_delay:
            await asyncio.sleep(self.invoke_delay)

        payload = body["payload"]
        handler = self.tools.get(payload["tool"])
        if handler is None:
            return web.json_response({
                "sessionId": body.get("sessionId"),
                "success": False,
                "error": {"code": "UNKNOWN_TOOL", "message": f"Unknown tool: {payload['tool']}"},
                "state": payload.get("state", {}),
            })

        result, state = handler(payload.get("args", {}), payload.get("state", {}))
        response = {"sessionId": body.get("sessionId"), "success": True, "result": result}
        if not self.omit_state:
            response["state"] = state
        return web.json_response(response)


@pytest_asyncio.fixture
async def serve_plugin():
    """Factory serving a FakePlugin and returning its identity."""
    servers: List[TestServer] = []

    async def _serve(plugin: FakePlugin, **identity_fields: Any) -> PluginIdentity:
        server = TestServer(plugin.create_app())
        await server.start_server()
        servers.append(server)
        return PluginIdentity(
            name=plugin.name,
            url=f"http://{server.host}:{server.port}",
            **identity_fields
        )

    yield _serve

    for server in servers:
        await server.close()


@pytest.fixture
def unreachable_identity() -> PluginIdentity:
    """Identity pointing at a port nothing listens on."""
    return PluginIdentity(name="offline-tools", url=f"http://127.0.0.1:{unused_port()}")


@pytest_asyncio.fixture
async def client():
    """Endpoint client with short timeouts and fast backoff."""
    endpoint_client = PluginEndpointClient(
        describe_timeout=1.0,
        invoke_timeout=1.0,
        ready_timeout=0.5,
        max_retries=3,
        backoff_base=0.01,
        backoff_max=0.05,
    )
    yield endpoint_client
    await endpoint_client.close()
