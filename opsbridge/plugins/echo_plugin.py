"""Echo plugin for testing and demonstration.

Run it as a standalone plugin process:

    uvicorn opsbridge.plugins.echo_plugin:app --port 8080
"""

import os
from typing import Any, Dict

from opsbridge.plugins.server import PluginServer, ToolOutput, optional_param, require_param
from opsbridge.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)

server = PluginServer(name="echo-tools", version="1.0.0")


@server.tool(
    "echo",
    "Echoes back the input with optional transformations",
    {
        "type": "object",
        "properties": {
            "message": {"type": "string", "description": "The message to echo"},
            "uppercase": {"type": "boolean", "description": "Convert to uppercase"},
            "repeat": {"type": "integer", "description": "Number of times to repeat"},
        },
        "required": ["message"],
    },
)
async def echo(args: Dict[str, Any], state: Dict[str, Any]) -> Dict[str, Any]:
    message = require_param(args, "message", "echo")
    uppercase = optional_param(args, "uppercase", False)
    repeat = optional_param(args, "repeat", 1)

    result = message.upper() if uppercase else message
    if repeat > 1:
        result = " ".join([result] * repeat)

    logger.debug("Echo tool executed", original=message, result=result)
    return {"success": True, "data": result, "message": "echoed"}


@server.tool(
    "counter",
    "Counts how many times it was called within a session",
    {
        "type": "object",
        "properties": {
            "step": {"type": "integer", "description": "Amount to add, defaults to 1"},
        },
    },
)
async def counter(args: Dict[str, Any], state: Dict[str, Any]) -> ToolOutput:
    value = state.get("counter", 0) + optional_param(args, "step", 1)
    return ToolOutput(result={"counter": value}, state={**state, "counter": value})


app = server.create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "8080"))
    )
