"""Invocation protocol data models.

These models describe the wire contract between the orchestrating process
and every plugin. Field names on the wire are camelCase (``sessionId``,
``inputSchema``); Python attributes are snake_case. Models accept either
spelling and serialize with aliases via :meth:`ExecuteRequest.to_wire`.
"""

import uuid
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .constants import ANONYMOUS_SESSION_ID, DEFAULT_TOOL_TYPE, Hook


class PluginIdentity(BaseModel):
    """Static identity and reachability information for one plugin."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(..., min_length=1, description="Unique plugin name")
    url: Optional[str] = Field(
        None,
        description="Resolved plugin address, e.g. http://agentic-tools:8080"
    )
    image: Optional[str] = Field(
        None,
        description="Build artifact reference, resolved to an address by the deployment layer"
    )
    port: Optional[int] = Field(None, ge=1, le=65535)
    execution_context: Optional[str] = Field(
        None,
        alias="executionContext",
        description="Opaque credential or role binding reference attached out of band"
    )
    required: bool = Field(
        False,
        description="Fail startup if this plugin cannot be discovered"
    )
    describe_timeout: Optional[float] = Field(None, alias="describeTimeout", gt=0)
    invoke_timeout: Optional[float] = Field(None, alias="invokeTimeout", gt=0)

    @field_validator("url")
    @classmethod
    def _strip_trailing_slash(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        value = value.strip().rstrip("/")
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"plugin url must be http(s), got '{value}'")
        return value

    @model_validator(mode="after")
    def _check_reachability(self) -> "PluginIdentity":
        if self.url is None and not (self.image and self.port):
            raise ValueError(
                f"plugin '{self.name}' needs either 'url' or both 'image' and 'port'"
            )
        return self

    @property
    def is_resolved(self) -> bool:
        """Whether the identity carries a network address the core can call."""
        return self.url is not None


class ToolDefinition(BaseModel):
    """A tool as declared by a plugin's describe response."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1)
    description: str = ""
    input_schema: Dict[str, Any] = Field(..., alias="inputSchema")
    type: str = DEFAULT_TOOL_TYPE

    @field_validator("input_schema")
    @classmethod
    def _check_schema(cls, schema: Dict[str, Any]) -> Dict[str, Any]:
        if schema.get("type") != "object":
            raise ValueError("inputSchema.type must be 'object'")
        properties = schema.get("properties", {})
        if not isinstance(properties, dict):
            raise ValueError("inputSchema.properties must be an object")
        required = schema.get("required", [])
        if not isinstance(required, list) or not all(isinstance(r, str) for r in required):
            raise ValueError("inputSchema.required must be a list of strings")
        return schema

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class DescribeResponse(BaseModel):
    """Response to the describe hook."""

    name: str
    version: str
    tools: List[ToolDefinition] = Field(default_factory=list)

    @field_validator("tools")
    @classmethod
    def _unique_tool_names(cls, tools: List[ToolDefinition]) -> List[ToolDefinition]:
        seen = set()
        for tool in tools:
            if tool.name in seen:
                raise ValueError(f"duplicate tool name '{tool.name}'")
            seen.add(tool.name)
        return tools


class InvokePayload(BaseModel):
    """Payload carried by the invoke hook."""

    tool: str = Field(..., min_length=1)
    args: Dict[str, Any] = Field(default_factory=dict)
    state: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("args", "state", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return {} if value is None else value


class ExecuteRequest(BaseModel):
    """Request envelope posted to a plugin's execute endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    hook: Hook
    session_id: Optional[str] = Field(None, alias="sessionId")
    payload: Optional[InvokePayload] = None

    @model_validator(mode="after")
    def _payload_for_invoke(self) -> "ExecuteRequest":
        if self.hook == Hook.INVOKE and self.payload is None:
            raise ValueError("invoke requests require a payload")
        return self

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class InvocationRequest(BaseModel):
    """A single tool call as seen by the core.

    ``arguments`` are passed through to the plugin untouched; ``state`` is
    whatever the previous call of the same session returned.
    """

    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(default_factory=lambda: str(uuid.uuid4()), alias="sessionId")
    tool: str = Field(..., min_length=1)
    arguments: Dict[str, Any] = Field(default_factory=dict)
    state: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("arguments", "state", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return {} if value is None else value

    def to_execute_request(self) -> ExecuteRequest:
        return ExecuteRequest(
            hook=Hook.INVOKE,
            session_id=self.session_id,
            payload=InvokePayload(tool=self.tool, args=self.arguments, state=self.state),
        )


class InvocationError(BaseModel):
    """Error block of a failed invocation."""

    code: str
    message: str
    details: Optional[Dict[str, Any]] = None


class InvocationResult(BaseModel):
    """Outcome of one invoke call.

    Exactly one of ``result`` (on success) or ``error`` (on failure) is
    meaningful. ``state`` is always present so a session can continue after
    a failed call.
    """

    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(ANONYMOUS_SESSION_ID, alias="sessionId")
    success: bool
    result: Any = None
    error: Optional[InvocationError] = None
    state: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("state", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return {} if value is None else value

    @model_validator(mode="after")
    def _exclusive_outcome(self) -> "InvocationResult":
        if self.success and self.error is not None:
            raise ValueError("a successful result cannot carry an error")
        if not self.success:
            if self.error is None:
                raise ValueError("a failed result must carry an error")
            if self.result is not None:
                raise ValueError("a failed result cannot carry a result payload")
        return self

    @classmethod
    def failure(
        cls,
        code: Union[str, Enum],
        message: str,
        state: Optional[Dict[str, Any]] = None,
        session_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> "InvocationResult":
        """Build a failed result, keeping the caller's state intact."""
        return cls(
            session_id=session_id or ANONYMOUS_SESSION_ID,
            success=False,
            error=InvocationError(
                code=code.value if isinstance(code, Enum) else code,
                message=message,
                details=details,
            ),
            state=dict(state or {}),
        )

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")

    def to_tool_output(self) -> Any:
        """Render the result the way an AI planning loop should see it.

        Successful command envelopes of the form ``{"success": ..., "data": ...}``
        are unwrapped to their raw output to save tokens; failures become an
        ``"Error: ..."`` string.
        """
        if not self.success:
            return f"Error: {self.error.message if self.error else 'Unknown error'}"

        result = self.result
        if isinstance(result, dict) and "success" in result and "data" in result:
            if result["success"]:
                return result["data"]
            return f"Error: {result.get('message') or result.get('error') or 'Command failed'}"
        return result
