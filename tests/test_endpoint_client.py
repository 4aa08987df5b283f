"""Tests for the plugin endpoint client."""

import asyncio
from unittest import mock

import aiohttp
import pytest

from opsbridge.core.exceptions import (
    PluginCancelledError,
    PluginProtocolError,
    PluginTimeoutError,
    PluginTransportError,
)
from opsbridge.core.external_plugin.endpoint_client import PluginEndpointClient
from opsbridge.core.protocol.constants import Hook
from opsbridge.core.protocol.models import InvocationRequest, PluginIdentity

from .conftest import FakePlugin, counter_tool


@pytest.mark.asyncio
async def test_describe(serve_plugin, client):
    """Test describe returns validated tool definitions."""
    plugin = FakePlugin("agentic-tools", tools={"echo": counter_tool, "count": counter_tool})
    identity = await serve_plugin(plugin)

    response = await client.describe(identity)

    assert response.name == "agentic-tools"
    assert response.version == "1.0.0"
    assert [t.name for t in response.tools] == ["echo", "count"]
    assert plugin.describe_requests == [{"hook": "describe"}]


@pytest.mark.asyncio
async def test_invoke_round_trip(serve_plugin, client):
    """Test invoke sends the envelope and returns the plugin's state."""
    plugin = FakePlugin("agentic-tools", tools={"count": counter_tool})
    identity = await serve_plugin(plugin)
    request = InvocationRequest(
        session_id="s-1", tool="count", arguments={"step": 2}, state={"counter": 1}
    )

    result = await client.invoke(identity, request)

    assert result.success
    assert result.result == {"counter": 3}
    assert result.state == {"counter": 3}
    assert result.session_id == "s-1"
    assert plugin.invoke_requests[0] == {
        "hook": "invoke",
        "sessionId": "s-1",
        "payload": {"tool": "count", "args": {"step": 2}, "state": {"counter": 1}},
    }


@pytest.mark.asyncio
async def test_invoke_carries_state_when_plugin_omits_it(serve_plugin, client):
    plugin = FakePlugin("agentic-tools")
    plugin.omit_state = True
    identity = await serve_plugin(plugin)

    result = await client.invoke(
        identity, InvocationRequest(tool="echo", arguments={"message": "hi"}, state={"k": "v"})
    )

    assert result.success
    assert result.state == {"k": "v"}


@pytest.mark.asyncio
async def test_plugin_failure_is_a_result_not_an_exception(serve_plugin, client):
    plugin = FakePlugin("agentic-tools")
    identity = await serve_plugin(plugin)

    result = await client.invoke(identity, InvocationRequest(tool="missing", state={"a": 1}))

    assert not result.success
    assert result.error.code == "UNKNOWN_TOOL"
    assert result.state == {"a": 1}
    assert len(plugin.invoke_requests) == 1


@pytest.mark.asyncio
async def test_retries_on_unavailable_status(serve_plugin, client):
    """Test 503 responses are retried until the plugin answers."""
    plugin = FakePlugin("agentic-tools")
    plugin.fail_statuses = [503, 502]
    identity = await serve_plugin(plugin)

    response = await client.describe(identity)

    assert response.name == "agentic-tools"
    assert len(plugin.describe_requests) == 3


@pytest.mark.asyncio
async def test_client_error_status_is_not_retried(serve_plugin, client):
    plugin = FakePlugin("agentic-tools")
    plugin.fail_statuses = [500]
    identity = await serve_plugin(plugin)

    with pytest.raises(PluginTransportError) as exc_info:
        await client.describe(identity)

    assert exc_info.value.status == 500
    assert len(plugin.describe_requests) == 1


@pytest.mark.asyncio
async def test_connection_refused_exhausts_retries(client, unreachable_identity):
    """Test an unreachable plugin raises a transport error after all attempts."""
    with pytest.raises(PluginTransportError) as exc_info:
        await client.send(unreachable_identity, Hook.DESCRIBE)

    assert exc_info.value.attempts == client.max_retries
    assert exc_info.value.details["plugin_name"] == "offline-tools"


@pytest.mark.asyncio
async def test_unresolved_identity_raises_transport_error(client):
    identity = PluginIdentity(name="helm-tools", image="ghcr.io/acme/helm-tools:1.2", port=8080)
    with pytest.raises(PluginTransportError):
        await client.describe(identity)


@pytest.mark.asyncio
async def test_invoke_timeout_is_not_retried(serve_plugin, client):
    """Test a slow tool call times out once and is never resent."""
    plugin = FakePlugin("agentic-tools")
    plugin.invoke_delay = 1.0
    identity = await serve_plugin(plugin)

    with pytest.raises(PluginTimeoutError) as exc_info:
        await client.invoke(identity, InvocationRequest(tool="echo"), timeout=0.1)

    assert exc_info.value.timeout == 0.1
    assert len(plugin.invoke_requests) == 1


@pytest.mark.asyncio
async def test_describe_timeout_is_retried(serve_plugin, client):
    plugin = FakePlugin("agentic-tools")
    plugin.describe_delay = 1.0
    identity = await serve_plugin(plugin, describeTimeout=0.1)

    with pytest.raises(PluginTimeoutError):
        await client.describe(identity)

    assert len(plugin.describe_requests) == client.max_retries


@pytest.mark.asyncio
async def test_cancel_event_aborts_in_flight_call(serve_plugin, client):
    """Test setting the cancel event aborts an invoke."""
    plugin = FakePlugin("agentic-tools")
    plugin.invoke_delay = 2.0
    identity = await serve_plugin(plugin)
    cancel_event = asyncio.Event()

    async def cancel_soon():
        await asyncio.sleep(0.05)
        cancel_event.set()

    canceller = asyncio.create_task(cancel_soon())
    with pytest.raises(PluginCancelledError):
        await client.invoke(identity, InvocationRequest(tool="echo"), cancel_event=cancel_event)
    await canceller


@pytest.mark.asyncio
async def test_already_cancelled_sends_nothing(serve_plugin, client):
    plugin = FakePlugin("agentic-tools")
    identity = await serve_plugin(plugin)
    cancel_event = asyncio.Event()
    cancel_event.set()

    with pytest.raises(PluginCancelledError):
        await client.invoke(identity, InvocationRequest(tool="echo"), cancel_event=cancel_event)

    await asyncio.sleep(0.05)
    assert plugin.invoke_requests == []


@pytest.mark.asyncio
@pytest.mark.parametrize("raw_body", ["not json", "[1, 2, 3]", '{"success": false}'])
async def test_malformed_invoke_response(serve_plugin, client, raw_body):
    """Test bodies that break the protocol raise a protocol error."""
    plugin = FakePlugin("agentic-tools")
    plugin.raw_body = raw_body
    identity = await serve_plugin(plugin)

    with pytest.raises(PluginProtocolError):
        await client.invoke(identity, InvocationRequest(tool="echo"))

    assert len(plugin.invoke_requests) == 1


@pytest.mark.asyncio
async def test_malformed_describe_response(serve_plugin, client):
    plugin = FakePlugin("agentic-tools")
    plugin.raw_body = '{"name": "agentic-tools", "version": "1", "tools": [{"name": "x"}]}'
    identity = await serve_plugin(plugin)

    with pytest.raises(PluginProtocolError):
        await client.describe(identity)


@pytest.mark.asyncio
async def test_check_ready(serve_plugin, client, unreachable_identity):
    plugin = FakePlugin("agentic-tools")
    identity = await serve_plugin(plugin)

    assert await client.check_ready(identity)
    plugin.ready = False
    assert not await client.check_ready(identity)
    assert not await client.check_ready(unreachable_identity)


def test_timeout_precedence():
    """Test override beats identity setting beats client default."""
    endpoint_client = PluginEndpointClient(describe_timeout=5.0, invoke_timeout=120.0)
    plain = PluginIdentity(name="p", url="http://p:8080")
    tuned = PluginIdentity(name="t", url="http://t:8080", invokeTimeout=30)

    assert endpoint_client.timeout_for(plain, Hook.DESCRIBE) == 5.0
    assert endpoint_client.timeout_for(plain, Hook.INVOKE) == 120.0
    assert endpoint_client.timeout_for(tuned, Hook.INVOKE) == 30
    assert endpoint_client.timeout_for(tuned, Hook.INVOKE, override=1.5) == 1.5


def test_backoff_delay_is_capped():
    endpoint_client = PluginEndpointClient(backoff_base=0.5, backoff_max=3.0)
    assert [endpoint_client.backoff_delay(a) for a in (1, 2, 3, 4, 5)] == [0.5, 1.0, 2.0, 3.0, 3.0]


def test_max_retries_must_be_positive():
    with pytest.raises(ValueError):
        PluginEndpointClient(max_retries=0)


@pytest.mark.asyncio
@pytest.mark.parametrize("hook", [Hook.DESCRIBE, Hook.INVOKE])
async def test_invalid_utf8_body_is_a_protocol_error(serve_plugin, client, hook):
    """Test undecodable bytes raise a protocol error rather than escaping."""
    plugin = FakePlugin("garbled-tools")
    plugin.raw_bytes = b'{"name": "\xff\xfe"}'
    identity = await serve_plugin(plugin)

    with pytest.raises(PluginProtocolError):
        if hook == Hook.DESCRIBE:
            await client.describe(identity)
        else:
            await client.invoke(identity, InvocationRequest(tool="echo"))


@pytest.mark.asyncio
async def test_invoke_gateway_status_is_not_retried(serve_plugin, client):
    """Test a 503 on invoke is surfaced without resending the tool call."""
    plugin = FakePlugin("agentic-tools")
    plugin.fail_statuses = [503, 503, 503]
    identity = await serve_plugin(plugin)

    with pytest.raises(PluginTransportError) as exc_info:
        await client.invoke(identity, InvocationRequest(tool="echo"))

    assert exc_info.value.status == 503
    assert len(plugin.invoke_requests) == 1


@pytest.mark.asyncio
async def test_invoke_connect_failure_is_retried(client, unreachable_identity):
    with pytest.raises(PluginTransportError) as exc_info:
        await client.invoke(unreachable_identity, InvocationRequest(tool="echo"))

    assert exc_info.value.attempts == client.max_retries


def test_retry_policy_per_hook():
    """Test invoke only retries failures where the plugin never saw the request."""
    connect_error = PluginTransportError(
        "p", "http://p:8080", "refused",
        cause=aiohttp.ClientConnectorError(mock.Mock(), OSError(111, "refused"))
    )
    gateway_error = PluginTransportError("p", "http://p:8080", "bad gateway", status=502)
    reset_error = PluginTransportError(
        "p", "http://p:8080", "reset", cause=aiohttp.ServerDisconnectedError()
    )
    timeout_error = PluginTimeoutError("p", "http://p:8080", "invoke", 1.0)
    teapot_error = PluginTransportError("p", "http://p:8080", "teapot", status=418)

    retryable = PluginEndpointClient.is_retryable
    assert retryable(connect_error, Hook.INVOKE)
    assert not retryable(gateway_error, Hook.INVOKE)
    assert not retryable(reset_error, Hook.INVOKE)
    assert not retryable(timeout_error, Hook.INVOKE)

    assert retryable(connect_error, Hook.DESCRIBE)
    assert retryable(gateway_error, Hook.DESCRIBE)
    assert retryable(reset_error, Hook.DESCRIBE)
    assert retryable(timeout_error, Hook.DESCRIBE)
    assert not retryable(teapot_error, Hook.DESCRIBE)
