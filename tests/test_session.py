"""Tests for session state threading."""

import asyncio
from typing import List

import pytest

from opsbridge.core.exceptions import SessionMismatchError
from opsbridge.core.plugin_system.session import SessionThreader, carry_forward
from opsbridge.core.protocol.models import InvocationRequest, InvocationResult


class RecordingInvoker:
    """Invoke callable that counts in state and records every request."""

    def __init__(self, delay: float = 0.0):
        self.requests: List[InvocationRequest] = []
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0

    async def __call__(self, request: InvocationRequest) -> InvocationResult:
        self.requests.append(request)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if request.tool == "fail":
                return InvocationResult.failure(
                    "TOOL_EXECUTION_FAILED", "boom",
                    state=request.state, session_id=request.session_id
                )
            value = request.state.get("counter", 0) + 1
            return InvocationResult(
                session_id=request.session_id,
                success=True,
                result=value,
                state={**request.state, "counter": value},
            )
        finally:
            self.in_flight -= 1


def test_carry_forward():
    result = InvocationResult(session_id="s-1", success=True, result=1, state={"counter": 1})
    next_request = InvocationRequest(session_id="s-1", tool="count", state={"ignored": True})

    carried = carry_forward(result, next_request)

    assert carried.state == {"counter": 1}
    assert carried.tool == "count"
    assert next_request.state == {"ignored": True}


def test_carry_forward_rejects_other_session():
    result = InvocationResult(session_id="s-1", success=True, result=1)
    with pytest.raises(SessionMismatchError):
        carry_forward(result, InvocationRequest(session_id="s-2", tool="count"))


@pytest.mark.asyncio
async def test_three_calls_thread_state():
    """Test each call sees exactly the state the previous one returned."""
    invoker = RecordingInvoker()
    session = SessionThreader(invoker, session_id="s-1")

    results = [await session.call("count") for _ in range(3)]

    assert [r.result for r in results] == [1, 2, 3]
    assert [r.state.get("counter", 0) for r in invoker.requests] == [0, 1, 2]
    assert all(r.session_id == "s-1" for r in invoker.requests)
    assert session.state == {"counter": 3}
    assert session.call_count == 3


@pytest.mark.asyncio
async def test_failed_call_keeps_previous_state():
    invoker = RecordingInvoker()
    session = SessionThreader(invoker, initial_state={"counter": 5})

    await session.call("fail")
    result = await session.call("count")

    assert result.result == 6
    assert invoker.requests[1].state == {"counter": 5}


@pytest.mark.asyncio
async def test_calls_on_one_session_are_serialized():
    invoker = RecordingInvoker(delay=0.02)
    session = SessionThreader(invoker)

    await asyncio.gather(*(session.call("count") for _ in range(4)))

    assert invoker.max_in_flight == 1
    assert session.state == {"counter": 4}
