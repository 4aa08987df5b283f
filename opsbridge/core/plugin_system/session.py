"""Session state threading across sequential tool invocations.

A session is not stored anywhere in the core. It is the state value a
caller carries from one InvocationResult into the next InvocationRequest.
The core never looks inside that value; it belongs to the plugin(s) that
produced it.
"""

import asyncio
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional

from ..exceptions import SessionMismatchError
from ..protocol.models import InvocationRequest, InvocationResult
from opsbridge.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)

InvokeCallable = Callable[[InvocationRequest], Awaitable[InvocationResult]]


def new_session_id() -> str:
    """Generate a fresh opaque session identifier."""
    return str(uuid.uuid4())


def carry_forward(result: InvocationResult, next_request: InvocationRequest) -> InvocationRequest:
    """Inject the state returned by call N into the request for call N+1.

    Args:
        result: Result of the previous call in the session
        next_request: Request for the next call

    Returns:
        InvocationRequest: Copy of next_request whose state is result.state

    Raises:
        SessionMismatchError: If the two belong to different sessions
    """
    if result.session_id != next_request.session_id:
        raise SessionMismatchError(result.session_id, next_request.session_id)
    return next_request.model_copy(update={"state": result.state})


class SessionThreader:
    """Caller-held helper that threads state through one session.

    Usage:
        session = SessionThreader(manager.invoke_request)
        await session.call("kubectl_get", {"resource": "pods"})
        await session.call("kubectl_describe", {"resource": "pod/web-0"})

    Calls on the same threader run one at a time: call N+1 is not built
    until call N has produced its result.
    """

    def __init__(
        self,
        invoke: InvokeCallable,
        session_id: Optional[str] = None,
        initial_state: Optional[Dict[str, Any]] = None
    ) -> None:
        self._invoke = invoke
        self.session_id = session_id or new_session_id()
        self._state: Dict[str, Any] = dict(initial_state or {})
        self._lock = asyncio.Lock()
        self.call_count = 0
        self.last_result: Optional[InvocationResult] = None

    @property
    def state(self) -> Dict[str, Any]:
        """State that the next call will carry."""
        return self._state

    async def call(self, tool: str, arguments: Optional[Dict[str, Any]] = None) -> InvocationResult:
        """Invoke a tool within this session and keep its returned state."""
        async with self._lock:
            request = InvocationRequest(
                session_id=self.session_id,
                tool=tool,
                arguments=arguments or {},
            )
            if self.last_result is not None:
                request = carry_forward(self.last_result, request)
            else:
                request = request.model_copy(update={"state": self._state})

            result = await self._invoke(request)
            # results from the core always echo our session id; plugins may not
            if result.session_id != self.session_id:
                result = result.model_copy(update={"session_id": self.session_id})

            self.last_result = result
            self._state = result.state
            self.call_count += 1

            logger.debug(
                "Session call completed",
                session_id=self.session_id,
                tool=tool,
                call=self.call_count,
                success=result.success
            )
            return result
