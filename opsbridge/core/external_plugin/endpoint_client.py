"""
Endpoint client for communicating with plugins over HTTP.

Every plugin exposes a single ``POST /execute`` endpoint dispatching on a
hook discriminator (``describe`` or ``invoke``) plus a ``GET /ready``
readiness check. This client performs one request/response round trip per
call with a bounded timeout, retrying transient connection failures with
exponential backoff. An invoke is only resent when the connection could not
be opened. Application failures (``success: false``) are valid outcomes and
are never retried.
"""

import asyncio
import json
from typing import Any, Awaitable, Dict, Optional, TypeVar, Union

import aiohttp
from pydantic import ValidationError

from ..exceptions import (
    PluginCancelledError,
    PluginCommunicationError,
    PluginProtocolError,
    PluginTimeoutError,
    PluginTransportError,
)
from ..protocol.constants import (
    CONTENT_TYPE_JSON,
    DEFAULT_BACKOFF_BASE,
    DEFAULT_BACKOFF_MAX,
    DEFAULT_DESCRIBE_TIMEOUT,
    DEFAULT_INVOKE_TIMEOUT,
    DEFAULT_MAX_RETRIES,
    DEFAULT_READY_TIMEOUT,
    EXECUTE_ENDPOINT,
    READY_ENDPOINT,
    READY_STATUS_CODES,
    RETRYABLE_STATUS_CODES,
    Hook,
)
from ..protocol.models import (
    DescribeResponse,
    ExecuteRequest,
    InvocationRequest,
    InvocationResult,
    InvokePayload,
    PluginIdentity,
)
from opsbridge.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)

T = TypeVar("T")


class PluginEndpointClient:
    """HTTP client shared by all plugin round trips."""

    def __init__(
        self,
        describe_timeout: float = DEFAULT_DESCRIBE_TIMEOUT,
        invoke_timeout: float = DEFAULT_INVOKE_TIMEOUT,
        ready_timeout: float = DEFAULT_READY_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        backoff_base: float = DEFAULT_BACKOFF_BASE,
        backoff_max: float = DEFAULT_BACKOFF_MAX,
        session: Optional[aiohttp.ClientSession] = None
    ):
        """Initialize the endpoint client.

        Args:
            describe_timeout: Deadline in seconds for describe calls
            invoke_timeout: Deadline in seconds for invoke calls
            ready_timeout: Deadline in seconds for a single readiness check
            max_retries: Total attempts for transient connection failures
            backoff_base: First retry delay in seconds, doubled per attempt
            backoff_max: Upper bound for a single retry delay
            session: Optional externally managed aiohttp session
        """
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.describe_timeout = describe_timeout
        self.invoke_timeout = invoke_timeout
        self.ready_timeout = ready_timeout
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "PluginEndpointClient":
        await self._get_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    def timeout_for(
        self,
        identity: PluginIdentity,
        hook: Hook,
        override: Optional[float] = None
    ) -> float:
        """Resolve the effective deadline for a call.

        An explicit override wins, then the identity's own setting, then the
        client default for the hook.
        """
        if override is not None:
            return override
        if hook == Hook.DESCRIBE:
            return identity.describe_timeout or self.describe_timeout
        return identity.invoke_timeout or self.invoke_timeout

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retrying after the given (1-based) attempt."""
        return min(self.backoff_base * 2 ** (attempt - 1), self.backoff_max)

    @staticmethod
    def is_retryable(error: PluginCommunicationError, hook: Hook) -> bool:
        """Whether a failed attempt may be sent again.

        describe is idempotent, so timeouts, connection failures and
        gateway statuses are retried. invoke may have side effects and is
        only retried when the connection was never established, i.e. the
        plugin cannot have seen the request.
        """
        if hook == Hook.INVOKE:
            return (
                isinstance(error, PluginTransportError)
                and isinstance(error.cause, aiohttp.ClientConnectorError)
            )
        if isinstance(error, PluginTimeoutError):
            return True
        if isinstance(error, PluginTransportError):
            return error.status is None or error.status in RETRYABLE_STATUS_CODES
        return False

    @staticmethod
    def _address(identity: PluginIdentity) -> str:
        if not identity.is_resolved:
            raise PluginTransportError(
                identity.name,
                None,
                "plugin address has not been resolved by the deployment layer"
            )
        return identity.url

    async def send(
        self,
        identity: PluginIdentity,
        hook: Union[Hook, str],
        payload: Optional[Union[InvokePayload, Dict[str, Any]]] = None,
        session_id: Optional[str] = None,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> Dict[str, Any]:
        """Perform one hook round trip against a plugin.

        Args:
            identity: Target plugin
            hook: Protocol hook to call
            payload: Invoke payload (ignored for describe)
            session_id: Session identifier for invoke calls
            timeout: Optional per-call deadline override in seconds
            cancel_event: Optional event that aborts the call when set

        Returns:
            Dict[str, Any]: Decoded JSON response body

        Raises:
            PluginTransportError: Plugin unreachable after retries
            PluginTimeoutError: Deadline exceeded
            PluginCancelledError: cancel_event was set
            PluginProtocolError: Response body is not a JSON object
        """
        hook = Hook(hook)
        url = f"{self._address(identity)}{EXECUTE_ENDPOINT}"
        envelope = ExecuteRequest(
            hook=hook,
            session_id=session_id if hook == Hook.INVOKE else None,
            payload=payload if hook == Hook.INVOKE else None,
        )
        body = envelope.to_wire()
        effective_timeout = self.timeout_for(identity, hook, timeout)

        last_error: Optional[PluginCommunicationError] = None
        for attempt in range(1, self.max_retries + 1):
            logger.debug(
                "Calling plugin hook",
                plugin=identity.name,
                hook=hook.value,
                session_id=session_id,
                attempt=attempt,
                timeout=effective_timeout
            )
            try:
                return await self._run_cancellable(
                    self._post_once(identity, hook, url, body, effective_timeout),
                    identity,
                    hook,
                    cancel_event
                )
            except (PluginTimeoutError, PluginTransportError) as e:
                if not self.is_retryable(e, hook):
                    raise
                last_error = e

            if attempt < self.max_retries:
                delay = self.backoff_delay(attempt)
                logger.warning(
                    "Plugin call failed, retrying",
                    plugin=identity.name,
                    hook=hook.value,
                    attempt=attempt,
                    max_attempts=self.max_retries,
                    delay_seconds=delay,
                    error=str(last_error)
                )
                await self._run_cancellable(asyncio.sleep(delay), identity, hook, cancel_event)

        if isinstance(last_error, PluginTransportError):
            last_error.attempts = self.max_retries
            last_error.details["attempts"] = self.max_retries
        raise last_error

    async def _post_once(
        self,
        identity: PluginIdentity,
        hook: Hook,
        url: str,
        body: Dict[str, Any],
        timeout: float
    ) -> Dict[str, Any]:
        session = await self._get_session()
        try:
            async with session.post(
                url,
                json=body,
                headers={"Accept": CONTENT_TYPE_JSON},
                timeout=aiohttp.ClientTimeout(total=timeout)
            ) as response:
                if response.status >= 400:
                    text = (await response.read()).decode("utf-8", errors="replace")
                    raise PluginTransportError(
                        identity.name,
                        identity.url,
                        f"plugin returned HTTP {response.status}: {text[:200]}",
                        status=response.status
                    )
                raw = await response.read()
        except asyncio.TimeoutError as e:
            raise PluginTimeoutError(identity.name, identity.url, hook.value, timeout) from e
        except aiohttp.ClientError as e:
            raise PluginTransportError(
                identity.name, identity.url, str(e) or type(e).__name__, cause=e
            ) from e

        # UnicodeDecodeError is a ValueError
        try:
            data = json.loads(raw.decode("utf-8"))
        except ValueError as e:
            raise PluginProtocolError(
                identity.name,
                identity.url,
                f"invalid JSON body: {e}",
                raw[:200].decode("utf-8", errors="replace")
            ) from e
        if not isinstance(data, dict):
            raise PluginProtocolError(
                identity.name, identity.url, "response body must be a JSON object", data
            )
        return data

    async def _run_cancellable(
        self,
        operation: Awaitable[T],
        identity: PluginIdentity,
        hook: Hook,
        cancel_event: Optional[asyncio.Event]
    ) -> T:
        """Await an operation, aborting it if the caller sets cancel_event."""
        if cancel_event is None:
            return await operation

        operation_task = asyncio.ensure_future(operation)
        if cancel_event.is_set():
            operation_task.cancel()
            raise PluginCancelledError(identity.name, identity.url, hook.value)

        cancel_task = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait(
                {operation_task, cancel_task},
                return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            operation_task.cancel()
            cancel_task.cancel()
            raise
        cancel_task.cancel()

        if operation_task in done:
            return operation_task.result()

        operation_task.cancel()
        await asyncio.wait({operation_task})
        logger.info("Plugin call cancelled by caller", plugin=identity.name, hook=hook.value)
        raise PluginCancelledError(identity.name, identity.url, hook.value)

    async def describe(
        self,
        identity: PluginIdentity,
        timeout: Optional[float] = None
    ) -> DescribeResponse:
        """Call the describe hook and validate the tool definitions.

        Raises:
            PluginProtocolError: If the response is not a valid describe response
        """
        data = await self.send(identity, Hook.DESCRIBE, timeout=timeout)
        try:
            response = DescribeResponse.model_validate(data)
        except ValidationError as e:
            raise PluginProtocolError(
                identity.name, identity.url, f"invalid describe response: {e}", data
            ) from e

        logger.debug(
            "Plugin describe response",
            plugin=identity.name,
            version=response.version,
            tool_count=len(response.tools)
        )
        return response

    async def invoke(
        self,
        identity: PluginIdentity,
        request: InvocationRequest,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> InvocationResult:
        """Call the invoke hook for one tool.

        A plugin-reported failure is returned as an unsuccessful result. If the
        plugin omits ``state`` the request state is carried over unchanged.

        Raises:
            PluginCommunicationError: On transport, timeout, cancellation or
                protocol failures
        """
        envelope = request.to_execute_request()
        data = await self.send(
            identity,
            Hook.INVOKE,
            payload=envelope.payload,
            session_id=request.session_id,
            timeout=timeout,
            cancel_event=cancel_event
        )
        if data.get("state") is None:
            data["state"] = dict(request.state)
        data.setdefault("sessionId", request.session_id)

        try:
            result = InvocationResult.model_validate(data)
        except ValidationError as e:
            raise PluginProtocolError(
                identity.name, identity.url, f"invalid invoke response: {e}", data
            ) from e

        logger.debug(
            "Plugin invoke response",
            plugin=identity.name,
            tool=request.tool,
            session_id=request.session_id,
            success=result.success
        )
        return result

    async def check_ready(self, identity: PluginIdentity) -> bool:
        """Check a plugin's readiness endpoint.

        Returns:
            bool: True if the plugin answered with a ready status, False otherwise
        """
        if not identity.is_resolved:
            return False
        session = await self._get_session()
        try:
            async with session.get(
                f"{identity.url}{READY_ENDPOINT}",
                timeout=aiohttp.ClientTimeout(total=self.ready_timeout)
            ) as response:
                return response.status in READY_STATUS_CODES
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug("Readiness check failed", plugin=identity.name, error=str(e))
            return False

    async def close(self) -> None:
        """Close the HTTP session if this client created it.

        Safe to call multiple times.
        """
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
