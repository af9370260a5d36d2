"""Client for the child's live-patch runtime service.

This module provides the RuntimeServiceClient that connects to the address
a child announces on its output, tracks the connection's liveness and turns
every live-patch attempt into a plain success/failure.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, final

import anyio
import anyio.abc
from anyio.streams.buffered import BufferedByteReceiveStream
from pydantic import ValidationError

from hotloop.exceptions import RuntimeServiceError
from hotloop.runtime._wire import (
    MAX_MESSAGE_BYTES,
    RuntimeMethod,
    RuntimeRequest,
    RuntimeResponse,
    encode,
    parse_announcement,
    split_address,
)
from hotloop.utils import get_default_logger

from ._models import ReloadResult

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

_PROTOCOL_ERRORS = (
    OSError,
    TimeoutError,
    ValidationError,
    RuntimeServiceError,
    anyio.EndOfStream,
    anyio.IncompleteRead,
    anyio.DelimiterNotFound,
    anyio.BrokenResourceError,
    anyio.ClosedResourceError,
)


@final
class RuntimeConnection:
    """A live connection to a child's runtime service.

    Holds the stream (session handle) and the execution-context identifier
    returned by the handshake. Implements the ReloadCapability protocol.
    """

    __slots__ = (
        "_alive",
        "_buffered",
        "_client",
        "_lock",
        "_next_id",
        "_stream",
        "address",
        "context_id",
    )

    def __init__(
        self,
        client: RuntimeServiceClient,
        address: str,
        stream: anyio.abc.ByteStream,
    ) -> None:
        """Initialize the connection.

        Args:
            client: The client that owns this connection.
            address: The announced service address.
            stream: Connected byte stream.
        """
        self._client = client
        self.address = address
        self.context_id: str | None = None
        self._stream = stream
        self._buffered = BufferedByteReceiveStream(stream)
        self._alive = True
        self._next_id = 1
        self._lock = anyio.Lock()

    @property
    def alive(self) -> bool:
        """Return False once the connection is disposed or broken."""
        return self._alive

    def mark_dead(self) -> None:
        """Record that the underlying channel can no longer be used."""
        self._alive = False

    async def request(
        self,
        method: RuntimeMethod,
        timeout: float,
    ) -> RuntimeResponse:
        """Send a request and wait for its response.

        Args:
            method: Runtime method to call.
            timeout: Seconds to wait for the round trip.

        Returns:
            The validated response.

        Raises:
            RuntimeServiceError: If the connection is dead or the response
                does not answer the request.
            TimeoutError: If the round trip exceeds ``timeout``.
        """
        if not self._alive:
            msg = "Runtime connection is not alive"
            raise RuntimeServiceError(msg, address=self.address)

        async with self._lock:
            request = RuntimeRequest(
                id=self._next_id, method=method, context=self.context_id
            )
            self._next_id += 1
            with anyio.fail_after(timeout):
                await self._stream.send(encode(request))
                raw = await self._buffered.receive_until(b"\n", MAX_MESSAGE_BYTES)

        response = RuntimeResponse.model_validate_json(raw)
        if response.id != request.id:
            msg = f"Response id {response.id} does not match request {request.id}"
            raise RuntimeServiceError(msg, address=self.address)
        return response

    async def reload(self) -> ReloadResult:
        """Ask the execution context to reload its code."""
        return await self._client.reload_result(self)

    async def aclose(self) -> None:
        """Close the stream. Tolerates an already broken channel."""
        self._alive = False
        try:
            await self._stream.aclose()
        except (OSError, anyio.BrokenResourceError, anyio.ClosedResourceError):
            pass


@dataclass(frozen=True, slots=True)
class ConnectionResult:
    """Outcome of a connection attempt.

    Attributes:
        connection: The connection, or None if the attempt failed.
        error: Failure reason, if any.
    """

    connection: RuntimeConnection | None
    error: str | None = None

    @property
    def ok(self) -> bool:
        """Return True if a connection was established."""
        return self.connection is not None


@final
class RuntimeServiceClient:
    """Connects to runtime services and performs live patches.

    Every failure mode (explicit failure, exception, timeout, no connection)
    collapses into an unsuccessful result; callers only branch on success.
    """

    __slots__ = ("_connect_timeout", "_logger", "_reload_timeout")

    def __init__(
        self,
        *,
        connect_timeout: float = 2.0,
        reload_timeout: float = 10.0,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            connect_timeout: Seconds allowed for connect plus handshake.
            reload_timeout: Seconds allowed for a reload round trip.
            logger: Structured logger. Uses a default stderr logger if None.
        """
        self._connect_timeout = connect_timeout
        self._reload_timeout = reload_timeout
        self._logger = logger or get_default_logger()

    @staticmethod
    def parse_announcement(line: str) -> str | None:
        """Return the runtime address announced on ``line``, if any."""
        return parse_announcement(line)

    async def connect(self, address: str) -> ConnectionResult:
        """Connect to an announced runtime service.

        Opens the stream and performs the context handshake. Never raises.

        Args:
            address: The announced ``tcp://host:port/`` address.

        Returns:
            A ConnectionResult carrying the connection or the failure reason.
        """
        try:
            host, port = split_address(address)
        except ValueError as e:
            return ConnectionResult(None, str(e))

        connection: RuntimeConnection | None = None
        try:
            with anyio.fail_after(self._connect_timeout):
                stream = await anyio.connect_tcp(host, port)
            connection = RuntimeConnection(self, address, stream)
            response = await connection.request("context", self._connect_timeout)
            if not response.success or response.context is None:
                msg = response.detail or "runtime service returned no context"
                raise RuntimeServiceError(msg, address=address)
        except _PROTOCOL_ERRORS as e:
            if connection is not None:
                await connection.aclose()
            reason = str(e) or type(e).__name__
            self._logger.debug("runtime_connect_failed", address=address, error=reason)
            return ConnectionResult(None, reason)

        connection.context_id = response.context
        self._logger.info(
            "runtime_connected", address=address, context=connection.context_id
        )
        return ConnectionResult(connection)

    async def reload_result(self, connection: RuntimeConnection | None) -> ReloadResult:
        """Send a reload request and describe the outcome.

        Args:
            connection: The tracked connection, or None if there is none.

        Returns:
            The reload result. ``success`` is True only on an explicit
            success flag from the service.
        """
        if connection is None or not connection.alive:
            return ReloadResult(success=False, detail="not connected")

        try:
            response = await connection.request("reload", self._reload_timeout)
        except _PROTOCOL_ERRORS as e:
            connection.mark_dead()
            reason = str(e) or type(e).__name__
            self._logger.debug("runtime_reload_error", error=reason)
            return ReloadResult(success=False, detail=reason)

        return ReloadResult(
            success=response.success is True,
            detail=response.detail,
            reloaded=response.reloaded,
        )

    async def reload(self, connection: RuntimeConnection | None) -> bool:
        """Perform a live patch and report success or failure."""
        result = await self.reload_result(connection)
        return result.success

    async def dispose(self, connection: RuntimeConnection | None) -> None:
        """Release a connection.

        Tolerates None, already disposed and broken connections.
        """
        if connection is None:
            return
        try:
            await connection.aclose()
        except Exception as e:  # noqa: BLE001
            self._logger.debug("runtime_dispose_error", error=str(e))
