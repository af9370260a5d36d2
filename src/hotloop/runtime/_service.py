"""Child-side live-patch runtime service.

The service runs inside the supervised child next to the program itself.
It listens on a loopback TCP port, announces the address on stdout so the
supervisor can find it, and answers newline-delimited JSON requests.
"""

from __future__ import annotations

import os
import sys
from typing import TYPE_CHECKING, final

import anyio
import anyio.abc
from anyio.abc import SocketAttribute
from anyio.streams.buffered import BufferedByteReceiveStream
from pydantic import ValidationError

from hotloop._env import runtime_port_from_env
from hotloop.exceptions import ModuleReloadError
from hotloop.supervisor._filter import WatchFilter
from hotloop.utils import get_default_logger

from ._reloader import ModuleReloader
from ._wire import (
    MAX_MESSAGE_BYTES,
    RuntimeRequest,
    RuntimeResponse,
    encode,
    format_announcement,
)

if TYPE_CHECKING:
    from typing import TextIO

    from structlog.typing import FilteringBoundLogger

    from hotloop.config import ReloadConfig

LOOPBACK_HOST = "127.0.0.1"

_DISCONNECT_ERRORS = (
    anyio.EndOfStream,
    anyio.IncompleteRead,
    anyio.DelimiterNotFound,
    anyio.BrokenResourceError,
    anyio.ClosedResourceError,
    OSError,
)


def current_context_id() -> str:
    """Return the execution-context identifier of this process."""
    return f"process/{os.getpid()}"


@final
class RuntimeService:
    """Serves live-patch requests for the running process.

    Methods:
        context: Returns the execution-context identifier.
        reload: Re-imports changed modules; fails for a foreign context.
        ping: Liveness check.
    """

    __slots__ = (
        "_address",
        "_announce_stream",
        "_context_id",
        "_logger",
        "_port",
        "_reload_lock",
        "_reloader",
    )

    def __init__(
        self,
        config: ReloadConfig,
        *,
        port: int | None = None,
        reloader: ModuleReloader | None = None,
        announce_stream: TextIO | None = None,
        logger: FilteringBoundLogger | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            config: Supervisor configuration, for the watch filter.
            port: Port to bind. Uses ``HOTLOOP_RUNTIME_PORT`` (or any free
                port) if None.
            reloader: Module reloader. Built from config if None.
            announce_stream: Where the announcement is printed. Uses
                ``sys.stdout`` if None.
            logger: Structured logger. Uses a default stderr logger if None.
        """
        self._logger = logger or get_default_logger()
        self._port = port if port is not None else runtime_port_from_env()
        self._reloader = reloader or ModuleReloader(
            WatchFilter.from_config(config), logger=self._logger
        )
        self._announce_stream = announce_stream
        self._context_id = current_context_id()
        self._address: str | None = None
        self._reload_lock = anyio.Lock()

    @property
    def address(self) -> str | None:
        """Return the announced address once the service is listening."""
        return self._address

    @property
    def context_id(self) -> str:
        """Return the execution-context identifier."""
        return self._context_id

    async def serve(
        self,
        *,
        task_status: anyio.abc.TaskStatus[str | None] = anyio.TASK_STATUS_IGNORED,
    ) -> None:
        """Listen, announce and serve until cancelled.

        A port that cannot be bound is logged and the program keeps running
        without live patching; the supervisor then always restarts.
        """
        try:
            listener = await anyio.create_tcp_listener(
                local_host=LOOPBACK_HOST, local_port=self._port
            )
        except OSError as e:
            self._logger.warning(
                "runtime_service_unavailable", port=self._port, error=str(e)
            )
            task_status.started(None)
            return

        async with listener:
            port = listener.extra(SocketAttribute.local_port)
            line = format_announcement(LOOPBACK_HOST, port)
            self._address = line.rsplit(" ", 1)[-1]
            stream = self._announce_stream or sys.stdout
            print(line, file=stream, flush=True)  # noqa: T201
            task_status.started(self._address)
            await listener.serve(self._handle_client)

    async def _handle_client(self, stream: anyio.abc.SocketStream) -> None:
        async with stream:
            buffered = BufferedByteReceiveStream(stream)
            while True:
                try:
                    raw = await buffered.receive_until(b"\n", MAX_MESSAGE_BYTES)
                except _DISCONNECT_ERRORS:
                    return

                try:
                    request = RuntimeRequest.model_validate_json(raw)
                except ValidationError as e:
                    response = RuntimeResponse(
                        id=0, success=False, detail=f"Invalid request: {e}"
                    )
                else:
                    response = await self.handle(request)

                try:
                    await stream.send(encode(response))
                except _DISCONNECT_ERRORS:
                    return

    async def handle(self, request: RuntimeRequest) -> RuntimeResponse:
        """Answer a single request."""
        if request.method == "context":
            return RuntimeResponse(
                id=request.id, success=True, context=self._context_id
            )

        if request.context is not None and request.context != self._context_id:
            return RuntimeResponse(
                id=request.id,
                success=False,
                detail=f"Unknown execution context: {request.context}",
            )

        if request.method == "ping":
            return RuntimeResponse(id=request.id, success=True, context=self._context_id)

        async with self._reload_lock:
            try:
                reloaded = self._reloader.reload()
            except ModuleReloadError as e:
                return RuntimeResponse(
                    id=request.id, success=False, context=self._context_id, detail=str(e)
                )

        self._logger.info("live_patch_applied", modules=list(reloaded))
        return RuntimeResponse(
            id=request.id,
            success=True,
            context=self._context_id,
            reloaded=reloaded,
        )
