"""
uvicorn wrapper that runs the discovery API inside the engine's event loop.

The listening socket is bound here rather than by uvicorn so that a busy
discovery port can be detected and the next port tried.
"""

import asyncio
import errno
import logging
import socket
import sys

import uvicorn
from fastapi import FastAPI

from config import API_HOST, MAX_PORT_ATTEMPTS
from discovery.errors import DiscoveryStartupError

logger = logging.getLogger(__name__)

_ADDR_IN_USE = {errno.EADDRINUSE, getattr(errno, "WSAEADDRINUSE", errno.EADDRINUSE)}
_STARTUP_TIMEOUT = 5.0


def bind_socket(host: str, port: int, attempts: int = MAX_PORT_ATTEMPTS) -> socket.socket:
    """Bind a listening TCP socket, moving up one port while in use."""
    for offset in range(attempts):
        candidate = port + offset
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        if sys.platform != "win32":
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, candidate))
        except OSError as e:
            sock.close()
            if e.errno not in _ADDR_IN_USE:
                raise DiscoveryStartupError(f"Cannot bind HTTP port {candidate}: {e}") from e
            logger.info(f"Port {candidate} in use, trying {candidate + 1}...")
            continue
        sock.listen(128)
        sock.setblocking(False)
        return sock

    raise DiscoveryStartupError(
        f"No free HTTP port in {port}-{port + attempts - 1}"
    )


class APIServer:
    """Serves a FastAPI app on the first free port from `port` upward."""

    def __init__(self, app: FastAPI, host: str = API_HOST) -> None:
        self.app = app
        self.host = host
        self._server: uvicorn.Server | None = None
        self._task: asyncio.Task | None = None
        self._port = 0

    @property
    def port(self) -> int:
        return self._port

    async def start(self, port: int) -> int:
        """Start serving; returns the port actually bound."""
        sock = bind_socket(self.host, port)
        self._port = sock.getsockname()[1]

        config = uvicorn.Config(
            self.app,
            log_level="warning",
            access_log=False,
            lifespan="off",
        )
        self._server = uvicorn.Server(config)
        self._task = asyncio.create_task(self._server.serve(sockets=[sock]))

        loop = asyncio.get_running_loop()
        deadline = loop.time() + _STARTUP_TIMEOUT
        while not self._server.started:
            if self._task.done():
                sock.close()
                raise DiscoveryStartupError(
                    f"HTTP server exited during startup: {self._task.exception()!r}"
                )
            if loop.time() > deadline:
                await self.stop()
                raise DiscoveryStartupError("HTTP server did not start in time")
            await asyncio.sleep(0.05)

        logger.info(f"HTTP server listening on port {self._port}")
        return self._port

    async def stop(self) -> None:
        if self._server is not None:
            self._server.should_exit = True
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._server = None
        self._task = None
