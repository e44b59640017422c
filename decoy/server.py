from __future__ import annotations

import asyncio
import enum
import socket
import sys
import threading
from typing import Optional, TextIO

import uvicorn
from fastapi import FastAPI

from .config import Settings
from .log import get_logger
from .web import create_app

logger = get_logger("server")

EXIT_OK = 0
EXIT_FAILURE = 1


class BindError(RuntimeError):
    pass


class Outcome(enum.Enum):
    SHUTDOWN = "shutdown"
    SERVER_EXITED = "server-exited"
    SERVER_FAILED = "server-failed"


def bind_socket(host: str, port: int) -> socket.socket:
    """Open a listening TCP socket, raising ``BindError`` if the address is unusable."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        sock.bind((host, port))
        sock.listen(socket.SOMAXCONN)
    except OSError as exc:
        sock.close()
        raise BindError(f"Cannot listen on {host}:{port}: {exc}") from exc
    return sock


def build_server(app: FastAPI, settings: Settings) -> uvicorn.Server:
    config = uvicorn.Config(
        app,
        host=settings.host,
        port=settings.port,
        log_config=None,
        log_level=settings.log_level.lower(),
        timeout_graceful_shutdown=settings.graceful_timeout,
    )
    return uvicorn.Server(config)


class ConsoleShutdown:
    """One-shot shutdown signal fired by a line read from the console.

    The blocking read runs in a daemon thread so it never holds up the
    event loop. End of input and read errors fire the signal as well.
    """

    def __init__(self, stream: TextIO) -> None:
        self._stream = stream
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._fired: Optional[asyncio.Future] = None
        self._worker: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._worker is not None:
            raise RuntimeError("ConsoleShutdown already started")
        self._loop = asyncio.get_running_loop()
        self._fired = self._loop.create_future()
        self._worker = threading.Thread(target=self._read, name="console-shutdown", daemon=True)
        self._worker.start()

    @property
    def fired(self) -> bool:
        fired = self._fired
        return fired is not None and fired.done() and not fired.cancelled()

    async def wait(self) -> None:
        if self._fired is None:
            self.start()
        await self._fired

    def _read(self) -> None:
        try:
            self._stream.readline()
        except (OSError, ValueError) as exc:
            logger.warning("Console read failed (%s), shutting down", exc)
        try:
            self._loop.call_soon_threadsafe(self._fire)
        except RuntimeError:
            # loop already closed: the server side finished first
            logger.debug("Console input arrived after the event loop closed")

    def _fire(self) -> None:
        if not self._fired.done():
            self._fired.set_result(None)


async def race(serving: asyncio.Future, shutdown: asyncio.Future) -> Outcome:
    """Wait for whichever of serving and shutdown finishes first.

    The loser is left alone; nothing is cancelled here.
    """
    done, _ = await asyncio.wait({serving, shutdown}, return_when=asyncio.FIRST_COMPLETED)
    if serving in done:
        if serving.cancelled() or serving.exception() is not None:
            return Outcome.SERVER_FAILED
        return Outcome.SERVER_EXITED
    return Outcome.SHUTDOWN


def _failure(serving: asyncio.Future) -> BaseException | str:
    if serving.cancelled():
        return "serving task cancelled"
    return serving.exception()


async def serve_until_shutdown(
    server: uvicorn.Server, sock: socket.socket, console: ConsoleShutdown
) -> int:
    """Serve on ``sock`` until the console signal fires or serving stops.

    Returns the process exit code.
    """
    serving = asyncio.create_task(server.serve(sockets=[sock]), name="serving")
    shutdown = asyncio.create_task(console.wait(), name="console-shutdown")
    try:
        outcome = await race(serving, shutdown)
        if outcome is Outcome.SHUTDOWN:
            print("Shutting down...", flush=True)
            server.should_exit = True
            try:
                await serving
            except Exception as exc:
                logger.error("Server error: %s", exc)
                return EXIT_FAILURE
            return EXIT_OK
        if outcome is Outcome.SERVER_FAILED:
            logger.error("Server error: %s", _failure(serving))
            return EXIT_FAILURE
        if not server.started:
            logger.error("Server stopped before it started serving")
            return EXIT_FAILURE
        logger.info("Server stopped")
        return EXIT_OK
    finally:
        sock.close()


def run(settings: Settings, filler: str, console: Optional[TextIO] = None) -> int:
    """Bind, announce and serve until shutdown. Returns the exit code.

    ``console`` is the stream whose next line stops the server, stdin by
    default.
    """
    app = create_app(filler, settings.worker_threads)
    try:
        sock = bind_socket(settings.host, settings.port)
    except BindError as exc:
        logger.error("%s", exc)
        return EXIT_FAILURE

    host, port = sock.getsockname()[:2]
    print(f"Listening on http://{host}:{port}", flush=True)
    print("Press ENTER to exit", flush=True)

    server = build_server(app, settings)
    shutdown = ConsoleShutdown(sys.stdin if console is None else console)
    try:
        return asyncio.run(serve_until_shutdown(server, sock, shutdown))
    except KeyboardInterrupt:
        # the console branch has already said goodbye if it fired first
        if not shutdown.fired:
            print("\nShutting down.", flush=True)
        return EXIT_OK
