import asyncio
import io
import logging
import os
import socket

import httpx
import pytest

from decoy.config import Settings
from decoy.filler import generate_filler
from decoy.server import (
    EXIT_FAILURE,
    EXIT_OK,
    BindError,
    ConsoleShutdown,
    Outcome,
    bind_socket,
    build_server,
    race,
    run,
    serve_until_shutdown,
)
from decoy.web import create_app


def occupied_port():
    holder = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    holder.bind(("127.0.0.1", 0))
    holder.listen(1)
    return holder, holder.getsockname()[1]


class BrokenStream:
    def readline(self):
        raise OSError("stdin gone")


class InterruptedServer:
    """Stands in for uvicorn when Ctrl-C lands: the interrupt surfaces from serving."""

    started = True

    def __init__(self, wait_for_exit):
        self.wait_for_exit = wait_for_exit
        self.should_exit = False

    async def serve(self, sockets=None):
        while self.wait_for_exit and not self.should_exit:
            await asyncio.sleep(0.01)
        raise KeyboardInterrupt


async def status_line(port, target):
    reader, writer = await asyncio.open_connection("127.0.0.1", port)
    writer.write(f"GET {target} HTTP/1.1\r\nHost: x\r\nConnection: close\r\n\r\n".encode())
    await writer.drain()
    response = await reader.read()
    writer.close()
    await writer.wait_closed()
    return response.split(b"\r\n", 1)[0]


def test_bind_socket_listens():
    sock = bind_socket("127.0.0.1", 0)
    try:
        assert sock.getsockname()[1] > 0
    finally:
        sock.close()


def test_bind_socket_in_use():
    holder, port = occupied_port()
    try:
        with pytest.raises(BindError):
            bind_socket("127.0.0.1", port)
    finally:
        holder.close()


def test_run_bind_failure_is_fatal(caplog, capsys):
    holder, port = occupied_port()
    try:
        code = run(Settings(host="127.0.0.1", port=port), "", console=io.StringIO(""))
    finally:
        holder.close()
    assert code == EXIT_FAILURE
    assert "Cannot listen" in caplog.text
    assert "Listening on" not in capsys.readouterr().out


def test_console_line_fires_shutdown():
    asyncio.run(asyncio.wait_for(ConsoleShutdown(io.StringIO("\n")).wait(), timeout=5))


def test_console_end_of_input_fires_shutdown():
    asyncio.run(asyncio.wait_for(ConsoleShutdown(io.StringIO("")).wait(), timeout=5))


def test_console_read_error_fires_shutdown(caplog):
    asyncio.run(asyncio.wait_for(ConsoleShutdown(BrokenStream()).wait(), timeout=5))
    assert "Console read failed" in caplog.text


def test_race_shutdown_wins():
    async def scenario():
        loop = asyncio.get_running_loop()
        serving, shutdown = loop.create_future(), loop.create_future()
        shutdown.set_result(None)
        outcome = await race(serving, shutdown)
        assert not serving.done()
        return outcome

    assert asyncio.run(scenario()) is Outcome.SHUTDOWN


def test_race_server_failure_wins():
    async def scenario():
        loop = asyncio.get_running_loop()
        serving, shutdown = loop.create_future(), loop.create_future()
        serving.set_exception(OSError("accept failed"))
        outcome = await race(serving, shutdown)
        assert not shutdown.done()
        return outcome

    assert asyncio.run(scenario()) is Outcome.SERVER_FAILED


def test_race_server_exit():
    async def scenario():
        loop = asyncio.get_running_loop()
        serving, shutdown = loop.create_future(), loop.create_future()
        serving.set_result(None)
        return await race(serving, shutdown)

    assert asyncio.run(scenario()) is Outcome.SERVER_EXITED


def test_serve_loop_failure(caplog):
    class FailingServer:
        started = False
        should_exit = False

        async def serve(self, sockets=None):
            raise OSError("accept failed")

    sock = bind_socket("127.0.0.1", 0)
    read_fd, write_fd = os.pipe()
    reader, writer = os.fdopen(read_fd), os.fdopen(write_fd, "w")
    try:
        code = asyncio.run(serve_until_shutdown(FailingServer(), sock, ConsoleShutdown(reader)))
    finally:
        writer.close()
        reader.close()
    assert code == EXIT_FAILURE
    assert "Server error: accept failed" in caplog.text
    assert sock.fileno() == -1


def test_console_line_stops_serving(capsys):
    sock = bind_socket("127.0.0.1", 0)
    port = sock.getsockname()[1]
    settings = Settings(host="127.0.0.1", port=port, graceful_timeout=1)
    filler = generate_filler(2048)
    server = build_server(create_app(filler), settings)
    read_fd, write_fd = os.pipe()
    reader, writer = os.fdopen(read_fd), os.fdopen(write_fd, "w")

    async def scenario():
        serving = asyncio.create_task(serve_until_shutdown(server, sock, ConsoleShutdown(reader)))
        async with httpx.AsyncClient(base_url=f"http://127.0.0.1:{port}", trust_env=False) as client:
            landing = await client.get("/")
            missing = await client.get("/404-missing")
        raw = [await status_line(port, target) for target in ("/", "http://x/", "http://x/nope")]
        writer.write("\n")
        writer.flush()
        return landing, missing, raw, await asyncio.wait_for(serving, timeout=10)

    try:
        landing, missing, raw, code = asyncio.run(scenario())
    finally:
        writer.close()
        reader.close()

    assert landing.status_code == 200
    assert "</body>" in landing.text
    assert missing.status_code == 404
    assert missing.content == b""
    assert raw == [b"HTTP/1.1 200 OK", b"HTTP/1.1 200 OK", b"HTTP/1.1 404 Not Found"]
    assert code == EXIT_OK
    assert "Shutting down..." in capsys.readouterr().out
    assert sock.fileno() == -1


def test_interrupt_after_console_shutdown_says_goodbye_once(monkeypatch, capsys):
    monkeypatch.setattr("decoy.server.build_server", lambda app, settings: InterruptedServer(True))
    code = run(Settings(host="127.0.0.1", port=0), "", console=io.StringIO(""))
    out = capsys.readouterr().out
    assert code == EXIT_OK
    assert out.count("Shutting down") == 1
    assert "Shutting down..." in out


def test_interrupt_without_console_line(monkeypatch, capsys):
    monkeypatch.setattr("decoy.server.build_server", lambda app, settings: InterruptedServer(False))
    read_fd, write_fd = os.pipe()
    reader, writer = os.fdopen(read_fd), os.fdopen(write_fd, "w")
    try:
        code = run(Settings(host="127.0.0.1", port=0), "", console=reader)
    finally:
        writer.close()
        reader.close()
    out = capsys.readouterr().out
    assert code == EXIT_OK
    assert out.count("Shutting down") == 1
    assert out.endswith("Shutting down.\n")
