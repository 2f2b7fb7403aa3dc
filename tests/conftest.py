"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
import socket
import tempfile
from collections.abc import AsyncIterator, Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

import aiohttp
import pytest
import pytest_asyncio
from aiohttp import web

from wait_on.core.config import WaitOnOptions
from wait_on.core.resources import ResourceDescriptor
from wait_on.types.models import ProbeResult


class ScriptedProbe:
    """Probe double that replays scripted values per resource.

    Each call pops the next value for the resource; the last value repeats
    once the script runs out. Unknown resources report -1.
    """

    def __init__(
        self,
        script: Mapping[str, Sequence[int]],
        *,
        delay: float = 0.0,
        on_call: Callable[[ResourceDescriptor], None] | None = None,
    ) -> None:
        self._script: dict[str, list[int]] = {resource: list(values) for resource, values in script.items()}
        self.delay: float = delay
        self.on_call: Callable[[ResourceDescriptor], None] | None = on_call
        self.calls: list[str] = []
        self.in_flight: int = 0
        self.max_in_flight: int = 0

    async def __call__(self, descriptor: ResourceDescriptor, options: WaitOnOptions) -> ProbeResult:
        self.calls.append(descriptor.resource)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.on_call is not None:
                self.on_call(descriptor)
            if self.delay:
                await asyncio.sleep(self.delay)
            values = self._script.get(descriptor.resource, [-1])
            value = values.pop(0) if len(values) > 1 else values[0]
            return ProbeResult(value=value, data={"call": len(self.calls)})
        finally:
            self.in_flight -= 1

    def call_count(self, resource: str) -> int:
        return self.calls.count(resource)


class ManualClock:
    """Clock that only moves when told to, so tick times are exact."""

    def __init__(self, start: float = 0.0) -> None:
        self.now: float = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def scripted_probe() -> type[ScriptedProbe]:
    """Provide the scripted probe class."""
    return ScriptedProbe


@pytest.fixture
def manual_clock() -> ManualClock:
    """Provide a clock frozen at zero."""
    return ManualClock()


@pytest.fixture
def free_tcp_port() -> int:
    """Return a localhost TCP port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        port: int = sock.getsockname()[1]
    return port


@pytest.fixture
def short_tmp_path() -> Iterator[Path]:
    """Temporary directory with a short path, usable for Unix socket files."""
    with tempfile.TemporaryDirectory(prefix="wo-", dir="/tmp") as directory:
        yield Path(directory)


@dataclass
class RecordedServer:
    """Handle to a running aiohttp test server."""

    base_url: str
    requests: list[tuple[str, str]] = field(default_factory=list)

    def url(self, path: str = "/", *, scheme: str = "http") -> str:
        return f"{scheme}{self.base_url.removeprefix('http')}{path}"


SIGNATURE_KEY_ID = "deploy"
BASIC_AUTH = aiohttp.BasicAuth("ci", "s3cret")


def build_test_app(requests: list[tuple[str, str]]) -> web.Application:
    """Build an app exposing the endpoints the HTTP probe tests rely on."""

    async def record(request: web.Request) -> None:
        requests.append((request.method, request.path))

    async def ok(request: web.Request) -> web.Response:
        await record(request)
        return web.Response(text="ok")

    async def status(request: web.Request) -> web.Response:
        await record(request)
        return web.Response(status=int(request.match_info["code"]))

    async def redirect(request: web.Request) -> web.Response:
        await record(request)
        raise web.HTTPFound("/")

    async def get_only(request: web.Request) -> web.Response:
        await record(request)
        if request.method == "HEAD":
            return web.Response(status=405)
        return web.Response(text="ok")

    async def basic_auth(request: web.Request) -> web.Response:
        await record(request)
        if request.headers.get("Authorization") != BASIC_AUTH.encode():
            return web.Response(status=401)
        return web.Response(text="ok")

    async def signed(request: web.Request) -> web.Response:
        await record(request)
        authorization = request.headers.get("Authorization", "")
        if "Date" not in request.headers or not authorization.startswith(f'Signature keyId="{SIGNATURE_KEY_ID}"'):
            return web.Response(status=401)
        return web.Response(text="ok")

    async def custom_header(request: web.Request) -> web.Response:
        await record(request)
        if request.headers.get("X-Ready-Token") != "abc":
            return web.Response(status=403)
        return web.Response(text="ok")

    async def slow(request: web.Request) -> web.Response:
        await record(request)
        await asyncio.sleep(0.5)
        return web.Response(text="late")

    app = web.Application()
    _ = app.router.add_route("*", "/", ok)
    _ = app.router.add_route("*", "/status/{code}", status)
    _ = app.router.add_route("*", "/redirect", redirect)
    _ = app.router.add_route("*", "/get-only", get_only)
    _ = app.router.add_route("*", "/auth", basic_auth)
    _ = app.router.add_route("*", "/signed", signed)
    _ = app.router.add_route("*", "/header", custom_header)
    _ = app.router.add_route("*", "/slow", slow)
    return app


@pytest_asyncio.fixture
async def http_server(free_tcp_port: int) -> AsyncIterator[RecordedServer]:
    """Serve the test app over TCP on 127.0.0.1."""
    server = RecordedServer(base_url=f"http://127.0.0.1:{free_tcp_port}")
    runner = web.AppRunner(build_test_app(server.requests))
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", free_tcp_port)
    await site.start()
    try:
        yield server
    finally:
        await runner.cleanup()


@pytest_asyncio.fixture
async def unix_http_server(short_tmp_path: Path) -> AsyncIterator[tuple[Path, RecordedServer]]:
    """Serve the test app over a Unix domain socket."""
    socket_path = short_tmp_path / "http.sock"
    server = RecordedServer(base_url=f"http://unix:{socket_path}:")
    runner = web.AppRunner(build_test_app(server.requests))
    await runner.setup()
    site = web.UnixSite(runner, str(socket_path))
    await site.start()
    try:
        yield socket_path, server
    finally:
        await runner.cleanup()
