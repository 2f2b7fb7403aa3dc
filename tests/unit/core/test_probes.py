"""Unit tests for per-kind resource probes.

Probes run against real local resources: temporary files, asyncio TCP and
Unix servers, an aiohttp test app and short shell commands.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import hmac
import ssl
import time
from collections.abc import AsyncIterator
from pathlib import Path
from typing import TYPE_CHECKING

import psutil
import pytest
import pytest_asyncio

from wait_on.core.config import HttpSignature, WaitOnOptions, validate_options
from wait_on.core.probes import (
    NO_RESPONSE_STATUS,
    PROBES,
    probe_resource,
    signature_headers,
    ssl_option,
)
from wait_on.core.resources import ResourceKind, resolve_resource
from wait_on.types.models import ProbeResult

if TYPE_CHECKING:
    from conftest import RecordedServer


def make_options(resource: str, **overrides: object) -> WaitOnOptions:
    return validate_options({"resources": [resource], **overrides})


async def probe(resource: str, **overrides: object) -> ProbeResult:
    return await probe_resource(resolve_resource(resource), make_options(resource, **overrides))


async def _accept(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
    writer.close()


@pytest_asyncio.fixture
async def tcp_port() -> AsyncIterator[int]:
    """Listening TCP server on 127.0.0.1."""
    server = await asyncio.start_server(_accept, "127.0.0.1", 0)
    port: int = server.sockets[0].getsockname()[1]
    try:
        yield port
    finally:
        server.close()
        await server.wait_closed()


def test_every_kind_has_a_probe() -> None:
    """The dispatch table covers every resource kind."""
    assert set(PROBES) == set(ResourceKind)


@pytest.mark.unit
class TestFileProbe:
    """Filesystem stat probe."""

    @pytest.mark.asyncio
    async def test_existing_file_reports_size(self, tmp_path: Path) -> None:
        path = tmp_path / "ready.txt"
        _ = path.write_text("hello")

        result = await probe(str(path))

        assert result.value == 5
        assert result.available

    @pytest.mark.asyncio
    async def test_empty_file_is_available(self, tmp_path: Path) -> None:
        path = tmp_path / "empty"
        path.touch()

        result = await probe(f"file:{path}")

        assert result.value == 0
        assert result.available

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path: Path) -> None:
        result = await probe(str(tmp_path / "missing"))

        assert result.value == -1
        assert isinstance(result.data, FileNotFoundError)

    @pytest.mark.asyncio
    async def test_nul_byte_in_path_is_unavailable(self) -> None:
        result = await probe("file:/tmp/a\x00b")

        assert result.value == -1
        assert isinstance(result.data, ValueError)


@pytest.mark.unit
class TestTcpProbe:
    """TCP connect probe."""

    @pytest.mark.asyncio
    async def test_listening_port(self, tcp_port: int) -> None:
        result = await probe(f"tcp:127.0.0.1:{tcp_port}")

        assert result.value == 1

    @pytest.mark.asyncio
    async def test_refused_port(self, free_tcp_port: int) -> None:
        result = await probe(f"tcp:127.0.0.1:{free_tcp_port}")

        assert result.value == -1
        assert isinstance(result.data, OSError)

    @pytest.mark.asyncio
    async def test_unresolvable_host(self) -> None:
        result = await probe("tcp:wait-on.invalid:80", tcpTimeout=1000)

        assert result.value == -1


@pytest.mark.unit
class TestSocketProbe:
    """Unix domain socket probe."""

    @pytest.mark.asyncio
    async def test_listening_socket(self, short_tmp_path: Path) -> None:
        socket_path = short_tmp_path / "app.sock"
        server = await asyncio.start_unix_server(_accept, str(socket_path))
        try:
            result = await probe(f"socket:{socket_path}")
        finally:
            server.close()
            await server.wait_closed()

        assert result.value == 1

    @pytest.mark.asyncio
    async def test_missing_socket(self, short_tmp_path: Path) -> None:
        result = await probe(f"socket:{short_tmp_path / 'nothing.sock'}")

        assert result.value == -1


@pytest.mark.unit
class TestHttpProbe:
    """HTTP HEAD/GET probe against the aiohttp test app."""

    @pytest.mark.asyncio
    async def test_head_success(self, http_server: RecordedServer) -> None:
        result = await probe(http_server.url("/"))

        assert result.value == 200
        assert http_server.requests == [("HEAD", "/")]

    @pytest.mark.asyncio
    async def test_get_variant(self, http_server: RecordedServer) -> None:
        result = await probe(http_server.url("/get-only", scheme="http-get"))

        assert result.value == 200
        assert http_server.requests == [("GET", "/get-only")]

    @pytest.mark.asyncio
    async def test_non_2xx_is_negated(self, http_server: RecordedServer) -> None:
        result = await probe(http_server.url("/status/404"))

        assert result.value == -404
        assert not result.available

    @pytest.mark.asyncio
    async def test_head_rejected_by_get_only_endpoint(self, http_server: RecordedServer) -> None:
        result = await probe(http_server.url("/get-only"))

        assert result.value == -405

    @pytest.mark.asyncio
    async def test_custom_status_validator(self, http_server: RecordedServer) -> None:
        result = await probe(http_server.url("/status/404"), validateStatus=lambda status: status == 404)

        assert result.value == 404

    @pytest.mark.asyncio
    async def test_redirect_followed_by_default(self, http_server: RecordedServer) -> None:
        result = await probe(http_server.url("/redirect"))

        assert result.value == 200
        assert http_server.requests == [("HEAD", "/redirect"), ("HEAD", "/")]

    @pytest.mark.asyncio
    async def test_redirect_not_followed(self, http_server: RecordedServer) -> None:
        result = await probe(http_server.url("/redirect"), followRedirect=False)

        assert result.value == -302

    @pytest.mark.asyncio
    async def test_basic_auth(self, http_server: RecordedServer) -> None:
        without_auth = await probe(http_server.url("/auth"))
        with_auth = await probe(http_server.url("/auth"), auth={"user": "ci", "pass": "s3cret"})

        assert without_auth.value == -401
        assert with_auth.value == 200

    @pytest.mark.asyncio
    async def test_http_signature(self, http_server: RecordedServer) -> None:
        result = await probe(http_server.url("/signed"), httpSignature={"keyId": "deploy", "key": "shared"})

        assert result.value == 200

    @pytest.mark.asyncio
    async def test_custom_headers(self, http_server: RecordedServer) -> None:
        result = await probe(http_server.url("/header"), headers={"X-Ready-Token": "abc"})

        assert result.value == 200

    @pytest.mark.asyncio
    async def test_http_timeout(self, http_server: RecordedServer) -> None:
        started = time.monotonic()

        result = await probe(http_server.url("/slow"), httpTimeout=100)

        assert result.value == -NO_RESPONSE_STATUS
        assert time.monotonic() - started < 0.5

    @pytest.mark.asyncio
    async def test_connection_refused(self, free_tcp_port: int) -> None:
        result = await probe(f"http://127.0.0.1:{free_tcp_port}/")

        assert result.value == -NO_RESPONSE_STATUS
        assert isinstance(result.data, Exception)

    @pytest.mark.asyncio
    async def test_tls_against_plain_server(self, http_server: RecordedServer) -> None:
        result = await probe(http_server.url("/", scheme="https"), strictSSL=False, httpTimeout=1000)

        assert result.value == -NO_RESPONSE_STATUS

    @pytest.mark.asyncio
    async def test_unix_socket(self, unix_http_server: tuple[Path, RecordedServer]) -> None:
        _, server = unix_http_server

        result = await probe(server.url("/status/204"))

        assert result.value == 204
        assert server.requests == [("HEAD", "/status/204")]


@pytest.mark.unit
class TestHttpHelpers:
    """Signature and TLS option helpers."""

    def test_signature_headers(self) -> None:
        date = "Tue, 07 Jun 2022 20:51:35 GMT"
        expected = base64.b64encode(
            hmac.new(b"shared", f"date: {date}".encode(), hashlib.sha256).digest(),
        ).decode()

        headers = signature_headers(HttpSignature(key_id="deploy", key="shared"), date=date)

        assert headers["Date"] == date
        assert headers["Authorization"] == (
            f'Signature keyId="deploy",algorithm="hmac-sha256",headers="date",signature="{expected}"'
        )

    def test_signature_headers_default_date(self) -> None:
        headers = signature_headers(HttpSignature(key_id="deploy", key="shared"))

        assert headers["Date"].endswith("GMT")

    def test_default_tls_verification(self) -> None:
        assert ssl_option(make_options("https://localhost/")) is True

    def test_lenient_tls(self) -> None:
        assert ssl_option(make_options("https://localhost/", strictSSL=False)) is False

    def test_invalid_inline_ca(self) -> None:
        with pytest.raises(ssl.SSLError):
            _ = ssl_option(make_options("https://localhost/", ca="-----BEGIN CERTIFICATE-----\nnope\n"))

    def test_missing_client_cert(self, tmp_path: Path) -> None:
        with pytest.raises(OSError):
            _ = ssl_option(make_options("https://localhost/", cert=str(tmp_path / "client.pem")))


def _gone(pid: int) -> bool:
    try:
        return psutil.Process(pid).status() == psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return True


@pytest.mark.unit
class TestCommandProbe:
    """Shell command probe."""

    @pytest.mark.asyncio
    async def test_zero_exit(self) -> None:
        result = await probe("command:true")

        assert result.value == 1
        assert result.data == 0

    @pytest.mark.asyncio
    async def test_non_zero_exit(self) -> None:
        result = await probe("command:exit 3")

        assert result.value == -1
        assert result.data == 3

    @pytest.mark.asyncio
    async def test_nul_byte_in_command_is_unavailable(self) -> None:
        result = await probe("command:true\x00false")

        assert result.value == -1
        assert isinstance(result.data, ValueError)

    @pytest.mark.asyncio
    async def test_shell_syntax(self, tmp_path: Path) -> None:
        flag = tmp_path / "flag"
        flag.touch()

        result = await probe(f"command:test -f {flag} && test -d {tmp_path}")

        assert result.value == 1

    @pytest.mark.asyncio
    async def test_timeout_kills_process_tree(self, tmp_path: Path) -> None:
        child_pid_file = tmp_path / "child.pid"
        started = time.monotonic()

        result = await probe(f"command:sleep 30 & echo $! > {child_pid_file}; wait", commandTimeout=300)

        assert result.value == -1
        assert isinstance(result.data, TimeoutError)
        assert time.monotonic() - started < 5

        child_pid = int(child_pid_file.read_text().strip())
        deadline = time.monotonic() + 2
        while not _gone(child_pid) and time.monotonic() < deadline:
            await asyncio.sleep(0.05)
        assert _gone(child_pid)
