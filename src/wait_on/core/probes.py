"""Per-kind resource probes.

Each probe checks one resource once and reports a signed availability value
(see ``ProbeResult``). Probes never raise for I/O failures: missing files,
refused or unreachable connections, DNS/TLS errors, HTTP timeouts and failed
commands all become negative values, with the underlying error kept as
diagnostic data. Only ``asyncio.CancelledError`` propagates.

Every connection, HTTP session or subprocess a probe creates is released
before it returns, whatever the outcome.
"""

import asyncio
import base64
import contextlib
import functools
import hashlib
import hmac
import logging
import os
import ssl
from collections.abc import Awaitable, Callable, Mapping
from email.utils import formatdate
from typing import Final

import aiohttp
import psutil

from wait_on.core.config import HttpSignature, WaitOnOptions
from wait_on.core.resources import ResourceDescriptor, ResourceKind, split_unix_url
from wait_on.types.models import ProbeResult
from wait_on.types.protocols import Probe

logger = logging.getLogger(__name__)

# Status reported for HTTP requests that got no response at all
NO_RESPONSE_STATUS: Final[int] = 999

UNAVAILABLE: Final[int] = -1
AVAILABLE: Final[int] = 1

type StreamOpener = Callable[[], Awaitable[tuple[asyncio.StreamReader, asyncio.StreamWriter]]]


def _seconds(milliseconds: int | None) -> float | None:
    return None if milliseconds is None else milliseconds / 1000


async def probe_file(descriptor: ResourceDescriptor, options: WaitOnOptions) -> ProbeResult:
    """Report the file size, or -1 if the path cannot be stat'ed.

    Args:
        descriptor: File resource
        options: Run options (unused)

    Returns:
        Size in bytes (available) or -1 (unavailable)
    """
    try:
        stat_result = await asyncio.to_thread(os.stat, descriptor.target)
    except (OSError, ValueError) as exc:
        # ValueError: embedded NUL byte in the path
        return ProbeResult(value=UNAVAILABLE, data=exc)
    return ProbeResult(value=stat_result.st_size, data=stat_result)


async def _probe_stream(opener: StreamOpener, timeout_ms: int) -> ProbeResult:
    try:
        async with asyncio.timeout(_seconds(timeout_ms)):
            _, writer = await opener()
    except (OSError, TimeoutError, ValueError) as exc:
        # OSError covers refused, unreachable and DNS failures (socket.gaierror)
        return ProbeResult(value=UNAVAILABLE, data=exc)

    writer.close()
    with contextlib.suppress(OSError):
        await writer.wait_closed()
    return ProbeResult(value=AVAILABLE)


async def probe_tcp(descriptor: ResourceDescriptor, options: WaitOnOptions) -> ProbeResult:
    """Report 1 if a TCP connection to host:port succeeds, else -1.

    Args:
        descriptor: TCP resource with host and port
        options: Run options providing ``tcp_timeout``

    Returns:
        1 (available) or -1 (unavailable)
    """
    return await _probe_stream(
        lambda: asyncio.open_connection(descriptor.host, descriptor.port),
        options.tcp_timeout,
    )


async def probe_socket(descriptor: ResourceDescriptor, options: WaitOnOptions) -> ProbeResult:
    """Report 1 if a Unix domain socket accepts a connection, else -1.

    Args:
        descriptor: Socket resource with the socket path as target
        options: Run options providing ``tcp_timeout``

    Returns:
        1 (available) or -1 (unavailable)
    """
    return await _probe_stream(
        lambda: asyncio.open_unix_connection(descriptor.target),
        options.tcp_timeout,
    )


@functools.lru_cache(maxsize=8)
def _build_ssl_context(
    ca: str | None,
    cert: str | None,
    key: str | None,
    passphrase: str | None,
    strict_ssl: bool,
) -> ssl.SSLContext:
    context = ssl.create_default_context()
    if ca is not None:
        if os.path.exists(ca):
            context.load_verify_locations(cafile=ca)
        else:
            context.load_verify_locations(cadata=ca)
    if cert is not None:
        context.load_cert_chain(cert, keyfile=key, password=passphrase)
    if not strict_ssl:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


def ssl_option(options: WaitOnOptions) -> ssl.SSLContext | bool:
    """Translate TLS options into aiohttp's ``ssl`` argument.

    Args:
        options: Run options with ``ca``/``cert``/``key``/``passphrase``/``strict_ssl``

    Returns:
        True for default verification, False to skip verification, or a
        configured SSL context

    Raises:
        OSError: If a certificate or key file cannot be read
        ssl.SSLError: If TLS material is invalid
    """
    if options.ca is None and options.cert is None:
        return options.strict_ssl
    return _build_ssl_context(options.ca, options.cert, options.key, options.passphrase, options.strict_ssl)


def signature_headers(signature: HttpSignature, *, date: str | None = None) -> dict[str, str]:
    """Build ``Date`` and ``Authorization`` headers for an HMAC-SHA256 HTTP signature.

    Only shared-secret HMAC-SHA256 over the ``date`` header is supported.
    Asymmetric keys (RSA, ECDSA) and signing further headers are not, so a
    server that expects an RSA signature will reject these requests.

    Args:
        signature: Key id and shared secret
        date: HTTP date to sign (default: now)

    Returns:
        Headers to add to the request
    """
    date = date or formatdate(usegmt=True)
    digest = hmac.new(signature.key.encode(), f"date: {date}".encode(), hashlib.sha256).digest()
    encoded = base64.b64encode(digest).decode("ascii")
    authorization = (
        f'Signature keyId="{signature.key_id}",algorithm="hmac-sha256",headers="date",signature="{encoded}"'
    )
    return {"Date": date, "Authorization": authorization}


async def probe_http(descriptor: ResourceDescriptor, options: WaitOnOptions) -> ProbeResult:
    """Issue a HEAD (or GET) request and report the status code.

    Accepted statuses (2xx unless ``validate_status`` says otherwise) are
    reported as the positive status code, rejected ones as its negation.
    A request that gets no response (connection error, TLS failure,
    ``http_timeout`` exceeded) is reported as -999.

    Args:
        descriptor: HTTP resource with URL and method
        options: Run options providing HTTP settings

    Returns:
        Signed status code with the response (or error) as diagnostic data
    """
    url = descriptor.target
    unix_target = split_unix_url(url)

    headers: dict[str, str] = dict(options.headers)
    if options.http_signature is not None:
        headers.update(signature_headers(options.http_signature))

    auth: aiohttp.BasicAuth | None = None
    if options.auth is not None and options.auth.username:
        auth = aiohttp.BasicAuth(options.auth.username, options.auth.password or "")

    timeout = aiohttp.ClientTimeout(total=_seconds(options.http_timeout))

    try:
        connector: aiohttp.BaseConnector
        if unix_target is not None:
            socket_path, url = unix_target
            connector = aiohttp.UnixConnector(path=socket_path)
        else:
            connector = aiohttp.TCPConnector(ssl=ssl_option(options))

        async with aiohttp.ClientSession(connector=connector, timeout=timeout) as session:
            async with session.request(
                descriptor.method or "HEAD",
                url,
                headers=headers,
                auth=auth,
                allow_redirects=options.allow_redirects,
                proxy=options.proxy,
            ) as response:
                status = response.status
                data: object = response
    except (aiohttp.ClientError, TimeoutError, OSError, ValueError) as exc:
        logger.debug("HTTP probe of %s got no response: %s", descriptor.resource, exc)
        return ProbeResult(value=-NO_RESPONSE_STATUS, data=exc)

    value = status if options.status_validator(status) else -status
    return ProbeResult(value=value, data=data)


async def _kill_process_tree(process: asyncio.subprocess.Process) -> None:
    try:
        parent = psutil.Process(process.pid)
        targets = [*parent.children(recursive=True), parent]
    except psutil.NoSuchProcess:
        targets = []

    for target in targets:
        with contextlib.suppress(psutil.NoSuchProcess, psutil.AccessDenied):
            target.kill()

    with contextlib.suppress(ProcessLookupError):
        _ = await process.wait()


async def probe_command(descriptor: ResourceDescriptor, options: WaitOnOptions) -> ProbeResult:
    """Run a shell command and report 1 if it exits with status 0, else -1.

    The command runs with stdin/stdout/stderr discarded. If
    ``command_timeout`` elapses (or the probe is cancelled) the shell and all
    of its descendants are killed.

    Args:
        descriptor: Command resource with the shell command as target
        options: Run options providing ``command_timeout``

    Returns:
        1 (available) or -1 (unavailable) with the exit status as data
    """
    try:
        process = await asyncio.create_subprocess_shell(
            descriptor.target,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except (OSError, ValueError) as exc:
        return ProbeResult(value=UNAVAILABLE, data=exc)

    try:
        async with asyncio.timeout(_seconds(options.command_timeout)):
            returncode = await process.wait()
    except TimeoutError as exc:
        await _kill_process_tree(process)
        return ProbeResult(value=UNAVAILABLE, data=exc)
    except asyncio.CancelledError:
        await _kill_process_tree(process)
        raise

    return ProbeResult(value=AVAILABLE if returncode == 0 else UNAVAILABLE, data=returncode)


PROBES: Final[Mapping[ResourceKind, Probe]] = {
    ResourceKind.FILE: probe_file,
    ResourceKind.TCP: probe_tcp,
    ResourceKind.SOCKET: probe_socket,
    ResourceKind.HTTP: probe_http,
    ResourceKind.HTTP_GET: probe_http,
    ResourceKind.HTTPS: probe_http,
    ResourceKind.HTTPS_GET: probe_http,
    ResourceKind.COMMAND: probe_command,
}


async def probe_resource(descriptor: ResourceDescriptor, options: WaitOnOptions) -> ProbeResult:
    """Dispatch a descriptor to the probe for its kind.

    Args:
        descriptor: Resolved resource
        options: Run options

    Returns:
        Observation for this resource
    """
    return await PROBES[descriptor.kind](descriptor, options)
