"""Resource string resolution.

Parses resource strings into typed, immutable descriptors. The prefix picks
the resource kind, most specific first:

    http-get: / https-get:   HTTP GET, the ``-get`` suffix is stripped from the scheme
    http: / https:           HTTP HEAD
    tcp:[host:]port          TCP connect, host defaults to localhost
    socket:/path             Unix domain socket connect
    command:cmd args         shell command, available when it exits 0
    file:/path or /path      filesystem stat (the default)

HTTP resources aimed at a Unix socket use ``http://unix:/path/to.sock:/url``;
that host syntax is interpreted by the HTTP probe, not here.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Final
from urllib.parse import urlsplit

from wait_on.core.errors import InvalidResourceError

DEFAULT_TCP_HOST: Final[str] = "localhost"

# Any URI-looking prefix; used to reject schemes we do not support
_URI_SCHEME_PATTERN: Final[re.Pattern[str]] = re.compile(r"^(?P<scheme>[a-z][a-z0-9+.-]*)://", re.IGNORECASE)


class ResourceKind(Enum):
    """Kinds of resources that can be awaited."""

    FILE = "file"
    TCP = "tcp"
    SOCKET = "socket"
    HTTP = "http"
    HTTP_GET = "http-get"
    HTTPS = "https"
    HTTPS_GET = "https-get"
    COMMAND = "command"

    @property
    def is_http(self) -> bool:
        """Return True for the HTTP(S) HEAD and GET kinds."""
        return self in _HTTP_KINDS


_HTTP_KINDS: Final[frozenset[ResourceKind]] = frozenset(
    {ResourceKind.HTTP, ResourceKind.HTTP_GET, ResourceKind.HTTPS, ResourceKind.HTTPS_GET}
)


@dataclass(slots=True, frozen=True)
class ResourceDescriptor:
    """Immutable, resolved description of one resource.

    ``resource`` is the original string and keys the resource in every
    snapshot. ``target`` is what the probe acts on: a filesystem path, a
    socket path, a URL with its real scheme, or a shell command.
    """

    kind: ResourceKind
    resource: str
    target: str
    host: str | None = None
    port: int | None = None
    method: str | None = None

    def __str__(self) -> str:
        return self.resource


# Checked in order; longer prefixes shadow their shorter siblings
_PREFIXES: Final[tuple[tuple[str, ResourceKind], ...]] = (
    ("http-get:", ResourceKind.HTTP_GET),
    ("https-get:", ResourceKind.HTTPS_GET),
    ("http:", ResourceKind.HTTP),
    ("https:", ResourceKind.HTTPS),
    ("tcp:", ResourceKind.TCP),
    ("socket:", ResourceKind.SOCKET),
    ("command:", ResourceKind.COMMAND),
    ("file:", ResourceKind.FILE),
)

_SUPPORTED_SCHEMES: Final[frozenset[str]] = frozenset({"http", "https", "http-get", "https-get", "file"})


def _resolve_http(resource: str, kind: ResourceKind, remainder: str) -> ResourceDescriptor:
    if kind in (ResourceKind.HTTP_GET, ResourceKind.HTTPS_GET):
        scheme = kind.value.removesuffix("-get")
        method = "GET"
    else:
        scheme = kind.value
        method = "HEAD"

    url = f"{scheme}:{remainder}"
    if not remainder.startswith("//"):
        raise InvalidResourceError(resource, f"expected {scheme}://host[:port][/path]")

    try:
        parts = urlsplit(url)
    except ValueError as exc:
        raise InvalidResourceError(resource, str(exc)) from exc

    if parts.netloc.startswith("unix:"):
        if not _split_unix_url(parts.netloc + parts.path)[0]:
            raise InvalidResourceError(resource, "expected unix:/path/to.sock:/url")
        return ResourceDescriptor(kind=kind, resource=resource, target=url, method=method)

    if not parts.hostname:
        raise InvalidResourceError(resource, "URL has no host")

    try:
        port = parts.port
    except ValueError as exc:
        raise InvalidResourceError(resource, str(exc)) from exc

    return ResourceDescriptor(
        kind=kind,
        resource=resource,
        target=url,
        host=parts.hostname,
        port=port,
        method=method,
    )


def _split_unix_url(location: str) -> tuple[str, str]:
    """Split ``unix:/path/to.sock:/url`` into the socket path and request path."""
    socket_and_path = location.removeprefix("unix:")
    socket_path, _, request_path = socket_and_path.partition(":")
    return socket_path, request_path or "/"


def split_unix_url(url: str) -> tuple[str, str] | None:
    """Extract the Unix socket path and request URL from a unix-socket HTTP URL.

    Args:
        url: URL such as ``http://unix:/var/run/app.sock:/health``

    Returns:
        ``(socket_path, url_without_socket)`` such as
        ``("/var/run/app.sock", "http://localhost/health")``, or None if the
        URL does not address a Unix socket

    Examples:
        >>> split_unix_url("http://unix:/tmp/app.sock:/ready")
        ('/tmp/app.sock', 'http://localhost/ready')
        >>> split_unix_url("http://localhost:8080/") is None
        True
    """
    scheme, sep, location = url.partition("://")
    if not sep or not location.startswith("unix:"):
        return None
    socket_path, request_path = _split_unix_url(location)
    if not request_path.startswith("/"):
        request_path = f"/{request_path}"
    return socket_path, f"{scheme}://localhost{request_path}"


def _resolve_tcp(resource: str, remainder: str) -> ResourceDescriptor:
    host_part, sep, port_part = remainder.rpartition(":")
    host = host_part.strip("[]") if sep else ""
    if not host:
        host = DEFAULT_TCP_HOST

    if not port_part.isdigit():
        raise InvalidResourceError(resource, f"port must be an integer, got {port_part!r}")

    port = int(port_part)
    if not 0 < port < 65536:
        raise InvalidResourceError(resource, f"port out of range: {port}")

    return ResourceDescriptor(
        kind=ResourceKind.TCP,
        resource=resource,
        target=f"{host}:{port}",
        host=host,
        port=port,
    )


def resolve_resource(resource: str) -> ResourceDescriptor:
    """Parse one resource string into a descriptor.

    Args:
        resource: Resource string, e.g. ``"tcp:db:5432"`` or ``"./out.log"``

    Returns:
        Resolved descriptor

    Raises:
        InvalidResourceError: If the string is empty, malformed, or uses an
            unsupported URI scheme

    Examples:
        >>> resolve_resource("tcp:8080").target
        'localhost:8080'
        >>> resolve_resource("https-get://example.com/ready").target
        'https://example.com/ready'
        >>> resolve_resource("/tmp/ready.flag").kind
        <ResourceKind.FILE: 'file'>
    """
    if not resource or not resource.strip():
        raise InvalidResourceError(resource, "resource string is empty")

    for prefix, kind in _PREFIXES:
        if not resource.startswith(prefix):
            continue
        remainder = resource[len(prefix) :]
        if not remainder.strip():
            raise InvalidResourceError(resource, f"nothing follows {prefix!r}")

        if kind.is_http:
            return _resolve_http(resource, kind, remainder)
        if kind is ResourceKind.TCP:
            return _resolve_tcp(resource, remainder)
        if kind is ResourceKind.COMMAND:
            return ResourceDescriptor(kind=kind, resource=resource, target=remainder.strip())
        if kind is ResourceKind.FILE and remainder.startswith("//"):
            # file:///abs/path -> /abs/path
            return ResourceDescriptor(kind=kind, resource=resource, target=urlsplit(resource).path)
        return ResourceDescriptor(kind=kind, resource=resource, target=remainder)

    scheme_match = _URI_SCHEME_PATTERN.match(resource)
    if scheme_match is not None:
        scheme = scheme_match.group("scheme")
        if scheme.lower() in _SUPPORTED_SCHEMES:
            raise InvalidResourceError(resource, f"scheme prefixes are lowercase, use {scheme.lower()!r}")
        raise InvalidResourceError(resource, f"unsupported scheme {scheme!r}")

    return ResourceDescriptor(kind=ResourceKind.FILE, resource=resource, target=resource)


def resolve_resources(resources: Iterable[str]) -> tuple[ResourceDescriptor, ...]:
    """Resolve every resource string, failing on the first malformed one.

    Args:
        resources: Resource strings in configured order

    Returns:
        Descriptors in the same order

    Raises:
        InvalidResourceError: If any resource string cannot be resolved
    """
    return tuple(resolve_resource(resource) for resource in resources)
