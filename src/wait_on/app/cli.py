"""Command-line interface for wait-on."""

from __future__ import annotations

import asyncio
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

import click

from wait_on.api import wait_on
from wait_on.core.config import load_config_file, merge_cli_options, validate_options
from wait_on.core.errors import WaitOnError
from wait_on.utils.logging import configure_logging

try:
    __version__ = version("wait-on")
except PackageNotFoundError:
    __version__ = "unknown"


def resolve_log_level(*, log: bool, verbose: bool) -> str:
    """Map the ``--log``/``--verbose`` flags to a root logging level.

    Args:
        log: Progress output requested
        verbose: Debug output requested

    Returns:
        Logging level name
    """
    if verbose:
        return "DEBUG"
    if log:
        return "INFO"
    return "WARNING"


def flag_value(value: bool) -> bool | None:
    """Return True for a given flag and None otherwise, so unset flags never override a config file."""
    return True if value else None


@click.command(
    context_settings={"help_option_names": ["-h", "--help"]},
    epilog="""
Resource prefixes: file: (default), http:, https:, http-get:, https-get:,
tcp:, socket:, command:. Durations accept ms, s, m, h and d suffixes.
""",
)
@click.argument("resources", nargs=-1)
@click.option(
    "--config",
    "-c",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="YAML or JSON config file with options and resources. Resources given on the command line take precedence.",
)
@click.option("--delay", "-d", default=None, help="Initial delay before checking for resources (e.g. 500, 2s).")
@click.option("--interval", "-i", default=None, help="Interval to poll resources (default 250ms).")
@click.option(
    "--window",
    "-w",
    default=None,
    help="Stabilization window; resources must stay unchanged this long (default 750ms).",
)
@click.option("--timeout", "-t", default=None, help="Maximum time to wait before failing (default unbounded).")
@click.option(
    "--httpTimeout",
    "--http-timeout",
    "http_timeout",
    default=None,
    help="Maximum time to wait for an HTTP response.",
)
@click.option(
    "--tcpTimeout",
    "--tcp-timeout",
    "tcp_timeout",
    default=None,
    help="Maximum time to wait for a TCP connection (default 300ms).",
)
@click.option(
    "--simultaneous",
    "-s",
    type=click.IntRange(min=1),
    default=None,
    help="Maximum number of probes running at once per cycle (default unbounded).",
)
@click.option("--reverse", "-r", is_flag=True, help="Wait for resources to become unavailable.")
@click.option("--log", "-l", is_flag=True, help="Log resources still being waited on.")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug output, including every observation.")
@click.version_option(version=__version__, prog_name="wait-on")
def cli(
    resources: tuple[str, ...],
    config: Path | None,
    delay: str | None,
    interval: str | None,
    window: str | None,
    timeout: str | None,
    http_timeout: str | None,
    tcp_timeout: str | None,
    simultaneous: int | None,
    reverse: bool,
    log: bool,
    verbose: bool,
) -> None:
    """Wait for files, ports, sockets, HTTP(S) resources and commands.

    Exits 0 once every RESOURCE is available (or unavailable with
    --reverse) and has stayed that way for the stabilization window, and
    non-zero on timeout or invalid input.

    Examples:

        # Wait for a file and a local port
        wait-on file1 tcp:4000

        # Wait up to 30 seconds for an HTTP endpoint to answer 2xx
        wait-on -t 30s http-get://localhost:8000/health

        # Wait for a server to shut down
        wait-on --reverse tcp:localhost:5432
    """
    cli_options: dict[str, object] = {
        "resources": list(resources),
        "delay": delay,
        "interval": interval,
        "window": window,
        "timeout": timeout,
        "http_timeout": http_timeout,
        "tcp_timeout": tcp_timeout,
        "simultaneous": simultaneous,
        "reverse": flag_value(reverse),
        "log": flag_value(log),
        "verbose": flag_value(verbose),
    }

    try:
        file_options = load_config_file(config) if config is not None else {}
        options = validate_options(
            merge_cli_options(file_options, cli_options),
            source=str(config) if config is not None else None,
        )
    except WaitOnError as exc:
        raise click.ClickException(exc.message) from exc

    configure_logging(log_level=resolve_log_level(log=options.log, verbose=options.verbose))

    try:
        asyncio.run(wait_on(options))
    except WaitOnError as exc:
        raise click.ClickException(exc.message) from exc
    except KeyboardInterrupt:
        raise click.Abort() from None


if __name__ == "__main__":
    cli()
