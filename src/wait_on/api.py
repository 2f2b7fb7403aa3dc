"""Public entry points for waiting on resources.

Two completion styles are offered. Awaiting ``wait_on(options)`` returns
``None`` once the resources are stable and raises the run's error otherwise.
Passing ``callback`` instead delivers the error (or ``None``) to the
callback exactly once and never raises.
"""

import asyncio
from collections.abc import Mapping

from wait_on.core.config import WaitOnOptions
from wait_on.core.probes import probe_resource
from wait_on.core.supervisor import RunSupervisor
from wait_on.types.protocols import CompletionCallback, Probe

__all__ = ["run", "wait_on"]


async def wait_on(
    options: WaitOnOptions | Mapping[str, object] | None,
    callback: CompletionCallback | None = None,
    *,
    probe: Probe | None = None,
) -> None:
    """Wait until every resource is available (or unavailable in reverse mode).

    Args:
        options: Run options as a mapping (snake_case or camelCase keys) or
            a validated ``WaitOnOptions``
        callback: Optional completion callback receiving the error or None
        probe: Override the probe dispatcher (mainly for tests)

    Raises:
        ConfigurationError: If options are missing or invalid
        ResolutionError: If a resource string is malformed
        WaitOnTimeoutError: If the deadline elapses first

    Examples:
        >>> await wait_on({"resources": ["tcp:localhost:8080"], "timeout": "30s"})
    """
    supervisor = RunSupervisor(options, probe=probe or probe_resource, on_complete=callback)

    outcome = await supervisor.run()
    if callback is None and outcome.error is not None:
        raise outcome.error


def run(options: WaitOnOptions | Mapping[str, object] | None) -> None:
    """Blocking form of ``wait_on`` for synchronous callers.

    Args:
        options: Run options

    Raises:
        WaitOnError: On validation, resolution or timeout failure
    """
    asyncio.run(wait_on(options))
