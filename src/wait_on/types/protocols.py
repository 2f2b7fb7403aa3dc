"""Protocol definitions for component interfaces.

This module defines the structural contract between the polling core and
the per-kind resource probes, so that probes can be swapped (or faked in
tests) without inheritance.
"""

from typing import TYPE_CHECKING, Protocol

from wait_on.types.models import ProbeResult

if TYPE_CHECKING:
    from wait_on.core.config import WaitOnOptions
    from wait_on.core.resources import ResourceDescriptor


class Probe(Protocol):
    """Protocol for an availability check against a single resource.

    Implementations must convert every transport, filesystem or subprocess
    failure into a negative ``ProbeResult`` rather than raising, and must
    release any connection they open regardless of outcome.
    """

    async def __call__(
        self,
        descriptor: "ResourceDescriptor",
        options: "WaitOnOptions",
    ) -> ProbeResult:
        """Probe one resource.

        Args:
            descriptor: Resolved resource to check
            options: Validated run options (per-protocol settings)

        Returns:
            Observation with signed availability value and diagnostic data
        """
        ...


class CompletionCallback(Protocol):
    """Callback invoked once with the run error, or None on success."""

    def __call__(self, error: BaseException | None, /) -> None: ...
