"""Exception hierarchy for wait-on.

Only configuration and resolution errors abort a run immediately. Probe
failures never surface as exceptions; they become negative observations and
show up at the end as a timeout if they persist past the deadline.
"""

from __future__ import annotations

from collections.abc import Sequence

from wait_on.utils.sanitization import sanitize_url


class WaitOnError(Exception):
    """Base exception for all wait-on run failures."""

    def __init__(self, message: str) -> None:
        """Initialize the error.

        Args:
            message: Error message
        """
        super().__init__(message)
        self.message: str = message


class ConfigurationError(WaitOnError):
    """Raised when run options are missing, malformed or out of range.

    Reported before any polling starts.
    """


class ResolutionError(WaitOnError):
    """Raised when a resource string cannot be mapped to a resource kind."""


class InvalidResourceError(ResolutionError):
    """Raised for a malformed or unsupported resource string."""

    def __init__(self, resource: str, reason: str) -> None:
        """Initialize the error.

        Args:
            resource: Offending resource string
            reason: Why the string could not be resolved
        """
        super().__init__(f"Invalid resource {sanitize_url(resource)!r}: {reason}")
        self.resource: str = resource
        self.reason: str = reason


class WaitOnTimeoutError(WaitOnError, TimeoutError):
    """Raised when the deadline elapses before the resources stabilize."""

    def __init__(self, timeout_ms: int, blocking: Sequence[str]) -> None:
        """Initialize the timeout error.

        The message redacts credentials; ``blocking`` keeps the raw strings.

        Args:
            timeout_ms: Configured deadline in milliseconds
            blocking: Resources still blocking readiness at last observation
        """
        self.timeout_ms: int = timeout_ms
        self.blocking: tuple[str, ...] = tuple(blocking)
        waiting = (
            ", ".join(sanitize_url(resource) for resource in self.blocking)
            if self.blocking
            else "resources to stop changing"
        )
        super().__init__(f"Timed out after {timeout_ms}ms waiting for: {waiting}")


class RunFailedError(WaitOnError):
    """Raised when a run fails for a reason other than configuration or timeout.

    Wraps the unexpected exception (often an ``ExceptionGroup`` from the probe
    task group), which is kept as ``__cause__``.
    """
