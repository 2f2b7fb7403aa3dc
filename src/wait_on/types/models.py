"""Data models for wait-on.

This module defines immutable dataclasses used to pass probe observations
and run outcomes between the polling engine and its callers.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum


@dataclass(slots=True, frozen=True)
class ProbeResult:
    """Single observation of one resource.

    The value follows the signed availability convention: ``value >= 0``
    means available (the magnitude is diagnostic, e.g. a file size or an
    HTTP status code) and ``value < 0`` means unavailable.
    """

    value: int
    data: object | None = None

    @property
    def available(self) -> bool:
        """Return True if the observed value reports availability."""
        return self.value >= 0


# Resource string -> observed value for one complete poll cycle
type Snapshot = Mapping[str, int]


class OutcomeStatus(Enum):
    """Terminal states of a run."""

    SUCCESS = "success"
    TIMED_OUT = "timed_out"
    ERROR = "error"


@dataclass(slots=True, frozen=True)
class RunOutcome:
    """Terminal result of a run, produced exactly once.

    ``blocking`` lists the resources that were still preventing readiness at
    the last observation (empty on success).
    """

    status: OutcomeStatus
    error: BaseException | None = None
    blocking: tuple[str, ...] = ()

    @property
    def succeeded(self) -> bool:
        """Return True for a successful outcome."""
        return self.status is OutcomeStatus.SUCCESS
