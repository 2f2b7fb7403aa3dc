"""Type definitions and protocols for wait-on.

This package provides:
- Data models (immutable dataclasses)
- Protocol definitions (structural subtyping interfaces)
- Type aliases (PEP 695 syntax)
"""

from wait_on.types.models import (
    OutcomeStatus,
    ProbeResult,
    RunOutcome,
    Snapshot,
)
from wait_on.types.protocols import (
    CompletionCallback,
    Probe,
)

__all__ = [
    # Data models
    "OutcomeStatus",
    "ProbeResult",
    "RunOutcome",
    "Snapshot",
    # Protocols
    "CompletionCallback",
    "Probe",
]
