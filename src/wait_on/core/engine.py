"""Stabilization engine for wait-on runs.

The engine drives poll cycles on a fixed-rate timer and decides when the
observed resources have been ready for long enough to declare success.

Lifecycle:
    IDLE → DELAYING: run started, waiting ``delay`` before the first cycle
    DELAYING → POLLING: first cycle fired; cycles then repeat every ``interval``
    POLLING → SETTLING: readiness holds, waiting out the settle window
    SETTLING → POLLING: a cycle broke readiness
    SETTLING → DONE: no distinct snapshot seen for ``window`` while ready

Cycles are strictly sequential. A cycle that overruns the interval delays
the next tick instead of overlapping with it.

Snapshot changes are tracked by full equality: a cycle whose snapshot is
identical to the previous one is not a new observation. It neither restarts
the settle window nor is it needed to extend it; the window is simply the
time elapsed since the last distinct snapshot was observed.
"""

import asyncio
import logging
import time
from collections.abc import Callable, Iterable, Sequence
from enum import Enum
from typing import Final

from wait_on.core.config import WaitOnOptions
from wait_on.core.cycle import CycleResult, run_cycle
from wait_on.core.probes import probe_resource
from wait_on.core.resources import ResourceDescriptor
from wait_on.types.models import Snapshot
from wait_on.types.protocols import Probe
from wait_on.utils.durations import format_duration_ms
from wait_on.utils.logging import get_run_logger
from wait_on.utils.sanitization import sanitize_url

# Tolerance for float rounding when comparing elapsed time to the window
_EPSILON: Final[float] = 1e-6


class EngineState(Enum):
    """Lifecycle states of the stabilization engine."""

    IDLE = "idle"
    DELAYING = "delaying"
    POLLING = "polling"
    SETTLING = "settling"
    DONE = "done"


def is_ready(snapshot: Snapshot, resources: Iterable[str], *, reverse: bool = False) -> bool:
    """Compute readiness for one snapshot.

    In normal mode every resource must be available (value >= 0); in
    reverse mode every resource must be unavailable. A resource missing
    from the snapshot counts as unavailable.

    Args:
        snapshot: Observed values keyed by resource string
        resources: Resources that must satisfy the predicate
        reverse: Wait for unavailability instead of availability

    Returns:
        True if every resource satisfies the active predicate

    Examples:
        >>> is_ready({"a": 0, "b": 200}, ["a", "b"])
        True
        >>> is_ready({"a": -1}, ["a"], reverse=True)
        True
    """
    return not blocking_resources(snapshot, resources, reverse=reverse)


def blocking_resources(
    snapshot: Snapshot,
    resources: Iterable[str],
    *,
    reverse: bool = False,
) -> tuple[str, ...]:
    """Return the resources currently preventing readiness, in input order.

    Args:
        snapshot: Observed values keyed by resource string
        resources: Resources to check
        reverse: Wait for unavailability instead of availability

    Returns:
        Unavailable resources (normal mode) or available ones (reverse mode)
    """
    return tuple(
        resource
        for resource in resources
        if (snapshot.get(resource, -1) >= 0) is reverse
    )


class StabilizationEngine:
    """Polls resources until readiness has held for the settle window.

    The engine owns the latest snapshot and the window timer; probes only
    report values. It has no deadline of its own: bounding the run is the
    job of the supervisor, which cancels the task running ``run()`` and
    calls ``cancel()`` so that a cycle completing afterwards is discarded.

    Attributes:
        state: Current lifecycle state
        blocking: Resources blocking readiness at the last observation
        last_snapshot: Most recent distinct snapshot (None before the first cycle)
        cycles: Number of completed cycles
    """

    def __init__(
        self,
        descriptors: Sequence[ResourceDescriptor],
        options: WaitOnOptions,
        *,
        probe: Probe = probe_resource,
        logger: logging.LoggerAdapter[logging.Logger] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the engine in the IDLE state.

        Args:
            descriptors: Resolved resources to poll
            options: Validated run options
            probe: Probe dispatcher (injectable for tests)
            logger: Run-scoped logger (default: gated by ``options.log``/``verbose``)
            clock: Monotonic clock in seconds
        """
        self._descriptors: tuple[ResourceDescriptor, ...] = tuple(descriptors)
        self._resources: tuple[str, ...] = tuple(d.resource for d in self._descriptors)
        self._options: WaitOnOptions = options
        self._probe: Probe = probe
        self._logger: logging.LoggerAdapter[logging.Logger] = logger or get_run_logger(
            log=options.log,
            verbose=options.verbose,
        )
        self._clock: Callable[[], float] = clock

        self._state: EngineState = EngineState.IDLE
        self._cancelled: bool = False
        self._cycles: int = 0
        self._last_snapshot: Snapshot | None = None
        self._last_change_at: float | None = None
        self._blocking: tuple[str, ...] = self._resources
        self._logged_blocking: tuple[str, ...] | None = None

    @property
    def state(self) -> EngineState:
        """Get current lifecycle state."""
        return self._state

    @property
    def blocking(self) -> tuple[str, ...]:
        """Get the resources blocking readiness at the last observation.

        Before the first cycle completes every resource counts as blocking.
        """
        return self._blocking

    @property
    def last_snapshot(self) -> Snapshot | None:
        """Get the most recent distinct snapshot."""
        return self._last_snapshot

    @property
    def cycles(self) -> int:
        """Get the number of completed poll cycles."""
        return self._cycles

    @property
    def cancelled(self) -> bool:
        """Return True once ``cancel()`` has been called."""
        return self._cancelled

    def cancel(self) -> None:
        """Stop issuing cycles and discard any cycle that completes later."""
        self._cancelled = True

    def _transition(self, state: EngineState) -> None:
        if state is self._state:
            return
        self._logger.debug("Engine %s -> %s", self._state.value, state.value)
        self._state = state

    async def run(self) -> bool:
        """Poll until the resources are stable.

        Returns:
            True once readiness held for the full window, False if the engine
            was cancelled before that

        Raises:
            RuntimeError: If the engine has already been run
        """
        if self._state is not EngineState.IDLE:
            msg = f"Engine already started (state: {self._state.value})"
            raise RuntimeError(msg)

        self._transition(EngineState.DELAYING)
        if self._options.delay > 0:
            await asyncio.sleep(self._options.delay / 1000)
        if self._cancelled:
            return False

        self._transition(EngineState.POLLING)
        interval = self._options.interval / 1000
        next_tick = self._clock()

        while True:
            tick_time = next_tick
            result = await run_cycle(
                self._descriptors,
                self._options,
                self._probe,
                limit=self._options.simultaneous,
            )
            if self._cancelled:
                self._logger.debug("Discarding cycle completed after cancellation")
                return False

            if self._observe(result, tick_time):
                return True

            next_tick = tick_time + interval
            now = self._clock()
            if next_tick < now:
                # Cycle overran the interval; start the next one right away
                next_tick = now
            await asyncio.sleep(next_tick - now)

    def _observe(self, result: CycleResult, tick_time: float) -> bool:
        """Fold one completed cycle into the engine state.

        Returns:
            True if the run is now successful
        """
        self._cycles += 1
        snapshot = result.snapshot

        if snapshot != self._last_snapshot:
            self._last_snapshot = snapshot
            self._last_change_at = tick_time
            self._log_cycle(result)

        self._blocking = blocking_resources(snapshot, self._resources, reverse=self._options.reverse)

        if self._blocking:
            if self._blocking != self._logged_blocking:
                self._logged_blocking = self._blocking
                self._logger.info(
                    "waiting for %d resources: %s",
                    len(self._blocking),
                    ", ".join(sanitize_url(resource) for resource in self._blocking),
                )
            self._transition(EngineState.POLLING)
            return False

        self._logged_blocking = None
        changed_at = tick_time if self._last_change_at is None else self._last_change_at
        stable_for = tick_time - changed_at
        if stable_for + _EPSILON >= self._options.window / 1000:
            self._transition(EngineState.DONE)
            self._logger.info(
                "wait-on %s all resources after %d cycles (stable for %s)",
                "found none of" if self._options.reverse else "found",
                self._cycles,
                format_duration_ms(round(stable_for * 1000)),
            )
            return True

        self._transition(EngineState.SETTLING)
        return False

    def _log_cycle(self, result: CycleResult) -> None:
        if not self._logger.isEnabledFor(logging.DEBUG):
            return
        for resource, probe_result in result.results.items():
            self._logger.debug(
                "cycle %d: %s = %d (%r)",
                self._cycles,
                sanitize_url(resource),
                probe_result.value,
                probe_result.data,
            )
