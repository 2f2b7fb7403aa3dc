"""Timeout and completion supervision for a single wait-on run.

The supervisor validates options and resolves every resource before any
polling starts, runs the stabilization engine under an optional absolute
deadline (measured from run start, delay included) and turns whatever
happens into exactly one ``RunOutcome``.
"""

import asyncio
import logging
import time
import uuid
from collections.abc import Callable, Mapping

from wait_on.core.config import WaitOnOptions, validate_options
from wait_on.core.engine import StabilizationEngine
from wait_on.core.errors import RunFailedError, WaitOnError, WaitOnTimeoutError
from wait_on.core.probes import probe_resource
from wait_on.core.resources import resolve_resources
from wait_on.types.models import OutcomeStatus, RunOutcome
from wait_on.types.protocols import CompletionCallback, Probe
from wait_on.utils.logging import get_run_logger, reset_correlation_id, set_correlation_id
from wait_on.utils.sanitization import sanitize_url

logger = logging.getLogger(__name__)


class RunSupervisor:
    """Owns one run from validation to its single terminal outcome.

    ``complete()`` is idempotent: the first outcome wins and the completion
    callback fires exactly once, whichever source (success, deadline, error
    or an external caller) gets there first. Later calls are no-ops.

    Attributes:
        outcome: Terminal outcome, or None while the run is in progress
        engine: Engine driving the run (None until options are resolved)
    """

    def __init__(
        self,
        options: WaitOnOptions | Mapping[str, object] | None,
        *,
        probe: Probe = probe_resource,
        logger: logging.LoggerAdapter[logging.Logger] | None = None,
        on_complete: CompletionCallback | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the supervisor.

        Args:
            options: Raw or validated run options
            probe: Probe dispatcher handed to the engine
            logger: Run-scoped logger (default: derived from the options)
            on_complete: Called once with the run error, or None on success
            clock: Monotonic clock handed to the engine
        """
        self._raw_options: WaitOnOptions | Mapping[str, object] | None = options
        self._probe: Probe = probe
        self._logger: logging.LoggerAdapter[logging.Logger] | None = logger
        self._on_complete: CompletionCallback | None = on_complete
        self._clock: Callable[[], float] = clock
        self._engine: StabilizationEngine | None = None
        self._outcome: RunOutcome | None = None

    @property
    def outcome(self) -> RunOutcome | None:
        """Get the terminal outcome, if the run has finished."""
        return self._outcome

    @property
    def engine(self) -> StabilizationEngine | None:
        """Get the engine driving this run."""
        return self._engine

    def complete(self, outcome: RunOutcome) -> bool:
        """Record the terminal outcome and fire the completion callback.

        Args:
            outcome: Outcome to record

        Returns:
            True if this call completed the run, False if it was already complete
        """
        if self._outcome is not None:
            logger.debug(
                "Ignoring duplicate completion",
                extra={"status": outcome.status.value, "recorded": self._outcome.status.value},
            )
            return False

        self._outcome = outcome
        if self._engine is not None:
            self._engine.cancel()
        if self._on_complete is not None:
            self._on_complete(outcome.error)
        return True

    async def run(self) -> RunOutcome:
        """Run to completion and return the terminal outcome.

        Returns:
            The recorded outcome (the first one if ``complete()`` was called
            externally while the run was in progress)
        """
        token = set_correlation_id(uuid.uuid4().hex[:8])
        try:
            return await self._run()
        finally:
            reset_correlation_id(token)

    async def _run(self) -> RunOutcome:
        loop = asyncio.get_running_loop()
        started_at = loop.time()

        try:
            options = validate_options(self._raw_options)
            descriptors = resolve_resources(options.resources)
        except WaitOnError as exc:
            logger.debug("Rejected wait-on run: %s", exc.message)
            return self._finish(RunOutcome(status=OutcomeStatus.ERROR, error=exc))

        run_logger = self._logger or get_run_logger(log=options.log, verbose=options.verbose)
        engine = StabilizationEngine(
            descriptors,
            options,
            probe=self._probe,
            logger=run_logger,
            clock=self._clock,
        )
        self._engine = engine

        deadline = asyncio.timeout_at(None if options.timeout is None else started_at + options.timeout / 1000)
        try:
            async with deadline:
                succeeded = await engine.run()
        except Exception as exc:
            engine.cancel()
            if isinstance(exc, TimeoutError) and deadline.expired():
                error = WaitOnTimeoutError(options.timeout or 0, engine.blocking)
                run_logger.info("wait-on %s", error.message)
                return self._finish(
                    RunOutcome(status=OutcomeStatus.TIMED_OUT, error=error, blocking=engine.blocking),
                )
            logger.exception("wait-on run failed unexpectedly")
            failure = RunFailedError(f"wait-on run failed: {_describe_failure(exc)}")
            failure.__cause__ = exc
            return self._finish(
                RunOutcome(status=OutcomeStatus.ERROR, error=failure, blocking=engine.blocking),
            )

        if succeeded:
            return self._finish(RunOutcome(status=OutcomeStatus.SUCCESS))

        # Engine stopped without success: the run was completed externally
        return self._finish(
            RunOutcome(
                status=OutcomeStatus.ERROR,
                error=WaitOnError("Run cancelled before resources were ready"),
                blocking=engine.blocking,
            ),
        )

    def _finish(self, outcome: RunOutcome) -> RunOutcome:
        _ = self.complete(outcome)
        assert self._outcome is not None
        return self._outcome


def _describe_failure(exc: BaseException) -> str:
    """Summarize an unexpected failure, unwrapping single-exception groups."""
    while isinstance(exc, BaseExceptionGroup) and len(exc.exceptions) == 1:
        exc = exc.exceptions[0]
    return sanitize_url(f"{type(exc).__name__}: {exc}")
