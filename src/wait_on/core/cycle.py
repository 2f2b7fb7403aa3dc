"""Poll cycle execution.

A poll cycle probes every resource exactly once and assembles the results
into a snapshot. Probes run concurrently, optionally limited by a
``simultaneous`` bound, and the snapshot is only produced once every probe
has reported.
"""

import asyncio
import contextlib
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from types import MappingProxyType

from wait_on.core.config import WaitOnOptions
from wait_on.core.resources import ResourceDescriptor
from wait_on.types.models import ProbeResult, Snapshot
from wait_on.types.protocols import Probe


@dataclass(slots=True, frozen=True)
class CycleResult:
    """Outcome of one complete poll cycle.

    ``snapshot`` maps every resource string to its observed value;
    ``results`` keeps the full observations (with diagnostic data) for
    verbose logging.
    """

    snapshot: Snapshot
    results: Mapping[str, ProbeResult]


async def run_cycle(
    descriptors: Sequence[ResourceDescriptor],
    options: WaitOnOptions,
    probe: Probe,
    *,
    limit: int | None = None,
) -> CycleResult:
    """Probe every resource once and return the combined snapshot.

    Args:
        descriptors: Resolved resources, in the order given by the caller
        options: Run options passed through to each probe
        probe: Probe dispatcher
        limit: Maximum number of probes in flight (None for no bound)

    Returns:
        Snapshot containing exactly one value per resource

    Examples:
        >>> result = await run_cycle(descriptors, options, probe_resource)
        >>> set(result.snapshot) == {d.resource for d in descriptors}
        True
    """
    semaphore = asyncio.Semaphore(limit) if limit is not None else None

    async def probe_one(descriptor: ResourceDescriptor) -> ProbeResult:
        async with semaphore if semaphore is not None else contextlib.nullcontext():
            return await probe(descriptor, options)

    async with asyncio.TaskGroup() as tg:
        tasks = {descriptor.resource: tg.create_task(probe_one(descriptor)) for descriptor in descriptors}

    results = {resource: task.result() for resource, task in tasks.items()}
    snapshot = MappingProxyType({resource: result.value for resource, result in results.items()})
    return CycleResult(snapshot=snapshot, results=MappingProxyType(results))
