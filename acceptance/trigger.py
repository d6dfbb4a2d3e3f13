"""Job trigger: submit parameterized builds, blocking or not.

``schedule_build`` only enqueues; use it when the build is expected to stay
pending (no eligible node), since a blocking start would itself time out.
``start_build`` additionally waits for execution to begin.

Neither call cancels anything remotely: a start timeout abandons the wait
and leaves the queued build in place.
"""
from __future__ import annotations

from typing import Mapping, Sequence, Union

import structlog

from .bootstrap import BUILDS_TRIGGERED_TOTAL
from .jobs import Build, Job
from .runtime.models import BuildState

logger = structlog.get_logger(__name__)

ParamValue = Union[str, Sequence[str]]


def encode_node_list(nodes: Sequence[str] | str) -> str:
    """Join node names with ',' and no surrounding whitespace."""
    if isinstance(nodes, str):
        nodes = nodes.split(",")
    return ",".join(n.strip() for n in nodes if n.strip())


def encode_parameters(params: Mapping[str, ParamValue]) -> dict[str, str]:
    """Encode parameter values as the form expects them.

    Sequences are multi-node selections and become a comma-joined list.
    Plain strings pass through verbatim, so label expressions such as
    ``!a && !b`` keep their spacing.
    """
    encoded: dict[str, str] = {}
    for name, value in params.items():
        if isinstance(value, str):
            encoded[name] = value
        else:
            encoded[name] = encode_node_list(list(value))
    return encoded


class JobTrigger:
    def __init__(self, job: Job):
        self.job = job
        self.poller = job.poller

    async def _submit(self, params: Mapping[str, ParamValue], mode: str) -> Build:
        encoded = encode_parameters(params)
        # provisional until the queue item reports its executable
        number = await self.job.next_build_number()
        queue_id = await self.job.client.trigger(self.job.name, encoded)
        BUILDS_TRIGGERED_TOTAL.labels(mode).inc()
        logger.info("build_scheduled", job=self.job.name, number=number, queue_id=queue_id,
                    parameters=sorted(encoded), mode=mode)
        return Build(self.job, number, queue_id=queue_id, state=BuildState.QUEUED)

    async def schedule_build(self, params: Mapping[str, ParamValue]) -> Build:
        return await self._submit(params, "schedule")

    async def start_build(self, params: Mapping[str, ParamValue], *, timeout: float | None = None) -> Build:
        """Schedule, then block until the build started or ended without starting.

        Raises:
            TriggerTimeout: the build did not start within ``timeout``.
        """
        build = await self._submit(params, "start")
        await self.poller.wait_until_started(build, timeout)
        return build
