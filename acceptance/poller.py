"""Outcome poller: bounded re-sampling of the server's asynchronous build state.

The server maintains its queue asynchronously to the UI and to the JSON API,
so a single observation may race an internal transition. Every wait below
re-reads current state at a fixed interval until a predicate holds or the
deadline passes; nothing is cached between samples.

Usage:
    poller = OutcomePoller(client, settings)
    state = await poller.wait_until_finished(build)
    verdict = await poller.classify_pending(build, "agent-1")
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Iterable, Optional, TypeVar, TYPE_CHECKING

import structlog

from .bootstrap import POLL_DURATION_SECONDS, POLL_SAMPLES_TOTAL, POLL_TIMEOUTS_TOTAL, Settings
from .core.errors import PollTimeout, TriggerTimeout, log_acceptance_failure
from .runtime.models import (
    BuildSnapshot,
    BuildState,
    PendingClassification,
    PendingReason,
    QueueSnapshot,
)

if TYPE_CHECKING:  # pragma: no cover
    from .jobs import Build, Job
    from .remote import JenkinsClient

T = TypeVar("T")

NO_VALID_ONLINE_NODE_TEXT = "Job triggered without a valid online node, given where: {node}"
NODE_OFFLINE_TEXT = "{node} is offline"
PENDING_MARKER = "pending"


@dataclass(slots=True)
class PollResult(Generic[T]):
    satisfied: bool
    value: Optional[T]
    samples: int
    elapsed: float


def classify_pending_text(text: str, node: str, *, require_marker: bool = True) -> PendingReason:
    """Classify a pending-reason text for ``node``.

    The "no valid online node" reason is checked first so that a text quoting
    both messages is never reported as a plain offline node.
    """
    marker_ok = (not require_marker) or PENDING_MARKER in text
    if marker_ok and NO_VALID_ONLINE_NODE_TEXT.format(node=node) in text:
        return PendingReason.NO_VALID_ONLINE_NODE
    if NODE_OFFLINE_TEXT.format(node=node) in text:
        return PendingReason.NO_ONLINE_NODE
    return PendingReason.UNKNOWN


def _reason_without_node(why: str) -> PendingReason:
    if "Job triggered without a valid online node" in why:
        return PendingReason.NO_VALID_ONLINE_NODE
    if " is offline" in why:
        return PendingReason.NO_ONLINE_NODE
    return PendingReason.UNKNOWN


class OutcomePoller:
    def __init__(
        self,
        client: "JenkinsClient",
        settings: Settings,
        logger: structlog.BoundLogger | None = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.settings = settings
        self.logger = logger or structlog.get_logger().bind(subsystem="poller")
        self._sleep = sleep
        self._clock = clock

    # ------------------------------------------------------------------
    # generic loop
    # ------------------------------------------------------------------
    async def poll(
        self,
        sample: Callable[[], Awaitable[T]],
        predicate: Callable[[T], bool],
        *,
        timeout: float,
        interval: float | None = None,
        what: str = "condition",
    ) -> PollResult[T]:
        """Sample until ``predicate`` holds or ``timeout`` seconds elapse.

        Transport errors raised by ``sample`` propagate immediately.
        """
        interval = interval if interval is not None else self.settings.poll_interval_seconds
        start = self._clock()
        samples = 0
        while True:
            value = await sample()
            samples += 1
            POLL_SAMPLES_TOTAL.labels(what).inc()
            elapsed = self._clock() - start
            if predicate(value):
                POLL_DURATION_SECONDS.labels(what).observe(elapsed)
                return PollResult(True, value, samples, elapsed)
            if elapsed >= timeout:
                POLL_TIMEOUTS_TOTAL.labels(what).inc()
                POLL_DURATION_SECONDS.labels(what).observe(elapsed)
                self.logger.info("poll_budget_exhausted", what=what, samples=samples, elapsed=round(elapsed, 2))
                return PollResult(False, value, samples, elapsed)
            await self._sleep(min(interval, max(timeout - elapsed, 0.0)))

    # ------------------------------------------------------------------
    # build state
    # ------------------------------------------------------------------
    async def observe(self, build: "Build") -> BuildState:
        """Take one fresh sample of ``build`` and fold it into the handle."""
        if build.state.is_terminal:
            return build.state
        if build.queue_id is not None and not build.number_confirmed:
            raw = await self.client.queue_item(build.queue_id)
            # None: the item was purged from the queue, keep the provisional number
            if raw is not None:
                item = QueueSnapshot.from_json(raw)
                if item.cancelled:
                    return build.record(BuildState.CANCELLED)
                if item.executable_number is None:
                    if _reason_without_node(item.why) is not PendingReason.UNKNOWN:
                        return build.record(BuildState.PENDING)
                    return build.record(BuildState.QUEUED)
                build.confirm_number(item.executable_number)
        info = await self.client.build_info(build.job.name, build.number)
        if info is None:
            # left the queue, build JSON not published yet
            return build.state
        snapshot = BuildSnapshot.from_json(info, self.settings.built_in_node_name)
        return build.record(snapshot.state, snapshot.built_on)

    async def has_started(self, build: "Build") -> bool:
        state = await self.observe(build)
        return state is BuildState.STARTED or state.is_finished

    async def wait_until_started(self, build: "Build", timeout: float | None = None) -> BuildState:
        timeout = timeout if timeout is not None else self.settings.build_start_timeout_seconds
        result = await self.poll(
            lambda: self.observe(build),
            lambda s: s is BuildState.STARTED or s.is_terminal,
            timeout=timeout,
            what="build_started",
        )
        if not result.satisfied:
            err = TriggerTimeout(build.job.name, build.number, timeout)
            log_acceptance_failure("trigger_timeout", err)
            self.logger.warning("trigger_timeout", job=build.job.name, number=build.number, state=build.state.value)
            raise err
        self.logger.info("build_started", job=build.job.name, number=build.number, state=result.value.value,
                         node=build.node)
        return result.value

    async def wait_until_finished(self, build: "Build", timeout: float | None = None) -> BuildState:
        timeout = timeout if timeout is not None else self.settings.build_finish_timeout_seconds
        result = await self.poll(
            lambda: self.observe(build),
            lambda s: s.is_terminal,
            timeout=timeout,
            what="build_finished",
        )
        if not result.satisfied:
            err = PollTimeout(f"{build} terminal state", timeout, result.value)
            log_acceptance_failure("poll_timeout", err)
            raise err
        self.logger.info("build_finished", job=build.job.name, number=build.number, state=result.value.value,
                         node=build.node)
        return result.value

    async def wait_until_queued(self, build: "Build", timeout: float | None = None) -> QueueSnapshot:
        """Wait until the build's queue item is visible and still waiting."""
        if build.queue_id is None:
            raise PollTimeout(f"{build} queue item", 0.0, None)
        timeout = timeout if timeout is not None else self.settings.pending_settle_timeout_seconds

        async def _sample() -> Optional[QueueSnapshot]:
            raw = await self.client.queue_item(build.queue_id)
            return QueueSnapshot.from_json(raw) if raw is not None else None

        result = await self.poll(_sample, lambda q: q is not None and not q.left_queue,
                                 timeout=timeout, what="queued")
        if not result.satisfied:
            raise PollTimeout(f"{build} queue item", timeout, result.value)
        return result.value

    # ------------------------------------------------------------------
    # pending reasons
    # ------------------------------------------------------------------
    async def queue_reason(self, build: "Build") -> str:
        """Pending reason as reported by the queue API ('' once the item left the queue)."""
        if build.queue_id is not None:
            raw = await self.client.queue_item(build.queue_id)
            if raw is None:
                return ""
            item = QueueSnapshot.from_json(raw)
            return "" if item.left_queue else item.why
        for raw in await self.client.queue_items():
            task = raw.get("task")
            if isinstance(task, dict) and task.get("name") == build.job.name:
                return raw.get("why") or ""
        return ""

    async def classify_pending(
        self,
        build: "Build",
        node: str,
        *,
        text_source: Callable[[], Awaitable[str]] | None = None,
        timeout: float | None = None,
    ) -> PendingClassification:
        """Decide why ``build`` is waiting on ``node``.

        ``text_source`` reads the build-history text from the job page (which
        carries the word "pending"); without it the queue API reason is used.
        Returns as soon as the build has started or a known reason shows up;
        an exhausted budget yields ``PendingReason.UNKNOWN``.
        """
        timeout = timeout if timeout is not None else self.settings.pending_settle_timeout_seconds
        from_page = text_source is not None

        async def _sample() -> PendingClassification:
            if await self.has_started(build):
                return PendingClassification(PendingReason.UNKNOWN, "", started=True)
            text = await text_source() if from_page else await self.queue_reason(build)
            reason = classify_pending_text(text, node, require_marker=from_page)
            return PendingClassification(reason, text)

        result = await self.poll(
            _sample,
            lambda c: c.started or c.reason is not PendingReason.UNKNOWN,
            timeout=timeout,
            what="pending_reason",
        )
        verdict = result.value
        self.logger.info("pending_classified", job=build.job.name, number=build.number, node=node,
                         reason=verdict.reason.value, started=verdict.started, samples=result.samples)
        return verdict

    # ------------------------------------------------------------------
    # build history
    # ------------------------------------------------------------------
    async def completed_nodes(self, job: "Job") -> set[str]:
        info = await self.client.job_info(job.name)
        nodes: set[str] = set()
        for raw in info.get("builds") or []:
            snapshot = BuildSnapshot.from_json(raw, self.settings.built_in_node_name)
            if snapshot.state.is_finished:
                nodes.add(snapshot.built_on)
        return nodes

    async def has_built_on(self, job: "Job", node: str, *, budget: float | None = None) -> bool:
        """True iff a completed build of ``job`` ran on ``node``.

        History is re-read within a bounded budget before answering False, so
        a build that completed an instant ago is not missed.
        """
        return await self.has_built_on_one_of(job, [node], budget=budget) is not None

    async def has_built_on_one_of(self, job: "Job", nodes: Iterable[str], *,
                                  budget: float | None = None) -> Optional[str]:
        wanted = set(nodes)
        budget = budget if budget is not None else self.settings.history_retry_budget_seconds
        result = await self.poll(
            lambda: self.completed_nodes(job),
            lambda seen: bool(seen & wanted),
            timeout=budget,
            what="built_on",
        )
        if not result.satisfied:
            return None
        return sorted(result.value & wanted)[0]
