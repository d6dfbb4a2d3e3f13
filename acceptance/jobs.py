"""Job and Build handles over the remote server."""
from __future__ import annotations

from typing import Iterable, Mapping, Optional, Sequence, TYPE_CHECKING
from xml.sax.saxutils import escape

import structlog

from .core.errors import UnexpectedTerminalState
from .runtime.models import BuildSnapshot, BuildState

if TYPE_CHECKING:  # pragma: no cover
    from .poller import OutcomePoller
    from .remote import JenkinsClient
    from .trigger import ParamValue

logger = structlog.get_logger(__name__)


def freestyle_config_xml(*, concurrent_build: bool = False, shell_steps: Sequence[str] = (),
                         description: str = "") -> str:
    """Minimal free-style project definition accepted by ``/createItem``."""
    builders = "".join(
        f"<hudson.tasks.Shell><command>{escape(cmd)}</command></hudson.tasks.Shell>"
        for cmd in shell_steps
    )
    return (
        "<?xml version='1.1' encoding='UTF-8'?>"
        "<project>"
        "<actions/>"
        f"<description>{escape(description)}</description>"
        "<keepDependencies>false</keepDependencies>"
        "<properties/>"
        "<scm class=\"hudson.scm.NullSCM\"/>"
        "<canRoam>true</canRoam>"
        "<disabled>false</disabled>"
        "<blockBuildWhenDownstreamBuilding>false</blockBuildWhenDownstreamBuilding>"
        "<blockBuildWhenUpstreamBuilding>false</blockBuildWhenUpstreamBuilding>"
        "<triggers/>"
        f"<concurrentBuild>{'true' if concurrent_build else 'false'}</concurrentBuild>"
        f"<builders>{builders}</builders>"
        "<publishers/>"
        "<buildWrappers/>"
        "</project>"
    )


class Build:
    """Handle on one build, identified by (job, number).

    ``state`` and ``node`` hold the last observation. A terminal state is
    never overwritten and the executing node is bound once.

    A build created from a queue item carries a provisional number until the
    item leaves the queue and reports the number it was given.
    """

    def __init__(self, job: "Job", number: int, queue_id: Optional[int] = None,
                 state: BuildState = BuildState.QUEUED):
        self.job = job
        self.number = number
        self.queue_id = queue_id
        self.state = state
        self.node: Optional[str] = None
        self.number_confirmed = queue_id is None

    def confirm_number(self, number: int) -> None:
        if number != self.number:
            logger.debug("build_renumbered", job=self.job.name, provisional=self.number, actual=number)
        self.number = number
        self.number_confirmed = True

    def __repr__(self) -> str:
        return f"<Build {self.job.name}#{self.number} {self.state.value}>"

    def __str__(self) -> str:
        return f"{self.job.name} #{self.number}"

    @property
    def url(self) -> str:
        return f"{self.job.url}{self.number}/"

    def record(self, state: BuildState, node: Optional[str] = None) -> BuildState:
        if self.state.is_terminal:
            return self.state
        self.state = state
        if node and self.node is None:
            self.node = node
        return self.state

    async def has_started(self) -> bool:
        return await self.job.poller.has_started(self)

    async def wait_until_started(self, timeout: float | None = None) -> "Build":
        await self.job.poller.wait_until_started(self, timeout)
        return self

    async def wait_until_finished(self, timeout: float | None = None) -> "Build":
        await self.job.poller.wait_until_finished(self, timeout)
        return self

    async def _expect(self, expected: BuildState, timeout: float | None) -> "Build":
        state = await self.job.poller.wait_until_finished(self, timeout)
        if state is not expected:
            raise UnexpectedTerminalState(str(self), expected.value, state.value)
        return self

    async def should_succeed(self, timeout: float | None = None) -> "Build":
        return await self._expect(BuildState.SUCCESS, timeout)

    async def should_fail(self, timeout: float | None = None) -> "Build":
        return await self._expect(BuildState.FAILURE, timeout)

    async def should_be_unstable(self, timeout: float | None = None) -> "Build":
        return await self._expect(BuildState.UNSTABLE, timeout)


class Job:
    def __init__(self, name: str, client: "JenkinsClient", poller: "OutcomePoller"):
        self.name = name
        self.client = client
        self.poller = poller

    def __repr__(self) -> str:
        return f"<Job {self.name}>"

    @property
    def url(self) -> str:
        from .remote import job_path

        return f"{self.client.settings.jenkins_url}{job_path(self.name)}/"

    @property
    def build_url(self) -> str:
        return f"{self.url}build?delay=0sec"

    @property
    def configure_url(self) -> str:
        return f"{self.url}configure"

    async def create(self, config_xml: str | None = None) -> "Job":
        await self.client.create_job(self.name, config_xml or freestyle_config_xml())
        logger.info("job_created", job=self.name)
        return self

    async def delete(self) -> None:
        await self.client.delete_job(self.name)
        logger.info("job_deleted", job=self.name)

    async def next_build_number(self) -> int:
        info = await self.client.job_info(self.name)
        return int(info["nextBuildNumber"])

    async def builds(self) -> list[BuildSnapshot]:
        info = await self.client.job_info(self.name)
        built_in = self.client.settings.built_in_node_name
        return [BuildSnapshot.from_json(raw, built_in) for raw in info.get("builds") or []]

    def build(self, number: int) -> Build:
        return Build(self, number, state=BuildState.STARTED)

    async def last_build(self) -> Optional[Build]:
        info = await self.client.job_info(self.name)
        last = info.get("lastBuild")
        if not last:
            return None
        return self.build(int(last["number"]))

    def trigger(self):
        from .trigger import JobTrigger

        return JobTrigger(self)

    async def schedule_build(self, params: Mapping[str, "ParamValue"] | None = None) -> Build:
        return await self.trigger().schedule_build(params or {})

    async def start_build(self, params: Mapping[str, "ParamValue"] | None = None,
                          timeout: float | None = None) -> Build:
        return await self.trigger().start_build(params or {}, timeout=timeout)

    async def has_built_on(self, node: str) -> bool:
        return await self.poller.has_built_on(self, node)

    async def has_built_on_one_of(self, nodes: Iterable[str]) -> Optional[str]:
        return await self.poller.has_built_on_one_of(self, nodes)
