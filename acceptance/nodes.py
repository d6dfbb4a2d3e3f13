"""Remote worker handles and agent provisioning."""
from __future__ import annotations

import uuid
from typing import Optional, TYPE_CHECKING

import structlog

from .bootstrap import NODE_TOGGLES_TOTAL
from .core.errors import PollTimeout, TransportError
from .core.retry import retryable

if TYPE_CHECKING:  # pragma: no cover
    from .poller import OutcomePoller
    from .remote import JenkinsClient

logger = structlog.get_logger(__name__)


class RemoteNode:
    """A named execution node whose online state is toggled and observed remotely.

    Status queries always hit the server; there is no cached status.
    """

    def __init__(self, name: str, client: "JenkinsClient", poller: "OutcomePoller"):
        self.name = name
        self.client = client
        self.poller = poller

    def __repr__(self) -> str:
        return f"<RemoteNode {self.name}>"

    async def _status(self) -> dict:
        return await self.client.computer_info(self.name)

    async def is_offline(self) -> bool:
        return bool((await self._status())["offline"])

    async def is_online(self) -> bool:
        return not await self.is_offline()

    async def wait_until(self, *, online: bool, timeout: float | None = None) -> None:
        timeout = timeout if timeout is not None else self.poller.settings.node_state_timeout_seconds
        result = await self.poller.poll(
            self.is_online,
            lambda value: value is online,
            timeout=timeout,
            what="node_online" if online else "node_offline",
        )
        if not result.satisfied:
            raise PollTimeout(f"{self.name} {'online' if online else 'offline'}", timeout, result.value)

    async def mark_offline(self, message: str = "taken offline by acceptance test") -> None:
        status = await self._status()
        if status["offline"]:
            return
        await self.client.toggle_offline(self.name, message)
        NODE_TOGGLES_TOTAL.labels("offline").inc()
        await self.wait_until(online=False)
        logger.info("node_marked_offline", node=self.name)

    async def mark_online(self) -> None:
        status = await self._status()
        if not status["offline"]:
            return
        # a disconnected agent is offline without the temporary flag; toggling would take it down
        if status.get("temporarilyOffline"):
            await self.client.toggle_offline(self.name)
            NODE_TOGGLES_TOTAL.labels("online").inc()
        await self.wait_until(online=True)
        logger.info("node_marked_online", node=self.name)


class NodeProvisioner:
    """Creates agents for a scenario and deletes them on exit.

    Usage:
        async with NodeProvisioner(client, poller) as agents:
            node = await agents.provision()
    """

    def __init__(self, client: "JenkinsClient", poller: "OutcomePoller", *, prefix: str = "agent"):
        self.client = client
        self.poller = poller
        self.prefix = prefix
        self._created: list[str] = []

    @property
    def created(self) -> list[str]:
        return list(self._created)

    async def provision(self, name: Optional[str] = None, *, labels: str = "",
                        wait_online: bool = True) -> RemoteNode:
        name = name or f"{self.prefix}-{uuid.uuid4().hex[:8]}"
        await self.client.create_node(name, labels=labels)
        self._created.append(name)
        node = RemoteNode(name, self.client, self.poller)
        if wait_online:
            await node.wait_until(online=True)
        logger.info("node_provisioned", node=name, labels=labels)
        return node

    @retryable(TransportError)
    async def _delete(self, name: str) -> None:
        await self.client.delete_node(name)

    async def release(self) -> None:
        """Delete every provisioned node, then re-raise the first failure, if any."""
        first_error: TransportError | None = None
        while self._created:
            name = self._created.pop()
            try:
                await self._delete(name)
                logger.info("node_deleted", node=name)
            except TransportError as exc:
                logger.warning("node_delete_failed", node=name, error=str(exc))
                first_error = first_error or exc
        if first_error is not None:
            raise first_error

    async def __aenter__(self) -> "NodeProvisioner":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.release()
