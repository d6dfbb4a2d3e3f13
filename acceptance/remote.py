"""HTTP access to the Jenkins JSON API and administrative endpoints.

Every failure on this boundary (connection error, unexpected status code,
unparsable body, missing or malformed fields) is surfaced as
``TransportError``; nothing is retried here. Re-sampling is the poller's job.
"""
from __future__ import annotations

import json
import re
from typing import Any, Mapping, Optional, cast
from urllib.parse import quote

import httpx
import structlog

from .bootstrap import Settings, TRANSPORT_ERRORS_TOTAL
from .core.errors import TransportError, log_acceptance_failure

_QUEUE_ITEM_RE = re.compile(r"/queue/item/(\d+)/?$")

JOB_TREE = "name,nextBuildNumber,inQueue,lastBuild[number],builds[number,building,result,builtOn]"
BUILD_TREE = "number,building,result,builtOn"


def job_path(job: str) -> str:
    return f"/job/{quote(job, safe='')}"


def parse_queue_id(location: str | None) -> Optional[int]:
    if not location:
        return None
    match = _QUEUE_ITEM_RE.search(location)
    return int(match.group(1)) if match else None


class JenkinsClient:
    """Thin async client over the endpoints the harness relies on."""

    def __init__(
        self,
        settings: Settings,
        logger: structlog.BoundLogger | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings
        self.logger = logger or structlog.get_logger().bind(subsystem="remote")
        auth = (settings.jenkins_user, settings.jenkins_api_token) if settings.has_credentials else None
        self._http = httpx.AsyncClient(
            base_url=settings.jenkins_url,
            auth=auth,
            timeout=settings.httpx_timeout,
            verify=not settings.disable_ssl_verify,
            transport=transport,
            follow_redirects=False,
        )
        self._crumb: dict[str, str] | None = None

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "JenkinsClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # plumbing
    # ------------------------------------------------------------------
    def computer_path(self, node: str) -> str:
        if node == self.settings.built_in_node_name:
            return f"/computer/({quote(node, safe='')})"
        return f"/computer/{quote(node, safe='')}"

    async def _request(
        self,
        method: str,
        path: str,
        endpoint: str,
        *,
        ok: tuple[int, ...] = (200,),
        allow_404: bool = False,
        **kwargs: Any,
    ) -> httpx.Response | None:
        try:
            resp = await self._http.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            TRANSPORT_ERRORS_TOTAL.labels(endpoint).inc()
            log_acceptance_failure("transport", exc)
            self.logger.warning("remote_unreachable", endpoint=endpoint, path=path, error=str(exc))
            raise TransportError(f"{method} {path} failed: {exc}", url=path) from exc
        self.logger.debug("remote_request", method=method, path=path, status=resp.status_code)
        if resp.status_code == 404 and allow_404:
            return None
        if resp.status_code not in ok:
            TRANSPORT_ERRORS_TOTAL.labels(endpoint).inc()
            err = TransportError(
                f"{method} {path} answered {resp.status_code}",
                url=path,
                status_code=resp.status_code,
            )
            log_acceptance_failure("transport", err)
            raise err
        return resp

    async def get_json(self, path: str, endpoint: str, *, params: Mapping[str, str] | None = None,
                       allow_404: bool = False) -> Any:
        resp = await self._request("GET", path, endpoint, params=params, allow_404=allow_404)
        if resp is None:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            TRANSPORT_ERRORS_TOTAL.labels(endpoint).inc()
            raise TransportError(f"malformed JSON from {path}", url=path, status_code=resp.status_code) from exc

    def _malformed(self, path: str, endpoint: str, detail: str) -> TransportError:
        TRANSPORT_ERRORS_TOTAL.labels(endpoint).inc()
        err = TransportError(f"malformed response from {path}: {detail}", url=path)
        log_acceptance_failure("transport", err)
        self.logger.warning("remote_malformed", endpoint=endpoint, path=path, detail=detail)
        return err

    def _require(self, data: Any, path: str, endpoint: str, *keys: str, numeric: tuple[str, ...] = ()) -> dict:
        """Check that ``data`` is an object carrying ``keys``; ``numeric`` keys must parse as int."""
        if not isinstance(data, dict):
            raise self._malformed(path, endpoint, f"expected an object, got {type(data).__name__}")
        missing = [k for k in keys if k not in data]
        if missing:
            raise self._malformed(path, endpoint, f"missing {', '.join(missing)}")
        for key in numeric:
            try:
                int(data[key])
            except (TypeError, ValueError):
                raise self._malformed(path, endpoint, f"{key}={data[key]!r} is not a number") from None
        return data

    async def crumb_headers(self) -> dict[str, str]:
        """CSRF crumb header, fetched once; servers without a crumb issuer get none."""
        if self._crumb is None:
            path = "/crumbIssuer/api/json"
            data = await self.get_json(path, "crumb", allow_404=True)
            if data is None:
                self._crumb = {}
            else:
                self._require(data, path, "crumb", "crumbRequestField", "crumb")
                self._crumb = {data["crumbRequestField"]: data["crumb"]}
        return dict(self._crumb)

    async def post(self, path: str, endpoint: str, *, ok: tuple[int, ...] = (200, 201, 302),
                   headers: Mapping[str, str] | None = None, **kwargs: Any) -> httpx.Response:
        merged = await self.crumb_headers()
        merged.update(headers or {})
        return cast(httpx.Response, await self._request("POST", path, endpoint, ok=ok, headers=merged, **kwargs))

    # ------------------------------------------------------------------
    # jobs and builds
    # ------------------------------------------------------------------
    async def job_info(self, job: str) -> dict[str, Any]:
        path = f"{job_path(job)}/api/json"
        data = self._require(await self.get_json(path, "job", params={"tree": JOB_TREE}), path, "job",
                             "nextBuildNumber", numeric=("nextBuildNumber",))
        builds = data.get("builds") or []
        if not isinstance(builds, list):
            raise self._malformed(path, "job", "builds is not a list")
        for raw in builds:
            self._require(raw, path, "job", "number", numeric=("number",))
        if data.get("lastBuild"):
            self._require(data["lastBuild"], path, "job", "number", numeric=("number",))
        return data

    async def build_info(self, job: str, number: int) -> dict[str, Any] | None:
        """Build JSON, or None while the build has not started yet."""
        path = f"{job_path(job)}/{number}/api/json"
        data = await self.get_json(path, "build", params={"tree": BUILD_TREE}, allow_404=True)
        if data is None:
            return None
        return self._require(data, path, "build", "number", numeric=("number",))

    async def trigger(self, job: str, params: Mapping[str, str]) -> Optional[int]:
        """Submit a parameterized build; returns the queue item id when the server reports one."""
        resp = await self.post(f"{job_path(job)}/buildWithParameters", "trigger", data=dict(params))
        return parse_queue_id(resp.headers.get("Location"))

    async def create_job(self, job: str, config_xml: str) -> None:
        await self.post(
            "/createItem",
            "create_job",
            params={"name": job},
            content=config_xml.encode("utf-8"),
            headers={"Content-Type": "application/xml"},
        )

    async def delete_job(self, job: str) -> None:
        await self.post(f"{job_path(job)}/doDelete", "delete_job")

    # ------------------------------------------------------------------
    # queue
    # ------------------------------------------------------------------
    async def queue_item(self, item_id: int) -> dict[str, Any] | None:
        """Queue item JSON, or None once the server purged the item."""
        path = f"/queue/item/{item_id}/api/json"
        data = await self.get_json(path, "queue_item", allow_404=True)
        if data is None:
            return None
        self._require(data, path, "queue_item", "id", numeric=("id",))
        if data.get("executable"):
            self._require(data["executable"], path, "queue_item", "number", numeric=("number",))
        return data

    async def queue_items(self) -> list[dict[str, Any]]:
        path = "/queue/api/json"
        data = self._require(await self.get_json(path, "queue"), path, "queue")
        items = data.get("items") or []
        if not isinstance(items, list):
            raise self._malformed(path, "queue", "items is not a list")
        return [self._require(raw, path, "queue") for raw in items]

    # ------------------------------------------------------------------
    # nodes
    # ------------------------------------------------------------------
    async def computer_info(self, node: str) -> dict[str, Any]:
        path = f"{self.computer_path(node)}/api/json"
        return self._require(await self.get_json(path, "computer"), path, "computer", "offline")

    async def toggle_offline(self, node: str, message: str = "") -> None:
        await self.post(f"{self.computer_path(node)}/toggleOffline", "toggle_offline",
                        params={"offlineMessage": message})

    async def create_node(self, name: str, *, labels: str = "") -> None:
        launcher = "hudson.slaves.CommandLauncher"
        retention = "hudson.slaves.RetentionStrategy$Always"
        payload = {
            "name": name,
            "nodeDescription": "",
            "numExecutors": str(self.settings.agent_executors),
            "remoteFS": f"{self.settings.agent_remote_fs.rstrip('/')}/{name}",
            "labelString": labels,
            "mode": "NORMAL",
            "": [launcher, retention],
            "launcher": {
                "stapler-class": launcher,
                "$class": launcher,
                "command": self.settings.agent_launch_command,
            },
            "retentionStrategy": {"stapler-class": retention, "$class": retention},
            "nodeProperties": {"stapler-class-bag": "true"},
            "type": "hudson.slaves.DumbSlave",
        }
        await self.post(
            "/computer/doCreateItem",
            "create_node",
            data={"name": name, "type": "hudson.slaves.DumbSlave", "json": json.dumps(payload)},
        )

    async def delete_node(self, name: str) -> None:
        await self.post(f"{self.computer_path(name)}/doDelete", "delete_node")
