import json
import os
import re
from urllib.parse import parse_qs

import httpx
import pytest

from acceptance.bootstrap import Settings
from acceptance.core.errors import reset_failure_counts
from acceptance.jobs import Job
from acceptance.poller import OutcomePoller
from acceptance.remote import JenkinsClient

BASE_URL = "http://jenkins.test"

_JOB = re.compile(r"^/job/([^/]+)/api/json$")
_BUILD = re.compile(r"^/job/([^/]+)/(\d+)/api/json$")
_TRIGGER = re.compile(r"^/job/([^/]+)/buildWithParameters$")
_DELETE_JOB = re.compile(r"^/job/([^/]+)/doDelete$")
_QUEUE_ITEM = re.compile(r"^/queue/item/(\d+)/api/json$")
_COMPUTER = re.compile(r"^/computer/([^/]+)/(api/json|toggleOffline|doDelete)$")


class FakeClock:
    """Monotonic clock driven by the poller's sleep; hooks run on every sleep."""

    def __init__(self):
        self.now = 0.0
        self.hooks = []
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds
        for hook in list(self.hooks):
            hook(self.now)

    def at(self, when, action):
        """Run ``action`` once the clock reaches ``when``."""
        fired = []

        def _hook(now):
            if now >= when and not fired:
                fired.append(True)
                action()

        self.hooks.append(_hook)


class FakeJenkins:
    """In-memory stand-in for the endpoints JenkinsClient calls."""

    def __init__(self, built_in="built-in"):
        self.built_in = built_in
        self.jobs = {}
        self.builds = {}
        self.queue = {}
        self.computers = {built_in: {"offline": False, "temporarilyOffline": False}}
        self.crumb = None
        self.requests = []
        self.failures = {}
        self.overrides = {}
        # node name: triggered builds start right away on it
        self.auto_start = None
        self._next_queue_id = 100

    # -- state helpers -----------------------------------------------------
    def add_job(self, name, next_build_number=1):
        self.jobs[name] = {"name": name, "nextBuildNumber": next_build_number, "config": ""}
        return self.jobs[name]

    def add_node(self, name, offline=False, temporarily=False):
        self.computers[name] = {"offline": offline or temporarily, "temporarilyOffline": temporarily}

    def enqueue(self, job, why="Waiting for next available executor", params=None):
        item_id = self._next_queue_id
        self._next_queue_id += 1
        self.queue[item_id] = {
            "id": item_id,
            "why": why,
            "cancelled": False,
            "executable": None,
            "task": {"name": job},
            "params": params or {},
        }
        return item_id

    def start(self, job, number=None, node="built-in", item_id=None):
        if number is None:
            number = self.jobs[job]["nextBuildNumber"]
        self.jobs[job]["nextBuildNumber"] = max(self.jobs[job]["nextBuildNumber"], number + 1)
        self.builds[(job, number)] = {
            "number": number,
            "building": True,
            "result": None,
            "builtOn": "" if node == self.built_in else node,
        }
        if item_id is not None:
            self.queue[item_id]["executable"] = {"number": number}
            self.queue[item_id]["why"] = None
        return number

    def finish(self, job, number, result="SUCCESS"):
        self.builds[(job, number)].update(building=False, result=result)

    def cancel(self, item_id):
        self.queue[item_id]["cancelled"] = True

    def fail(self, path, failure, times=None):
        """Answer ``path`` with a status code or raise an exception, ``times`` times (always when None)."""
        self.failures[path] = (failure, times)

    def answer(self, path, payload):
        """Serve ``payload`` as the JSON body of GET ``path`` instead of the modelled state."""
        self.overrides[path] = payload

    def paths(self, method=None):
        return [path for m, path, _ in self.requests if method is None or m == method]

    # -- transport ---------------------------------------------------------
    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        form = {k: v[0] for k, v in parse_qs(request.content.decode("utf-8", "replace")).items()} \
            if request.method == "POST" and request.headers.get("content-type", "").startswith(
                "application/x-www-form-urlencoded") else {}
        self.requests.append((request.method, path, form))
        if path in self.failures:
            failure, remaining = self.failures[path]
            if remaining is not None:
                if remaining <= 1:
                    del self.failures[path]
                else:
                    self.failures[path] = (failure, remaining - 1)
            if isinstance(failure, Exception):
                raise failure
            return httpx.Response(failure)
        if request.method == "GET" and path in self.overrides:
            return httpx.Response(200, json=self.overrides[path])
        if request.method == "GET":
            return self._get(request, path)
        return self._post(request, path, form)

    def _get(self, request, path):
        if path == "/crumbIssuer/api/json":
            if self.crumb is None:
                return httpx.Response(404)
            return httpx.Response(200, json={"crumbRequestField": "Jenkins-Crumb", "crumb": self.crumb})
        if m := _JOB.match(path):
            job = self.jobs.get(m.group(1))
            if job is None:
                return httpx.Response(404)
            builds = [b for (j, _), b in sorted(self.builds.items(), reverse=True) if j == job["name"]]
            return httpx.Response(200, json={
                "name": job["name"],
                "nextBuildNumber": job["nextBuildNumber"],
                "inQueue": any(q["task"]["name"] == job["name"] and not q["executable"] for q in self.queue.values()),
                "lastBuild": {"number": builds[0]["number"]} if builds else None,
                "builds": builds,
            })
        if m := _BUILD.match(path):
            build = self.builds.get((m.group(1), int(m.group(2))))
            return httpx.Response(200, json=build) if build else httpx.Response(404)
        if m := _QUEUE_ITEM.match(path):
            item = self.queue.get(int(m.group(1)))
            if item is None:
                return httpx.Response(404)
            return httpx.Response(200, json={k: v for k, v in item.items() if k != "params"})
        if path == "/queue/api/json":
            items = [
                {k: v for k, v in q.items() if k != "params"}
                for q in self.queue.values() if not q["executable"] and not q["cancelled"]
            ]
            return httpx.Response(200, json={"items": items})
        if (m := _COMPUTER.match(path)) and m.group(2) == "api/json":
            name = self._node_name(m.group(1))
            if name not in self.computers:
                return httpx.Response(404)
            return httpx.Response(200, json={"displayName": name, **self.computers[name]})
        return httpx.Response(404)

    def _post(self, request, path, form):
        if self.crumb is not None and request.headers.get("Jenkins-Crumb") != self.crumb:
            return httpx.Response(403)
        if m := _TRIGGER.match(path):
            if m.group(1) not in self.jobs:
                return httpx.Response(404)
            item_id = self.enqueue(m.group(1), params=form)
            if self.auto_start:
                self.start(m.group(1), node=self.auto_start, item_id=item_id)
            return httpx.Response(201, headers={"Location": f"{BASE_URL}/queue/item/{item_id}/"})
        if path == "/createItem":
            name = request.url.params["name"]
            if name in self.jobs:
                return httpx.Response(400)
            self.add_job(name)["config"] = request.content.decode("utf-8")
            return httpx.Response(200)
        if m := _DELETE_JOB.match(path):
            if self.jobs.pop(m.group(1), None) is None:
                return httpx.Response(404)
            return httpx.Response(302, headers={"Location": f"{BASE_URL}/"})
        if path == "/computer/doCreateItem":
            payload = json.loads(form["json"])
            self.add_node(form["name"])
            self.computers[form["name"]]["labels"] = payload["labelString"]
            return httpx.Response(302, headers={"Location": f"{BASE_URL}/computer/"})
        if m := _COMPUTER.match(path):
            name = self._node_name(m.group(1))
            if name not in self.computers:
                return httpx.Response(404)
            if m.group(2) == "toggleOffline":
                status = self.computers[name]
                status["temporarilyOffline"] = not status["temporarilyOffline"]
                status["offline"] = status["temporarilyOffline"]
                return httpx.Response(302, headers={"Location": f"{BASE_URL}/computer/{name}/"})
            if m.group(2) == "doDelete":
                del self.computers[name]
                return httpx.Response(302, headers={"Location": f"{BASE_URL}/computer/"})
        return httpx.Response(404)

    def _node_name(self, segment):
        if segment.startswith("(") and segment.endswith(")"):
            return segment[1:-1]
        return segment


@pytest.fixture(autouse=True)
def failure_log(tmp_path, monkeypatch):
    path = tmp_path / "failures.log"
    monkeypatch.setenv("ACCEPTANCE_FAILURE_LOG", str(path))
    reset_failure_counts()
    yield path
    reset_failure_counts()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        JENKINS_URL=BASE_URL + "/",
        JENKINS_USER="admin",
        JENKINS_API_TOKEN="11aa22bb33cc",
        POLL_INTERVAL_SECONDS=1,
        BUILD_START_TIMEOUT_SECONDS=10,
        BUILD_FINISH_TIMEOUT_SECONDS=30,
        PENDING_SETTLE_TIMEOUT_SECONDS=5,
        NODE_STATE_TIMEOUT_SECONDS=5,
        HISTORY_RETRY_BUDGET_SECONDS=3,
        SCREENSHOT_DIR=str(tmp_path / "shots"),
    )


@pytest.fixture
def fake():
    return FakeJenkins()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def client(settings, fake):
    c = JenkinsClient(settings, transport=httpx.MockTransport(fake.handler))
    yield c
    await c.aclose()


@pytest.fixture
def poller(client, settings, clock):
    return OutcomePoller(client, settings, sleep=clock.sleep, clock=clock)


@pytest.fixture
def job(fake, client, poller):
    fake.add_job("demo")
    return Job("demo", client, poller)


def pytest_collection_modifyitems(config, items):
    if os.environ.get("JENKINS_URL"):
        return
    skip = pytest.mark.skip(reason="JENKINS_URL not set")
    for item in items:
        if item.get_closest_marker("acceptance"):
            item.add_marker(skip)
