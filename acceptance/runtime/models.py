from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional

from acceptance.core.errors import DuplicateParameterError


class BuildState(str, Enum):
    QUEUED = "queued"
    PENDING = "pending"
    STARTED = "started"
    SUCCESS = "success"
    FAILURE = "failure"
    UNSTABLE = "unstable"
    ABORTED = "aborted"
    # removed from the queue before it ever started
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL

    @property
    def is_finished(self) -> bool:
        return self in _FINISHED

    @classmethod
    def from_result(cls, building: bool, result: Optional[str]) -> "BuildState":
        """Map the server's ``building``/``result`` pair onto a state."""
        if building or result is None:
            return cls.STARTED
        return _RESULTS.get(result.upper(), cls.FAILURE)


_FINISHED = frozenset({BuildState.SUCCESS, BuildState.FAILURE, BuildState.UNSTABLE, BuildState.ABORTED})
_TERMINAL = _FINISHED | {BuildState.CANCELLED}
_RESULTS = {
    "SUCCESS": BuildState.SUCCESS,
    "FAILURE": BuildState.FAILURE,
    "UNSTABLE": BuildState.UNSTABLE,
    "ABORTED": BuildState.ABORTED,
    "NOT_BUILT": BuildState.ABORTED,
}


class PendingReason(str, Enum):
    NO_ONLINE_NODE = "no_online_node"
    NO_VALID_ONLINE_NODE = "no_valid_online_node"
    UNKNOWN = "unknown"


class NodeEligibility(str, Enum):
    """Eligibility policies; values are the option labels shown in the form."""

    ALL_NODES = "All Nodes"
    IGNORE_OFFLINE_NODES = "Ignore Offline Nodes"
    IGNORE_TEMP_OFFLINE_NODES = "Ignore Temp Offline Nodes"


class TriggerPolicy(str, Enum):
    RUN_IF_SUCCESS = "success"
    ALLOW_MULTIPLE = "allowMultiSelectionForConcurrentBuilds"
    DISALLOW_MULTIPLE = "multiSelectionDisallowed"


class ParameterKind(str, Enum):
    NODE = "node"
    LABEL = "label"


@dataclass(slots=True)
class ParameterDeclaration:
    name: str
    kind: ParameterKind = ParameterKind.NODE
    default_nodes: list[str] = field(default_factory=list)
    # None means "ALL (no restriction)"
    allowed_nodes: Optional[list[str]] = None
    multiple: bool = False
    eligibility: NodeEligibility = NodeEligibility.ALL_NODES
    run_if_success: bool = False
    default_value: str = ""

    @property
    def trigger_policy(self) -> TriggerPolicy:
        if self.run_if_success:
            return TriggerPolicy.RUN_IF_SUCCESS
        if self.multiple:
            return TriggerPolicy.ALLOW_MULTIPLE
        return TriggerPolicy.DISALLOW_MULTIPLE


@dataclass(slots=True)
class JobDefinition:
    """Configuration applied to a job through the form, in declaration order."""

    name: str
    parameters: list[ParameterDeclaration] = field(default_factory=list)
    concurrent_build: bool = False
    shell_steps: list[str] = field(default_factory=list)

    def add_parameter(self, declaration: ParameterDeclaration) -> ParameterDeclaration:
        if any(p.name == declaration.name for p in self.parameters):
            raise DuplicateParameterError(self.name, declaration.name)
        self.parameters.append(declaration)
        return declaration

    def parameter(self, name: str) -> ParameterDeclaration:
        for p in self.parameters:
            if p.name == name:
                return p
        raise KeyError(name)

    def rename_parameter(self, old: str, new: str) -> None:
        if old == new:
            return
        if any(p.name == new for p in self.parameters):
            raise DuplicateParameterError(self.name, new)
        self.parameter(old).name = new


def normalise_node_name(built_on: Optional[str], built_in_name: str) -> str:
    """The JSON API reports the built-in node as an empty string."""
    return built_on or built_in_name


@dataclass(slots=True)
class BuildSnapshot:
    """One observation of a build taken from ``/job/<j>/<n>/api/json``."""

    number: int
    building: bool
    result: Optional[str]
    built_on: str

    @property
    def state(self) -> BuildState:
        return BuildState.from_result(self.building, self.result)

    @classmethod
    def from_json(cls, data: Mapping[str, Any], built_in_name: str) -> "BuildSnapshot":
        return cls(
            number=int(data["number"]),
            building=bool(data.get("building", False)),
            result=data.get("result"),
            built_on=normalise_node_name(data.get("builtOn"), built_in_name),
        )


@dataclass(slots=True)
class QueueSnapshot:
    """One observation of a queue item taken from ``/queue/item/<id>/api/json``."""

    id: int
    why: str
    cancelled: bool
    executable_number: Optional[int]

    @property
    def left_queue(self) -> bool:
        return self.cancelled or self.executable_number is not None

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "QueueSnapshot":
        executable = data.get("executable") or {}
        number = executable.get("number")
        return cls(
            id=int(data["id"]),
            why=data.get("why") or "",
            cancelled=bool(data.get("cancelled", False)),
            executable_number=int(number) if number is not None else None,
        )


@dataclass(slots=True)
class PendingClassification:
    """Discriminated result of inspecting a pending build."""

    reason: PendingReason
    text: str
    started: bool = False

    @property
    def is_pending(self) -> bool:
        return not self.started and self.reason is not PendingReason.UNKNOWN
