"""Domain types shared by the trigger, the poller and the page objects."""

from .models import (
    BuildSnapshot,
    BuildState,
    JobDefinition,
    NodeEligibility,
    ParameterDeclaration,
    ParameterKind,
    PendingClassification,
    PendingReason,
    QueueSnapshot,
    TriggerPolicy,
)

__all__ = [
    "BuildSnapshot",
    "BuildState",
    "JobDefinition",
    "NodeEligibility",
    "ParameterDeclaration",
    "ParameterKind",
    "PendingClassification",
    "PendingReason",
    "QueueSnapshot",
    "TriggerPolicy",
]
