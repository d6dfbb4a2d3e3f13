"""Safe logging of the effective harness configuration.

Values whose key looks secret (token, secret, pass, pwd, key, crumb) are
masked before they reach a log line.
"""
from __future__ import annotations

from typing import Any, Dict, Iterable
import os
import re

SENSITIVE_PATTERN = re.compile(r"(token|secret|pass|pwd|key|crumb)", re.IGNORECASE)

HARNESS_ENV_PREFIXES = (
    "JENKINS_", "BUILT_IN_", "POLL_", "BUILD_", "PENDING_", "NODE_", "HISTORY_",
    "PLAYWRIGHT_", "AGENT_", "APP_",
)


def is_sensitive(key: str) -> bool:
    return bool(SENSITIVE_PATTERN.search(key))


def harness_env(prefixes: Iterable[str] | None = HARNESS_ENV_PREFIXES) -> Dict[str, str]:
    """Environment variables relevant to the harness (all of them when prefixes is None)."""
    if prefixes is None:
        return dict(os.environ)
    wanted = tuple(p.lower() for p in prefixes)
    return {k: v for k, v in os.environ.items() if k.lower().startswith(wanted)}


def mask_value(key: str, value: Any) -> Any:
    if value is None or not is_sensitive(key):
        return value
    if isinstance(value, str) and len(value) > 6:
        return value[:3] + "***" + value[-2:]
    return "***"


def safe_snapshot(custom: Dict[str, Any] | None = None) -> Dict[str, Any]:
    """Merge the harness environment with loaded settings, secrets masked.

    Keys from ``custom`` override the environment view.
    """
    snapshot: Dict[str, Any] = dict(harness_env())
    snapshot.update(custom or {})
    return {k: mask_value(k, snapshot[k]) for k in sorted(snapshot)}


def log_safe(logger, custom: Dict[str, Any] | None = None) -> None:
    logger.info("runtime_config", **safe_snapshot(custom=custom))


__all__ = [
    "safe_snapshot",
    "log_safe",
    "mask_value",
]
