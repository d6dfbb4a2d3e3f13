"""Error kinds raised by the harness plus a structured failure registry.

Failures worth post-mortem analysis (timeouts, transport errors, missing
elements) are written as JSON lines to a configurable file (env
ACCEPTANCE_FAILURE_LOG, default acceptance_failures.log). Per-process
aggregation keeps an in-memory counter so identical signatures do not flood
the file.
"""
from __future__ import annotations

import json
import os
import threading
import time
from dataclasses import asdict, dataclass
from typing import Dict


class AcceptanceError(Exception):
    """Base class for every error surfaced to a scenario."""


class TriggerTimeout(AcceptanceError):
    """Build was submitted but did not start within the budget."""

    def __init__(self, job: str, number: int, timeout: float):
        self.job = job
        self.number = number
        self.timeout = timeout
        super().__init__(f"{job} #{number} did not start within {timeout:.1f}s")


class PollTimeout(AcceptanceError):
    """A polled condition was not reached within the budget."""

    def __init__(self, what: str, timeout: float, last_value: object = None):
        self.what = what
        self.timeout = timeout
        self.last_value = last_value
        super().__init__(f"{what} not reached within {timeout:.1f}s (last sample: {last_value!r})")


class TransportError(AcceptanceError):
    """Remote server unreachable, or answered with an error or malformed data."""

    def __init__(self, message: str, *, url: str | None = None, status_code: int | None = None):
        self.url = url
        self.status_code = status_code
        super().__init__(message)


class UnexpectedTerminalState(AcceptanceError):
    def __init__(self, build: str, expected: object, actual: object):
        self.build = build
        self.expected = expected
        self.actual = actual
        super().__init__(f"{build} finished as {actual}, expected {expected}")


class DuplicateParameterError(AcceptanceError, ValueError):
    def __init__(self, job: str, name: str):
        self.job = job
        self.name = name
        super().__init__(f"job {job!r} already declares a parameter named {name!r}")


class ElementNotFound(AcceptanceError):
    def __init__(self, what: str, tried: list[str]):
        self.what = what
        self.tried = tried
        super().__init__(f"no locator matched {what} (tried: {', '.join(tried)})")


_lock = threading.Lock()
_counts: Dict[str, int] = {}


@dataclass
class AcceptanceFailure:
    ts: float
    category: str
    signature: str
    message: str
    occurrences: int


def _log_path() -> str:
    return os.environ.get("ACCEPTANCE_FAILURE_LOG", "acceptance_failures.log")


def failure_counts() -> Dict[str, int]:
    with _lock:
        return dict(_counts)


def reset_failure_counts() -> None:
    with _lock:
        _counts.clear()


def log_acceptance_failure(category: str, exc: Exception | str) -> None:
    sig = f"{category}:{type(exc).__name__ if not isinstance(exc, str) else 'str'}"
    msg = str(exc)
    with _lock:
        count = _counts.get(sig, 0) + 1
        _counts[sig] = count
        # First 3 occurrences, then every 10th
        if count > 3 and (count % 10) != 0:
            return
        rec = AcceptanceFailure(ts=time.time(), category=category, signature=sig, message=msg, occurrences=count)
        try:
            with open(_log_path(), "a", encoding="utf-8") as f:
                f.write(json.dumps(asdict(rec), ensure_ascii=False) + "\n")
        except OSError:
            pass  # diagnostic only
