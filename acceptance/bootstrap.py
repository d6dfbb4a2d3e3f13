"""Bootstrap module for the acceptance harness.

Central responsibilities:
- Load and validate settings from environment (.env supported by the Settings class)
- Configure structured logging (structlog + rotating handlers)
- Expose Prometheus metric instruments (counters, histograms)
- Provide an explicit context object handed to every scenario

Design notes:
- No global context singleton: scenarios acquire a context with
  ``async with open_context()`` and release it when they are done
- Heavy collaborators (HTTP client, poller) are imported lazily inside
  ``open_context`` to avoid import cycles with the metric instruments
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Optional, TYPE_CHECKING
import logging
from logging.handlers import RotatingFileHandler
import sys
import time

import structlog
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from prometheus_client import REGISTRY, Counter, Histogram, write_to_textfile

if TYPE_CHECKING:  # pragma: no cover
    from .poller import OutcomePoller
    from .remote import JenkinsClient

# ------------------------------------------------------------
# Settings
# ------------------------------------------------------------

class Settings(BaseSettings):
    """Harness settings loaded from environment.

    Defaults target a local Jenkins started for a test run.
    """

    app_name: str = Field("nodelabel-acceptance", alias="APP_NAME")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_file: str | None = Field(None, alias="LOG_FILE")
    log_max_bytes: int = Field(2_000_000, alias="LOG_MAX_BYTES")  # ~2MB
    log_backup_count: int = Field(5, alias="LOG_BACKUP_COUNT")

    # Remote server
    jenkins_url: str = Field("http://localhost:8080", alias="JENKINS_URL")
    jenkins_user: Optional[str] = Field(None, alias="JENKINS_USER")
    jenkins_api_token: Optional[str] = Field(None, alias="JENKINS_API_TOKEN")
    # "built-in" on current servers, "master" on older ones
    built_in_node_name: str = Field("built-in", alias="BUILT_IN_NODE_NAME")
    httpx_timeout: int = Field(20, alias="HTTPX_TIMEOUT")
    disable_ssl_verify: bool = Field(False, alias="DISABLE_SSL_VERIFY")

    # Polling budgets (seconds)
    poll_interval_seconds: float = Field(0.5, alias="POLL_INTERVAL_SECONDS")
    build_start_timeout_seconds: float = Field(120.0, alias="BUILD_START_TIMEOUT_SECONDS")
    build_finish_timeout_seconds: float = Field(300.0, alias="BUILD_FINISH_TIMEOUT_SECONDS")
    # Queue maintenance is asynchronous to page rendering: give pending text time to show up
    pending_settle_timeout_seconds: float = Field(15.0, alias="PENDING_SETTLE_TIMEOUT_SECONDS")
    node_state_timeout_seconds: float = Field(60.0, alias="NODE_STATE_TIMEOUT_SECONDS")
    history_retry_budget_seconds: float = Field(10.0, alias="HISTORY_RETRY_BUDGET_SECONDS")

    # Browser
    playwright_headless: bool = Field(True, alias="PLAYWRIGHT_HEADLESS")
    navigation_timeout_ms: int = Field(15000, alias="NAVIGATION_TIMEOUT_MS")
    element_timeout_ms: int = Field(8000, alias="ELEMENT_TIMEOUT_MS")
    screenshot_dir: str = Field("screenshots", alias="SCREENSHOT_DIR")

    # Agent provisioning
    agent_launch_command: str = Field(
        "java -jar /var/jenkins/agent.jar", alias="AGENT_LAUNCH_COMMAND"
    )
    agent_remote_fs: str = Field("/tmp/agents", alias="AGENT_REMOTE_FS")
    agent_executors: int = Field(1, alias="AGENT_EXECUTORS")

    # Misc
    enable_metrics: bool = Field(True, alias="ENABLE_METRICS")
    # Prometheus text file written when a context closes (node-exporter textfile collector)
    metrics_file: str | None = Field(None, alias="METRICS_FILE")

    @field_validator("jenkins_url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:  # noqa: D401
        return v.strip().rstrip("/")

    @field_validator(
        "poll_interval_seconds",
        "build_start_timeout_seconds",
        "build_finish_timeout_seconds",
        "pending_settle_timeout_seconds",
        "node_state_timeout_seconds",
        "history_retry_budget_seconds",
    )
    @classmethod
    def _positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("polling budgets must be strictly positive")
        return v

    @property
    def has_credentials(self) -> bool:
        return bool(self.jenkins_user and self.jenkins_api_token)

    # Pydantic-settings v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        validate_assignment=True,
        extra="ignore",
        populate_by_name=True,
    )


# ------------------------------------------------------------
# Logging configuration (structlog)
# ------------------------------------------------------------

SENSITIVE_LOG_KEYS = {
    "password",
    "pass",
    "pwd",
    "authorization",
    "cookie",
    "cookies",
    "token",
    "api_token",
    "jenkins_api_token",
    "crumb",
    "jenkins-crumb",
}


def redact_sensitive(logger, method_name, event_dict):  # noqa: D401
    """Shallow redaction of credentials that end up in a log context."""

    def _scrub(value):
        if isinstance(value, dict):
            out = {}
            for k, v in value.items():
                ks = str(k).lower()
                if ks in SENSITIVE_LOG_KEYS or any(sk in ks for sk in ("token", "password", "authorization", "crumb")):
                    out[k] = "[REDACTED]"
                else:
                    out[k] = _scrub(v)
            return out
        if isinstance(value, (list, tuple)):
            return [_scrub(v) for v in value]
        return value

    return _scrub(event_dict)


def configure_logging(level: str = "INFO", settings: Settings | None = None) -> None:
    """Configure structured logging with structlog.

    Uses a standard logging handler + structlog processors for JSON output,
    with an optional rotating file handler when LOG_FILE is set.
    """
    timestamper = structlog.processors.TimeStamper(fmt="iso", utc=True)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            timestamper,
            structlog.processors.add_log_level,
            redact_sensitive,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.upper(), logging.INFO)),
        cache_logger_on_first_use=True,
    )

    handlers: list[logging.Handler] = []
    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(logging.Formatter("%(message)s"))
    handlers.append(stream_handler)

    if settings and settings.log_file:
        try:
            log_path = Path(settings.log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                settings.log_file,
                maxBytes=settings.log_max_bytes,
                backupCount=settings.log_backup_count,
                encoding="utf-8",
            )
            file_handler.setFormatter(logging.Formatter("%(message)s"))
            handlers.append(file_handler)
        except OSError as e:  # pragma: no cover
            print(f"Failed to set file handler: {e}", file=sys.stderr)

    root = logging.getLogger()
    root.handlers = handlers
    root.setLevel(getattr(logging, level.upper(), logging.INFO))


# ------------------------------------------------------------
# Metrics instruments
# ------------------------------------------------------------
BUILDS_TRIGGERED_TOTAL = Counter(
    "acceptance_builds_triggered_total", "Build requests submitted to the server", labelnames=("mode",)
)
POLL_SAMPLES_TOTAL = Counter(
    "acceptance_poll_samples_total", "Remote state samples taken by the poller", labelnames=("what",)
)
POLL_TIMEOUTS_TOTAL = Counter(
    "acceptance_poll_timeouts_total", "Polls that exhausted their budget", labelnames=("what",)
)
POLL_DURATION_SECONDS = Histogram(
    "acceptance_poll_duration_seconds", "Time spent waiting on a remote condition", labelnames=("what",)
)
TRANSPORT_ERRORS_TOTAL = Counter(
    "acceptance_transport_errors_total", "Failed calls to the remote server", labelnames=("endpoint",)
)
NODE_TOGGLES_TOTAL = Counter(
    "acceptance_node_toggles_total", "Online/offline transitions requested", labelnames=("state",)
)


# ------------------------------------------------------------
# Context dataclass
# ------------------------------------------------------------
@dataclass(slots=True)
class AcceptanceContext:
    settings: Settings
    logger: structlog.BoundLogger
    client: "JenkinsClient"
    poller: "OutcomePoller"

    def job(self, name: str):
        from .jobs import Job

        return Job(name, self.client, self.poller)

    def node(self, name: str):
        from .nodes import RemoteNode

        return RemoteNode(name, self.client, self.poller)


def _report_metrics(settings: Settings, logger: structlog.BoundLogger) -> None:
    """Log locator health and recorded failures, dump the registry to METRICS_FILE when set."""
    from .core.errors import failure_counts
    from .locators import get_locator_manager

    report = get_locator_manager().health_report()
    logger.info("locator_health", healthy=report["overall_healthy"],
                unhealthy=[k for k, v in report["categories"].items() if not v["healthy"]])
    failures = failure_counts()
    if failures:
        logger.info("failure_summary", total=sum(failures.values()), by_signature=failures)
    if settings.metrics_file:
        try:
            Path(settings.metrics_file).parent.mkdir(parents=True, exist_ok=True)
            write_to_textfile(settings.metrics_file, REGISTRY)
        except OSError as exc:
            logger.warning("metrics_file_failed", path=settings.metrics_file, error=str(exc))


@asynccontextmanager
async def open_context(settings: Settings | None = None) -> AsyncIterator[AcceptanceContext]:
    """Acquire a scenario context; the HTTP session is closed on exit.

    Args:
        settings: Explicit settings; loaded from the environment when omitted.
    """
    settings = settings or Settings()
    configure_logging(settings.log_level, settings)
    logger = structlog.get_logger().bind(app=settings.app_name, component="bootstrap")

    from .config_inspect import log_safe
    log_safe(logger, custom={
        "jenkins_url": settings.jenkins_url,
        "built_in_node_name": settings.built_in_node_name,
        "poll_interval_seconds": settings.poll_interval_seconds,
        "build_start_timeout_seconds": settings.build_start_timeout_seconds,
        "build_finish_timeout_seconds": settings.build_finish_timeout_seconds,
    })

    Path(settings.screenshot_dir).mkdir(parents=True, exist_ok=True)

    from .poller import OutcomePoller
    from .remote import JenkinsClient

    t0 = time.perf_counter()
    client = JenkinsClient(settings, logger=logger.bind(subsystem="remote"))
    poller = OutcomePoller(client, settings, logger=logger.bind(subsystem="poller"))
    ctx = AcceptanceContext(
        settings=settings,
        logger=logger.bind(subsystem="core"),
        client=client,
        poller=poller,
    )
    logger.info(
        "context_opened",
        jenkins_url=settings.jenkins_url,
        authenticated=settings.has_credentials,
        elapsed=f"{time.perf_counter() - t0:.3f}s",
    )
    try:
        yield ctx
    finally:
        await client.aclose()
        if settings.enable_metrics:
            _report_metrics(settings, logger)
        logger.info("context_closed")
