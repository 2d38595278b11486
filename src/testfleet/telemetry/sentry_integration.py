"""Sentry SDK integration for testfleet.

Tracing and metrics for scheduler runs.  Strictly opt-in: nothing is sent
unless ``sentry.enabled: true`` is set in ``.testfleet.yml`` or
``TESTFLEET_SENTRY_ENABLED=true`` is exported.
"""

from __future__ import annotations

import logging
import os
import re
import threading
from typing import TYPE_CHECKING, Any

import sentry_sdk
import sentry_sdk.metrics
from sentry_sdk.integrations.logging import LoggingIntegration

from testfleet import __version__

if TYPE_CHECKING:
    from types import TracebackType

    from testfleet.config import SentryConfig

logger = logging.getLogger(__name__)

_init_lock = threading.Lock()
_initialized: dict[str, bool] = {"value": False}

# Runner endpoints and executor errors may carry credentials
_SENSITIVE_PATTERN = re.compile(
    r"(api[_-]?key|password|secret|token|dsn|authorization)\s*[:=]\s*\S+",
    re.IGNORECASE,
)

_PATH_HOME_RE = re.compile(r"/(?:home|Users)/[^/]+")


def _detect_environment() -> str:
    return "ci" if os.environ.get("CI", "").lower() in {"1", "true", "yes"} else "local"


def init_sentry(config: SentryConfig) -> None:
    """Initialize Sentry SDK if enabled and configured.

    Idempotent and thread-safe; calls after the first successful
    initialization do nothing.
    """
    with _init_lock:
        if _initialized["value"]:
            return
        if not config.enabled:
            logger.debug("Sentry disabled (sentry.enabled is false)")
            return
        if not config.dsn:
            logger.warning("Sentry enabled but no DSN configured")
            return

        environment = config.environment or _detect_environment()

        sentry_sdk.init(
            dsn=config.dsn,
            release=f"testfleet@{__version__}",
            environment=environment,
            traces_sample_rate=config.traces_sample_rate,
            profiles_sample_rate=config.profiles_sample_rate,
            send_default_pii=False,
            server_name="",
            before_send=_before_send,
            before_send_transaction=_before_send,
            in_app_include=["testfleet"],
            integrations=[LoggingIntegration(level=logging.INFO, event_level=logging.ERROR)],
        )

        _initialized["value"] = True
        logger.info(
            "Sentry initialized (env=%s, tracing=%.2f, profiling=%.2f)",
            environment,
            config.traces_sample_rate,
            config.profiles_sample_rate,
        )


def is_sentry_enabled() -> bool:
    """Return whether Sentry has been successfully initialized."""
    return _initialized["value"]


# ---------------------------------------------------------------------------
# Privacy scrubbing
# ---------------------------------------------------------------------------


def _scrub_string(value: str) -> str:
    return _PATH_HOME_RE.sub("/~", _SENSITIVE_PATTERN.sub("[REDACTED]", value))


def _scrub_event(event: dict[str, Any]) -> dict[str, Any]:
    """Strip frame locals, home paths and credentials from exception data."""
    exception = event.get("exception")
    if isinstance(exception, dict):
        for value in exception.get("values", []):
            if isinstance(value.get("value"), str):
                value["value"] = _scrub_string(value["value"])
            stacktrace = value.get("stacktrace")
            if isinstance(stacktrace, dict):
                for frame in stacktrace.get("frames", []):
                    frame.pop("vars", None)
                    for key in ("filename", "abs_path"):
                        if isinstance(frame.get(key), str):
                            frame[key] = _scrub_string(frame[key])

    event.pop("server_name", None)
    return event


def _before_send(event: dict[str, Any], _hint: dict[str, Any]) -> dict[str, Any] | None:
    return _scrub_event(event)


# ---------------------------------------------------------------------------
# Metrics helpers (no-op when disabled)
# ---------------------------------------------------------------------------


def record_metric_count(name: str, value: int = 1, **attrs: str | int | float) -> None:
    """Emit a Sentry counter metric. No-op if Sentry is disabled."""
    if not _initialized["value"]:
        return
    sentry_sdk.metrics.count(name, float(value), attributes=dict(attrs) if attrs else None)


def record_metric_distribution(
    name: str, value: float, unit: str = "", **attrs: str | int | float
) -> None:
    """Emit a Sentry distribution metric. No-op if Sentry is disabled."""
    if not _initialized["value"]:
        return
    sentry_sdk.metrics.distribution(
        name, value, unit=unit or None, attributes=dict(attrs) if attrs else None
    )


def record_metric_gauge(
    name: str, value: float, unit: str = "", **attrs: str | int | float
) -> None:
    """Emit a Sentry gauge metric. No-op if Sentry is disabled."""
    if not _initialized["value"]:
        return
    sentry_sdk.metrics.gauge(
        name, value, unit=unit or None, attributes=dict(attrs) if attrs else None
    )


# ---------------------------------------------------------------------------
# Tracing helpers
# ---------------------------------------------------------------------------


class _NoOpSpan:
    """Stands in for a span when Sentry is disabled."""

    def __enter__(self) -> _NoOpSpan:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        pass

    def set_data(self, key: str, value: Any) -> None:
        """No-op data setter."""

    def set_status(self, status: str) -> None:
        """No-op status setter."""


def start_span(op: str, description: str) -> Any:
    """Start a new Sentry span. Returns a context manager.

    Returns a no-op context manager if Sentry is disabled.
    """
    if not _initialized["value"]:
        return _NoOpSpan()
    return sentry_sdk.start_span(op=op, description=description)
