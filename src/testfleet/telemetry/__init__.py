"""Telemetry integrations for testfleet."""

from testfleet.telemetry.sentry_integration import (
    init_sentry,
    is_sentry_enabled,
    record_metric_count,
    record_metric_distribution,
    record_metric_gauge,
    start_span,
)

__all__ = [
    "init_sentry",
    "is_sentry_enabled",
    "record_metric_count",
    "record_metric_distribution",
    "record_metric_gauge",
    "start_span",
]
