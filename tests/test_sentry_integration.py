"""Tests for Sentry integration."""

from __future__ import annotations

from collections.abc import Generator
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from testfleet.config import SentryConfig, load_config
from testfleet.telemetry import sentry_integration


@pytest.fixture(autouse=True)
def _reset_sentry_state() -> Generator[None]:
    """Reset Sentry singleton state between tests."""
    sentry_integration._initialized["value"] = False
    yield
    sentry_integration._initialized["value"] = False


@pytest.fixture
def mock_sdk() -> Generator[MagicMock]:
    with patch.object(sentry_integration, "sentry_sdk") as sdk:
        yield sdk


# ---------------------------------------------------------------------------
# init_sentry
# ---------------------------------------------------------------------------


def test_init_sentry_disabled_does_not_call_sdk(mock_sdk: MagicMock) -> None:
    sentry_integration.init_sentry(SentryConfig(enabled=False, dsn="https://key@sentry.io/123"))

    mock_sdk.init.assert_not_called()
    assert not sentry_integration.is_sentry_enabled()


def test_init_sentry_enabled_no_dsn_warns(
    mock_sdk: MagicMock, caplog: pytest.LogCaptureFixture
) -> None:
    sentry_integration.init_sentry(SentryConfig(enabled=True, dsn=""))

    mock_sdk.init.assert_not_called()
    assert not sentry_integration.is_sentry_enabled()
    assert "no DSN configured" in caplog.text


def test_init_sentry_valid_config_calls_sdk(mock_sdk: MagicMock) -> None:
    config = SentryConfig(
        enabled=True,
        dsn="https://key@sentry.io/123",
        traces_sample_rate=0.5,
        profiles_sample_rate=0.1,
        environment="test",
    )

    sentry_integration.init_sentry(config)

    assert sentry_integration.is_sentry_enabled()
    mock_sdk.init.assert_called_once()
    call_kwargs = mock_sdk.init.call_args[1]
    assert call_kwargs["dsn"] == "https://key@sentry.io/123"
    assert call_kwargs["traces_sample_rate"] == 0.5
    assert call_kwargs["profiles_sample_rate"] == 0.1
    assert call_kwargs["send_default_pii"] is False
    assert call_kwargs["server_name"] == ""
    assert call_kwargs["environment"] == "test"
    assert call_kwargs["release"].startswith("testfleet@")
    assert call_kwargs["in_app_include"] == ["testfleet"]


def test_init_sentry_is_idempotent(mock_sdk: MagicMock) -> None:
    config = SentryConfig(enabled=True, dsn="https://key@sentry.io/123")
    sentry_integration.init_sentry(config)
    sentry_integration.init_sentry(config)

    assert mock_sdk.init.call_count == 1


def test_init_sentry_ci_environment(
    mock_sdk: MagicMock, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("CI", "true")
    sentry_integration.init_sentry(SentryConfig(enabled=True, dsn="https://key@sentry.io/123"))

    assert mock_sdk.init.call_args[1]["environment"] == "ci"


def test_init_sentry_local_environment(
    mock_sdk: MagicMock, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.delenv("CI", raising=False)
    sentry_integration.init_sentry(SentryConfig(enabled=True, dsn="https://key@sentry.io/123"))

    assert mock_sdk.init.call_args[1]["environment"] == "local"


# ---------------------------------------------------------------------------
# Privacy scrubbing
# ---------------------------------------------------------------------------


def test_scrub_event_removes_frame_vars() -> None:
    event: dict[str, Any] = {
        "exception": {
            "values": [
                {
                    "value": "Shard shard-3 failed on runner r1: token=abc123",
                    "stacktrace": {
                        "frames": [
                            {
                                "filename": "testfleet/scheduling/executor.py",
                                "vars": {"api_key": "sk-secret123", "x": 42},
                            }
                        ]
                    },
                }
            ]
        }
    }
    scrubbed = sentry_integration._scrub_event(event)
    value = scrubbed["exception"]["values"][0]
    assert "vars" not in value["stacktrace"]["frames"][0]
    assert "abc123" not in value["value"]


def test_scrub_event_anonymizes_paths() -> None:
    event: dict[str, Any] = {
        "exception": {
            "values": [
                {
                    "stacktrace": {
                        "frames": [
                            {
                                "filename": "/Users/john/projects/testfleet/coordinator.py",
                                "abs_path": "/home/jane/testfleet/coordinator.py",
                            }
                        ]
                    }
                }
            ]
        }
    }
    scrubbed = sentry_integration._scrub_event(event)
    frame = scrubbed["exception"]["values"][0]["stacktrace"]["frames"][0]
    assert "/Users/john" not in frame["filename"]
    assert "/home/jane" not in frame["abs_path"]
    assert "/~" in frame["abs_path"]


def test_scrub_event_removes_server_name() -> None:
    scrubbed = sentry_integration._scrub_event({"server_name": "ci-box.local", "tags": {}})
    assert "server_name" not in scrubbed


def test_before_send_preserves_structure() -> None:
    event: dict[str, Any] = {
        "event_id": "abc123",
        "level": "error",
        "tags": {"version": "1.0"},
        "extra": {"shards": 4},
    }
    result = sentry_integration._before_send(event, {})
    assert result is not None
    assert result["event_id"] == "abc123"
    assert result["extra"] == {"shards": 4}


# ---------------------------------------------------------------------------
# Metrics helpers (no-op when disabled)
# ---------------------------------------------------------------------------


def test_metrics_noop_when_disabled(mock_sdk: MagicMock) -> None:
    sentry_integration.record_metric_count("testfleet.shard.retry")
    sentry_integration.record_metric_distribution("testfleet.shard.duration_ms", 42.0)
    sentry_integration.record_metric_gauge("testfleet.run.cost", 0.1)

    mock_sdk.metrics.count.assert_not_called()
    mock_sdk.metrics.distribution.assert_not_called()
    mock_sdk.metrics.gauge.assert_not_called()


def test_record_metric_count_calls_sdk_when_enabled(mock_sdk: MagicMock) -> None:
    sentry_integration._initialized["value"] = True

    sentry_integration.record_metric_count("testfleet.shard.fault", runner="r1")

    mock_sdk.metrics.count.assert_called_once_with(
        "testfleet.shard.fault", 1.0, attributes={"runner": "r1"}
    )


def test_record_metric_distribution_calls_sdk_when_enabled(mock_sdk: MagicMock) -> None:
    sentry_integration._initialized["value"] = True

    sentry_integration.record_metric_distribution(
        "testfleet.shard.duration_ms", 1500.0, unit="millisecond"
    )

    mock_sdk.metrics.distribution.assert_called_once_with(
        "testfleet.shard.duration_ms", 1500.0, unit="millisecond", attributes=None
    )


# ---------------------------------------------------------------------------
# Tracing helpers
# ---------------------------------------------------------------------------


def test_start_span_returns_noop_when_disabled() -> None:
    span = sentry_integration.start_span(op="testfleet.run", description="scheduler run")
    assert isinstance(span, sentry_integration._NoOpSpan)


def test_noop_span_context_manager() -> None:
    with sentry_integration._NoOpSpan() as span:
        span.set_data("shards", 3)
        span.set_status("ok")


def test_start_span_calls_sdk_when_enabled(mock_sdk: MagicMock) -> None:
    sentry_integration._initialized["value"] = True

    sentry_integration.start_span(op="testfleet.shard", description="shard-0")

    mock_sdk.start_span.assert_called_once_with(op="testfleet.shard", description="shard-0")


# ---------------------------------------------------------------------------
# Config parsing
# ---------------------------------------------------------------------------


def test_parse_sentry_config_from_yaml(tmp_path: Any) -> None:
    (tmp_path / ".testfleet.yml").write_text(
        "sentry:\n"
        "  enabled: true\n"
        "  dsn: https://key@sentry.io/123\n"
        "  traces_sample_rate: 0.5\n"
        "  profiles_sample_rate: 0.1\n"
        "  environment: staging\n"
    )

    config = load_config(tmp_path)
    assert config.sentry.enabled is True
    assert config.sentry.dsn == "https://key@sentry.io/123"
    assert config.sentry.traces_sample_rate == 0.5
    assert config.sentry.profiles_sample_rate == 0.1
    assert config.sentry.environment == "staging"
