"""Configuration parsing from ``.testfleet.yml``."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from testfleet.models.requirements import RequirementSet
from testfleet.models.runner import Runner

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".testfleet.yml"

_ENV_VAR_RE = re.compile(r"\$\{(\w+)\}")

_SHARDING_STRATEGIES = ("scored", "round_robin")


def _resolve_env_vars(value: str) -> str:
    """Replace ``${VAR_NAME}`` placeholders with environment variable values."""

    def _replace(match: re.Match[str]) -> str:
        var = match.group(1)
        resolved = os.environ.get(var)
        if resolved is None:
            logger.warning("Environment variable %s is not set (referenced in config)", var)
            return ""
        return resolved

    return _ENV_VAR_RE.sub(_replace, value)


def _resolve_dict(data: dict[str, Any]) -> dict[str, Any]:
    """Recursively resolve environment variables in a dictionary."""
    result: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, str):
            result[key] = _resolve_env_vars(value)
        elif isinstance(value, dict):
            result[key] = _resolve_dict(value)
        elif isinstance(value, list):
            result[key] = [
                _resolve_dict(item)
                if isinstance(item, dict)
                else _resolve_env_vars(item)
                if isinstance(item, str)
                else item
                for item in value
            ]
        else:
            result[key] = value
    return result


@dataclass(frozen=True)
class PlannerWeights:
    """Weights of the test ordering heuristic used by the sharding planner."""

    duration: float = 100.0
    """Reward for short tests, scaled by ``(max_duration_ms - duration) / max_duration_ms``."""

    priority: float = 20.0
    """Reward per priority point (high=3, medium=2, low=1)."""

    reliability: float = 50.0
    """Reward for historically reliable tests (success rate 0.0-1.0)."""

    complexity: float = 5.0
    """Penalty per distinct requirement."""

    max_duration_ms: float = 100_000.0
    """Duration at which the duration reward reaches zero."""


@dataclass(frozen=True)
class SelectorWeights:
    """Exponents of the runner score ``capacity**a / cost**b * health**c``."""

    capacity: float = 1.0
    cost: float = 1.0
    health: float = 1.0


@dataclass(frozen=True)
class CoordinatorConfig:
    """Scheduler settings. Immutable for the duration of one run."""

    max_concurrent_shards: int = 4
    """Global cap on shard executions in flight."""

    target_shard_duration_ms: float = 60_000.0
    """Upper bound on the estimated duration of a multi-test shard."""

    max_retries: int = 3
    """Re-attempts allowed after a whole-shard execution fault."""

    health_check_interval_ms: float = 30_000.0
    """Period of the health monitor."""

    unhealthy_threshold: float = 0.5
    """Runners below this health score are not selectable."""

    no_eligible_runner_timeout_ms: float = 30_000.0
    """How long a shard may wait for an eligible runner before failing.

    Time spent waiting only because capable runners are saturated does not count.
    """

    shard_timeout_ms: float = 0.0
    """Per-attempt execution timeout (0 = none)."""

    sharding_strategy: str = "scored"
    """``scored`` (greedy duration-bounded packing) or ``round_robin``."""

    cost_optimization: bool = True
    """Prefer cheaper shards among equal priorities when dispatching."""

    enforce_runner_capacity: bool = True
    """Treat runner capacity as a hard per-runner concurrency limit."""

    abandon_in_flight_on_abort: bool = False
    """Cancel running shards on abort instead of letting them finish."""

    planner_weights: PlannerWeights = field(default_factory=PlannerWeights)
    selector_weights: SelectorWeights = field(default_factory=SelectorWeights)


@dataclass
class ReportConfig:
    """Results output configuration."""

    output_dir: str = "test-results/distributed"
    """Directory receiving ``summary.json`` and ``insights.json``."""

    terminal: bool = True
    """Print the run summary to the terminal."""


@dataclass
class SentryConfig:
    """Sentry error monitoring and observability configuration."""

    enabled: bool = False
    """Opt-in flag. No Sentry data sent unless True."""

    dsn: str = ""
    """Sentry DSN (Data Source Name). Configurable, not hardcoded."""

    traces_sample_rate: float = 0.0
    """Fraction of transactions sent for tracing (0.0-1.0). 0 = disabled."""

    profiles_sample_rate: float = 0.0
    """Fraction of profiled transactions (0.0-1.0). 0 = disabled."""

    environment: str = ""
    """Override environment tag (auto-detected if empty)."""


@dataclass
class TestfleetConfig:
    """Complete configuration from ``.testfleet.yml``."""

    __test__ = False

    scheduler: CoordinatorConfig = field(default_factory=CoordinatorConfig)
    runners: list[Runner] = field(default_factory=list)
    report: ReportConfig = field(default_factory=ReportConfig)
    sentry: SentryConfig = field(default_factory=SentryConfig)
    raw: dict[str, Any] = field(default_factory=dict)
    """Raw parsed YAML for extension/debugging."""


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name, {})
    return value if isinstance(value, dict) else {}


def _parse_planner_weights(raw: dict[str, Any]) -> PlannerWeights:
    """Parse ``scheduler.planner_weights``."""
    default = PlannerWeights()
    return PlannerWeights(
        duration=float(raw.get("duration", default.duration)),
        priority=float(raw.get("priority", default.priority)),
        reliability=float(raw.get("reliability", default.reliability)),
        complexity=float(raw.get("complexity", default.complexity)),
        max_duration_ms=float(raw.get("max_duration_ms", default.max_duration_ms)),
    )


def _parse_selector_weights(raw: dict[str, Any]) -> SelectorWeights:
    """Parse ``scheduler.selector_weights``."""
    return SelectorWeights(
        capacity=float(raw.get("capacity", 1.0)),
        cost=float(raw.get("cost", 1.0)),
        health=float(raw.get("health", 1.0)),
    )


def _parse_scheduler_config(raw: dict[str, Any]) -> CoordinatorConfig:
    """Parse the ``scheduler`` section."""
    sched_raw = _section(raw, "scheduler")
    default = CoordinatorConfig()

    return CoordinatorConfig(
        max_concurrent_shards=int(
            sched_raw.get("max_concurrent_shards", default.max_concurrent_shards)
        ),
        target_shard_duration_ms=float(
            sched_raw.get("target_shard_duration_ms", default.target_shard_duration_ms)
        ),
        max_retries=int(sched_raw.get("max_retries", default.max_retries)),
        health_check_interval_ms=float(
            sched_raw.get("health_check_interval_ms", default.health_check_interval_ms)
        ),
        unhealthy_threshold=float(
            sched_raw.get("unhealthy_threshold", default.unhealthy_threshold)
        ),
        no_eligible_runner_timeout_ms=float(
            sched_raw.get(
                "no_eligible_runner_timeout_ms", default.no_eligible_runner_timeout_ms
            )
        ),
        shard_timeout_ms=float(sched_raw.get("shard_timeout_ms", default.shard_timeout_ms)),
        sharding_strategy=str(sched_raw.get("sharding_strategy", default.sharding_strategy)),
        cost_optimization=bool(sched_raw.get("cost_optimization", default.cost_optimization)),
        enforce_runner_capacity=bool(
            sched_raw.get("enforce_runner_capacity", default.enforce_runner_capacity)
        ),
        abandon_in_flight_on_abort=bool(
            sched_raw.get("abandon_in_flight_on_abort", default.abandon_in_flight_on_abort)
        ),
        planner_weights=_parse_planner_weights(_section(sched_raw, "planner_weights")),
        selector_weights=_parse_selector_weights(_section(sched_raw, "selector_weights")),
    )


def parse_runner(raw: dict[str, Any]) -> Runner:
    """Build a :class:`Runner` from one entry of the ``runners`` list."""
    capabilities_raw = raw.get("capabilities", {})
    if not isinstance(capabilities_raw, dict):
        capabilities_raw = {}

    return Runner(
        id=str(raw["id"]),
        type=str(raw.get("type", "")),
        region=str(raw.get("region", "")),
        capacity=int(raw.get("capacity", 1)),
        unit_cost=float(raw.get("unit_cost", raw.get("cost", 0.0))),
        capabilities=RequirementSet.from_mapping(capabilities_raw),
        health_score=float(raw.get("health_score", 1.0)),
    )


def _parse_runners(raw: dict[str, Any]) -> list[Runner]:
    """Parse the ``runners`` list, skipping entries without an id."""
    runners_raw = raw.get("runners", [])
    if not isinstance(runners_raw, list):
        return []

    runners: list[Runner] = []
    for entry in runners_raw:
        if not isinstance(entry, dict) or "id" not in entry:
            logger.warning("Skipping runner entry without an id: %r", entry)
            continue
        runners.append(parse_runner(entry))
    return runners


def _parse_report_config(raw: dict[str, Any]) -> ReportConfig:
    """Parse the ``report`` section."""
    report_raw = _section(raw, "report")
    return ReportConfig(
        output_dir=str(report_raw.get("output_dir", "test-results/distributed")),
        terminal=bool(report_raw.get("terminal", True)),
    )


def _parse_sentry_config(raw: dict[str, Any]) -> SentryConfig:
    """Parse Sentry configuration from raw YAML."""
    sentry_raw = _section(raw, "sentry")

    enabled_raw = sentry_raw.get("enabled", os.environ.get("TESTFLEET_SENTRY_ENABLED", ""))
    enabled = enabled_raw in {True, "true", "1", "yes"}

    return SentryConfig(
        enabled=enabled,
        dsn=str(sentry_raw.get("dsn", os.environ.get("TESTFLEET_SENTRY_DSN", ""))),
        traces_sample_rate=float(
            sentry_raw.get(
                "traces_sample_rate",
                os.environ.get("TESTFLEET_SENTRY_TRACES_SAMPLE_RATE", "0.0"),
            )
        ),
        profiles_sample_rate=float(
            sentry_raw.get(
                "profiles_sample_rate",
                os.environ.get("TESTFLEET_SENTRY_PROFILES_SAMPLE_RATE", "0.0"),
            )
        ),
        environment=str(sentry_raw.get("environment", "")),
    )


def load_config(root: str | Path) -> TestfleetConfig:
    """Load and parse the complete ``.testfleet.yml`` configuration.

    Falls back to defaults and environment variables when the YAML file
    is missing or incomplete.
    """
    root_path = Path(root).resolve()
    config_file = root_path / CONFIG_FILENAME

    raw: dict[str, Any] = {}
    if config_file.is_file():
        parsed = yaml.safe_load(config_file.read_text(encoding="utf-8"))
        if isinstance(parsed, dict):
            raw = _resolve_dict(parsed)

    return TestfleetConfig(
        scheduler=_parse_scheduler_config(raw),
        runners=_parse_runners(raw),
        report=_parse_report_config(raw),
        sentry=_parse_sentry_config(raw),
        raw=raw,
    )


# ── Validation ────────────────────────────────────────────────────


def _validate_planner_weights(weights: PlannerWeights) -> list[str]:
    """Validate planner weights; all-zero weights give a degenerate ordering."""
    errors: list[str] = []
    values = {
        "duration": weights.duration,
        "priority": weights.priority,
        "reliability": weights.reliability,
        "complexity": weights.complexity,
    }
    for name, value in values.items():
        if value < 0:
            errors.append(
                f"scheduler.planner_weights.{name} must be non-negative (got: {value})"
            )
    if all(value == 0 for value in values.values()):
        errors.append("scheduler.planner_weights must not all be zero")
    if weights.max_duration_ms <= 0:
        errors.append(
            f"scheduler.planner_weights.max_duration_ms must be positive "
            f"(got: {weights.max_duration_ms})"
        )
    return errors


def _validate_selector_weights(weights: SelectorWeights) -> list[str]:
    errors: list[str] = []
    for name in ("capacity", "cost", "health"):
        value = getattr(weights, name)
        if value < 0:
            errors.append(
                f"scheduler.selector_weights.{name} must be non-negative (got: {value})"
            )
    return errors


def validate_scheduler_config(config: CoordinatorConfig) -> list[str]:
    """Validate scheduler settings and return a list of error messages."""
    errors: list[str] = []

    if config.max_concurrent_shards < 1:
        errors.append(
            f"scheduler.max_concurrent_shards must be at least 1 "
            f"(got: {config.max_concurrent_shards})"
        )
    if config.target_shard_duration_ms <= 0:
        errors.append(
            f"scheduler.target_shard_duration_ms must be positive "
            f"(got: {config.target_shard_duration_ms})"
        )
    if config.max_retries < 0:
        errors.append(f"scheduler.max_retries must be non-negative (got: {config.max_retries})")
    if config.health_check_interval_ms <= 0:
        errors.append(
            f"scheduler.health_check_interval_ms must be positive "
            f"(got: {config.health_check_interval_ms})"
        )
    if not 0.0 <= config.unhealthy_threshold <= 1.0:
        errors.append(
            f"scheduler.unhealthy_threshold must be between 0.0 and 1.0 "
            f"(got: {config.unhealthy_threshold})"
        )
    if config.no_eligible_runner_timeout_ms < 0:
        errors.append(
            f"scheduler.no_eligible_runner_timeout_ms must be non-negative "
            f"(got: {config.no_eligible_runner_timeout_ms})"
        )
    if config.shard_timeout_ms < 0:
        errors.append(
            f"scheduler.shard_timeout_ms must be non-negative (got: {config.shard_timeout_ms})"
        )
    if config.sharding_strategy not in _SHARDING_STRATEGIES:
        errors.append(
            f"scheduler.sharding_strategy must be one of: {', '.join(_SHARDING_STRATEGIES)} "
            f"(got: {config.sharding_strategy})"
        )

    errors.extend(_validate_planner_weights(config.planner_weights))
    errors.extend(_validate_selector_weights(config.selector_weights))
    return errors


def validate_runners(runners: list[Runner]) -> list[str]:
    """Validate runner inventory: unique ids, positive capacity and cost."""
    errors: list[str] = []
    seen: set[str] = set()

    for runner in runners:
        if runner.id in seen:
            errors.append(f"runners: duplicate runner id {runner.id}")
        seen.add(runner.id)
        if runner.capacity < 1:
            errors.append(f"runners.{runner.id}.capacity must be at least 1 (got: {runner.capacity})")
        if runner.unit_cost <= 0:
            errors.append(f"runners.{runner.id}.unit_cost must be positive (got: {runner.unit_cost})")
        if not 0.0 <= runner.health_score <= 1.0:
            errors.append(
                f"runners.{runner.id}.health_score must be between 0.0 and 1.0 "
                f"(got: {runner.health_score})"
            )

    return errors


def _validate_sentry_config(sentry: SentryConfig) -> list[str]:
    """Validate Sentry configuration."""
    errors: list[str] = []

    if sentry.enabled and not sentry.dsn:
        errors.append("sentry.dsn is required when sentry.enabled is true")

    if not 0.0 <= sentry.traces_sample_rate <= 1.0:
        errors.append(
            f"sentry.traces_sample_rate must be between 0.0 and 1.0 "
            f"(got: {sentry.traces_sample_rate})"
        )

    if not 0.0 <= sentry.profiles_sample_rate <= 1.0:
        errors.append(
            f"sentry.profiles_sample_rate must be between 0.0 and 1.0 "
            f"(got: {sentry.profiles_sample_rate})"
        )

    return errors


def validate_config(config: TestfleetConfig) -> list[str]:
    """Validate the configuration and return a list of error messages.

    Returns an empty list if the configuration is valid.
    """
    errors: list[str] = []
    errors.extend(validate_scheduler_config(config.scheduler))
    errors.extend(validate_runners(config.runners))
    errors.extend(_validate_sentry_config(config.sentry))
    return errors
