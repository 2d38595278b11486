"""File-based test catalog.

Reads a YAML or JSON document listing discovered tests::

    tests:
      - id: unit-0
        kind: unit
        file: packages/test-0.test.ts
        estimated_duration_ms: 2500
        priority: high
        requirements: {memory: 512MB, cpu: 1core}
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import yaml

from testfleet.models.requirements import RequirementSet
from testfleet.models.test_case import Priority, TestCase, TestKind

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

_KIND_ALIASES = {"end-to-end": "e2e", "end_to_end": "e2e"}


class CatalogError(ValueError):
    """Raised when a catalog file cannot be parsed into test cases."""


def parse_test_case(raw: dict[str, Any]) -> TestCase:
    """Build a :class:`TestCase` from one catalog entry.

    Raises:
        CatalogError: If the entry has no id or an unknown kind/priority.
    """
    if "id" not in raw:
        msg = f"Catalog entry without an id: {raw!r}"
        raise CatalogError(msg)

    kind_raw = str(raw.get("kind", raw.get("type", "unit"))).lower()
    requirements_raw = raw.get("requirements", {})
    if not isinstance(requirements_raw, dict):
        requirements_raw = {}

    try:
        return TestCase(
            id=str(raw["id"]),
            kind=TestKind(_KIND_ALIASES.get(kind_raw, kind_raw)),
            estimated_duration_ms=float(
                raw.get("estimated_duration_ms", raw.get("estimatedDuration", 0.0))
            ),
            priority=Priority(str(raw.get("priority", "medium")).lower()),
            requirements=RequirementSet.from_mapping(requirements_raw),
            file_path=str(raw.get("file", "")),
        )
    except ValueError as exc:
        msg = f"Invalid catalog entry {raw.get('id')!r}: {exc}"
        raise CatalogError(msg) from exc


def load_test_catalog(path: Path) -> list[TestCase]:
    """Load every test listed in a YAML/JSON catalog file.

    The document may be a list of entries or a mapping with a ``tests`` key.
    JSON is read by the YAML parser, which accepts it as-is.

    Raises:
        CatalogError: If the document or any entry is malformed.
    """
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("tests", [])
    if not isinstance(data, list):
        msg = f"Catalog {path} must contain a list of tests"
        raise CatalogError(msg)

    tests = [parse_test_case(entry) for entry in data if isinstance(entry, dict)]
    logger.info("Discovered %d tests in %s", len(tests), path)
    return tests
