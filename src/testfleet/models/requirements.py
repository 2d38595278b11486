"""Resource and capability requirement sets.

A requirement set carries boolean capability flags (``browser``,
``database``, ...) plus tiered resource demands (``memory`` in MB,
``cpu`` in cores).  Runners describe what they *offer* with the same
type, so eligibility is a plain containment check.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

# ── Constants ─────────────────────────────────────────────────────

_MEMORY_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(MB|GB|TB)?\s*$", re.IGNORECASE)
_CPU_RE = re.compile(r"^\s*(\d+)\s*(?:cores?|cpus?)?\s*$", re.IGNORECASE)

_MB_PER_UNIT = {"MB": 1, "GB": 1024, "TB": 1024 * 1024}

TIERED_KEYS = frozenset({"memory", "cpu"})
"""Requirement keys compared by magnitude rather than presence."""


def parse_memory(value: str | int) -> int:
    """Parse a memory demand such as ``"512MB"`` or ``"4GB"`` into megabytes.

    Bare integers are taken as megabytes already.

    Raises:
        ValueError: If the value is not a recognizable memory size.
    """
    if isinstance(value, int):
        return value
    match = _MEMORY_RE.match(value)
    if match is None:
        msg = f"Invalid memory requirement: {value!r}"
        raise ValueError(msg)
    unit = (match.group(2) or "MB").upper()
    return int(float(match.group(1)) * _MB_PER_UNIT[unit])


def parse_cpu(value: str | int) -> int:
    """Parse a CPU demand such as ``"2core"`` into a core count.

    Raises:
        ValueError: If the value is not a recognizable core count.
    """
    if isinstance(value, int):
        return value
    match = _CPU_RE.match(value)
    if match is None:
        msg = f"Invalid cpu requirement: {value!r}"
        raise ValueError(msg)
    return int(match.group(1))


_TIER_PARSERS = {"memory": parse_memory, "cpu": parse_cpu}


@dataclass(frozen=True)
class RequirementSet:
    """Capability flags plus tiered resource demands.

    Instances are immutable; :meth:`merge` returns a new set.
    """

    flags: frozenset[str] = frozenset()
    """Capabilities that must be present (e.g. ``browser``)."""

    tiers: Mapping[str, int] = field(default_factory=lambda: MappingProxyType({}))
    """Tiered demands keyed by resource name (``memory`` in MB, ``cpu`` in cores)."""

    def __post_init__(self) -> None:
        # Normalize to immutable containers so equal sets compare and hash equal.
        object.__setattr__(self, "flags", frozenset(self.flags))
        object.__setattr__(self, "tiers", MappingProxyType(dict(self.tiers)))

    def __hash__(self) -> int:
        return hash((self.flags, tuple(sorted(self.tiers.items()))))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RequirementSet):
            return NotImplemented
        return self.flags == other.flags and dict(self.tiers) == dict(other.tiers)

    # mappingproxy cannot be copied; the set is immutable so sharing it is safe.
    def __copy__(self) -> RequirementSet:
        return self

    def __deepcopy__(self, memo: dict[int, Any]) -> RequirementSet:
        return self

    def __len__(self) -> int:
        """Number of distinct requirements (flags plus tiered demands)."""
        return len(self.flags) + len(self.tiers)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> RequirementSet:
        """Build a set from catalog notation.

        ``memory`` and ``cpu`` values are parsed as tiers; any other key
        is a capability flag that is set when its value is truthy.

        Example:
            >>> RequirementSet.from_mapping({"memory": "1GB", "cpu": "2core", "browser": True})
            RequirementSet(flags=frozenset({'browser'}), tiers=...)
        """
        flags: set[str] = set()
        tiers: dict[str, int] = {}
        for key, value in raw.items():
            if key in TIERED_KEYS:
                tiers[key] = _TIER_PARSERS[key](value)
            elif value:
                flags.add(str(key))
        return cls(flags=frozenset(flags), tiers=tiers)

    def to_mapping(self) -> dict[str, Any]:
        """Serialize to a plain dict (tiers as integers, flags as ``True``)."""
        data: dict[str, Any] = dict(sorted(self.tiers.items()))
        for flag in sorted(self.flags):
            data[flag] = True
        return data

    def merge(self, other: RequirementSet) -> RequirementSet:
        """Return the union of flags and the per-key max of tiered demands."""
        tiers = dict(self.tiers)
        for key, value in other.tiers.items():
            tiers[key] = max(tiers.get(key, value), value)
        return RequirementSet(flags=self.flags | other.flags, tiers=tiers)

    def contains(self, other: RequirementSet) -> bool:
        """Return True if this set is at least *other* on every field."""
        if not other.flags <= self.flags:
            return False
        return all(self.tiers.get(key, 0) >= value for key, value in other.tiers.items())


def merge_all(sets: Iterable[RequirementSet]) -> RequirementSet:
    """Fold :meth:`RequirementSet.merge` over *sets* (empty input gives an empty set)."""
    merged = RequirementSet()
    for item in sets:
        merged = merged.merge(item)
    return merged
