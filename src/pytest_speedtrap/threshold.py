from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Dict, Optional

import pytest

if TYPE_CHECKING:  # pragma: no cover
    from .registry import TestIdentity

OverrideLookup = Callable[["TestIdentity"], Optional[int]]

MARKER_NAME = "slow_threshold"


def _no_overrides(identity: "TestIdentity") -> Optional[int]:
    return None


@dataclass(frozen=True)
class ThresholdResolver:
    """Effective slow threshold for a test: its declared override, else the suite default.

    An override replaces the default outright; ``0`` turns slowness checking
    off for that test.
    """

    default_ms: int
    lookup: OverrideLookup = _no_overrides

    def effective_threshold(self, identity: "TestIdentity") -> int:
        override = self.lookup(identity)
        return self.default_ms if override is None else override


class MarkerThresholds:
    """Per-test overrides declared with ``@pytest.mark.slow_threshold(ms)``."""

    def __init__(self) -> None:
        self._by_nodeid: Dict[str, int] = {}

    def __call__(self, identity: "TestIdentity") -> Optional[int]:
        return self._by_nodeid.get(identity.key)

    def __len__(self) -> int:
        return len(self._by_nodeid)

    def collect(self, items) -> None:
        for item in items:
            marker = item.get_closest_marker(MARKER_NAME)
            if marker is None:
                continue
            raw = marker.kwargs.get("ms", marker.args[0] if marker.args else None)
            value = parse_override(raw)
            if value is None:
                item.warn(pytest.PytestConfigWarning(f"ignoring {MARKER_NAME} marker with non-integer value {raw!r}"))
                continue
            self._by_nodeid[item.nodeid] = value


def parse_override(raw) -> Optional[int]:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str):
        try:
            return int(raw.strip())
        except ValueError:
            return None
    return None
