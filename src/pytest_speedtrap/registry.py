from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from .threshold import ThresholdResolver


class ProtocolError(RuntimeError):
    """Raised when begin/end calls for a test do not pair up."""


def to_milliseconds(duration_ns: int) -> int:
    # round half up; durations are never negative
    return (int(duration_ns) + 500_000) // 1_000_000


def is_slow(duration_ms: int, threshold_ms: int) -> bool:
    return threshold_ms > 0 and duration_ms >= threshold_ms


@dataclass(frozen=True)
class TestIdentity:
    nodeid: str
    path: Optional[str] = None
    package: str = ""

    __test__ = False  # not a test class

    @property
    def key(self) -> str:
        return self.nodeid

    @property
    def label(self) -> str:
        # node ids are accepted verbatim as pytest command line arguments
        return self.nodeid

    @classmethod
    def from_item(cls, item) -> "TestIdentity":
        path = getattr(item, "path", None) or getattr(item, "fspath", None)
        module = getattr(item, "module", None)
        package = getattr(module, "__name__", "").rpartition(".")[0] if module else ""
        return cls(nodeid=item.nodeid, path=str(path) if path else None, package=package)

    def to_json(self) -> Dict[str, Any]:
        return {"nodeid": self.nodeid, "path": self.path, "package": self.package}


@dataclass(frozen=True)
class InFlightEntry:
    identity: TestIdentity
    start_ns: int


@dataclass(frozen=True)
class SlowTestRecord:
    label: str
    duration_ms: int
    identity: Optional[TestIdentity] = None

    def to_json(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"label": self.label, "duration_ms": self.duration_ms}
        if self.identity is not None:
            d["identity"] = self.identity.to_json()
        return d

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "SlowTestRecord":
        ident = data.get("identity")
        identity = TestIdentity(**ident) if ident else None
        return cls(label=data["label"], duration_ms=int(data["duration_ms"]), identity=identity)


@dataclass
class RunTotals:
    total_elapsed_ms: int = 0
    slow_elapsed_ms: int = 0

    @property
    def fast_elapsed_ms(self) -> int:
        return self.total_elapsed_ms - self.slow_elapsed_ms

    def percent(self, part_ms: int) -> float:
        if self.total_elapsed_ms <= 0:
            return 0.0
        return 100.0 * part_ms / self.total_elapsed_ms


@dataclass
class SlowTestRegistry:
    """Per-run bookkeeping of in-flight tests and the slow tests found so far.

    A test moves ``NotStarted -> InFlight -> Finished`` exactly once per
    execution. ``begin`` on an identity that is already in flight, or ``end``
    on one that is not, means the host broke the lifecycle contract and raises
    :class:`ProtocolError`.
    """

    resolver: ThresholdResolver
    on_slow: Optional[Callable[[SlowTestRecord], None]] = None
    _in_flight: Dict[str, InFlightEntry] = field(default_factory=dict, init=False, repr=False)
    _slow: List[SlowTestRecord] = field(default_factory=list, init=False, repr=False)
    _totals: RunTotals = field(default_factory=RunTotals, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False, compare=False)

    def begin(self, identity: TestIdentity, timestamp_ns: int) -> None:
        with self._lock:
            if identity.key in self._in_flight:
                raise ProtocolError(f"test already in flight: {identity.label}")
            self._in_flight[identity.key] = InFlightEntry(identity, timestamp_ns)

    def end(self, identity: TestIdentity, timestamp_ns: int) -> int:
        with self._lock:
            entry = self._in_flight.pop(identity.key, None)
            if entry is None:
                raise ProtocolError(f"test ended without being started: {identity.label}")
            duration_ms = to_milliseconds(timestamp_ns - entry.start_ns)
            threshold = self.resolver.effective_threshold(identity)
            self._totals.total_elapsed_ms += duration_ms
            record = None
            if is_slow(duration_ms, threshold):
                record = SlowTestRecord(identity.label, duration_ms, identity)
                self._slow.append(record)
                self._totals.slow_elapsed_ms += duration_ms
        if record is not None and self.on_slow is not None:
            self.on_slow(record)
        return duration_ms

    def snapshot(self) -> Tuple[SlowTestRecord, ...]:
        with self._lock:
            return tuple(self._slow)

    @property
    def totals(self) -> RunTotals:
        with self._lock:
            return RunTotals(self._totals.total_elapsed_ms, self._totals.slow_elapsed_ms)

    @property
    def in_flight(self) -> Tuple[TestIdentity, ...]:
        with self._lock:
            return tuple(e.identity for e in self._in_flight.values())

    def export(self) -> Dict[str, Any]:
        """JSON-serialisable payload used to ship a worker's results to the controller."""
        with self._lock:
            return {
                "slow": [r.to_json() for r in self._slow],
                "total_elapsed_ms": self._totals.total_elapsed_ms,
                "slow_elapsed_ms": self._totals.slow_elapsed_ms,
            }

    def merge(self, payload: Dict[str, Any]) -> int:
        records = [SlowTestRecord.from_json(r) for r in payload.get("slow", [])]
        with self._lock:
            self._slow.extend(records)
            self._totals.total_elapsed_ms += int(payload.get("total_elapsed_ms", 0))
            self._totals.slow_elapsed_ms += int(payload.get("slow_elapsed_ms", 0))
        return len(records)
