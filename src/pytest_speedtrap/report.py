from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Tuple

from .registry import RunTotals, SlowTestRecord

UNBOUNDED = -1


@dataclass(frozen=True)
class RankedReport:
    records: Tuple[SlowTestRecord, ...]
    hidden_count: int
    total_count: int

    @property
    def shown_count(self) -> int:
        return len(self.records)


def effective_length(total: int, report_length: int) -> int:
    if report_length < 0:
        return total
    return min(total, report_length)


def build_report(records: Iterable[SlowTestRecord], report_length: int = UNBOUNDED) -> RankedReport:
    # sorted() is stable, so equal durations keep commit order
    ranked = sorted(records, key=lambda r: r.duration_ms, reverse=True)
    total = len(ranked)
    shown = effective_length(total, report_length)
    return RankedReport(records=tuple(ranked[:shown]), hidden_count=max(0, total - shown), total_count=total)


@dataclass(frozen=True)
class SlowTestReport:
    """Read-only end-of-run view handed to renderers."""

    records: Tuple[SlowTestRecord, ...]
    slow_threshold: int
    report_length: int = 10
    totals: RunTotals = field(default_factory=RunTotals)

    def ranked(self, report_length: int | None = None) -> RankedReport:
        length = self.report_length if report_length is None else report_length
        return build_report(self.records, length)

    def has_slow_tests(self) -> bool:
        return bool(self.records)
