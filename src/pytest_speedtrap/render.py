from __future__ import annotations

import json
import os
import sys
from typing import Any, Callable, Dict, Mapping, Optional

from .config import ConfigurationError, RendererChoice
from .report import UNBOUNDED, SlowTestReport

Writer = Callable[[str], Any]

WARNINGS_NG_CLASS = "io.jenkins.plugins.analysis.core.restapi.ReportApi"


class ReportRenderer:
    """Base class for slowness report outputs.

    ``render`` drives header, body and footer in that order; nothing is
    emitted when the run produced no slow tests.
    """

    def __init__(self, options: Mapping[str, str] | None = None, write: Optional[Writer] = None):
        self.options = dict(options or {})
        self.write = write or sys.stdout.write

    def render(self, report: SlowTestReport) -> bool:
        if not report.has_slow_tests():
            return False
        self.render_header(report)
        self.render_body(report)
        self.render_footer(report)
        return True

    def render_header(self, report: SlowTestReport) -> None:  # pragma: no cover - abstract
        raise NotImplementedError

    def render_body(self, report: SlowTestReport) -> None:  # pragma: no cover - abstract
        raise NotImplementedError

    def render_footer(self, report: SlowTestReport) -> None:  # pragma: no cover - abstract
        raise NotImplementedError


class ConsoleRenderer(ReportRenderer):
    def __init__(self, options: Mapping[str, str] | None = None, write: Optional[Writer] = None, show_stats: bool = True):
        super().__init__(options, write)
        self.show_stats = show_stats

    def render_header(self, report: SlowTestReport) -> None:
        self.write(f"\n\nYou should really speed up these slow tests (>{report.slow_threshold}ms)...\n")

    def render_body(self, report: SlowTestReport) -> None:
        for rank, rec in enumerate(report.ranked().records, start=1):
            self.write(f" {rank}. {rec.duration_ms}ms to run {rec.label}\n")

    def render_footer(self, report: SlowTestReport) -> None:
        hidden = report.ranked().hidden_count
        if hidden:
            verb = "is" if hidden == 1 else "are"
            self.write(f"...and there {verb} {hidden} more above your threshold hidden from view\n")
        if self.show_stats:
            totals = report.totals
            fast, slow = totals.fast_elapsed_ms, totals.slow_elapsed_ms
            self.write(
                f"\n Fast tests: {fast / 1000:.1f} seconds ({totals.percent(fast):.2f}%)\n"
                f" Slow tests: {slow / 1000:.1f} seconds ({totals.percent(slow):.2f}%)\n"
            )


class WarningsNgRenderer(ReportRenderer):
    """Jenkins Warnings-NG issues report, one HIGH severity issue per slow test.

    Options:
      * ``file`` - target JSON path; its directory must exist and be writable
      * ``project_base_dir`` - optional; file names under it are written as ``./relative/path``

    Both are checked here so a bad setup fails before the first test runs.
    """

    def __init__(self, options: Mapping[str, str] | None = None, write: Optional[Writer] = None):
        super().__init__(options, write)
        target = self.options.get("file")
        if not target or not isinstance(target, str):
            raise ConfigurationError("warnings-ng renderer - invalid file path provided (use file=PATH)")
        parent = os.path.dirname(os.path.abspath(target))
        if not os.path.isdir(parent) or not os.access(parent, os.W_OK):
            raise ConfigurationError(f"warnings-ng renderer - parent directory should be writable {target}")
        self.target_file = target
        self.project_base_dir: Optional[str] = None
        base = self.options.get("project_base_dir")
        if base:
            if not os.path.isdir(base):
                raise ConfigurationError(f"warnings-ng renderer - project base directory should exist {base}")
            self.project_base_dir = os.path.realpath(base)
        self.data: Dict[str, Any] = {}

    def render_header(self, report: SlowTestReport) -> None:
        self.data = {"_class": WARNINGS_NG_CLASS, "issues": []}

    def render_body(self, report: SlowTestReport) -> None:
        records = report.ranked(UNBOUNDED).records
        self.data["size"] = len(records)
        for rec in records:
            identity = rec.identity
            self.data["issues"].append(
                {
                    "fileName": self._file_name(identity.path if identity else None),
                    "packageName": identity.package if identity else "",
                    "message": f"{rec.duration_ms}ms to run {rec.label}",
                    "severity": "HIGH",
                    "duration": rec.duration_ms,
                }
            )

    def render_footer(self, report: SlowTestReport) -> None:
        with open(self.target_file, "w", encoding="utf-8") as f:
            json.dump(self.data, f, indent=4)

    def _file_name(self, path: Optional[str]) -> str:
        if not path:
            return ""
        base = self.project_base_dir
        if base:
            real = os.path.realpath(path)
            if os.path.commonpath([real, base]) == base:
                return os.path.join(".", os.path.relpath(real, base))
        return path


def make_renderer(
    choice: RendererChoice, options: Mapping[str, str] | None = None, write: Optional[Writer] = None, *, show_stats: bool = True
) -> ReportRenderer:
    if choice is RendererChoice.CONSOLE:
        return ConsoleRenderer(options, write, show_stats=show_stats)
    if choice is RendererChoice.WARNINGS_NG:
        return WarningsNgRenderer(options, write)
    raise ConfigurationError(f"unsupported renderer {choice!r}")
