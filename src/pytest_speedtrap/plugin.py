from __future__ import annotations

import sys
import time
from typing import Optional

import pytest

from .config import ConfigurationError, RendererChoice, SpeedTrapConfig
from .html_report import render_slow_section
from .registry import SlowTestRecord, SlowTestRegistry, TestIdentity
from .render import make_renderer
from .report import SlowTestReport
from .threshold import MARKER_NAME, MarkerThresholds, ThresholdResolver

PLUGIN_NAME = "speedtrap-plugin"
WORKER_OUTPUT_KEY = "speedtrap"
LOG_PREFIX = "[pytest-speedtrap]"


def pytest_addoption(parser):  # pragma: no cover - exercised via integration
    group = parser.getgroup("speedtrap", "slow test reporting")
    group.addoption(
        "--speedtrap-slow-threshold",
        action="store",
        dest="speedtrap_slow_threshold",
        type=int,
        default=500,
        help="Milliseconds at or above which a test is reported as slow (default 500, 0 disables)",
    )
    group.addoption(
        "--speedtrap-report-length",
        action="store",
        dest="speedtrap_report_length",
        type=int,
        default=10,
        help="Number of slow tests to list (default 10, -1 lists all)",
    )
    group.addoption(
        "--speedtrap-stop-on-slow",
        action="store_true",
        dest="speedtrap_stop_on_slow",
        default=False,
        help="Stop the run after the first slow test",
    )
    group.addoption(
        "--speedtrap-renderer",
        action="store",
        dest="speedtrap_renderer",
        choices=[c.value for c in RendererChoice],
        default=RendererChoice.CONSOLE.value,
        help="Slowness report output (default console)",
    )
    group.addoption(
        "--speedtrap-renderer-option",
        action="append",
        dest="speedtrap_renderer_options",
        metavar="KEY=VALUE",
        default=[],
        help="Renderer option, e.g. file=build/slow.json or project_base_dir=. (repeatable)",
    )
    group.addoption(
        "--speedtrap-hide-stats",
        action="store_true",
        dest="speedtrap_hide_stats",
        default=False,
        help="Omit the fast/slow elapsed time breakdown from the console report",
    )
    group.addoption(
        "--speedtrap-verbose",
        action="store_true",
        dest="speedtrap_verbose",
        default=False,
        help="Print speedtrap diagnostics to the console",
    )


@pytest.hookimpl(tryfirst=True)
def pytest_configure(config):
    config.addinivalue_line(
        "markers",
        f"{MARKER_NAME}(ms): override the slow test threshold for this test, in milliseconds (0 disables)",
    )
    try:
        cfg = SpeedTrapConfig.from_options(config)
        if not cfg.enabled:
            return
        plugin = SpeedTrapPlugin(config, cfg)
    except ConfigurationError as exc:
        raise pytest.UsageError(f"speedtrap: {exc}") from exc
    config.pluginmanager.register(plugin, PLUGIN_NAME)


def pytest_unconfigure(config):
    plugin = config.pluginmanager.get_plugin(PLUGIN_NAME)
    if plugin is not None:
        config.pluginmanager.unregister(plugin)


class SpeedTrapPlugin:
    """Times every test call and reports the slow ones when the session ends."""

    def __init__(self, config, cfg: SpeedTrapConfig):
        self.config = config
        self.cfg = cfg
        self.thresholds = MarkerThresholds()
        self.renderer = make_renderer(cfg.renderer, cfg.renderer_options, self._write, show_stats=cfg.show_stats)
        self.registry: Optional[SlowTestRegistry] = None
        self._session = None

    def _write(self, text: str) -> None:
        tr = self.config.pluginmanager.get_plugin("terminalreporter")
        if tr is not None:
            tr.write(text)
        else:
            sys.stdout.write(text)

    def _log(self, msg: str) -> None:
        if self.cfg.verbose:
            self._write(f"{LOG_PREFIX} {msg}\n")

    def _on_slow(self, record: SlowTestRecord) -> None:
        if self.cfg.stop_on_slow and self._session is not None:
            self._session.shouldstop = f"speedtrap: {record.label} took {record.duration_ms}ms"

    def pytest_report_header(self, config):
        if self.cfg.verbose:
            return (
                f"speedtrap: slow-threshold={self.cfg.slow_threshold}ms report-length={self.cfg.report_length} "
                f"renderer={self.cfg.renderer.value}"
            )
        return None

    @pytest.hookimpl(tryfirst=True)
    def pytest_sessionstart(self, session):
        self._session = session
        resolver = ThresholdResolver(self.cfg.slow_threshold, self.thresholds)
        self.registry = SlowTestRegistry(resolver, on_slow=self._on_slow)

    def pytest_collection_modifyitems(self, session, config, items):
        self.thresholds.collect(items)

    @pytest.hookimpl(hookwrapper=True)
    def pytest_runtest_call(self, item):
        registry = self.registry
        identity = TestIdentity.from_item(item)
        registry.begin(identity, time.perf_counter_ns())
        yield
        registry.end(identity, time.perf_counter_ns())

    def build_report(self) -> SlowTestReport:
        return SlowTestReport(
            records=self.registry.snapshot(),
            slow_threshold=self.cfg.slow_threshold,
            report_length=self.cfg.report_length,
            totals=self.registry.totals,
        )

    @pytest.hookimpl(optionalhook=True)
    def pytest_testnodedown(self, node, error):
        payload = getattr(node, "workeroutput", {}).get(WORKER_OUTPUT_KEY)
        if payload and self.registry is not None:
            merged = self.registry.merge(payload)
            self._log(f"merged {merged} slow test(s) from {getattr(node, 'gateway', node)}")

    @pytest.hookimpl(trylast=True)
    def pytest_sessionfinish(self, session, exitstatus):
        if self.registry is None:
            return
        workeroutput = getattr(self.config, "workeroutput", None)
        if workeroutput is not None:
            # xdist worker: the controller merges and renders
            workeroutput[WORKER_OUTPUT_KEY] = self.registry.export()
            return
        report = self.build_report()
        if self.renderer.render(report):
            self._log(f"rendered {len(report.records)} slow test(s) with {self.cfg.renderer.value} renderer")
            target = getattr(self.renderer, "target_file", None)
            if target:
                self._log(f"wrote {target}")

    @pytest.hookimpl(optionalhook=True)
    def pytest_html_results_summary(self, prefix, summary, postfix):
        if self.registry is not None:
            prefix.extend(render_slow_section(self.build_report()))
