from __future__ import annotations

import json
import os

import pytest

from pytest_speedtrap.config import ConfigurationError, RendererChoice
from pytest_speedtrap.registry import RunTotals, SlowTestRecord, SlowTestRegistry, TestIdentity
from pytest_speedtrap.render import ConsoleRenderer, WarningsNgRenderer, make_renderer
from pytest_speedtrap.report import SlowTestReport
from pytest_speedtrap.threshold import ThresholdResolver

MS = 1_000_000
PREFIX = "tests/test_speed_trap.py::SpeedTrapTest::"


def run(durations: dict, threshold: int = 444, report_length: int = 10) -> SlowTestReport:
    reg = SlowTestRegistry(ThresholdResolver(threshold))
    for name, ms in durations.items():
        identity = TestIdentity(PREFIX + name)
        reg.begin(identity, 0)
        reg.end(identity, ms * MS)
    return SlowTestReport(reg.snapshot(), slow_threshold=threshold, report_length=report_length, totals=reg.totals)


def console(report: SlowTestReport, **kwargs) -> str:
    out: list[str] = []
    ConsoleRenderer(write=out.append, **kwargs).render(report)
    return "".join(out)


def test_console_prints_speed_data():
    assert console(run({"test_it_prints_speed_data": 1000})) == (
        "\n\nYou should really speed up these slow tests (>444ms)...\n"
        f" 1. 1000ms to run {PREFIX}test_it_prints_speed_data\n"
        "\n"
        " Fast tests: 0.0 seconds (0.00%)\n"
        " Slow tests: 1.0 seconds (100.00%)\n"
    )


def test_console_total_slow_and_fast_time():
    report = run({"slow_test_one": 2000, "slow_test_two": 1500, "this_one_is_fast": 400})
    assert console(report) == (
        "\n\nYou should really speed up these slow tests (>444ms)...\n"
        f" 1. 2000ms to run {PREFIX}slow_test_one\n"
        f" 2. 1500ms to run {PREFIX}slow_test_two\n"
        "\n"
        " Fast tests: 0.4 seconds (10.26%)\n"
        " Slow tests: 3.5 seconds (89.74%)\n"
    )


def test_console_ranks_and_hides_beyond_report_length():
    durations = {f"test_{i:02d}": 500 + i * 10 for i in range(12)}
    output = console(run(durations, report_length=10), show_stats=False)
    lines = output.splitlines()
    body = [line for line in lines if line.startswith(" ") and "ms to run" in line]
    assert [line.split(".")[0].strip() for line in body] == [str(i) for i in range(1, 11)]
    assert body[0] == f" 1. 610ms to run {PREFIX}test_11"
    assert body[-1] == f" 10. 520ms to run {PREFIX}test_02"
    assert lines[-1] == "...and there are 2 more above your threshold hidden from view"


def test_console_singular_hidden_footer():
    durations = {f"test_{i}": 1000 + i for i in range(3)}
    output = console(run(durations, report_length=2), show_stats=False)
    assert output.endswith("...and there is 1 more above your threshold hidden from view\n")


def test_console_unbounded_length_shows_all():
    durations = {f"test_{i:02d}": 600 + i for i in range(15)}
    output = console(run(durations, report_length=-1), show_stats=False)
    assert f" 15. 600ms to run {PREFIX}test_00\n" in output
    assert "hidden from view" not in output


def test_console_ties_keep_commit_order():
    output = console(run({"test_b": 700, "test_a": 700, "test_c": 900}), show_stats=False)
    assert output.splitlines()[3:] == [
        f" 1. 900ms to run {PREFIX}test_c",
        f" 2. 700ms to run {PREFIX}test_b",
        f" 3. 700ms to run {PREFIX}test_a",
    ]


def test_console_stats_with_zero_total():
    record = SlowTestRecord("t.py::test_zero", 0)
    report = SlowTestReport((record,), slow_threshold=0, totals=RunTotals(0, 0))
    assert console(report).endswith(" Fast tests: 0.0 seconds (0.00%)\n Slow tests: 0.0 seconds (0.00%)\n")


def test_nothing_rendered_without_slow_tests():
    report = run({"test_quick": 10})
    assert console(report) == ""


def _warnings_ng_report(tmp_path):
    tests_dir = tmp_path / "proj" / "tests"
    tests_dir.mkdir(parents=True)
    src = str(tests_dir / "test_api.py")
    records = (
        SlowTestRecord("tests/test_api.py::test_small", 600, TestIdentity("tests/test_api.py::test_small", src, "tests")),
        SlowTestRecord("tests/test_api.py::test_big", 1200, TestIdentity("tests/test_api.py::test_big", src, "tests")),
        SlowTestRecord("elsewhere.py::test_x", 700, TestIdentity("elsewhere.py::test_x", "/opt/elsewhere.py", "")),
    )
    return SlowTestReport(records, slow_threshold=500, report_length=1)


def test_warnings_ng_document(tmp_path):
    target = tmp_path / "out" / "slow.json"
    target.parent.mkdir()
    report = _warnings_ng_report(tmp_path)
    renderer = WarningsNgRenderer({"file": str(target), "project_base_dir": str(tmp_path / "proj")})
    assert renderer.render(report)

    text = target.read_text(encoding="utf-8")
    data = json.loads(text)
    assert data["_class"] == "io.jenkins.plugins.analysis.core.restapi.ReportApi"
    # not bounded by report length
    assert data["size"] == len(data["issues"]) == 3
    assert [i["duration"] for i in data["issues"]] == [1200, 700, 600]
    first = data["issues"][0]
    assert first == {
        "fileName": "./tests/test_api.py",
        "packageName": "tests",
        "message": "1200ms to run tests/test_api.py::test_big",
        "severity": "HIGH",
        "duration": 1200,
    }
    assert data["issues"][1]["fileName"] == "/opt/elsewhere.py"
    assert "\\/" not in text
    assert '\n    "issues": [' in text


def test_warnings_ng_filesystem_root_as_base_dir(tmp_path):
    target = tmp_path / "slow.json"
    report = _warnings_ng_report(tmp_path)
    WarningsNgRenderer({"file": str(target), "project_base_dir": os.sep}).render(report)
    data = json.loads(target.read_text(encoding="utf-8"))
    real = os.path.realpath(str(tmp_path / "proj" / "tests" / "test_api.py"))
    assert data["issues"][0]["fileName"] == os.path.join(".", os.path.relpath(real, os.sep))
    assert data["issues"][1]["fileName"] == os.path.join(".", "opt", "elsewhere.py")


def test_warnings_ng_without_base_dir_keeps_absolute_paths(tmp_path):
    target = tmp_path / "slow.json"
    WarningsNgRenderer({"file": str(target)}).render(_warnings_ng_report(tmp_path))
    data = json.loads(target.read_text(encoding="utf-8"))
    assert data["issues"][0]["fileName"] == str(tmp_path / "proj" / "tests" / "test_api.py")


def test_warnings_ng_writes_nothing_without_slow_tests(tmp_path):
    target = tmp_path / "slow.json"
    WarningsNgRenderer({"file": str(target)}).render(SlowTestReport((), slow_threshold=500))
    assert not target.exists()


@pytest.mark.parametrize("options", [{}, {"file": ""}])
def test_warnings_ng_requires_file(options):
    with pytest.raises(ConfigurationError, match="invalid file path"):
        WarningsNgRenderer(options)


def test_warnings_ng_parent_must_exist(tmp_path):
    with pytest.raises(ConfigurationError, match="parent directory should be writable"):
        WarningsNgRenderer({"file": str(tmp_path / "missing" / "slow.json")})


@pytest.mark.skipif(not hasattr(os, "geteuid") or os.geteuid() == 0, reason="root ignores directory permissions")
def test_warnings_ng_parent_must_be_writable(tmp_path):
    locked = tmp_path / "locked"
    locked.mkdir()
    locked.chmod(0o500)
    try:
        with pytest.raises(ConfigurationError, match="parent directory should be writable"):
            WarningsNgRenderer({"file": str(locked / "slow.json")})
    finally:
        locked.chmod(0o700)


def test_warnings_ng_base_dir_must_exist(tmp_path):
    with pytest.raises(ConfigurationError, match="project base directory should exist"):
        WarningsNgRenderer({"file": str(tmp_path / "slow.json"), "project_base_dir": str(tmp_path / "nope")})


def test_make_renderer(tmp_path):
    assert isinstance(make_renderer(RendererChoice.CONSOLE), ConsoleRenderer)
    renderer = make_renderer(RendererChoice.WARNINGS_NG, {"file": str(tmp_path / "slow.json")})
    assert isinstance(renderer, WarningsNgRenderer)
    assert not make_renderer(RendererChoice.CONSOLE, show_stats=False).show_stats
