from __future__ import annotations

from html import escape
from typing import List

from .report import SlowTestReport


def render_slow_section(report: SlowTestReport) -> List[str]:
    """HTML fragments for the pytest-html summary; empty when nothing was slow."""
    if not report.has_slow_tests():
        return []
    ranked = report.ranked()
    rows = "".join(
        f"<tr><td>{rank}</td><td>{rec.duration_ms}ms</td><td>{escape(rec.label)}</td></tr>"
        for rank, rec in enumerate(ranked.records, start=1)
    )
    parts = [
        '<div class="speedtrap">',
        f'<h2 style="margin-top:1em;border-top:1px solid #ddd;padding-top:0.5em;">Slow Tests (&gt;{report.slow_threshold}ms)</h2>',
        f"<table><tr><th>#</th><th>Duration</th><th>Test</th></tr>{rows}</table>",
    ]
    if ranked.hidden_count:
        parts.append(f"<p>{ranked.hidden_count} more above your threshold hidden from view.</p>")
    parts.append("</div>")
    return parts
