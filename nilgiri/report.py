"""HTML report generator: summary tiles, two charts, metrics table, AI analysis panel.

The output is a single file: styles, chart drawing and UI toggles are inlined,
so the report opens offline with no server.
"""

from __future__ import annotations

import math
import re
import sys
from datetime import datetime, timezone
from html.parser import HTMLParser
from pathlib import Path
from typing import Any

import orjson
from jinja2 import Environment, PackageLoader, select_autoescape

from . import __version__ as nilgiri_version
from .exceptions import NilgiriOutputError
from .logging_config import get_logger
from .models import (
    CounterMetric,
    GaugeMetric,
    InsightRaw,
    InsightTable,
    Metric,
    MetricsModel,
    RateMetric,
    TestConfig,
    TrendMetric,
)

logger = get_logger("report")

NOT_APPLICABLE = "N/A"
REPORT_TEMPLATE = "report.html"
DEFAULT_REPORT_TITLE = "k6 Performance Test Report"

CHART_LABELS = ["Min", "Median", "Average", "Max", "p90", "p95"]
CHART_PERCENTILES = (90, 95)

_TABLE_RE = re.compile(r"<table[^>]*>.*?</table>", re.IGNORECASE | re.DOTALL)
# Text inside these elements never becomes cell text
_SKIPPED_TAGS = frozenset({"script", "style", "template", "noscript"})

# Label per known metric, in display order
METRIC_LABELS: dict[str, str] = {
    "http_reqs": "Total HTTP Requests",
    "http_req_duration": "Response Time (ms)",
    "http_req_waiting": "Wait Time (ms)",
    "http_req_blocked": "Blocked Time (ms)",
    "http_req_connecting": "Connecting Time (ms)",
    "tls_handshaking": "TLS Handshaking Time (ms)",
    "http_req_sending": "Sending Time (ms)",
    "http_req_receiving": "Receiving Time (ms)",
    "http_req_failed": "HTTP Request Failures",
    "checks": "Checks",
    "iterations": "Total Iterations",
    "iteration_duration": "Iteration Duration (ms)",
    "vus": "Virtual Users (VUs)",
    "vus_max": "Max Virtual Users (VUs Max)",
    "data_sent": "Data Sent (bytes)",
    "data_received": "Data Received (bytes)",
}


def _finite(v: Any) -> float | None:
    if v is None or isinstance(v, bool) or not isinstance(v, (int, float)):
        return None
    return v if math.isfinite(v) else None


def _round2(v: Any) -> Any:
    """Round fractional numbers to 2 places; N/A for missing or non-finite."""
    n = _finite(v)
    if n is None:
        return NOT_APPLICABLE
    if isinstance(n, float) and not n.is_integer():
        return round(n, 2)
    return int(n)


def _safe_div(num: Any, den: Any) -> float | None:
    n, d = _finite(num), _finite(den)
    if n is None or d is None or d == 0:
        return None
    out = n / d
    return out if math.isfinite(out) else None


def summary_figures(model: MetricsModel) -> dict[str, Any]:
    """Values for the summary tiles. Missing inputs show as N/A, never NaN/Infinity."""
    reqs = model.counter("http_reqs")
    total_requests = reqs.count if reqs else None
    duration = model.trend("http_req_duration")
    vus = model.gauge("vus")
    iteration = model.trend("iteration_duration")
    iterations = model.counter("iterations")
    checks = model.rate("checks")

    max_iteration_s = _safe_div(iteration.max, 1000) if iteration else None
    throughput = _safe_div(total_requests, max_iteration_s)
    failed_checks = checks.fails if checks and checks.fails is not None else 0
    error_rate = _safe_div(failed_checks * 100, total_requests)

    return {
        "total_requests": _round2(total_requests),
        "avg_duration_ms": _round2(duration.avg if duration else None),
        "vus": _round2(vus.value if vus else None),
        "throughput": _round2(throughput),
        "pass_count": _round2(checks.passes) if checks else NOT_APPLICABLE,
        "fail_count": _round2(checks.fails) if checks else NOT_APPLICABLE,
        "iterations": _round2(iterations.count if iterations else None),
        "error_rate": f"{error_rate:.2f}%" if error_rate is not None else NOT_APPLICABLE,
    }


def chart_series(model: MetricsModel, metric_name: str) -> list[float | None]:
    """[min, med, avg, max, p(90), p(95)] for a trend metric; [] when absent."""
    t = model.trend(metric_name)
    if t is None:
        return []
    values = [t.min, t.med, t.avg, t.max]
    values.extend(t.percentile(p) for p in CHART_PERCENTILES)
    return [_finite(v) for v in values]


def format_metric_value(metric: Metric) -> str:
    def f(v: Any) -> Any:
        r = _round2(v)
        return "-" if r == NOT_APPLICABLE else r

    if isinstance(metric, TrendMetric):
        text = f"Avg: {f(metric.avg)}, Min: {f(metric.min)}, Med: {f(metric.med)}, Max: {f(metric.max)}"
        for key, value in metric.percentiles.items():
            text += f", {key}: {f(value)}"
        return text
    if isinstance(metric, RateMetric):
        return f"Passes: {f(metric.passes)}, Fails: {f(metric.fails)}, Rate: {f(metric.value)}"
    if isinstance(metric, CounterMetric):
        return f"Total: {f(metric.count)}, Rate: {f(metric.rate)}/s"
    if isinstance(metric, GaugeMetric):
        return f"Current: {f(metric.value)}, Min: {f(metric.min)}, Max: {f(metric.max)}"
    return NOT_APPLICABLE


def metric_rows(model: MetricsModel) -> list[dict[str, str]]:
    """Rows for the Performance Metrics panel: known metrics first, then the rest."""
    rows = [
        {"name": name, "label": label, "value": format_metric_value(model.metrics[name])}
        for name, label in METRIC_LABELS.items()
        if name in model
    ]
    rows.extend(
        {"name": name, "label": name, "value": format_metric_value(model.metrics[name])}
        for name in model.names()
        if name not in METRIC_LABELS
    )
    return rows


class _TableCellParser(HTMLParser):
    """Collects the plain text of each th/td cell, row by row.

    Every tag and attribute is dropped; the report rebuilds the table from
    the text alone.
    """

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.rows: list[tuple[list[str], bool]] = []  # (cells, header row)
        self._row: list[str] | None = None
        self._row_is_header = True
        self._cell: list[str] | None = None
        self._skip_depth = 0

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if tag in _SKIPPED_TAGS:
            self._skip_depth += 1
        elif tag == "tr":
            self._close_row()
            self._row, self._row_is_header = [], True
        elif tag in ("th", "td"):
            self._close_cell()
            if self._row is None:
                self._row, self._row_is_header = [], True
            if tag == "td":
                self._row_is_header = False
            self._cell = []

    def handle_endtag(self, tag: str) -> None:
        if tag in _SKIPPED_TAGS:
            self._skip_depth = max(0, self._skip_depth - 1)
        elif tag in ("th", "td"):
            self._close_cell()
        elif tag in ("tr", "table"):
            self._close_row()

    def handle_data(self, data: str) -> None:
        if self._cell is not None and not self._skip_depth:
            self._cell.append(data)

    def close(self) -> None:
        super().close()
        self._close_row()

    def _close_cell(self) -> None:
        if self._cell is not None and self._row is not None:
            self._row.append(" ".join("".join(self._cell).split()))
        self._cell = None

    def _close_row(self) -> None:
        self._close_cell()
        if self._row:
            self.rows.append((self._row, self._row_is_header))
        self._row = None


def extract_insight_table(text: str | None) -> InsightTable | InsightRaw:
    """Cells of the first <table>...</table> in the AI answer, or the raw text.

    Only cell text survives; the renderer escapes it like any other value.
    """
    text = text or ""
    match = _TABLE_RE.search(text)
    if match is None:
        return InsightRaw(text=text)
    parser = _TableCellParser()
    parser.feed(match.group(0))
    parser.close()
    if not parser.rows:
        return InsightRaw(text=text)
    header: tuple[str, ...] = ()
    rows = parser.rows
    if rows[0][1]:
        header = tuple(rows[0][0])
        rows = rows[1:]
    return InsightTable(header=header, rows=tuple(tuple(cells) for cells, _ in rows), raw=text)


def describe_test_config(config: TestConfig | None) -> dict[str, Any] | None:
    if config is None:
        return None
    return {
        "url": config.url,
        "load": (
            " → ".join(f"{s.target} VUs over {s.duration}" for s in config.stages)
            if config.has_stages
            else f"{config.vus} VUs for {config.duration}"
        ),
        "iterations": config.iterations if config.iterations is not None else "-",
        "delay": f"{config.delay_seconds:g}s" if config.delay_seconds is not None else "-",
    }


def _serialize(obj: Any) -> str:
    """JSON for embedding inside <script>; no literal </ sequences."""
    return orjson.dumps(obj).decode("utf-8").replace("</", "<\\/")


def resolve_report_path(report_path: str | Path) -> Path:
    """Directories and suffix-less paths get report.html; other suffixes become .html."""
    p = Path(report_path)
    if p.suffix.lower() == ".html":
        return p
    if not p.suffix or p.is_dir():
        return p / "report.html"
    return p.with_suffix(".html")


def _get_env() -> Environment:
    return Environment(
        loader=PackageLoader("nilgiri", "templates"),
        autoescape=select_autoescape(["html", "xml"]),
    )


def render_report(
    model: MetricsModel,
    insight_text: str | None,
    title: str = DEFAULT_REPORT_TITLE,
    test: TestConfig | None = None,
    insight_available: bool = True,
) -> str:
    """Render the report HTML as a string."""
    insight = extract_insight_table(insight_text)
    if isinstance(insight, InsightTable):
        insight_table, insight_raw = insight, None
    else:
        if insight_text and insight_available:
            logger.warning("No HTML table found in AI analysis; showing raw text")
        insight_table, insight_raw = None, insight.text

    template = _get_env().get_template(REPORT_TEMPLATE)
    return template.render(
        title=title,
        figures=summary_figures(model),
        chart_labels=_serialize(CHART_LABELS),
        duration_series=_serialize(chart_series(model, "http_req_duration")),
        iteration_series=_serialize(chart_series(model, "iteration_duration")),
        metric_rows=metric_rows(model),
        insight_table=insight_table,
        insight_raw=insight_raw,
        insight_available=insight_available,
        test=describe_test_config(test),
        developer_info={
            "nilgiri_version": nilgiri_version,
            "report_generated_at": datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC"),
            "python_version": f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}",
        },
    )


def generate_report(
    output_path: str | Path,
    model: MetricsModel,
    insight_text: str | None,
    title: str = DEFAULT_REPORT_TITLE,
    test: TestConfig | None = None,
    insight_available: bool = True,
) -> Path:
    """Write the self-contained HTML report to output_path."""
    html = render_report(model, insight_text, title=title, test=test, insight_available=insight_available)
    out = Path(output_path)
    try:
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(html, encoding="utf-8")
    except OSError as e:
        raise NilgiriOutputError(
            f"Cannot write HTML report: {e.strerror or e}",
            context={"path": str(out)},
            original_error=e,
        ) from e
    logger.info("HTML report written to %s", out)
    return out
