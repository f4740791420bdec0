"""Summary export loading: k6 --summary-export JSON into a MetricsModel."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any

import orjson

from .exceptions import NilgiriOutputError, NilgiriSummaryError
from .logging_config import get_logger
from .models import (
    CounterMetric,
    GaugeMetric,
    Metric,
    MetricsModel,
    RateMetric,
    TrendMetric,
    UnknownMetric,
)

logger = get_logger("summary")

_PERCENTILE_KEY = re.compile(r"^p\(\d+(\.\d+)?\)$")


def _num(v: Any) -> float | None:
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        return None
    return v


def _int(v: Any) -> int | None:
    n = _num(v)
    return int(n) if n is not None else None


def parse_metric(raw: dict[str, Any]) -> Metric:
    """Pick the metric variant from the fields present."""
    percentiles = {k: v for k, v in raw.items() if _PERCENTILE_KEY.match(k) and _num(v) is not None}
    if "avg" in raw or "med" in raw or percentiles:
        return TrendMetric(
            min=_num(raw.get("min")),
            max=_num(raw.get("max")),
            avg=_num(raw.get("avg")),
            med=_num(raw.get("med")),
            percentiles=percentiles,
            raw=raw,
        )
    if "passes" in raw or "fails" in raw:
        return RateMetric(
            passes=_int(raw.get("passes")),
            fails=_int(raw.get("fails")),
            value=_num(raw.get("value")),
            raw=raw,
        )
    if "count" in raw:
        return CounterMetric(count=_num(raw.get("count")), rate=_num(raw.get("rate")), raw=raw)
    if "value" in raw:
        return GaugeMetric(
            value=_num(raw.get("value")),
            min=_num(raw.get("min")),
            max=_num(raw.get("max")),
            raw=raw,
        )
    return UnknownMetric(raw=raw)


def parse_summary(data: Any) -> MetricsModel:
    """Build the model from an already-decoded summary export."""
    if not isinstance(data, dict):
        raise NilgiriSummaryError(
            "Summary export must be a JSON object",
            context={"actual_type": type(data).__name__},
        )
    raw_metrics = data.get("metrics")
    if not isinstance(raw_metrics, dict):
        raise NilgiriSummaryError("Summary export has no \"metrics\" object")

    metrics: dict[str, Metric] = {}
    for name, entry in raw_metrics.items():
        if not isinstance(entry, dict):
            logger.debug("Skipping metric %s: not an object", name)
            continue
        metrics[name] = parse_metric(entry)
    return MetricsModel(metrics=metrics, raw=data)


def load_summary(path: str | Path) -> MetricsModel:
    """Read and parse the summary file.

    Raises:
        NilgiriSummaryError: File missing, unreadable, or not valid JSON. The
            engine did not produce usable results; there is nothing to report.
    """
    p = Path(path)
    if not p.exists():
        raise NilgiriSummaryError(
            "Summary export not found; the load test engine did not produce results",
            context={"path": str(p)},
        )
    try:
        data = orjson.loads(p.read_bytes())
    except orjson.JSONDecodeError as e:
        raise NilgiriSummaryError(
            f"Summary export is not valid JSON: {e}",
            context={"path": str(p)},
            original_error=e,
        ) from e
    except OSError as e:
        raise NilgiriSummaryError(
            f"Cannot read summary export: {e}",
            context={"path": str(p)},
            original_error=e,
        ) from e

    model = parse_summary(data)
    logger.debug("Loaded summary with %d metrics from %s", len(model.metrics), p)
    return model


def persist_summary(model: MetricsModel, path: str | Path) -> Path:
    """Write the pretty-printed summary export to a caller-owned path."""
    out = Path(path)
    try:
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_bytes(orjson.dumps(model.raw, option=orjson.OPT_INDENT_2))
    except OSError as e:
        raise NilgiriOutputError(
            f"Cannot write detailed JSON report: {e.strerror or e}",
            context={"path": str(out)},
            original_error=e,
        ) from e
    logger.info("Detailed JSON report saved: %s", out)
    return out
