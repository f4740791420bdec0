"""Data models for nilgiri.

- TestConfig / RampStage: what to load test, immutable once built
- RunArtifacts: the per-run temporary arena plus the kept outputs
- Metric variants: one tagged record per entry of the engine's summary export
- MetricsModel: read-only view over the parsed summary
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Union


@dataclass(frozen=True, slots=True)
class RampStage:
    """One k6 stage: move linearly toward `target` VUs over `duration`."""

    duration: str
    target: int


@dataclass(frozen=True, slots=True)
class TestConfig:
    """User intent for one run.

    When `stages` is non-empty it takes precedence over `vus`/`duration`.
    """

    __test__ = False  # not a pytest test class

    url: str
    vus: int
    duration: str
    iterations: int | None = None  # requests per VU iteration
    delay_seconds: float | None = None  # sleep after each request
    stages: tuple[RampStage, ...] = ()

    @property
    def has_stages(self) -> bool:
        return len(self.stages) > 0


@dataclass(frozen=True, slots=True)
class InsightSettings:
    """Remote text-completion endpoint used for the AI analysis panel."""

    endpoint: str
    api_key: str
    timeout_seconds: float = 60.0
    retries: int = 1
    temperature: float = 0.1


@dataclass(frozen=True, slots=True)
class RunSettings:
    """Everything a single pipeline run needs."""

    test: TestConfig
    report_path: Path
    insight: InsightSettings
    detailed_json_path: Path | None = None
    insight_text_path: Path | None = None
    engine_binary: str = "k6"
    engine_timeout_seconds: float | None = None


@dataclass(slots=True)
class RunArtifacts:
    """Paths owned by one run.

    `work_dir`, `script_path` and `summary_path` are temporary and removed when
    the run ends; `report_path` and `detailed_json_path` are kept.
    """

    run_id: str
    work_dir: Path
    script_path: Path
    summary_path: Path
    report_path: Path
    detailed_json_path: Path | None = None


# --- Summary metrics ---

class MetricKind(str, Enum):
    """Shape of one summary-export entry."""

    TREND = "trend"  # min/max/avg/med/p(N)
    COUNTER = "counter"  # count/rate
    RATE = "rate"  # passes/fails/value
    GAUGE = "gauge"  # value/min/max
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class TrendMetric:
    min: float | None
    max: float | None
    avg: float | None
    med: float | None
    percentiles: dict[str, float] = field(default_factory=dict)  # exact engine keys, e.g. "p(95)"
    raw: dict[str, Any] = field(default_factory=dict)
    kind: MetricKind = MetricKind.TREND

    def percentile(self, p: int | float | str) -> float | None:
        """Value for p(90)-style keys; accepts 90, 90.0 or "p(90)"."""
        key = p if isinstance(p, str) else f"p({p:g})"
        return self.percentiles.get(key)


@dataclass(frozen=True, slots=True)
class CounterMetric:
    count: float | None
    rate: float | None
    raw: dict[str, Any] = field(default_factory=dict)
    kind: MetricKind = MetricKind.COUNTER


@dataclass(frozen=True, slots=True)
class RateMetric:
    passes: int | None
    fails: int | None
    value: float | None
    raw: dict[str, Any] = field(default_factory=dict)
    kind: MetricKind = MetricKind.RATE


@dataclass(frozen=True, slots=True)
class GaugeMetric:
    value: float | None
    min: float | None
    max: float | None
    raw: dict[str, Any] = field(default_factory=dict)
    kind: MetricKind = MetricKind.GAUGE


@dataclass(frozen=True, slots=True)
class UnknownMetric:
    raw: dict[str, Any] = field(default_factory=dict)
    kind: MetricKind = MetricKind.UNKNOWN


Metric = Union[TrendMetric, CounterMetric, RateMetric, GaugeMetric, UnknownMetric]


@dataclass(frozen=True, slots=True)
class MetricsModel:
    """Parsed summary export. Keys are whatever the engine emitted."""

    metrics: dict[str, Metric]
    raw: dict[str, Any] = field(default_factory=dict)

    def __contains__(self, name: object) -> bool:
        return name in self.metrics

    def names(self) -> list[str]:
        return sorted(self.metrics)

    def get(self, name: str) -> Metric | None:
        return self.metrics.get(name)

    def _of_kind(self, name: str, kind: MetricKind) -> Any:
        m = self.metrics.get(name)
        if m is None or m.kind is not kind:
            return None
        return m

    def trend(self, name: str) -> TrendMetric | None:
        return self._of_kind(name, MetricKind.TREND)

    def counter(self, name: str) -> CounterMetric | None:
        return self._of_kind(name, MetricKind.COUNTER)

    def rate(self, name: str) -> RateMetric | None:
        return self._of_kind(name, MetricKind.RATE)

    def gauge(self, name: str) -> GaugeMetric | None:
        return self._of_kind(name, MetricKind.GAUGE)


# --- AI insight ---

@dataclass(frozen=True, slots=True)
class InsightTable:
    """An HTML table was found in the AI answer; only its cell text is kept."""

    header: tuple[str, ...]  # empty when the first row has <td> cells
    rows: tuple[tuple[str, ...], ...]
    raw: str


@dataclass(frozen=True, slots=True)
class InsightRaw:
    """No table found; show the answer as plain text."""

    text: str


@dataclass(slots=True)
class EngineResult:
    """Outcome of one k6 process."""

    exit_code: int
    summary_path: Path
    duration_seconds: float

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


@dataclass(slots=True)
class RunOutcome:
    """What run_test hands back to the caller."""

    exit_code: int
    report_path: Path
    model: MetricsModel
    insight_available: bool
    engine_exit_code: int = 0
    detailed_json_path: Path | None = None
