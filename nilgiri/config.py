"""Configuration for nilgiri runs: YAML files, plain mappings, validation."""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

import yaml

from .exceptions import NilgiriConfigError
from .logging_config import get_logger
from .models import InsightSettings, RampStage, RunSettings, TestConfig

logger = get_logger("config")

AI_URL_ENV = "NILGIRI_AI_URL"
API_KEY_ENV = "NILGIRI_API_KEY"

DEFAULT_VUS = 10
DEFAULT_DURATION = "30s"
DEFAULT_ENGINE_BINARY = "k6"
DEFAULT_AI_TIMEOUT_SEC = 60.0
DEFAULT_AI_RETRIES = 1
DEFAULT_AI_TEMPERATURE = 0.1

# k6 duration strings: "30s", "1m30s", "500ms", "1.5h"
_DURATION_RE = re.compile(r"^(\d+(\.\d+)?(ms|s|m|h))+$")
# Characters that would break out of the single-quoted string in the generated script
_URL_FORBIDDEN = ("'", '"', "`", "\\", "\n", "\r")


def _validate_url(url: str) -> None:
    if not url or not url.strip():
        raise NilgiriConfigError("url must not be empty")
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise NilgiriConfigError(f"Invalid target URL: {url}", context={"url": url})
    if any(ch in url for ch in _URL_FORBIDDEN):
        raise NilgiriConfigError(
            "Target URL contains characters that cannot be embedded in the k6 script",
            context={"url": url},
        )


def _validate_duration(value: str, field_name: str) -> None:
    if not isinstance(value, str) or not _DURATION_RE.match(value.strip()):
        raise NilgiriConfigError(
            f"{field_name} must be a k6 duration such as 30s, 1m or 500ms",
            context={field_name: value},
        )


def validate_test_config(c: TestConfig) -> None:
    """Validate TestConfig. Raises NilgiriConfigError if invalid."""
    _validate_url(c.url)
    if c.has_stages:
        for i, stage in enumerate(c.stages):
            _validate_duration(stage.duration, f"stages[{i}].duration")
            if stage.target < 0:
                raise NilgiriConfigError(f"stages[{i}].target must be >= 0")
    else:
        if c.vus < 1:
            raise NilgiriConfigError("vus must be >= 1")
        _validate_duration(c.duration, "duration")
    if c.iterations is not None and c.iterations < 1:
        raise NilgiriConfigError("iterations must be >= 1 when set")
    if c.delay_seconds is not None and c.delay_seconds < 0:
        raise NilgiriConfigError("delay_seconds must be >= 0 when set")


def validate_run_settings(s: RunSettings) -> None:
    """Validate everything a run needs before anything is started."""
    if not str(s.report_path or "").strip():
        raise NilgiriConfigError("Report path is required")
    if not (s.insight.endpoint or "").strip():
        raise NilgiriConfigError(
            "AI endpoint URL is required (--ai-url or NILGIRI_AI_URL)"
        )
    if not (s.insight.api_key or "").strip():
        raise NilgiriConfigError(
            "AI API key is required (--api-key or NILGIRI_API_KEY)"
        )
    if not s.insight.api_key.isascii():
        raise NilgiriConfigError("AI API key must contain only ASCII characters")
    if s.insight.timeout_seconds <= 0:
        raise NilgiriConfigError("ai timeout_seconds must be > 0")
    if s.insight.retries < 0:
        raise NilgiriConfigError("ai retries must be >= 0")
    if s.engine_timeout_seconds is not None and s.engine_timeout_seconds <= 0:
        raise NilgiriConfigError("engine_timeout_seconds must be > 0 when set")
    validate_test_config(s.test)


def parse_stage_spec(spec: str) -> RampStage:
    """Parse a CLI stage of the form DURATION:TARGET, e.g. "30s:20"."""
    duration, sep, target = spec.partition(":")
    if not sep:
        raise NilgiriConfigError(f"Invalid stage {spec!r}: expected DURATION:TARGET")
    try:
        return RampStage(duration=duration.strip(), target=int(target))
    except ValueError as e:
        raise NilgiriConfigError(
            f"Invalid stage target in {spec!r}", original_error=e
        ) from e


def _parse_stages(raw: Any) -> tuple[RampStage, ...]:
    if not raw:
        return ()
    if not isinstance(raw, (list, tuple)):
        raise NilgiriConfigError("stages must be a list of {duration, target}")
    stages = []
    for i, item in enumerate(raw):
        if isinstance(item, RampStage):
            stages.append(item)
            continue
        if not isinstance(item, Mapping) or "duration" not in item or "target" not in item:
            raise NilgiriConfigError(f"stages[{i}] must have duration and target")
        stages.append(RampStage(duration=str(item["duration"]).strip(), target=int(item["target"])))
    return tuple(stages)


def _optional_int(data: Mapping[str, Any], key: str) -> int | None:
    v = data.get(key)
    if v is None or v == "":
        return None
    return int(v)


def _optional_float(data: Mapping[str, Any], key: str) -> float | None:
    v = data.get(key)
    if v is None or v == "":
        return None
    return float(v)


def _optional_path(v: Any) -> Path | None:
    if v is None or str(v).strip() == "":
        return None
    return Path(v)


def build_test_config(raw: Mapping[str, Any]) -> TestConfig:
    """Build and validate a TestConfig from a plain mapping.

    Accepts both the flat form (url, vus, duration, ...) and the nested k6
    form where load shape lives under "options".
    """
    options = raw.get("options") or {}
    if not isinstance(options, Mapping):
        raise NilgiriConfigError("options must be an object")
    merged: dict[str, Any] = {**options, **{k: v for k, v in raw.items() if k != "options"}}

    try:
        delay = _optional_float(merged, "delay_seconds")
        if delay is None:
            delay = _optional_float(merged, "delay")
        config = TestConfig(
            url=str(merged.get("url") or "").strip(),
            vus=int(merged.get("vus", DEFAULT_VUS)),
            duration=str(merged.get("duration", DEFAULT_DURATION)).strip(),
            iterations=_optional_int(merged, "iterations"),
            delay_seconds=delay,
            stages=_parse_stages(merged.get("stages")),
        )
    except (TypeError, ValueError) as e:
        raise NilgiriConfigError(f"Invalid test config value: {e}", original_error=e) from e

    validate_test_config(config)
    return config


def build_insight_settings(
    raw: Mapping[str, Any] | None,
    env: Mapping[str, str] | None = None,
) -> InsightSettings:
    """AI endpoint settings from a mapping, falling back to environment variables."""
    raw = raw or {}
    env = os.environ if env is None else env
    endpoint = raw.get("endpoint") or raw.get("AiUrl") or env.get(AI_URL_ENV) or ""
    api_key = raw.get("api_key") or raw.get("apikey") or env.get(API_KEY_ENV) or ""
    try:
        return InsightSettings(
            endpoint=str(endpoint).strip(),
            api_key=str(api_key).strip(),
            timeout_seconds=float(raw.get("timeout_seconds", DEFAULT_AI_TIMEOUT_SEC)),
            retries=int(raw.get("retries", DEFAULT_AI_RETRIES)),
            temperature=float(raw.get("temperature", DEFAULT_AI_TEMPERATURE)),
        )
    except (TypeError, ValueError) as e:
        raise NilgiriConfigError(f"Invalid ai config value: {e}", original_error=e) from e


def build_run_settings(
    raw: Mapping[str, Any],
    env: Mapping[str, str] | None = None,
) -> RunSettings:
    """Build and validate RunSettings from a mapping.

    Understands the YAML layout (report_path, ai: {...}) as well as the
    programmatic layout (aireport: {reportPath, AiUrl, apikey},
    detailedReportjson).
    """
    if not isinstance(raw, Mapping):
        raise NilgiriConfigError(
            "Run configuration must be an object",
            context={"actual_type": type(raw).__name__},
        )
    aireport = raw.get("aireport") or {}
    if not isinstance(aireport, Mapping):
        raise NilgiriConfigError("aireport must be an object")
    ai = raw.get("ai") or {}
    if not isinstance(ai, Mapping):
        raise NilgiriConfigError("ai must be an object")
    ai_raw = {**aireport, **ai}

    report_path = _optional_path(raw.get("report_path") or aireport.get("reportPath"))
    if report_path is None:
        raise NilgiriConfigError("Report path is required")

    try:
        engine_timeout = _optional_float(raw, "engine_timeout_seconds")
    except (TypeError, ValueError) as e:
        raise NilgiriConfigError(f"Invalid engine_timeout_seconds: {e}", original_error=e) from e

    settings = RunSettings(
        test=build_test_config(raw),
        report_path=report_path,
        insight=build_insight_settings(ai_raw, env),
        detailed_json_path=_optional_path(raw.get("detailed_json_path") or raw.get("detailedReportjson")),
        insight_text_path=_optional_path(raw.get("insight_text_path")),
        engine_binary=str(raw.get("engine_binary") or DEFAULT_ENGINE_BINARY),
        engine_timeout_seconds=engine_timeout,
    )
    validate_run_settings(settings)
    logger.debug(
        "Run settings: url=%s, vus=%s, duration=%s, stages=%d",
        settings.test.url, settings.test.vus, settings.test.duration, len(settings.test.stages),
    )
    return settings


def load_config_file(path: str | Path) -> dict[str, Any]:
    """Read a YAML run configuration into a plain dict (not yet validated).

    Raises:
        NilgiriConfigError: If file not found, unreadable, or not a YAML mapping
    """
    p = Path(path)
    if not p.exists():
        raise NilgiriConfigError(
            f"Config file not found: {path}",
            context={"path": str(path)},
        )
    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        logger.exception("Failed to parse YAML config file")
        raise NilgiriConfigError(
            f"Invalid YAML syntax in config file: {e}",
            context={"path": str(path)},
            original_error=e,
        ) from e
    except OSError as e:
        logger.exception("Failed to read config file")
        raise NilgiriConfigError(
            f"Cannot read config file: {e}",
            context={"path": str(path)},
            original_error=e,
        ) from e

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise NilgiriConfigError(
            "Config must be a YAML object/dictionary",
            context={"path": str(path), "actual_type": type(raw).__name__},
        )
    return raw
