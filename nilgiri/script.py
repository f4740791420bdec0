"""k6 script synthesis: TestConfig in, JavaScript text out.

The URL and numbers are written into the script as-is (no JS escaping);
config.validate_test_config rejects URLs that would break the string literal.
"""

from __future__ import annotations

from typing import Any

import orjson
from jinja2 import Environment, PackageLoader, StrictUndefined

from .models import TestConfig

SCRIPT_TEMPLATE = "k6_script.js.j2"

_env: Environment | None = None


def _get_env() -> Environment:
    global _env
    if _env is None:
        # Output is JavaScript, not HTML: no autoescape
        _env = Environment(
            loader=PackageLoader("nilgiri", "templates"),
            autoescape=False,
            undefined=StrictUndefined,
            keep_trailing_newline=True,
        )
    return _env


def build_options(config: TestConfig) -> dict[str, Any]:
    """k6 `options` for the config: stages when present, else flat vus/duration."""
    if config.has_stages:
        return {
            "stages": [{"duration": s.duration, "target": s.target} for s in config.stages],
        }
    return {"vus": config.vus, "duration": config.duration}


def render_options(options: dict[str, Any]) -> str:
    """Serialize options as a JS object literal (JSON is a valid one)."""
    return orjson.dumps(options, option=orjson.OPT_INDENT_2).decode("utf-8")


def _format_delay(delay_seconds: float | None) -> str | None:
    if delay_seconds is None:
        return None
    return f"{delay_seconds:g}"


def synthesize_script(config: TestConfig) -> str:
    """Render the k6 script for one run."""
    template = _get_env().get_template(SCRIPT_TEMPLATE)
    return template.render(
        options=render_options(build_options(config)),
        url=config.url,
        iterations=config.iterations,
        delay=_format_delay(config.delay_seconds),
    )
