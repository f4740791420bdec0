"""CLI entry point for nilgiri.

Without --url or --config the test configuration is collected interactively.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys
from collections.abc import Mapping
from typing import Any

from . import __version__
from .config import (
    API_KEY_ENV,
    AI_URL_ENV,
    build_insight_settings,
    build_run_settings,
    load_config_file,
    parse_stage_spec,
)
from .exceptions import NilgiriConfigError, NilgiriError
from .interactive import prompt_test_config
from .logging_config import configure_logging, get_logger
from .models import RunSettings
from .runner import run_test

logger = get_logger("cli")


def _overrides_from_args(args: argparse.Namespace) -> dict[str, Any]:
    """Only the flags the user actually passed, keyed like the YAML config."""
    out: dict[str, Any] = {}
    simple = {
        "url": args.url,
        "vus": args.vus,
        "duration": args.duration,
        "iterations": args.iterations,
        "delay_seconds": args.delay,
        "report_path": args.output,
        "detailed_json_path": args.json_path,
        "insight_text_path": args.insight_text_path,
        "engine_binary": args.engine,
        "engine_timeout_seconds": args.engine_timeout,
    }
    out.update({k: v for k, v in simple.items() if v is not None})
    if args.stages:
        out["stages"] = [
            {"duration": s.duration, "target": s.target}
            for s in (parse_stage_spec(spec) for spec in args.stages)
        ]
    ai = {
        "endpoint": args.ai_url,
        "api_key": args.api_key,
        "timeout_seconds": args.ai_timeout,
    }
    ai = {k: v for k, v in ai.items() if v is not None}
    if ai:
        out["ai"] = ai
    return out


def _merge(base: Mapping[str, Any], overrides: Mapping[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in overrides.items():
        if key == "ai":
            merged["ai"] = {**(merged.get("ai") or {}), **value}
        else:
            merged[key] = value
    return merged


def _build_settings(args: argparse.Namespace) -> RunSettings:
    overrides = _overrides_from_args(args)
    base: dict[str, Any] = load_config_file(args.config) if args.config else {}
    raw = _merge(base, overrides)
    raw.setdefault("report_path", "report.html")

    if not args.config and not args.url:
        # Fail on missing credentials before asking any questions
        insight = build_insight_settings(raw.get("ai"))
        if not insight.endpoint or not insight.api_key:
            raise NilgiriConfigError(
                f"AI endpoint and API key are required (--ai-url/--api-key or {AI_URL_ENV}/{API_KEY_ENV})"
            )
        test = prompt_test_config()
        raw.update(
            url=test.url,
            vus=test.vus,
            duration=test.duration,
            iterations=test.iterations,
            delay_seconds=test.delay_seconds,
            stages=[{"duration": s.duration, "target": s.target} for s in test.stages],
        )
    return build_run_settings(raw)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nilgiri",
        description="Generate and run a k6 load test, then write an HTML report with AI analysis.",
    )
    parser.add_argument("-u", "--url", default=None, help="Target URL (omit with -f to be prompted interactively)")
    parser.add_argument(
        "-f",
        "--config",
        default=None,
        help="Path to YAML run config (CLI flags override its values)",
    )
    parser.add_argument(
        "-o",
        "--output",
        default=None,
        help="Output path for HTML report (file or directory; default: report.html)",
    )
    parser.add_argument(
        "--json",
        metavar="PATH",
        dest="json_path",
        default=None,
        help="Also keep a pretty-printed copy of the k6 summary export at PATH",
    )
    parser.add_argument(
        "--insight-text",
        metavar="PATH",
        dest="insight_text_path",
        default=None,
        help="Also save the raw AI analysis text to PATH",
    )
    parser.add_argument("--vus", type=int, default=None, help="Number of virtual users")
    parser.add_argument("--duration", default=None, metavar="DUR", help="Test duration, e.g. 30s or 1m")
    parser.add_argument("--iterations", type=int, default=None, help="Requests per VU iteration")
    parser.add_argument("--delay", type=float, default=None, metavar="SEC", help="Sleep after each request (seconds)")
    parser.add_argument(
        "--stage",
        action="append",
        dest="stages",
        metavar="DUR:TARGET",
        help="Ramp stage, e.g. 30s:20 (repeatable; overrides --vus/--duration)",
    )
    parser.add_argument("--ai-url", default=None, help=f"AI chat-completions endpoint (env {AI_URL_ENV})")
    parser.add_argument("--api-key", default=None, help=f"AI endpoint API key (env {API_KEY_ENV})")
    parser.add_argument("--ai-timeout", type=float, default=None, metavar="SEC", help="AI request timeout")
    parser.add_argument("--engine", default=None, help="k6 binary to run (default: k6)")
    parser.add_argument(
        "--engine-timeout",
        type=float,
        default=None,
        metavar="SEC",
        help="Kill k6 if it runs longer than SEC seconds",
    )
    parser.add_argument("-q", "--quiet", action="store_true", help="Only log warnings and errors; no summary panel")
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"nilgiri {__version__}",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.quiet:
        configure_logging(level=os.environ.get("NILGIRI_LOG_LEVEL") or "WARNING")

    def handle_error(e: BaseException) -> int:
        if isinstance(e, NilgiriError):
            print(f"Error: {e.message}", file=sys.stderr)
            return 1
        if isinstance(e, (FileNotFoundError, ValueError)):
            print(f"Error: {e}", file=sys.stderr)
            return 1
        logger.exception("Unexpected error")
        print("Error: An unexpected error occurred. Check logs for details.", file=sys.stderr)
        return 1

    try:
        settings = _build_settings(args)
        asyncio.run(run_test(settings, live=not args.quiet))
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return 130
    except Exception as e:
        return handle_error(e)
    return 0


if __name__ == "__main__":
    sys.exit(main())
