"""Run pipeline: script, k6, summary, AI analysis, report.

Stages run strictly in order. Config and summary failures stop the run;
AI analysis failures only cost the report its analysis panel.
"""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import httpx
from rich.console import Console

from .config import build_run_settings, validate_run_settings
from .console import print_run_summary
from .exceptions import NilgiriError, NilgiriOutputError
from .insight import request_insight
from .logging_config import get_logger
from .models import RunOutcome, RunSettings
from .process import run_engine, run_workspace
from .report import generate_report, resolve_report_path
from .script import synthesize_script
from .summary import load_summary, persist_summary

logger = get_logger("runner")


def _save_insight_text(path: Path, text: str) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
    except OSError as e:
        raise NilgiriOutputError(
            f"Cannot write AI analysis text: {e.strerror or e}",
            context={"path": str(path)},
            original_error=e,
        ) from e
    logger.info("AI analysis text saved to %s", path)


async def run_test(
    settings: RunSettings,
    live: bool = True,
    http_client: httpx.AsyncClient | None = None,
) -> RunOutcome:
    """Run one load test end to end and write its report.

    `http_client` is used for the AI request when given (the caller keeps
    ownership); otherwise a client is created for the call.

    Raises:
        NilgiriConfigError: settings are incomplete; nothing was started
        NilgiriEngineError: k6 could not be started or timed out
        NilgiriSummaryError: k6 left no usable summary export
        NilgiriOutputError: the report or another kept output could not be written
    """
    validate_run_settings(settings)
    report_path = resolve_report_path(settings.report_path)
    script_text = synthesize_script(settings.test)

    with run_workspace(report_path, settings.detailed_json_path) as artifacts:
        log_extra = {"run_id": artifacts.run_id}
        logger.info(
            "Starting run %s: url=%s, %s",
            artifacts.run_id,
            settings.test.url,
            f"{len(settings.test.stages)} stages" if settings.test.has_stages
            else f"vus={settings.test.vus}, duration={settings.test.duration}",
            extra=log_extra,
        )
        try:
            engine = await run_engine(
                script_text,
                artifacts,
                binary=settings.engine_binary,
                timeout=settings.engine_timeout_seconds,
            )
            model = load_summary(engine.summary_path)
            if artifacts.detailed_json_path:
                persist_summary(model, artifacts.detailed_json_path)

            insight_text, insight_available = await request_insight(model, settings.insight, client=http_client)

            generate_report(
                artifacts.report_path,
                model,
                insight_text,
                test=settings.test,
                insight_available=insight_available,
            )
            if settings.insight_text_path and insight_available:
                _save_insight_text(settings.insight_text_path, insight_text)
        except NilgiriError as e:
            raise e.with_context(run_id=artifacts.run_id)

    outcome = RunOutcome(
        exit_code=0,
        report_path=report_path,
        model=model,
        insight_available=insight_available,
        engine_exit_code=engine.exit_code,
        detailed_json_path=settings.detailed_json_path,
    )
    logger.info("Run %s finished; report at %s", artifacts.run_id, report_path, extra=log_extra)
    if live:
        print_run_summary(outcome, Console())
    return outcome


def run_performance_test(
    params: Mapping[str, Any] | RunSettings,
    live: bool = True,
) -> int:
    """Programmatic entry point. Returns an exit code instead of raising.

    `params` is either RunSettings or a mapping such as::

        {
            "url": "https://example.com",
            "options": {"vus": 10, "duration": "5s"},
            "aireport": {"reportPath": "report.html", "AiUrl": "...", "apikey": "..."},
            "detailedReportjson": "report.json",
        }
    """
    try:
        settings = params if isinstance(params, RunSettings) else build_run_settings(params)
        asyncio.run(run_test(settings, live=live))
    except NilgiriError as e:
        logger.debug("Run failed: %s", e)
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return 130
    except Exception:
        logger.exception("Unexpected error")
        print("Error: An unexpected error occurred. Check logs for details.", file=sys.stderr)
        return 1
    return 0
