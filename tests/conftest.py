"""Pytest fixtures for nilgiri tests."""

from __future__ import annotations

import copy
import json
import stat
import sys
import tempfile
from pathlib import Path
from typing import Any, Callable

import httpx
import pytest

from nilgiri.models import InsightSettings, RunSettings, TestConfig

# Trimmed k6 --summary-export output
SAMPLE_SUMMARY: dict[str, Any] = {
    "root_group": {"name": "", "path": "", "id": "d41d8cd98f00b204e9800998ecf8427e", "groups": {}, "checks": {}},
    "metrics": {
        "http_reqs": {"count": 200, "rate": 39.64},
        "http_req_duration": {
            "avg": 12.0,
            "min": 5,
            "med": 10,
            "max": 50,
            "p(90)": 30,
            "p(95)": 40,
        },
        "http_req_failed": {"passes": 0, "fails": 200, "value": 0},
        "http_req_waiting": {"avg": 11.2, "min": 4.1, "med": 9.5, "max": 48.3, "p(90)": 28.7, "p(95)": 38.9},
        "http_req_connecting": {"avg": 0.5, "min": 0, "med": 0, "max": 12.4, "p(90)": 0, "p(95)": 0},
        "iteration_duration": {
            "avg": 1012.5,
            "min": 1005.1,
            "med": 1010.2,
            "max": 2000,
            "p(90)": 1020.4,
            "p(95)": 1030.8,
        },
        "iterations": {"count": 200, "rate": 39.64},
        "vus": {"value": 10, "min": 10, "max": 10},
        "vus_max": {"value": 10, "min": 10, "max": 10},
        "checks": {"passes": 196, "fails": 4, "value": 0.98},
        "data_sent": {"count": 21400, "rate": 4241.5},
        "data_received": {"count": 318000, "rate": 63027.6},
    },
}


@pytest.fixture
def summary_data() -> dict[str, Any]:
    return copy.deepcopy(SAMPLE_SUMMARY)


@pytest.fixture
def summary_file(tmp_path: Path, summary_data: dict[str, Any]) -> Path:
    p = tmp_path / "summary.json"
    p.write_text(json.dumps(summary_data), encoding="utf-8")
    return p


@pytest.fixture
def insight_settings() -> InsightSettings:
    return InsightSettings(
        endpoint="https://ai.example.com/openai/deployments/gpt/chat/completions",
        api_key="test-key",
        timeout_seconds=5.0,
        retries=1,
    )


@pytest.fixture
def base_test_config() -> TestConfig:
    return TestConfig(url="https://example.com/health", vus=5, duration="10s")


@pytest.fixture
def make_ai_client() -> Callable[..., httpx.AsyncClient]:
    """AsyncClient backed by httpx.MockTransport; handler gets each request."""

    def _make(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return _make


@pytest.fixture
def fake_k6(tmp_path: Path) -> Callable[..., Path]:
    """Write an executable that behaves like `k6 run <script> --summary-export <path>`.

    It copies the script it was given to <tmp_path>/seen_script.js, writes the
    summary (unless write_summary=False), and exits with exit_code.
    """

    def _make(
        summary: dict[str, Any] | None = None,
        exit_code: int = 0,
        write_summary: bool = True,
        raw_summary: str | None = None,
        sleep_seconds: float = 0.0,
    ) -> Path:
        payload = raw_summary if raw_summary is not None else json.dumps(summary or SAMPLE_SUMMARY)
        seen = tmp_path / "seen_script.js"
        script = tmp_path / "fake_k6"
        script.write_text(
            f"#!{sys.executable}\n"
            "import shutil, sys, time\n"
            "args = sys.argv[1:]\n"
            "assert args[0] == 'run', args\n"
            "script_path = args[1]\n"
            "summary_path = args[args.index('--summary-export') + 1]\n"
            f"shutil.copyfile(script_path, {str(seen)!r})\n"
            f"time.sleep({sleep_seconds!r})\n"
            f"if {write_summary!r}:\n"
            "    with open(summary_path, 'w', encoding='utf-8') as f:\n"
            f"        f.write({payload!r})\n"
            f"sys.exit({exit_code!r})\n",
            encoding="utf-8",
        )
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return script

    return _make


@pytest.fixture
def make_settings(
    tmp_path: Path,
    insight_settings: InsightSettings,
    base_test_config: TestConfig,
) -> Callable[..., RunSettings]:
    def _make(engine: Path | str, **kwargs: Any) -> RunSettings:
        params: dict[str, Any] = {
            "test": base_test_config,
            "report_path": tmp_path / "out" / "report.html",
            "insight": insight_settings,
            "engine_binary": str(engine),
        }
        params.update(kwargs)
        return RunSettings(**params)

    return _make


@pytest.fixture
def isolated_tmpdir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point tempfile at a private directory so leftover run arenas can be counted."""
    d = tmp_path / "sys_tmp"
    d.mkdir()
    monkeypatch.setenv("TMPDIR", str(d))
    monkeypatch.setattr(tempfile, "tempdir", str(d))
    return d
