"""k6 process runner and per-run temporary arena.

Each run gets its own directory under the system temp dir, so concurrent runs
never share script or summary files. The directory is removed when the
run_workspace() block exits, whatever happened inside it.
"""

from __future__ import annotations

import asyncio
import shutil
import tempfile
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from .exceptions import NilgiriEngineError
from .logging_config import get_logger
from .models import EngineResult, RunArtifacts

logger = get_logger("process")

WORKSPACE_PREFIX = "nilgiri-"
SCRIPT_FILENAME = "script.js"
SUMMARY_FILENAME = "summary.json"
# Grace period after kill() before giving up on reaping the child
KILL_WAIT_SEC = 5.0


@contextmanager
def run_workspace(
    report_path: str | Path,
    detailed_json_path: str | Path | None = None,
) -> Iterator[RunArtifacts]:
    """Allocate the temp arena for one run and remove it on exit."""
    run_id = uuid.uuid4().hex[:12]
    work_dir = Path(tempfile.mkdtemp(prefix=f"{WORKSPACE_PREFIX}{run_id}-"))
    artifacts = RunArtifacts(
        run_id=run_id,
        work_dir=work_dir,
        script_path=work_dir / SCRIPT_FILENAME,
        summary_path=work_dir / SUMMARY_FILENAME,
        report_path=Path(report_path),
        detailed_json_path=Path(detailed_json_path) if detailed_json_path else None,
    )
    logger.debug("Created run workspace %s", work_dir)
    try:
        yield artifacts
    finally:
        shutil.rmtree(work_dir, ignore_errors=True)
        if work_dir.exists():
            logger.warning("Could not fully remove run workspace %s", work_dir)
        else:
            logger.debug("Removed run workspace %s", work_dir)


def build_engine_command(binary: str, script_path: Path, summary_path: Path) -> list[str]:
    """k6 CLI: run <script> --summary-export <json>."""
    return [binary, "run", str(script_path), "--summary-export", str(summary_path)]


async def _terminate(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is not None:
        return
    try:
        proc.kill()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(proc.wait(), timeout=KILL_WAIT_SEC)
    except asyncio.TimeoutError:
        logger.warning("k6 process %s did not exit after kill", proc.pid)


async def run_engine(
    script_text: str,
    artifacts: RunArtifacts,
    binary: str = "k6",
    timeout: float | None = None,
) -> EngineResult:
    """Write the script, run k6 against it, and wait for it to finish.

    k6 stdout/stderr go straight to the terminal. A non-zero exit code is
    returned, not raised: failed checks make k6 exit non-zero but the summary
    is still worth reporting.

    Raises:
        NilgiriEngineError: k6 could not be started or exceeded `timeout`
    """
    script_path = artifacts.script_path
    script_path.write_text(script_text, encoding="utf-8")
    cmd = build_engine_command(binary, script_path, artifacts.summary_path)
    logger.info("Running %s", " ".join(cmd))
    start = time.perf_counter()
    try:
        try:
            proc = await asyncio.create_subprocess_exec(*cmd, stdin=asyncio.subprocess.DEVNULL)
        except OSError as e:
            raise NilgiriEngineError(
                f"Could not start load test engine {binary!r}: {e.strerror or e}",
                context={"binary": binary},
                original_error=e,
            ) from e

        try:
            if timeout is None:
                exit_code = await proc.wait()
            else:
                exit_code = await asyncio.wait_for(proc.wait(), timeout=timeout)
        except asyncio.TimeoutError as e:
            await _terminate(proc)
            raise NilgiriEngineError(
                f"Load test engine exceeded timeout of {timeout}s",
                context={"binary": binary},
                original_error=e,
            ) from e
        except asyncio.CancelledError:
            await _terminate(proc)
            raise
    finally:
        script_path.unlink(missing_ok=True)

    result = EngineResult(
        exit_code=exit_code,
        summary_path=artifacts.summary_path,
        duration_seconds=time.perf_counter() - start,
    )
    if result.succeeded:
        logger.info("k6 finished in %.1fs", result.duration_seconds)
    else:
        logger.warning(
            "k6 exited with code %s after %.1fs; continuing with its summary export",
            result.exit_code, result.duration_seconds,
        )
    return result
