# ============================================================================
# hostsweep/engine/runner.py
# Collection Task Runner
# ============================================================================
#
# PURPOSE:
# Runs the staged pipeline of external collection tasks and records what
# happened to each one. This is the only place that spawns processes.
#
# EXECUTION MODEL:
# - Stages run strictly in declared order.
# - Inside a stage (parallel mode on): tasks that are not parallel-eligible
#   run one after another first, then every parallel-eligible task is
#   launched at once and the stage waits for all of them (asyncio.gather).
# - Parallel mode off: every task runs sequentially in declared order.
# - Each task gets its own deadline from its timeout class. A task that runs
#   past it is killed (whole process group) and marked TIMEOUT. Its siblings
#   keep running with their own deadlines.
#
# FAILURE POLICY:
# Nothing a task does can abort the run. Non-zero exits, missing or empty
# artifacts and timeouts are logged and recorded in the RunResult, and the
# scorer later treats them as zero-count signals.
#
# ============================================================================

from __future__ import annotations

import asyncio
import logging
import os
import signal
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Sequence

from hostsweep.base.config import Configuration
from hostsweep.engine.models import (
    CaptureResult,
    CollectionTask,
    RunResult,
    Stage,
    TaskResult,
    TaskStatus,
)
from hostsweep.errors import ErrorCode

logger = logging.getLogger(__name__)

BASH = "/bin/bash"
RESTRICTED_PATH = "/usr/sbin:/usr/bin:/sbin:/bin"
KILL_GRACE_SECONDS = 2.0
STDERR_TAIL_CHARS = 400

CaptureFn = Callable[..., Awaitable[CaptureResult]]


def placeholder_text(command: str) -> str:
    return f"DRY_RUN=1 (no command executed)\nCMD={command}\n"


def _has_content(path: Path) -> bool:
    try:
        return path.stat().st_size > 0
    except OSError:
        return False


def _kill_group(proc: asyncio.subprocess.Process) -> None:
    """SIGKILL the task's process group; used when the run itself is cancelled."""
    if proc.returncode is not None:
        return
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


async def _terminate(proc: asyncio.subprocess.Process) -> None:
    """SIGTERM the task's process group, then SIGKILL it if it lingers."""
    for sig in (signal.SIGTERM, signal.SIGKILL):
        if proc.returncode is not None:
            return
        try:
            os.killpg(proc.pid, sig)
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(proc.wait(), timeout=KILL_GRACE_SECONDS)
        except asyncio.TimeoutError:
            continue


async def run_capture(
    command: str,
    output_path: Path,
    timeout: float,
    *,
    dry_run: bool = False,
    paranoid: bool = False,
    merge_stderr: bool = False,
    cwd: Optional[Path] = None,
) -> CaptureResult:
    """
    Run one shell command with its stdout written to ``output_path``.

    Args:
        command: Shell text, executed as ``bash -c "set -o pipefail; ..."``
        output_path: Artifact file (parent directories are created)
        timeout: Seconds before the process group is killed
        dry_run: Write a placeholder instead of executing anything
        paranoid: Execute with an emptied environment (fixed PATH only)
        merge_stderr: Send stderr into the artifact too
        cwd: Working directory (the run directory, so commands can use
             artifact paths relative to it)

    Returns:
        CaptureResult; never raises for command failures.
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    if dry_run:
        output_path.write_text(placeholder_text(command), encoding="utf-8")
        return CaptureResult(succeeded=True, produced_output=False)

    env = {"PATH": RESTRICTED_PATH} if paranoid else None

    with open(output_path, "wb") as out:
        try:
            proc = await asyncio.create_subprocess_exec(
                BASH, "-c", f"set -o pipefail; {command}",
                stdin=asyncio.subprocess.DEVNULL,
                stdout=out,
                stderr=asyncio.subprocess.STDOUT if merge_stderr else asyncio.subprocess.PIPE,
                env=env,
                cwd=str(cwd) if cwd else None,
                start_new_session=True,  # own process group, so a timeout kills the whole pipeline
            )
        except OSError as exc:
            return CaptureResult(succeeded=False, produced_output=False, error=str(exc))

        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            await _terminate(proc)
            return CaptureResult(
                succeeded=False,
                produced_output=_has_content(output_path),
                exit_code=proc.returncode,
                timed_out=True,
                error=f"timed out after {timeout}s",
            )
        except asyncio.CancelledError:
            _kill_group(proc)
            raise

    error = None
    if proc.returncode != 0 and stderr:
        error = stderr.decode("utf-8", errors="replace").strip()[-STDERR_TAIL_CHARS:]

    return CaptureResult(
        succeeded=proc.returncode == 0,
        produced_output=_has_content(output_path),
        exit_code=proc.returncode,
        error=error,
    )


class CollectorRunner:
    """
    Executes stages of CollectionTasks into a run directory.

    Usage:
        runner = CollectorRunner(config, report.path)
        run_result = runner.run(build_catalog(config))
    """

    def __init__(
        self,
        config: Configuration,
        run_dir: Path,
        capture: Optional[CaptureFn] = None,
    ):
        self.config = config
        self.run_dir = Path(run_dir)
        self._capture = capture or run_capture

    def run(self, stages: Sequence[Stage]) -> RunResult:
        return asyncio.run(self.run_async(stages))

    async def run_async(self, stages: Sequence[Stage]) -> RunResult:
        result = RunResult()
        for stage in stages:
            result.stage_order.append(stage.name)
            await self._run_stage(stage, result)

        logger.info(f"Collection finished: {result.counts_by_status()}")
        return result

    def plan(self, stage: Stage) -> tuple[List[CollectionTask], List[CollectionTask]]:
        """Split a stage into (sequential, concurrent) task lists."""
        tasks = stage.active_tasks(self.config.paranoid)
        if not self.config.parallel:
            return tasks, []
        sequential = [t for t in tasks if not t.parallel]
        concurrent = [t for t in tasks if t.parallel]
        return sequential, concurrent

    async def _run_stage(self, stage: Stage, result: RunResult) -> None:
        sequential, concurrent = self.plan(stage)
        if not sequential and not concurrent:
            return

        logger.info(f"[{stage.name}] running {len(sequential) + len(concurrent)} task(s)")

        for task in sequential:
            result.add(await self._run_task(stage, task))

        if concurrent:
            outcomes = await asyncio.gather(
                *(self._run_task(stage, task) for task in concurrent),
                return_exceptions=True,
            )
            for task, outcome in zip(concurrent, outcomes):
                if isinstance(outcome, BaseException):
                    logger.warning(f"[{ErrorCode.TASK_FAILED.value}] {task.name}: {outcome}")
                    outcome = TaskResult(
                        name=task.name,
                        stage=stage.name,
                        status=TaskStatus.FAILED,
                        artifact=task.artifact_path(self.run_dir),
                        error=str(outcome),
                    )
                result.add(outcome)

    async def _run_task(self, stage: Stage, task: CollectionTask) -> TaskResult:
        artifact = task.artifact_path(self.run_dir)
        timeout = self.config.timeout_for(task.timeout_class)
        loop = asyncio.get_running_loop()
        started = loop.time()

        logger.debug(f"[{task.name}] {task.command}")
        try:
            capture = await self._capture(
                task.command,
                artifact,
                timeout,
                dry_run=self.config.dry_run,
                paranoid=self.config.paranoid,
                merge_stderr=task.merge_stderr,
                cwd=self.run_dir,
            )
        except Exception as exc:
            capture = CaptureResult(succeeded=False, produced_output=False, error=str(exc))

        status = self._classify(task, capture)
        return TaskResult(
            name=task.name,
            stage=stage.name,
            status=status,
            artifact=artifact,
            exit_code=capture.exit_code,
            duration_seconds=round(loop.time() - started, 3),
            error=capture.error,
        )

    def _classify(self, task: CollectionTask, capture: CaptureResult) -> TaskStatus:
        if self.config.dry_run:
            return TaskStatus.SKIPPED

        if capture.timed_out:
            logger.warning(f"[{ErrorCode.TASK_TIMEOUT.value}] {task.name}: {capture.error}")
            return TaskStatus.TIMEOUT

        if not capture.succeeded:
            if capture.exit_code is None and capture.error:
                logger.warning(f"[{ErrorCode.TASK_START_FAILED.value}] could not start {task.name}: {capture.error}")
            else:
                detail = capture.error or f"exit code {capture.exit_code}"
                logger.warning(f"[{ErrorCode.TASK_FAILED.value}] command failed: {task.name} ({detail})")
            return TaskStatus.FAILED

        if not capture.produced_output:
            message = f"[{ErrorCode.TASK_ARTIFACT_GAP.value}] expected output missing/empty: {task.name}"
            if task.required:
                logger.warning(message)
            else:
                logger.debug(message)
            return TaskStatus.EMPTY

        return TaskStatus.SUCCEEDED
