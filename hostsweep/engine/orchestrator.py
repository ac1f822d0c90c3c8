# ============================================================================
# hostsweep/engine/orchestrator.py
# Sweep Orchestrator - One Complete Run, End to End
# ============================================================================
#
# PURPOSE:
# Wires the components together in the one order that keeps a run coherent:
#
#   privilege check -> lock -> report dir -> collection stages
#   -> baseline compare/save -> hash manifest -> signal counts -> risk score
#   -> archive -> summaries -> log line + syslog -> notifications
#   -> exit code -> lock release
#
# ORDERING CONSTRAINTS:
# - Every fatal precondition (root, lock) is checked before the report
#   directory exists, so an aborted run leaves nothing behind.
# - Compare runs before scoring because the diff count is a signal.
# - The hash manifest is written after compare so diff artifacts are hashed.
# - Baseline and manifest write failures are logged and the run goes on.
# - Archive runs before the summaries are written so the summary can say
#   whether the tarball was made.
#
# DRY-RUN:
# No lock, placeholder artifacts only, no hash manifest, no tarball, no
# baseline work and no outbound notifications. The run still completes and
# produces summaries.
#
# ============================================================================

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence

import psutil

from hostsweep import VERSION
from hostsweep.base.config import Configuration
from hostsweep.base.exceptions import PrivilegeError
from hostsweep.base.lock import DEFAULT_LOCK_DIR, ExclusiveLock, acquire_lock
from hostsweep.data.baseline import BaselineManager, DiffResult
from hostsweep.data.report_store import STAMP_FORMAT, Report, ReportStore, short_hostname
from hostsweep.data.risk import SignalCounts, extract_counts, score
from hostsweep.data.summary import SweepSummary
from hostsweep.engine.catalog import build_catalog
from hostsweep.engine.exit_contract import ExitCode, decide
from hostsweep.engine.models import RunResult, Stage
from hostsweep.engine.runner import CaptureFn, CollectorRunner
from hostsweep.errors import ErrorCode
from hostsweep.notify.notifier import NotificationAttempt, Notifier
from hostsweep.notify.syslog import emit_summary

try:
    import resource
except ImportError:  # not a POSIX platform
    resource = None

logger = logging.getLogger(__name__)

OPEN_FILES_TARGET = 4096


def used_memory_mb() -> int:
    return int(psutil.virtual_memory().used // (1024 * 1024))


def raise_open_file_limit(target: int = OPEN_FILES_TARGET) -> None:
    """Best-effort bump of the soft RLIMIT_NOFILE, never above the hard limit."""
    if resource is None:
        return
    try:
        soft, hard = resource.getrlimit(resource.RLIMIT_NOFILE)
        wanted = target if hard == resource.RLIM_INFINITY else min(target, hard)
        if soft != resource.RLIM_INFINITY and soft < wanted:
            resource.setrlimit(resource.RLIMIT_NOFILE, (wanted, hard))
    except (ValueError, OSError) as exc:
        logger.debug(f"Could not raise open file limit: {exc}")


@dataclass
class SweepOutcome:
    report: Report
    run_result: RunResult
    counts: SignalCounts
    risk: int
    summary: SweepSummary
    exit_code: ExitCode
    tarball_ok: bool = True
    diffs: List[DiffResult] = field(default_factory=list)
    notifications: List[NotificationAttempt] = field(default_factory=list)


class SweepOrchestrator:
    """
    Runs one sweep for a resolved Configuration.

    Usage:
        outcome = SweepOrchestrator(config).run()
        sys.exit(int(outcome.exit_code))

    Fatal preconditions raise SweepError subclasses before any report
    directory is created; everything after that is best-effort.
    """

    def __init__(
        self,
        config: Configuration,
        lock_dir: str = DEFAULT_LOCK_DIR,
        stages: Optional[Sequence[Stage]] = None,
        capture: Optional[CaptureFn] = None,
        notifier: Optional[Notifier] = None,
        host: Optional[str] = None,
    ):
        self.config = config
        self.lock_dir = lock_dir
        self.stages = list(stages) if stages is not None else build_catalog(config)
        self.capture = capture
        self.notifier = notifier or Notifier(config)
        self.host = host or short_hostname()
        self.store = ReportStore(config.report_dir)
        self.baselines = BaselineManager(paranoid=config.paranoid)

    def check_privileges(self) -> None:
        euid = os.geteuid()
        if euid != 0:
            raise PrivilegeError(euid)

    def run(self) -> SweepOutcome:
        self.check_privileges()

        lock: Optional[ExclusiveLock] = None
        if self.config.dry_run:
            logger.debug(f"[DRY] Would acquire lock in {self.lock_dir}")
        else:
            lock = acquire_lock(self.lock_dir)

        try:
            return self._sweep()
        finally:
            if lock is not None:
                lock.release()

    # ------------------------------------------------------------------

    def _sweep(self) -> SweepOutcome:
        cfg = self.config
        started = time.monotonic()
        start_mem = used_memory_mb()
        raise_open_file_limit()

        report = self.store.create_run(self.host, datetime.now().strftime(STAMP_FORMAT))
        logger.info(f"hostsweep v{VERSION} starting. Report: {report.path}")
        logger.info(
            f"since-hours={cfg.since_hours} paranoid={int(cfg.paranoid)} "
            f"parallel={int(cfg.parallel)} dry-run={int(cfg.dry_run)}"
        )
        logger.info(
            f"common-ports={cfg.common_ports} notify-threshold={cfg.notify_threshold} "
            f"high-risk-threshold={cfg.high_risk_threshold}"
        )

        runner = CollectorRunner(cfg, report.path, capture=self.capture)
        run_result = runner.run(self.stages)

        diffs = self._baseline(report)

        if not cfg.dry_run:
            self.store.write_hash_manifest(report)

        counts = extract_counts(run_result, diffs)
        risk = score(counts, cfg.paranoid)

        tarball_ok = True
        if cfg.dry_run:
            logger.info(f"[DRY] Would archive {report.path} to {report.tarball}")
        else:
            tarball_ok = self.store.archive(report)

        summary = SweepSummary(
            host=report.host,
            timestamp=report.timestamp,
            report_path=str(report.path),
            since_hours=cfg.since_hours,
            paranoid=int(cfg.paranoid),
            parallel=int(cfg.parallel),
            runtime_seconds=int(time.monotonic() - started),
            memory_delta_mb=used_memory_mb() - start_mem,
            common_ports=cfg.common_ports,
            counts=counts.to_model(),
            risk_score=risk,
            tarball_ok=int(tarball_ok),
        )
        self.store.write_summaries(report, summary)

        line = summary.log_line()
        logger.info(line)
        emit_summary(cfg, line)

        notifications = self.notifier.dispatch(summary)

        exit_code = decide(risk, cfg.high_risk_threshold)
        logger.info(f"Sweep complete. Summary: {report.summary_txt} (exit {int(exit_code)})")

        return SweepOutcome(
            report=report,
            run_result=run_result,
            counts=counts,
            risk=risk,
            summary=summary,
            exit_code=exit_code,
            tarball_ok=tarball_ok,
            diffs=diffs,
            notifications=notifications,
        )

    def _baseline(self, report: Report) -> List[DiffResult]:
        cfg = self.config
        if cfg.dry_run:
            if cfg.compare_dir or cfg.baseline_dir:
                logger.info("[DRY] Skipping baseline compare/save (placeholder artifacts only)")
            return []

        diffs: List[DiffResult] = []
        if cfg.compare_dir:
            logger.info(f"Comparing against baseline: {cfg.compare_dir}")
            try:
                diffs = self.baselines.compare(report, cfg.compare_dir)
            except OSError as exc:
                logger.warning(f"[{ErrorCode.REPORT_WRITE_FAILED.value}] baseline compare failed: {exc}")
        if cfg.baseline_dir:
            logger.info(f"Saving baseline to: {cfg.baseline_dir}")
            try:
                self.baselines.save(report, cfg.baseline_dir)
            except OSError as exc:
                logger.warning(f"[{ErrorCode.REPORT_WRITE_FAILED.value}] baseline save failed: {exc}")
        return diffs
