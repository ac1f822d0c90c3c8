"""Module risk: deterministic 0-100 risk score for one sweep."""
#
# PURPOSE:
# Turns the handful of signal counts a sweep produces into one number that
# decides notification and the exit code.
#
# HOW SCORING WORKS:
# Each signal adds a fixed weight when it fires; the sum is capped at 100.
#   suspicious process matches > 0        +25
#   uncommon established lines > 1        +10  (line 1 is the ss header)
#   recent system executables > 0         +20
#   non-empty baseline diffs > 0          +15
#   integrity findings > 0 (paranoid)     +10
#
# EXAMPLE:
# A host with one reverse-shell-looking process and a freshly dropped binary
# in /usr/local/bin scores 25 + 20 = 45.
#
# Counts come only from tasks that actually succeeded. A failed, timed-out or
# empty task, and every dry-run placeholder, contributes zero.
#

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, Optional, Sequence

from hostsweep.data.baseline import DiffResult
from hostsweep.data.summary import SignalCountsModel
from hostsweep.engine.catalog import SIGNAL_TASKS
from hostsweep.engine.models import RunResult

logger = logging.getLogger(__name__)

MAX_SCORE = 100

WEIGHTS: Dict[str, int] = {
    "suspicious_process_matches": 25,
    "uncommon_established_lines": 10,
    "recent_system_executables": 20,
    "nonempty_diffs": 15,
    "integrity_findings": 10,
}

# Count that must be exceeded before a signal fires
THRESHOLDS: Dict[str, int] = {
    "uncommon_established_lines": 1,
}


@dataclass(frozen=True)
class SignalCounts:
    suspicious_process_matches: int = 0
    recent_system_executables: int = 0
    recent_home_files: int = 0
    uncommon_established_lines: int = 0
    nonempty_diffs: int = 0
    integrity_findings: int = 0

    def to_model(self) -> SignalCountsModel:
        return SignalCountsModel(
            suspicious_process_matches=self.suspicious_process_matches,
            recent_system_executables=self.recent_system_executables,
            recent_home_files_top=self.recent_home_files,
            established_uncommon_ports_lines=self.uncommon_established_lines,
            diff_nonempty_files=self.nonempty_diffs,
        )


def score(counts: SignalCounts, paranoid: bool = False) -> int:
    values = asdict(counts)
    total = 0
    for signal, weight in WEIGHTS.items():
        if signal == "integrity_findings" and not paranoid:
            continue
        if values[signal] > THRESHOLDS.get(signal, 0):
            total += weight
    return max(0, min(total, MAX_SCORE))


def count_lines(path: Path) -> int:
    """Line count the way ``wc -l`` reports it; unreadable files count zero."""
    try:
        with open(path, "rb") as fh:
            return sum(chunk.count(b"\n") for chunk in iter(lambda: fh.read(65536), b""))
    except OSError:
        return 0


def _task_lines(run_result: RunResult, task_name: Optional[str]) -> int:
    if not task_name:
        return 0
    result = run_result.get(task_name)
    if result is None or not result.ok:
        return 0
    return count_lines(result.artifact)


def extract_counts(
    run_result: RunResult,
    diffs: Sequence[DiffResult] = (),
) -> SignalCounts:
    """Read signal counts out of a finished run and its baseline comparison."""
    counts = SignalCounts(
        suspicious_process_matches=_task_lines(run_result, SIGNAL_TASKS.get("suspicious_process_matches")),
        recent_system_executables=_task_lines(run_result, SIGNAL_TASKS.get("recent_system_executables")),
        recent_home_files=_task_lines(run_result, SIGNAL_TASKS.get("recent_home_files")),
        uncommon_established_lines=_task_lines(run_result, SIGNAL_TASKS.get("uncommon_established_lines")),
        nonempty_diffs=sum(1 for d in diffs if d.changed),
        integrity_findings=_task_lines(run_result, SIGNAL_TASKS.get("integrity_findings")),
    )
    logger.debug(f"Signal counts: {counts}")
    return counts
