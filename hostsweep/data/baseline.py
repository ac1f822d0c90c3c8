"""
hostsweep/data/baseline.py

Purpose:
    Keeps a trusted snapshot of slow-changing host state (persistence
    vectors, critical binary hashes) and diffs later runs against it.

Semantics:
    - Only the curated artifacts below take part. They are copied by base
      name into a flat, operator-managed directory (0700, files 0600).
    - A sweep never prunes a baseline; it only overwrites the curated files.
    - compare() writes ``diff/<name>.diff.txt`` only when the unified diff is
      non-empty. A curated file with no baseline counterpart is a gap: logged,
      no artifact, not an error.
    - When a run both compares and saves, the caller compares first so the
      diff is taken against the previous baseline.
"""

from __future__ import annotations

import difflib
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from hostsweep.data.report_store import Report
from hostsweep.errors import ErrorCode

logger = logging.getLogger(__name__)

# (run-relative path, paranoid only)
CURATED_ARTIFACTS: Tuple[Tuple[str, bool], ...] = (
    ("persistence/systemd_enabled_units.txt", False),
    ("persistence/systemd_timers.txt", False),
    ("persistence/cron_ls.txt", False),
    ("persistence/systemd_user_units.txt", False),
    ("persistence/ld_preload_audit.txt", False),
    ("integrity/critical_bin_hashes.txt", False),
    ("filesystem/suid_sgid_all.txt", True),
    ("integrity/dpkg_verify.txt", True),
)

# Saved for context, never compared
CONTEXT_SNAPSHOTS: Tuple[str, ...] = (
    "summary/uname.txt",
    "summary/uptime.txt",
)


@dataclass(frozen=True)
class DiffResult:
    artifact: str
    baseline_path: Path
    current_path: Path
    diff_path: Optional[Path] = None
    gap: bool = False

    @property
    def changed(self) -> bool:
        return self.diff_path is not None


def curated_paths(report: Report, paranoid: bool) -> List[Path]:
    """Curated artifacts of ``report`` that exist and are non-empty."""
    paths = []
    for rel, paranoid_only in CURATED_ARTIFACTS:
        if paranoid_only and not paranoid:
            continue
        path = report.path / rel
        if path.is_file() and path.stat().st_size > 0:
            paths.append(path)
    return paths


def unified_diff(baseline: Path, current: Path) -> str:
    """``diff -u`` equivalent; empty string when the files match."""
    old = baseline.read_text(encoding="utf-8", errors="replace").splitlines(keepends=True)
    new = current.read_text(encoding="utf-8", errors="replace").splitlines(keepends=True)
    lines = []
    for line in difflib.unified_diff(old, new, fromfile=str(baseline), tofile=str(current)):
        lines.append(line if line.endswith("\n") else line + "\n")
    return "".join(lines)


class BaselineManager:
    def __init__(self, paranoid: bool = False):
        self.paranoid = paranoid

    def save(self, report: Report, destination: str | Path) -> List[Path]:
        """Copy the curated artifacts (and context snapshots) into ``destination``."""
        dest = Path(destination)
        dest.mkdir(mode=0o700, parents=True, exist_ok=True)
        os.chmod(dest, 0o700)

        sources = curated_paths(report, self.paranoid)
        sources += [report.path / rel for rel in CONTEXT_SNAPSHOTS if (report.path / rel).is_file()]

        saved = []
        for src in sources:
            target = dest / src.name
            try:
                shutil.copyfile(src, target)
                os.chmod(target, 0o600)
            except OSError as exc:
                logger.warning(f"[{ErrorCode.REPORT_WRITE_FAILED.value}] baseline copy failed for {src.name}: {exc}")
                continue
            saved.append(target)

        logger.info(f"Baseline saved to {dest} ({len(saved)} file(s))")
        return saved

    def compare(self, report: Report, baseline_dir: str | Path) -> List[DiffResult]:
        base_dir = Path(baseline_dir)
        if not base_dir.is_dir():
            logger.warning(f"compare dir does not exist: {base_dir}")
            return []

        diff_dir = report.path / "diff"
        diff_dir.mkdir(mode=0o700, exist_ok=True)

        results = []
        for current in curated_paths(report, self.paranoid):
            baseline = base_dir / current.name
            if not baseline.is_file():
                logger.info(f"[{ErrorCode.REPORT_BASELINE_GAP.value}] no baseline copy of {current.name}")
                results.append(DiffResult(current.name, baseline, current, gap=True))
                continue

            text = unified_diff(baseline, current)
            diff_path = None
            if text:
                diff_path = diff_dir / f"{current.name}.diff.txt"
                diff_path.write_text(text, encoding="utf-8")
                logger.info(f"Baseline drift: {current.name}")
            results.append(DiffResult(current.name, baseline, current, diff_path=diff_path))

        changed = sum(1 for r in results if r.changed)
        logger.info(f"Compared {len(results)} artifact(s) against {base_dir}: {changed} changed")
        return results
