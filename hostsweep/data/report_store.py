# ============================================================================
# hostsweep/data/report_store.py
# Report Store - On-Disk Artifact Layout
# ============================================================================
#
# PURPOSE:
# Owns the directory tree one sweep writes into, and everything done to that
# tree as a whole: the hash manifest, the tarball and its checksum, and the
# two summary files.
#
# FILE ORGANIZATION:
# <report_dir>/
#   ├── <host>_<YYYYmmdd_HHMMSS>/
#   │   ├── network/ processes/ persistence/ filesystem/
#   │   ├── logs/ integrity/ summary/ diff/
#   ├── <host>_<YYYYmmdd_HHMMSS>.tar.gz
#   └── <host>_<YYYYmmdd_HHMMSS>.tar.gz.sha256
#
# RULES:
# - Every directory is created 0700. Reports are for root only.
# - A run never reuses an existing directory; a colliding name gets a
#   numeric suffix.
# - Archive failures are logged and reported as False, never raised.
#
# ============================================================================

from __future__ import annotations

import hashlib
import logging
import os
import socket
import tarfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional, Tuple

from hostsweep.data.summary import SweepSummary
from hostsweep.errors import ErrorCode

logger = logging.getLogger(__name__)

CATEGORIES: Tuple[str, ...] = (
    "network",
    "processes",
    "persistence",
    "filesystem",
    "logs",
    "integrity",
    "summary",
    "diff",
)

STAMP_FORMAT = "%Y%m%d_%H%M%S"
MANIFEST_DEPTH = 3
_CHUNK = 1024 * 1024


def short_hostname() -> str:
    return socket.gethostname().split(".", 1)[0] or "localhost"


def sha256_file(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(_CHUNK), b""):
            digest.update(chunk)
    return digest.hexdigest()


@dataclass(frozen=True)
class Report:
    host: str
    timestamp: str
    path: Path

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def summary_txt(self) -> Path:
        return self.path / "summary" / "summary.txt"

    @property
    def summary_json(self) -> Path:
        return self.path / "summary" / "summary.json"

    @property
    def manifest(self) -> Path:
        return self.path / "integrity" / "report_hashes.txt"

    @property
    def tarball(self) -> Path:
        return self.path.with_name(self.path.name + ".tar.gz")

    @property
    def tarball_checksum(self) -> Path:
        return self.path.with_name(self.path.name + ".tar.gz.sha256")


class ReportStore:
    """Creates run directories under ``root`` and finalizes them."""

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def _secure_mkdir(self, path: Path) -> None:
        path.mkdir(mode=0o700, parents=True, exist_ok=True)
        os.chmod(path, 0o700)  # mkdir's mode is filtered by the umask

    def create_run(
        self,
        host: Optional[str] = None,
        timestamp: Optional[str] = None,
    ) -> Report:
        host = host or short_hostname()
        timestamp = timestamp or datetime.now().strftime(STAMP_FORMAT)

        self._secure_mkdir(self.root)

        base = f"{host}_{timestamp}"
        path = self.root / base
        suffix = 1
        while True:
            try:
                path.mkdir(mode=0o700)
                break
            except FileExistsError:
                suffix += 1
                path = self.root / f"{base}_{suffix}"
        os.chmod(path, 0o700)

        for name in CATEGORIES:
            self._secure_mkdir(path / name)

        logger.info(f"Report directory: {path}")
        return Report(host=host, timestamp=timestamp, path=path)

    # ------------------------------------------------------------------

    def iter_files(self, report: Report, max_depth: int = MANIFEST_DEPTH) -> Iterator[Path]:
        """Regular files under the run, at most ``max_depth`` levels down, sorted."""
        files = []
        for dirpath, dirnames, filenames in os.walk(report.path):
            rel = Path(dirpath).relative_to(report.path)
            depth = len(rel.parts) + 1
            if depth >= max_depth:
                dirnames[:] = []
            for fname in filenames:
                full = Path(dirpath) / fname
                if full.is_file() and not full.is_symlink():
                    files.append(full)
        return iter(sorted(files))

    def write_hash_manifest(self, report: Report) -> Optional[Path]:
        """SHA-256 of every report file, in ``sha256sum`` format, relative paths.

        Returns None when the manifest cannot be written.
        """
        manifest = report.manifest
        lines = []
        for path in self.iter_files(report):
            if path == manifest:
                continue
            try:
                digest = sha256_file(path)
            except OSError as exc:
                logger.warning(f"[{ErrorCode.REPORT_WRITE_FAILED.value}] cannot hash {path}: {exc}")
                continue
            lines.append(f"{digest}  ./{path.relative_to(report.path).as_posix()}")

        try:
            manifest.write_text("\n".join(lines) + ("\n" if lines else ""), encoding="utf-8")
        except OSError as exc:
            logger.warning(f"[{ErrorCode.REPORT_WRITE_FAILED.value}] hash manifest not written: {exc}")
            return None
        logger.debug(f"Hash manifest: {len(lines)} file(s)")
        return manifest

    def archive(self, report: Report) -> bool:
        """
        Pack the run directory into ``<run>.tar.gz`` beside it and write a
        ``sha256sum``-style checksum file. Returns False on any failure.
        """
        tarball = report.tarball
        try:
            with tarfile.open(tarball, "w:gz") as tar:
                tar.add(report.path, arcname=report.name)
            os.chmod(tarball, 0o600)
        except (OSError, tarfile.TarError) as exc:
            logger.warning(f"[{ErrorCode.REPORT_ARCHIVE_FAILED.value}] tarball creation failed: {exc}")
            try:
                tarball.unlink()
            except FileNotFoundError:
                pass
            return False

        try:
            report.tarball_checksum.write_text(f"{sha256_file(tarball)}  {tarball}\n", encoding="utf-8")
        except OSError as exc:
            # The tarball itself is fine; only its checksum is missing.
            logger.warning(f"[{ErrorCode.REPORT_WRITE_FAILED.value}] checksum not written: {exc}")

        logger.info(f"Archive: {tarball}")
        return True

    def write_summaries(self, report: Report, summary: SweepSummary) -> None:
        report.summary_txt.write_text(summary.render_text(), encoding="utf-8")
        report.summary_json.write_text(summary.to_json(), encoding="utf-8")
