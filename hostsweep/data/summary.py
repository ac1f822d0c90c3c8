"""
hostsweep/data/summary.py

Human- and machine-readable summaries of one sweep, plus the single-line
structured record used for the log and syslog.

The JSON shape is a contract with webhook receivers: field names and the
``$schema`` identifier only change together with the version.
"""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, ConfigDict, Field

from hostsweep import VERSION


def schema_id(version: str = VERSION) -> str:
    return f"hostsweep://{version}/summary.schema.json"


class SignalCountsModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    suspicious_process_matches: int = Field(default=0, ge=0)
    recent_system_executables: int = Field(default=0, ge=0)
    recent_home_files_top: int = Field(default=0, ge=0)
    established_uncommon_ports_lines: int = Field(default=0, ge=0)
    diff_nonempty_files: int = Field(default=0, ge=0)


class SweepSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    schema_: str = Field(default=schema_id(), alias="$schema")
    version: str = VERSION
    host: str
    timestamp: str = Field(description="Run stamp, YYYYmmdd_HHMMSS")
    report_path: str
    since_hours: int
    paranoid: int = Field(description="0 or 1")
    parallel: int = Field(description="0 or 1")
    runtime_seconds: int = Field(ge=0)
    memory_delta_mb: int
    common_ports: str
    counts: SignalCountsModel = Field(default_factory=SignalCountsModel)
    risk_score: int = Field(ge=0, le=100)
    tarball_ok: int = Field(default=1, description="0 or 1")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2) + "\n"

    def render_text(self) -> str:
        c = self.counts
        lines: List[str] = [
            "### SUMMARY",
            f"Version: {self.version}",
            f"Report: {self.report_path}",
            f"Since-hours: {self.since_hours}",
            f"Runtime: {self.runtime_seconds}s",
            f"Memory delta: {self.memory_delta_mb}MB",
            "",
            f"Suspicious process matches: {c.suspicious_process_matches}",
            f"Recent system executables: {c.recent_system_executables}",
            f"Recent home files (top): {c.recent_home_files_top}",
            f"Established uncommon ports (lines): {c.established_uncommon_ports_lines}",
            f"Diff files non-empty: {c.diff_nonempty_files}",
            "",
            f"Risk Score: {self.risk_score}/100",
            f"Tarball: {'OK' if self.tarball_ok else 'FAILED'}",
        ]
        return "\n".join(lines) + "\n"

    def log_line(self) -> str:
        """key=value record for the run log and syslog."""
        c = self.counts
        return (
            f"version={self.version} host={self.host} stamp={self.timestamp} "
            f"risk={self.risk_score}/100 suspicious={c.suspicious_process_matches} "
            f"uncommon_est={c.established_uncommon_ports_lines} "
            f"recent_exec={c.recent_system_executables} diffs={c.diff_nonempty_files} "
            f"runtime_s={self.runtime_seconds} tar_ok={self.tarball_ok} report={self.report_path}"
        )

    def email_subject(self) -> str:
        return f"hostsweep v{self.version} {self.host} {self.timestamp} (Risk {self.risk_score}/100)"
