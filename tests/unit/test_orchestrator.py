"""Unit tests for the sweep orchestrator and exit contract."""
import json

import pytest

from hostsweep.base.exceptions import LockBusyError, PrivilegeError
from hostsweep.base.lock import acquire_lock
from hostsweep.engine.exit_contract import ExitCode, decide
from hostsweep.engine.models import CollectionTask, Stage, TaskStatus
from hostsweep.engine.orchestrator import SweepOrchestrator

SUS = "grep-suspicious"
RECENT = "find-recent"
UNITS = "list-units"


def _stages():
    return [
        Stage("persistence", (
            CollectionTask("systemd_enabled_units", "persistence", UNITS, "systemd_enabled_units.txt"),
        )),
        Stage("processes", (
            CollectionTask("suspicious_process_patterns", "processes", SUS, "suspicious_process_patterns.txt"),
        )),
        Stage("filesystem", (
            CollectionTask("recent_exec_system", "filesystem", RECENT, "recent_exec_system.txt", parallel=True),
        )),
    ]


class RecordingNotifier:
    def __init__(self):
        self.summaries = []

    def dispatch(self, summary):
        self.summaries.append(summary)
        return []


@pytest.mark.parametrize("risk,threshold,expected", [
    (55, 50, ExitCode.SUCCESS_HIGH_RISK),
    (50, 50, ExitCode.SUCCESS_HIGH_RISK),
    (10, 50, ExitCode.SUCCESS_LOW_RISK),
    (0, 0, ExitCode.SUCCESS_HIGH_RISK),
])
def test_decide(risk, threshold, expected):
    assert decide(risk, threshold) == expected


def test_exit_code_values():
    assert [int(c) for c in ExitCode] == [0, 1, 2]


def test_high_risk_run(tmp_path, make_config, fake_capture, as_root):
    capture = fake_capture({
        SUS: "root 1 nc -l -p 4444\n",
        RECENT: "2024-01-01 00:00:00 root:root 755 /usr/local/bin/x\n",
        UNITS: "ssh.service enabled\n",
    })
    config = make_config(high_risk_threshold=40)
    notifier = RecordingNotifier()
    outcome = SweepOrchestrator(
        config, lock_dir=str(tmp_path / "lock"), stages=_stages(),
        capture=capture, notifier=notifier, host="box",
    ).run()

    assert outcome.risk == 45
    assert outcome.exit_code == ExitCode.SUCCESS_HIGH_RISK
    assert outcome.tarball_ok
    assert outcome.report.tarball.exists()
    assert outcome.report.manifest.exists()
    assert notifier.summaries[0].risk_score == 45

    data = json.loads(outcome.report.summary_json.read_text())
    assert data["counts"]["suspicious_process_matches"] == 1
    assert data["counts"]["recent_system_executables"] == 1
    assert data["risk_score"] == 45
    # lock released
    acquire_lock(str(tmp_path / "lock")).release()


def test_low_risk_run(tmp_path, make_config, fake_capture, as_root):
    capture = fake_capture({RECENT: "x\n"})
    outcome = SweepOrchestrator(
        make_config(), lock_dir=str(tmp_path / "lock"), stages=_stages(),
        capture=capture, notifier=RecordingNotifier(), host="box",
    ).run()
    assert outcome.risk == 20
    assert outcome.exit_code == ExitCode.SUCCESS_LOW_RISK


def test_failed_tasks_do_not_abort_and_count_zero(tmp_path, make_config, fake_capture, as_root):
    capture = fake_capture({SUS: "nc\n", RECENT: "x\n"}, fail={SUS}, timeout={RECENT})
    outcome = SweepOrchestrator(
        make_config(), lock_dir=str(tmp_path / "lock"), stages=_stages(),
        capture=capture, notifier=RecordingNotifier(), host="box",
    ).run()
    assert outcome.run_result.get("suspicious_process_patterns").status == TaskStatus.FAILED
    assert outcome.run_result.get("recent_exec_system").status == TaskStatus.TIMEOUT
    assert outcome.risk == 0
    assert outcome.report.summary_txt.exists()


def test_lock_contention_is_fatal_before_report_exists(tmp_path, make_config, fake_capture, as_root):
    lock_dir = str(tmp_path / "lock")
    config = make_config()
    held = acquire_lock(lock_dir)
    capture = fake_capture()
    try:
        with pytest.raises(LockBusyError):
            SweepOrchestrator(config, lock_dir=lock_dir, stages=_stages(), capture=capture).run()
    finally:
        held.release()

    assert capture.calls == []
    assert not (tmp_path / "reports").exists()


def test_non_root_is_fatal_before_report_exists(tmp_path, make_config, monkeypatch):
    monkeypatch.setattr("os.geteuid", lambda: 1000)
    with pytest.raises(PrivilegeError) as exc_info:
        SweepOrchestrator(make_config(), lock_dir=str(tmp_path / "lock"), stages=_stages()).run()
    assert exc_info.value.details["euid"] == 1000
    assert not (tmp_path / "reports").exists()


def test_dry_run_completes_without_side_effects(tmp_path, make_config, fake_capture, as_root):
    lock_dir = str(tmp_path / "lock")
    held = acquire_lock(lock_dir)  # dry-run never takes the lock
    capture = fake_capture({SUS: "nc\n", RECENT: "x\n"})
    notifier = RecordingNotifier()
    try:
        outcome = SweepOrchestrator(
            make_config(dry_run=True, compare_dir=str(tmp_path / "base"), baseline_dir=str(tmp_path / "base")),
            lock_dir=lock_dir, stages=_stages(), capture=capture, notifier=notifier, host="box",
        ).run()
    finally:
        held.release()

    assert outcome.exit_code == ExitCode.SUCCESS_LOW_RISK
    assert outcome.risk == 0
    assert outcome.tarball_ok
    assert not outcome.report.tarball.exists()
    assert not outcome.report.manifest.exists()
    assert not (tmp_path / "base").exists()
    for artifact in ("processes/suspicious_process_patterns.txt", "filesystem/recent_exec_system.txt"):
        assert (outcome.report.path / artifact).read_text().startswith("DRY_RUN=1 (no command executed)")


def test_compare_runs_before_baseline_update(tmp_path, make_config, fake_capture, as_root):
    base = str(tmp_path / "base")
    lock_dir = str(tmp_path / "lock")

    def sweep(units, host):
        return SweepOrchestrator(
            make_config(baseline_dir=base, compare_dir=base),
            lock_dir=lock_dir, stages=_stages(),
            capture=fake_capture({UNITS: units}), notifier=RecordingNotifier(), host=host,
        ).run()

    first = sweep("ssh.service enabled\n", "r1")
    assert first.diffs == []  # nothing to compare against yet

    second = sweep("ssh.service enabled\nevil.service enabled\n", "r2")
    assert [d.artifact for d in second.diffs if d.changed] == ["systemd_enabled_units.txt"]
    assert second.counts.nonempty_diffs == 1
    assert second.risk == 15

    third = sweep("ssh.service enabled\nevil.service enabled\n", "r3")
    assert not any(d.changed for d in third.diffs)


def test_hash_manifest_covers_diff_artifacts(tmp_path, make_config, fake_capture, as_root):
    base = str(tmp_path / "base")
    lock_dir = str(tmp_path / "lock")
    for units, host in (("a.service enabled\n", "r1"), ("b.service enabled\n", "r2")):
        outcome = SweepOrchestrator(
            make_config(baseline_dir=base, compare_dir=base),
            lock_dir=lock_dir, stages=_stages(),
            capture=fake_capture({UNITS: units}), notifier=RecordingNotifier(), host=host,
        ).run()

    assert "./diff/systemd_enabled_units.txt.diff.txt" in outcome.report.manifest.read_text()


def test_baseline_write_failure_does_not_abort_run(tmp_path, make_config, fake_capture, as_root, caplog):
    not_a_dir = tmp_path / "not_a_dir"
    not_a_dir.write_text("occupied\n")
    notifier = RecordingNotifier()

    with caplog.at_level("WARNING"):
        outcome = SweepOrchestrator(
            make_config(baseline_dir=str(not_a_dir)),
            lock_dir=str(tmp_path / "lock"), stages=_stages(),
            capture=fake_capture({UNITS: "ssh.service enabled\n"}), notifier=notifier, host="box",
        ).run()

    assert outcome.exit_code == ExitCode.SUCCESS_LOW_RISK
    assert outcome.report.summary_json.exists()
    assert outcome.report.manifest.exists()
    assert notifier.summaries
    assert not_a_dir.read_text() == "occupied\n"
    assert "baseline save failed" in caplog.text
