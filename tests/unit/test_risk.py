"""Unit tests for risk scoring and signal extraction."""
import itertools
from pathlib import Path

import pytest

from hostsweep.data.baseline import DiffResult
from hostsweep.data.risk import SignalCounts, count_lines, extract_counts, score
from hostsweep.engine.models import RunResult, TaskResult, TaskStatus


@pytest.mark.parametrize("counts,paranoid,expected", [
    (SignalCounts(), False, 0),
    (SignalCounts(suspicious_process_matches=1), False, 25),
    (SignalCounts(uncommon_established_lines=1), False, 0),
    (SignalCounts(uncommon_established_lines=2), False, 10),
    (SignalCounts(recent_system_executables=7), False, 20),
    (SignalCounts(nonempty_diffs=1), False, 15),
    (SignalCounts(integrity_findings=3), False, 0),
    (SignalCounts(integrity_findings=3), True, 10),
    (SignalCounts(recent_home_files=3000), False, 0),
    (SignalCounts(suspicious_process_matches=1, recent_system_executables=1), False, 45),
])
def test_score_weights(counts, paranoid, expected):
    assert score(counts, paranoid) == expected


def test_score_always_within_bounds():
    values = (0, 1, 2, 10_000)
    for combo in itertools.product(values, repeat=6):
        for paranoid in (False, True):
            result = score(SignalCounts(*combo), paranoid)
            assert isinstance(result, int)
            assert 0 <= result <= 100


def test_score_is_monotonic_in_evidence():
    base = SignalCounts(recent_system_executables=1)
    more = SignalCounts(recent_system_executables=1, nonempty_diffs=2)
    assert score(more) >= score(base)


def _result(name, path, status=TaskStatus.SUCCEEDED):
    return TaskResult(name=name, stage="s", status=status, artifact=Path(path))


def test_extract_counts_uses_successful_tasks_only(tmp_path):
    sus = tmp_path / "sus.txt"
    sus.write_text("a\nb\n")
    est = tmp_path / "est.txt"
    est.write_text("State Recv-Q\nconn1\nconn2\n")
    exec_failed = tmp_path / "exec.txt"
    exec_failed.write_text("partial\n")
    dpkg = tmp_path / "dpkg.txt"
    dpkg.write_text("??5?????? c /etc/ssh/sshd_config\n")

    run = RunResult()
    run.add(_result("suspicious_process_patterns", sus))
    run.add(_result("established_uncommon_ports", est))
    run.add(_result("recent_exec_system", exec_failed, TaskStatus.TIMEOUT))
    run.add(_result("dpkg_verify", dpkg))

    diffs = [
        DiffResult("a.txt", tmp_path / "b", tmp_path / "c", diff_path=tmp_path / "a.diff.txt"),
        DiffResult("b.txt", tmp_path / "b", tmp_path / "c"),
        DiffResult("c.txt", tmp_path / "b", tmp_path / "c", gap=True),
    ]
    counts = extract_counts(run, diffs)

    assert counts == SignalCounts(
        suspicious_process_matches=2,
        recent_system_executables=0,
        recent_home_files=0,
        uncommon_established_lines=3,
        nonempty_diffs=1,
        integrity_findings=1,
    )
    assert score(counts, paranoid=True) == 25 + 10 + 15 + 10


def test_dry_run_placeholders_count_zero(tmp_path):
    placeholder = tmp_path / "sus.txt"
    placeholder.write_text("DRY_RUN=1 (no command executed)\nCMD=grep ...\n")
    run = RunResult()
    run.add(_result("suspicious_process_patterns", placeholder, TaskStatus.SKIPPED))
    assert extract_counts(run) == SignalCounts()


def test_count_lines_like_wc(tmp_path):
    path = tmp_path / "f.txt"
    path.write_text("one\ntwo\nno-newline")
    assert count_lines(path) == 2
    assert count_lines(tmp_path / "missing.txt") == 0


def test_counts_to_summary_model():
    model = SignalCounts(recent_home_files=5, uncommon_established_lines=2).to_model()
    assert model.recent_home_files_top == 5
    assert model.established_uncommon_ports_lines == 2
