"""Unit tests for the default task catalog."""
from collections import Counter

from hostsweep.base.config import Configuration, TimeoutClass
from hostsweep.data.baseline import CONTEXT_SNAPSHOTS, CURATED_ARTIFACTS
from hostsweep.engine.catalog import SIGNAL_TASKS, build_catalog, task_names


def _tasks(config):
    return {t.name: t for s in build_catalog(config) for t in s.tasks}


def test_stage_order():
    names = [s.name for s in build_catalog(Configuration())]
    assert names == [
        "context", "disruption", "persistence", "processes", "filesystem",
        "network", "logs", "integrity", "timeline", "hardening",
    ]


def test_task_names_and_artifacts_are_unique():
    stages = build_catalog(Configuration(ufw_default_deny=True))
    assert not [n for n, c in Counter(task_names(stages)).items() if c > 1]
    paths = [f"{t.category}/{t.output}" for s in stages for t in s.tasks]
    assert len(paths) == len(set(paths))


def test_signal_and_baseline_artifacts_come_from_catalog_tasks():
    tasks = _tasks(Configuration(paranoid=True))
    produced = {f"{t.category}/{t.output}" for t in tasks.values()}
    for task_name in SIGNAL_TASKS.values():
        assert task_name in tasks
    for rel, _ in CURATED_ARTIFACTS:
        assert rel in produced
    for rel in CONTEXT_SNAPSHOTS:
        assert rel in produced


def test_context_snapshots_are_required_and_sequential():
    tasks = _tasks(Configuration())
    for name in ("uname", "uptime"):
        assert tasks[name].required
        assert not tasks[name].parallel


def test_suspicious_grep_follows_process_listing():
    stage = next(s for s in build_catalog(Configuration()) if s.name == "processes")
    assert [t.name for t in stage.tasks] == ["ps_aux_full", "suspicious_process_patterns"]
    assert not any(t.parallel for t in stage.tasks)
    assert "processes/ps_aux_full.txt" in stage.tasks[1].command


def test_config_values_flow_into_commands():
    tasks = _tasks(Configuration(since_hours=6, common_ports="22,8443"))
    assert "-mmin -360" in tasks["recent_exec_system"].command
    assert "re='^(22|8443)$'" in tasks["established_uncommon_ports"].command
    assert "journal_warn_last_6h" in tasks
    assert "'6 hour ago'" in tasks["journal_warn_last_6h"].command


def test_paranoid_and_ufw_tasks():
    tasks = _tasks(Configuration())
    assert tasks["suid_sgid_all"].paranoid_only
    assert tasks["dpkg_verify"].paranoid_only
    assert "ufw_status" not in tasks

    ufw = _tasks(Configuration(ufw_default_deny=True))["ufw_status"]
    assert ufw.paranoid_only


def test_long_hunts_use_long_timeout():
    tasks = _tasks(Configuration())
    assert tasks["recent_exec_system"].timeout_class == TimeoutClass.MEDIUM
    assert tasks["recent_home_files_top3000"].timeout_class == TimeoutClass.LONG
    assert tasks["hidden_files_top3000"].timeout_class == TimeoutClass.LONG


def test_commands_do_not_redirect_into_report_paths():
    for task in _tasks(Configuration(paranoid=True, ufw_default_deny=True)).values():
        assert "> '" not in task.command
