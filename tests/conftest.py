"""Pytest configuration for hostsweep."""
import logging
import os
import sys
from dataclasses import replace

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from hostsweep.base.config import Configuration
from hostsweep.engine.models import CaptureResult


@pytest.fixture
def make_config(tmp_path):
    """Configuration rooted in tmp_path; keyword overrides win."""
    def _make(**overrides):
        overrides.setdefault("report_dir", str(tmp_path / "reports"))
        return replace(Configuration(), **overrides)
    return _make


@pytest.fixture
def as_root(monkeypatch):
    monkeypatch.setattr(os, "geteuid", lambda: 0)


@pytest.fixture
def no_signal_handlers(monkeypatch):
    monkeypatch.setattr("hostsweep.cli.sweep.exit_on_signals", lambda: None)


class FakeCapture:
    """
    Stand-in for run_capture. ``outputs`` maps a command string to the text
    its artifact receives; unknown commands produce an empty artifact.
    """

    def __init__(self, outputs=None, fail=(), timeout=()):
        self.outputs = dict(outputs or {})
        self.fail = set(fail)
        self.timeout = set(timeout)
        self.calls = []

    async def __call__(self, command, output_path, timeout, **kwargs):
        self.calls.append((command, kwargs))
        output_path.parent.mkdir(parents=True, exist_ok=True)
        if kwargs.get("dry_run"):
            output_path.write_text(f"DRY_RUN=1 (no command executed)\nCMD={command}\n")
            return CaptureResult(succeeded=True, produced_output=False)
        text = self.outputs.get(command, "")
        output_path.write_text(text)
        if command in self.timeout:
            return CaptureResult(succeeded=False, produced_output=bool(text), timed_out=True, error="timed out")
        if command in self.fail:
            return CaptureResult(succeeded=False, produced_output=bool(text), exit_code=1, error="boom")
        return CaptureResult(succeeded=True, produced_output=bool(text), exit_code=0)


@pytest.fixture
def fake_capture():
    return FakeCapture


@pytest.fixture(autouse=True)
def _restore_root_logger():
    # setup_logging() replaces root handlers; undo that between tests
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
