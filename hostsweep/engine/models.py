"""
hostsweep/engine/models.py

Purpose:
    Data structures for the collection pipeline.

Semantics:
    - CollectionTask: one named external routine producing one artifact.
      Built once per run from the catalog; immutable afterwards.
    - Stage: an ordered group of tasks. Stages run in declared order; the
      next stage starts only after every task in the current one finished.
    - TaskResult / RunResult: what happened to each task. Nothing in here
      is ever an exception; failures are data.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from hostsweep.base.config import TimeoutClass


class TaskStatus(str, Enum):
    SUCCEEDED = "succeeded"  # exit 0 and a non-empty artifact (or output not required)
    FAILED = "failed"        # non-zero exit or the command could not start
    TIMEOUT = "timeout"      # killed after exceeding its timeout class
    EMPTY = "empty"          # exit 0 but artifact missing or empty
    SKIPPED = "skipped"      # dry-run placeholder, nothing executed


@dataclass(frozen=True)
class CollectionTask:
    name: str
    category: str                  # report subdirectory: network, processes, ...
    command: str                   # shell text run under /bin/bash
    output: str                    # artifact file name inside the category dir
    timeout_class: TimeoutClass = TimeoutClass.SHORT
    parallel: bool = False         # may run concurrently with its stage siblings
    required: bool = False         # an empty artifact is worth a warning
    merge_stderr: bool = False     # stderr goes into the artifact as well
    paranoid_only: bool = False

    def artifact_path(self, run_dir: Path) -> Path:
        return Path(run_dir) / self.category / self.output


@dataclass(frozen=True)
class Stage:
    name: str
    tasks: Tuple[CollectionTask, ...]

    def active_tasks(self, paranoid: bool) -> List[CollectionTask]:
        return [t for t in self.tasks if paranoid or not t.paranoid_only]


@dataclass(frozen=True)
class CaptureResult:
    succeeded: bool
    produced_output: bool
    exit_code: Optional[int] = None
    timed_out: bool = False
    error: Optional[str] = None


@dataclass
class TaskResult:
    name: str
    stage: str
    status: TaskStatus
    artifact: Path
    exit_code: Optional[int] = None
    duration_seconds: float = 0.0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == TaskStatus.SUCCEEDED


@dataclass
class RunResult:
    """Per-task outcomes of one run, in completion order within each stage."""
    results: Dict[str, TaskResult] = field(default_factory=dict)
    stage_order: List[str] = field(default_factory=list)

    def add(self, result: TaskResult) -> None:
        self.results[result.name] = result

    def __iter__(self) -> Iterator[TaskResult]:
        return iter(self.results.values())

    def __len__(self) -> int:
        return len(self.results)

    def get(self, name: str) -> Optional[TaskResult]:
        return self.results.get(name)

    def succeeded(self, name: str) -> bool:
        result = self.results.get(name)
        return result is not None and result.ok

    def failed(self) -> List[TaskResult]:
        return [
            r for r in self.results.values()
            if r.status in (TaskStatus.FAILED, TaskStatus.TIMEOUT)
        ]

    def counts_by_status(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for r in self.results.values():
            counts[r.status.value] = counts.get(r.status.value, 0) + 1
        return counts
