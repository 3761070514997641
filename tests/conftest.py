"""Shared fixtures for spec-to-tasks tests."""

import json
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from spectasks.checkpoints import CheckpointStore
from spectasks.config import Settings
from spectasks.task_tool import TaskToolClient, TaskToolInvocation

SAMPLE_SPEC = """# Offline Sync

## Abstract

Sync documents while offline.

## Phase 1: Foundations

### Milestone 1.1: Schema

Success Criteria:
- Tables exist
- Migrations run

### Milestone 1.2: API

## Phase 2: Rollout

- [ ] **Milestone 2.1: Beta**
"""

ID_PREFIXES = {
    "epic new": "EP",
    "phase add": "PH",
    "milestone add": "MS",
    "validation add": "VA",
}


def completed(
    argv: List[str],
    payload: Optional[Dict[str, Any]] = None,
    returncode: int = 0,
    stdout: Optional[str] = None,
    stderr: str = "",
) -> "subprocess.CompletedProcess[str]":
    if stdout is None:
        stdout = json.dumps(payload) if payload is not None else ""
    return subprocess.CompletedProcess(argv, returncode, stdout, stderr)


class FakeTaskTool:
    """Stands in for ``subprocess.run`` and answers like the task tool.

    Creation calls return sequential ids (``EP-1``, ``PH-2``...). Responses for
    a subcommand can be scripted with ``queue``; a queued exception is raised.
    """

    def __init__(self):
        self.calls: List[List[str]] = []
        self.kwargs: List[Dict[str, Any]] = []
        self.scripted: Dict[str, List[Any]] = {}
        self.counter = 0

    def queue(self, key: str, *responses: Any) -> None:
        self.scripted.setdefault(key, []).extend(responses)

    def fail_on(self, key: str, stderr: str = "boom", returncode: int = 1) -> None:
        self.queue(key, ("fail", stderr, returncode))

    def __call__(self, argv, **kwargs):
        self.calls.append(list(argv))
        self.kwargs.append(kwargs)
        args = list(argv[argv.index("--json") + 1:])
        key = "doctor" if args[0] == "doctor" else " ".join(args[:2])

        queued = self.scripted.get(key)
        if queued:
            item = queued.pop(0)
            if isinstance(item, BaseException):
                raise item
            if isinstance(item, tuple) and item[0] == "fail":
                return completed(argv, returncode=item[2], stderr=item[1])
            if isinstance(item, subprocess.CompletedProcess):
                return item
            return completed(argv, item)

        if key == "doctor":
            return completed(argv, {"ok": True})
        self.counter += 1
        return completed(argv, {"created_id": f"{ID_PREFIXES[key]}-{self.counter}"})

    def task_calls(self) -> List[List[str]]:
        """Arguments after ``--json`` for every call except ``doctor``."""
        result = []
        for call in self.calls:
            args = call[call.index("--json") + 1:]
            if args[0] != "doctor":
                result.append(args)
        return result

    def created_kinds(self) -> List[str]:
        return [" ".join(args[:2]) for args in self.task_calls()]


@pytest.fixture
def settings():
    return Settings(retry_delay_ms=0, user="tester")


@pytest.fixture
def fake_tool():
    return FakeTaskTool()


@pytest.fixture
def client(fake_tool, settings):
    return TaskToolClient(
        TaskToolInvocation("grnsw"),
        settings,
        runner=fake_tool,
        sleep=lambda seconds: None,
    )


@pytest.fixture
def project_dir(tmp_path):
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def spec_file(project_dir):
    path = project_dir / "offline-sync.md"
    path.write_text(SAMPLE_SPEC, encoding="utf-8")
    return path


@pytest.fixture
def store(project_dir, settings):
    return CheckpointStore(project_dir, settings)
