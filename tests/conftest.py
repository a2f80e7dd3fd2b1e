import os
import sys
import shutil

import pytest

from execution.config import ExecutionConfig
from execution.executor import CodeExecutor
from execution.models import ProcessOutcome
from execution.sandbox import LocalRunner


requires_gpp = pytest.mark.skipif(shutil.which("g++") is None, reason="g++ not installed")
requires_java = pytest.mark.skipif(
    shutil.which("javac") is None or shutil.which("java") is None, reason="JDK not installed"
)
requires_node = pytest.mark.skipif(shutil.which("node") is None, reason="node not installed")


def _has_prlimit():
    try:
        import resource
    except ImportError:
        return False
    return hasattr(resource, "prlimit")


requires_prlimit = pytest.mark.skipif(not _has_prlimit(), reason="resource.prlimit unavailable")


class FakeRunner:
    """Records commands and replays scripted outcomes instead of spawning"""

    isolation = "fake"

    def __init__(self, *outcomes, default=None):
        self.outcomes = list(outcomes)
        self.default = default or ProcessOutcome(exitCode=0)
        self.calls = []

    def __call__(self, command, workspace, stdin=None, timeout_ms=5000, cancel_event=None, limit_address_space=True):
        self.calls.append({
            "command": list(command),
            "stdin": stdin,
            "timeout_ms": timeout_ms,
            "files": workspace.list_files(),
        })
        if self.outcomes:
            outcome = self.outcomes.pop(0)
        else:
            outcome = self.default
        if callable(outcome):
            return outcome(command, stdin)
        return outcome

    @property
    def commands(self):
        return [call["command"] for call in self.calls]


@pytest.fixture
def workspace_root(tmp_path):
    root = tmp_path / "workspaces"
    root.mkdir()
    return root


@pytest.fixture
def config(workspace_root):
    return ExecutionConfig(
        workspace_root=str(workspace_root),
        python_command=sys.executable,
        run_timeout_ms=3000,
        compile_timeout_ms=20000,
        memory_limit_mb=0,
    )


@pytest.fixture
def executor(config):
    return CodeExecutor(config, runner=LocalRunner(config))


@pytest.fixture
def fake_runner():
    return FakeRunner()


@pytest.fixture
def fake_executor(config, fake_runner):
    return CodeExecutor(config, runner=fake_runner)


def leftovers(root):
    return sorted(os.listdir(root))


@pytest.fixture
def limited_executor(workspace_root):
    """Local executor with the production rlimits switched on"""
    config = ExecutionConfig(
        workspace_root=str(workspace_root),
        python_command=sys.executable,
        run_timeout_ms=1000,
    )
    return CodeExecutor(config, runner=LocalRunner(config))
