"""Pytest configuration and fixtures for regbisect tests."""

from typing import Callable, Dict, List, Optional, Tuple, Union

import pytest

from regbisect.config.config import BisectConfig, OracleConfig
from regbisect.core.oracle import Oracle, OracleResult
from regbisect.exceptions import OracleError
from regbisect.history.base import Revision
from regbisect.history.sequence import SequenceWalker
from regbisect.persistence.recorder import RunRecorder
from regbisect.persistence.state_manager import StateManager
from regbisect.shell.base import CommandRunner


class FakeRunner(CommandRunner):
    """Command runner answering from a script of (substring, reply) pairs.

    The first entry whose substring occurs in the command wins. Replies may be
    a (ret, stdout, stderr) tuple or a callable taking the command.
    """

    def __init__(self, script=None, default=(0, "", "")):
        self.script: List[Tuple[str, Union[Tuple[int, str, str], Callable]]] = list(script or [])
        self.default = default
        self.calls: List[Tuple[str, Optional[str], Optional[int]]] = []

    def add(self, substring, reply):
        self.script.append((substring, reply))

    def run_command(self, command, cwd=None, timeout=None):
        self.calls.append((command, cwd, timeout))
        for substring, reply in self.script:
            if substring in command:
                return reply(command) if callable(reply) else reply
        return self.default

    @property
    def commands(self) -> List[str]:
        return [command for command, _, _ in self.calls]


class ScriptedOracle(Oracle):
    """Oracle returning canned results per revision id.

    A value may be an OracleResult, an exception instance to raise, or a
    float shorthand for an ok result with that metric.
    """

    def __init__(self, results: Dict[str, Union[OracleResult, Exception, float]]):
        self.results = dict(results)
        self.measured: List[str] = []

    def measure(self, revision: Revision) -> OracleResult:
        self.measured.append(revision.id)
        value = self.results.get(revision.id)
        if value is None:
            raise OracleError(f"No scripted result for {revision.id}")
        if isinstance(value, Exception):
            raise value
        if isinstance(value, OracleResult):
            return value
        return OracleResult.ok(float(value), label=f"label-{revision.id}")


@pytest.fixture
def revisions():
    """Nine-revision linear history, oldest first."""
    return [Revision(f"v{i}", f"change {i}") for i in range(9)]


@pytest.fixture
def walker(revisions):
    return SequenceWalker(revisions)


@pytest.fixture
def config(tmp_path):
    return BisectConfig(
        history_path=str(tmp_path / "history"),
        good="v0",
        bad="v8",
        policy="binary",
        walker="sequence",
        output_dir=str(tmp_path / "out"),
        oracle=OracleConfig(),
    )


@pytest.fixture
def threshold_config(config):
    config.policy = "threshold"
    config.good_ref = 300.0
    config.bad_ref = 600.0
    config.oracle.measure_command = "measure"
    return config


@pytest.fixture
def state(tmp_path):
    manager = StateManager(str(tmp_path / "state" / "bisect.db"))
    yield manager
    manager.close()


@pytest.fixture
def recorder(config):
    return RunRecorder(config.summary_path)


@pytest.fixture
def fake_runner():
    return FakeRunner()
