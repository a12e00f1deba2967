"""Shared fixtures: steps backed by short-lived Python subprocesses."""

import sys

import pytest

from infra_orchestrator.exec.cancellation import CancellationToken
from infra_orchestrator.exec.process_runner import ProcessRunner
from infra_orchestrator.exec.step_executor import StepExecutor
from infra_orchestrator.pipeline.steps import Step


def py(code: str) -> list:
    """argv running a Python snippet with the current interpreter."""
    return [sys.executable, '-c', code]


@pytest.fixture
def make_step():
    """Build a Step whose command is a Python snippet."""
    def factory(name, code='pass', **kwargs):
        return Step(name=name, command=py(code), **kwargs)
    return factory


@pytest.fixture
def executor(tmp_path):
    """Step executor with its own cancellation token and log directory."""
    runner = ProcessRunner(cancellation=CancellationToken())
    return StepExecutor(runner=runner, logs_dir=tmp_path / 'logs')
