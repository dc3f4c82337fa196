"""Shared test fixtures and utilities.

Provides pytest fixtures and helpers for testing the policy gate,
classifier, strategist, patch applier and self-healing loop.
"""
# pylint: disable=redefined-outer-name
import os
import sys
import tempfile
from pathlib import Path
from typing import Callable, List, Optional

import pytest

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from autofix.config import AutofixConfig
from autofix.executor import CommandResult
from autofix.logger import HealingLogger


class FakeExecutor:
    """
    Stands in for CommandExecutor.

    ``behaviour`` receives (command, cwd) and returns a CommandResult, so a
    test can decide the outcome from the state of files on disk.
    """

    def __init__(self, behaviour: Callable[[str, Optional[str]], CommandResult]):
        self.behaviour = behaviour
        self.calls: List[str] = []

    def run(self, command: str, timeout_ms: int = 60000, cwd: Optional[str] = None) -> CommandResult:
        self.calls.append(command)
        return self.behaviour(command, cwd)


def failing(stderr: str = "boom", exit_code: int = 1) -> CommandResult:
    return CommandResult(stdout="", stderr=stderr, exit_code=exit_code, duration_ms=5)


def succeeding(stdout: str = "ok\n") -> CommandResult:
    return CommandResult(stdout=stdout, stderr="", exit_code=0, duration_ms=5)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def config(temp_dir):
    """Configuration writing logs into the temporary directory"""
    cfg = AutofixConfig()
    cfg.logging.log_directory = os.path.join(temp_dir, "logs")
    cfg.logging.log_to_console = False
    return cfg


@pytest.fixture
def healing_logger(config):
    """Quiet HealingLogger writing into the temporary directory"""
    logger = HealingLogger(
        log_directory=config.logging.log_directory,
        log_to_console=False
    )
    yield logger
    logger.close()


@pytest.fixture
def write_file(temp_dir):
    """Write a file into the temporary directory and return its path"""
    def _write(name: str, content: str) -> str:
        path = os.path.join(temp_dir, name)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, 'w', encoding='utf-8', newline='') as f:
            f.write(content)
        return path
    return _write


def read_file(path: str) -> str:
    with open(path, 'r', encoding='utf-8', newline='') as f:
        return f.read()
