"""
Command execution for Autofix.

Runs a shell command with a hard timeout and captures its output. On
timeout the whole process tree is killed so a hung child cannot outlive
the attempt.
"""

import logging
import os
import signal
import subprocess
import time
from dataclasses import dataclass
from typing import Optional

import psutil


logger = logging.getLogger(__name__)

# Seconds to wait for output after the process group has been killed
DRAIN_TIMEOUT_SECONDS = 2.0


@dataclass
class CommandResult:
    """Output of a single command execution."""
    stdout: str
    stderr: str
    exit_code: int
    duration_ms: int
    timed_out: bool = False


class CommandExecutor:
    """
    Runs shell commands for the self-healing loop.

    Usage:
        executor = CommandExecutor()
        result = executor.run("node app.js", timeout_ms=30000)
    """

    def __init__(self, shell: Optional[str] = None):
        """
        Initialize the executor.

        Args:
            shell: Shell executable (uses the platform default if None)
        """
        self.shell = shell

    def run(self, command: str, timeout_ms: int = 60000, cwd: Optional[str] = None) -> CommandResult:
        """
        Run a shell command.

        Args:
            command: The command to run
            timeout_ms: Timeout in milliseconds
            cwd: Working directory

        Returns:
            CommandResult; a timeout yields exit code -1 and a timeout
            message on stderr rather than an exception
        """
        start = time.monotonic()
        process = subprocess.Popen(
            command,
            shell=True,
            executable=self.shell,
            cwd=cwd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
            start_new_session=True
        )

        try:
            stdout, stderr = process.communicate(timeout=timeout_ms / 1000.0)
        except subprocess.TimeoutExpired:
            logger.warning(f"Command timed out after {timeout_ms}ms: {command}")
            self._kill_tree(process.pid)
            stdout = self._drain(process)
            return CommandResult(
                stdout=stdout or "",
                stderr=f"Command timed out after {timeout_ms}ms",
                exit_code=-1,
                duration_ms=int((time.monotonic() - start) * 1000),
                timed_out=True
            )

        return CommandResult(
            stdout=stdout or "",
            stderr=stderr or "",
            exit_code=process.returncode,
            duration_ms=int((time.monotonic() - start) * 1000)
        )

    @staticmethod
    def _drain(process: subprocess.Popen) -> str:
        """Collect what the killed command printed, without waiting on stray pipe holders."""
        try:
            stdout, _ = process.communicate(timeout=DRAIN_TIMEOUT_SECONDS)
        except subprocess.TimeoutExpired:
            logger.warning(f"Output pipes still held open after kill; discarding output of pid {process.pid}")
            process.kill()
            return ""
        return stdout or ""

    @staticmethod
    def _kill_tree(pid: int) -> None:
        """
        Kill the command's whole session, then any descendants that left it.

        The command runs as a session leader, so its process group also
        holds background children that were re-parented away from it.
        """
        try:
            os.killpg(pid, signal.SIGKILL)
        except ProcessLookupError:
            logger.debug(f"Process group {pid} already exited")

        try:
            parent = psutil.Process(pid)
            processes = parent.children(recursive=True) + [parent]
        except psutil.NoSuchProcess:
            return

        for proc in processes:
            try:
                proc.kill()
            except psutil.NoSuchProcess:
                continue
        psutil.wait_procs(processes, timeout=5)
