"""
Self-Healing Loop Module
========================

This module provides the bounded state machine that coordinates all
components: a command is gated, executed, and on failure classified,
corrected and patched before the next attempt.

Workflow:
---------
1. Gating -> PolicyGate refuses blocked commands before anything runs
2. Executing -> CommandExecutor runs the command with a per-attempt timeout
3. Analyzing -> ErrorClassifier classifies stderr (or stdout)
4. Correcting -> The target file/line is located and a fix proposed
5. Patching -> PatchApplier applies the fix behind a verified backup
6. Retry -> Steps 2-5 repeat until success or the attempt budget runs out
7. Logging -> Every step is recorded in the changelog

Failures never raise: the caller always receives a LoopResult carrying the
full attempt history, whether the run succeeded, was rejected, exhausted
its budget or stopped on an unreliable filesystem.
"""

import logging
import os
import time
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Optional, List, Dict, Any

from .config import AutofixConfig
from .logger import HealingLogger
from .policy import PolicyGate, Violation
from .executor import CommandExecutor
from .classifier import ErrorClassifier, ErrorAnalysis
from .detector import TargetLocation, locate_target, line_at
from .strategist import CorrectionStrategist, Fix
from .patcher import PatchApplier, PatchRecord, PatchError
from .research import get_research_client


logger = logging.getLogger(__name__)


class LoopState(Enum):
    """States of the self-healing loop."""
    IDLE = "idle"
    GATING = "gating"
    EXECUTING = "executing"
    ANALYZING = "analyzing"
    CORRECTING = "correcting"
    PATCHING = "patching"
    SUCCESS = "success"
    EXHAUSTED = "exhausted"
    REJECTED = "rejected"
    PATCH_FAILED = "patch_failed"


class LoopStatus(Enum):
    """Terminal outcome of a loop run."""
    SUCCESS = "success"
    EXHAUSTED = "exhausted"
    REJECTED = "rejected"
    PATCH_FAILED = "patch_failed"


@dataclass(frozen=True)
class ExecutionAttempt:
    """One execution of the command. Immutable once recorded."""
    attempt_number: int
    command: str
    stdout: str
    stderr: str
    exit_code: int
    duration_ms: int
    timed_out: bool = False


@dataclass
class AttemptRecord:
    """Everything the loop did during one attempt."""
    execution: ExecutionAttempt
    analysis: Optional[ErrorAnalysis] = None
    target: Optional[TargetLocation] = None
    fix: Optional[Fix] = None
    patch: Optional[PatchRecord] = None
    skipped_reason: Optional[str] = None  # Why no patch was applied

    def to_dict(self) -> Dict[str, Any]:
        return {
            "execution": asdict(self.execution),
            "analysis": self.analysis.to_dict() if self.analysis else None,
            "target": asdict(self.target) if self.target else None,
            "fix": asdict(self.fix) if self.fix else None,
            "patch": self.patch.to_dict() if self.patch else None,
            "skipped_reason": self.skipped_reason,
        }


@dataclass
class LoopResult:
    """
    Terminal result of a loop run.

    ``attempts`` never holds more entries than the attempt budget, and a
    rejected run has none.
    """
    success: bool
    status: LoopStatus
    attempts: List[AttemptRecord] = field(default_factory=list)
    final_output: str = ""
    violations: List[Violation] = field(default_factory=list)
    incident_id: Optional[str] = None
    error: Optional[str] = None  # Set when a patch failure stopped the run

    @property
    def patches(self) -> List[PatchRecord]:
        """Patches that were actually applied, in order."""
        return [a.patch for a in self.attempts if a.patch and a.patch.applied]

    def to_dict(self) -> Dict[str, Any]:
        """Convert result to dictionary for JSON serialization."""
        return {
            "success": self.success,
            "status": self.status.value,
            "incident_id": self.incident_id,
            "final_output": self.final_output,
            "error": self.error,
            "violations": [v.to_dict() for v in self.violations],
            "attempts": [a.to_dict() for a in self.attempts],
        }


class SelfHealingLoop:
    """
    Runs a command and retries it, correcting source files between attempts.

    All collaborators can be injected; anything omitted is built from the
    configuration.

    Usage:
        loop = SelfHealingLoop(AutofixConfig())
        result = loop.run("node broken.js", max_attempts=3)
        print(result.status.value, len(result.attempts))
    """

    def __init__(
        self,
        config: Optional[AutofixConfig] = None,
        executor: Optional[CommandExecutor] = None,
        classifier: Optional[ErrorClassifier] = None,
        strategist: Optional[CorrectionStrategist] = None,
        applier: Optional[PatchApplier] = None,
        policy_gate: Optional[PolicyGate] = None,
        healing_logger: Optional[HealingLogger] = None
    ):
        """
        Initialize the loop.

        Args:
            config: Configuration settings (uses defaults if None)
            executor: Runs the command
            classifier: Classifies failures
            strategist: Proposes fixes
            applier: Applies fixes to files
            policy_gate: Refuses dangerous commands
            healing_logger: Audit trail
        """
        self.config = config or AutofixConfig()
        self.executor = executor or CommandExecutor()
        self.classifier = classifier or ErrorClassifier()
        self.strategist = strategist or CorrectionStrategist(
            research_client=get_research_client(self.config.research),
            research_depth=self.config.research.depth
        )
        self.applier = applier or PatchApplier(backup_dir=self.config.safety.backup_dir)
        self.policy_gate = policy_gate or PolicyGate(self.config.policy)
        self.logger = healing_logger or HealingLogger(
            log_directory=self.config.logging.log_directory,
            changelog_file=self.config.logging.changelog_file,
            verbose=self.config.logging.verbose,
            log_to_console=self.config.logging.log_to_console,
            log_to_file=self.config.logging.log_to_file
        )

    def run(
        self,
        command: str,
        max_attempts: Optional[int] = None,
        timeout_ms: Optional[int] = None,
        cwd: Optional[str] = None,
        override_policy: bool = False
    ) -> LoopResult:
        """
        Run a command with self-healing.

        Args:
            command: Shell command line
            max_attempts: Execution budget (config default if None)
            timeout_ms: Per-attempt timeout (config default if None)
            cwd: Working directory for the command
            override_policy: Run even if critical violations are found

        Returns:
            LoopResult describing the outcome and every attempt
        """
        max_attempts = max_attempts if max_attempts is not None else self.config.retry.max_attempts
        timeout_ms = timeout_ms if timeout_ms is not None else self.config.retry.timeout_ms
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if not command or not command.strip():
            raise ValueError("command must not be empty")

        incident_id = self.logger.new_incident()
        self._enter(LoopState.GATING, incident_id)

        violations = self.policy_gate.validate_command_line(command, cwd)
        for violation in violations:
            logger.warning(f"Policy {violation.severity.value}: {violation.rule}: {violation.message}")

        if self.policy_gate.is_blocking(violations, override_policy):
            self._enter(LoopState.REJECTED, incident_id)
            self.logger.log_policy_rejected(incident_id, command, [v.to_dict() for v in violations])
            return LoopResult(
                success=False,
                status=LoopStatus.REJECTED,
                final_output=self._rejection_message(violations),
                violations=violations,
                incident_id=incident_id
            )

        attempts: List[AttemptRecord] = []
        delay = self.config.retry.initial_delay_seconds

        for attempt_number in range(1, max_attempts + 1):
            if attempt_number > 1 and delay > 0:
                time.sleep(delay)
                delay = min(delay * self.config.retry.backoff_multiplier, self.config.retry.max_delay_seconds)

            self._enter(LoopState.EXECUTING, incident_id)
            self.logger.log_attempt_started(incident_id, command, attempt_number)
            outcome = self.executor.run(command, timeout_ms, cwd)
            record = AttemptRecord(execution=ExecutionAttempt(
                attempt_number=attempt_number,
                command=command,
                stdout=outcome.stdout,
                stderr=outcome.stderr,
                exit_code=outcome.exit_code,
                duration_ms=outcome.duration_ms,
                timed_out=outcome.timed_out
            ))
            attempts.append(record)

            if outcome.exit_code == 0:
                self._enter(LoopState.SUCCESS, incident_id)
                self.logger.log_command_succeeded(incident_id, command, attempt_number, outcome.duration_ms)
                self.logger.log_healing_complete(
                    incident_id, command, True, attempt_number,
                    f"Command succeeded after {len(self._applied(attempts))} patch(es)"
                )
                return LoopResult(
                    success=True,
                    status=LoopStatus.SUCCESS,
                    attempts=attempts,
                    final_output=outcome.stdout,
                    violations=violations,
                    incident_id=incident_id
                )

            self._enter(LoopState.ANALYZING, incident_id)
            error_text = outcome.stderr if outcome.stderr.strip() else outcome.stdout
            record.analysis = self.classifier.analyze(error_text)
            self.logger.log_error_classified(
                incident_id, command, attempt_number,
                record.analysis.category.value,
                record.analysis.root_cause,
                record.analysis.remediation,
                exit_code=outcome.exit_code
            )

            try:
                self._correct(record, error_text, cwd, incident_id)
            except PatchError as e:
                self._enter(LoopState.PATCH_FAILED, incident_id)
                target = record.target.file_path if record.target else ""
                self.logger.log_patch_failed(incident_id, target, str(e), attempt_number, e.backup_path)
                self.logger.log_manual_intervention_required(
                    incident_id, command, str(e),
                    "Check the filesystem and restore from the backup if needed"
                )
                self.logger.log_healing_complete(incident_id, command, False, attempt_number, "Patch failed")
                return LoopResult(
                    success=False,
                    status=LoopStatus.PATCH_FAILED,
                    attempts=attempts,
                    final_output=error_text,
                    violations=violations,
                    incident_id=incident_id,
                    error=str(e)
                )

        self._enter(LoopState.EXHAUSTED, incident_id)
        if self.config.safety.rollback_on_exhaustion:
            self._rollback_all(attempts, incident_id)

        last = attempts[-1].execution
        final_output = last.stderr if last.stderr.strip() else last.stdout
        self.logger.log_manual_intervention_required(
            incident_id, command,
            f"Command still failing after {max_attempts} attempt(s)",
            attempts[-1].analysis.remediation[0] if attempts[-1].analysis else "Inspect the command output"
        )
        self.logger.log_healing_complete(
            incident_id, command, False, len(attempts),
            f"Exhausted with {len(self._applied(attempts))} patch(es) applied"
        )
        return LoopResult(
            success=False,
            status=LoopStatus.EXHAUSTED,
            attempts=attempts,
            final_output=final_output,
            violations=violations,
            incident_id=incident_id
        )

    def _correct(
        self,
        record: AttemptRecord,
        error_text: str,
        cwd: Optional[str],
        incident_id: str
    ) -> None:
        """Locate the target, generate a fix and apply it. Raises PatchError."""
        self._enter(LoopState.CORRECTING, incident_id)
        attempt_number = record.execution.attempt_number

        target = locate_target(record.execution.command, error_text, cwd)
        if target is None:
            self._skip(record, "No target file identified", incident_id)
            return
        record.target = target
        path = target.file_path

        if self.config.is_path_protected(path) or self.policy_gate.is_sensitive_path(path):
            self._skip(record, f"Target {path} is protected", incident_id)
            return

        try:
            if os.path.getsize(path) > self.config.safety.max_file_size_kb * 1024:
                self._skip(record, f"Target {path} exceeds the maximum patchable size", incident_id)
                return
            content = self.applier.files.read(path)
        except (OSError, UnicodeDecodeError) as e:
            self._skip(record, f"Cannot read {path}: {e}", incident_id)
            return

        line = line_at(content, target.line_number)
        fix = self.strategist.generate_fix(record.analysis, line, path)
        if fix is None:
            self._skip(record, f"No fix could be generated for {path}:{target.line_number}", incident_id)
            return
        record.fix = fix
        self.logger.log_fix_generated(
            incident_id, path, target.line_number, fix.strategy, fix.tier,
            attempt_number, fix.research_note
        )

        if fix.replacement_fragment in content:
            self._skip(record, "Fix is already present in the file", incident_id)
            return

        self._enter(LoopState.PATCHING, incident_id)
        record.patch = self.applier.apply(path, fix.search_fragment, fix.replacement_fragment)
        if record.patch.applied:
            self.logger.log_patch_applied(
                incident_id, path, record.patch.backup_path, record.patch.diff, attempt_number
            )
        else:
            self._skip(record, "Search fragment not found in target", incident_id)

    def _skip(self, record: AttemptRecord, reason: str, incident_id: str) -> None:
        if record.skipped_reason is None:
            record.skipped_reason = reason
        self.logger.log_patch_skipped(
            incident_id, reason, record.execution.attempt_number,
            record.target.file_path if record.target else None
        )

    def _rollback_all(self, attempts: List[AttemptRecord], incident_id: str) -> None:
        """Restore every patched file from the first backup taken during this run."""
        earliest: Dict[str, PatchRecord] = {}
        for patch in self._applied(attempts):
            earliest.setdefault(patch.target_file, patch)

        for target, patch in earliest.items():
            restored = self.applier.rollback(patch)
            self.logger.log_rollback(incident_id, target, patch.backup_path, restored)

    @staticmethod
    def _applied(attempts: List[AttemptRecord]) -> List[PatchRecord]:
        return [a.patch for a in attempts if a.patch and a.patch.applied]

    @staticmethod
    def _rejection_message(violations: List[Violation]) -> str:
        lines = ["Command rejected by policy:"]
        for violation in violations:
            line = f"  - [{violation.severity.value}] {violation.rule}: {violation.message}"
            if violation.remediation:
                line += f" ({violation.remediation})"
            lines.append(line)
        return "\n".join(lines)

    @staticmethod
    def _enter(state: LoopState, incident_id: str) -> None:
        logger.debug(f"Incident {incident_id[:8]} -> {state.value}")
