"""
Logging Module for Autofix
==========================

This module provides logging and audit trail functionality for the
self-healing loop. It maintains a changelog of every run, including the
commands executed, how failures were classified, which fixes were applied
and where the backups went.

Features:
---------
- Structured JSON changelog for machine parsing
- Human-readable console output with indicators
- Unique incident IDs for tracking one loop run
- Severity levels for filtering
"""

import json
import logging
import sys
import uuid
from datetime import datetime
from dataclasses import dataclass, asdict, field
from typing import Optional, List, Dict, Any
from pathlib import Path
from enum import Enum


class Severity(Enum):
    """Severity levels for healing events."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class HealingEventType(Enum):
    """Types of events logged by the self-healing loop."""
    POLICY_REJECTED = "policy_rejected"
    ATTEMPT_STARTED = "attempt_started"
    COMMAND_SUCCEEDED = "command_succeeded"
    ERROR_CLASSIFIED = "error_classified"
    FIX_GENERATED = "fix_generated"
    PATCH_APPLIED = "patch_applied"
    PATCH_SKIPPED = "patch_skipped"
    PATCH_FAILED = "patch_failed"
    ROLLBACK_PERFORMED = "rollback_performed"
    HEALING_COMPLETE = "healing_complete"
    MANUAL_INTERVENTION_REQUIRED = "manual_intervention_required"


@dataclass
class HealingEvent:
    """
    Represents a single event in the changelog.

    Captures what the loop did at one step of a run: the command, the
    classification, the fix and the outcome.
    """
    incident_id: str                      # Identifier of the loop run
    event_type: str                       # Type of event (from HealingEventType)
    timestamp: str                        # ISO 8601 timestamp
    severity: str                         # Severity level
    command: Optional[str] = None         # Command being healed
    file_path: Optional[str] = None       # File involved
    line_number: Optional[int] = None     # Line the fix targets
    error_category: Optional[str] = None  # Classification of the error
    error_message: Optional[str] = None   # Error text or failure reason
    fix_description: Optional[str] = None # What was (or will be) changed
    fix_reasoning: Optional[str] = None   # Why
    fix_diff: Optional[str] = None        # Diff of changes made
    backup_path: Optional[str] = None     # Backup written before patching
    result: Optional[str] = None          # SUCCESS / FAILED / REJECTED ...
    attempt_number: int = 0               # Attempt within the run (0 = none)
    metadata: Dict[str, Any] = field(default_factory=dict)  # Additional context

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary for JSON serialization."""
        return asdict(self)

    def to_log_message(self) -> str:
        """Format event as a human-readable log message."""
        parts = [
            f"[{self.event_type.upper()}]",
            f"Incident: {self.incident_id[:8]}"
        ]

        if self.attempt_number:
            parts.append(f"Attempt: {self.attempt_number}")

        if self.file_path:
            location = f"{self.file_path}"
            if self.line_number:
                location += f":{self.line_number}"
            parts.append(f"Location: {location}")

        if self.error_category:
            parts.append(f"Category: {self.error_category}")

        if self.error_message:
            message = self.error_message.strip().splitlines()[0] if self.error_message.strip() else ""
            parts.append(f"Error: {message[:100]}")

        if self.fix_description:
            parts.append(f"Fix: {self.fix_description}")

        if self.backup_path:
            parts.append(f"Backup: {self.backup_path}")

        if self.result:
            parts.append(f"Result: {self.result}")

        return " | ".join(parts)


class HealingLogger:
    """
    Main logger class for Autofix.

    This class manages all logging operations, including writing to
    the changelog file, console output, and maintaining incident records.

    Usage:
        logger = HealingLogger()
        incident_id = logger.new_incident()
        logger.log_attempt_started(incident_id, "node app.js", 1)
        logger.log_healing_complete(incident_id, "node app.js", True, 1, "ok")
    """

    INDICATORS = {
        HealingEventType.POLICY_REJECTED: "⛔",
        HealingEventType.ATTEMPT_STARTED: "▶️",
        HealingEventType.COMMAND_SUCCEEDED: "✓",
        HealingEventType.ERROR_CLASSIFIED: "🔍",
        HealingEventType.FIX_GENERATED: "🔧",
        HealingEventType.PATCH_APPLIED: "✅",
        HealingEventType.PATCH_SKIPPED: "⏭️",
        HealingEventType.PATCH_FAILED: "⚠️",
        HealingEventType.ROLLBACK_PERFORMED: "↩️",
        HealingEventType.HEALING_COMPLETE: "🎉",
        HealingEventType.MANUAL_INTERVENTION_REQUIRED: "👤",
    }

    def __init__(
        self,
        log_directory: str = "./autofix_logs",
        changelog_file: str = "healing_changelog.json",
        verbose: bool = False,
        log_to_console: bool = True,
        log_to_file: bool = True
    ):
        """
        Initialize the healing logger.

        Args:
            log_directory: Directory to store log files
            changelog_file: Name of the changelog JSON file
            verbose: Whether to emit debug-level console output
            log_to_console: Whether to output logs to console
            log_to_file: Whether to write the changelog and log file
        """
        self.log_directory = Path(log_directory)
        self.changelog_file = self.log_directory / changelog_file
        self.verbose = verbose
        self.log_to_console = log_to_console
        self.log_to_file = log_to_file

        if self.log_to_file:
            self.log_directory.mkdir(parents=True, exist_ok=True)
            if not self.changelog_file.exists():
                self._initialize_changelog()

        # Events of runs that have not completed yet
        self._active_incidents: Dict[str, List[HealingEvent]] = {}

        self._setup_python_logging()

    def _setup_python_logging(self) -> None:
        """Configure the ``autofix`` logger for console and file output."""
        self.python_logger = logging.getLogger("autofix")
        self.python_logger.setLevel(logging.DEBUG)

        # Remove existing handlers to avoid duplicates
        for handler in list(self.python_logger.handlers):
            self.python_logger.removeHandler(handler)
            handler.close()

        formatter = logging.Formatter(
            "%(asctime)s | %(levelname)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )

        if self.log_to_console:
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setLevel(logging.DEBUG if self.verbose else logging.INFO)
            console_handler.setFormatter(formatter)
            self.python_logger.addHandler(console_handler)

        if self.log_to_file:
            file_handler = logging.FileHandler(self.log_directory / "autofix.log", encoding="utf-8")
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(formatter)
            self.python_logger.addHandler(file_handler)

        if not self.python_logger.handlers:
            self.python_logger.addHandler(logging.NullHandler())

    def close(self) -> None:
        """Release the log file handle."""
        for handler in list(self.python_logger.handlers):
            self.python_logger.removeHandler(handler)
            handler.close()

    def _initialize_changelog(self) -> None:
        """Create an empty changelog file with metadata."""
        initial_data = {
            "metadata": {
                "created": datetime.now().isoformat(),
                "version": "1.0.0",
                "description": "Autofix Healing Changelog"
            },
            "incidents": []
        }
        with open(self.changelog_file, 'w', encoding='utf-8') as f:
            json.dump(initial_data, f, indent=2)

    def new_incident(self) -> str:
        """
        Generate a new unique incident ID.

        Returns:
            A unique incident identifier (UUID)
        """
        incident_id = str(uuid.uuid4())
        self._active_incidents[incident_id] = []
        return incident_id

    def _log_event(self, event: HealingEvent) -> None:
        """
        Log a healing event to all configured destinations.

        Args:
            event: The HealingEvent to log
        """
        if event.incident_id in self._active_incidents:
            self._active_incidents[event.incident_id].append(event)

        indicator = self.INDICATORS.get(HealingEventType(event.event_type), "📝")
        log_level = getattr(logging, event.severity, logging.INFO)
        self.python_logger.log(log_level, f"{indicator} {event.to_log_message()}")

        if self.log_to_file:
            self._append_to_changelog(event)

    def _append_to_changelog(self, event: HealingEvent) -> None:
        """Append an event to the changelog JSON file."""
        try:
            with open(self.changelog_file, 'r', encoding='utf-8') as f:
                changelog = json.load(f)

            changelog["incidents"].append(event.to_dict())

            with open(self.changelog_file, 'w', encoding='utf-8') as f:
                json.dump(changelog, f, indent=2)
        except (OSError, ValueError, KeyError) as e:
            self.python_logger.error(f"Failed to write to changelog: {e}")

    def _event(self, event_type: HealingEventType, severity: Severity, incident_id: str, **fields) -> None:
        self._log_event(HealingEvent(
            incident_id=incident_id,
            event_type=event_type.value,
            timestamp=datetime.now().isoformat(),
            severity=severity.value,
            **fields
        ))

    def log_policy_rejected(
        self,
        incident_id: str,
        command: str,
        violations: List[Dict[str, Any]]
    ) -> None:
        """
        Log that a command was refused before execution.

        Args:
            incident_id: Unique incident identifier
            command: The rejected command
            violations: Violations as dictionaries
        """
        self._event(
            HealingEventType.POLICY_REJECTED, Severity.CRITICAL, incident_id,
            command=command,
            error_message="; ".join(v["message"] for v in violations),
            fix_reasoning="; ".join(v["rule"] for v in violations),
            result="REJECTED",
            metadata={"violations": violations}
        )

    def log_attempt_started(self, incident_id: str, command: str, attempt_number: int) -> None:
        self._event(
            HealingEventType.ATTEMPT_STARTED, Severity.DEBUG, incident_id,
            command=command,
            attempt_number=attempt_number
        )

    def log_command_succeeded(
        self,
        incident_id: str,
        command: str,
        attempt_number: int,
        duration_ms: int
    ) -> None:
        self._event(
            HealingEventType.COMMAND_SUCCEEDED, Severity.INFO, incident_id,
            command=command,
            attempt_number=attempt_number,
            result="SUCCESS",
            metadata={"duration_ms": duration_ms}
        )

    def log_error_classified(
        self,
        incident_id: str,
        command: str,
        attempt_number: int,
        category: str,
        root_cause: str,
        remediation: List[str],
        exit_code: Optional[int] = None
    ) -> None:
        """
        Log the classification of a failed attempt.

        Args:
            incident_id: Unique incident identifier
            command: The failing command
            attempt_number: Which attempt failed
            category: Error category value
            root_cause: Root-cause description
            remediation: Remediation steps
            exit_code: Exit code of the attempt
        """
        self._event(
            HealingEventType.ERROR_CLASSIFIED, Severity.WARNING, incident_id,
            command=command,
            attempt_number=attempt_number,
            error_category=category,
            error_message=root_cause,
            fix_reasoning="; ".join(remediation),
            metadata={"exit_code": exit_code}
        )

    def log_fix_generated(
        self,
        incident_id: str,
        file_path: str,
        line_number: int,
        strategy: str,
        tier: str,
        attempt_number: int,
        research_note: Optional[str] = None
    ) -> None:
        self._event(
            HealingEventType.FIX_GENERATED, Severity.INFO, incident_id,
            file_path=file_path,
            line_number=line_number,
            fix_description=f"{tier}:{strategy}",
            fix_reasoning=research_note,
            attempt_number=attempt_number
        )

    def log_patch_applied(
        self,
        incident_id: str,
        file_path: str,
        backup_path: str,
        fix_diff: Optional[str],
        attempt_number: int
    ) -> None:
        self._event(
            HealingEventType.PATCH_APPLIED, Severity.INFO, incident_id,
            file_path=file_path,
            backup_path=backup_path,
            fix_diff=fix_diff,
            attempt_number=attempt_number,
            result="APPLIED"
        )

    def log_patch_skipped(
        self,
        incident_id: str,
        reason: str,
        attempt_number: int,
        file_path: Optional[str] = None
    ) -> None:
        self._event(
            HealingEventType.PATCH_SKIPPED, Severity.INFO, incident_id,
            file_path=file_path,
            fix_reasoning=reason,
            attempt_number=attempt_number,
            result="SKIPPED"
        )

    def log_patch_failed(
        self,
        incident_id: str,
        file_path: str,
        reason: str,
        attempt_number: int,
        backup_path: Optional[str] = None
    ) -> None:
        self._event(
            HealingEventType.PATCH_FAILED, Severity.ERROR, incident_id,
            file_path=file_path,
            error_message=reason,
            backup_path=backup_path,
            attempt_number=attempt_number,
            result="FAILED"
        )

    def log_rollback(
        self,
        incident_id: str,
        file_path: str,
        backup_path: str,
        success: bool
    ) -> None:
        """
        Log that a patched file was restored from its backup.

        Args:
            incident_id: Unique incident identifier
            file_path: File that was rolled back
            backup_path: Backup it was restored from
            success: Whether the restore worked
        """
        self._event(
            HealingEventType.ROLLBACK_PERFORMED,
            Severity.WARNING if success else Severity.ERROR,
            incident_id,
            file_path=file_path,
            backup_path=backup_path,
            fix_description=f"Restored {file_path} from backup",
            result="SUCCESS" if success else "FAILED"
        )

    def log_healing_complete(
        self,
        incident_id: str,
        command: str,
        success: bool,
        total_attempts: int,
        summary: str
    ) -> None:
        """
        Log that the loop has finished.

        Args:
            incident_id: Unique incident identifier
            command: The command that was healed
            success: Whether the command eventually succeeded
            total_attempts: Number of executions
            summary: Summary of the run
        """
        self._event(
            HealingEventType.HEALING_COMPLETE,
            Severity.INFO if success else Severity.ERROR,
            incident_id,
            command=command,
            fix_description=summary,
            fix_reasoning=f"Completed after {total_attempts} attempt(s)",
            result="SUCCESS" if success else "FAILED",
            attempt_number=total_attempts
        )

        # Remove from active incidents
        if incident_id in self._active_incidents:
            del self._active_incidents[incident_id]

    def log_manual_intervention_required(
        self,
        incident_id: str,
        command: str,
        reason: str,
        suggested_action: str
    ) -> None:
        self._event(
            HealingEventType.MANUAL_INTERVENTION_REQUIRED, Severity.CRITICAL, incident_id,
            command=command,
            error_message=reason,
            fix_description=suggested_action,
            fix_reasoning="Automatic correction did not succeed"
        )

    def get_incident_history(self, incident_id: str) -> List[HealingEvent]:
        """Events of a run that has not completed yet."""
        return self._active_incidents.get(incident_id, [])

    def get_changelog(self) -> Dict[str, Any]:
        """
        Read the entire changelog.

        Returns:
            The changelog data as a dictionary
        """
        try:
            with open(self.changelog_file, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            self.python_logger.error(f"Failed to read changelog: {e}")
            return {"metadata": {}, "incidents": []}

    def get_statistics(self) -> Dict[str, Any]:
        """
        Calculate statistics from the changelog.

        Returns:
            Dictionary with statistics about healing activities
        """
        events = self.get_changelog().get("incidents", [])

        def count(event_type: HealingEventType, result: Optional[str] = None) -> int:
            return len([
                e for e in events
                if e.get("event_type") == event_type.value
                and (result is None or e.get("result") == result)
            ])

        total_runs = count(HealingEventType.HEALING_COMPLETE)
        successful = count(HealingEventType.HEALING_COMPLETE, "SUCCESS")

        # Count by error category
        error_categories: Dict[str, int] = {}
        for event in events:
            if event.get("event_type") == HealingEventType.ERROR_CLASSIFIED.value:
                category = event.get("error_category") or "unknown"
                error_categories[category] = error_categories.get(category, 0) + 1

        return {
            "total_runs": total_runs,
            "successful_runs": successful,
            "failed_runs": count(HealingEventType.HEALING_COMPLETE, "FAILED"),
            "success_rate": successful / total_runs * 100 if total_runs > 0 else 0,
            "policy_rejections": count(HealingEventType.POLICY_REJECTED),
            "patches_applied": count(HealingEventType.PATCH_APPLIED),
            "patch_failures": count(HealingEventType.PATCH_FAILED),
            "rollbacks": count(HealingEventType.ROLLBACK_PERFORMED),
            "error_categories": error_categories,
            "manual_interventions": count(HealingEventType.MANUAL_INTERVENTION_REQUIRED)
        }

    def clear_changelog(self) -> None:
        """Clear the changelog file (for testing or reset)."""
        if self.log_to_file:
            self._initialize_changelog()
        self._active_incidents.clear()
