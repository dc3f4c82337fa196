"""
Configuration Module for Autofix
================================

This module provides configuration management for the self-correcting
execution engine. It defines the execution policy (which commands are
refused), retry limits, logging options, patch safety settings and the
optional research backend.

Configuration can be loaded from environment variables, config files, or
set programmatically. A single AutofixConfig is built at start-up and
passed explicitly to every component; there is no module-level instance.
"""

import os
import json
from dataclasses import dataclass, field
from typing import List, Dict, Optional, Any, Tuple
from enum import Enum
from pathlib import Path


class ConfigError(Exception):
    """Raised when a configuration file or mapping cannot be loaded."""


class ErrorCategory(Enum):
    """Categories an execution failure can be classified into."""
    ENVIRONMENT = "environment"  # Missing tools, daemons, ports, permissions
    DEPENDENCY = "dependency"    # Missing or broken packages
    NETWORK = "network"          # DNS, refused connections, timeouts
    SPEC = "spec"                # Test/assertion failures
    UNKNOWN = "unknown"          # Unclassified errors


class FollowUp(Enum):
    """Next action suggested to the caller after classification."""
    VALIDATE_ENVIRONMENT = "validate-environment"
    TRIGGER_SELF_HEAL = "trigger-self-heal"


class ViolationSeverity(Enum):
    """Severity of a policy violation. Only CRITICAL blocks execution."""
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


@dataclass(frozen=True)
class ExecutionPolicy:
    """
    Read-only rules used by the policy gate.

    Every field is a tuple so a single instance can be shared between
    concurrent loops without synchronization.
    """
    destructive_verbs: Tuple[str, ...] = (
        "rm", "rmdir", "del", "delete", "drop", "truncate",
        "docker rmi", "docker rm", "git reset --hard", "git clean -fd",
    )
    potentially_destructive: Tuple[str, ...] = (
        "rm", "del", "delete", "drop", "truncate",
        "git", "docker", "psql", "mysql", "mongo",
    )
    destructive_flags: Tuple[str, ...] = (
        " -rf", " -fr", " -r -f", " --force",
        "drop table", "drop database", "truncate",
    )
    whitelist_prefixes: Tuple[str, ...] = ("autofix", "test-", "dev-")
    sensitive_paths: Tuple[str, ...] = (
        ".git", "node_modules", ".env", ".ssh", ".aws", ".config",
    )


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""
    max_attempts: int = 3               # Executions per loop invocation
    timeout_ms: int = 60000             # Per-attempt command timeout
    initial_delay_seconds: float = 0.0  # Delay before the second attempt
    backoff_multiplier: float = 2.0     # Exponential backoff multiplier
    max_delay_seconds: float = 30.0     # Maximum delay between attempts


@dataclass
class LoggingConfig:
    """Configuration for logging and audit trail."""
    log_directory: str = "./autofix_logs"
    changelog_file: str = "healing_changelog.json"
    verbose: bool = False           # Debug-level console output
    log_to_console: bool = True     # Output logs to console
    log_to_file: bool = True        # Write changelog and log file


@dataclass
class SafetyConfig:
    """Safety settings for file patching."""
    backup_dir: Optional[str] = None  # None keeps backups beside the file
    protected_paths: List[str] = field(default_factory=lambda: [
        "/etc", "/usr", "/bin", "/sbin", "/boot"
    ])
    rollback_on_exhaustion: bool = False  # Restore patched files if healing fails
    max_file_size_kb: int = 10240   # Maximum file size to modify (10MB)


@dataclass
class ResearchConfig:
    """Configuration for the optional research backend."""
    enabled: bool = False
    endpoint: str = "https://api.tavily.com/search"
    api_key: Optional[str] = None
    depth: int = 2                  # 1 (basic) to 3 (deep)
    timeout_seconds: float = 10.0


def _string_list(key: str, value: Any) -> List[str]:
    """Check that a configuration value is a list of strings, not a bare string."""
    if not isinstance(value, (list, tuple)) or not all(isinstance(item, str) for item in value):
        raise ConfigError(f"Invalid configuration value for {key}: expected a list of strings")
    return list(value)


@dataclass
class AutofixConfig:
    """
    Main configuration class for Autofix.

    This class aggregates all configuration sections and provides
    methods to load/save configuration from various sources.

    Attributes:
        policy: Rules applied before any command runs
        retry: Attempt budget and timeouts
        logging: Logging and audit configuration
        safety: Patch safety settings
        research: Optional research backend settings
    """
    policy: ExecutionPolicy = field(default_factory=ExecutionPolicy)
    retry: RetryConfig = field(default_factory=RetryConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    safety: SafetyConfig = field(default_factory=SafetyConfig)
    research: ResearchConfig = field(default_factory=ResearchConfig)

    @classmethod
    def from_file(cls, config_path: str) -> "AutofixConfig":
        """
        Load configuration from a JSON file.

        Args:
            config_path: Path to the configuration file

        Returns:
            AutofixConfig instance with loaded settings

        Raises:
            ConfigError: If the file is not valid JSON or has unknown keys
        """
        path = Path(config_path)
        if not path.exists():
            # Return default config if file doesn't exist
            return cls()

        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {config_path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Expected a JSON object in {config_path}")

        return cls._from_dict(data)

    @classmethod
    def from_env(cls) -> "AutofixConfig":
        """
        Load configuration from environment variables.

        Environment variables should be prefixed with AUTOFIX_.
        For example: AUTOFIX_MAX_ATTEMPTS=5

        Returns:
            AutofixConfig instance with settings from environment
        """
        config = cls()

        if os.getenv("AUTOFIX_MAX_ATTEMPTS"):
            config.retry.max_attempts = int(os.getenv("AUTOFIX_MAX_ATTEMPTS", "3"))

        if os.getenv("AUTOFIX_TIMEOUT_MS"):
            config.retry.timeout_ms = int(os.getenv("AUTOFIX_TIMEOUT_MS", "60000"))

        if os.getenv("AUTOFIX_LOG_DIR"):
            config.logging.log_directory = os.getenv("AUTOFIX_LOG_DIR")

        if os.getenv("AUTOFIX_VERBOSE"):
            config.logging.verbose = os.getenv("AUTOFIX_VERBOSE", "false").lower() == "true"

        if os.getenv("AUTOFIX_BACKUP_DIR"):
            config.safety.backup_dir = os.getenv("AUTOFIX_BACKUP_DIR")

        if os.getenv("AUTOFIX_ROLLBACK_ON_EXHAUSTION"):
            config.safety.rollback_on_exhaustion = (
                os.getenv("AUTOFIX_ROLLBACK_ON_EXHAUSTION", "false").lower() == "true"
            )

        if os.getenv("AUTOFIX_RESEARCH_ENABLED"):
            config.research.enabled = os.getenv("AUTOFIX_RESEARCH_ENABLED", "false").lower() == "true"

        if os.getenv("AUTOFIX_RESEARCH_API_KEY"):
            config.research.api_key = os.getenv("AUTOFIX_RESEARCH_API_KEY")

        return config

    @classmethod
    def _from_dict(cls, data: Dict[str, Any]) -> "AutofixConfig":
        """Convert a dictionary to AutofixConfig."""
        config = cls()

        try:
            if "policy" in data:
                if not isinstance(data["policy"], dict):
                    raise ConfigError("Invalid configuration section: policy must be an object")
                config.policy = ExecutionPolicy(**{
                    key: tuple(_string_list(f"policy.{key}", value))
                    for key, value in data["policy"].items()
                })

            if "retry" in data:
                config.retry = RetryConfig(**data["retry"])

            if "logging" in data:
                config.logging = LoggingConfig(**data["logging"])

            if "safety" in data:
                config.safety = SafetyConfig(**data["safety"])
                config.safety.protected_paths = _string_list(
                    "safety.protected_paths", config.safety.protected_paths
                )

            if "research" in data:
                config.research = ResearchConfig(**data["research"])
        except TypeError as e:
            raise ConfigError(f"Invalid configuration section: {e}") from e

        return config

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to a dictionary."""
        return {
            "policy": {
                "destructive_verbs": list(self.policy.destructive_verbs),
                "potentially_destructive": list(self.policy.potentially_destructive),
                "destructive_flags": list(self.policy.destructive_flags),
                "whitelist_prefixes": list(self.policy.whitelist_prefixes),
                "sensitive_paths": list(self.policy.sensitive_paths)
            },
            "retry": {
                "max_attempts": self.retry.max_attempts,
                "timeout_ms": self.retry.timeout_ms,
                "initial_delay_seconds": self.retry.initial_delay_seconds,
                "backoff_multiplier": self.retry.backoff_multiplier,
                "max_delay_seconds": self.retry.max_delay_seconds
            },
            "logging": {
                "log_directory": self.logging.log_directory,
                "changelog_file": self.logging.changelog_file,
                "verbose": self.logging.verbose,
                "log_to_console": self.logging.log_to_console,
                "log_to_file": self.logging.log_to_file
            },
            "safety": {
                "backup_dir": self.safety.backup_dir,
                "protected_paths": self.safety.protected_paths,
                "rollback_on_exhaustion": self.safety.rollback_on_exhaustion,
                "max_file_size_kb": self.safety.max_file_size_kb
            },
            # The API key is never written back to disk
            "research": {
                "enabled": self.research.enabled,
                "endpoint": self.research.endpoint,
                "depth": self.research.depth,
                "timeout_seconds": self.research.timeout_seconds
            }
        }

    def save_to_file(self, config_path: str) -> None:
        """
        Save configuration to a JSON file.

        Args:
            config_path: Path where to save the configuration
        """
        path = Path(config_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, 'w', encoding='utf-8') as f:
            json.dump(self.to_dict(), f, indent=2)

    def is_path_protected(self, file_path: str) -> bool:
        """
        Check if a file path is in a protected location.

        Args:
            file_path: Path to check

        Returns:
            True if the path is protected and should not be modified
        """
        abs_path = os.path.abspath(file_path)
        for protected in self.safety.protected_paths:
            protected = protected.rstrip(os.sep) or os.sep
            if abs_path == protected or abs_path.startswith(protected + os.sep):
                return True
        return False
