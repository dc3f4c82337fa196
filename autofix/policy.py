"""
Policy Gate Module for Autofix
==============================

This module decides whether a command may run at all. It is pure: it
inspects the command, its arguments and the working directory, and
returns a list of violations without touching the system.

Rules:
------
- Destructive Operation Protection (critical): irreversible verbs such as
  ``rm``, ``docker rmi`` or ``git reset --hard``, and force/recursive flags
  on tools that can destroy data
- Container Image Whitelist (error): ``docker run``/``docker pull`` of an
  image outside the configured prefixes
- Sensitive Path Protection (critical): working directory or arguments
  touching version-control metadata, dependency caches or secrets
- Unverified Download (warning): ``curl`` without ``--fail``
- Credential Exposure (warning): secrets passed on the command line without
  ``--masked``

Only critical violations block execution, and the caller can override them.
"""

import re
import shlex
from dataclasses import dataclass
from typing import List, Optional, Tuple, Dict, Any

from .config import ExecutionPolicy, ViolationSeverity


DESTRUCTIVE_RULE = "Destructive Operation Protection"
WHITELIST_RULE = "Container Image Whitelist"
SENSITIVE_PATH_RULE = "Sensitive Path Protection"
DOWNLOAD_RULE = "Unverified Download"
CREDENTIAL_RULE = "Credential Exposure"

# docker flags that consume the following token as their value
_DOCKER_VALUE_FLAGS = {
    "-p", "--publish", "-v", "--volume", "-e", "--env", "--name",
    "--network", "-w", "--workdir", "-u", "--user", "--platform",
    "--entrypoint", "--env-file", "-m", "--memory",
}

_CREDENTIAL_PATTERN = re.compile(r"password|passwd|token|secret|api[_-]?key", re.IGNORECASE)


@dataclass
class Violation:
    """A single rule violated by a candidate command."""
    rule: str                          # Human-readable rule name
    severity: ViolationSeverity        # Only CRITICAL blocks execution
    message: str                       # What was detected
    remediation: Optional[str] = None  # How to proceed or override

    def to_dict(self) -> Dict[str, Any]:
        """Convert violation to dictionary for JSON serialization."""
        return {
            "rule": self.rule,
            "severity": self.severity.value,
            "message": self.message,
            "remediation": self.remediation,
        }


def split_command(command_line: str) -> Tuple[str, List[str]]:
    """
    Split a free-form command line into a command name and arguments.

    Unbalanced quotes fall back to whitespace splitting so the gate still
    sees every token.
    """
    try:
        tokens = shlex.split(command_line)
    except ValueError:
        tokens = command_line.split()
    if not tokens:
        return "", []
    return tokens[0], tokens[1:]


# Characters the lexer splits out; only tokens made purely of _SEPARATOR_CHARS end a command
_OPERATOR_CHARS = "();|&<>"
_SEPARATOR_CHARS = "();|&"
_FALLBACK_SEPARATORS = re.compile(r"&&|\|\||\$\(|[;|&()`]")


def split_segments(command_line: str) -> List[Tuple[str, List[str]]]:
    """
    Split a shell command line into the simple commands it will run.

    Lists (``;``, ``&&``, ``||``, ``&``), pipelines, subshells and command
    substitution (``$(...)`` and backticks) each start a new segment, so
    ``echo ok && rm -rf /`` yields two commands. Redirections stay with the
    command they belong to.
    """
    text = command_line.replace("`", " ; ")
    lexer = shlex.shlex(text, posix=True, punctuation_chars=_OPERATOR_CHARS)
    lexer.whitespace_split = True
    lexer.commenters = ""
    try:
        tokens = list(lexer)
    except ValueError:
        return [split_command(part) for part in _FALLBACK_SEPARATORS.split(command_line) if part.strip()]

    segments: List[Tuple[str, List[str]]] = []
    current: List[str] = []
    for token in tokens:
        if token and all(ch in _SEPARATOR_CHARS for ch in token):
            if current:
                segments.append((current[0], current[1:]))
            current = []
        elif token == "$" and not current:
            continue
        else:
            current.append(token)
    if current:
        segments.append((current[0], current[1:]))
    return segments


class PolicyGate:
    """
    Validates commands against an ExecutionPolicy.

    Usage:
        gate = PolicyGate(config.policy)
        violations = gate.validate("rm", ["-rf", "/"], "/home/user")
        if gate.is_blocking(violations):
            ...
    """

    def __init__(self, policy: Optional[ExecutionPolicy] = None):
        """
        Initialize the policy gate.

        Args:
            policy: Rules to enforce (uses the default policy if None)
        """
        self.policy = policy or ExecutionPolicy()

    @staticmethod
    def _command_name(command: str) -> str:
        """Lowercased basename of the first word of ``command``."""
        first = command.strip().split()[0] if command.strip() else ""
        return first.replace("\\", "/").split("/")[-1].lower()

    def _full_command(self, command: str, args: List[str]) -> str:
        words = command.strip().split()
        if words:
            words[0] = self._command_name(command)
        return " ".join(words + list(args)).lower()

    def is_destructive(self, command: str, args: Optional[List[str]] = None) -> bool:
        """
        Check whether a command performs an irreversible operation.

        Primary verbs match on the command name or, for multi-word entries
        like ``docker rmi``, on a prefix of the full command line. The flag
        heuristics only apply to commands in the potentially-destructive set.

        Args:
            command: Command name (may include a path)
            args: Command arguments

        Returns:
            True if the command should be treated as destructive
        """
        args = args or []
        name = self._command_name(command)
        if not name:
            return False
        full = self._full_command(command, args)

        for verb in self.policy.destructive_verbs:
            verb = verb.lower()
            if name == verb or full == verb or full.startswith(verb + " "):
                return True

        if name in (p.lower() for p in self.policy.potentially_destructive):
            padded = " " + full
            return any(flag.lower() in padded for flag in self.policy.destructive_flags)

        return False

    def is_whitelisted(self, resource_name: str) -> bool:
        """
        Check whether a resource name starts with a whitelisted prefix.

        The match is case-sensitive.
        """
        return any(resource_name.startswith(prefix) for prefix in self.policy.whitelist_prefixes)

    def is_sensitive_path(self, path: str) -> bool:
        """Check whether a path touches a sensitive location."""
        normalized = path.replace("\\", "/").lower()
        return any(entry.lower() in normalized for entry in self.policy.sensitive_paths)

    def _docker_image(self, args: List[str]) -> Optional[str]:
        """Return the image named by ``docker run|pull`` arguments, if any."""
        if not args or args[0] not in ("run", "pull"):
            return None
        skip_next = False
        for arg in args[1:]:
            if skip_next:
                skip_next = False
                continue
            if arg.startswith("-"):
                skip_next = arg in _DOCKER_VALUE_FLAGS
                continue
            return arg
        return None

    def validate(
        self,
        command: str,
        args: Optional[List[str]] = None,
        working_directory: Optional[str] = None
    ) -> List[Violation]:
        """
        Check a command against every policy rule.

        Args:
            command: Command name (may include a path)
            args: Command arguments
            working_directory: Directory the command would run in

        Returns:
            List of violations, empty if the command is allowed
        """
        args = list(args or [])
        violations: List[Violation] = []
        name = self._command_name(command)
        full = " ".join([command] + args)

        if self.is_destructive(command, args):
            violations.append(Violation(
                rule=DESTRUCTIVE_RULE,
                severity=ViolationSeverity.CRITICAL,
                message=f"Destructive command detected: {full}",
                remediation="Re-run with --override-policy to confirm this destructive operation"
            ))

        if name == "docker":
            image = self._docker_image(args)
            if image and not self.is_whitelisted(image):
                violations.append(Violation(
                    rule=WHITELIST_RULE,
                    severity=ViolationSeverity.ERROR,
                    message=f"Image '{image}' is not whitelisted",
                    remediation=(
                        "Use an image starting with one of: "
                        + ", ".join(self.policy.whitelist_prefixes)
                    )
                ))

        touched = [working_directory] if working_directory else []
        touched.extend(args)
        for path in touched:
            if self.is_sensitive_path(path):
                violations.append(Violation(
                    rule=SENSITIVE_PATH_RULE,
                    severity=ViolationSeverity.CRITICAL,
                    message=f"Command touches a sensitive path: {path}",
                    remediation="Run the command outside protected directories or use --override-policy"
                ))
                break

        if name == "curl" and "--fail" not in args and "-f" not in args:
            violations.append(Violation(
                rule=DOWNLOAD_RULE,
                severity=ViolationSeverity.WARNING,
                message="curl will not fail on HTTP errors",
                remediation="Add --fail so HTTP errors produce a non-zero exit code"
            ))

        if "--masked" not in args and any(_CREDENTIAL_PATTERN.search(arg) for arg in args):
            violations.append(Violation(
                rule=CREDENTIAL_RULE,
                severity=ViolationSeverity.WARNING,
                message="Command line appears to contain a credential",
                remediation="Pass secrets through environment variables or add --masked"
            ))

        return violations

    def validate_command_line(
        self,
        command_line: str,
        working_directory: Optional[str] = None
    ) -> List[Violation]:
        """
        Validate every simple command in a shell command line.

        The working directory is checked once, with the first command.
        """
        violations: List[Violation] = []
        for index, (command, args) in enumerate(split_segments(command_line)):
            violations.extend(self.validate(command, args, working_directory if index == 0 else None))
        return violations

    @staticmethod
    def is_blocking(violations: List[Violation], override: bool = False) -> bool:
        """True if any violation is critical and no override was given."""
        if override:
            return False
        return any(v.severity == ViolationSeverity.CRITICAL for v in violations)
