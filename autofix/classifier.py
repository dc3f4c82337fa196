"""
Error Classifier Module for Autofix
===================================

This module maps the raw error text of a failed command to a category, a
root-cause description, remediation steps and a suggested follow-up.

Classification is driven by ``RULES``, an ordered tuple evaluated top to
bottom: the first rule whose pattern matches wins. Earlier entries shadow
later ones, so more specific patterns must come first. The order is part
of the module's contract and is pinned by tests.

Categories:
-----------
- environment: missing commands, Docker daemon, missing paths, permissions, busy ports
- dependency: missing Node/Python modules, npm and pip failures
- network: DNS failures, refused connections, timeouts
- spec: failing tests, counterexamples, assertion mismatches
- unknown: anything else
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple, Dict, Any

from .config import ErrorCategory, FollowUp


# Maximum length of the first-line excerpt in generic root causes
EXCERPT_LENGTH = 100


@dataclass(frozen=True)
class ClassificationRule:
    """
    One entry in the ordered classification table.

    ``extractors`` pull a detail (command or module name) out of the error
    text; the first extractor that matches supplies ``{detail}`` for the
    root cause and for ``detail_steps``.
    """
    name: str
    pattern: re.Pattern
    category: ErrorCategory
    root_cause: str
    follow_up: Optional[FollowUp] = None
    extractors: Tuple[re.Pattern, ...] = ()
    steps: Tuple[str, ...] = ()          # Remediation when no detail was extracted
    detail_steps: Tuple[str, ...] = ()   # Remediation templates using {detail}


@dataclass
class ErrorAnalysis:
    """Result of classifying one failed execution."""
    original_error: str
    category: ErrorCategory
    root_cause: str
    remediation: List[str]
    suggested_follow_up: Optional[FollowUp] = None
    matched_rule: Optional[str] = None   # Name of the winning rule, if any

    def to_dict(self) -> Dict[str, Any]:
        """Convert analysis to dictionary for JSON serialization."""
        return {
            "original_error": self.original_error,
            "category": self.category.value,
            "root_cause": self.root_cause,
            "remediation": list(self.remediation),
            "suggested_follow_up": (
                self.suggested_follow_up.value if self.suggested_follow_up else None
            ),
            "matched_rule": self.matched_rule,
        }


def _p(pattern: str) -> re.Pattern:
    return re.compile(pattern, re.IGNORECASE)


_COMMAND_EXTRACTORS = (
    _p(r"'([^']+)'.*not found"),
    _p(r'"([^"]+)".*not found'),
    _p(r"command not found:\s*(\S+)"),
    _p(r"([^\s:]+):\s*command not found"),
    _p(r"'([^']+)' is not recognized"),
    _p(r"not recognized.*:\s*(\S+)"),
)

_NODE_MODULE_EXTRACTORS = (
    _p(r"cannot find module\s+['\"]([^'\"]+)['\"]"),
    _p(r"module not found:\s+(?:error:\s+)?(?:can't resolve\s+)?['\"]?([^'\"\s]+)"),
)

_PYTHON_MODULE_EXTRACTORS = (
    _p(r"no module named\s+['\"]([^'\"]+)['\"]"),
)


RULES: Tuple[ClassificationRule, ...] = (
    # Environment
    ClassificationRule(
        name="command-not-found",
        pattern=_p(r"command not found|not recognized as an internal or external command"),
        category=ErrorCategory.ENVIRONMENT,
        root_cause="Command is not installed or not in PATH",
        follow_up=FollowUp.VALIDATE_ENVIRONMENT,
        extractors=_COMMAND_EXTRACTORS,
        steps=("Install the missing command or add its directory to PATH",),
        detail_steps=(
            "Install '{detail}' or add its directory to PATH",
            "Verify with: which {detail}",
        ),
    ),
    ClassificationRule(
        name="docker-unavailable",
        pattern=_p(r"docker.*not found|cannot connect to the docker daemon"),
        category=ErrorCategory.ENVIRONMENT,
        root_cause="Docker is not running or not installed",
        follow_up=FollowUp.VALIDATE_ENVIRONMENT,
        steps=(
            "Start the Docker daemon (or Docker Desktop)",
            "Verify Docker is reachable with: docker ps",
        ),
    ),
    ClassificationRule(
        name="missing-path",
        pattern=_p(r"enoent|no such file or directory"),
        category=ErrorCategory.ENVIRONMENT,
        root_cause="Required file or directory does not exist",
        follow_up=FollowUp.VALIDATE_ENVIRONMENT,
        steps=(
            "Verify the path exists",
            "Check that the command runs from the expected working directory",
        ),
    ),
    ClassificationRule(
        name="permission-denied",
        pattern=_p(r"eacces|permission denied"),
        category=ErrorCategory.ENVIRONMENT,
        root_cause="Insufficient permissions to access resource",
        steps=(
            "Check file and directory permissions",
            "Fix ownership with chown instead of running as root",
        ),
    ),
    ClassificationRule(
        name="port-in-use",
        pattern=_p(r"eaddrinuse|address already in use|port.*already in use"),
        category=ErrorCategory.ENVIRONMENT,
        root_cause="Port is already in use by another process",
        follow_up=FollowUp.VALIDATE_ENVIRONMENT,
        steps=(
            "Find the process holding the port (e.g. lsof -i :<port>) and stop it",
            "Or configure the application to use a different port",
        ),
    ),
    # Dependency
    ClassificationRule(
        name="missing-node-module",
        pattern=_p(r"cannot find module|module not found"),
        category=ErrorCategory.DEPENDENCY,
        root_cause="Required npm package is not installed",
        follow_up=FollowUp.VALIDATE_ENVIRONMENT,
        extractors=_NODE_MODULE_EXTRACTORS,
        steps=("Install project dependencies with: npm install",),
        detail_steps=("Install the missing package with: npm install {detail}",),
    ),
    ClassificationRule(
        name="missing-python-module",
        pattern=_p(r"no module named"),
        category=ErrorCategory.DEPENDENCY,
        root_cause="Required Python package is not installed",
        follow_up=FollowUp.VALIDATE_ENVIRONMENT,
        extractors=_PYTHON_MODULE_EXTRACTORS,
        steps=("Install project dependencies with: pip install -r requirements.txt",),
        detail_steps=("Install the missing package with: pip install {detail}",),
    ),
    ClassificationRule(
        name="missing-package-json",
        pattern=_p(r"package\.json.*not found"),
        category=ErrorCategory.DEPENDENCY,
        root_cause="Not in a Node.js project directory",
        steps=(
            "Change to the project directory containing package.json",
            "Or create one with: npm init",
        ),
    ),
    ClassificationRule(
        name="npm-failure",
        pattern=_p(r"npm err!"),
        category=ErrorCategory.DEPENDENCY,
        root_cause="npm operation failed",
        steps=(
            "Reinstall dependencies with: npm install",
            "Clear the cache with: npm cache clean --force",
        ),
    ),
    ClassificationRule(
        name="pip-failure",
        pattern=_p(r"no matching distribution found|could not find a version that satisfies"),
        category=ErrorCategory.DEPENDENCY,
        root_cause="pip could not resolve a package",
        steps=(
            "Check the package name for typos",
            "Check that the package supports this Python version",
        ),
    ),
    # Network
    ClassificationRule(
        name="dns-failure",
        pattern=_p(r"enotfound|getaddrinfo.*failed|name or service not known"),
        category=ErrorCategory.NETWORK,
        root_cause="DNS resolution failed - check network connection",
        steps=("Verify the hostname and DNS configuration",),
    ),
    ClassificationRule(
        name="connection-refused",
        pattern=_p(r"econnrefused|connection refused"),
        category=ErrorCategory.NETWORK,
        root_cause="Connection refused - service may not be running",
        steps=("Make sure the target service is running and listening on the expected port",),
    ),
    ClassificationRule(
        name="connection-timeout",
        pattern=_p(r"etimedout|connection timed out"),
        category=ErrorCategory.NETWORK,
        root_cause="Connection timed out - check network or firewall",
        steps=("Check whether the host is reachable or increase the timeout",),
    ),
    ClassificationRule(
        name="http-client-error",
        pattern=_p(r"requests\.exceptions\.\w+|urllib\.error\.urlerror"),
        category=ErrorCategory.NETWORK,
        root_cause="HTTP request failed",
        steps=("Check the request URL and that the remote service is available",),
    ),
    # Spec
    ClassificationRule(
        name="test-failure",
        pattern=_p(r"test.*failed|assertion.*failed"),
        category=ErrorCategory.SPEC,
        root_cause="Test failure indicates spec violation",
        follow_up=FollowUp.TRIGGER_SELF_HEAL,
    ),
    ClassificationRule(
        name="property-counterexample",
        pattern=_p(r"property.*failed|counterexample"),
        category=ErrorCategory.SPEC,
        root_cause="Property-based test found counterexample",
        follow_up=FollowUp.TRIGGER_SELF_HEAL,
    ),
    ClassificationRule(
        name="assertion-mismatch",
        pattern=_p(r"expected.*to.*but|received.*expected|assertionerror"),
        category=ErrorCategory.SPEC,
        root_cause="Assertion mismatch - implementation does not match spec",
        follow_up=FollowUp.TRIGGER_SELF_HEAL,
    ),
)


# Steps placed ahead of rule-specific remediation, per category
CATEGORY_REMEDIATION: Dict[ErrorCategory, Tuple[str, ...]] = {
    ErrorCategory.ENVIRONMENT: (
        "Run environment validation to check required tools and services",
    ),
    ErrorCategory.DEPENDENCY: (
        "Run environment validation to check installed packages",
    ),
    ErrorCategory.NETWORK: (
        "Check network connectivity",
        "Verify firewall and proxy settings",
    ),
    ErrorCategory.SPEC: (
        "Run the self-heal trigger to attempt an automatic correction",
        "Review the test expectations against the specification",
        "Update the implementation to match the expected behavior",
    ),
    ErrorCategory.UNKNOWN: (
        "Review the full command output for details",
        "Check application logs for related errors",
        "Inspect the system context (working directory, environment variables)",
    ),
}

CATEGORY_FOLLOW_UP: Dict[ErrorCategory, Optional[FollowUp]] = {
    ErrorCategory.ENVIRONMENT: FollowUp.VALIDATE_ENVIRONMENT,
    ErrorCategory.DEPENDENCY: FollowUp.VALIDATE_ENVIRONMENT,
    ErrorCategory.SPEC: FollowUp.TRIGGER_SELF_HEAL,
    ErrorCategory.NETWORK: None,
    ErrorCategory.UNKNOWN: None,
}


def match_rule(error: str, rules: Tuple[ClassificationRule, ...] = RULES) -> Optional[ClassificationRule]:
    """Return the first rule whose pattern matches ``error``."""
    for rule in rules:
        if rule.pattern.search(error):
            return rule
    return None


def extract_detail(error: str, rule: ClassificationRule) -> Optional[str]:
    """Run the rule's extractors in order and return the first capture."""
    for extractor in rule.extractors:
        match = extractor.search(error)
        if match and match.group(1).strip():
            return match.group(1).strip()
    return None


def first_line_excerpt(error: str, limit: int = EXCERPT_LENGTH) -> str:
    """First non-empty line of ``error``, truncated with an ellipsis marker."""
    for line in error.splitlines():
        line = line.strip()
        if line:
            return line if len(line) <= limit else line[:limit] + "..."
    return "(no error output)"


class ErrorClassifier:
    """
    Classifies raw error text into an ErrorAnalysis.

    ``analyze`` is total: any input, including ``None`` and the empty
    string, yields an analysis with a non-empty remediation list.

    Usage:
        classifier = ErrorClassifier()
        analysis = classifier.analyze("Error: Cannot find module 'lodash'")
        print(analysis.category, analysis.root_cause)
    """

    def __init__(self, rules: Tuple[ClassificationRule, ...] = RULES):
        self.rules = rules

    def analyze(self, error: Optional[str]) -> ErrorAnalysis:
        """
        Classify an error string.

        Args:
            error: Raw stderr (or stdout) of a failed command

        Returns:
            ErrorAnalysis for the first matching rule, or a generic
            ``unknown`` analysis when nothing matches
        """
        error = error or ""
        rule = match_rule(error, self.rules)

        if rule is None:
            return ErrorAnalysis(
                original_error=error,
                category=ErrorCategory.UNKNOWN,
                root_cause=f"Unknown error: {first_line_excerpt(error)}",
                remediation=list(CATEGORY_REMEDIATION[ErrorCategory.UNKNOWN]),
                suggested_follow_up=CATEGORY_FOLLOW_UP[ErrorCategory.UNKNOWN],
            )

        detail = extract_detail(error, rule)
        root_cause = rule.root_cause
        if detail:
            root_cause = f"{root_cause}: {detail}"

        return ErrorAnalysis(
            original_error=error,
            category=rule.category,
            root_cause=root_cause,
            remediation=self._remediation(rule, detail),
            suggested_follow_up=rule.follow_up or CATEGORY_FOLLOW_UP[rule.category],
            matched_rule=rule.name,
        )

    @staticmethod
    def _remediation(rule: ClassificationRule, detail: Optional[str]) -> List[str]:
        steps = list(CATEGORY_REMEDIATION[rule.category])
        if detail and rule.detail_steps:
            steps.extend(step.format(detail=detail) for step in rule.detail_steps)
        else:
            steps.extend(rule.steps)
        return steps
