"""
Tests for the error classifier.

These tests pin the rule ordering, check the secondary extraction of
command and module names, and verify that classification is total.
"""

import pytest

from autofix.config import ErrorCategory, FollowUp
from autofix.classifier import (
    ErrorClassifier, RULES, match_rule, first_line_excerpt, EXCERPT_LENGTH
)


@pytest.fixture
def classifier():
    return ErrorClassifier()


class TestRuleOrdering:
    """The rule table is an ordered, first-match-wins contract."""

    def test_rule_order(self):
        assert [rule.name for rule in RULES] == [
            "command-not-found",
            "docker-unavailable",
            "missing-path",
            "permission-denied",
            "port-in-use",
            "missing-node-module",
            "missing-python-module",
            "missing-package-json",
            "npm-failure",
            "pip-failure",
            "dns-failure",
            "connection-refused",
            "connection-timeout",
            "http-client-error",
            "test-failure",
            "property-counterexample",
            "assertion-mismatch",
        ]

    def test_rule_names_unique(self):
        names = [rule.name for rule in RULES]
        assert len(names) == len(set(names))

    def test_command_not_found_shadows_docker(self):
        """A missing docker binary is reported as a missing command."""
        assert match_rule("bash: docker: command not found").name == "command-not-found"

    def test_npm_error_shadows_test_failure(self):
        assert match_rule("npm ERR! Test failed.  See above for more details.").name == "npm-failure"

    @pytest.mark.parametrize("rule_index", range(len(RULES)))
    def test_every_rule_reachable(self, rule_index):
        """Each rule wins for at least one sample, so none is fully shadowed."""
        samples = {
            "command-not-found": "zsh: command not found: tsx",
            "docker-unavailable": "Cannot connect to the Docker daemon at unix:///var/run/docker.sock",
            "missing-path": "Error: ENOENT: no such file or directory, open 'config.json'",
            "permission-denied": "Error: EACCES: permission denied, mkdir '/opt/app'",
            "port-in-use": "Error: listen EADDRINUSE: address already in use :::3000",
            "missing-node-module": "Error: Cannot find module 'lodash'",
            "missing-python-module": "ModuleNotFoundError: No module named 'requests'",
            "missing-package-json": "npm error: package.json not found",
            "npm-failure": "npm ERR! code E404",
            "pip-failure": "ERROR: No matching distribution found for notapkg",
            "dns-failure": "getaddrinfo ENOTFOUND registry.example.com",
            "connection-refused": "connect ECONNREFUSED 127.0.0.1:5432",
            "connection-timeout": "connect ETIMEDOUT 10.0.0.1:443",
            "http-client-error": "requests.exceptions.SSLError: certificate verify failed",
            "test-failure": "1 test failed",
            "property-counterexample": "Property failed after 12 tests\nCounterexample: [0]",
            "assertion-mismatch": "Expected value to equal 3 but received 4",
        }
        rule = RULES[rule_index]
        assert match_rule(samples[rule.name]).name == rule.name


class TestAnalyze:
    """Tests for ErrorClassifier.analyze."""

    def test_missing_node_module(self, classifier):
        """Cannot find module 'lodash' is a dependency error naming lodash."""
        analysis = classifier.analyze("Cannot find module 'lodash'")

        assert analysis.category == ErrorCategory.DEPENDENCY
        assert "lodash" in analysis.root_cause
        assert any("npm install lodash" in step for step in analysis.remediation)
        assert analysis.suggested_follow_up == FollowUp.VALIDATE_ENVIRONMENT

    def test_missing_python_module(self, classifier):
        analysis = classifier.analyze(
            "Traceback (most recent call last):\n"
            '  File "app.py", line 1, in <module>\n'
            "    import yaml\n"
            "ModuleNotFoundError: No module named 'yaml'\n"
        )

        assert analysis.category == ErrorCategory.DEPENDENCY
        assert analysis.root_cause.endswith(": yaml")
        assert any("pip install yaml" in step for step in analysis.remediation)

    @pytest.mark.parametrize("error,command", [
        ("bash: line 1: tsx: command not found", "tsx"),
        ("zsh: command not found: deno", "deno"),
        ("'pnpm' is not recognized as an internal or external command", "pnpm"),
    ])
    def test_command_name_extraction(self, classifier, error, command):
        analysis = classifier.analyze(error)

        assert analysis.category == ErrorCategory.ENVIRONMENT
        assert analysis.root_cause == f"Command is not installed or not in PATH: {command}"
        assert any(command in step for step in analysis.remediation)

    def test_environment_remediation_starts_with_validation(self, classifier):
        analysis = classifier.analyze("listen EADDRINUSE: address already in use :::8080")

        assert analysis.category == ErrorCategory.ENVIRONMENT
        assert "environment validation" in analysis.remediation[0]
        assert any("port" in step for step in analysis.remediation)

    def test_network_has_no_follow_up(self, classifier):
        analysis = classifier.analyze("connect ECONNREFUSED 127.0.0.1:6379")

        assert analysis.category == ErrorCategory.NETWORK
        assert analysis.suggested_follow_up is None
        assert "Check network connectivity" in analysis.remediation

    def test_spec_failure_triggers_self_heal(self, classifier):
        analysis = classifier.analyze("AssertionError: expected 200 to equal 201 but got 200")

        assert analysis.category == ErrorCategory.SPEC
        assert analysis.suggested_follow_up == FollowUp.TRIGGER_SELF_HEAL
        assert any("self-heal" in step for step in analysis.remediation)

    def test_permission_denied_uses_category_follow_up(self, classifier):
        """Rules without an explicit follow-up fall back to the category's."""
        analysis = classifier.analyze("EACCES: permission denied")

        assert analysis.suggested_follow_up == FollowUp.VALIDATE_ENVIRONMENT

    def test_unknown_error(self, classifier):
        analysis = classifier.analyze("Segmentation fault (core dumped)\nmore detail")

        assert analysis.category == ErrorCategory.UNKNOWN
        assert analysis.root_cause == "Unknown error: Segmentation fault (core dumped)"
        assert analysis.matched_rule is None
        assert analysis.suggested_follow_up is None

    def test_long_first_line_is_truncated(self, classifier):
        analysis = classifier.analyze("x" * 250)

        excerpt = analysis.root_cause[len("Unknown error: "):]
        assert excerpt == "x" * EXCERPT_LENGTH + "..."

    @pytest.mark.parametrize("error", [
        "", None, "   \n\n", "\x00\x01", "ümlaut fehler", "a" * 10000,
        "Cannot find module", "command not found",
    ])
    def test_analysis_is_total(self, classifier, error):
        """Every input yields an analysis with non-empty remediation."""
        analysis = classifier.analyze(error)

        assert analysis is not None
        assert analysis.remediation
        assert all(step for step in analysis.remediation)

    def test_empty_string_is_unknown(self, classifier):
        assert classifier.analyze("").category == ErrorCategory.UNKNOWN

    def test_to_dict(self, classifier):
        data = classifier.analyze("Cannot find module 'lodash'").to_dict()

        assert data["category"] == "dependency"
        assert data["suggested_follow_up"] == "validate-environment"
        assert data["matched_rule"] == "missing-node-module"


class TestFirstLineExcerpt:
    """Tests for first_line_excerpt."""

    def test_skips_blank_lines(self):
        assert first_line_excerpt("\n\n  first  \nsecond") == "first"

    def test_empty(self):
        assert first_line_excerpt("") == "(no error output)"
