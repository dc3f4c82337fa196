"""
Tests for the correction strategist.
"""

from unittest.mock import MagicMock

import pytest

from autofix.classifier import ErrorClassifier
from autofix.research import ResearchError, ResearchResponse, ResearchResult
from autofix.strategist import (
    CorrectionStrategist, HEURISTIC, FALLBACK, COMMENT_OUT_MARKER, flavour_for
)


def analysis_for(error):
    return ErrorClassifier().analyze(error)


@pytest.fixture
def strategist():
    return CorrectionStrategist()


class TestHeuristicTier:
    """Tests for the scenario matchers."""

    def test_incomplete_assignment(self, strategist):
        fix = strategist.generate_fix(
            analysis_for("SyntaxError: Unexpected token ';'"), "const x = ;", "broken.ts"
        )

        assert fix.tier == HEURISTIC
        assert fix.strategy == "empty-assignment"
        assert fix.search_fragment == "const x = ;"
        assert fix.replacement_fragment == "const x = null;"

    def test_incomplete_assignment_python(self, strategist):
        fix = strategist.generate_fix(analysis_for("SyntaxError: invalid syntax"), "x = ", "app.py")

        assert fix.replacement_fragment == "x = None"

    def test_unbalanced_parentheses(self, strategist):
        fix = strategist.generate_fix(
            analysis_for("error TS1005: ')' expected."), "console.log(fn(1);", "app.ts"
        )

        assert fix.strategy == "unbalanced-parentheses"
        assert fix.replacement_fragment == "console.log(fn(1));"

    def test_python_never_closed(self, strategist):
        fix = strategist.generate_fix(
            analysis_for("SyntaxError: '(' was never closed"), "print(items[0", "app.py"
        )

        assert fix.replacement_fragment == "print(items[0])"

    def test_missing_terminator(self, strategist):
        fix = strategist.generate_fix(analysis_for("error TS1005: ';' expected."), "let a = 1", "a.ts")

        assert fix.strategy == "missing-terminator"
        assert fix.replacement_fragment == "let a = 1;"

    def test_terminator_not_added_after_block(self, strategist):
        fix = strategist.generate_fix(analysis_for("';' expected"), "function f() {", "a.ts")

        assert fix.strategy != "missing-terminator"

    def test_missing_colon(self, strategist):
        fix = strategist.generate_fix(analysis_for("SyntaxError: expected ':'"), "    if ready", "app.py")

        assert fix.strategy == "missing-colon"
        assert fix.replacement_fragment == "    if ready:"

    def test_unterminated_string(self, strategist):
        fix = strategist.generate_fix(
            analysis_for("SyntaxError: unterminated string literal (detected at line 1)"),
            "name = 'abc",
            "app.py"
        )

        assert fix.strategy == "unterminated-string"
        assert fix.replacement_fragment == "name = 'abc'"

    def test_unbalanced_braces(self, strategist):
        fix = strategist.generate_fix(analysis_for("error: '}' expected"), "const o = { a: { b: 1 }", "a.js")

        assert fix.strategy == "unbalanced-braces"
        assert fix.replacement_fragment == "const o = { a: { b: 1 }}"

    def test_undefined_identifier_js(self, strategist):
        fix = strategist.generate_fix(
            analysis_for("ReferenceError: total is not defined"), "  console.log(total);", "a.js"
        )

        assert fix.strategy == "undefined-identifier"
        assert fix.replacement_fragment.startswith("  const total = undefined;")
        assert fix.replacement_fragment.endswith("\n  console.log(total);")

    def test_undefined_identifier_keeps_case(self, strategist):
        fix = strategist.generate_fix(
            analysis_for("ReferenceError: myValue is not defined"), "  console.log(myValue);", "a.js"
        )

        assert fix.replacement_fragment.startswith("  const myValue = undefined;")

    def test_cannot_find_name_keeps_case(self, strategist):
        fix = strategist.generate_fix(
            analysis_for("error TS2304: Cannot find name 'UserService'."),
            "const svc = new UserService();",
            "a.ts"
        )

        assert fix.strategy == "undefined-identifier"
        assert fix.replacement_fragment.startswith("const UserService = undefined;")

    def test_undefined_identifier_python(self, strategist):
        fix = strategist.generate_fix(
            analysis_for("NameError: name 'total' is not defined"), "print(total)", "app.py"
        )

        assert fix.replacement_fragment.splitlines()[0].startswith("total = None")

    def test_unresolved_import(self, strategist):
        fix = strategist.generate_fix(
            analysis_for("Error: Cannot find module 'lodash'"), "const _ = require('lodash');", "a.js"
        )

        assert fix.strategy == "unresolved-import"
        note, line = fix.replacement_fragment.split("\n")
        assert note.startswith("//")
        assert "npm install lodash" in note
        assert line == "const _ = require('lodash');"

    def test_unresolved_import_keeps_case(self, strategist):
        fix = strategist.generate_fix(
            analysis_for("Error: Cannot find module '@Scope/MyLib'"),
            "import lib from '@Scope/MyLib';",
            "a.ts"
        )

        assert "npm install @Scope/MyLib" in fix.replacement_fragment

    def test_unresolved_python_import(self, strategist):
        fix = strategist.generate_fix(
            analysis_for("ModuleNotFoundError: No module named 'yaml'"), "import yaml", "app.py"
        )

        assert "# autofix" in fix.replacement_fragment
        assert "pip install yaml" in fix.replacement_fragment


class TestFallbackTier:
    """Tests for the fallback tier."""

    def test_empty_rhs_without_matching_message(self, strategist):
        fix = strategist.generate_fix(analysis_for("something odd happened"), "let v = ;", "a.js")

        assert fix.tier == FALLBACK
        assert fix.replacement_fragment == "let v = null;"

    def test_comment_out(self, strategist):
        fix = strategist.generate_fix(analysis_for("weird failure"), "    doThing();", "a.js")

        assert fix.tier == FALLBACK
        assert fix.strategy == "comment-out"
        assert fix.replacement_fragment == f"    // doThing(); // {COMMENT_OUT_MARKER}"

    def test_comment_out_python(self, strategist):
        fix = strategist.generate_fix(analysis_for("weird failure"), "do_thing()", "job.py")

        assert fix.replacement_fragment.startswith("# do_thing() # ")

    def test_fallback_always_produces_fix(self, strategist):
        for line in ["x", "}", "return 1;", "@@@"]:
            assert strategist.generate_fix(analysis_for(""), line, "a.js") is not None

    def test_already_commented_line(self, strategist):
        line = f"// doThing(); // {COMMENT_OUT_MARKER}"

        assert strategist.generate_fix(analysis_for("weird"), line, "a.js") is None

    @pytest.mark.parametrize("line", ["", "   ", "\t", None])
    def test_blank_line(self, strategist, line):
        assert strategist.generate_fix(analysis_for("SyntaxError"), line, "a.js") is None


class TestResearch:
    """Tests for the optional research consultation."""

    def test_research_source_in_marker(self):
        client = MagicMock()
        client.research.return_value = ResearchResponse(
            query="q",
            summary="s",
            results=[ResearchResult("t", "https://docs.example.com/fix", "snippet", 80)]
        )
        strategist = CorrectionStrategist(research_client=client, research_depth=1)

        fix = strategist.generate_fix(analysis_for("Error: weird failure"), "doThing();", "a.js")

        client.research.assert_called_once_with("Error: weird failure", 1)
        assert fix.research_note == "https://docs.example.com/fix"
        assert "https://docs.example.com/fix" in fix.replacement_fragment

    def test_research_failure_does_not_block(self):
        client = MagicMock()
        client.research.side_effect = ResearchError("offline")
        strategist = CorrectionStrategist(research_client=client)

        fix = strategist.generate_fix(analysis_for("weird failure"), "doThing();", "a.js")

        assert fix.strategy == "comment-out"
        assert fix.research_note is None

    def test_research_not_consulted_for_heuristics(self):
        client = MagicMock()
        strategist = CorrectionStrategist(research_client=client)

        strategist.generate_fix(analysis_for("Unexpected token ';'"), "const x = ;", "a.js")

        client.research.assert_not_called()


class TestFlavour:
    """Tests for language flavour selection."""

    def test_extensions(self):
        assert flavour_for("a.py").name == "python"
        assert flavour_for("run.sh").name == "shell"
        assert flavour_for("a.ts").name == "c-style"
        assert flavour_for(None).name == "c-style"
