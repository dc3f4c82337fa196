"""
Correction Strategist Module for Autofix
========================================

This module turns an ErrorAnalysis and the offending source line into a
search/replace fix. It works in two tiers:

Heuristic tier:
---------------
An ordered tuple of scenario matchers matched case-insensitively against the error text
and the shape of the line. No external calls are made.

1. Unbalanced parentheses/brackets: append the missing closers
2. Missing terminator: append ``;`` (or ``:`` for Python block headers)
3. Unterminated string: append the quote with odd parity
4. Unbalanced braces: append the missing ``}``
5. Undefined identifier: prepend a placeholder declaration
6. Incomplete assignment: fill an empty right-hand side with null
7. Unresolved import: prepend a comment naming the install command

Fallback tier:
--------------
If no heuristic matches, rewrite an empty right-hand side to null, or as
a last resort comment out the line with a marker. Before commenting out,
an optional research backend may be consulted; its failures never block
the fallback.

Generated code follows the target file's language: Python (``.py``),
shell (``.sh``) or C-style syntax (JavaScript, TypeScript and the rest).
"""

import logging
import os
import re
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from .classifier import ErrorAnalysis
from .research import ResearchClient, ResearchError


logger = logging.getLogger(__name__)

HEURISTIC = "heuristic"
FALLBACK = "fallback"

COMMENT_OUT_MARKER = "autofix: commented out, no automatic fix found"

BLOCK_KEYWORDS = ("if", "elif", "else", "for", "while", "def", "class", "try", "except", "finally", "with")


@dataclass
class Fix:
    """A proposed single-occurrence replacement."""
    search_fragment: str
    replacement_fragment: str
    tier: str = HEURISTIC        # "heuristic" or "fallback"
    strategy: str = ""           # Name of the scenario that produced it
    research_note: Optional[str] = None


@dataclass(frozen=True)
class Flavour:
    """Syntax details of the language a fix is written in."""
    name: str
    null_literal: str
    comment: str
    terminator: str
    install_command: str

    def declare(self, identifier: str) -> str:
        if self.name == "python":
            return f"{identifier} = None"
        if self.name == "shell":
            return f'{identifier}=""'
        return f"const {identifier} = undefined;"


C_STYLE = Flavour("c-style", "null", "//", ";", "npm install")
PYTHON = Flavour("python", "None", "#", "", "pip install")
SHELL = Flavour("shell", '""', "#", "", "apt-get install")


def flavour_for(target_file: Optional[str]) -> Flavour:
    """Pick the language flavour from a file extension."""
    ext = os.path.splitext(target_file or "")[1].lower()
    if ext == ".py":
        return PYTHON
    if ext in (".sh", ".bash"):
        return SHELL
    return C_STYLE


def _indent(line: str) -> str:
    return line[:len(line) - len(line.lstrip())]


def _has_any(message: str, needles: Tuple[str, ...]) -> bool:
    lowered = message.lower()
    return any(needle in lowered for needle in needles)


def _append_before_terminator(line: str, suffix: str, flavour: Flavour) -> str:
    """Append ``suffix`` at the end of the line, before a trailing terminator."""
    stripped = line.rstrip()
    trailing = line[len(stripped):]
    if flavour.terminator and stripped.endswith(flavour.terminator):
        return stripped[:-len(flavour.terminator)] + suffix + flavour.terminator + trailing
    return stripped + suffix + trailing


_CLOSERS = {"(": ")", "[": "]", "{": "}"}


def _missing_closers(line: str, openers: str) -> str:
    """Closers for the unclosed ``openers`` on the line, innermost first."""
    stack = []
    for ch in line:
        if ch in _CLOSERS:
            stack.append(ch)
        elif ch in _CLOSERS.values() and stack and _CLOSERS[stack[-1]] == ch:
            stack.pop()
    return "".join(_CLOSERS[ch] for ch in reversed(stack) if ch in openers)


_EMPTY_RHS = re.compile(r"=\s*;")
_DANGLING_ASSIGNMENT = re.compile(r"^\s*(?:(?:const|let|var)\s+)?[\w.\[\]'\"]+\s*=\s*$")
_UNDEFINED_NAME = (
    re.compile(r"name '(\w+)' is not defined", re.IGNORECASE),
    re.compile(r"(\w+) is not defined", re.IGNORECASE),
    re.compile(r"cannot find name '(\w+)'", re.IGNORECASE),
)
_MODULE_NAME = (
    re.compile(r"cannot find module\s+['\"]([^'\"]+)['\"]", re.IGNORECASE),
    re.compile(r"no module named\s+['\"]([^'\"]+)['\"]", re.IGNORECASE),
    re.compile(r"module not found:\s+(?:error:\s+)?(?:can't resolve\s+)?['\"]?([^'\"\s]+)", re.IGNORECASE),
)

# A scenario receives the error text in its original case and returns
# (replacement, strategy) or None
Scenario = Callable[[str, str, Flavour], Optional[Tuple[str, str]]]


def _unbalanced_parens(message: str, line: str, flavour: Flavour) -> Optional[Tuple[str, str]]:
    if not _has_any(message, ("missing )", "expected ')'", "expected )", "')' expected",
                              "expression expected", "was never closed", "unexpected eof",
                              "unexpected end of input")):
        return None
    closers = _missing_closers(line, "([")
    if not closers:
        return None
    return _append_before_terminator(line, closers, flavour), "unbalanced-parentheses"


def _missing_terminator(message: str, line: str, flavour: Flavour) -> Optional[Tuple[str, str]]:
    stripped = line.rstrip()
    if flavour.name == "python":
        header = stripped.lstrip().split(" ")[0].rstrip(":")
        lowered = message.lower()
        if ("expected ':'" in lowered or
                ("invalid syntax" in lowered and header in BLOCK_KEYWORDS)):
            if stripped and not stripped.endswith((":", ",")):
                return stripped + ":" + line[len(stripped):], "missing-colon"
        return None

    if not flavour.terminator:
        return None
    if not _has_any(message, ("expected ';'", "';' expected", "missing ;", "missing semicolon", "semicolon")):
        return None
    if stripped.endswith((";", "{", "}")):
        return None
    return stripped + flavour.terminator + line[len(stripped):], "missing-terminator"


def _unterminated_string(message: str, line: str, flavour: Flavour) -> Optional[Tuple[str, str]]:
    if not _has_any(message, ("unterminated string", "missing \"", "missing '",
                              "eol while scanning string literal", "invalid or unexpected token")):
        return None
    for quote in ('"', "'", "`"):
        if line.count(quote) % 2 == 1:
            return _append_before_terminator(line, quote, flavour), "unterminated-string"
    return None


def _unbalanced_braces(message: str, line: str, flavour: Flavour) -> Optional[Tuple[str, str]]:
    if not _has_any(message, ("expected }", "expected '}'", "'}' expected", "missing }")):
        return None
    closers = _missing_closers(line, "{")
    if not closers:
        return None
    return line.rstrip() + closers, "unbalanced-braces"


def _undefined_identifier(message: str, line: str, flavour: Flavour) -> Optional[Tuple[str, str]]:
    if not _has_any(message, ("is not defined", "cannot find name")):
        return None
    for pattern in _UNDEFINED_NAME:
        match = pattern.search(message)
        if match:
            declaration = f"{_indent(line)}{flavour.declare(match.group(1))} {flavour.comment} autofix: placeholder declaration"
            return f"{declaration}\n{line}", "undefined-identifier"
    return None


def _incomplete_assignment(message: str, line: str, flavour: Flavour) -> Optional[Tuple[str, str]]:
    if not _has_any(message, ("unexpected token", "syntax error", "syntaxerror",
                              "invalid syntax", "expression expected")):
        return None
    return _fill_empty_rhs(line, flavour)


def _unresolved_import(message: str, line: str, flavour: Flavour) -> Optional[Tuple[str, str]]:
    if not _has_any(message, ("cannot find module", "module not found", "no module named")):
        return None
    module = None
    for pattern in _MODULE_NAME:
        match = pattern.search(message)
        if match:
            module = match.group(1)
            break
    if not module:
        return None
    install = "pip install" if _has_any(message, ("no module named",)) else flavour.install_command
    note = (f"{_indent(line)}{flavour.comment} autofix: missing dependency '{module}', "
            f"install it with: {install} {module}")
    return f"{note}\n{line}", "unresolved-import"


def _fill_empty_rhs(line: str, flavour: Flavour) -> Optional[Tuple[str, str]]:
    if _EMPTY_RHS.search(line):
        terminator = flavour.terminator or ";"
        return _EMPTY_RHS.sub(f"= {flavour.null_literal}{terminator}", line, count=1), "empty-assignment"
    if _DANGLING_ASSIGNMENT.match(line):
        stripped = line.rstrip()
        return f"{stripped} {flavour.null_literal}{flavour.terminator}", "empty-assignment"
    return None


HEURISTICS: Tuple[Scenario, ...] = (
    _unbalanced_parens,
    _missing_terminator,
    _unterminated_string,
    _unbalanced_braces,
    _undefined_identifier,
    _incomplete_assignment,
    _unresolved_import,
)


class CorrectionStrategist:
    """
    Produces fixes for the self-healing loop.

    Usage:
        strategist = CorrectionStrategist()
        fix = strategist.generate_fix(analysis, "const x = ;", "broken.js")
        if fix:
            applier.apply("broken.js", fix.search_fragment, fix.replacement_fragment)
    """

    def __init__(self, research_client: Optional[ResearchClient] = None, research_depth: int = 2):
        """
        Initialize the strategist.

        Args:
            research_client: Optional backend consulted before commenting out
            research_depth: Depth passed to the research backend
        """
        self.research_client = research_client
        self.research_depth = research_depth

    def generate_fix(
        self,
        analysis: ErrorAnalysis,
        offending_line: Optional[str],
        target_file: Optional[str] = None
    ) -> Optional[Fix]:
        """
        Propose a fix for the offending line.

        Args:
            analysis: Classification of the failure
            offending_line: Source line the error points at
            target_file: File the line comes from (selects the language)

        Returns:
            Fix, or None for a blank line or a line already commented out
        """
        if offending_line is None or not offending_line.strip():
            return None

        flavour = flavour_for(target_file)
        message = f"{analysis.original_error}\n{analysis.root_cause}"

        for scenario in HEURISTICS:
            outcome = scenario(message, offending_line, flavour)
            if outcome and outcome[0] != offending_line:
                replacement, strategy = outcome
                return Fix(offending_line, replacement, HEURISTIC, strategy)

        return self._fallback(analysis, offending_line, flavour)

    def _fallback(self, analysis: ErrorAnalysis, line: str, flavour: Flavour) -> Optional[Fix]:
        outcome = _fill_empty_rhs(line, flavour)
        if outcome:
            return Fix(line, outcome[0], FALLBACK, outcome[1])

        if COMMENT_OUT_MARKER in line:
            # Already neutralised on an earlier attempt
            return None

        note = self._research(analysis)
        marker = COMMENT_OUT_MARKER
        if note:
            marker = f"{marker} (see {note})"
        replacement = f"{_indent(line)}{flavour.comment} {line.strip()} {flavour.comment} {marker}"
        return Fix(line, replacement, FALLBACK, "comment-out", research_note=note)

    def _research(self, analysis: ErrorAnalysis) -> Optional[str]:
        """Top source from the research backend, or None if unavailable."""
        if self.research_client is None:
            return None

        lines = [l.strip() for l in analysis.original_error.splitlines() if l.strip()]
        error_lines = [l for l in lines if "error" in l.lower()]
        query = (error_lines or lines or [analysis.root_cause])[0]
        try:
            response = self.research_client.research(query[:200], self.research_depth)
        except ResearchError as e:
            logger.warning(f"Research unavailable, continuing without it: {e}")
            return None

        if response.sources:
            return response.sources[0]
        return None
