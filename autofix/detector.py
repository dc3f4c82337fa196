"""
Target detection for Autofix.

Works out which source file and line a failed command is complaining
about, using location markers in the error text (Python tracebacks,
``path:line:col``, ``path(line,col)``, ``script.sh: line N:``) and source
files named on the command line.
"""

import os
import re
import shlex
from dataclasses import dataclass
from typing import List, Optional, Tuple


SOURCE_EXTENSIONS = {
    ".py", ".js", ".mjs", ".cjs", ".jsx", ".ts", ".tsx",
    ".sh", ".bash", ".rb", ".pl", ".php", ".lua",
}

# (pattern, path group, line group, column group or None)
LOCATION_MARKERS: Tuple[Tuple[re.Pattern, int, int, Optional[int]], ...] = (
    (re.compile(r'File "([^"]+)", line (\d+)'), 1, 2, None),
    (re.compile(r"([^\s:()'\"]+\.[A-Za-z0-9]+)\((\d+),(\d+)\)"), 1, 2, 3),
    (re.compile(r"([^\s:()'\"]+\.[A-Za-z0-9]+):(\d+)(?::(\d+))?"), 1, 2, 3),
    (re.compile(r"([^\s:'\"]+): line (\d+):"), 1, 2, None),
)

# Directories holding installed dependencies; frames inside them are never patched
THIRD_PARTY_DIRS = ("site-packages", "dist-packages", "node_modules")

_GENERIC_LINE_COL = re.compile(r":(\d+):(\d+)")
_GENERIC_LINE = re.compile(r"line (\d+)", re.IGNORECASE)


@dataclass
class TargetLocation:
    """Source location a correction should be applied to."""
    file_path: str
    line_number: int = 1
    column: Optional[int] = None


def _resolve(path: str, cwd: Optional[str]) -> str:
    if not os.path.isabs(path) and cwd:
        path = os.path.join(cwd, path)
    return os.path.abspath(path)


def is_third_party(path: str) -> bool:
    """True if ``path`` lies inside an installed-dependency directory."""
    parts = os.path.normpath(path).split(os.sep)
    return any(directory in parts for directory in THIRD_PARTY_DIRS)


def _is_under(path: str, directory: str) -> bool:
    directory = os.path.abspath(directory)
    return os.path.commonpath([path, directory]) == directory


def command_source_files(command: str, cwd: Optional[str] = None) -> List[str]:
    """Existing source files named on the command line, in order."""
    try:
        tokens = shlex.split(command)
    except ValueError:
        tokens = command.split()

    files = []
    for token in tokens:
        candidate = token.split("=")[-1]
        if os.path.splitext(candidate)[1].lower() not in SOURCE_EXTENSIONS:
            continue
        resolved = _resolve(candidate, cwd)
        if os.path.isfile(resolved) and resolved not in files:
            files.append(resolved)
    return files


def error_locations(error_text: str, cwd: Optional[str] = None) -> List[TargetLocation]:
    """Location markers in ``error_text`` that point at existing files."""
    found: List[Tuple[int, TargetLocation]] = []
    for pattern, path_group, line_group, col_group in LOCATION_MARKERS:
        for match in pattern.finditer(error_text):
            resolved = _resolve(match.group(path_group), cwd)
            if not os.path.isfile(resolved):
                continue
            column = match.group(col_group) if col_group else None
            found.append((match.start(), TargetLocation(
                file_path=resolved,
                line_number=max(int(match.group(line_group)), 1),
                column=int(column) if column else None
            )))
    # Markers are reported in the order they appear in the output
    found.sort(key=lambda item: item[0])
    return [location for _, location in found]


def locate_target(command: str, error_text: str, cwd: Optional[str] = None) -> Optional[TargetLocation]:
    """
    Identify the file and line to correct after a failed execution.

    Markers in the error text win, except those inside installed
    dependencies (site-packages, dist-packages, node_modules). The last
    marker that points at a file named on the command line is preferred,
    then the last marker under the working directory, then the last
    remaining marker (the innermost frame). Without markers, the first
    source file on the command line is used with a line number pulled from
    the error text, defaulting to 1.

    Args:
        command: The command that failed
        error_text: Its stderr (or stdout)
        cwd: Directory the command ran in

    Returns:
        TargetLocation, or None if no existing file could be identified
    """
    command_files = command_source_files(command, cwd)
    locations = [location for location in error_locations(error_text or "", cwd)
                 if not is_third_party(location.file_path)]

    if locations:
        for location in reversed(locations):
            if location.file_path in command_files:
                return location
        project_root = cwd or os.getcwd()
        for location in reversed(locations):
            if _is_under(location.file_path, project_root):
                return location
        return locations[-1]

    if not command_files:
        return None

    line_number, column = 1, None
    text = error_text or ""
    match = _GENERIC_LINE_COL.search(text)
    if match:
        line_number, column = int(match.group(1)), int(match.group(2))
    else:
        match = _GENERIC_LINE.search(text)
        if match:
            line_number = int(match.group(1))

    return TargetLocation(
        file_path=command_files[0],
        line_number=max(line_number, 1),
        column=column
    )


def line_at(content: str, line_number: int) -> Optional[str]:
    """Return line ``line_number`` (1-based) of ``content`` without its newline."""
    lines = content.splitlines()
    if line_number < 1 or line_number > len(lines):
        return None
    return lines[line_number - 1]
