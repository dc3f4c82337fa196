"""
Autofix: Self-Correcting Command Execution
==========================================

Runs a shell command and, when it fails, classifies the error, patches the
offending source line and retries within a fixed attempt budget. Commands
matching dangerous operation patterns are refused before they run.

Components:
-----------
- PolicyGate: Blocks destructive commands, unlisted images and sensitive paths
- CommandExecutor: Runs commands with a timeout and captures output
- ErrorClassifier: Maps raw error text to a category, root cause and remediation
- CorrectionStrategist: Proposes a search/replace fix (heuristics, then fallback)
- PatchApplier: Applies a fix atomically after writing a verified backup
- HealingLogger: Maintains an audit trail of all healing actions
- SelfHealingLoop: Coordinates the execute/classify/correct/retry cycle

Usage:
------
    from autofix import AutofixConfig, SelfHealingLoop

    loop = SelfHealingLoop(AutofixConfig())
    result = loop.run("node broken.js", max_attempts=3)

    if not result.success:
        for attempt in result.attempts:
            print(attempt.execution.stderr)

Version: 1.0.0
"""

from .config import AutofixConfig
from .logger import HealingLogger
from .policy import PolicyGate
from .executor import CommandExecutor
from .classifier import ErrorClassifier
from .strategist import CorrectionStrategist
from .patcher import PatchApplier
from .loop import SelfHealingLoop, LoopResult

__version__ = "1.0.0"
__all__ = [
    "AutofixConfig",
    "HealingLogger",
    "PolicyGate",
    "CommandExecutor",
    "ErrorClassifier",
    "CorrectionStrategist",
    "PatchApplier",
    "SelfHealingLoop",
    "LoopResult",
]
