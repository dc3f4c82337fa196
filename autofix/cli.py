"""CLI entrypoint for autofix."""

import json
import shlex
from typing import Optional, Tuple

import click

from autofix.config import AutofixConfig, ConfigError
from autofix.classifier import ErrorClassifier
from autofix.logger import HealingLogger
from autofix.loop import SelfHealingLoop, LoopResult, LoopStatus
from autofix.policy import PolicyGate

# Process exit codes
EXIT_SUCCESS = 0
EXIT_EXHAUSTED = 1
EXIT_CONFIG_ERROR = 2
EXIT_REJECTED = 3
EXIT_PATCH_FAILED = 4

STATUS_EXIT_CODES = {
    LoopStatus.SUCCESS: EXIT_SUCCESS,
    LoopStatus.EXHAUSTED: EXIT_EXHAUSTED,
    LoopStatus.REJECTED: EXIT_REJECTED,
    LoopStatus.PATCH_FAILED: EXIT_PATCH_FAILED,
}


def _join_command(parts: Tuple[str, ...]) -> str:
    """A single argument is a free-form command line; several are quoted."""
    if len(parts) == 1:
        return parts[0]
    return " ".join(shlex.quote(p) for p in parts)


def _load_config(config_path: Optional[str]) -> AutofixConfig:
    try:
        if config_path:
            return AutofixConfig.from_file(config_path)
        return AutofixConfig.from_env()
    except (ConfigError, ValueError) as e:
        click.echo(f"Configuration error: {e}", err=True)
        raise SystemExit(EXIT_CONFIG_ERROR)


@click.group()
@click.version_option(package_name="autofix")
def cli():
    """Autofix - run commands and repair the source files they fail on."""
    pass


@cli.command(context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False})
@click.argument("command", nargs=-1, required=True, type=click.UNPROCESSED)
@click.option("--max-attempts", type=click.IntRange(min=1), default=None,
              help="Maximum number of executions (default 3).")
@click.option("--timeout-ms", type=click.IntRange(min=1), default=None,
              help="Per-attempt timeout in milliseconds (default 60000).")
@click.option("--cwd", type=click.Path(exists=True, file_okay=False), default=None,
              help="Directory to run the command in.")
@click.option("--override-policy", is_flag=True, help="Run even if the command violates a critical policy rule.")
@click.option("--research/--no-research", default=None, help="Consult the research backend before commenting out lines.")
@click.option("--rollback-on-failure", is_flag=True, help="Restore patched files if the command never succeeds.")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), default=None,
              help="JSON configuration file.")
@click.option("--log-dir", type=click.Path(file_okay=False), default=None, help="Directory for the changelog.")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON.")
@click.option("-v", "--verbose", is_flag=True, help="Show log output on stderr.")
def run(
    command: Tuple[str, ...],
    max_attempts: Optional[int],
    timeout_ms: Optional[int],
    cwd: Optional[str],
    override_policy: bool,
    research: Optional[bool],
    rollback_on_failure: bool,
    config_path: Optional[str],
    log_dir: Optional[str],
    as_json: bool,
    verbose: bool
):
    """Run COMMAND, correcting and retrying it until it succeeds."""
    config = _load_config(config_path)
    if log_dir:
        config.logging.log_directory = log_dir
    if research is not None:
        config.research.enabled = research
    if rollback_on_failure:
        config.safety.rollback_on_exhaustion = True
    config.logging.verbose = verbose
    config.logging.log_to_console = verbose

    loop = SelfHealingLoop(config)
    command_line = _join_command(command)
    result = loop.run(
        command_line,
        max_attempts=max_attempts,
        timeout_ms=timeout_ms,
        cwd=cwd,
        override_policy=override_policy
    )
    loop.logger.close()

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        _print_result(result, max_attempts or config.retry.max_attempts)

    raise SystemExit(STATUS_EXIT_CODES[result.status])


def _print_result(result: LoopResult, max_attempts: int) -> None:
    """Print a per-attempt trace followed by the outcome."""
    if result.status == LoopStatus.REJECTED:
        click.echo(result.final_output, err=True)
        click.echo("Re-run with --override-policy to execute it anyway.", err=True)
        return

    for attempt in result.attempts:
        execution = attempt.execution
        status = "timed out" if execution.timed_out else f"exit {execution.exit_code}"
        click.echo(f"Attempt {execution.attempt_number}/{max_attempts}: {status} ({execution.duration_ms} ms)")
        if attempt.analysis:
            click.echo(f"  category: {attempt.analysis.category.value} - {attempt.analysis.root_cause}")
        if attempt.fix and attempt.target:
            click.echo(
                f"  fix: {attempt.fix.tier}/{attempt.fix.strategy} at "
                f"{attempt.target.file_path}:{attempt.target.line_number}"
            )
        if attempt.patch and attempt.patch.applied:
            click.echo(f"  patched: {attempt.patch.target_file} (backup: {attempt.patch.backup_path})")
        if attempt.skipped_reason:
            click.echo(f"  skipped: {attempt.skipped_reason}")

    if result.success:
        click.echo(f"Command succeeded after {len(result.attempts)} attempt(s).")
        if result.final_output:
            click.echo(result.final_output.rstrip("\n"))
        return

    if result.status == LoopStatus.PATCH_FAILED:
        click.echo(f"Patch failed: {result.error}", err=True)
    else:
        click.echo(f"Command failed after {len(result.attempts)} attempt(s).", err=True)

    if result.patches:
        click.echo("Files touched:", err=True)
        for patch in result.patches:
            click.echo(f"  {patch.target_file} (backup: {patch.backup_path})", err=True)

    last = result.attempts[-1].analysis if result.attempts else None
    if last:
        click.echo("Suggested next steps:", err=True)
        for step in last.remediation:
            click.echo(f"  - {step}", err=True)
    if result.final_output:
        click.echo(result.final_output.rstrip("\n"), err=True)


@cli.command(context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False})
@click.argument("command", nargs=-1, required=True, type=click.UNPROCESSED)
@click.option("--cwd", default=None, help="Working directory to check.")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), default=None,
              help="JSON configuration file.")
@click.option("--json", "as_json", is_flag=True, help="Print violations as JSON.")
def check(command: Tuple[str, ...], cwd: Optional[str], config_path: Optional[str], as_json: bool):
    """Check COMMAND against the execution policy without running it."""
    config = _load_config(config_path)
    gate = PolicyGate(config.policy)
    violations = gate.validate_command_line(_join_command(command), cwd)
    blocked = gate.is_blocking(violations)

    if as_json:
        click.echo(json.dumps({
            "blocked": blocked,
            "violations": [v.to_dict() for v in violations]
        }, indent=2))
    elif not violations:
        click.echo("No policy violations.")
    else:
        for v in violations:
            click.echo(f"[{v.severity.value}] {v.rule}: {v.message}")
            if v.remediation:
                click.echo(f"  -> {v.remediation}")

    raise SystemExit(EXIT_REJECTED if blocked else EXIT_SUCCESS)


@cli.command()
@click.argument("error_text", required=False)
@click.option("--json", "as_json", is_flag=True, help="Print the analysis as JSON.")
def classify(error_text: Optional[str], as_json: bool):
    """Classify ERROR_TEXT (or stdin when omitted or '-')."""
    if error_text is None or error_text == "-":
        with click.open_file("-", "r") as stream:
            error_text = stream.read()

    analysis = ErrorClassifier().analyze(error_text)
    if as_json:
        click.echo(json.dumps(analysis.to_dict(), indent=2))
        return

    click.echo(f"Category:   {analysis.category.value}")
    click.echo(f"Root cause: {analysis.root_cause}")
    if analysis.suggested_follow_up:
        click.echo(f"Follow-up:  {analysis.suggested_follow_up.value}")
    click.echo("Remediation:")
    for i, step in enumerate(analysis.remediation, 1):
        click.echo(f"  {i}. {step}")


@cli.command()
@click.option("--log-dir", type=click.Path(file_okay=False), default=None, help="Directory holding the changelog.")
@click.option("--json", "as_json", is_flag=True, help="Print statistics as JSON.")
def stats(log_dir: Optional[str], as_json: bool):
    """Show statistics from the healing changelog."""
    config = AutofixConfig.from_env()
    healing_logger = HealingLogger(
        log_directory=log_dir or config.logging.log_directory,
        changelog_file=config.logging.changelog_file,
        log_to_console=False
    )
    statistics = healing_logger.get_statistics()
    healing_logger.close()

    if as_json:
        click.echo(json.dumps(statistics, indent=2))
        return

    for key, value in statistics.items():
        if isinstance(value, float):
            value = f"{value:.1f}"
        click.echo(f"{key}: {value}")


if __name__ == "__main__":
    cli()
