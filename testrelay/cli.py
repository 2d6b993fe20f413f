"""
testrelay CLI - run test processes and reconcile their output.
"""
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional, Tuple

import click
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from testrelay.config import RunMode, RunnerConfig, find_config_file, load_config
from testrelay.exceptions import ConfigError
from testrelay.execution import TestRunExecutor
from testrelay.parsers import OUTPUT_FORMATS, parse_output
from testrelay.reporters import get_reporter_paths
from testrelay.reporting import RecordingSink
from testrelay.types import CanonicalRunResult, OutcomeStatus, TestIdentity

console = Console()

STATUS_STYLES = {
    "passed": "green",
    "failed": "red",
    "skipped": "yellow",
    "pending": "yellow",
    "todo": "yellow",
    "errored": "magenta",
}


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=verbose)],
        force=True,
    )


def _load_runner_config(config: Optional[str]) -> RunnerConfig:
    """Explicit config, else discovered testrelay.yaml, else defaults. Exits 2 on errors."""
    config_path = Path(config) if config else find_config_file()
    if config_path is None:
        return RunnerConfig()
    try:
        return load_config(config_path)
    except ConfigError as e:
        console.print(f"[red]Error loading config:[/red] {e}")
        sys.exit(2)


def load_identities(path: Path) -> List[TestIdentity]:
    """
    Load an identity tree from a YAML or JSON file.

    The file holds either a list of nodes, a single node, or a mapping with
    an "identities" list. Nodes use the keys accepted by TestIdentity.from_dict.

    Raises:
        ConfigError: If the file cannot be read or has the wrong shape
    """
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot read identities from {path}: {e}") from e

    if isinstance(data, dict) and "identities" in data:
        data = data["identities"]
    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list) or not data:
        raise ConfigError(f"Identities file must contain a list of tests: {path}")

    try:
        return [TestIdentity.from_dict(node) for node in data]
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigError(f"Invalid identity in {path}: {e}") from e


def _print_outcomes(sink: RecordingSink) -> None:
    table = Table(title="Test Outcomes")
    table.add_column("Test", style="cyan")
    table.add_column("Status")
    table.add_column("Duration", justify="right", style="dim")
    table.add_column("Message", style="dim")

    for outcome in sink.outcomes:
        status = outcome.status.value
        path = " > ".join([*outcome.identity.ancestor_titles(), outcome.identity.label])
        duration = f"{outcome.duration:.0f}ms" if outcome.duration is not None else ""
        message = (outcome.message or "").splitlines()[0] if outcome.message else ""
        table.add_row(path, f"[{STATUS_STYLES[status]}]{status}[/]", duration, message)

    console.print(table)


def _print_run_result(result: CanonicalRunResult) -> None:
    table = Table(title="Parsed Results")
    table.add_column("File", style="cyan")
    table.add_column("Test")
    table.add_column("Status")
    table.add_column("Duration", justify="right", style="dim")

    for file_result in result.test_results:
        for assertion in file_result.assertion_results:
            status = assertion.status.value
            duration = f"{assertion.duration:.0f}ms" if assertion.duration is not None else ""
            table.add_row(
                file_result.name,
                " > ".join([*assertion.ancestor_titles, assertion.title]),
                f"[{STATUS_STYLES[status]}]{status}[/]",
                duration,
            )

    console.print(table)
    console.print(
        f"[green]{result.num_passed_tests} passed[/green], "
        f"[red]{result.num_failed_tests} failed[/red], "
        f"[yellow]{result.num_pending_tests} pending[/yellow] "
        f"({result.num_total_tests} total)"
    )


@click.group()
@click.version_option(version=None, package_name="testrelay")
def main() -> None:
    """testrelay - Run test processes and reconcile their results."""
    pass


@main.command(context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False})
@click.argument("command")
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
@click.option("--label", "-l", "labels", multiple=True, help="Test label to report (repeatable)")
@click.option("--identities", "-i", "identities_file", type=click.Path(exists=True, dir_okay=False),
              help="YAML/JSON file with the identity tree")
@click.option("--cwd", type=click.Path(exists=True, file_okay=False), help="Working directory for the runner")
@click.option("--format", "output_format", type=click.Choice(OUTPUT_FORMATS), help="Output format to parse")
@click.option("--mode", type=click.Choice([m.value for m in RunMode]), help="Run mode")
@click.option("--max-buffer-mb", type=float, help="Per-stream capture cap in MiB")
@click.option("--pytest-reporter", is_flag=True, help="Load the helper pytest reporter into the runner")
@click.option("--config", type=click.Path(exists=True), help="Path to config file")
@click.option("--json", "json_output", is_flag=True, help="Output results as JSON")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
def run(
    command: str,
    args: Tuple[str, ...],
    labels: Tuple[str, ...],
    identities_file: Optional[str],
    cwd: Optional[str],
    output_format: Optional[str],
    mode: Optional[str],
    max_buffer_mb: Optional[float],
    pytest_reporter: bool,
    config: Optional[str],
    json_output: bool,
    verbose: bool,
) -> None:
    """Run COMMAND [ARGS]... and report an outcome for every requested test."""
    _configure_logging(verbose)
    runner_config = _load_runner_config(config)

    overrides = {}
    if output_format:
        overrides["output_format"] = output_format
    if mode:
        overrides["mode"] = RunMode(mode)
    if max_buffer_mb is not None:
        overrides["max_buffer_mb"] = max_buffer_mb
    if overrides:
        try:
            runner_config = RunnerConfig.model_validate({**runner_config.model_dump(), **overrides})
        except ValidationError as e:
            console.print(f"[red]Invalid option:[/red] {e.errors()[0]['msg']}")
            sys.exit(2)

    identities = [TestIdentity(label) for label in labels]
    if identities_file:
        try:
            identities.extend(load_identities(Path(identities_file)))
        except ConfigError as e:
            console.print(f"[red]Error:[/red] {e}")
            sys.exit(2)
    if not identities:
        console.print("[red]Error:[/red] No tests requested. Use --label or --identities")
        sys.exit(2)

    executor = TestRunExecutor(config=runner_config)
    env = {}
    run_args = list(args)
    if pytest_reporter:
        env.update(executor.reporter_env())
        run_args = ["-p", executor.reporter_paths.pytest_module, *run_args]

    sink = RecordingSink()
    if not json_output:
        console.print(f"[bold cyan]Running[/bold cyan] {command} {' '.join(run_args)}")

    try:
        report = asyncio.run(executor.run(command, run_args, cwd, env, identities, sink))
    except KeyboardInterrupt:
        console.print("\n[yellow]Test run interrupted[/yellow]")
        sys.exit(130)

    if json_output:
        click.echo(json.dumps({
            "report": report.to_dict(),
            "outcomes": [o.to_dict() for o in sink.outcomes],
        }, indent=2))
    else:
        _print_outcomes(sink)
        console.print(
            f"[dim]Mode: {report.mode.value}, parser: {report.parser}, "
            f"exit code: {report.exit_code}, {report.duration:.2f}s[/dim]"
        )

    sys.exit(0 if report.success else 1)


@main.command()
@click.argument("source", type=click.File("r"), default="-")
@click.option("--format", "output_format", type=click.Choice(OUTPUT_FORMATS), default="auto",
              help="Output format to parse")
@click.option("--session", "session_id", help="Only accept framed messages from this session")
@click.option("--json", "json_output", is_flag=True, help="Output canonical results as JSON")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
def parse(source, output_format: str, session_id: Optional[str], json_output: bool, verbose: bool) -> None:
    """Parse saved runner output from SOURCE (default stdin) into canonical results."""
    _configure_logging(verbose)
    result, parser_name = parse_output(source.read(), output_format, session_id)

    if result is None:
        console.print("[yellow]No test results recognized in input[/yellow]")
        sys.exit(1)

    if json_output:
        click.echo(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    else:
        console.print(f"[dim]Parser: {parser_name}[/dim]")
        _print_run_result(result)

    sys.exit(0 if result.success else 1)


@main.command("reporter-path")
@click.option("--config", type=click.Path(exists=True), help="Path to config file")
def reporter_path(config: Optional[str]) -> None:
    """Write the helper reporters (once) and print where they live."""
    runner_config = _load_runner_config(config)
    paths = get_reporter_paths(runner_config.reporter_dir)

    table = Table(title="Helper Reporters")
    table.add_column("Reporter", style="cyan")
    table.add_column("Path", style="green")
    table.add_column("Usage", style="dim")
    table.add_row(
        "pytest",
        str(paths.pytest),
        f"PYTHONPATH={paths.directory} pytest -p {paths.pytest_module}",
    )
    console.print(table)


@main.command()
@click.option("--config", type=click.Path(exists=True), help="Path to config file")
def validate(config: Optional[str]) -> None:
    """Validate the testrelay.yaml configuration."""
    config_path = Path(config) if config else find_config_file()
    if config_path is None:
        console.print("[red]Error:[/red] No testrelay.yaml found")
        sys.exit(2)

    console.print(f"Validating [cyan]{config_path}[/cyan]...")
    try:
        runner_config = load_config(config_path)
    except ConfigError as e:
        console.print(f"[red]Validation failed:[/red] {e}")
        sys.exit(1)

    table = Table(title="Configuration Summary")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Mode", runner_config.mode.value)
    table.add_row("Output format", runner_config.output_format)
    table.add_row("Max buffer", f"{runner_config.max_buffer_mb} MiB")
    table.add_row("Session env var", runner_config.session_env_var)
    table.add_row("Shell", str(runner_config.shell))
    table.add_row("Force color", str(runner_config.force_color))
    table.add_row("Reporter dir", str(runner_config.reporter_dir or "(temp dir)"))
    table.add_row("Pass indicators", ", ".join(runner_config.fallback.pass_indicators))
    table.add_row("Fail indicators", ", ".join(runner_config.fallback.fail_indicators))

    console.print(table)
    console.print("\n[green]Configuration is valid![/green]")


if __name__ == "__main__":
    main()
