"""CLI entry point for stallwatch.

Commands:
- stallwatch init: Write a default .stallwatch/config.yaml
- stallwatch run: Start a Codex session under stall supervision
- stallwatch reply: Continue a Codex thread under stall supervision
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from stallwatch import __version__
from stallwatch.agent.codex import CodexAgent
from stallwatch.core.config import (
    DEFAULT_CONFIG_YAML,
    ApprovalPolicy,
    ConfigError,
    ConfigLoader,
    ExecutionLevel,
    ExecutionOptions,
    SandboxMode,
    SupervisorConfig,
)
from stallwatch.core.engine import SessionSupervisor
from stallwatch.core.models import Report, ResultLevel

console = Console()

LEVEL_CHOICES = [level.value for level in ExecutionLevel]

# Exit status when a stall could not be recovered and a human must decide
EXIT_NEEDS_INPUT = 2


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


def _load_config(
    stall_timeout_minutes: float | None,
    max_recovery_attempts: int | None,
    level: str | None,
) -> SupervisorConfig:
    config = ConfigLoader().load()
    return config.with_overrides(
        stall_timeout_minutes=stall_timeout_minutes,
        max_recovery_attempts=max_recovery_attempts,
        level=level,
    )


def _print_report(report: Report, as_json: bool) -> None:
    if as_json:
        click.echo(json.dumps(report.model_dump(mode="json"), indent=2))
        return

    colors = {
        ResultLevel.PASS: "green",
        ResultLevel.FAIL: "red",
        ResultLevel.ERROR: "red",
        ResultLevel.TIMEOUT: "yellow",
    }
    color = colors[report.result]
    console.print(Panel(f"[{color}]{report.result.value}[/{color}]", title="Result"))

    if report.thread_id:
        console.print(f"[bold]Thread:[/bold] {report.thread_id}")
    if report.error:
        console.print(f"[red]Error:[/red] {report.error}")
    if report.content:
        console.print(Panel(report.content, title="Response"))

    table = Table(title="Stats")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Items", str(report.stats.total_items))
    table.add_row("Commands", str(report.stats.commands))
    table.add_row("File changes", str(report.stats.file_changes))
    table.add_row("Tool calls", str(report.stats.tool_calls))
    if report.stats.usage:
        usage = report.stats.usage
        table.add_row("Tokens", f"{usage.input_tokens} in / {usage.output_tokens} out")
    console.print(table)

    if report.files_modified:
        console.print("\n[bold]Files modified:[/bold]")
        for change in report.files_modified:
            console.print(f"  - {change.describe()}")

    if report.recovery:
        recovery = report.recovery
        state = "recovered" if recovery.recovered else "not recovered"
        console.print(
            f"\n[bold]Recovery:[/bold] {recovery.attempts} attempt(s), {state}"
        )
        if recovery.last_error and not recovery.recovered:
            console.print(f"  [dim]Last error: {recovery.last_error}[/dim]")

    if report.progress_log:
        console.print(f"\n[dim]Progress log: {report.progress_log}[/dim]")
    if report.needs_user_input:
        console.print(
            "\n[yellow]Session stalled and could not be recovered. "
            "Manual intervention required.[/yellow]"
        )


def _exit_code(report: Report) -> int:
    if report.needs_user_input:
        return EXIT_NEEDS_INPUT
    return 0 if report.result == ResultLevel.PASS else 1


async def _run_with_agent(
    config: SupervisorConfig,
    thread_id: str | None,
    prompt: str,
    options: ExecutionOptions | None,
) -> Report:
    """Supervise one session; the agent's leftover processes die with it."""
    async with CodexAgent(config.codex_command) as agent:
        supervisor = SessionSupervisor(agent, config)
        if thread_id is None:
            return await supervisor.run(prompt, options)
        return await supervisor.reply(thread_id, prompt)


def _common_options(func):
    func = click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")(func)
    func = click.option("--json", "as_json", is_flag=True, help="Print the report as JSON")(func)
    func = click.option(
        "--max-recovery-attempts",
        type=click.IntRange(min=0),
        default=None,
        help="Max auto-recovery attempts when stalled (default: 2)",
    )(func)
    func = click.option(
        "--stall-timeout-minutes",
        type=click.FloatRange(min=0, min_open=True),
        default=None,
        help="Minutes of inactivity before detecting a stall (default: 5)",
    )(func)
    func = click.option(
        "--level",
        type=click.Choice(LEVEL_CHOICES),
        default=None,
        help="Execution level: L1=Executor, L2=Builder, L3=Autonomous, L4=Specialist",
    )(func)
    return func


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """stallwatch - stall detection and auto-recovery for Codex sessions."""
    pass


@main.command()
def init() -> None:
    """Write a default .stallwatch/config.yaml."""
    config_path = Path(".stallwatch/config.yaml")
    if config_path.exists():
        console.print("[yellow]Project already initialized[/yellow]")
        return

    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(DEFAULT_CONFIG_YAML)
    console.print(f"[green]Project initialized![/green] Config written to {config_path}")


@main.command()
@click.argument("prompt")
@click.option("--cwd", help="Working directory for the session")
@click.option("--model", help="Optional model override")
@click.option(
    "--sandbox-mode",
    type=click.Choice([m.value for m in SandboxMode]),
    help="Sandbox mode for command execution",
)
@click.option(
    "--approval-policy",
    type=click.Choice([p.value for p in ApprovalPolicy]),
    help="Approval policy for commands",
)
@click.option("--skip-git-repo-check", is_flag=True, help="Allow running outside a git repo")
@_common_options
def run(
    prompt: str,
    cwd: str | None,
    model: str | None,
    sandbox_mode: str | None,
    approval_policy: str | None,
    skip_git_repo_check: bool,
    level: str | None,
    stall_timeout_minutes: float | None,
    max_recovery_attempts: int | None,
    as_json: bool,
    verbose: bool,
) -> None:
    """Run a Codex session with stall detection and auto-recovery.

    PROMPT is the task to send to Codex.

    Example:
        stallwatch run "Add input validation to the signup form" --cwd ./app
    """
    _configure_logging(verbose)
    try:
        config = _load_config(stall_timeout_minutes, max_recovery_attempts, level)
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    options = ExecutionOptions(
        working_directory=cwd,
        model=model,
        sandbox_mode=SandboxMode(sandbox_mode) if sandbox_mode else None,
        approval_policy=ApprovalPolicy(approval_policy) if approval_policy else None,
        skip_git_repo_check=skip_git_repo_check,
    )
    if not as_json:
        console.print(f"\n[bold]Running Codex:[/bold] {prompt}")
        console.print(
            f"[dim]Stall timeout: {config.stall_timeout_minutes:g} min, "
            f"max recovery: {config.max_recovery_attempts}[/dim]\n"
        )

    report = asyncio.run(_run_with_agent(config, None, prompt, options))
    _print_report(report, as_json)
    sys.exit(_exit_code(report))


@main.command()
@click.argument("thread_id")
@click.argument("prompt")
@_common_options
def reply(
    thread_id: str,
    prompt: str,
    level: str | None,
    stall_timeout_minutes: float | None,
    max_recovery_attempts: int | None,
    as_json: bool,
    verbose: bool,
) -> None:
    """Continue a Codex thread with stall detection and auto-recovery.

    THREAD_ID is the thread to continue; PROMPT is the next user prompt.

    Example:
        stallwatch reply 0199a3f2-... "Now add tests for it"
    """
    _configure_logging(verbose)
    try:
        config = _load_config(stall_timeout_minutes, max_recovery_attempts, level)
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    if not as_json:
        console.print(f"\n[bold]Continuing thread:[/bold] {thread_id}")
        console.print(f"[bold]Prompt:[/bold] {prompt}\n")

    report = asyncio.run(_run_with_agent(config, thread_id, prompt, None))
    _print_report(report, as_json)
    sys.exit(_exit_code(report))


if __name__ == "__main__":
    main()
