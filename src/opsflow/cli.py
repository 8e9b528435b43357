"""
CLI module - Command line interface for opsflow

Entry point for the `opsflow` command using Typer.
"""

import json
import os
import shlex
import subprocess
from contextlib import contextmanager
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .audit import SecurityAuditLog
from .config import AppConfig, load_config, validate_config
from .constants import CLI_NAME, MAX_VARIABLE_VALUE_LENGTH, VARIABLE_NAME_PATTERN
from .deps import CommandCache, check_commands
from .errors import WorkflowError, WorkflowValidationError
from .history import HistoryStore, StepResult
from .logs import setup_logging
from .runners import RunnerCallbacks, RunnerResult, SequentialRunner, StepExecutor
from .security import Severity, ValidationResult, validate_workflow
from .workflow import TEMPLATES, Workflow, WorkflowStore, build_workflow
from .workflow.store import FORMATS

console = Console()
app = typer.Typer(
    name=CLI_NAME,
    help="opsflow - Declarative operational workflows with validation, rollback and history.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
workflow_app = typer.Typer(
    name="workflow",
    help="Create, validate and run workflows",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
app.add_typer(workflow_app)


def version_callback(value: bool):
    if value:
        console.print(f"{CLI_NAME} version {__version__}")
        raise typer.Exit()


ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", "-c", help="Path to config file", exists=True, dir_okay=False),
]
NameArgument = Annotated[str, typer.Argument(help="Workflow name (file name without extension)")]


@app.callback()
def main(
    ctx: typer.Context,
    version: Annotated[
        bool, typer.Option("--version", "-v", callback=version_callback, is_eager=True, help="Show version")
    ] = False,
    config: ConfigOption = None,
):
    """opsflow - Declarative operational workflows with validation, rollback and history."""
    app_config = load_config(config)
    for problem in validate_config(app_config):
        console.print(f"[yellow]Warning:[/yellow] {escape(problem)}")
    setup_logging(app_config)
    ctx.obj = app_config


def _get_config(ctx: typer.Context) -> AppConfig:
    return ctx.find_object(AppConfig) or load_config()


def _get_store(ctx: typer.Context) -> WorkflowStore:
    return WorkflowStore(_get_config(ctx).paths.resolved_workflows_dir())


def _print_issues(result: ValidationResult, show_warnings: bool = True):
    """Print every validation issue with its location and suggested fix."""
    for issue in result.errors:
        marker = "[red]✗[/red]" if issue.severity is Severity.CRITICAL else "[red]•[/red]"
        console.print(f"  {marker} {escape(str(issue))}")
        if issue.suggestion:
            console.print(f"    [dim]→ {escape(issue.suggestion)}[/dim]")
    if show_warnings:
        for issue in result.warnings:
            console.print(f"  [yellow]![/yellow] {escape(str(issue))}")
            if issue.suggestion:
                console.print(f"    [dim]→ {escape(issue.suggestion)}[/dim]")


@contextmanager
def _handle_errors():
    """Turn engine errors into an error message and exit code 1."""
    try:
        yield
    except WorkflowValidationError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        _print_issues(e.result)
        raise typer.Exit(1) from None
    except WorkflowError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from None


def _parse_vars(values: list[str] | None) -> dict[str, str]:
    """Parse repeated --var KEY=value options."""
    variables: dict[str, str] = {}
    for item in values or []:
        key, sep, value = item.partition("=")
        if not sep:
            raise typer.BadParameter(f"Expected KEY=value, got '{item}'", param_hint="--var")
        if not VARIABLE_NAME_PATTERN.match(key):
            raise typer.BadParameter(f"Invalid variable name '{key}'", param_hint="--var")
        if len(value) > MAX_VARIABLE_VALUE_LENGTH:
            raise typer.BadParameter(
                f"Value for '{key}' exceeds {MAX_VARIABLE_VALUE_LENGTH} characters", param_hint="--var"
            )
        variables[key] = value
    return variables


def _format_duration(ms: int) -> str:
    if ms < 1000:
        return f"{ms}ms"
    return f"{ms / 1000:.1f}s"


# =============================================================================
# Workflow commands
# =============================================================================


@workflow_app.command("list")
def list_workflows(
    ctx: typer.Context,
    as_json: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
):
    """List available workflows."""
    store = _get_store(ctx)
    summaries = store.list_workflows()

    if as_json:
        typer.echo(json.dumps([s.to_dict() for s in summaries], indent=2))
        return

    if not summaries:
        console.print(f"No workflows found in {store.workflows_dir}")
        console.print(f"\nCreate one with [cyan]{CLI_NAME} workflow create <name>[/cyan]")
        return

    table = Table(title="Workflows")
    table.add_column("Name", style="cyan")
    table.add_column("Description")
    table.add_column("Steps", justify="right")
    table.add_column("Modified")

    for summary in summaries:
        if summary.error:
            description = f"[red]{escape(summary.error)}[/red]"
        else:
            description = escape(summary.description)
        table.add_row(summary.name, description, str(summary.steps), summary.modified.strftime("%Y-%m-%d %H:%M"))

    console.print(table)


@workflow_app.command("show")
def show(
    ctx: typer.Context,
    name: NameArgument,
    raw: Annotated[bool, typer.Option("--raw", help="Print the file contents unchanged")] = False,
):
    """Show workflow details."""
    store = _get_store(ctx)

    with _handle_errors():
        if raw:
            path = store.path_for(name)
            typer.echo(path.read_text(encoding="utf-8"), nl=False)
            return
        workflow = store.load(name)

    _print_workflow(name, workflow)


def _print_workflow(name: str, workflow: Workflow):
    console.print(f"\n[bold]{escape(workflow.name)}[/bold] [dim]({name})[/dim]")
    if workflow.description:
        console.print(f"  {escape(workflow.description)}")
    console.print(f"  [dim]Hash: {workflow.integrity_hash}[/dim]")

    if workflow.variables:
        console.print("\n[bold]Variables:[/bold]")
        for key, value in workflow.variables.items():
            console.print(f"  {key} = {escape(value)}")

    for title, steps in (("Steps", workflow.steps), ("Rollback", workflow.rollback)):
        if not steps:
            continue
        table = Table(title=title)
        table.add_column("#", justify="right")
        table.add_column("Name", style="cyan")
        table.add_column("Command")
        table.add_column("Options", style="dim")
        for idx, step in enumerate(steps, 1):
            options = []
            if step.condition is not None:
                options.append(f"if={step.condition}")
            if step.capture:
                options.append(f"capture={step.capture}")
            if step.working_dir:
                options.append(f"cwd={step.working_dir}")
            if step.continue_on_error:
                options.append("continueOnError")
            table.add_row(str(idx), escape(step.name), escape(step.run), escape(", ".join(options)))
        console.print()
        console.print(table)

    if workflow.security_warnings:
        console.print("\n[yellow]Warnings:[/yellow]")
        for warning in workflow.security_warnings:
            console.print(f"  [yellow]![/yellow] {escape(warning)}")


@workflow_app.command("create")
def create(
    ctx: typer.Context,
    name: NameArgument,
    template: Annotated[
        str, typer.Option("--template", "-t", help=f"Template ({', '.join(TEMPLATES)})")
    ] = "standard",
    fmt: Annotated[str, typer.Option("--format", "-f", help="File format (yaml or json)")] = "yaml",
):
    """
    Create a workflow from a template.

    [bold]Examples:[/bold]

        opsflow workflow create deploy

        opsflow workflow create nightly -t maintenance -f json
    """
    if template not in TEMPLATES:
        console.print(f"[red]Error:[/red] Unknown template: {template}")
        console.print(f"Available: {', '.join(TEMPLATES)}")
        raise typer.Exit(1)
    if fmt not in FORMATS:
        console.print(f"[red]Error:[/red] Unknown format: {fmt}")
        console.print(f"Available: {', '.join(FORMATS)}")
        raise typer.Exit(1)

    store = _get_store(ctx)
    with _handle_errors():
        path = store.create(name, template, fmt)

    console.print(f"[green]Created workflow:[/green] {path}")
    console.print(f"Edit it with [cyan]{CLI_NAME} workflow edit {name}[/cyan]")


@workflow_app.command("run")
def run(
    ctx: typer.Context,
    name: NameArgument,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Stream step output and debug logs")] = False,
    dry_run: Annotated[bool, typer.Option("--dry-run", "-n", help="Show commands without running them")] = False,
    var: Annotated[list[str] | None, typer.Option("--var", help="Set a variable (KEY=value, repeatable)")] = None,
    timeout: Annotated[float | None, typer.Option("--timeout", help="Per-step timeout in seconds", min=0.001)] = None,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Run absolute-path commands without asking")] = False,
    check: Annotated[
        bool, typer.Option("--check-commands", help="Warn about commands not found on PATH")
    ] = False,
):
    """
    Run a workflow.

    Steps run in order. On a failing step the workflow's rollback steps run
    and the command exits with code 1.

    [bold]Examples:[/bold]

        opsflow workflow run deploy --var VERSION=1.4.2

        opsflow workflow run deploy --dry-run
    """
    config = _get_config(ctx)
    if verbose:
        setup_logging(config, verbose=True)

    variables = _parse_vars(var)
    store = _get_store(ctx)
    executor = StepExecutor(
        timeout=timeout if timeout is not None else config.execution.step_timeout,
        audit=SecurityAuditLog(config.paths.resolved_audit_log()),
    )
    runner = SequentialRunner(
        store,
        executor=executor,
        dry_run=dry_run,
        verbose=verbose,
        command_cache=CommandCache() if check or config.execution.check_commands else None,
    )

    with _handle_errors():
        result = runner.execute_workflow(name, variables=variables, callbacks=_run_callbacks(dry_run, yes))

    _print_run_summary(result, dry_run)
    if not result.success:
        raise typer.Exit(1)


def _run_callbacks(dry_run: bool, yes: bool) -> RunnerCallbacks:
    def on_workflow_start(workflow: Workflow, total: int):
        mode = " [yellow](dry run)[/yellow]" if dry_run else ""
        console.print(f"\n[bold]Running:[/bold] {escape(workflow.name)}{mode}")
        console.print(f"  Steps: {total}\n")

    def on_step_start(index: int, total: int, step_name: str):
        console.print(f"  [{index + 1}/{total}] {escape(step_name)}...")

    def on_step_skipped(index: int, step_name: str):
        console.print(f"  [dim]SKIP:[/dim] {escape(step_name)} (condition not met)")

    def on_step_complete(index: int, step_result: StepResult):
        duration = _format_duration(step_result.duration_ms)
        if step_result.success:
            console.print(f"  [green]✓[/green] {escape(step_result.step)} ({duration})")
        else:
            code = f" exit code {step_result.exit_code}" if step_result.exit_code is not None else ""
            console.print(f"  [red]✗[/red] {escape(step_result.step)}{code} ({duration})")

    def on_step_error(index: int, step_name: str, message: str):
        console.print(f"    [red]{escape(message)}[/red]")

    def on_command(step_name: str, command: str):
        console.print(f"    [dim]$ {escape(command)}[/dim]")

    def on_dry_run(command: str):
        console.print(f"    [cyan]WOULD RUN:[/cyan] {escape(command)}")

    def on_rollback_start(count: int):
        console.print(f"\n[yellow]Rolling back[/yellow] ({count} steps)")

    def on_rollback_step(index: int, total: int, step_name: str):
        console.print(f"  [{index + 1}/{total}] {escape(step_name)}...")

    def on_rollback_step_failed(step_name: str, message: str):
        console.print(f"  [red]✗[/red] Rollback step {escape(step_name)} failed: {escape(message)}")

    def on_warning(message: str):
        console.print(f"[yellow]Warning:[/yellow] {escape(message)}")

    def confirm_command(command: str) -> bool:
        return typer.confirm(f"Run absolute-path command '{command.split()[0]}'?", default=False)

    return RunnerCallbacks(
        on_workflow_start=on_workflow_start,
        on_step_start=on_step_start,
        on_step_skipped=on_step_skipped,
        on_step_complete=on_step_complete,
        on_step_error=on_step_error,
        on_command=on_command,
        on_dry_run=on_dry_run,
        on_rollback_start=on_rollback_start,
        on_rollback_step=on_rollback_step,
        on_rollback_step_failed=on_rollback_step_failed,
        on_warning=on_warning,
        confirm_command=None if yes else confirm_command,
    )


def _print_run_summary(result: RunnerResult, dry_run: bool):
    console.print()
    duration = _format_duration(result.duration_ms)
    if result.success:
        console.print(
            f"[green]Workflow completed[/green] in {duration} "
            f"({result.steps_executed} executed, {result.steps_skipped} skipped)"
        )
    else:
        code = f" (exit code {result.failed_exit_code})" if result.failed_exit_code is not None else ""
        console.print(f"[red]Workflow failed[/red] at step '{escape(result.failed_step or '')}'{code}")
        if result.rolled_back:
            failures = f", {result.rollback_failures} rollback step(s) failed" if result.rollback_failures else ""
            console.print(f"[yellow]Rollback executed[/yellow]{failures}")
        else:
            console.print("[dim]No rollback executed[/dim]")

    for error in result.errors:
        console.print(f"  [yellow]![/yellow] {escape(error)}")

    if result.history_path:
        console.print(f"[dim]History: {result.history_path}[/dim]")
    if dry_run:
        console.print("\n[dim]Dry run - no commands executed. Remove --dry-run to execute.[/dim]")


@workflow_app.command("edit")
def edit(ctx: typer.Context, name: NameArgument):
    """Open a workflow in $EDITOR (default: vi), then validate it."""
    store = _get_store(ctx)
    with _handle_errors():
        path = store.path_for(name)

    editor = os.environ.get("EDITOR") or "vi"
    try:
        subprocess.run([*shlex.split(editor), str(path)], check=False)
    except OSError as e:
        console.print(f"[red]Error:[/red] Failed to start editor '{editor}': {e}")
        raise typer.Exit(1) from None

    with _handle_errors():
        result = store.check(name)

    if result.valid:
        console.print(f"[green]Workflow '{name}' is valid[/green]")
    else:
        console.print(f"[yellow]Warning:[/yellow] Workflow '{name}' has {len(result.errors)} error(s):")
    _print_issues(result)


@workflow_app.command("delete")
def delete(
    ctx: typer.Context,
    name: NameArgument,
    force: Annotated[bool, typer.Option("--force", "-f", help="Delete without confirmation")] = False,
):
    """Delete a workflow."""
    store = _get_store(ctx)
    with _handle_errors():
        store.path_for(name)
        if not force and not typer.confirm(f"Delete workflow '{name}'?", default=False):
            console.print("Cancelled")
            return
        path = store.delete(name)

    console.print(f"[green]Deleted:[/green] {path}")


@workflow_app.command("history")
def history(
    ctx: typer.Context,
    name: Annotated[str | None, typer.Argument(help="Only show runs of this workflow")] = None,
    limit: Annotated[int, typer.Option("--limit", "-n", help="Maximum number of runs", min=1)] = 10,
):
    """Show recent workflow runs, newest first."""
    store = _get_store(ctx)
    entries = HistoryStore(store.history_dir).entries(workflow=name, limit=limit)

    if not entries:
        console.print("No workflow runs recorded")
        return

    table = Table(title="Workflow History")
    table.add_column("Workflow", style="cyan")
    table.add_column("Started")
    table.add_column("Duration", justify="right")
    table.add_column("Steps", justify="right")
    table.add_column("Result")

    for entry in entries:
        if entry.success:
            status = "[green]success[/green]"
        else:
            status = f"[red]failed[/red] at {escape(entry.failed_step or '?')}"
            if entry.rolled_back:
                status += " [yellow](rolled back)[/yellow]"
        table.add_row(
            entry.workflow,
            entry.start_time.strftime("%Y-%m-%d %H:%M:%S"),
            _format_duration(entry.duration_ms),
            str(entry.steps_executed),
            status,
        )

    console.print(table)


@workflow_app.command("export")
def export(
    ctx: typer.Context,
    name: NameArgument,
    output: Annotated[Path | None, typer.Option("--output", "-o", help="Write to file instead of stdout")] = None,
):
    """Export a validated workflow as YAML."""
    store = _get_store(ctx)
    with _handle_errors():
        text = store.export(name)

    if output is None:
        typer.echo(text, nl=False)
        return

    output.write_text(text, encoding="utf-8")
    console.print(f"[green]Exported:[/green] {output}")


@workflow_app.command("import")
def import_workflow(
    ctx: typer.Context,
    file: Annotated[Path, typer.Argument(help="Workflow file to import (.yaml, .yml or .json)")],
    name: Annotated[str | None, typer.Option("--name", help="Store under this name (default: file name)")] = None,
):
    """Validate a workflow file and import it as YAML."""
    store = _get_store(ctx)
    target = name or file.stem
    with _handle_errors():
        if store.find(target) is not None:
            console.print(f"[yellow]Warning:[/yellow] Overwriting existing workflow '{target}'")
        path = store.import_file(file, name=target)

    console.print(f"[green]Imported:[/green] {path}")


@workflow_app.command("validate")
def validate(
    ctx: typer.Context,
    name: NameArgument,
    as_json: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
    strict: Annotated[bool, typer.Option("--strict", help="Treat warnings as errors")] = False,
    check: Annotated[
        bool, typer.Option("--check-commands", help="Check that step commands exist on PATH")
    ] = False,
):
    """Validate a workflow's structure and command safety."""
    store = _get_store(ctx)

    with _handle_errors():
        path, raw = store.read_raw(name)
        result = validate_workflow(raw)

    commands: dict[str, Path | None] = {}
    if check and result.valid:
        workflow = build_workflow(raw, source=path.name)
        commands = check_commands(workflow, CommandCache())
        for command, found in commands.items():
            if found is None:
                result.warn(
                    f"Command '{command}' was not found on PATH",
                    suggestion="Install it or adjust PATH before running",
                )

    passed = result.valid and not (strict and result.warnings)

    if as_json:
        payload = result.to_dict()
        payload["valid"] = passed
        if check:
            payload["commands"] = {cmd: str(found) if found else None for cmd, found in commands.items()}
        typer.echo(json.dumps(payload, indent=2))
    else:
        if passed:
            console.print(f"[green]✓ Workflow '{name}' is valid[/green]")
        else:
            console.print(f"[red]✗ Workflow '{name}' is invalid[/red]")
        _print_issues(result)
        if check and commands:
            console.print("\n[bold]Commands:[/bold]")
            for command, found in commands.items():
                mark = "[green]✓[/green]" if found else "[red]✗[/red]"
                console.print(f"  {mark} {command} [dim]{found or 'not found'}[/dim]")

    if not passed:
        raise typer.Exit(1)


@workflow_app.command("validate-all")
def validate_all(ctx: typer.Context):
    """Validate every workflow in the workflows directory."""
    store = _get_store(ctx)
    summaries = store.list_workflows()

    if not summaries:
        console.print(f"No workflows found in {store.workflows_dir}")
        return

    table = Table(title="Workflow Validation")
    table.add_column("Name", style="cyan")
    table.add_column("Status")
    table.add_column("Issues")

    failed = 0
    for summary in summaries:
        if summary.error:
            failed += 1
            table.add_row(summary.name, "[red]invalid[/red]", escape(summary.error))
            continue
        try:
            result = store.check(summary.name)
        except WorkflowError as e:
            failed += 1
            table.add_row(summary.name, "[red]invalid[/red]", escape(str(e)))
            continue

        if result.valid:
            issues = f"{len(result.warnings)} warning(s)" if result.warnings else ""
            table.add_row(summary.name, "[green]valid[/green]", issues)
        else:
            failed += 1
            table.add_row(summary.name, "[red]invalid[/red]", escape("; ".join(str(i) for i in result.errors)))

    console.print(table)
    console.print(f"\n{len(summaries) - failed}/{len(summaries)} workflows valid")
    if failed:
        raise typer.Exit(1)


def main_cli():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main_cli()
