"""Command line interface for inspecting and running portalflow workflows."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Optional

import typer

from portalflow import UnknownRun, WorkflowEngine, get_repository
from portalflow.cli_utils.loader import load_registry, parse_payload
from portalflow.config import load_config
from portalflow.errors import InvalidWorkflowInput, UnknownWorkflowType
from portalflow.persistence import RunRecord, RunStatus

app = typer.Typer(help="CLI for portalflow workflows")

# Command groups
runs_app = typer.Typer(help="Commands for inspecting runs")
workflow_app = typer.Typer(help="Commands for registered workflows")

app.add_typer(runs_app, name="runs")
app.add_typer(workflow_app, name="workflow")


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(
        None, help="Logging level; defaults to the configured level"
    ),
) -> None:
    """portalflow CLI entry point."""
    config = load_config()
    logging.basicConfig(
        level=(log_level or config.logging.level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@runs_app.command("list")
def runs_list() -> None:
    """
    List all runs with their workflow type and status.

    Example:
        portalflow runs list
        # Output: 0b6c...-41f2    api_registration    succeeded
    """
    repo = get_repository()
    runs = asyncio.run(repo.list_runs())
    if not runs:
        typer.echo("No runs found")
        return
    for run in runs:
        typer.echo(f"{run.run_id}\t{run.workflow_type}\t{run.status.value}")


@runs_app.command("show")
def runs_show(run_id: str) -> None:
    """
    Show a run's status, payload and attempt history.

    Args:
        run_id: Run to inspect (get from 'runs list')

    Example:
        portalflow runs show 0b6c...-41f2
        # Output: Run 0b6c...-41f2: failed
        #         Workflow: api_registration
        #         Error: spec rejected (step validate_spec)
        #         - validate_spec #1: fatal-failure spec rejected
    """
    repo = get_repository()

    async def _load():
        return await repo.get_run(run_id), await repo.list_attempts(run_id)

    try:
        run, attempts = asyncio.run(_load())
    except UnknownRun:
        typer.echo("Run not found")
        raise typer.Exit(code=1)

    typer.echo(f"Run {run.run_id}: {run.status.value}")
    typer.echo(f"Workflow: {run.workflow_type}")
    if run.payload is not None:
        typer.echo(f"Payload: {json.dumps(run.payload)}")
    if run.error:
        typer.echo(f"Error: {run.error} (step {run.failed_step})")
    for attempt in attempts:
        line = f"- {attempt.step_name} #{attempt.attempt}: {attempt.outcome.value}"
        if attempt.error:
            line += f" {attempt.error}"
        typer.echo(line)


@workflow_app.command("list")
def workflow_list(target: str) -> None:
    """
    List workflows registered on a StepRegistry.

    Args:
        target: 'module:attribute' naming a StepRegistry (or a factory returning one)

    Example:
        portalflow workflow list guides.api_registration:registry
        # Output: api_registration: validate_spec -> store_metadata -> generate_docs -> notify_team
    """
    try:
        registry = load_registry(target)
    except (ImportError, ValueError) as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)

    if not len(registry):
        typer.echo("No workflows registered.")
        return
    for workflow_type in registry.workflow_types():
        definition = registry.get(workflow_type)
        typer.echo(f"{workflow_type}: {' -> '.join(definition.step_names)}")


@workflow_app.command("start")
def workflow_start(
    target: str,
    workflow_type: str,
    input: Optional[str] = typer.Option(None, "--input", help="JSON workflow input"),
) -> None:
    """
    Run a workflow to completion and print its final status.

    The run is recorded in the configured store, so it can be inspected
    afterwards with 'runs show'. Exits with code 1 unless the run succeeds.

    Example:
        portalflow workflow start guides.api_registration:registry api_registration \\
            --input '{"name": "billing", "version": "1.2.0", "owner": "payments"}'
        # Output: Run 0b6c...-41f2: succeeded
    """
    try:
        payload = parse_payload(input)
    except json.JSONDecodeError as exc:
        raise typer.BadParameter(f"--input is not valid JSON: {exc}")

    try:
        registry = load_registry(target)
    except (ImportError, ValueError) as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)

    config = load_config()

    async def _run() -> RunRecord:
        engine = WorkflowEngine.from_config(
            config, registry=registry, store=get_repository()
        )
        async with engine:
            run_id = await engine.start(workflow_type, payload)
            return await engine.wait(run_id)

    try:
        record = asyncio.run(_run())
    except (UnknownWorkflowType, InvalidWorkflowInput) as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)

    typer.echo(f"Run {record.run_id}: {record.status.value}")
    if record.error:
        typer.echo(f"Error: {record.error} (step {record.failed_step})")
    if record.status is not RunStatus.SUCCEEDED:
        raise typer.Exit(code=1)


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
