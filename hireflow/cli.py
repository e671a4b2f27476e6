"""Command line interface for hireflow workers and operations."""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import typer
import yaml
from pydantic import ValidationError as PydanticValidationError

from hireflow import (
    ActionQueueDispatcher,
    EventBus,
    WorkflowInstanceManager,
    build_processors,
    get_job_store,
    get_repository,
)
from hireflow.config import HireflowConfig, load_config
from hireflow.contracts import InstanceStatus
from hireflow.directory import InMemoryDirectory, load_definitions, load_directory
from hireflow.errors import ConfigurationError, DefinitionNotFoundError
from hireflow.services import build_http_services

app = typer.Typer(help="CLI for hireflow workflows and action queues")

# Command groups
queues_app = typer.Typer(help="Commands for operating the action queues")
instance_app = typer.Typer(help="Commands for inspecting workflow instances")
definition_app = typer.Typer(help="Commands for workflow definitions")

app.add_typer(queues_app, name="queues")
app.add_typer(instance_app, name="instance")
app.add_typer(definition_app, name="definition")


@app.callback()
def main() -> None:
    """Hireflow CLI entry point."""
    pass


def _configure(config: Optional[HireflowConfig] = None) -> HireflowConfig:
    config = config or load_config()
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return config


def _with_dispatcher(
    operation: Callable[[ActionQueueDispatcher], Awaitable[Any]],
) -> Any:
    config = _configure()
    dispatcher = ActionQueueDispatcher(get_job_store(config=config), config.queue)

    async def run() -> Any:
        try:
            return await operation(dispatcher)
        finally:
            await dispatcher.shutdown()

    return asyncio.run(run())


@app.command("worker")
def worker(
    directory: Optional[Path] = typer.Option(
        None, help="YAML file with workflows, candidates, jobs, companies and employees"
    ),
    lifespan: Optional[float] = None,
) -> None:
    """
    Run the action queue workers.

    Registers every processor against the configured job store and runs the
    worker pools until stopped or until ``lifespan`` seconds elapse. Missing
    service credentials abort startup.

    Example:
        hireflow worker --directory ./records.yaml
        hireflow worker --lifespan 300
    """
    config = _configure()
    records = load_directory(directory) if directory else InMemoryDirectory()
    try:
        services = build_http_services(config.services, records)
    except ConfigurationError as exc:
        typer.secho(f"Configuration error: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    dispatcher = ActionQueueDispatcher(get_job_store(config=config), config.queue)
    build_processors(dispatcher, services)
    typer.echo(f"Starting workers for queues: {', '.join(config.queue.queues)}")

    async def run() -> None:
        try:
            await dispatcher.run(lifespan=lifespan)
        finally:
            await services.aclose()

    asyncio.run(run())


@queues_app.command("stats")
def queues_stats() -> None:
    """Show job counts by state for every queue."""
    stats = _with_dispatcher(lambda d: d.get_queue_stats())
    for queue, counts in stats.items():
        summary = " ".join(f"{state}={count}" for state, count in counts.items())
        typer.echo(f"{queue}: {summary}")


@queues_app.command("cleanup")
def queues_cleanup() -> None:
    """Purge completed jobs past 24h and failed jobs past 7 days."""
    removed = _with_dispatcher(lambda d: d.cleanup_queues())
    for queue, counts in removed.items():
        typer.echo(
            f"{queue}: removed {counts['completed']} completed, {counts['failed']} failed"
        )


@queues_app.command("pause")
def queues_pause() -> None:
    """Stop workers from dequeuing; queued jobs are kept."""
    _with_dispatcher(lambda d: d.pause_queues())
    typer.echo("Queues paused")


@queues_app.command("resume")
def queues_resume() -> None:
    """Let workers dequeue again."""
    _with_dispatcher(lambda d: d.resume_queues())
    typer.echo("Queues resumed")


@instance_app.command("list")
def instance_list(
    status: Optional[InstanceStatus] = typer.Option(None, help="Only show this status"),
) -> None:
    """
    List workflow instances with their status and current stage.

    Example:
        hireflow instance list --status active
        # Output: 3f2a...    cand-1    job-1    active    screening
    """
    repo = get_repository()
    instances = asyncio.run(repo.list_instances(status))
    if not instances:
        typer.echo("No workflow instances found")
        return
    for inst in instances:
        typer.echo(
            f"{inst.instance_id}\t{inst.candidate_id}\t{inst.job_id}\t"
            f"{inst.status.value}\t{inst.current_stage_id}"
        )


@instance_app.command("show")
def instance_show(candidate_id: str, job_id: str) -> None:
    """Show an instance and its stage history."""
    repo = get_repository()
    inst = asyncio.run(repo.find_instance(candidate_id, job_id))
    if inst is None:
        typer.echo("Workflow instance not found")
        raise typer.Exit(code=1)
    typer.echo(
        f"Instance {inst.instance_id}: {inst.status.value} "
        f"(workflow {inst.workflow_id}, stage {inst.current_stage_id})"
    )
    if inst.metadata:
        typer.echo(f"Metadata: {inst.metadata}")
    for entry in inst.history:
        exited = entry.exited_at.isoformat() if entry.exited_at else "open"
        outcome = f" {entry.outcome.value}" if entry.outcome else ""
        typer.echo(f"- {entry.stage_id}: {entry.entered_at.isoformat()} -> {exited}{outcome}")


@instance_app.command("stats")
def instance_stats(
    workflow_id: str,
    directory: Path = typer.Option(..., help="YAML file holding the workflow definition"),
    stalled_hours: Optional[float] = typer.Option(
        None, help="Report instances stuck in one stage for longer than this"
    ),
) -> None:
    """
    Show execution counts, stage durations and conversion for a workflow.

    Example:
        hireflow instance stats eng --directory ./records.yaml --stalled-hours 72
    """
    manager = WorkflowInstanceManager(get_repository(), load_directory(directory), EventBus())
    stalled_after = timedelta(hours=stalled_hours) if stalled_hours is not None else None
    try:
        stats = asyncio.run(manager.get_workflow_analytics(workflow_id, stalled_after))
    except DefinitionNotFoundError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)

    typer.echo(
        f"{workflow_id}: total={stats.total_executions} active={stats.active_executions} "
        f"paused={stats.paused_executions} completed={stats.completed_executions} "
        f"rejected={stats.rejected_executions}"
    )
    if stats.average_completion_ms is not None:
        typer.echo(f"Average completion: {stats.average_completion_ms / 3600000:.1f}h")
    for stage_id, stage in stats.stage_analytics.items():
        average = (
            f"{stage.average_duration_ms / 3600000:.1f}h"
            if stage.average_duration_ms is not None
            else "-"
        )
        typer.echo(f"- {stage_id}: entered={stage.entered} exited={stage.exited} avg={average}")
    for transition, rate in stats.conversion_rates.items():
        typer.echo(f"  {transition}: {rate:.0%}")
    for instance_id in stats.stalled:
        typer.echo(f"Stalled: {instance_id}")


@definition_app.command("validate")
def definition_validate(path: Path) -> None:
    """Check that a YAML file holds valid workflow definitions."""
    try:
        definitions = load_definitions(path)
    except FileNotFoundError:
        typer.secho("Specified path does not exist", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    except (yaml.YAMLError, PydanticValidationError) as exc:
        typer.secho(f"Invalid workflow definitions: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    if not definitions:
        typer.echo("No workflow definitions found.")
        return
    for definition in definitions:
        entry = definition.entry_stage()
        typer.echo(
            f"{definition.workflow_id} v{definition.version}: "
            f"{len(definition.stages)} stage(s), entry "
            f"{entry.stage_id if entry else '(none)'}"
        )


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
