"""Main CLI for the workflow watcher."""

import asyncio
import json
import signal
import sys
from datetime import UTC, datetime
from pathlib import Path

import click
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from ..analyzer.workflow_analyzer import WorkflowAnalyzer
from ..core.config import CONFIG_FILENAME, load_config
from ..core.task import AnomalyType, CreateTaskInput, Priority, TaskSource, TaskStatus
from ..core.watcher import PID_FILENAME, Watcher, WatcherStartupError
from ..eventlog.models import AgentInfo, WorkflowEvent
from ..eventlog.reader import EventLogReader
from ..eventlog.writer import EventLogWriter
from ..queue.liveness import PidFileLock
from ..queue.task_queue import InvalidTransitionError, TaskNotFoundError, TaskQueue
from ..utils.logging_setup import setup_watcher_logging

console = Console()

DEFAULT_STATE_DIR = ".workflow-watcher"

_HEALTH_STYLES = {"healthy": "green", "warning": "yellow", "critical": "red"}
_PRIORITY_STYLES = {"critical": "red", "high": "yellow", "medium": "cyan", "low": "dim"}


@click.group()
@click.option(
    "--state-dir", "-d",
    default=DEFAULT_STATE_DIR,
    envvar="WORKFLOW_WATCHER_STATE_DIR",
    help="Directory holding the event log, queue and config",
)
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx, state_dir, verbose):
    """Workflow Watcher - supervises automated coding workflows."""
    ctx.ensure_object(dict)
    ctx.obj["state_dir"] = Path(state_dir)
    ctx.obj["log_level"] = "DEBUG" if verbose else "INFO"


def _queue(ctx) -> TaskQueue:
    state_dir = ctx.obj["state_dir"]
    config = load_config(state_dir / CONFIG_FILENAME)
    return TaskQueue(
        state_dir,
        max_queue_size=config.max_queue_size,
        task_expiry_hours=config.task_expiry_hours,
    )


async def _run_watcher(watcher: Watcher, health_check: bool) -> int:
    if not await watcher.start():
        console.print(f"[red]Another watcher is already running (PID {watcher.lock.read_pid()})[/]")
        return 1

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda: asyncio.ensure_future(watcher.stop()))

    console.print(f"[green]✓ Watcher running[/] [dim](state dir {watcher.state_dir})[/]")
    try:
        if health_check:
            result = await watcher.run_health_check()
            style = "green" if result.passed else "red"
            console.print(f"[{style}]Health check: {result.message}[/]")
        await watcher.run_forever()
    finally:
        await watcher.stop()
    return 0


@cli.command()
@click.option("--health-check/--no-health-check", default=True, help="Run the test command once at startup")
@click.option("--project-dir", "-p", type=click.Path(path_type=Path), help="Where to run the test command")
@click.pass_context
def start(ctx, health_check, project_dir):
    """Run the watcher in the foreground."""
    state_dir = ctx.obj["state_dir"]
    setup_watcher_logging(state_dir, ctx.obj["log_level"])

    watcher = Watcher(state_dir, project_dir=project_dir)
    try:
        code = asyncio.run(_run_watcher(watcher, health_check))
    except WatcherStartupError as e:
        console.print(f"[red]Error: {e}[/]")
        code = 2
    sys.exit(code)


@cli.command()
@click.pass_context
def status(ctx):
    """Show watcher, queue and workflow status."""
    state_dir = ctx.obj["state_dir"]
    lock = PidFileLock(state_dir / PID_FILENAME)
    holder = lock.holder()

    console.print("[bold]Workflow Watcher Status[/]")
    if holder:
        console.print(f"Watcher: [green]running[/] (PID {holder})")
    else:
        console.print("Watcher: [dim]not running[/]")

    queue = _queue(ctx)
    table = Table()
    table.add_column("Priority")
    table.add_column("Pending")
    for priority, count in queue.count_by_priority().items():
        style = _PRIORITY_STYLES.get(priority, "")
        table.add_row(f"[{style}]{priority}[/]", str(count))
    console.print(table)
    console.print(f"Total pending: {queue.pending_count()}")

    config = load_config(state_dir / CONFIG_FILENAME)
    entries = EventLogReader(state_dir).read_all()
    analysis = WorkflowAnalyzer(config.analyzer).analyze(entries, datetime.now(UTC))
    style = _HEALTH_STYLES.get(analysis.health, "")
    position = f"{analysis.current_command or '-'}:{analysis.current_phase or '-'}"
    console.print(f"Workflow: [{style}]{analysis.health}[/] at {position} ({len(analysis.issues)} issue(s))")


@cli.command("health-check")
@click.option("--project-dir", "-p", type=click.Path(path_type=Path), help="Where to run the test command")
@click.pass_context
def health_check(ctx, project_dir):
    """Run the test command once and queue failing tests."""
    state_dir = ctx.obj["state_dir"]
    setup_watcher_logging(state_dir, ctx.obj["log_level"], use_file=False)

    async def run() -> int:
        watcher = Watcher(state_dir, project_dir=project_dir)
        if not await watcher.start():
            console.print("[red]A watcher is already running; it checks health at startup[/]")
            return 1
        try:
            result = await watcher.run_health_check()
        finally:
            await watcher.stop()
        if result.passed:
            console.print(f"[green]✓ {result.message}[/]")
            return 0
        console.print(f"[red]✗ {result.message}[/]")
        return 1

    try:
        sys.exit(asyncio.run(run()))
    except WatcherStartupError as e:
        console.print(f"[red]Error: {e}[/]")
        sys.exit(2)


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Print the analysis as JSON")
@click.pass_context
def analyze(ctx, as_json):
    """Analyse the event log once and print the verdict."""
    state_dir = ctx.obj["state_dir"]
    config = load_config(state_dir / CONFIG_FILENAME)
    entries = EventLogReader(state_dir).read_all()
    analysis = WorkflowAnalyzer(config.analyzer).analyze(entries, datetime.now(UTC))

    if as_json:
        click.echo(analysis.model_dump_json(indent=2))
        return

    style = _HEALTH_STYLES.get(analysis.health, "")
    console.print(f"[bold]Health:[/] [{style}]{analysis.health}[/] ({len(entries)} entries)")
    if not analysis.issues:
        console.print("[green]No issues detected[/]")
        return

    table = Table()
    table.add_column("Issue")
    table.add_column("Confidence")
    table.add_column("Message")
    for issue in sorted(analysis.issues, key=lambda i: i.confidence, reverse=True):
        table.add_row(issue.type, f"{issue.confidence:.2f}", issue.message)
    console.print(table)


@cli.command()
@click.argument("cmd")
@click.argument("event", type=click.Choice([e.value for e in WorkflowEvent], case_sensitive=False))
@click.option("--phase", help="Phase within the command (RED, GREEN, ...)")
@click.option("--data", "data_json", help="JSON object with event data")
@click.option("--agent-id", help="Sub-agent that produced the event")
@click.option("--agent-type", help="Sub-agent type")
@click.pass_context
def log(ctx, cmd, event, phase, data_json, agent_id, agent_type):
    """Append one event to the workflow log."""
    data = None
    if data_json:
        try:
            data = json.loads(data_json)
        except json.JSONDecodeError as e:
            raise click.BadParameter(f"not valid JSON: {e}", param_hint="--data")
        if not isinstance(data, dict):
            raise click.BadParameter("must be a JSON object", param_hint="--data")

    agent = AgentInfo(id=agent_id, type=agent_type) if agent_id else None
    writer = EventLogWriter(ctx.obj["state_dir"])
    entry = writer.log(cmd, WorkflowEvent(event.upper()), phase=phase, data=data, agent=agent)
    console.print(f"[dim]{entry.cmd}:{entry.event} logged[/]")


@cli.group()
def queue():
    """Inspect and manage the task queue."""


@queue.command("list")
@click.option("--status", "status_filter", type=click.Choice([s.value for s in TaskStatus]))
@click.pass_context
def queue_list(ctx, status_filter):
    """List queued tasks in priority order."""
    task_queue = _queue(ctx)
    tasks = task_queue.get_tasks(TaskStatus(status_filter) if status_filter else None)
    if not tasks:
        console.print("[dim]Queue is empty[/]")
        return

    table = Table()
    table.add_column("ID")
    table.add_column("Priority")
    table.add_column("Status")
    table.add_column("Anomaly")
    table.add_column("Agent")
    table.add_column("Prompt")
    for task in tasks:
        style = _PRIORITY_STYLES.get(task.priority, "")
        prompt = task.prompt if len(task.prompt) <= 60 else task.prompt[:57] + "..."
        table.add_row(
            task.id, f"[{style}]{task.priority}[/]", task.status,
            task.anomaly_type, task.suggested_agent, prompt,
        )
    console.print(table)


@queue.command("next")
@click.pass_context
def queue_next(ctx):
    """Print the next pending task as JSON."""
    task = _queue(ctx).next_task()
    if task is None:
        console.print("[dim]No pending tasks[/]")
        return
    click.echo(task.model_dump_json(indent=2))


@queue.command("add")
@click.option("--priority", type=click.Choice([p.value for p in Priority]), default=Priority.MEDIUM.value)
@click.option("--anomaly-type", required=True, type=click.Choice([a.value for a in AnomalyType]))
@click.option("--prompt", required=True, help="What the executor should do")
@click.option("--agent", "suggested_agent", default="debugger", help="Suggested agent")
@click.pass_context
def queue_add(ctx, priority, anomaly_type, prompt, suggested_agent):
    """Queue a task by hand."""
    try:
        task_input = CreateTaskInput(
            priority=priority,
            source=TaskSource.MANUAL,
            anomaly_type=anomaly_type,
            prompt=prompt,
            suggested_agent=suggested_agent,
        )
    except ValidationError as e:
        raise click.UsageError(str(e))
    task = _queue(ctx).enqueue(task_input)
    console.print(f"[green]✓ Queued {task.id}[/]")


@queue.command("update")
@click.argument("task_id")
@click.option("--status", "new_status", required=True, type=click.Choice([s.value for s in TaskStatus]))
@click.option("--error", help="Error message for a failed task")
@click.pass_context
def queue_update(ctx, task_id, new_status, error):
    """Move a task to a new status."""
    try:
        task = _queue(ctx).update_task(task_id, status=TaskStatus(new_status), error=error)
    except TaskNotFoundError:
        console.print(f"[red]No task {task_id}[/]")
        sys.exit(1)
    except InvalidTransitionError as e:
        console.print(f"[red]Error: {e}[/]")
        sys.exit(1)
    console.print(f"[green]✓ {task.id} is now {task.status}[/]")


if __name__ == "__main__":
    cli()
