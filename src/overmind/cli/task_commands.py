"""Task queue commands."""

import typer
from rich.table import Table

from overmind.cli.utils import console, get_services, parse_uuid, resolve_agent_id, run_async
from overmind.domain.models import TaskSource, TaskStatus

task_app = typer.Typer(help="Task queue management", no_args_is_help=True)


@task_app.command("enqueue")
def enqueue(
    agent_id: str = typer.Argument(..., help="Agent ID or prefix"),
    text: str = typer.Argument(..., help="Task text"),
    source: TaskSource = typer.Option(TaskSource.USER, help="Task source"),
) -> None:
    """Queue a task for an agent.

    Examples:
        overmind task enqueue 3f2a "Find AAPL price"
        overmind task enqueue 3f2a "Rebuild the weekly digest" --source system
    """

    async def _enqueue() -> None:
        services = await get_services()
        resolved = await resolve_agent_id(agent_id, services)
        task = await services["task_queue_service"].enqueue(resolved, text, source)
        console.print(f"[green]✓[/green] Task queued: [cyan]{task.id}[/cyan]")

    run_async(_enqueue())


@task_app.command("list")
def list_tasks(
    agent_id: str = typer.Argument(..., help="Agent ID or prefix"),
    status: TaskStatus = typer.Option(TaskStatus.PENDING, help="Task status to list"),
    limit: int = typer.Option(50, help="Maximum number of tasks"),
) -> None:
    """List an agent's pending tasks (FIFO order) or completed tasks (newest first)."""

    async def _list() -> None:
        services = await get_services()
        resolved = await resolve_agent_id(agent_id, services)
        queue = services["task_queue_service"]
        if status == TaskStatus.PENDING:
            tasks = await queue.get_pending_tasks(resolved, limit)
        else:
            tasks = await queue.get_completed_tasks(resolved, limit)

        table = Table(title=f"{status.value.capitalize()} tasks")
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Task", style="magenta")
        table.add_column("Source", style="green")
        table.add_column("State", style="yellow")
        table.add_column("Created", style="blue")

        for task in tasks:
            state = "in flight" if task.in_flight else task.status.value
            table.add_row(
                str(task.id)[:8],
                (task.task[:50] + "...") if len(task.task) > 50 else task.task,
                task.source.value,
                state,
                task.created_at.strftime("%Y-%m-%d %H:%M"),
            )

        console.print(table)

    run_async(_list())


@task_app.command("status")
def status(
    task_id: str | None = typer.Argument(None, help="Task ID (omit with --agent for queue stats)"),
    agent: str | None = typer.Option(None, help="Show queue statistics for this agent"),
) -> None:
    """Show one task, or an agent's queue statistics."""

    async def _status() -> None:
        services = await get_services()
        queue = services["task_queue_service"]

        if task_id:
            task = await queue.get_task(parse_uuid(task_id, "task"))
            console.print(f"[bold]Task[/bold] [cyan]{task.id}[/cyan]")
            console.print(f"Agent: {task.assigned_to_id}")
            console.print(f"Source: {task.source.value}")
            console.print(f"Status: {'in flight' if task.in_flight else task.status.value}")
            console.print(f"Created: {task.created_at.isoformat()}")
            if task.completed_at:
                console.print(f"Completed: {task.completed_at.isoformat()}")
            console.print(f"\n{task.task}")
            if task.result:
                console.print(f"\n[bold]Result[/bold]\n{task.result}")
            return

        if not agent:
            raise typer.BadParameter("Pass a task ID or --agent")

        resolved = await resolve_agent_id(agent, services)
        stats = await queue.get_queue_status(resolved)
        console.print("[bold]Queue Status[/bold]")
        console.print(f"Pending: {stats['pending']}")
        console.print(f"In flight: {stats['in_flight']}")
        console.print(f"Completed: {stats['completed']}")
        oldest = stats["oldest_pending_at"]
        console.print(f"Oldest pending: {oldest.isoformat() if oldest else '-'}")

    run_async(_status())
