"""Agent management commands."""

import typer
from rich.table import Table

from overmind.cli.utils import console, get_services, resolve_agent_id, run_async

agent_app = typer.Typer(help="Agent management", no_args_is_help=True)


@agent_app.command("create")
def create(
    name: str = typer.Argument(..., help="Agent name"),
    role: str = typer.Option("", help="Role description used in prompts"),
    parent: str | None = typer.Option(None, help="ID (or prefix) of the lead agent"),
    entity: str | None = typer.Option(None, help="Owning team or aide"),
    interval: int = typer.Option(300, help="Seconds between scheduled iterations"),
) -> None:
    """Create an agent.

    Examples:
        overmind agent create "Market Watch" --role "Tracks equity markets"
        overmind agent create "Analyst" --parent 3f2a
    """

    async def _create() -> None:
        services = await get_services()
        parent_id = await resolve_agent_id(parent, services) if parent else None
        async with services["database"].transaction():
            agent = await services["agent_service"].create_agent(
                name,
                role=role,
                entity_id=entity,
                parent_agent_id=parent_id,
                iteration_interval_ms=interval * 1000,
            )
            await services["knowledge_graph_service"].seed_agent_types(agent.id)
        console.print(f"[green]✓[/green] Agent created: [cyan]{agent.id}[/cyan]")

    run_async(_create())


@agent_app.command("list")
def list_agents(
    active: bool = typer.Option(False, "--active", help="Only show active agents"),
) -> None:
    """List agents."""

    async def _list() -> None:
        services = await get_services()
        agents = await services["agent_service"].list_agents(active_only=active)

        table = Table(title="Agents")
        table.add_column("ID", style="cyan", no_wrap=True)
        table.add_column("Name", style="magenta")
        table.add_column("Role", style="green")
        table.add_column("Lead", style="blue")
        table.add_column("Active", justify="center")
        table.add_column("Pending", justify="right")

        for agent in agents:
            status = await services["task_queue_service"].get_queue_status(agent.id)
            table.add_row(
                str(agent.id)[:8],
                agent.name,
                (agent.role[:40] + "...") if len(agent.role) > 40 else (agent.role or "-"),
                str(agent.parent_agent_id)[:8] if agent.parent_agent_id else "-",
                "yes" if agent.is_active else "no",
                str(status["pending"] + status["in_flight"]),
            )

        console.print(table)

    run_async(_list())


@agent_app.command("pause")
def pause(agent_id: str = typer.Argument(..., help="Agent ID or prefix")) -> None:
    """Pause an agent: no further iterations are scheduled."""

    async def _pause() -> None:
        services = await get_services()
        resolved = await resolve_agent_id(agent_id, services)
        await services["scheduler"].pause_agent(resolved)
        console.print(f"[green]✓[/green] Agent paused: [cyan]{resolved}[/cyan]")

    run_async(_pause())


@agent_app.command("resume")
def resume(agent_id: str = typer.Argument(..., help="Agent ID or prefix")) -> None:
    """Resume a paused agent."""

    async def _resume() -> None:
        services = await get_services()
        resolved = await resolve_agent_id(agent_id, services)
        await services["agent_service"].set_active(resolved, True)
        console.print(f"[green]✓[/green] Agent resumed: [cyan]{resolved}[/cyan]")

    run_async(_resume())


@agent_app.command("delete")
def delete(
    agent_id: str = typer.Argument(..., help="Agent ID or prefix"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation"),
) -> None:
    """Delete an agent with its tasks, conversations, graph and memories."""

    async def _delete() -> None:
        services = await get_services()
        resolved = await resolve_agent_id(agent_id, services)
        agent = await services["agent_service"].get_agent(resolved)
        if not force and not typer.confirm(f"Delete agent '{agent.name}' and all its data?"):
            console.print("[yellow]Aborted[/yellow]")
            return
        await services["scheduler"].remove_agent(resolved)
        console.print(f"[green]✓[/green] Agent deleted: [cyan]{resolved}[/cyan]")

    run_async(_delete())
