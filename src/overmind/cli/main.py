"""Overmind CLI - autonomous research agents with a shared task queue."""

import asyncio
import signal
import sys
from typing import Any

import typer

from overmind import __version__
from overmind.cli.agent_commands import agent_app
from overmind.cli.graph_commands import graph_app
from overmind.cli.task_commands import task_app
from overmind.cli.utils import cli_state, console, get_services, resolve_agent_id, run_async
from overmind.domain.models import IterationStatus

app = typer.Typer(
    name="overmind",
    help="Autonomous research agents - queue work, run the phase pipeline, chat",
    no_args_is_help=True,
)


@app.callback()
def root(
    provider: str | None = typer.Option(
        None, "--provider", help="LLM provider: anthropic or mock (default from config)"
    ),
) -> None:
    """Select options shared by every command."""
    cli_state["provider"] = provider


# ===== Version =====
@app.command()
def version() -> None:
    """Show Overmind version."""
    console.print(f"[bold]Overmind[/bold] version [cyan]{__version__}[/cyan]")


# ===== Sub-commands =====
app.add_typer(agent_app, name="agent")
app.add_typer(task_app, name="task")
app.add_typer(graph_app, name="graph")


# ===== Project =====
@app.command()
def init() -> None:
    """Initialize the database for this project (.overmind/overmind.db)."""

    async def _init() -> None:
        from overmind.infrastructure import ConfigManager, Database

        config_manager = ConfigManager()
        database_path = config_manager.get_database_path()
        database = Database(database_path)
        await database.initialize()
        console.print(f"[green]✓[/green] Database initialized: [cyan]{database_path}[/cyan]")

    run_async(_init())


# ===== Worker =====
@app.command()
def run(agent_id: str = typer.Argument(..., help="Agent ID or prefix")) -> None:
    """Run one worker iteration for an agent now."""

    async def _run() -> None:
        services = await get_services()
        resolved = await resolve_agent_id(agent_id, services)
        iteration = await services["worker_runner"].run_iteration(resolved)
        if iteration is None:
            console.print("[yellow]An iteration is already running for this agent[/yellow]")
            return

        interactions = await services["iteration_service"].list_interactions(iteration.id)
        if iteration.task_id is None:
            console.print("[dim]No pending tasks; nothing to do[/dim]")
        elif iteration.status == IterationStatus.COMPLETED:
            task = await services["task_queue_service"].get_task(iteration.task_id)
            console.print(
                f"[green]✓[/green] Iteration completed ({len(interactions)} phases)"
            )
            console.print(f"\n[bold]Result[/bold]\n{task.result}")
        else:
            console.print(f"[red]✗[/red] Iteration failed: {iteration.error_message}")
            console.print("[dim]The task stays pending and will be retried[/dim]")
            raise typer.Exit(1)

    run_async(_run())


worker_app = typer.Typer(help="Background worker", no_args_is_help=True)
app.add_typer(worker_app, name="worker")


@worker_app.command("start")
def start_worker() -> None:
    """Run the per-agent scheduler until interrupted.

    Every active agent runs an iteration on its timer, or immediately when
    work is queued for it. Ctrl+C stops scheduling and waits for in-flight
    iterations to finish.
    """

    async def _start() -> None:
        services = await get_services()
        scheduler = services["scheduler"]

        shutdown_event = asyncio.Event()

        def signal_handler(signum: int, frame: Any) -> None:
            console.print("\n[yellow]Shutdown signal received, stopping gracefully...[/yellow]")
            shutdown_event.set()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        await scheduler.start()
        console.print(
            f"[blue]Scheduler running for {len(scheduler.scheduled_agents)} agent(s)[/blue]"
        )
        console.print("[dim]Press Ctrl+C to stop gracefully[/dim]")

        try:
            await shutdown_event.wait()
        finally:
            console.print("[dim]Waiting for in-flight iterations...[/dim]")
            await scheduler.stop()
            console.print("[green]✓[/green] Scheduler stopped")

    try:
        run_async(_start())
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")


# ===== Chat =====
@app.command()
def chat(
    agent_id: str = typer.Argument(..., help="Agent ID or prefix"),
    message: str = typer.Argument(..., help="Message to the agent"),
) -> None:
    """Send a message to an agent and stream its acknowledgment.

    The message is queued as a task; run `overmind run` or the worker to process it.
    """

    async def _chat() -> None:
        services = await get_services()
        resolved = await resolve_agent_id(agent_id, services)
        stream = await services["conversation_manager"].handle_user_message(resolved, message)
        async with stream:
            async for chunk in stream:
                console.print(chunk, end="", markup=False, highlight=False)
        console.print()

        turn = await stream.wait_closed()
        if turn.task is not None:
            console.print(f"[dim]Task queued: {turn.task.id}[/dim]")

    run_async(_chat())


# ===== Config =====
config_app = typer.Typer(help="Configuration and credentials", no_args_is_help=True)
app.add_typer(config_app, name="config")


@config_app.command("set-key")
def set_key(
    api_key: str = typer.Option(..., prompt=True, hide_input=True, help="Anthropic API key"),
    env_file: bool = typer.Option(False, "--env-file", help="Store in .env instead of keychain"),
) -> None:
    """Store the Anthropic API key."""
    from overmind.infrastructure import ConfigManager

    try:
        ConfigManager().set_api_key(api_key, use_keychain=not env_file)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None
    console.print("[green]✓[/green] API key stored")


@config_app.command("set-search-key")
def set_search_key(
    api_key: str = typer.Option(..., prompt=True, hide_input=True, help="Tavily API key"),
) -> None:
    """Store the Tavily API key that enables web search."""
    from overmind.infrastructure import ConfigManager

    try:
        ConfigManager().set_search_api_key(api_key)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None
    console.print("[green]✓[/green] Search API key stored")


@config_app.command("show")
def show_config() -> None:
    """Print the merged configuration."""
    from overmind.infrastructure import ConfigManager

    config = ConfigManager().load_config()
    console.print_json(config.model_dump_json())


# ===== Main Entry Point =====
def main() -> None:
    """Main entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        sys.exit(130)
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
