"""Shared helpers for CLI commands: service wiring, id resolution, error reporting."""

import asyncio
from collections.abc import Coroutine
from typing import Any, TypeVar
from uuid import UUID

import typer
from rich.console import Console

from overmind.infrastructure.exceptions import OvermindError

T = TypeVar("T")

console = Console()

# Set by the --provider option of the root command for the current invocation
cli_state: dict[str, Any] = {"provider": None}


async def get_services() -> dict[str, Any]:
    """Build every service from configuration, sharing one database and provider."""
    from overmind.application import (
        AgentScheduler,
        ConversationManager,
        PhaseExecutor,
        TavilySearchBackend,
        ToolRegistry,
        WorkerRunner,
        create_provider,
        register_graph_tools,
        register_web_tools,
    )
    from overmind.infrastructure import ConfigManager, Database
    from overmind.infrastructure.logger import get_logger, setup_logging
    from overmind.services import (
        AgentService,
        CompactionService,
        ConversationService,
        IterationService,
        KnowledgeGraphService,
        MemoryService,
        TaskQueueService,
    )

    config_manager = ConfigManager()
    config = config_manager.load_config()

    setup_logging(log_level=config.log_level, log_dir=config_manager.get_log_dir())
    logger = get_logger(__name__)

    database = Database(config_manager.get_database_path())
    await database.initialize()

    provider = create_provider(config.provider, config_manager, name=cli_state["provider"])

    agents = AgentService(database)
    tasks = TaskQueueService(database)
    conversations = ConversationService(database)
    compaction = CompactionService(conversations, provider, config.compaction)
    graph = KnowledgeGraphService(database)
    memories = MemoryService(database)
    iterations = IterationService(database)

    tools = ToolRegistry()
    register_graph_tools(tools, graph)
    search_key = config_manager.get_search_api_key()
    if search_key:
        register_web_tools(tools, TavilySearchBackend(search_key))
    else:
        logger.debug("web_search_disabled", reason="no Tavily API key configured")

    executor = PhaseExecutor(provider, iterations, tools, config.worker, config.provider)
    runner = WorkerRunner(
        database,
        agents,
        tasks,
        conversations,
        compaction,
        graph,
        memories,
        iterations,
        executor,
        config.worker,
    )
    scheduler = AgentScheduler(agents, tasks, runner, config.worker)
    conversation_manager = ConversationManager(
        agents, tasks, conversations, compaction, memories, provider, config.conversation
    )
    conversation_manager.on_task_queued = scheduler.notify_task_queued

    return {
        "config": config,
        "config_manager": config_manager,
        "database": database,
        "provider": provider,
        "agent_service": agents,
        "task_queue_service": tasks,
        "conversation_service": conversations,
        "compaction_service": compaction,
        "knowledge_graph_service": graph,
        "memory_service": memories,
        "iteration_service": iterations,
        "tool_registry": tools,
        "worker_runner": runner,
        "scheduler": scheduler,
        "conversation_manager": conversation_manager,
    }


async def resolve_agent_id(agent_id_prefix: str, services: dict[str, Any]) -> UUID:
    """Resolve an agent ID prefix to a full UUID.

    Raises:
        typer.Exit: If no agent or more than one agent matches
    """
    try:
        return UUID(agent_id_prefix)
    except ValueError:
        pass

    agents = await services["agent_service"].list_agents()
    matches = [agent for agent in agents if str(agent.id).startswith(agent_id_prefix.lower())]

    if not matches:
        console.print(f"[red]Error:[/red] No agent found matching prefix '{agent_id_prefix}'")
        raise typer.Exit(1)
    if len(matches) > 1:
        console.print(f"[red]Error:[/red] Multiple agents match prefix '{agent_id_prefix}':")
        for agent in matches:
            console.print(f"  - {agent.id} ({agent.name})")
        raise typer.Exit(1)
    return matches[0].id


def parse_uuid(value: str, kind: str) -> UUID:
    """Parse a full UUID argument.

    Raises:
        typer.BadParameter: If the value is not a UUID
    """
    try:
        return UUID(value)
    except ValueError:
        raise typer.BadParameter(f"Invalid {kind} ID: {value}") from None


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Run a command coroutine, reporting domain errors in red with exit code 1."""
    try:
        return asyncio.run(coro)
    except (OvermindError, ValueError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from None
