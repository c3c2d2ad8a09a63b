"""Knowledge graph inspection commands."""

import json

import typer
from rich.table import Table

from overmind.cli.utils import console, get_services, parse_uuid, resolve_agent_id, run_async
from overmind.domain.models import GraphQueryResult

graph_app = typer.Typer(help="Knowledge graph inspection", no_args_is_help=True)


def _print_result(result: GraphQueryResult) -> None:
    names = {node.id: node.name for node in result.nodes}

    nodes = Table(title="Nodes")
    nodes.add_column("ID", style="cyan", no_wrap=True)
    nodes.add_column("Type", style="green")
    nodes.add_column("Name", style="magenta")
    nodes.add_column("Properties")
    for node in result.nodes:
        nodes.add_row(str(node.id)[:8], node.type, node.name, json.dumps(node.properties))
    console.print(nodes)

    if result.edges:
        edges = Table(title="Edges")
        edges.add_column("Source", style="magenta")
        edges.add_column("Type", style="green")
        edges.add_column("Target", style="magenta")
        for edge in result.edges:
            edges.add_row(
                names.get(edge.source_id, str(edge.source_id)[:8]),
                edge.type,
                names.get(edge.target_id, str(edge.target_id)[:8]),
            )
        console.print(edges)


@graph_app.command("stats")
def stats(agent_id: str = typer.Argument(..., help="Agent ID or prefix")) -> None:
    """Show node and edge counts of an agent's graph."""

    async def _stats() -> None:
        services = await get_services()
        resolved = await resolve_agent_id(agent_id, services)
        graph_stats = await services["knowledge_graph_service"].get_graph_stats(resolved)

        console.print("[bold]Graph Statistics[/bold]")
        console.print(f"Nodes: {graph_stats.node_count}")
        for type_name, count in sorted(graph_stats.nodes_by_type.items()):
            console.print(f"  {type_name}: {count}")
        console.print(f"Edges: {graph_stats.edge_count}")
        for type_name, count in sorted(graph_stats.edges_by_type.items()):
            console.print(f"  {type_name}: {count}")

    run_async(_stats())


@graph_app.command("types")
def types(
    agent_id: str | None = typer.Argument(None, help="Agent ID or prefix (omit for global types)"),
) -> None:
    """List node and edge types visible to an agent."""

    async def _types() -> None:
        services = await get_services()
        resolved = await resolve_agent_id(agent_id, services) if agent_id else None
        graph = services["knowledge_graph_service"]

        table = Table(title="Types")
        table.add_column("Kind", style="yellow")
        table.add_column("Name", style="cyan")
        table.add_column("Scope", style="blue")
        table.add_column("Description", style="magenta")
        for node_type in await graph.list_node_types(resolved):
            scope = "agent" if node_type.agent_id else "global"
            table.add_row("node", node_type.name, scope, node_type.description or "-")
        for edge_type in await graph.list_edge_types(resolved):
            scope = "agent" if edge_type.agent_id else "global"
            table.add_row("edge", edge_type.name, scope, edge_type.description or "-")
        console.print(table)

    run_async(_types())


@graph_app.command("show")
def show(
    agent_id: str = typer.Argument(..., help="Agent ID or prefix"),
    node_type: str | None = typer.Option(None, "--type", help="Filter by node type"),
    search: str | None = typer.Option(None, help="Search in node names"),
    limit: int = typer.Option(20, help="Maximum nodes (1-100)"),
    node: str | None = typer.Option(None, help="Show the neighborhood of this node ID"),
    depth: int = typer.Option(1, help="Neighborhood depth for --node"),
) -> None:
    """Show part of an agent's graph."""

    async def _show() -> None:
        services = await get_services()
        resolved = await resolve_agent_id(agent_id, services)
        graph = services["knowledge_graph_service"]
        if node:
            result = await graph.get_node_neighbors(parse_uuid(node, "node"), depth)
        else:
            result = await graph.query_graph(
                resolved, node_type=node_type, search_term=search, limit=limit
            )
        if not result.nodes:
            console.print("[dim]No nodes found[/dim]")
            return
        _print_result(result)

    run_async(_show())
