"""Knowledge graph tools exposed to the model during phase calls."""

from typing import Any

from pydantic import BaseModel, Field

from overmind.application.tool_registry import ToolContext, ToolRegistry
from overmind.domain.models import GraphEdge, GraphNode
from overmind.infrastructure.exceptions import NotFoundError
from overmind.services.knowledge_graph_service import (
    DEFAULT_QUERY_LIMIT,
    MAX_QUERY_LIMIT,
    KnowledgeGraphService,
)

QUERY_GRAPH = "query_graph"
LIST_GRAPH_TYPES = "list_graph_types"
ADD_GRAPH_NODE = "add_graph_node"
ADD_GRAPH_EDGE = "add_graph_edge"
CREATE_NODE_TYPE = "create_node_type"
CREATE_EDGE_TYPE = "create_edge_type"

READ_TOOLS = (QUERY_GRAPH, LIST_GRAPH_TYPES)
ALL_GRAPH_TOOLS = (
    QUERY_GRAPH,
    LIST_GRAPH_TYPES,
    ADD_GRAPH_NODE,
    ADD_GRAPH_EDGE,
    CREATE_NODE_TYPE,
    CREATE_EDGE_TYPE,
)


class QueryGraphParams(BaseModel):
    """Parameters of ``query_graph``."""

    node_type: str | None = Field(default=None, description="Filter by node type")
    search_term: str | None = Field(default=None, description="Search in node names")
    limit: int = Field(
        default=DEFAULT_QUERY_LIMIT,
        ge=1,
        le=MAX_QUERY_LIMIT,
        description="Maximum nodes to return",
    )


class ListGraphTypesParams(BaseModel):
    """``list_graph_types`` takes no parameters."""


class AddGraphNodeParams(BaseModel):
    """Parameters of ``add_graph_node``."""

    type: str = Field(min_length=1, description='Existing node type, e.g. "Company"')
    name: str = Field(min_length=1, description="Human-readable identifier for this node")
    properties: dict[str, Any] = Field(
        default_factory=dict, description="Properties matching the node type schema"
    )


class AddGraphEdgeParams(BaseModel):
    """Parameters of ``add_graph_edge``."""

    type: str = Field(min_length=1, description='Edge type, e.g. "works_at"')
    source_name: str = Field(min_length=1, description="Name of the source node")
    source_type: str = Field(min_length=1, description="Type of the source node")
    target_name: str = Field(min_length=1, description="Name of the target node")
    target_type: str = Field(min_length=1, description="Type of the target node")
    properties: dict[str, Any] = Field(
        default_factory=dict, description="Optional properties for this edge"
    )


class CreateNodeTypeParams(BaseModel):
    """Parameters of ``create_node_type``."""

    name: str = Field(description='Capitalized type name, e.g. "Regulation" or "Market Event"')
    description: str = Field(min_length=1, description="What this type represents")
    properties_schema: dict[str, Any] = Field(description="JSON Schema for node properties")
    example_properties: dict[str, Any] | None = Field(
        default=None, description="Example property values"
    )
    justification: str = Field(min_length=1, description="Why existing types are insufficient")


class CreateEdgeTypeParams(BaseModel):
    """Parameters of ``create_edge_type``."""

    name: str = Field(description='Relationship name, e.g. "regulates" or "competes_with"')
    description: str = Field(min_length=1, description="What this relationship represents")
    properties_schema: dict[str, Any] = Field(
        default_factory=dict, description="Optional JSON Schema for edge properties"
    )
    example_properties: dict[str, Any] | None = Field(
        default=None, description="Example property values"
    )
    source_node_types: list[str] = Field(
        default_factory=list, description="Permitted source node types (empty for any)"
    )
    target_node_types: list[str] = Field(
        default_factory=list, description="Permitted target node types (empty for any)"
    )
    justification: str = Field(min_length=1, description="Why existing edge types are insufficient")


def _node_data(node: GraphNode) -> dict[str, Any]:
    return {"id": str(node.id), "type": node.type, "name": node.name, "properties": node.properties}


def _edge_data(edge: GraphEdge) -> dict[str, Any]:
    return {
        "id": str(edge.id),
        "type": edge.type,
        "source_id": str(edge.source_id),
        "target_id": str(edge.target_id),
        "properties": edge.properties,
    }


def register_graph_tools(registry: ToolRegistry, graph: KnowledgeGraphService) -> None:
    """Register the six graph tools backed by ``graph``."""

    async def query_graph(params: QueryGraphParams, context: ToolContext) -> dict[str, Any]:
        result = await graph.query_graph(
            context.agent_id,
            node_type=params.node_type,
            search_term=params.search_term,
            limit=params.limit,
        )
        return {
            "nodes": [_node_data(node) for node in result.nodes],
            "edges": [_edge_data(edge) for edge in result.edges],
        }

    async def list_graph_types(
        params: ListGraphTypesParams, context: ToolContext
    ) -> dict[str, Any]:
        node_types = await graph.list_node_types(context.agent_id)
        edge_types = await graph.list_edge_types(context.agent_id)
        return {
            "node_types": [
                {
                    "name": t.name,
                    "description": t.description,
                    "properties_schema": t.properties_schema,
                    "example_properties": t.example_properties,
                }
                for t in node_types
            ],
            "edge_types": [
                {
                    "name": t.name,
                    "description": t.description,
                    "properties_schema": t.properties_schema,
                    "source_node_types": t.source_node_types,
                    "target_node_types": t.target_node_types,
                }
                for t in edge_types
            ],
        }

    async def add_graph_node(params: AddGraphNodeParams, context: ToolContext) -> dict[str, Any]:
        node_type = await graph.find_node_type(context.agent_id, params.type)
        if node_type is None:
            available = ", ".join(t.name for t in await graph.list_node_types(context.agent_id))
            raise NotFoundError("node type", f"{params.type!r} (available: {available or 'none'})")
        node = await graph.add_node(context.agent_id, node_type.id, params.name, params.properties)
        return _node_data(node)

    async def add_graph_edge(params: AddGraphEdgeParams, context: ToolContext) -> dict[str, Any]:
        edge_type = await graph.find_edge_type(context.agent_id, params.type)
        if edge_type is None:
            available = ", ".join(t.name for t in await graph.list_edge_types(context.agent_id))
            raise NotFoundError("edge type", f"{params.type!r} (available: {available or 'none'})")
        source = await graph.find_node(context.agent_id, params.source_type, params.source_name)
        if source is None:
            raise NotFoundError("source node", f"{params.source_type} {params.source_name!r}")
        target = await graph.find_node(context.agent_id, params.target_type, params.target_name)
        if target is None:
            raise NotFoundError("target node", f"{params.target_type} {params.target_name!r}")
        edge = await graph.add_edge(
            context.agent_id, edge_type.id, source.id, target.id, params.properties
        )
        return _edge_data(edge)

    async def create_node_type(
        params: CreateNodeTypeParams, context: ToolContext
    ) -> dict[str, Any]:
        node_type = await graph.create_node_type(
            params.name,
            params.properties_schema,
            agent_id=context.agent_id,
            description=params.description,
            example_properties=params.example_properties,
        )
        return {"id": str(node_type.id), "name": node_type.name}

    async def create_edge_type(
        params: CreateEdgeTypeParams, context: ToolContext
    ) -> dict[str, Any]:
        edge_type = await graph.create_edge_type(
            params.name,
            params.properties_schema,
            params.source_node_types,
            params.target_node_types,
            agent_id=context.agent_id,
            description=params.description,
            example_properties=params.example_properties,
        )
        return {"id": str(edge_type.id), "name": edge_type.name}

    registry.register(
        QUERY_GRAPH,
        "Search the knowledge graph by node type and/or name. Returns nodes and the "
        "edges among them.",
        QueryGraphParams,
        query_graph,
    )
    registry.register(
        LIST_GRAPH_TYPES,
        "List the node and edge types available, with their property schemas.",
        ListGraphTypesParams,
        list_graph_types,
    )
    registry.register(
        ADD_GRAPH_NODE,
        "Add a node, or update the existing node with the same type and name. "
        "Properties must match the type schema.",
        AddGraphNodeParams,
        add_graph_node,
    )
    registry.register(
        ADD_GRAPH_EDGE,
        "Connect two existing nodes, identified by type and name, with a typed edge.",
        AddGraphEdgeParams,
        add_graph_edge,
    )
    registry.register(
        CREATE_NODE_TYPE,
        "Create a new node type when no existing type fits. Use sparingly.",
        CreateNodeTypeParams,
        create_node_type,
    )
    registry.register(
        CREATE_EDGE_TYPE,
        "Create a new edge type when no existing relationship fits. Use sparingly.",
        CreateEdgeTypeParams,
        create_edge_type,
    )
