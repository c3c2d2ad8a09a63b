"""Knowledge graph store and schema-validating writer.

Node and edge types carry a JSON schema for their properties. Writes are
validated against that schema and against the edge type's permitted endpoint
types; mismatches are rejected with typed errors, never coerced.
"""

import json
import re
from collections import deque
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

import jsonschema
from aiosqlite import Connection
from jsonschema import Draft202012Validator

from overmind.domain.models import (
    GraphEdge,
    GraphEdgeType,
    GraphNode,
    GraphNodeType,
    GraphQueryResult,
    GraphStats,
)
from overmind.infrastructure.database import Database, scope_key, to_db_timestamp
from overmind.infrastructure.exceptions import (
    ConstraintError,
    DuplicateTypeError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from overmind.services.graph_seed import SEED_EDGE_TYPES, SEED_NODE_TYPES
from overmind.infrastructure.logger import get_logger

logger = get_logger(__name__)

NODE_TYPE_NAME_PATTERN = re.compile(r"^[A-Z][A-Za-z0-9]*(?: [A-Za-z0-9]+)*$")
EDGE_TYPE_NAME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")

DEFAULT_QUERY_LIMIT = 20
MAX_QUERY_LIMIT = 100


def check_properties_schema(schema: dict[str, Any]) -> None:
    """Reject property schemas that are not valid JSON Schema.

    Raises:
        ValidationError: If the schema itself is malformed
    """
    try:
        Draft202012Validator.check_schema(schema)
    except jsonschema.SchemaError as e:
        raise ValidationError("Invalid properties schema", [e.message]) from e


def validate_properties(properties: dict[str, Any], schema: dict[str, Any]) -> list[str]:
    """Validate properties against a type's JSON schema.

    Returns:
        One message per violation, prefixed with the property path
    """
    if not schema:
        return []
    validator = Draft202012Validator(schema, format_checker=Draft202012Validator.FORMAT_CHECKER)
    errors = []
    for error in sorted(validator.iter_errors(properties), key=lambda e: list(e.absolute_path)):
        path = ".".join(str(part) for part in error.absolute_path)
        location = f"properties.{path}" if path else "properties"
        errors.append(f"{location}: {error.message}")
    return errors


class KnowledgeGraphService:
    """Typed knowledge graph owned per agent, with global or agent-scoped types.

    Usage:
        graph = KnowledgeGraphService(db)
        person = await graph.create_node_type("Person", {"type": "object"}, agent_id=None)
        node = await graph.add_node(agent.id, person.id, "Ada", {})
    """

    def __init__(self, database: Database) -> None:
        """Initialize knowledge graph service.

        Args:
            database: Database instance for graph storage
        """
        self._db = database

    # Type registration

    async def create_node_type(
        self,
        name: str,
        properties_schema: dict[str, Any],
        agent_id: UUID | None = None,
        description: str = "",
        example_properties: dict[str, Any] | None = None,
    ) -> GraphNodeType:
        """Register a node type in the global scope or an agent's scope.

        Args:
            name: Type name, e.g. "Company" or "Research Report"
            properties_schema: JSON schema for node properties
            agent_id: Owning agent, or None for a global type
            description: Human readable description
            example_properties: Example properties shown to the LLM

        Raises:
            ValidationError: If the name or schema is malformed, or the example
                does not satisfy the schema
            DuplicateTypeError: If the scope already has a node type with this name
        """
        if not NODE_TYPE_NAME_PATTERN.match(name):
            raise ValidationError(
                f"Invalid node type name {name!r}",
                ["node type names are capitalized words, e.g. 'Company' or 'Market Event'"],
            )
        check_properties_schema(properties_schema)
        if example_properties is not None:
            errors = validate_properties(example_properties, properties_schema)
            if errors:
                raise ValidationError("Example properties do not match schema", errors)

        node_type = GraphNodeType(
            agent_id=agent_id,
            name=name,
            description=description,
            properties_schema=properties_schema,
            example_properties=example_properties,
        )

        async with self._db.transaction() as conn:
            if await self._type_name_taken(conn, "graph_node_types", agent_id, name):
                raise DuplicateTypeError(
                    f"Node type {name!r} already exists in scope {scope_key(agent_id)}"
                )
            await conn.execute(
                """
                INSERT INTO graph_node_types (
                    id, agent_id, scope_key, name, description,
                    properties_schema, example_properties, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(node_type.id),
                    str(agent_id) if agent_id else None,
                    scope_key(agent_id),
                    name,
                    description,
                    json.dumps(properties_schema),
                    json.dumps(example_properties) if example_properties is not None else None,
                    to_db_timestamp(node_type.created_at),
                ),
            )

        logger.info("graph_node_type_created", name=name, scope=scope_key(agent_id))
        return node_type

    async def create_edge_type(
        self,
        name: str,
        properties_schema: dict[str, Any],
        allowed_source_types: list[str],
        allowed_target_types: list[str],
        agent_id: UUID | None = None,
        description: str = "",
        example_properties: dict[str, Any] | None = None,
    ) -> GraphEdgeType:
        """Register an edge type with its permitted endpoint node types.

        An empty allowed list places no restriction on that endpoint.

        Raises:
            ValidationError: If the name or schema is malformed, or the example
                does not satisfy the schema
            DuplicateTypeError: If the scope already has an edge type with this name
        """
        if not EDGE_TYPE_NAME_PATTERN.match(name):
            raise ValidationError(
                f"Invalid edge type name {name!r}",
                ["edge type names are identifiers, e.g. 'works_at' or 'ISSUED_BY'"],
            )
        check_properties_schema(properties_schema)
        if example_properties is not None:
            errors = validate_properties(example_properties, properties_schema)
            if errors:
                raise ValidationError("Example properties do not match schema", errors)

        edge_type = GraphEdgeType(
            agent_id=agent_id,
            name=name,
            description=description,
            properties_schema=properties_schema,
            example_properties=example_properties,
            source_node_types=sorted(set(allowed_source_types)),
            target_node_types=sorted(set(allowed_target_types)),
        )

        async with self._db.transaction() as conn:
            if await self._type_name_taken(conn, "graph_edge_types", agent_id, name):
                raise DuplicateTypeError(
                    f"Edge type {name!r} already exists in scope {scope_key(agent_id)}"
                )
            await conn.execute(
                """
                INSERT INTO graph_edge_types (
                    id, agent_id, scope_key, name, description, properties_schema,
                    example_properties, source_node_types, target_node_types, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(edge_type.id),
                    str(agent_id) if agent_id else None,
                    scope_key(agent_id),
                    name,
                    description,
                    json.dumps(properties_schema),
                    json.dumps(example_properties) if example_properties is not None else None,
                    json.dumps(edge_type.source_node_types),
                    json.dumps(edge_type.target_node_types),
                    to_db_timestamp(edge_type.created_at),
                ),
            )

        logger.info(
            "graph_edge_type_created",
            name=name,
            scope=scope_key(agent_id),
            sources=edge_type.source_node_types,
            targets=edge_type.target_node_types,
        )
        return edge_type

    async def _type_name_taken(
        self, conn: Connection, table: str, agent_id: UUID | None, name: str
    ) -> bool:
        cursor = await conn.execute(
            f"SELECT 1 FROM {table} WHERE scope_key = ? AND name = ?",
            (scope_key(agent_id), name),
        )
        return await cursor.fetchone() is not None

    async def seed_agent_types(self, agent_id: UUID) -> int:
        """Create the built-in analysis, advice and provenance types for an agent.

        Types already visible to the agent under the same name are left alone,
        so this is safe to call on every iteration.

        Returns:
            Number of types created
        """
        created = 0
        async with self._db.transaction():
            for spec in SEED_NODE_TYPES:
                if await self.find_node_type(agent_id, spec["name"]) is None:
                    await self.create_node_type(agent_id=agent_id, **spec)
                    created += 1
            for spec in SEED_EDGE_TYPES:
                if await self.find_edge_type(agent_id, spec["name"]) is None:
                    await self.create_edge_type(
                        spec["name"],
                        {"type": "object"},
                        allowed_source_types=[],
                        allowed_target_types=[],
                        agent_id=agent_id,
                        description=spec["description"],
                    )
                    created += 1
        return created

    # Type lookup

    async def get_node_type(self, type_id: UUID) -> GraphNodeType:
        """Get node type by ID.

        Raises:
            NotFoundError: If the type does not exist
        """
        async with self._db._get_connection() as conn:
            cursor = await conn.execute(
                "SELECT * FROM graph_node_types WHERE id = ?", (str(type_id),)
            )
            row = await cursor.fetchone()
        if row is None:
            raise NotFoundError("node type", type_id)
        return self._db._row_to_node_type(row)

    async def get_edge_type(self, type_id: UUID) -> GraphEdgeType:
        """Get edge type by ID.

        Raises:
            NotFoundError: If the type does not exist
        """
        async with self._db._get_connection() as conn:
            cursor = await conn.execute(
                "SELECT * FROM graph_edge_types WHERE id = ?", (str(type_id),)
            )
            row = await cursor.fetchone()
        if row is None:
            raise NotFoundError("edge type", type_id)
        return self._db._row_to_edge_type(row)

    async def find_node_type(self, agent_id: UUID, name: str) -> GraphNodeType | None:
        """Resolve a node type name for an agent: agent scope first, then global."""
        async with self._db._get_connection() as conn:
            cursor = await conn.execute(
                """
                SELECT * FROM graph_node_types
                WHERE name = ? AND scope_key IN (?, 'global')
                ORDER BY CASE scope_key WHEN 'global' THEN 1 ELSE 0 END
                LIMIT 1
                """,
                (name, str(agent_id)),
            )
            row = await cursor.fetchone()
        return self._db._row_to_node_type(row) if row else None

    async def find_edge_type(self, agent_id: UUID, name: str) -> GraphEdgeType | None:
        """Resolve an edge type name for an agent: agent scope first, then global."""
        async with self._db._get_connection() as conn:
            cursor = await conn.execute(
                """
                SELECT * FROM graph_edge_types
                WHERE name = ? AND scope_key IN (?, 'global')
                ORDER BY CASE scope_key WHEN 'global' THEN 1 ELSE 0 END
                LIMIT 1
                """,
                (name, str(agent_id)),
            )
            row = await cursor.fetchone()
        return self._db._row_to_edge_type(row) if row else None

    async def list_node_types(self, agent_id: UUID | None) -> list[GraphNodeType]:
        """Node types visible to an agent (global plus its own), by name."""
        async with self._db._get_connection() as conn:
            cursor = await conn.execute(
                "SELECT * FROM graph_node_types WHERE scope_key IN (?, 'global') ORDER BY name",
                (scope_key(agent_id),),
            )
            rows = await cursor.fetchall()
        return [self._db._row_to_node_type(row) for row in rows]

    async def list_edge_types(self, agent_id: UUID | None) -> list[GraphEdgeType]:
        """Edge types visible to an agent (global plus its own), by name."""
        async with self._db._get_connection() as conn:
            cursor = await conn.execute(
                "SELECT * FROM graph_edge_types WHERE scope_key IN (?, 'global') ORDER BY name",
                (scope_key(agent_id),),
            )
            rows = await cursor.fetchall()
        return [self._db._row_to_edge_type(row) for row in rows]

    # Writes

    async def add_node(
        self,
        agent_id: UUID,
        type_id: UUID,
        name: str,
        properties: dict[str, Any] | None = None,
    ) -> GraphNode:
        """Validate and insert a node, or merge into the existing node of that name.

        When the agent already has a node with this type and name, the new
        properties are merged over the stored ones and the merged result is
        validated before it replaces them.

        Args:
            agent_id: Agent whose graph receives the node
            type_id: Node type ID
            name: Human-readable identifier, unique per agent and type
            properties: Node properties

        Returns:
            The created or updated node

        Raises:
            NotFoundError: If the node type does not exist
            ForbiddenError: If the node type is scoped to another agent
            ValidationError: If the properties do not satisfy the type schema
        """
        node_type = await self.get_node_type(type_id)
        if node_type.agent_id is not None and node_type.agent_id != agent_id:
            raise ForbiddenError(f"Node type {node_type.name!r} belongs to another agent")
        if not name.strip():
            raise ValidationError("Invalid node", ["name must not be empty"])

        now = datetime.now(timezone.utc)
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                "SELECT * FROM graph_nodes WHERE agent_id = ? AND type = ? AND name = ?",
                (str(agent_id), node_type.name, name),
            )
            row = await cursor.fetchone()
            existing = self._db._row_to_node(row) if row else None

            merged = {**(existing.properties if existing else {}), **(properties or {})}
            errors = validate_properties(merged, node_type.properties_schema)
            if errors:
                raise ValidationError(
                    f"Properties of {node_type.name} {name!r} do not match schema", errors
                )

            if existing is not None:
                await conn.execute(
                    "UPDATE graph_nodes SET properties = ?, updated_at = ? WHERE id = ?",
                    (json.dumps(merged), to_db_timestamp(now), str(existing.id)),
                )
                node = existing.model_copy(update={"properties": merged, "updated_at": now})
                action = "updated"
            else:
                node = GraphNode(
                    agent_id=agent_id,
                    type=node_type.name,
                    name=name,
                    properties=merged,
                    created_at=now,
                    updated_at=now,
                )
                await conn.execute(
                    """
                    INSERT INTO graph_nodes (
                        id, agent_id, type, name, properties, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        str(node.id),
                        str(agent_id),
                        node.type,
                        node.name,
                        json.dumps(merged),
                        to_db_timestamp(now),
                        to_db_timestamp(now),
                    ),
                )
                action = "created"

        logger.info(
            "graph_node_written",
            agent_id=str(agent_id),
            node_id=str(node.id),
            node_type=node.type,
            action=action,
        )
        return node

    async def add_edge(
        self,
        agent_id: UUID,
        type_id: UUID,
        source_node_id: UUID,
        target_node_id: UUID,
        properties: dict[str, Any] | None = None,
    ) -> GraphEdge:
        """Validate and insert an edge between two nodes of the agent.

        Returns the existing edge when one of this type already joins the two
        nodes.

        Raises:
            NotFoundError: If the edge type or either node does not exist
            ForbiddenError: If a node or the edge type belongs to another agent
            ConstraintError: If an endpoint's type is not permitted by the edge type
            ValidationError: If the properties do not satisfy the type schema
        """
        edge_type = await self.get_edge_type(type_id)
        if edge_type.agent_id is not None and edge_type.agent_id != agent_id:
            raise ForbiddenError(f"Edge type {edge_type.name!r} belongs to another agent")

        source = await self.get_node(source_node_id)
        target = await self.get_node(target_node_id)
        for node in (source, target):
            if node.agent_id != agent_id:
                raise ForbiddenError(f"Node {node.id} belongs to another agent")

        if edge_type.source_node_types and source.type not in edge_type.source_node_types:
            raise ConstraintError(
                f"Edge type {edge_type.name!r} does not allow source type {source.type!r} "
                f"(allowed: {', '.join(edge_type.source_node_types)})"
            )
        if edge_type.target_node_types and target.type not in edge_type.target_node_types:
            raise ConstraintError(
                f"Edge type {edge_type.name!r} does not allow target type {target.type!r} "
                f"(allowed: {', '.join(edge_type.target_node_types)})"
            )

        edge_properties = properties or {}
        errors = validate_properties(edge_properties, edge_type.properties_schema)
        if errors:
            raise ValidationError(f"Properties of edge {edge_type.name!r} do not match schema", errors)

        edge = GraphEdge(
            agent_id=agent_id,
            type=edge_type.name,
            source_id=source.id,
            target_id=target.id,
            properties=edge_properties,
        )
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                """
                SELECT * FROM graph_edges
                WHERE agent_id = ? AND type = ? AND source_id = ? AND target_id = ?
                """,
                (str(agent_id), edge.type, str(source.id), str(target.id)),
            )
            row = await cursor.fetchone()
            if row is not None:
                return self._db._row_to_edge(row)

            await conn.execute(
                """
                INSERT INTO graph_edges (
                    id, agent_id, type, source_id, target_id, properties, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(edge.id),
                    str(agent_id),
                    edge.type,
                    str(source.id),
                    str(target.id),
                    json.dumps(edge_properties),
                    to_db_timestamp(edge.created_at),
                ),
            )

        logger.info(
            "graph_edge_written",
            agent_id=str(agent_id),
            edge_id=str(edge.id),
            edge_type=edge.type,
            source=source.name,
            target=target.name,
        )
        return edge

    # Reads

    async def get_node(self, node_id: UUID) -> GraphNode:
        """Get node by ID.

        Raises:
            NotFoundError: If the node does not exist
        """
        async with self._db._get_connection() as conn:
            cursor = await conn.execute("SELECT * FROM graph_nodes WHERE id = ?", (str(node_id),))
            row = await cursor.fetchone()
        if row is None:
            raise NotFoundError("node", node_id)
        return self._db._row_to_node(row)

    async def find_node(self, agent_id: UUID, type_name: str, name: str) -> GraphNode | None:
        """Find an agent's node by type name and node name."""
        async with self._db._get_connection() as conn:
            cursor = await conn.execute(
                "SELECT * FROM graph_nodes WHERE agent_id = ? AND type = ? AND name = ?",
                (str(agent_id), type_name, name),
            )
            row = await cursor.fetchone()
        return self._db._row_to_node(row) if row else None

    async def query_graph(
        self,
        agent_id: UUID,
        node_type: str | None = None,
        search_term: str | None = None,
        limit: int = DEFAULT_QUERY_LIMIT,
    ) -> GraphQueryResult:
        """Filter an agent's nodes and return them with the edges among them.

        Args:
            agent_id: Agent whose graph is read
            node_type: Only nodes of this type
            search_term: Case-insensitive substring of the node name
            limit: Maximum number of nodes (1 to 100)

        Returns:
            Matching nodes, most recently updated first, and connecting edges
        """
        limit = max(1, min(limit, MAX_QUERY_LIMIT))
        clauses = ["agent_id = ?"]
        params: list[Any] = [str(agent_id)]
        if node_type:
            clauses.append("type = ?")
            params.append(node_type)
        if search_term:
            clauses.append("name LIKE ? ESCAPE '\\'")
            escaped = search_term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            params.append(f"%{escaped}%")
        params.append(limit)

        async with self._db._get_connection() as conn:
            cursor = await conn.execute(
                f"""
                SELECT * FROM graph_nodes
                WHERE {' AND '.join(clauses)}
                ORDER BY updated_at DESC
                LIMIT ?
                """,
                tuple(params),
            )
            nodes = [self._db._row_to_node(row) for row in await cursor.fetchall()]

        edges = await self._edges_among([node.id for node in nodes])
        return GraphQueryResult(nodes=nodes, edges=edges)

    async def _edges_among(self, node_ids: list[UUID]) -> list[GraphEdge]:
        if not node_ids:
            return []
        ids = [str(node_id) for node_id in node_ids]
        placeholders = ",".join("?" * len(ids))
        async with self._db._get_connection() as conn:
            cursor = await conn.execute(
                f"""
                SELECT * FROM graph_edges
                WHERE source_id IN ({placeholders}) AND target_id IN ({placeholders})
                ORDER BY created_at ASC
                """,
                (*ids, *ids),
            )
            rows = await cursor.fetchall()
        return [self._db._row_to_edge(row) for row in rows]

    async def get_node_edges(self, node_id: UUID) -> list[GraphEdge]:
        """All edges touching a node in either direction."""
        async with self._db._get_connection() as conn:
            cursor = await conn.execute(
                "SELECT * FROM graph_edges WHERE source_id = ? OR target_id = ? ORDER BY created_at",
                (str(node_id), str(node_id)),
            )
            rows = await cursor.fetchall()
        return [self._db._row_to_edge(row) for row in rows]

    async def get_node_neighbors(self, node_id: UUID, depth: int = 1) -> GraphQueryResult:
        """Breadth-first neighborhood of a node up to ``depth`` hops.

        Raises:
            NotFoundError: If the start node does not exist
        """
        start = await self.get_node(node_id)
        nodes: dict[UUID, GraphNode] = {start.id: start}
        edges: dict[UUID, GraphEdge] = {}
        frontier: deque[tuple[UUID, int]] = deque([(start.id, 0)])

        while frontier:
            current_id, level = frontier.popleft()
            if level >= depth:
                continue
            for edge in await self.get_node_edges(current_id):
                edges.setdefault(edge.id, edge)
                neighbor_id = edge.target_id if edge.source_id == current_id else edge.source_id
                if neighbor_id not in nodes:
                    nodes[neighbor_id] = await self.get_node(neighbor_id)
                    frontier.append((neighbor_id, level + 1))

        return GraphQueryResult(nodes=list(nodes.values()), edges=list(edges.values()))

    async def get_graph_stats(self, scope_id: UUID) -> GraphStats:
        """Count nodes and edges of one agent's graph, overall and per type."""
        async with self._db._get_connection() as conn:
            cursor = await conn.execute(
                "SELECT type, COUNT(*) AS count FROM graph_nodes WHERE agent_id = ? GROUP BY type",
                (str(scope_id),),
            )
            nodes_by_type = {row["type"]: row["count"] for row in await cursor.fetchall()}
            cursor = await conn.execute(
                "SELECT type, COUNT(*) AS count FROM graph_edges WHERE agent_id = ? GROUP BY type",
                (str(scope_id),),
            )
            edges_by_type = {row["type"]: row["count"] for row in await cursor.fetchall()}

        return GraphStats(
            node_count=sum(nodes_by_type.values()),
            edge_count=sum(edges_by_type.values()),
            nodes_by_type=nodes_by_type,
            edges_by_type=edges_by_type,
        )

    # LLM context rendering

    async def serialize_for_llm(self, agent_id: UUID, max_nodes: int = 100) -> str:
        """Render an agent's graph as readable lines with citable IDs."""
        async with self._db._get_connection() as conn:
            cursor = await conn.execute(
                "SELECT * FROM graph_nodes WHERE agent_id = ? ORDER BY updated_at DESC LIMIT ?",
                (str(agent_id), max_nodes),
            )
            nodes = [self._db._row_to_node(row) for row in await cursor.fetchall()]

        if not nodes:
            return "No knowledge graph data available."

        by_id = {node.id: node for node in nodes}
        lines = ["Nodes:"]
        for node in nodes:
            lines.append(
                f"- [{node.type}] {node.name} (id: {node.id}): {json.dumps(node.properties)}"
            )

        edges = await self._edges_among(list(by_id))
        if edges:
            lines.append("")
            lines.append("Relationships:")
            for edge in edges:
                lines.append(
                    f"- [edge:{edge.id}] {by_id[edge.source_id].name} "
                    f"--{edge.type}--> {by_id[edge.target_id].name}"
                )
        return "\n".join(lines)

    async def format_types_for_llm(self, agent_id: UUID) -> str:
        """Render the node and edge types available to an agent."""
        node_types = await self.list_node_types(agent_id)
        edge_types = await self.list_edge_types(agent_id)

        lines = ["### Node Types"]
        if not node_types:
            lines.append("No node types defined.")
        for node_type in node_types:
            lines.append(self._describe_type(node_type.name, node_type.description,
                                             node_type.properties_schema,
                                             node_type.example_properties))

        lines.append("")
        lines.append("### Edge Types")
        if not edge_types:
            lines.append("No edge types defined.")
        for edge_type in edge_types:
            entry = self._describe_type(edge_type.name, edge_type.description,
                                        edge_type.properties_schema,
                                        edge_type.example_properties)
            sources = ", ".join(edge_type.source_node_types) or "any"
            targets = ", ".join(edge_type.target_node_types) or "any"
            lines.append(f"{entry}\n  From: {sources}\n  To: {targets}")
        return "\n".join(lines)

    @staticmethod
    def _describe_type(
        name: str,
        description: str,
        schema: dict[str, Any],
        example: dict[str, Any] | None,
    ) -> str:
        properties = list((schema.get("properties") or {}).keys())
        required = list(schema.get("required") or [])
        optional = [prop for prop in properties if prop not in required]
        entry = f"- **{name}**: {description}".rstrip()
        if required:
            entry += f"\n  Required: {', '.join(required)}"
        if optional:
            entry += f"\n  Optional: {', '.join(optional)}"
        if example:
            entry += f"\n  Example: {json.dumps(example)}"
        return entry
