"""Database infrastructure using SQLite with WAL mode."""

import asyncio
import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from contextvars import ContextVar
from datetime import datetime
from pathlib import Path
from typing import Any
from uuid import UUID, uuid4

import aiosqlite
from aiosqlite import Connection

from overmind.domain.models import (
    Agent,
    Briefing,
    Conversation,
    ConversationMode,
    GraphEdge,
    GraphEdgeType,
    GraphNode,
    GraphNodeType,
    IterationStatus,
    LLMInteraction,
    Memory,
    MemoryType,
    Message,
    MessageRole,
    Phase,
    Task,
    TaskSource,
    TaskStatus,
    WorkerIteration,
)

# Scope key stored for globally scoped graph types
GLOBAL_SCOPE = "global"


def to_db_timestamp(value: datetime | None) -> str | None:
    """Serialize a datetime so that lexical order matches time order."""
    if value is None:
        return None
    return value.isoformat(timespec="microseconds")


def _parse_timestamp(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _parse_uuid(value: str | None) -> UUID | None:
    return UUID(value) if value else None


def scope_key(agent_id: UUID | None) -> str:
    """Uniqueness scope of a graph type: the owning agent or global."""
    return str(agent_id) if agent_id is not None else GLOBAL_SCOPE


class Database:
    """SQLite database with WAL mode for concurrent access.

    Reads go through ``_get_connection``. Every write goes through
    ``transaction`` so that multi-statement writes are atomic and writers are
    serialized, including on the shared ``:memory:`` connection.

    A transaction opened by a task is visible to everything that task calls:
    nested ``transaction`` blocks become savepoints of the outer one, and
    reads use its connection so they see its uncommitted writes.
    """

    def __init__(self, db_path: Path) -> None:
        """Initialize database.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self._initialized = False
        self._shared_conn: Connection | None = None  # For :memory: databases
        self._write_lock = asyncio.Lock()
        self._active: ContextVar[Connection | None] = ContextVar(
            f"overmind_transaction_{id(self)}", default=None
        )

    @property
    def is_memory(self) -> bool:
        """Whether this is an in-memory database."""
        return str(self.db_path) == ":memory:"

    async def initialize(self) -> None:
        """Initialize database schema and settings."""
        if self._initialized:
            return

        if not self.is_memory:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        async with self._get_connection() as conn:
            # Enable WAL mode for concurrent reads
            await conn.execute("PRAGMA journal_mode=WAL")
            await conn.execute("PRAGMA synchronous=NORMAL")
            await conn.execute("PRAGMA foreign_keys=ON")
            await conn.execute("PRAGMA busy_timeout=5000")

            await self._create_tables(conn)
            await self._create_indexes(conn)
            await conn.commit()

        self._initialized = True

    async def close(self) -> None:
        """Close the database connection.

        Only needed for :memory: databases to clean up the shared connection.
        File-based databases close connections automatically.
        """
        if self._shared_conn is not None:
            await self._shared_conn.close()
            self._shared_conn = None
            self._initialized = False

    @asynccontextmanager
    async def _get_connection(self) -> AsyncIterator[Connection]:
        """Get database connection with proper settings.

        For :memory: databases, maintains a shared connection to preserve data
        across multiple operations. For file databases, creates a new connection
        each time. Inside a transaction, its connection is reused.
        """
        active = self._active.get()
        if active is not None:
            yield active
            return

        if self.is_memory:
            if self._shared_conn is None:
                self._shared_conn = await aiosqlite.connect(":memory:")
                self._shared_conn.row_factory = aiosqlite.Row
                await self._shared_conn.execute("PRAGMA foreign_keys=ON")
            yield self._shared_conn
        else:
            async with aiosqlite.connect(str(self.db_path)) as conn:
                conn.row_factory = aiosqlite.Row
                # SQLite defaults to foreign_keys=OFF on every new connection
                await conn.execute("PRAGMA foreign_keys=ON")
                await conn.execute("PRAGMA busy_timeout=5000")
                yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Connection]:
        """Run a block of writes as one IMMEDIATE transaction.

        Commits when the block exits normally and rolls back on any exception.
        Called while the current task already holds a transaction, the block
        runs as a savepoint: its failure undoes only its own writes, and
        nothing is committed until the outermost block exits.
        """
        active = self._active.get()
        if active is not None:
            async with self._savepoint(active):
                yield active
            return

        async with self._write_lock:
            async with self._get_connection() as conn:
                token = self._active.set(conn)
                try:
                    await conn.execute("BEGIN IMMEDIATE")
                    try:
                        yield conn
                    except BaseException:
                        await conn.rollback()
                        raise
                    else:
                        await conn.commit()
                finally:
                    self._active.reset(token)

    @asynccontextmanager
    async def _savepoint(self, conn: Connection) -> AsyncIterator[None]:
        name = f"sp_{uuid4().hex}"
        await conn.execute(f"SAVEPOINT {name}")
        try:
            yield
        except BaseException:
            await conn.execute(f"ROLLBACK TO {name}")
            await conn.execute(f"RELEASE {name}")
            raise
        else:
            await conn.execute(f"RELEASE {name}")

    async def _create_tables(self, conn: Connection) -> None:
        """Create all tables."""
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS agents (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                role TEXT NOT NULL DEFAULT '',
                entity_id TEXT,
                parent_agent_id TEXT,
                is_active INTEGER NOT NULL DEFAULT 1,
                iteration_interval_ms INTEGER NOT NULL,
                phase_prompts TEXT NOT NULL DEFAULT '{}',
                created_at TIMESTAMP NOT NULL,
                FOREIGN KEY (parent_agent_id) REFERENCES agents(id) ON DELETE SET NULL
            )
            """
        )

        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS tasks (
                id TEXT PRIMARY KEY,
                assigned_to_id TEXT NOT NULL,
                task TEXT NOT NULL,
                source TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',
                result TEXT,
                created_at TIMESTAMP NOT NULL,
                completed_at TIMESTAMP,
                claimed_at TIMESTAMP,
                claimed_by_iteration_id TEXT,
                FOREIGN KEY (assigned_to_id) REFERENCES agents(id) ON DELETE CASCADE
            )
            """
        )

        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS worker_iterations (
                id TEXT PRIMARY KEY,
                agent_id TEXT NOT NULL,
                status TEXT NOT NULL,
                task_id TEXT,
                error_message TEXT,
                created_at TIMESTAMP NOT NULL,
                completed_at TIMESTAMP,
                FOREIGN KEY (agent_id) REFERENCES agents(id) ON DELETE CASCADE
            )
            """
        )

        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS llm_interactions (
                id TEXT PRIMARY KEY,
                iteration_id TEXT NOT NULL,
                agent_id TEXT NOT NULL,
                phase TEXT NOT NULL,
                system_prompt TEXT NOT NULL,
                request TEXT NOT NULL,
                response TEXT,
                created_at TIMESTAMP NOT NULL,
                completed_at TIMESTAMP,
                FOREIGN KEY (iteration_id) REFERENCES worker_iterations(id) ON DELETE CASCADE
            )
            """
        )

        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS conversations (
                id TEXT PRIMARY KEY,
                agent_id TEXT NOT NULL,
                mode TEXT NOT NULL,
                created_at TIMESTAMP NOT NULL,
                UNIQUE (agent_id, mode),
                FOREIGN KEY (agent_id) REFERENCES agents(id) ON DELETE CASCADE
            )
            """
        )

        # seq gives messages a total order independent of clock resolution
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS messages (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL UNIQUE,
                conversation_id TEXT NOT NULL,
                role TEXT NOT NULL,
                content TEXT NOT NULL,
                previous_message_id TEXT,
                summarized_through_seq INTEGER,
                created_at TIMESTAMP NOT NULL,
                FOREIGN KEY (conversation_id) REFERENCES conversations(id) ON DELETE CASCADE
            )
            """
        )

        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS graph_node_types (
                id TEXT PRIMARY KEY,
                agent_id TEXT,
                scope_key TEXT NOT NULL,
                name TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                properties_schema TEXT NOT NULL,
                example_properties TEXT,
                created_at TIMESTAMP NOT NULL,
                UNIQUE (scope_key, name),
                FOREIGN KEY (agent_id) REFERENCES agents(id) ON DELETE CASCADE
            )
            """
        )

        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS graph_edge_types (
                id TEXT PRIMARY KEY,
                agent_id TEXT,
                scope_key TEXT NOT NULL,
                name TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                properties_schema TEXT NOT NULL,
                example_properties TEXT,
                source_node_types TEXT NOT NULL DEFAULT '[]',
                target_node_types TEXT NOT NULL DEFAULT '[]',
                created_at TIMESTAMP NOT NULL,
                UNIQUE (scope_key, name),
                FOREIGN KEY (agent_id) REFERENCES agents(id) ON DELETE CASCADE
            )
            """
        )

        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS graph_nodes (
                id TEXT PRIMARY KEY,
                agent_id TEXT NOT NULL,
                type TEXT NOT NULL,
                name TEXT NOT NULL,
                properties TEXT NOT NULL DEFAULT '{}',
                created_at TIMESTAMP NOT NULL,
                updated_at TIMESTAMP NOT NULL,
                UNIQUE (agent_id, type, name),
                FOREIGN KEY (agent_id) REFERENCES agents(id) ON DELETE CASCADE
            )
            """
        )

        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS graph_edges (
                id TEXT PRIMARY KEY,
                agent_id TEXT NOT NULL,
                type TEXT NOT NULL,
                source_id TEXT NOT NULL,
                target_id TEXT NOT NULL,
                properties TEXT NOT NULL DEFAULT '{}',
                created_at TIMESTAMP NOT NULL,
                UNIQUE (agent_id, type, source_id, target_id),
                FOREIGN KEY (source_id) REFERENCES graph_nodes(id) ON DELETE CASCADE,
                FOREIGN KEY (target_id) REFERENCES graph_nodes(id) ON DELETE CASCADE
            )
            """
        )

        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS memories (
                id TEXT PRIMARY KEY,
                agent_id TEXT NOT NULL,
                type TEXT NOT NULL,
                content TEXT NOT NULL,
                content_key TEXT NOT NULL,
                created_at TIMESTAMP NOT NULL,
                UNIQUE (agent_id, content_key),
                FOREIGN KEY (agent_id) REFERENCES agents(id) ON DELETE CASCADE
            )
            """
        )

        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS briefings (
                id TEXT PRIMARY KEY,
                agent_id TEXT NOT NULL,
                iteration_id TEXT NOT NULL,
                title TEXT NOT NULL,
                summary TEXT NOT NULL,
                full_message TEXT NOT NULL DEFAULT '',
                created_at TIMESTAMP NOT NULL,
                FOREIGN KEY (agent_id) REFERENCES agents(id) ON DELETE CASCADE
            )
            """
        )

    async def _create_indexes(self, conn: Connection) -> None:
        """Create indexes for the hot query paths."""
        statements = [
            # FIFO dequeue per agent
            "CREATE INDEX IF NOT EXISTS idx_tasks_agent_pending "
            "ON tasks(assigned_to_id, status, created_at)",
            "CREATE INDEX IF NOT EXISTS idx_iterations_agent "
            "ON worker_iterations(agent_id, created_at DESC)",
            "CREATE INDEX IF NOT EXISTS idx_interactions_iteration "
            "ON llm_interactions(iteration_id, created_at)",
            "CREATE INDEX IF NOT EXISTS idx_messages_conversation "
            "ON messages(conversation_id, seq)",
            "CREATE INDEX IF NOT EXISTS idx_graph_nodes_agent_type ON graph_nodes(agent_id, type)",
            "CREATE INDEX IF NOT EXISTS idx_graph_edges_source ON graph_edges(source_id)",
            "CREATE INDEX IF NOT EXISTS idx_graph_edges_target ON graph_edges(target_id)",
            "CREATE INDEX IF NOT EXISTS idx_agents_parent ON agents(parent_agent_id)",
        ]
        for statement in statements:
            await conn.execute(statement)

    # Row conversion

    def _row_to_agent(self, row: aiosqlite.Row) -> Agent:
        """Convert database row to Agent model."""
        prompts = json.loads(row["phase_prompts"] or "{}")
        return Agent(
            id=UUID(row["id"]),
            name=row["name"],
            role=row["role"],
            entity_id=row["entity_id"],
            parent_agent_id=_parse_uuid(row["parent_agent_id"]),
            is_active=bool(row["is_active"]),
            iteration_interval_ms=row["iteration_interval_ms"],
            phase_prompts={Phase(key): value for key, value in prompts.items()},
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def _row_to_task(self, row: aiosqlite.Row) -> Task:
        """Convert database row to Task model."""
        return Task(
            id=UUID(row["id"]),
            assigned_to_id=UUID(row["assigned_to_id"]),
            task=row["task"],
            source=TaskSource(row["source"]),
            status=TaskStatus(row["status"]),
            result=row["result"],
            created_at=datetime.fromisoformat(row["created_at"]),
            completed_at=_parse_timestamp(row["completed_at"]),
            claimed_at=_parse_timestamp(row["claimed_at"]),
            claimed_by_iteration_id=_parse_uuid(row["claimed_by_iteration_id"]),
        )

    def _row_to_iteration(self, row: aiosqlite.Row) -> WorkerIteration:
        """Convert database row to WorkerIteration model."""
        return WorkerIteration(
            id=UUID(row["id"]),
            agent_id=UUID(row["agent_id"]),
            status=IterationStatus(row["status"]),
            task_id=_parse_uuid(row["task_id"]),
            error_message=row["error_message"],
            created_at=datetime.fromisoformat(row["created_at"]),
            completed_at=_parse_timestamp(row["completed_at"]),
        )

    def _row_to_interaction(self, row: aiosqlite.Row) -> LLMInteraction:
        """Convert database row to LLMInteraction model."""
        return LLMInteraction(
            id=UUID(row["id"]),
            iteration_id=UUID(row["iteration_id"]),
            agent_id=UUID(row["agent_id"]),
            phase=Phase(row["phase"]),
            system_prompt=row["system_prompt"],
            request=json.loads(row["request"]),
            response=json.loads(row["response"]) if row["response"] else None,
            created_at=datetime.fromisoformat(row["created_at"]),
            completed_at=_parse_timestamp(row["completed_at"]),
        )

    def _row_to_conversation(self, row: aiosqlite.Row) -> Conversation:
        """Convert database row to Conversation model."""
        return Conversation(
            id=UUID(row["id"]),
            agent_id=UUID(row["agent_id"]),
            mode=ConversationMode(row["mode"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def _row_to_message(self, row: aiosqlite.Row) -> Message:
        """Convert database row to Message model."""
        return Message(
            id=UUID(row["id"]),
            seq=row["seq"],
            conversation_id=UUID(row["conversation_id"]),
            role=MessageRole(row["role"]),
            content=row["content"],
            previous_message_id=_parse_uuid(row["previous_message_id"]),
            summarized_through_seq=row["summarized_through_seq"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def _row_to_node_type(self, row: aiosqlite.Row) -> GraphNodeType:
        """Convert database row to GraphNodeType model."""
        return GraphNodeType(
            id=UUID(row["id"]),
            agent_id=_parse_uuid(row["agent_id"]),
            name=row["name"],
            description=row["description"],
            properties_schema=json.loads(row["properties_schema"]),
            example_properties=(
                json.loads(row["example_properties"]) if row["example_properties"] else None
            ),
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def _row_to_edge_type(self, row: aiosqlite.Row) -> GraphEdgeType:
        """Convert database row to GraphEdgeType model."""
        return GraphEdgeType(
            id=UUID(row["id"]),
            agent_id=_parse_uuid(row["agent_id"]),
            name=row["name"],
            description=row["description"],
            properties_schema=json.loads(row["properties_schema"]),
            example_properties=(
                json.loads(row["example_properties"]) if row["example_properties"] else None
            ),
            source_node_types=json.loads(row["source_node_types"]),
            target_node_types=json.loads(row["target_node_types"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def _row_to_node(self, row: aiosqlite.Row) -> GraphNode:
        """Convert database row to GraphNode model."""
        return GraphNode(
            id=UUID(row["id"]),
            agent_id=UUID(row["agent_id"]),
            type=row["type"],
            name=row["name"],
            properties=json.loads(row["properties"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def _row_to_edge(self, row: aiosqlite.Row) -> GraphEdge:
        """Convert database row to GraphEdge model."""
        return GraphEdge(
            id=UUID(row["id"]),
            agent_id=UUID(row["agent_id"]),
            type=row["type"],
            source_id=UUID(row["source_id"]),
            target_id=UUID(row["target_id"]),
            properties=json.loads(row["properties"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def _row_to_memory(self, row: aiosqlite.Row) -> Memory:
        """Convert database row to Memory model."""
        return Memory(
            id=UUID(row["id"]),
            agent_id=UUID(row["agent_id"]),
            type=MemoryType(row["type"]),
            content=row["content"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def _row_to_briefing(self, row: aiosqlite.Row) -> Briefing:
        """Convert database row to Briefing model."""
        return Briefing(
            id=UUID(row["id"]),
            agent_id=UUID(row["agent_id"]),
            iteration_id=UUID(row["iteration_id"]),
            title=row["title"],
            summary=row["summary"],
            full_message=row["full_message"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    @staticmethod
    def dumps(value: Any) -> str:
        """Serialize a JSON column value."""
        return json.dumps(value, default=str)
