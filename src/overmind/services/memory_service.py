"""Memory service: short deduplicated preferences, insights and facts per agent."""

import re
from uuid import UUID

from overmind.domain.models import Memory, MemoryType
from overmind.infrastructure.database import Database, to_db_timestamp
from overmind.infrastructure.exceptions import NotFoundError
from overmind.infrastructure.logger import get_logger

logger = get_logger(__name__)

_WHITESPACE = re.compile(r"\s+")

_SECTION_TITLES = {
    MemoryType.PREFERENCE: "User Preferences",
    MemoryType.INSIGHT: "Insights",
    MemoryType.FACT: "Facts",
}


def content_key(content: str) -> str:
    """Dedup key: case-folded content with runs of whitespace collapsed."""
    return _WHITESPACE.sub(" ", content.strip()).casefold()


class MemoryService:
    """Service for storing memories derived from conversations.

    Two memories of one agent with the same content (ignoring case and
    whitespace) are the same memory; the first one written is kept.
    """

    def __init__(self, db: Database) -> None:
        """Initialize memory service.

        Args:
            db: Database instance for storage operations
        """
        self.db = db

    async def add_memory(self, agent_id: UUID, memory_type: MemoryType, content: str) -> Memory:
        """Store a memory unless an equivalent one exists.

        Args:
            agent_id: Owning agent
            memory_type: preference, insight or fact
            content: Memory text

        Returns:
            The stored memory; the pre-existing one for duplicate content

        Raises:
            pydantic.ValidationError: If content is empty
            NotFoundError: If the agent does not exist
        """
        memory = Memory(agent_id=agent_id, type=memory_type, content=content)
        key = content_key(memory.content)

        async with self.db.transaction() as conn:
            cursor = await conn.execute("SELECT 1 FROM agents WHERE id = ?", (str(agent_id),))
            if await cursor.fetchone() is None:
                raise NotFoundError("agent", agent_id)

            cursor = await conn.execute(
                """
                INSERT OR IGNORE INTO memories (id, agent_id, type, content, content_key, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    str(memory.id),
                    str(agent_id),
                    memory.type.value,
                    memory.content,
                    key,
                    to_db_timestamp(memory.created_at),
                ),
            )
            inserted = cursor.rowcount > 0

            if not inserted:
                cursor = await conn.execute(
                    "SELECT * FROM memories WHERE agent_id = ? AND content_key = ?",
                    (str(agent_id), key),
                )
                row = await cursor.fetchone()
                memory = self.db._row_to_memory(row)

        if inserted:
            logger.info("memory_added", agent_id=str(agent_id), memory_type=memory.type.value)
        else:
            logger.debug("memory_duplicate_skipped", agent_id=str(agent_id), memory_id=str(memory.id))
        return memory

    async def add_memories(
        self, agent_id: UUID, memories: list[tuple[MemoryType, str]]
    ) -> list[Memory]:
        """Store several memories, skipping duplicates."""
        return [await self.add_memory(agent_id, kind, text) for kind, text in memories]

    async def list_memories(
        self, agent_id: UUID, memory_type: MemoryType | None = None
    ) -> list[Memory]:
        """List an agent's memories, oldest first."""
        query = "SELECT * FROM memories WHERE agent_id = ?"
        params: list[str] = [str(agent_id)]
        if memory_type is not None:
            query += " AND type = ?"
            params.append(memory_type.value)
        query += " ORDER BY created_at ASC"

        async with self.db._get_connection() as conn:
            cursor = await conn.execute(query, tuple(params))
            rows = await cursor.fetchall()
        return [self.db._row_to_memory(row) for row in rows]

    async def build_memory_context_block(self, agent_id: UUID) -> str:
        """Render an agent's memories as markdown sections for prompts.

        Returns:
            Sections per memory type, or an empty string when there are none
        """
        memories = await self.list_memories(agent_id)
        if not memories:
            return ""

        sections = []
        for memory_type, title in _SECTION_TITLES.items():
            items = [m.content for m in memories if m.type == memory_type]
            if items:
                lines = "\n".join(f"- {item}" for item in items)
                sections.append(f"### {title}\n{lines}")
        return "\n\n".join(sections)
