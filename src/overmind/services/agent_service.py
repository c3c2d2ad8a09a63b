"""Agent registry: creation, lookup, parent/child lookup and ownership checks."""

from uuid import UUID

from overmind.domain.models import Agent, Phase
from overmind.infrastructure.database import Database, to_db_timestamp
from overmind.infrastructure.exceptions import ForbiddenError, NotFoundError
from overmind.infrastructure.logger import get_logger

logger = get_logger(__name__)


class AgentService:
    """Persistence and lookup for agents.

    Parent/child relationships are plain lookup keys: an agent only knows its
    ``parent_agent_id`` and subordinates are found by querying on it.
    """

    def __init__(self, database: Database) -> None:
        """Initialize agent service.

        Args:
            database: Database instance for agent storage
        """
        self._db = database

    async def create_agent(
        self,
        name: str,
        role: str = "",
        entity_id: str | None = None,
        parent_agent_id: UUID | None = None,
        iteration_interval_ms: int = 300_000,
        phase_prompts: dict[Phase, str] | None = None,
    ) -> Agent:
        """Register a new agent.

        Args:
            name: Display name
            role: Free-form role description used in prompts
            entity_id: Owning team or aide
            parent_agent_id: Lead agent this agent reports to
            iteration_interval_ms: Timer period between scheduled iterations
            phase_prompts: Optional system prompt override per phase

        Returns:
            The created agent

        Raises:
            NotFoundError: If parent_agent_id does not resolve
        """
        if parent_agent_id is not None:
            await self.get_agent(parent_agent_id)

        agent = Agent(
            name=name,
            role=role,
            entity_id=entity_id,
            parent_agent_id=parent_agent_id,
            iteration_interval_ms=iteration_interval_ms,
            phase_prompts=phase_prompts or {},
        )

        async with self._db.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO agents (
                    id, name, role, entity_id, parent_agent_id, is_active,
                    iteration_interval_ms, phase_prompts, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(agent.id),
                    agent.name,
                    agent.role,
                    agent.entity_id,
                    str(agent.parent_agent_id) if agent.parent_agent_id else None,
                    int(agent.is_active),
                    agent.iteration_interval_ms,
                    self._db.dumps({phase.value: text for phase, text in agent.phase_prompts.items()}),
                    to_db_timestamp(agent.created_at),
                ),
            )

        logger.info("agent_created", agent_id=str(agent.id), name=agent.name)
        return agent

    async def get_agent(self, agent_id: UUID) -> Agent:
        """Get agent by ID.

        Raises:
            NotFoundError: If the agent does not exist
        """
        async with self._db._get_connection() as conn:
            cursor = await conn.execute("SELECT * FROM agents WHERE id = ?", (str(agent_id),))
            row = await cursor.fetchone()
        if row is None:
            raise NotFoundError("agent", agent_id)
        return self._db._row_to_agent(row)

    async def exists(self, agent_id: UUID) -> bool:
        """Check whether an agent exists."""
        async with self._db._get_connection() as conn:
            cursor = await conn.execute("SELECT 1 FROM agents WHERE id = ?", (str(agent_id),))
            return await cursor.fetchone() is not None

    async def list_agents(self, active_only: bool = False) -> list[Agent]:
        """List agents in creation order.

        Args:
            active_only: Only return agents that are not paused
        """
        query = "SELECT * FROM agents"
        if active_only:
            query += " WHERE is_active = 1"
        query += " ORDER BY created_at ASC"
        async with self._db._get_connection() as conn:
            cursor = await conn.execute(query)
            rows = await cursor.fetchall()
        return [self._db._row_to_agent(row) for row in rows]

    async def get_subordinates(self, agent_id: UUID) -> list[Agent]:
        """List agents whose parent is ``agent_id``."""
        async with self._db._get_connection() as conn:
            cursor = await conn.execute(
                "SELECT * FROM agents WHERE parent_agent_id = ? ORDER BY created_at ASC",
                (str(agent_id),),
            )
            rows = await cursor.fetchall()
        return [self._db._row_to_agent(row) for row in rows]

    async def set_active(self, agent_id: UUID, is_active: bool) -> Agent:
        """Pause or resume an agent.

        Raises:
            NotFoundError: If the agent does not exist
        """
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                "UPDATE agents SET is_active = ? WHERE id = ?",
                (int(is_active), str(agent_id)),
            )
            if cursor.rowcount == 0:
                raise NotFoundError("agent", agent_id)

        logger.info("agent_activity_changed", agent_id=str(agent_id), is_active=is_active)
        return await self.get_agent(agent_id)

    async def delete_agent(self, agent_id: UUID) -> None:
        """Delete an agent and everything it owns.

        Raises:
            NotFoundError: If the agent does not exist
        """
        async with self._db.transaction() as conn:
            cursor = await conn.execute("DELETE FROM agents WHERE id = ?", (str(agent_id),))
            if cursor.rowcount == 0:
                raise NotFoundError("agent", agent_id)

        logger.info("agent_deleted", agent_id=str(agent_id))

    async def assert_owned_by(self, agent_id: UUID, entity_id: str) -> Agent:
        """Resolve an agent and check that it belongs to ``entity_id``.

        Raises:
            NotFoundError: If the agent does not exist
            ForbiddenError: If the agent belongs to another entity
        """
        agent = await self.get_agent(agent_id)
        if agent.entity_id != entity_id:
            raise ForbiddenError(f"Agent {agent_id} does not belong to entity {entity_id}")
        return agent
