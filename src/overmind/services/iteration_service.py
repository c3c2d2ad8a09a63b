"""Audit log of worker iterations, their LLM interactions and briefings."""

from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from overmind.domain.models import (
    Briefing,
    IterationStatus,
    LLMInteraction,
    Phase,
    WorkerIteration,
)
from overmind.infrastructure.database import Database, to_db_timestamp
from overmind.infrastructure.exceptions import NotFoundError
from overmind.infrastructure.logger import get_logger

logger = get_logger(__name__)


class IterationService:
    """Persistence for ``WorkerIteration`` and ``LLMInteraction`` records.

    Iterations are sealed exactly once: ``complete_iteration`` and
    ``fail_iteration`` only act on a ``running`` iteration.
    """

    def __init__(self, database: Database) -> None:
        """Initialize iteration service.

        Args:
            database: Database instance for audit storage
        """
        self._db = database

    async def create_iteration(self, agent_id: UUID) -> WorkerIteration:
        """Open a new running iteration for an agent."""
        iteration = WorkerIteration(agent_id=agent_id)
        async with self._db.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO worker_iterations (id, agent_id, status, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (
                    str(iteration.id),
                    str(agent_id),
                    iteration.status.value,
                    to_db_timestamp(iteration.created_at),
                ),
            )
        return iteration

    async def attach_task(self, iteration_id: UUID, task_id: UUID) -> None:
        """Record which task an iteration is processing."""
        async with self._db.transaction() as conn:
            await conn.execute(
                "UPDATE worker_iterations SET task_id = ? WHERE id = ?",
                (str(task_id), str(iteration_id)),
            )

    async def complete_iteration(self, iteration_id: UUID) -> WorkerIteration:
        """Seal a running iteration as completed."""
        return await self._seal(iteration_id, IterationStatus.COMPLETED, None)

    async def fail_iteration(self, iteration_id: UUID, error_message: str) -> WorkerIteration:
        """Seal a running iteration as failed with the underlying cause."""
        return await self._seal(iteration_id, IterationStatus.FAILED, error_message)

    async def _seal(
        self, iteration_id: UUID, status: IterationStatus, error_message: str | None
    ) -> WorkerIteration:
        now = datetime.now(timezone.utc)
        async with self._db.transaction() as conn:
            await conn.execute(
                """
                UPDATE worker_iterations
                SET status = ?, error_message = ?, completed_at = ?
                WHERE id = ? AND status = ?
                """,
                (
                    status.value,
                    error_message,
                    to_db_timestamp(now),
                    str(iteration_id),
                    IterationStatus.RUNNING.value,
                ),
            )
        return await self.get_iteration(iteration_id)

    async def get_iteration(self, iteration_id: UUID) -> WorkerIteration:
        """Get iteration by ID.

        Raises:
            NotFoundError: If the iteration does not exist
        """
        async with self._db._get_connection() as conn:
            cursor = await conn.execute(
                "SELECT * FROM worker_iterations WHERE id = ?", (str(iteration_id),)
            )
            row = await cursor.fetchone()
        if row is None:
            raise NotFoundError("iteration", iteration_id)
        return self._db._row_to_iteration(row)

    async def list_iterations(self, agent_id: UUID, limit: int = 20) -> list[WorkerIteration]:
        """List an agent's iterations, newest first."""
        async with self._db._get_connection() as conn:
            cursor = await conn.execute(
                """
                SELECT * FROM worker_iterations
                WHERE agent_id = ?
                ORDER BY created_at DESC, rowid DESC
                LIMIT ?
                """,
                (str(agent_id), limit),
            )
            rows = await cursor.fetchall()
        return [self._db._row_to_iteration(row) for row in rows]

    async def start_interaction(
        self,
        iteration_id: UUID,
        agent_id: UUID,
        phase: Phase,
        system_prompt: str,
        request: dict[str, Any],
    ) -> LLMInteraction:
        """Record a phase call before it is made; ``response`` stays null."""
        interaction = LLMInteraction(
            iteration_id=iteration_id,
            agent_id=agent_id,
            phase=phase,
            system_prompt=system_prompt,
            request=request,
        )
        async with self._db.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO llm_interactions (
                    id, iteration_id, agent_id, phase, system_prompt, request, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(interaction.id),
                    str(iteration_id),
                    str(agent_id),
                    phase.value,
                    system_prompt,
                    self._db.dumps(request),
                    to_db_timestamp(interaction.created_at),
                ),
            )
        return interaction

    async def finish_interaction(
        self, interaction: LLMInteraction, response: dict[str, Any]
    ) -> LLMInteraction:
        """Attach the response snapshot and completion time to an interaction."""
        now = datetime.now(timezone.utc)
        async with self._db.transaction() as conn:
            await conn.execute(
                "UPDATE llm_interactions SET response = ?, completed_at = ? WHERE id = ?",
                (self._db.dumps(response), to_db_timestamp(now), str(interaction.id)),
            )
        return interaction.model_copy(update={"response": response, "completed_at": now})

    async def list_interactions(self, iteration_id: UUID) -> list[LLMInteraction]:
        """List an iteration's interactions in call order."""
        async with self._db._get_connection() as conn:
            cursor = await conn.execute(
                """
                SELECT * FROM llm_interactions
                WHERE iteration_id = ?
                ORDER BY created_at ASC, rowid ASC
                """,
                (str(iteration_id),),
            )
            rows = await cursor.fetchall()
        return [self._db._row_to_interaction(row) for row in rows]

    async def record_briefing(
        self,
        agent_id: UUID,
        iteration_id: UUID,
        title: str,
        summary: str,
        full_message: str = "",
    ) -> Briefing:
        """Persist a user-facing briefing produced by an iteration."""
        briefing = Briefing(
            agent_id=agent_id,
            iteration_id=iteration_id,
            title=title,
            summary=summary,
            full_message=full_message,
        )
        async with self._db.transaction() as conn:
            await conn.execute(
                """
                INSERT INTO briefings (
                    id, agent_id, iteration_id, title, summary, full_message, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(briefing.id),
                    str(agent_id),
                    str(iteration_id),
                    title,
                    summary,
                    full_message,
                    to_db_timestamp(briefing.created_at),
                ),
            )
        logger.info("briefing_recorded", agent_id=str(agent_id), briefing_id=str(briefing.id))
        return briefing

    async def list_briefings(self, agent_id: UUID, limit: int = 20) -> list[Briefing]:
        """List an agent's briefings, newest first."""
        async with self._db._get_connection() as conn:
            cursor = await conn.execute(
                """
                SELECT * FROM briefings
                WHERE agent_id = ?
                ORDER BY created_at DESC, rowid DESC
                LIMIT ?
                """,
                (str(agent_id), limit),
            )
            rows = await cursor.fetchall()
        return [self._db._row_to_briefing(row) for row in rows]
