"""Task queue service: per-agent FIFO queues with atomic claims.

Features:
- Enqueue tasks tagged by source (user, system, self, delegation)
- FIFO dequeue per agent with an atomic claim so concurrent callers never
  receive the same task
- Idempotent completion
- Claim release for at-least-once processing when an iteration fails
- Queue statistics per agent

State Transitions:
    pending (unclaimed) -> pending (claimed)   dequeue_oldest_pending
    pending (claimed)   -> pending (unclaimed) release
    pending             -> completed           complete
    completed           -> completed           complete (no-op)
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID

from overmind.domain.models import Task, TaskSource, TaskStatus
from overmind.infrastructure.database import Database, to_db_timestamp
from overmind.infrastructure.exceptions import ForbiddenError, NotFoundError, OvermindError

logger = logging.getLogger(__name__)


class TaskQueueError(OvermindError):
    """Base exception for task queue errors."""

    pass


class EmptyTaskError(TaskQueueError, ValueError):
    """Raised when a user or system task has no text."""

    pass


# Sources whose task text must be non-empty
_TEXT_REQUIRED_SOURCES = {TaskSource.USER, TaskSource.SYSTEM}


class TaskQueueService:
    """Per-agent FIFO task queue.

    Order is ``created_at`` ascending with insertion order breaking ties. A
    claimed task stays ``pending`` but is excluded from dequeue until it is
    completed or released.

    Usage:
        service = TaskQueueService(db)
        task = await service.enqueue(agent.id, "Find AAPL price", TaskSource.USER)
        claimed = await service.dequeue_oldest_pending(agent.id)
        await service.complete(claimed.id, "AAPL closed at ...")
    """

    def __init__(self, database: Database):
        """Initialize task queue service.

        Args:
            database: Database instance for task storage
        """
        self._db = database

    async def enqueue(self, agent_id: UUID, text: str, source: TaskSource) -> Task:
        """Add a pending task to an agent's queue.

        Args:
            agent_id: Agent the task is assigned to
            text: Task instruction
            source: Origin of the task

        Returns:
            The new pending task

        Raises:
            EmptyTaskError: If text is empty for a user or system task
            NotFoundError: If the agent does not exist
        """
        if source in _TEXT_REQUIRED_SOURCES and not text.strip():
            raise EmptyTaskError(f"Task text must not be empty for source '{source.value}'")

        task = Task(assigned_to_id=agent_id, task=text, source=source)

        async with self._db.transaction() as conn:
            cursor = await conn.execute("SELECT 1 FROM agents WHERE id = ?", (str(agent_id),))
            if await cursor.fetchone() is None:
                raise NotFoundError("agent", agent_id)

            await conn.execute(
                """
                INSERT INTO tasks (id, assigned_to_id, task, source, status, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    str(task.id),
                    str(agent_id),
                    task.task,
                    task.source.value,
                    task.status.value,
                    to_db_timestamp(task.created_at),
                ),
            )

        logger.info(f"Enqueued task {task.id} for agent {agent_id}: source={source.value}")
        return task

    async def enqueue_user_task(self, agent_id: UUID, text: str) -> Task:
        """Queue a user-sourced task."""
        return await self.enqueue(agent_id, text, TaskSource.USER)

    async def enqueue_system_task(self, agent_id: UUID, text: str) -> Task:
        """Queue a system-sourced task."""
        return await self.enqueue(agent_id, text, TaskSource.SYSTEM)

    async def enqueue_self_task(self, agent_id: UUID, text: str) -> Task:
        """Queue a follow-up task the agent assigned to itself."""
        return await self.enqueue(agent_id, text, TaskSource.SELF)

    async def delegate(self, from_agent_id: UUID, to_agent_id: UUID, text: str) -> Task:
        """Queue a delegation task on a direct subordinate.

        Raises:
            NotFoundError: If the target agent does not exist
            ForbiddenError: If the target does not report to the delegator
        """
        async with self._db._get_connection() as conn:
            cursor = await conn.execute(
                "SELECT parent_agent_id FROM agents WHERE id = ?", (str(to_agent_id),)
            )
            row = await cursor.fetchone()

        if row is None:
            raise NotFoundError("agent", to_agent_id)
        if row["parent_agent_id"] != str(from_agent_id):
            raise ForbiddenError(
                f"Agent {to_agent_id} is not a subordinate of agent {from_agent_id}"
            )

        return await self.enqueue(to_agent_id, text, TaskSource.DELEGATION)

    async def dequeue_oldest_pending(
        self, agent_id: UUID, iteration_id: UUID | None = None
    ) -> Task | None:
        """Claim and return the oldest unclaimed pending task of an agent.

        The select and the claim run in one IMMEDIATE transaction, and the
        claim only succeeds while the row is still unclaimed.

        Args:
            agent_id: Agent whose queue is read
            iteration_id: Iteration taking the claim (recorded for audit)

        Returns:
            The claimed task, or None if the queue has no unclaimed work
        """
        now = datetime.now(timezone.utc)

        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                """
                SELECT * FROM tasks
                WHERE assigned_to_id = ? AND status = ? AND claimed_at IS NULL
                ORDER BY created_at ASC, rowid ASC
                LIMIT 1
                """,
                (str(agent_id), TaskStatus.PENDING.value),
            )
            row = await cursor.fetchone()

            if row is None:
                logger.debug(f"No pending tasks for agent {agent_id}")
                return None

            task = self._db._row_to_task(row)
            cursor = await conn.execute(
                """
                UPDATE tasks SET claimed_at = ?, claimed_by_iteration_id = ?
                WHERE id = ? AND status = ? AND claimed_at IS NULL
                """,
                (
                    to_db_timestamp(now),
                    str(iteration_id) if iteration_id else None,
                    str(task.id),
                    TaskStatus.PENDING.value,
                ),
            )
            if cursor.rowcount == 0:
                return None

        task.claimed_at = now
        task.claimed_by_iteration_id = iteration_id
        logger.info(f"Claimed task {task.id} for agent {agent_id}")
        return task

    async def complete(self, task_id: UUID, result: str) -> Task:
        """Mark a task completed with its result.

        Completing an already completed task is a no-op that returns the stored
        record unchanged.

        Raises:
            NotFoundError: If the task does not exist
        """
        now = datetime.now(timezone.utc)

        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                """
                UPDATE tasks
                SET status = ?, result = ?, completed_at = ?, claimed_at = NULL
                WHERE id = ? AND status = ?
                """,
                (
                    TaskStatus.COMPLETED.value,
                    result,
                    to_db_timestamp(now),
                    str(task_id),
                    TaskStatus.PENDING.value,
                ),
            )
            transitioned = cursor.rowcount > 0

            cursor = await conn.execute("SELECT * FROM tasks WHERE id = ?", (str(task_id),))
            row = await cursor.fetchone()

        if row is None:
            raise NotFoundError("task", task_id)

        if transitioned:
            logger.info(f"Completed task {task_id}")
        else:
            logger.debug(f"Task {task_id} already completed; keeping existing result")
        return self._db._row_to_task(row)

    async def release(self, task_id: UUID) -> None:
        """Drop the claim on a pending task so it can be dequeued again.

        Raises:
            NotFoundError: If the task does not exist
        """
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                """
                UPDATE tasks SET claimed_at = NULL, claimed_by_iteration_id = NULL
                WHERE id = ? AND status = ?
                """,
                (str(task_id), TaskStatus.PENDING.value),
            )
            if cursor.rowcount == 0:
                cursor = await conn.execute("SELECT 1 FROM tasks WHERE id = ?", (str(task_id),))
                if await cursor.fetchone() is None:
                    raise NotFoundError("task", task_id)

        logger.info(f"Released claim on task {task_id}")

    async def release_stale_claims(self, older_than_seconds: float) -> int:
        """Release claims left behind by iterations that never finished.

        Args:
            older_than_seconds: Minimum claim age to treat as stale

        Returns:
            Number of released claims
        """
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=older_than_seconds)
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                """
                UPDATE tasks SET claimed_at = NULL, claimed_by_iteration_id = NULL
                WHERE status = ? AND claimed_at IS NOT NULL AND claimed_at < ?
                """,
                (TaskStatus.PENDING.value, to_db_timestamp(cutoff)),
            )
            released = cursor.rowcount

        if released:
            logger.warning(f"Released {released} stale task claims")
        return released

    async def get_task(self, task_id: UUID) -> Task:
        """Get task by ID.

        Raises:
            NotFoundError: If the task does not exist
        """
        async with self._db._get_connection() as conn:
            cursor = await conn.execute("SELECT * FROM tasks WHERE id = ?", (str(task_id),))
            row = await cursor.fetchone()
        if row is None:
            raise NotFoundError("task", task_id)
        return self._db._row_to_task(row)

    async def get_pending_tasks(self, agent_id: UUID, limit: int = 100) -> list[Task]:
        """List pending tasks (claimed or not) in dequeue order."""
        return await self._list_tasks(agent_id, TaskStatus.PENDING, "created_at ASC, rowid ASC", limit)

    async def get_completed_tasks(self, agent_id: UUID, limit: int = 100) -> list[Task]:
        """List completed tasks, most recently completed first."""
        return await self._list_tasks(agent_id, TaskStatus.COMPLETED, "completed_at DESC", limit)

    async def _list_tasks(
        self, agent_id: UUID, status: TaskStatus, order_by: str, limit: int
    ) -> list[Task]:
        async with self._db._get_connection() as conn:
            cursor = await conn.execute(
                f"""
                SELECT * FROM tasks
                WHERE assigned_to_id = ? AND status = ?
                ORDER BY {order_by}
                LIMIT ?
                """,
                (str(agent_id), status.value, limit),
            )
            rows = await cursor.fetchall()
        return [self._db._row_to_task(row) for row in rows]

    async def has_queued_work(self, agent_id: UUID) -> bool:
        """Whether the agent has an unclaimed pending task."""
        async with self._db._get_connection() as conn:
            cursor = await conn.execute(
                """
                SELECT 1 FROM tasks
                WHERE assigned_to_id = ? AND status = ? AND claimed_at IS NULL
                LIMIT 1
                """,
                (str(agent_id), TaskStatus.PENDING.value),
            )
            return await cursor.fetchone() is not None

    async def get_queue_status(self, agent_id: UUID) -> dict[str, Any]:
        """Return queue statistics for one agent.

        Returns:
        {
            "pending": int,        # unclaimed pending tasks
            "in_flight": int,      # claimed pending tasks
            "completed": int,
            "oldest_pending_at": datetime | None,
        }
        """
        async with self._db._get_connection() as conn:
            cursor = await conn.execute(
                """
                SELECT
                    SUM(CASE WHEN status = 'pending' AND claimed_at IS NULL THEN 1 ELSE 0 END)
                        AS pending,
                    SUM(CASE WHEN status = 'pending' AND claimed_at IS NOT NULL THEN 1 ELSE 0 END)
                        AS in_flight,
                    SUM(CASE WHEN status = 'completed' THEN 1 ELSE 0 END) AS completed,
                    MIN(CASE WHEN status = 'pending' THEN created_at END) AS oldest_pending_at
                FROM tasks
                WHERE assigned_to_id = ?
                """,
                (str(agent_id),),
            )
            row = await cursor.fetchone()

        oldest = row["oldest_pending_at"] if row else None
        result = {
            "pending": (row["pending"] if row else 0) or 0,
            "in_flight": (row["in_flight"] if row else 0) or 0,
            "completed": (row["completed"] if row else 0) or 0,
            "oldest_pending_at": datetime.fromisoformat(oldest) if oldest else None,
        }
        logger.debug(f"Queue status for agent {agent_id}: {result}")
        return result
