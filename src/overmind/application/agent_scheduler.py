"""Per-agent scheduling loops for worker iterations."""

import asyncio
from dataclasses import dataclass, field
from uuid import UUID

from overmind.application.worker_runner import WorkerRunner
from overmind.domain.models import IterationStatus
from overmind.infrastructure.config import WorkerConfig
from overmind.infrastructure.exceptions import NotFoundError
from overmind.infrastructure.logger import get_logger
from overmind.services.agent_service import AgentService
from overmind.services.task_queue_service import TaskQueueService

logger = get_logger(__name__)


@dataclass
class _AgentLoop:
    """Bookkeeping for one agent's loop."""

    interval_seconds: float
    wake: asyncio.Event = field(default_factory=asyncio.Event)
    stop: asyncio.Event = field(default_factory=asyncio.Event)
    task: asyncio.Task | None = None


class AgentScheduler:
    """Runs one independent loop per active agent.

    Each loop sleeps for the agent's iteration interval or until woken by a
    task notification, then runs one iteration. Stopping a loop ends its
    wait immediately but never interrupts an iteration in flight: the loop
    exits once that iteration has completed or failed.
    """

    def __init__(
        self,
        agents: AgentService,
        tasks: TaskQueueService,
        runner: WorkerRunner,
        config: WorkerConfig | None = None,
    ):
        """Initialize scheduler.

        Args:
            agents: Agent registry
            tasks: Task queue (stale claim recovery, pending work checks)
            runner: Worker iteration runner
            config: Worker configuration
        """
        self.agents = agents
        self.tasks = tasks
        self.runner = runner
        self.config = config or WorkerConfig()
        self._loops: dict[UUID, _AgentLoop] = {}
        self.runner.on_task_queued = self.notify_task_queued

    @property
    def scheduled_agents(self) -> list[UUID]:
        """Agents whose loop is running and not asked to stop."""
        return [
            agent_id
            for agent_id, loop in self._loops.items()
            if loop.task is not None and not loop.task.done() and not loop.stop.is_set()
        ]

    async def start(self) -> None:
        """Recover stale claims and start a loop for every active agent."""
        released = await self.tasks.release_stale_claims(self.config.stale_claim_seconds)
        agents = await self.agents.list_agents(active_only=True)
        for agent in agents:
            self._start_loop(agent.id, agent.iteration_interval_ms)
        logger.info("scheduler_started", agents=len(agents), released_claims=released)

    async def add_agent(self, agent_id: UUID) -> None:
        """Start (or keep) the loop of an agent.

        Raises:
            NotFoundError: If the agent does not exist
        """
        agent = await self.agents.get_agent(agent_id)
        self._start_loop(agent.id, agent.iteration_interval_ms)

    async def resume_agent(self, agent_id: UUID) -> None:
        """Mark an agent active and start its loop."""
        await self.agents.set_active(agent_id, True)
        await self.add_agent(agent_id)

    async def pause_agent(self, agent_id: UUID) -> None:
        """Mark an agent inactive and stop its loop after any in-flight iteration.

        Raises:
            NotFoundError: If the agent does not exist
        """
        await self.agents.set_active(agent_id, False)
        self._halt(agent_id)
        logger.info("agent_paused", agent_id=str(agent_id))

    async def remove_agent(self, agent_id: UUID) -> None:
        """Stop an agent's loop, wait for its in-flight iteration, then delete it.

        Raises:
            NotFoundError: If the agent does not exist
        """
        loop = self._halt(agent_id)
        if loop is not None and loop.task is not None:
            await asyncio.gather(loop.task, return_exceptions=True)
        self._loops.pop(agent_id, None)
        await self.agents.delete_agent(agent_id)

    def notify_task_queued(self, agent_id: UUID) -> None:
        """Wake an idle agent so it picks up new work now.

        The notification is dropped when the agent is mid-iteration; its loop
        checks for queued work after the iteration finishes.
        """
        loop = self._loops.get(agent_id)
        if loop is None or loop.stop.is_set():
            return
        if self.runner.is_running(agent_id):
            logger.debug("notification_dropped", agent_id=str(agent_id))
            return
        loop.wake.set()

    async def stop(self) -> None:
        """Stop every loop and wait for in-flight iterations to finish."""
        for agent_id in list(self._loops):
            self._halt(agent_id)
        pending = [loop.task for loop in self._loops.values() if loop.task is not None]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._loops.clear()
        logger.info("scheduler_stopped")

    def _start_loop(self, agent_id: UUID, interval_ms: int) -> None:
        loop = self._loops.get(agent_id)
        if loop is not None and loop.task is not None and not loop.task.done():
            # Still finishing its last iteration after a pause: keep it running
            loop.stop.clear()
            loop.interval_seconds = interval_ms / 1000
            return

        loop = _AgentLoop(interval_seconds=interval_ms / 1000)
        self._loops[agent_id] = loop
        loop.task = asyncio.create_task(self._run_loop(agent_id, loop))
        logger.info(
            "agent_scheduled",
            agent_id=str(agent_id),
            interval_seconds=loop.interval_seconds,
        )

    def _halt(self, agent_id: UUID) -> _AgentLoop | None:
        loop = self._loops.get(agent_id)
        if loop is not None:
            loop.stop.set()
            loop.wake.set()
        return loop

    async def _run_loop(self, agent_id: UUID, loop: _AgentLoop) -> None:
        """Wait for the timer or a wake-up, run an iteration, repeat until stopped."""
        while not loop.stop.is_set():
            try:
                await asyncio.wait_for(loop.wake.wait(), timeout=loop.interval_seconds)
            except asyncio.TimeoutError:
                pass
            loop.wake.clear()
            if loop.stop.is_set():
                break

            try:
                iteration = await self.runner.run_iteration(agent_id)
            except NotFoundError:
                logger.warning("agent_missing", agent_id=str(agent_id))
                break
            except Exception as e:
                logger.error(
                    "scheduled_iteration_error",
                    agent_id=str(agent_id),
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue

            # Drain the queue without waiting a full interval, unless the run failed
            if (
                iteration is not None
                and iteration.status == IterationStatus.COMPLETED
                and iteration.task_id is not None
                and await self.tasks.has_queued_work(agent_id)
            ):
                loop.wake.set()

        logger.info("agent_loop_stopped", agent_id=str(agent_id))
