"""Worker iteration runner: one task through the six-phase pipeline."""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any, cast
from uuid import UUID

from pydantic import BaseModel

from overmind.application.failure_recovery import RetryPolicy, retry_provider_call
from overmind.application.phase_executor import PhaseExecutor
from overmind.application.phases import (
    AdviceGenerationOutput,
    AdviceItem,
    Analysis,
    AnalysisGenerationOutput,
    pipeline,
)
from overmind.domain.models import Agent, ConversationMode, Phase, Task, WorkerIteration
from overmind.infrastructure.config import WorkerConfig
from overmind.infrastructure.database import Database
from overmind.infrastructure.exceptions import (
    ConstraintError,
    ForbiddenError,
    NotFoundError,
    PhaseFailedError,
)
from overmind.infrastructure.logger import bound_context, get_logger
from overmind.services.agent_service import AgentService
from overmind.services.compaction_service import (
    CompactionService,
    format_transcript,
    trim_to_token_budget,
)
from overmind.services.conversation_service import ConversationService
from overmind.services.graph_seed import (
    ADVICE_CITATION_EDGE,
    ADVICE_NODE_TYPE,
    ANALYSIS_CITATION_EDGE,
    ANALYSIS_NODE_TYPE,
    cited_node_ids,
)
from overmind.services.iteration_service import IterationService
from overmind.services.knowledge_graph_service import KnowledgeGraphService
from overmind.services.memory_service import MemoryService
from overmind.services.task_queue_service import TaskQueueService

logger = get_logger(__name__)


def failure_message(error: BaseException) -> str:
    """Iteration error message: the underlying cause, tagged with the failed phase."""
    if isinstance(error, PhaseFailedError):
        return f"{error.phase}: {error.cause}"
    return f"{type(error).__name__}: {error}"


class WorkerRunner:
    """Runs worker iterations, at most one at a time per agent.

    An iteration claims the agent's oldest pending task, runs the phase
    pipeline against it and applies the results in one transaction. Any failure,
    cancellation included, leaves the task pending (its claim released) so the
    next trigger retries it from the start.
    """

    def __init__(
        self,
        database: Database,
        agents: AgentService,
        tasks: TaskQueueService,
        conversations: ConversationService,
        compaction: CompactionService,
        graph: KnowledgeGraphService,
        memories: MemoryService,
        iterations: IterationService,
        executor: PhaseExecutor,
        config: WorkerConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize worker runner.

        Args:
            database: Database shared by the services, for the results transaction
            agents: Agent registry
            tasks: Task queue
            conversations: Conversation store (background mode is used)
            compaction: Compaction engine run before context is loaded
            graph: Knowledge graph for the context summary
            memories: Memory store
            iterations: Iteration audit log
            executor: Phase executor
            config: Worker configuration
            sleep: Sleep function used between compaction retries
        """
        self.db = database
        self.agents = agents
        self.tasks = tasks
        self.conversations = conversations
        self.compaction = compaction
        self.graph = graph
        self.memories = memories
        self.iterations = iterations
        self.executor = executor
        self.config = config or WorkerConfig()
        self.retry_policy = RetryPolicy.from_config(self.config)
        self.on_task_queued: Callable[[UUID], None] | None = None
        self._sleep = sleep
        self._locks: dict[UUID, asyncio.Lock] = {}

    def _lock_for(self, agent_id: UUID) -> asyncio.Lock:
        return self._locks.setdefault(agent_id, asyncio.Lock())

    def is_running(self, agent_id: UUID) -> bool:
        """Whether an iteration is in flight for the agent."""
        return self._lock_for(agent_id).locked()

    async def run_iteration(self, agent_id: UUID) -> WorkerIteration | None:
        """Run one iteration for an agent.

        Args:
            agent_id: Agent to run

        Returns:
            The closed iteration, or None if the trigger was dropped because an
            iteration is already running for this agent

        Raises:
            NotFoundError: If the agent does not exist
        """
        agent = await self.agents.get_agent(agent_id)

        lock = self._lock_for(agent_id)
        if lock.locked():
            logger.info("iteration_dropped", agent_id=str(agent_id))
            return None

        async with lock:
            with bound_context(agent_id=agent_id):
                return await self._run(agent)

    async def _run(self, agent: Agent) -> WorkerIteration:
        iteration = await self.iterations.create_iteration(agent.id)
        logger.info("iteration_started", iteration_id=str(iteration.id))

        task: Task | None = None
        try:
            task = await self.tasks.dequeue_oldest_pending(agent.id, iteration.id)
            if task is None:
                completed = await self.iterations.complete_iteration(iteration.id)
                logger.info("iteration_completed", iteration_id=str(iteration.id), idle=True)
                return completed

            await self.iterations.attach_task(iteration.id, task.id)
            outputs = await self._run_phases(agent, iteration, task)
            queued_for = await self._apply_results(agent, iteration, task, outputs)
        except Exception as e:
            return await self._fail(iteration, task, e)
        except asyncio.CancelledError as e:
            await self._fail(iteration, task, e)
            raise

        for agent_id in queued_for:
            self._notify(agent_id)

        completed = await self.iterations.complete_iteration(iteration.id)
        logger.info(
            "iteration_completed",
            iteration_id=str(iteration.id),
            task_id=str(task.id),
        )
        return completed

    async def _fail(
        self, iteration: WorkerIteration, task: Task | None, error: BaseException
    ) -> WorkerIteration:
        """Release the task's claim and seal the iteration as failed."""
        if task is not None:
            await self.tasks.release(task.id)
        message = (
            "cancelled" if isinstance(error, asyncio.CancelledError) else failure_message(error)
        )
        failed = await self.iterations.fail_iteration(iteration.id, message)
        logger.error(
            "iteration_failed",
            iteration_id=str(iteration.id),
            task_id=str(task.id) if task else None,
            error=str(error),
            error_type=type(error).__name__,
        )
        return failed

    async def _build_context(self, agent: Agent) -> dict[str, Any]:
        """Context shared by every phase request of one iteration."""
        conversation = await self.conversations.get_or_create(
            agent.id, ConversationMode.BACKGROUND
        )
        await retry_provider_call(
            lambda: self.compaction.compact_if_needed(conversation.id),
            self.retry_policy,
            "compaction",
            sleep=self._sleep,
        )
        context = trim_to_token_budget(
            await self.conversations.load_context(conversation.id),
            self.compaction.config.max_context_tokens,
        )
        return {
            "conversation_context": format_transcript(context),
            "memories": await self.memories.build_memory_context_block(agent.id),
            "knowledge_graph": await self.graph.serialize_for_llm(
                agent.id, self.config.max_graph_nodes_in_context
            ),
            "graph_types": await self.graph.format_types_for_llm(agent.id),
        }

    async def _run_phases(
        self, agent: Agent, iteration: WorkerIteration, task: Task
    ) -> dict[Phase, BaseModel]:
        """Execute the pipeline in order, feeding each phase the outputs before it."""
        shared = await self._build_context(agent)
        subordinates = [
            {"id": str(sub.id), "name": sub.name, "role": sub.role}
            for sub in await self.agents.get_subordinates(agent.id)
        ]

        outputs: dict[Phase, BaseModel] = {}
        prior: dict[str, Any] = {}
        for definition in pipeline():
            request: dict[str, Any] = {
                "task": task.task,
                "task_source": task.source.value,
                "prior_phase_outputs": dict(prior),
                **shared,
            }
            if definition.phase == Phase.ADVICE_GENERATION:
                request["subordinate_agents"] = subordinates

            result = await self.executor.execute(definition, agent, iteration.id, request)
            outputs[definition.phase] = result.output
            prior[definition.phase.value] = result.output.model_dump(mode="json")
        return outputs

    async def _apply_results(
        self,
        agent: Agent,
        iteration: WorkerIteration,
        task: Task,
        outputs: dict[Phase, BaseModel],
    ) -> list[UUID]:
        """Persist the side effects of a successful pipeline run atomically.

        Returns:
            Agents that received delegated tasks, to be notified after commit
        """
        analysis = cast(AnalysisGenerationOutput, outputs[Phase.ANALYSIS_GENERATION])
        advice = cast(AdviceGenerationOutput, outputs[Phase.ADVICE_GENERATION])
        conversation = await self.conversations.get_or_create(
            agent.id, ConversationMode.BACKGROUND
        )

        queued_for: list[UUID] = []
        async with self.db.transaction():
            await self._record_conclusions(agent, analysis.analyses, advice.advice)

            for draft in advice.memories:
                await self.memories.add_memory(agent.id, draft.type, draft.content)

            for delegation in advice.delegations:
                delegated = await self._delegate(agent, delegation.agent_id, delegation.task)
                if delegated is not None:
                    queued_for.append(delegated.assigned_to_id)

            await self.tasks.complete(task.id, advice.summary)
            await self.conversations.append_turn(
                conversation.id, f"[{task.source.value} task] {task.task}", advice.summary
            )

            if advice.follow_up_task and advice.follow_up_task.strip():
                await self.tasks.enqueue_self_task(agent.id, advice.follow_up_task)

            if advice.briefing is not None:
                await self.iterations.record_briefing(
                    agent.id,
                    iteration.id,
                    advice.briefing.title,
                    advice.briefing.summary,
                    advice.briefing.full_message,
                )
        return queued_for

    async def _record_conclusions(
        self, agent: Agent, analyses: list[Analysis], advice: list[AdviceItem]
    ) -> None:
        """Store analyses and advice as graph nodes linked to the nodes they cite."""
        if not analyses and not advice:
            return
        await self.graph.seed_agent_types(agent.id)
        generated_at = datetime.now(timezone.utc).isoformat()

        analysis_type = await self.graph.find_node_type(agent.id, ANALYSIS_NODE_TYPE)
        advice_type = await self.graph.find_node_type(agent.id, ADVICE_NODE_TYPE)
        if analysis_type is None or advice_type is None:
            raise NotFoundError("node type", f"{ANALYSIS_NODE_TYPE}/{ADVICE_NODE_TYPE}")

        for item in analyses:
            properties: dict[str, Any] = {
                "kind": item.kind,
                "content": item.content,
                "generated_at": generated_at,
            }
            if item.confidence is not None:
                properties["confidence"] = item.confidence
            node = await self.graph.add_node(agent.id, analysis_type.id, item.title, properties)
            await self._link_citations(agent, node.id, ANALYSIS_CITATION_EDGE, item.content)

        for item in advice:
            node = await self.graph.add_node(
                agent.id,
                advice_type.id,
                item.title,
                {"action": item.action, "rationale": item.rationale, "generated_at": generated_at},
            )
            await self._link_citations(agent, node.id, ADVICE_CITATION_EDGE, item.rationale)

    async def _link_citations(
        self, agent: Agent, source_id: UUID, edge_name: str, text: str
    ) -> None:
        citations = cited_node_ids(text)
        if not citations:
            return
        edge_type = await self.graph.find_edge_type(agent.id, edge_name)
        if edge_type is None:
            raise NotFoundError("edge type", edge_name)
        for target_id in citations:
            if target_id == source_id:
                continue
            try:
                await self.graph.add_edge(agent.id, edge_type.id, source_id, target_id)
            except (NotFoundError, ForbiddenError, ConstraintError) as e:
                logger.warning("citation_skipped", target_node_id=str(target_id), error=str(e))

    async def _delegate(self, agent: Agent, target: str, text: str) -> Task | None:
        try:
            return await self.tasks.delegate(agent.id, UUID(target), text)
        except (ValueError, ForbiddenError, NotFoundError) as e:
            logger.warning("delegation_skipped", target_agent_id=target, error=str(e))
            return None

    def _notify(self, agent_id: UUID) -> None:
        if self.on_task_queued is not None:
            self.on_task_queued(agent_id)
