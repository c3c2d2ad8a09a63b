"""Service layer for Overmind."""

from overmind.services.agent_service import AgentService
from overmind.services.compaction_service import CompactionService
from overmind.services.conversation_service import ConversationService
from overmind.services.iteration_service import IterationService
from overmind.services.knowledge_graph_service import KnowledgeGraphService
from overmind.services.memory_service import MemoryService
from overmind.services.task_queue_service import (
    EmptyTaskError,
    TaskQueueError,
    TaskQueueService,
)

__all__ = [
    "AgentService",
    "CompactionService",
    "ConversationService",
    "EmptyTaskError",
    "IterationService",
    "KnowledgeGraphService",
    "MemoryService",
    "TaskQueueError",
    "TaskQueueService",
]
