"""Domain layer for Overmind."""

from overmind.domain.models import (
    Agent,
    Briefing,
    Conversation,
    ConversationMode,
    GraphEdge,
    GraphEdgeType,
    GraphNode,
    GraphNodeType,
    GraphQueryResult,
    GraphStats,
    IterationStatus,
    LLMInteraction,
    Memory,
    MemoryType,
    Message,
    MessageRole,
    Phase,
    PHASE_ORDER,
    Task,
    TaskSource,
    TaskStatus,
    WorkerIteration,
)

__all__ = [
    "Agent",
    "Briefing",
    "Conversation",
    "ConversationMode",
    "GraphEdge",
    "GraphEdgeType",
    "GraphNode",
    "GraphNodeType",
    "GraphQueryResult",
    "GraphStats",
    "IterationStatus",
    "LLMInteraction",
    "Memory",
    "MemoryType",
    "Message",
    "MessageRole",
    "PHASE_ORDER",
    "Phase",
    "Task",
    "TaskSource",
    "TaskStatus",
    "WorkerIteration",
]
