"""Core domain models for Overmind."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class TaskStatus(str, Enum):
    """Task lifecycle states."""

    PENDING = "pending"
    COMPLETED = "completed"


class TaskSource(str, Enum):
    """Origin of a queued task."""

    DELEGATION = "delegation"  # Queued by the agent's parent
    USER = "user"
    SYSTEM = "system"
    SELF = "self"  # Follow-up queued by the agent's own worker


class IterationStatus(str, Enum):
    """Worker iteration lifecycle states."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class Phase(str, Enum):
    """Fixed stages of the worker pipeline."""

    QUERY_IDENTIFICATION = "query_identification"
    INSIGHT_IDENTIFICATION = "insight_identification"
    KNOWLEDGE_ACQUISITION = "knowledge_acquisition"
    ANALYSIS_GENERATION = "analysis_generation"
    ADVICE_GENERATION = "advice_generation"
    GRAPH_CONSTRUCTION = "graph_construction"


# Execution order of one iteration
PHASE_ORDER: tuple[Phase, ...] = (
    Phase.QUERY_IDENTIFICATION,
    Phase.INSIGHT_IDENTIFICATION,
    Phase.KNOWLEDGE_ACQUISITION,
    Phase.ANALYSIS_GENERATION,
    Phase.ADVICE_GENERATION,
    Phase.GRAPH_CONSTRUCTION,
)


class ConversationMode(str, Enum):
    """Conversation lanes kept per agent."""

    FOREGROUND = "foreground"  # Immediate user-facing turns
    BACKGROUND = "background"  # Worker pipeline context


class MessageRole(str, Enum):
    """Author of a conversation message."""

    USER = "user"
    LLM = "llm"
    SUMMARY = "summary"

    def to_llm_role(self) -> str:
        """Map to the role name expected by chat-style LLM APIs."""
        if self is MessageRole.USER:
            return "user"
        return "assistant"


class MemoryType(str, Enum):
    """Kinds of long-lived memory derived from conversations."""

    PREFERENCE = "preference"
    INSIGHT = "insight"
    FACT = "fact"


class Agent(BaseModel):
    """An autonomous worker with its own queue, conversations and graph slice.

    Attributes:
        parent_agent_id: Lookup key of the owning lead agent (None for leads)
        entity_id: Owning team or aide, used only for ownership checks
        iteration_interval_ms: Timer period between scheduled iterations
        phase_prompts: Optional system prompt override per phase
    """

    id: UUID = Field(default_factory=uuid4)
    name: str = Field(min_length=1)
    role: str = ""
    entity_id: str | None = None
    parent_agent_id: UUID | None = None
    is_active: bool = True
    iteration_interval_ms: int = Field(default=300_000, ge=1)
    phase_prompts: dict[Phase, str] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict()

    @property
    def is_lead(self) -> bool:
        """Lead agents have no parent."""
        return self.parent_agent_id is None


class Task(BaseModel):
    """One unit of work queued for an agent.

    A pending task with ``claimed_at`` set is in flight: it has been handed to a
    worker iteration and is invisible to further dequeues until completed or
    released.
    """

    id: UUID = Field(default_factory=uuid4)
    assigned_to_id: UUID
    task: str
    source: TaskSource
    status: TaskStatus = Field(default=TaskStatus.PENDING)
    result: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None
    claimed_at: datetime | None = None
    claimed_by_iteration_id: UUID | None = None

    model_config = ConfigDict()

    @property
    def in_flight(self) -> bool:
        """Whether the task is currently claimed by an iteration."""
        return self.status == TaskStatus.PENDING and self.claimed_at is not None


class WorkerIteration(BaseModel):
    """One run of the phase pipeline for one agent."""

    id: UUID = Field(default_factory=uuid4)
    agent_id: UUID
    status: IterationStatus = Field(default=IterationStatus.RUNNING)
    task_id: UUID | None = None
    error_message: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None

    model_config = ConfigDict()


class LLMInteraction(BaseModel):
    """Append-only audit record of one phase call.

    ``response`` stays None until the phase call resolves.
    """

    id: UUID = Field(default_factory=uuid4)
    iteration_id: UUID
    agent_id: UUID
    phase: Phase
    system_prompt: str
    request: dict[str, Any]
    response: dict[str, Any] | None = None
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None

    model_config = ConfigDict()


class Conversation(BaseModel):
    """A conversation lane; exactly one per (agent, mode)."""

    id: UUID = Field(default_factory=uuid4)
    agent_id: UUID
    mode: ConversationMode
    created_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict()


class Message(BaseModel):
    """A conversation message.

    Attributes:
        seq: Insertion sequence number; total order within the database
        previous_message_id: Causal predecessor in the conversation
        summarized_through_seq: For summaries, the sequence number of the last
            message the summary covers
    """

    id: UUID = Field(default_factory=uuid4)
    conversation_id: UUID
    role: MessageRole
    content: str
    previous_message_id: UUID | None = None
    summarized_through_seq: int | None = None
    seq: int | None = None
    created_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict()


class GraphNodeType(BaseModel):
    """Schema definition for graph nodes. ``agent_id`` None means global scope."""

    id: UUID = Field(default_factory=uuid4)
    agent_id: UUID | None = None
    name: str
    description: str = ""
    properties_schema: dict[str, Any] = Field(default_factory=dict)
    example_properties: dict[str, Any] | None = None
    created_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict()


class GraphEdgeType(BaseModel):
    """Schema definition for graph edges.

    Empty ``source_node_types``/``target_node_types`` place no restriction on
    that endpoint.
    """

    id: UUID = Field(default_factory=uuid4)
    agent_id: UUID | None = None
    name: str
    description: str = ""
    properties_schema: dict[str, Any] = Field(default_factory=dict)
    example_properties: dict[str, Any] | None = None
    source_node_types: list[str] = Field(default_factory=list)
    target_node_types: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict()


class GraphNode(BaseModel):
    """Typed node instance owned by one agent."""

    id: UUID = Field(default_factory=uuid4)
    agent_id: UUID
    type: str
    name: str
    properties: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict()


class GraphEdge(BaseModel):
    """Typed directed edge between two nodes of the same agent."""

    id: UUID = Field(default_factory=uuid4)
    agent_id: UUID
    type: str
    source_id: UUID
    target_id: UUID
    properties: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict()


class GraphQueryResult(BaseModel):
    """Nodes matching a graph query plus the edges among them."""

    nodes: list[GraphNode] = Field(default_factory=list)
    edges: list[GraphEdge] = Field(default_factory=list)


class GraphStats(BaseModel):
    """Counts of the graph owned by one scope."""

    node_count: int = 0
    edge_count: int = 0
    nodes_by_type: dict[str, int] = Field(default_factory=dict)
    edges_by_type: dict[str, int] = Field(default_factory=dict)


class Memory(BaseModel):
    """A short deduplicated preference, insight or fact."""

    id: UUID = Field(default_factory=uuid4)
    agent_id: UUID
    type: MemoryType
    content: str
    created_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict()

    @field_validator("content")
    @classmethod
    def validate_content(cls, v: str) -> str:
        """Strip whitespace and reject empty content."""
        v = v.strip()
        if not v:
            raise ValueError("memory content must not be empty")
        return v


class Briefing(BaseModel):
    """User-facing digest produced by an iteration."""

    id: UUID = Field(default_factory=uuid4)
    agent_id: UUID
    iteration_id: UUID
    title: str
    summary: str
    full_message: str = ""
    created_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict()
