"""Pytest configuration and fixtures."""

import tempfile
from collections.abc import AsyncGenerator, Generator
from pathlib import Path
from typing import Any

import pytest
from overmind.application import (
    AgentScheduler,
    ConversationManager,
    MockProvider,
    PhaseExecutor,
    ToolRegistry,
    WorkerRunner,
    register_graph_tools,
)
from overmind.domain.models import Agent
from overmind.infrastructure.config import (
    CompactionConfig,
    ConversationConfig,
    ProviderConfig,
    WorkerConfig,
)
from overmind.infrastructure.database import Database
from overmind.services import (
    AgentService,
    CompactionService,
    ConversationService,
    IterationService,
    KnowledgeGraphService,
    MemoryService,
    TaskQueueService,
)


async def no_sleep(seconds: float) -> None:
    """Sleep replacement that returns immediately."""
    return None


# Database fixtures
@pytest.fixture
def temp_db_path() -> Generator[Path, None, None]:
    """Create temporary database file path."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)
    yield db_path
    # Cleanup, including WAL files
    for path in (db_path, Path(f"{db_path}-wal"), Path(f"{db_path}-shm")):
        if path.exists():
            path.unlink()


@pytest.fixture
async def memory_db() -> AsyncGenerator[Database, None]:
    """Create in-memory database for fast tests."""
    db = Database(Path(":memory:"))
    await db.initialize()
    yield db
    # Cleanup: close the shared connection for :memory: databases
    await db.close()


@pytest.fixture
async def file_db(temp_db_path: Path) -> AsyncGenerator[Database, None]:
    """Create file-based database for persistence and concurrency tests."""
    db = Database(temp_db_path)
    await db.initialize()
    yield db
    await db.close()


# Service fixtures
@pytest.fixture
def agent_service(memory_db: Database) -> AgentService:
    return AgentService(memory_db)


@pytest.fixture
def task_queue_service(memory_db: Database) -> TaskQueueService:
    return TaskQueueService(memory_db)


@pytest.fixture
def conversation_service(memory_db: Database) -> ConversationService:
    return ConversationService(memory_db)


@pytest.fixture
def graph_service(memory_db: Database) -> KnowledgeGraphService:
    return KnowledgeGraphService(memory_db)


@pytest.fixture
def memory_service(memory_db: Database) -> MemoryService:
    return MemoryService(memory_db)


@pytest.fixture
def iteration_service(memory_db: Database) -> IterationService:
    return IterationService(memory_db)


@pytest.fixture
def mock_provider() -> MockProvider:
    return MockProvider()


@pytest.fixture
def compaction_config() -> CompactionConfig:
    """Small thresholds so compaction triggers after a few turns."""
    return CompactionConfig(max_messages=6, keep_recent=2)


@pytest.fixture
def compaction_service(
    conversation_service: ConversationService,
    mock_provider: MockProvider,
    compaction_config: CompactionConfig,
) -> CompactionService:
    return CompactionService(conversation_service, mock_provider, compaction_config)


@pytest.fixture
def worker_config() -> WorkerConfig:
    """Fast retries without jitter."""
    return WorkerConfig(
        phase_timeout_seconds=5.0,
        max_provider_retries=2,
        max_validation_retries=1,
        backoff_initial_seconds=0.0,
        backoff_jitter=False,
    )


@pytest.fixture
def tool_registry(graph_service: KnowledgeGraphService) -> ToolRegistry:
    registry = ToolRegistry()
    register_graph_tools(registry, graph_service)
    return registry


@pytest.fixture
def phase_executor(
    mock_provider: MockProvider,
    iteration_service: IterationService,
    tool_registry: ToolRegistry,
    worker_config: WorkerConfig,
) -> PhaseExecutor:
    return PhaseExecutor(
        mock_provider,
        iteration_service,
        tool_registry,
        worker_config,
        ProviderConfig(name="mock"),
        sleep=no_sleep,
    )


@pytest.fixture
def worker_runner(
    memory_db: Database,
    agent_service: AgentService,
    task_queue_service: TaskQueueService,
    conversation_service: ConversationService,
    compaction_service: CompactionService,
    graph_service: KnowledgeGraphService,
    memory_service: MemoryService,
    iteration_service: IterationService,
    phase_executor: PhaseExecutor,
    worker_config: WorkerConfig,
) -> WorkerRunner:
    return WorkerRunner(
        memory_db,
        agent_service,
        task_queue_service,
        conversation_service,
        compaction_service,
        graph_service,
        memory_service,
        iteration_service,
        phase_executor,
        worker_config,
        sleep=no_sleep,
    )


@pytest.fixture
def scheduler(
    agent_service: AgentService,
    task_queue_service: TaskQueueService,
    worker_runner: WorkerRunner,
    worker_config: WorkerConfig,
) -> AgentScheduler:
    return AgentScheduler(agent_service, task_queue_service, worker_runner, worker_config)


@pytest.fixture
def conversation_manager(
    agent_service: AgentService,
    task_queue_service: TaskQueueService,
    conversation_service: ConversationService,
    compaction_service: CompactionService,
    memory_service: MemoryService,
    mock_provider: MockProvider,
) -> ConversationManager:
    return ConversationManager(
        agent_service,
        task_queue_service,
        conversation_service,
        compaction_service,
        memory_service,
        mock_provider,
        ConversationConfig(stream_buffer_size=4, consumer_timeout_seconds=0.05),
    )


# Domain fixtures
@pytest.fixture
async def agent(agent_service: AgentService) -> Agent:
    """A lead agent."""
    return await agent_service.create_agent("Market Watch", role="Tracks equity markets")


@pytest.fixture
async def subordinate(agent_service: AgentService, agent: Agent) -> Agent:
    """An agent reporting to ``agent``."""
    return await agent_service.create_agent(
        "Analyst", role="Digs into single companies", parent_agent_id=agent.id
    )


@pytest.fixture
def company_schema() -> dict[str, Any]:
    """Node schema requiring ``founded_year``."""
    return {
        "type": "object",
        "properties": {
            "founded_year": {"type": "integer"},
            "ticker": {"type": "string"},
        },
        "required": ["founded_year"],
    }
