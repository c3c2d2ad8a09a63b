"""Integration tests for foreground conversations.

Tests cover:
- Streaming the acknowledgment and persisting the turn
- Task intake for non-empty messages
- Generic acknowledgment for empty messages and provider failures
- Early close and abandonment of the stream
- Context, memories and compaction feeding the acknowledgment call
"""

import asyncio
from uuid import UUID, uuid4

import pytest
from overmind.application import ConversationManager, MockProvider
from overmind.application.mock_provider import DEFAULT_ACKNOWLEDGMENT
from overmind.domain.models import (
    Agent,
    ConversationMode,
    MemoryType,
    MessageRole,
    TaskSource,
)
from overmind.infrastructure.config import ConversationConfig
from overmind.infrastructure.exceptions import NotFoundError, ProviderError
from overmind.services import ConversationService, MemoryService, TaskQueueService

GENERIC = ConversationConfig().generic_acknowledgment

pytestmark = pytest.mark.integration


class TestHandleUserMessage:
    """Test the acknowledgment flow."""

    @pytest.mark.asyncio
    async def test_acknowledgment_streamed_and_persisted(
        self,
        conversation_manager: ConversationManager,
        conversation_service: ConversationService,
        agent: Agent,
    ) -> None:
        """Test that the streamed text is stored as the turn's reply."""
        stream = await conversation_manager.handle_user_message(agent.id, "Find AAPL price")

        text = await stream.read_all()
        turn = await stream.wait_closed()

        assert text.strip() == DEFAULT_ACKNOWLEDGMENT
        assert stream.closed
        assert turn.llm_message.content == DEFAULT_ACKNOWLEDGMENT

        conversation = await conversation_service.get_or_create(
            agent.id, ConversationMode.FOREGROUND
        )
        messages = await conversation_service.list_messages(conversation.id)
        assert [(m.role, m.content) for m in messages] == [
            (MessageRole.USER, "Find AAPL price"),
            (MessageRole.LLM, DEFAULT_ACKNOWLEDGMENT),
        ]
        assert messages[1].previous_message_id == messages[0].id

    @pytest.mark.asyncio
    async def test_user_task_queued(
        self,
        conversation_manager: ConversationManager,
        task_queue_service: TaskQueueService,
        agent: Agent,
    ) -> None:
        """Test that the message is queued as user work and the scheduler notified."""
        notified: list[UUID] = []
        conversation_manager.on_task_queued = notified.append

        stream = await conversation_manager.handle_user_message(agent.id, "Find AAPL price")
        await stream.read_all()
        turn = await stream.wait_closed()

        assert turn.task is not None
        pending = await task_queue_service.get_pending_tasks(agent.id)
        assert [(t.id, t.task, t.source) for t in pending] == [
            (turn.task.id, "Find AAPL price", TaskSource.USER)
        ]
        assert notified == [agent.id]

    @pytest.mark.asyncio
    async def test_scripted_chunks_delivered_in_order(
        self,
        conversation_manager: ConversationManager,
        mock_provider: MockProvider,
        agent: Agent,
    ) -> None:
        """Test chunk order through a buffer smaller than the reply."""
        chunks = ["Looking ", "into ", "the ", "AAPL ", "price ", "now."]
        mock_provider.script_stream(chunks)

        stream = await conversation_manager.handle_user_message(agent.id, "Find AAPL price")
        received = [chunk async for chunk in stream]

        assert received == chunks
        assert (await stream.wait_closed()).llm_message.content == "Looking into the AAPL price now."

    @pytest.mark.asyncio
    async def test_empty_message(
        self,
        conversation_manager: ConversationManager,
        task_queue_service: TaskQueueService,
        mock_provider: MockProvider,
        agent: Agent,
    ) -> None:
        """Test that blank text gets the generic reply and queues nothing."""
        stream = await conversation_manager.handle_user_message(agent.id, "   ")

        assert await stream.read_all() == GENERIC
        turn = await stream.wait_closed()

        assert turn.task is None
        assert turn.llm_message.content == GENERIC
        assert await task_queue_service.get_pending_tasks(agent.id) == []
        assert [c for c in mock_provider.calls if c.method == "stream_text"] == []

    @pytest.mark.asyncio
    async def test_provider_failure_falls_back(
        self,
        conversation_manager: ConversationManager,
        task_queue_service: TaskQueueService,
        mock_provider: MockProvider,
        agent: Agent,
    ) -> None:
        """Test that a failed acknowledgment call still acknowledges and queues."""
        mock_provider.script_stream(ProviderError("overloaded"))

        stream = await conversation_manager.handle_user_message(agent.id, "Find AAPL price")

        assert await stream.read_all() == GENERIC
        turn = await stream.wait_closed()
        assert turn.llm_message.content == GENERIC
        assert len(await task_queue_service.get_pending_tasks(agent.id)) == 1

    @pytest.mark.asyncio
    async def test_closing_early_still_persists(
        self,
        conversation_manager: ConversationManager,
        agent: Agent,
    ) -> None:
        """Test that a consumer leaving mid-stream does not lose the turn."""
        stream = await conversation_manager.handle_user_message(agent.id, "Find AAPL price")

        async with stream:
            async for _ in stream:
                break

        turn = await stream.wait_closed()
        assert stream.closed
        assert turn.llm_message.content == DEFAULT_ACKNOWLEDGMENT
        assert turn.task is not None

    @pytest.mark.asyncio
    async def test_abandoned_stream_still_persists(
        self,
        conversation_manager: ConversationManager,
        conversation_service: ConversationService,
        task_queue_service: TaskQueueService,
        mock_provider: MockProvider,
        agent: Agent,
    ) -> None:
        """Test that a stream dropped unread cannot stall saving the turn."""
        chunks = [f"w{i} " for i in range(20)]
        mock_provider.script_stream(chunks)

        stream = await conversation_manager.handle_user_message(agent.id, "Find AAPL price")
        turn = await asyncio.wait_for(stream.wait_closed(), timeout=5)

        assert stream.closed
        assert turn.llm_message.content == "".join(chunks).strip()
        assert turn.task is not None
        pending = await task_queue_service.get_pending_tasks(agent.id)
        assert [t.id for t in pending] == [turn.task.id]
        conversation = await conversation_service.get_or_create(
            agent.id, ConversationMode.FOREGROUND
        )
        assert len(await conversation_service.list_messages(conversation.id)) == 2

    @pytest.mark.asyncio
    async def test_unknown_agent(self, conversation_manager: ConversationManager) -> None:
        """Test that messages to an unknown agent raise NotFoundError."""
        with pytest.raises(NotFoundError):
            await conversation_manager.handle_user_message(uuid4(), "Hello")


class TestAcknowledgmentContext:
    """Test what the acknowledgment call is given."""

    @pytest.mark.asyncio
    async def test_previous_turns_in_context(
        self,
        conversation_manager: ConversationManager,
        mock_provider: MockProvider,
        agent: Agent,
    ) -> None:
        """Test that earlier foreground turns precede the new message."""
        first = await conversation_manager.handle_user_message(agent.id, "Find AAPL price")
        await first.read_all()
        await first.wait_closed()

        second = await conversation_manager.handle_user_message(agent.id, "And MSFT?")
        await second.read_all()
        await second.wait_closed()

        call = [c for c in mock_provider.calls if c.method == "stream_text"][-1]
        assert [(m.role, m.content) for m in call.messages] == [
            ("user", "Find AAPL price"),
            ("assistant", DEFAULT_ACKNOWLEDGMENT),
            ("user", "And MSFT?"),
        ]

    @pytest.mark.asyncio
    async def test_system_prompt_has_identity_and_memories(
        self,
        conversation_manager: ConversationManager,
        memory_service: MemoryService,
        mock_provider: MockProvider,
        agent: Agent,
    ) -> None:
        """Test the agent's name, role and memories in the system prompt."""
        await memory_service.add_memory(
            agent.id, MemoryType.PREFERENCE, "Prefers closing prices"
        )

        stream = await conversation_manager.handle_user_message(agent.id, "Find AAPL price")
        await stream.read_all()
        await stream.wait_closed()

        prompt = mock_provider.calls[-1].system_prompt
        assert prompt.startswith("You are Market Watch")
        assert "Tracks equity markets" in prompt
        assert "Prefers closing prices" in prompt

    @pytest.mark.asyncio
    async def test_long_foreground_history_compacted(
        self,
        conversation_manager: ConversationManager,
        conversation_service: ConversationService,
        mock_provider: MockProvider,
        agent: Agent,
    ) -> None:
        """Test that foreground history is compacted before the call."""
        conversation = await conversation_service.get_or_create(
            agent.id, ConversationMode.FOREGROUND
        )
        for turn in range(4):
            await conversation_service.append_turn(
                conversation.id, f"Question {turn}", f"Answer {turn}"
            )
        mock_provider.script_text("Earlier chat about markets.")

        stream = await conversation_manager.handle_user_message(agent.id, "Find AAPL price")
        await stream.read_all()
        await stream.wait_closed()

        summary = await conversation_service.get_latest_summary(conversation.id)
        assert summary is not None
        assert summary.content == "Earlier chat about markets."
        call = [c for c in mock_provider.calls if c.method == "stream_text"][-1]
        assert call.messages[0].content == "Earlier chat about markets."
        assert call.messages[-1].content == "Find AAPL price"


class TestDirectTaskIntake:
    """Test queueing without a conversation turn."""

    @pytest.mark.asyncio
    async def test_enqueue_user_task(
        self,
        conversation_manager: ConversationManager,
        conversation_service: ConversationService,
        agent: Agent,
    ) -> None:
        """Test that direct intake queues work and writes no messages."""
        notified: list[UUID] = []
        conversation_manager.on_task_queued = notified.append

        task = await conversation_manager.enqueue_user_task(agent.id, "Find AAPL price")

        assert task.source == TaskSource.USER
        assert notified == [agent.id]
        conversation = await conversation_service.get_or_create(
            agent.id, ConversationMode.FOREGROUND
        )
        assert await conversation_service.list_messages(conversation.id) == []
