"""Unit tests for ConversationService."""

import sqlite3
from unittest.mock import patch
from uuid import uuid4

import pytest
from overmind.domain.models import Agent, ConversationMode, MessageRole
from overmind.infrastructure.exceptions import NotFoundError
from overmind.services import ConversationService


class TestConversations:
    """Test lazy per-mode conversations."""

    @pytest.mark.asyncio
    async def test_get_or_create_is_stable_per_mode(
        self, conversation_service: ConversationService, agent: Agent
    ) -> None:
        """Test one conversation per (agent, mode)."""
        foreground = await conversation_service.get_or_create(
            agent.id, ConversationMode.FOREGROUND
        )
        again = await conversation_service.get_or_create(agent.id, ConversationMode.FOREGROUND)
        background = await conversation_service.get_or_create(
            agent.id, ConversationMode.BACKGROUND
        )

        assert foreground.id == again.id
        assert background.id != foreground.id
        assert background.mode == ConversationMode.BACKGROUND

    @pytest.mark.asyncio
    async def test_get_or_create_unknown_agent(
        self, conversation_service: ConversationService
    ) -> None:
        """Test that conversations need an existing agent."""
        with pytest.raises(NotFoundError):
            await conversation_service.get_or_create(uuid4(), ConversationMode.FOREGROUND)

    @pytest.mark.asyncio
    async def test_get_conversation(
        self, conversation_service: ConversationService, agent: Agent
    ) -> None:
        """Test lookup by id and the not found case."""
        created = await conversation_service.get_or_create(agent.id, ConversationMode.BACKGROUND)

        fetched = await conversation_service.get_conversation(created.id)

        assert fetched.agent_id == agent.id
        assert fetched.mode == ConversationMode.BACKGROUND
        with pytest.raises(NotFoundError):
            await conversation_service.get_conversation(uuid4())


class TestMessages:
    """Test message ordering and turns."""

    @pytest.mark.asyncio
    async def test_messages_link_to_predecessor(
        self, conversation_service: ConversationService, agent: Agent
    ) -> None:
        """Test that each message links to the previous newest message."""
        conversation = await conversation_service.get_or_create(
            agent.id, ConversationMode.FOREGROUND
        )
        first = await conversation_service.append_message(
            conversation.id, MessageRole.USER, "Hello"
        )
        user, reply = await conversation_service.append_turn(
            conversation.id, "Track AAPL", "On it."
        )

        assert first.previous_message_id is None
        assert user.previous_message_id == first.id
        assert reply.previous_message_id == user.id
        assert first.seq < user.seq < reply.seq

    @pytest.mark.asyncio
    async def test_turn_is_atomic(
        self, conversation_service: ConversationService, agent: Agent
    ) -> None:
        """Test that a failed reply insert rolls back the user message too."""
        conversation = await conversation_service.get_or_create(
            agent.id, ConversationMode.FOREGROUND
        )
        original_insert = conversation_service._insert_message
        calls = 0

        async def failing_insert(conn, message):  # type: ignore[no-untyped-def]
            nonlocal calls
            calls += 1
            if calls == 2:
                raise sqlite3.OperationalError("disk I/O error")
            return await original_insert(conn, message)

        with patch.object(conversation_service, "_insert_message", failing_insert):
            with pytest.raises(sqlite3.OperationalError):
                await conversation_service.append_turn(conversation.id, "Hi", "Hello")

        assert await conversation_service.list_messages(conversation.id) == []

    @pytest.mark.asyncio
    async def test_append_to_unknown_conversation(
        self, conversation_service: ConversationService
    ) -> None:
        """Test that appends need an existing conversation."""
        with pytest.raises(NotFoundError):
            await conversation_service.append_turn(uuid4(), "Hi", "Hello")


class TestContextLoading:
    """Test summary-bounded context loads."""

    @pytest.mark.asyncio
    async def test_load_context_without_summary_returns_all(
        self, conversation_service: ConversationService, agent: Agent
    ) -> None:
        """Test that an uncompacted conversation loads in full."""
        conversation = await conversation_service.get_or_create(
            agent.id, ConversationMode.BACKGROUND
        )
        await conversation_service.append_turn(conversation.id, "One", "Reply one")
        await conversation_service.append_turn(conversation.id, "Two", "Reply two")

        context = await conversation_service.load_context(conversation.id)

        assert [m.content for m in context] == ["One", "Reply one", "Two", "Reply two"]

    @pytest.mark.asyncio
    async def test_load_context_starts_at_latest_summary(
        self, conversation_service: ConversationService, agent: Agent
    ) -> None:
        """Test that messages covered by the summary are not re-read."""
        conversation = await conversation_service.get_or_create(
            agent.id, ConversationMode.BACKGROUND
        )
        _, covered = await conversation_service.append_turn(conversation.id, "Old", "Old reply")
        await conversation_service.append_turn(conversation.id, "Recent", "Recent reply")

        summary = await conversation_service.insert_summary(
            conversation.id, "The user asked something old.", covers_through=covered
        )
        context = await conversation_service.load_context(conversation.id)

        assert context[0].id == summary.id
        assert context[0].previous_message_id == covered.id
        assert [m.content for m in context[1:]] == ["Recent", "Recent reply"]
        # Audit history keeps everything
        assert len(await conversation_service.list_messages(conversation.id)) == 5
