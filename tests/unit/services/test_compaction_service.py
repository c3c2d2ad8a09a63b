"""Unit tests for CompactionService and context budgeting helpers."""

from uuid import UUID, uuid4

import pytest
from overmind.application import MockProvider
from overmind.domain.models import Agent, ConversationMode, Message, MessageRole
from overmind.infrastructure.config import CompactionConfig
from overmind.services import CompactionService, ConversationService
from overmind.services.compaction_service import (
    estimate_token_count,
    format_transcript,
    trim_to_token_budget,
)


async def _add_turns(service: ConversationService, conversation_id: UUID, count: int) -> None:
    for i in range(count):
        await service.append_turn(conversation_id, f"Question {i}", f"Answer {i}")


def _message(role: MessageRole, content: str) -> Message:
    return Message(conversation_id=uuid4(), role=role, content=content)


class TestThreshold:
    """Test the size predicate."""

    @pytest.mark.asyncio
    async def test_should_compact_by_message_count(
        self,
        compaction_service: CompactionService,
        conversation_service: ConversationService,
        agent: Agent,
    ) -> None:
        """Test the message count trigger (max_messages=6)."""
        conversation = await conversation_service.get_or_create(
            agent.id, ConversationMode.BACKGROUND
        )
        await _add_turns(conversation_service, conversation.id, 3)
        assert not await compaction_service.should_compact(conversation.id)

        await conversation_service.append_message(conversation.id, MessageRole.USER, "One more")
        assert await compaction_service.should_compact(conversation.id)

    def test_exceeds_threshold_by_tokens(
        self, conversation_service: ConversationService, mock_provider: MockProvider
    ) -> None:
        """Test the token estimate trigger."""
        service = CompactionService(
            conversation_service,
            mock_provider,
            CompactionConfig(max_messages=50, keep_recent=2, max_context_tokens=100),
        )

        assert service.exceeds_threshold([_message(MessageRole.USER, "x" * 404)])
        assert not service.exceeds_threshold([_message(MessageRole.USER, "x" * 400)])


class TestCompactIfNeeded:
    """Test summary creation and idempotence."""

    @pytest.mark.asyncio
    async def test_under_threshold_is_noop(
        self,
        compaction_service: CompactionService,
        conversation_service: ConversationService,
        mock_provider: MockProvider,
        agent: Agent,
    ) -> None:
        """Test that small conversations are left alone."""
        conversation = await conversation_service.get_or_create(
            agent.id, ConversationMode.BACKGROUND
        )
        await _add_turns(conversation_service, conversation.id, 2)

        assert await compaction_service.compact_if_needed(conversation.id) is None
        assert mock_provider.calls == []

    @pytest.mark.asyncio
    async def test_compaction_keeps_recent_messages(
        self,
        compaction_service: CompactionService,
        conversation_service: ConversationService,
        agent: Agent,
    ) -> None:
        """Test that older messages are summarized and the newest kept verbatim."""
        conversation = await conversation_service.get_or_create(
            agent.id, ConversationMode.BACKGROUND
        )
        await _add_turns(conversation_service, conversation.id, 4)

        summary = await compaction_service.compact_if_needed(conversation.id)

        assert summary is not None
        assert summary.role == MessageRole.SUMMARY
        context = await conversation_service.load_context(conversation.id)
        assert context[0].id == summary.id
        assert [m.content for m in context[1:]] == ["Question 3", "Answer 3"]
        assert not await compaction_service.should_compact(conversation.id)

    @pytest.mark.asyncio
    async def test_repeat_compaction_without_new_messages_is_idempotent(
        self,
        compaction_service: CompactionService,
        conversation_service: ConversationService,
        mock_provider: MockProvider,
        agent: Agent,
    ) -> None:
        """Test that a second call returns the same summary and writes nothing."""
        conversation = await conversation_service.get_or_create(
            agent.id, ConversationMode.BACKGROUND
        )
        await _add_turns(conversation_service, conversation.id, 4)

        first = await compaction_service.compact_if_needed(conversation.id)
        second = await compaction_service.compact_if_needed(conversation.id)

        assert first is not None and second is not None
        assert second.id == first.id
        assert second.content == first.content
        summaries = [
            m
            for m in await conversation_service.list_messages(conversation.id)
            if m.role == MessageRole.SUMMARY
        ]
        assert len(summaries) == 1
        assert len([c for c in mock_provider.calls if c.method == "generate_text"]) == 1

    @pytest.mark.asyncio
    async def test_new_content_folds_previous_summary(
        self,
        compaction_service: CompactionService,
        conversation_service: ConversationService,
        mock_provider: MockProvider,
        agent: Agent,
    ) -> None:
        """Test that a later compaction re-summarizes the old summary with new messages."""
        conversation = await conversation_service.get_or_create(
            agent.id, ConversationMode.BACKGROUND
        )
        await _add_turns(conversation_service, conversation.id, 4)
        mock_provider.script_text("First summary", "Second summary")
        first = await compaction_service.compact_if_needed(conversation.id)

        await _add_turns(conversation_service, conversation.id, 3)
        second = await compaction_service.compact_if_needed(conversation.id)

        assert first is not None and second is not None
        assert second.id != first.id
        assert second.content == "Second summary"
        transcript = mock_provider.calls[-1].messages[0].content
        assert "[Earlier summary]: First summary" in transcript
        context = await conversation_service.load_context(conversation.id)
        assert context[0].id == second.id
        assert len(context) == 3

    @pytest.mark.asyncio
    async def test_nothing_older_than_recent_window(
        self,
        conversation_service: ConversationService,
        mock_provider: MockProvider,
        agent: Agent,
    ) -> None:
        """Test that an oversized context made only of recent messages is left alone."""
        service = CompactionService(
            conversation_service,
            mock_provider,
            CompactionConfig(max_messages=50, keep_recent=2, max_context_tokens=100),
        )
        conversation = await conversation_service.get_or_create(
            agent.id, ConversationMode.BACKGROUND
        )
        await conversation_service.append_turn(conversation.id, "x" * 400, "y" * 400)

        assert await service.compact_if_needed(conversation.id) is None
        assert mock_provider.calls == []


class TestBudgetHelpers:
    """Test token estimates and trimming."""

    def test_estimate_token_count(self) -> None:
        """Test the four-characters-per-token estimate."""
        assert estimate_token_count("") == 0
        assert estimate_token_count("abcdefgh") == 2

    def test_trim_keeps_newest_and_summary(self) -> None:
        """Test that trimming drops the oldest body messages first."""
        summary = _message(MessageRole.SUMMARY, "s" * 40)
        old = _message(MessageRole.USER, "o" * 40)
        new = _message(MessageRole.LLM, "n" * 40)

        kept = trim_to_token_budget([summary, old, new], budget=20)

        assert kept == [summary, new]

    def test_format_transcript_labels_roles(self) -> None:
        """Test transcript rendering."""
        text = format_transcript(
            [_message(MessageRole.USER, "Hi"), _message(MessageRole.LLM, "Hello")]
        )

        assert text == "[User]: Hi\n\n[Assistant]: Hello"
