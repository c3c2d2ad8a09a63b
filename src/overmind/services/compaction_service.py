"""Compaction engine: bound a conversation's context with a rolling summary."""

import asyncio
from collections.abc import Sequence
from uuid import UUID

from overmind.domain.models import Message, MessageRole
from overmind.domain.ports.llm_provider import ChatMessage, GenerationOptions, LLMProvider
from overmind.infrastructure.config import CompactionConfig
from overmind.infrastructure.logger import get_logger
from overmind.services.conversation_service import ConversationService

logger = get_logger(__name__)

SUMMARIZER_SYSTEM_PROMPT = """You condense the older part of a conversation between a user and an \
autonomous research agent so the agent can keep working without the full history.

Write in the third person ("The user asked...", "The agent found..."). Cover:
- Key topics discussed
- Decisions made and their reasons
- Open action items and commitments
- Facts, names, figures and identifiers needed later

If the input starts with an earlier summary, fold its content into yours instead of \
summarizing it again. Newer messages win where they contradict it. Output only the summary."""

_ROLE_LABELS = {
    MessageRole.USER: "User",
    MessageRole.LLM: "Assistant",
    MessageRole.SUMMARY: "Earlier summary",
}


def estimate_token_count(text: str) -> int:
    """Approximate token count (about four characters per token)."""
    return len(text) // 4


def estimate_messages_tokens(messages: Sequence[Message]) -> int:
    """Approximate token count of a message list."""
    return sum(estimate_token_count(message.content) for message in messages)


def trim_to_token_budget(messages: Sequence[Message], budget: int) -> list[Message]:
    """Keep the newest messages whose combined estimate fits ``budget``.

    A leading summary is kept whenever it fits on its own, since it stands in
    for all earlier history.
    """
    kept: list[Message] = []
    used = 0
    leading_summary = messages[0] if messages and messages[0].role == MessageRole.SUMMARY else None
    if leading_summary is not None:
        used = estimate_token_count(leading_summary.content)
        if used > budget:
            leading_summary = None
            used = 0

    body = messages[1:] if messages and messages[0].role == MessageRole.SUMMARY else messages
    for message in reversed(body):
        cost = estimate_token_count(message.content)
        if used + cost > budget:
            break
        kept.append(message)
        used += cost

    kept.reverse()
    return [leading_summary, *kept] if leading_summary else kept


def format_transcript(messages: Sequence[Message]) -> str:
    """Render messages as ``[Role]: content`` lines."""
    return "\n\n".join(f"[{_ROLE_LABELS[m.role]}]: {m.content}" for m in messages)


def to_chat_messages(messages: Sequence[Message]) -> list[ChatMessage]:
    """Map stored messages to provider chat messages."""
    return [ChatMessage(role=m.role.to_llm_role(), content=m.content) for m in messages]


class CompactionService:
    """Replaces aged conversation history with a single summary message.

    Compaction keeps the most recent ``keep_recent`` messages verbatim and
    summarizes everything older (including an earlier summary) into one new
    summary. Compactions of one conversation are serialized, and a call with
    nothing new to summarize returns the existing summary untouched.
    """

    def __init__(
        self,
        conversations: ConversationService,
        provider: LLMProvider,
        config: CompactionConfig | None = None,
    ) -> None:
        """Initialize compaction service.

        Args:
            conversations: Conversation store
            provider: LLM provider used for summarization
            config: Compaction thresholds
        """
        self._conversations = conversations
        self._provider = provider
        self.config = config or CompactionConfig()
        self._locks: dict[UUID, asyncio.Lock] = {}

    def _lock_for(self, conversation_id: UUID) -> asyncio.Lock:
        return self._locks.setdefault(conversation_id, asyncio.Lock())

    def exceeds_threshold(self, context: Sequence[Message]) -> bool:
        """Pure size predicate on an already loaded context."""
        return (
            len(context) > self.config.max_messages
            or estimate_messages_tokens(context) > self.config.max_context_tokens
        )

    async def should_compact(self, conversation_id: UUID) -> bool:
        """Whether the conversation's retained context is over the size threshold."""
        context = await self._conversations.load_context(conversation_id)
        return self.exceeds_threshold(context)

    async def compact_if_needed(self, conversation_id: UUID) -> Message | None:
        """Compact the conversation when it is over threshold.

        Returns:
            The conversation's current summary (new or pre-existing), or None
            if the conversation has never been compacted
        """
        async with self._lock_for(conversation_id):
            context = await self._conversations.load_context(conversation_id)
            latest_summary = (
                context[0] if context and context[0].role == MessageRole.SUMMARY else None
            )

            if not self.exceeds_threshold(context):
                return latest_summary

            keep = self.config.keep_recent
            older = context[:-keep] if len(context) > keep else []
            # Only the previous summary would be re-summarized: nothing new to fold in
            if not older or (len(older) == 1 and older[0] is latest_summary):
                return latest_summary

            summary_text = await self._summarize(older)
            summary = await self._conversations.insert_summary(
                conversation_id, summary_text, covers_through=older[-1]
            )

        logger.info(
            "conversation_compacted",
            conversation_id=str(conversation_id),
            summarized_messages=len(older),
            retained_messages=len(context) - len(older),
            summary_id=str(summary.id),
        )
        return summary

    async def _summarize(self, messages: Sequence[Message]) -> str:
        """Summarize messages with the provider."""
        transcript = format_transcript(messages)
        text = await self._provider.generate_text(
            [ChatMessage(role="user", content=f"Summarize this conversation:\n\n{transcript}")],
            system_prompt=SUMMARIZER_SYSTEM_PROMPT,
            options=GenerationOptions(max_tokens=2048, temperature=0.0),
        )
        return text.strip()
