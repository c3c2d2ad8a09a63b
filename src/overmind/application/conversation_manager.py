"""Foreground conversation: streamed acknowledgments and user task intake."""

import asyncio
from collections.abc import Callable
from contextlib import aclosing
from dataclasses import dataclass
from uuid import UUID

from overmind.domain.models import Agent, ConversationMode, Message, Task
from overmind.domain.ports.llm_provider import ChatMessage, GenerationOptions, LLMProvider
from overmind.infrastructure.config import ConversationConfig
from overmind.infrastructure.exceptions import ProviderError
from overmind.infrastructure.logger import get_logger
from overmind.services.agent_service import AgentService
from overmind.services.compaction_service import (
    CompactionService,
    to_chat_messages,
    trim_to_token_budget,
)
from overmind.services.conversation_service import ConversationService
from overmind.services.memory_service import MemoryService
from overmind.services.task_queue_service import TaskQueueService

logger = get_logger(__name__)

ACKNOWLEDGMENT_SYSTEM_PROMPT = """You are {name}, an autonomous research agent. {role}

The user just sent you a message. Reply with a short acknowledgment (one to three \
sentences) that shows you understood the request and says you will work on it in the \
background and report back. Do not attempt to answer the request yet.

{memories}"""


@dataclass
class AcknowledgedTurn:
    """What a handled user message left behind."""

    user_message: Message
    llm_message: Message
    task: Task | None


class AcknowledgmentStream:
    """Bounded channel of acknowledgment chunks.

    Iterate it (``async for chunk in stream``) to receive text as it is
    generated. Closing the stream early stops delivery only: the producer
    still reads the provider stream to its end and persists the turn, which
    ``wait_closed()`` returns. A consumer that leaves the buffer full for
    longer than ``consumer_timeout`` is treated as gone, the same as closing.
    """

    def __init__(self, buffer_size: int, consumer_timeout: float) -> None:
        self._queue: asyncio.Queue[str | None] = asyncio.Queue(maxsize=buffer_size)
        self._consumer_timeout = consumer_timeout
        self._closed = False
        self._producer: asyncio.Task[AcknowledgedTurn] | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> "AcknowledgmentStream":
        return self

    async def __anext__(self) -> str:
        if self._closed:
            raise StopAsyncIteration
        chunk = await self._queue.get()
        if chunk is None:
            self._closed = True
            raise StopAsyncIteration
        return chunk

    async def __aenter__(self) -> "AcknowledgmentStream":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Stop receiving chunks; the producer keeps running to completion."""
        self._closed = True
        while not self._queue.empty():
            self._queue.get_nowait()

    async def read_all(self) -> str:
        """Consume the remaining chunks and return them joined."""
        return "".join([chunk async for chunk in self])

    async def wait_closed(self) -> AcknowledgedTurn:
        """Wait for the producer and return the persisted turn.

        Raises:
            Exception: Whatever made the producer fail to persist the turn
        """
        if self._producer is None:
            raise RuntimeError("Stream was not started by a ConversationManager")
        return await self._producer

    async def _send(self, chunk: str | None) -> None:
        """Deliver a chunk (None marks the end) without ever blocking past the timeout."""
        if self._closed:
            return
        try:
            self._queue.put_nowait(chunk)
        except asyncio.QueueFull:
            try:
                await asyncio.wait_for(self._queue.put(chunk), timeout=self._consumer_timeout)
            except asyncio.TimeoutError:
                logger.warning("acknowledgment_stream_abandoned", buffered=self._queue.qsize())
                await self.aclose()

    async def _finish(self) -> None:
        await self._send(None)


class ConversationManager:
    """Handles user messages on an agent's foreground conversation.

    Every message gets an immediate acknowledgment streamed back to the caller,
    and the turn (user message + acknowledgment) is stored atomically. The
    actual work is queued as a ``user`` task for the background worker.
    """

    def __init__(
        self,
        agents: AgentService,
        tasks: TaskQueueService,
        conversations: ConversationService,
        compaction: CompactionService,
        memories: MemoryService,
        provider: LLMProvider,
        config: ConversationConfig | None = None,
    ):
        """Initialize conversation manager.

        Args:
            agents: Agent registry
            tasks: Task queue receiving user tasks
            conversations: Conversation store (foreground mode is used)
            compaction: Compaction engine run before context is loaded
            memories: Memory store for the acknowledgment prompt
            provider: LLM provider for the acknowledgment call
            config: Streaming and acknowledgment settings
        """
        self.agents = agents
        self.tasks = tasks
        self.conversations = conversations
        self.compaction = compaction
        self.memories = memories
        self.provider = provider
        self.config = config or ConversationConfig()
        self.on_task_queued: Callable[[UUID], None] | None = None

    async def handle_user_message(self, agent_id: UUID, text: str) -> AcknowledgmentStream:
        """Acknowledge a user message and queue it as work.

        Args:
            agent_id: Agent the user is talking to
            text: Message text; empty text is acknowledged but queues no task

        Returns:
            Stream of acknowledgment chunks

        Raises:
            NotFoundError: If the agent does not exist
        """
        agent = await self.agents.get_agent(agent_id)
        stream = AcknowledgmentStream(
            self.config.stream_buffer_size, self.config.consumer_timeout_seconds
        )
        stream._producer = asyncio.create_task(self._produce(stream, agent, text))
        return stream

    async def enqueue_user_task(self, agent_id: UUID, text: str) -> Task:
        """Queue a user task directly, without a conversation turn."""
        task = await self.tasks.enqueue_user_task(agent_id, text)
        self._notify(agent_id)
        return task

    async def _produce(
        self, stream: AcknowledgmentStream, agent: Agent, text: str
    ) -> AcknowledgedTurn:
        try:
            conversation = await self.conversations.get_or_create(
                agent.id, ConversationMode.FOREGROUND
            )
            if text.strip():
                acknowledgment = await self._stream_acknowledgment(
                    stream, agent, conversation.id, text
                )
            else:
                acknowledgment = ""
            if not acknowledgment:
                acknowledgment = self.config.generic_acknowledgment
                await stream._send(acknowledgment)

            user_message, llm_message = await self.conversations.append_turn(
                conversation.id, text, acknowledgment
            )

            task = None
            if text.strip():
                task = await self.enqueue_user_task(agent.id, text)
        finally:
            await stream._finish()

        logger.info(
            "user_message_handled",
            agent_id=str(agent.id),
            conversation_id=str(conversation.id),
            task_id=str(task.id) if task else None,
        )
        return AcknowledgedTurn(user_message, llm_message, task)

    async def _stream_acknowledgment(
        self, stream: AcknowledgmentStream, agent: Agent, conversation_id: UUID, text: str
    ) -> str:
        """Stream the provider acknowledgment into the channel.

        Returns:
            The streamed text, or "" if the provider failed before producing any
        """
        chunks: list[str] = []
        try:
            messages = await self._context_messages(conversation_id, text)
            system_prompt = ACKNOWLEDGMENT_SYSTEM_PROMPT.format(
                name=agent.name,
                role=agent.role,
                memories=await self.memories.build_memory_context_block(agent.id),
            ).strip()
            options = GenerationOptions(max_tokens=self.config.acknowledgment_max_tokens)
            async with aclosing(
                self.provider.stream_text(messages, system_prompt, options)
            ) as chunk_stream:
                async for chunk in chunk_stream:
                    chunks.append(chunk)
                    await stream._send(chunk)
        except ProviderError as e:
            logger.warning(
                "acknowledgment_fallback",
                agent_id=str(agent.id),
                streamed_chunks=len(chunks),
                error=str(e),
            )
        return "".join(chunks).strip()

    async def _context_messages(self, conversation_id: UUID, text: str) -> list[ChatMessage]:
        """Foreground context (compacted first) followed by the new user message."""
        await self.compaction.compact_if_needed(conversation_id)
        context = trim_to_token_budget(
            await self.conversations.load_context(conversation_id),
            self.compaction.config.max_context_tokens,
        )
        return to_chat_messages(context) + [ChatMessage(role="user", content=text)]

    def _notify(self, agent_id: UUID) -> None:
        if self.on_task_queued is not None:
            self.on_task_queued(agent_id)
