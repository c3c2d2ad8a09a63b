"""Conversation store: two lanes per agent, append-only ordered messages."""

from typing import cast
from uuid import UUID

from aiosqlite import Connection

from overmind.domain.models import Conversation, ConversationMode, Message, MessageRole
from overmind.infrastructure.database import Database, to_db_timestamp
from overmind.infrastructure.exceptions import NotFoundError
from overmind.infrastructure.logger import get_logger

logger = get_logger(__name__)


class ConversationService:
    """Persistence for conversations and their messages.

    Each agent has exactly one conversation per ``ConversationMode``, created
    lazily. Messages are totally ordered by their insertion sequence and each
    links to its causal predecessor through ``previous_message_id``.
    """

    def __init__(self, database: Database) -> None:
        """Initialize conversation service.

        Args:
            database: Database instance for conversation storage
        """
        self._db = database

    async def get_or_create(self, agent_id: UUID, mode: ConversationMode) -> Conversation:
        """Return the agent's conversation for ``mode``, creating it on first use.

        Raises:
            NotFoundError: If the agent does not exist
        """
        existing = await self._find(agent_id, mode)
        if existing is not None:
            return existing

        conversation = Conversation(agent_id=agent_id, mode=mode)
        async with self._db.transaction() as conn:
            cursor = await conn.execute("SELECT 1 FROM agents WHERE id = ?", (str(agent_id),))
            if await cursor.fetchone() is None:
                raise NotFoundError("agent", agent_id)
            # A concurrent caller may have created it between the read and here
            await conn.execute(
                """
                INSERT OR IGNORE INTO conversations (id, agent_id, mode, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (
                    str(conversation.id),
                    str(agent_id),
                    mode.value,
                    to_db_timestamp(conversation.created_at),
                ),
            )

        created = await self._find(agent_id, mode)
        if created is None:
            # The agent was deleted between the insert and the read
            raise NotFoundError("agent", agent_id)
        if created.id == conversation.id:
            logger.info(
                "conversation_created",
                agent_id=str(agent_id),
                conversation_id=str(created.id),
                mode=mode.value,
            )
        return created

    async def _find(self, agent_id: UUID, mode: ConversationMode) -> Conversation | None:
        async with self._db._get_connection() as conn:
            cursor = await conn.execute(
                "SELECT * FROM conversations WHERE agent_id = ? AND mode = ?",
                (str(agent_id), mode.value),
            )
            row = await cursor.fetchone()
        return self._db._row_to_conversation(row) if row else None

    async def get_conversation(self, conversation_id: UUID) -> Conversation:
        """Get conversation by ID.

        Raises:
            NotFoundError: If the conversation does not exist
        """
        async with self._db._get_connection() as conn:
            cursor = await conn.execute(
                "SELECT * FROM conversations WHERE id = ?", (str(conversation_id),)
            )
            row = await cursor.fetchone()
        if row is None:
            raise NotFoundError("conversation", conversation_id)
        return self._db._row_to_conversation(row)

    async def append_message(
        self, conversation_id: UUID, role: MessageRole, content: str
    ) -> Message:
        """Append one message linked to the conversation's newest message.

        Raises:
            NotFoundError: If the conversation does not exist
        """
        async with self._db.transaction() as conn:
            await self._require_conversation(conn, conversation_id)
            previous_id = await self._newest_message_id(conn, conversation_id)
            message = Message(
                conversation_id=conversation_id,
                role=role,
                content=content,
                previous_message_id=previous_id,
            )
            message.seq = await self._insert_message(conn, message)
        return message

    async def append_turn(
        self, conversation_id: UUID, user_content: str, llm_content: str
    ) -> tuple[Message, Message]:
        """Append a user message and its reply as one atomic turn.

        The user message links to the newest existing message and the reply
        links to the user message. Both rows commit together or not at all.

        Returns:
            Tuple of (user message, llm message)

        Raises:
            NotFoundError: If the conversation does not exist
        """
        async with self._db.transaction() as conn:
            await self._require_conversation(conn, conversation_id)
            previous_id = await self._newest_message_id(conn, conversation_id)

            user_message = Message(
                conversation_id=conversation_id,
                role=MessageRole.USER,
                content=user_content,
                previous_message_id=previous_id,
            )
            user_message.seq = await self._insert_message(conn, user_message)

            llm_message = Message(
                conversation_id=conversation_id,
                role=MessageRole.LLM,
                content=llm_content,
                previous_message_id=user_message.id,
            )
            llm_message.seq = await self._insert_message(conn, llm_message)

        logger.debug(
            "turn_appended",
            conversation_id=str(conversation_id),
            user_message_id=str(user_message.id),
            llm_message_id=str(llm_message.id),
        )
        return user_message, llm_message

    async def insert_summary(
        self, conversation_id: UUID, content: str, covers_through: Message
    ) -> Message:
        """Store a summary covering every message up to ``covers_through``.

        The summary becomes the earliest retained message of the context: its
        predecessor is the last message it covers.
        """
        summary = Message(
            conversation_id=conversation_id,
            role=MessageRole.SUMMARY,
            content=content,
            previous_message_id=covers_through.id,
            summarized_through_seq=covers_through.seq,
        )
        async with self._db.transaction() as conn:
            await self._require_conversation(conn, conversation_id)
            summary.seq = await self._insert_message(conn, summary)
        return summary

    async def get_latest_summary(self, conversation_id: UUID) -> Message | None:
        """Return the newest summary message, if the conversation was compacted."""
        async with self._db._get_connection() as conn:
            cursor = await conn.execute(
                """
                SELECT * FROM messages
                WHERE conversation_id = ? AND role = ?
                ORDER BY seq DESC
                LIMIT 1
                """,
                (str(conversation_id), MessageRole.SUMMARY.value),
            )
            row = await cursor.fetchone()
        return self._db._row_to_message(row) if row else None

    async def load_context(self, conversation_id: UUID) -> list[Message]:
        """Load the retained context: latest summary plus everything after it.

        "After" means messages newer than the last message the summary covers,
        so messages kept verbatim during compaction stay in the context.
        Messages older than the summary are never re-read.
        """
        summary = await self.get_latest_summary(conversation_id)
        cutoff = summary.summarized_through_seq if summary and summary.summarized_through_seq else 0

        async with self._db._get_connection() as conn:
            cursor = await conn.execute(
                """
                SELECT * FROM messages
                WHERE conversation_id = ? AND role != ? AND seq > ?
                ORDER BY seq ASC
                """,
                (str(conversation_id), MessageRole.SUMMARY.value, cutoff),
            )
            rows = await cursor.fetchall()

        messages = [self._db._row_to_message(row) for row in rows]
        return [summary, *messages] if summary else messages

    async def list_messages(self, conversation_id: UUID) -> list[Message]:
        """Return the full stored history, summaries included, in order."""
        async with self._db._get_connection() as conn:
            cursor = await conn.execute(
                "SELECT * FROM messages WHERE conversation_id = ? ORDER BY seq ASC",
                (str(conversation_id),),
            )
            rows = await cursor.fetchall()
        return [self._db._row_to_message(row) for row in rows]

    async def _require_conversation(self, conn: Connection, conversation_id: UUID) -> None:
        cursor = await conn.execute(
            "SELECT 1 FROM conversations WHERE id = ?", (str(conversation_id),)
        )
        if await cursor.fetchone() is None:
            raise NotFoundError("conversation", conversation_id)

    async def _newest_message_id(self, conn: Connection, conversation_id: UUID) -> UUID | None:
        cursor = await conn.execute(
            "SELECT id FROM messages WHERE conversation_id = ? ORDER BY seq DESC LIMIT 1",
            (str(conversation_id),),
        )
        row = await cursor.fetchone()
        return UUID(row["id"]) if row else None

    async def _insert_message(self, conn: Connection, message: Message) -> int:
        cursor = await conn.execute(
            """
            INSERT INTO messages (
                id, conversation_id, role, content, previous_message_id,
                summarized_through_seq, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                str(message.id),
                str(message.conversation_id),
                message.role.value,
                message.content,
                str(message.previous_message_id) if message.previous_message_id else None,
                message.summarized_through_seq,
                to_db_timestamp(message.created_at),
            ),
        )
        return cast(int, cursor.lastrowid)
