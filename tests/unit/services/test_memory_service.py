"""Unit tests for MemoryService."""

from uuid import uuid4

import pydantic
import pytest
from overmind.domain.models import Agent, MemoryType
from overmind.infrastructure.exceptions import NotFoundError
from overmind.services import MemoryService
from overmind.services.memory_service import content_key


class TestAddMemory:
    """Test memory writes and deduplication."""

    @pytest.mark.asyncio
    async def test_duplicate_content_keeps_first(
        self, memory_service: MemoryService, agent: Agent
    ) -> None:
        """Test that case and whitespace differences do not create duplicates."""
        first = await memory_service.add_memory(
            agent.id, MemoryType.PREFERENCE, "Prefers  metric units"
        )
        second = await memory_service.add_memory(
            agent.id, MemoryType.FACT, "prefers metric UNITS "
        )

        assert second.id == first.id
        assert second.type == MemoryType.PREFERENCE
        assert len(await memory_service.list_memories(agent.id)) == 1

    @pytest.mark.asyncio
    async def test_same_content_for_different_agents(
        self, memory_service: MemoryService, agent: Agent, subordinate: Agent
    ) -> None:
        """Test that deduplication is per agent."""
        await memory_service.add_memory(agent.id, MemoryType.FACT, "AAPL trades on NASDAQ")
        await memory_service.add_memory(subordinate.id, MemoryType.FACT, "AAPL trades on NASDAQ")

        assert len(await memory_service.list_memories(subordinate.id)) == 1

    @pytest.mark.asyncio
    async def test_empty_content_rejected(
        self, memory_service: MemoryService, agent: Agent
    ) -> None:
        """Test that blank memories are rejected."""
        with pytest.raises(pydantic.ValidationError):
            await memory_service.add_memory(agent.id, MemoryType.INSIGHT, "   ")

    @pytest.mark.asyncio
    async def test_unknown_agent(self, memory_service: MemoryService) -> None:
        """Test that memories need an existing agent."""
        with pytest.raises(NotFoundError):
            await memory_service.add_memory(uuid4(), MemoryType.FACT, "Orphan")

    def test_content_key(self) -> None:
        """Test the normalization used for deduplication."""
        assert content_key("  Likes\tTech \n Stocks ") == "likes tech stocks"


class TestMemoryContext:
    """Test prompt rendering of memories."""

    @pytest.mark.asyncio
    async def test_context_block_sections(
        self, memory_service: MemoryService, agent: Agent
    ) -> None:
        """Test that memories are grouped under per-type headings."""
        await memory_service.add_memories(
            agent.id,
            [
                (MemoryType.FACT, "AAPL trades on NASDAQ"),
                (MemoryType.PREFERENCE, "Wants weekly digests"),
            ],
        )

        block = await memory_service.build_memory_context_block(agent.id)

        assert block == (
            "### User Preferences\n- Wants weekly digests\n\n"
            "### Facts\n- AAPL trades on NASDAQ"
        )

    @pytest.mark.asyncio
    async def test_context_block_empty(self, memory_service: MemoryService, agent: Agent) -> None:
        """Test that an agent without memories renders nothing."""
        assert await memory_service.build_memory_context_block(agent.id) == ""

    @pytest.mark.asyncio
    async def test_list_by_type(self, memory_service: MemoryService, agent: Agent) -> None:
        """Test filtering by memory type."""
        await memory_service.add_memory(agent.id, MemoryType.FACT, "Fact one")
        await memory_service.add_memory(agent.id, MemoryType.INSIGHT, "Insight one")

        insights = await memory_service.list_memories(agent.id, MemoryType.INSIGHT)

        assert [m.content for m in insights] == ["Insight one"]
