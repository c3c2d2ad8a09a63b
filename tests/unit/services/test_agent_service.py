"""Unit tests for AgentService."""

from uuid import uuid4

import pytest
from overmind.domain.models import Agent, Phase
from overmind.infrastructure.exceptions import ForbiddenError, NotFoundError
from overmind.services import AgentService


class TestAgentRegistry:
    """Test agent creation and lookup."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, agent_service: AgentService) -> None:
        """Test that stored agents round-trip with their phase prompts."""
        created = await agent_service.create_agent(
            "Macro",
            role="Watches rates",
            entity_id="team-1",
            iteration_interval_ms=60_000,
            phase_prompts={Phase.ADVICE_GENERATION: "Be brief."},
        )

        loaded = await agent_service.get_agent(created.id)

        assert loaded.name == "Macro"
        assert loaded.is_lead
        assert loaded.iteration_interval_ms == 60_000
        assert loaded.phase_prompts == {Phase.ADVICE_GENERATION: "Be brief."}

    @pytest.mark.asyncio
    async def test_unknown_parent(self, agent_service: AgentService) -> None:
        """Test that the parent lookup key must resolve."""
        with pytest.raises(NotFoundError):
            await agent_service.create_agent("Orphan", parent_agent_id=uuid4())

    @pytest.mark.asyncio
    async def test_subordinates(
        self, agent_service: AgentService, agent: Agent, subordinate: Agent
    ) -> None:
        """Test subordinate lookup by parent key."""
        subordinates = await agent_service.get_subordinates(agent.id)

        assert [a.id for a in subordinates] == [subordinate.id]
        assert not subordinate.is_lead
        assert await agent_service.get_subordinates(subordinate.id) == []

    @pytest.mark.asyncio
    async def test_pause_and_list_active(self, agent_service: AgentService, agent: Agent) -> None:
        """Test that paused agents drop out of the active list."""
        await agent_service.set_active(agent.id, False)

        assert await agent_service.list_agents(active_only=True) == []
        assert len(await agent_service.list_agents()) == 1

    @pytest.mark.asyncio
    async def test_delete_unknown_agent(self, agent_service: AgentService) -> None:
        """Test that deleting a nonexistent agent signals NotFound."""
        with pytest.raises(NotFoundError):
            await agent_service.delete_agent(uuid4())


class TestOwnership:
    """Test entity ownership checks."""

    @pytest.mark.asyncio
    async def test_assert_owned_by(self, agent_service: AgentService) -> None:
        """Test the ownership check for matching and foreign entities."""
        owned = await agent_service.create_agent("Owned", entity_id="team-1")

        assert (await agent_service.assert_owned_by(owned.id, "team-1")).id == owned.id
        with pytest.raises(ForbiddenError):
            await agent_service.assert_owned_by(owned.id, "team-2")
