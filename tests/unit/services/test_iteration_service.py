"""Unit tests for IterationService."""

import pytest
from overmind.domain.models import Agent, IterationStatus, Phase
from overmind.services import IterationService


class TestIterations:
    """Test iteration lifecycle."""

    @pytest.mark.asyncio
    async def test_iteration_sealed_once(
        self, iteration_service: IterationService, agent: Agent
    ) -> None:
        """Test that a completed iteration cannot later be marked failed."""
        iteration = await iteration_service.create_iteration(agent.id)
        assert iteration.status == IterationStatus.RUNNING

        completed = await iteration_service.complete_iteration(iteration.id)
        again = await iteration_service.fail_iteration(iteration.id, "too late")

        assert completed.status == IterationStatus.COMPLETED
        assert completed.completed_at is not None
        assert again.status == IterationStatus.COMPLETED
        assert again.error_message is None

    @pytest.mark.asyncio
    async def test_failed_iteration_keeps_cause(
        self, iteration_service: IterationService, agent: Agent
    ) -> None:
        """Test that failures record the underlying error."""
        iteration = await iteration_service.create_iteration(agent.id)

        failed = await iteration_service.fail_iteration(
            iteration.id, "knowledge_acquisition: ProviderError: down"
        )

        assert failed.status == IterationStatus.FAILED
        assert failed.error_message == "knowledge_acquisition: ProviderError: down"

    @pytest.mark.asyncio
    async def test_list_iterations_newest_first(
        self, iteration_service: IterationService, agent: Agent
    ) -> None:
        """Test iteration listing order."""
        first = await iteration_service.create_iteration(agent.id)
        second = await iteration_service.create_iteration(agent.id)

        listed = await iteration_service.list_iterations(agent.id)

        assert [iteration.id for iteration in listed] == [second.id, first.id]


class TestInteractions:
    """Test the LLM interaction audit log."""

    @pytest.mark.asyncio
    async def test_interaction_response_null_until_finished(
        self, iteration_service: IterationService, agent: Agent
    ) -> None:
        """Test that an interaction is stored before its response."""
        iteration = await iteration_service.create_iteration(agent.id)

        interaction = await iteration_service.start_interaction(
            iteration.id, agent.id, Phase.QUERY_IDENTIFICATION, "system", {"task": "Find AAPL"}
        )
        pending = await iteration_service.list_interactions(iteration.id)

        assert pending[0].response is None
        assert pending[0].request == {"task": "Find AAPL"}

        await iteration_service.finish_interaction(interaction, {"queries": []})
        finished = await iteration_service.list_interactions(iteration.id)

        assert finished[0].response == {"queries": []}
        assert finished[0].completed_at is not None

    @pytest.mark.asyncio
    async def test_interactions_in_call_order(
        self, iteration_service: IterationService, agent: Agent
    ) -> None:
        """Test that interactions list in the order they were made."""
        iteration = await iteration_service.create_iteration(agent.id)
        for phase in (Phase.QUERY_IDENTIFICATION, Phase.INSIGHT_IDENTIFICATION):
            await iteration_service.start_interaction(iteration.id, agent.id, phase, "s", {})

        phases = [i.phase for i in await iteration_service.list_interactions(iteration.id)]

        assert phases == [Phase.QUERY_IDENTIFICATION, Phase.INSIGHT_IDENTIFICATION]


class TestBriefings:
    """Test briefing storage."""

    @pytest.mark.asyncio
    async def test_record_and_list_briefings(
        self, iteration_service: IterationService, agent: Agent
    ) -> None:
        """Test that briefings are listed per agent."""
        iteration = await iteration_service.create_iteration(agent.id)

        briefing = await iteration_service.record_briefing(
            agent.id, iteration.id, "AAPL update", "AAPL rose 2%", "Full text"
        )
        listed = await iteration_service.list_briefings(agent.id)

        assert [b.id for b in listed] == [briefing.id]
        assert listed[0].full_message == "Full text"
