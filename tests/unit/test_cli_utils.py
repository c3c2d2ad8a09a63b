"""Unit tests for CLI utility functions."""

from unittest.mock import AsyncMock
from uuid import UUID

import pytest
import typer
from overmind.cli.utils import parse_uuid, resolve_agent_id, run_async
from overmind.domain.models import Agent
from overmind.infrastructure.exceptions import NotFoundError

LEAD = Agent(id=UUID("3f2a0000-0000-4000-8000-000000000001"), name="Market Watch")
ANALYST = Agent(id=UUID("3f2b0000-0000-4000-8000-000000000002"), name="Analyst")


def services_with(*agents: Agent) -> dict:
    agent_service = AsyncMock()
    agent_service.list_agents.return_value = list(agents)
    return {"agent_service": agent_service}


class TestResolveAgentId:
    """Tests for resolve_agent_id function."""

    @pytest.mark.asyncio
    async def test_full_uuid(self) -> None:
        """Test that full ids resolve without a lookup."""
        services = services_with()

        assert await resolve_agent_id(str(LEAD.id), services) == LEAD.id
        services["agent_service"].list_agents.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unique_prefix(self) -> None:
        """Test resolving an unambiguous prefix."""
        assert await resolve_agent_id("3F2A", services_with(LEAD, ANALYST)) == LEAD.id

    @pytest.mark.asyncio
    async def test_ambiguous_prefix(self) -> None:
        """Test that a prefix matching several agents exits."""
        with pytest.raises(typer.Exit):
            await resolve_agent_id("3f2", services_with(LEAD, ANALYST))

    @pytest.mark.asyncio
    async def test_no_match(self) -> None:
        """Test that an unmatched prefix exits."""
        with pytest.raises(typer.Exit):
            await resolve_agent_id("ffff", services_with(LEAD, ANALYST))


class TestParseUuid:
    """Tests for parse_uuid function."""

    def test_valid(self) -> None:
        """Test parsing a full UUID."""
        assert parse_uuid(str(LEAD.id), "task") == LEAD.id

    def test_invalid(self) -> None:
        """Test that malformed ids are reported as bad parameters."""
        with pytest.raises(typer.BadParameter, match="Invalid task ID"):
            parse_uuid("3f2a", "task")


class TestRunAsync:
    """Tests for run_async function."""

    def test_returns_result(self) -> None:
        """Test that the coroutine result is returned."""

        async def answer() -> int:
            return 42

        assert run_async(answer()) == 42

    def test_domain_error_exits(self) -> None:
        """Test that domain errors become exit code 1."""

        async def missing() -> None:
            raise NotFoundError("agent", "3f2a")

        with pytest.raises(typer.Exit) as exc_info:
            run_async(missing())

        assert exc_info.value.exit_code == 1

    def test_unexpected_error_propagates(self) -> None:
        """Test that programming errors are not swallowed."""

        async def broken() -> None:
            raise KeyError("bug")

        with pytest.raises(KeyError):
            run_async(broken())
