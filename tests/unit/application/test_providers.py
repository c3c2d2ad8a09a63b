"""Unit tests for the provider factory and the mock provider."""

from unittest.mock import MagicMock

import pytest
from overmind.application import ClaudeProvider, MockProvider, create_provider
from overmind.application.mock_provider import DEFAULT_ACKNOWLEDGMENT
from overmind.domain.ports.llm_provider import ChatMessage
from overmind.infrastructure.config import ConfigManager, ProviderConfig
from overmind.infrastructure.exceptions import ProviderError, ProviderNotConfiguredError

USER = [ChatMessage(role="user", content="Hello there")]


class TestCreateProvider:
    """Test provider selection."""

    def test_mock_by_config(self) -> None:
        """Test that the mock needs no credentials."""
        assert isinstance(create_provider(ProviderConfig(name="mock")), MockProvider)

    def test_name_override(self) -> None:
        """Test that an explicit name wins over configuration."""
        assert isinstance(create_provider(ProviderConfig(), name="mock"), MockProvider)

    def test_anthropic_with_key(self) -> None:
        """Test the Claude provider with a resolvable key."""
        manager = MagicMock(spec=ConfigManager)
        manager.get_api_key.return_value = "sk-ant-api03-test-key"

        provider = create_provider(ProviderConfig(), manager)

        assert isinstance(provider, ClaudeProvider)

    def test_anthropic_without_key(self) -> None:
        """Test that a missing key raises a configuration error with remediation."""
        manager = MagicMock(spec=ConfigManager)
        manager.get_api_key.side_effect = ValueError("ANTHROPIC_API_KEY not found")

        with pytest.raises(ProviderNotConfiguredError) as exc_info:
            create_provider(ProviderConfig(), manager)

        assert "--provider mock" in str(exc_info.value)

    def test_unknown_provider(self) -> None:
        """Test that unknown names are rejected."""
        with pytest.raises(ProviderNotConfiguredError):
            create_provider(ProviderConfig(), name="gpt")


class TestMockProvider:
    """Test scripting of the mock provider."""

    @pytest.mark.asyncio
    async def test_structured_script_then_default(self) -> None:
        """Test scripted entries followed by the canned default."""
        provider = MockProvider()
        provider.script_structured("GraphConstructionOutput", {"summary": "Wrote one node"})
        schema = {"title": "GraphConstructionOutput"}

        first = await provider.generate_structured(USER, schema, "system")
        second = await provider.generate_structured(USER, schema, "system")

        assert first == {"summary": "Wrote one node"}
        assert second["summary"] == "No graph changes were needed."
        assert len(provider.calls_for("GraphConstructionOutput")) == 2

    @pytest.mark.asyncio
    async def test_scripted_exception(self) -> None:
        """Test that scripted exceptions are raised."""
        provider = MockProvider()
        provider.script_text(ProviderError("down"))

        with pytest.raises(ProviderError):
            await provider.generate_text(USER, "system")

    @pytest.mark.asyncio
    async def test_default_text_is_digest(self) -> None:
        """Test the deterministic summary used by compaction tests."""
        assert await MockProvider().generate_text(USER, "system") == "Summary: Hello there"

    @pytest.mark.asyncio
    async def test_default_stream(self) -> None:
        """Test that the default acknowledgment streams word by word."""
        chunks = [chunk async for chunk in MockProvider().stream_text(USER, "system")]

        assert "".join(chunks).strip() == DEFAULT_ACKNOWLEDGMENT
        assert len(chunks) == len(DEFAULT_ACKNOWLEDGMENT.split(" "))
