"""Unit tests for ClaudeProvider with a mocked Anthropic client."""

from collections.abc import AsyncIterator
from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import anthropic
import httpx
import pytest
from overmind.application import ClaudeProvider
from overmind.application.claude_provider import OUTPUT_TOOL_NAME, _to_api_messages
from overmind.domain.ports.llm_provider import ChatMessage, GenerationOptions, ToolSpec
from overmind.infrastructure.config import ProviderConfig
from overmind.infrastructure.exceptions import ProviderError, ValidationError

SCHEMA = {"title": "Answer", "type": "object", "properties": {"value": {"type": "integer"}}}
USER = [ChatMessage(role="user", content="What is 6 * 7?")]


def text_block(text: str) -> SimpleNamespace:
    return SimpleNamespace(type="text", text=text)


def tool_block(name: str, arguments: dict[str, Any], block_id: str = "toolu_1") -> SimpleNamespace:
    return SimpleNamespace(type="tool_use", id=block_id, name=name, input=arguments)


def response(*blocks: SimpleNamespace) -> SimpleNamespace:
    return SimpleNamespace(content=list(blocks))


def make_provider(*responses: Any) -> tuple[ClaudeProvider, MagicMock]:
    client = MagicMock()
    client.messages.create = AsyncMock(side_effect=list(responses))
    return ClaudeProvider(config=ProviderConfig(), client=client), client


class FakeStream:
    """Async context manager standing in for ``client.messages.stream``."""

    def __init__(self, chunks: list[str]):
        self.chunks = chunks
        self.exited = False

    async def __aenter__(self) -> "FakeStream":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.exited = True

    @property
    def text_stream(self) -> AsyncIterator[str]:
        async def generate() -> AsyncIterator[str]:
            for chunk in self.chunks:
                yield chunk

        return generate()


class TestStructuredOutput:
    """Test the record_output tool loop."""

    @pytest.mark.asyncio
    async def test_output_tool_forced_without_other_tools(self) -> None:
        """Test that the output tool is forced when the phase has no tools."""
        provider, client = make_provider(response(tool_block(OUTPUT_TOOL_NAME, {"value": 42})))

        result = await provider.generate_structured(USER, SCHEMA, "Be exact.")

        assert result == {"value": 42}
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["tool_choice"] == {"type": "tool", "name": OUTPUT_TOOL_NAME}
        assert kwargs["tools"][-1]["input_schema"] == SCHEMA
        assert kwargs["system"] == "Be exact."

    @pytest.mark.asyncio
    async def test_tool_calls_run_through_executor(self) -> None:
        """Test that other tool calls are executed and their results sent back."""
        provider, client = make_provider(
            response(text_block("Let me check."), tool_block("query_graph", {"limit": 5})),
            response(tool_block(OUTPUT_TOOL_NAME, {"value": 42}, block_id="toolu_2")),
        )
        executor = AsyncMock(return_value={"success": True, "data": {"nodes": []}})
        options = GenerationOptions(
            tools=[ToolSpec("query_graph", "Query", {"type": "object"})],
            tool_executor=executor,
        )

        result = await provider.generate_structured(USER, SCHEMA, "system", options)

        assert result == {"value": 42}
        executor.assert_awaited_once_with("query_graph", {"limit": 5})
        first_call, second_call = client.messages.create.call_args_list
        assert first_call.kwargs["tool_choice"] == {"type": "auto"}
        messages = second_call.kwargs["messages"]
        assert [m["role"] for m in messages] == ["user", "assistant", "user"]
        tool_result = messages[-1]["content"][0]
        assert tool_result["tool_use_id"] == "toolu_1"
        assert tool_result["is_error"] is False

    @pytest.mark.asyncio
    async def test_json_text_fallback(self) -> None:
        """Test that a fenced JSON answer is accepted when the tool is skipped."""
        provider, _ = make_provider(response(text_block('Here:\n```json\n{"value": 42}\n```')))
        options = GenerationOptions(
            tools=[ToolSpec("query_graph", "Query", {"type": "object"})],
            tool_executor=AsyncMock(),
        )

        assert await provider.generate_structured(USER, SCHEMA, "system", options) == {"value": 42}

    @pytest.mark.asyncio
    async def test_no_structured_output_raises_validation_error(self) -> None:
        """Test that prose without JSON is a validation failure, not a crash."""
        provider, _ = make_provider(response(text_block("I am not sure.")))
        options = GenerationOptions(
            tools=[ToolSpec("query_graph", "Query", {"type": "object"})],
            tool_executor=AsyncMock(),
        )

        with pytest.raises(ValidationError):
            await provider.generate_structured(USER, SCHEMA, "system", options)


class TestErrors:
    """Test API error mapping."""

    @pytest.mark.asyncio
    async def test_api_error_becomes_provider_error(self) -> None:
        """Test that SDK errors surface as ProviderError."""
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        provider, _ = make_provider(anthropic.APIConnectionError(request=request))

        with pytest.raises(ProviderError, match="Anthropic API error"):
            await provider.generate_text(USER, "system")


class TestText:
    """Test free text generation and streaming."""

    @pytest.mark.asyncio
    async def test_generate_text_joins_text_blocks(self) -> None:
        """Test that text blocks are concatenated."""
        provider, _ = make_provider(response(text_block("Forty"), text_block("-two")))

        assert await provider.generate_text(USER, "system") == "Forty-two"

    @pytest.mark.asyncio
    async def test_stream_text_yields_chunks(self) -> None:
        """Test streaming through the SDK stream helper."""
        stream = FakeStream(["Got ", "it."])
        client = MagicMock()
        client.messages.stream = MagicMock(return_value=stream)
        provider = ClaudeProvider(client=client)

        chunks = [chunk async for chunk in provider.stream_text(USER, "system")]

        assert chunks == ["Got ", "it."]
        assert stream.exited

    def test_default_client_disables_sdk_retries(self) -> None:
        """Test that retries are left to the phase executor."""
        provider = ClaudeProvider(api_key="sk-ant-api03-test-key")

        assert isinstance(provider.client, anthropic.AsyncAnthropic)
        assert provider.client.max_retries == 0


class TestMessageConversion:
    """Test chat message shaping for the Messages API."""

    def test_merges_roles_and_opens_with_user(self) -> None:
        """Test role merging and the leading user turn."""
        api_messages = _to_api_messages(
            [
                ChatMessage(role="assistant", content="Summary of earlier talk"),
                ChatMessage(role="user", content="First"),
                ChatMessage(role="user", content="Second"),
            ]
        )

        assert api_messages == [
            {"role": "user", "content": "(earlier conversation)"},
            {"role": "assistant", "content": "Summary of earlier talk"},
            {"role": "user", "content": "First\n\nSecond"},
        ]
