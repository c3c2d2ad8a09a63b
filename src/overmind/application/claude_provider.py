"""Anthropic Claude implementation of the LLM provider interface."""

import json
import re
from collections.abc import AsyncIterator
from typing import Any

import anthropic
from anthropic import AsyncAnthropic

from overmind.domain.ports.llm_provider import (
    ChatMessage,
    GenerationOptions,
    LLMProvider,
    ToolSpec,
)
from overmind.infrastructure.config import ProviderConfig
from overmind.infrastructure.exceptions import ProviderError, ValidationError
from overmind.infrastructure.logger import get_logger

logger = get_logger(__name__)

# Tool the model calls to hand back its structured result
OUTPUT_TOOL_NAME = "record_output"

_JSON_FENCE = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)


def _to_api_messages(messages: list[ChatMessage]) -> list[dict[str, Any]]:
    """Convert chat messages to the Messages API shape.

    Consecutive messages with the same role are merged and a conversation
    that opens with the assistant (e.g. a summary) gets a leading user turn.
    """
    api_messages: list[dict[str, Any]] = []
    for message in messages:
        if api_messages and api_messages[-1]["role"] == message.role:
            api_messages[-1]["content"] += f"\n\n{message.content}"
        else:
            api_messages.append({"role": message.role, "content": message.content})
    if api_messages and api_messages[0]["role"] == "assistant":
        api_messages.insert(0, {"role": "user", "content": "(earlier conversation)"})
    return api_messages


def _extract_json(text: str) -> dict[str, Any] | None:
    """Best-effort parse of a JSON object from free text."""
    match = _JSON_FENCE.search(text)
    candidate = match.group(1) if match else text.strip()
    try:
        value = json.loads(candidate)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


def _tool_param(spec: ToolSpec) -> dict[str, Any]:
    return {"name": spec.name, "description": spec.description, "input_schema": spec.input_schema}


class ClaudeProvider(LLMProvider):
    """Wrapper for the Anthropic Messages API.

    Structured output is produced through a ``record_output`` tool whose input
    schema is the requested schema. Other tools from ``GenerationOptions`` run
    in an agentic loop until the model records its output.
    """

    name = "anthropic"

    def __init__(
        self,
        api_key: str | None = None,
        config: ProviderConfig | None = None,
        client: AsyncAnthropic | None = None,
    ):
        """Initialize Claude provider.

        Args:
            api_key: Anthropic API key (ignored when client is given)
            config: Provider configuration
            client: Pre-built async client
        """
        self.config = config or ProviderConfig()
        self.client = client or AsyncAnthropic(
            api_key=api_key,
            max_retries=self.config.sdk_max_retries,
            timeout=self.config.request_timeout,
        )
        logger.debug("claude_provider_initialized", model=self.config.model)

    def _options(self, options: GenerationOptions | None) -> GenerationOptions:
        return options or GenerationOptions(
            max_tokens=self.config.max_tokens,
            temperature=self.config.temperature,
            max_tool_turns=self.config.max_tool_turns,
        )

    async def generate_structured(
        self,
        messages: list[ChatMessage],
        schema: dict[str, Any],
        system_prompt: str,
        options: GenerationOptions | None = None,
    ) -> dict[str, Any]:
        """Run the tool loop until the model calls ``record_output``.

        Raises:
            ProviderError: If the API call fails
            ValidationError: If the model never produces a JSON object
        """
        opts = self._options(options)
        model = opts.model or self.config.model
        output_tool = {
            "name": OUTPUT_TOOL_NAME,
            "description": "Record the final result of this task. Call exactly once, last.",
            "input_schema": schema,
        }
        tools = [_tool_param(spec) for spec in opts.tools] + [output_tool]
        api_messages = _to_api_messages(messages)
        final_text: list[str] = []

        logger.info("executing_claude_structured", model=model, tools_count=len(opts.tools))

        for turn in range(opts.max_tool_turns):
            # Force the output tool when no other tools exist or on the last turn
            if not opts.tools or turn == opts.max_tool_turns - 1:
                tool_choice = {"type": "tool", "name": OUTPUT_TOOL_NAME}
            else:
                tool_choice = {"type": "auto"}

            response = await self._create(
                model=model,
                max_tokens=opts.max_tokens,
                temperature=opts.temperature,
                system=system_prompt,
                messages=api_messages,
                tools=tools,
                tool_choice=tool_choice,
            )

            assistant_content: list[dict[str, Any]] = []
            tool_uses = []
            for block in response.content:
                if block.type == "text":
                    final_text.append(block.text)
                    assistant_content.append({"type": "text", "text": block.text})
                elif block.type == "tool_use":
                    if block.name == OUTPUT_TOOL_NAME:
                        logger.info("claude_structured_completed", turns=turn + 1)
                        return dict(block.input)
                    tool_uses.append(block)
                    assistant_content.append(
                        {"type": "tool_use", "id": block.id, "name": block.name, "input": block.input}
                    )

            if not tool_uses:
                break

            api_messages.append({"role": "assistant", "content": assistant_content})
            api_messages.append(
                {"role": "user", "content": [await self._run_tool(opts, block) for block in tool_uses]}
            )

        parsed = _extract_json("\n".join(final_text))
        if parsed is None:
            raise ValidationError(
                "Model did not produce structured output",
                [f"call the {OUTPUT_TOOL_NAME} tool with an object matching the schema"],
            )
        return parsed

    async def _run_tool(self, opts: GenerationOptions, block: Any) -> dict[str, Any]:
        """Execute one tool call and build its ``tool_result`` block."""
        if opts.tool_executor is None:
            return {
                "type": "tool_result",
                "tool_use_id": block.id,
                "content": f"Error: tool {block.name} is not available",
                "is_error": True,
            }
        result = await opts.tool_executor(block.name, dict(block.input))
        return {
            "type": "tool_result",
            "tool_use_id": block.id,
            "content": json.dumps(result, default=str),
            "is_error": result.get("success") is False,
        }

    async def generate_text(
        self,
        messages: list[ChatMessage],
        system_prompt: str,
        options: GenerationOptions | None = None,
    ) -> str:
        """Generate free text in a single call."""
        opts = self._options(options)
        response = await self._create(
            model=opts.model or self.config.model,
            max_tokens=opts.max_tokens,
            temperature=opts.temperature,
            system=system_prompt,
            messages=_to_api_messages(messages),
        )
        return "".join(block.text for block in response.content if block.type == "text")

    async def stream_text(
        self,
        messages: list[ChatMessage],
        system_prompt: str,
        options: GenerationOptions | None = None,
    ) -> AsyncIterator[str]:
        """Stream text chunks as they arrive.

        Yields:
            Text chunks
        """
        opts = self._options(options)
        model = opts.model or self.config.model
        logger.info("streaming_claude_text", model=model)
        try:
            async with self.client.messages.stream(
                model=model,
                max_tokens=opts.max_tokens,
                temperature=opts.temperature,
                system=system_prompt,
                messages=_to_api_messages(messages),
            ) as stream:
                async for text in stream.text_stream:
                    yield text
        except anthropic.APIError as e:
            logger.error("claude_stream_failed", error=str(e))
            raise self._wrap(e) from e

    async def _create(self, **kwargs: Any) -> Any:
        try:
            return await self.client.messages.create(**kwargs)
        except anthropic.APIError as e:
            logger.error("claude_request_failed", error=str(e))
            raise self._wrap(e) from e

    @staticmethod
    def _wrap(error: anthropic.APIError) -> ProviderError:
        if isinstance(error, anthropic.AuthenticationError):
            return ProviderError(
                f"Anthropic authentication failed: {error}",
                remediation="Check ANTHROPIC_API_KEY or run: overmind config set-key",
            )
        if isinstance(error, anthropic.RateLimitError):
            return ProviderError(f"Anthropic rate limit exceeded: {error}")
        return ProviderError(f"Anthropic API error: {error}")
