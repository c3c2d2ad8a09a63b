"""Abstract LLM provider capability interface."""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel

# Executes one tool call by name and returns a JSON-serializable result
ToolExecutor = Callable[[str, dict[str, Any]], Awaitable[dict[str, Any]]]


class ChatMessage(BaseModel):
    """One message sent to a provider."""

    role: Literal["user", "assistant"]
    content: str


@dataclass(frozen=True)
class ToolSpec:
    """Description of a tool offered to the model."""

    name: str
    description: str
    input_schema: dict[str, Any]


@dataclass
class GenerationOptions:
    """Per-call provider options.

    Attributes:
        model: Model override (provider default when None)
        max_tokens: Maximum tokens in the response
        temperature: Sampling temperature
        tools: Tools the model may call during a structured generation
        tool_executor: Callback executing tool calls; required when tools are given
        max_tool_turns: Upper bound on model turns in the tool loop
    """

    model: str | None = None
    max_tokens: int = 4096
    temperature: float = 0.3
    tools: list[ToolSpec] = field(default_factory=list)
    tool_executor: ToolExecutor | None = None
    max_tool_turns: int = 10


class LLMProvider(ABC):
    """Capability interface implemented once per vendor.

    Implementations raise ``ProviderError`` for transport and API failures.
    Output validation is the caller's job: ``generate_structured`` returns the
    raw JSON object the model produced for ``schema``.
    """

    name: str = "abstract"

    @abstractmethod
    async def generate_structured(
        self,
        messages: list[ChatMessage],
        schema: dict[str, Any],
        system_prompt: str,
        options: GenerationOptions | None = None,
    ) -> dict[str, Any]:
        """Generate a JSON object intended to satisfy ``schema``.

        Args:
            messages: Conversation so far (last message from the user)
            schema: JSON schema of the expected object
            system_prompt: System prompt
            options: Generation options, including tools for the tool loop

        Returns:
            Unvalidated JSON object

        Raises:
            ProviderError: If the call fails
        """
        pass

    @abstractmethod
    async def generate_text(
        self,
        messages: list[ChatMessage],
        system_prompt: str,
        options: GenerationOptions | None = None,
    ) -> str:
        """Generate free text.

        Raises:
            ProviderError: If the call fails
        """
        pass

    @abstractmethod
    def stream_text(
        self,
        messages: list[ChatMessage],
        system_prompt: str,
        options: GenerationOptions | None = None,
    ) -> AsyncIterator[str]:
        """Stream free text as chunks become available.

        The returned iterator is an async generator; closing it early must
        release the underlying connection.
        """
        pass
