"""Ports implemented by infrastructure adapters."""

from overmind.domain.ports.llm_provider import (
    ChatMessage,
    GenerationOptions,
    LLMProvider,
    ToolExecutor,
    ToolSpec,
)

__all__ = ["ChatMessage", "GenerationOptions", "LLMProvider", "ToolExecutor", "ToolSpec"]
