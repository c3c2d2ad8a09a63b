"""Deterministic in-process LLM provider for tests and offline runs."""

import asyncio
from collections import defaultdict, deque
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

from overmind.domain.ports.llm_provider import ChatMessage, GenerationOptions, LLMProvider
from overmind.infrastructure.logger import get_logger

logger = get_logger(__name__)

DEFAULT_ACKNOWLEDGMENT = "Understood. I've queued this and will report back with what I find."

# Canned structured outputs keyed by the schema title of each phase output model
DEFAULT_STRUCTURED_OUTPUTS: dict[str, dict[str, Any]] = {
    "QueryIdentificationOutput": {
        "queries": [
            {
                "objective": "Establish the current state of the task subject",
                "reasoning": "The task needs up-to-date facts before analysis",
                "search_hints": ["latest news", "official sources"],
            }
        ]
    },
    "InsightIdentificationOutput": {
        "insights": [
            {
                "observation": "No prior knowledge recorded on this subject",
                "relevant_node_ids": [],
                "synthesis_direction": "Gather baseline facts first",
            }
        ]
    },
    "KnowledgeAcquisitionOutput": {
        "report": "## Findings\n- Baseline information gathered for the task [S1].",
        "sources": [
            {
                "id": "S1",
                "url": "https://example.com/source",
                "title": "Example source",
                "published_at": None,
            }
        ],
    },
    "AnalysisGenerationOutput": {
        "summary": "The gathered information answers the task at a baseline level.",
        "analyses": [
            {"title": "Baseline", "content": "Findings are consistent with expectations."}
        ],
    },
    "AdviceGenerationOutput": {
        "summary": "Task researched; baseline findings recorded.",
        "advice": [
            {
                "title": "Review findings",
                "action": "Read the recorded findings",
                "rationale": "They summarize the current state",
            }
        ],
        "follow_up_task": None,
        "delegations": [],
        "briefing": None,
        "memories": [],
    },
    "GraphConstructionOutput": {
        "summary": "No graph changes were needed.",
        "nodes_written": 0,
        "edges_written": 0,
    },
}


@dataclass
class MockCall:
    """One recorded provider call."""

    method: str
    system_prompt: str
    messages: list[ChatMessage]
    schema_title: str | None = None
    tool_names: list[str] = field(default_factory=list)
    tool_results: list[dict[str, Any]] = field(default_factory=list)


class MockProvider(LLMProvider):
    """Scriptable provider.

    Structured responses are scripted per schema title; each entry is either
    the dict to return or an exception to raise. When a title's script is
    exhausted the canned default for that title is returned. Scripted tool
    calls run through the phase's tool executor before the output is returned.

    Usage:
        provider = MockProvider()
        provider.script_structured("KnowledgeAcquisitionOutput", ProviderError("down"))
        provider.script_tool_calls("GraphConstructionOutput", [("query_graph", {})])
    """

    name = "mock"

    def __init__(self, delay_seconds: float = 0.0) -> None:
        """Initialize mock provider.

        Args:
            delay_seconds: Artificial latency before every response
        """
        self.delay_seconds = delay_seconds
        self.calls: list[MockCall] = []
        self._structured: dict[str, deque[Any]] = defaultdict(deque)
        self._tool_calls: dict[str, deque[list[tuple[str, dict[str, Any]]]]] = defaultdict(deque)
        self._texts: deque[Any] = deque()
        self._streams: deque[Any] = deque()

    def script_structured(self, schema_title: str, *entries: dict[str, Any] | Exception) -> None:
        """Queue responses (or exceptions) for a schema title."""
        self._structured[schema_title].extend(entries)

    def script_tool_calls(
        self, schema_title: str, calls: list[tuple[str, dict[str, Any]]]
    ) -> None:
        """Queue tool calls to execute on the next call for a schema title."""
        self._tool_calls[schema_title].append(calls)

    def script_text(self, *entries: str | Exception) -> None:
        """Queue ``generate_text`` responses (or exceptions)."""
        self._texts.extend(entries)

    def script_stream(self, *entries: list[str] | Exception) -> None:
        """Queue ``stream_text`` chunk lists (or exceptions)."""
        self._streams.extend(entries)

    def calls_for(self, schema_title: str) -> list[MockCall]:
        """Structured calls made for one schema title."""
        return [call for call in self.calls if call.schema_title == schema_title]

    async def _pause(self) -> None:
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)

    async def generate_structured(
        self,
        messages: list[ChatMessage],
        schema: dict[str, Any],
        system_prompt: str,
        options: GenerationOptions | None = None,
    ) -> dict[str, Any]:
        """Return the next scripted or canned object for the schema title."""
        opts = options or GenerationOptions()
        title = schema.get("title", "")
        call = MockCall(
            method="generate_structured",
            system_prompt=system_prompt,
            messages=list(messages),
            schema_title=title,
            tool_names=[spec.name for spec in opts.tools],
        )
        self.calls.append(call)
        await self._pause()

        if self._tool_calls[title] and opts.tool_executor is not None:
            for tool_name, arguments in self._tool_calls[title].popleft():
                call.tool_results.append(await opts.tool_executor(tool_name, arguments))

        if self._structured[title]:
            entry = self._structured[title].popleft()
            if isinstance(entry, Exception):
                raise entry
            return dict(entry)

        logger.debug("mock_default_output", schema_title=title)
        return dict(DEFAULT_STRUCTURED_OUTPUTS.get(title, {}))

    async def generate_text(
        self,
        messages: list[ChatMessage],
        system_prompt: str,
        options: GenerationOptions | None = None,
    ) -> str:
        """Return the next scripted text or a deterministic digest of the input."""
        self.calls.append(MockCall("generate_text", system_prompt, list(messages)))
        await self._pause()

        if self._texts:
            entry = self._texts.popleft()
            if isinstance(entry, Exception):
                raise entry
            return str(entry)

        last = messages[-1].content if messages else ""
        return f"Summary: {last[:200]}"

    async def stream_text(
        self,
        messages: list[ChatMessage],
        system_prompt: str,
        options: GenerationOptions | None = None,
    ) -> AsyncIterator[str]:
        """Yield the next scripted chunk list, or the default acknowledgment word by word."""
        self.calls.append(MockCall("stream_text", system_prompt, list(messages)))
        entry: Any = self._streams.popleft() if self._streams else None
        if isinstance(entry, Exception):
            raise entry
        chunks = entry if entry is not None else [
            f"{word} " for word in DEFAULT_ACKNOWLEDGMENT.split(" ")
        ]
        for chunk in chunks:
            await self._pause()
            await asyncio.sleep(0)
            yield chunk
