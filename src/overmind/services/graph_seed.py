"""Graph types every agent starts with.

Analyses and advice produced by the worker pipeline are stored as
``AgentAnalysis`` and ``AgentAdvice`` nodes so later iterations can query
earlier conclusions. The edge types describe provenance between any nodes.
"""

import re
from typing import Any
from uuid import UUID

ANALYSIS_NODE_TYPE = "AgentAnalysis"
ADVICE_NODE_TYPE = "AgentAdvice"

# Edges written by the worker for citations
ANALYSIS_CITATION_EDGE = "derived_from"
ADVICE_CITATION_EDGE = "based_on"

# [node:<uuid>] references in analysis and advice text
NODE_CITATION = re.compile(
    r"\[node:([0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12})\]",
    re.IGNORECASE,
)

SEED_NODE_TYPES: list[dict[str, Any]] = [
    {
        "name": ANALYSIS_NODE_TYPE,
        "description": "Agent-derived observations and patterns from knowledge analysis",
        "properties_schema": {
            "type": "object",
            "required": ["content", "generated_at"],
            "properties": {
                "kind": {
                    "type": "string",
                    "enum": ["observation", "pattern"],
                    "description": "observation=notable development, pattern=recurring behavior",
                },
                "content": {
                    "type": "string",
                    "description": "Detailed analysis with [node:uuid] citations",
                },
                "confidence": {"type": "number", "minimum": 0, "maximum": 1},
                "generated_at": {"type": "string", "format": "date-time"},
            },
        },
        "example_properties": {
            "kind": "observation",
            "content": "Services revenue [node:11111111-1111-4111-8111-111111111111] "
            "grew 24% while hardware grew 3%.",
            "confidence": 0.85,
            "generated_at": "2025-01-15T10:30:00+00:00",
        },
    },
    {
        "name": ADVICE_NODE_TYPE,
        "description": "Actionable recommendation derived from AgentAnalysis nodes",
        "properties_schema": {
            "type": "object",
            "required": ["action", "generated_at"],
            "properties": {
                "action": {"type": "string", "description": "The recommended action"},
                "rationale": {
                    "type": "string",
                    "description": "Reasoning citing AgentAnalysis nodes as [node:uuid]",
                },
                "generated_at": {"type": "string", "format": "date-time"},
            },
        },
        "example_properties": {
            "action": "Increase exposure to AAPL",
            "rationale": "Services growth [node:44444444-4444-4444-8444-444444444444] "
            "keeps accelerating.",
            "generated_at": "2025-01-15T14:00:00+00:00",
        },
    },
]

SEED_EDGE_TYPES: list[dict[str, str]] = [
    {
        "name": "derived_from",
        "description": "The source node was derived from the target node or its information",
    },
    {
        "name": "about",
        "description": "The source node is about or focuses on the target node",
    },
    {
        "name": "supports",
        "description": "The source node provides supporting evidence for the target node",
    },
    {
        "name": "contradicts",
        "description": "The source node conflicts with or challenges the target node",
    },
    {
        "name": "correlates_with",
        "description": "The source node has a meaningful association with the target node",
    },
    {
        "name": "based_on",
        "description": "The source node is based on evidence or analysis in the target node",
    },
]


def cited_node_ids(text: str) -> list[UUID]:
    """Distinct node IDs cited as ``[node:<uuid>]``, in order of appearance."""
    seen: dict[UUID, None] = {}
    for match in NODE_CITATION.findall(text):
        seen.setdefault(UUID(match), None)
    return list(seen)
