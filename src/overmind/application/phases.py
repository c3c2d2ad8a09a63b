"""Phase definitions: structured output models, default prompts and tool allow-lists."""

import re
from dataclasses import dataclass
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from overmind.application.graph_tools import ALL_GRAPH_TOOLS, READ_TOOLS
from overmind.application.web_tools import WEB_SEARCH
from overmind.domain.models import PHASE_ORDER, MemoryType, Phase

_FINDINGS_HEADING = re.compile(r"^##\s+Findings\s*$", re.IGNORECASE | re.MULTILINE)
_CITATION = re.compile(r"\[(S\d+)\]", re.IGNORECASE)


# Output models


class ResearchQuery(BaseModel):
    """A knowledge gap to research."""

    objective: str = Field(min_length=1)
    reasoning: str = ""
    search_hints: list[str] = Field(default_factory=list)


class QueryIdentificationOutput(BaseModel):
    """Knowledge gaps worth researching for the current task."""

    queries: list[ResearchQuery] = Field(default_factory=list)


class Insight(BaseModel):
    """A pattern in existing knowledge worth analyzing."""

    observation: str = Field(min_length=1)
    relevant_node_ids: list[str] = Field(default_factory=list)
    synthesis_direction: str = ""


class InsightIdentificationOutput(BaseModel):
    """Patterns and connections worth analyzing."""

    insights: list[Insight] = Field(default_factory=list)


class Source(BaseModel):
    """A cited source of the research report."""

    id: str = Field(pattern=r"^S\d+$")
    url: str = Field(min_length=1)
    title: str = ""
    published_at: str | None = None


class KnowledgeAcquisitionOutput(BaseModel):
    """Research report with inline [S#] citations and its source ledger."""

    report: str = Field(min_length=1)
    sources: list[Source] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_citations(self) -> "KnowledgeAcquisitionOutput":
        """Require a Findings section and citations that resolve to listed sources."""
        if not _FINDINGS_HEADING.search(self.report):
            raise ValueError("report must contain a '## Findings' section")

        source_ids = [source.id for source in self.sources]
        if len(set(source_ids)) != len(source_ids):
            raise ValueError("source ids must be unique")

        cited = {match.upper() for match in _CITATION.findall(self.report)}
        unresolved = sorted(cited - set(source_ids))
        if unresolved:
            raise ValueError(
                f"report cites {', '.join(unresolved)} but no matching source is listed"
            )
        return self


class Analysis(BaseModel):
    """One analysis derived from existing knowledge, stored as an AgentAnalysis node."""

    title: str = Field(min_length=1)
    content: str = Field(min_length=1, description="Analysis citing evidence as [node:<uuid>]")
    kind: Literal["observation", "pattern"] = "observation"
    confidence: float | None = Field(default=None, ge=0, le=1)


class AnalysisGenerationOutput(BaseModel):
    """Analyses synthesized from the knowledge graph."""

    summary: str = Field(min_length=1)
    analyses: list[Analysis] = Field(default_factory=list)


class AdviceItem(BaseModel):
    """An actionable recommendation, stored as an AgentAdvice node."""

    title: str = Field(min_length=1)
    action: str = Field(min_length=1)
    rationale: str = Field(default="", description="Reasoning citing analyses as [node:<uuid>]")


class Delegation(BaseModel):
    """A task handed to a subordinate agent."""

    agent_id: str = Field(min_length=1)
    task: str = Field(min_length=1)


class BriefingDraft(BaseModel):
    """A user-facing digest of the iteration."""

    title: str = Field(min_length=1)
    summary: str = Field(min_length=1)
    full_message: str = ""


class MemoryDraft(BaseModel):
    """A memory worth keeping across iterations."""

    type: MemoryType
    content: str = Field(min_length=1)


class AdviceGenerationOutput(BaseModel):
    """Task result, recommendations and follow-up work."""

    summary: str = Field(min_length=1, description="Result of the task for the user")
    advice: list[AdviceItem] = Field(default_factory=list)
    follow_up_task: str | None = Field(
        default=None, description="Further work to queue for this agent, if any"
    )
    delegations: list[Delegation] = Field(default_factory=list)
    briefing: BriefingDraft | None = None
    memories: list[MemoryDraft] = Field(default_factory=list)


class GraphConstructionOutput(BaseModel):
    """Report of the graph writes made through tools."""

    summary: str = Field(min_length=1)
    nodes_written: int = Field(default=0, ge=0)
    edges_written: int = Field(default=0, ge=0)


# Prompts

QUERY_IDENTIFICATION_PROMPT = """You identify knowledge gaps for an autonomous research agent.

Review the task, the conversation context and the knowledge graph summary. Emit focused \
queries (usually two to four) for information that is missing or stale and that the task \
needs. Each query has a specific objective, the reasoning for why it matters, and concrete \
search hints. Do not re-query knowledge the graph already holds. No queries is a valid answer."""

INSIGHT_IDENTIFICATION_PROMPT = """You spot patterns worth analyzing in an agent's knowledge graph.

Look for connections between existing nodes, emerging trends and observations that deserve \
deeper analysis for the task. Each insight has an observation, the UUIDs of the relevant \
nodes (only IDs from the graph context, never names) and a synthesis direction. No insights \
is a valid answer."""

KNOWLEDGE_ACQUISITION_PROMPT = """You gather raw information for an autonomous research agent.

Research the identified queries. Use web search when it is available; otherwise report what \
the provided context supports. Write a markdown report with a '## Findings' section in which \
every factual claim carries an inline citation like [S1], and list every cited source with \
its id, url, title and publication date. Do not analyze; just gather facts."""

ANALYSIS_GENERATION_PROMPT = """You derive analyses from an agent's knowledge.

Follow the identified insights and the research findings. Query the graph for supporting \
evidence, cite nodes as [node:<uuid>], and only write analyses that add understanding beyond \
restating facts. Mark each analysis as an observation or a pattern. Each analysis is stored \
as an AgentAnalysis node linked to the nodes it cites. Summarize the overall picture in \
one paragraph."""

ADVICE_GENERATION_PROMPT = """You turn an agent's analyses into a result for the user.

Write the task result as `summary`. Add recommendations only when the analyses support \
them without doubt, and cite the AgentAnalysis nodes each one rests on as \
[node:<uuid>] in its rationale. Set `follow_up_task` when more work is clearly needed, delegate to \
subordinate agents only by their listed IDs, draft a briefing when the user should be \
notified, and record durable user preferences, insights or facts as memories."""

GRAPH_CONSTRUCTION_PROMPT = """You structure research findings into an agent's knowledge graph.

Inspect the existing types first and reuse them; create a new type only when nothing fits. \
Add nodes for the entities and facts in the findings, with properties that match each type's \
schema, and connect them with typed edges. If a tool returns an error, read it and retry \
with corrected arguments. Report how many nodes and edges you wrote."""


@dataclass(frozen=True)
class PhaseDefinition:
    """Static description of one pipeline phase."""

    phase: Phase
    output_model: type[BaseModel]
    default_system_prompt: str
    allowed_tools: tuple[str, ...]


PHASE_DEFINITIONS: dict[Phase, PhaseDefinition] = {
    Phase.QUERY_IDENTIFICATION: PhaseDefinition(
        Phase.QUERY_IDENTIFICATION,
        QueryIdentificationOutput,
        QUERY_IDENTIFICATION_PROMPT,
        READ_TOOLS,
    ),
    Phase.INSIGHT_IDENTIFICATION: PhaseDefinition(
        Phase.INSIGHT_IDENTIFICATION,
        InsightIdentificationOutput,
        INSIGHT_IDENTIFICATION_PROMPT,
        READ_TOOLS,
    ),
    Phase.KNOWLEDGE_ACQUISITION: PhaseDefinition(
        Phase.KNOWLEDGE_ACQUISITION,
        KnowledgeAcquisitionOutput,
        KNOWLEDGE_ACQUISITION_PROMPT,
        (WEB_SEARCH,),
    ),
    Phase.ANALYSIS_GENERATION: PhaseDefinition(
        Phase.ANALYSIS_GENERATION,
        AnalysisGenerationOutput,
        ANALYSIS_GENERATION_PROMPT,
        READ_TOOLS,
    ),
    Phase.ADVICE_GENERATION: PhaseDefinition(
        Phase.ADVICE_GENERATION,
        AdviceGenerationOutput,
        ADVICE_GENERATION_PROMPT,
        (),
    ),
    Phase.GRAPH_CONSTRUCTION: PhaseDefinition(
        Phase.GRAPH_CONSTRUCTION,
        GraphConstructionOutput,
        GRAPH_CONSTRUCTION_PROMPT,
        ALL_GRAPH_TOOLS,
    ),
}


def pipeline() -> list[PhaseDefinition]:
    """Phase definitions in execution order."""
    return [PHASE_DEFINITIONS[phase] for phase in PHASE_ORDER]
