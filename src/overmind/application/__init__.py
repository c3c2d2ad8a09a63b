"""Application services for Overmind."""

from overmind.application.agent_scheduler import AgentScheduler
from overmind.application.claude_provider import ClaudeProvider
from overmind.application.conversation_manager import (
    AcknowledgedTurn,
    AcknowledgmentStream,
    ConversationManager,
)
from overmind.application.failure_recovery import RetryPolicy, calculate_backoff
from overmind.application.graph_tools import register_graph_tools
from overmind.application.mock_provider import MockProvider
from overmind.application.phase_executor import PhaseExecutor, PhaseResult
from overmind.application.phases import PHASE_DEFINITIONS, PhaseDefinition, pipeline
from overmind.application.provider_factory import create_provider
from overmind.application.tool_registry import ToolContext, ToolRegistry
from overmind.application.web_tools import TavilySearchBackend, register_web_tools
from overmind.application.worker_runner import WorkerRunner

__all__ = [
    "AcknowledgedTurn",
    "AcknowledgmentStream",
    "AgentScheduler",
    "ClaudeProvider",
    "ConversationManager",
    "MockProvider",
    "PHASE_DEFINITIONS",
    "PhaseDefinition",
    "PhaseExecutor",
    "PhaseResult",
    "RetryPolicy",
    "TavilySearchBackend",
    "ToolContext",
    "ToolRegistry",
    "WorkerRunner",
    "calculate_backoff",
    "create_provider",
    "pipeline",
    "register_graph_tools",
    "register_web_tools",
]
