"""Explicit tool registry with per-phase allow-lists."""

from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any
from uuid import UUID

import pydantic

from overmind.domain.ports.llm_provider import ToolExecutor, ToolSpec
from overmind.infrastructure.exceptions import (
    ConstraintError,
    DuplicateTypeError,
    ForbiddenError,
    NotFoundError,
    OvermindError,
    ValidationError,
)
from overmind.infrastructure.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ToolContext:
    """Caller identity passed to every tool handler."""

    agent_id: UUID
    iteration_id: UUID | None = None


ToolHandler = Callable[[Any, ToolContext], Awaitable[Any]]


@dataclass(frozen=True)
class RegisteredTool:
    """A tool: its name, description, parameter model and handler."""

    name: str
    description: str
    params_model: type[pydantic.BaseModel]
    handler: ToolHandler

    def spec(self) -> ToolSpec:
        """Provider-facing description of the tool."""
        return ToolSpec(
            name=self.name,
            description=self.description,
            input_schema=self.params_model.model_json_schema(),
        )


def error_code(error: Exception) -> str:
    """Stable code prefixed to tool error text."""
    if isinstance(error, DuplicateTypeError):
        return "DUPLICATE_TYPE"
    if isinstance(error, ConstraintError):
        return "CONSTRAINT_ERROR"
    if isinstance(error, ValidationError):
        return "VALIDATION_ERROR"
    if isinstance(error, NotFoundError):
        return "NOT_FOUND"
    if isinstance(error, ForbiddenError):
        return "FORBIDDEN"
    return "TOOL_ERROR"


def tool_error(code: str, detail: str) -> dict[str, Any]:
    """Structured tool failure the model can read and correct."""
    return {"success": False, "error": f"{code}: {detail}"}


class ToolRegistry:
    """Tool name to handler mapping, built once at startup.

    Phases never see the whole registry: ``executor_for`` binds an explicit
    allow-list and a caller context, and calls outside the list are refused.
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._tools: dict[str, RegisteredTool] = {}

    def register(
        self,
        name: str,
        description: str,
        params_model: type[pydantic.BaseModel],
        handler: ToolHandler,
    ) -> RegisteredTool:
        """Register a tool.

        Raises:
            ValueError: If a tool with the same name is already registered
        """
        if name in self._tools:
            raise ValueError(f"Tool already registered: {name}")
        tool = RegisteredTool(name, description, params_model, handler)
        self._tools[name] = tool
        return tool

    def names(self) -> list[str]:
        """Registered tool names, sorted."""
        return sorted(self._tools)

    def has(self, name: str) -> bool:
        """Whether a tool is registered."""
        return name in self._tools

    def specs_for(self, allowed: Iterable[str]) -> list[ToolSpec]:
        """Specs of the allowed tools that are registered, in allow-list order."""
        return [self._tools[name].spec() for name in allowed if name in self._tools]

    async def execute(
        self,
        name: str,
        arguments: dict[str, Any],
        context: ToolContext,
        allowed: frozenset[str] | None = None,
    ) -> dict[str, Any]:
        """Run one tool call and wrap the outcome.

        Domain errors and invalid arguments become ``{"success": False,
        "error": "CODE: detail"}`` so the model can retry with corrected
        arguments. Anything else propagates.

        Returns:
            ``{"success": True, "data": ...}`` or a structured error
        """
        if allowed is not None and name not in allowed:
            logger.warning("tool_not_allowed", tool_name=name, agent_id=str(context.agent_id))
            return tool_error("TOOL_NOT_ALLOWED", f"{name} is not available in this phase")
        tool = self._tools.get(name)
        if tool is None:
            return tool_error("UNKNOWN_TOOL", name)

        try:
            params = tool.params_model.model_validate(arguments)
        except pydantic.ValidationError as e:
            details = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}"
                for err in e.errors()
            )
            logger.info("tool_failed", tool_name=name, code="INVALID_ARGUMENTS")
            return tool_error("INVALID_ARGUMENTS", details)

        try:
            data = await tool.handler(params, context)
        except OvermindError as e:
            code = error_code(e)
            logger.info("tool_failed", tool_name=name, code=code, error=str(e))
            return tool_error(code, str(e))

        logger.info("tool_executed", tool_name=name, agent_id=str(context.agent_id))
        return {"success": True, "data": data}

    def executor_for(self, allowed: Iterable[str], context: ToolContext) -> ToolExecutor:
        """Bind an allow-list and context into a provider tool executor."""
        allowed_set = frozenset(allowed)

        async def execute(name: str, arguments: dict[str, Any]) -> dict[str, Any]:
            return await self.execute(name, arguments, context, allowed_set)

        return execute
