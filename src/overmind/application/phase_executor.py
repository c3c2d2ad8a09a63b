"""Phase executor: one audited, validated structured LLM call per pipeline phase."""

import asyncio
import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any
from uuid import UUID

import pydantic
from pydantic import BaseModel

from overmind.application.failure_recovery import RetryPolicy, calculate_backoff
from overmind.application.phases import PhaseDefinition
from overmind.application.tool_registry import ToolContext, ToolRegistry
from overmind.domain.models import Agent, LLMInteraction, Phase
from overmind.domain.ports.llm_provider import ChatMessage, GenerationOptions, LLMProvider
from overmind.infrastructure.config import ProviderConfig, WorkerConfig
from overmind.infrastructure.exceptions import (
    PhaseFailedError,
    ProviderError,
    ProviderTimeoutError,
    ValidationError,
)
from overmind.infrastructure.logger import get_logger
from overmind.services.iteration_service import IterationService

logger = get_logger(__name__)


@dataclass
class PhaseResult:
    """Accepted output of one phase."""

    phase: Phase
    output: BaseModel
    interaction: LLMInteraction
    attempts: int


def render_request(request: dict[str, Any]) -> str:
    """Render a phase request payload as markdown sections, one per key."""
    sections = []
    for key, value in request.items():
        if value in (None, "", [], {}):
            continue
        title = key.replace("_", " ").capitalize()
        body = value if isinstance(value, str) else json.dumps(value, indent=2, default=str)
        sections.append(f"## {title}\n{body}")
    sections.append("Respond with the structured output for this phase.")
    return "\n\n".join(sections)


def format_validation_errors(error: pydantic.ValidationError) -> list[str]:
    """One ``path: message`` line per pydantic error."""
    return [
        f"{'.'.join(str(part) for part in err['loc']) or 'output'}: {err['msg']}"
        for err in error.errors()
    ]


class PhaseExecutor:
    """Runs a phase against the provider and validates its output.

    Schema failures are retried with the errors fed back to the model, up to
    ``max_validation_retries``. Provider errors and timeouts are retried with
    exponential backoff, up to ``max_provider_retries``. Each execution writes
    exactly one ``LLMInteraction``: opened before the first call with the request
    snapshot, closed after the last attempt with the accepted output or the
    final error plus a record of every attempt.
    """

    def __init__(
        self,
        provider: LLMProvider,
        iterations: IterationService,
        tools: ToolRegistry,
        config: WorkerConfig | None = None,
        provider_config: ProviderConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize phase executor.

        Args:
            provider: LLM provider
            iterations: Audit log for interactions
            tools: Tool registry; each phase sees only its allow-list
            config: Timeouts and retry budgets
            provider_config: Token and sampling settings
            sleep: Sleep function used between provider retries
        """
        self.provider = provider
        self.iterations = iterations
        self.tools = tools
        self.config = config or WorkerConfig()
        self.provider_config = provider_config or ProviderConfig()
        self.retry_policy = RetryPolicy.from_config(self.config)
        self._sleep = sleep

    def system_prompt_for(self, definition: PhaseDefinition, agent: Agent) -> str:
        """Agent override for the phase, else the default, prefixed with the agent identity."""
        prompt = agent.phase_prompts.get(definition.phase) or definition.default_system_prompt
        identity = f"You are {agent.name}."
        if agent.role:
            identity += f" Your role: {agent.role}"
        return f"{identity}\n\n{prompt}"

    async def execute(
        self,
        definition: PhaseDefinition,
        agent: Agent,
        iteration_id: UUID,
        request: dict[str, Any],
    ) -> PhaseResult:
        """Execute one phase.

        Args:
            definition: Phase to run
            agent: Agent the iteration belongs to
            iteration_id: Iteration owning the interaction record
            request: Phase input payload

        Returns:
            The validated output and its interaction record

        Raises:
            PhaseFailedError: If a retry budget is exhausted or the call fails
        """
        phase = definition.phase
        system_prompt = self.system_prompt_for(definition, agent)
        schema = definition.output_model.model_json_schema()
        tool_specs = self.tools.specs_for(definition.allowed_tools)
        options = GenerationOptions(
            max_tokens=self.provider_config.max_tokens,
            temperature=self.provider_config.temperature,
            tools=tool_specs,
            tool_executor=self.tools.executor_for(
                definition.allowed_tools, ToolContext(agent.id, iteration_id)
            ),
            max_tool_turns=self.provider_config.max_tool_turns,
        )
        messages = [ChatMessage(role="user", content=render_request(request))]

        interaction = await self.iterations.start_interaction(
            iteration_id,
            agent.id,
            phase,
            system_prompt,
            {
                "payload": request,
                "output_schema": schema.get("title"),
                "tools": [spec.name for spec in tool_specs],
            },
        )
        logger.info("phase_started", phase=phase.value, iteration_id=str(iteration_id))

        attempts: list[dict[str, Any]] = []
        validation_failures = 0
        provider_failures = 0

        while True:
            raw: Any = None
            try:
                raw = await asyncio.wait_for(
                    self.provider.generate_structured(messages, schema, system_prompt, options),
                    timeout=self.config.phase_timeout_seconds,
                )
                output = definition.output_model.model_validate(raw)
            except (pydantic.ValidationError, ValidationError) as e:
                errors = (
                    format_validation_errors(e)
                    if isinstance(e, pydantic.ValidationError)
                    else e.errors or [str(e)]
                )
                attempts.append({"outcome": "validation_error", "errors": errors})
                if validation_failures >= self.config.max_validation_retries:
                    raise await self._fail(
                        interaction,
                        attempts,
                        ValidationError(f"{phase.value} output failed validation", errors),
                    )
                validation_failures += 1
                logger.warning(
                    "phase_retry",
                    phase=phase.value,
                    reason="validation",
                    attempt=len(attempts),
                    errors=errors,
                )
                messages = messages + self._correction_messages(raw, errors)
                continue
            except (ProviderError, asyncio.TimeoutError) as e:
                error = (
                    e
                    if isinstance(e, ProviderError)
                    else ProviderTimeoutError(self.config.phase_timeout_seconds)
                )
                attempts.append({"outcome": "provider_error", "error": str(error)})
                if provider_failures >= self.retry_policy.max_retries:
                    raise await self._fail(interaction, attempts, error)
                delay = calculate_backoff(self.retry_policy, provider_failures)
                provider_failures += 1
                logger.warning(
                    "phase_retry",
                    phase=phase.value,
                    reason="provider",
                    attempt=len(attempts),
                    delay_seconds=round(delay, 2),
                    error=str(error),
                )
                await self._sleep(delay)
                continue
            except Exception as e:
                attempts.append({"outcome": "error", "error": str(e)})
                raise await self._fail(interaction, attempts, e) from e

            attempts.append({"outcome": "accepted"})
            completed = await self.iterations.finish_interaction(
                interaction,
                {"output": output.model_dump(mode="json"), "attempts": attempts},
            )
            logger.info(
                "phase_completed",
                phase=phase.value,
                iteration_id=str(iteration_id),
                attempts=len(attempts),
            )
            return PhaseResult(phase, output, completed, len(attempts))

    async def _fail(
        self, interaction: LLMInteraction, attempts: list[dict[str, Any]], cause: Exception
    ) -> PhaseFailedError:
        """Close the interaction with the final error and build the phase failure."""
        await self.iterations.finish_interaction(
            interaction, {"error": str(cause), "attempts": attempts}
        )
        logger.error(
            "phase_failed",
            phase=interaction.phase.value,
            iteration_id=str(interaction.iteration_id),
            attempts=len(attempts),
            error=str(cause),
        )
        return PhaseFailedError(interaction.phase.value, cause)

    @staticmethod
    def _correction_messages(raw: Any, errors: list[str]) -> list[ChatMessage]:
        """Feed the rejected output and its errors back to the model."""
        feedback = "\n".join(f"- {error}" for error in errors)
        messages = []
        if raw is not None:
            messages.append(
                ChatMessage(role="assistant", content=json.dumps(raw, default=str))
            )
        messages.append(
            ChatMessage(
                role="user",
                content=(
                    "Your previous output failed validation:\n"
                    f"{feedback}\n\nReturn a corrected output that satisfies the schema."
                ),
            )
        )
        return messages
