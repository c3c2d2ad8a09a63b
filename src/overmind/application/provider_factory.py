"""Construct the configured LLM provider."""

from overmind.application.claude_provider import ClaudeProvider
from overmind.application.mock_provider import MockProvider
from overmind.domain.ports.llm_provider import LLMProvider
from overmind.infrastructure.config import ConfigManager, ProviderConfig
from overmind.infrastructure.exceptions import ProviderNotConfiguredError
from overmind.infrastructure.logger import get_logger

logger = get_logger(__name__)


def create_provider(
    config: ProviderConfig,
    config_manager: ConfigManager | None = None,
    name: str | None = None,
) -> LLMProvider:
    """Build a provider from configuration.

    Args:
        config: Provider configuration
        config_manager: Used to resolve the API key for real vendors
        name: Override of ``config.name`` (e.g. from a CLI flag)

    Returns:
        A ready provider

    Raises:
        ProviderNotConfiguredError: If the provider is unknown or lacks credentials
    """
    provider_name = name or config.name
    if provider_name == "mock":
        logger.info("provider_selected", provider="mock")
        return MockProvider()

    if provider_name == "anthropic":
        manager = config_manager or ConfigManager()
        try:
            api_key = manager.get_api_key()
        except ValueError as e:
            raise ProviderNotConfiguredError(str(e)) from e
        logger.info("provider_selected", provider="anthropic", model=config.model)
        return ClaudeProvider(api_key=api_key, config=config)

    raise ProviderNotConfiguredError(f"Unknown provider: {provider_name}")
