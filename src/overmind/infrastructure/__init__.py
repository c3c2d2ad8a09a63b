"""Infrastructure layer for Overmind."""

from overmind.infrastructure.config import (
    CompactionConfig,
    Config,
    ConfigManager,
    ConversationConfig,
    ProviderConfig,
    WorkerConfig,
)
from overmind.infrastructure.database import Database
from overmind.infrastructure.logger import bound_context, get_logger, setup_logging

__all__ = [
    "CompactionConfig",
    "Config",
    "ConfigManager",
    "ConversationConfig",
    "Database",
    "ProviderConfig",
    "WorkerConfig",
    "bound_context",
    "get_logger",
    "setup_logging",
]
