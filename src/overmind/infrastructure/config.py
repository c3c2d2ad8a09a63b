"""Configuration management with hierarchical loading."""

import os
from pathlib import Path
from typing import Any, Literal

import keyring
import yaml
from keyring.errors import KeyringError
from pydantic import BaseModel, Field, model_validator

from overmind.infrastructure.logger import get_logger

logger = get_logger(__name__)

KEYRING_SERVICE = "overmind"
KEYRING_API_KEY = "anthropic_api_key"
KEYRING_SEARCH_KEY = "tavily_api_key"


class ProviderConfig(BaseModel):
    """LLM provider configuration."""

    name: Literal["anthropic", "mock"] = "anthropic"
    model: str = "claude-sonnet-4-5-20250929"
    max_tokens: int = Field(default=4096, ge=1)
    temperature: float = Field(default=0.3, ge=0.0, le=1.0)
    request_timeout: float = Field(default=120.0, gt=0)
    sdk_max_retries: int = Field(default=0, ge=0)
    max_tool_turns: int = Field(default=10, ge=1)


class WorkerConfig(BaseModel):
    """Worker pipeline and scheduling configuration."""

    default_iteration_interval_ms: int = Field(default=300_000, ge=1)
    phase_timeout_seconds: float = Field(default=180.0, gt=0)
    max_provider_retries: int = Field(default=3, ge=0, le=10)
    max_validation_retries: int = Field(default=1, ge=0, le=5)
    backoff_initial_seconds: float = Field(default=2.0, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    backoff_max_seconds: float = Field(default=30.0, ge=0)
    backoff_jitter: bool = True
    stale_claim_seconds: float = Field(default=3600.0, gt=0)
    max_graph_nodes_in_context: int = Field(default=100, ge=1)


class CompactionConfig(BaseModel):
    """Conversation compaction configuration."""

    max_messages: int = Field(default=50, ge=2)
    keep_recent: int = Field(default=10, ge=1)
    max_context_tokens: int = Field(default=32_000, ge=100)

    @model_validator(mode="after")
    def validate_keep_recent(self) -> "CompactionConfig":
        """A compacted context (summary + recent) must fall below the trigger."""
        if self.keep_recent + 1 > self.max_messages:
            raise ValueError(
                f"keep_recent ({self.keep_recent}) must be smaller than "
                f"max_messages ({self.max_messages})"
            )
        return self


class ConversationConfig(BaseModel):
    """Foreground conversation configuration."""

    stream_buffer_size: int = Field(default=32, ge=1)
    consumer_timeout_seconds: float = Field(default=5.0, gt=0)
    generic_acknowledgment: str = "Got it. I'll look into this and report back."
    acknowledgment_max_tokens: int = Field(default=300, ge=1)


class Config(BaseModel):
    """Main configuration model."""

    version: str = "0.1.0"
    log_level: str = "INFO"
    database_path: Path | None = None
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    worker: WorkerConfig = Field(default_factory=WorkerConfig)
    compaction: CompactionConfig = Field(default_factory=CompactionConfig)
    conversation: ConversationConfig = Field(default_factory=ConversationConfig)


class ConfigManager:
    """Manage configuration loading from multiple sources with hierarchy."""

    # Map of env var names to config paths
    ENV_MAPPINGS: dict[str, list[str]] = {
        "OVERMIND_LOG_LEVEL": ["log_level"],
        "OVERMIND_DATABASE_PATH": ["database_path"],
        "OVERMIND_PROVIDER": ["provider", "name"],
        "OVERMIND_MODEL": ["provider", "model"],
        "OVERMIND_PHASE_TIMEOUT_SECONDS": ["worker", "phase_timeout_seconds"],
        "OVERMIND_MAX_PROVIDER_RETRIES": ["worker", "max_provider_retries"],
        "OVERMIND_ITERATION_INTERVAL_MS": ["worker", "default_iteration_interval_ms"],
        "OVERMIND_COMPACTION_MAX_MESSAGES": ["compaction", "max_messages"],
        "OVERMIND_COMPACTION_KEEP_RECENT": ["compaction", "keep_recent"],
    }

    def __init__(self, project_root: Path | None = None) -> None:
        """Initialize config manager.

        Args:
            project_root: Root directory of the project (default: current directory)
        """
        self.project_root = project_root or Path.cwd()
        self._config: Config | None = None

    def load_config(self) -> Config:
        """Load configuration from all sources in hierarchy order.

        Configuration hierarchy (highest priority last):
        1. System defaults (embedded in Config model)
        2. Project defaults (.overmind/config.yaml)
        3. User overrides (~/.overmind/config.yaml)
        4. Project-local overrides (.overmind/local.yaml)
        5. Environment variables (OVERMIND_* prefix)

        Returns:
            Merged configuration
        """
        if self._config is not None:
            return self._config

        config_dict: dict[str, Any] = {}
        for path in (
            self.project_root / ".overmind" / "config.yaml",
            Path.home() / ".overmind" / "config.yaml",
            self.project_root / ".overmind" / "local.yaml",
        ):
            if path.exists():
                config_dict = self._merge_dicts(config_dict, self._load_yaml(path))
                logger.debug("config_file_loaded", path=str(path))

        config_dict = self._apply_env_vars(config_dict)

        self._config = Config(**config_dict)
        return self._config

    def _load_yaml(self, path: Path) -> dict[str, Any]:
        """Load YAML configuration file."""
        with open(path) as f:
            return yaml.safe_load(f) or {}

    def _merge_dicts(self, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        """Recursively merge two dictionaries."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_dicts(result[key], value)
            else:
                result[key] = value
        return result

    def _apply_env_vars(self, config_dict: dict[str, Any]) -> dict[str, Any]:
        """Apply environment variables with OVERMIND_ prefix.

        Values are passed through as strings; pydantic coerces them to the
        field types during validation.
        """
        for env_var, path in self.ENV_MAPPINGS.items():
            value = os.getenv(env_var)
            if value is None:
                continue
            current = config_dict
            for key in path[:-1]:
                current = current.setdefault(key, {})
            current[path[-1]] = value

        return config_dict

    def get_api_key(self) -> str:
        """Get Anthropic API key from environment, keychain, or .env file.

        Priority:
        1. ANTHROPIC_API_KEY environment variable
        2. System keychain
        3. .env file

        Returns:
            API key

        Raises:
            ValueError: If API key not found
        """
        if key := os.getenv("ANTHROPIC_API_KEY"):
            return key

        try:
            key = keyring.get_password(KEYRING_SERVICE, KEYRING_API_KEY)
            if key:
                return key
        except KeyringError as e:
            logger.debug("keychain_read_failed", error=str(e))

        env_file = self.project_root / ".env"
        if env_file.exists():
            with open(env_file) as f:
                for line in f:
                    line = line.strip()
                    if line.startswith("ANTHROPIC_API_KEY="):
                        return line.split("=", 1)[1].strip().strip('"').strip("'")

        raise ValueError(
            "ANTHROPIC_API_KEY not found. Set it via:\n"
            "  1. Environment variable: export ANTHROPIC_API_KEY=your-key\n"
            "  2. Keychain: overmind config set-key\n"
            "  3. .env file: echo 'ANTHROPIC_API_KEY=your-key' > .env"
        )

    def get_search_api_key(self) -> str | None:
        """Get the Tavily API key from TAVILY_API_KEY or the keychain.

        Returns:
            API key, or None when web search is not configured
        """
        if key := os.getenv("TAVILY_API_KEY"):
            return key
        try:
            return keyring.get_password(KEYRING_SERVICE, KEYRING_SEARCH_KEY)
        except KeyringError as e:
            logger.debug("keychain_read_failed", error=str(e))
            return None

    def set_api_key(self, api_key: str, use_keychain: bool = True) -> None:
        """Store API key in keychain or .env file.

        Args:
            api_key: The API key to store
            use_keychain: If True, store in keychain; otherwise in .env file

        Raises:
            ValueError: If the keychain rejects the key
        """
        if use_keychain:
            try:
                keyring.set_password(KEYRING_SERVICE, KEYRING_API_KEY, api_key)
                return
            except KeyringError as e:
                raise ValueError(f"Failed to store API key in keychain: {e}") from e

        env_file = self.project_root / ".env"
        with open(env_file, "a") as f:
            f.write(f"\nANTHROPIC_API_KEY={api_key}\n")
        env_file.chmod(0o600)

    def set_search_api_key(self, api_key: str) -> None:
        """Store the Tavily API key in the keychain.

        Raises:
            ValueError: If the keychain rejects the key
        """
        try:
            keyring.set_password(KEYRING_SERVICE, KEYRING_SEARCH_KEY, api_key)
        except KeyringError as e:
            raise ValueError(f"Failed to store search API key in keychain: {e}") from e

    def get_database_path(self) -> Path:
        """Get path to SQLite database."""
        config = self.load_config()
        if config.database_path is not None:
            return config.database_path
        db_dir = self.project_root / ".overmind"
        db_dir.mkdir(exist_ok=True)
        return db_dir / "overmind.db"

    def get_log_dir(self) -> Path:
        """Get path to log directory."""
        log_dir = self.project_root / ".overmind" / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        return log_dir
