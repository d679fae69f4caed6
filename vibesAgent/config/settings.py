"""Environment-bound configuration objects.

Settings are loaded from environment variables and a ``.env`` file through
Pydantic BaseSettings.

Example:
    from vibesAgent.config.settings import get_settings

    settings = get_settings()  # Cached singleton
    max_steps = settings.agent.max_steps
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


load_dotenv()


class AgentSettings(BaseSettings):
    """Orchestration loop limits.

    - max_steps: Step budget of a top-level agent run (default: 20)
    - max_context_messages: Message count that triggers context compression (default: 30)
    - max_context_tokens: Estimated token count that also triggers it (default: 100000)
    - compression_threshold: Characters above which old tool and assistant output
      is replaced by a short reference (default: 3000)
    - subagent_max_steps: Step budget of a delegated run (default: 10)
    - delegation_cache_ttl: Seconds a delegation result is reused, 0 disables (default: 3600)
    """

    max_steps: int = Field(
        default=20, ge=1, le=500,
        validation_alias=AliasChoices("AGENT_MAX_STEPS", "max_steps"),
    )
    max_context_messages: int = Field(
        default=30, ge=2, le=1000,
        validation_alias=AliasChoices("AGENT_MAX_CONTEXT_MESSAGES", "max_context_messages"),
    )
    max_context_tokens: int = Field(
        default=100000, ge=1000,
        validation_alias=AliasChoices("AGENT_MAX_CONTEXT_TOKENS", "max_context_tokens"),
    )
    compression_threshold: int = Field(
        default=3000, ge=200,
        validation_alias=AliasChoices("AGENT_COMPRESSION_THRESHOLD", "compression_threshold"),
    )
    subagent_max_steps: int = Field(
        default=10, ge=1, le=500,
        validation_alias=AliasChoices("SUBAGENT_MAX_STEPS", "subagent_max_steps"),
    )
    delegation_cache_ttl: int = Field(
        default=3600, ge=0,
        validation_alias=AliasChoices("DELEGATION_CACHE_TTL", "delegation_cache_ttl"),
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class WorkspaceSettings(BaseSettings):
    """Where delegated results and approval rules live on disk."""

    root: str = Field(
        default="workspace",
        validation_alias=AliasChoices("WORKSPACE_DIR", "root"),
    )
    results_dir: str = Field(
        default="subagent_results",
        validation_alias=AliasChoices("SUBAGENT_RESULTS_DIR", "results_dir"),
    )
    approval_rules_path: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("APPROVAL_RULES_PATH", "approval_rules_path"),
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class ObservabilitySettings(BaseSettings):
    """Logging configuration."""

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_dir: str = Field(default="logs", alias="LOG_DIR")
    log_to_file: bool = Field(default=True, alias="LOG_TO_FILE")
    log_prompt_max_length: int = Field(default=500, ge=100, le=5000, alias="LOG_PROMPT_MAX_LENGTH")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class Settings(BaseSettings):
    """Root application settings.

    Groups:
    - agent: Loop and delegation limits (AgentSettings)
    - workspace: Result store and approval rule locations (WorkspaceSettings)
    - observability: Logging (ObservabilitySettings)

    Use get_settings() to obtain a cached singleton instance.
    """

    environment: str = Field(default="dev", alias="APP_ENV")
    agent: AgentSettings = Field(default_factory=AgentSettings)
    workspace: WorkspaceSettings = Field(default_factory=WorkspaceSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        validate_assignment=True,
        case_sensitive=False,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton Settings instance."""
    return Settings()
