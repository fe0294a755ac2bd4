"""Process settings using Pydantic.

These are the env-driven knobs of a single Brain process (hook invocation, CLI
call or workflow run). The user's persistent configuration document lives in
`brain.config.schema.BrainConfig`.
"""

from functools import lru_cache
from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Project resolution (highest precedence first after an explicit argument)
    brain_project: str = Field(default="", description="Project override (BRAIN_PROJECT)")
    bm_project: str = Field(default="", description="Legacy project override (BM_PROJECT)")
    bm_active_project: str = Field(
        default="",
        description="Active project recorded by the note store (BM_ACTIVE_PROJECT)",
    )
    brain_disable_worktree_detection: bool = Field(
        default=False,
        description="Disable git-worktree fallback during project resolution",
    )
    xdg_config_home: str = Field(default="", description="Base directory for user config")

    # Note store
    note_store_url: str = "http://127.0.0.1:8765/mcp"
    note_store_provider: Literal["real", "fake"] = Field(
        default="real",
        description="Note store mode: real=call the tool-call endpoint, fake=in-memory store.",
    )
    note_store_timeout_seconds: float = Field(default=10.0, gt=0)
    basic_memory_config_path: str = Field(
        default="~/.basic-memory/config.json",
        description="Config file of the note store that Brain keeps in sync",
    )
    legacy_config_path: str = Field(
        default="~/.basic-memory/brain-config.json",
        description="Pre-XDG location of the Brain config",
    )

    # Logging
    log_level: str = Field(default="info", description="trace|debug|info|warn|error")

    # Subprocess timeouts
    git_timeout_seconds: float = Field(default=3.0, gt=0)
    markdown_lint_command: str = Field(
        default='npx markdownlint-cli2 "**/*.md"',
        description="Command run by the session-end lint step (empty = skip)",
    )
    markdown_lint_timeout_seconds: float = Field(default=60.0, gt=0)

    # Workflows
    workflow_max_attempts: int = Field(default=3, ge=1)
    workflow_retry_base_delay: float = Field(default=1.0, ge=0)
    hitl_timeout_seconds: int = Field(default=7 * 24 * 60 * 60, gt=0)
    migration_warn_threshold: int = Field(default=1000, ge=0)
    step_journal_path: str = Field(
        default="",
        description="Optional JSON file for durable step memoization (empty = in-memory)",
    )

    @field_validator("brain_disable_worktree_detection", mode="before")
    @classmethod
    def parse_disable_flag(cls, v: Any) -> bool:
        # Only "1" and "true" disable detection
        if isinstance(v, str):
            return v.strip().lower() in {"1", "true"}
        return bool(v)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        lowered = v.strip().lower()
        if lowered not in {"trace", "debug", "info", "warn", "warning", "error"}:
            raise ValueError(f"Unsupported log level: {v}")
        return lowered

    def env_projects(self) -> list[str]:
        """Project overrides in precedence order, empty values dropped."""
        return [p for p in (self.brain_project, self.bm_project, self.bm_active_project) if p]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    # Lazily construct Settings so tests and CLIs can set env vars before first access.
    return Settings()


def reset_settings_cache() -> None:
    get_settings.cache_clear()


class _SettingsProxy:
    """Lazy proxy for Settings.

    This avoids eager settings instantiation at import time, which can make tests
    order-dependent when env vars are changed during `pytest_configure()`.
    """

    def __getattr__(self, name: str) -> Any:
        return getattr(get_settings(), name)

    def __repr__(self) -> str:  # pragma: no cover
        return f"<SettingsProxy {get_settings()!r}>"


settings = _SettingsProxy()
