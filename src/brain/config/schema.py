"""BrainConfig schema.

The on-disk configuration document (`~/.config/brain/config.json`). All models
are pydantic v2 so that loading, `config set` and rollback snapshots share one
validation path.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

MemoriesMode = Literal["DEFAULT", "CODE", "CUSTOM"]
LogLevel = Literal["trace", "debug", "info", "warn", "error"]

CONFIG_VERSION = "2.0.0"
CONFIG_SCHEMA_URL = "https://brain.dev/schemas/config-v2.json"

MEMORIES_MODES: tuple[str, ...] = ("DEFAULT", "CODE", "CUSTOM")
LOG_LEVELS: tuple[str, ...] = ("trace", "debug", "info", "warn", "error")


class ProjectConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    code_path: str
    memories_mode: MemoriesMode | None = None
    memories_path: str | None = None
    disable_worktree_detection: bool | None = Field(
        default=None, alias="disableWorktreeDetection"
    )

    @field_validator("code_path")
    @classmethod
    def validate_code_path(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("code_path is required")
        return v


class DefaultsConfig(BaseModel):
    memories_location: str = "~/memories"
    memories_mode: MemoriesMode = "DEFAULT"

    @field_validator("memories_location")
    @classmethod
    def validate_location(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("memories_location is required")
        return v


class SyncConfig(BaseModel):
    enabled: bool = True
    delay_ms: int = Field(default=500, ge=0)


class LoggingConfig(BaseModel):
    level: LogLevel = "info"


class WatcherConfig(BaseModel):
    enabled: bool = True
    debounce_ms: int = Field(default=2000, ge=0)


class BrainConfig(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    schema_url: str | None = Field(default=CONFIG_SCHEMA_URL, alias="$schema")
    version: Literal["2.0.0"] = CONFIG_VERSION
    defaults: DefaultsConfig = Field(default_factory=DefaultsConfig)
    projects: dict[str, ProjectConfig] = Field(default_factory=dict)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    watcher: WatcherConfig = Field(default_factory=WatcherConfig)

    def to_json_dict(self) -> dict[str, Any]:
        """Serialize to the on-disk JSON shape (aliases applied, unset optionals dropped)."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def default_brain_config() -> BrainConfig:
    return BrainConfig()


def parse_brain_config(data: Any) -> BrainConfig:
    """Validate raw JSON data into a BrainConfig.

    Raises:
        pydantic.ValidationError: If the document does not match the schema.
    """
    return BrainConfig.model_validate(data)


__all__ = [
    "BrainConfig",
    "ProjectConfig",
    "DefaultsConfig",
    "SyncConfig",
    "LoggingConfig",
    "WatcherConfig",
    "MemoriesMode",
    "LogLevel",
    "CONFIG_VERSION",
    "MEMORIES_MODES",
    "LOG_LEVELS",
    "default_brain_config",
    "parse_brain_config",
]
