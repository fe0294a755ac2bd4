"""Brain configuration module."""

from brain.config.legacy import LegacyConfigMigrator, rollback_legacy_migration, transform_legacy_config
from brain.config.migration import MigrationResult, measure_tree, migrate_tree, rollback_migrations
from brain.config.operations import SETTABLE_KEYS, ConfigService
from brain.config.paths import expand_tilde, is_path_within, normalize_path, validate_path
from brain.config.rollback import ConfigRollbackManager
from brain.config.schema import BrainConfig, ProjectConfig, default_brain_config
from brain.config.settings import Settings, get_settings, reset_settings_cache, settings
from brain.config.store import ConfigStore
from brain.config.translation import NoteStoreConfigSync, resolve_memories_path

__all__ = [
    "settings",
    "Settings",
    "get_settings",
    "reset_settings_cache",
    "BrainConfig",
    "ProjectConfig",
    "default_brain_config",
    "ConfigStore",
    "ConfigService",
    "SETTABLE_KEYS",
    "ConfigRollbackManager",
    "NoteStoreConfigSync",
    "resolve_memories_path",
    "MigrationResult",
    "measure_tree",
    "migrate_tree",
    "rollback_migrations",
    "LegacyConfigMigrator",
    "rollback_legacy_migration",
    "transform_legacy_config",
    "expand_tilde",
    "normalize_path",
    "validate_path",
    "is_path_within",
]
