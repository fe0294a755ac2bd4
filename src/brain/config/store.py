"""Load and save the BrainConfig document."""

from __future__ import annotations

import json
import os
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from brain.config.schema import BrainConfig, default_brain_config, parse_brain_config
from brain.errors import ConfigurationError
from brain.observability.logging import get_logger
from brain.paths import get_brain_config_path

logger = get_logger(__name__)

FILE_MODE = 0o600
DIR_MODE = 0o700


class ConfigStore:
    """Reads and writes `config.json` under the XDG config directory."""

    def __init__(self, path: Path | None = None, *, xdg_config_home: str | None = None):
        self.path = path or get_brain_config_path(xdg_config_home or None)

    @property
    def config_dir(self) -> Path:
        return self.path.parent

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> BrainConfig:
        """Load the config, returning defaults when the file does not exist.

        Raises:
            ConfigurationError: If the file exists but is not a valid BrainConfig.
        """
        if not self.path.is_file():
            return default_brain_config()
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigurationError(f"Failed to read config at {self.path}: {exc}") from exc
        try:
            return parse_brain_config(data)
        except PydanticValidationError as exc:
            raise ConfigurationError(f"Invalid config at {self.path}: {exc}") from exc

    def save(self, config: BrainConfig) -> None:
        self.config_dir.mkdir(parents=True, exist_ok=True, mode=DIR_MODE)
        payload = json.dumps(config.to_json_dict(), indent=2) + "\n"
        tmp_path = self.path.with_suffix(".json.tmp")
        tmp_path.write_text(payload, encoding="utf-8")
        os.chmod(tmp_path, FILE_MODE)
        os.replace(tmp_path, self.path)
        logger.debug("Config saved", path=str(self.path))
