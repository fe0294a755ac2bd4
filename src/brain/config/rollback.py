"""Config snapshots and rollback.

Every mutating config operation snapshots the current document first. Once the
mutation and the downstream sync succeed, the new document is marked as the
last known good. Two rollback targets exist:

- ``lastKnownGood``: the baseline from startup or the last successful mutation
- ``previous``: the most recent snapshot in the history

Snapshots are persisted under ``{config_dir}/rollback/`` so a crashed process
can still be rolled back from the CLI.
"""

from __future__ import annotations

import hashlib
import json
import os
import secrets
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Literal

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from brain.config.schema import BrainConfig, parse_brain_config
from brain.config.store import DIR_MODE, FILE_MODE, ConfigStore
from brain.errors import ConfigurationError
from brain.observability.logging import get_logger

logger = get_logger(__name__)

MAX_ROLLBACK_HISTORY = 10
LAST_KNOWN_GOOD_FILE = "last-known-good.json"
HISTORY_FILE = "history.json"

RollbackTarget = Literal["lastKnownGood", "previous"]
ROLLBACK_TARGETS: tuple[str, ...] = ("lastKnownGood", "previous")

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


class RollbackSnapshot(BaseModel):
    id: str
    created_at: datetime
    reason: str
    checksum: str
    config: dict[str, Any]


class RollbackResult(BaseModel):
    success: bool
    error: str | None = None
    restored_config: dict[str, Any] | None = Field(default=None, serialization_alias="restoredConfig")
    snapshot: RollbackSnapshot | None = None

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_snapshot_id() -> str:
    return f"snap-{_to_base36(int(time.time() * 1000))}-{secrets.token_hex(4)}"


def compute_checksum(config: BrainConfig | dict[str, Any]) -> str:
    """SHA-256 over key-sorted JSON so that key order never changes the digest."""
    data = config.to_json_dict() if isinstance(config, BrainConfig) else config
    encoded = json.dumps(data, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


class ConfigRollbackManager:
    """Snapshot history plus a last-known-good baseline for BrainConfig."""

    def __init__(
        self,
        store: ConfigStore,
        *,
        sync: Callable[[BrainConfig], Any] | None = None,
        max_history: int = MAX_ROLLBACK_HISTORY,
    ):
        self.store = store
        self.sync = sync
        self.max_history = max_history
        self.rollback_dir = store.config_dir / "rollback"
        self._last_known_good: RollbackSnapshot | None = None
        self._history: list[RollbackSnapshot] = []
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    def initialize(self) -> bool:
        """Load persisted snapshots and establish a baseline.

        Safe to call more than once. Returns False when the rollback directory
        cannot be prepared.
        """
        if self._initialized:
            return True
        try:
            self._ensure_dir()
        except OSError as exc:
            logger.error("Rollback manager initialization failed", error=str(exc))
            return False

        self._last_known_good = self._load_snapshot_path(self.rollback_dir / LAST_KNOWN_GOOD_FILE)
        self._load_history()

        if self._last_known_good is None:
            try:
                self.mark_as_good(self.store.load(), "Initial baseline on startup")
            except ConfigurationError as exc:
                logger.warning("No valid config to use as baseline", error=str(exc))

        self._initialized = True
        return True

    def snapshot(self, config: BrainConfig, reason: str) -> RollbackSnapshot:
        snap = self._create_snapshot(config, reason)
        self._history.append(snap)
        while len(self._history) > self.max_history:
            evicted = self._history.pop(0)
            self._delete_snapshot_file(evicted.id)
        self._write_json(self._snapshot_path(snap.id), snap.model_dump(mode="json"))
        self._save_history()
        logger.debug("Config snapshot created", snapshot_id=snap.id, reason=reason)
        return snap

    def mark_as_good(self, config: BrainConfig, reason: str) -> RollbackSnapshot:
        try:
            parse_brain_config(config.to_json_dict())
        except PydanticValidationError as exc:
            raise ConfigurationError(f"Cannot mark invalid config as good: {exc}") from exc
        self._last_known_good = self._create_snapshot(config, reason)
        self._write_json(
            self.rollback_dir / LAST_KNOWN_GOOD_FILE, self._last_known_good.model_dump(mode="json")
        )
        return self._last_known_good

    def rollback(self, target: str) -> RollbackResult:
        """Restore `target` to disk and sync it downstream."""
        snap: RollbackSnapshot | None
        if target == "lastKnownGood":
            snap = self._last_known_good
            if snap is None:
                return RollbackResult(success=False, error="No lastKnownGood snapshot available")
        elif target == "previous":
            if not self._history:
                return RollbackResult(success=False, error="No snapshots in rollback history")
            snap = self._history[-1]
        else:
            return RollbackResult(success=False, error=f"Invalid rollback target: {target}")

        if compute_checksum(snap.config) != snap.checksum:
            return RollbackResult(
                success=False, error="Snapshot checksum mismatch - data may be corrupted"
            )

        try:
            restored = parse_brain_config(snap.config)
            self.store.save(restored)
            if self.sync is not None:
                self.sync(restored)
        except (PydanticValidationError, ConfigurationError, OSError) as exc:
            return RollbackResult(success=False, error=f"Rollback failed: {exc}")

        logger.info("Config rolled back", target=target, snapshot_id=snap.id)
        return RollbackResult(success=True, restored_config=snap.config, snapshot=snap)

    def revert(self) -> RollbackResult:
        return self.rollback("lastKnownGood")

    def get_last_known_good(self) -> RollbackSnapshot | None:
        return self._last_known_good

    def get_history(self) -> list[RollbackSnapshot]:
        return list(self._history)

    def get_last_snapshot(self) -> RollbackSnapshot | None:
        return self._history[-1] if self._history else None

    def clear_history(self) -> None:
        for snap in self._history:
            self._delete_snapshot_file(snap.id)
        self._history = []
        self._save_history()

    def matches_last_known_good(self, config: BrainConfig) -> bool:
        if self._last_known_good is None:
            return False
        return compute_checksum(config) == self._last_known_good.checksum

    # --- persistence ---

    def _create_snapshot(self, config: BrainConfig, reason: str) -> RollbackSnapshot:
        data = config.to_json_dict()
        return RollbackSnapshot(
            id=generate_snapshot_id(),
            created_at=datetime.now(timezone.utc),
            reason=reason,
            checksum=compute_checksum(data),
            config=data,
        )

    def _ensure_dir(self) -> None:
        self.rollback_dir.mkdir(parents=True, exist_ok=True, mode=DIR_MODE)

    def _snapshot_path(self, snapshot_id: str) -> Path:
        return self.rollback_dir / f"{snapshot_id}.json"

    def _write_json(self, path: Path, data: Any) -> None:
        self._ensure_dir()
        path.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
        os.chmod(path, FILE_MODE)

    def _load_snapshot_path(self, path: Path) -> RollbackSnapshot | None:
        if not path.is_file():
            return None
        try:
            return RollbackSnapshot.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, PydanticValidationError) as exc:
            logger.warning("Ignoring unreadable snapshot", path=str(path), error=str(exc))
            return None

    def _load_history(self) -> None:
        path = self.rollback_dir / HISTORY_FILE
        if not path.is_file():
            self._history = []
            return
        try:
            ids = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Ignoring unreadable rollback history", error=str(exc))
            self._history = []
            return
        history = []
        for snapshot_id in ids if isinstance(ids, list) else []:
            snap = self._load_snapshot_path(self._snapshot_path(str(snapshot_id)))
            if snap is not None:
                history.append(snap)
        self._history = history[-self.max_history :]

    def _save_history(self) -> None:
        self._write_json(self.rollback_dir / HISTORY_FILE, [snap.id for snap in self._history])

    def _delete_snapshot_file(self, snapshot_id: str) -> None:
        try:
            self._snapshot_path(snapshot_id).unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Failed to delete snapshot file", snapshot_id=snapshot_id, error=str(exc))
