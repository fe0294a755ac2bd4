"""Copy-verify-delete migration of a project's memories tree.

The source is only removed after the destination has been verified to hold
the same number of files and the same number of bytes. Any failure before that
point leaves the source untouched and removes the partial destination.
"""

from __future__ import annotations

import os
import shutil
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Callable

from brain.config.paths import validate_path
from brain.errors import MigrationFailure
from brain.observability.logging import get_logger

logger = get_logger(__name__)

DEFAULT_WARN_THRESHOLD = 1000


@dataclass(frozen=True)
class TreeStats:
    file_count: int
    total_bytes: int


@dataclass
class MigrationResult:
    migrated: bool
    old_path: str
    new_path: str
    files_moved: int = 0
    bytes_moved: int = 0
    error: str | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def cleanup_failed(self) -> bool:
        return self.migrated and any(w.startswith("Cleanup failed") for w in self.warnings)

    def raise_for_failure(self) -> None:
        if not self.migrated:
            raise MigrationFailure(
                self.error or "Migration failed",
                context={"old_path": self.old_path, "new_path": self.new_path},
            )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        if data["error"] is None:
            data.pop("error")
        return data


@dataclass
class ProjectMigration:
    """A single project's move inside a multi-project migration."""

    project: str
    result: MigrationResult


MeasureFn = Callable[[Path], TreeStats]


def measure_tree(path: Path) -> TreeStats:
    """Recursive regular-file count and byte total (symlinks are not followed)."""
    count = 0
    total = 0
    for root, _dirs, files in os.walk(path):
        for name in files:
            file_path = Path(root) / name
            if file_path.is_symlink() or not file_path.is_file():
                continue
            count += 1
            total += file_path.stat().st_size
    return TreeStats(count, total)


def _validate_endpoints(old_path: str, new_path: str) -> tuple[Path, Path]:
    source_check = validate_path(old_path, check_home=True)
    if not source_check.valid:
        raise MigrationFailure(f"Invalid source path: {source_check.error}")
    source = Path(source_check.normalized_path or old_path)
    if not source.is_dir():
        raise MigrationFailure("Source directory does not exist")

    dest_check = validate_path(new_path, check_home=True)
    if not dest_check.valid:
        raise MigrationFailure(f"Invalid destination path: {dest_check.error}")
    destination = Path(dest_check.normalized_path or new_path)

    if not destination.exists():
        parent_check = validate_path(str(destination.parent), check_home=True)
        if not parent_check.valid:
            raise MigrationFailure(f"Invalid destination parent: {parent_check.error}")
    elif not destination.is_dir():
        raise MigrationFailure("Destination exists and is not a directory")
    elif any(destination.iterdir()):
        raise MigrationFailure("Destination directory is not empty")

    if destination == source or str(destination).startswith(str(source) + os.sep):
        raise MigrationFailure("Destination cannot be inside the source directory")
    return source, destination


def _remove_tree(path: Path) -> None:
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("Failed to remove partial destination", path=str(path), error=str(exc))


def migrate_tree(
    old_path: str,
    new_path: str,
    *,
    warn_threshold: int = DEFAULT_WARN_THRESHOLD,
    measure_destination: MeasureFn = measure_tree,
) -> MigrationResult:
    """Move `old_path` to `new_path` with copy, verify, then delete.

    Args:
        old_path: Existing source directory.
        new_path: Destination directory (absent or empty).
        warn_threshold: File count above which a large-migration warning is added.
        measure_destination: Measures the copied tree for verification.

    Returns:
        MigrationResult. ``migrated`` is True once the destination is verified,
        even if removing the source fails afterwards.
    """
    result = MigrationResult(migrated=False, old_path=old_path, new_path=new_path)

    try:
        source, destination = _validate_endpoints(old_path, new_path)
    except MigrationFailure as exc:
        result.error = exc.message
        return result
    result.old_path, result.new_path = str(source), str(destination)

    source_stats = measure_tree(source)
    if source_stats.file_count > warn_threshold:
        warning = (
            f"Large migration: {source_stats.file_count} files exceed the "
            f"{warn_threshold} file threshold"
        )
        result.warnings.append(warning)
        logger.warning("Large migration", files=source_stats.file_count, source=str(source))

    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copytree(source, destination, symlinks=True, dirs_exist_ok=True)
    except (OSError, shutil.Error) as exc:
        _remove_tree(destination)
        result.error = f"Copy failed: {exc}"
        logger.error("Migration copy failed", source=str(source), error=str(exc))
        return result

    dest_stats = measure_destination(destination)
    if dest_stats != source_stats:
        _remove_tree(destination)
        mismatches = []
        if dest_stats.file_count != source_stats.file_count:
            mismatches.append(
                f"file count mismatch (source {source_stats.file_count}, "
                f"destination {dest_stats.file_count})"
            )
        if dest_stats.total_bytes != source_stats.total_bytes:
            mismatches.append(
                f"byte size mismatch (source {source_stats.total_bytes}, "
                f"destination {dest_stats.total_bytes})"
            )
        result.error = "Verification failed: " + "; ".join(mismatches)
        logger.error("Migration verification failed", source=str(source), error=result.error)
        return result

    result.migrated = True
    result.files_moved = source_stats.file_count
    result.bytes_moved = source_stats.total_bytes

    try:
        shutil.rmtree(source)
    except OSError as exc:
        result.warnings.append(f"Cleanup failed: {exc}")
        logger.warning("Source cleanup failed after verified copy", source=str(source), error=str(exc))

    logger.info(
        "Migration complete",
        source=str(source),
        destination=str(destination),
        files=result.files_moved,
    )
    return result


def rollback_migrations(migrations: list[ProjectMigration]) -> list[str]:
    """Move already-migrated trees back to their origins, newest first.

    Returns error messages for trees that could not be restored.
    """
    errors: list[str] = []
    for item in reversed(migrations):
        result = item.result
        if not result.migrated:
            continue
        source, destination = Path(result.old_path), Path(result.new_path)
        try:
            if source.exists():
                shutil.copytree(destination, source, symlinks=True, dirs_exist_ok=True)
                shutil.rmtree(destination)
            else:
                shutil.move(str(destination), str(source))
        except (OSError, shutil.Error) as exc:
            errors.append(f"{item.project}: {exc}")
            logger.error("Failed to roll back migration", project=item.project, error=str(exc))
    return errors
