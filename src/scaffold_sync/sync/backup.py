"""Backup snapshots of the configuration tree.

``BackupManager`` copies the project's configuration tree into
``<backup_dir>/<YYYYMMDD_HHMMSS>/`` together with a ``backup_metadata.json``
manifest, and prunes old snapshots by retention count.

Snapshot layout::

    <backup_dir>/20250101_120000/
        sections/system.yaml          # config-root-relative copy
        _project/.gitignore           # extra project files
        .template-defaults/...        # previous template state (optional)
        backup_metadata.json

Key design choices:

* **Atomic snapshots** -- a snapshot is assembled in a ``.staging-*``
  directory and renamed into place, so a snapshot directory is either
  complete or absent.
* **Atomic pruning** -- a pruned snapshot is first renamed out of the
  timestamp namespace and only then deleted, so a failed delete never
  leaves a partial snapshot behind.
* **Base tier** -- ``DefaultsArchive`` keeps the pristine template files of
  the last deployment; the next backup copies them into
  ``.template-defaults/`` where restore uses them as three-way merge base.
"""

from __future__ import annotations

import fnmatch
import logging
import os
import re
import shutil
import tempfile
from collections.abc import Callable
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import Protocol

from pydantic import ValidationError

from scaffold_sync.config_schema import SyncSettings
from scaffold_sync.errors import (
    BackupCollisionError,
    BackupError,
    ConfigRootNotADirectoryError,
    SyncLockedError,
)
from scaffold_sync.sync.models import BackupMetadata

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
METADATA_FILE = "backup_metadata.json"
TEMPLATE_DEFAULTS_DIR = ".template-defaults"
PROJECT_FILES_DIR = "_project"
ARCHIVE_DIR = "template-defaults"
LOCK_FILE = ".sync.lock"

_SNAPSHOT_RE = re.compile(r"^(\d{8}_\d{6})(?:_(\d+))?$")

# Transient files never copied into a snapshot.
EXCLUDED_FILE_PATTERNS: tuple[str, ...] = ("*.tmp", "*.lock", "*.swp", ".DS_Store")
EXCLUDED_DIRS: tuple[str, ...] = ("__pycache__",)


class TemplateDefaultsSource(Protocol):
    """Supplies the previous template's files for the base tier."""

    def files(self) -> dict[str, bytes]:
        """Return ``{snapshot-relative POSIX path: content}``."""
        ...  # pragma: no cover


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def snapshot_sort_key(name: str) -> tuple[str, int]:
    """Chronological sort key for a snapshot directory name."""
    match = _SNAPSHOT_RE.match(name)
    if match is None:
        return (name, -1)
    return (match.group(1), int(match.group(2) or 0))


def is_snapshot_name(name: str) -> bool:
    return _SNAPSHOT_RE.match(name) is not None


def _is_excluded_file(name: str) -> bool:
    return any(fnmatch.fnmatch(name, pattern) for pattern in EXCLUDED_FILE_PATTERNS)


def iter_tree_files(root: Path) -> tuple[list[Path], list[Path]]:
    """Walk *root* in sorted order.

    Returns:
        Tuple of (files_to_copy, excluded_paths).  Excluded directories are
        reported once and not descended into.
    """
    files: list[Path] = []
    excluded: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(root):
        current = Path(dirpath)
        for dirname in sorted(dirnames):
            if dirname in EXCLUDED_DIRS:
                excluded.append(current / dirname)
        dirnames[:] = sorted(d for d in dirnames if d not in EXCLUDED_DIRS)
        for filename in sorted(filenames):
            path = current / filename
            if _is_excluded_file(filename):
                excluded.append(path)
            else:
                files.append(path)
    return files, excluded


def _remove_tree(path: Path) -> bool:
    """Delete *path* as a whole: rename it aside first, then remove.

    Returns ``True`` once the path has left its original name.
    """
    trash = path.with_name(f".trash-{path.name}")
    if trash.exists():
        shutil.rmtree(trash, ignore_errors=True)
    try:
        os.rename(path, trash)
    except OSError as exc:
        logger.warning("Failed to delete %s: %s", path.name, exc)
        return False
    try:
        shutil.rmtree(trash)
    except OSError as exc:
        logger.warning("Left %s behind after pruning: %s", trash, exc)
    return True


# ---------------------------------------------------------------------------
# Backup manager
# ---------------------------------------------------------------------------


class BackupManager:
    """Create, inspect and prune snapshots for one project.

    Args:
        project_root: The project directory.
        settings: Sync settings (config and backup locations, collision
            policy, extra files).
        clock: Returns the current local time; used for snapshot names.
    """

    def __init__(
        self,
        project_root: Path,
        settings: SyncSettings | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.project_root = project_root
        self.settings = settings or SyncSettings()
        self.config_root = project_root / self.settings.config_dir
        self.backup_root = project_root / self.settings.backup_dir
        self._clock = clock

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    @property
    def config_prefix(self) -> PurePosixPath:
        return PurePosixPath(Path(self.settings.config_dir).as_posix())

    def snapshot_relpath(self, item: str) -> PurePosixPath:
        """Map a project-relative manifest item to its place in a snapshot.

        Files under the configuration tree are stored relative to it; any
        other project file lives under ``_project/``.
        """
        path = PurePosixPath(item)
        try:
            return path.relative_to(self.config_prefix)
        except ValueError:
            return PurePosixPath(PROJECT_FILES_DIR) / path

    def extra_files(self) -> dict[str, Path]:
        """Configured extra files that exist, keyed by project-relative path."""
        result: dict[str, Path] = {}
        for rel in self.settings.extra_files:
            item = PurePosixPath(Path(rel).as_posix())
            if item.is_relative_to(self.config_prefix):
                continue
            source = self.project_root / rel
            if source.is_file():
                result[str(item)] = source
        return result

    # ------------------------------------------------------------------
    # Backup
    # ------------------------------------------------------------------

    def backup(
        self,
        description: str = "config_backup",
        defaults_source: TemplateDefaultsSource | None = None,
    ) -> str:
        """Snapshot the configuration tree.

        Args:
            description: Stored in the metadata.
            defaults_source: Supplies the previous template files for the
                ``.template-defaults/`` tier; omitted when ``None``.

        Returns:
            The snapshot path, or ``""`` when the project has no
            configuration tree (nothing is created in that case).

        Raises:
            ConfigRootNotADirectoryError: If the configuration root is a
                file.
            BackupCollisionError: If the snapshot name is taken and the
                collision policy is ``fail``.
            BackupError: If copying or writing metadata fails.
        """
        if not self.config_root.exists():
            logger.info("No configuration tree at %s, nothing to back up", self.config_root)
            return ""
        if not self.config_root.is_dir():
            raise ConfigRootNotADirectoryError(
                f"config path is not a directory: {self.config_root}"
            )

        try:
            self.backup_root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise BackupError(f"create backup directory: {exc}") from exc

        name = self._allocate_name()
        stage = Path(tempfile.mkdtemp(prefix=".staging-", dir=self.backup_root))
        try:
            backed_up, excluded = self._copy_tree(stage)
            backed_up += self._copy_extra_files(stage)
            defaults_dir = self._write_template_defaults(stage, defaults_source)

            metadata = BackupMetadata(
                timestamp=name,
                description=description,
                backed_up_items=backed_up,
                excluded_items=excluded,
                excluded_dirs=list(EXCLUDED_DIRS),
                project_root=str(self.project_root),
                template_defaults_dir=defaults_dir,
            )
            (stage / METADATA_FILE).write_text(
                metadata.model_dump_json(indent=2) + "\n", encoding="utf-8"
            )

            final = self.backup_root / name
            os.rename(stage, final)
        except OSError as exc:
            shutil.rmtree(stage, ignore_errors=True)
            raise BackupError(f"copy config files: {exc}") from exc
        except BaseException:
            shutil.rmtree(stage, ignore_errors=True)
            raise

        logger.info(
            "Backed up %d file(s) to %s", len(backed_up), final
        )
        return str(final)

    def _allocate_name(self) -> str:
        """Pick the snapshot name, applying the collision policy."""
        base = self._clock().strftime(TIMESTAMP_FORMAT)
        if not (self.backup_root / base).exists():
            return base

        if self.settings.backup_collision == "fail":
            raise BackupCollisionError(f"backup {base} already exists")

        counter = 1
        while (self.backup_root / f"{base}_{counter}").exists():
            counter += 1
        logger.debug("Snapshot name %s taken, using suffix %d", base, counter)
        return f"{base}_{counter}"

    def _copy_tree(self, stage: Path) -> tuple[list[str], list[str]]:
        files, excluded = iter_tree_files(self.config_root)
        backed_up: list[str] = []
        for source in files:
            rel = source.relative_to(self.config_root)
            target = stage / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, target)
            backed_up.append(str(self.config_prefix / rel.as_posix()))
        excluded_items = [
            str(self.config_prefix / p.relative_to(self.config_root).as_posix())
            for p in excluded
        ]
        return backed_up, excluded_items

    def _copy_extra_files(self, stage: Path) -> list[str]:
        copied: list[str] = []
        for item, source in self.extra_files().items():
            target = stage / self.snapshot_relpath(item)
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, target)
            copied.append(item)
        return copied

    def _write_template_defaults(
        self, stage: Path, source: TemplateDefaultsSource | None
    ) -> str | None:
        """Write the base tier; failures only cost the three-way merge."""
        if source is None:
            return None
        target_root = stage / TEMPLATE_DEFAULTS_DIR
        try:
            files = source.files()
            if not files:
                return None
            for rel, data in sorted(files.items()):
                target = target_root / rel
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(data)
        except Exception as exc:
            logger.warning(
                "Could not save template defaults, restore will use two-way merge: %s",
                exc,
            )
            shutil.rmtree(target_root, ignore_errors=True)
            return None
        return TEMPLATE_DEFAULTS_DIR

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def list_backups(self) -> list[str]:
        """Return snapshot directory names, newest first."""
        if not self.backup_root.is_dir():
            return []
        names = [
            entry.name
            for entry in self.backup_root.iterdir()
            if entry.is_dir() and is_snapshot_name(entry.name)
        ]
        return sorted(names, key=snapshot_sort_key, reverse=True)

    def load_metadata(self, snapshot: Path) -> BackupMetadata | None:
        """Return the snapshot's metadata, or ``None`` for legacy snapshots."""
        path = snapshot / METADATA_FILE
        if not path.is_file():
            return None
        try:
            return BackupMetadata.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as exc:
            logger.warning("Ignoring unreadable metadata in %s: %s", snapshot, exc)
            return None

    # ------------------------------------------------------------------
    # Pruning
    # ------------------------------------------------------------------

    def prune(self, keep: int) -> int:
        """Delete all but the newest *keep* snapshots.

        Only directories named like ``YYYYMMDD_HHMMSS`` (optionally with a
        numeric collision suffix) are considered; anything else in the
        backup directory is left alone.

        Returns:
            Number of snapshots deleted (0 when the backup directory does
            not exist).
        """
        if keep < 0:
            raise ValueError(f"keep must be >= 0, got {keep}")

        snapshots = list(reversed(self.list_backups()))
        if len(snapshots) <= keep:
            return 0

        deleted = 0
        for name in snapshots[: len(snapshots) - keep]:
            if _remove_tree(self.backup_root / name):
                logger.debug("Pruned backup %s", name)
                deleted += 1
        return deleted


# ---------------------------------------------------------------------------
# Template defaults archive
# ---------------------------------------------------------------------------


class DefaultsArchive:
    """Pristine copy of the most recently deployed template files.

    Lives at ``<backup_dir>/template-defaults/`` (a name pruning ignores)
    and uses the snapshot layout, so ``files()`` can be written straight
    into a snapshot's ``.template-defaults/`` tier.
    """

    def __init__(self, backup_root: Path) -> None:
        self.backup_root = backup_root
        self.root = backup_root / ARCHIVE_DIR

    def record(self, files: dict[str, Path]) -> int:
        """Replace the archive with the files a deploy just wrote.

        Args:
            files: ``{snapshot-relative POSIX path: deployed file}``;
                project files outside the configuration tree are keyed
                under ``_project/``.

        Returns:
            Number of files archived.
        """
        if not files and not self.root.exists():
            return 0
        self.backup_root.mkdir(parents=True, exist_ok=True)
        stage = Path(tempfile.mkdtemp(prefix=".staging-defaults-", dir=self.backup_root))
        try:
            for rel, source in sorted(files.items()):
                target = stage / rel
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(source, target)

            if self.root.exists():
                _remove_tree(self.root)
            os.rename(stage, self.root)
        except BaseException:
            shutil.rmtree(stage, ignore_errors=True)
            raise

        logger.debug("Archived %d template file(s) in %s", len(files), self.root)
        return len(files)

    def files(self) -> dict[str, bytes]:
        """Return the archived files keyed by snapshot-relative POSIX path."""
        if not self.root.is_dir():
            return {}
        result: dict[str, bytes] = {}
        files, _ = iter_tree_files(self.root)
        for path in files:
            result[path.relative_to(self.root).as_posix()] = path.read_bytes()
        return result


# ---------------------------------------------------------------------------
# Project lock
# ---------------------------------------------------------------------------


def _is_pid_alive(pid: int) -> bool:
    """Check whether a process with *pid* exists (signal 0)."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by another user
        return True
    except OSError:
        return False
    return True


def _read_lock_pid(lock_path: Path) -> int | None:
    try:
        first = lock_path.read_text(encoding="utf-8").split("\n", 1)[0]
        return int(first.strip())
    except (OSError, ValueError):
        return None


class SyncLock:
    """Exclusive lock file held for the duration of a sync.

    The file holds the owner's PID and a timestamp.  A lock left behind by
    a process that no longer exists is treated as stale and replaced.

    Raises:
        SyncLockedError: On enter, if a live process holds the lock.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._held = False

    def __enter__(self) -> SyncLock:
        self.acquire()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()

    def acquire(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        for _ in range(2):
            try:
                fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                pid = _read_lock_pid(self.path)
                if pid is not None and _is_pid_alive(pid):
                    raise SyncLockedError(
                        f"another sync (pid {pid}) holds {self.path}"
                    ) from None
                logger.warning("Removing stale sync lock %s (pid %s)", self.path, pid)
                self.path.unlink(missing_ok=True)
                continue
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(f"{os.getpid()}\n{datetime.now().isoformat()}\n")
            self._held = True
            return
        raise SyncLockedError(f"could not acquire {self.path}")

    def release(self) -> None:
        if self._held:
            self.path.unlink(missing_ok=True)
            self._held = False
