"""Settings resolution for a sync run.

Reads scaffold-sync settings from explicit overrides, environment
variables, the project's ``.env`` file, and the YAML settings files found
by ``config_loader``.

Precedence (highest to lowest):
    overrides > environment variables > project .env > YAML config > defaults

Environment variables:
    SCAFFOLD_SYNC_CONFIG_DIR: Configuration tree directory.
    SCAFFOLD_SYNC_BACKUP_DIR: Backup snapshot directory.
    SCAFFOLD_SYNC_RETAIN_COUNT: Snapshots kept by pruning.
    SCAFFOLD_SYNC_BACKUP_COLLISION: ``suffix`` or ``fail``.
    SCAFFOLD_SYNC_LOCK: ``true``/``false``; hold the project lock.
    SCAFFOLD_SYNC_MAX_CONFIG_SIZE: Parse size ceiling in bytes.
"""

import logging
import os
from pathlib import Path
from typing import Any

from dotenv import dotenv_values

from scaffold_sync.config_loader import load_hierarchical_config
from scaffold_sync.config_schema import SyncSettings, UnifiedConfig, build_config

logger = logging.getLogger(__name__)

ENV_PREFIX = "SCAFFOLD_SYNC_"

_ENV_FIELDS: dict[str, str] = {
    "CONFIG_DIR": "config_dir",
    "BACKUP_DIR": "backup_dir",
    "RETAIN_COUNT": "retain_count",
    "BACKUP_COLLISION": "backup_collision",
    "LOCK": "lock",
    "MAX_CONFIG_SIZE": "max_config_size",
}


def _env_overrides(project_root: Path) -> dict[str, Any]:
    """Collect ``SCAFFOLD_SYNC_*`` values from ``.env`` then the process env."""
    values: dict[str, str | None] = {}
    env_file = project_root / ".env"
    if env_file.is_file():
        values.update(dotenv_values(env_file))
    values.update(os.environ)

    result: dict[str, Any] = {}
    for suffix, field_name in _ENV_FIELDS.items():
        value = values.get(ENV_PREFIX + suffix)
        if value is not None and value.strip() != "":
            result[field_name] = value.strip()
    return result


def load_settings(
    project_root: Path,
    overrides: dict[str, Any] | None = None,
) -> UnifiedConfig:
    """Load the unified configuration for *project_root*.

    Args:
        project_root: Project whose ``.env`` and ``.scaffold_sync/config.yml``
            are consulted.
        overrides: Explicit ``SyncSettings`` field values from the caller.

    Returns:
        Validated ``UnifiedConfig``.

    Raises:
        pydantic.ValidationError: If a resolved value is invalid.
    """
    unified = build_config(load_hierarchical_config(project_root))

    updates = _env_overrides(project_root)
    updates.update(overrides or {})
    if not updates:
        return unified

    logger.debug("Settings overrides: %s", sorted(updates))
    sync = SyncSettings(**{**unified.sync.model_dump(), **updates})
    return unified.model_copy(update={"sync": sync})
