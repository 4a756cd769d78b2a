"""
Hierarchical configuration loader for scaffold_sync.

Provides convention-based discovery of the tool's own settings files, env
var interpolation, and a "project wins" merge across the discovered files.

Usage:
    from scaffold_sync.config_loader import load_hierarchical_config

    raw = load_hierarchical_config(project_root)
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "SCAFFOLD_SYNC_CONFIG"
PROJECT_CONFIG = Path(".scaffold_sync") / "config.yml"

# ---------------------------------------------------------------------------
# 1. Env var interpolation
# ---------------------------------------------------------------------------

# Matches ${VAR} and ${VAR:-default}
_ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


def interpolate_env_vars(value: str) -> str:
    """Replace ``${VAR}`` and ``${VAR:-default}`` patterns with env values.

    * ``${VAR}`` becomes the variable's value, or ``""`` when unset.
    * ``${VAR:-default}`` uses *default* when VAR is unset or empty.
    * A ``${`` with no closing ``}`` is left as-is.
    """

    def _replace(match: re.Match) -> str:
        env_val = os.environ.get(match.group(1))
        if env_val:
            return env_val
        return match.group(2) or ""

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _interpolate_recursive(obj: Any) -> Any:
    """Walk a nested dict/list and interpolate env vars in all strings."""
    match obj:
        case str():
            return interpolate_env_vars(obj)
        case dict():
            return {k: _interpolate_recursive(v) for k, v in obj.items()}
        case list():
            return [_interpolate_recursive(item) for item in obj]
        case _:
            return obj


# ---------------------------------------------------------------------------
# 2. Convention-based file discovery
# ---------------------------------------------------------------------------


def discover_config_files(project_root: Path | None = None) -> list[Path]:
    """Return existing settings files in precedence order (highest first).

    Search order:
        1. ``SCAFFOLD_SYNC_CONFIG`` env var (explicit single path).
        2. ``<project_root>/.scaffold_sync/config.yml`` (project-level;
           *project_root* defaults to the CWD).
        3. ``~/.config/scaffold_sync/config.yml`` (XDG global).

    Only paths that exist on disk are returned.
    """
    candidates: list[Path] = []

    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        candidates.append(Path(env_path).expanduser().resolve())

    root = project_root if project_root is not None else Path.cwd()
    candidates.append(root / PROJECT_CONFIG)
    candidates.append(Path.home() / ".config" / "scaffold_sync" / "config.yml")

    return [p for p in candidates if p.is_file()]


_STARTER_CONFIG = """\
# scaffold-sync configuration
#
# sync:
#   config_dir: .scaffold/config
#   backup_dir: .scaffold-backups
#   version_file: sections/system.yaml
#   version_key: system.template_version
#   retain_count: 5
#   backup_collision: suffix      # or: fail
#   lock: true
#   extra_files:
#     - .gitignore
#   system_fields:
#     - template_version
#     - version
#   section_policies:
#     system:
#       version: preserve_if_unchanged
#
# logging:
#   level: INFO
#   file: null
#   format: text
"""


def ensure_config(project_root: Path) -> Path:
    """Ensure a project-level settings file exists.

    If any settings file is already discovered, return the
    highest-precedence one without modification.  Otherwise create
    ``<project_root>/.scaffold_sync/config.yml`` with a commented-out
    starter template.

    Returns:
        Path to the settings file (existing or newly created).
    """
    existing = discover_config_files(project_root)
    if existing:
        logger.debug("Config file already exists: %s", existing[0])
        return existing[0]

    config_path = project_root / PROJECT_CONFIG
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Created starter config: %s", config_path)
    return config_path


# ---------------------------------------------------------------------------
# 3. Hierarchical merge
# ---------------------------------------------------------------------------


def load_yaml_file(path: Path) -> Any:
    """Parse one settings file with ``yaml.safe_load``."""
    with open(path, "r", encoding="utf-8") as fh:
        return yaml.safe_load(fh)


def load_hierarchical_config(
    project_root: Path | None = None,
) -> dict[str, Any]:
    """Load and merge all discovered settings files.

    Merge strategy ("project wins"):
        Files are loaded from lowest precedence to highest.  Each file's
        top-level sections **replace** (not deep-merge) those from earlier
        files.

    Env var interpolation is applied to all string values after merging.

    Returns an empty dict when no settings files exist (zero-config).
    """
    paths = discover_config_files(project_root)
    if not paths:
        logger.debug("No config files found, using zero-config defaults")
        return {}

    merged: dict[str, Any] = {}
    for path in reversed(paths):
        logger.debug("Loading config: %s", path)
        try:
            data = load_yaml_file(path)
        except Exception:
            logger.exception("Failed to load config file %s", path)
            raise

        if isinstance(data, dict):
            merged.update(data)
        elif data is not None:
            logger.warning(
                "Config file %s has non-dict root (%s), skipping",
                path,
                type(data).__name__,
            )

    return _interpolate_recursive(merged)
