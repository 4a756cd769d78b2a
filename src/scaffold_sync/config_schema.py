"""Unified configuration schema for scaffold_sync.

Defines Pydantic models for the tool's own settings: where the project's
configuration tree and backups live, how the recorded template version is
found, retention and collision policies, and the classification and
field-policy tables the mergers consume.

Usage:
    from scaffold_sync.config_loader import load_hierarchical_config
    from scaffold_sync.config_schema import build_config

    raw = load_hierarchical_config()
    unified = build_config(raw)
    unified.sync.retain_count
"""

from __future__ import annotations

import logging
from typing import Literal

from pydantic import BaseModel, Field

from scaffold_sync.errors import DEFAULT_MAX_CONFIG_SIZE

PolicyName = Literal["always_new", "preserve_if_unchanged"]

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class SyncSettings(BaseModel):
    """Template sync settings.

    Every field has a default so ``SyncSettings()`` is always valid.
    Paths are relative to the project root.
    """

    config_dir: str = Field(
        default=".scaffold/config",
        description="Configuration tree owned by the project",
    )
    backup_dir: str = Field(
        default=".scaffold-backups",
        description="Directory holding timestamped backup snapshots",
    )
    version_file: str = Field(
        default="sections/system.yaml",
        description="File (relative to config_dir) recording the template version",
    )
    version_key: str = Field(
        default="system.template_version",
        description="Dotted key of the template version inside version_file",
    )
    retain_count: int = Field(
        default=5,
        ge=1,
        le=1000,
        description="Number of backup snapshots kept by pruning (1-1000)",
    )
    max_config_size: int = Field(
        default=DEFAULT_MAX_CONFIG_SIZE,
        ge=1,
        description="Largest structured file the mergers will parse, in bytes",
    )
    backup_collision: Literal["suffix", "fail"] = Field(
        default="suffix",
        description="What to do when a snapshot with the same timestamp exists",
    )
    lock: bool = Field(
        default=True,
        description="Hold a lock file in backup_dir for the duration of a sync",
    )
    extra_files: list[str] = Field(
        default_factory=lambda: [".gitignore"],
        description="Project files outside config_dir to back up and merge",
    )
    system_fields: list[str] = Field(
        default_factory=lambda: ["template_version", "version"],
        description="Keys (names or dotted paths) always taken from the template",
    )
    section_policies: dict[str, dict[str, PolicyName]] = Field(
        default_factory=dict,
        description="Per-section field policy overrides keyed by file stem",
    )
    high_risk_files: list[str] = Field(
        default_factory=lambda: ["CLAUDE.md", "settings.json"],
        description="Base names classified as high risk",
    )
    section_merge_files: list[str] = Field(
        default_factory=lambda: ["CLAUDE.md"],
        description="Base names merged section by section",
    )
    entry_merge_files: list[str] = Field(
        default_factory=lambda: [".gitignore"],
        description="Base names merged as ignore-pattern entry lists",
    )

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
        format: ``text`` or ``json``.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")
    format: Literal["text", "json"] = Field(
        default="text", description="Log line format"
    )

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Aggregates all config sections. Every section has sensible defaults,
    so ``UnifiedConfig()`` (zero-config) is always valid.
    """

    sync: SyncSettings = Field(default_factory=SyncSettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Factory function
# ---------------------------------------------------------------------------


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Missing sections get defaults.
    Unknown top-level sections are logged and ignored.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.
    """
    if not raw_data:
        return UnifiedConfig()

    known = set(UnifiedConfig.model_fields)
    unknown = sorted(set(raw_data) - known)
    if unknown:
        logger.warning(
            "Ignoring unknown config sections: %s", ", ".join(unknown)
        )

    return UnifiedConfig(
        **{k: v for k, v in raw_data.items() if k in known}
    )
