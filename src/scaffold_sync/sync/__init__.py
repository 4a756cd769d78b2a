"""Template configuration sync engine.

Public API for upgrading a project's configuration tree to a new template
version while keeping the user's customisations.

Architecture
------------
Before the new template is deployed the current tree is snapshotted.
After deployment every snapshotted file is merged back into the deployed
one.  Structured files (YAML/JSON) are merged key by key; when the
snapshot also carries the *previous* template (its ``.template-defaults/``
tier) YAML files get a true three-way merge, so fields the user never
touched adopt the new template values and fields removed by the template
stay removed.

Modules:

- ``orchestrator`` -- ``SyncOrchestrator``: version check, backup, deploy,
  restore, prune.
- ``backup``       -- ``BackupManager``, ``DefaultsArchive``, ``SyncLock``.
- ``restore``      -- ``restore_from_backup``: the per-file merge walk.
- ``classifier``   -- risk level and merge strategy per path.
- ``formats``      -- JSON, YAML, ignore-file, Markdown and line mergers.
- ``merger``       -- two-way and three-way structured tree merges.
- ``policy``       -- ``FieldPolicyTable``: system-field handling.
- ``tree``         -- ``Scalar`` / ``Mapping`` / ``Sequence`` node types.
- ``models``       -- ``SyncResult``, ``FileOutcome``, ``MergeWarning``,
  ``BackupMetadata``: core data contracts.
- ``reporter``     -- Human-readable and JSON result formatting.

Usage example
-------------
::

    from pathlib import Path
    from scaffold_sync.config import load_settings
    from scaffold_sync.sync import Dependencies, format_sync_result, sync

    settings = load_settings(Path(".")).sync
    deps = Dependencies.from_settings(
        settings,
        deployer=my_deployer,            # .deploy(template_set, root) -> paths
        version_source=my_templates,     # has .current_template_version()
        template_set=my_templates.default_set,
    )

    result = sync(Path("."), deps)
    print(format_sync_result(result))
"""

from .backup import BackupManager, DefaultsArchive, SyncLock
from .classifier import ClassifierRules, analyze, classify, select_strategy
from .models import (
    BackupMetadata,
    FileAction,
    FileOutcome,
    MergeStrategy,
    MergeWarning,
    RiskLevel,
    SyncPhase,
    SyncResult,
)
from .orchestrator import (
    Dependencies,
    SyncOrchestrator,
    read_template_version,
    sync,
)
from .policy import FieldPolicy, FieldPolicyTable
from .reporter import format_analysis, format_sync_result, result_to_json
from .restore import restore_from_backup

__all__ = [
    "BackupManager",
    "BackupMetadata",
    "ClassifierRules",
    "DefaultsArchive",
    "Dependencies",
    "FieldPolicy",
    "FieldPolicyTable",
    "FileAction",
    "FileOutcome",
    "MergeStrategy",
    "MergeWarning",
    "RiskLevel",
    "SyncLock",
    "SyncOrchestrator",
    "SyncPhase",
    "SyncResult",
    "analyze",
    "classify",
    "format_analysis",
    "format_sync_result",
    "read_template_version",
    "restore_from_backup",
    "result_to_json",
    "select_strategy",
    "sync",
]
