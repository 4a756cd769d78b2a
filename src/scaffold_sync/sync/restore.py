"""Restore user customisations from a backup snapshot.

After the new template is deployed, every file recorded in the snapshot is
merged back into the project:

* target missing after deploy -> the backed-up file is copied verbatim;
* otherwise the file is classified, a merge strategy is selected (three-way
  when the snapshot carries a ``.template-defaults/`` base for it) and the
  merged text is written only when it differs from the deployed file.

Failures are isolated per file: the deployed file is left in place and a
``MergeWarning`` is collected.  Nothing here raises for a single bad file.
"""

from __future__ import annotations

import logging
import shutil
import warnings
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

from scaffold_sync.errors import MergeConflictWarning
from scaffold_sync.file_handler import read_text_file, write_text_file
from scaffold_sync.sync.backup import (
    METADATA_FILE,
    PROJECT_FILES_DIR,
    TEMPLATE_DEFAULTS_DIR,
    BackupManager,
    iter_tree_files,
)
from scaffold_sync.sync.classifier import (
    DEFAULT_RULES,
    ClassifierRules,
    classify_risk,
    highest_risk,
    select_strategy,
)
from scaffold_sync.sync.formats import generate_diff, merge_file
from scaffold_sync.sync.models import (
    FileAction,
    FileOutcome,
    MergeWarning,
    RiskLevel,
)
from scaffold_sync.sync.policy import DEFAULT_POLICY, FieldPolicyTable

logger = logging.getLogger(__name__)


@dataclass
class RestoreReport:
    """Per-file outcomes and collected warnings of one restore walk."""

    files: list[FileOutcome] = field(default_factory=list)
    warnings: list[MergeWarning] = field(default_factory=list)
    legacy: bool = False

    @property
    def risk_level(self) -> RiskLevel:
        return highest_risk(f.risk for f in self.files if f.risk is not None)

    def warn(self, path: str, message: str, category: str) -> None:
        logger.warning("%s: %s", path, message)
        warnings.warn(f"{path}: {message}", MergeConflictWarning, stacklevel=3)
        self.warnings.append(MergeWarning(path=path, message=message, category=category))


def is_legacy_snapshot(snapshot: Path, manager: BackupManager) -> bool:
    """Snapshots written before metadata and template defaults existed."""
    return (
        manager.load_metadata(snapshot) is None
        and not (snapshot / "sections").is_dir()
        and not (snapshot / TEMPLATE_DEFAULTS_DIR).is_dir()
    )


def snapshot_items(snapshot: Path, manager: BackupManager) -> list[str]:
    """Project-relative paths to restore from *snapshot*.

    Uses the metadata manifest when present, otherwise walks the snapshot
    (skipping the metadata file and the template-defaults tier).
    """
    metadata = manager.load_metadata(snapshot)
    if metadata is not None:
        return list(metadata.backed_up_items)

    items: list[str] = []
    files, _ = iter_tree_files(snapshot)
    for path in files:
        rel = PurePosixPath(path.relative_to(snapshot).as_posix())
        if rel.parts[0] == TEMPLATE_DEFAULTS_DIR or str(rel) == METADATA_FILE:
            continue
        if rel.parts[0] == PROJECT_FILES_DIR:
            items.append(str(PurePosixPath(*rel.parts[1:])))
        else:
            items.append(str(manager.config_prefix / rel))
    return items


def restore_from_backup(
    snapshot: Path,
    manager: BackupManager,
    field_policy: FieldPolicyTable = DEFAULT_POLICY,
    rules: ClassifierRules = DEFAULT_RULES,
) -> RestoreReport:
    """Merge every file of *snapshot* back into the freshly deployed project.

    Args:
        snapshot: Snapshot directory produced by ``BackupManager.backup``.
        manager: Manager for the project (supplies layout and settings).
        field_policy: Field policies for structured merges.
        rules: Classification rules.

    Returns:
        A ``RestoreReport``; per-file failures appear as ``FAILED``
        outcomes with a matching warning.
    """
    legacy = is_legacy_snapshot(snapshot, manager)
    if legacy:
        logger.info("Snapshot %s has no metadata, using two-way merges", snapshot.name)

    report = RestoreReport(legacy=legacy)
    for item in snapshot_items(snapshot, manager):
        report.files.append(
            _restore_item(snapshot, item, manager, field_policy, rules, legacy, report)
        )
    return report


def _restore_item(
    snapshot: Path,
    item: str,
    manager: BackupManager,
    field_policy: FieldPolicyTable,
    rules: ClassifierRules,
    legacy: bool,
    report: RestoreReport,
) -> FileOutcome:
    rel = manager.snapshot_relpath(item)
    backup_file = snapshot / rel
    target = manager.project_root / item
    base_file = snapshot / TEMPLATE_DEFAULTS_DIR / rel
    has_base = not legacy and base_file.is_file()
    risk = classify_risk(item, True, rules)
    strategy = None

    try:
        if not backup_file.is_file():
            raise FileNotFoundError(f"missing from snapshot {snapshot.name}")

        if not target.exists():
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(backup_file, target)
            logger.debug("Restored %s from backup", item)
            return FileOutcome(path=item, action=FileAction.RESTORED, risk=risk)

        strategy = select_strategy(item, has_base, rules)
        max_size = manager.settings.max_config_size
        old_text, _ = read_text_file(backup_file, max_size)
        new_text, encoding = read_text_file(target, max_size)
        base_text = read_text_file(base_file, max_size)[0] if has_base else None

        result = merge_file(
            strategy,
            new_text,
            old_text,
            base_text,
            field_policy.for_file(item),
            source=item,
            max_size=max_size,
        )
        for location in result.conflicts:
            report.warn(
                item,
                f"template and user both changed {location}",
                "conflict",
            )

        if result.content == new_text:
            logger.debug("Unchanged %s (%s)", item, strategy.value)
            return FileOutcome(
                path=item, action=FileAction.UNCHANGED, strategy=strategy, risk=risk
            )

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Merge diff for %s:\n%s", item, generate_diff(new_text, result.content))
        write_text_file(target, result.content, encoding)
        logger.debug("Merged %s (%s)", item, strategy.value)
        return FileOutcome(
            path=item, action=FileAction.MERGED, strategy=strategy, risk=risk
        )
    except Exception as exc:
        report.warn(item, f"merge failed, kept deployed file: {exc}", "merge_failed")
        return FileOutcome(
            path=item,
            action=FileAction.FAILED,
            strategy=strategy,
            risk=risk,
            error=str(exc),
        )
