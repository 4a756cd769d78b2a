"""Pydantic models for the template sync engine.

Defines the core data contracts used across all sync modules:

- ``RiskLevel`` / ``MergeStrategy``: per-file classification enums.
- ``FileClassification`` / ``MergeAnalysis``: classifier output.
- ``BackupMetadata``: the ``backup_metadata.json`` manifest.
- ``SyncPhase``: states of a sync run.
- ``FileAction`` / ``FileOutcome``: what restore did to one path.
- ``MergeWarning``: a collected, non-fatal per-file problem.
- ``SyncResult``: aggregate outcome of a full sync run.

All models are frozen (immutable) for safety.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel


class RiskLevel(str, Enum):
    """How dangerous it is to silently overwrite a path."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self]


_RISK_RANK = {RiskLevel.LOW: 0, RiskLevel.MEDIUM: 1, RiskLevel.HIGH: 2}


class MergeStrategy(str, Enum):
    """Merge algorithm applied to one file."""

    SECTION_MERGE = "SectionMerge"
    ENTRY_MERGE = "EntryMerge"
    JSON_MERGE = "JSONMerge"
    YAML_DEEP = "YAMLDeep"
    YAML_3WAY = "YAML3Way"
    LINE_MERGE = "LineMerge"


class FileClassification(BaseModel):
    """Classifier verdict for a single path.

    Attributes:
        path: The classified path, as given.
        risk: Overwrite risk.
        strategy: Merge strategy chosen from the name/extension.
    """

    path: str
    risk: RiskLevel
    strategy: MergeStrategy

    model_config = {"frozen": True}


class MergeAnalysis(BaseModel):
    """Classification of a batch of paths with the overall risk."""

    files: list[FileClassification] = []
    risk_level: RiskLevel = RiskLevel.LOW

    model_config = {"frozen": True}


class BackupMetadata(BaseModel):
    """Contents of ``backup_metadata.json`` inside a snapshot.

    Attributes:
        timestamp: Snapshot name (``YYYYMMDD_HHMMSS`` plus optional suffix).
        description: Free-form reason for the backup.
        backed_up_items: Project-relative POSIX paths of every copied file.
        excluded_items: Project-relative paths skipped by the deny-list.
        excluded_dirs: Deny-listed directory names.
        project_root: The project root the snapshot was taken from.
        backup_type: Always ``"config"`` for sync backups.
        template_defaults_dir: Name of the base tier directory, when the
            snapshot carries one.
    """

    timestamp: str
    description: str = "config_backup"
    backed_up_items: list[str] = []
    excluded_items: list[str] = []
    excluded_dirs: list[str] = []
    project_root: str
    backup_type: str = "config"
    template_defaults_dir: str | None = None

    model_config = {"frozen": True}


class SyncPhase(str, Enum):
    """States of a sync run, in order."""

    IDLE = "idle"
    VERSION_CHECK = "version_check"
    SKIPPED = "skipped"
    BACKUP = "backup"
    DEPLOY = "deploy"
    RESTORE = "restore"
    PRUNE = "prune"
    DONE = "done"


class FileAction(str, Enum):
    """What restore did to one backed-up path."""

    MERGED = "merged"
    RESTORED = "restored"
    UNCHANGED = "unchanged"
    FAILED = "failed"


class FileOutcome(BaseModel):
    """Result of restoring one backed-up path.

    Attributes:
        path: Project-relative POSIX path.
        action: What happened to the file.
        strategy: Merge strategy used, if a merge was attempted.
        risk: Overwrite risk of the path.
        error: Error message when ``action`` is ``FAILED``.
    """

    path: str
    action: FileAction
    strategy: MergeStrategy | None = None
    risk: RiskLevel | None = None
    error: str | None = None

    model_config = {"frozen": True}


class MergeWarning(BaseModel):
    """A non-fatal problem the caller must surface.

    Attributes:
        path: Affected path (empty for run-level warnings such as an
            unreadable version file).
        message: Human-readable description.
        category: ``merge_failed``, ``conflict`` or ``version_check``.
    """

    path: str = ""
    message: str
    category: str = "merge_failed"

    model_config = {"frozen": True}


class SyncResult(BaseModel):
    """Aggregate outcome of a sync run.

    Attributes:
        ran: Whether deployment and restore were performed.
        phase: Last phase reached (``DONE`` or ``SKIPPED``).
        skipped_reason: Why the run was skipped, if it was.
        backup_path: Snapshot used for restore (empty when the project
            had no configuration tree).
        from_version: Template version recorded in the project.
        to_version: Incoming template version.
        files: Per-path restore outcomes.
        warnings: Collected non-fatal problems.
        risk_level: Highest risk among restored paths.
        deleted_backups: Snapshots removed by pruning.
        started_at: ISO 8601 timestamp when the run started.
        completed_at: ISO 8601 timestamp when the run finished.
    """

    ran: bool
    phase: SyncPhase
    skipped_reason: str | None = None
    backup_path: str = ""
    from_version: str | None = None
    to_version: str
    files: list[FileOutcome] = []
    warnings: list[MergeWarning] = []
    risk_level: RiskLevel = RiskLevel.LOW
    deleted_backups: int = 0
    started_at: str
    completed_at: str | None = None

    model_config = {"frozen": True}

    @property
    def merged(self) -> list[FileOutcome]:
        """Outcomes where a merge was written."""
        return [f for f in self.files if f.action == FileAction.MERGED]

    @property
    def restored(self) -> list[FileOutcome]:
        """Outcomes where the backup was copied back verbatim."""
        return [f for f in self.files if f.action == FileAction.RESTORED]

    @property
    def unchanged(self) -> list[FileOutcome]:
        """Outcomes where the deployed file already matched the merge."""
        return [f for f in self.files if f.action == FileAction.UNCHANGED]

    @property
    def failed(self) -> list[FileOutcome]:
        """Outcomes where the deployed file was left unmerged."""
        return [f for f in self.files if f.action == FileAction.FAILED]

    @property
    def merged_count(self) -> int:
        return len(self.merged)

    @property
    def restored_count(self) -> int:
        return len(self.restored)

    @property
    def warning_count(self) -> int:
        return len(self.warnings)

    def summary(self) -> str:
        """Format a short human-readable summary of the run."""
        if not self.ran:
            return (
                f"Sync skipped ({self.skipped_reason or 'up to date'}) "
                f"at template version {self.to_version}"
            )
        lines = [
            f"Sync {self.from_version or '?'} -> {self.to_version}",
            f"  Merged:    {self.merged_count}",
            f"  Restored:  {self.restored_count}",
            f"  Unchanged: {len(self.unchanged)}",
            f"  Failed:    {len(self.failed)}",
            f"  Warnings:  {self.warning_count}",
            f"  Pruned:    {self.deleted_backups}",
        ]
        return "\n".join(lines)


class VersionCheck(BaseModel):
    """Outcome of reading the project's recorded template version."""

    version: str = "0.0.0"
    error: str | None = None

    model_config = {"frozen": True}

