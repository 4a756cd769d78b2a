"""Sync orchestrator: version check, backup, deploy, restore, prune.

``SyncOrchestrator`` runs one template upgrade for a project:

1. Reads the template version recorded in the project's configuration and
   compares it with the incoming version; equal versions skip the run
   unless forced.
2. Snapshots the configuration tree (``BackupManager.backup``).
3. Deploys the new template through the injected ``Deployer``.
4. Archives the files the deployer wrote as the next run's merge base.
5. Merges user customisations back from the snapshot
   (``restore_from_backup``).
6. Prunes old snapshots.

Backup and deploy errors are fatal.  Version-file and per-file restore
errors are collected as warnings in the returned ``SyncResult``.

All collaborators arrive through ``Dependencies``; nothing is looked up
globally.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from contextlib import nullcontext
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Any, Protocol

from scaffold_sync.config_schema import SyncSettings
from scaffold_sync.errors import (
    ConfigTooLargeError,
    DeployError,
    InvalidSettingError,
    ParseError,
)
from scaffold_sync.file_handler import decode_text, read_bounded_bytes
from scaffold_sync.sync.backup import (
    LOCK_FILE,
    BackupManager,
    DefaultsArchive,
    SyncLock,
    TemplateDefaultsSource,
)
from scaffold_sync.sync.classifier import DEFAULT_RULES, ClassifierRules
from scaffold_sync.sync.formats import parse_json, parse_yaml
from scaffold_sync.sync.models import (
    FileOutcome,
    MergeWarning,
    RiskLevel,
    SyncPhase,
    SyncResult,
    VersionCheck,
)
from scaffold_sync.sync.policy import DEFAULT_POLICY, FieldPolicyTable
from scaffold_sync.sync.restore import restore_from_backup
from scaffold_sync.sync.tree import Mapping, Scalar

logger = logging.getLogger(__name__)


class Deployer(Protocol):
    """Writes a template set into a project."""

    def deploy(
        self, template_set: Any, project_root: Path
    ) -> Iterable[str] | None:
        """Deploy *template_set*; raise on failure.

        Returns the project-relative POSIX paths written.  Only these are
        archived as the next run's merge base; ``None`` archives nothing.
        """
        ...  # pragma: no cover


class VersionSource(Protocol):
    """Reports the version of the template about to be deployed."""

    def current_template_version(self) -> str:
        ...  # pragma: no cover


@dataclass(frozen=True)
class Dependencies:
    """Collaborators and tables for a sync run.

    Attributes:
        deployer: Writes the new template.
        version_source: Reports the incoming template version.
        template_set: Opaque template handle passed to ``deployer.deploy``.
        settings: Sync settings.
        field_policy: Field policies for structured merges.
        classifier_rules: File classification rules.
        defaults_source: Base tier source; defaults to the project's
            ``DefaultsArchive``.
        clock: Local time source used for snapshot names.
    """

    deployer: Deployer
    version_source: VersionSource
    template_set: Any = None
    settings: SyncSettings = field(default_factory=SyncSettings)
    field_policy: FieldPolicyTable = DEFAULT_POLICY
    classifier_rules: ClassifierRules = DEFAULT_RULES
    defaults_source: TemplateDefaultsSource | None = None
    clock: Callable[[], datetime] = datetime.now

    @classmethod
    def from_settings(
        cls,
        settings: SyncSettings,
        deployer: Deployer,
        version_source: VersionSource,
        template_set: Any = None,
        **kwargs: Any,
    ) -> Dependencies:
        """Build dependencies whose merge tables come from *settings*."""
        return cls(
            deployer=deployer,
            version_source=version_source,
            template_set=template_set,
            settings=settings,
            field_policy=FieldPolicyTable.from_system_fields(
                settings.system_fields, settings.section_policies
            ),
            classifier_rules=ClassifierRules.from_settings(settings),
            **kwargs,
        )


# ---------------------------------------------------------------------------
# Version check
# ---------------------------------------------------------------------------


def _lookup(tree: Mapping, dotted_key: str) -> Scalar | Mapping | None:
    node: Any = tree
    for part in dotted_key.split("."):
        if not isinstance(node, Mapping):
            return None
        node = node.get(part)
        if node is None:
            return None
    return node


def read_template_version(
    project_root: Path, settings: SyncSettings | None = None
) -> VersionCheck:
    """Read the template version recorded in the project's configuration.

    A missing file or key yields ``"0.0.0"``.  An unreadable, oversized or
    malformed file yields ``"0.0.0"`` with ``error`` set; the caller treats
    that as a version mismatch.
    """
    settings = settings or SyncSettings()
    path = project_root / settings.config_dir / settings.version_file
    if not path.is_file():
        return VersionCheck()

    try:
        text, _ = decode_text(read_bounded_bytes(path, settings.max_config_size))
        if path.suffix.lower() == ".json":
            tree = parse_json(text, str(path), settings.max_config_size)
        else:
            tree = parse_yaml(text, str(path), settings.max_config_size)
    except (OSError, ConfigTooLargeError, ParseError) as exc:
        logger.warning("Cannot read template version from %s: %s", path, exc)
        return VersionCheck(error=str(exc))

    node = _lookup(tree, settings.version_key)
    if node is None:
        return VersionCheck()
    if not isinstance(node, Scalar) or node.value is None:
        return VersionCheck(
            error=f"{settings.version_key} in {path} is not a version string"
        )
    return VersionCheck(version=node.text)


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SyncOrchestrator:
    """Run template syncs with a fixed set of dependencies."""

    def __init__(self, deps: Dependencies) -> None:
        self.deps = deps

    def sync(
        self,
        project_root: Path,
        force: bool = False,
        retain_count: int | None = None,
    ) -> SyncResult:
        """Upgrade *project_root* to the incoming template.

        Args:
            project_root: The project directory.
            force: Run even when the recorded version matches.
            retain_count: Snapshots to keep; defaults to
                ``settings.retain_count``.

        Returns:
            ``SyncResult`` describing the run.

        Raises:
            InvalidSettingError: *retain_count* is negative.
            ConfigRootNotADirectoryError: Configuration root is a file.
            BackupError: The snapshot could not be written.
            DeployError: The deployer failed (the snapshot is kept).
            SyncLockedError: Another sync holds the project lock.
        """
        deps = self.deps
        settings = deps.settings
        keep = retain_count if retain_count is not None else settings.retain_count
        if keep < 0:
            raise InvalidSettingError(f"retain count must be >= 0, got {keep}")
        started_at = _now()
        warnings: list[MergeWarning] = []

        logger.info("Sync phase: %s", SyncPhase.VERSION_CHECK.value)
        check = read_template_version(project_root, settings)
        to_version = deps.version_source.current_template_version()
        from_version = None
        if check.error is not None:
            warnings.append(
                MergeWarning(
                    path=f"{settings.config_dir}/{settings.version_file}",
                    message=check.error,
                    category="version_check",
                )
            )
        else:
            from_version = check.version

        if from_version == to_version and not force:
            logger.info("Template version %s unchanged, skipping sync", to_version)
            return SyncResult(
                ran=False,
                phase=SyncPhase.SKIPPED,
                skipped_reason="template version unchanged",
                from_version=from_version,
                to_version=to_version,
                warnings=warnings,
                started_at=started_at,
                completed_at=_now(),
            )

        manager = BackupManager(project_root, settings, deps.clock)
        archive = DefaultsArchive(manager.backup_root)
        # No config tree, no snapshot: the backup directory is not created.
        lock = (
            SyncLock(manager.backup_root / LOCK_FILE)
            if settings.lock and manager.config_root.exists()
            else nullcontext()
        )

        with lock:
            logger.info("Sync phase: %s", SyncPhase.BACKUP.value)
            backup_path = manager.backup(
                defaults_source=deps.defaults_source or archive
            )

            logger.info(
                "Sync phase: %s (%s -> %s)",
                SyncPhase.DEPLOY.value,
                from_version or "?",
                to_version,
            )
            try:
                written = deps.deployer.deploy(deps.template_set, project_root)
            except Exception as exc:
                logger.error("Deploy failed, backup kept at %s: %s", backup_path or "-", exc)
                raise DeployError(str(exc), backup_path) from exc
            self._archive_defaults(manager, archive, written)

            logger.info("Sync phase: %s", SyncPhase.RESTORE.value)
            files: list[FileOutcome] = []
            risk_level = RiskLevel.LOW
            if backup_path:
                report = restore_from_backup(
                    Path(backup_path),
                    manager,
                    deps.field_policy,
                    deps.classifier_rules,
                )
                files = report.files
                warnings.extend(report.warnings)
                risk_level = report.risk_level

            logger.info("Sync phase: %s", SyncPhase.PRUNE.value)
            deleted = manager.prune(keep)

        result = SyncResult(
            ran=True,
            phase=SyncPhase.DONE,
            backup_path=backup_path,
            from_version=from_version,
            to_version=to_version,
            files=files,
            warnings=warnings,
            deleted_backups=deleted,
            started_at=started_at,
            completed_at=_now(),
            risk_level=risk_level,
        )
        logger.info(
            "Sync done: %d merged, %d restored, %d warning(s), %d backup(s) pruned",
            result.merged_count,
            result.restored_count,
            result.warning_count,
            deleted,
        )
        return result

    def _archive_defaults(
        self,
        manager: BackupManager,
        archive: DefaultsArchive,
        written: Iterable[str] | None,
    ) -> None:
        """Keep the files the deployer wrote as the next run's merge base.

        Only paths inside the configuration tree or listed as extra files
        are archived.  Files the project authored itself never become a
        base.
        """
        extras = manager.extra_files()
        defaults: dict[str, Path] = {}
        for rel in written or ():
            item = PurePosixPath(rel)
            source = manager.project_root / item
            if not source.is_file():
                continue
            if item.is_relative_to(manager.config_prefix) or str(item) in extras:
                defaults[str(manager.snapshot_relpath(str(item)))] = source
        try:
            archive.record(defaults)
        except OSError as exc:
            logger.warning(
                "Could not archive template defaults, next sync will use "
                "two-way merges: %s",
                exc,
            )


def sync(
    project_root: Path,
    deps: Dependencies,
    force: bool = False,
    retain_count: int | None = None,
) -> SyncResult:
    """Run one sync of *project_root* with *deps*."""
    return SyncOrchestrator(deps).sync(project_root, force, retain_count)
