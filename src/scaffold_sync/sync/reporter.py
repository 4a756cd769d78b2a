"""Sync result formatting functions.

Provides human-readable and machine-readable output for sync runs:

- ``format_sync_result`` -- full post-sync summary.
- ``format_analysis`` -- classification preview grouped by risk.
- ``result_to_json`` -- structured dict for JSON serialisation.
"""

from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import FileOutcome, MergeAnalysis, SyncResult

from .models import FileClassification, RiskLevel

# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def _outcome_line(outcome: FileOutcome) -> str:
    line = f"  {outcome.path}"
    if outcome.strategy is not None:
        line += f" ({outcome.strategy.value})"
    if outcome.error:
        line += f": {outcome.error}"
    return line


def format_sync_result(result: SyncResult) -> str:
    """Format a sync result as human-readable text.

    Sections are only included when they contain at least one entry.
    Unchanged paths are summarised by count only.

    Args:
        result: The completed sync result.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []

    if not result.ran:
        lines.append(
            f"Sync skipped: {result.skipped_reason or 'nothing to do'} "
            f"(template {result.to_version})"
        )
        for w in result.warnings:
            lines.append(f"  warning: {w.message}")
        return "\n".join(lines)

    lines.append(
        f"Template sync {result.from_version or 'unknown'} -> {result.to_version}"
    )
    lines.append(f"Started: {result.started_at}")
    if result.completed_at:
        lines.append(f"Completed: {result.completed_at}")
    if result.backup_path:
        lines.append(f"Backup: {result.backup_path}")
    lines.append("")

    lines.append(
        f"Processed {len(result.files)} files: "
        f"{result.merged_count} merged, {result.restored_count} restored, "
        f"{len(result.failed)} failed, {result.warning_count} warnings "
        f"(risk: {result.risk_level.value})"
    )
    lines.append("")

    if result.merged:
        lines.append("Merged:")
        lines.extend(_outcome_line(o) for o in result.merged)
        lines.append("")

    if result.restored:
        lines.append("Restored from backup:")
        lines.extend(_outcome_line(o) for o in result.restored)
        lines.append("")

    if result.failed:
        lines.append("Failed (deployed file kept):")
        lines.extend(_outcome_line(o) for o in result.failed)
        lines.append("")

    conflicts = [w for w in result.warnings if w.category == "conflict"]
    if conflicts:
        lines.append("Conflicts:")
        for w in conflicts:
            lines.append(f"  {w.path}: {w.message}")
        lines.append("")

    other = [w for w in result.warnings if w.category == "version_check"]
    if other:
        lines.append("Warnings:")
        for w in other:
            lines.append(f"  {w.path}: {w.message}")
        lines.append("")

    unchanged = len(result.unchanged)
    if unchanged > 0:
        lines.append(f"Unchanged: {unchanged} files")
    if result.deleted_backups > 0:
        lines.append(f"Pruned: {result.deleted_backups} old backups")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Classification preview
# ------------------------------------------------------------------


def format_analysis(analysis: MergeAnalysis) -> str:
    """Format a classification preview grouped by risk, highest first.

    Each path is shown as ``path (Strategy)``.
    """
    lines: list[str] = [f"Overall risk: {analysis.risk_level.value}", ""]

    groups: dict[RiskLevel, list[FileClassification]] = defaultdict(list)
    for fc in analysis.files:
        groups[fc.risk].append(fc)

    for level in (RiskLevel.HIGH, RiskLevel.MEDIUM, RiskLevel.LOW):
        if level not in groups:
            continue
        lines.append(f"[{level.value.upper()}]")
        for fc in groups[level]:
            lines.append(f"  {fc.path} ({fc.strategy.value})")
        lines.append("")

    if not analysis.files:
        lines.append("No files to merge.")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def result_to_json(result: SyncResult) -> dict:
    """Convert a sync result to a structured dict for JSON serialisation.

    Args:
        result: The sync result.

    Returns:
        Dict with run info, counts, per-file outcomes and warnings.
    """
    files_list = []
    for f in result.files:
        entry: dict = {"path": f.path, "action": f.action.value}
        if f.strategy is not None:
            entry["strategy"] = f.strategy.value
        if f.risk is not None:
            entry["risk"] = f.risk.value
        if f.error:
            entry["error"] = f.error
        files_list.append(entry)

    return {
        "ran": result.ran,
        "phase": result.phase.value,
        "skipped_reason": result.skipped_reason,
        "from_version": result.from_version,
        "to_version": result.to_version,
        "backup_path": result.backup_path,
        "risk_level": result.risk_level.value,
        "started_at": result.started_at,
        "completed_at": result.completed_at,
        "counts": {
            "total": len(result.files),
            "merged": result.merged_count,
            "restored": result.restored_count,
            "unchanged": len(result.unchanged),
            "failed": len(result.failed),
            "warnings": result.warning_count,
            "deleted_backups": result.deleted_backups,
        },
        "files": files_list,
        "warnings": [w.model_dump() for w in result.warnings],
    }
