"""Tests for sync reporter formatting functions.

Covers:
- format_sync_result with various outcome combinations
- Skipped runs produce a one-line summary
- format_analysis grouping by risk
- result_to_json structure and completeness
"""

from __future__ import annotations

import json

from scaffold_sync.sync.models import (
    FileAction,
    FileClassification,
    FileOutcome,
    MergeAnalysis,
    MergeStrategy,
    MergeWarning,
    RiskLevel,
    SyncPhase,
    SyncResult,
)
from scaffold_sync.sync.reporter import (
    format_analysis,
    format_sync_result,
    result_to_json,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _outcome(
    action: FileAction,
    path: str = ".scaffold/config/sections/app.yaml",
    strategy: MergeStrategy | None = MergeStrategy.YAML_DEEP,
    error: str | None = None,
) -> FileOutcome:
    return FileOutcome(
        path=path,
        action=action,
        strategy=strategy,
        risk=RiskLevel.MEDIUM,
        error=error,
    )


def _result(
    files: list[FileOutcome] | None = None,
    warnings: list[MergeWarning] | None = None,
    **kwargs,
) -> SyncResult:
    """Build a completed SyncResult with sensible defaults."""
    values = dict(
        ran=True,
        phase=SyncPhase.DONE,
        backup_path="/p/.scaffold-backups/20250101_120000",
        from_version="1.0.0",
        to_version="2.0.0",
        files=files or [],
        warnings=warnings or [],
        started_at="2025-01-01T12:00:00+00:00",
        completed_at="2025-01-01T12:00:05+00:00",
    )
    values.update(kwargs)
    return SyncResult(**values)


# ---------------------------------------------------------------------------
# format_sync_result
# ---------------------------------------------------------------------------


class TestFormatSyncResult:
    """Tests for format_sync_result."""

    def test_skipped_run(self):
        result = SyncResult(
            ran=False,
            phase=SyncPhase.SKIPPED,
            skipped_reason="template version unchanged",
            from_version="2.0.0",
            to_version="2.0.0",
            started_at="2025-01-01T12:00:00+00:00",
        )
        assert format_sync_result(result) == (
            "Sync skipped: template version unchanged (template 2.0.0)"
        )

    def test_header_and_summary(self):
        output = format_sync_result(
            _result([_outcome(FileAction.MERGED), _outcome(FileAction.UNCHANGED, path="b.yaml")])
        )
        assert output.startswith("Template sync 1.0.0 -> 2.0.0")
        assert "Backup: /p/.scaffold-backups/20250101_120000" in output
        assert "Processed 2 files: 1 merged, 0 restored, 0 failed, 0 warnings" in output
        assert "Unchanged: 1 files" in output

    def test_unknown_from_version(self):
        output = format_sync_result(_result(from_version=None))
        assert output.startswith("Template sync unknown -> 2.0.0")

    def test_sections_only_when_present(self):
        output = format_sync_result(_result([_outcome(FileAction.MERGED)]))
        assert "Merged:" in output
        assert "  .scaffold/config/sections/app.yaml (YAMLDeep)" in output
        assert "Restored from backup:" not in output
        assert "Failed" not in output
        assert "Conflicts:" not in output

    def test_restored_and_failed(self):
        output = format_sync_result(
            _result(
                [
                    _outcome(FileAction.RESTORED, path="a.yaml", strategy=None),
                    _outcome(FileAction.FAILED, path="b.yaml", error="cannot parse b.yaml"),
                ]
            )
        )
        assert "Restored from backup:\n  a.yaml" in output
        assert "Failed (deployed file kept):\n  b.yaml (YAMLDeep): cannot parse b.yaml" in output

    def test_conflicts_and_version_warnings(self):
        output = format_sync_result(
            _result(
                warnings=[
                    MergeWarning(path="a.yaml", message="both changed a", category="conflict"),
                    MergeWarning(
                        path=".scaffold/config/sections/system.yaml",
                        message="cannot parse",
                        category="version_check",
                    ),
                ]
            )
        )
        assert "Conflicts:\n  a.yaml: both changed a" in output
        assert "Warnings:\n  .scaffold/config/sections/system.yaml: cannot parse" in output

    def test_pruned_count(self):
        assert "Pruned: 3 old backups" in format_sync_result(_result(deleted_backups=3))

    def test_no_trailing_whitespace(self):
        output = format_sync_result(_result([_outcome(FileAction.MERGED)]))
        assert output == output.rstrip()


# ---------------------------------------------------------------------------
# format_analysis
# ---------------------------------------------------------------------------


class TestFormatAnalysis:
    """Tests for format_analysis."""

    def test_grouped_highest_first(self):
        analysis = MergeAnalysis(
            files=[
                FileClassification(path="a.yaml", risk=RiskLevel.MEDIUM, strategy=MergeStrategy.YAML_DEEP),
                FileClassification(path="CLAUDE.md", risk=RiskLevel.HIGH, strategy=MergeStrategy.SECTION_MERGE),
                FileClassification(path="new.txt", risk=RiskLevel.LOW, strategy=MergeStrategy.LINE_MERGE),
            ],
            risk_level=RiskLevel.HIGH,
        )
        output = format_analysis(analysis)

        assert output.splitlines()[0] == "Overall risk: high"
        assert output.index("[HIGH]") < output.index("[MEDIUM]") < output.index("[LOW]")
        assert "  CLAUDE.md (SectionMerge)" in output

    def test_empty(self):
        assert format_analysis(MergeAnalysis()) == "Overall risk: low\n\nNo files to merge."


# ---------------------------------------------------------------------------
# result_to_json
# ---------------------------------------------------------------------------


class TestResultToJson:
    """Tests for result_to_json."""

    def test_structure(self):
        result = _result(
            [
                _outcome(FileAction.MERGED),
                _outcome(FileAction.RESTORED, path="r.yaml", strategy=None),
                _outcome(FileAction.FAILED, path="f.yaml", error="boom"),
            ],
            warnings=[MergeWarning(path="f.yaml", message="boom")],
            deleted_backups=1,
            risk_level=RiskLevel.MEDIUM,
        )
        data = result_to_json(result)

        assert data["ran"] is True
        assert data["phase"] == "done"
        assert data["risk_level"] == "medium"
        assert data["counts"] == {
            "total": 3,
            "merged": 1,
            "restored": 1,
            "unchanged": 0,
            "failed": 1,
            "warnings": 1,
            "deleted_backups": 1,
        }
        assert data["files"][0] == {
            "path": ".scaffold/config/sections/app.yaml",
            "action": "merged",
            "strategy": "YAMLDeep",
            "risk": "medium",
        }
        assert "strategy" not in data["files"][1]
        assert data["files"][2]["error"] == "boom"
        assert data["warnings"] == [
            {"path": "f.yaml", "message": "boom", "category": "merge_failed"}
        ]

    def test_serialisable(self):
        text = json.dumps(result_to_json(_result([_outcome(FileAction.MERGED)])))
        assert json.loads(text)["to_version"] == "2.0.0"

    def test_skipped(self):
        result = SyncResult(
            ran=False,
            phase=SyncPhase.SKIPPED,
            skipped_reason="template version unchanged",
            to_version="2.0.0",
            started_at="2025-01-01T12:00:00+00:00",
        )
        data = result_to_json(result)
        assert data["ran"] is False
        assert data["phase"] == "skipped"
        assert data["skipped_reason"] == "template version unchanged"
        assert data["files"] == []
