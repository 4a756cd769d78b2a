"""File classification: overwrite risk and merge strategy per path.

Classification is a pure function of the path's base name/extension and
whether the file existed before deployment.  It never touches the file
system (``analyze`` only checks existence) and never raises.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path, PurePath

from scaffold_sync.config_schema import SyncSettings
from scaffold_sync.sync.models import (
    FileClassification,
    MergeAnalysis,
    MergeStrategy,
    RiskLevel,
)


@dataclass(frozen=True)
class ClassifierRules:
    """Base-name sets driving classification.

    All names are matched case-sensitively against the file's base name,
    at any depth in the tree.
    """

    high_risk_files: frozenset[str] = frozenset({"CLAUDE.md", "settings.json"})
    section_merge_files: frozenset[str] = frozenset({"CLAUDE.md"})
    entry_merge_files: frozenset[str] = frozenset({".gitignore"})

    @classmethod
    def from_settings(cls, settings: SyncSettings) -> ClassifierRules:
        return cls(
            high_risk_files=frozenset(settings.high_risk_files),
            section_merge_files=frozenset(settings.section_merge_files),
            entry_merge_files=frozenset(settings.entry_merge_files),
        )


DEFAULT_RULES = ClassifierRules()

_YAML_SUFFIXES = (".yaml", ".yml")


def classify_risk(
    path: str | PurePath,
    exists_before: bool,
    rules: ClassifierRules = DEFAULT_RULES,
) -> RiskLevel:
    """Return the overwrite risk for *path*."""
    if PurePath(path).name in rules.high_risk_files:
        return RiskLevel.HIGH
    if not exists_before:
        return RiskLevel.LOW
    return RiskLevel.MEDIUM


def determine_strategy(
    path: str | PurePath, rules: ClassifierRules = DEFAULT_RULES
) -> MergeStrategy:
    """Select the merge strategy from the base name and extension.

    Priority: anchored documents, ignore files, JSON, YAML, then plain
    line merge for everything else.  YAML always maps to ``YAML_DEEP``;
    see ``select_strategy`` for the three-way upgrade.
    """
    pure = PurePath(path)
    name = pure.name
    suffix = pure.suffix.lower()

    if name in rules.section_merge_files:
        return MergeStrategy.SECTION_MERGE
    if name in rules.entry_merge_files:
        return MergeStrategy.ENTRY_MERGE
    if suffix == ".json":
        return MergeStrategy.JSON_MERGE
    if suffix in _YAML_SUFFIXES:
        return MergeStrategy.YAML_DEEP
    return MergeStrategy.LINE_MERGE


def classify(
    path: str | PurePath,
    exists_before: bool,
    rules: ClassifierRules = DEFAULT_RULES,
) -> FileClassification:
    """Classify *path* into a risk level and merge strategy."""
    return FileClassification(
        path=str(path),
        risk=classify_risk(path, exists_before, rules),
        strategy=determine_strategy(path, rules),
    )


def select_strategy(
    path: str | PurePath,
    has_base: bool,
    rules: ClassifierRules = DEFAULT_RULES,
) -> MergeStrategy:
    """Like ``determine_strategy`` but upgrades YAML to three-way merge
    when a template-defaults base file is available."""
    strategy = determine_strategy(path, rules)
    if strategy is MergeStrategy.YAML_DEEP and has_base:
        return MergeStrategy.YAML_3WAY
    return strategy


def highest_risk(levels: Iterable[RiskLevel]) -> RiskLevel:
    """Return the most severe of *levels* (``LOW`` when empty)."""
    return max(levels, key=lambda level: level.rank, default=RiskLevel.LOW)


def analyze(
    paths: Iterable[str],
    project_root: Path,
    rules: ClassifierRules = DEFAULT_RULES,
) -> MergeAnalysis:
    """Classify a batch of project-relative *paths*.

    Existence is checked against *project_root* so new files come out as
    low risk.  The overall risk is the highest of the individual ones.
    """
    files = [
        classify(path, (project_root / path).exists(), rules)
        for path in paths
    ]
    return MergeAnalysis(
        files=files,
        risk_level=highest_risk(f.risk for f in files),
    )
