"""Tests for sync/orchestrator.py: the end-to-end sync flow.

Uses in-memory fakes for the deployer and version source; every test runs
against a temporary project directory.
"""

from __future__ import annotations

import os
from pathlib import Path

import pytest
import yaml

from scaffold_sync.config_schema import SyncSettings
from scaffold_sync.errors import (
    ConfigRootNotADirectoryError,
    DeployError,
    InvalidSettingError,
    SyncLockedError,
)
from scaffold_sync.sync.backup import DefaultsArchive
from scaffold_sync.sync.models import SyncPhase
from scaffold_sync.sync.orchestrator import (
    Dependencies,
    SyncOrchestrator,
    read_template_version,
    sync,
)
from scaffold_sync.sync.policy import FieldPolicy

from conftest import CONFIG_DIR, FakeDeployer, FakeVersionSource, write

SYSTEM = f"{CONFIG_DIR}/sections/system.yaml"
APP = f"{CONFIG_DIR}/sections/app.yaml"


def system_yaml(version: str) -> str:
    return f"system:\n  template_version: {version}\n"


class RemovingDeployer(FakeDeployer):
    """Deployer whose template no longer ships some files."""

    def __init__(self, files: dict[str, str], removed: list[str]) -> None:
        super().__init__(files)
        self.removed = removed

    def deploy(self, template_set, project_root: Path) -> list[str]:
        written = super().deploy(template_set, project_root)
        for rel in self.removed:
            (project_root / rel).unlink()
        return [rel for rel in written if rel not in self.removed]


def make_deps(deployer, version: str, clock, **kwargs) -> Dependencies:
    return Dependencies(
        deployer=deployer,
        version_source=FakeVersionSource(version),
        template_set="default",
        clock=clock,
        **kwargs,
    )


@pytest.fixture
def installed(project: Path) -> Path:
    """A project installed from template 1.0.0 with one user edit."""
    write(project, SYSTEM, system_yaml("1.0.0"))
    write(project, APP, "app:\n  name: mine\n  mode: fast\n")
    return project


# ---------------------------------------------------------------------------
# Version check
# ---------------------------------------------------------------------------


class TestReadTemplateVersion:
    def test_reads_dotted_key(self, installed: Path):
        check = read_template_version(installed)
        assert check.version == "1.0.0"
        assert check.error is None

    def test_missing_file(self, project: Path):
        assert read_template_version(project).version == "0.0.0"

    def test_missing_key(self, project: Path):
        write(project, SYSTEM, "system:\n  other: 1\n")
        check = read_template_version(project)
        assert check.version == "0.0.0"
        assert check.error is None

    def test_malformed_file(self, project: Path):
        write(project, SYSTEM, "system: [unclosed\n")
        check = read_template_version(project)
        assert check.version == "0.0.0"
        assert "cannot parse" in check.error

    def test_oversized_file(self, project: Path):
        write(project, SYSTEM, system_yaml("1.0.0") + "# pad\n" * 100)
        check = read_template_version(project, SyncSettings(max_config_size=64))
        assert check.error is not None
        assert "too large" in check.error

    def test_non_scalar_value(self, project: Path):
        write(project, SYSTEM, "system:\n  template_version:\n    major: 1\n")
        assert read_template_version(project).error is not None

    def test_json_version_file(self, project: Path):
        write(project, f"{CONFIG_DIR}/meta.json", '{"meta": {"version": "4.2"}}')
        settings = SyncSettings(version_file="meta.json", version_key="meta.version")
        assert read_template_version(project, settings).version == "4.2"


# ---------------------------------------------------------------------------
# Skip / force
# ---------------------------------------------------------------------------


class TestSkip:
    def test_matching_version_skips(self, installed: Path, clock):
        deployer = FakeDeployer()
        result = sync(installed, make_deps(deployer, "1.0.0", clock))

        assert not result.ran
        assert result.phase is SyncPhase.SKIPPED
        assert result.from_version == "1.0.0"
        assert deployer.calls == []
        assert not (installed / ".scaffold-backups").exists()

    def test_force_runs_anyway(self, installed: Path, clock):
        deployer = FakeDeployer({SYSTEM: system_yaml("1.0.0")})
        result = sync(installed, make_deps(deployer, "1.0.0", clock), force=True)

        assert result.ran
        assert result.phase is SyncPhase.DONE
        assert deployer.calls == [("default", installed)]
        assert result.backup_path

    def test_unreadable_version_file_fails_open(self, installed: Path, clock):
        write(installed, SYSTEM, "system: [unclosed\n")
        deployer = FakeDeployer({SYSTEM: system_yaml("0.0.0")})

        result = sync(installed, make_deps(deployer, "0.0.0", clock))

        assert result.ran
        assert result.from_version is None
        assert result.warnings[0].category == "version_check"


# ---------------------------------------------------------------------------
# Full run
# ---------------------------------------------------------------------------


class TestFullSync:
    def test_user_edits_survive_upgrade(self, installed: Path, clock):
        deployer = FakeDeployer(
            {
                SYSTEM: system_yaml("2.0.0"),
                APP: "app:\n  name: template\n  mode: slow\n  color: blue\n",
            }
        )
        result = sync(installed, make_deps(deployer, "2.0.0", clock))

        assert result.ran
        assert result.phase is SyncPhase.DONE
        assert (result.from_version, result.to_version) == ("1.0.0", "2.0.0")
        assert yaml.safe_load((installed / APP).read_text()) == {
            "app": {"name": "mine", "mode": "fast", "color": "blue"}
        }
        assert yaml.safe_load((installed / SYSTEM).read_text()) == {
            "system": {"template_version": "2.0.0"}
        }
        assert APP in [f.path for f in result.merged]
        assert Path(result.backup_path).is_dir()
        assert result.completed_at is not None

    def test_pristine_template_archived(self, installed: Path, clock):
        template_app = "app:\n  name: template\n"
        deployer = FakeDeployer({SYSTEM: system_yaml("2.0.0"), APP: template_app})
        sync(installed, make_deps(deployer, "2.0.0", clock))

        archive = DefaultsArchive(installed / ".scaffold-backups")
        assert archive.files()["sections/app.yaml"] == template_app.encode()

    def test_only_deployed_files_archived(self, installed: Path, clock):
        write(installed, f"{CONFIG_DIR}/sections/custom.yaml", "custom: 1\n")
        write(installed, ".gitignore", "mine/\n")
        deployer = FakeDeployer(
            {SYSTEM: system_yaml("2.0.0"), "README.md": "readme\n", ".gitignore": "*.log\n"}
        )
        sync(installed, make_deps(deployer, "2.0.0", clock))

        archive = DefaultsArchive(installed / ".scaffold-backups")
        assert set(archive.files()) == {"sections/system.yaml", "_project/.gitignore"}
        assert archive.files()["_project/.gitignore"] == b"*.log\n"

    def test_user_file_later_shipped_by_template_keeps_user_keys(
        self, installed: Path, clock
    ):
        custom = f"{CONFIG_DIR}/sections/custom.yaml"
        write(installed, custom, "custom:\n  a: user\n  b: keep\n")
        v2 = FakeDeployer({SYSTEM: system_yaml("2.0.0")})
        sync(installed, make_deps(v2, "2.0.0", clock))

        v3 = FakeDeployer({SYSTEM: system_yaml("3.0.0"), custom: "custom:\n  a: template\n"})
        sync(installed, make_deps(v3, "3.0.0", clock))

        assert yaml.safe_load((installed / custom).read_text()) == {
            "custom": {"a": "user", "b": "keep"}
        }

    def test_line_file_keeps_template_lines_across_syncs(self, installed: Path, clock):
        hook = f"{CONFIG_DIR}/hooks/run.sh"
        v2 = FakeDeployer({SYSTEM: system_yaml("2.0.0"), hook: "echo a\necho b\n"})
        sync(installed, make_deps(v2, "2.0.0", clock))
        write(installed, hook, "echo a\n")

        v3 = FakeDeployer({SYSTEM: system_yaml("3.0.0"), hook: "echo a\necho b\n"})
        result = sync(installed, make_deps(v3, "3.0.0", clock))

        assert (installed / hook).read_text() == "echo a\necho b\n"
        assert result.warnings == []

    def test_second_sync_uses_three_way_merge(self, installed: Path, clock):
        """Removed template keys disappear once a base is available."""
        write(installed, APP, "app:\n  name: v1\n  legacy: x\n")
        v2 = FakeDeployer(
            {SYSTEM: system_yaml("2.0.0"), APP: "app:\n  name: v1\n  legacy: x\n"}
        )
        sync(installed, make_deps(v2, "2.0.0", clock))

        v3 = FakeDeployer({SYSTEM: system_yaml("3.0.0"), APP: "app:\n  name: v3\n"})
        result = sync(installed, make_deps(v3, "3.0.0", clock))

        assert yaml.safe_load((installed / APP).read_text()) == {"app": {"name": "v3"}}
        assert result.from_version == "2.0.0"
        assert result.warnings == []

    def test_file_removed_by_template_is_restored(self, installed: Path, clock):
        deployer = RemovingDeployer({SYSTEM: system_yaml("2.0.0")}, removed=[APP])
        result = sync(installed, make_deps(deployer, "2.0.0", clock))

        assert (installed / APP).read_text() == "app:\n  name: mine\n  mode: fast\n"
        assert [f.path for f in result.restored] == [APP]

    def test_fresh_project_without_config(self, project: Path, clock):
        deployer = FakeDeployer({SYSTEM: system_yaml("1.0.0")})
        result = sync(project, make_deps(deployer, "1.0.0", clock))

        assert result.ran
        assert result.backup_path == ""
        assert result.files == []
        assert (project / SYSTEM).exists()
        assert not (project / ".scaffold-backups" / ".sync.lock").exists()

    def test_fresh_project_without_template_config_leaves_no_backup_dir(
        self, project: Path, clock
    ):
        deployer = FakeDeployer({"README.md": "readme\n"})
        result = sync(project, make_deps(deployer, "1.0.0", clock))

        assert result.ran
        assert not (project / ".scaffold-backups").exists()

    def test_merge_failure_is_a_warning(self, installed: Path, clock):
        write(installed, APP, "app: [broken\n")
        deployer = FakeDeployer({SYSTEM: system_yaml("2.0.0"), APP: "app:\n  name: t\n"})

        result = sync(installed, make_deps(deployer, "2.0.0", clock))

        assert result.phase is SyncPhase.DONE
        assert [f.path for f in result.failed] == [APP]
        assert (installed / APP).read_text() == "app:\n  name: t\n"
        assert any(w.category == "merge_failed" for w in result.warnings)

    def test_retain_count_prunes(self, installed: Path, clock):
        for version in ("2.0.0", "3.0.0", "4.0.0"):
            deployer = FakeDeployer({SYSTEM: system_yaml(version)})
            result = sync(installed, make_deps(deployer, version, clock), retain_count=2)

        backups = sorted(
            p.name for p in (installed / ".scaffold-backups").iterdir()
            if p.name[0].isdigit()
        )
        assert len(backups) == 2
        assert result.deleted_backups == 1

    def test_settings_retain_count_default(self, installed: Path, clock):
        settings = SyncSettings(retain_count=1)
        for version in ("2.0.0", "3.0.0"):
            deployer = FakeDeployer({SYSTEM: system_yaml(version)})
            sync(installed, make_deps(deployer, version, clock, settings=settings))

        backups = [
            p for p in (installed / ".scaffold-backups").iterdir() if p.name[0].isdigit()
        ]
        assert len(backups) == 1


# ---------------------------------------------------------------------------
# Fatal errors
# ---------------------------------------------------------------------------


class TestFatalErrors:
    def test_deploy_error_keeps_backup(self, installed: Path, clock):
        cause = RuntimeError("template missing")
        deployer = FakeDeployer(error=cause)

        with pytest.raises(DeployError, match="template missing") as exc_info:
            sync(installed, make_deps(deployer, "2.0.0", clock))

        assert exc_info.value.__cause__ is cause
        backup = Path(exc_info.value.backup_path)
        assert (backup / "sections" / "app.yaml").exists()
        assert (installed / APP).read_text() == "app:\n  name: mine\n  mode: fast\n"

    def test_backup_error_aborts_before_deploy(self, project: Path, clock):
        write(project, CONFIG_DIR, "not a directory")
        deployer = FakeDeployer()

        with pytest.raises(ConfigRootNotADirectoryError):
            sync(project, make_deps(deployer, "2.0.0", clock))
        assert deployer.calls == []

    def test_negative_retain_count_rejected_before_any_write(self, installed: Path, clock):
        deployer = FakeDeployer({SYSTEM: system_yaml("2.0.0")})

        with pytest.raises(InvalidSettingError, match="retain count"):
            sync(installed, make_deps(deployer, "2.0.0", clock), retain_count=-1)

        assert deployer.calls == []
        assert not (installed / ".scaffold-backups").exists()
        assert (installed / SYSTEM).read_text() == system_yaml("1.0.0")

    def test_live_lock_blocks_sync(self, installed: Path, clock):
        write(installed, ".scaffold-backups/.sync.lock", f"{os.getpid()}\n")
        deployer = FakeDeployer()

        with pytest.raises(SyncLockedError):
            sync(installed, make_deps(deployer, "2.0.0", clock))
        assert deployer.calls == []

    def test_lock_disabled(self, installed: Path, clock):
        write(installed, ".scaffold-backups/.sync.lock", f"{os.getpid()}\n")
        deployer = FakeDeployer({SYSTEM: system_yaml("2.0.0")})
        deps = make_deps(deployer, "2.0.0", clock, settings=SyncSettings(lock=False))

        assert sync(installed, deps).ran

    def test_lock_released_after_run(self, installed: Path, clock):
        deployer = FakeDeployer({SYSTEM: system_yaml("2.0.0")})
        sync(installed, make_deps(deployer, "2.0.0", clock))
        assert not (installed / ".scaffold-backups" / ".sync.lock").exists()


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


class TestDependencies:
    def test_from_settings_builds_tables(self, clock):
        settings = SyncSettings(
            system_fields=["schema"],
            section_policies={"app": {"schema": "preserve_if_unchanged"}},
            high_risk_files=["AGENTS.md"],
        )
        deps = Dependencies.from_settings(
            settings, FakeDeployer(), FakeVersionSource("1"), clock=clock
        )
        assert deps.field_policy.policy("schema") is FieldPolicy.ALWAYS_NEW
        assert not deps.field_policy.for_file("app.yaml").is_system("schema")
        assert "AGENTS.md" in deps.classifier_rules.high_risk_files
        assert deps.clock is clock

    def test_orchestrator_reusable(self, installed: Path, clock):
        deployer = FakeDeployer({SYSTEM: system_yaml("2.0.0")})
        orchestrator = SyncOrchestrator(make_deps(deployer, "2.0.0", clock))

        assert orchestrator.sync(installed).ran
        assert not orchestrator.sync(installed).ran
