"""Shared pytest fixtures for scaffold-sync tests."""

from __future__ import annotations

from datetime import datetime, timedelta
from pathlib import Path

import pytest

CONFIG_DIR = ".scaffold/config"


def write(root: Path, rel: str, content: str) -> Path:
    """Write *content* to ``root/rel``, creating parent directories."""
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


class FakeDeployer:
    """Deployer that writes a fixed set of files, or raises *error*."""

    def __init__(
        self,
        files: dict[str, str] | None = None,
        error: Exception | None = None,
    ) -> None:
        self.files = files or {}
        self.error = error
        self.calls: list[tuple[object, Path]] = []

    def deploy(self, template_set, project_root: Path) -> list[str]:
        self.calls.append((template_set, project_root))
        if self.error is not None:
            raise self.error
        for rel, content in self.files.items():
            write(project_root, rel, content)
        return list(self.files)


class FakeVersionSource:
    def __init__(self, version: str) -> None:
        self.version = version

    def current_template_version(self) -> str:
        return self.version


class StepClock:
    """Clock returning successive times *step* seconds apart."""

    def __init__(
        self,
        start: datetime = datetime(2025, 1, 1, 12, 0, 0),
        step: int = 1,
    ) -> None:
        self.current = start
        self.step = timedelta(seconds=step)

    def __call__(self) -> datetime:
        now = self.current
        self.current += self.step
        return now


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    """Keep the user's real settings files and env vars out of tests."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.delenv("SCAFFOLD_SYNC_CONFIG", raising=False)
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    monkeypatch.delenv("LOG_FILE", raising=False)
    for suffix in (
        "CONFIG_DIR",
        "BACKUP_DIR",
        "RETAIN_COUNT",
        "BACKUP_COLLISION",
        "LOCK",
        "MAX_CONFIG_SIZE",
    ):
        monkeypatch.delenv(f"SCAFFOLD_SYNC_{suffix}", raising=False)


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """An empty project directory."""
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def clock() -> StepClock:
    return StepClock()
