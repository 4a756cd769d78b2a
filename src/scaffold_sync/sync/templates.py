"""Templates stored on disk as a project-shaped directory tree.

``TemplateDirectory`` implements both collaborator protocols the
orchestrator needs, so a template checked out next to the project can be
synced without any other glue::

    template = TemplateDirectory(Path("~/templates/default").expanduser())
    deps = Dependencies(deployer=template, version_source=template)
"""

from __future__ import annotations

import logging
from pathlib import Path

from scaffold_sync.config_schema import SyncSettings
from scaffold_sync.errors import ScaffoldSyncError
from scaffold_sync.file_handler import atomic_write_bytes
from scaffold_sync.sync.backup import iter_tree_files
from scaffold_sync.sync.orchestrator import read_template_version

logger = logging.getLogger(__name__)


class TemplateDirectory:
    """Deployer and version source backed by a directory.

    Args:
        root: Template directory, laid out like a project (configuration
            tree under ``settings.config_dir`` plus any extra files).
        settings: Locates the template's version file.
    """

    def __init__(self, root: Path, settings: SyncSettings | None = None) -> None:
        self.root = root
        self.settings = settings or SyncSettings()

    def current_template_version(self) -> str:
        """Version recorded in the template's own version file.

        Raises:
            ScaffoldSyncError: If the template has no usable version file.
        """
        check = read_template_version(self.root, self.settings)
        if check.error is not None:
            raise ScaffoldSyncError(f"template version unreadable: {check.error}")
        return check.version

    def deploy(self, template_set: Path | None, project_root: Path) -> list[str]:
        """Copy every template file over *project_root*.

        *template_set* selects another directory than ``root`` when given.
        Returns the project-relative POSIX paths written.
        """
        source = Path(template_set) if template_set is not None else self.root
        if not source.is_dir():
            raise ScaffoldSyncError(f"template directory not found: {source}")

        files, _ = iter_tree_files(source)
        files = [p for p in files if ".git" not in p.relative_to(source).parts]
        written: list[str] = []
        for path in files:
            rel = path.relative_to(source)
            atomic_write_bytes(project_root / rel, path.read_bytes())
            written.append(rel.as_posix())
        logger.info("Deployed %d template file(s) from %s", len(written), source)
        return written
