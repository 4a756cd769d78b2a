"""Error taxonomy for scaffold-sync.

Fatal errors derive from ``ScaffoldSyncError`` and propagate to the caller.
``MergeConflictWarning`` is the one non-fatal category: restore collects
one per affected file and returns them in ``SyncResult.warnings`` instead of
raising.
"""

from __future__ import annotations

DEFAULT_MAX_CONFIG_SIZE = 10 * 1024 * 1024


class ScaffoldSyncError(Exception):
    """Base class for all scaffold-sync errors."""


class ConfigTooLargeError(ScaffoldSyncError):
    """A structured file exceeds the parse size ceiling."""

    def __init__(self, path: str, size: int, limit: int) -> None:
        self.path = path
        self.size = size
        self.limit = limit
        super().__init__(
            f"config file too large: {path} is {size} bytes "
            f"(max: {limit})"
        )


class ParseError(ScaffoldSyncError):
    """A structured file could not be parsed."""

    def __init__(self, source: str, reason: str) -> None:
        self.source = source
        self.reason = reason
        super().__init__(f"cannot parse {source}: {reason}")


class InvalidSettingError(ScaffoldSyncError, ValueError):
    """A run option is out of range; raised before anything is written."""


class ConfigRootNotADirectoryError(ScaffoldSyncError, NotADirectoryError):
    """The configuration root exists but is not a directory."""


class BackupError(ScaffoldSyncError):
    """Creating a backup snapshot failed; nothing was written."""


class BackupCollisionError(BackupError):
    """A snapshot with the same timestamp already exists."""


class DeployError(ScaffoldSyncError):
    """The deployer failed to write the new template.

    The backup taken before deployment is kept on disk and its path is
    available as ``backup_path`` for manual recovery.
    """

    def __init__(self, message: str, backup_path: str = "") -> None:
        self.backup_path = backup_path
        super().__init__(message)


class SyncLockedError(ScaffoldSyncError):
    """Another sync currently holds the project lock."""


class MergeConflictWarning(UserWarning):
    """Non-fatal, per-file merge problem collected during restore."""
