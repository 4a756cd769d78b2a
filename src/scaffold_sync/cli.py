"""Command line entry point for scaffold-sync.

Usage:
    scaffold-sync update --template ~/templates/default
    scaffold-sync backups --prune 3
    scaffold-sync analyze
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

import yaml
from pydantic import ValidationError

from . import __version__
from .config import load_settings
from .config_loader import ensure_config
from .config_schema import UnifiedConfig
from .errors import DeployError, ScaffoldSyncError
from .logger import setup_logging
from .sync.backup import BackupManager, iter_tree_files
from .sync.classifier import ClassifierRules, analyze
from .sync.orchestrator import Dependencies, read_template_version, sync
from .sync.reporter import format_analysis, format_sync_result, result_to_json
from .sync.templates import TemplateDirectory

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_WARNINGS = 2


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------


def _cmd_update(args: argparse.Namespace, config: UnifiedConfig) -> int:
    settings = config.sync
    template = TemplateDirectory(Path(args.template).expanduser(), settings)
    deps = Dependencies.from_settings(
        settings,
        deployer=template,
        version_source=template,
        template_set=template.root,
    )

    try:
        result = sync(args.project, deps, force=args.force, retain_count=args.retain)
    except DeployError as exc:
        print(f"Deploy failed: {exc}", file=sys.stderr)
        if exc.backup_path:
            print(f"Your previous configuration is in {exc.backup_path}", file=sys.stderr)
        return EXIT_ERROR

    if args.json:
        print(json.dumps(result_to_json(result), indent=2))
    else:
        print(format_sync_result(result))
    return EXIT_WARNINGS if result.warning_count else EXIT_OK


def _cmd_backups(args: argparse.Namespace, config: UnifiedConfig) -> int:
    manager = BackupManager(args.project, config.sync)
    if args.prune is not None:
        deleted = manager.prune(args.prune)
        print(f"Pruned {deleted} backup(s)")

    names = manager.list_backups()
    if not names:
        print("No backups.")
    for name in names:
        metadata = manager.load_metadata(manager.backup_root / name)
        if metadata is None:
            print(f"{name}  (legacy)")
        else:
            print(f"{name}  {len(metadata.backed_up_items)} files  {metadata.description}")
    return EXIT_OK


def _cmd_analyze(args: argparse.Namespace, config: UnifiedConfig) -> int:
    manager = BackupManager(args.project, config.sync)
    paths: list[str] = []
    if manager.config_root.is_dir():
        files, _ = iter_tree_files(manager.config_root)
        paths = [
            str(manager.config_prefix / p.relative_to(manager.config_root).as_posix())
            for p in files
        ]
    paths.extend(manager.extra_files())

    result = analyze(paths, args.project, ClassifierRules.from_settings(config.sync))
    print(format_analysis(result))
    return EXIT_OK


def _cmd_version(args: argparse.Namespace, config: UnifiedConfig) -> int:
    check = read_template_version(args.project, config.sync)
    print(check.version)
    if check.error:
        print(f"warning: {check.error}", file=sys.stderr)
        return EXIT_WARNINGS
    return EXIT_OK


def _cmd_init_config(args: argparse.Namespace, config: UnifiedConfig) -> int:
    print(ensure_config(args.project))
    return EXIT_OK


_COMMANDS = {
    "update": _cmd_update,
    "backups": _cmd_backups,
    "analyze": _cmd_analyze,
    "version": _cmd_version,
    "init-config": _cmd_init_config,
}


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def _non_negative_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid int value: '{value}'") from None
    if number < 0:
        raise argparse.ArgumentTypeError(f"must be >= 0, got {number}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="scaffold-sync",
        description="Upgrade a project's template configuration while keeping local edits",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Sync to the template in ~/templates/default
  scaffold-sync update --template ~/templates/default

  # Re-run even though the recorded version already matches
  scaffold-sync update --template ~/templates/default --force

  # Keep only the three newest backups
  scaffold-sync backups --prune 3

Exit status: 0 success, 1 fatal error, 2 finished with warnings.
        """,
    )
    parser.add_argument(
        "--project",
        type=Path,
        default=Path("."),
        help="Project root (default: current directory)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging, including per-file merge diffs",
    )
    parser.add_argument("--log-file", help="Also write logs to this file")
    parser.add_argument(
        "--log-format",
        choices=["text", "json"],
        default=None,
        help="Log line format (default: from config, else text)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"scaffold-sync version {__version__}",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    update = sub.add_parser("update", help="Deploy a new template and merge local edits back")
    update.add_argument("--template", required=True, help="Template directory")
    update.add_argument("--force", action="store_true", help="Sync even if the version matches")
    update.add_argument("--retain", type=_non_negative_int, default=None,
                        help="Backups to keep after the run")
    update.add_argument("--json", action="store_true", help="Print the result as JSON")

    backups = sub.add_parser("backups", help="List backup snapshots")
    backups.add_argument("--prune", type=_non_negative_int, default=None, metavar="N",
                         help="Delete all but the N newest snapshots first")

    sub.add_parser("analyze", help="Preview merge risk and strategy per file")
    sub.add_parser("version", help="Print the recorded template version")
    sub.add_parser("init-config", help="Create a starter .scaffold_sync/config.yml")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = load_settings(args.project)
    except (ValidationError, yaml.YAMLError) as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return EXIT_ERROR

    setup_logging(
        mode="cli",
        debug=args.debug or config.logging.level.upper() == "DEBUG",
        log_file=args.log_file or config.logging.file,
        debug_format=args.log_format or config.logging.format,
    )

    try:
        return _COMMANDS[args.command](args, config)
    except ScaffoldSyncError as exc:
        logger.error("%s", exc)
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_ERROR
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return EXIT_ERROR


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
