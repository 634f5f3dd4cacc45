"""Command-line interface for bundle keeper."""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from .config import load_settings, save_settings
from .errors import BundleKeeperError
from .lifecycle import UnitManager
from .merger import BINARY_CONFLICT_LINE
from .models import Pool, Resolution
from .sources import format_source


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with one sub-command per operation."""
    parser = argparse.ArgumentParser(
        prog="bundle-keeper",
        description="Keep official, custom and merged versions of third-party code bundles.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s add my-skill --source github:owner/repo
  %(prog)s check
  %(prog)s download my-skill
  %(prog)s merge my-skill
  %(prog)s resolve my-skill --file README.md --use upstream
        """
    )
    parser.add_argument(
        "--home",
        type=Path,
        default=None,
        help="Data directory (default: $BUNDLE_KEEPER_HOME or ~/.bundle-keeper)"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    add = sub.add_parser("add", help="Register a new unit to manage")
    add.add_argument("name")
    add.add_argument("--source", "-s", required=True,
                     help="github:owner/repo, git:<url> or dir:<path>")
    add.add_argument("--version", dest="version_id", default=None,
                     help="Version to download (default: latest)")

    sub.add_parser("list", aliases=["ls"], help="List all managed units")

    info = sub.add_parser("info", help="Show detailed information about a unit")
    info.add_argument("name")

    remove = sub.add_parser("remove", help="Remove a unit from management")
    remove.add_argument("name")
    remove.add_argument("--yes", "-y", action="store_true", help="Do not ask for confirmation")
    remove.add_argument("--keep-files", action="store_true", help="Keep the snapshot directories")

    check = sub.add_parser("check", help="Check for updates")
    check.add_argument("name", nargs="?")
    check.add_argument("--refresh", action="store_true", help="Ignore the version cache")

    download = sub.add_parser("download", help="Download the pending version without activating it")
    download.add_argument("name")

    versions = sub.add_parser("versions", help="List all local versions of a unit")
    versions.add_argument("name")

    switch = sub.add_parser("switch", help="Switch to a specific version")
    switch.add_argument("name")
    switch.add_argument("--version", dest="version_id", required=True)
    switch.add_argument("--type", dest="pool", choices=[p.value for p in Pool],
                        default=Pool.OFFICIAL.value)

    rollback = sub.add_parser("rollback", help="Roll back to the previous version")
    rollback.add_argument("name")

    fork = sub.add_parser("fork", help="Create a custom branch for local modifications")
    fork.add_argument("name")

    save = sub.add_parser("save", help="Record a description of your custom modifications")
    save.add_argument("name")
    save.add_argument("--comment", "-c", required=True)

    merge = sub.add_parser("merge", help="Merge the pending version with your custom changes")
    merge.add_argument("name")

    conflicts = sub.add_parser("conflicts", help="View merge conflicts")
    conflicts.add_argument("name")
    conflicts.add_argument("--merged", dest="merged_version", default=None)

    resolve = sub.add_parser("resolve", help="Resolve every conflict in one file")
    resolve.add_argument("name")
    resolve.add_argument("--file", "-f", required=True)
    resolve.add_argument("--use", "-u", dest="choice", required=True,
                         choices=[r.value for r in Resolution])
    resolve.add_argument("--merged", dest="merged_version", default=None)

    confirm = sub.add_parser("confirm", help="Accept the active version and clear the pending update")
    confirm.add_argument("name")
    confirm.add_argument("--yes", "-y", action="store_true", help="Do not ask for confirmation")
    confirm.add_argument("--force", action="store_true", help="Confirm despite unresolved conflicts")
    confirm.add_argument("--cleanup", action="store_true", help="Remove old versions afterwards")

    cleanup = sub.add_parser("cleanup", help="Remove old versions")
    cleanup.add_argument("name")
    cleanup.add_argument("--keep", "-k", type=int, default=None,
                         help="Versions to keep per pool (default: from config)")

    config = sub.add_parser("config", help="Show or change settings")
    config.add_argument("--cache-days", type=int, default=None)
    config.add_argument("--keep", type=int, default=None)
    config.add_argument("--allow-critical", action="store_true",
                        help="Warn instead of rejecting CRITICAL scan results")

    diff = sub.add_parser("diff", help="Show custom changes against the official base")
    diff.add_argument("name")

    return parser


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    return build_parser().parse_args(argv)


def confirm_prompt(message: str) -> bool:
    response = input(f"{message} (y/N): ").strip().lower()
    return response == 'y'


def cmd_add(manager: UnitManager, args: argparse.Namespace) -> int:
    unit = manager.add_unit(args.name, args.source, args.version_id)
    print(f"Added {unit.name} ({unit.official_version})")
    return 0


def cmd_list(manager: UnitManager, args: argparse.Namespace) -> int:
    units = manager.list_units()
    if not units:
        print('No units registered. Use "add" to register one.')
        return 0

    print("\nManaged units:\n")
    for unit in units:
        badges = ""
        if unit.has_custom_changes:
            badges += " [custom]"
        if unit.pending:
            badges += f" -> {unit.pending.version} available"
        print(f"  * {unit.name}{badges}")
        print(f"    Version: {unit.active_version} ({unit.active_pool.value})")
        print(f"    Source: {format_source(unit.source)}")
        print(f"    Last checked: {unit.last_checked or 'never'}")
        print()
    return 0


def cmd_info(manager: UnitManager, args: argparse.Namespace) -> int:
    unit = manager.get_unit(args.name)
    if unit is None:
        print(f"Unit not found: {args.name}")
        return 1

    print(f"\n{unit.name}")
    print("-" * 40)
    print(f"Source:          {format_source(unit.source)}")
    print(f"Official Ver:    {unit.official_version}")
    print(f"Active Ver:      {unit.active_version} ({unit.active_pool.value})")
    print(f"Custom Changes:  {'Yes' if unit.has_custom_changes else 'No'}")
    if unit.has_custom_changes:
        print(f"Custom Base:     {unit.custom_base}")
        for change in unit.custom_changes:
            print(f"  - {change.date}: {change.comment}")
    if unit.pending:
        print("\nPending Update:")
        print(f"  Version:    {unit.pending.version}")
        print(f"  State:      {unit.pending.state.value}")
        if unit.pending.merged_version:
            print(f"  Merged as:  {unit.pending.merged_version}")
    print(f"\nLast Checked: {unit.last_checked or 'never'}")
    print(f"Created:      {unit.created_at}")
    return 0


def cmd_remove(manager: UnitManager, args: argparse.Namespace) -> int:
    if manager.get_unit(args.name) is None:
        print(f"Unit not found: {args.name}")
        return 1
    if not args.yes and not confirm_prompt(f'Remove "{args.name}"?'):
        print("Aborted.")
        return 0
    manager.remove_unit(args.name, delete_files=not args.keep_files)
    print(f"Removed {args.name}")
    return 0


def cmd_check(manager: UnitManager, args: argparse.Namespace) -> int:
    context = manager.fetch_context(force_refresh=args.refresh)
    if args.name:
        result = manager.check_update(args.name, context)
        if result is None:
            print(f"Could not check {args.name}")
            return 1
        if result.has_update:
            print(f"{result.unit}: {result.current_version} -> {result.latest_version}")
            if result.has_custom_changes:
                print('  You have custom changes. Use "merge" after downloading.')
        else:
            print(f"{result.unit} is up to date ({result.current_version})")
        return 0

    updates = [r for r in manager.check_all(context) if r.has_update]
    if not updates:
        print("All units are up to date!")
        return 0
    print(f"\n{len(updates)} update(s) available:\n")
    for result in updates:
        print(f"  * {result.unit}: {result.current_version} -> {result.latest_version}")
        if result.has_custom_changes:
            print('      Has custom changes - use "merge"')
    return 0


def cmd_download(manager: UnitManager, args: argparse.Namespace) -> int:
    snapshot = manager.download(args.name)
    print(f"Downloaded {snapshot.version} (active version unchanged)")
    return 0


def cmd_versions(manager: UnitManager, args: argparse.Namespace) -> int:
    snapshots = manager.versions(args.name)
    if not snapshots:
        print("No versions found")
        return 0

    print(f"\nVersions for {args.name}:\n")
    for snapshot in snapshots:
        marker = " <- active" if snapshot.is_active else ""
        print(f"  [{snapshot.pool.value}] {snapshot.version}{marker}")
        print(f"    Created: {snapshot.created_at}")
    return 0


def cmd_switch(manager: UnitManager, args: argparse.Namespace) -> int:
    snapshot = manager.switch_to(args.name, args.pool, args.version_id)
    print(f"Switched to {snapshot.version} ({snapshot.pool.value})")
    return 0


def cmd_rollback(manager: UnitManager, args: argparse.Namespace) -> int:
    snapshot = manager.rollback(args.name)
    print(f"Rolled back to {snapshot.version} ({snapshot.pool.value})")
    return 0


def cmd_fork(manager: UnitManager, args: argparse.Namespace) -> int:
    snapshot = manager.fork(args.name)
    print(f"Created custom branch: {snapshot.version}")
    print(f"Edit the files in {snapshot.path}, then record them with \"save\".")
    return 0


def cmd_save(manager: UnitManager, args: argparse.Namespace) -> int:
    change = manager.save(args.name, args.comment)
    print(f"Saved: {change.comment}")
    return 0


def cmd_merge(manager: UnitManager, args: argparse.Namespace) -> int:
    result = manager.merge(args.name)
    if result.success:
        print(f"\nMerge successful! Created {result.merged_version}")
    else:
        count = len(result.conflicts) + len(result.binary_conflicts)
        print(f"\nMerge created {result.merged_version} with {count} conflict(s)")
        print('Run "conflicts" to view them and "resolve" to settle them.')
    print(f"  Added files: {len(result.added_files)}")
    print(f"  Modified files: {len(result.modified_files)}")
    print(f"  Deleted files: {len(result.deleted_files)}")
    for path in result.kept_local:
        print(f"  Kept local edit of file deleted upstream: {path}")
    for path in result.kept_upstream:
        print(f"  Restored file deleted locally but changed upstream: {path}")
    for path in result.binary_conflicts:
        print(f"  Binary file changed on both sides, local kept until resolved: {path}")
    return 0


def cmd_conflicts(manager: UnitManager, args: argparse.Namespace) -> int:
    conflicts = manager.get_conflicts(args.name, args.merged_version)
    if not conflicts:
        print("No conflicts found")
        return 0

    print(f"\n{len(conflicts)} conflict(s) found:\n")
    for i, conflict in enumerate(conflicts, start=1):
        if conflict.line_number == BINARY_CONFLICT_LINE:
            print(f"  {i}. {conflict.file} (binary, use upstream or local)")
        else:
            print(f"  {i}. {conflict.file} (line {conflict.line_number})")
    print('\nUse "resolve <name> --file <file> --use <upstream|local|both>" to resolve.')
    return 0


def cmd_resolve(manager: UnitManager, args: argparse.Namespace) -> int:
    count = manager.resolve_conflict(args.name, args.file, args.choice, args.merged_version)
    if count == 0:
        print(f"No conflicts in {args.file}")
        return 1
    print(f"Resolved {count} conflict(s) in {args.file} using {args.choice}")
    return 0


def cmd_confirm(manager: UnitManager, args: argparse.Namespace) -> int:
    unit = manager.get_unit(args.name)
    if unit is None:
        print(f"Unit not found: {args.name}")
        return 1

    print(f"\nConfirming version for {unit.name}:")
    print(f"  Current: {unit.active_version} ({unit.active_pool.value})")
    if unit.pending:
        print(f"  Pending: {unit.pending.version}")
    if not args.yes and not confirm_prompt(f"Confirm {unit.active_version} as the active version?"):
        print("Cancelled")
        return 0

    unit = manager.confirm(args.name, force=args.force)
    print(f"\nConfirmed {unit.active_version} (official version: {unit.official_version})")
    if args.cleanup:
        removed = manager.cleanup(args.name)
        print(f"Removed {len(removed)} old version(s)")
    return 0


def cmd_cleanup(manager: UnitManager, args: argparse.Namespace) -> int:
    removed = manager.cleanup(args.name, args.keep)
    print(f"Removed {len(removed)} old version(s)")
    return 0


def cmd_config(manager: UnitManager, args: argparse.Namespace) -> int:
    settings = manager.settings
    changed = False
    if args.cache_days is not None:
        settings.cache_days = max(1, min(30, args.cache_days))
        changed = True
    if args.keep is not None:
        settings.keep_per_pool = max(0, args.keep)
        changed = True
    if args.allow_critical:
        settings.auto_reject_critical = False
        changed = True
    if changed:
        save_settings(settings)
        print("Configuration saved")

    print("\nCurrent configuration:\n")
    print(f"  Data Dir:       {settings.data_dir}")
    print(f"  Cache Days:     {settings.cache_days}")
    print(f"  Keep Per Pool:  {settings.keep_per_pool}")
    print(f"  Reject CRITICAL: {'Yes' if settings.auto_reject_critical else 'No'}")
    return 0


def cmd_diff(manager: UnitManager, args: argparse.Namespace) -> int:
    diff = manager.diff_custom(args.name)
    if diff.is_empty:
        print("No custom changes")
        return 0
    for path in diff.added:
        print(f"  + {path}")
    for path in diff.changed:
        print(f"  ~ {path}")
    for path in diff.removed:
        print(f"  - {path}")
    return 0


COMMANDS = {
    "add": cmd_add,
    "list": cmd_list,
    "ls": cmd_list,
    "info": cmd_info,
    "remove": cmd_remove,
    "check": cmd_check,
    "download": cmd_download,
    "versions": cmd_versions,
    "switch": cmd_switch,
    "rollback": cmd_rollback,
    "fork": cmd_fork,
    "save": cmd_save,
    "merge": cmd_merge,
    "conflicts": cmd_conflicts,
    "resolve": cmd_resolve,
    "confirm": cmd_confirm,
    "cleanup": cmd_cleanup,
    "config": cmd_config,
    "diff": cmd_diff,
}


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s: %(message)s"
    )

    settings = load_settings(args.home)
    settings.show_progress = sys.stderr.isatty()
    manager = UnitManager(settings)
    try:
        return COMMANDS[args.command](manager, args)
    except BundleKeeperError as e:
        print(f"Error: {e}")
        return 1
    except KeyboardInterrupt:
        print("\n\nInterrupted!")
        return 1
    finally:
        manager.close()
