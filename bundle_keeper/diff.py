"""File-set comparison of snapshot trees."""

from pathlib import Path
from typing import Iterable

from .models import DiffResult, TreeDiff
from .scanner import scan_tree


def diff3(
    base: Path,
    upstream: Path,
    local: Path,
    skip_dirs: Iterable[str] = (),
    show_progress: bool = False
) -> DiffResult:
    """
    Classify every path of base and upstream relative to base.

    - added: in upstream only
    - deleted: in base only
    - conflicting: in all three trees, with upstream, local and base pairwise different
    - modified: upstream differs from base and the change is not conflicting
    - unchanged: upstream equals base

    Files are compared by whole content (size and xxhash); the buckets are
    disjoint and together cover base | upstream.
    """
    base_files, _ = scan_tree(base, skip_dirs, "Scanning base", show_progress=show_progress)
    upstream_files, _ = scan_tree(upstream, skip_dirs, "Scanning upstream",
                                  show_progress=show_progress)
    local_files, _ = scan_tree(local, skip_dirs, "Scanning local", show_progress=show_progress)

    result = DiffResult()
    for path in sorted(set(base_files) | set(upstream_files)):
        base_info = base_files.get(path)
        upstream_info = upstream_files.get(path)

        if base_info is None:
            result.added.append(path)
        elif upstream_info is None:
            result.deleted.append(path)
        elif upstream_info.same_content(base_info):
            result.unchanged.append(path)
        else:
            local_info = local_files.get(path)
            local_changed = local_info is not None and not local_info.same_content(base_info)
            if local_changed and not local_info.same_content(upstream_info):
                result.conflicting.append(path)
            else:
                result.modified.append(path)

    return result


def diff_trees(old: Path, new: Path, skip_dirs: Iterable[str] = ()) -> TreeDiff:
    """Two-way comparison of old and new."""
    old_files, _ = scan_tree(old, skip_dirs, "Scanning")
    new_files, _ = scan_tree(new, skip_dirs, "Scanning")

    result = TreeDiff()
    for path in sorted(set(old_files) | set(new_files)):
        if path not in old_files:
            result.added.append(path)
        elif path not in new_files:
            result.removed.append(path)
        elif not old_files[path].same_content(new_files[path]):
            result.changed.append(path)
    return result
