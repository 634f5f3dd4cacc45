"""Core merge logic."""

import logging
import re
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from .db import RegistryDB
from .diff import diff3
from .errors import MergeMissingInputs, UnitNotFound
from .models import ConflictInfo, ConflictRegion, ManagedUnit, MergeResult, Pool
from .scanner import copy_tree
from .store import SnapshotStore

logger = logging.getLogger(__name__)

UPSTREAM_MARKER = "<<<<<<< UPSTREAM"
SEPARATOR = "======="
LOCAL_MARKER = ">>>>>>> LOCAL"

# Line number recorded for a binary file that changed on both sides
BINARY_CONFLICT_LINE = 0
BINARY_PLACEHOLDER = "<binary>"


@dataclass
class LineMerge:
    """Merged lines plus (output line number, upstream, local) per conflict."""
    lines: list[str]
    regions: list[tuple[int, str, str]] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "\n".join(self.lines)


def merge_lines(base: str, upstream: str, local: str) -> LineMerge:
    """
    Reconcile three texts line by line, by index.

    Shorter texts are padded with empty lines. At each index a local edit
    wins over base, an upstream edit is adopted when local is untouched, and
    two different edits produce a conflict block. Lines are not aligned, so
    an inserted or deleted line shifts every later comparison.
    """
    base_lines = base.split("\n")
    upstream_lines = upstream.split("\n")
    local_lines = local.split("\n")
    length = max(len(base_lines), len(upstream_lines), len(local_lines))
    for lines in (base_lines, upstream_lines, local_lines):
        lines.extend([""] * (length - len(lines)))

    merged = LineMerge(lines=[])
    for b, u, l in zip(base_lines, upstream_lines, local_lines):
        if u != b and l != b and u != l:
            merged.regions.append((len(merged.lines) + 1, u, l))
            merged.lines.extend([UPSTREAM_MARKER, u, SEPARATOR, l, LOCAL_MARKER])
        elif l != b:
            merged.lines.append(l)
        elif u != b:
            merged.lines.append(u)
        else:
            merged.lines.append(b)
    return merged


MERGED_VERSION_PATTERN = re.compile(r"^(?P<upstream>.+)-merged(?:-\d+)?$")


def upstream_version_of(merged_version: str) -> Optional[str]:
    """The upstream version a merged snapshot id was built from."""
    match = MERGED_VERSION_PATTERN.match(merged_version)
    return match.group("upstream") if match else None


def _decode(data: bytes) -> Optional[str]:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return None


def _read(path: Path) -> Optional[bytes]:
    return path.read_bytes() if path.is_file() else None


def _write(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


def _prune_empty_dirs(directory: Path, root: Path) -> None:
    while directory != root and directory.is_dir() and not any(directory.iterdir()):
        directory.rmdir()
        directory = directory.parent


class MergeEngine:
    """Builds merged snapshots from (customBase, pending upstream, custom)."""

    def __init__(
        self,
        db: RegistryDB,
        store: SnapshotStore,
        staging_dir: Path,
        skip_dirs: Iterable[str] = (),
        show_progress: bool = False
    ):
        self.db = db
        self.store = store
        self.staging_dir = Path(staging_dir)
        self.skip_dirs = tuple(skip_dirs)
        self.show_progress = show_progress

    def merge_inputs(self, unit: ManagedUnit) -> tuple[Path, Path, Path]:
        """Return the base, upstream and local trees or raise MergeMissingInputs."""
        missing = []
        if not unit.custom_base or not self.store.exists(unit.name, Pool.OFFICIAL, unit.custom_base):
            missing.append(f"merge base official/{unit.custom_base or '?'}")
        if unit.pending is None:
            missing.append("pending upstream version")
        elif not self.store.exists(unit.name, Pool.OFFICIAL, unit.pending.version):
            missing.append(f"upstream official/{unit.pending.version}")
        if not unit.custom_version or not self.store.exists(unit.name, Pool.CUSTOM, unit.custom_version):
            missing.append(f"custom/{unit.custom_version or '?'}")
        if missing:
            raise MergeMissingInputs(unit.name, missing)

        return (
            self.store.snapshot_path(unit.name, Pool.OFFICIAL, unit.custom_base),
            self.store.snapshot_path(unit.name, Pool.OFFICIAL, unit.pending.version),
            self.store.snapshot_path(unit.name, Pool.CUSTOM, unit.custom_version),
        )

    def next_merged_version(self, unit: str, upstream_version: str) -> str:
        candidate = f"{upstream_version}-merged"
        counter = 2
        while self.db.get_snapshot(unit, Pool.MERGED, candidate) is not None:
            candidate = f"{upstream_version}-merged-{counter}"
            counter += 1
        return candidate

    def merge(self, unit_name: str) -> MergeResult:
        """
        Merge the pending upstream version into the unit's custom branch.

        The output starts as a copy of the custom snapshot. Files upstream
        added are copied in, modified and conflicting files are reconciled
        line by line, and files upstream deleted are removed where local left
        them untouched. The tree is assembled in the staging directory and
        only registered as a new merged snapshot once complete.
        """
        unit = self.db.get_unit(unit_name)
        if unit is None:
            raise UnitNotFound(unit_name)
        base_dir, upstream_dir, local_dir = self.merge_inputs(unit)
        merged_version = self.next_merged_version(unit.name, unit.pending.version)

        self.staging_dir.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=f"merge-{unit.name}-", dir=self.staging_dir))
        output = staging / "tree"
        regions: list[ConflictRegion] = []
        try:
            copy_tree(local_dir, output, self.skip_dirs,
                      desc="Copying local", show_progress=self.show_progress)
            diff = diff3(base_dir, upstream_dir, local_dir, self.skip_dirs, self.show_progress)

            result = MergeResult(
                success=False,
                merged_version=merged_version,
                added_files=list(diff.added),
                modified_files=list(diff.modified)
            )

            for path in diff.added:
                upstream = (upstream_dir / path).read_bytes()
                local = _read(local_dir / path)
                if local is None:
                    _write(output / path, upstream)
                else:
                    # Both sides added the same path: reconcile against an empty base
                    regions.extend(self._merge_file(path, b"", upstream, local, output, result))

            for path in diff.modified + diff.conflicting:
                regions.extend(self._merge_file(
                    path,
                    (base_dir / path).read_bytes(),
                    (upstream_dir / path).read_bytes(),
                    _read(local_dir / path),
                    output,
                    result
                ))

            for path in diff.deleted:
                self._apply_deletion(path, base_dir, local_dir, output, result)

            self.store.create_snapshot(unit.name, Pool.MERGED, merged_version, output, move=True)
        finally:
            shutil.rmtree(staging, ignore_errors=True)

        self.db.save_conflict_regions(unit.name, merged_version, regions)
        result.success = not (result.conflicts or result.binary_conflicts)
        logger.info(
            "Merged %s into %s: %d added, %d modified, %d conflicting file(s)",
            unit.pending.version, merged_version, len(result.added_files),
            len(result.modified_files), len(result.conflicts)
        )
        return result

    def _merge_file(
        self,
        path: str,
        base: bytes,
        upstream: bytes,
        local: Optional[bytes],
        output: Path,
        result: MergeResult
    ) -> list[ConflictRegion]:
        target = output / path
        if local is None:
            logger.warning("%s was deleted locally but changed upstream; keeping upstream", path)
            _write(target, upstream)
            result.kept_upstream.append(path)
            return []
        if local == upstream:
            return []
        if local == base:
            _write(target, upstream)
            return []

        texts = (_decode(base), _decode(upstream), _decode(local))
        if None in texts:
            logger.warning("Binary file %s changed on both sides; keeping local until resolved", path)
            result.binary_conflicts.append(path)
            return [ConflictRegion(
                file=path,
                line_number=BINARY_CONFLICT_LINE,
                upstream=BINARY_PLACEHOLDER,
                local=BINARY_PLACEHOLDER
            )]

        merged = merge_lines(*texts)
        _write(target, merged.text.encode("utf-8"))
        if not merged.regions:
            return []

        regions = [
            ConflictRegion(file=path, line_number=line, upstream=u, local=l)
            for line, u, l in merged.regions
        ]
        result.conflicts.append(
            ConflictInfo(file=path, line_number=regions[0].line_number, regions=regions)
        )
        return regions

    def _apply_deletion(
        self, path: str, base_dir: Path, local_dir: Path, output: Path, result: MergeResult
    ) -> None:
        local = _read(local_dir / path)
        if local is None:
            return
        if local == (base_dir / path).read_bytes():
            target = output / path
            target.unlink()
            _prune_empty_dirs(target.parent, output)
            result.deleted_files.append(path)
        else:
            logger.warning("%s was deleted upstream but edited locally; keeping local", path)
            result.kept_local.append(path)
