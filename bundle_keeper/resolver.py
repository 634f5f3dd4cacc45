"""Conflict discovery and resolution inside merged snapshots."""

import logging
import re
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

from .db import RegistryDB
from .errors import BundleKeeperError, NotFoundError, UnitNotFound, VersionNotFound
from .merger import BINARY_CONFLICT_LINE, LOCAL_MARKER, UPSTREAM_MARKER, upstream_version_of
from .models import ConflictInfo, ConflictRegion, ManagedUnit, Pool, Resolution
from .scanner import iter_tree
from .store import SnapshotStore

logger = logging.getLogger(__name__)

CONFLICT_PATTERN = re.compile(
    r"<<<<<<< UPSTREAM[^\n]*\n(.*?)\n=======\n(.*?)\n>>>>>>> LOCAL[^\n]*",
    re.DOTALL
)


def resolve_text(text: str, choice: Resolution) -> tuple[str, int]:
    """Replace every conflict block in text; returns (new text, blocks replaced)."""
    def replace(match: re.Match) -> str:
        upstream, local = match.group(1), match.group(2)
        if choice is Resolution.UPSTREAM:
            return upstream
        if choice is Resolution.LOCAL:
            return local
        return f"{upstream}\n{local}"

    return CONFLICT_PATTERN.subn(replace, text)


def first_marker_line(text: str) -> Optional[int]:
    """1-based line number of the first conflict block, if the text has one."""
    if UPSTREAM_MARKER not in text or LOCAL_MARKER not in text:
        return None
    for number, line in enumerate(text.split("\n"), start=1):
        if line.startswith(UPSTREAM_MARKER):
            return number
    return None


class ConflictResolver:
    """Finds and resolves conflict blocks in a unit's merged snapshots."""

    def __init__(self, db: RegistryDB, store: SnapshotStore, skip_dirs: Iterable[str] = ()):
        self.db = db
        self.store = store
        self.skip_dirs = tuple(skip_dirs)

    def default_merged_version(self, unit: ManagedUnit) -> Optional[str]:
        """The pending update's merged snapshot, else the active one if it is merged."""
        if unit.pending and unit.pending.merged_version:
            return unit.pending.merged_version
        if unit.active_pool is Pool.MERGED:
            return unit.active_version
        return None

    def get_conflicts(self, unit_name: str, merged_version: Optional[str] = None) -> list[ConflictInfo]:
        """
        Re-scan a merged snapshot for conflict blocks.

        Returns one entry per file still carrying markers, with the line of its
        first marker and the unresolved regions recorded at merge time. An
        unknown unit or snapshot yields an empty list.
        """
        unit = self.db.get_unit(unit_name)
        if unit is None:
            return []
        merged_version = merged_version or self.default_merged_version(unit)
        if merged_version is None:
            return []
        snapshot = self.store.get_snapshot(unit_name, Pool.MERGED, merged_version)
        if snapshot is None:
            return []

        root = Path(snapshot.path)
        recorded = self.db.get_conflict_regions(unit_name, merged_version)
        conflicts = []
        for rel_path in iter_tree(root, self.skip_dirs):
            try:
                text = (root / rel_path).read_bytes().decode("utf-8")
            except UnicodeDecodeError:
                continue
            line = first_marker_line(text)
            if line is None:
                continue
            conflicts.append(ConflictInfo(
                file=rel_path,
                line_number=line,
                regions=[r for r in recorded if r.file == rel_path and not r.resolved]
            ))

        # Binary files carry no markers; only the merge log knows about them
        listed = {c.file for c in conflicts}
        for region in recorded:
            if (region.line_number != BINARY_CONFLICT_LINE or region.resolved
                    or region.file in listed or not (root / region.file).is_file()):
                continue
            listed.add(region.file)
            conflicts.append(ConflictInfo(
                file=region.file, line_number=BINARY_CONFLICT_LINE, regions=[region]
            ))
        return conflicts

    def resolve_conflict(
        self,
        unit_name: str,
        merged_version: Optional[str],
        file: str,
        choice: Resolution | str
    ) -> int:
        """
        Resolve every conflict block of one file with the same choice.

        Returns the number of blocks replaced; 0 when the file has none.
        """
        choice = Resolution(choice)
        unit = self.db.get_unit(unit_name)
        if unit is None:
            raise UnitNotFound(unit_name)
        merged_version = merged_version or self.default_merged_version(unit)
        if merged_version is None:
            raise NotFoundError(f"No merged version of {unit_name} to resolve")
        snapshot = self.store.get_snapshot(unit_name, Pool.MERGED, merged_version)
        if snapshot is None:
            raise VersionNotFound(unit_name, Pool.MERGED.value, merged_version)

        path = Path(snapshot.path) / file
        if not path.is_file():
            raise NotFoundError(f"File not found in {merged_version}: {file}")

        binary = [
            r for r in self.db.get_conflict_regions(unit_name, merged_version, file)
            if r.line_number == BINARY_CONFLICT_LINE and not r.resolved
        ]
        if binary:
            self._resolve_binary(unit_name, merged_version, file, path, choice)
            count = len(binary)
        else:
            try:
                text = path.read_bytes().decode("utf-8")
            except UnicodeDecodeError:
                raise BundleKeeperError(f"{file} is not a text file and has no recorded conflict")
            text, count = resolve_text(text, choice)
            if count == 0:
                logger.info("No conflicts in %s", file)
                return 0
            path.write_bytes(text.encode("utf-8"))

        self.db.mark_regions_resolved(
            unit_name, merged_version, file, choice.value, datetime.now().isoformat()
        )
        logger.info("Resolved %d conflict(s) in %s using %s", count, file, choice.value)
        return count

    def _resolve_binary(
        self, unit_name: str, merged_version: str, file: str, path: Path, choice: Resolution
    ) -> None:
        """Settle a binary conflict by keeping one side's bytes whole."""
        if choice is Resolution.BOTH:
            raise BundleKeeperError(f"Binary file {file} cannot keep both sides; use upstream or local")
        if choice is Resolution.LOCAL:
            return

        upstream_version = upstream_version_of(merged_version)
        upstream = None
        if upstream_version is not None:
            upstream = self.store.get_snapshot(unit_name, Pool.OFFICIAL, upstream_version)
        if upstream is None:
            raise VersionNotFound(unit_name, Pool.OFFICIAL.value, upstream_version or "?")
        source = Path(upstream.path) / file
        if not source.is_file():
            raise NotFoundError(f"File not found in {upstream_version}: {file}")
        path.write_bytes(source.read_bytes())

    def history(self, unit_name: str, merged_version: str) -> list[ConflictRegion]:
        """Every conflict region recorded for a merged snapshot, resolved or not."""
        return self.db.get_conflict_regions(unit_name, merged_version)
