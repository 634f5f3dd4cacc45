"""Snapshot store: per-unit version directories grouped into pools."""

import logging
import shutil
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

from .db import RegistryDB
from .errors import InvalidUnitName
from .models import Pool, SnapshotInfo
from .scanner import copy_tree

logger = logging.getLogger(__name__)


def timestamp() -> str:
    return datetime.now().isoformat(timespec="microseconds")


def check_unit_name(name: str) -> str:
    """Reject names that are not a single plain path segment."""
    if (not name or name.strip() != name or name in (".", "..")
            or "/" in name or "\\" in name or "\0" in name):
        raise InvalidUnitName(name)
    return name


class SnapshotStore:
    """
    Owns the directory tree of every managed unit.

    Snapshots live at <versions_dir>/<unit>/<pool>/<version>/ and are
    recorded in the registry with their creation time.
    """

    def __init__(
        self,
        db: RegistryDB,
        versions_dir: Path,
        skip_dirs: Iterable[str] = (),
        show_progress: bool = False
    ):
        self.db = db
        self.versions_dir = Path(versions_dir)
        self.skip_dirs = tuple(skip_dirs)
        self.show_progress = show_progress

    def unit_dir(self, unit: str) -> Path:
        return self.versions_dir / check_unit_name(unit)

    def snapshot_path(self, unit: str, pool: Pool, version: str) -> Path:
        return self.unit_dir(unit) / Pool(pool).value / version

    def get_snapshot(self, unit: str, pool: Pool, version: str) -> Optional[SnapshotInfo]:
        """Return the snapshot when it is both registered and present on disk."""
        snapshot = self.db.get_snapshot(unit, Pool(pool), version)
        if snapshot is None or not Path(snapshot.path).is_dir():
            return None
        active = self.db.get_active(unit)
        snapshot.is_active = active == snapshot.ref
        return snapshot

    def exists(self, unit: str, pool: Pool, version: str) -> bool:
        return self.get_snapshot(unit, pool, version) is not None

    def create_snapshot(
        self,
        unit: str,
        pool: Pool,
        version: str,
        source_tree: Path,
        move: bool = False,
        created_at: Optional[str] = None
    ) -> SnapshotInfo:
        """
        Register source_tree as a snapshot.

        Does nothing when the snapshot already exists. The tree is assembled
        in a sibling directory and renamed into place, so a failed copy never
        leaves a half-written snapshot behind. With move=True the source tree
        itself is moved instead of copied.
        """
        pool = Pool(pool)
        existing = self.get_snapshot(unit, pool, version)
        if existing is not None:
            logger.info("Snapshot %s %s/%s already exists", unit, pool.value, version)
            return existing

        dest = self.snapshot_path(unit, pool, version)
        if self.db.get_snapshot(unit, pool, version) is not None:
            logger.warning("Dropping registry entry for missing snapshot %s", dest)
            self.db.delete_snapshot(unit, pool, version)
        if dest.exists():
            logger.warning("Replacing unregistered directory %s", dest)
            shutil.rmtree(dest)

        dest.parent.mkdir(parents=True, exist_ok=True)
        partial = dest.with_name(f".{version}.partial")
        shutil.rmtree(partial, ignore_errors=True)
        try:
            if move:
                shutil.move(str(source_tree), str(partial))
            else:
                copy_tree(
                    source_tree, partial, self.skip_dirs,
                    desc=f"Copying {version}", show_progress=self.show_progress
                )
            partial.rename(dest)
        except BaseException:
            shutil.rmtree(partial, ignore_errors=True)
            raise

        snapshot = SnapshotInfo(
            unit=unit,
            pool=pool,
            version=version,
            path=str(dest),
            created_at=created_at or timestamp()
        )
        self.db.add_snapshot(snapshot)
        logger.info("Created snapshot %s %s/%s", unit, pool.value, version)
        return snapshot

    def list_snapshots(self, unit: str) -> list[SnapshotInfo]:
        """All snapshots of a unit across pools, newest first, with isActive set."""
        active = self.db.get_active(unit)
        snapshots = []
        for snapshot in self.db.list_snapshots(unit):
            if not Path(snapshot.path).is_dir():
                logger.warning("Snapshot directory missing: %s", snapshot.path)
                continue
            snapshot.is_active = active == snapshot.ref
            snapshots.append(snapshot)
        return snapshots

    def pinned(self, unit: str) -> set[tuple[Pool, str]]:
        """Snapshots that must survive removal and cleanup."""
        refs = set()
        active = self.db.get_active(unit)
        if active:
            refs.add(active)
        record = self.db.get_unit(unit)
        if record is None:
            return refs
        if record.has_custom_changes:
            if record.custom_base:
                refs.add((Pool.OFFICIAL, record.custom_base))
            if record.custom_version:
                refs.add((Pool.CUSTOM, record.custom_version))
        if record.pending:
            refs.add((Pool.OFFICIAL, record.pending.version))
            if record.pending.merged_version:
                refs.add((Pool.MERGED, record.pending.merged_version))
        return refs

    def remove_snapshot(self, unit: str, pool: Pool, version: str) -> bool:
        """Delete a snapshot; refuses the active snapshot and other pinned ones."""
        pool = Pool(pool)
        if self.db.get_active(unit) == (pool, version):
            logger.warning("Refusing to remove active snapshot %s %s/%s",
                           unit, pool.value, version)
            return False
        if (pool, version) in self.pinned(unit):
            logger.warning("Refusing to remove snapshot in use %s %s/%s",
                           unit, pool.value, version)
            return False
        if self.db.get_snapshot(unit, pool, version) is None:
            return False
        self._delete(unit, pool, version)
        return True

    def _delete(self, unit: str, pool: Pool, version: str) -> None:
        shutil.rmtree(self.snapshot_path(unit, pool, version), ignore_errors=True)
        self.db.delete_snapshot(unit, pool, version)
        logger.info("Removed snapshot %s %s/%s", unit, pool.value, version)

    def cleanup(self, unit: str, keep_per_pool: int = 3) -> list[SnapshotInfo]:
        """
        Keep the keep_per_pool newest snapshots of each pool and remove the rest.

        Pinned snapshots (the active one above all) are never removed. Returns
        the removed snapshots.
        """
        keep_per_pool = max(0, keep_per_pool)
        pinned = self.pinned(unit)
        by_pool: dict[Pool, list[SnapshotInfo]] = {pool: [] for pool in Pool}
        for snapshot in self.db.list_snapshots(unit):
            by_pool[snapshot.pool].append(snapshot)

        removed = []
        for pool in Pool:
            for snapshot in by_pool[pool][keep_per_pool:]:
                if snapshot.ref in pinned:
                    continue
                self._delete(unit, snapshot.pool, snapshot.version)
                removed.append(snapshot)
        return removed

    def remove_unit_tree(self, unit: str) -> None:
        shutil.rmtree(self.unit_dir(unit), ignore_errors=True)
