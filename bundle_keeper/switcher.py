"""Version switcher: moves the active reference and rolls it back."""

import logging
from typing import Optional

from .db import RegistryDB
from .errors import RollbackExhausted, UnitNotFound, VersionNotFound
from .models import Pool, SnapshotInfo
from .store import SnapshotStore

logger = logging.getLogger(__name__)


class VersionSwitcher:
    """Sole writer of a unit's active (pool, version) reference."""

    def __init__(self, db: RegistryDB, store: SnapshotStore):
        self.db = db
        self.store = store

    def active(self, unit: str) -> Optional[SnapshotInfo]:
        ref = self.db.get_active(unit)
        if ref is None:
            return None
        return self.store.get_snapshot(unit, *ref)

    def switch_to(self, unit: str, pool: Pool, version: str) -> SnapshotInfo:
        """
        Make (pool, version) the unit's active snapshot.

        Raises VersionNotFound, leaving the active reference untouched, when
        the snapshot does not exist.
        """
        if not self.db.has_unit(unit):
            raise UnitNotFound(unit)
        pool = Pool(pool)
        snapshot = self.store.get_snapshot(unit, pool, version)
        if snapshot is None:
            raise VersionNotFound(unit, pool.value, version)

        self.db.set_active(unit, pool, version)
        snapshot.is_active = True
        logger.info("Switched %s to %s/%s", unit, pool.value, version)
        return snapshot

    def rollback(self, unit: str) -> SnapshotInfo:
        """Switch to the snapshot created just before the active one."""
        if not self.db.has_unit(unit):
            raise UnitNotFound(unit)
        snapshots = self.store.list_snapshots(unit)
        index = next((i for i, s in enumerate(snapshots) if s.is_active), None)
        if index is None or index >= len(snapshots) - 1:
            raise RollbackExhausted(unit)

        previous = snapshots[index + 1]
        return self.switch_to(unit, previous.pool, previous.version)
