"""SQLite-backed registry of managed units, snapshots and conflicts."""

import json
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from .errors import BundleKeeperError
from .models import (
    ConflictRegion,
    CustomChange,
    ManagedUnit,
    PendingUpdate,
    Pool,
    SnapshotInfo,
    SourceDescriptor,
)

logger = logging.getLogger(__name__)


class RegistryDB:
    """SQLite-backed registry for durable state persistence."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(self.db_path), isolation_level=None)
        self.conn.execute("PRAGMA journal_mode=WAL")
        self._init_schema()

    def _init_schema(self) -> None:
        """Initialize database schema."""
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS units (
                name TEXT PRIMARY KEY,
                source TEXT NOT NULL,
                official_version TEXT NOT NULL,
                active_pool TEXT NOT NULL,
                active_version TEXT NOT NULL,
                has_custom_changes INTEGER NOT NULL DEFAULT 0,
                custom_base TEXT,
                custom_version TEXT,
                pending TEXT,
                last_checked TEXT,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS custom_changes (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                unit TEXT NOT NULL,
                date TEXT NOT NULL,
                comment TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS snapshots (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                unit TEXT NOT NULL,
                pool TEXT NOT NULL,
                version TEXT NOT NULL,
                path TEXT NOT NULL,
                created_at TEXT NOT NULL,
                UNIQUE (unit, pool, version)
            );

            CREATE TABLE IF NOT EXISTS conflicts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                unit TEXT NOT NULL,
                merged_version TEXT NOT NULL,
                file TEXT NOT NULL,
                line_number INTEGER NOT NULL,
                upstream TEXT NOT NULL,
                local TEXT NOT NULL,
                resolved INTEGER NOT NULL DEFAULT 0,
                resolution TEXT,
                resolved_at TEXT
            );

            CREATE TABLE IF NOT EXISTS version_cache (
                source_key TEXT PRIMARY KEY,
                version TEXT NOT NULL,
                checked_at TEXT NOT NULL,
                expires_at TEXT NOT NULL
            );
        """)

    def close(self) -> None:
        """Close the database connection."""
        self.conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the enclosed statements in a single transaction."""
        self.conn.execute("BEGIN")
        try:
            yield self.conn
            self.conn.execute("COMMIT")
        except Exception:
            self.conn.execute("ROLLBACK")
            raise

    # ------------------------------------------------------------------
    # Units
    # ------------------------------------------------------------------

    def insert_unit(self, unit: ManagedUnit) -> None:
        """Register a new unit, including its initial active reference."""
        self.conn.execute(
            """INSERT INTO units
               (name, source, official_version, active_pool, active_version,
                has_custom_changes, custom_base, custom_version, pending,
                last_checked, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (unit.name, json.dumps(unit.source.to_dict()), unit.official_version,
             unit.active_pool.value, unit.active_version,
             int(unit.has_custom_changes), unit.custom_base, unit.custom_version,
             _dump_pending(unit.pending), unit.last_checked, unit.created_at)
        )

    def update_unit(self, unit: ManagedUnit) -> None:
        """
        Persist a unit's fields.

        The active reference is deliberately left alone; only set_active
        changes it.
        """
        self.conn.execute(
            """UPDATE units SET
                 source = ?, official_version = ?, has_custom_changes = ?,
                 custom_base = ?, custom_version = ?, pending = ?, last_checked = ?
               WHERE name = ?""",
            (json.dumps(unit.source.to_dict()), unit.official_version,
             int(unit.has_custom_changes), unit.custom_base, unit.custom_version,
             _dump_pending(unit.pending), unit.last_checked, unit.name)
        )

    def has_unit(self, name: str) -> bool:
        cursor = self.conn.execute("SELECT 1 FROM units WHERE name = ?", (name,))
        return cursor.fetchone() is not None

    def get_unit(self, name: str) -> Optional[ManagedUnit]:
        """Load a unit, or None when it is not registered."""
        cursor = self.conn.execute(
            """SELECT name, source, official_version, active_pool, active_version,
                      has_custom_changes, custom_base, custom_version, pending,
                      last_checked, created_at
               FROM units WHERE name = ?""",
            (name,)
        )
        row = cursor.fetchone()
        if row is None:
            return None
        try:
            unit = ManagedUnit(
                name=row[0],
                source=SourceDescriptor.from_dict(json.loads(row[1])),
                official_version=row[2],
                active_pool=Pool(row[3]),
                active_version=row[4],
                has_custom_changes=bool(row[5]),
                custom_base=row[6],
                custom_version=row[7],
                pending=PendingUpdate.from_dict(json.loads(row[8])) if row[8] else None,
                last_checked=row[9],
                created_at=row[10]
            )
        except (TypeError, ValueError, KeyError) as e:
            raise BundleKeeperError(f"Registry record for {name} is unreadable: {e}") from e
        unit.custom_changes = self.get_custom_changes(name)
        return unit

    def list_unit_names(self) -> list[str]:
        cursor = self.conn.execute("SELECT name FROM units ORDER BY name")
        return [row[0] for row in cursor]

    def list_units(self) -> list[ManagedUnit]:
        """Load every readable unit; unreadable records are skipped."""
        units = []
        for name in self.list_unit_names():
            try:
                unit = self.get_unit(name)
            except BundleKeeperError as e:
                logger.warning("%s", e)
                continue
            if unit is not None:
                units.append(unit)
        return units

    def delete_unit(self, name: str) -> bool:
        """Delete a unit and every record that belongs to it."""
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM units WHERE name = ?", (name,))
            conn.execute("DELETE FROM custom_changes WHERE unit = ?", (name,))
            conn.execute("DELETE FROM snapshots WHERE unit = ?", (name,))
            conn.execute("DELETE FROM conflicts WHERE unit = ?", (name,))
        return cursor.rowcount > 0

    def get_active(self, name: str) -> Optional[tuple[Pool, str]]:
        """Get a unit's active (pool, version) pair."""
        cursor = self.conn.execute(
            "SELECT active_pool, active_version FROM units WHERE name = ?", (name,)
        )
        row = cursor.fetchone()
        if row is None:
            return None
        return Pool(row[0]), row[1]

    def set_active(self, name: str, pool: Pool, version: str) -> None:
        """Repoint a unit's active reference in one statement."""
        self.conn.execute(
            "UPDATE units SET active_pool = ?, active_version = ? WHERE name = ?",
            (pool.value, version, name)
        )

    def add_custom_change(self, name: str, change: CustomChange) -> None:
        self.conn.execute(
            "INSERT INTO custom_changes (unit, date, comment) VALUES (?, ?, ?)",
            (name, change.date, change.comment)
        )

    def get_custom_changes(self, name: str) -> list[CustomChange]:
        cursor = self.conn.execute(
            "SELECT date, comment FROM custom_changes WHERE unit = ? ORDER BY id",
            (name,)
        )
        return [CustomChange(date=row[0], comment=row[1]) for row in cursor]

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def add_snapshot(self, snapshot: SnapshotInfo) -> None:
        self.conn.execute(
            """INSERT INTO snapshots (unit, pool, version, path, created_at)
               VALUES (?, ?, ?, ?, ?)""",
            (snapshot.unit, snapshot.pool.value, snapshot.version,
             snapshot.path, snapshot.created_at)
        )

    def get_snapshot(self, unit: str, pool: Pool, version: str) -> Optional[SnapshotInfo]:
        cursor = self.conn.execute(
            """SELECT unit, pool, version, path, created_at FROM snapshots
               WHERE unit = ? AND pool = ? AND version = ?""",
            (unit, pool.value, version)
        )
        row = cursor.fetchone()
        return _row_to_snapshot(row) if row else None

    def list_snapshots(self, unit: str) -> list[SnapshotInfo]:
        """List a unit's snapshots, newest first."""
        cursor = self.conn.execute(
            """SELECT unit, pool, version, path, created_at FROM snapshots
               WHERE unit = ? ORDER BY created_at DESC, id DESC""",
            (unit,)
        )
        return [_row_to_snapshot(row) for row in cursor]

    def delete_snapshot(self, unit: str, pool: Pool, version: str) -> None:
        with self.transaction() as conn:
            conn.execute(
                "DELETE FROM snapshots WHERE unit = ? AND pool = ? AND version = ?",
                (unit, pool.value, version)
            )
            if pool is Pool.MERGED:
                conn.execute(
                    "DELETE FROM conflicts WHERE unit = ? AND merged_version = ?",
                    (unit, version)
                )

    # ------------------------------------------------------------------
    # Conflicts
    # ------------------------------------------------------------------

    def save_conflict_regions(
        self, unit: str, merged_version: str, regions: list[ConflictRegion]
    ) -> None:
        """Replace the conflict log of a merged snapshot."""
        with self.transaction() as conn:
            conn.execute(
                "DELETE FROM conflicts WHERE unit = ? AND merged_version = ?",
                (unit, merged_version)
            )
            for region in regions:
                conn.execute(
                    """INSERT INTO conflicts
                       (unit, merged_version, file, line_number, upstream, local,
                        resolved, resolution, resolved_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (unit, merged_version, region.file, region.line_number,
                     region.upstream, region.local, int(region.resolved),
                     region.resolution, region.resolved_at)
                )

    def get_conflict_regions(
        self, unit: str, merged_version: str, file: Optional[str] = None
    ) -> list[ConflictRegion]:
        query = """SELECT file, line_number, upstream, local, resolved, resolution, resolved_at
                   FROM conflicts WHERE unit = ? AND merged_version = ?"""
        params = [unit, merged_version]
        if file is not None:
            query += " AND file = ?"
            params.append(file)
        cursor = self.conn.execute(query + " ORDER BY id", params)
        return [
            ConflictRegion(
                file=row[0],
                line_number=row[1],
                upstream=row[2],
                local=row[3],
                resolved=bool(row[4]),
                resolution=row[5],
                resolved_at=row[6]
            )
            for row in cursor
        ]

    def mark_regions_resolved(
        self, unit: str, merged_version: str, file: str, resolution: str, resolved_at: str
    ) -> int:
        cursor = self.conn.execute(
            """UPDATE conflicts SET resolved = 1, resolution = ?, resolved_at = ?
               WHERE unit = ? AND merged_version = ? AND file = ? AND resolved = 0""",
            (resolution, resolved_at, unit, merged_version, file)
        )
        return cursor.rowcount

    # ------------------------------------------------------------------
    # Version cache
    # ------------------------------------------------------------------

    def get_cache_entry(self, source_key: str) -> Optional[tuple[str, str, str]]:
        """Get (version, checked_at, expires_at) for a source."""
        cursor = self.conn.execute(
            "SELECT version, checked_at, expires_at FROM version_cache WHERE source_key = ?",
            (source_key,)
        )
        row = cursor.fetchone()
        return (row[0], row[1], row[2]) if row else None

    def set_cache_entry(
        self, source_key: str, version: str, checked_at: str, expires_at: str
    ) -> None:
        self.conn.execute(
            """INSERT OR REPLACE INTO version_cache
               (source_key, version, checked_at, expires_at) VALUES (?, ?, ?, ?)""",
            (source_key, version, checked_at, expires_at)
        )

    def delete_cache_entry(self, source_key: str) -> None:
        self.conn.execute("DELETE FROM version_cache WHERE source_key = ?", (source_key,))

    def list_cache_entries(self) -> list[tuple[str, str, str, str]]:
        cursor = self.conn.execute(
            "SELECT source_key, version, checked_at, expires_at FROM version_cache"
        )
        return [tuple(row) for row in cursor]

    def clear_cache(self) -> None:
        self.conn.execute("DELETE FROM version_cache")


def _dump_pending(pending: Optional[PendingUpdate]) -> Optional[str]:
    return json.dumps(pending.to_dict()) if pending else None


def _row_to_snapshot(row: tuple) -> SnapshotInfo:
    return SnapshotInfo(
        unit=row[0],
        pool=Pool(row[1]),
        version=row[2],
        path=row[3],
        created_at=row[4]
    )
