"""Managed unit lifecycle: register, check, download, fork, merge and confirm."""

import logging
import shutil
import tempfile
from datetime import date
from pathlib import Path
from typing import Optional

from .config import Settings
from .db import RegistryDB
from .diff import diff_trees
from .errors import (
    BundleKeeperError,
    InvalidTransition,
    NotFoundError,
    RetrievalError,
    UnitNotFound,
    VersionNotFound,
)
from .fetcher import FetchContext, Fetcher, VersionCache, fetcher_for, resolve_latest_version
from .merger import MergeEngine
from .models import (
    CheckResult,
    ConflictInfo,
    CustomChange,
    ManagedUnit,
    MergeResult,
    PendingState,
    PendingUpdate,
    Pool,
    Resolution,
    SnapshotInfo,
    SourceDescriptor,
    TreeDiff,
)
from .resolver import ConflictResolver
from .security import Scanner, gate
from .sources import is_newer_version, parse_source
from .store import SnapshotStore, check_unit_name, timestamp
from .switcher import VersionSwitcher

logger = logging.getLogger(__name__)


class UnitManager:
    """
    Entry point for every operation on managed units.

    Callers must not run two commands against the same unit at once; the
    registry offers no locking of its own.
    """

    def __init__(
        self,
        settings: Settings,
        db: Optional[RegistryDB] = None,
        fetcher: Optional[Fetcher] = None
    ):
        settings.ensure_dirs()
        self.settings = settings
        self.db = db or RegistryDB(settings.db_path)
        self.fetcher = fetcher
        self.store = SnapshotStore(
            self.db, settings.versions_dir, settings.skip_dirs, settings.show_progress
        )
        self.switcher = VersionSwitcher(self.db, self.store)
        self.merger = MergeEngine(
            self.db, self.store, settings.staging_dir,
            settings.skip_dirs, settings.show_progress
        )
        self.resolver = ConflictResolver(self.db, self.store, settings.skip_dirs)

    def close(self) -> None:
        self.db.close()

    def fetch_context(self, force_refresh: bool = False) -> FetchContext:
        return FetchContext(
            cache=VersionCache(self.db),
            force_refresh=force_refresh,
            cache_days=self.settings.cache_days
        )

    def _fetcher(self, source: SourceDescriptor) -> Fetcher:
        return self.fetcher or fetcher_for(source)

    def _require(self, name: str) -> ManagedUnit:
        unit = self.db.get_unit(name)
        if unit is None:
            raise UnitNotFound(name)
        return unit

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def get_unit(self, name: str) -> Optional[ManagedUnit]:
        return self.db.get_unit(name)

    def list_units(self) -> list[ManagedUnit]:
        return self.db.list_units()

    def add_unit(
        self,
        name: str,
        source_text: str,
        version: Optional[str] = None,
        context: Optional[FetchContext] = None,
        scanner: Optional[Scanner] = None
    ) -> ManagedUnit:
        """
        Register a unit and download its first official snapshot.

        The unit is only recorded once its snapshot exists, so a failed fetch
        leaves the registry untouched.
        """
        check_unit_name(name)
        source = parse_source(source_text)
        if self.db.has_unit(name):
            raise BundleKeeperError(f"Unit already registered: {name}")

        context = context or self.fetch_context()
        if version is None:
            version = resolve_latest_version(source, context, self._fetcher(source))
            if not version:
                raise RetrievalError(f"Could not determine a version for {source.key}")

        self._fetch_official(name, source, version, scanner)
        now = timestamp()
        unit = ManagedUnit(
            name=name,
            source=source,
            official_version=version,
            active_version=version,
            active_pool=Pool.OFFICIAL,
            last_checked=now,
            created_at=now
        )
        self.db.insert_unit(unit)
        logger.info("Registered %s at %s", name, version)
        return unit

    def remove_unit(self, name: str, delete_files: bool = True) -> bool:
        if not self.db.delete_unit(name):
            return False
        if delete_files:
            self.store.remove_unit_tree(name)
        return True

    def _fetch_official(
        self,
        name: str,
        source: SourceDescriptor,
        version: str,
        scanner: Optional[Scanner] = None
    ) -> SnapshotInfo:
        existing = self.store.get_snapshot(name, Pool.OFFICIAL, version)
        if existing is not None:
            return existing

        self.settings.staging_dir.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=f"fetch-{name}-", dir=self.settings.staging_dir))
        tree = staging / "tree"
        try:
            self._fetcher(source).fetch(source, version, tree)
            if scanner is not None:
                gate(scanner.scan(tree), self.settings.auto_reject_critical)
            return self.store.create_snapshot(name, Pool.OFFICIAL, version, tree, move=True)
        finally:
            shutil.rmtree(staging, ignore_errors=True)

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    def check_update(
        self, name: str, context: Optional[FetchContext] = None
    ) -> Optional[CheckResult]:
        """Look up the latest upstream version and record a pending update."""
        unit = self.db.get_unit(name)
        if unit is None:
            return None
        context = context or self.fetch_context()
        latest = resolve_latest_version(unit.source, context, self._fetcher(unit.source))
        if not latest:
            logger.warning("Could not determine the latest version of %s", name)
            return None

        has_update = is_newer_version(unit.official_version, latest)
        unit.last_checked = timestamp()
        if has_update and (unit.pending is None or unit.pending.version != latest):
            if unit.pending is not None:
                logger.info("Replacing pending update %s with %s", unit.pending.version, latest)
            unit.pending = PendingUpdate(version=latest)
        self.db.update_unit(unit)

        return CheckResult(
            unit=name,
            current_version=unit.active_version,
            latest_version=latest,
            has_update=has_update,
            has_custom_changes=unit.has_custom_changes
        )

    def check_all(self, context: Optional[FetchContext] = None) -> list[CheckResult]:
        """Check every unit; a unit that fails is logged and skipped."""
        context = context or self.fetch_context()
        results = []
        for name in self.db.list_unit_names():
            try:
                result = self.check_update(name, context)
            except BundleKeeperError as e:
                logger.warning("Checking %s failed: %s", name, e)
                continue
            if result is not None:
                results.append(result)
        return results

    def download(self, name: str, scanner: Optional[Scanner] = None) -> SnapshotInfo:
        """Download the pending version as an official snapshot."""
        unit = self._require(name)
        if unit.pending is None:
            raise InvalidTransition(f"No pending update for {name}; run check first")

        snapshot = self._fetch_official(name, unit.source, unit.pending.version, scanner)
        if unit.pending.state is PendingState.DETECTED:
            unit.pending.mark_downloaded()
            self.db.update_unit(unit)
        return snapshot

    # ------------------------------------------------------------------
    # Custom branch
    # ------------------------------------------------------------------

    def fork(self, name: str) -> SnapshotInfo:
        """Copy the official version into a custom snapshot and activate it."""
        unit = self._require(name)
        official = self.store.get_snapshot(name, Pool.OFFICIAL, unit.official_version)
        if official is None:
            raise VersionNotFound(name, Pool.OFFICIAL.value, unit.official_version)

        custom_version = f"{unit.official_version}-custom"
        self.store.create_snapshot(name, Pool.CUSTOM, custom_version, Path(official.path))
        unit.has_custom_changes = True
        unit.custom_base = unit.official_version
        unit.custom_version = custom_version
        self.db.update_unit(unit)
        return self.switcher.switch_to(name, Pool.CUSTOM, custom_version)

    def save(self, name: str, comment: str) -> CustomChange:
        """Record a comment describing the current custom edits."""
        self._require(name)
        change = CustomChange(date=date.today().isoformat(), comment=comment)
        self.db.add_custom_change(name, change)
        return change

    def diff_custom(self, name: str) -> TreeDiff:
        """Compare the custom snapshot with the official version it was forked from."""
        unit = self._require(name)
        if not unit.has_custom_changes or not unit.custom_version:
            raise NotFoundError(f"{name} has no custom branch")
        base = self.store.get_snapshot(name, Pool.OFFICIAL, unit.custom_base)
        custom = self.store.get_snapshot(name, Pool.CUSTOM, unit.custom_version)
        if base is None:
            raise VersionNotFound(name, Pool.OFFICIAL.value, unit.custom_base)
        if custom is None:
            raise VersionNotFound(name, Pool.CUSTOM.value, unit.custom_version)
        return diff_trees(Path(base.path), Path(custom.path), self.settings.skip_dirs)

    # ------------------------------------------------------------------
    # Merge and confirm
    # ------------------------------------------------------------------

    def merge(self, name: str) -> MergeResult:
        unit = self._require(name)
        if unit.pending is not None and unit.pending.state is PendingState.DETECTED:
            raise InvalidTransition(f"Update {unit.pending.version} is not downloaded yet")

        result = self.merger.merge(name)
        unit = self._require(name)
        unit.pending.mark_merged(result.merged_version)
        self.db.update_unit(unit)
        return result

    def get_conflicts(self, name: str, merged_version: Optional[str] = None) -> list[ConflictInfo]:
        return self.resolver.get_conflicts(name, merged_version)

    def resolve_conflict(
        self, name: str, file: str, choice: Resolution | str, merged_version: Optional[str] = None
    ) -> int:
        return self.resolver.resolve_conflict(name, merged_version, file, choice)

    def switch_to(self, name: str, pool: Pool | str, version: str) -> SnapshotInfo:
        return self.switcher.switch_to(name, Pool(pool), version)

    def rollback(self, name: str) -> SnapshotInfo:
        return self.switcher.rollback(name)

    def versions(self, name: str) -> list[SnapshotInfo]:
        return self.store.list_snapshots(name)

    def cleanup(self, name: str, keep_per_pool: Optional[int] = None) -> list[SnapshotInfo]:
        self._require(name)
        if keep_per_pool is None:
            keep_per_pool = self.settings.keep_per_pool
        return self.store.cleanup(name, keep_per_pool)

    def confirm(self, name: str, force: bool = False) -> ManagedUnit:
        """
        Accept the active snapshot and clear the pending update.

        A confirmed merged snapshot promotes the upstream version to
        officialVersion and becomes the new custom branch, so the next merge
        uses the right base. Unresolved conflicts block confirmation unless
        force is set.
        """
        unit = self._require(name)
        pending = unit.pending

        if unit.active_pool is Pool.MERGED:
            remaining = self.resolver.get_conflicts(name, unit.active_version)
            if remaining and not force:
                raise BundleKeeperError(
                    f"{len(remaining)} file(s) in {unit.active_version} still have conflicts"
                )

        if pending is not None:
            if unit.active_pool is Pool.MERGED:
                merged = self.store.get_snapshot(name, Pool.MERGED, unit.active_version)
                if merged is None:
                    raise VersionNotFound(name, Pool.MERGED.value, unit.active_version)
                custom_version = f"{pending.version}-custom"
                self.store.create_snapshot(name, Pool.CUSTOM, custom_version, Path(merged.path))
                unit.official_version = pending.version
                unit.custom_base = pending.version
                unit.custom_version = custom_version
            elif unit.active_pool is Pool.OFFICIAL and unit.active_version == pending.version:
                unit.official_version = pending.version

        unit.pending = None
        self.db.update_unit(unit)
        logger.info("Confirmed %s %s/%s", name, unit.active_pool.value, unit.active_version)
        return unit
