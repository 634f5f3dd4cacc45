"""Tests for bundle_keeper.switcher module."""

import pytest

from bundle_keeper.errors import RollbackExhausted, UnitNotFound, VersionNotFound
from bundle_keeper.models import Pool
from bundle_keeper.switcher import VersionSwitcher

HISTORY = [
    (Pool.OFFICIAL, "1.0.0"),
    (Pool.CUSTOM, "1.0.0-custom"),
    (Pool.OFFICIAL, "1.1.0"),
    (Pool.MERGED, "1.1.0-merged"),
]


@pytest.fixture
def switcher(store, registry_db, sample_unit, make_tree):
    """A switcher over four snapshots created oldest first; 1.0.0 is active."""
    src = make_tree("src", {"a.txt": "a"})
    registry_db.insert_unit(sample_unit)
    for n, (pool, version) in enumerate(HISTORY, start=1):
        store.create_snapshot("demo", pool, version, src, created_at=f"2024-01-0{n}T00:00:00")
    return VersionSwitcher(registry_db, store)


class TestSwitchTo:
    """Tests for VersionSwitcher.switch_to."""

    def test_switch(self, switcher, registry_db):
        snapshot = switcher.switch_to("demo", Pool.CUSTOM, "1.0.0-custom")

        assert snapshot.is_active
        assert registry_db.get_active("demo") == (Pool.CUSTOM, "1.0.0-custom")
        assert switcher.active("demo").ref == (Pool.CUSTOM, "1.0.0-custom")

    def test_accepts_pool_value(self, switcher):
        snapshot = switcher.switch_to("demo", "merged", "1.1.0-merged")
        assert snapshot.pool is Pool.MERGED

    def test_missing_version_leaves_active(self, switcher, registry_db):
        with pytest.raises(VersionNotFound):
            switcher.switch_to("demo", Pool.OFFICIAL, "9.9.9")

        assert registry_db.get_active("demo") == (Pool.OFFICIAL, "1.0.0")

    def test_wrong_pool_is_missing(self, switcher):
        with pytest.raises(VersionNotFound):
            switcher.switch_to("demo", Pool.CUSTOM, "1.1.0")

    def test_unknown_unit(self, switcher):
        with pytest.raises(UnitNotFound):
            switcher.switch_to("other", Pool.OFFICIAL, "1.0.0")

    def test_exactly_one_active(self, switcher, store):
        switcher.switch_to("demo", Pool.OFFICIAL, "1.1.0")

        active = [s.ref for s in store.list_snapshots("demo") if s.is_active]

        assert active == [(Pool.OFFICIAL, "1.1.0")]


class TestRollback:
    """Tests for VersionSwitcher.rollback."""

    def test_rollback_to_previous(self, switcher):
        switcher.switch_to("demo", Pool.MERGED, "1.1.0-merged")

        snapshot = switcher.rollback("demo")

        assert snapshot.ref == (Pool.OFFICIAL, "1.1.0")

    def test_switches_then_rollbacks_restore_start(self, switcher, registry_db):
        for pool, version in HISTORY[1:]:
            switcher.switch_to("demo", pool, version)

        for _ in HISTORY[1:]:
            switcher.rollback("demo")

        assert registry_db.get_active("demo") == HISTORY[0]
        with pytest.raises(RollbackExhausted):
            switcher.rollback("demo")

    def test_oldest_active_exhausted(self, switcher, registry_db):
        with pytest.raises(RollbackExhausted):
            switcher.rollback("demo")
        assert registry_db.get_active("demo") == (Pool.OFFICIAL, "1.0.0")

    def test_unknown_unit(self, switcher):
        with pytest.raises(UnitNotFound):
            switcher.rollback("other")
