"""Shared test fixtures."""

import tempfile
from pathlib import Path

import pytest

from bundle_keeper.config import Settings
from bundle_keeper.db import RegistryDB
from bundle_keeper.lifecycle import UnitManager
from bundle_keeper.models import ManagedUnit, Pool, SourceDescriptor
from bundle_keeper.store import SnapshotStore


def write_tree(root: Path, files: dict) -> Path:
    """Create files under root from a {relative path: text or bytes} mapping."""
    root.mkdir(parents=True, exist_ok=True)
    for rel_path, content in files.items():
        path = root / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_bytes(content.encode("utf-8"))
    return root


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def make_tree(temp_dir):
    """Build a directory tree under the temporary directory."""
    def _make(name: str, files: dict) -> Path:
        return write_tree(temp_dir / "trees" / name, files)
    return _make


@pytest.fixture
def settings(temp_dir):
    """Settings rooted in a temporary data directory."""
    settings = Settings(data_dir=temp_dir / "home")
    settings.ensure_dirs()
    return settings


@pytest.fixture
def registry_db(temp_dir):
    """Create a RegistryDB instance."""
    db = RegistryDB(temp_dir / "registry.db")
    yield db
    try:
        db.close()
    except Exception:
        pass


@pytest.fixture
def sample_unit():
    """A unit record pointing at official 1.0.0."""
    return ManagedUnit(
        name="demo",
        source=SourceDescriptor(kind="github", location="owner/demo", branch="main"),
        official_version="1.0.0",
        active_version="1.0.0",
        active_pool=Pool.OFFICIAL,
        created_at="2024-01-01T00:00:00"
    )


@pytest.fixture
def store(registry_db, temp_dir):
    """A SnapshotStore over the registry fixture."""
    return SnapshotStore(registry_db, temp_dir / "versions")


@pytest.fixture
def upstream_dir(temp_dir):
    """A local source directory holding versions 1.0.0 and 1.1.0."""
    root = temp_dir / "upstream"
    write_tree(root / "1.0.0", {
        "README.md": "# Demo\nversion one\n",
        "src/main.py": "def main():\n    return 1\n",
        "src/old.py": "legacy = True\n",
    })
    write_tree(root / "1.1.0", {
        "README.md": "# Demo\nversion two\n",
        "src/main.py": "def main():\n    return 2\n",
        "src/new.py": "fresh = True\n",
    })
    return root


@pytest.fixture
def manager(settings):
    """A UnitManager over a temporary data directory."""
    manager = UnitManager(settings)
    yield manager
    manager.close()
