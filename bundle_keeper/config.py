"""Global settings and data directory layout."""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

ENV_HOME = "BUNDLE_KEEPER_HOME"
CONFIG_FILE = "config.json"
REGISTRY_FILE = "registry.db"

# Directory names never entered when walking a tree
DEFAULT_SKIP_DIRS = (
    ".git",
    "node_modules",
    "__pycache__",
    ".cache",
    ".pytest_cache",
    ".mypy_cache",
    "build",
    "dist",
    ".venv",
)

MIN_CACHE_DAYS = 1
MAX_CACHE_DAYS = 30


def default_data_dir() -> Path:
    """Return the data directory from the environment or the user's home."""
    env = os.environ.get(ENV_HOME)
    if env:
        return Path(env).expanduser()
    return Path.home() / ".bundle-keeper"


@dataclass
class Settings:
    """User-adjustable settings, persisted as config.json in the data directory."""
    data_dir: Path
    cache_days: int = 7
    keep_per_pool: int = 3
    auto_reject_critical: bool = True
    show_progress: bool = False
    skip_dirs: tuple[str, ...] = field(default=DEFAULT_SKIP_DIRS)

    def __post_init__(self):
        self.data_dir = Path(self.data_dir)
        self.cache_days = max(MIN_CACHE_DAYS, min(MAX_CACHE_DAYS, int(self.cache_days)))
        self.skip_dirs = tuple(self.skip_dirs)

    @property
    def db_path(self) -> Path:
        return self.data_dir / REGISTRY_FILE

    @property
    def config_path(self) -> Path:
        return self.data_dir / CONFIG_FILE

    @property
    def versions_dir(self) -> Path:
        return self.data_dir / "versions"

    @property
    def staging_dir(self) -> Path:
        return self.data_dir / "staging"

    def ensure_dirs(self) -> None:
        """Create the data, versions and staging directories."""
        self.versions_dir.mkdir(parents=True, exist_ok=True)
        self.staging_dir.mkdir(parents=True, exist_ok=True)

    def to_dict(self) -> dict:
        return {
            "cache_days": self.cache_days,
            "keep_per_pool": self.keep_per_pool,
            "auto_reject_critical": self.auto_reject_critical,
            "skip_dirs": list(self.skip_dirs),
        }


def load_settings(data_dir: Optional[Path] = None) -> Settings:
    """
    Load settings from config.json.

    A missing or unreadable file yields the defaults; unknown keys are ignored.
    """
    data_dir = Path(data_dir) if data_dir else default_data_dir()
    settings = Settings(data_dir=data_dir)
    path = settings.config_path
    if not path.exists():
        return settings

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning("Ignoring unreadable config %s: %s", path, e)
        return settings
    if not isinstance(data, dict):
        logger.warning("Ignoring malformed config %s", path)
        return settings

    known = settings.to_dict()
    values = {key: data[key] for key in known if key in data}
    try:
        return Settings(data_dir=data_dir, **values)
    except (TypeError, ValueError) as e:
        logger.warning("Ignoring invalid config values in %s: %s", path, e)
        return settings


def save_settings(settings: Settings) -> None:
    """Write settings to config.json."""
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.config_path.write_text(
        json.dumps(settings.to_dict(), indent=2), encoding="utf-8"
    )
