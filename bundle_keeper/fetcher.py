"""Retrieval of upstream versions and the cached latest-version lookup."""

import logging
import shutil
import subprocess
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import cmp_to_key
from pathlib import Path
from typing import Optional

from .db import RegistryDB
from .errors import RetrievalError
from .models import SourceDescriptor
from .scanner import copy_tree
from .sources import DIRECTORY, GIT, GITHUB, compare_versions

logger = logging.getLogger(__name__)


class VersionCache:
    """Latest-version lookups per source, each with an explicit expiry."""

    def __init__(self, db: RegistryDB):
        self.db = db

    def get(self, source_key: str, now: datetime) -> Optional[str]:
        """Return the cached version while it has not expired."""
        entry = self.db.get_cache_entry(source_key)
        if entry is None:
            return None
        version, _, expires_at = entry
        try:
            fresh = now < datetime.fromisoformat(expires_at)
        except (TypeError, ValueError):
            # Unparseable, or an aware timestamp compared against a naive one
            logger.warning("Discarding corrupt cache entry for %s", source_key)
            self.db.delete_cache_entry(source_key)
            return None
        return version if fresh else None

    def set(self, source_key: str, version: str, now: datetime, days: int) -> None:
        expires = now + timedelta(days=days)
        self.db.set_cache_entry(source_key, version, now.isoformat(), expires.isoformat())

    def invalidate(self, source_key: str) -> None:
        self.db.delete_cache_entry(source_key)

    def clear(self) -> None:
        self.db.clear_cache()

    def clean_expired(self, now: datetime) -> int:
        """Remove expired and unreadable entries; returns how many were removed."""
        removed = 0
        for source_key, _, _, expires_at in self.db.list_cache_entries():
            try:
                expired = now >= datetime.fromisoformat(expires_at)
            except (TypeError, ValueError):
                expired = True
            if expired:
                self.db.delete_cache_entry(source_key)
                removed += 1
        return removed


@dataclass
class FetchContext:
    """Per-call state for version lookups."""
    cache: VersionCache
    force_refresh: bool = False
    cache_days: int = 7
    now: Optional[datetime] = None

    @property
    def current_time(self) -> datetime:
        return self.now or datetime.now()


class Fetcher:
    """Retrieves versions of a source into a local directory."""

    def latest_version(self, source: SourceDescriptor) -> Optional[str]:
        raise NotImplementedError

    def fetch(self, source: SourceDescriptor, version: str, dest: Path) -> None:
        raise NotImplementedError


class GitFetcher(Fetcher):
    """Fetches tagged versions with the git command line."""

    def __init__(self, git: str = "git", timeout: int = 300):
        self.git = git
        self.timeout = timeout

    def _url(self, source: SourceDescriptor) -> str:
        if source.kind == GITHUB:
            return f"https://github.com/{source.location}.git"
        return source.location

    def _run(self, args: list[str]) -> str:
        try:
            result = subprocess.run(
                [self.git, *args],
                check=True,
                capture_output=True,
                text=True,
                timeout=self.timeout
            )
        except (OSError, subprocess.SubprocessError) as e:
            raise RetrievalError(f"git {args[0]} failed: {e}") from e
        return result.stdout

    def latest_version(self, source: SourceDescriptor) -> Optional[str]:
        output = self._run(["ls-remote", "--tags", "--refs", self._url(source)])
        tags = []
        for line in output.splitlines():
            _, _, ref = line.partition("\t")
            if ref.startswith("refs/tags/"):
                tags.append(ref[len("refs/tags/"):])
        if not tags:
            return None
        return max(tags, key=cmp_to_key(compare_versions))

    def fetch(self, source: SourceDescriptor, version: str, dest: Path) -> None:
        self._run(["clone", "--depth", "1", "--branch", version,
                   self._url(source), str(dest)])
        shutil.rmtree(Path(dest) / ".git", ignore_errors=True)


class DirectoryFetcher(Fetcher):
    """Reads versions from a local directory holding one sub-directory per version."""

    def latest_version(self, source: SourceDescriptor) -> Optional[str]:
        root = Path(source.location)
        if not root.is_dir():
            raise RetrievalError(f"Source directory does not exist: {root}")
        versions = [p.name for p in root.iterdir() if p.is_dir()]
        if not versions:
            return None
        return max(versions, key=cmp_to_key(compare_versions))

    def fetch(self, source: SourceDescriptor, version: str, dest: Path) -> None:
        src = Path(source.location) / version
        if not src.is_dir():
            raise RetrievalError(f"Version {version} not found in {source.location}")
        try:
            copy_tree(src, dest)
        except OSError as e:
            raise RetrievalError(f"Copying {src} failed: {e}") from e


def fetcher_for(source: SourceDescriptor) -> Fetcher:
    if source.kind in (GITHUB, GIT):
        return GitFetcher()
    if source.kind == DIRECTORY:
        return DirectoryFetcher()
    raise RetrievalError(f"No fetcher for source kind {source.kind!r}")


def resolve_latest_version(
    source: SourceDescriptor,
    context: FetchContext,
    fetcher: Optional[Fetcher] = None
) -> Optional[str]:
    """Look up the latest version, consulting the cache unless force_refresh."""
    now = context.current_time
    if not context.force_refresh:
        cached = context.cache.get(source.key, now)
        if cached:
            logger.debug("Using cached version %s for %s", cached, source.key)
            return cached

    fetcher = fetcher or fetcher_for(source)
    version = fetcher.latest_version(source)
    if version:
        context.cache.set(source.key, version, now, context.cache_days)
    return version
