"""Directory tree walking, hashing and copying."""

import logging
import os
import shutil
from pathlib import Path
from typing import Iterable, Iterator

import xxhash
from tqdm import tqdm

from .models import FileInfo

logger = logging.getLogger(__name__)


def _long_path(path: Path) -> str:
    """Convert path to long path format on Windows to handle paths > 260 chars."""
    path_str = str(Path(path).resolve())
    if os.name == 'nt' and not path_str.startswith('\\\\?\\'):
        return '\\\\?\\' + path_str
    return path_str


class ScanError:
    """Record of a file that failed to scan."""

    def __init__(self, relative_path: str, absolute_path: str, error: str):
        self.relative_path = relative_path
        self.absolute_path = absolute_path
        self.error = error


def iter_tree(root: Path, skip_dirs: Iterable[str] = ()) -> Iterator[str]:
    """
    Yield the POSIX relative path of every file under root.

    The walk uses an explicit stack instead of recursion and yields lazily,
    in name order within each directory. Directories whose name is in
    skip_dirs are not entered. Every call starts a fresh walk.
    """
    root = Path(root)
    skip = set(skip_dirs)
    if not root.is_dir():
        return

    stack = [root]
    while stack:
        current = stack.pop()
        with os.scandir(current) as entries:
            ordered = sorted(entries, key=lambda entry: entry.name)
        subdirs = []
        for entry in ordered:
            if entry.is_dir(follow_symlinks=False):
                if entry.name not in skip:
                    subdirs.append(Path(entry.path))
            elif entry.is_file():
                yield Path(entry.path).relative_to(root).as_posix()
        # Reversed so the first subdirectory is walked first
        stack.extend(reversed(subdirs))


def compute_file_hash(file_path: Path, chunk_size: int = 65536) -> str:
    """Compute hash of a file using xxhash (fast hashing algorithm)."""
    hasher = xxhash.xxh64()
    with open(_long_path(file_path), 'rb') as f:
        while chunk := f.read(chunk_size):
            hasher.update(chunk)
    return hasher.hexdigest()


def get_file_info(base_path: Path, relative_path: str) -> FileInfo:
    """Get file information including hash and metadata."""
    abs_path = Path(base_path) / relative_path
    stat = os.stat(_long_path(abs_path))
    file_hash = compute_file_hash(abs_path)

    return FileInfo(
        relative_path=relative_path,
        absolute_path=str(abs_path),
        hash=file_hash,
        size=stat.st_size,
        modified_time=stat.st_mtime
    )


def scan_tree(
    root: Path,
    skip_dirs: Iterable[str] = (),
    desc: str = "Scanning",
    on_error: str = "fail",
    show_progress: bool = False
) -> tuple[dict[str, FileInfo], list[ScanError]]:
    """
    Scan a tree and return a dictionary of relative paths to FileInfo.

    Args:
        root: Directory to scan; a missing directory scans as empty
        skip_dirs: Directory names that are not entered
        desc: Description for the progress bar
        on_error: How to handle errors - "skip" to continue, "fail" to raise
        show_progress: Display a tqdm progress bar

    Returns:
        Tuple of (files dict, list of scan errors)
    """
    root = Path(root)
    files = {}
    errors = []
    all_files = list(iter_tree(root, skip_dirs))

    with tqdm(all_files, desc=desc, unit="file", disable=not show_progress) as pbar:
        for rel_path in pbar:
            try:
                files[rel_path] = get_file_info(root, rel_path)
            except OSError as e:
                if on_error == "fail":
                    raise
                logger.warning("Skipping unreadable file %s: %s", rel_path, e)
                errors.append(ScanError(rel_path, str(root / rel_path), str(e)))

    return files, errors


def copy_file(src: Path, dst: Path) -> None:
    """Copy a file, creating parent directories if needed."""
    dst_long = _long_path(dst)
    os.makedirs(os.path.dirname(dst_long), exist_ok=True)
    shutil.copy2(_long_path(src), dst_long)


def copy_tree(
    src: Path,
    dst: Path,
    skip_dirs: Iterable[str] = (),
    desc: str = "Copying",
    show_progress: bool = False
) -> int:
    """
    Copy every file of src into dst and return the number of files copied.

    dst is created even when src holds no files. The first failing file
    aborts the copy with its OSError.
    """
    src, dst = Path(src), Path(dst)
    dst.mkdir(parents=True, exist_ok=True)
    paths = list(iter_tree(src, skip_dirs))

    with tqdm(paths, desc=desc, unit="file", disable=not show_progress) as pbar:
        for rel_path in pbar:
            copy_file(src / rel_path, dst / rel_path)

    return len(paths)
