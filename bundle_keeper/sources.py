"""Source descriptors and version id ordering."""

import re
from pathlib import Path

from .errors import InvalidSource
from .models import SourceDescriptor

GITHUB = "github"
GIT = "git"
DIRECTORY = "dir"

_REPO_PATTERN = re.compile(r"^[\w.-]+/[\w.-]+$")


def parse_source(text: str) -> SourceDescriptor:
    """
    Parse a source string into a SourceDescriptor.

    Accepted forms are github:owner/repo, a bare owner/repo, git:<url> and
    dir:<path>. Anything else raises InvalidSource.
    """
    text = (text or "").strip()

    if text.startswith("github:"):
        repo = text[len("github:"):]
        if _REPO_PATTERN.match(repo):
            return SourceDescriptor(kind=GITHUB, location=repo, branch="main")
    elif text.startswith("git:"):
        url = text[len("git:"):]
        if url:
            return SourceDescriptor(kind=GIT, location=url)
    elif text.startswith("dir:"):
        path = text[len("dir:"):]
        if path:
            return SourceDescriptor(
                kind=DIRECTORY, location=str(Path(path).expanduser().resolve())
            )
    elif ":" not in text and _REPO_PATTERN.match(text):
        return SourceDescriptor(kind=GITHUB, location=text, branch="main")

    raise InvalidSource(text)


def format_source(source: SourceDescriptor) -> str:
    return source.key


def _version_parts(version: str) -> list[int]:
    parts = []
    for piece in version.lstrip("vV").split("."):
        digits = re.sub(r"[^0-9]", "", piece)
        parts.append(int(digits) if digits else 0)
    while len(parts) < 3:
        parts.append(0)
    return parts[:3]


def compare_versions(v1: str, v2: str) -> int:
    """Compare two dotted version ids; returns 1, 0 or -1."""
    parts1 = _version_parts(v1)
    parts2 = _version_parts(v2)
    if parts1 > parts2:
        return 1
    if parts1 < parts2:
        return -1
    return 0


def is_newer_version(current: str, latest: str) -> bool:
    return compare_versions(latest, current) > 0
