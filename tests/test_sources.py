"""Tests for bundle_keeper.sources module."""

import pytest

from bundle_keeper.errors import InvalidSource
from bundle_keeper.sources import (
    compare_versions,
    format_source,
    is_newer_version,
    parse_source,
)


class TestParseSource:
    """Tests for parse_source function."""

    def test_github_prefix(self):
        source = parse_source("github:owner/repo")
        assert source.kind == "github"
        assert source.location == "owner/repo"
        assert source.branch == "main"

    def test_bare_owner_repo(self):
        assert parse_source("owner/repo").key == "github:owner/repo"

    def test_git_url(self):
        source = parse_source("git:https://example.com/team/tool.git")
        assert source.kind == "git"
        assert source.location == "https://example.com/team/tool.git"

    def test_directory_resolved(self, temp_dir):
        source = parse_source(f"dir:{temp_dir}")
        assert source.kind == "dir"
        assert source.location == str(temp_dir.resolve())

    @pytest.mark.parametrize("text", [
        "",
        "github:",
        "github:no-slash",
        "npm:left-pad",
        "git:",
        "dir:",
        "just-a-name",
        "a/b/c",
    ])
    def test_invalid(self, text):
        with pytest.raises(InvalidSource):
            parse_source(text)

    def test_format_source(self):
        assert format_source(parse_source("owner/repo")) == "github:owner/repo"


class TestCompareVersions:
    """Tests for version ordering."""

    @pytest.mark.parametrize("v1,v2,expected", [
        ("1.0.0", "1.0.0", 0),
        ("1.0.1", "1.0.0", 1),
        ("1.0.0", "1.1.0", -1),
        ("v2.0.0", "1.9.9", 1),
        ("1.0", "1.0.0", 0),
        ("1.10.0", "1.9.0", 1),
        ("1.0.0-beta", "1.0.0", 0),
    ])
    def test_compare(self, v1, v2, expected):
        assert compare_versions(v1, v2) == expected

    def test_is_newer_version(self):
        assert is_newer_version("1.0.0", "1.1.0")
        assert not is_newer_version("1.1.0", "1.1.0")
        assert not is_newer_version("1.1.0", "1.0.0")
