"""Tests for bundle_keeper.diff module."""

from bundle_keeper.diff import diff3, diff_trees


class TestDiff3:
    """Tests for three-way file-set classification."""

    def test_classification(self, make_tree):
        base = make_tree("base", {
            "same.txt": "same",
            "up_only.txt": "v1",
            "both_same.txt": "v1",
            "both_diff.txt": "v1",
            "local_only.txt": "v1",
            "removed.txt": "gone",
            "local_missing.txt": "v1",
        })
        upstream = make_tree("upstream", {
            "same.txt": "same",
            "up_only.txt": "v2",
            "both_same.txt": "v2",
            "both_diff.txt": "v2",
            "local_only.txt": "v1",
            "local_missing.txt": "v2",
            "new.txt": "new",
        })
        local = make_tree("local", {
            "same.txt": "same",
            "up_only.txt": "v1",
            "both_same.txt": "v2",
            "both_diff.txt": "mine",
            "local_only.txt": "mine",
            "removed.txt": "gone",
            "extra.txt": "local addition",
        })

        diff = diff3(base, upstream, local)

        assert diff.added == ["new.txt"]
        assert diff.deleted == ["removed.txt"]
        assert diff.conflicting == ["both_diff.txt"]
        assert diff.modified == ["both_same.txt", "local_missing.txt", "up_only.txt"]
        assert diff.unchanged == ["local_only.txt", "same.txt"]

    def test_buckets_disjoint_and_cover_base_and_upstream(self, make_tree):
        base = make_tree("base", {"a": "1", "b": "1", "c": "1", "d": "1"})
        upstream = make_tree("upstream", {"a": "1", "b": "2", "c": "2", "e": "1"})
        local = make_tree("local", {"a": "x", "b": "1", "c": "3", "f": "1"})

        diff = diff3(base, upstream, local)

        buckets = [diff.added, diff.deleted, diff.modified, diff.conflicting, diff.unchanged]
        total = sum(len(b) for b in buckets)
        assert total == len(diff.all_paths())
        assert diff.all_paths() == {"a", "b", "c", "d", "e"}
        assert "f" not in diff.all_paths()

    def test_identical_trees(self, make_tree):
        files = {"x.txt": "x", "sub/y.txt": "y"}
        base = make_tree("base", files)
        upstream = make_tree("upstream", files)
        local = make_tree("local", files)

        diff = diff3(base, upstream, local)

        assert diff.unchanged == ["sub/y.txt", "x.txt"]
        assert not (diff.added or diff.deleted or diff.modified or diff.conflicting)

    def test_skip_dirs_ignored(self, make_tree):
        base = make_tree("base", {"a": "1"})
        upstream = make_tree("upstream", {"a": "1", ".git/HEAD": "ref"})
        local = make_tree("local", {"a": "1"})

        diff = diff3(base, upstream, local, skip_dirs=(".git",))

        assert diff.added == []


class TestDiffTrees:
    """Tests for two-way comparison."""

    def test_added_removed_changed(self, make_tree):
        old = make_tree("old", {"keep": "k", "edit": "1", "drop": "d"})
        new = make_tree("new", {"keep": "k", "edit": "2", "add": "a"})

        diff = diff_trees(old, new)

        assert diff.added == ["add"]
        assert diff.removed == ["drop"]
        assert diff.changed == ["edit"]

    def test_same_size_different_content(self, make_tree):
        old = make_tree("old", {"f": "aaaa"})
        new = make_tree("new", {"f": "bbbb"})

        assert diff_trees(old, new).changed == ["f"]

    def test_identical(self, make_tree):
        old = make_tree("old", {"f": "same"})
        new = make_tree("new", {"f": "same"})

        assert diff_trees(old, new).is_empty
