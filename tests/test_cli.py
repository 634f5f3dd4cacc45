"""Tests for bundle_keeper.cli module."""

import sys
from pathlib import Path
from unittest.mock import patch

import pytest

from bundle_keeper.cli import confirm_prompt, main, parse_args
from bundle_keeper.config import load_settings


@pytest.fixture
def home(temp_dir):
    return temp_dir / "home"


@pytest.fixture
def run(home):
    """Invoke the CLI against the temporary data directory."""
    def _run(*argv):
        return main(["--home", str(home), *argv])
    return _run


@pytest.fixture
def added(run, upstream_dir, capsys):
    assert run("add", "demo", "--source", f"dir:{upstream_dir}", "--version", "1.0.0") == 0
    capsys.readouterr()
    return run


class TestParseArgs:
    """Tests for parse_args function."""

    def test_parse_add(self):
        args = parse_args(["add", "demo", "--source", "owner/demo"])

        assert args.command == "add"
        assert args.name == "demo"
        assert args.source == "owner/demo"
        assert args.version_id is None

    def test_parse_home_and_verbose(self):
        args = parse_args(["--home", "/data", "-v", "list"])

        assert args.home == Path("/data")
        assert args.verbose is True

    def test_parse_from_sys_argv(self):
        with patch.object(sys, "argv", ["prog", "check", "--refresh"]):
            args = parse_args()

        assert args.command == "check"
        assert args.name is None
        assert args.refresh is True

    def test_parse_switch(self):
        args = parse_args(["switch", "demo", "--version", "1.0.0-custom", "--type", "custom"])

        assert args.version_id == "1.0.0-custom"
        assert args.pool == "custom"

    def test_switch_default_pool(self):
        assert parse_args(["switch", "demo", "--version", "1.0.0"]).pool == "official"

    def test_resolve_choice_validated(self):
        with pytest.raises(SystemExit):
            parse_args(["resolve", "demo", "--file", "a.txt", "--use", "theirs"])

    def test_command_required(self):
        with pytest.raises(SystemExit):
            parse_args([])


class TestConfirmPrompt:
    """Tests for confirm_prompt function."""

    def test_yes(self):
        with patch("builtins.input", return_value="y"):
            assert confirm_prompt("Continue?") is True

    def test_uppercase_yes(self):
        with patch("builtins.input", return_value="Y"):
            assert confirm_prompt("Continue?") is True

    def test_default_no(self):
        with patch("builtins.input", return_value=""):
            assert confirm_prompt("Continue?") is False


class TestRegistrationCommands:
    """Tests for add, list, info and remove."""

    def test_add(self, run, upstream_dir, capsys):
        assert run("add", "demo", "--source", f"dir:{upstream_dir}") == 0
        assert "Added demo (1.1.0)" in capsys.readouterr().out

    def test_add_invalid_source(self, run, capsys):
        assert run("add", "demo", "--source", "npm:left-pad") == 1
        assert "Error: Invalid source" in capsys.readouterr().out

    def test_add_unsafe_name(self, run, upstream_dir, capsys):
        assert run("add", "..", "--source", f"dir:{upstream_dir}") == 1
        assert "Error: Invalid unit name" in capsys.readouterr().out

    def test_list_empty(self, run, capsys):
        assert run("list") == 0
        assert "No units registered" in capsys.readouterr().out

    def test_list(self, added, capsys):
        assert added("ls") == 0

        out = capsys.readouterr().out
        assert "* demo" in out
        assert "Version: 1.0.0 (official)" in out

    def test_info(self, added, capsys):
        assert added("info", "demo") == 0
        assert "Official Ver:    1.0.0" in capsys.readouterr().out

    def test_info_unknown(self, run, capsys):
        assert run("info", "missing") == 1
        assert "Unit not found: missing" in capsys.readouterr().out

    def test_remove_aborted(self, added, capsys):
        with patch("builtins.input", return_value="n"):
            assert added("remove", "demo") == 0

        assert "Aborted." in capsys.readouterr().out
        assert added("info", "demo") == 0

    def test_remove_confirmed(self, added, capsys):
        with patch("builtins.input", return_value="y"):
            assert added("remove", "demo") == 0

        assert "Removed demo" in capsys.readouterr().out
        assert added("info", "demo") == 1


class TestUpdateCommands:
    """Tests for the check, download, merge and confirm flow."""

    def test_check_single(self, added, capsys):
        assert added("check", "demo") == 0
        assert "demo: 1.0.0 -> 1.1.0" in capsys.readouterr().out

    def test_check_all(self, added, capsys):
        assert added("check") == 0
        assert "1 update(s) available" in capsys.readouterr().out

    def test_check_unknown(self, run, capsys):
        assert run("check", "missing") == 1
        assert "Could not check missing" in capsys.readouterr().out

    def test_download_without_check(self, added, capsys):
        assert added("download", "demo") == 1
        assert "Error: No pending update" in capsys.readouterr().out

    def test_full_flow(self, added, home, capsys):
        added("fork", "demo")
        custom = home / "versions" / "demo" / "custom" / "1.0.0-custom" / "src" / "main.py"
        custom.write_text("def main():\n    return 100\n")
        assert added("save", "demo", "--comment", "return 100") == 0
        added("check", "demo")
        added("download", "demo")
        capsys.readouterr()

        assert added("merge", "demo") == 0
        assert "with 1 conflict(s)" in capsys.readouterr().out

        assert added("conflicts", "demo") == 0
        assert "src/main.py (line 2)" in capsys.readouterr().out

        assert added("resolve", "demo", "--file", "src/main.py", "--use", "local") == 0
        assert "Resolved 1 conflict(s) in src/main.py using local" in capsys.readouterr().out

        assert added("conflicts", "demo") == 0
        assert "No conflicts found" in capsys.readouterr().out

        assert added("switch", "demo", "--version", "1.1.0-merged", "--type", "merged") == 0
        assert "Switched to 1.1.0-merged (merged)" in capsys.readouterr().out

        assert added("confirm", "demo", "--yes") == 0
        assert "official version: 1.1.0" in capsys.readouterr().out

    def test_confirm_cancelled(self, added, capsys):
        with patch("builtins.input", return_value="n"):
            assert added("confirm", "demo") == 0
        assert "Cancelled" in capsys.readouterr().out

    def test_resolve_without_merge(self, added, capsys):
        assert added("resolve", "demo", "--file", "README.md", "--use", "upstream") == 1
        assert "Error:" in capsys.readouterr().out


class TestVersionCommands:
    """Tests for versions, switch, rollback and cleanup."""

    def test_versions(self, added, capsys):
        added("fork", "demo")
        capsys.readouterr()

        assert added("versions", "demo") == 0

        out = capsys.readouterr().out
        assert "[custom] 1.0.0-custom <- active" in out
        assert "[official] 1.0.0" in out

    def test_switch_missing_version(self, added, capsys):
        assert added("switch", "demo", "--version", "9.9.9") == 1
        assert "Error: Version not found" in capsys.readouterr().out

    def test_rollback(self, added, capsys):
        added("fork", "demo")
        capsys.readouterr()

        assert added("rollback", "demo") == 0
        assert "Rolled back to 1.0.0 (official)" in capsys.readouterr().out

    def test_rollback_exhausted(self, added, capsys):
        assert added("rollback", "demo") == 1
        assert "No previous version" in capsys.readouterr().out

    def test_cleanup(self, added, capsys):
        assert added("cleanup", "demo", "--keep", "0") == 0
        assert "Removed 0 old version(s)" in capsys.readouterr().out

    def test_diff(self, added, home, capsys):
        added("fork", "demo")
        readme = home / "versions" / "demo" / "custom" / "1.0.0-custom" / "README.md"
        readme.write_text("edited\n")
        capsys.readouterr()

        assert added("diff", "demo") == 0
        assert "~ README.md" in capsys.readouterr().out


class TestConfigCommand:
    """Tests for the config command."""

    def test_show(self, run, capsys):
        assert run("config") == 0
        assert "Cache Days:     7" in capsys.readouterr().out

    def test_update_persists(self, run, home, capsys):
        assert run("config", "--cache-days", "60", "--keep", "5", "--allow-critical") == 0

        assert "Configuration saved" in capsys.readouterr().out
        settings = load_settings(home)
        assert settings.cache_days == 30
        assert settings.keep_per_pool == 5
        assert settings.auto_reject_critical is False
