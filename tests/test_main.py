"""Tests for bundle_keeper.__main__ module."""

import sys
from unittest.mock import patch


class TestMainModule:
    """Tests for __main__.py entry point."""

    def test_main_module_runs(self, temp_dir, capsys):
        with patch.object(sys, "argv", ["prog", "--home", str(temp_dir / "home"), "list"]):
            from bundle_keeper.__main__ import main
            assert main() == 0

        assert "No units registered" in capsys.readouterr().out

    def test_main_module_importable(self):
        """Test that __main__ can be imported."""
        import bundle_keeper.__main__ as main_module
        assert hasattr(main_module, "main")
