"""Unit tests for the installed-version registry."""

import pytest

from conftest import write_executable
from railsup.core.local_manager import LocalManager, NotInstalledError


class TestListInstalled:
    """Test scanning the install root."""

    def test_empty_when_root_missing(self, paths):
        """Test a missing install root means nothing installed."""
        manager = LocalManager(paths)
        assert manager.list_installed() == []
        assert manager.latest() is None

    def test_lists_newest_first(self, paths, install):
        """Test installed versions are sorted descending."""
        for version in ("3.9.0", "4.0.1", "4.0.0-rc1"):
            install(version)

        manager = LocalManager(paths)
        assert manager.list_installed() == ["4.0.1", "4.0.0-rc1", "3.9.0"]
        assert manager.latest() == "4.0.1"

    def test_ignores_incomplete_and_foreign_entries(self, paths, install):
        """Test partial installs, staging dirs and stray files are skipped."""
        install("4.0.1")
        (paths.ruby_dir / "3.4.8" / "bin").mkdir(parents=True)
        write_executable(paths.ruby_dir / ".3.3.0.tmp-x1y2" / "bin" / "ruby", "#!/bin/sh\n")
        (paths.ruby_dir / "notes").mkdir()
        (paths.ruby_dir / "3.2.0").write_text("not a directory")
        non_exec = paths.ruby_dir / "3.1.0" / "bin" / "ruby"
        non_exec.parent.mkdir(parents=True)
        non_exec.write_text("#!/bin/sh\n")
        non_exec.chmod(0o644)

        assert LocalManager(paths).list_installed() == ["4.0.1"]

    def test_sees_out_of_band_removal(self, paths, install):
        """Test the registry re-reads the filesystem on every call."""
        import shutil

        install("4.0.1")
        manager = LocalManager(paths)
        assert manager.is_installed("4.0.1")

        shutil.rmtree(paths.ruby_root("4.0.1"))
        assert not manager.is_installed("4.0.1")
        assert manager.list_installed() == []


class TestIsInstalled:
    """Test single-version queries."""

    def test_invalid_version_is_not_installed(self, paths):
        """Test path-like input is never treated as installed."""
        assert not LocalManager(paths).is_installed("../../bin")

    def test_not_installed_error_suggests_install(self):
        """Test the not-installed error names the install command."""
        error = NotInstalledError("3.4.8")
        assert error.version == "3.4.8"
        assert "railsup ruby install 3.4.8" in str(error)
