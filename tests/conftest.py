"""Pytest configuration and shared fixtures."""

import os
import stat
from pathlib import Path
from typing import Callable, List, Optional

import pytest

from railsup.core.download_manager import DownloadError
from railsup.core.interfaces import IDownloadManager
from railsup.core.paths import RailsupPaths


def write_executable(path: Path, content: str) -> Path:
    """Write a script and mark it executable."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


def fake_ruby_script(version: str) -> str:
    return f'#!/bin/sh\necho "ruby {version}"\n'


def make_install(paths: RailsupPaths, version: str) -> Path:
    """Create a complete-looking install: <base>/ruby/<version>/bin/ruby."""
    write_executable(paths.ruby_executable(version), fake_ruby_script(version))
    return paths.ruby_root(version)


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch) -> Path:
    """Point RAILSUP_HOME at a temporary directory so no test touches ~/.railsup."""
    home = tmp_path / "railsup-home"
    monkeypatch.setenv("RAILSUP_HOME", str(home))
    monkeypatch.delenv("RUBYOPT", raising=False)
    monkeypatch.delenv("RUBYLIB", raising=False)
    return home


@pytest.fixture
def paths(isolated_home) -> RailsupPaths:
    """A RailsupPaths rooted in the temporary home."""
    return RailsupPaths(isolated_home)


@pytest.fixture
def install(paths) -> Callable[[str], Path]:
    """Factory fixture creating fake installs."""
    return lambda version: make_install(paths, version)


class FakeDownloadManager(IDownloadManager):
    """
    In-memory fetcher used in place of the network.

    Writes a minimal interpreter tree into the destination directory. With
    ``fail_after_extract`` it leaves a partial tree behind and raises, the way
    a crashed download would.
    """

    def __init__(
        self,
        fail_after_extract: bool = False,
        with_ruby: bool = True,
        marker: str = "build-1",
    ):
        self.fail_after_extract = fail_after_extract
        self.with_ruby = with_ruby
        self.marker = marker
        self.calls: List[str] = []
        self.final_dirs: List[Optional[Path]] = []

    def fetch_and_extract(self, version, destination_dir, progress_callback=None, final_dir=None):
        self.calls.append(version)
        self.final_dirs.append(final_dir)
        destination_dir = Path(destination_dir)
        destination_dir.mkdir(parents=True, exist_ok=True)
        if self.with_ruby:
            write_executable(destination_dir / "bin" / "ruby", fake_ruby_script(version))
        (destination_dir / "MARKER").write_text(self.marker)
        if progress_callback:
            progress_callback(10, 10)
        if self.fail_after_extract:
            raise DownloadError(f"simulated failure for {version}")


@pytest.fixture
def fake_fetcher() -> FakeDownloadManager:
    return FakeDownloadManager()


@pytest.fixture
def system_path() -> str:
    """The PATH of the test process, used as the base for exec tests."""
    return os.environ.get("PATH", "/usr/bin:/bin")
