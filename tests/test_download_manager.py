"""Tests for downloading, verifying and extracting Ruby archives."""

import hashlib
import io
import tarfile
from pathlib import Path
from unittest import mock

import pytest
import requests

from conftest import write_executable
from railsup.core import download_manager as dm
from railsup.core.download_manager import (
    ChecksumError,
    DownloadError,
    DownloadManager,
    ExtractionError,
    FetchError,
)
from railsup.utils.retry import RetryHandler

VERSION = "4.0.1"


def build_archive(tmp_path: Path, version: str = VERSION) -> bytes:
    """Build a small ruby-<version>/ tarball the way release archives are laid out."""
    root = tmp_path / "src" / f"ruby-{version}"
    write_executable(root / "bin" / "ruby", f'#!/bin/sh\necho "ruby {version}"\n')
    write_executable(root / "bin" / "rake", "#!/opt/build/ruby/bin/ruby\nrequire 'rake'\n")
    (root / "lib" / "ruby").mkdir(parents=True)
    (root / "lib" / "ruby" / "VERSION").write_text(version)

    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tf:
        tf.add(root, arcname=f"ruby-{version}")
    return buffer.getvalue()


def fake_response(content: bytes = b"", text: str = "", status: int = 200):
    response = mock.MagicMock()
    response.status_code = status
    response.headers = {"content-length": str(len(content))}
    response.text = text
    response.iter_content.return_value = [content[i:i + 1000] for i in range(0, len(content), 1000)]
    if status >= 400:
        error = requests.exceptions.HTTPError(f"{status} error")
        error.response = response
        response.raise_for_status.side_effect = error
    return response


def make_session(archive: bytes, checksum: str):
    session = mock.MagicMock()
    session.headers = {}

    def get(url, **kwargs):
        if url.endswith(".sha256"):
            return fake_response(text=f"{checksum}  ruby-{VERSION}-linux-x86_64.tar.gz\n")
        return fake_response(content=archive)

    session.get.side_effect = get
    return session


def make_manager(paths, session) -> DownloadManager:
    return DownloadManager(
        paths,
        session=session,
        retry_handler=RetryHandler(max_retries=0),
        os_name="linux",
        arch="x86_64",
    )


class TestUrls:
    """Test archive naming and platform detection."""

    def test_download_url(self):
        """Test the release URL layout."""
        assert dm.ruby_download_url("4.0.1", "darwin", "arm64") == (
            "https://github.com/railsup-sh/ruby/releases/download/v4.0.1/ruby-4.0.1-darwin-arm64.tar.gz"
        )
        assert dm.checksum_url("4.0.1", "linux", "x86_64").endswith("ruby-4.0.1-linux-x86_64.tar.gz.sha256")

    @pytest.mark.parametrize("machine,expected", [("aarch64", "arm64"), ("AMD64", "x86_64"), ("arm64", "arm64")])
    def test_detect_arch(self, machine, expected):
        """Test architecture aliases are normalized."""
        with mock.patch("platform.machine", return_value=machine):
            assert dm.detect_arch() == expected

    def test_unsupported_os(self):
        """Test Windows is rejected."""
        with mock.patch("platform.system", return_value="Windows"):
            with pytest.raises(FetchError):
                dm.detect_os()

    def test_cache_path(self, paths):
        """Test archives are cached under <base>/cache."""
        manager = make_manager(paths, mock.MagicMock(headers={}))
        assert manager.get_cache_path("4.0.1") == paths.cache_dir / "ruby-4.0.1-linux-x86_64.tar.gz"


class TestFetchAndExtract:
    """Test the full fetch pipeline against a mocked session."""

    def test_extracts_and_hoists(self, paths, tmp_path):
        """Test the archive's top-level directory is flattened into the destination."""
        archive = build_archive(tmp_path)
        manager = make_manager(paths, make_session(archive, hashlib.sha256(archive).hexdigest()))
        destination = tmp_path / "staging"
        progress = []

        manager.fetch_and_extract(VERSION, destination, lambda done, total: progress.append((done, total)))

        assert (destination / "bin" / "ruby").is_file()
        assert (destination / "lib" / "ruby" / "VERSION").read_text() == VERSION
        assert not (destination / f"ruby-{VERSION}").exists()
        assert progress[-1] == (len(archive), len(archive))
        assert manager.get_cache_path(VERSION).exists()

    def test_fixes_shebangs(self, paths, tmp_path):
        """Test ruby scripts point at the final interpreter location."""
        archive = build_archive(tmp_path)
        manager = make_manager(paths, make_session(archive, hashlib.sha256(archive).hexdigest()))
        destination = tmp_path / "staging"
        final_dir = paths.ruby_root(VERSION)

        manager.fetch_and_extract(VERSION, destination, final_dir=final_dir)

        rake = (destination / "bin" / "rake").read_text()
        assert rake.splitlines()[0] == f"#!{final_dir / 'bin' / 'ruby'}"
        assert "require 'rake'" in rake
        assert (destination / "bin" / "ruby").read_text().startswith("#!/bin/sh")

    def test_uses_cache(self, paths, tmp_path):
        """Test a cached archive is extracted without network access."""
        archive = build_archive(tmp_path)
        paths.cache_dir.mkdir(parents=True)
        session = mock.MagicMock(headers={})
        manager = make_manager(paths, session)
        manager.get_cache_path(VERSION).write_bytes(archive)

        manager.fetch_and_extract(VERSION, tmp_path / "staging")

        session.get.assert_not_called()
        assert (tmp_path / "staging" / "bin" / "ruby").is_file()

    def test_checksum_mismatch(self, paths, tmp_path):
        """Test a bad checksum deletes the cached archive and leaves nothing extracted."""
        archive = build_archive(tmp_path)
        manager = make_manager(paths, make_session(archive, "0" * 64))
        destination = tmp_path / "staging"

        with pytest.raises(ChecksumError):
            manager.fetch_and_extract(VERSION, destination)

        assert not manager.get_cache_path(VERSION).exists()
        assert not destination.exists()

    def test_http_error(self, paths, tmp_path):
        """Test a 404 surfaces as DownloadError without a partial file."""
        session = mock.MagicMock(headers={})
        session.get.return_value = fake_response(status=404)
        manager = make_manager(paths, session)

        with pytest.raises(DownloadError):
            manager.fetch_and_extract(VERSION, tmp_path / "staging")

        assert list(paths.cache_dir.iterdir()) == []

    def test_rejects_path_traversal(self, paths, tmp_path):
        """Test members escaping the destination are refused."""
        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w:gz") as tf:
            data = b"owned"
            info = tarfile.TarInfo("../escape.txt")
            info.size = len(data)
            tf.addfile(info, io.BytesIO(data))
        paths.cache_dir.mkdir(parents=True)
        manager = make_manager(paths, mock.MagicMock(headers={}))
        manager.get_cache_path(VERSION).write_bytes(buffer.getvalue())
        destination = tmp_path / "staging"

        with pytest.raises(ExtractionError):
            manager.fetch_and_extract(VERSION, destination)

        assert not (tmp_path / "escape.txt").exists()
        assert not destination.exists()

    def test_rejects_symlink_outside(self, paths, tmp_path):
        """Test symlinks pointing outside the destination are refused."""
        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w:gz") as tf:
            info = tarfile.TarInfo("bin/ruby")
            info.type = tarfile.SYMTYPE
            info.linkname = "../../../usr/bin/ruby"
            tf.addfile(info)
        paths.cache_dir.mkdir(parents=True)
        manager = make_manager(paths, mock.MagicMock(headers={}))
        manager.get_cache_path(VERSION).write_bytes(buffer.getvalue())

        with pytest.raises(ExtractionError):
            manager.fetch_and_extract(VERSION, tmp_path / "staging")


class TestClearCache:
    """Test clearing the archive cache."""

    def test_clear_cache(self, paths):
        """Test cached files are removed and counted."""
        paths.cache_dir.mkdir(parents=True)
        (paths.cache_dir / "ruby-4.0.1-linux-x86_64.tar.gz").write_bytes(b"x" * 10)
        (paths.cache_dir / "ruby-3.4.8-linux-x86_64.tar.gz").write_bytes(b"y" * 5)

        manager = make_manager(paths, mock.MagicMock(headers={}))
        assert manager.clear_cache() == (2, 15)
        assert list(paths.cache_dir.iterdir()) == []

    def test_clear_missing_cache(self, paths):
        """Test clearing a missing cache directory is a no-op."""
        assert make_manager(paths, mock.MagicMock(headers={})).clear_cache() == (0, 0)
