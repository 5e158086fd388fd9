"""Unit tests for listing downloadable versions."""

from unittest import mock

import requests

from railsup.core.remote_fetcher import AVAILABLE_VERSIONS, GITHUB_API_RELEASES, RemoteFetcher
from railsup.utils.retry import RetryHandler


def make_fetcher(session) -> RemoteFetcher:
    return RemoteFetcher(session=session, retry_handler=RetryHandler(max_retries=0))


class TestGetRemoteVersions:
    """Test reading release tags."""

    def test_parses_release_tags(self):
        """Test tags are stripped, deduplicated and sorted newest first."""
        session = mock.MagicMock(headers={})
        session.get.return_value.json.return_value = [
            {"tag_name": "v3.4.8"},
            {"tag_name": "v4.0.1"},
            {"tag_name": "v4.0.0-rc1"},
            {"tag_name": "4.0.1"},
            {"tag_name": "nightly"},
            {"name": "untagged"},
        ]

        versions = make_fetcher(session).get_remote_versions()

        assert versions == ["4.0.1", "4.0.0-rc1", "3.4.8"]
        session.get.assert_called_once()
        assert session.get.call_args.args[0] == GITHUB_API_RELEASES

    def test_network_error_falls_back(self):
        """Test a connection failure returns the built-in list."""
        session = mock.MagicMock(headers={})
        session.get.side_effect = requests.exceptions.ConnectionError("offline")
        assert make_fetcher(session).get_remote_versions() == list(AVAILABLE_VERSIONS)

    def test_unexpected_payload_falls_back(self):
        """Test a non-list response returns the built-in list."""
        session = mock.MagicMock(headers={})
        session.get.return_value.json.return_value = {"message": "API rate limit exceeded"}
        assert make_fetcher(session).get_remote_versions() == list(AVAILABLE_VERSIONS)

    def test_no_usable_tags_falls_back(self):
        """Test an empty release list returns the built-in list."""
        session = mock.MagicMock(headers={})
        session.get.return_value.json.return_value = []
        assert make_fetcher(session).get_remote_versions() == list(AVAILABLE_VERSIONS)
