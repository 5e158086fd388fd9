"""Unit tests for version parsing and ordering."""

import pytest

from railsup.core import version_utils
from railsup.utils.input_validator import InputValidationError


class TestNormalize:
    """Test normalizing user-supplied versions."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("4.0.1", "4.0.1"),
            ("  4.0.1\n", "4.0.1"),
            ("v3.4.8", "3.4.8"),
            ("ruby-3.4.8", "3.4.8"),
            ("4.0.0-rc1", "4.0.0-rc1"),
            ("3.4.0.preview1", "3.4.0.preview1"),
        ],
    )
    def test_accepts(self, raw, expected):
        """Test well-formed versions are cleaned up."""
        assert version_utils.normalize_version(raw) == expected

    @pytest.mark.parametrize("raw", ["", "   ", "latest", "abc", "../4.0.1", "4.0.1/../../etc"])
    def test_rejects(self, raw):
        """Test malformed versions raise InputValidationError."""
        with pytest.raises(InputValidationError):
            version_utils.normalize_version(raw)

    def test_is_version_id(self):
        """Test directory names are classified."""
        assert version_utils.is_version_id("4.0.1")
        assert version_utils.is_version_id("4.0")
        assert not version_utils.is_version_id(".4.0.1.tmp-abc")
        assert not version_utils.is_version_id("README")


class TestOrdering:
    """Test semantic version ordering."""

    def test_numeric_not_lexicographic(self):
        """Test 3.10.0 sorts above 3.9.0."""
        assert version_utils.compare_versions("3.10.0", "3.9.0") > 0

    def test_prerelease_below_release(self):
        """Test release candidates and previews sort below the release."""
        assert version_utils.compare_versions("4.0.0-rc1", "4.0.0") < 0
        assert version_utils.compare_versions("3.4.0.preview1", "3.4.0") < 0

    def test_sort_desc(self):
        """Test descending sort mixes releases and prereleases correctly."""
        versions = ["3.4.8", "4.0.1", "4.0.0-rc1", "3.10.0"]
        assert version_utils.sort_versions_desc(versions) == ["4.0.1", "4.0.0-rc1", "3.10.0", "3.4.8"]

    def test_latest(self):
        """Test latest picks the semantic maximum."""
        assert version_utils.latest_version(["3.9.0", "4.0.1", "4.0.0-rc1"]) == "4.0.1"
        assert version_utils.latest_version([]) is None
