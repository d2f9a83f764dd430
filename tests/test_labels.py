"""Unit tests for labels.py - Label matchers."""

import pytest

from labels import limit_labels_with_regex


class TestLimitLabelsWithRegex:
    """Tests for limit_labels_with_regex()."""

    def test_match_all(self):
        """Test that the default pattern keeps every label."""
        matcher = limit_labels_with_regex(".*")
        labels = {"env": "prod", "team": "payments"}
        assert matcher(labels) == labels

    def test_match_on_key(self):
        """Test filtering by label key."""
        matcher = limit_labels_with_regex("^(env|team)$")
        labels = {"env": "prod", "team": "payments", "cost-center": "42"}
        assert matcher(labels) == {"env": "prod", "team": "payments"}

    def test_match_on_value(self):
        """Test filtering by label value."""
        matcher = limit_labels_with_regex("^prod", match_on="value")
        labels = {"env": "production", "stage": "dev", "tier": "prod"}
        assert matcher(labels) == {"env": "production", "tier": "prod"}

    def test_search_semantics(self):
        """Test that an unanchored pattern matches anywhere."""
        matcher = limit_labels_with_regex("tag")
        assert matcher({"my-tag-key": "x", "other": "y"}) == {"my-tag-key": "x"}

    def test_empty_and_none_labels(self):
        """Test that missing labels produce an empty result."""
        matcher = limit_labels_with_regex(".*")
        assert matcher({}) == {}
        assert matcher(None) == {}

    def test_returns_new_dict(self):
        """Test that the input mapping is not modified."""
        matcher = limit_labels_with_regex("^env$")
        labels = {"env": "prod", "team": "payments"}
        result = matcher(labels)
        result["extra"] = "x"
        assert labels == {"env": "prod", "team": "payments"}

    def test_invalid_regex_raises(self):
        """Test that a malformed expression raises ValueError."""
        with pytest.raises(ValueError, match="Invalid label regex"):
            limit_labels_with_regex("([a-z")

    def test_invalid_match_on_raises(self):
        """Test that an unknown match target raises ValueError."""
        with pytest.raises(ValueError, match="match_on"):
            limit_labels_with_regex(".*", match_on="both")
