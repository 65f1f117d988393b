"""
Unit tests for the hot key registry.
"""

import json

import pytest

from service_listings.app.caching.hot_keys import HotKeyRegistry


class TestHotKeyRegistry:
    """Test cases for HotKeyRegistry."""

    @pytest.fixture
    def hot_file(self, tmp_path):
        path = tmp_path / "hot_listings.json"
        path.write_text(json.dumps({
            "keys": [
                {"listing_id": 17, "weight": 0.2},
                {"listing_id": 4, "weight": 0.9},
                {"listing_id": 8, "weight": 0.5},
            ],
            "max_entries": 2,
        }))
        return path

    def test_all_mode_everything_hot(self):
        registry = HotKeyRegistry()

        assert registry.is_hot(1)
        assert registry.is_hot("anything")
        assert registry.warm_keys() == []

    def test_invalid_mode(self):
        with pytest.raises(ValueError):
            HotKeyRegistry("some")

    def test_listed_mode_uses_file(self, hot_file):
        """Test max_entries keeps the heaviest keys only."""
        registry = HotKeyRegistry("listed", hot_file)

        assert registry.is_hot(4)
        assert registry.is_hot("8")
        assert not registry.is_hot(17)
        assert registry.warm_keys() == [4, 8]

    def test_mark_hot_at_runtime(self, hot_file):
        registry = HotKeyRegistry("listed", hot_file)

        registry.mark_hot(99)

        assert registry.is_hot(99)
        assert registry.warm_keys() == [4, 8, 99]
        assert registry.warm_keys(limit=1) == [4]

    def test_missing_file_is_empty(self, tmp_path):
        registry = HotKeyRegistry("listed", tmp_path / "missing.json")

        assert not registry.is_hot(1)
        assert registry.warm_keys() == []

    def test_malformed_file_is_empty(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")

        registry = HotKeyRegistry("listed", path)

        assert registry.warm_keys() == []

    def test_refresh_rereads_file(self, hot_file):
        registry = HotKeyRegistry("listed", hot_file)
        hot_file.write_text(json.dumps({"keys": [{"listing_id": 17, "weight": 1.0}]}))

        registry.refresh()

        assert registry.is_hot(17)
        assert not registry.is_hot(4)
        assert registry.path == hot_file
