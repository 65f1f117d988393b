"""
Unit tests for the listings membership filter.
"""

import math
import threading

import pytest

from service_listings.app.filter.bloom import MembershipFilter, false_positive_rate, optimal_size


class TestSizing:
    """Sizing from expected count and target rate."""

    def test_optimal_size_matches_standard_relations(self):
        """m = ceil(-n ln p / ln2^2), k = ceil(m/n ln2)."""
        bits, hashes = optimal_size(10_000, 0.01)

        assert bits == math.ceil(-10_000 * math.log(0.01) / (math.log(2) ** 2))
        assert hashes == math.ceil((bits / 10_000) * math.log(2))
        assert (bits, hashes) == (95851, 7)

    def test_optimal_size_with_zero_keys(self):
        """An empty enumeration still yields a usable filter."""
        bits, hashes = optimal_size(0, 0.01)

        assert bits >= 1
        assert hashes >= 1

    def test_expected_rate_close_to_target(self):
        """Rounding up m and k keeps the documented rate near p."""
        bloom = MembershipFilter(10_000, 0.01)

        assert bloom.expected_false_positive_rate() == pytest.approx(0.01, abs=0.001)

    def test_small_filters_are_padded(self):
        bloom = MembershipFilter(3, 0.01)

        assert bloom.num_bits == 1024
        assert bloom.num_hashes == 7

    def test_false_positive_rate_empty(self):
        assert false_positive_rate(1000, 5, 0) == 0.0

    def test_rejects_invalid_rate(self):
        with pytest.raises(ValueError):
            MembershipFilter(100, 1.5)


class TestMembership:
    """Membership answers."""

    def test_initialize_from_keys(self):
        """Scenario: built from {1, 2, 3}."""
        bloom = MembershipFilter.initialize([1, 2, 3], 0.01)

        assert bloom.might_contain(1)
        assert bloom.might_contain(2)
        assert bloom.might_contain(3)
        assert not bloom.might_contain(4)
        assert bloom.insertions == 3

    def test_add_makes_key_visible(self):
        bloom = MembershipFilter.initialize([1, 2, 3], 0.01)

        bloom.add(4)

        assert bloom.might_contain(4)
        assert bloom.insertions == 4

    def test_string_and_int_keys_share_a_representation(self):
        """Keys are hashed by their string form."""
        bloom = MembershipFilter.initialize([42], 0.01)

        assert bloom.might_contain("42")

    def test_headroom_scales_capacity(self):
        bloom = MembershipFilter.initialize(range(100), 0.01, headroom=2.0)

        assert bloom.expected_insertions == 200

    def test_no_false_negatives(self):
        """Every inserted key answers possibly-present."""
        keys = list(range(0, 50_000, 7))
        bloom = MembershipFilter.initialize(keys, 0.01)

        assert all(bloom.might_contain(key) for key in keys)

    def test_empirical_false_positive_rate_bounded(self):
        """Non-inserted keys hit at roughly the target rate."""
        bloom = MembershipFilter.initialize(range(10_000), 0.01)

        probes = range(1_000_000, 1_020_000)
        false_positives = sum(1 for key in probes if bloom.might_contain(key))
        observed = false_positives / len(probes)

        assert observed < 0.015

    def test_concurrent_adds_and_lookups(self):
        """Adds from many threads interleaved with reads lose no keys."""
        bloom = MembershipFilter(40_000, 0.01)
        errors = []

        def writer(offset):
            for key in range(offset, 40_000, 8):
                bloom.add(key)
                if not bloom.might_contain(key):
                    errors.append(key)

        threads = [threading.Thread(target=writer, args=(offset,)) for offset in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert all(bloom.might_contain(key) for key in range(40_000))
        assert bloom.insertions == 40_000

    def test_stats_snapshot(self):
        bloom = MembershipFilter.initialize([1, 2, 3], 0.01)

        stats = bloom.stats()

        assert stats["insertions"] == 3
        assert stats["hashes"] == bloom.num_hashes
        assert stats["bits"] == bloom.num_bits
        assert stats["saturated"] is False
        assert stats["current_false_positive_rate"] <= stats["expected_false_positive_rate"]
