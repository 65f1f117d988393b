"""
Bloom filter over known listing IDs.

Answers "definitely absent" or "possibly present" without touching the
cache or the store. Bits only ever go from 0 to 1, so readers never lock;
writers serialize on a mutex because a byte-level OR is a read-modify-write.
"""

import hashlib
import math
import threading
from typing import Any, Dict, Iterable, List, Tuple

from shared.logging import get_logger


# Small filters are padded up to this many bits; storage is 64-bit aligned.
MIN_BITS = 1024


def optimal_size(expected_insertions: int, false_positive_rate: float) -> Tuple[int, int]:
    """Return (bits, hashes) for n expected keys at target rate p."""
    n = max(1, expected_insertions)
    num_bits = math.ceil(-n * math.log(false_positive_rate) / (math.log(2) ** 2))
    num_hashes = max(1, math.ceil((num_bits / n) * math.log(2)))
    return num_bits, num_hashes


def false_positive_rate(num_bits: int, num_hashes: int, insertions: int) -> float:
    """Expected false positive rate (1 - e^(-kn/m))^k."""
    if insertions <= 0:
        return 0.0
    return (1.0 - math.exp(-num_hashes * insertions / num_bits)) ** num_hashes


class MembershipFilter:
    """Thread-safe Bloom filter sized from (n, p)."""

    def __init__(self, expected_insertions: int, false_positive_rate: float = 0.01):
        if not 0.0 < false_positive_rate < 1.0:
            raise ValueError("false_positive_rate must be in (0, 1)")

        self.expected_insertions = max(1, int(expected_insertions))
        self.target_false_positive_rate = false_positive_rate
        num_bits, self.num_hashes = optimal_size(self.expected_insertions, false_positive_rate)
        self.num_bits = max(MIN_BITS, -(-num_bits // 64) * 64)
        self._bits = bytearray((self.num_bits + 7) // 8)
        self._write_lock = threading.Lock()
        self._insertions = 0
        self.logger = get_logger("listings.filter")

    @classmethod
    def initialize(
        cls,
        all_keys: Iterable[Any],
        false_positive_rate: float = 0.01,
        *,
        headroom: float = 1.0,
    ) -> "MembershipFilter":
        """Build a filter from a full key enumeration.

        ``headroom`` scales the expected count to leave room for keys
        created after startup.
        """
        keys = list(all_keys)
        expected = max(1, math.ceil(len(keys) * headroom))
        bloom = cls(expected, false_positive_rate)
        for key in keys:
            bloom.add(key)

        bloom.logger.info(
            "Membership filter initialized",
            keys=len(keys),
            expected_insertions=bloom.expected_insertions,
            bits=bloom.num_bits,
            hashes=bloom.num_hashes,
            expected_false_positive_rate=round(bloom.expected_false_positive_rate(), 6),
        )
        return bloom

    def _positions(self, key: Any) -> List[int]:
        """k bit positions by double hashing one 128-bit digest."""
        digest = hashlib.blake2b(str(key).encode("utf-8"), digest_size=16).digest()
        h1 = int.from_bytes(digest[:8], "little")
        h2 = int.from_bytes(digest[8:], "little") | 1
        return [(h1 + i * h2) % self.num_bits for i in range(self.num_hashes)]

    def might_contain(self, key: Any) -> bool:
        """False means the key was never added."""
        bits = self._bits
        for position in self._positions(key):
            if not bits[position >> 3] & (1 << (position & 7)):
                return False
        return True

    def add(self, key: Any) -> None:
        """Insert a key. Re-adding an existing key is harmless."""
        positions = self._positions(key)
        with self._write_lock:
            for position in positions:
                self._bits[position >> 3] |= 1 << (position & 7)
            self._insertions += 1

    @property
    def insertions(self) -> int:
        """Number of add() calls, duplicates included."""
        return self._insertions

    def expected_false_positive_rate(self) -> float:
        """Rate once the filter holds its configured expected count."""
        return false_positive_rate(self.num_bits, self.num_hashes, self.expected_insertions)

    def current_false_positive_rate(self) -> float:
        """Rate estimate for the keys inserted so far."""
        return false_positive_rate(self.num_bits, self.num_hashes, self._insertions)

    def stats(self) -> Dict[str, Any]:
        """Filter sizing and saturation snapshot."""
        return {
            "bits": self.num_bits,
            "hashes": self.num_hashes,
            "expected_insertions": self.expected_insertions,
            "insertions": self._insertions,
            "target_false_positive_rate": self.target_false_positive_rate,
            "expected_false_positive_rate": self.expected_false_positive_rate(),
            "current_false_positive_rate": self.current_false_positive_rate(),
            "saturated": self._insertions > self.expected_insertions,
        }
