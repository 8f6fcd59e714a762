"""Deterministic pseudo-random streams keyed by strings.

Everything synthetic in the service (demo detections, simulated detector
faults, processing-time jitter) is drawn from a `SeededSequence` so the same
key always yields the same output, across runs and platforms.
"""

from __future__ import annotations

from collections.abc import Iterator

LCG_MULTIPLIER = 9301
LCG_INCREMENT = 49297
LCG_MODULUS = 233280


def _to_int32(value: int) -> int:
    return (value + 0x80000000) % 0x100000000 - 0x80000000


def hash_string(key: str) -> int:
    """Hash a string into a non-negative integer seed.

    Rolling `h * 31 + code_unit` over UTF-16 code units, wrapped to a signed
    32-bit integer at every step; the absolute value is returned.
    """

    h = 0
    data = key.encode("utf-16-le")
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = _to_int32((h << 5) - h + unit)
    return abs(h)


class SeededSequence:
    """Infinite, restartable stream of floats in [0, 1).

    Uses the linear congruential recurrence
    `seed = (seed * 9301 + 49297) % 233280` and yields `seed / 233280`.
    """

    def __init__(self, key: str | None = None, *, seed: int | None = None) -> None:
        if (key is None) == (seed is None):
            raise ValueError("provide exactly one of key or seed")
        self.key = key
        self.initial_seed = hash_string(key) if key is not None else int(seed)
        self._state = self.initial_seed

    def restart(self) -> None:
        """Rewind the stream to its first value."""

        self._state = self.initial_seed

    def next_float(self) -> float:
        self._state = (self._state * LCG_MULTIPLIER + LCG_INCREMENT) % LCG_MODULUS
        return self._state / LCG_MODULUS

    __call__ = next_float

    def __iter__(self) -> Iterator[float]:
        while True:
            yield self.next_float()

    def take(self, n: int) -> list[float]:
        """Return the next `n` values."""

        return [self.next_float() for _ in range(n)]
