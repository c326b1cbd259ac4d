"""
Deterministic random number generation for world creation.

Mulberry32: a 32-bit state advanced by a fixed increment and mixed on every
draw. Sequences are reproducible across runs and platforms for a given seed.
The monthly tick never draws from here.
"""

_MASK32 = 0xFFFFFFFF
_INCREMENT = 0x6D2B79F5
_TWO_POW_32 = 4294967296.0


class Mulberry32:
    """Seeded 32-bit PRNG producing floats in [0, 1)."""

    __slots__ = ("_state",)

    def __init__(self, seed: int):
        self._state = int(seed) & _MASK32

    @property
    def state(self) -> int:
        return self._state

    def random(self) -> float:
        self._state = (self._state + _INCREMENT) & _MASK32
        t = self._state
        x = ((t ^ (t >> 15)) * (t | 1)) & _MASK32
        x ^= (x + ((x ^ (x >> 7)) * (x | 61))) & _MASK32
        return ((x ^ (x >> 14)) & _MASK32) / _TWO_POW_32

    def uniform(self, lo: float, hi: float) -> float:
        """Uniform draw in [lo, hi)."""
        return lo + (hi - lo) * self.random()

    def normish(self) -> float:
        """Average of four uniforms: a cheap bell curve on [0, 1)."""
        return (self.random() + self.random() + self.random() + self.random()) / 4
