"""Park-Miller minimal standard pseudo-random numbers."""

from __future__ import annotations

from typing import Iterator

_MASK64 = 0xFFFFFFFFFFFFFFFF


def do_rand(ctx: int) -> int:
    """Next value after state ``ctx``; it is also the next state.

    Computes (7**5 * x) mod (2**31 - 1) without overflow and returns a value
    in ``[0, 0x7ffffffd]``.
    """
    x = (ctx & _MASK64) % 0x7FFFFFFE + 1
    hi, lo = divmod(x, 127773)
    x = 16807 * lo - 2836 * hi
    if x < 0:
        x += 0x7FFFFFFF
    return x - 1


class Rand:
    """A generator holding its state."""

    def __init__(self, seed: int = 1) -> None:
        self.state = seed & _MASK64

    def next(self) -> int:
        """Advance and return the next value."""
        self.state = do_rand(self.state)
        return self.state

    def __iter__(self) -> Iterator[int]:
        while True:
            yield self.next()