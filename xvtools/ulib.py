"""Small string and memory helpers of the user library."""

from __future__ import annotations

from itertools import chain, zip_longest
from typing import TextIO


def atoi(s: str) -> int:
    """Value of the leading decimal digits of ``s``; no sign, no blanks."""
    n = 0
    for ch in s:
        if not "0" <= ch <= "9":
            break
        n = n * 10 + (ord(ch) - ord("0"))
    return n


def _codes(s: str | bytes) -> bytes:
    data = s.encode() if isinstance(s, str) else bytes(s)
    return data.split(b"\0", 1)[0]


def strcmp(p: str | bytes, q: str | bytes) -> int:
    """Compare two NUL-terminated strings byte by byte."""
    pairs = zip_longest(chain(_codes(p), [0]), chain(_codes(q), [0]), fillvalue=0)
    for a, b in pairs:
        if a == 0 or a != b:
            return a - b
    return 0


def memcmp(a: bytes, b: bytes, n: int) -> int:
    """Compare the first ``n`` bytes of ``a`` and ``b``."""
    if n < 0:
        raise ValueError("negative length")
    if len(a) < n or len(b) < n:
        raise ValueError("buffer shorter than comparison length")
    for x, y in zip(a[:n], b[:n]):
        if x != y:
            return x - y
    return 0


def gets(stream: TextIO, max: int) -> str:
    """Read one line of at most ``max - 1`` characters, keeping the terminator."""
    chars: list[str] = []
    while len(chars) + 1 < max:
        c = stream.read(1)
        if not c:
            break
        chars.append(c)
        if c in ("\n", "\r"):
            break
    return "".join(chars)