"""Count lines, words and bytes."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import BinaryIO, TextIO

_CHUNK = 512
_SPACE = frozenset(b" \r\t\n\v\0")


@dataclass(frozen=True)
class Counts:
    """Line, word and byte totals of one input."""

    lines: int
    words: int
    chars: int


def count(stream: BinaryIO) -> Counts:
    """Count what ``stream`` yields until end of input."""
    lines = words = chars = 0
    inword = False
    while True:
        chunk = stream.read(_CHUNK)
        if not chunk:
            break
        if isinstance(chunk, str):
            chunk = chunk.encode()
        chars += len(chunk)
        lines += chunk.count(b"\n")
        for byte in chunk:
            if byte in _SPACE:
                inword = False
            elif not inword:
                words += 1
                inword = True
    return Counts(lines, words, chars)


def wc(stream: BinaryIO, name: str, out: TextIO) -> Counts:
    """Count ``stream`` and write the totals followed by ``name`` to ``out``."""
    counts = count(stream)
    out.write(f"{counts.lines} {counts.words} {counts.chars} {name}\n")
    return counts


def main(argv: list[str] | None = None) -> int:
    """Run the command; return its exit status."""
    if argv is None:
        argv = sys.argv[1:]
    try:
        if not argv:
            wc(sys.stdin.buffer, "", sys.stdout)
            return 0
        for path in argv:
            try:
                stream = open(path, "rb")
            except OSError:
                sys.stdout.write(f"wc: cannot open {path}\n")
                return 1
            with stream:
                wc(stream, path, sys.stdout)
    except OSError:
        sys.stdout.write("wc: read error\n")
        return 1
    return 0