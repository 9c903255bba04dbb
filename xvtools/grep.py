"""Line filter supporting only the ``^ . * $`` regular-expression operators."""

from __future__ import annotations

import sys
from typing import TextIO

BUF_SIZE = 1024


def match(re: str, text: str) -> bool:
    """Search for ``re`` anywhere in ``text``."""
    if re.startswith("^"):
        return _matchhere(re[1:], text)
    while True:
        if _matchhere(re, text):
            return True
        if not text:
            return False
        text = text[1:]


def _matchhere(re: str, text: str) -> bool:
    if not re:
        return True
    if len(re) > 1 and re[1] == "*":
        return _matchstar(re[0], re[2:], text)
    if re == "$":
        return not text
    if text and (re[0] == "." or re[0] == text[0]):
        return _matchhere(re[1:], text[1:])
    return False


def _matchstar(c: str, re: str, text: str) -> bool:
    while True:
        if _matchhere(re, text):
            return True
        if not text or not (text[0] == c or c == "."):
            return False
        text = text[1:]


def grep(pattern: str, stream: TextIO, out: TextIO) -> None:
    """Copy to ``out`` every newline-terminated line that matches ``pattern``.

    Input is held in a fixed-size buffer; a line that does not fit ends the
    search, and a final line without a newline is never printed.
    """
    pending = ""
    while True:
        room = BUF_SIZE - 1 - len(pending)
        chunk = stream.read(room) if room > 0 else ""
        if not chunk:
            break
        pending += chunk
        *lines, pending = pending.split("\n")
        for line in lines:
            if match(pattern, line.split("\0", 1)[0]):
                out.write(line + "\n")


def main(argv: list[str] | None = None) -> int:
    """Run the command; return its exit status."""
    if argv is None:
        argv = sys.argv[1:]
    if not argv:
        sys.stderr.write("usage: grep pattern [file ...]\n")
        return 1
    pattern, *paths = argv
    if not paths:
        grep(pattern, sys.stdin, sys.stdout)
        return 0
    for path in paths:
        try:
            stream = open(path, encoding="utf-8", errors="replace", newline="")
        except OSError:
            sys.stdout.write(f"grep: cannot open {path}\n")
            return 1
        with stream:
            grep(pattern, stream, sys.stdout)
    return 0