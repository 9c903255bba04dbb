"""Formatted output with the small conversion set of the system's printf.

Only ``%d``, ``%u``, ``%x`` (each optionally prefixed by ``l`` or ``ll``),
``%p``, ``%s`` and ``%%`` are understood.  Integers are printed through a
32-bit conversion, hex digits are upper case, and an unknown sequence is
echoed as ``%`` followed by the character so that it draws attention.
"""

from __future__ import annotations

import operator
import re
import sys
from typing import Any, Iterator, TextIO

_DIGITS = "0123456789ABCDEF"

_INT_MASK = 0xFFFFFFFF
_INT_SIGN = 0x80000000
_PTR_MASK = 0xFFFFFFFFFFFFFFFF

_CONVERSIONS = {
    "d": (10, True),
    "u": (10, False),
    "x": (16, False),
}

_DIRECTIVE = re.compile(r"%(ll[dux]|l[dux]|.)?", re.DOTALL)


def _printint(value: int, base: int, signed: bool) -> str:
    x = operator.index(value) & _INT_MASK
    negative = signed and bool(x & _INT_SIGN)
    if negative:
        x = (-x) & _INT_MASK
    digits = []
    while True:
        x, digit = divmod(x, base)
        digits.append(_DIGITS[digit])
        if x == 0:
            break
    if negative:
        digits.append("-")
    return "".join(reversed(digits))


def _printptr(value: int) -> str:
    x = operator.index(value) & _PTR_MASK
    return "0x" + "".join(_DIGITS[(x >> shift) & 0xF] for shift in range(60, -4, -4))


def _next_arg(args: Iterator[Any]) -> Any:
    try:
        return next(args)
    except StopIteration:
        raise TypeError("not enough arguments for format string") from None


def format(fmt: str, *args: Any) -> str:
    """Return ``fmt`` with its conversions replaced by ``args``."""
    fmt = fmt.split("\0", 1)[0]
    remaining = iter(args)

    def convert(m: re.Match) -> str:
        spec = m.group(1)
        if spec is None:
            return ""
        kind = spec[-1]
        if len(spec) > 1 or kind in _CONVERSIONS:
            if kind in _CONVERSIONS:
                base, signed = _CONVERSIONS[kind]
                return _printint(_next_arg(remaining), base, signed)
        if spec == "p":
            return _printptr(_next_arg(remaining))
        if spec == "s":
            s = _next_arg(remaining)
            if s is None:
                return "(null)"
            return str(s).split("\0", 1)[0]
        if spec == "%":
            return "%"
        return "%" + spec

    return _DIRECTIVE.sub(convert, fmt)


def fprintf(stream: TextIO, fmt: str, *args: Any) -> None:
    """Write the formatted text to ``stream``."""
    stream.write(format(fmt, *args))


def printf(fmt: str, *args: Any) -> None:
    """Write the formatted text to standard output."""
    fprintf(sys.stdout, fmt, *args)