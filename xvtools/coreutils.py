"""Small file and process commands: cat, echo, ln, rm, mkdir, ls and kill.

Each command takes its arguments without the program name, writes to the
standard streams and returns its exit status.
"""

from __future__ import annotations

import os
import signal
import stat as _stat
import sys
from enum import IntEnum
from typing import BinaryIO, TextIO

from xvtools.ulib import atoi

DIRSIZ = 14
_CHUNK = 512
_PATH_BUF = 512


class FileType(IntEnum):
    """Kind of file as reported by stat."""

    DIR = 1
    FILE = 2
    DEVICE = 3


def _args(argv: list[str] | None) -> list[str]:
    return sys.argv[1:] if argv is None else list(argv)


def _binary(stream: TextIO) -> BinaryIO:
    stream.flush()
    return getattr(stream, "buffer", stream)


def _err(message: str) -> None:
    sys.stderr.write(message)


def fmtname(path: str) -> str:
    """Last component of ``path``, blank-padded to the directory name size."""
    name = path.rsplit("/", 1)[-1]
    if len(name) >= DIRSIZ:
        return name
    return name.ljust(DIRSIZ)


def _copy(stream: BinaryIO) -> int:
    out = _binary(sys.stdout)
    while True:
        try:
            chunk = stream.read(_CHUNK)
        except OSError:
            _err("cat: read error\n")
            return 1
        if not chunk:
            break
        try:
            out.write(chunk)
        except OSError:
            _err("cat: write error\n")
            return 1
    out.flush()
    return 0


def cat(argv: list[str] | None = None) -> int:
    """Copy the named files, or standard input, to standard output."""
    args = _args(argv)
    if not args:
        return _copy(_binary(sys.stdin))
    for path in args:
        try:
            stream = open(path, "rb")
        except OSError:
            _err(f"cat: cannot open {path}\n")
            return 1
        with stream:
            status = _copy(stream)
        if status:
            return status
    return 0


def echo(argv: list[str] | None = None) -> int:
    """Write the arguments separated by blanks and ended by a newline."""
    args = _args(argv)
    if args:
        sys.stdout.write(" ".join(args) + "\n")
    return 0


def ln(argv: list[str] | None = None) -> int:
    """Make a hard link ``new`` to ``old``."""
    args = _args(argv)
    if len(args) != 2:
        _err("Usage: ln old new\n")
        return 1
    old, new = args
    try:
        os.link(old, new)
    except OSError:
        _err(f"link {old} {new}: failed\n")
    return 0


def _unlink(path: str) -> None:
    if os.path.isdir(path) and not os.path.islink(path):
        os.rmdir(path)
    else:
        os.unlink(path)


def rm(argv: list[str] | None = None) -> int:
    """Remove files and empty directories, stopping at the first failure."""
    args = _args(argv)
    if not args:
        _err("Usage: rm files...\n")
        return 1
    for path in args:
        try:
            _unlink(path)
        except OSError:
            _err(f"rm: {path} failed to delete\n")
            break
    return 0


def mkdir(argv: list[str] | None = None) -> int:
    """Create directories, stopping at the first failure."""
    args = _args(argv)
    if not args:
        _err("Usage: mkdir files...\n")
        return 1
    for path in args:
        try:
            os.mkdir(path)
        except OSError:
            _err(f"mkdir: {path} failed to create\n")
            break
    return 0


def _file_type(mode: int) -> FileType:
    if _stat.S_ISDIR(mode):
        return FileType.DIR
    if _stat.S_ISREG(mode):
        return FileType.FILE
    return FileType.DEVICE


def _entry(path: str, st: os.stat_result) -> str:
    kind = _file_type(st.st_mode)
    return f"{fmtname(path)} {int(kind)} {st.st_ino} {st.st_size}\n"


def _ls(path: str) -> None:
    try:
        st = os.stat(path)
    except OSError:
        _err(f"ls: cannot open {path}\n")
        return
    if _file_type(st.st_mode) is not FileType.DIR:
        sys.stdout.write(_entry(path, st))
        return
    if len(path) + 1 + DIRSIZ + 1 > _PATH_BUF:
        sys.stdout.write("ls: path too long\n")
        return
    try:
        names = sorted(os.listdir(path))
    except OSError:
        _err(f"ls: cannot open {path}\n")
        return
    for name in [".", "..", *names]:
        full = f"{path}/{name}"
        try:
            entry = os.stat(full)
        except OSError:
            sys.stdout.write(f"ls: cannot stat {full}\n")
            continue
        sys.stdout.write(_entry(full, entry))


def ls(argv: list[str] | None = None) -> int:
    """List files, or the entries of directories, with type, inode and size."""
    for path in _args(argv) or ["."]:
        _ls(path)
    return 0


def kill(argv: list[str] | None = None) -> int:
    """Kill the processes with the given ids; bad ids are ignored."""
    args = _args(argv)
    if not args:
        _err("usage: kill pid...\n")
        return 1
    sig = getattr(signal, "SIGKILL", signal.SIGTERM)
    for arg in args:
        pid = atoi(arg)
        if pid <= 0:
            continue
        try:
            os.kill(pid, sig)
        except (OSError, OverflowError):
            pass
    return 0