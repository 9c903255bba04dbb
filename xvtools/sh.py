"""Command-line parser of the shell.

A command line is parsed into a tree of commands: simple commands with
their arguments, redirections, pipelines, sequences (``;``) and background
jobs (``&``), with parentheses for grouping.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Union

WHITESPACE = " \t\r\n\v"
SYMBOLS = "<|>&;()"
MAXARGS = 10

_SINGLE = "|();&<"


class ShellSyntaxError(ValueError):
    """The command line cannot be parsed."""

    def __init__(self, message: str, leftovers: str | None = None) -> None:
        super().__init__(message)
        self.leftovers = leftovers


class Mode(Enum):
    """How a redirected file is opened."""

    READ = "<"
    TRUNCATE = ">"
    APPEND = ">>"


@dataclass
class ExecCmd:
    """A program with its arguments."""

    argv: list[str] = field(default_factory=list)


@dataclass
class RedirCmd:
    """A command whose descriptor ``fd`` is replaced by ``file``."""

    cmd: "Cmd"
    file: str
    mode: Mode
    fd: int


@dataclass
class PipeCmd:
    """The output of ``left`` fed to the input of ``right``."""

    left: "Cmd"
    right: "Cmd"


@dataclass
class ListCmd:
    """``left`` run to completion, then ``right``."""

    left: "Cmd"
    right: "Cmd"


@dataclass
class BackCmd:
    """A command run without waiting for it."""

    cmd: "Cmd"


Cmd = Union[ExecCmd, RedirCmd, PipeCmd, ListCmd, BackCmd]


def _scan(s: str) -> Iterator[tuple[int, str]]:
    i, n = 0, len(s)
    while True:
        while i < n and s[i] in WHITESPACE:
            i += 1
        if i >= n:
            return
        start = i
        c = s[i]
        if c in _SINGLE:
            i += 1
        elif c == ">":
            i += 1
            if i < n and s[i] == ">":
                i += 1
        else:
            while i < n and s[i] not in WHITESPACE and s[i] not in SYMBOLS:
                i += 1
        yield start, s[start:i]


def _line(s: str) -> str:
    return s.split("\0", 1)[0]


def tokenize(s: str) -> list[str]:
    """Split a command line into words and operator tokens."""
    return [text for _, text in _scan(_line(s))]


class _Parser:
    def __init__(self, s: str) -> None:
        self.source = s
        self.tokens = list(_scan(s))
        self.pos = 0

    def at_end(self) -> bool:
        return self.pos >= len(self.tokens)

    def peek(self, toks: str) -> bool:
        return not self.at_end() and self.tokens[self.pos][1][0] in toks

    def next(self) -> tuple[str, str]:
        if self.at_end():
            return "", ""
        text = self.tokens[self.pos][1]
        self.pos += 1
        if text == ">>":
            return "+", text
        if text[0] in SYMBOLS:
            return text[0], text
        return "a", text

    def leftovers(self) -> str:
        return self.source[self.tokens[self.pos][0]:]

    def parseline(self) -> Cmd:
        cmd = self.parsepipe()
        while self.peek("&"):
            self.next()
            cmd = BackCmd(cmd)
        if self.peek(";"):
            self.next()
            cmd = ListCmd(cmd, self.parseline())
        return cmd

    def parsepipe(self) -> Cmd:
        cmd = self.parseexec()
        if self.peek("|"):
            self.next()
            cmd = PipeCmd(cmd, self.parsepipe())
        return cmd

    def parseredirs(self, cmd: Cmd) -> Cmd:
        while self.peek("<>"):
            tok, _ = self.next()
            kind, file = self.next()
            if kind != "a":
                raise ShellSyntaxError("missing file for redirection")
            if tok == "<":
                cmd = RedirCmd(cmd, file, Mode.READ, 0)
            elif tok == ">":
                cmd = RedirCmd(cmd, file, Mode.TRUNCATE, 1)
            else:
                cmd = RedirCmd(cmd, file, Mode.APPEND, 1)
        return cmd

    def parseblock(self) -> Cmd:
        if not self.peek("("):
            raise ShellSyntaxError("parseblock")
        self.next()
        cmd = self.parseline()
        if not self.peek(")"):
            raise ShellSyntaxError("syntax - missing )")
        self.next()
        return self.parseredirs(cmd)

    def parseexec(self) -> Cmd:
        if self.peek("("):
            return self.parseblock()
        cmd = ExecCmd()
        ret = self.parseredirs(cmd)
        while not self.peek("|)&;"):
            kind, text = self.next()
            if not kind:
                break
            if kind != "a":
                raise ShellSyntaxError("syntax")
            cmd.argv.append(text)
            if len(cmd.argv) >= MAXARGS:
                raise ShellSyntaxError("too many args")
            ret = self.parseredirs(ret)
        return ret


def parsecmd(s: str) -> Cmd:
    """Parse a whole command line into a command tree."""
    parser = _Parser(_line(s))
    cmd = parser.parseline()
    if not parser.at_end():
        raise ShellSyntaxError("syntax", leftovers=parser.leftovers())
    return cmd